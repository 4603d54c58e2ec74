"""Persistence helpers (load/save/archive/snapshots) for the Keeper document.

The Markdown core never touches the filesystem; everything that reads or
writes a document goes through a storage object exposing
``read_document(name)``, ``write_document(name, text)`` and
``watch_document(name, on_change)``.  ``DirectoryStorage`` keeps the documents
in a local directory; ``keeper_sync.GitHubStorage`` keeps them in a GitHub
repository.  Both share the polling watcher defined here.
"""
from __future__ import annotations

import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from tempfile import NamedTemporaryFile
from typing import Callable, Dict, List, Optional, Tuple

from keeper_archive import archive, archive_name
from keeper_config import (
    ARCHIVE_PREFIX,
    CURRENT_DOCUMENT,
    DEFAULT_WATCH_INTERVAL,
    HISTORY_DIR,
    debug_log,
    info_log,
    warn_log,
)
from keeper_guard import GuardError, checksum
from keeper_markdown import load_document, serialize
from keeper_model import AppState, Habit, Task, generate_id

ChangeCallback = Callable[[str], None]
Unsubscribe = Callable[[], None]


class DocumentStorage:
    """Base class: subclasses provide ``read_document`` and ``write_document``."""

    def __init__(self, watch_interval: float = DEFAULT_WATCH_INTERVAL) -> None:
        self.watch_interval = watch_interval
        self._own_writes: Dict[str, str] = {}
        self._lock = threading.Lock()

    def read_document(self, name: str) -> Optional[str]:
        raise NotImplementedError

    def write_document(self, name: str, text: str) -> None:
        raise NotImplementedError

    def list_documents(self, prefix: str = "") -> List[str]:
        raise NotImplementedError

    def _remember_write(self, name: str, text: str) -> None:
        with self._lock:
            self._own_writes[name] = checksum(text)

    def _is_own_write(self, name: str, digest: str) -> bool:
        with self._lock:
            own = self._own_writes.get(name)
            if own is None:
                return False
            if own == digest:
                return True
            # Another writer replaced our write; a later revert to it is theirs.
            del self._own_writes[name]
            return False

    def poll_document(self, name: str, last_digest: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
        """Return ``(digest, text_or_None)``; text is set only on an external change."""
        text = self.read_document(name)
        if text is None:
            return last_digest, None
        digest = checksum(text)
        if digest == last_digest or self._is_own_write(name, digest):
            return digest, None
        return digest, text

    def watch_document(self, name: str, on_change: ChangeCallback) -> Unsubscribe:
        """Call ``on_change(text)`` whenever another writer changes ``name``.

        Polls on a daemon thread every ``watch_interval`` seconds.  Writes made
        through this storage object are not reported back.
        """
        stop = threading.Event()
        current = self.read_document(name)
        state = {"digest": checksum(current) if current is not None else None}

        def _run() -> None:
            while not stop.wait(self.watch_interval):
                try:
                    digest, text = self.poll_document(name, state["digest"])
                except Exception as exc:
                    warn_log(f"Watch on {name} could not read the document: {exc}")
                    continue
                state["digest"] = digest
                if text is None:
                    continue
                debug_log(f"External change detected in {name}")
                try:
                    on_change(text)
                except Exception as exc:
                    warn_log(f"Change handler for {name} failed: {exc}")

        thread = threading.Thread(target=_run, name=f"keeper-watch-{name}", daemon=True)
        thread.start()

        def unsubscribe() -> None:
            stop.set()
            thread.join(timeout=self.watch_interval * 2)

        return unsubscribe


class DirectoryStorage(DocumentStorage):
    def __init__(self, root: Path, watch_interval: float = DEFAULT_WATCH_INTERVAL) -> None:
        super().__init__(watch_interval)
        self.root = Path(root)

    def path_for(self, name: str) -> Path:
        root = self.root.resolve()
        path = (root / name).resolve()
        if root != path and root not in path.parents:
            raise ValueError(f"Document name escapes storage root: {name}")
        return path

    def read_document(self, name: str) -> Optional[str]:
        path = self.path_for(name)
        if not path.exists():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except UnicodeDecodeError:
            return path.read_bytes().decode("utf-8", errors="replace")

    def write_document(self, name: str, text: str) -> None:
        path = self.path_for(name)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_file = None
        try:
            with NamedTemporaryFile("w", encoding="utf-8", delete=False, dir=str(path.parent)) as tmp:
                tmp_file = tmp.name
                tmp.write(text)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_file, path)
        except OSError:
            if tmp_file and os.path.exists(tmp_file):
                os.unlink(tmp_file)
            raise
        self._remember_write(name, text)
        debug_log(f"Wrote {path} ({len(text)} chars)")

    def list_documents(self, prefix: str = "") -> List[str]:
        base = self.path_for(prefix) if prefix and prefix.endswith("/") else self.root
        if not base.exists():
            return []
        root = self.root.resolve()
        names = [
            path.resolve().relative_to(root).as_posix()
            for path in base.rglob("*.md")
            if path.is_file()
        ]
        return sorted(name for name in names if name.startswith(prefix))


# =====================================================
# STATE
# =====================================================

def default_state() -> AppState:
    """Starter document offered to first-time users."""
    return AppState(
        habits=[
            Habit(id=generate_id(), text="Drink a glass of water", repeat_interval_hours=4),
            Habit(id=generate_id(), text="Hug someone I care about", repeat_interval_hours=24),
            Habit(id=generate_id(), text="Write down something good that happened", repeat_interval_hours=24),
        ],
        tasks=[
            Task(
                id=generate_id(),
                text="Explore Keeper",
                children=[
                    Task(id=generate_id(), text="Complete a habit and add a note"),
                    Task(id=generate_id(), text="Check off this subtask to see how it works"),
                ],
            ),
            Task(id=generate_id(), text="Plan something fun for this week"),
        ],
    )


def load_state(storage: DocumentStorage, seed: bool = False) -> AppState:
    text = storage.read_document(CURRENT_DOCUMENT)
    if text is None:
        debug_log(f"No {CURRENT_DOCUMENT} found; starting {'seeded' if seed else 'empty'}")
        return default_state() if seed else AppState()
    return load_document(text)


def save_state(
    storage: DocumentStorage,
    state: AppState,
    now: Optional[datetime] = None,
    guard: bool = True,
) -> AppState:
    """Archive prior-month completions, then write the live document.

    If the archive guard refuses a write, nothing is archived and the full
    state is saved instead.  Returns the state that was written.
    """
    try:
        live = archive(state, storage, now=now, guard=guard)
    except GuardError as exc:
        warn_log(f"Archiving skipped: {exc}")
        live = state
    if len(live.tasks) != len(state.tasks):
        info_log(f"Filtered {len(state.tasks)} -> {len(live.tasks)} top-level tasks")
    storage.write_document(CURRENT_DOCUMENT, serialize(live))
    return live


# =====================================================
# SNAPSHOTS AND ARCHIVES
# =====================================================

def snapshot_name(reason: str, now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    stamp = now.isoformat().replace(":", "-").replace(".", "-")
    safe_reason = "".join(ch if ch.isalnum() or ch in "-_" else "-" for ch in reason) or "manual"
    return f"{HISTORY_DIR}/{stamp}_{safe_reason}.md"


def create_snapshot(
    storage: DocumentStorage, state: AppState, reason: str, now: Optional[datetime] = None
) -> str:
    # TODO: prune history beyond a maximum snapshot count once a retention policy is agreed.
    name = snapshot_name(reason, now)
    storage.write_document(name, serialize(state))
    info_log(f"Snapshot saved to {name}")
    return name


def list_snapshots(storage: DocumentStorage) -> List[str]:
    return sorted(storage.list_documents(f"{HISTORY_DIR}/"), reverse=True)


def load_snapshot(storage: DocumentStorage, name: str) -> Optional[AppState]:
    text = storage.read_document(name)
    if text is None:
        return None
    return load_document(text)


def month_back(now: datetime, months: int) -> str:
    year, month = now.year, now.month - months
    while month <= 0:
        month += 12
        year -= 1
    return f"{year:04d}-{month:02d}"


def load_recent_archives(
    storage: DocumentStorage, months_back: int = 3, now: Optional[datetime] = None
) -> List[str]:
    now = now or datetime.now()
    archives: List[str] = []
    for offset in range(months_back):
        text = storage.read_document(archive_name(month_back(now, offset)))
        if text is not None:
            archives.append(text)
    return archives


def list_archives(storage: DocumentStorage) -> List[str]:
    return [name for name in storage.list_documents(ARCHIVE_PREFIX) if "/" not in name]
