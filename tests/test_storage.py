import threading
import time
from datetime import datetime, timezone

import pytest

import keeper_archive
from keeper_markdown import load_document, serialize, serialize_tasks_only
from keeper_model import AppState, Habit, Task
from keeper_sync import SyncError
from keeper_storage import (
    DirectoryStorage,
    create_snapshot,
    default_state,
    list_archives,
    list_snapshots,
    load_recent_archives,
    load_snapshot,
    load_state,
    month_back,
    save_state,
    snapshot_name,
)


@pytest.fixture
def storage(tmp_path):
    return DirectoryStorage(tmp_path, watch_interval=0.05)


def test_write_then_read(storage, tmp_path):
    storage.write_document("current.md", "hello\n")
    assert storage.read_document("current.md") == "hello\n"
    assert [p.name for p in tmp_path.iterdir()] == ["current.md"]


def test_write_creates_subdirectories(storage, tmp_path):
    storage.write_document("history/one.md", "x\n")
    assert (tmp_path / "history" / "one.md").read_text(encoding="utf-8") == "x\n"


def test_absent_document_reads_as_none(storage):
    assert storage.read_document("current.md") is None


def test_undecodable_bytes_are_replaced(storage, tmp_path):
    (tmp_path / "current.md").write_bytes(b"# Tasks\n## caf\xe9\n")
    assert "\ufffd" in storage.read_document("current.md")


def test_names_cannot_escape_the_root(storage):
    with pytest.raises(ValueError):
        storage.read_document("../outside.md")


def test_list_documents(storage):
    for name in ("current.md", "archive-2025-01.md", "history/a.md", "history/b.md"):
        storage.write_document(name, "x\n")
    assert storage.list_documents("history/") == ["history/a.md", "history/b.md"]
    assert storage.list_documents("archive-") == ["archive-2025-01.md"]
    assert storage.list_documents("missing/") == []


def test_load_state_when_nothing_saved(storage):
    assert load_state(storage) == AppState()
    seeded = load_state(storage, seed=True)
    assert len(seeded.habits) == 3
    assert [t.text for t in seeded.tasks] == ["Explore Keeper", "Plan something fun for this week"]


def test_default_state_ids_are_unique():
    state = default_state()
    ids = [h.id for h in state.habits] + [t.id for t in state.tasks] + [c.id for c in state.tasks[0].children]
    assert len(ids) == len(set(ids))


def test_load_state_heals_duplicates(storage):
    storage.write_document("current.md", "# Tasks\n## One <!-- id:x -->\n## Two <!-- id:x -->\n")
    state = load_state(storage)
    assert state.tasks[0].id == "x"
    assert state.tasks[1].id != "x"


def test_save_state_archives_and_writes_current(storage):
    state = AppState(
        habits=[Habit(id="h1", text="Walk")],
        tasks=[
            Task(id="old", text="Old", completed=True, completed_at="2025-01-09"),
            Task(id="live", text="Live"),
        ],
    )
    live = save_state(storage, state, now=datetime(2025, 2, 3))
    assert [t.id for t in live.tasks] == ["live"]
    assert load_document(storage.read_document("current.md")) == live
    assert [t.id for t in load_document(storage.read_document("archive-2025-01.md")).tasks] == ["old"]


def test_save_state_archives_into_hand_edited_month(storage):
    padded = (
        "# Habits\n\n---\n\n# Tasks\n\n\n"
        "## Earlier <!-- id:e1 -->\n"
        "- Status: completed (2025-02-01)\n\n\n\n"
        "a remark typed by hand\n"
        "another remark\n\n"
    )
    storage.write_document("archive-2025-02.md", padded)
    state = AppState(tasks=[Task(id="t", text="Late", completed=True, completed_at="2025-02-10")])
    live = save_state(storage, state, now=datetime(2025, 3, 15))
    assert live.tasks == []
    archived = load_document(storage.read_document("archive-2025-02.md"))
    assert [t.id for t in archived.tasks] == ["e1", "t"]


def test_save_state_falls_back_when_guard_refuses(storage, capsys, monkeypatch):
    monkeypatch.setattr(keeper_archive, "merge_archive", lambda existing, extracted: serialize_tasks_only(list(extracted)))
    existing = serialize_tasks_only([Task(id="kept", text="Kept", completed=True, completed_at="2025-01-02")])
    storage.write_document("archive-2025-01.md", existing)
    state = AppState(tasks=[Task(id="old", text="Old", completed=True, completed_at="2025-01-09")])
    written = save_state(storage, state, now=datetime(2025, 2, 3))
    assert written == state
    assert "id:old" in storage.read_document("current.md")
    assert storage.read_document("archive-2025-01.md") == existing
    assert "[WARN] Archiving skipped" in capsys.readouterr().err


def test_snapshots(storage):
    state = AppState(tasks=[Task(id="t1", text="Plan")])
    first = create_snapshot(storage, state, "before edit", now=datetime(2025, 1, 1, 9, 30, tzinfo=timezone.utc))
    second = create_snapshot(storage, state, "manual", now=datetime(2025, 1, 2, 9, 30, tzinfo=timezone.utc))
    assert first == "history/2025-01-01T09-30-00+00-00_before-edit.md"
    assert list_snapshots(storage) == [second, first]
    assert load_snapshot(storage, first) == state
    assert load_snapshot(storage, "history/missing.md") is None


def test_snapshot_name_sanitizes_reason():
    now = datetime(2025, 1, 1, 0, 0, 0, 500, tzinfo=timezone.utc)
    assert snapshot_name("", now) == "history/2025-01-01T00-00-00-000500+00-00_manual.md"
    assert snapshot_name("a/b", now).endswith("_a-b.md")


def test_month_back():
    now = datetime(2025, 1, 15)
    assert [month_back(now, n) for n in range(3)] == ["2025-01", "2024-12", "2024-11"]
    assert month_back(now, 13) == "2023-12"


def test_recent_archives_and_listing(storage):
    january = serialize_tasks_only([Task(id="a", text="January")])
    november = serialize_tasks_only([Task(id="b", text="November")])
    storage.write_document("archive-2025-01.md", january)
    storage.write_document("archive-2024-11.md", november)
    storage.write_document("archive-2024-06.md", november)
    storage.write_document("history/archive-copy.md", november)
    assert load_recent_archives(storage, 3, now=datetime(2025, 1, 15)) == [january, november]
    assert list_archives(storage) == ["archive-2024-06.md", "archive-2024-11.md", "archive-2025-01.md"]


def test_poll_ignores_own_writes(storage, tmp_path):
    storage.write_document("current.md", "mine\n")
    digest, text = storage.poll_document("current.md", None)
    assert text is None

    (tmp_path / "current.md").write_text("theirs\n", encoding="utf-8")
    new_digest, text = storage.poll_document("current.md", digest)
    assert text == "theirs\n"
    assert new_digest != digest
    assert storage.poll_document("current.md", new_digest) == (new_digest, None)


def test_watch_reports_external_changes_only(storage, tmp_path):
    storage.write_document("current.md", serialize(AppState()))
    seen = []
    changed = threading.Event()

    def on_change(text):
        seen.append(text)
        changed.set()

    unsubscribe = storage.watch_document("current.md", on_change)
    try:
        storage.write_document("current.md", serialize(AppState(tasks=[Task(id="t1", text="Mine")])))
        time.sleep(0.3)
        assert seen == []

        external = serialize(AppState(tasks=[Task(id="t2", text="Theirs")]))
        (tmp_path / "current.md").write_text(external, encoding="utf-8")
        assert changed.wait(timeout=5)
        assert seen == [external]
    finally:
        unsubscribe()


def test_poll_reports_revert_to_own_content(storage, tmp_path):
    storage.write_document("current.md", "mine\n")
    digest, _ = storage.poll_document("current.md", None)
    (tmp_path / "current.md").write_text("theirs\n", encoding="utf-8")
    digest, text = storage.poll_document("current.md", digest)
    assert text == "theirs\n"
    (tmp_path / "current.md").write_text("mine\n", encoding="utf-8")
    assert storage.poll_document("current.md", digest)[1] == "mine\n"


class FlakyStorage(DirectoryStorage):
    def __init__(self, root):
        super().__init__(root, watch_interval=0.05)
        self.failures = 0

    def read_document(self, name):
        if self.failures:
            self.failures -= 1
            raise SyncError("502 Bad Gateway")
        return super().read_document(name)


def _wait_for(condition, timeout=5.0):
    deadline = time.monotonic() + timeout
    while not condition():
        if time.monotonic() > deadline:
            return False
        time.sleep(0.02)
    return True


def test_watch_survives_read_errors(tmp_path):
    flaky = FlakyStorage(tmp_path)
    (tmp_path / "current.md").write_text("a\n", encoding="utf-8")
    seen = []
    unsubscribe = flaky.watch_document("current.md", seen.append)
    try:
        flaky.failures = 1
        assert _wait_for(lambda: flaky.failures == 0)
        (tmp_path / "current.md").write_text("b\n", encoding="utf-8")
        assert _wait_for(lambda: seen == ["b\n"])
    finally:
        unsubscribe()


def test_watch_survives_failing_handler(storage, tmp_path):
    (tmp_path / "current.md").write_text("a\n", encoding="utf-8")
    seen = []

    def on_change(text):
        seen.append(text)
        if len(seen) == 1:
            raise ValueError("handler broke")

    unsubscribe = storage.watch_document("current.md", on_change)
    try:
        (tmp_path / "current.md").write_text("b\n", encoding="utf-8")
        assert _wait_for(lambda: seen == ["b\n"])
        (tmp_path / "current.md").write_text("c\n", encoding="utf-8")
        assert _wait_for(lambda: seen == ["b\n", "c\n"])
    finally:
        unsubscribe()
