#!/usr/bin/env python3
"""
keeper_sync.py
--------------------------------------------------------
GitHub-backed document storage.
Keeps current.md, the monthly archives and the snapshot history as files in
a GitHub repository through the contents API, so the document can be edited
from any checkout and still be loaded, healed and archived here.
--------------------------------------------------------
"""
from __future__ import annotations

import base64
import sys
from typing import Dict, List, Optional, Sequence

import requests

from keeper_config import GitHubSettings, debug_log, info_log, load_config
from keeper_guard import GuardError, is_archive_name, validate_append_only
from keeper_storage import DocumentStorage

REQUEST_TIMEOUT = 10


class SyncError(RuntimeError):
    """Raised when the GitHub API rejects a request."""


class GitHubStorage(DocumentStorage):
    def __init__(
        self,
        settings: GitHubSettings,
        session: Optional[requests.Session] = None,
        watch_interval: float = 30.0,
    ) -> None:
        super().__init__(watch_interval)
        if not settings.repo:
            raise SyncError("GitHub storage needs a repository (owner/name)")
        self.settings = settings
        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/vnd.github+json"})
        if settings.token:
            self.session.headers.update({"Authorization": f"token {settings.token}"})
        self._shas: Dict[str, str] = {}

    def _path(self, name: str) -> str:
        prefix = self.settings.path_prefix.strip("/")
        return f"{prefix}/{name}" if prefix else name

    def _url(self, name: str) -> str:
        base = self.settings.api_url.rstrip("/")
        return f"{base}/repos/{self.settings.repo}/contents/{self._path(name)}".rstrip("/")

    def _get(self, name: str) -> Optional[requests.Response]:
        resp = self.session.get(
            self._url(name), params={"ref": self.settings.branch}, timeout=REQUEST_TIMEOUT
        )
        if resp.status_code == 404:
            return None
        if not resp.ok:
            raise SyncError(f"Failed to fetch {name}: {resp.status_code} {resp.text}")
        return resp

    def read_document(self, name: str) -> Optional[str]:
        resp = self._get(name)
        if resp is None:
            self._shas.pop(name, None)
            return None
        data = resp.json()
        if isinstance(data, list):
            raise SyncError(f"{name} is a directory, not a document")
        self._shas[name] = data.get("sha", "")
        content = data.get("content", "")
        if data.get("encoding") == "base64":
            content = base64.b64decode(content).decode("utf-8", errors="replace")
        return content

    def write_document(self, name: str, text: str, message: Optional[str] = None) -> None:
        payload = {
            "message": message or f"keeper: update {name}",
            "content": base64.b64encode(text.encode("utf-8")).decode("utf-8"),
            "branch": self.settings.branch,
        }
        if name not in self._shas:
            # Learn the sha of an existing file so the PUT is an update.
            self.read_document(name)
        sha = self._shas.get(name)
        if sha:
            payload["sha"] = sha
        resp = self.session.put(self._url(name), json=payload, timeout=REQUEST_TIMEOUT)
        if resp.status_code >= 300:
            raise SyncError(f"Commit failed for {name}: {resp.status_code} {resp.text}")
        new_sha = (resp.json().get("content") or {}).get("sha")
        if new_sha:
            self._shas[name] = new_sha
        self._remember_write(name, text)
        debug_log(f"Committed {self._path(name)} to {self.settings.repo}@{self.settings.branch}")

    def list_documents(self, prefix: str = "") -> List[str]:
        directory = prefix.rsplit("/", 1)[0] if "/" in prefix else ""
        resp = self._get(directory)
        if resp is None:
            return []
        entries = resp.json()
        if not isinstance(entries, list):
            return []
        names = []
        for entry in entries:
            if entry.get("type") != "file" or not entry.get("name", "").endswith(".md"):
                continue
            name = f"{directory}/{entry['name']}" if directory else entry["name"]
            if name.startswith(prefix):
                names.append(name)
        return sorted(names)


def push_document(storage: GitHubStorage, name: str, text: str, message: Optional[str] = None) -> None:
    """Commit ``text`` as ``name``, refusing archive truncations."""
    if is_archive_name(name):
        validate_append_only(name, storage.read_document(name), text)
    storage.write_document(name, text, message=message)
    info_log(f"Safe commit successful for {name}")


# =====================================================
# ENTRY POINT
# =====================================================

def main(argv: Optional[Sequence[str]] = None) -> int:
    args = list(sys.argv[1:] if argv is None else argv)
    if not args:
        print("Usage: keeper_sync.py <document-name> [commit message]", file=sys.stderr)
        return 1
    name = args[0]
    message = args[1] if len(args) > 1 else "auto-commit (keeper_sync)"
    config = load_config()
    local_path = config.data_dir / name
    if not local_path.exists():
        print(f"Local document not found: {local_path}", file=sys.stderr)
        return 1
    storage = GitHubStorage(config.github)
    try:
        push_document(storage, name, local_path.read_text(encoding="utf-8"), message)
    except (GuardError, SyncError) as exc:
        print(f"Commit failed for {name}: {exc}", file=sys.stderr)
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
