#!/usr/bin/env python3
"""
keeper_guard.py
--------------------------------------------------------
Archive integrity layer (append-only enforcement).
Purpose:
  Monthly archive documents only ever grow: new extractions are appended
  after the tasks already archived.  Refuse any write that would drop or
  reorder a task the archive already holds.  Layout-only hand edits (blank
  lines, remarks) are not losses.
--------------------------------------------------------
"""
from __future__ import annotations

import hashlib
import sys
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Sequence

from keeper_config import info_log
from keeper_markdown import LineKind, classify_line

SUPPORTED_ALGORITHMS = ("sha256",)


class GuardError(RuntimeError):
    """Raised when a write would drop tasks from an append-only document."""


# =====================================================
# HELPER FUNCTIONS
# =====================================================

def checksum(content: str, algorithm: str = "sha256") -> str:
    """Compute the checksum of a document's text."""
    if algorithm not in SUPPORTED_ALGORITHMS:
        raise GuardError(f"Unsupported checksum algorithm: {algorithm}")
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def is_archive_name(name: str) -> bool:
    return Path(name).name.startswith("archive-") and name.endswith(".md")


def archived_task_ids(content: str) -> List[Optional[str]]:
    """Top-level task ids of a document, in order.

    A heading without a marker, or whose id appears more than once in the
    document, gives ``None``: loading renames such ids, so they cannot be
    tracked across a rewrite.
    """
    lines = [classify_line(raw) for raw in content.split("\n")]
    counts = Counter(
        line.object_id
        for line in lines
        if line.kind in (LineKind.HEADING, LineKind.CHECKBOX) and line.object_id
    )
    in_tasks = False
    ids: List[Optional[str]] = []
    for line in lines:
        if line.kind is LineKind.HABITS_HEADER:
            in_tasks = False
        elif line.kind is LineKind.TASKS_HEADER:
            in_tasks = True
        elif in_tasks and line.kind is LineKind.HEADING:
            ids.append(line.object_id if line.object_id and counts[line.object_id] == 1 else None)
    return ids


# =====================================================
# CORE GUARD FUNCTION
# =====================================================

def validate_append_only(name: str, old_content: Optional[str], new_content: str) -> int:
    """Compare old vs new content and enforce the append-only rule.

    Every top-level task of the old document must still lead the new one, in
    the same order.  Returns the number of appended tasks.  A missing old
    document always passes.
    """
    new_ids = archived_task_ids(new_content)
    if old_content is None:
        return len(new_ids)

    old_ids = archived_task_ids(old_content)
    delta = len(new_ids) - len(old_ids)
    stamp = datetime.now(timezone.utc).isoformat()

    if delta < 0:
        raise GuardError(
            f"Detected task loss in {name}: "
            f"original task count {len(old_ids)}, new task count {len(new_ids)} "
            f"(delta {delta}) at {stamp}"
        )
    for position, (old_id, new_id) in enumerate(zip(old_ids, new_ids), start=1):
        if old_id is not None and old_id != new_id:
            raise GuardError(
                f"Archived task {old_id} in {name} is missing or moved "
                f"(position {position} now holds {new_id}) at {stamp}"
            )

    if checksum(old_content) == checksum(new_content):
        info_log(f"No content change for {name}.")
    else:
        info_log(f"Integrity check passed for {name}: {delta} tasks appended.")
    return delta


# =====================================================
# ENTRY POINT
# =====================================================

def main(argv: Optional[Sequence[str]] = None) -> int:
    args = list(sys.argv[1:] if argv is None else argv)
    if len(args) != 2:
        print("Usage: keeper_guard.py <old-file> <new-file>", file=sys.stderr)
        return 1
    old_path, new_path = Path(args[0]), Path(args[1])
    old_content = old_path.read_text(encoding="utf-8") if old_path.exists() else None
    new_content = new_path.read_text(encoding="utf-8")
    try:
        validate_append_only(new_path.name, old_content, new_content)
    except GuardError as exc:
        print(f"HALT: {exc}", file=sys.stderr)
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
