"""Monthly archival of completed tasks.

Tasks completed in an earlier month leave the live document together with
their whole subtree and land in that month's archive document.  The decision
is made per node from the node's own completion date: an incomplete or
current-month parent stays live while its older completed children move out.
"""
from __future__ import annotations

from collections import OrderedDict
from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from keeper_config import ARCHIVE_PREFIX, info_log
from keeper_guard import validate_append_only
from keeper_markdown import load_document, serialize_tasks_only
from keeper_model import AppState, Task

Buckets = Dict[str, List[Task]]


def current_month(now: Optional[datetime] = None) -> str:
    now = now or datetime.now()
    return now.strftime("%Y-%m")


def archive_name(month: str) -> str:
    return f"{ARCHIVE_PREFIX}{month}.md"


def completion_month(task: Task) -> Optional[str]:
    if not task.completed or not task.completed_at:
        return None
    month = task.completed_at[:7]
    if len(month) != 7 or month[4] != "-":
        return None
    return month


def _filter_task(task: Task, month: str, buckets: Buckets) -> Optional[Task]:
    done_month = completion_month(task)
    if done_month is not None and done_month != month:
        buckets.setdefault(done_month, []).append(task)
        return None
    children = [
        kept
        for kept in (_filter_task(child, month, buckets) for child in task.children)
        if kept is not None
    ]
    if len(children) == len(task.children):
        return task
    return replace(task, children=children)


def partition_tasks(tasks: Sequence[Task], month: str) -> Tuple[List[Task], Buckets]:
    """Split a forest into live tasks and per-month extracted subtrees.

    Bucket keys keep first-seen order; tasks inside a bucket keep document
    order.
    """
    buckets: Buckets = OrderedDict()
    kept = [
        task
        for task in (_filter_task(task, month, buckets) for task in tasks)
        if task is not None
    ]
    return kept, buckets


def merge_archive(existing_text: Optional[str], extracted: Sequence[Task]) -> str:
    existing: List[Task] = load_document(existing_text).tasks if existing_text else []
    return serialize_tasks_only(existing + list(extracted))


def archive(state: AppState, storage, now: Optional[datetime] = None, guard: bool = True) -> AppState:
    """Move prior-month completions into archive documents held by ``storage``.

    ``storage`` is anything with ``read_document`` / ``write_document``.
    Every merged document is built (and checked by the append-only guard)
    before the first write, so a refused archive leaves nothing half-written.
    Returns the live state; habits pass through untouched.
    """
    month = current_month(now)
    kept, buckets = partition_tasks(state.tasks, month)
    pending: List[Tuple[str, str, int]] = []
    for bucket_month, extracted in buckets.items():
        if not extracted:
            continue
        name = archive_name(bucket_month)
        existing = storage.read_document(name)
        merged = merge_archive(existing, extracted)
        if guard:
            validate_append_only(name, existing, merged)
        pending.append((name, merged, len(extracted)))
    for name, merged, count in pending:
        storage.write_document(name, merged)
        info_log(f"Archived {count} tasks to {name}")
    return AppState(habits=state.habits, tasks=kept)
