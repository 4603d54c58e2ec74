"""Identity healing: every habit and task id in a document must be unique."""
from __future__ import annotations

from dataclasses import replace
from typing import Set

from keeper_model import AppState, Habit, Task, all_ids, generate_id


def claim_id(object_id: str, seen: Set[str], reserved: Set[str]) -> str:
    """Record ``object_id`` as seen, or a fresh id if it is empty or taken.

    Fresh ids avoid ``reserved`` (every id present in the input) so a
    replacement never steals an id that a later node legitimately owns.
    """
    if not object_id or object_id in seen:
        object_id = generate_id(seen | reserved)
    seen.add(object_id)
    return object_id


def heal_habit(habit: Habit, seen: Set[str], reserved: Set[str]) -> Habit:
    return replace(habit, id=claim_id(habit.id, seen, reserved), notes=list(habit.notes))


def heal_task(task: Task, seen: Set[str], reserved: Set[str]) -> Task:
    # Parent first, then children, so ids are claimed in document order.
    task_id = claim_id(task.id, seen, reserved)
    children = [heal_task(child, seen, reserved) for child in task.children]
    return replace(task, id=task_id, notes=list(task.notes), children=children)


def heal(state: AppState) -> AppState:
    """Return a copy of ``state`` with empty and duplicate ids replaced.

    Habits are visited before tasks, tasks depth-first, with a single seen-set
    across both.  The first occurrence of an id keeps it; later occurrences
    are rewritten.  Clean input comes back with identical ids.
    """
    seen: Set[str] = set()
    reserved = set(all_ids(state))
    habits = [heal_habit(habit, seen, reserved) for habit in state.habits]
    tasks = [heal_task(task, seen, reserved) for task in state.tasks]
    return AppState(habits=habits, tasks=tasks)
