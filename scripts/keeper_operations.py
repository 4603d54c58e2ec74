"""Task and habit edits over an ``AppState``.

Every operation returns new state objects and leaves its input untouched.
Lookups accept either an id or a text query; text queries try an exact
(case-insensitive) match first and then a substring match, and refuse to
guess when more than one entity matches.
"""
from __future__ import annotations

import re
from dataclasses import replace
from datetime import date, datetime, timezone
from typing import Callable, List, Optional, Sequence, Tuple, TypeVar

from keeper_model import (
    DEFAULT_INTERVAL_HOURS,
    AppState,
    Habit,
    Note,
    Task,
    all_ids,
    collect_tasks,
    find_task,
    generate_id,
)


class OperationError(ValueError):
    """Raised for lookups that fail and arguments that make no sense."""


T = TypeVar("T", Habit, Task)


def clean_text(text: Optional[str]) -> str:
    return re.sub(r"\s+", " ", text or "").strip()


def today() -> str:
    return date.today().isoformat()


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _require(value: Optional[str], flag: str) -> str:
    value = clean_text(value)
    if not value:
        raise OperationError(f"{flag} is required")
    return value


def _note_query(value: Optional[str], flag: str) -> str:
    """Existing note text to look up; inner whitespace is kept as stored."""
    _require(value, flag)
    return value.strip()


def _pick(candidates: Sequence[T], text: str, kind: str) -> Optional[T]:
    lower = text.lower()
    for matches in (
        [c for c in candidates if c.text.lower() == lower],
        [c for c in candidates if lower in c.text.lower()],
    ):
        if len(matches) == 1:
            return matches[0]
        if len(matches) > 1:
            listed = ", ".join(f'"{m.text}"' for m in matches)
            raise OperationError(f'Multiple {kind}s match "{text}": {listed}. Be more specific.')
    return None


# =====================================================
# TASK TREE HELPERS
# =====================================================

def find_task_by_text(tasks: Sequence[Task], text: str) -> Optional[Task]:
    return _pick(collect_tasks(tasks, lambda _: True), text, "task")


def update_task_in_tree(tasks: Sequence[Task], task_id: str, updater: Callable[[Task], Task]) -> List[Task]:
    updated: List[Task] = []
    for task in tasks:
        if task.id == task_id:
            updated.append(updater(task))
        else:
            updated.append(replace(task, children=update_task_in_tree(task.children, task_id, updater)))
    return updated


def remove_task_from_tree(tasks: Sequence[Task], task_id: str) -> List[Task]:
    return [
        replace(task, children=remove_task_from_tree(task.children, task_id))
        for task in tasks
        if task.id != task_id
    ]


def resolve_task(state: AppState, task_id: Optional[str] = None, text: Optional[str] = None) -> Task:
    if task_id:
        task = find_task(state.tasks, task_id)
        if task is None:
            raise OperationError(f"Task not found: {task_id}")
        return task
    if text:
        task = find_task_by_text(state.tasks, text)
        if task is None:
            raise OperationError(f"Task not found: {text}")
        return task
    raise OperationError("Must provide --id or --text")


def _new_task(state: AppState, text: str) -> Task:
    return Task(id=generate_id(set(all_ids(state))), text=text)


# =====================================================
# TASK OPERATIONS
# =====================================================

def list_tasks(state: AppState) -> List[Task]:
    return state.tasks


def add_task(state: AppState, text: str) -> Tuple[AppState, Task]:
    task = _new_task(state, _require(text, "--text"))
    return replace(state, tasks=state.tasks + [task]), task


def add_subtask(
    state: AppState, text: str, parent_id: Optional[str] = None, parent_text: Optional[str] = None
) -> Tuple[AppState, Task]:
    text = _require(text, "--text")
    parent = resolve_task(state, parent_id, parent_text)
    task = _new_task(state, text)
    tasks = update_task_in_tree(
        state.tasks, parent.id, lambda t: replace(t, children=t.children + [task])
    )
    return replace(state, tasks=tasks), task


def complete_task(state: AppState, task_id: Optional[str] = None, text: Optional[str] = None) -> AppState:
    task = resolve_task(state, task_id, text)
    if task.completed:
        raise OperationError("Task is already completed")
    tasks = update_task_in_tree(
        state.tasks, task.id, lambda t: replace(t, completed=True, completed_at=today())
    )
    return replace(state, tasks=tasks)


def uncomplete_task(state: AppState, task_id: Optional[str] = None, text: Optional[str] = None) -> AppState:
    task = resolve_task(state, task_id, text)
    if not task.completed:
        raise OperationError("Task is not completed")
    tasks = update_task_in_tree(
        state.tasks, task.id, lambda t: replace(t, completed=False, completed_at=None)
    )
    return replace(state, tasks=tasks)


def edit_task(
    state: AppState, new_text: str, task_id: Optional[str] = None, text: Optional[str] = None
) -> AppState:
    new_text = _require(new_text, "--new-text")
    task = resolve_task(state, task_id, text)
    tasks = update_task_in_tree(state.tasks, task.id, lambda t: replace(t, text=new_text))
    return replace(state, tasks=tasks)


def delete_task(state: AppState, task_id: Optional[str] = None, text: Optional[str] = None) -> AppState:
    task = resolve_task(state, task_id, text)
    return replace(state, tasks=remove_task_from_tree(state.tasks, task.id))


def move_task(
    state: AppState,
    task_id: Optional[str] = None,
    text: Optional[str] = None,
    parent_id: Optional[str] = None,
    root: bool = False,
) -> AppState:
    task = resolve_task(state, task_id, text)
    if root:
        remaining = remove_task_from_tree(state.tasks, task.id)
        return replace(state, tasks=remaining + [task])
    if not parent_id:
        raise OperationError("Must provide --parent-id or --root")
    if parent_id == task.id or find_task(task.children, parent_id) is not None:
        raise OperationError("Cannot move task under itself")
    remaining = remove_task_from_tree(state.tasks, task.id)
    if find_task(remaining, parent_id) is None:
        raise OperationError(f"Parent task not found: {parent_id}")
    tasks = update_task_in_tree(
        remaining, parent_id, lambda t: replace(t, children=t.children + [task])
    )
    return replace(state, tasks=tasks)


def _note_index(notes: Sequence[Note], note_text: str) -> int:
    for index, note in enumerate(notes):
        if note.text == note_text:
            return index
    raise OperationError(f"Note not found: {note_text}")


def add_task_note(
    state: AppState, note_text: str, task_id: Optional[str] = None, text: Optional[str] = None
) -> AppState:
    note = Note(text=_require(note_text, "--note"), created_at=utc_now())
    task = resolve_task(state, task_id, text)
    tasks = update_task_in_tree(state.tasks, task.id, lambda t: replace(t, notes=t.notes + [note]))
    return replace(state, tasks=tasks)


def edit_task_note(
    state: AppState,
    old_note: str,
    new_note: str,
    task_id: Optional[str] = None,
    text: Optional[str] = None,
) -> AppState:
    old_note = _note_query(old_note, "--note")
    new_note = _require(new_note, "--new-note")
    task = resolve_task(state, task_id, text)
    index = _note_index(task.notes, old_note)

    def _edit(t: Task) -> Task:
        notes = list(t.notes)
        notes[index] = replace(notes[index], text=new_note)
        return replace(t, notes=notes)

    return replace(state, tasks=update_task_in_tree(state.tasks, task.id, _edit))


def delete_task_note(
    state: AppState, note_text: str, task_id: Optional[str] = None, text: Optional[str] = None
) -> AppState:
    note_text = _note_query(note_text, "--note")
    task = resolve_task(state, task_id, text)
    index = _note_index(task.notes, note_text)
    tasks = update_task_in_tree(
        state.tasks, task.id, lambda t: replace(t, notes=[n for i, n in enumerate(t.notes) if i != index])
    )
    return replace(state, tasks=tasks)


# =====================================================
# HABIT OPERATIONS
# =====================================================

def resolve_habit(state: AppState, habit_id: Optional[str] = None, text: Optional[str] = None) -> Habit:
    if habit_id:
        for habit in state.habits:
            if habit.id == habit_id:
                return habit
        raise OperationError(f"Habit not found: {habit_id}")
    if text:
        habit = _pick(state.habits, text, "habit")
        if habit is None:
            raise OperationError(f"Habit not found: {text}")
        return habit
    raise OperationError("Must provide --id or --text")


def _update_habit(state: AppState, habit_id: str, updater: Callable[[Habit], Habit]) -> AppState:
    habits = [updater(h) if h.id == habit_id else h for h in state.habits]
    return replace(state, habits=habits)


def list_habits(state: AppState) -> List[Habit]:
    return state.habits


def add_habit(state: AppState, text: str, interval: Optional[float] = None) -> Tuple[AppState, Habit]:
    text = _require(text, "--text")
    if interval is not None and interval <= 0:
        raise OperationError("--interval must be positive")
    habit = Habit(
        id=generate_id(set(all_ids(state))),
        text=text,
        repeat_interval_hours=interval or DEFAULT_INTERVAL_HOURS,
    )
    return replace(state, habits=state.habits + [habit]), habit


def edit_habit(
    state: AppState,
    habit_id: Optional[str] = None,
    text: Optional[str] = None,
    new_text: Optional[str] = None,
    interval: Optional[float] = None,
) -> AppState:
    habit = resolve_habit(state, habit_id, text)
    if interval is not None and interval <= 0:
        raise OperationError("--interval must be positive")
    changes = {}
    if new_text is not None:
        changes["text"] = _require(new_text, "--new-text")
    if interval is not None:
        changes["repeat_interval_hours"] = interval
    return _update_habit(state, habit.id, lambda h: replace(h, **changes))


def delete_habit(state: AppState, habit_id: Optional[str] = None, text: Optional[str] = None) -> AppState:
    habit = resolve_habit(state, habit_id, text)
    return replace(state, habits=[h for h in state.habits if h.id != habit.id])


def complete_habit(state: AppState, habit_id: Optional[str] = None, text: Optional[str] = None) -> AppState:
    habit = resolve_habit(state, habit_id, text)
    return _update_habit(
        state,
        habit.id,
        lambda h: replace(
            h,
            last_completed=utc_now(),
            total_completions=h.total_completions + 1,
            forced_available=False,
        ),
    )


def wake_habit(state: AppState, habit_id: Optional[str] = None, text: Optional[str] = None) -> AppState:
    habit = resolve_habit(state, habit_id, text)
    return _update_habit(state, habit.id, lambda h: replace(h, forced_available=True))


def add_habit_note(
    state: AppState, note_text: str, habit_id: Optional[str] = None, text: Optional[str] = None
) -> AppState:
    note = Note(text=_require(note_text, "--note"), created_at=utc_now())
    habit = resolve_habit(state, habit_id, text)
    return _update_habit(state, habit.id, lambda h: replace(h, notes=h.notes + [note]))


def edit_habit_note(
    state: AppState,
    old_note: str,
    new_note: str,
    habit_id: Optional[str] = None,
    text: Optional[str] = None,
) -> AppState:
    old_note = _note_query(old_note, "--note")
    new_note = _require(new_note, "--new-note")
    habit = resolve_habit(state, habit_id, text)
    index = _note_index(habit.notes, old_note)

    def _edit(h: Habit) -> Habit:
        notes = list(h.notes)
        notes[index] = replace(notes[index], text=new_note)
        return replace(h, notes=notes)

    return _update_habit(state, habit.id, _edit)


def delete_habit_note(
    state: AppState, note_text: str, habit_id: Optional[str] = None, text: Optional[str] = None
) -> AppState:
    note_text = _note_query(note_text, "--note")
    habit = resolve_habit(state, habit_id, text)
    index = _note_index(habit.notes, note_text)
    return _update_habit(
        state, habit.id, lambda h: replace(h, notes=[n for i, n in enumerate(h.notes) if i != index])
    )
