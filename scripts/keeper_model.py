"""In-memory shapes for the Keeper document: notes, habits, tasks, and state."""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Set

DEFAULT_INTERVAL_HOURS = 24
ID_LENGTH = 9


def generate_id(taken: Optional[Set[str]] = None) -> str:
    while True:
        candidate = uuid.uuid4().hex[:ID_LENGTH]
        if not taken or candidate not in taken:
            return candidate


@dataclass
class Note:
    text: str
    created_at: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Note":
        return cls(
            text=str(data.get("text", "")),
            created_at=str(data.get("createdAt") or ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"text": self.text, "createdAt": self.created_at}


@dataclass
class Habit:
    id: str
    text: str
    repeat_interval_hours: float = DEFAULT_INTERVAL_HOURS
    last_completed: Optional[str] = None
    total_completions: int = 0
    notes: List[Note] = field(default_factory=list)
    # Not persisted in the document.
    forced_available: Optional[bool] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Habit":
        return cls(
            id=str(data.get("id", "")),
            text=str(data.get("text", "")),
            repeat_interval_hours=data.get("repeatIntervalHours") or DEFAULT_INTERVAL_HOURS,
            last_completed=data.get("lastCompleted"),
            total_completions=int(data.get("totalCompletions") or 0),
            notes=[Note.from_dict(n) for n in data.get("notes") or []],
            forced_available=data.get("forcedAvailable"),
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "text": self.text,
            "repeatIntervalHours": self.repeat_interval_hours,
            "lastCompleted": self.last_completed,
            "totalCompletions": self.total_completions,
            "notes": [note.to_dict() for note in self.notes],
        }
        if self.forced_available is not None:
            data["forcedAvailable"] = self.forced_available
        return data


@dataclass
class Task:
    id: str
    text: str
    completed: bool = False
    completed_at: Optional[str] = None
    notes: List[Note] = field(default_factory=list)
    children: List["Task"] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        return cls(
            id=str(data.get("id", "")),
            text=str(data.get("text", "")),
            completed=bool(data.get("completed", False)),
            completed_at=data.get("completedAt"),
            notes=[Note.from_dict(n) for n in data.get("notes") or []],
            children=[Task.from_dict(c) for c in data.get("children") or []],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "completed": self.completed,
            "completedAt": self.completed_at,
            "notes": [note.to_dict() for note in self.notes],
            "children": [child.to_dict() for child in self.children],
        }


@dataclass
class AppState:
    habits: List[Habit] = field(default_factory=list)
    tasks: List[Task] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AppState":
        return cls(
            habits=[Habit.from_dict(h) for h in data.get("habits") or []],
            tasks=[Task.from_dict(t) for t in data.get("tasks") or []],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "habits": [habit.to_dict() for habit in self.habits],
            "tasks": [task.to_dict() for task in self.tasks],
        }


def iter_tasks(tasks: Iterable[Task]) -> Iterator[Task]:
    """Yield every task of a forest in document order (depth-first)."""
    for task in tasks:
        yield task
        yield from iter_tasks(task.children)


def all_ids(state: AppState) -> List[str]:
    ids = [habit.id for habit in state.habits]
    ids.extend(task.id for task in iter_tasks(state.tasks))
    return ids


def find_task(tasks: Iterable[Task], task_id: str) -> Optional[Task]:
    for task in iter_tasks(tasks):
        if task.id == task_id:
            return task
    return None


def collect_tasks(tasks: Iterable[Task], predicate: Callable[[Task], bool]) -> List[Task]:
    return [task for task in iter_tasks(tasks) if predicate(task)]


def tree_depth(task: Task) -> int:
    if not task.children:
        return 1
    return 1 + max(tree_depth(child) for child in task.children)
