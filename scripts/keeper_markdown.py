"""Canonical Markdown encoding of a Keeper document.

``serialize`` writes an ``AppState`` as the canonical text form and ``parse``
reads any text back into an ``AppState``.  The parser is a single forward scan:
every line is classified once into a ``LineKind`` and the scan state (current
section, in-progress habit, stack of open tasks) decides what the line means.
Tasks are collected in a flat arena and linked by index; the nested ``Task``
tree is only built once the whole document has been read.

The parser never rejects input.  Lines it cannot classify are ignored,
duplicated identity markers resolve to the last one, and missing markers get a
freshly generated id.  ``load_document`` adds the identity healing pass.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Sequence, Set, Tuple

from keeper_heal import heal
from keeper_model import (
    DEFAULT_INTERVAL_HOURS,
    AppState,
    Habit,
    Note,
    Task,
    generate_id,
)

HABITS_HEADER = "# Habits"
TASKS_HEADER = "# Tasks"
SECTION_RULE = "---"
INDENT = "  "
NEVER = "never"

ID_MARKER_PATTERN = re.compile(r"<!--\s*id:\s*(\w+)\s*-->")
ID_MARKER_STRIP_PATTERN = re.compile(r"\s*<!--\s*id:\s*\w+\s*-->")
HEADING_PATTERN = re.compile(r"^##(?:[ \t]+(?P<rest>.*))?$")
ATTRIBUTE_PATTERN = re.compile(
    r"^- (?P<key>Interval|Total Completions|Streak|Last completed|Status|Reflections):\s*(?P<value>.*)$"
)
CHECKBOX_PATTERN = re.compile(r"^(?P<indent>[ \t]*)- \[(?P<mark>[ xX])\](?:[ \t]+(?P<body>.*))?$")
CHECKBOX_BODY_PATTERN = re.compile(
    r"^(?P<text>.*?)(?:(?:^|\s+)\((?P<date>\d{4}-\d{2}-\d{2})\))?$"
)
STATUS_DATE_PATTERN = re.compile(r"\((\d{4}-\d{2}-\d{2})\)")
NOTE_PATTERN = re.compile(r"^[ \t]*\|(?: (?P<body>.*))?$")
NOTE_BODY_PATTERN = re.compile(r"^\[(?P<stamp>[^\]]*)\](?:\s+(?P<text>.*))?$")
QUOTE_PATTERN = re.compile(r"^[ \t]*>(?: (?P<body>.*))?$")
LEGACY_REFLECTION_PATTERN = re.compile(r"^[ \t]+- (?P<body>.*)$")
NUMBER_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)")


# =====================================================
# SERIALIZER
# =====================================================

def id_marker(object_id: str) -> str:
    return f"<!-- id:{object_id} -->"


def format_number(value: float) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def note_lines(notes: Sequence[Note], indent: str = "") -> List[str]:
    return [f"{indent}| [{note.created_at}] {note.text}" for note in notes]


def habit_lines(habit: Habit) -> List[str]:
    lines = [
        f"## {habit.text} {id_marker(habit.id)}",
        f"- Interval: {format_number(habit.repeat_interval_hours)}h",
        f"- Total Completions: {habit.total_completions}",
        f"- Last completed: {habit.last_completed or NEVER}",
    ]
    lines.extend(note_lines(habit.notes))
    return lines


def subtask_lines(task: Task, depth: int) -> List[str]:
    indent = INDENT * depth
    checkbox = "[x]" if task.completed else "[ ]"
    completed_date = f" ({task.completed_at})" if task.completed_at else ""
    lines = [f"{indent}- {checkbox} {task.text}{completed_date} {id_marker(task.id)}"]
    lines.extend(note_lines(task.notes, indent + INDENT))
    for child in task.children:
        lines.extend(subtask_lines(child, depth + 1))
    return lines


def task_lines(task: Task) -> List[str]:
    lines = [f"## {task.text} {id_marker(task.id)}"]
    if task.completed:
        completed_date = f" ({task.completed_at})" if task.completed_at else ""
        lines.append(f"- Status: completed{completed_date}")
    lines.extend(note_lines(task.notes))
    for child in task.children:
        lines.extend(subtask_lines(child, 0))
    return lines


def serialize(state: AppState) -> str:
    lines: List[str] = [HABITS_HEADER, ""]
    for habit in state.habits:
        lines.extend(habit_lines(habit))
        lines.append("")
    lines.extend([SECTION_RULE, "", TASKS_HEADER, ""])
    for index, task in enumerate(state.tasks):
        if index:
            lines.append("")
        lines.extend(task_lines(task))
    return "\n".join(lines) + "\n"


def serialize_tasks_only(tasks: Sequence[Task]) -> str:
    return serialize(AppState(habits=[], tasks=list(tasks)))


# =====================================================
# LINE CLASSIFIER
# =====================================================

class LineKind(Enum):
    BLANK = "blank"
    RULE = "rule"
    HABITS_HEADER = "habits_header"
    TASKS_HEADER = "tasks_header"
    HEADING = "heading"
    INTERVAL = "interval"
    TOTAL_COMPLETIONS = "total_completions"
    STREAK = "streak"
    LAST_COMPLETED = "last_completed"
    STATUS = "status"
    REFLECTIONS_HEADER = "reflections_header"
    CHECKBOX = "checkbox"
    NOTE = "note"
    QUOTE = "quote"
    LEGACY_REFLECTION = "legacy_reflection"
    UNKNOWN = "unknown"


ATTRIBUTE_KINDS: Dict[str, LineKind] = {
    "Interval": LineKind.INTERVAL,
    "Total Completions": LineKind.TOTAL_COMPLETIONS,
    "Streak": LineKind.STREAK,
    "Last completed": LineKind.LAST_COMPLETED,
    "Status": LineKind.STATUS,
    "Reflections": LineKind.REFLECTIONS_HEADER,
}


@dataclass(frozen=True)
class ClassifiedLine:
    kind: LineKind
    text: str = ""
    object_id: Optional[str] = None
    depth: int = 0
    completed: bool = False
    completed_at: Optional[str] = None


def extract_id(raw: str) -> Tuple[str, Optional[str]]:
    """Return ``(clean_text, last_id)`` with every identity marker removed."""
    found = ID_MARKER_PATTERN.findall(raw)
    clean = ID_MARKER_STRIP_PATTERN.sub("", raw).strip()
    return clean, (found[-1] if found else None)


def indent_depth(indent: str) -> int:
    return len(indent.replace("\t", INDENT)) // len(INDENT)


def classify_line(raw_line: str) -> ClassifiedLine:
    line = raw_line.rstrip("\r\n").rstrip()
    stripped = line.strip()
    if not stripped:
        return ClassifiedLine(LineKind.BLANK)
    if stripped == SECTION_RULE:
        return ClassifiedLine(LineKind.RULE)
    if line == HABITS_HEADER:
        return ClassifiedLine(LineKind.HABITS_HEADER)
    if line == TASKS_HEADER:
        return ClassifiedLine(LineKind.TASKS_HEADER)

    heading = HEADING_PATTERN.match(line)
    if heading:
        text, object_id = extract_id(heading.group("rest") or "")
        return ClassifiedLine(LineKind.HEADING, text=text, object_id=object_id)

    attribute = ATTRIBUTE_PATTERN.match(line)
    if attribute:
        kind = ATTRIBUTE_KINDS[attribute.group("key")]
        value = attribute.group("value").strip()
        if kind is LineKind.STATUS:
            if not value.lower().startswith("completed"):
                return ClassifiedLine(LineKind.UNKNOWN, text=value)
            date_match = STATUS_DATE_PATTERN.search(value)
            return ClassifiedLine(
                LineKind.STATUS,
                text=value,
                completed=True,
                completed_at=date_match.group(1) if date_match else None,
            )
        return ClassifiedLine(kind, text=value)

    checkbox = CHECKBOX_PATTERN.match(ID_MARKER_STRIP_PATTERN.sub("", line).rstrip())
    if checkbox:
        _, checkbox_id = extract_id(line)
        body = CHECKBOX_BODY_PATTERN.match((checkbox.group("body") or "").strip())
        return ClassifiedLine(
            LineKind.CHECKBOX,
            text=body.group("text").strip() if body else "",
            object_id=checkbox_id,
            depth=indent_depth(checkbox.group("indent")),
            completed=checkbox.group("mark").lower() == "x",
            completed_at=body.group("date") if body else None,
        )

    note = NOTE_PATTERN.match(line)
    if note:
        return ClassifiedLine(LineKind.NOTE, text=(note.group("body") or "").strip())
    quote = QUOTE_PATTERN.match(line)
    if quote:
        return ClassifiedLine(LineKind.QUOTE, text=(quote.group("body") or "").strip())
    reflection = LEGACY_REFLECTION_PATTERN.match(line)
    if reflection:
        return ClassifiedLine(LineKind.LEGACY_REFLECTION, text=reflection.group("body").strip())
    return ClassifiedLine(LineKind.UNKNOWN, text=stripped)


# =====================================================
# FIELD PARSERS
# =====================================================

def is_timestamp(value: str) -> bool:
    if not value:
        return False
    try:
        datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return False
    return True


def parse_note(body: str) -> Note:
    match = NOTE_BODY_PATTERN.match(body)
    if not match:
        return Note(text=body.strip(), created_at="")
    stamp = match.group("stamp").strip()
    return Note(
        text=(match.group("text") or "").strip(),
        created_at=stamp if is_timestamp(stamp) else "",
    )


def parse_interval(value: str) -> float:
    match = NUMBER_PATTERN.match(value)
    if not match:
        return DEFAULT_INTERVAL_HOURS
    number = float(match.group(1))
    if number <= 0:
        return DEFAULT_INTERVAL_HOURS
    return int(number) if number.is_integer() else number


def parse_count(value: str) -> int:
    match = NUMBER_PATTERN.match(value)
    if not match:
        return 0
    return int(float(match.group(1)))


# =====================================================
# PARSER
# =====================================================

@dataclass
class TaskSlot:
    task: Task
    parent: Optional[int] = None
    children: List[int] = field(default_factory=list)


class DocumentParser:
    def __init__(self) -> None:
        self.section: Optional[str] = None
        self.habits: List[Habit] = []
        self.current_habit: Optional[Habit] = None
        self.arena: List[TaskSlot] = []
        self.roots: List[int] = []
        self.stack: List[int] = []
        self.assigned_ids: Set[str] = set()

    def parse(self, text: str) -> AppState:
        for raw_line in text.split("\n"):
            self.feed(classify_line(raw_line))
        self._flush_habit()
        return AppState(habits=self.habits, tasks=[self._materialize(i) for i in self.roots])

    def feed(self, line: ClassifiedLine) -> None:
        if line.kind is LineKind.HABITS_HEADER:
            self._flush_habit()
            self.section = "habits"
            self.stack = []
            return
        if line.kind is LineKind.TASKS_HEADER:
            self._flush_habit()
            self.section = "tasks"
            self.stack = []
            return
        if line.kind in (LineKind.BLANK, LineKind.RULE, LineKind.UNKNOWN):
            return
        if self.section == "habits":
            self._feed_habit_line(line)
        elif self.section == "tasks":
            self._feed_task_line(line)

    def _resolve_id(self, object_id: Optional[str]) -> str:
        if not object_id:
            object_id = generate_id(self.assigned_ids)
        self.assigned_ids.add(object_id)
        return object_id

    def _flush_habit(self) -> None:
        if self.current_habit is not None:
            self.habits.append(self.current_habit)
            self.current_habit = None

    def _feed_habit_line(self, line: ClassifiedLine) -> None:
        if line.kind is LineKind.HEADING:
            self._flush_habit()
            self.current_habit = Habit(id=self._resolve_id(line.object_id), text=line.text)
            return
        habit = self.current_habit
        if habit is None:
            return
        if line.kind is LineKind.INTERVAL:
            habit.repeat_interval_hours = parse_interval(line.text)
        elif line.kind in (LineKind.TOTAL_COMPLETIONS, LineKind.STREAK):
            habit.total_completions = parse_count(line.text)
        elif line.kind is LineKind.LAST_COMPLETED:
            habit.last_completed = None if line.text in ("", NEVER) else line.text
        elif line.kind is LineKind.NOTE:
            if line.text:
                habit.notes.append(parse_note(line.text))
        elif line.kind in (LineKind.LEGACY_REFLECTION, LineKind.QUOTE):
            if line.text:
                habit.notes.append(Note(text=line.text, created_at=""))

    def _feed_task_line(self, line: ClassifiedLine) -> None:
        if line.kind is LineKind.HEADING:
            index = self._allocate(Task(id=self._resolve_id(line.object_id), text=line.text), None)
            self.roots.append(index)
            self.stack = [index]
            return
        if not self.stack:
            return
        if line.kind is LineKind.STATUS:
            root = self.arena[self.stack[0]].task
            root.completed = True
            root.completed_at = line.completed_at
        elif line.kind is LineKind.CHECKBOX:
            while len(self.stack) > line.depth + 1:
                self.stack.pop()
            task = Task(
                id=self._resolve_id(line.object_id),
                text=line.text,
                completed=line.completed,
                completed_at=line.completed_at,
            )
            self.stack.append(self._allocate(task, self.stack[-1]))
        elif line.kind is LineKind.NOTE:
            if line.text:
                self.arena[self.stack[-1]].task.notes.append(parse_note(line.text))
        elif line.kind is LineKind.QUOTE:
            if line.text:
                self.arena[self.stack[-1]].task.notes.append(Note(text=line.text, created_at=""))

    def _allocate(self, task: Task, parent: Optional[int]) -> int:
        index = len(self.arena)
        self.arena.append(TaskSlot(task=task, parent=parent))
        if parent is not None:
            self.arena[parent].children.append(index)
        return index

    def _materialize(self, index: int) -> Task:
        slot = self.arena[index]
        slot.task.children = [self._materialize(child) for child in slot.children]
        return slot.task


def parse(text: str) -> AppState:
    if not isinstance(text, str):
        raise TypeError(f"parse() expects str, got {type(text).__name__}")
    return DocumentParser().parse(text)


def load_document(text: str) -> AppState:
    return heal(parse(text))
