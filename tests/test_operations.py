from datetime import date

import pytest

import keeper_operations as ops
from keeper_model import AppState, Habit, Note, Task, find_task


def _state():
    return AppState(
        habits=[Habit(id="h1", text="Drink water", repeat_interval_hours=4), Habit(id="h2", text="Read")],
        tasks=[
            Task(
                id="t1",
                text="Garden",
                children=[Task(id="t2", text="Dig beds", children=[Task(id="t3", text="Buy spade")])],
            ),
            Task(id="t4", text="Buy milk", notes=[Note("oat", "2025-01-01T00:00:00Z")]),
        ],
    )


def test_clean_text():
    assert ops.clean_text("  two   words\n") == "two words"
    assert ops.clean_text(None) == ""


def test_add_task_and_subtask():
    state, task = ops.add_task(_state(), "  New   thing ")
    assert task.text == "New thing"
    assert state.tasks[-1] == task
    state, sub = ops.add_subtask(state, "Water", parent_text="garden")
    assert find_task(state.tasks, "t1").children[-1] == sub


def test_add_task_requires_text():
    with pytest.raises(ops.OperationError, match="--text is required"):
        ops.add_task(_state(), "   ")


def test_operations_do_not_mutate_input():
    state = _state()
    ops.complete_task(state, "t3")
    ops.add_task(state, "x")
    ops.complete_habit(state, "h1")
    assert state == _state()


def test_complete_and_uncomplete():
    state = ops.complete_task(_state(), "t3")
    task = find_task(state.tasks, "t3")
    assert task.completed is True
    assert task.completed_at == date.today().isoformat()
    with pytest.raises(ops.OperationError):
        ops.complete_task(state, "t3")
    state = ops.uncomplete_task(state, text="spade")
    task = find_task(state.tasks, "t3")
    assert (task.completed, task.completed_at) == (False, None)
    with pytest.raises(ops.OperationError):
        ops.uncomplete_task(state, "t3")


def test_text_lookup_prefers_exact_then_refuses_ambiguity():
    state, _ = ops.add_task(_state(), "Buy")
    assert ops.resolve_task(state, text="buy").text == "Buy"
    with pytest.raises(ops.OperationError, match="Multiple tasks match"):
        ops.resolve_task(state, text="Buy ")  # exact miss, two substring hits
    with pytest.raises(ops.OperationError, match="Task not found"):
        ops.resolve_task(state, text="nothing like it")
    with pytest.raises(ops.OperationError, match="Must provide"):
        ops.resolve_task(state)


def test_edit_and_delete_nested():
    state = ops.edit_task(_state(), "Dig two beds", "t2")
    assert find_task(state.tasks, "t2").text == "Dig two beds"
    state = ops.delete_task(state, "t2")
    assert find_task(state.tasks, "t2") is None
    assert find_task(state.tasks, "t3") is None
    assert find_task(state.tasks, "t1").children == []


def test_move_task():
    state = ops.move_task(_state(), "t3", root=True)
    assert [t.id for t in state.tasks] == ["t1", "t4", "t3"]
    state = ops.move_task(state, "t3", parent_id="t4")
    assert [c.id for c in find_task(state.tasks, "t4").children] == ["t3"]
    with pytest.raises(ops.OperationError, match="under itself"):
        ops.move_task(_state(), "t1", parent_id="t3")
    with pytest.raises(ops.OperationError, match="Parent task not found"):
        ops.move_task(_state(), "t3", parent_id="nope")
    with pytest.raises(ops.OperationError, match="--parent-id or --root"):
        ops.move_task(_state(), "t3")


def test_task_notes():
    state = ops.add_task_note(_state(), "second", "t4")
    notes = find_task(state.tasks, "t4").notes
    assert [n.text for n in notes] == ["oat", "second"]
    assert notes[-1].created_at.endswith("Z")
    state = ops.edit_task_note(state, "oat", "soy", "t4")
    assert [n.text for n in find_task(state.tasks, "t4").notes] == ["soy", "second"]
    assert find_task(state.tasks, "t4").notes[0].created_at == "2025-01-01T00:00:00Z"
    state = ops.delete_task_note(state, "soy", "t4")
    assert [n.text for n in find_task(state.tasks, "t4").notes] == ["second"]
    with pytest.raises(ops.OperationError, match="Note not found"):
        ops.delete_task_note(state, "soy", "t4")


def test_habits():
    state, habit = ops.add_habit(_state(), "Stretch", 6)
    assert habit.repeat_interval_hours == 6
    state, default = ops.add_habit(state, "Nap")
    assert default.repeat_interval_hours == 24
    with pytest.raises(ops.OperationError, match="positive"):
        ops.add_habit(state, "Never", 0)

    state = ops.edit_habit(state, text="stretch", new_text="Stretch long", interval=8)
    edited = ops.resolve_habit(state, habit.id)
    assert (edited.text, edited.repeat_interval_hours) == ("Stretch long", 8)

    state = ops.complete_habit(state, "h1")
    done = ops.resolve_habit(state, "h1")
    assert done.total_completions == 1
    assert done.last_completed.endswith("Z")
    assert done.forced_available is False

    state = ops.wake_habit(state, "h1")
    assert ops.resolve_habit(state, "h1").forced_available is True

    state = ops.delete_habit(state, text="Read")
    assert [h.id for h in ops.list_habits(state)] == ["h1", habit.id, default.id]


def test_habit_notes():
    state = ops.add_habit_note(_state(), "felt good", "h2")
    state = ops.edit_habit_note(state, "felt good", "felt great", "h2")
    assert [n.text for n in ops.resolve_habit(state, "h2").notes] == ["felt great"]
    state = ops.delete_habit_note(state, "felt great", text="read")
    assert ops.resolve_habit(state, "h2").notes == []


def test_missing_habit():
    with pytest.raises(ops.OperationError, match="Habit not found"):
        ops.resolve_habit(_state(), "zz")


def test_notes_with_inner_whitespace_can_be_found():
    state = AppState(
        habits=[Habit(id="h1", text="Walk", notes=[Note("ten\tminutes", "")])],
        tasks=[Task(id="t1", text="Pack", notes=[Note("two  socks", "")])],
    )
    state = ops.edit_task_note(state, " two  socks ", "three socks", "t1")
    assert [n.text for n in find_task(state.tasks, "t1").notes] == ["three socks"]
    state = ops.delete_habit_note(state, "ten\tminutes", "h1")
    assert ops.resolve_habit(state, "h1").notes == []
    with pytest.raises(ops.OperationError, match="Note not found"):
        ops.delete_task_note(state, "three  socks", "t1")
