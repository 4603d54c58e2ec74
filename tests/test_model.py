from keeper_model import (
    ID_LENGTH,
    AppState,
    Habit,
    Note,
    Task,
    all_ids,
    collect_tasks,
    find_task,
    generate_id,
    iter_tasks,
    tree_depth,
)


def _forest():
    return [
        Task(id="t1", text="One", children=[Task(id="t2", text="Two", children=[Task(id="t3", text="Three")])]),
        Task(id="t4", text="Four", completed=True, completed_at="2025-01-01"),
    ]


def test_generate_id_shape_and_avoidance():
    first = generate_id()
    assert len(first) == ID_LENGTH
    assert first.isalnum()
    taken = {generate_id() for _ in range(20)}
    assert generate_id(taken) not in taken


def test_iteration_is_depth_first_document_order():
    assert [t.id for t in iter_tasks(_forest())] == ["t1", "t2", "t3", "t4"]


def test_all_ids_lists_habits_then_tasks():
    state = AppState(habits=[Habit(id="h1", text="Walk")], tasks=_forest())
    assert all_ids(state) == ["h1", "t1", "t2", "t3", "t4"]


def test_find_and_collect():
    forest = _forest()
    assert find_task(forest, "t3").text == "Three"
    assert find_task(forest, "missing") is None
    assert [t.id for t in collect_tasks(forest, lambda t: t.completed)] == ["t4"]


def test_tree_depth():
    forest = _forest()
    assert tree_depth(forest[0]) == 3
    assert tree_depth(forest[1]) == 1


def test_dict_conversion_uses_camel_case():
    habit = Habit(id="h1", text="Walk", repeat_interval_hours=8, notes=[Note("ok", "2025-01-01T00:00:00Z")])
    data = habit.to_dict()
    assert data["repeatIntervalHours"] == 8
    assert data["notes"] == [{"text": "ok", "createdAt": "2025-01-01T00:00:00Z"}]
    assert "forcedAvailable" not in data
    state = AppState(habits=[habit], tasks=_forest())
    assert AppState.from_dict(state.to_dict()) == state


def test_forced_available_appears_only_when_set():
    habit = Habit(id="h1", text="Walk", forced_available=True)
    assert habit.to_dict()["forcedAvailable"] is True
    assert Habit.from_dict(habit.to_dict()).forced_available is True
