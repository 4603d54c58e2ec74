#!/usr/bin/env python3
"""Command-line access to the Keeper document.

Usage: ``keeper <entity> <command> [--flags]`` where entity is ``state``,
``task`` or ``habit``.  Replies are one JSON object per run:
``{"ok": true, "data": ...}`` on stdout, or ``{"ok": false, "error": ...}``
on stderr with exit status 1.  Commands that change the state save it (which
also archives tasks completed in earlier months).
"""
from __future__ import annotations

import argparse
import json
import os
import sys
from typing import Any, Optional, Sequence

import keeper_operations as ops
from keeper_archive import archive
from keeper_config import KeeperConfig, load_config
from keeper_storage import (
    DirectoryStorage,
    DocumentStorage,
    create_snapshot,
    list_archives,
    list_snapshots,
    load_state,
    save_state,
)

TASK_COMMANDS = (
    "list", "add", "add-subtask", "complete", "uncomplete", "edit", "delete",
    "move", "add-note", "edit-note", "delete-note",
)
HABIT_COMMANDS = (
    "list", "add", "edit", "delete", "complete", "add-note", "edit-note", "delete-note",
)
STATE_COMMANDS = ("show", "archive", "snapshot", "snapshots", "archives")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="keeper", description="Edit the Keeper habits and tasks document.")
    parser.add_argument("--dir", help="Data directory (default: $KEEPER_DIR or ~/.keeper).")
    parser.add_argument("--remote", action="store_true", help="Use the configured GitHub repository.")
    parser.add_argument("--seed", action="store_true", help="Start from the example document if none exists.")
    entities = parser.add_subparsers(dest="entity", required=True)

    state = entities.add_parser("state", help="Whole-document commands.")
    state.add_argument("command", choices=STATE_COMMANDS)
    state.add_argument("--reason", default="user-request", help="Snapshot reason.")

    task = entities.add_parser("task", help="Task commands.")
    task.add_argument("command", choices=TASK_COMMANDS)
    task.add_argument("--id")
    task.add_argument("--text")
    task.add_argument("--new-text")
    task.add_argument("--parent-id")
    task.add_argument("--parent-text")
    task.add_argument("--root", action="store_true")
    task.add_argument("--note")
    task.add_argument("--new-note")

    habit = entities.add_parser("habit", help="Habit commands.")
    habit.add_argument("command", choices=HABIT_COMMANDS)
    habit.add_argument("--id")
    habit.add_argument("--text")
    habit.add_argument("--new-text")
    habit.add_argument("--interval", type=float)
    habit.add_argument("--note")
    habit.add_argument("--new-note")
    return parser


def open_storage(args: argparse.Namespace, config: KeeperConfig) -> DocumentStorage:
    if args.remote:
        from keeper_sync import GitHubStorage

        return GitHubStorage(config.github)
    return DirectoryStorage(config.data_dir, watch_interval=config.watch_interval)


def ok(data: Any) -> None:
    print(json.dumps({"ok": True, "data": data}))


def fail(error: str) -> int:
    print(json.dumps({"ok": False, "error": error}), file=sys.stderr)
    return 1


def run_state(args, storage: DocumentStorage, state, guard: bool):
    if args.command == "show":
        return state.to_dict(), None
    if args.command == "archive":
        live = archive(state, storage, guard=guard)
        return {"archived": len(state.tasks) - len(live.tasks)}, live
    if args.command == "snapshot":
        return {"snapshot": create_snapshot(storage, state, args.reason)}, None
    if args.command == "snapshots":
        return list_snapshots(storage), None
    return list_archives(storage), None


def run_task(args, state):
    cmd = args.command
    if cmd == "list":
        return [t.to_dict() for t in ops.list_tasks(state)], None
    if cmd == "add":
        state, task = ops.add_task(state, args.text)
        return task.to_dict(), state
    if cmd == "add-subtask":
        state, task = ops.add_subtask(state, args.text, args.parent_id, args.parent_text)
        return task.to_dict(), state
    if cmd == "complete":
        return {"completed": True}, ops.complete_task(state, args.id, args.text)
    if cmd == "uncomplete":
        return {"uncompleted": True}, ops.uncomplete_task(state, args.id, args.text)
    if cmd == "edit":
        return {"edited": True}, ops.edit_task(state, args.new_text, args.id, args.text)
    if cmd == "delete":
        return {"deleted": True}, ops.delete_task(state, args.id, args.text)
    if cmd == "move":
        return {"moved": True}, ops.move_task(state, args.id, args.text, args.parent_id, args.root)
    if cmd == "add-note":
        return {"noteAdded": True}, ops.add_task_note(state, args.note, args.id, args.text)
    if cmd == "edit-note":
        return {"noteEdited": True}, ops.edit_task_note(state, args.note, args.new_note, args.id, args.text)
    return {"noteDeleted": True}, ops.delete_task_note(state, args.note, args.id, args.text)


def run_habit(args, state):
    cmd = args.command
    if cmd == "list":
        return [h.to_dict() for h in ops.list_habits(state)], None
    if cmd == "add":
        state, habit = ops.add_habit(state, args.text, args.interval)
        return habit.to_dict(), state
    if cmd == "edit":
        return {"edited": True}, ops.edit_habit(state, args.id, args.text, args.new_text, args.interval)
    if cmd == "delete":
        return {"deleted": True}, ops.delete_habit(state, args.id, args.text)
    if cmd == "complete":
        return {"completed": True}, ops.complete_habit(state, args.id, args.text)
    if cmd == "add-note":
        return {"noteAdded": True}, ops.add_habit_note(state, args.note, args.id, args.text)
    if cmd == "edit-note":
        return {"noteEdited": True}, ops.edit_habit_note(state, args.note, args.new_note, args.id, args.text)
    return {"noteDeleted": True}, ops.delete_habit_note(state, args.note, args.id, args.text)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        env = dict(os.environ)
        if args.dir:
            env["KEEPER_DIR"] = args.dir
        config = load_config(env)
        storage = open_storage(args, config)
        state = load_state(storage, seed=args.seed)
        if args.entity == "state":
            result, modified = run_state(args, storage, state, config.archive_guard)
        elif args.entity == "task":
            result, modified = run_task(args, state)
        else:
            result, modified = run_habit(args, state)
        if modified is not None:
            save_state(storage, modified, guard=config.archive_guard)
    except Exception as exc:
        return fail(str(exc))
    ok(result)
    return 0


if __name__ == "__main__":
    sys.exit(main())
