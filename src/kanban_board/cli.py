from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .config import BoardConfig, load_board_config
from .hierarchy import can_be_parent
from .logging_utils import configure_logging
from .model import Milestone, Task, TaskPriority, TaskType, coerce_status
from .modes import MODE_NAMES, FilterContext, parse_mode
from .session import BoardSession
from .store import FileTaskStoreAdapter, TaskStore


def _resolve_project_dir(project_dir: Optional[str]) -> Path:
    return Path(project_dir).expanduser().resolve() if project_dir else Path.cwd().resolve()


def _ctx(args: argparse.Namespace) -> tuple[Path, BoardConfig]:
    root = _resolve_project_dir(args.project_dir)
    config, err = load_board_config(root)
    configure_logging(args.log_level or config.log_level)
    if err:
        sys.stderr.write(f"Warning: {err}\n")
    return root, config


def _filters(args: argparse.Namespace, config: BoardConfig) -> FilterContext:
    extra: list[tuple[str, str]] = []
    for item in args.filter or []:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise ValueError(f"Filters must look like key=value, got '{item}'")
        extra.append((key.strip(), value.strip()))
    show_completed = config.show_completed
    if args.hide_completed:
        show_completed = False
    return FilterContext(
        company_id=args.company_id,
        project_id=args.project_id,
        contact_id=args.contact_id,
        show_completed=show_completed,
        search_query=args.search,
        extra=tuple(extra),
    )


async def _open_session(args: argparse.Namespace) -> BoardSession:
    root, config = _ctx(args)
    session = BoardSession(FileTaskStoreAdapter.for_project(root), config)
    mode = parse_mode(args.mode or config.default_mode, args.project_id)
    await session.load(mode, _filters(args, config))
    return session


# ---------------------------------------------------------------------------
# Board commands
# ---------------------------------------------------------------------------

def _render(session: BoardSession, console: Console) -> None:
    table = Table(title=f"{session.mode.name.title()} board" if session.mode else "Board")
    columns = []
    for container in session.containers:
        tasks = session.tasks_by_container.get(container.id, [])
        total = getattr(tasks, "total", len(tasks))
        header = f"{container.title} ({len(tasks)}/{total})" if total > len(tasks) else f"{container.title} ({total})"
        table.add_column(escape(header), style=container.color)
        columns.append(list(tasks))
    depth = max((len(c) for c in columns), default=0)
    for row in range(depth):
        cells = []
        for tasks in columns:
            if row >= len(tasks):
                cells.append("")
                continue
            task = tasks[row]
            prefix = "  - " if task.is_subtask else ""
            cells.append(escape(f"{prefix}{task.title} ({task.id})"))
        table.add_row(*cells)
    console.print(table)
    stats = session.stats
    console.print(
        f"total={stats.total} completed={stats.completed} pending={stats.pending} overdue={stats.overdue}"
    )


def _show(args: argparse.Namespace) -> int:
    session = asyncio.run(_open_session(args))
    if session.error:
        sys.stderr.write(session.error + "\n")
        return 1
    _render(session, Console())
    return 0


def _stats(args: argparse.Namespace) -> int:
    session = asyncio.run(_open_session(args))
    if session.error:
        sys.stderr.write(session.error + "\n")
        return 1
    sys.stdout.write(json.dumps(session.stats.to_dict(), indent=2) + "\n")
    return 0


def _move(args: argparse.Namespace) -> int:
    async def _run() -> tuple[BoardSession, dict]:
        session = await _open_session(args)
        if session.error:
            raise RuntimeError(session.error)
        from_id = session.find_task_container(args.task_id) or ""
        target = session.get_container(args.to_container)
        if target is None:
            raise ValueError(f"Unknown container {args.to_container}")
        index = args.index
        if index is None:
            index = len(session.get_tasks_for_container(target.id))
        outcome = await session.move_task(args.task_id, from_id, target.id, index)
        return session, {
            "task_id": args.task_id,
            "from": from_id,
            "to": target.id,
            "persisted": outcome.ok,
            "reloaded": outcome.reloaded,
            "cascade_failures": len(outcome.cascade_failures),
        }

    try:
        session, payload = asyncio.run(_run())
    except (ValueError, RuntimeError) as exc:
        sys.stderr.write(str(exc) + "\n")
        return 1
    task = session.find_task(args.task_id)
    payload["task"] = task.to_dict() if task else None
    sys.stdout.write(json.dumps(payload, indent=2) + "\n")
    return 0 if payload["persisted"] else 1


# ---------------------------------------------------------------------------
# Store seeding
# ---------------------------------------------------------------------------

def _task_add(args: argparse.Namespace) -> int:
    root, _ = _ctx(args)
    task = Task(
        title=args.title,
        status=coerce_status(args.status),
        priority=TaskPriority(args.priority),
        task_type=TaskType(args.task_type),
        due_date=args.due_date,
        parent_id=args.parent_id,
        project_id=args.project_id,
        milestone_id=args.milestone_id,
        company_id=args.company_id,
        order_index=args.order_index,
    )
    errors = Task.validate_dict(task.to_dict())
    if errors:
        sys.stderr.write("; ".join(errors) + "\n")
        return 1
    with TaskStore.for_project(root).transaction() as tx:
        if task.parent_id and not can_be_parent(task.parent_id, task.id, tx.tasks):
            sys.stderr.write(f"Task {task.parent_id} cannot be a parent (missing, or itself a subtask)\n")
            return 1
        tx.add(task)
    sys.stdout.write(json.dumps({"task": task.to_dict()}, indent=2) + "\n")
    return 0


def _milestone_add(args: argparse.Namespace) -> int:
    root, _ = _ctx(args)
    milestone = Milestone(
        id=args.milestone_id,
        name=args.name,
        project_id=args.project_id,
        order_index=args.order_index,
        color=args.color,
    )
    try:
        with TaskStore.for_project(root).transaction() as tx:
            tx.add_milestone(milestone)
    except ValueError as exc:
        sys.stderr.write(str(exc) + "\n")
        return 1
    sys.stdout.write(json.dumps({"milestone": milestone.to_dict()}, indent=2) + "\n")
    return 0


def _server(args: argparse.Namespace) -> int:
    import uvicorn

    from .server import create_app

    root, _ = _ctx(args)
    app = create_app(project_dir=root)
    uvicorn.run(app, host=args.host, port=args.port)
    return 0


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

def _add_board_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--mode", default=None, choices=list(MODE_NAMES))
    parser.add_argument("--project-id", default=None)
    parser.add_argument("--company-id", default=None)
    parser.add_argument("--contact-id", default=None)
    parser.add_argument("--search", default=None, help="Case-insensitive title filter")
    parser.add_argument("--filter", action="append", help="Extra key=value filter (repeatable)")
    parser.add_argument("--hide-completed", action="store_true")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Kanban board engine CLI")
    parser.add_argument("--project-dir", default=None, help="Project directory (default: current working directory)")
    parser.add_argument("--log-level", default=None, help="Override the configured log level")
    subparsers = parser.add_subparsers(dest="command", required=True)

    show = subparsers.add_parser("show", help="Render the board")
    _add_board_args(show)
    show.set_defaults(func=_show)

    stats = subparsers.add_parser("stats", help="Print board counts as JSON")
    _add_board_args(stats)
    stats.set_defaults(func=_stats)

    move = subparsers.add_parser("move", help="Move a task to another container")
    move.add_argument("task_id")
    move.add_argument("to_container", help="Container id, e.g. status-in_progress or milestone-m1")
    move.add_argument("--index", type=int, default=None, help="Position in the target (default: end)")
    _add_board_args(move)
    move.set_defaults(func=_move)

    task = subparsers.add_parser("task", help="Manage stored tasks")
    task_sub = task.add_subparsers(dest="task_cmd", required=True)
    tadd = task_sub.add_parser("add", help="Add a task")
    tadd.add_argument("title")
    tadd.add_argument("--status", default="todo")
    tadd.add_argument("--priority", default="medium", choices=[p.value for p in TaskPriority])
    tadd.add_argument("--task-type", default="task", choices=[t.value for t in TaskType])
    tadd.add_argument("--due-date", default=None)
    tadd.add_argument("--parent-id", default=None)
    tadd.add_argument("--project-id", default=None)
    tadd.add_argument("--milestone-id", default=None)
    tadd.add_argument("--company-id", default=None)
    tadd.add_argument("--order-index", type=int, default=0)
    tadd.set_defaults(func=_task_add)

    milestone = subparsers.add_parser("milestone", help="Manage stored milestones")
    milestone_sub = milestone.add_subparsers(dest="milestone_cmd", required=True)
    madd = milestone_sub.add_parser("add", help="Add a milestone")
    madd.add_argument("milestone_id")
    madd.add_argument("name")
    madd.add_argument("--project-id", required=True)
    madd.add_argument("--order-index", type=int, default=0)
    madd.add_argument("--color", default=None)
    madd.set_defaults(func=_milestone_add)

    server = subparsers.add_parser("server", help="Start the board API server")
    server.add_argument("--host", default="127.0.0.1")
    server.add_argument("--port", default=8000, type=int)
    server.set_defaults(func=_server)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    handler = getattr(args, "func", None)
    if handler is None:
        parser.print_help()
        return 1
    try:
        return int(handler(args) or 0)
    except ValueError as exc:
        sys.stderr.write(str(exc) + "\n")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
