"""Tests for BoardSession: loading, optimistic moves, cascades and reconciliation."""

from __future__ import annotations

import asyncio
from typing import Optional

import pytest

from conftest import NOW, MemoryAdapter, iso, make_task
from kanban_board.containers import COMPLETE_CONTAINER_ID, UNASSIGNED_CONTAINER_ID
from kanban_board.model import Milestone, Task, TaskPriority, TaskStatus
from kanban_board.modes import FilterContext, MilestoneMode, Mode, UniversalMode
from kanban_board.session import BoardSession


async def _loaded(
    tasks: list[Task],
    mode: Optional[Mode] = None,
    milestones: Optional[list[Milestone]] = None,
) -> tuple[BoardSession, MemoryAdapter]:
    adapter = MemoryAdapter(tasks, milestones)
    session = BoardSession(adapter, clock=lambda: NOW)
    assert await session.load(mode or UniversalMode())
    adapter.calls.clear()
    return session, adapter


def _ids(session: BoardSession, container_id: str) -> list[str]:
    return [t.id for t in session.get_tasks_for_container(container_id)]


def _layout(session: BoardSession) -> dict[str, tuple[list[str], int, int]]:
    return {
        cid: ([t.id for t in column], column.total, column.hidden)
        for cid, column in session.tasks_by_container.items()
    }


def _milestone_board() -> tuple[list[Task], list[Milestone]]:
    milestones = [
        Milestone(id="m0", name="Alpha", project_id="p1", order_index=0),
        Milestone(id="m1", name="Beta", project_id="p1", order_index=1),
    ]
    tasks = [
        make_task("t1", project_id="p1", milestone_id="m0"),
        make_task("t2", project_id="p1", milestone_id="m1"),
        make_task("done", project_id="p1", milestone_id="m0", status=TaskStatus.COMPLETE),
    ]
    return tasks, milestones


@pytest.mark.anyio
class TestLoad:
    async def test_builds_snapshot(self) -> None:
        session, _ = await _loaded([
            make_task("t1"),
            make_task("t2", status=TaskStatus.IN_PROGRESS),
            make_task("t3", status=TaskStatus.COMPLETE),
        ])
        assert [c.id for c in session.containers][-1] == COMPLETE_CONTAINER_ID
        assert _ids(session, "status-todo") == ["t1"]
        assert _ids(session, "complete") == ["t3"]
        assert session.get_total_task_count() == 3
        assert session.get_completed_task_count() == 1
        assert session.get_pending_task_count() == 2
        assert session.loading is False
        assert session.error is None

    async def test_load_data_requires_mode(self) -> None:
        session = BoardSession(MemoryAdapter([]))
        with pytest.raises(ValueError):
            await session.load_data()

    async def test_failure_keeps_previous_snapshot(self) -> None:
        session, adapter = await _loaded([make_task("t1")])
        before = session.snapshot()
        adapter.fail.add("list_tasks")

        assert await session.load_data() is False
        assert session.error is not None
        assert session.error.startswith("Failed to load tasks")
        assert session.loading is False
        assert session.snapshot() == before

        adapter.fail.clear()
        assert await session.load_data() is True
        assert session.error is None

    async def test_clear_error(self) -> None:
        session, adapter = await _loaded([make_task("t1")])
        adapter.fail.add("list_tasks")
        await session.load_data()
        session.clear_error()
        assert session.error is None

    async def test_last_reload_wins(self) -> None:
        session, adapter = await _loaded([make_task("t1")])
        adapter.list_delays = [0.05, 0.0]

        async def second_load() -> bool:
            adapter.tasks["t1"].status = TaskStatus.IN_PROGRESS
            return await session.load_data()

        first, second = await asyncio.gather(session.load_data(), second_load())
        assert first is False
        assert second is True
        assert _ids(session, "status-in_progress") == ["t1"]
        assert _ids(session, "status-todo") == []

    async def test_filters_are_passed_to_store(self) -> None:
        adapter = MemoryAdapter([make_task("t1", title="Alpha"), make_task("t2", title="Beta")])
        session = BoardSession(adapter)
        await session.load(UniversalMode(), FilterContext(search_query="alp"))
        assert [t.id for t in session.tasks] == ["t1"]
        assert adapter.calls[0][1].search_query == "alp"

    async def test_milestone_mode_loads_milestones(self) -> None:
        tasks, milestones = _milestone_board()
        tasks.append(make_task("loose", project_id="p1"))
        tasks.append(make_task("other", project_id="p2", milestone_id="m0"))
        session, _ = await _loaded(tasks, MilestoneMode("p1"), milestones)
        assert [c.id for c in session.containers] == [
            "milestone-m0", "milestone-m1", UNASSIGNED_CONTAINER_ID, COMPLETE_CONTAINER_ID,
        ]
        assert _ids(session, "milestone-m0") == ["t1"]
        assert _ids(session, UNASSIGNED_CONTAINER_ID) == ["loose"]
        assert session.find_task("other") is None


@pytest.mark.anyio
class TestMoveTask:
    async def test_single_move_is_optimistic_and_persists_once(self) -> None:
        session, adapter = await _loaded([make_task("T1"), make_task("T2")])

        pending = session.move_task("T1", "status-todo", "status-in_progress", 0)
        # Applied locally before any store call completes.
        assert _ids(session, "status-in_progress") == ["T1"]
        assert "T1" not in _ids(session, "status-todo")
        assert session.find_task("T1").status == TaskStatus.IN_PROGRESS
        assert session.find_task_container("T1") == "status-in_progress"

        outcome = await pending
        assert outcome.ok
        assert not outcome.reloaded
        assert adapter.calls_named("update_task_status") == [("update_task_status", "T1", "in_progress")]
        assert adapter.calls_named("update_task_order") == []
        assert adapter.calls_named("list_tasks") == []

    async def test_cascade_moves_open_subtasks_in_order(self) -> None:
        session, adapter = await _loaded([
            make_task("P"),
            make_task("S1", parent_id="P", order_index=0),
            make_task("S2", parent_id="P", order_index=1),
            make_task("S3", parent_id="P", status=TaskStatus.COMPLETE),
        ])
        assert _ids(session, "status-todo") == ["P", "S1", "S2"]

        outcome = await session.move_task("P", "status-todo", "status-in_progress", 0)
        assert _ids(session, "status-in_progress") == ["P", "S1", "S2"]
        assert _ids(session, "status-todo") == []
        assert [c[1] for c in adapter.calls_named("update_task_status")] == ["P", "S1", "S2"]
        assert session.find_task("S3").status == TaskStatus.COMPLETE
        assert [r.target_id for r in outcome.cascade_results] == ["S1", "S2"]

    async def test_cascade_skips_subtasks_already_at_target(self) -> None:
        session, adapter = await _loaded([
            make_task("P"),
            make_task("S1", parent_id="P"),
            make_task("S2", parent_id="P", status=TaskStatus.IN_PROGRESS),
        ])
        in_progress = session.tasks_by_container["status-in_progress"]
        assert list(in_progress) == [] and in_progress.hidden == 1

        outcome = await session.move_task("P", "status-todo", "status-in_progress", 0)
        assert [c[1] for c in adapter.calls_named("update_task_status")] == ["P", "S1"]
        assert [sub_id for sub_id, _ in outcome.plan.cascade] == ["S1"]
        # S2 was withheld without its parent and now shows under it.
        in_progress = session.tasks_by_container["status-in_progress"]
        assert [t.id for t in in_progress] == ["P", "S1", "S2"]
        assert in_progress.hidden == 0
        assert in_progress.total == 3

    async def test_cascade_failure_is_logged_only(self) -> None:
        session, adapter = await _loaded([
            make_task("P"),
            make_task("S1", parent_id="P", order_index=0),
            make_task("S2", parent_id="P", order_index=1),
        ])
        adapter.fail.add("update_task_status")
        adapter.fail_ids.add("S1")

        outcome = await session.move_task("P", "status-todo", "status-in_progress", 0)
        assert outcome.ok
        assert not outcome.reloaded
        assert [r.target_id for r in outcome.cascade_failures] == ["S1"]
        assert [c[1] for c in adapter.calls_named("update_task_status")] == ["P", "S1", "S2"]
        assert adapter.calls_named("list_tasks") == []
        assert session.find_task("S1").status == TaskStatus.IN_PROGRESS

    async def test_failed_move_reloads_and_restores(self) -> None:
        session, adapter = await _loaded([make_task("T1")])
        adapter.fail.add("update_task_status")

        pending = session.move_task("T1", "status-todo", "status-in_progress", 0)
        assert _ids(session, "status-in_progress") == ["T1"]

        outcome = await pending
        assert not outcome.ok
        assert outcome.reloaded
        assert len(adapter.calls_named("list_tasks")) == 1
        assert _ids(session, "status-todo") == ["T1"]
        assert _ids(session, "status-in_progress") == []
        assert session.error is None

    async def test_move_to_complete_updates_stats_and_column(self) -> None:
        session, adapter = await _loaded([
            make_task("late", due_date=iso(-1)),
            make_task("old", status=TaskStatus.COMPLETE, updated_at=iso(-30)),
        ])
        assert session.get_overdue_task_count() == 1

        pending = session.move_task("late", "status-todo", "complete", 5)
        assert session.get_overdue_task_count() == 0
        assert session.get_completed_task_count() == 2
        assert session.get_pending_task_count() == 0
        # Most recent first regardless of the requested index.
        assert _ids(session, COMPLETE_CONTAINER_ID) == ["late", "old"]
        await pending
        assert adapter.calls_named("update_task_status") == [("update_task_status", "late", "complete")]

    async def test_reopening_from_complete(self) -> None:
        session, adapter = await _loaded([make_task("d", status=TaskStatus.COMPLETE)])
        await session.move_task("d", COMPLETE_CONTAINER_ID, "status-todo", 0)
        assert _ids(session, "status-todo") == ["d"]
        assert _ids(session, COMPLETE_CONTAINER_ID) == []
        assert session.find_task("d").completed_at is None

    async def test_index_is_clamped(self) -> None:
        session, _ = await _loaded([
            make_task("a"),
            make_task("b", status=TaskStatus.IN_PROGRESS),
        ])
        await session.move_task("a", "status-todo", "status-in_progress", 99)
        assert _ids(session, "status-in_progress") == ["b", "a"]

    async def test_index_inside_subtask_group_lands_after_it(self) -> None:
        session, _ = await _loaded([
            make_task("p"),
            make_task("q", status=TaskStatus.IN_PROGRESS),
            make_task("qs1", status=TaskStatus.IN_PROGRESS, parent_id="q", order_index=0),
            make_task("qs2", status=TaskStatus.IN_PROGRESS, parent_id="q", order_index=1),
        ])
        await session.move_task("p", "status-todo", "status-in_progress", 2)
        assert _ids(session, "status-in_progress") == ["q", "qs1", "qs2", "p"]

    async def test_repeated_move_keeps_one_copy(self) -> None:
        session, adapter = await _loaded([make_task("a")])
        first = session.move_task("a", "status-todo", "status-in_progress", 0)
        second = session.move_task("a", "status-in_progress", "status-in_progress", 0)
        await asyncio.gather(first, second)
        assert _ids(session, "status-in_progress") == ["a"]
        assert sum(len(session.get_tasks_for_container(c.id)) for c in session.containers) == 1
        assert len(adapter.calls_named("update_task_status")) == 2

    async def test_rejects_bad_input(self) -> None:
        session, adapter = await _loaded([make_task("a")])
        with pytest.raises(ValueError):
            session.move_task("nope", "status-todo", "status-in_progress", 0)
        with pytest.raises(ValueError):
            session.move_task("a", "status-todo", "status-nowhere", 0)
        with pytest.raises(ValueError):
            session.move_task("a", "status-todo", "status-in_progress", -1)
        await session.wait_idle()
        assert adapter.calls == []
        assert _ids(session, "status-todo") == ["a"]


@pytest.mark.anyio
class TestMilestoneMoves:
    async def test_move_between_milestones(self) -> None:
        tasks, milestones = _milestone_board()
        session, adapter = await _loaded(tasks, MilestoneMode("p1"), milestones)

        outcome = await session.move_task("t1", "milestone-m0", "milestone-m1", 0)
        assert outcome.ok
        assert _ids(session, "milestone-m1") == ["t1", "t2"]
        assert session.find_task("t1").milestone_id == "m1"
        assert adapter.calls_named("update_task_milestone") == [("update_task_milestone", "t1", "m1")]
        assert adapter.calls_named("update_task_status") == []

    async def test_completed_task_reopens_into_milestone(self) -> None:
        tasks, milestones = _milestone_board()
        session, adapter = await _loaded(tasks, MilestoneMode("p1"), milestones)

        await session.move_task("done", COMPLETE_CONTAINER_ID, "milestone-m1", 0)
        task = session.find_task("done")
        assert task.status == TaskStatus.TODO
        assert task.milestone_id == "m1"
        assert _ids(session, "milestone-m1")[0] == "done"
        assert _ids(session, COMPLETE_CONTAINER_ID) == []
        assert [c[0] for c in adapter.calls if c[0].startswith("update")] == [
            "update_task_status", "update_task_milestone",
        ]

    async def test_milestone_move_does_not_cascade(self) -> None:
        tasks, milestones = _milestone_board()
        tasks.append(make_task("sub", project_id="p1", milestone_id="m0", parent_id="t1"))
        session, adapter = await _loaded(tasks, MilestoneMode("p1"), milestones)

        await session.move_task("t1", "milestone-m0", "milestone-m1", 0)
        assert [c[1] for c in adapter.calls if c[0].startswith("update")] == ["t1"]

    async def test_subtasks_left_behind_are_hidden(self) -> None:
        tasks, milestones = _milestone_board()
        tasks.append(make_task("sub", project_id="p1", milestone_id="m0", parent_id="t1"))
        tasks.append(make_task("x", project_id="p1", milestone_id="m0", order_index=1))
        session, _ = await _loaded(tasks, MilestoneMode("p1"), milestones)
        assert _ids(session, "milestone-m0") == ["t1", "sub", "x"]

        await session.move_task("t1", "milestone-m0", "milestone-m1", 0)
        column = session.tasks_by_container["milestone-m0"]
        assert [t.id for t in column] == ["x"]
        assert (column.total, column.hidden) == (2, 1)

        optimistic = _layout(session)
        assert await session.load_data()
        assert _layout(session) == optimistic

    async def test_subtasks_already_in_target_are_revealed(self) -> None:
        tasks, milestones = _milestone_board()
        tasks.append(make_task("sub", project_id="p1", milestone_id="m1", parent_id="t1"))
        session, _ = await _loaded(tasks, MilestoneMode("p1"), milestones)
        assert _ids(session, "milestone-m1") == ["t2"]
        assert session.tasks_by_container["milestone-m1"].hidden == 1

        await session.move_task("t1", "milestone-m0", "milestone-m1", 0)
        column = session.tasks_by_container["milestone-m1"]
        assert [t.id for t in column] == ["t1", "sub", "t2"]
        assert (column.total, column.hidden) == (3, 0)

        optimistic = _layout(session)
        assert await session.load_data()
        assert _layout(session) == optimistic

    async def test_complete_column_in_milestone_mode_cascades(self) -> None:
        tasks, milestones = _milestone_board()
        tasks.append(make_task("sub", project_id="p1", milestone_id="m0", parent_id="t1"))
        session, adapter = await _loaded(tasks, MilestoneMode("p1"), milestones)

        await session.move_task("t1", "milestone-m0", COMPLETE_CONTAINER_ID, 0)
        assert adapter.calls_named("update_task_status") == [
            ("update_task_status", "t1", "complete"),
            ("update_task_status", "sub", "complete"),
        ]


@pytest.mark.anyio
class TestReorder:
    async def test_reorder_persists_changed_indexes(self) -> None:
        session, adapter = await _loaded([
            make_task("a", order_index=0),
            make_task("b", order_index=1),
            make_task("c", order_index=2),
        ])
        outcome = await session.reorder_tasks("status-todo", ["c", "a", "b"])
        assert outcome.ok
        assert _ids(session, "status-todo") == ["c", "a", "b"]
        assert adapter.calls_named("update_task_order") == [
            ("update_task_order", "c", "status-todo", 0),
            ("update_task_order", "a", "status-todo", 1),
            ("update_task_order", "b", "status-todo", 2),
        ]

    async def test_unchanged_indexes_are_not_persisted(self) -> None:
        session, adapter = await _loaded([make_task("a", order_index=0), make_task("b", order_index=1)])
        outcome = await session.reorder_tasks("status-todo", [session.find_task("a"), session.find_task("b")])
        assert outcome.results == []
        assert adapter.calls == []

    async def test_reorder_failure_keeps_local_order(self) -> None:
        session, adapter = await _loaded([make_task("a", order_index=0), make_task("b", order_index=1)])
        adapter.fail.add("update_task_order")

        outcome = await session.reorder_tasks("status-todo", ["b", "a"])
        assert not outcome.ok
        assert _ids(session, "status-todo") == ["b", "a"]
        assert adapter.calls_named("list_tasks") == []

    async def test_reorder_unknown_container(self) -> None:
        session, _ = await _loaded([make_task("a")])
        with pytest.raises(ValueError):
            session.reorder_tasks("status-nowhere", ["a"])

    @pytest.mark.parametrize("ids", [["w"], ["a", "b", "w"], ["a"], ["a", "a", "b"]])
    async def test_reorder_must_list_exactly_the_column(self, ids) -> None:
        session, adapter = await _loaded([
            make_task("a", order_index=0),
            make_task("b", order_index=1),
            make_task("w", status=TaskStatus.IN_PROGRESS),
        ])
        before = session.snapshot()
        with pytest.raises(ValueError, match="exactly once"):
            session.reorder_tasks("status-todo", ids)
        assert session.snapshot() == before
        assert _ids(session, "status-in_progress") == ["w"]
        assert adapter.calls == []

    async def test_parent_moves_with_its_subtasks(self) -> None:
        session, adapter = await _loaded([
            make_task("a", order_index=0),
            make_task("sub", parent_id="a", order_index=0),
            make_task("b", order_index=1),
        ])
        assert _ids(session, "status-todo") == ["a", "sub", "b"]

        outcome = await session.reorder_tasks("status-todo", ["sub", "b", "a"])
        assert outcome.ok
        assert _ids(session, "status-todo") == ["b", "a", "sub"]
        assert adapter.calls_named("update_task_order") == [
            ("update_task_order", "b", "status-todo", 0),
            ("update_task_order", "a", "status-todo", 1),
        ]
        assert session.find_task("sub").order_index == 0

    async def test_subtask_indexes_count_among_siblings(self) -> None:
        session, adapter = await _loaded([
            make_task("a", order_index=0),
            make_task("s1", parent_id="a", order_index=0),
            make_task("s2", parent_id="a", order_index=1),
            make_task("b", order_index=1),
        ])
        await session.reorder_tasks("status-todo", ["a", "s2", "s1", "b"])
        assert _ids(session, "status-todo") == ["a", "s2", "s1", "b"]
        assert adapter.calls_named("update_task_order") == [
            ("update_task_order", "s2", "status-todo", 0),
            ("update_task_order", "s1", "status-todo", 1),
        ]
        assert session.tasks_by_container["status-todo"].total == 4

    async def test_calls_follow_request_order(self) -> None:
        session, adapter = await _loaded([
            make_task("a", order_index=0),
            make_task("b", order_index=1),
            make_task("x", status=TaskStatus.IN_PROGRESS),
        ])
        session.move_task("x", "status-in_progress", "status-todo", 0)
        session.reorder_tasks("status-todo", ["a", "x", "b"])
        await session.wait_idle()
        names = [c[0] for c in adapter.calls]
        assert names[0] == "update_task_status"
        assert set(names[1:]) == {"update_task_order"}


@pytest.mark.anyio
class TestReorderContainers:
    async def test_reorders_milestone_columns(self) -> None:
        tasks, milestones = _milestone_board()
        session, adapter = await _loaded(tasks, MilestoneMode("p1"), milestones)

        outcome = await session.reorder_containers(["milestone-m1"])
        assert outcome.ok
        assert [c.id for c in session.containers] == ["milestone-m1", "milestone-m0", COMPLETE_CONTAINER_ID]
        assert sorted(adapter.calls_named("update_milestone_order")) == [
            ("update_milestone_order", "m0", 1),
            ("update_milestone_order", "m1", 0),
        ]
        assert [m.id for m in session.milestones] == ["m1", "m0"]

    async def test_status_columns_cannot_be_reordered(self) -> None:
        session, _ = await _loaded([make_task("a")])
        with pytest.raises(ValueError):
            session.reorder_containers(["status-todo"])

    async def test_complete_column_cannot_be_reordered(self) -> None:
        tasks, milestones = _milestone_board()
        session, _ = await _loaded(tasks, MilestoneMode("p1"), milestones)
        with pytest.raises(ValueError):
            session.reorder_containers([COMPLETE_CONTAINER_ID, "milestone-m0"])


@pytest.mark.anyio
class TestLookups:
    async def test_reads(self) -> None:
        session, _ = await _loaded([
            make_task("a", priority=TaskPriority.HIGH),
            make_task("b", status=TaskStatus.IN_PROGRESS),
            make_task("c", status="review"),
        ])
        assert session.get_container("complete").id == COMPLETE_CONTAINER_ID
        assert session.get_container("status-nowhere") is None
        assert [t.id for t in session.get_tasks_by_status("in_progress")] == ["b"]
        assert [t.id for t in session.get_tasks_by_status("review")] == ["c"]
        assert [t.id for t in session.get_tasks_by_priority("high")] == ["a"]
        assert session.find_task_container("c") == "status-review"
        assert session.find_task_container("zzz") is None
        assert session.get_tasks_for_container("status-nowhere") == []

    async def test_snapshot_to_dict(self) -> None:
        session, _ = await _loaded([make_task("a")])
        data = session.snapshot().to_dict()
        assert data["totals"]["status-todo"] == 1
        assert data["stats"]["total"] == 1
        assert data["tasks_by_container"]["status-todo"][0]["id"] == "a"


class TestOutsideEventLoop:
    def test_mutations_need_a_running_loop(self) -> None:
        session, adapter = asyncio.run(_loaded([
            make_task("a", order_index=0),
            make_task("b", order_index=1),
        ]))
        before = _layout(session)

        with pytest.raises(RuntimeError):
            session.move_task("a", "status-todo", "status-in_progress", 0)
        with pytest.raises(RuntimeError):
            session.reorder_tasks("status-todo", ["b", "a"])

        assert _layout(session) == before
        assert session.find_task("a").status == TaskStatus.TODO
        assert adapter.calls == []
