"""Tests for the execution history store."""

from dataclasses import replace
from datetime import timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from fleetsched.db.models import TaskExecutionRow
from fleetsched.scheduling.errors import ExecutionNotFoundError
from fleetsched.scheduling.history import ORPHAN_ERROR, ExecutionHistoryStore
from fleetsched.scheduling.types import ExecutionStats, ExecutionStatus


class TestAppend:
    """Tests for starting execution records."""

    @pytest.mark.asyncio
    async def test_creates_running_record(self, history, task_factory, clock):
        task = await task_factory()

        execution, created = await history.append(task.id, 1, clock.now)

        assert created is True
        assert execution.id > 0
        assert execution.task_id == task.id
        assert execution.server_id == 1
        assert execution.status == ExecutionStatus.RUNNING
        assert execution.started_at == clock.now
        assert execution.completed_at is None
        assert execution.is_terminal is False

    @pytest.mark.asyncio
    async def test_returns_active_record_for_same_pair(
        self, history, task_factory, clock
    ):
        task = await task_factory()
        first, _ = await history.append(task.id, 1, clock.now)

        second, created = await history.append(
            task.id, 1, clock.now + timedelta(seconds=5)
        )

        assert created is False
        assert second.id == first.id
        assert second.started_at == first.started_at

    @pytest.mark.asyncio
    async def test_pairs_are_independent(self, history, task_factory, clock):
        task = await task_factory()

        a, created_a = await history.append(task.id, 1, clock.now)
        b, created_b = await history.append(task.id, 2, clock.now)

        assert created_a and created_b
        assert a.id != b.id

    @pytest.mark.asyncio
    async def test_new_record_after_terminal(
        self, history, task_factory, finish_execution, clock
    ):
        task = await task_factory()
        first, _ = await history.append(task.id, 1, clock.now)
        await finish_execution(first)

        second, created = await history.append(
            task.id, 1, clock.now + timedelta(minutes=5)
        )

        assert created is True
        assert second.id != first.id

    @pytest.mark.asyncio
    async def test_database_rejects_second_active_row(
        self, database, task_factory, clock
    ):
        """The partial unique index enforces one active run per pair."""
        task = await task_factory()

        async with database.session() as session:
            session.add(
                TaskExecutionRow(
                    task_id=task.id, server_id=1, started_at=clock.now, status="running"
                )
            )

        with pytest.raises(IntegrityError):
            async with database.session() as session:
                session.add(
                    TaskExecutionRow(
                        task_id=task.id,
                        server_id=1,
                        started_at=clock.now,
                        status="running",
                    )
                )


class TestUpdateTerminal:
    """Tests for the single terminal write."""

    @pytest.mark.asyncio
    async def test_writes_outcome(self, history, task_factory, finish_execution, clock):
        task = await task_factory()
        execution, _ = await history.append(task.id, 1, clock.now)

        await finish_execution(
            execution, ExecutionStatus.FAILED, exit_code=3, seconds=2.5
        )

        stored = await history.get(execution.id)
        assert stored.status == ExecutionStatus.FAILED
        assert stored.exit_code == 3
        assert stored.duration_ms == 2500
        assert stored.output == "done"
        assert stored.completed_at == clock.now + timedelta(seconds=2.5)
        assert stored.completed_at >= stored.started_at

    @pytest.mark.asyncio
    async def test_terminal_is_final(
        self, history, task_factory, finish_execution, clock
    ):
        task = await task_factory()
        execution, _ = await history.append(task.id, 1, clock.now)
        final = await finish_execution(execution)

        rewritten = replace(final, status=ExecutionStatus.FAILED, exit_code=9)
        assert await history.update_terminal(rewritten) is False

        stored = await history.get(execution.id)
        assert stored.status == ExecutionStatus.SUCCEEDED
        assert stored.exit_code == 0

    @pytest.mark.asyncio
    async def test_rejects_non_terminal(self, history, task_factory, clock):
        task = await task_factory()
        execution, _ = await history.append(task.id, 1, clock.now)

        with pytest.raises(ValueError, match="not terminal"):
            await history.update_terminal(execution)


class TestQueries:
    """Tests for history reads."""

    @pytest.mark.asyncio
    async def test_get_unknown_raises(self, history):
        with pytest.raises(ExecutionNotFoundError):
            await history.get(999)

    @pytest.mark.asyncio
    async def test_list_by_task_newest_first(
        self, history, task_factory, finish_execution, clock
    ):
        task = await task_factory()
        ids = []
        for minute in range(3):
            execution, _ = await history.append(
                task.id, 1, clock.now + timedelta(minutes=minute)
            )
            await finish_execution(execution)
            ids.append(execution.id)

        listed = await history.list_by_task(task.id)
        assert [e.id for e in listed] == list(reversed(ids))

        limited = await history.list_by_task(task.id, limit=2)
        assert [e.id for e in limited] == [ids[2], ids[1]]

        assert await history.list_by_task(task.id, limit=0) == []

    @pytest.mark.asyncio
    async def test_default_limit(self, database, task_factory, clock):
        store = ExecutionHistoryStore(database, default_limit=1)
        task = await task_factory()
        await store.append(task.id, 1, clock.now)
        await store.append(task.id, 2, clock.now + timedelta(seconds=1))

        listed = await store.list_by_task(task.id)
        assert [e.server_id for e in listed] == [2]

    @pytest.mark.asyncio
    async def test_list_by_server_spans_tasks(self, history, task_factory, clock):
        backup = await task_factory(name="backup", server_ids=[1, 2])
        rotate = await task_factory(name="rotate", server_ids=[1])

        await history.append(backup.id, 1, clock.now)
        await history.append(backup.id, 2, clock.now)
        await history.append(rotate.id, 1, clock.now + timedelta(seconds=1))

        on_server = await history.list_by_server(1)
        assert [e.task_id for e in on_server] == [rotate.id, backup.id]
        assert await history.list_by_server(3) == []

    @pytest.mark.asyncio
    async def test_active_for(self, history, task_factory, finish_execution, clock):
        task = await task_factory()
        one, _ = await history.append(task.id, 1, clock.now)
        two, _ = await history.append(task.id, 2, clock.now)
        await finish_execution(one)

        assert [e.id for e in await history.active_for(task.id)] == [two.id]
        assert await history.active_for(task.id, 1) == []
        assert [e.id for e in await history.active_for(task.id, 2)] == [two.id]

    @pytest.mark.asyncio
    async def test_has_history(self, history, task_factory, clock):
        task = await task_factory()
        assert await history.has_history(task.id) is False

        await history.append(task.id, 1, clock.now)
        assert await history.has_history(task.id) is True


class TestStats:
    """Tests for per-task execution counts."""

    @pytest.mark.asyncio
    async def test_counts_by_outcome(
        self, history, task_factory, finish_execution, clock
    ):
        task = await task_factory(server_ids=[1, 2, 3])
        outcomes = [
            ExecutionStatus.SUCCEEDED,
            ExecutionStatus.FAILED,
            ExecutionStatus.TIMED_OUT,
        ]
        for offset, status in enumerate(outcomes):
            execution, _ = await history.append(
                task.id, 1, clock.now + timedelta(minutes=offset)
            )
            await finish_execution(execution, status)
        await history.append(task.id, 2, clock.now)

        stats = await history.stats_for_task(task.id)

        assert stats == ExecutionStats(total=4, succeeded=1, failed=2, running=1)

    @pytest.mark.asyncio
    async def test_no_executions(self, history, task_factory):
        task = await task_factory()

        assert await history.stats_for_task(task.id) == ExecutionStats()
        assert await history.stats_for_tasks([]) == {}
        assert await history.stats_for_tasks([task.id]) == {}


class TestMaintenance:
    """Tests for orphan recovery and purge."""

    @pytest.mark.asyncio
    async def test_recover_orphans(
        self, history, task_factory, finish_execution, clock
    ):
        task = await task_factory()
        orphan, _ = await history.append(task.id, 1, clock.now)
        done, _ = await history.append(task.id, 2, clock.now)
        await finish_execution(done)

        now = clock.now + timedelta(seconds=120)
        assert await history.recover_orphans(now) == 1

        recovered = await history.get(orphan.id)
        assert recovered.status == ExecutionStatus.FAILED
        assert recovered.completed_at == now
        assert recovered.duration_ms == 120_000
        assert recovered.exit_code is None
        assert recovered.error_output == ORPHAN_ERROR

        untouched = await history.get(done.id)
        assert untouched.status == ExecutionStatus.SUCCEEDED

        assert await history.recover_orphans(now) == 0

    @pytest.mark.asyncio
    async def test_recover_orphans_leaves_runs_within_timeout(
        self, history, task_factory, clock
    ):
        task = await task_factory(timeout_seconds=30)
        live, _ = await history.append(task.id, 1, clock.now)

        # 30s timeout + 60s grace not yet elapsed
        assert await history.recover_orphans(clock.now + timedelta(seconds=89)) == 0
        assert (await history.get(live.id)).status == ExecutionStatus.RUNNING

        assert await history.recover_orphans(clock.now + timedelta(seconds=90)) == 1

    @pytest.mark.asyncio
    async def test_recover_orphans_custom_grace(self, history, task_factory, clock):
        task = await task_factory(timeout_seconds=10)
        await history.append(task.id, 1, clock.now)

        now = clock.now + timedelta(seconds=11)
        assert await history.recover_orphans(now, grace_seconds=0) == 1

    @pytest.mark.asyncio
    async def test_purge_task(self, history, task_factory, clock):
        task = await task_factory()
        await history.append(task.id, 1, clock.now)
        await history.append(task.id, 2, clock.now)

        assert await history.purge_task(task.id) == 2
        assert await history.list_by_task(task.id) == []
