"""Tests for the scheduling service facade."""

from datetime import UTC, datetime

import pytest

from fleetsched.scheduling.errors import InvalidArgumentError, TaskNotFoundError
from fleetsched.scheduling.service import SchedulingService
from fleetsched.scheduling.types import ExecutionStats, ExecutionStatus, TaskUpdate


class TestTasks:
    """Tests for task operations through the service."""

    @pytest.mark.asyncio
    async def test_create_and_get_summary(self, service, make_definition):
        task = await service.create_task(make_definition())

        summary = await service.get_task(task.id)

        assert summary.task.id == task.id
        assert summary.stats == ExecutionStats()

    @pytest.mark.asyncio
    async def test_summary_counts_runs(self, service, remote, make_definition):
        task = await service.create_task(make_definition(server_ids=[1, 2]))
        remote.outcomes[2] = RuntimeError("lost connection")

        await service.execute_now(task.id, [1, 2])
        await service.dispatcher.drain()

        summary = await service.get_task(task.id)
        assert summary.stats == ExecutionStats(
            total=2, succeeded=1, failed=1, running=0
        )

    @pytest.mark.asyncio
    async def test_list_tasks(self, service, make_definition):
        enabled = await service.create_task(make_definition(name="enabled"))
        await service.create_task(make_definition(name="paused", is_enabled=False))

        summaries = await service.list_tasks()
        assert [s.task.name for s in summaries] == ["enabled", "paused"]
        assert all(s.stats == ExecutionStats() for s in summaries)

        only_enabled = await service.list_tasks(enabled_only=True)
        assert [s.task.id for s in only_enabled] == [enabled.id]

    @pytest.mark.asyncio
    async def test_update_toggle_delete(self, service, make_definition):
        task = await service.create_task(make_definition())

        updated = await service.update_task(task.id, TaskUpdate(name="renamed"))
        assert updated.name == "renamed"

        assert await service.toggle_task(task.id, False) is True
        assert (await service.get_task(task.id)).task.is_enabled is False

        assert await service.delete_task(task.id) is True
        with pytest.raises(TaskNotFoundError):
            await service.get_task(task.id)


class TestValidateCron:
    """Tests for cron preview."""

    def test_valid_expression(self, service):
        result = service.validate_cron("*/5 * * * *")

        assert result.is_valid is True
        assert result.error is None
        assert result.timezone == "UTC"
        assert result.next_execution == datetime(2024, 1, 1, 0, 5, tzinfo=UTC)
        assert len(result.upcoming) == 5
        assert result.upcoming[0] == result.next_execution

    def test_custom_count_and_timezone(self, service):
        result = service.validate_cron("0 9 * * *", "Asia/Kolkata", count=2)

        assert result.is_valid is True
        assert result.upcoming == [
            datetime(2024, 1, 1, 3, 30, tzinfo=UTC),
            datetime(2024, 1, 2, 3, 30, tzinfo=UTC),
        ]

    def test_invalid_expression(self, service):
        result = service.validate_cron("every tuesday")

        assert result.is_valid is False
        assert result.next_execution is None
        assert result.upcoming == []
        assert "Invalid cron expression" in result.error

    def test_invalid_timezone(self, service):
        result = service.validate_cron("* * * * *", "Middle/Earth")

        assert result.is_valid is False
        assert "Unknown timezone" in result.error


class TestExecutions:
    """Tests for execution queries through the service."""

    @pytest.mark.asyncio
    async def test_manual_run_and_history(self, service, make_definition):
        task = await service.create_task(make_definition(server_ids=[1, 3]))

        records = await service.execute_now(task.id, [3, 1])
        await service.dispatcher.drain()

        assert [r.server_id for r in records] == [3, 1]

        by_task = await service.list_task_executions(task.id)
        assert {e.server_id for e in by_task} == {1, 3}

        by_server = await service.list_server_executions(3)
        assert [e.task_id for e in by_server] == [task.id]

        execution = await service.get_execution(records[0].id)
        assert execution.status == ExecutionStatus.SUCCEEDED

    @pytest.mark.asyncio
    async def test_manual_run_rejects_unbound(self, service, make_definition):
        task = await service.create_task(make_definition(server_ids=[1]))

        with pytest.raises(InvalidArgumentError):
            await service.execute_now(task.id, [1, 2])


class TestFromConfig:
    """Tests for building the stack from configuration."""

    @pytest.mark.asyncio
    async def test_builds_local_stack(self, minimal_config, database, make_definition):
        service = SchedulingService.from_config(minimal_config, database)

        task = await service.create_task(
            make_definition(command="echo hello && echo oops >&2", server_ids=[1])
        )
        with pytest.raises(InvalidArgumentError, match="Server 2 does not exist"):
            await service.create_task(make_definition(server_ids=[2]))

        [record] = await service.execute_now(task.id, [1])
        await service.dispatcher.drain()

        execution = await service.get_execution(record.id)
        assert execution.status == ExecutionStatus.SUCCEEDED
        assert execution.exit_code == 0
        assert execution.output == "hello\n"
        assert execution.error_output == "oops\n"

    @pytest.mark.asyncio
    async def test_explicit_remote_wins(
        self, minimal_config, database, remote, make_definition
    ):
        service = SchedulingService.from_config(minimal_config, database, remote=remote)
        task = await service.create_task(make_definition(server_ids=[1]))

        await service.execute_now(task.id, [1])
        await service.dispatcher.drain()

        assert remote.calls == [(1, task.command, task.timeout_seconds)]
