"""Tests for the cleanup task executor and the scheduler-facing CleanupJob."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from conftest import RecordingNotifier, ScriptedDatabase
from kiyoshi.cleaner.task import CleanupJob, ExecutionProgress, TaskExecutor, _abandoned_batches
from kiyoshi.config.schema import Config, DatabaseConfig, SafeModeConfig
from kiyoshi.errors import (
    DatabaseConnectionError,
    ExecutionError,
    QueryValidationError,
    RenderError,
    TaskTimeoutError,
)

pytestmark = pytest.mark.asyncio


class TestBatchLoop:
    """Tests for batching until a batch affects no rows."""

    async def test_accumulates_batches_until_zero_rows(self, task_factory, safe_mode, notifier, metadata):
        """Should keep deleting while batches affect rows and report the total once."""
        database = ScriptedDatabase(100, 100, 0)
        executor = TaskExecutor(task_factory(), safe_mode, database, notifier)

        result = await executor.execute(metadata)

        assert result.status == "succeeded"
        assert result.total_rows == 200
        assert result.elapsed_seconds == pytest.approx(0.02)
        assert len(database.calls) == 3
        assert notifier.headers == [":white_check_mark: Cleanup succeeded: cleanup_logs"]

    async def test_runs_the_same_rendered_statement_each_batch(self, task_factory, safe_mode, notifier, metadata):
        """Should render once with the logical time and batch size injected."""
        database = ScriptedDatabase(10, 0)
        executor = TaskExecutor(task_factory(), safe_mode, database, notifier)

        await executor.execute(metadata)

        assert database.calls[0] == database.calls[1]
        assert "DELETE FROM logs" in database.calls[0]
        assert "DATE_SUB('2024-03-20 00:00:00', INTERVAL 30 DAY)" in database.calls[0]
        assert database.calls[0].endswith("LIMIT 100")

    async def test_injected_batch_size_overrides_parameter(self, task_factory, safe_mode, notifier, metadata):
        """Should prefer the task batch_size over a same-named parameter."""
        task = task_factory(parameters={"table_name": "logs", "batch_size": "5"}, batch_size=250)
        executor = TaskExecutor(task, safe_mode, ScriptedDatabase(), notifier)

        assert executor.render(metadata).endswith("LIMIT 250")

    async def test_nothing_to_delete_still_succeeds(self, task_factory, safe_mode, notifier, metadata):
        """Should succeed with zero rows when the first batch affects nothing."""
        database = ScriptedDatabase(0)
        executor = TaskExecutor(task_factory(), safe_mode, database, notifier)

        result = await executor.execute(metadata)

        assert result.total_rows == 0
        assert len(database.calls) == 1
        assert len(notifier.sent) == 1


class TestRetries:
    """Tests for retry handling."""

    async def test_exhausted_retries_raise_execution_error(self, task_factory, safe_mode, notifier, metadata):
        """Should attempt exactly retry_attempts times and notify failure once."""
        database = ScriptedDatabase(*[RuntimeError("lock wait timeout")] * 3)
        executor = TaskExecutor(task_factory(retry_attempts=3), safe_mode, database, notifier)

        with pytest.raises(ExecutionError) as exc_info:
            await executor.execute(metadata)

        assert exc_info.value.task_name == "cleanup_logs"
        assert exc_info.value.attempts == 3
        assert "lock wait timeout" in str(exc_info.value)
        assert len(database.calls) == 3
        assert notifier.headers == [":x: Cleanup failed: cleanup_logs"]

    async def test_recovers_after_transient_error(self, task_factory, safe_mode, notifier, metadata):
        """Should retry a failed batch and finish normally."""
        database = ScriptedDatabase(RuntimeError("gone away"), 50, 0)
        executor = TaskExecutor(task_factory(), safe_mode, database, notifier)

        result = await executor.execute(metadata)

        assert result.total_rows == 50
        assert len(database.calls) == 3
        assert len(notifier.sent) == 1

    async def test_successful_batches_do_not_consume_attempts(self, task_factory, safe_mode, notifier, metadata):
        """Should allow more batches than retry attempts."""
        database = ScriptedDatabase(10, 10, 10, 10, 0)
        executor = TaskExecutor(task_factory(retry_attempts=1), safe_mode, database, notifier)

        result = await executor.execute(metadata)

        assert result.total_rows == 40

    async def test_execution_error_keeps_partial_progress(self, task_factory, safe_mode, notifier, metadata):
        """Should report rows deleted before retries ran out."""
        database = ScriptedDatabase(100, RuntimeError("a"), RuntimeError("b"))
        executor = TaskExecutor(task_factory(retry_attempts=2), safe_mode, database, notifier)

        with pytest.raises(ExecutionError) as exc_info:
            await executor.execute(metadata)

        assert exc_info.value.total_rows == 100


class TestTimeout:
    """Tests for the whole-task timeout."""

    async def test_timeout_preempts_hanging_batch(self, task_factory, safe_mode, notifier, metadata):
        """Should stop a stuck batch and report progress made so far."""
        database = ScriptedDatabase(100, "hang")
        executor = TaskExecutor(task_factory(task_timeout_seconds=0.2), safe_mode, database, notifier)

        with pytest.raises(TaskTimeoutError) as exc_info:
            await executor.execute(metadata)

        assert exc_info.value.total_rows == 100
        assert exc_info.value.elapsed_seconds == pytest.approx(0.01)
        assert exc_info.value.timeout_seconds == 0.2
        assert notifier.headers == [":hourglass: Cleanup timed out: cleanup_logs"]

    async def test_timeout_does_not_wait_for_connection_cleanup(self, task_factory, safe_mode, notifier, metadata):
        """Should report at the deadline even when the cancelled call is slow to unwind."""
        database = ScriptedDatabase(100, "hang", cancel_cleanup_seconds=1.0)
        executor = TaskExecutor(task_factory(task_timeout_seconds=0.1), safe_mode, database, notifier)
        loop = asyncio.get_running_loop()

        started = loop.time()
        with pytest.raises(TaskTimeoutError) as exc_info:
            await executor.execute(metadata)
        took = loop.time() - started

        assert took < 0.5
        assert exc_info.value.total_rows == 100
        assert database.cleanup_finished is False
        assert len(notifier.sent) == 1

        # the abandoned batch still unwinds in the background
        await asyncio.gather(*_abandoned_batches, return_exceptions=True)
        assert database.cleanup_finished is True


class TestGuards:
    """Tests for the steps before any statement runs."""

    async def test_disabled_task_is_skipped(self, task_factory, safe_mode, notifier, metadata):
        """Should not render, execute or notify for a disabled task."""
        database = ScriptedDatabase()
        executor = TaskExecutor(task_factory(enabled=False), safe_mode, database, notifier)

        result = await executor.execute(metadata)

        assert result.status == "skipped"
        assert database.calls == []
        assert notifier.sent == []

    async def test_render_error_is_not_notified(self, task_factory, safe_mode, notifier, metadata):
        """Should raise RenderError without touching the database or Slack."""
        database = ScriptedDatabase()
        task = task_factory(template_query="DELETE FROM {{ missing_table }} WHERE 1")
        executor = TaskExecutor(task, safe_mode, database, notifier)

        with pytest.raises(RenderError) as exc_info:
            await executor.execute(metadata)

        assert exc_info.value.task_name == "cleanup_logs"
        assert database.calls == []
        assert notifier.sent == []

    async def test_unsafe_query_is_rejected_before_execution(self, task_factory, safe_mode, notifier, metadata):
        """Should notify once and never execute a statement that fails validation."""
        database = ScriptedDatabase()
        task = task_factory(template_query="DELETE FROM logs LIMIT {{ batch_size }}")
        executor = TaskExecutor(task, safe_mode, database, notifier)

        with pytest.raises(QueryValidationError) as exc_info:
            await executor.execute(metadata)

        assert "WHERE" in exc_info.value.reason
        assert database.calls == []
        assert notifier.headers == [":x: Cleanup failed: cleanup_logs"]

    async def test_safe_mode_disabled_skips_validation(self, task_factory, notifier, metadata):
        """Should run any statement when safe mode is off."""
        database = ScriptedDatabase(3, 0)
        task = task_factory(template_query="DELETE FROM logs LIMIT {{ batch_size }}")
        executor = TaskExecutor(task, SafeModeConfig(enabled=False), database, notifier)

        result = await executor.execute(metadata)

        assert result.total_rows == 3

    async def test_notifier_failure_does_not_change_outcome(self, task_factory, safe_mode, metadata):
        """Should still succeed when the success notification cannot be sent."""
        executor = TaskExecutor(task_factory(), safe_mode, ScriptedDatabase(7, 0), RecordingNotifier(fail=True))

        result = await executor.execute(metadata)

        assert result.status == "succeeded"
        assert result.total_rows == 7


class TestExecutionProgress:
    """Tests for the shared progress record."""

    async def test_snapshot_reflects_last_update(self):
        progress = ExecutionProgress()
        assert await progress.snapshot() == (0, 0.0)

        await progress.update(300, 1.5)

        assert await progress.snapshot() == (300, 1.5)


class TestCleanupJob:
    """Tests for the per-firing wrapper used by the scheduler."""

    @pytest.fixture
    def config(self, safe_mode):
        return Config(
            database_config=DatabaseConfig(host="db", username="admin", password="pw", database="app"),
            safe_mode=safe_mode,
        )

    async def test_run_once_executes_and_closes_database(self, task_factory, config, notifier, metadata):
        """Should open a pool for the firing and release it afterwards."""
        database = ScriptedDatabase(5, 0)
        database.close = AsyncMock()

        with patch("kiyoshi.cleaner.task.Database.connect", AsyncMock(return_value=database)):
            result = await CleanupJob(task_factory(), config, notifier).run_once(metadata)

        assert result.total_rows == 5
        database.close.assert_awaited_once()

    async def test_run_once_closes_database_on_failure(self, task_factory, config, notifier, metadata):
        """Should release the pool even when the firing fails."""
        database = ScriptedDatabase(RuntimeError("x"))
        database.close = AsyncMock()

        with patch("kiyoshi.cleaner.task.Database.connect", AsyncMock(return_value=database)):
            with pytest.raises(ExecutionError):
                await CleanupJob(task_factory(retry_attempts=1), config, notifier).run_once(metadata)

        database.close.assert_awaited_once()

    async def test_run_swallows_connection_error(self, task_factory, config, notifier, metadata):
        """Should log connection failures without notifying or raising."""
        connect = AsyncMock(side_effect=DatabaseConnectionError("Failed to connect to database: refused"))

        with patch("kiyoshi.cleaner.task.Database.connect", connect):
            await CleanupJob(task_factory(), config, notifier).run(metadata)

        connect.assert_awaited_once()
        assert notifier.sent == []

    async def test_disabled_task_does_not_connect(self, task_factory, config, notifier, metadata):
        """Should skip before opening a database connection."""
        connect = AsyncMock()

        with patch("kiyoshi.cleaner.task.Database.connect", connect):
            result = await CleanupJob(task_factory(enabled=False), config, notifier).run_once(metadata)

        assert result.status == "skipped"
        connect.assert_not_awaited()
