"""Tests for the kiyoshi command line."""

from unittest.mock import AsyncMock, patch

import pytest
from typer.testing import CliRunner

from kiyoshi import __version__
from kiyoshi.cli.commands import app

runner = CliRunner()

CONFIG = """
config:
  database_config:
    host: localhost
    username: db_admin
    database: my_db
  safe_mode:
    retention_days: 30

cleanup_tasks:
  - name: purge_logs
    cron_schedule: "SCHEDULE"
    template_query: |
      DELETE FROM logs
      WHERE created_at < DATE_SUB('{{ data_interval_end }}', INTERVAL {{ days }} DAY)
      LIMIT {{ batch_size }}
    parameters:
      days: DAYS
    batch_size: 1000
    retry_attempts: 3
"""


@pytest.fixture
def write_config(tmp_path):
    def _write(days: int = 30, schedule: str = "0 0 * * * *") -> str:
        path = tmp_path / "config.yaml"
        path.write_text(CONFIG.replace("DAYS", str(days)).replace("SCHEDULE", schedule))
        return str(path)

    return _write


class TestCommands:
    """Tests for the offline commands."""

    def test_version(self):
        result = runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_tasks_lists_configured_tasks(self, write_config):
        result = runner.invoke(app, ["tasks", "-c", write_config()])

        assert result.exit_code == 0
        assert "purge_logs" in result.stdout

    def test_validate_accepts_safe_tasks(self, write_config):
        result = runner.invoke(app, ["validate", "-c", write_config(days=30)])

        assert result.exit_code == 0
        assert "valid" in result.stdout

    def test_validate_rejects_short_retention(self, write_config):
        result = runner.invoke(app, ["validate", "-c", write_config(days=7)])

        assert result.exit_code == 1

    def test_validate_rejects_invalid_schedule(self, write_config):
        result = runner.invoke(app, ["validate", "-c", write_config(schedule="0 99 * * * *")])

        assert result.exit_code == 1

    def test_missing_config_exits_with_error(self, tmp_path):
        result = runner.invoke(app, ["validate", "-c", str(tmp_path / "missing.yaml")])

        assert result.exit_code == 1

    def test_run_task_unknown_name(self, write_config):
        result = runner.invoke(app, ["run-task", "nope", "-c", write_config()])

        assert result.exit_code == 1
        assert "not found" in result.stdout

    def test_run_task_rejects_malformed_timestamp(self, write_config):
        """Should report a usage error instead of a traceback for a bad --at value."""
        with patch("kiyoshi.cleaner.task.Database.connect", AsyncMock()) as connect:
            result = runner.invoke(app, ["run-task", "purge_logs", "-c", write_config(), "--at", "not-a-date"])

        assert result.exit_code == 2
        assert not isinstance(result.exception, ValueError)
        connect.assert_not_awaited()


class TestRun:
    """Tests for the long-running scheduler command."""

    def test_scheduler_crash_exits_with_error(self, write_config):
        """Should surface a failed scheduler loop as a non-zero exit."""
        with patch("kiyoshi.scheduler.service.Scheduler.run", AsyncMock(side_effect=RuntimeError("loop crashed"))):
            result = runner.invoke(app, ["run", "-c", write_config()])

        assert result.exit_code == 1
        assert "Scheduler stopped unexpectedly" in result.stdout
