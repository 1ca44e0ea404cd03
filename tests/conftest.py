"""
Pytest configuration and fixtures for kiyoshi tests.

Provides:
- Factory fixture for cleanup task definitions
- Scripted in-memory database stand-in
- Recording notifier
"""

import asyncio
from datetime import datetime, timezone

import pytest

from kiyoshi.channels.base import BaseNotifier, Block
from kiyoshi.config.schema import CleanupTaskConfig, SafeModeConfig, SlackConfig
from kiyoshi.scheduler.types import JobScheduleMetadata

SAFE_QUERY = (
    "DELETE FROM {{ table_name }} "
    "WHERE created_at < DATE_SUB('{{ data_interval_end }}', INTERVAL 30 DAY) "
    "LIMIT {{ batch_size }}"
)


class RecordingNotifier(BaseNotifier):
    """Notifier that keeps every message instead of sending it."""

    name = "recording"

    def __init__(self, fail: bool = False):
        super().__init__(SlackConfig(enabled=True, bot_token="xoxb-test", channel_id="C123"))
        self.fail = fail
        self.sent: list[list[Block]] = []

    async def send_to_channel(self, blocks: list[Block], channel_id: str) -> None:
        if self.fail:
            raise RuntimeError("slack is down")
        self.sent.append(blocks)

    @property
    def headers(self) -> list[str]:
        return [blocks[0]["text"]["text"] for blocks in self.sent]


class ScriptedDatabase:
    """
    Database stand-in that replays a script of outcomes.

    Each script entry is an int (rows affected), an exception (raised),
    or "hang" (never returns). Once exhausted, every call affects 0 rows.
    A cancelled "hang" call spends cancel_cleanup_seconds before giving up,
    like a driver closing a connection that is still busy on the server.
    """

    def __init__(self, *script, elapsed: float = 0.01, cancel_cleanup_seconds: float = 0.0):
        self.script = list(script)
        self.elapsed = elapsed
        self.cancel_cleanup_seconds = cancel_cleanup_seconds
        self.cleanup_finished = False
        self.calls: list[str] = []

    async def execute_query(self, sql: str) -> tuple[int, float]:
        self.calls.append(sql)
        outcome = self.script.pop(0) if self.script else 0
        if outcome == "hang":
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                await asyncio.sleep(self.cancel_cleanup_seconds)
                self.cleanup_finished = True
                raise
        if isinstance(outcome, Exception):
            raise outcome
        return outcome, self.elapsed


@pytest.fixture
def task_factory():
    """Factory for creating cleanup task definitions."""

    def _create_task(**overrides) -> CleanupTaskConfig:
        values = {
            "name": "cleanup_logs",
            "cron_schedule": "0 0 0 * * *",
            "template_query": SAFE_QUERY,
            "parameters": {"table_name": "logs"},
            "batch_size": 100,
            "retry_attempts": 3,
            "retry_delay_seconds": 0,
            "query_interval_seconds": 0,
            "task_timeout_seconds": 5,
        }
        values.update(overrides)
        return CleanupTaskConfig(**values)

    return _create_task


@pytest.fixture
def safe_mode() -> SafeModeConfig:
    return SafeModeConfig(enabled=True, retention_days=30)


@pytest.fixture
def metadata() -> JobScheduleMetadata:
    return JobScheduleMetadata(data_interval_end=datetime(2024, 3, 20, tzinfo=timezone.utc))


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()
