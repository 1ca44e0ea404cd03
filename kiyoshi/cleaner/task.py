"""
清理任务执行器 - 把一次调度触发变成一串受安全校验、分批、重试、超时约束的 DELETE。

单次触发的状态流转：
    跳过（任务未启用）
    → 渲染模板
    → 安全校验（仅在 safe_mode.enabled 时）
    → 执行（分批 + 重试循环）
    → 成功 / 失败
    超时可以在执行阶段的任意时刻抢占

执行循环：
- 每批执行同一条渲染好的语句，语句自身需要用 LIMIT 把影响行数限制在 batch_size 以内
- 影响 0 行表示已清理完毕 → 成功
- 影响 >0 行 → 累加进度，等待 query_interval_seconds 后继续（不计入重试次数）
- 执行出错 → 重试计数 +1，未耗尽时等待 retry_delay_seconds 后重试

每次触发的结果只可能是 {成功, RenderError, QueryValidationError, ExecutionError,
TaskTimeoutError} 之一，并且最多发送一条通知。
"""

import asyncio
from dataclasses import dataclass
from typing import Literal, Protocol

from loguru import logger

from kiyoshi.channels.base import BaseNotifier
from kiyoshi.channels.messages import failure_message, success_message, timeout_message
from kiyoshi.cleaner.db import Database
from kiyoshi.cleaner.template import TemplateEngine
from kiyoshi.cleaner.validator import SqlValidator
from kiyoshi.config.schema import CleanupTaskConfig, Config, SafeModeConfig
from kiyoshi.errors import (
    CleanupError,
    ExecutionError,
    QueryValidationError,
    RenderError,
    TaskTimeoutError,
)
from kiyoshi.scheduler.types import JobScheduleMetadata, Runnable
from kiyoshi.utils.helpers import format_timestamp


# 被放弃但尚未结束的批次任务（事件循环只持有弱引用）
_abandoned_batches: set[asyncio.Task] = set()


def _discard_result(task: asyncio.Task) -> None:
    """回收被放弃的批次任务的结果，避免 "exception was never retrieved" 警告。"""
    _abandoned_batches.discard(task)
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.debug(f"Abandoned batch of {task.get_name()} finished with: {error}")


class QueryExecutor(Protocol):
    """执行器对数据库的唯一要求。"""

    async def execute_query(self, sql: str) -> tuple[int, float]: ...


@dataclass(frozen=True)
class CleanupResult:
    """单次触发的成功结果。"""
    task_name: str
    status: Literal["succeeded", "skipped"]
    total_rows: int = 0
    elapsed_seconds: float = 0.0


class ExecutionProgress:
    """
    单次触发的累计进度。

    执行循环是唯一的写入者，超时处理是唯一的读取者，两者通过同一把锁访问。
    """

    def __init__(self):
        self._lock = asyncio.Lock()
        self._total_rows = 0
        self._elapsed_seconds = 0.0

    async def update(self, total_rows: int, elapsed_seconds: float) -> None:
        async with self._lock:
            self._total_rows = total_rows
            self._elapsed_seconds = elapsed_seconds

    async def snapshot(self) -> tuple[int, float]:
        """返回 (累计影响行数, 累计查询耗时)。"""
        async with self._lock:
            return self._total_rows, self._elapsed_seconds


class TaskExecutor:
    """
    单个清理任务的执行器。

    属性:
        task: 任务定义
        safe_mode: 安全策略
        database: 提供 execute_query 的数据库对象
        notifier: 通知渠道
    """

    def __init__(
        self,
        task: CleanupTaskConfig,
        safe_mode: SafeModeConfig,
        database: QueryExecutor,
        notifier: BaseNotifier,
        template_engine: TemplateEngine | None = None,
    ):
        self.task = task
        self.safe_mode = safe_mode
        self.database = database
        self.notifier = notifier
        self.template_engine = template_engine or TemplateEngine()
        self.validator = SqlValidator(safe_mode)

    def render(self, metadata: JobScheduleMetadata) -> str:
        """渲染本次触发的 SQL，自动注入 batch_size 和 data_interval_end。"""
        parameters = {**self.task.parameters, "batch_size": str(self.task.batch_size)}
        try:
            return self.template_engine.render(
                self.task.template_query, parameters, metadata.data_interval_end
            )
        except RenderError as e:
            raise RenderError(e.reason, self.task.name) from e

    async def execute(self, metadata: JobScheduleMetadata) -> CleanupResult:
        """
        执行一次触发。

        返回:
            CleanupResult（成功或跳过）

        异常:
            RenderError / QueryValidationError / ExecutionError / TaskTimeoutError
        """
        task = self.task
        if not task.enabled:
            logger.info(f"Skipping disabled task: {task.name}")
            return CleanupResult(task_name=task.name, status="skipped")

        logger.info(
            f"Processing cleanup task: {task.name} "
            f"(data_interval_end={format_timestamp(metadata.data_interval_end)})"
        )
        sql = self.render(metadata)

        if self.safe_mode.enabled:
            try:
                self.validator.validate(sql)
            except QueryValidationError as e:
                logger.warning(f"SQL validation failed for task {task.name}: {e.reason}")
                await self.notifier.notify(
                    failure_message(task.name, f"SQL validation failed: {e.reason}", metadata.data_interval_end)
                )
                raise QueryValidationError(e.reason, task.name) from e

        progress = ExecutionProgress()
        batch_task = asyncio.create_task(self._run_batches(sql, progress), name=f"cleanup:{task.name}")
        try:
            done, _ = await asyncio.wait({batch_task}, timeout=task.task_timeout_seconds)
        except asyncio.CancelledError:
            batch_task.cancel()
            raise

        if not done:
            # 放弃进行中的批次：只发出取消，不等待连接清理完成
            batch_task.cancel()
            _abandoned_batches.add(batch_task)
            batch_task.add_done_callback(_discard_result)
            total_rows, elapsed = await progress.snapshot()
            logger.warning(
                f"Task {task.name} timed out after {task.task_timeout_seconds}s "
                f"({total_rows} rows deleted so far)"
            )
            await self.notifier.notify(
                timeout_message(task.name, task.task_timeout_seconds, total_rows, elapsed, metadata.data_interval_end)
            )
            raise TaskTimeoutError(task.name, task.task_timeout_seconds, total_rows, elapsed)

        try:
            total_rows, elapsed = batch_task.result()
        except ExecutionError as e:
            logger.warning(f"All attempts failed for task: {task.name}")
            await self.notifier.notify(
                failure_message(task.name, e.reason, metadata.data_interval_end, attempts=e.attempts)
            )
            raise

        await self.notifier.notify(success_message(task.name, total_rows, elapsed, metadata.data_interval_end))
        return CleanupResult(task_name=task.name, status="succeeded", total_rows=total_rows, elapsed_seconds=elapsed)

    async def _run_batches(self, sql: str, progress: ExecutionProgress) -> tuple[int, float]:
        """分批 + 重试循环。批次严格串行，返回 (累计影响行数, 累计查询耗时)。"""
        task = self.task
        attempt = 0
        total_rows = 0
        total_elapsed = 0.0
        last_error: Exception | None = None

        while attempt < task.retry_attempts:
            logger.debug(f"Executing sql query: \n{sql}")
            try:
                rows, elapsed = await self.database.execute_query(sql)
            except Exception as e:
                attempt += 1
                last_error = e
                logger.warning(f"Attempt {attempt}/{task.retry_attempts} failed for task {task.name}: {e}")
                if attempt < task.retry_attempts:
                    await asyncio.sleep(task.retry_delay_seconds)
                continue

            if rows == 0:
                logger.info(
                    f"No more rows to clean up. Total rows cleaned: {total_rows} "
                    f"for task: {task.name} in {total_elapsed:.2f}s"
                )
                return total_rows, total_elapsed

            total_rows += rows
            total_elapsed += elapsed
            await progress.update(total_rows, total_elapsed)
            logger.info(
                f"Successfully cleaned up {rows} rows (total: {total_rows}) "
                f"for task: {task.name} in {elapsed:.2f}s"
            )
            await asyncio.sleep(task.query_interval_seconds)

        raise ExecutionError(
            f"All {task.retry_attempts} attempts failed: {last_error}",
            task.name,
            attempts=attempt,
            total_rows=total_rows,
        )


class CleanupJob(Runnable):
    """
    把一个清理任务绑定到调度器的 Runnable。

    每次触发都会新建数据库连接池并在结束后释放，任务定义和全局配置都是
    不可变对象，因此同一任务的多次触发可以安全地并发运行。
    所有单次触发的错误在这里被捕获并记录，不会传播到调度器。
    """

    def __init__(self, task: CleanupTaskConfig, config: Config, notifier: BaseNotifier):
        self.task = task
        self.config = config
        self.notifier = notifier

    async def run(self, metadata: JobScheduleMetadata) -> None:
        try:
            await self.run_once(metadata)
        except CleanupError as e:
            logger.warning(f"Error running cleanup task: {e}")

    async def run_once(self, metadata: JobScheduleMetadata) -> CleanupResult:
        """执行一次清理，错误直接抛出（供 CLI 手动触发使用）。"""
        if not self.task.enabled:
            logger.info(f"Skipping disabled task: {self.task.name}")
            return CleanupResult(task_name=self.task.name, status="skipped")

        database = await Database.connect(self.config.database_config)
        try:
            executor = TaskExecutor(self.task, self.config.safe_mode, database, self.notifier)
            return await executor.execute(metadata)
        finally:
            await database.close()
