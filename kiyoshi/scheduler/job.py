"""
定时任务（Job）- cron 表达式 + 执行动作 + 逻辑时钟。

逻辑时钟（data_interval_end）的推进规则：
- 创建时初始化为“创建时刻之后的第一个触发点”
- 每次触发时，先把当前值交给动作，再推进到“上一个逻辑时间之后的下一个触发点”
- 推进基于上一个逻辑时间而不是墙钟时间，因此即使某次触发延迟，
  后续的时间槽也不会漂移、跳过或重复

cron 表达式解析依赖 croniter。croniter 的 6 字段格式把秒放在最后，
而 kiyoshi 的配置使用“秒 分 时 日 月 周”，解析前会调整字段顺序。
"""

import asyncio
from datetime import datetime, timedelta

from croniter import CroniterBadCronError, CroniterBadDateError, CroniterError, croniter
from loguru import logger

from kiyoshi.errors import ScheduleParseError
from kiyoshi.scheduler.types import JobScheduleMetadata, Runnable
from kiyoshi.utils.helpers import utc_now


class CronSchedule:
    """
    解析后的 cron 表达式（6 字段：秒 分 时 日 月 周）。

    5 字段表达式会自动补上秒字段 "0"。
    """

    def __init__(self, expression: str):
        fields = expression.split()
        if len(fields) == 5:
            fields = ["0", *fields]
        if len(fields) != 6:
            raise ScheduleParseError(
                f"Invalid cron expression '{expression}': expected 5 or 6 fields, got {len(fields)}"
            )
        self.expression = " ".join(fields)
        # croniter 的顺序为：分 时 日 月 周 秒
        self._croniter_expr = " ".join([*fields[1:], fields[0]])
        try:
            croniter(self._croniter_expr, datetime(2000, 1, 1))
        except (CroniterBadCronError, CroniterError, ValueError) as e:
            raise ScheduleParseError(f"Invalid cron expression '{expression}': {e}") from e

    def after(self, reference: datetime) -> datetime | None:
        """返回严格晚于 reference 的第一个触发时间；调度已耗尽时返回 None。"""
        try:
            upcoming = croniter(self._croniter_expr, reference).get_next(datetime)
        except CroniterBadDateError:
            return None
        # croniter 会丢弃亚秒部分，可能返回与 reference 同一秒的时间点
        while upcoming <= reference:
            try:
                upcoming = croniter(self._croniter_expr, upcoming).get_next(datetime)
            except CroniterBadDateError:
                return None
        return upcoming

    def __str__(self) -> str:
        return self.expression


class Job:
    """
    调度器中的一个定时任务。

    属性:
        name: 任务名称（仅用于日志）
        schedule: 解析后的 cron 表达式
        action: 触发时执行的 Runnable
        last_run: 上次触发的墙钟时间，从未触发时为 None
        schedule_metadata: 逻辑时钟，保存下一次触发要负责的时间窗口
    """

    def __init__(self, name: str, schedule: str, action: Runnable):
        """
        创建任务并初始化逻辑时钟。

        参数:
            name: 任务名称
            schedule: cron 表达式（5 或 6 字段）
            action: 触发时执行的动作

        异常:
            ScheduleParseError: cron 表达式非法
        """
        self.name = name
        self.schedule = CronSchedule(schedule)
        self.action = action
        self.last_run: datetime | None = None
        self.schedule_metadata = JobScheduleMetadata(
            data_interval_end=self.next_fire_time(self.schedule, utc_now())
        )
        self._exhausted = False
        self._tasks: set[asyncio.Task] = set()

    @staticmethod
    def next_fire_time(schedule: CronSchedule, reference: datetime) -> datetime:
        """
        计算严格晚于 reference 的最早触发时间。

        调度已耗尽（没有后续触发点）时原样返回 reference 作为哨兵值。
        """
        upcoming = schedule.after(reference)
        return upcoming if upcoming is not None else reference

    def next_run_at(self) -> datetime | None:
        """下一次应触发的时间点；调度已耗尽时返回 None。"""
        if self.last_run is None:
            return self.schedule.after(utc_now())
        if self._exhausted:
            return None
        # 触发后逻辑时钟已推进到下一个时间槽，直接以它为准，避免基于墙钟产生漂移
        return self.schedule_metadata.data_interval_end

    def until_next_fire(self) -> timedelta | None:
        """距离下一次触发还有多久。已过期的时间点返回 0；调度耗尽时返回 None。"""
        upcoming = self.next_run_at()
        if upcoming is None:
            return None
        return max(upcoming - utc_now(), timedelta(0))

    def fire(self) -> asyncio.Task:
        """
        触发一次任务。

        流程：
        1. 记录墙钟时间 last_run
        2. 取出当前逻辑时间作为本次触发的元数据
        3. 推进逻辑时钟到下一个时间槽
        4. 以独立的 asyncio.Task 派发动作，不等待其完成

        前三步同步完成，因此即使动作之后失败或超时，逻辑时钟也一定已经推进。

        返回:
            派发出去的 asyncio.Task
        """
        now = utc_now()
        logger.info(f"Job '{self.name}' firing at {now.isoformat()}")
        self.last_run = now

        metadata = self.schedule_metadata
        upcoming = self.next_fire_time(self.schedule, metadata.data_interval_end)
        self._exhausted = upcoming == metadata.data_interval_end
        self.schedule_metadata = JobScheduleMetadata(data_interval_end=upcoming)

        task = asyncio.create_task(self._dispatch(metadata), name=f"job:{self.name}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        logger.info(f"Job '{self.name}', next run will be at {upcoming.isoformat()}")
        return task

    async def _dispatch(self, metadata: JobScheduleMetadata) -> None:
        """执行动作并在触发边界兜底捕获异常，保证单次失败不影响调度器。"""
        try:
            await self.action.run(metadata)
        except Exception as e:
            logger.error(f"Job '{self.name}' failed: {e}")

    def cancel(self) -> None:
        """取消所有仍在执行中的触发。"""
        for task in list(self._tasks):
            task.cancel()

    @property
    def in_flight(self) -> int:
        """仍在执行中的触发数量。"""
        return len(self._tasks)
