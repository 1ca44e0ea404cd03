"""定时任务调度器 - 计算最近的触发点，睡眠，然后并发触发所有到期任务。

架构设计：
- 单一循环：每一轮计算所有任务中最短的等待时间，只在睡眠处挂起
- 等待时间精确到毫秒；相同等待时间的任务在同一轮一起触发
- 触发即派发：每个任务的动作以独立的 asyncio.Task 运行，调度循环从不等待它，
  因此慢任务或卡住的任务不会推迟后续的触发
- 停止时直接取消循环和所有进行中的触发，没有排空阶段
"""

import asyncio
from datetime import timedelta

from loguru import logger

from kiyoshi.scheduler.job import Job

# 睡眠时额外多等一小段时间，避免在真正的触发点之前几微秒醒来又空转一轮
WAKE_EPSILON = timedelta(microseconds=700)


class Scheduler:
    """
    调度器 - 持有所有 Job 并驱动它们按 cron 触发。

    进程内单例：启动时创建，收到停止信号时销毁。
    """

    def __init__(self):
        self.jobs: list[Job] = []
        self._run_task: asyncio.Task | None = None
        self._running = False

    def add(self, job: Job) -> None:
        """注册一个任务。"""
        self.jobs.append(job)
        logger.debug(f"Scheduler: added job '{job.name}' ({job.schedule})")

    def next_tick(self) -> tuple[timedelta, list[Job]] | None:
        """
        计算下一轮要触发的任务。

        返回:
            (最短等待时间, 在该时间点触发的任务列表)；没有任何任务还有后续触发点时返回 None
        """
        next_jobs: list[Job] = []
        next_millis: int | None = None
        for job in self.jobs:
            duration = job.until_next_fire()
            if duration is None:
                continue
            millis = duration // timedelta(milliseconds=1)
            if next_millis is None or millis < next_millis:
                next_millis = millis
                next_jobs = [job]
            elif millis == next_millis:
                next_jobs.append(job)

        if next_millis is None:
            return None
        return timedelta(milliseconds=next_millis), next_jobs

    async def run(self) -> None:
        """调度主循环。直到没有任务可触发或被取消时返回。"""
        self._running = True
        logger.info(f"Scheduler started with {len(self.jobs)} jobs")
        try:
            while self._running:
                tick = self.next_tick()
                if tick is None:
                    logger.info("Scheduler: no upcoming jobs, stopping")
                    return
                duration, jobs = tick
                logger.debug(
                    f"Scheduler: sleeping {duration.total_seconds():.3f}s until "
                    f"{', '.join(job.name for job in jobs)}"
                )
                await asyncio.sleep((duration + WAKE_EPSILON).total_seconds())
                for job in jobs:
                    job.fire()
        finally:
            self._running = False

    def start(self) -> asyncio.Task:
        """在后台启动调度循环，返回循环所在的 asyncio.Task。"""
        self._run_task = asyncio.create_task(self.run(), name="scheduler")
        return self._run_task

    def stop(self) -> None:
        """停止调度循环并取消所有进行中的触发（不等待它们收尾）。"""
        self._running = False
        if self._run_task:
            self._run_task.cancel()
            self._run_task = None
        for job in self.jobs:
            job.cancel()
        logger.info("Scheduler stopped")

    def status(self) -> dict:
        """获取调度器状态摘要（运行状态、任务数、进行中的触发数）。"""
        return {
            "running": self._running,
            "jobs": len(self.jobs),
            "in_flight": sum(job.in_flight for job in self.jobs),
        }
