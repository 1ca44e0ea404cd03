"""
定时调度模块 - 按 cron 表达式触发清理任务。

本模块包含：
- Scheduler：调度循环，计算最近的触发点并并发派发任务
- Job：cron 表达式 + 执行动作 + 无漂移的逻辑时钟
- JobScheduleMetadata：单次触发负责的逻辑时间窗口
- Runnable：任务动作的统一接口
"""

from kiyoshi.scheduler.job import CronSchedule, Job
from kiyoshi.scheduler.service import Scheduler
from kiyoshi.scheduler.types import JobScheduleMetadata, Runnable

__all__ = ["CronSchedule", "Job", "JobScheduleMetadata", "Runnable", "Scheduler"]
