"""
调度器类型定义 - Job 与其执行动作之间的契约。

- JobScheduleMetadata：单次触发负责的逻辑时间窗口（data_interval_end）
- Runnable：任务动作的统一接口，调度器只通过 run(metadata) 调用它
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class JobScheduleMetadata:
    """
    单次触发的调度元数据。

    data_interval_end 是由 cron 推导出的“逻辑时间”，与实际执行的墙钟时间解耦：
    即使触发被延迟，传给动作的仍然是它所对应的理想时间槽。
    """
    data_interval_end: datetime


class Runnable(ABC):
    """
    调度任务动作的抽象基类。

    每次触发时，Job 会以独立的 asyncio.Task 调用 run()，调度循环不会等待它完成。
    实现类应持有自己的不可变数据，不依赖调度器的生命周期。
    """

    @abstractmethod
    async def run(self, metadata: JobScheduleMetadata) -> None:
        """
        执行一次触发对应的工作。

        参数:
            metadata: 本次触发负责的逻辑时间窗口
        """
        pass
