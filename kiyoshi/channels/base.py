"""
通知渠道基类模块 - 定义所有告警渠道的统一接口。

【核心抽象方法】
- send_to_channel(): 把一条结构化消息（Block Kit 风格的 block 列表）发到指定频道

【公共能力】
- notify(): 尽力而为的发送。渠道未启用时直接跳过；发送失败只记录日志，
  绝不会把异常抛给调用方，因此通知失败永远不会改变一次清理触发的结果
"""

from abc import ABC, abstractmethod
from typing import Any

from loguru import logger

Block = dict[str, Any]


class BaseNotifier(ABC):
    """
    通知渠道抽象基类。

    属性:
        name: 渠道标识名（如 "slack"），用于日志
        config: 渠道特定的配置对象，至少包含 enabled 和 channel_id
    """

    name: str = "base"

    def __init__(self, config: Any):
        self.config = config

    @property
    def is_enabled(self) -> bool:
        """渠道是否启用且配置了目标频道。"""
        return bool(getattr(self.config, "enabled", False) and getattr(self.config, "channel_id", ""))

    @abstractmethod
    async def send_to_channel(self, blocks: list[Block], channel_id: str) -> None:
        """
        发送一条消息，失败时抛出异常。

        参数:
            blocks: 消息内容（header / section / context 等 block）
            channel_id: 目标频道 ID
        """
        pass

    async def notify(self, blocks: list[Block]) -> bool:
        """
        向配置的频道发送消息（尽力而为）。

        返回:
            True 表示发送成功；未启用或发送失败返回 False
        """
        if not self.is_enabled:
            logger.debug(f"Notifier {self.name} disabled, skipping notification")
            return False
        try:
            await self.send_to_channel(blocks, self.config.channel_id)
        except Exception as e:
            logger.error(f"Error sending {self.name} notification: {e}")
            return False
        return True
