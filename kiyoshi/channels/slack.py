"""
Slack 通知渠道 - 通过 Slack Web API 的 chat.postMessage 发送 Block Kit 消息。

只需要 Bot Token (xoxb-...) 和目标频道 ID，不需要 Socket Mode。
"""

from loguru import logger
from slack_sdk.web.async_client import AsyncWebClient

from kiyoshi.channels.base import BaseNotifier, Block
from kiyoshi.config.schema import SlackConfig


def _fallback_text(blocks: list[Block]) -> str:
    """取第一个 header/section 的文本作为通知的纯文本摘要（用于推送通知预览）。"""
    for block in blocks:
        text = block.get("text")
        if isinstance(text, dict) and text.get("text"):
            return text["text"]
    return "kiyoshi notification"


class SlackNotifier(BaseNotifier):
    """
    Slack 通知渠道。

    属性:
        config: Slack 配置（enabled、bot_token、channel_id）
        _web_client: Slack Web API 异步客户端，首次发送时创建
    """

    name = "slack"

    def __init__(self, config: SlackConfig, web_client: AsyncWebClient | None = None):
        super().__init__(config)
        self.config: SlackConfig = config
        self._web_client = web_client

    @property
    def is_enabled(self) -> bool:
        return super().is_enabled and bool(self.config.bot_token or self._web_client)

    @property
    def web_client(self) -> AsyncWebClient:
        if self._web_client is None:
            self._web_client = AsyncWebClient(token=self.config.bot_token)
        return self._web_client

    async def send_to_channel(self, blocks: list[Block], channel_id: str) -> None:
        await self.web_client.chat_postMessage(
            channel=channel_id,
            text=_fallback_text(blocks),
            blocks=blocks,
        )
        logger.debug(f"Slack notification sent to {channel_id}")
