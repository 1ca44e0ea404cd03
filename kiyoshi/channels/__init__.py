"""
通知渠道模块 - 清理结果的告警投递。

本模块包含：
- BaseNotifier：渠道抽象基类（尽力而为的 notify）
- SlackNotifier：基于 slack_sdk AsyncWebClient 的实现
- messages：成功 / 失败 / 超时消息的 Block Kit 模板
"""

from kiyoshi.channels.base import BaseNotifier
from kiyoshi.channels.slack import SlackNotifier

__all__ = ["BaseNotifier", "SlackNotifier"]
