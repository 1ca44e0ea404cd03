"""
工具函数模块 - 提供 kiyoshi 项目全局通用的辅助函数。

本模块包含：
- truncate_string：截断过长文本（通知消息、日志）
- format_timestamp：逻辑时间的统一字符串格式
- redact_secrets：诊断日志中隐藏敏感字段
- setup_logging：loguru 日志初始化
"""

from kiyoshi.utils.helpers import format_timestamp, redact_secrets, truncate_string
from kiyoshi.utils.logging import setup_logging

__all__ = ["format_timestamp", "redact_secrets", "truncate_string", "setup_logging"]
