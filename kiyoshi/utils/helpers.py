"""
工具函数集合 - kiyoshi 项目全局通用的辅助函数。

函数分类：
- 字符串工具：truncate_string, is_secret_key, redact_secrets
- 时间工具：format_timestamp, utc_now
"""

import re
from datetime import datetime, timezone
from typing import Any

# 逻辑时间渲染进 SQL 时使用的格式（MySQL DATETIME 字面量）
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

# 字段名匹配以下模式时视为敏感信息
_SECRET_KEY_PATTERN = re.compile(r"(password|passwd|secret|token|api_?key)", re.IGNORECASE)

REDACTED = "[REDACTED]"


def utc_now() -> datetime:
    """获取当前的 UTC 时间（带时区信息）。"""
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """
    将逻辑时间格式化为 SQL 可用的字符串，如 "2024-03-20 00:00:00"。

    带时区的时间先转换为 UTC。
    """
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime(TIMESTAMP_FORMAT)


def truncate_string(s: str, max_len: int = 100, suffix: str = "...") -> str:
    """
    截断字符串到指定最大长度，超出时添加后缀。

    参数:
        s: 原始字符串
        max_len: 最大长度（包含后缀），默认 100
        suffix: 截断后缀，默认 "..."

    返回:
        截断后的字符串
    """
    if len(s) <= max_len:
        return s
    return s[: max_len - len(suffix)] + suffix


def is_secret_key(name: str) -> bool:
    """判断字段名/环境变量名是否像敏感信息（密码、令牌等）。"""
    return bool(_SECRET_KEY_PATTERN.search(name))


def redact_secrets(data: Any) -> Any:
    """
    递归地隐藏字典中的敏感字段值，用于打印诊断日志。

    示例: {"password": "hunter2", "host": "db"} → {"password": "[REDACTED]", "host": "db"}
    """
    if isinstance(data, dict):
        return {
            k: (REDACTED if isinstance(k, str) and is_secret_key(k) and v else redact_secrets(v))
            for k, v in data.items()
        }
    if isinstance(data, list):
        return [redact_secrets(item) for item in data]
    return data
