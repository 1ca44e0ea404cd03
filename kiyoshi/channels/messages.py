"""
通知消息模板 - 把清理结果组装成 Slack Block Kit 结构。

每种结果对应一个构造函数：
- success_message：清理完成，附带累计删除行数和耗时
- failure_message：重试耗尽或安全校验失败
- timeout_message：整体超时，附带超时时刻的进度快照
"""

from datetime import datetime

from kiyoshi.channels.base import Block
from kiyoshi.utils.helpers import format_timestamp, truncate_string, utc_now

# Slack section 文本上限为 3000 字符
MAX_SECTION_CHARS = 3000


def _header(text: str) -> Block:
    return {"type": "header", "text": {"type": "plain_text", "text": truncate_string(text, 150), "emoji": True}}


def _section(markdown: str) -> Block:
    return {"type": "section", "text": {"type": "mrkdwn", "text": truncate_string(markdown, MAX_SECTION_CHARS)}}


def _fields(fields: dict[str, str]) -> Block:
    return {
        "type": "section",
        "fields": [{"type": "mrkdwn", "text": f"*{label}:*\n{value}"} for label, value in fields.items()],
    }


def _context(data_interval_end: datetime) -> Block:
    return {
        "type": "context",
        "elements": [
            {
                "type": "mrkdwn",
                "text": f"data_interval_end `{format_timestamp(data_interval_end)}` · "
                f"sent at {format_timestamp(utc_now())} UTC",
            }
        ],
    }


def success_message(task_name: str, total_rows: int, elapsed_seconds: float, data_interval_end: datetime) -> list[Block]:
    """清理成功通知。"""
    return [
        _header(f":white_check_mark: Cleanup succeeded: {task_name}"),
        _fields({
            "Rows deleted": f"{total_rows:,}",
            "Query time": f"{elapsed_seconds:.2f}s",
        }),
        _context(data_interval_end),
    ]


def failure_message(task_name: str, error: str, data_interval_end: datetime, attempts: int | None = None) -> list[Block]:
    """清理失败通知（重试耗尽或安全校验不通过）。"""
    blocks = [_header(f":x: Cleanup failed: {task_name}")]
    if attempts is not None:
        blocks.append(_fields({"Attempts": str(attempts)}))
    blocks.append(_section(f"```{error}```"))
    blocks.append(_context(data_interval_end))
    return blocks


def timeout_message(
    task_name: str,
    timeout_seconds: float,
    total_rows: int,
    elapsed_seconds: float,
    data_interval_end: datetime,
) -> list[Block]:
    """清理超时通知，附带超时时刻已完成的进度。"""
    return [
        _header(f":hourglass: Cleanup timed out: {task_name}"),
        _fields({
            "Timeout": f"{timeout_seconds:g}s",
            "Rows deleted before timeout": f"{total_rows:,}",
            "Query time": f"{elapsed_seconds:.2f}s",
        }),
        _context(data_interval_end),
    ]
