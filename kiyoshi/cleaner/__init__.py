"""
数据清理模块 - 模板渲染、SQL 安全校验、数据库访问和清理任务执行。

本模块包含：
- TemplateEngine：{{ name }} 占位符渲染（Jinja2）
- SqlValidator：安全模式下的 DELETE 语句静态校验（sqlglot）
- Database：SQLAlchemy 异步连接池（mysql+aiomysql）
- TaskExecutor：分批、重试、超时、通知的执行器
- CleanupJob：把清理任务绑定到调度器的 Runnable
"""

from kiyoshi.cleaner.db import Database
from kiyoshi.cleaner.task import CleanupJob, CleanupResult, ExecutionProgress, TaskExecutor
from kiyoshi.cleaner.template import TemplateEngine
from kiyoshi.cleaner.validator import SqlValidator

__all__ = [
    "CleanupJob",
    "CleanupResult",
    "Database",
    "ExecutionProgress",
    "SqlValidator",
    "TaskExecutor",
    "TemplateEngine",
]
