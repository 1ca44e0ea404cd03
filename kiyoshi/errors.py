"""
异常类型定义 - kiyoshi 的统一错误体系。

错误分级：
- ConfigError：配置加载/校验失败，启动阶段致命，进程以非零码退出
- ScheduleParseError：cron 表达式无法解析
- DatabaseConnectionError：单次触发致命，不会执行任何语句
- RenderError：模板渲染失败，属于配置缺陷，不发送通知
- QueryValidationError：安全模式下 SQL 校验不通过，发送一次失败通知
- ExecutionError：重试次数耗尽后抛出，发送一次失败通知
- TaskTimeoutError：整体超时，抢占正在执行的批次，发送一次超时通知

除 ConfigError 外，所有错误都只影响单次触发，在触发边界被捕获并记录日志，
不会中断调度器或其他任务。
"""


class KiyoshiError(Exception):
    """所有 kiyoshi 异常的基类。"""


class ConfigError(KiyoshiError):
    """配置文件读取、解析或校验失败。"""


class ScheduleParseError(KiyoshiError):
    """cron 表达式非法。"""


class CleanupError(KiyoshiError):
    """
    单次清理触发失败的基类。

    属性:
        reason: 失败原因（不含任务名）
        task_name: 所属任务名；由模板引擎/校验器直接抛出时为 None
    """

    def __init__(self, reason: str, task_name: str | None = None):
        super().__init__(f"[{task_name}] {reason}" if task_name else reason)
        self.reason = reason
        self.task_name = task_name


class DatabaseConnectionError(CleanupError):
    """无法建立数据库连接。"""


class RenderError(CleanupError):
    """SQL 模板渲染失败。"""


class QueryValidationError(CleanupError):
    """SQL 未通过安全模式校验。"""


class ExecutionError(CleanupError):
    """所有重试均失败。"""

    def __init__(self, reason: str, task_name: str | None = None, attempts: int = 0, total_rows: int = 0):
        super().__init__(reason, task_name)
        self.attempts = attempts
        self.total_rows = total_rows


class TaskTimeoutError(CleanupError):
    """任务在 task_timeout_seconds 内未完成。"""

    def __init__(
        self,
        task_name: str,
        timeout_seconds: float,
        total_rows: int,
        elapsed_seconds: float,
    ):
        super().__init__(
            f"timed out after {timeout_seconds}s "
            f"({total_rows} rows deleted, {elapsed_seconds:.2f}s spent in queries)",
            task_name,
        )
        self.timeout_seconds = timeout_seconds
        self.total_rows = total_rows
        self.elapsed_seconds = elapsed_seconds
