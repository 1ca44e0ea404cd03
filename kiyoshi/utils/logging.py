"""
日志初始化 - 统一使用 loguru 输出。

- 默认 INFO 级别，--verbose 时切换为 DEBUG
- 标准库 logging（SQLAlchemy、slack_sdk、aiomysql 等）通过 InterceptHandler 转发到 loguru
"""

import logging
import sys

from loguru import logger

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} {level} [{file}:{line}] {message}"


class InterceptHandler(logging.Handler):
    """将标准库 logging 的日志记录转发给 loguru。"""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # 找到真正发出日志的调用帧，保证 {file}:{line} 指向业务代码
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(verbose: bool = False) -> None:
    """
    配置 loguru 日志输出。

    参数:
        verbose: 是否启用 DEBUG 级别日志
    """
    level = "DEBUG" if verbose else "INFO"

    logger.remove()
    logger.add(sys.stderr, level=level, format=LOG_FORMAT, backtrace=verbose, diagnose=False)

    logging.basicConfig(handlers=[InterceptHandler()], level=logging.WARNING, force=True)
    for name in ("sqlalchemy.engine", "aiomysql", "slack_sdk"):
        logging.getLogger(name).handlers = [InterceptHandler()]
        logging.getLogger(name).propagate = False
