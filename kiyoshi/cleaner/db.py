"""
数据库访问 - 基于 SQLAlchemy 异步引擎（mysql+aiomysql）。

只暴露执行器需要的最小契约：
    execute_query(sql) -> (影响行数, 耗时秒数)

每条语句在独立的事务中执行并立即提交，除了语句本身的原子性外不提供任何事务语义。
"""

import time

from loguru import logger
from sqlalchemy import URL, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from kiyoshi.config.schema import DatabaseConfig
from kiyoshi.errors import DatabaseConnectionError

DEFAULT_POOL_SIZE = 5


class Database:
    """
    MySQL 数据库连接池封装。

    属性:
        config: 连接参数
        engine: SQLAlchemy AsyncEngine（内部维护连接池）
    """

    def __init__(self, config: DatabaseConfig, pool_size: int = DEFAULT_POOL_SIZE):
        if not config.password:
            raise DatabaseConnectionError("Database password is required but not provided")

        logger.debug(
            f"Connecting to database: host={config.host}, port={config.port}, "
            f"user={config.username}, database={config.database}"
        )

        self.config = config
        url = URL.create(
            "mysql+aiomysql",
            username=config.username,
            password=config.password,
            host=config.host,
            port=config.port,
            database=config.database,
        )
        self.engine: AsyncEngine = create_async_engine(
            url,
            pool_size=pool_size,
            max_overflow=0,
            pool_pre_ping=True,
        )

    @classmethod
    async def connect(cls, config: DatabaseConfig, pool_size: int = DEFAULT_POOL_SIZE) -> "Database":
        """
        创建连接池并确认数据库可达。

        异常:
            DatabaseConnectionError: 缺少密码或无法连接
        """
        database = cls(config, pool_size=pool_size)
        try:
            async with database.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except (SQLAlchemyError, OSError) as e:
            await database.close()
            raise DatabaseConnectionError(f"Failed to connect to database: {e}") from e
        return database

    async def execute_query(self, sql: str) -> tuple[int, float]:
        """
        执行一条语句并提交。

        返回:
            (影响行数, 耗时秒数)
        """
        start = time.perf_counter()
        async with self.engine.begin() as conn:
            result = await conn.exec_driver_sql(sql)
            rows_affected = max(result.rowcount, 0)
        return rows_affected, time.perf_counter() - start

    async def close(self) -> None:
        """释放连接池。"""
        await self.engine.dispose()
