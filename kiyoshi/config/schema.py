"""
配置数据模型定义 (config/schema.py)
=================================
本模块使用 Pydantic 定义 kiyoshi 的完整配置结构。

整体配置结构（树形）：
FullConfig (根配置，对应整个 YAML 文件)
├── config
│   ├── database_config  - 数据库连接参数
│   ├── slack_config     - Slack 通知配置
│   └── safe_mode        - 安全模式（保留期校验）
└── cleanup_tasks        - 清理任务列表（每个任务有独立的 cron 调度）

清理任务与安全策略在加载后不可修改（frozen），每次触发都可以放心地
把同一份对象交给独立的异步任务使用。
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def normalize_cron_expression(expr: str) -> str:
    """
    统一 cron 表达式为 6 字段（秒 分 时 日 月 周）格式。

    传统的 5 字段表达式会在最前面补一个固定的秒字段 "0"，
    例如 "*/5 * * * *" → "0 */5 * * * *"。其他字段数原样返回，由调度器负责报错。
    """
    fields = expr.split()
    if len(fields) == 5:
        return " ".join(["0", *fields])
    return " ".join(fields)


class DatabaseConfig(BaseModel):
    """MySQL 数据库连接参数。"""
    host: str
    port: int = 3306
    username: str
    password: str = ""  # 允许为空以便加载，连接时再检查
    database: str

    @field_validator("host", "username", "database")
    @classmethod
    def _not_empty(cls, value: str, info) -> str:
        if not value.strip():
            raise ValueError(f"database {info.field_name} cannot be empty")
        return value


class SlackConfig(BaseModel):
    """Slack 通知配置。通过 Bot Token 调用 chat.postMessage 发送告警。"""
    enabled: bool = False
    bot_token: str = ""  # Bot Token (xoxb-...)
    channel_id: str = ""  # 告警频道 ID


class SafeModeConfig(BaseModel):
    """
    安全模式配置。

    启用后，每条清理语句执行前都必须证明只会删除早于 retention_days 天的数据。
    """
    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    retention_days: int = Field(default=30, ge=0)


class Config(BaseModel):
    """全局配置：数据库、通知和安全策略。"""
    model_config = ConfigDict(frozen=True)

    database_config: DatabaseConfig
    slack_config: SlackConfig = Field(default_factory=SlackConfig)
    safe_mode: SafeModeConfig = Field(default_factory=SafeModeConfig)


class CleanupTaskConfig(BaseModel):
    """
    单个清理任务的定义。

    template_query 中可以使用 {{ 参数名 }} 占位符，渲染时可用的变量为
    parameters 中的所有键，以及自动注入的 batch_size 和 data_interval_end。
    模板需要自行通过 LIMIT 把每次执行的影响行数限制在 batch_size 以内，
    执行器以“影响 0 行”作为清理完成的信号。
    """
    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    enabled: bool = True
    cron_schedule: str
    template_query: str
    parameters: dict[str, str] = Field(default_factory=dict)
    batch_size: int = Field(ge=1)
    retry_attempts: int = Field(ge=1)
    retry_delay_seconds: float = Field(default=5, ge=0)
    query_interval_seconds: float = Field(default=0, ge=0)
    task_timeout_seconds: float = Field(default=3600, gt=0)

    @field_validator("name", "template_query")
    @classmethod
    def _not_empty(cls, value: str, info) -> str:
        if not value.strip():
            raise ValueError(f"{info.field_name} cannot be empty")
        return value

    @field_validator("cron_schedule")
    @classmethod
    def _normalize_cron(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("cron_schedule cannot be empty")
        return normalize_cron_expression(value)

    @field_validator("parameters", mode="before")
    @classmethod
    def _stringify_parameters(cls, value):
        # YAML 中的数字/布尔参数统一转为字符串
        if isinstance(value, dict):
            return {str(k): str(v) for k, v in value.items()}
        return value


class FullConfig(BaseSettings):
    """
    配置文件的根结构。

    继承自 BaseSettings，文件中缺失的字段可以从环境变量补齐：
    - 环境变量前缀: KIYOSHI_
    - 嵌套分隔符: __ (双下划线)
    例如 KIYOSHI_CONFIG__DATABASE_CONFIG__PASSWORD 对应 config.database_config.password。
    文件中显式给出的值优先。
    """
    model_config = SettingsConfigDict(env_prefix="KIYOSHI_", env_nested_delimiter="__")

    config: Config
    cleanup_tasks: list[CleanupTaskConfig]

    @model_validator(mode="after")
    def _check_tasks(self) -> "FullConfig":
        if not self.cleanup_tasks:
            raise ValueError("no cleanup tasks defined in configuration")
        names = [task.name for task in self.cleanup_tasks]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"duplicate cleanup task names: {', '.join(duplicates)}")
        return self
