"""
配置加载工具模块 (config/loader.py)
=================================
本模块负责 kiyoshi 配置文件的加载：
- 配置文件为 YAML 格式，默认路径 ./config.yaml
- 解析前先做环境变量替换：${NAME} 或 ${NAME:-默认值}
- 可选的环境变量文件（JSON 对象），在替换之前导入 os.environ
- 使用 Pydantic（BaseSettings）进行类型验证和反序列化，缺失字段可由 KIYOSHI_ 环境变量补齐

任何读取、解析、校验失败都统一抛出 ConfigError，由 CLI 转换为非零退出码。
"""

import json
import os
import re
from pathlib import Path

import yaml
from loguru import logger
from pydantic import ValidationError

from kiyoshi.config.schema import FullConfig
from kiyoshi.errors import ConfigError
from kiyoshi.utils.helpers import REDACTED, is_secret_key, redact_secrets

DEFAULT_CONFIG_PATH = Path("config.yaml")

# ${NAME} 或 ${NAME:-default}
_ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+)(?::-([^}]*))?\}")


def get_config_path() -> Path:
    """获取默认配置文件路径: ./config.yaml"""
    return DEFAULT_CONFIG_PATH


def substitute_env_vars(text: str) -> str:
    """
    将文本中的 ${NAME} / ${NAME:-default} 替换为环境变量的值。

    变量未设置且没有默认值时替换为空字符串。

    示例: "host: ${DB_HOST:-localhost}" → "host: localhost"（DB_HOST 未设置时）
    """

    def _replace(match: re.Match) -> str:
        name, default = match.group(1).strip(), match.group(2)
        value = os.environ.get(name)
        if value is None:
            value = default or ""
        logger.debug(f"Substituting environment variable: {name}={REDACTED if is_secret_key(name) else value}")
        return value

    return _ENV_VAR_PATTERN.sub(_replace, text)


def load_env_file(path: Path) -> int:
    """
    从 JSON 文件导入环境变量。

    文件内容必须是一个 JSON 对象，值为字符串/数字/布尔；嵌套结构会被拒绝。
    已存在的环境变量会被覆盖。

    返回:
        导入的变量个数
    """
    try:
        data = json.loads(path.read_text())
    except OSError as e:
        raise ConfigError(f"Failed to read environment file {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"Environment file {path} is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Environment file {path} must contain a JSON object")

    for key, value in data.items():
        if isinstance(value, (dict, list)) or value is None:
            raise ConfigError(f"Environment variable {key} in {path} must be a scalar value")
        if isinstance(value, bool):
            value = "true" if value else "false"
        os.environ[str(key)] = str(value)

    logger.debug(f"Loaded {len(data)} environment variables from {path}")
    return len(data)


def parse_config(text: str, source: str = "<string>") -> FullConfig:
    """
    解析 YAML 配置文本（先做环境变量替换）。

    参数:
        text: YAML 文本
        source: 来源描述，仅用于错误信息

    返回:
        校验通过的 FullConfig
    """
    try:
        data = yaml.safe_load(substitute_env_vars(text))
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse YAML configuration {source}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Configuration {source} must be a YAML mapping")

    logger.debug(f"Raw configuration from {source}: {redact_secrets(data)}")

    try:
        return FullConfig(**{str(k): v for k, v in data.items()})
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration {source}: {e}") from e


def load_config(config_path: Path | None = None) -> FullConfig:
    """
    从 YAML 文件加载并校验配置。

    参数:
        config_path: 可选的配置文件路径。为 None 时使用默认路径。

    返回:
        FullConfig 配置对象实例
    """
    path = config_path or get_config_path()
    try:
        text = path.read_text()
    except OSError as e:
        raise ConfigError(f"Failed to read config file {path}: {e}") from e

    config = parse_config(text, source=str(path))
    logger.debug("Configuration loaded and validated successfully")
    return config
