"""
配置模块 (config)
================
本模块是 kiyoshi 的配置系统入口，负责：
1. 定义配置数据模型（schema.py）：使用 Pydantic 定义所有配置项的结构和校验规则
2. 加载配置文件（loader.py）：读取 YAML，替换 ${ENV} 变量，校验后返回 FullConfig
"""

from kiyoshi.config.loader import (
    get_config_path,
    load_config,
    load_env_file,
    parse_config,
    substitute_env_vars,
)
from kiyoshi.config.schema import CleanupTaskConfig, Config, FullConfig, SafeModeConfig

__all__ = [
    "CleanupTaskConfig",
    "Config",
    "FullConfig",
    "SafeModeConfig",
    "get_config_path",
    "load_config",
    "load_env_file",
    "parse_config",
    "substitute_env_vars",
]
