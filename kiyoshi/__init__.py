"""
kiyoshi - 基于 cron 调度的数据库定期清理服务

模块概述：
    本文件是 kiyoshi 包的入口文件（__init__.py），定义了包的元信息。
    kiyoshi 按 cron 表达式定时执行 DELETE 类清理语句，核心功能包括：
    - 无漂移的 cron 调度器（逻辑时钟 data_interval_end）
    - 分批执行 + 失败重试 + 整体超时的清理任务执行器
    - 安全模式：静态校验 SQL，确保不会删除保留期内的数据
    - Slack 通知（成功 / 失败 / 超时）
"""

# 版本号，遵循语义化版本规范（主版本.次版本.修订号）
__version__ = "0.1.0"

# 项目 logo 表情符号，用于 CLI 输出
__logo__ = "🧹"
