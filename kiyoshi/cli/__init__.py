"""命令行接口模块 - 基于 Typer 的 kiyoshi CLI。"""
