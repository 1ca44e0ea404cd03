"""
CLI 命令模块 - kiyoshi 的所有命令行命令定义。

本模块使用 Typer 框架定义 kiyoshi 的 CLI 命令：
- run：启动调度服务，按 cron 执行所有清理任务，直到收到 SIGINT/SIGTERM
- validate：离线渲染并校验所有任务的 SQL（不连接数据库）
- tasks：列出所有任务及下一次触发时间
- run-task：立即手动执行一次指定任务

技术栈：
- Typer：CLI 框架
- Rich：终端美化输出（表格、颜色）
"""

import asyncio
import signal
from datetime import datetime, timezone
from pathlib import Path

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from kiyoshi import __logo__, __version__
from kiyoshi.config.schema import FullConfig

app = typer.Typer(
    name="kiyoshi",
    help=f"{__logo__} kiyoshi - Scheduled database cleanup with a safety gate",
    no_args_is_help=True,
)

console = Console()

ConfigFileOption = typer.Option(
    Path("config.yaml"), "--config-file", "-c", help="Path to the YAML configuration file"
)
EnvFileOption = typer.Option(
    None, "--env-file", "-e", help="Path to a JSON file containing environment variables"
)
VerboseOption = typer.Option(False, "--verbose", "-v", help="Enable verbose logging")


def version_callback(value: bool):
    """版本号回调：当用户传入 --version 参数时，打印版本号并退出。"""
    if value:
        console.print(f"{__logo__} kiyoshi v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(None, "--version", callback=version_callback, is_eager=True),
):
    """kiyoshi CLI 根命令回调。处理全局选项（如 --version）。"""
    pass


def _load(config_file: Path, env_file: Path | None, verbose: bool) -> FullConfig:
    """初始化日志、导入环境变量文件并加载配置。配置错误时以退出码 1 结束进程。"""
    from kiyoshi.config.loader import load_config, load_env_file
    from kiyoshi.errors import ConfigError
    from kiyoshi.utils.logging import setup_logging

    setup_logging(verbose)
    try:
        if env_file:
            load_env_file(env_file)
        config = load_config(config_file)
    except ConfigError as e:
        logger.error(f"Failed to load configuration: {e}")
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    logger.info(f"Configuration loaded successfully from {config_file}")
    return config


def _build_scheduler(config: FullConfig):
    """为每个清理任务创建一个 Job 并注册到调度器。"""
    from kiyoshi.channels.slack import SlackNotifier
    from kiyoshi.cleaner.task import CleanupJob
    from kiyoshi.scheduler import Job, Scheduler

    notifier = SlackNotifier(config.config.slack_config)
    scheduler = Scheduler()
    for task in config.cleanup_tasks:
        scheduler.add(Job(task.name, task.cron_schedule, CleanupJob(task, config.config, notifier)))
    return scheduler


# ============================================================================
# Run / Server
# ============================================================================


@app.command()
def run(
    config_file: Path = ConfigFileOption,
    env_file: Path = EnvFileOption,
    verbose: bool = VerboseOption,
):
    """
    启动清理调度服务（核心启动命令）。

    执行流程：
    1. 导入环境变量文件（可选）并加载配置
    2. 为每个任务创建 Job，注册到调度器
    3. 在后台启动调度循环
    4. 等待 SIGINT / SIGTERM，收到后直接停止调度器（进行中的清理会被取消）
    """
    from kiyoshi.errors import ScheduleParseError

    config = _load(config_file, env_file, verbose)
    try:
        scheduler = _build_scheduler(config)
    except ScheduleParseError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    enabled = [task.name for task in config.cleanup_tasks if task.enabled]
    console.print(f"{__logo__} Starting kiyoshi with {len(scheduler.jobs)} tasks")
    if enabled:
        console.print(f"[green]✓[/green] Enabled tasks: {', '.join(enabled)}")
    else:
        console.print("[yellow]Warning: No cleanup tasks enabled[/yellow]")
    if config.config.safe_mode.enabled:
        console.print(f"[green]✓[/green] Safe mode: retention {config.config.safe_mode.retention_days} days")
    else:
        console.print("[yellow]Warning: Safe mode disabled[/yellow]")

    async def serve():
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop_event.set)
            except NotImplementedError:
                # Windows 不支持 add_signal_handler，退回到 KeyboardInterrupt
                pass

        scheduler_task = scheduler.start()
        stop_task = asyncio.create_task(stop_event.wait())
        logger.info("Server running. Press Ctrl+C or send SIGTERM to stop")
        try:
            await asyncio.wait({scheduler_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if stop_event.is_set():
                logger.info("Shutdown signal received, stopping...")
            stop_task.cancel()
            scheduler.stop()
            logger.info("Shutdown complete")

        if scheduler_task.done() and not scheduler_task.cancelled():
            error = scheduler_task.exception()
            if error is not None:
                logger.error(f"Scheduler stopped unexpectedly: {error}")
                return False
        return True

    try:
        healthy = asyncio.run(serve())
    except KeyboardInterrupt:
        console.print("\nShutting down...")
        return
    if not healthy:
        console.print("[red]Scheduler stopped unexpectedly, see logs[/red]")
        raise typer.Exit(1)


# ============================================================================
# Task Commands
# ============================================================================


@app.command()
def validate(
    config_file: Path = ConfigFileOption,
    env_file: Path = EnvFileOption,
    verbose: bool = VerboseOption,
):
    """
    离线校验所有任务：cron 表达式、模板渲染和 SQL 安全检查。

    不连接数据库，也不发送通知。任何任务不通过时以退出码 1 结束。
    """
    from kiyoshi.cleaner.template import TemplateEngine
    from kiyoshi.cleaner.validator import SqlValidator
    from kiyoshi.errors import KiyoshiError
    from kiyoshi.scheduler import CronSchedule, Job

    config = _load(config_file, env_file, verbose)
    engine = TemplateEngine()
    validator = SqlValidator(config.config.safe_mode)

    table = Table(title="Cleanup Task Validation")
    table.add_column("Task", style="cyan")
    table.add_column("Result")
    table.add_column("Details")

    failed = 0
    for task in config.cleanup_tasks:
        try:
            interval_end = Job.next_fire_time(CronSchedule(task.cron_schedule), datetime.now(timezone.utc))
            sql = engine.render(
                task.template_query,
                {**task.parameters, "batch_size": str(task.batch_size)},
                interval_end,
            )
            validator.validate(sql)
        except KiyoshiError as e:
            failed += 1
            table.add_row(task.name, "[red]✗ invalid[/red]", str(e))
            continue
        details = "safe mode disabled" if not config.config.safe_mode.enabled else "ok"
        table.add_row(task.name, "[green]✓ valid[/green]", details)

    console.print(table)
    if failed:
        raise typer.Exit(1)


@app.command()
def tasks(
    config_file: Path = ConfigFileOption,
    env_file: Path = EnvFileOption,
):
    """以表格形式列出所有清理任务、调度规则、状态和下次运行时间。"""
    from kiyoshi.errors import ScheduleParseError
    from kiyoshi.scheduler import CronSchedule, Job

    config = _load(config_file, env_file, verbose=False)
    now = datetime.now(timezone.utc)

    table = Table(title="Cleanup Tasks")
    table.add_column("Name", style="cyan")
    table.add_column("Schedule")
    table.add_column("Status")
    table.add_column("Batch")
    table.add_column("Timeout")
    table.add_column("Next Run (UTC)")

    for task in config.cleanup_tasks:
        try:
            next_run = Job.next_fire_time(CronSchedule(task.cron_schedule), now)
            next_run_str = next_run.strftime("%Y-%m-%d %H:%M:%S")
        except ScheduleParseError:
            next_run_str = "[red]invalid schedule[/red]"
        status = "[green]enabled[/green]" if task.enabled else "[dim]disabled[/dim]"
        table.add_row(
            task.name,
            task.cron_schedule,
            status,
            str(task.batch_size),
            f"{task.task_timeout_seconds:g}s",
            next_run_str,
        )

    console.print(table)


@app.command("run-task")
def run_task(
    name: str = typer.Argument(..., help="Cleanup task name to run"),
    config_file: Path = ConfigFileOption,
    env_file: Path = EnvFileOption,
    verbose: bool = VerboseOption,
    at: str = typer.Option(None, "--at", help="data_interval_end to use (ISO format, default: now)"),
):
    """立即执行一次指定的清理任务。data_interval_end 默认为当前时间。"""
    from kiyoshi.channels.slack import SlackNotifier
    from kiyoshi.cleaner.task import CleanupJob
    from kiyoshi.errors import CleanupError
    from kiyoshi.scheduler import JobScheduleMetadata

    config = _load(config_file, env_file, verbose)
    task = next((t for t in config.cleanup_tasks if t.name == name), None)
    if task is None:
        console.print(f"[red]Task {name} not found[/red]")
        raise typer.Exit(1)

    if at:
        try:
            interval_end = datetime.fromisoformat(at)
        except ValueError:
            raise typer.BadParameter(f"Invalid ISO timestamp: {at}", param_hint="--at")
        if interval_end.tzinfo is None:
            interval_end = interval_end.replace(tzinfo=timezone.utc)
    else:
        interval_end = datetime.now(timezone.utc)

    job = CleanupJob(task, config.config, SlackNotifier(config.config.slack_config))
    try:
        result = asyncio.run(job.run_once(JobScheduleMetadata(data_interval_end=interval_end)))
    except CleanupError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(1)

    if result.status == "skipped":
        console.print(f"[yellow]Task {name} is disabled, skipped[/yellow]")
    else:
        console.print(
            f"[green]✓[/green] Task {name} deleted {result.total_rows} rows "
            f"in {result.elapsed_seconds:.2f}s"
        )


if __name__ == "__main__":
    app()
