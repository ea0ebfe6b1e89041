"""Command-line entry point for dumpkeeper."""

from __future__ import annotations

import signal
import sys
from pathlib import Path

import click
import yaml
from pydantic import ValidationError

from dumpkeeper import __version__
from dumpkeeper.capabilities import default_registry
from dumpkeeper.config import Config
from dumpkeeper.exceptions import ConfigurationError
from dumpkeeper.logging import get_logger, setup_logging
from dumpkeeper.logtrim import LogTrimmer
from dumpkeeper.pipeline import BackupPipeline
from dumpkeeper.process import ProcessRunner
from dumpkeeper.scheduler import Scheduler

logger = get_logger(__name__)


def _load(ctx: click.Context) -> Config:
    config: Config = ctx.obj["config"]
    setup_logging(config.logging, level=ctx.obj["log_level"])
    return config


@click.group()
@click.version_option(__version__, prog_name="dumpkeeper")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False, dir_okay=False, path_type=Path),
    default=None,
    help="YAML config file (defaults to $DUMPKEEPER_CONFIG)",
)
@click.option("--log-level", default=None, help="Override the configured log level")
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, log_level: str | None) -> None:
    """dumpkeeper - encrypted MySQL backups with bounded disk usage."""
    ctx.ensure_object(dict)
    # Default console logging for warnings raised while the config is loaded;
    # commands reconfigure from the loaded config
    setup_logging(level=log_level)
    try:
        ctx.obj["config"] = Config.load(config_path)
    except ValidationError as e:
        first = e.errors()[0]
        error = ConfigurationError.validation_failed(
            ".".join(str(part) for part in first["loc"]), first.get("input"), first["msg"]
        )
        raise click.ClickException(str(error)) from e
    except ValueError as e:
        raise click.ClickException(f"Invalid configuration: {e}") from e
    ctx.obj["log_level"] = log_level


@cli.command()
@click.option("--once", is_flag=True, default=False, help="Run a single cycle and exit")
@click.pass_context
def run(ctx: click.Context, once: bool) -> None:
    """Run backup cycles (continuous unless --once or RUN_ONCE=true)."""
    config = _load(ctx)
    pipeline = BackupPipeline.from_config(config)
    scheduler = Scheduler.from_config(config, pipeline)

    logger.info(
        "dumpkeeper_starting",
        version=__version__,
        backup_dir=str(config.backup.directory),
        retention_minutes=config.retention.max_age_minutes,
        interval_seconds=config.schedule.interval_seconds,
        delivery_enabled=config.delivery.enabled,
    )

    if once or config.schedule.run_once:
        sys.exit(scheduler.run_once())

    def _handle_signal(signum: int, _frame: object) -> None:
        logger.info("shutdown_signal_received", signal=signum)
        scheduler.stop()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)
    scheduler.run_forever()


@cli.command("trim-logs")
@click.pass_context
def trim_logs(ctx: click.Context) -> None:
    """Run one log directory trim pass."""
    config = _load(ctx)
    result = LogTrimmer.from_config(config).enforce()
    click.echo(
        f"{result.directory}: {result.bytes_before} -> {result.bytes_after} bytes "
        f"({len(result.truncated)} truncated, {len(result.deleted)} deleted)"
    )


@cli.command()
@click.pass_context
def check(ctx: click.Context) -> None:
    """Report which external tools are available."""
    config = _load(ctx)
    registry = default_registry(ProcessRunner(), dump_command=config.database.dump_command)
    needed = {"mysqldump", config.archive.tool, "http-client"}

    missing = False
    for info in registry.check_all():
        required = info.name in needed
        marker = "OK" if info.usable else ("FAIL" if required else "WARN")
        detail = info.version or info.location or info.status.value
        click.echo(f"[{marker}] {info.name}: {detail}")
        missing = missing or (required and not info.usable)

    if missing:
        sys.exit(1)


@cli.command("show-config")
@click.pass_context
def show_config(ctx: click.Context) -> None:
    """Print the effective configuration with secrets masked."""
    config: Config = ctx.obj["config"]
    click.echo(yaml.safe_dump(config.masked_dict(), default_flow_style=False), nl=False)


def main() -> None:
    """Entry point for the console script."""
    cli(obj={})


if __name__ == "__main__":
    main()
