#!/usr/bin/env python3
"""
run_observatory.py - CLI entrypoint for Observatory.

Usage:
    observatory start --config config/observatory.yaml
    observatory start -c config/observatory.yaml --log-level DEBUG --no-json-logs
    observatory check-config -c config/observatory.yaml

Exit codes:
    0  clean shutdown
    1  unexpected startup/runtime error
    2  invalid configuration
"""

import asyncio
import signal
import sys
from pathlib import Path
from typing import Optional

import click

from alerting.dispatcher import AlertDispatcher
from alerting.sinks import build_sink
from config import DEFAULT_CONFIG_PATH, load_config
from config.settings import ObservatoryConfig
from core.exceptions import ConfigError
from core.format import redact_url
from core.logging import get_logger, set_global_context, setup_logging
from monitoring.supervisor import ChainSupervisor

__version__ = "0.1.0"

logger = get_logger("observatory")

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CONFIG = 2


async def run_observatory(config: ObservatoryConfig) -> None:
    """
    Run all chain pollers until SIGINT/SIGTERM.

    Args:
        config: Validated configuration
    """
    alerting = config.alerting
    dispatcher = AlertDispatcher(
        build_sink(alerting),
        max_attempts=alerting.max_attempts,
        base_delay=alerting.base_delay_seconds,
        max_delay=alerting.max_delay_seconds,
    )
    supervisor = ChainSupervisor(config, dispatcher)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, supervisor.request_shutdown)
        except NotImplementedError:
            # Windows event loops lack add_signal_handler
            signal.signal(sig, lambda signum, frame: supervisor.request_shutdown())

    await supervisor.run()


def _load(config_path: Optional[str]) -> ObservatoryConfig:
    try:
        return load_config(Path(config_path) if config_path else None)
    except ConfigError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(EXIT_CONFIG)


@click.group()
@click.version_option(__version__, prog_name="observatory")
def main() -> None:
    """Observatory - validator signing monitor for CometBFT chains."""


@main.command()
@click.option(
    "--config",
    "-c",
    "config_path",
    default=None,
    help=f"Path to YAML config (default: {DEFAULT_CONFIG_PATH})",
)
@click.option(
    "--log-level",
    "-l",
    default=None,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    help="Log level (overrides config)",
)
@click.option(
    "--json-logs/--no-json-logs",
    default=None,
    help="Use JSON log format (overrides config)",
)
def start(config_path: Optional[str], log_level: Optional[str], json_logs: Optional[bool]) -> None:
    """
    Start monitoring every configured chain.
    """
    config = _load(config_path)

    setup_logging(
        level=log_level or config.logging.level,
        json_output=config.logging.json if json_logs is None else json_logs,
        log_file=config.logging.file,
    )
    set_global_context(service="observatory", version=__version__)

    logger.info(
        "Starting Observatory",
        extra={"context": {
            "chains": config.chain_ids,
            "poll_interval_s": config.monitor.poll_interval_seconds,
            "miss_threshold": config.monitor.miss_threshold,
            "sink": config.alerting.sink.value,
        }},
    )

    try:
        asyncio.run(run_observatory(config))
    except KeyboardInterrupt:
        logger.info("Observatory interrupted")
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(EXIT_CONFIG)
    except Exception as e:
        logger.error(
            f"Observatory error: {e}",
            extra={"context": {"error": str(e)}},
            exc_info=True,
        )
        sys.exit(EXIT_ERROR)

    sys.exit(EXIT_OK)


@main.command("check-config")
@click.option(
    "--config",
    "-c",
    "config_path",
    default=None,
    help=f"Path to YAML config (default: {DEFAULT_CONFIG_PATH})",
)
def check_config(config_path: Optional[str]) -> None:
    """
    Validate configuration and print a summary.
    """
    config = _load(config_path)

    click.echo("=" * 60)
    click.echo("OBSERVATORY CONFIGURATION")
    click.echo("=" * 60)
    click.echo(f"Poll interval: {config.monitor.poll_interval_seconds}s")
    click.echo(f"Query timeout: {config.monitor.query_timeout_seconds}s")
    click.echo(f"Miss threshold: {config.monitor.miss_threshold}")
    click.echo(f"Alert sink: {config.alerting.sink.value}")
    for chain in config.chains:
        settings = config.settings_for(chain)
        click.echo(
            f"- {chain.id}: validator {chain.validator_addr}, "
            f"{len(chain.rpc_urls)} endpoints, signing source {settings.signing_source.value}"
        )
        for url in chain.rpc_urls:
            click.echo(f"    {redact_url(url)}")
    click.echo("=" * 60)


if __name__ == "__main__":
    main()
