"""
Command-line entry point for taskq-publisher.
"""

import asyncio
import logging
from typing import Optional

import click

from . import __description__, __version__
from .app import TaskQPublisherService, serve
from .config import load_config
from .domain.ports import ConfigurationError
from .telemetry.logger import setup_logging


logger = logging.getLogger(__name__)


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.option(
    "--bind",
    default=None,
    metavar="HOST:PORT",
    help="Address and port to listen  [default: 127.0.0.1:8080]",
)
@click.option(
    "--redis-address",
    default=None,
    metavar="HOST:PORT",
    help="Address and port of the Redis server  [default: 127.0.0.1:6379]",
)
@click.option(
    "--verbose",
    is_flag=True,
    help="Verbose output: debug logging and periodic metrics log lines.",
)
@click.option(
    "--config",
    "config_path",
    default=None,
    type=click.Path(dir_okay=False),
    help="Path to a YAML config file (default: $CONFIG_PATH or ./config.yml).",
)
@click.version_option(
    version=__version__,
    prog_name=__description__,
    message="%(prog)s\nVersion: %(version)s",
    help="Show version and exit.",
)
def main(
    bind: Optional[str],
    redis_address: Optional[str],
    verbose: bool,
    config_path: Optional[str],
) -> None:
    """Publish JSON payloads received over HTTP to Redis lists."""
    overrides = {
        "server.bind": bind,
        "redis.address": redis_address,
    }
    if verbose:
        overrides["logging.level"] = "DEBUG"
        overrides["metrics.notifier_enabled"] = True

    try:
        config = load_config(config_path, overrides=overrides)
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e

    setup_logging(
        level=config.logging.level,
        service_name="taskq-publisher",
        enable_json=config.logging.json_format,
        enable_correlation=config.logging.enable_correlation
    )

    try:
        service = TaskQPublisherService(config)
    except ConfigurationError as e:
        logger.critical(f"Error while resolving address: {e}")
        raise click.ClickException(str(e)) from e

    asyncio.run(serve(service))
    logger.warning("Exiting")


if __name__ == "__main__":
    main()
