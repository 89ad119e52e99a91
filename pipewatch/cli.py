"""pipewatch command line interface.

Entry point for the pipewatch console.
"""
import asyncio
import logging
from typing import Optional

import typer

from pipewatch.core.config import LOG_LEVEL, ConsoleSettings, load_settings
from pipewatch.core.constants import VERSION
from pipewatch.core.errors import ConfigError, PipewatchError
from pipewatch.core.output_formatter import pipeline_row
from pipewatch.gateway.client import PipelineGateway
from pipewatch.utils.logging_config import setup_logging

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="pipewatch",
    help="pipewatch: browse pipelines, trigger runs and follow their logs.",
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"pipewatch version {VERSION}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
) -> None:
    """pipewatch: browse pipelines, trigger runs and follow their logs."""


def _settings(config: Optional[str]) -> ConsoleSettings:
    try:
        settings = load_settings(config)
        settings.validate()
    except ConfigError as e:
        typer.echo(f"Configuration error: {e}", err=True)
        raise typer.Exit(1) from None
    return settings


def _level(name: str) -> int:
    level = logging.getLevelName(name.upper())
    if not isinstance(level, int):
        typer.echo(f"Error: unknown log level '{name}'", err=True)
        raise typer.Exit(1)
    return level


@app.command()
def ui(
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to the YAML config file.",
    ),
    log_level: str = typer.Option(
        LOG_LEVEL,
        "--log-level",
        "-l",
        help="Log level for the log file (DEBUG, INFO, WARNING, ERROR).",
    ),
) -> None:
    """Open the interactive console."""
    log_file = setup_logging(level=_level(log_level), console=False)
    settings = _settings(config)
    logger.info("Starting console for organization %s (log file %s)", settings.organization_id, log_file)

    from pipewatch.ui.app import PipewatchApp

    PipewatchApp(settings).run()


async def _first_page(settings: ConsoleSettings):
    async with PipelineGateway(
        settings.token,
        settings.organization_id,
        endpoint=settings.endpoint,
        timeout=settings.request_timeout,
    ) as gateway:
        return await gateway.list_pipelines(page=1, per_page=settings.page_size)


@app.command()
def check(
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to the YAML config file.",
    ),
) -> None:
    """Validate configuration and list the first page of pipelines."""
    setup_logging(level=logging.WARNING, log_dir=None)
    settings = _settings(config)
    try:
        page = asyncio.run(_first_page(settings))
    except PipewatchError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from None

    typer.echo(f"Connected to {settings.endpoint} as organization {settings.organization_id}")
    for name, status, creator, updated in (pipeline_row(p) for p in page.items):
        typer.echo(f"  {name:<40} {status:<10} {creator:<16} {updated}")
    more = "" if page.is_last_page else " (more pages available)"
    typer.echo(f"{len(page.items)} pipelines on page 1{more}")


if __name__ == "__main__":
    app()
