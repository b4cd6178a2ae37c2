"""Shared utilities used across CLI command modules."""

import logging
import sys

import click

from recon_entity_db.errors import FlatFileError, SourceUnavailableError
from recon_entity_db.source import EntitySource, open_source

SOURCE_ENVVAR = "RECON_ENTITY_DB_SOURCE"


def _configure_logging(verbose: bool) -> None:
    """Configure logging for the reconciliation tools."""
    level = logging.DEBUG if verbose else logging.WARNING

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
        force=True,
    )
    logging.getLogger("recon_entity_db").setLevel(level)

    # Suppress noisy third-party loggers
    for noisy_logger in [
        "httpcore",
        "httpx",
        "uvicorn.access",
        "asyncio",
    ]:
        logging.getLogger(noisy_logger).setLevel(logging.WARNING)


def _verbose(verbose: bool) -> bool:
    """Combine a command's -v flag with the group's."""
    ctx = click.get_current_context(silent=True)
    group_verbose = bool(ctx and ctx.obj and ctx.obj.get("verbose"))
    return verbose or group_verbose


def _open_source(location: str) -> EntitySource:
    """Open a source, turning load failures into CLI errors."""
    try:
        return open_source(location)
    except (SourceUnavailableError, FlatFileError) as e:
        raise click.ClickException(str(e)) from e
