"""Serve command - start the reconciliation server."""

import logging

import click

from recon_entity_db.errors import SourceUnavailableError

from ._common import SOURCE_ENVVAR, _verbose

logger = logging.getLogger(__name__)


@click.command("serve")
@click.argument("source", envvar=SOURCE_ENVVAR, type=click.Path(exists=True))
@click.option("--port", default=8222, help="Port to listen on.")
@click.option("--host", default="0.0.0.0", help="Host to bind to.")
@click.option("--public-url", envvar="RECON_ENTITY_DB_PUBLIC_URL", default=None,
              help="Publicly reachable root URL used in the manifest (default: http://127.0.0.1:PORT).")
@click.option("--prefix", envvar="RECON_ENTITY_DB_PREFIX", default="/api", help="URL prefix to serve requests from.")
@click.option("--no-warmup", is_flag=True, help="Skip eager loading of the source.")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
def serve_cmd(source: str, port: int, host: str, public_url: str, prefix: str, no_warmup: bool, verbose: bool):
    """Start the reconciliation server for SOURCE."""
    from recon_entity_db.server import run_server

    verbose = _verbose(verbose)
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(name)s %(message)s")
    else:
        logging.basicConfig(level=logging.INFO, format="%(name)s %(message)s")

    try:
        run_server(
            source_location=source,
            host=host,
            port=port,
            public_url=public_url,
            prefix=prefix,
            do_warmup=not no_warmup,
            verbose=verbose,
        )
    except (ValueError, SourceUnavailableError) as e:
        raise click.ClickException(str(e)) from e
