"""CLI commands package: main click group and command registration."""

import click

from recon_entity_db import __version__


@click.group()
@click.version_option(version=__version__)
@click.option("-v", "--verbose", is_flag=True, help="Verbose output")
@click.pass_context
def main(ctx: click.Context, verbose: bool):
    """
    Build, inspect and serve entity reconciliation sources.

    A source is either a flat file (.txt/.tsv, optionally .gz) loaded into
    memory, or a SQLite database (.db/.sqlite) with a full-text index.

    \b
    Commands:
        import-tabular  Convert CSV/TSV files (JSON config) to a source
        convert         Convert a flat file into a SQLite database
        status          Show source metadata and counts
        search          Run a reconciliation query
        suggest         Prefix-search entity names
        entity          Show one entity with its property values
        properties      List properties declared for a type
        serve           Start the reconciliation HTTP server

    \b
    Examples:
        recon-entity-db import-tabular config.json -o genes.sqlite
        recon-entity-db convert genes.txt.gz genes.sqlite
        recon-entity-db search genes.sqlite "BRCA1" --type gene
        recon-entity-db serve genes.sqlite --port 8222
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose


# Register all commands
from .imports import db_import_tabular

main.add_command(db_import_tabular)

from .management import db_convert, db_status

main.add_command(db_convert)
main.add_command(db_status)

from .search import db_entity, db_properties, db_search, db_suggest

main.add_command(db_search)
main.add_command(db_suggest)
main.add_command(db_entity)
main.add_command(db_properties)

from .serve import serve_cmd

main.add_command(serve_cmd)
