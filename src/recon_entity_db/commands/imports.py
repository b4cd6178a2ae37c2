"""Data import commands."""

from pathlib import Path

import click
from pydantic import ValidationError

from ._common import _configure_logging, _verbose


@click.command("import-tabular")
@click.argument("config_path", type=click.Path(exists=True))
@click.option("-o", "--output", type=click.Path(), help="Output file (.txt/.tsv[.gz] flat file, or .db/.sqlite)")
@click.option("--dry-run", is_flag=True, help="Only show how columns map to properties")
@click.option("-v", "--verbose", is_flag=True, help="Verbose output")
def db_import_tabular(config_path: str, output: str, dry_run: bool, verbose: bool):
    """
    Convert CSV/TSV files described by a JSON config into a source.

    Files whose name ends in csv (before any .gz) are read as CSV, all
    others as tab-separated. Relative file names are resolved against the
    config file's directory.

    \b
    Examples:
        recon-entity-db import-tabular config.json -o genes.sqlite
        recon-entity-db import-tabular config.json -o genes.txt.gz
        recon-entity-db import-tabular config.json --dry-run -v
    """
    # Column mappings are reported through logging
    _configure_logging(_verbose(verbose) or dry_run)

    from recon_entity_db.importers import TabularConfig, import_tabular

    if not output and not dry_run:
        raise click.UsageError("--output is required unless --dry-run is given")

    try:
        config = TabularConfig.from_file(config_path)
    except ValidationError as e:
        raise click.ClickException(f"Invalid config {config_path}: {e}") from e

    if output and Path(output).exists() and not dry_run:
        raise click.ClickException(f"{output} already exists")

    base_dir = Path(config_path).parent
    counts = import_tabular(config, output or "", base_dir=base_dir, dry_run=dry_run)

    if dry_run:
        click.echo(f"Dry run: checked {len(config.files)} file(s), nothing written.", err=True)
        return
    click.echo(f"Imported {counts['entities']:,} entities and {counts['properties']} properties into {output}")
