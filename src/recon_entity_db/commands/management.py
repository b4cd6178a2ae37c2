"""Source management commands."""

from pathlib import Path

import click

from recon_entity_db.errors import FlatFileError

from ._common import SOURCE_ENVVAR, _configure_logging, _open_source, _verbose


@click.command("status")
@click.argument("source", envvar=SOURCE_ENVVAR, type=click.Path(exists=True))
def db_status(source: str):
    """
    Show source metadata and statistics.

    \b
    Examples:
        recon-entity-db status genes.sqlite
        recon-entity-db status genes.txt.gz
    """
    entity_source = _open_source(source)
    try:
        stats = entity_source.get_stats()

        click.echo("\nReconciliation Source Status")
        click.echo("=" * 40)
        click.echo(f"Name: {entity_source.name()}")
        click.echo(f"Backend: {type(entity_source).__name__}")
        click.echo(f"Identifier namespace: {entity_source.identifier_namespace()}")
        click.echo(f"Schema namespace: {entity_source.schema_namespace()}")
        if entity_source.view_url():
            click.echo(f"View URL: {entity_source.view_url()}")

        click.echo(f"\n{'Table':<20} {'Records':>15}")
        click.echo("-" * 36)
        for table, count in stats.items():
            click.echo(f"{table:<20} {count:>15,}")

        types = sorted(entity_source.types(), key=lambda t: t.id)
        if types:
            click.echo("\n=== Types ===")
            click.echo(f"{'Type':<20} {'Properties':>15}")
            click.echo("-" * 36)
            for entity_type in types:
                click.echo(f"{entity_type.id:<20} {len(entity_source.properties_for(entity_type.id)):>15,}")
    finally:
        entity_source.close()


@click.command("convert")
@click.argument("flat_file", type=click.Path(exists=True))
@click.argument("db_path", type=click.Path())
@click.option("--force", is_flag=True, help="Overwrite an existing database")
@click.option("-v", "--verbose", is_flag=True, help="Verbose output")
def db_convert(flat_file: str, db_path: str, force: bool, verbose: bool):
    """
    Convert FLAT_FILE into a SQLite database at DB_PATH.

    \b
    Examples:
        recon-entity-db convert genes.txt.gz genes.sqlite
    """
    _configure_logging(_verbose(verbose))

    from recon_entity_db.loader import convert_flat_file

    target = Path(db_path)
    if target.exists():
        if not force:
            raise click.ClickException(f"{target} exists (use --force to overwrite)")
        target.unlink()

    click.echo(f"Converting {flat_file} -> {target}...", err=True)
    try:
        counts = convert_flat_file(flat_file, target)
    except FlatFileError as e:
        raise click.ClickException(str(e)) from e

    click.echo(
        f"Wrote {counts['entities']:,} entities, {counts['properties']} properties, "
        f"{counts['property_values']:,} property values."
    )
