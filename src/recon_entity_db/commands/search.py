"""Source query commands."""

import logging
from typing import Optional

import click

from recon_entity_db.errors import MalformedQueryError
from recon_entity_db.manifest import apply_url_template

from ._common import SOURCE_ENVVAR, _configure_logging, _open_source, _verbose

logger = logging.getLogger(__name__)


@click.command("search")
@click.argument("source", envvar=SOURCE_ENVVAR, type=click.Path(exists=True))
@click.argument("query")
@click.option("--type", "type_id", default="", help="Restrict to (in-memory: boost) an entity type id")
@click.option("--limit", type=int, default=0, help="Number of results (default: 25)")
@click.option("--prop", "props", multiple=True, metavar="PID=VALUE", help="Property constraint, repeatable")
@click.option("-v", "--verbose", is_flag=True, help="Verbose output")
def db_search(source: str, query: str, type_id: str, limit: int, props: tuple[str, ...], verbose: bool):
    """
    Run a reconciliation query against SOURCE.

    \b
    Examples:
        recon-entity-db search genes.sqlite "BRCA1"
        recon-entity-db search genes.txt.gz "breast cancer" --type gene --limit 5
        recon-entity-db search genes.sqlite "kinase" --prop tax_id=9606
    """
    _configure_logging(_verbose(verbose))

    from recon_entity_db.models import QueryProperty, QueryRequest

    constraints = []
    for prop in props:
        pid, sep, value = prop.partition("=")
        if not sep or not pid:
            raise click.BadParameter(f"expected PID=VALUE, got {prop!r}", param_hint="--prop")
        constraints.append(QueryProperty(id=pid, value=value))

    entity_source = _open_source(source)
    click.echo(f"Searching for '{query}' in {source}...", err=True)
    request = QueryRequest(id="cli", text=query, type=type_id, limit=limit, properties=constraints)
    try:
        response = entity_source.query(request)
    except MalformedQueryError as e:
        raise click.ClickException(str(e)) from e
    finally:
        entity_source.close()

    if not response.results:
        click.echo("No results found.", err=True)
        return

    click.echo(f"\nFound {len(response.results)} results:\n")
    for i, candidate in enumerate(response.results, 1):
        types = ", ".join(t.id for t in candidate.types)
        flag = " [match]" if candidate.match else ""
        click.echo(f"  {i}. {candidate.name}{flag}")
        click.echo(f"     ID: {candidate.id}, Types: {types}, Score: {candidate.score:.2f}")


@click.command("suggest")
@click.argument("source", envvar=SOURCE_ENVVAR, type=click.Path(exists=True))
@click.argument("prefix")
@click.option("--limit", type=int, default=10, help="Number of results")
@click.option("-v", "--verbose", is_flag=True, help="Verbose output")
def db_suggest(source: str, prefix: str, limit: int, verbose: bool):
    """
    List entities whose name or id starts with PREFIX.

    \b
    Examples:
        recon-entity-db suggest genes.sqlite "BRC"
    """
    _configure_logging(_verbose(verbose))

    entity_source = _open_source(source)
    try:
        entities = entity_source.query_prefix(prefix, limit)
    finally:
        entity_source.close()

    if not entities:
        click.echo("No results found.", err=True)
        return
    for entity in entities:
        click.echo(f"{entity.id}\t{entity.name}")


@click.command("entity")
@click.argument("source", envvar=SOURCE_ENVVAR, type=click.Path(exists=True))
@click.argument("entity_id")
@click.option("-v", "--verbose", is_flag=True, help="Verbose output")
def db_entity(source: str, entity_id: str, verbose: bool):
    """
    Show the entity with composite id ENTITY_ID (type:key) and its properties.

    \b
    Examples:
        recon-entity-db entity genes.sqlite gene:672
    """
    _configure_logging(_verbose(verbose))

    entity_source = _open_source(source)
    try:
        entity = entity_source.get_entity(entity_id)
    finally:
        entity_source.close()

    if entity is None:
        raise click.ClickException(f"Entity not found: {entity_id}")

    click.echo(f"{entity.name} ({entity.id})")
    click.echo(f"  Types: {', '.join(t.id for t in entity.types)}")
    if entity.description:
        click.echo(f"  Description: {entity.description}")
    view_url = entity_source.view_url()
    if view_url:
        try:
            click.echo(f"  View: {apply_url_template(view_url, entity.id)}")
        except ValueError as e:
            logger.warning(f"Ignoring view URL: {e}")
    for prop_id, value in sorted(entity.properties.items()):
        click.echo(f"  {prop_id}: {value}")


@click.command("properties")
@click.argument("source", envvar=SOURCE_ENVVAR, type=click.Path(exists=True))
@click.argument("type_id", required=False)
@click.option("-v", "--verbose", is_flag=True, help="Verbose output")
def db_properties(source: str, type_id: Optional[str], verbose: bool):
    """
    List the properties declared for TYPE_ID, or list all types.

    \b
    Examples:
        recon-entity-db properties genes.sqlite
        recon-entity-db properties genes.sqlite gene
    """
    _configure_logging(_verbose(verbose))

    entity_source = _open_source(source)
    try:
        if not type_id:
            for entity_type in sorted(entity_source.types(), key=lambda t: t.id):
                click.echo(f"{entity_type.id}\t{entity_type.name}")
            return
        properties = entity_source.properties_for(type_id)
    finally:
        entity_source.close()

    if not properties:
        click.echo(f"No properties for type '{type_id}'.", err=True)
        return
    for prop in properties:
        click.echo(f"{prop.id}\t{prop.name}\t{prop.value_kind}")
