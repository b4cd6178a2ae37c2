"""
The entity source capability and the factory that opens one.

Two independent implementations satisfy EntitySource: MemorySource (flat
files loaded into resident dicts) and DatabaseSource (a pre-built SQLite
database with an FTS5 index). Callers only see the protocol.
"""

import logging
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

from .errors import MalformedQueryError, SourceUnavailableError
from .models import Entity, EntityType, Property, QueryRequest, QueryResponse

logger = logging.getLogger(__name__)

SQLITE_SUFFIXES = {".db", ".sqlite", ".sqlite3"}

# Module-level singletons by location
_source_instances: dict[str, "EntitySource"] = {}

__all__ = [
    "EntitySource",
    "MalformedQueryError",
    "SourceUnavailableError",
    "get_source",
    "is_sqlite_location",
    "open_source",
]


@runtime_checkable
class EntitySource(Protocol):
    """
    A read-only, searchable collection of typed entities.

    Sources are fully built at construction and never written afterwards,
    so one instance can be shared by any number of concurrent readers.
    """

    def name(self) -> str: ...

    def identifier_namespace(self) -> str: ...

    def schema_namespace(self) -> str: ...

    def view_url(self) -> str: ...

    def types(self) -> list[EntityType]:
        """All known entity types, in no particular order."""
        ...

    def properties_for(self, type_id: str) -> list[Property]:
        """Properties declared for a type; empty for unknown types."""
        ...

    def get_entity(self, entity_id: str) -> Optional[Entity]:
        """Look up an entity by composite id, with its property values."""
        ...

    def query(self, request: QueryRequest) -> QueryResponse:
        """Rank candidate entities for a query."""
        ...

    def query_prefix(self, text: str, limit: int) -> list[Entity]:
        """Entities whose name or key starts with text."""
        ...

    def close(self) -> None: ...


def is_sqlite_location(location: str | Path) -> bool:
    path = Path(location)
    return path.suffix.lower() in SQLITE_SUFFIXES or "sqlite" in path.name.lower()


def open_source(location: str | Path) -> EntitySource:
    """
    Open an entity source, choosing the backend from the location.

    SQLite files (``.db``, ``.sqlite``, ``.sqlite3`` or any name containing
    "sqlite") open a DatabaseSource; anything else is parsed as a flat file
    into a MemorySource.

    Raises:
        SourceUnavailableError: If the location does not exist.
    """
    path = Path(location)
    if not path.exists():
        raise SourceUnavailableError(f"Source not found: {path}")

    if is_sqlite_location(path):
        from .store import DatabaseSource

        logger.info(f"Opening SQLite source {path}")
        return DatabaseSource(path)

    from .loader import load_flat_file

    logger.info(f"Loading flat file source {path}")
    return load_flat_file(path)


def get_source(location: str | Path) -> EntitySource:
    """Get a singleton EntitySource for the given location."""
    path_key = str(Path(location).resolve())
    if path_key not in _source_instances:
        logger.debug(f"Creating new EntitySource instance for {path_key}")
        _source_instances[path_key] = open_source(location)
    return _source_instances[path_key]
