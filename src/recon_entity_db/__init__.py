"""
Entity reconciliation lookup service.

Resolves free-text names to typed entity identifiers over either an
in-memory source loaded from a flat file or a SQLite database with an FTS5
full-text index, and serves both through the reconciliation HTTP API.
"""

__version__ = "0.1.0"

from recon_entity_db.errors import FlatFileError, MalformedQueryError, SourceUnavailableError

from recon_entity_db.models import (
    Candidate,
    Entity,
    EntityRecord,
    EntityType,
    Property,
    QueryProperty,
    QueryRequest,
    QueryResponse,
    SourceMetadata,
)

from recon_entity_db.source import EntitySource, get_source, open_source
from recon_entity_db.memory import MemorySource
from recon_entity_db.store import DatabaseSource
from recon_entity_db.loader import convert_flat_file, load_flat_file, write_flat_file

__all__ = [
    # Models
    "Candidate",
    "Entity",
    "EntityRecord",
    "EntityType",
    "Property",
    "QueryProperty",
    "QueryRequest",
    "QueryResponse",
    "SourceMetadata",
    # Sources
    "EntitySource",
    "MemorySource",
    "DatabaseSource",
    "get_source",
    "open_source",
    # Flat files
    "convert_flat_file",
    "load_flat_file",
    "write_flat_file",
    # Errors
    "FlatFileError",
    "MalformedQueryError",
    "SourceUnavailableError",
    "__version__",
]
