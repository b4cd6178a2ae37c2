"""
SQLite schema for reconciliation databases and the builder that fills it.

Tables:
- recongo_metadata: source name, namespaces and view URL (key/value)
- recongo_types: entity types
- recongo_properties / recongo_props2types: properties and the types they apply to
- recongo_entities: one row per (raw id, comma-joined type list)
- recongo_entity_properties: property values per entity row
- recongo_entities_fts: FTS5 index over recongo_entities (external content)
"""

import logging
import sqlite3
from pathlib import Path
from typing import Iterable

from .identifiers import split_type_ids
from .models import EntityRecord, EntityType, Property, SourceMetadata

logger = logging.getLogger(__name__)

METADATA_TABLE = "recongo_metadata"
TYPES_TABLE = "recongo_types"
PROPERTIES_TABLE = "recongo_properties"
PROPS2TYPES_TABLE = "recongo_props2types"
ENTITIES_TABLE = "recongo_entities"
ENTITY_PROPERTIES_TABLE = "recongo_entity_properties"
FTS_TABLE = "recongo_entities_fts"

# Metadata keys
META_NAME = "name"
META_IDENTIFIER_NS = "identifierNamespace"
META_SCHEMA_NS = "schemaNamespace"
META_VIEW_URL = "view_url"

CREATE_METADATA = f"""
CREATE TABLE IF NOT EXISTS {METADATA_TABLE} (
    meta_key TEXT PRIMARY KEY,
    meta_value TEXT
)
"""

CREATE_TYPES = f"""
CREATE TABLE IF NOT EXISTS {TYPES_TABLE} (
    type_id TEXT PRIMARY KEY,
    type_name TEXT NOT NULL,
    type_description TEXT,
    type_url TEXT NOT NULL DEFAULT ''
)
"""

CREATE_PROPERTIES = f"""
CREATE TABLE IF NOT EXISTS {PROPERTIES_TABLE} (
    prop_id TEXT PRIMARY KEY,
    prop_name TEXT NOT NULL,
    prop_description TEXT,
    prop_kind TEXT NOT NULL DEFAULT 'string'
)
"""

CREATE_PROPS2TYPES = f"""
CREATE TABLE IF NOT EXISTS {PROPS2TYPES_TABLE} (
    prop_id TEXT REFERENCES {PROPERTIES_TABLE} (prop_id),
    type_id TEXT REFERENCES {TYPES_TABLE} (type_id),
    PRIMARY KEY (prop_id, type_id)
)
"""

CREATE_ENTITIES = f"""
CREATE TABLE IF NOT EXISTS {ENTITIES_TABLE} (
    ent_types TEXT NOT NULL,  -- comma-separated type ids, primary type first
    ent_id TEXT NOT NULL,
    ent_name TEXT NOT NULL,
    ent_description TEXT,
    PRIMARY KEY (ent_id, ent_types)
)
"""

CREATE_ENTITY_PROPERTIES = f"""
CREATE TABLE IF NOT EXISTS {ENTITY_PROPERTIES_TABLE} (
    ent_types TEXT NOT NULL,
    ent_id TEXT NOT NULL,
    prop_id TEXT NOT NULL,
    prop_value TEXT NOT NULL,
    PRIMARY KEY (ent_types, ent_id, prop_id, prop_value)
)
"""

CREATE_FTS = f"""
CREATE VIRTUAL TABLE IF NOT EXISTS {FTS_TABLE} USING fts5 (
    ent_id, ent_name, ent_description, ent_types,
    content={ENTITIES_TABLE}
)
"""

CREATE_INDEXES = [
    f"CREATE INDEX IF NOT EXISTS idx_entities_name ON {ENTITIES_TABLE}(ent_name)",
    f"CREATE INDEX IF NOT EXISTS idx_entity_properties_value ON {ENTITY_PROPERTIES_TABLE}(prop_id, prop_value)",
]


def create_all_tables(conn: sqlite3.Connection) -> None:
    """Create every reconciliation table and index (idempotent)."""
    for ddl in (
        CREATE_METADATA,
        CREATE_TYPES,
        CREATE_PROPERTIES,
        CREATE_PROPS2TYPES,
        CREATE_ENTITIES,
        CREATE_ENTITY_PROPERTIES,
        CREATE_FTS,
        *CREATE_INDEXES,
    ):
        conn.execute(ddl)
    conn.commit()


def rebuild_fts_index(conn: sqlite3.Connection) -> None:
    """Re-sync the full-text index with recongo_entities."""
    conn.execute(f"INSERT INTO {FTS_TABLE}({FTS_TABLE}) VALUES ('rebuild')")


def build_database(
    db_path: str | Path,
    metadata: SourceMetadata,
    types: Iterable[EntityType],
    records: Iterable[Property | EntityRecord],
    batch_size: int = 10000,
) -> dict[str, int]:
    """
    Write loader records into a new SQLite reconciliation database.

    Args:
        db_path: Destination file; must not already exist
        metadata: Source name and namespaces
        types: Declared entity types
        records: Property definitions and entity rows
        batch_size: Progress logging interval

    Returns:
        Counts of inserted entities, properties and property values

    Raises:
        FileExistsError: If db_path already exists
        ValueError: If an entity row has no type
    """
    db_path = Path(db_path)
    if db_path.exists():
        raise FileExistsError(f"Database already exists: {db_path}")
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(str(db_path))
    try:
        create_all_tables(conn)
        counts = _insert_all(conn, metadata, types, records, batch_size)
        rebuild_fts_index(conn)
        conn.commit()
    except Exception:
        conn.rollback()
        conn.close()
        db_path.unlink(missing_ok=True)
        raise
    conn.close()

    logger.info(
        f"Built {db_path.name}: {counts['entities']:,} entities, "
        f"{counts['properties']} properties, {counts['property_values']:,} values"
    )
    return counts


def _insert_all(
    conn: sqlite3.Connection,
    metadata: SourceMetadata,
    types: Iterable[EntityType],
    records: Iterable[Property | EntityRecord],
    batch_size: int,
) -> dict[str, int]:
    conn.executemany(
        f"INSERT INTO {METADATA_TABLE} (meta_key, meta_value) VALUES (?, ?)",
        [
            (META_NAME, metadata.name),
            (META_IDENTIFIER_NS, metadata.identifier_namespace),
            (META_SCHEMA_NS, metadata.schema_namespace),
            (META_VIEW_URL, metadata.view_url),
        ],
    )
    conn.executemany(
        f"INSERT INTO {TYPES_TABLE} (type_id, type_name, type_description, type_url) VALUES (?, ?, ?, ?)",
        [(t.id, t.name, t.description, t.view_url) for t in types],
    )

    counts = {"entities": 0, "properties": 0, "property_values": 0}
    for record in records:
        if isinstance(record, Property):
            conn.execute(
                f"""INSERT OR REPLACE INTO {PROPERTIES_TABLE}
                (prop_id, prop_name, prop_description, prop_kind) VALUES (?, ?, ?, ?)""",
                (record.id, record.name, record.description, record.value_kind),
            )
            conn.executemany(
                f"INSERT OR IGNORE INTO {PROPS2TYPES_TABLE} (prop_id, type_id) VALUES (?, ?)",
                [(record.id, type_id) for type_id in record.type_ids],
            )
            counts["properties"] += 1
            continue

        if not record.type_ids:
            raise ValueError(f"Entity '{record.key}' has no type")
        joined = record.joined_types
        replaced_rows, replaced_values = _delete_same_composite_id(conn, record.type_ids[0], record.key)
        counts["entities"] -= replaced_rows
        counts["property_values"] -= replaced_values
        conn.execute(
            f"""INSERT INTO {ENTITIES_TABLE}
            (ent_types, ent_id, ent_name, ent_description) VALUES (?, ?, ?, ?)""",
            (joined, record.key, record.name, record.description),
        )
        conn.executemany(
            f"""INSERT INTO {ENTITY_PROPERTIES_TABLE}
            (ent_types, ent_id, prop_id, prop_value) VALUES (?, ?, ?, ?)""",
            [(joined, record.key, prop_id, value) for prop_id, value in record.properties.items()],
        )
        counts["entities"] += 1
        counts["property_values"] += len(record.properties)
        if counts["entities"] % batch_size == 0:
            logger.info(f"Inserted {counts['entities']:,} entities...")

    return counts


def _delete_same_composite_id(conn: sqlite3.Connection, primary: str, key: str) -> tuple[int, int]:
    """
    Drop earlier rows that share a composite id with a new entity row.

    A later row for the same raw key and primary type replaces the earlier
    one, whatever its secondary types. Returns the numbers of entity rows
    and property values removed.
    """
    rows = conn.execute(f"SELECT ent_types FROM {ENTITIES_TABLE} WHERE ent_id = ?", (key,)).fetchall()
    stale = [ent_types for (ent_types,) in rows if split_type_ids(ent_types)[:1] == [primary]]
    removed_values = 0
    for ent_types in stale:
        logger.debug(f"Duplicate entity id {primary}:{key}, keeping the last row")
        removed_values += conn.execute(
            f"DELETE FROM {ENTITY_PROPERTIES_TABLE} WHERE ent_types = ? AND ent_id = ?",
            (ent_types, key),
        ).rowcount
        conn.execute(f"DELETE FROM {ENTITIES_TABLE} WHERE ent_types = ? AND ent_id = ?", (ent_types, key))
    return len(stale), removed_values
