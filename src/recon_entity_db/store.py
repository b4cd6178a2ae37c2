"""
SQLite-backed entity source with an FTS5 full-text index.

Types, properties and metadata are cached when the source opens; entities
stay in the database. Full-text hits are ranked by bm25 and rescaled onto
the same 0-100 scale the in-memory source uses, so callers cannot tell the
backends apart.
"""

import logging
import sqlite3
import string
import threading
from pathlib import Path
from typing import Optional

from .errors import SourceUnavailableError
from .identifiers import compose_id, primary_type, raw_key, split_type_ids
from .models import (
    Candidate,
    Entity,
    EntityType,
    Property,
    QueryRequest,
    QueryResponse,
    SourceMetadata,
    lookup_type,
)
from .schema import (
    ENTITIES_TABLE,
    ENTITY_PROPERTIES_TABLE,
    FTS_TABLE,
    META_IDENTIFIER_NS,
    META_NAME,
    META_SCHEMA_NS,
    META_VIEW_URL,
    METADATA_TABLE,
    PROPERTIES_TABLE,
    PROPS2TYPES_TABLE,
    TYPES_TABLE,
)
from .scoring import (
    DEFAULT_LIMIT,
    EXACT_ID_SCORE,
    is_match,
    length_ratio_score,
    normalization_scale,
    sort_candidates,
)

logger = logging.getLogger(__name__)

ENTITY_COLUMNS = "ent_id, ent_name, COALESCE(ent_description, '') AS ent_description, ent_types"

SELECT_ENTITY_BY_ID = f"""
    SELECT {ENTITY_COLUMNS} FROM {ENTITIES_TABLE}
    WHERE ent_id = ?
    ORDER BY ent_types
"""

SELECT_ENTITY_BY_PREFIX = f"""
    SELECT {ENTITY_COLUMNS} FROM {ENTITIES_TABLE}
    WHERE ent_id LIKE ? ESCAPE '\\' OR ent_name LIKE ? ESCAPE '\\'
    ORDER BY ent_name,
        CASE WHEN instr(ent_types, ',') > 0
            THEN substr(ent_types, 1, instr(ent_types, ',') - 1)
            ELSE ent_types END || ':' || ent_id
    LIMIT ?
"""

SELECT_ENTITY_PROPERTY_VALUES = f"""
    SELECT prop_id, prop_value FROM {ENTITY_PROPERTIES_TABLE}
    WHERE ent_types = ? AND ent_id = ?
    ORDER BY prop_id, prop_value
"""

# Aliases for joined property tables: b, c, ..., z, then b1, c1, ...
_ALIAS_LETTERS = string.ascii_lowercase[1:]


def _apply_pragmas(conn: sqlite3.Connection) -> None:
    """Read-only tuning: memory-mapped I/O and in-memory temp storage."""
    conn.execute("PRAGMA mmap_size = 268435456")  # 256 MB
    conn.execute("PRAGMA cache_size = -65536")  # 64 MB
    conn.execute("PRAGMA temp_store = MEMORY")


def _open_connection(db_path: Path) -> sqlite3.Connection:
    """Open a read-only connection; the file is treated as immutable."""
    if not db_path.exists():
        raise SourceUnavailableError(f"Database not found: {db_path}")
    try:
        conn = sqlite3.connect(
            f"{db_path.resolve().as_uri()}?immutable=1",
            uri=True,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        _apply_pragmas(conn)
    except sqlite3.Error as e:
        raise SourceUnavailableError(f"Cannot open database {db_path}: {e}") from e
    logger.debug(f"Opened read-only connection to {db_path}")
    return conn


def table_alias(index: int) -> str:
    """Deterministic alias for the index-th joined table."""
    letter = _ALIAS_LETTERS[index % len(_ALIAS_LETTERS)]
    rounds = index // len(_ALIAS_LETTERS)
    return f"{letter}{rounds}" if rounds else letter


def fts_match_expression(text: str) -> Optional[str]:
    """
    Turn free text into an FTS5 MATCH expression.

    Each whitespace-separated token becomes a quoted phrase (so query text
    never needs FTS5 syntax) and the last one a prefix term. Returns None
    when the text has no searchable token.
    """
    tokens = [t for t in text.split() if any(ch.isalnum() for ch in t)]
    if not tokens:
        return None
    phrases = ['"' + t.replace('"', '""') + '"' for t in tokens]
    phrases[-1] += "*"
    return " ".join(phrases)


def escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class PropertySearchQuery:
    """
    Full-text search joined against one property filter per constraint.

    Clauses and bound parameters are accumulated side by side: the match
    expression first, then a (property id, value) pair per constraint in
    the order they were added. Values are only ever bound, never
    interpolated.
    """

    def __init__(self, match_expression: str):
        self._joins: list[str] = []
        self._filters: list[str] = [f"{FTS_TABLE} MATCH ?"]
        self._params: list[str] = [match_expression]

    def add_constraint(self, prop_id: str, value: str) -> str:
        """Require a property value; returns the alias used for the join."""
        alias = table_alias(len(self._joins))
        self._joins.append(
            f"JOIN {ENTITY_PROPERTIES_TABLE} {alias} "
            f"ON {alias}.ent_id = {FTS_TABLE}.ent_id AND {alias}.ent_types = {FTS_TABLE}.ent_types"
        )
        self._filters.append(f"{alias}.prop_id = ? AND {alias}.prop_value = ?")
        self._params.extend([prop_id, value])
        return alias

    @property
    def sql(self) -> str:
        parts = [
            f"SELECT {FTS_TABLE}.ent_id AS ent_id, {FTS_TABLE}.ent_name AS ent_name, "
            f"{FTS_TABLE}.ent_types AS ent_types, bm25({FTS_TABLE}) AS score",
            f"FROM {FTS_TABLE}",
            *self._joins,
            "WHERE " + " AND ".join(self._filters),
            f"ORDER BY score, {FTS_TABLE}.ent_id",
        ]
        return "\n".join(parts)

    @property
    def params(self) -> list[str]:
        return list(self._params)


class DatabaseSource:
    """
    Entity source over a pre-built SQLite reconciliation database.

    Each thread gets its own read-only connection; the cached catalogs are
    filled once in __init__ and only read afterwards.
    """

    def __init__(self, db_path: str | Path):
        """
        Open the database and cache its catalogs.

        Args:
            db_path: Path to a database produced by ``schema.build_database``

        Raises:
            SourceUnavailableError: If the file is missing or is not a
                reconciliation database.
        """
        self._db_path = Path(db_path)
        self._local = threading.local()
        self._connections: list[sqlite3.Connection] = []
        self._connections_lock = threading.Lock()

        self._metadata = SourceMetadata()
        # type id -> EntityType
        self._types: dict[str, EntityType] = {}
        # type id -> properties declared for it
        self._properties: dict[str, list[Property]] = {}

        try:
            self._load_catalogs()
        except sqlite3.Error as e:
            self.close()
            raise SourceUnavailableError(f"Not a reconciliation database: {self._db_path} ({e})") from e

    def _connect(self) -> sqlite3.Connection:
        """Get this thread's connection, opening it on first use."""
        conn = getattr(self._local, "conn", None)
        if conn is None:
            conn = _open_connection(self._db_path)
            self._local.conn = conn
            with self._connections_lock:
                self._connections.append(conn)
        return conn

    def close(self) -> None:
        """Close every pooled connection."""
        with self._connections_lock:
            for conn in self._connections:
                conn.close()
            self._connections.clear()
        self._local = threading.local()

    def _load_catalogs(self) -> None:
        conn = self._connect()

        meta = {row["meta_key"]: row["meta_value"] or "" for row in conn.execute(
            f"SELECT meta_key, meta_value FROM {METADATA_TABLE}"
        )}
        self._metadata = SourceMetadata(
            name=meta.get(META_NAME, ""),
            identifier_namespace=meta.get(META_IDENTIFIER_NS, ""),
            schema_namespace=meta.get(META_SCHEMA_NS, ""),
            view_url=meta.get(META_VIEW_URL, ""),
        )

        for row in conn.execute(
            f"""SELECT type_id, type_name, COALESCE(type_description, '') AS type_description,
                COALESCE(type_url, '') AS type_url FROM {TYPES_TABLE} ORDER BY type_id"""
        ):
            self._types[row["type_id"]] = EntityType(
                id=row["type_id"],
                name=row["type_name"],
                description=row["type_description"],
                view_url=row["type_url"],
            )

        type_ids_by_prop: dict[str, list[str]] = {}
        for row in conn.execute(f"SELECT prop_id, type_id FROM {PROPS2TYPES_TABLE} ORDER BY prop_id, type_id"):
            type_ids_by_prop.setdefault(row["prop_id"], []).append(row["type_id"])

        for row in conn.execute(
            f"""SELECT prop_id, prop_name, COALESCE(prop_description, '') AS prop_description,
                prop_kind FROM {PROPERTIES_TABLE} ORDER BY prop_id"""
        ):
            type_ids = type_ids_by_prop.get(row["prop_id"], [])
            if not type_ids:
                logger.debug(f"Property '{row['prop_id']}' applies to no type")
                continue
            prop = Property(
                id=row["prop_id"],
                name=row["prop_name"],
                description=row["prop_description"],
                value_kind=row["prop_kind"],
                type_ids=type_ids,
            )
            for type_id in type_ids:
                self._properties.setdefault(type_id, []).append(prop)

        logger.info(f"Opened {self._db_path.name}: {len(self._types)} types, {len(type_ids_by_prop)} properties")

    def name(self) -> str:
        return self._metadata.name

    def identifier_namespace(self) -> str:
        return self._metadata.identifier_namespace

    def schema_namespace(self) -> str:
        return self._metadata.schema_namespace

    def view_url(self) -> str:
        return self._metadata.view_url

    def types(self) -> list[EntityType]:
        return list(self._types.values())

    def properties_for(self, type_id: str) -> list[Property]:
        return list(self._properties.get(type_id, ()))

    def get_entity(self, entity_id: str) -> Optional[Entity]:
        """
        Look up an entity by composite id and read its property values.

        The type part of the id may name any of the entity's types.
        """
        type_id = primary_type(entity_id)
        conn = self._connect()
        for row in conn.execute(SELECT_ENTITY_BY_ID, (raw_key(entity_id),)).fetchall():
            if type_id in split_type_ids(row["ent_types"]):
                return self._row_to_entity(row, self._entity_property_values(row["ent_types"], row["ent_id"]))
        return None

    def _entity_property_values(self, ent_types: str, key: str) -> dict[str, str]:
        conn = self._connect()
        cursor = conn.execute(SELECT_ENTITY_PROPERTY_VALUES, (ent_types, key))
        return {row["prop_id"]: row["prop_value"] for row in cursor}

    def _exact_id_matches(self, key: str) -> list[Entity]:
        conn = self._connect()
        rows = conn.execute(SELECT_ENTITY_BY_ID, (key,)).fetchall()
        return [e for e in (self._row_to_entity(row) for row in rows) if e is not None]

    def _row_to_entity(self, row: sqlite3.Row, properties: Optional[dict[str, str]] = None) -> Optional[Entity]:
        type_ids = split_type_ids(row["ent_types"])
        if not type_ids:
            logger.warning(f"Entity row '{row['ent_id']}' has no type")
            return None
        return Entity(
            id=compose_id(type_ids[0], row["ent_id"]),
            name=row["ent_name"],
            description=row["ent_description"],
            types=[lookup_type(self._types, type_id) for type_id in type_ids],
            properties=properties or {},
        )

    def query(self, request: QueryRequest) -> QueryResponse:
        """
        Rank entities for a query using the full-text index.

        An exact raw key match short-circuits with score 100 per type
        variant. Otherwise bm25 hits are rescaled so the best accepted hit
        scores its query/id or query/name length ratio, hits lacking the
        requested type are dropped, and every property constraint must
        hold.

        Raises:
            MalformedQueryError: If a property constraint value is unusable.
            sqlite3.Error: If the database fails during the search.
        """
        limit = request.effective_limit
        logger.debug(f"Query {request.id!r}: '{request.text}' (type={request.type!r}, limit={limit})")

        exact = self._exact_id_matches(request.text)
        if exact:
            logger.debug(f"Exact id match for '{request.text}': {[e.id for e in exact]}")
            results = sort_candidates([
                Candidate(id=e.id, name=e.name, types=e.types, score=EXACT_ID_SCORE, match=True)
                for e in exact
            ])
            return QueryResponse(id=request.id, results=results[:limit])

        expression = fts_match_expression(request.text)
        if expression is None:
            return QueryResponse(id=request.id)

        search = PropertySearchQuery(expression)
        for prop in request.properties:
            search.add_constraint(prop.id, prop.match_value())

        conn = self._connect()
        results: list[Candidate] = []
        scale: Optional[float] = None
        scale_known = False
        for row in conn.execute(search.sql, search.params):
            type_ids = split_type_ids(row["ent_types"])
            if not type_ids:
                continue
            if request.type and request.type not in type_ids:
                continue

            candidate_id = compose_id(type_ids[0], row["ent_id"])
            if not scale_known:
                scale = normalization_scale(request.text, candidate_id, row["ent_name"], row["score"])
                scale_known = True
            if scale is not None:
                score = row["score"] * scale
            else:
                score = length_ratio_score(request.text, candidate_id, row["ent_name"])

            results.append(Candidate(
                id=candidate_id,
                name=row["ent_name"],
                types=[lookup_type(self._types, type_id) for type_id in type_ids],
                score=score,
                match=is_match(score),
            ))
            if len(results) == limit:
                break

        logger.debug(f"Query {request.id!r} returned {len(results)} candidates")
        return QueryResponse(id=request.id, results=results)

    def query_prefix(self, text: str, limit: int) -> list[Entity]:
        """Entities whose name or raw key starts with text, sorted by name."""
        if limit <= 0:
            limit = DEFAULT_LIMIT

        exact = self._exact_id_matches(text)
        if exact:
            return sorted(exact, key=lambda e: e.id)[:limit]

        pattern = escape_like(text) + "%"
        conn = self._connect()
        rows = conn.execute(SELECT_ENTITY_BY_PREFIX, (pattern, pattern, limit)).fetchall()
        return [e for e in (self._row_to_entity(row) for row in rows) if e is not None]

    def get_stats(self) -> dict[str, int]:
        """Row counts of the main tables."""
        conn = self._connect()
        return {
            "entities": conn.execute(f"SELECT COUNT(*) FROM {ENTITIES_TABLE}").fetchone()[0],
            "types": len(self._types),
            "properties": conn.execute(f"SELECT COUNT(*) FROM {PROPERTIES_TABLE}").fetchone()[0],
            "property_values": conn.execute(f"SELECT COUNT(*) FROM {ENTITY_PROPERTIES_TABLE}").fetchone()[0],
        }
