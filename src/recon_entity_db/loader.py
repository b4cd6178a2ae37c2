"""
Reader and writer for the flat intermediate format.

Tab-separated, four columns, optionally gzip-compressed.

Header (first line):
    0: identifier namespace URI
    1: source name
    2: schema namespace URI
    3: JSON list of types [{"id", "name", "description", "url"}, ...]
Property rows (type list contains the "property" pseudo-type):
    0: property id
    1: property name
    2: "property," + comma-separated ids of the types it applies to
    3: JSON settings {"description": ..., "type": ...}
Entity rows:
    0: raw entity key
    1: entity name
    2: comma-separated type ids, primary type first (blank = default type)
    3: JSON object of property values; "description" becomes the entity description
"""

import gzip
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, Any, Iterable, Iterator, Optional

import orjson

from .errors import FlatFileError
from .identifiers import ID_SEPARATOR, PROPERTY_PSEUDO_TYPE, join_type_ids, raw_key, split_type_ids
from .memory import MemorySource
from .models import EntityRecord, EntityType, Property, SourceMetadata
from .schema import build_database

logger = logging.getLogger(__name__)

# Type used when the header declares none
FALLBACK_TYPE = EntityType(id="item", name="Item")


@dataclass
class FlatFileHeader:
    """Source metadata and type catalog from the first line of a flat file."""

    metadata: SourceMetadata
    types: list[EntityType] = field(default_factory=list)

    @property
    def default_type(self) -> str:
        return self.types[0].id if self.types else FALLBACK_TYPE.id


def _open_text(path: Path, mode: str = "rt") -> IO[str]:
    if path.suffix.lower() == ".gz":
        return gzip.open(path, mode, encoding="utf-8")
    return open(path, mode, encoding="utf-8", newline="")


def _loads(raw: str, line_number: int) -> Any:
    try:
        return orjson.loads(raw)
    except orjson.JSONDecodeError as e:
        raise FlatFileError(f"invalid JSON column: {e}", line_number) from e


def coerce_property_value(value: Any) -> Optional[str]:
    """
    Store a JSON property value as a string; None means no value.

    Entity references keep only the raw key, which is what query
    constraints compare against.
    """
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, dict) and isinstance(value.get("id"), str):
        return raw_key(value["id"])
    return orjson.dumps(value).decode()


def _check_type_id(type_id: str, line_number: int) -> None:
    # Composite ids split on the first separator, so a type id cannot contain it
    if ID_SEPARATOR in type_id:
        raise FlatFileError(f"type id must not contain '{ID_SEPARATOR}': {type_id!r}", line_number)


def parse_header(line: str) -> FlatFileHeader:
    """Parse the first line of a flat file."""
    columns = line.rstrip("\r\n").split("\t", 3)
    if len(columns) < 3:
        raise FlatFileError("header needs at least 3 columns", 1)
    columns += [""] * (4 - len(columns))
    identifier_ns, name, schema_ns, types_json = columns

    types: list[EntityType] = []
    if types_json.strip():
        raw_types = _loads(types_json, 1)
        if not isinstance(raw_types, list):
            raise FlatFileError("header type list must be a JSON array", 1)
        for raw in raw_types:
            if not isinstance(raw, dict) or not raw.get("id"):
                raise FlatFileError(f"invalid type definition: {raw!r}", 1)
            _check_type_id(str(raw["id"]), 1)
            types.append(EntityType(
                id=str(raw["id"]),
                name=str(raw.get("name") or raw["id"]),
                description=str(raw.get("description") or ""),
                view_url=str(raw.get("url") or ""),
            ))
    else:
        types.append(FALLBACK_TYPE)

    metadata = SourceMetadata(
        name=name,
        identifier_namespace=identifier_ns,
        schema_namespace=schema_ns,
        view_url=types[0].view_url,
    )
    return FlatFileHeader(metadata=metadata, types=types)


def parse_row(line: str, line_number: int, default_type: str) -> Optional[Property | EntityRecord]:
    """
    Parse one data row into a Property or EntityRecord.

    Returns None for property rows that name no real type.
    """
    columns = line.rstrip("\r\n").split("\t", 3)
    if len(columns) != 4:
        raise FlatFileError(f"expected 4 tab-separated columns, got {len(columns)}", line_number)
    if not columns[3]:
        raise FlatFileError("fourth column is empty", line_number)
    key, name, joined_types, values_json = columns

    values = {} if values_json == "{}" else _loads(values_json, line_number)
    if not isinstance(values, dict):
        raise FlatFileError("fourth column must be a JSON object", line_number)
    type_ids = split_type_ids(joined_types, default_type)
    for type_id in type_ids:
        _check_type_id(type_id, line_number)

    if PROPERTY_PSEUDO_TYPE in type_ids:
        applies_to = [t for t in type_ids if t != PROPERTY_PSEUDO_TYPE]
        if not applies_to:
            logger.warning(f"line {line_number}: property '{key}' applies to no type, skipped")
            return None
        return Property(
            id=key,
            name=name,
            description=str(values.get("description") or ""),
            value_kind=str(values.get("type") or "string"),
            type_ids=applies_to,
        )

    description = values.pop("description", None)
    properties = {}
    for prop_id, value in values.items():
        stored = coerce_property_value(value)
        if stored is not None:
            properties[prop_id] = stored
    return EntityRecord(
        key=key,
        name=name,
        description=str(description) if description is not None else "",
        type_ids=type_ids,
        properties=properties,
    )


class FlatFileReader:
    """
    Streams records from a flat file.

    Use as a context manager; the header is available once entered.

        with FlatFileReader(path) as reader:
            for record in reader.records():
                ...
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self.header: Optional[FlatFileHeader] = None
        self._handle: Optional[IO[str]] = None

    def __enter__(self) -> "FlatFileReader":
        self._handle = _open_text(self.path)
        first = self._handle.readline()
        if not first.strip():
            self._handle.close()
            raise FlatFileError(f"{self.path} is empty", 1)
        self.header = parse_header(first)
        return self

    def __exit__(self, *exc_info) -> None:
        if self._handle is not None:
            self._handle.close()
            self._handle = None

    def records(self) -> Iterator[Property | EntityRecord]:
        if self._handle is None or self.header is None:
            raise RuntimeError("FlatFileReader must be used as a context manager")
        default_type = self.header.default_type
        for line_number, line in enumerate(self._handle, start=2):
            if not line.strip():
                continue
            record = parse_row(line, line_number, default_type)
            if record is not None:
                yield record


def load_flat_file(path: str | Path) -> MemorySource:
    """Load a flat file into an in-memory source."""
    with FlatFileReader(path) as reader:
        assert reader.header is not None
        source = MemorySource.from_records(
            reader.header.metadata,
            reader.header.types,
            reader.records(),
            default_type=reader.header.default_type,
        )
    logger.info(f"Loaded '{reader.path}'")
    return source


def convert_flat_file(path: str | Path, db_path: str | Path) -> dict[str, int]:
    """Convert a flat file into a new SQLite reconciliation database."""
    with FlatFileReader(path) as reader:
        assert reader.header is not None
        return build_database(db_path, reader.header.metadata, reader.header.types, reader.records())


def _clean(text: str) -> str:
    return text.replace("\t", " ").replace("\r", " ").replace("\n", " ")


def format_header(metadata: SourceMetadata, types: Iterable[EntityType]) -> str:
    types_json = orjson.dumps([
        {"id": t.id, "name": t.name, "description": t.description, "url": t.view_url}
        for t in types
    ]).decode()
    return "\t".join([
        _clean(metadata.identifier_namespace),
        _clean(metadata.name),
        _clean(metadata.schema_namespace),
        types_json,
    ])


def format_row(record: Property | EntityRecord) -> str:
    if isinstance(record, Property):
        settings: dict[str, str] = {}
        if record.description:
            settings["description"] = record.description
        if record.value_kind != "string":
            settings["type"] = record.value_kind
        types = join_type_ids([PROPERTY_PSEUDO_TYPE, *record.type_ids])
        return "\t".join([_clean(record.id), _clean(record.name), types, orjson.dumps(settings).decode()])

    values = dict(record.properties)
    if record.description:
        values["description"] = record.description
    return "\t".join([
        _clean(record.key),
        _clean(record.name),
        record.joined_types,
        orjson.dumps(values).decode(),
    ])


def write_flat_file(
    path: str | Path,
    metadata: SourceMetadata,
    types: Iterable[EntityType],
    records: Iterable[Property | EntityRecord],
) -> int:
    """
    Write records in the flat format (gzip when path ends in .gz).

    Returns:
        Number of rows written after the header
    """
    count = 0
    with _open_text(Path(path), "wt") as handle:
        handle.write(format_header(metadata, types) + "\n")
        for record in records:
            handle.write(format_row(record) + "\n")
            count += 1
    return count
