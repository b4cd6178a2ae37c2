"""
Import CSV/TSV files into the flat format or a SQLite database.

A JSON config names the source and maps file columns to properties:

    {
      "name": "Example",
      "identifier_namespace": "http://example.org/entity/",
      "schema_namespace": "http://example.org/type/",
      "view_url": "http://example.org/entity/{{id}}",
      "property_names": {"tax_id": "Taxonomy ID"},
      "files": [
        {"id": "gene", "name": "Gene", "description": "",
         "filename": "genes.tsv.gz",
         "column2property": {"1": "id", "2": "name", "0": "tax_id", "9": "description"}}
      ]
    }

Each file holds one entity type. Columns mapped to "id" and "name" fill the
entity key and name; "description" fills the description; every other
mapped column becomes a property when the cell is not blank or "-".
"""

import csv
import gzip
import logging
import re
import tempfile
from pathlib import Path
from typing import IO, Iterator, Optional

from pydantic import BaseModel, Field

from ..loader import format_row, parse_row, write_flat_file
from ..models import EntityRecord, EntityType, Property, SourceMetadata
from ..schema import build_database
from ..source import is_sqlite_location

logger = logging.getLogger(__name__)

_SEPARATORS = re.compile(r"[_. -]+")

# Cell values treated as missing
_BLANK_VALUES = {"", "-"}


class FileConfig(BaseModel):
    """One input file holding entities of a single type."""

    id: str
    name: str = ""
    description: str = ""
    filename: str
    column2property: dict[int, str] = Field(default_factory=dict)


class TabularConfig(BaseModel):
    """Import configuration for a set of tabular files."""

    name: str = ""
    identifier_namespace: str = ""
    schema_namespace: str = ""
    view_url: str = ""
    property_names: dict[str, str] = Field(default_factory=dict)
    files: list[FileConfig] = Field(default_factory=list)

    @classmethod
    def from_file(cls, path: str | Path) -> "TabularConfig":
        return cls.model_validate_json(Path(path).read_text(encoding="utf-8"))

    @property
    def metadata(self) -> SourceMetadata:
        return SourceMetadata(
            name=self.name,
            identifier_namespace=self.identifier_namespace,
            schema_namespace=self.schema_namespace,
            view_url=self.view_url,
        )

    def entity_types(self) -> list[EntityType]:
        """One type per distinct file id, in file order."""
        types: dict[str, EntityType] = {}
        for fc in self.files:
            if fc.id not in types:
                types[fc.id] = EntityType(
                    id=fc.id,
                    name=fc.name or fc.id,
                    description=fc.description,
                    view_url=self.view_url,
                )
        return list(types.values())


def property_display_name(prop_id: str) -> str:
    """Derive a display name from a property id: "tax_id" -> "Tax Id"."""
    return _SEPARATORS.sub(" ", prop_id).strip().title()


def _open_table(path: Path) -> tuple[IO[str], Iterator[list[str]]]:
    """Open a CSV (name ends in csv) or tab-separated file, gzip-aware."""
    name = path.name.lower()
    if name.endswith(".gz"):
        handle: IO[str] = gzip.open(path, "rt", encoding="utf-8", newline="")
        name = name[:-3]
    else:
        handle = open(path, "r", encoding="utf-8", newline="")
    if name.endswith("csv"):
        return handle, csv.reader(handle)
    return handle, csv.reader(handle, delimiter="\t", quoting=csv.QUOTE_NONE)


def iter_file_records(fc: FileConfig, base_dir: Optional[Path] = None, dry_run: bool = False) -> Iterator[EntityRecord]:
    """
    Read entity records from one configured file.

    With dry_run, only the column mapping is logged.
    """
    path = Path(fc.filename)
    if base_dir is not None and not path.is_absolute():
        path = base_dir / path

    logger.info(f"Reading data from '{path}'...")
    handle, reader = _open_table(path)
    with handle:
        header = next(reader, None)
        if header is None:
            logger.warning(f"{path} is empty")
            return
        width = max((len(h) for h in header), default=0)
        for i, column in enumerate(header):
            logger.info(f"Column {i:3d}. {column:<{width}} ==> '{fc.column2property.get(i, '')}'")
        if dry_run:
            return

        count = 0
        for row in reader:
            key = name = description = ""
            properties: dict[str, str] = {}
            for i, prop_id in fc.column2property.items():
                if not prop_id:
                    continue
                cell = row[i] if i < len(row) else ""
                if prop_id == "id":
                    key = cell
                elif prop_id == "name":
                    name = cell
                elif prop_id == "description":
                    description = cell
                elif cell not in _BLANK_VALUES:
                    properties[prop_id] = cell
            if not key:
                logger.debug(f"{path}: skipping row without id: {row[:3]}")
                continue
            count += 1
            yield EntityRecord(
                key=key,
                name=name or key,
                description=description,
                type_ids=[fc.id],
                properties=properties,
            )
        logger.info(f"Read {count:,} records from {path.name}")


def import_tabular(
    config: TabularConfig,
    output: str | Path,
    base_dir: Optional[Path] = None,
    dry_run: bool = False,
) -> dict[str, int]:
    """
    Convert configured tabular files into a flat file or SQLite database.

    The output format is chosen from the output name: SQLite for .db /
    .sqlite names, the flat format otherwise (gzip when it ends in .gz).

    Args:
        config: Import configuration
        output: Destination path
        base_dir: Directory relative file names are resolved against
        dry_run: Only report column mappings; nothing is written

    Returns:
        Counts of entity rows and properties
    """
    prop_types: dict[str, dict[str, None]] = {}
    entity_count = 0

    with tempfile.TemporaryFile("w+", encoding="utf-8") as spool:
        for fc in config.files:
            for record in iter_file_records(fc, base_dir=base_dir, dry_run=dry_run):
                spool.write(format_row(record) + "\n")
                entity_count += 1
                for prop_id in record.properties:
                    prop_types.setdefault(prop_id, {})[fc.id] = None

        if dry_run:
            return {"entities": entity_count, "properties": len(prop_types)}

        properties = [
            Property(
                id=prop_id,
                name=config.property_names.get(prop_id) or property_display_name(prop_id),
                type_ids=list(type_ids),
            )
            for prop_id, type_ids in sorted(prop_types.items())
        ]

        def records() -> Iterator[Property | EntityRecord]:
            yield from properties
            spool.seek(0)
            for line_number, line in enumerate(spool, start=1):
                record = parse_row(line, line_number, default_type="")
                if record is not None:
                    yield record

        types = config.entity_types()
        if is_sqlite_location(output):
            build_database(output, config.metadata, types, records())
        else:
            write_flat_file(output, config.metadata, types, records())

    logger.info(f"Wrote {entity_count:,} entities and {len(properties)} properties to {output}")
    return {"entities": entity_count, "properties": len(properties)}
