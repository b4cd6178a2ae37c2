"""
Composite entity identifiers.

The same raw record key may be loaded under several types, so the id
exposed to callers is prefixed with the record's primary type:
``"person:q42"``. The primary type is the first one listed for the row.
"""

from typing import Optional

ID_SEPARATOR = ":"

# Pseudo-type marking flat-file rows that declare a Property
PROPERTY_PSEUDO_TYPE = "property"


def compose_id(primary_type: str, key: str) -> str:
    """Bind a raw record key to its primary type id."""
    if ID_SEPARATOR in primary_type:
        raise ValueError(f"Type id must not contain '{ID_SEPARATOR}': {primary_type!r}")
    return f"{primary_type}{ID_SEPARATOR}{key}"


def raw_key(entity_id: str) -> str:
    """Return the raw record key of a composite id.

    Ids without a separator are returned unchanged.
    """
    _, sep, key = entity_id.partition(ID_SEPARATOR)
    if not sep:
        return entity_id
    return key


def primary_type(entity_id: str) -> str:
    """Return the primary type id of a composite id, or "" if there is none."""
    type_id, sep, _ = entity_id.partition(ID_SEPARATOR)
    return type_id if sep else ""


def split_type_ids(joined: str, default_type: Optional[str] = None) -> list[str]:
    """
    Split a comma-joined type list.

    A blank list resolves to the default type when one is given.
    """
    type_ids = [t.strip() for t in joined.split(",")]
    type_ids = [t for t in type_ids if t]
    if not type_ids and default_type:
        return [default_type]
    return type_ids


def join_type_ids(type_ids: list[str]) -> str:
    return ",".join(type_ids)
