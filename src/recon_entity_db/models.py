"""
Pydantic models for entity sources and reconciliation queries.

Field aliases follow the reconciliation wire protocol, so requests can be
validated straight from JSON and responses dumped with ``by_alias=True``.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from .errors import MalformedQueryError
from .identifiers import raw_key
from .scoring import DEFAULT_LIMIT


class EntityType(BaseModel):
    """A category of entities."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str = ""
    view_url: str = Field(default="", exclude=True)

    @classmethod
    def placeholder(cls, type_id: str) -> "EntityType":
        """Stand-in for a type id that an entity references but the catalog lacks."""
        return cls(id=type_id, name=type_id)


def lookup_type(types: dict[str, EntityType], type_id: str) -> EntityType:
    type_ = types.get(type_id)
    return type_ if type_ is not None else EntityType.placeholder(type_id)


class Property(BaseModel):
    """An attribute that entities of one or more types may carry."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str = ""
    value_kind: str = Field(default="string", exclude=True)
    type_ids: list[str] = Field(default_factory=list, exclude=True)


class Entity(BaseModel):
    """A single record, addressed by its composite id."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    name: str
    description: str = ""
    types: list[EntityType] = Field(default_factory=list, alias="type")
    properties: dict[str, str] = Field(default_factory=dict, exclude=True)

    @property
    def type_ids(self) -> list[str]:
        return [t.id for t in self.types]


class EntityRecord(BaseModel):
    """A row describing an entity as produced by a loader, before id composition."""

    key: str
    name: str
    description: str = ""
    type_ids: list[str]
    properties: dict[str, str] = Field(default_factory=dict)

    @property
    def joined_types(self) -> str:
        return ",".join(self.type_ids)


class SourceMetadata(BaseModel):
    """Static metadata describing a data source."""

    name: str = ""
    identifier_namespace: str = ""
    schema_namespace: str = ""
    view_url: str = ""


class QueryProperty(BaseModel):
    """A property constraint attached to a query."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(alias="pid")
    value: Any = Field(default=None, alias="v")

    def match_value(self) -> str:
        """
        Return the string the stored property value must equal.

        Entity references (``{"id": "person:q42"}``) compare by raw key.

        Raises:
            MalformedQueryError: If the value is not a string, number,
                boolean or entity reference.
        """
        value = self.value
        if isinstance(value, str):
            return value
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, (int, float)):
            return str(value)
        if isinstance(value, dict):
            ref = value.get("id")
            if not isinstance(ref, str) or not ref:
                raise MalformedQueryError(
                    f"Property '{self.id}': entity reference has no string 'id': {value!r}"
                )
            return raw_key(ref)
        raise MalformedQueryError(f"Property '{self.id}': unsupported value {value!r}")


class QueryRequest(BaseModel):
    """A single reconciliation query."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = ""
    text: str = Field(default="", alias="query")
    type: str = ""
    limit: int = 0
    properties: list[QueryProperty] = Field(default_factory=list)
    # Accepted for protocol compatibility; scoring ignores it
    strictness: Optional[str] = Field(default=None, alias="type_strict")

    @property
    def effective_limit(self) -> int:
        return self.limit if self.limit > 0 else DEFAULT_LIMIT


class Candidate(BaseModel):
    """A scored search result."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    types: list[EntityType] = Field(default_factory=list, alias="type")
    score: float
    match: bool


class QueryResponse(BaseModel):
    """Ranked candidates for one query."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = ""
    results: list[Candidate] = Field(default_factory=list, alias="result")
