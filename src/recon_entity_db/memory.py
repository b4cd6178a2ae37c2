"""
In-memory entity source.

Every entity, type and property lives in resident dicts built once by
``MemorySource.from_records``. Queries are linear scans scored with the
shared heuristic. Nothing writes to the dicts after construction, so
concurrent readers need no locking.
"""

import logging
from collections import defaultdict
from typing import Iterable, Optional

from .identifiers import compose_id, primary_type, raw_key
from .models import (
    Candidate,
    Entity,
    EntityRecord,
    EntityType,
    Property,
    QueryRequest,
    QueryResponse,
    SourceMetadata,
    lookup_type,
)
from .scoring import (
    DEFAULT_LIMIT,
    EXACT_ID_SCORE,
    TYPE_BONUS,
    heuristic_score,
    is_match,
    sort_candidates,
)

logger = logging.getLogger(__name__)


class MemorySource:
    """Entity source held entirely in memory."""

    def __init__(
        self,
        metadata: SourceMetadata,
        types: dict[str, EntityType],
        properties: dict[str, list[Property]],
        entities: dict[str, Entity],
        property_values: dict[str, dict[str, str]],
    ):
        self._metadata = metadata
        # type id -> EntityType
        self._types = types
        # type id -> properties declared for it
        self._properties = properties
        # composite id -> Entity (property values held separately)
        self._entities = entities
        # composite id -> property id -> value
        self._property_values = property_values
        # composite id -> raw key
        self._keys: dict[str, str] = {entity_id: raw_key(entity_id) for entity_id in entities}
        # raw key -> composite ids, one per type the key was loaded under
        self._ids_by_key: dict[str, list[str]] = defaultdict(list)
        for entity_id, key in self._keys.items():
            self._ids_by_key[key].append(entity_id)
        self._ids_by_key = dict(self._ids_by_key)

    @classmethod
    def from_records(
        cls,
        metadata: SourceMetadata,
        types: Iterable[EntityType],
        records: Iterable[Property | EntityRecord],
        default_type: Optional[str] = None,
    ) -> "MemorySource":
        """
        Build a source from loader records.

        Args:
            metadata: Source name and namespaces
            types: Declared entity types
            records: Property definitions and entity rows, in any order
            default_type: Type assigned to entity rows that declare none

        Returns:
            A fully populated MemorySource
        """
        type_map = {t.id: t for t in types}
        properties: dict[str, list[Property]] = defaultdict(list)
        entities: dict[str, Entity] = {}
        values: dict[str, dict[str, str]] = {}

        for record in records:
            if isinstance(record, Property):
                for type_id in record.type_ids:
                    properties[type_id].append(record)
                continue

            type_ids = record.type_ids or ([default_type] if default_type else [])
            if not type_ids:
                logger.warning(f"Skipping entity '{record.key}' with no type")
                continue

            entity_id = compose_id(type_ids[0], record.key)
            if entity_id in entities:
                logger.debug(f"Duplicate entity id {entity_id}, keeping the last row")
            entities[entity_id] = Entity(
                id=entity_id,
                name=record.name,
                description=record.description,
                types=[lookup_type(type_map, type_id) for type_id in type_ids],
            )
            values[entity_id] = dict(record.properties)

        logger.info(f"Loaded {len(entities):,} entities, {len(type_map)} types into memory")
        return cls(metadata, type_map, dict(properties), entities, values)

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
        Look up an entity by composite id.

        The type part of the id may name any of the entity's types, not only
        its primary one. Returns None when nothing matches.
        """
        type_id = primary_type(entity_id)
        for candidate_id in self._ids_by_key.get(raw_key(entity_id), ()):
            entity = self._entities[candidate_id]
            if type_id in entity.type_ids:
                return entity.model_copy(
                    update={"properties": dict(self._property_values.get(candidate_id, {}))}
                )
        return None

    def query(self, request: QueryRequest) -> QueryResponse:
        """
        Rank entities for a query.

        An exact raw key match short-circuits with score 100 for every type
        the key was loaded under. Otherwise every entity is scored by the
        shared heuristic, with a bonus for holding the requested type.
        Property constraints must all be satisfied.

        Raises:
            MalformedQueryError: If a property constraint value is unusable.
        """
        limit = request.effective_limit
        logger.debug(f"Query {request.id!r}: '{request.text}' (type={request.type!r}, limit={limit})")

        exact_ids = self._ids_by_key.get(request.text)
        if exact_ids:
            logger.debug(f"Exact id match for '{request.text}': {exact_ids}")
            results = [self._candidate(entity_id, EXACT_ID_SCORE) for entity_id in sorted(exact_ids)]
            return QueryResponse(id=request.id, results=results[:limit])

        constraints = [(prop.id, prop.match_value()) for prop in request.properties]

        results = []
        for entity_id, entity in self._entities.items():
            score = heuristic_score(request.text, self._keys[entity_id], entity.name)
            if request.type and request.type in entity.type_ids:
                score += TYPE_BONUS
            if score <= 0.0:
                continue
            if constraints and not self._satisfies(entity_id, constraints):
                continue
            results.append(self._candidate(entity_id, score))

        results = sort_candidates(results)[:limit]
        logger.debug(f"Query {request.id!r} returned {len(results)} candidates")
        return QueryResponse(id=request.id, results=results)

    def query_prefix(self, text: str, limit: int) -> list[Entity]:
        """Entities whose name or raw key starts with text (case-insensitive), sorted by name."""
        if limit <= 0:
            limit = DEFAULT_LIMIT

        exact_ids = self._ids_by_key.get(text)
        if exact_ids:
            return [self._entities[entity_id] for entity_id in sorted(exact_ids)][:limit]

        low = text.lower()
        hits = [
            entity
            for entity_id, entity in self._entities.items()
            if entity.name.lower().startswith(low) or self._keys[entity_id].lower().startswith(low)
        ]
        hits.sort(key=lambda e: (e.name, e.id))
        return hits[:limit]

    def get_stats(self) -> dict[str, int]:
        return {
            "entities": len(self._entities),
            "types": len(self._types),
            "properties": len({p.id for props in self._properties.values() for p in props}),
            "property_values": sum(len(v) for v in self._property_values.values()),
        }

    def close(self) -> None:
        """Nothing to release for an in-memory source."""

    def _candidate(self, entity_id: str, score: float) -> Candidate:
        entity = self._entities[entity_id]
        return Candidate(
            id=entity.id,
            name=entity.name,
            types=entity.types,
            score=score,
            match=is_match(score),
        )

    def _satisfies(self, entity_id: str, constraints: list[tuple[str, str]]) -> bool:
        values = self._property_values.get(entity_id, {})
        return all(values.get(prop_id) == value for prop_id, value in constraints)
