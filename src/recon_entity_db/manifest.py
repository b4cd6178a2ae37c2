"""Reconciliation service manifest and URL templates."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .models import EntityType
from .source import EntitySource

API_VERSIONS = ["0.1", "0.2"]

ID_PLACEHOLDER = "{{id}}"
_PLACEHOLDER_VARIANTS = ("${id}", "%s")


def normalize_url_template(template: str) -> str:
    """Rewrite "${id}" or "%s" placeholders to the "{{id}}" form."""
    for variant in _PLACEHOLDER_VARIANTS:
        template = template.replace(variant, ID_PLACEHOLDER)
    return template


def apply_url_template(template: str, entity_id: str) -> str:
    """
    Interpolate an entity id into a URL template.

    Raises:
        ValueError: If the template has no id placeholder.
    """
    template = normalize_url_template(template)
    if ID_PLACEHOLDER not in template:
        raise ValueError(f"URL template has no '{ID_PLACEHOLDER}' placeholder: {template}")
    return template.replace(ID_PLACEHOLDER, entity_id)


class ServiceDefinition(BaseModel):
    service_url: str
    service_path: str


class Suggest(BaseModel):
    entity: Optional[ServiceDefinition] = None
    type: Optional[ServiceDefinition] = None
    property: Optional[ServiceDefinition] = None


class View(BaseModel):
    url: str


class Extend(BaseModel):
    propose_properties: Optional[ServiceDefinition] = None


class Manifest(BaseModel):
    """Features supported by a reconciliation endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    versions: list[str] = Field(default_factory=lambda: list(API_VERSIONS))
    name: str
    identifier_space: str = Field(alias="identifierSpace")
    schema_space: str = Field(alias="schemaSpace")
    default_types: list[EntityType] = Field(default_factory=list, alias="defaultTypes")
    view: Optional[View] = None
    suggest: Optional[Suggest] = None
    extend: Optional[Extend] = None

    def to_json(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


def build_manifest(source: EntitySource, public_url: str, prefix: str) -> Manifest:
    """Describe the service endpoints for a source served at public_url + prefix."""
    service_url = public_url.rstrip("/") + prefix

    def endpoint(path: str) -> ServiceDefinition:
        return ServiceDefinition(service_url=service_url, service_path=path)

    view_url = source.view_url()
    return Manifest(
        name=source.name(),
        identifier_space=source.identifier_namespace(),
        schema_space=source.schema_namespace(),
        default_types=sorted(source.types(), key=lambda t: t.id),
        view=View(url=normalize_url_template(view_url)) if view_url else None,
        suggest=Suggest(
            entity=endpoint("/auto/entities"),
            type=endpoint("/auto/types"),
            property=endpoint("/auto/properties"),
        ),
        extend=Extend(propose_properties=endpoint("/properties")),
    )
