"""Pydantic models for schema entities.

This module contains the four schema-entity kinds the engine moves
between projects:

- ``ItemType``: a model or a reusable block (``is_block``)
- ``Field``: a typed attribute of an item type
- ``Fieldset``: an organizational grouping of fields
- ``Plugin``: an installable editor/addon extension

Typed attributes are the ones the engine reasons about.  Every other
remote attribute is kept verbatim in ``attributes`` so that a record can
be recreated in another project without loss.

The wire form is JSON:API (``{id, type, attributes, relationships}``),
shared by the schema-management API and the export file.  Ids are always
normalized to strings.

Usage:
    from schema_porter.schema.models import Field, ItemType

    item_type = ItemType.from_resource(payload["data"])
    payload = item_type.to_resource()
"""

from typing import Any

from pydantic import BaseModel, Field as PydanticField

# Relationships of an item type that point at one of its own fields.
DESIGNATED_FIELD_RELATIONSHIPS: tuple[str, ...] = (
    "ordering_field",
    "title_field",
    "image_preview_field",
    "excerpt_field",
    "presentation_title_field",
    "presentation_image_field",
)


def _rel_id(relationships: dict, name: str) -> str | None:
    """Return the id of a to-one relationship, or None."""
    data = (relationships.get(name) or {}).get("data")
    if not data:
        return None
    return str(data["id"])


def _rel_ids(relationships: dict, name: str) -> list[str]:
    """Return the ids of a to-many relationship (empty when missing)."""
    data = (relationships.get(name) or {}).get("data") or []
    return [str(ref["id"]) for ref in data]


def _ref(kind: str, entity_id: str | None) -> dict:
    return {"data": {"type": kind, "id": entity_id} if entity_id else None}


# ============================================================================
# Appearance
# ============================================================================


class Addon(BaseModel):
    """An addon (plugin-supplied) attached to a field's appearance."""

    id: str
    parameters: dict[str, Any] = PydanticField(default_factory=dict)
    field_extension: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"id": self.id, "parameters": self.parameters}
        if self.field_extension is not None:
            payload["field_extension"] = self.field_extension
        return payload


class Appearance(BaseModel):
    """Editor assignment of a field plus its addon list."""

    editor: str
    parameters: dict[str, Any] = PydanticField(default_factory=dict)
    addons: list[Addon] = PydanticField(default_factory=list)
    field_extension: str | None = None

    @classmethod
    def from_payload(cls, payload: dict | None) -> "Appearance | None":
        if not payload:
            return None
        return cls(
            editor=str(payload.get("editor", "")),
            parameters=payload.get("parameters") or {},
            addons=[
                Addon(
                    id=str(addon["id"]),
                    parameters=addon.get("parameters") or {},
                    field_extension=addon.get("field_extension"),
                )
                for addon in payload.get("addons") or []
            ],
            field_extension=payload.get("field_extension"),
        )

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "editor": self.editor,
            "parameters": self.parameters,
            "addons": [addon.to_payload() for addon in self.addons],
        }
        if self.field_extension is not None:
            payload["field_extension"] = self.field_extension
        return payload


# ============================================================================
# Schema entities
# ============================================================================


class ItemType(BaseModel):
    """A content model (``is_block=False``) or reusable block.

    Example:
        >>> it = ItemType(id="1", name="Post", api_key="post")
        >>> it.is_block
        False
    """

    id: str
    name: str
    api_key: str
    is_block: bool = False
    field_ids: list[str] = PydanticField(default_factory=list)
    fieldset_ids: list[str] = PydanticField(default_factory=list)
    designated_fields: dict[str, str | None] = PydanticField(default_factory=dict)
    attributes: dict[str, Any] = PydanticField(default_factory=dict)

    @property
    def kind_label(self) -> str:
        """``"Block"`` or ``"Model"``, for progress labels."""
        return "Block" if self.is_block else "Model"

    @classmethod
    def from_resource(cls, resource: dict) -> "ItemType":
        attributes = dict(resource.get("attributes") or {})
        relationships = resource.get("relationships") or {}
        name = attributes.pop("name", "")
        api_key = attributes.pop("api_key", "")
        is_block = bool(attributes.pop("modular_block", False))
        return cls(
            id=str(resource["id"]),
            name=name,
            api_key=api_key,
            is_block=is_block,
            field_ids=_rel_ids(relationships, "fields"),
            fieldset_ids=_rel_ids(relationships, "fieldsets"),
            designated_fields={
                name: _rel_id(relationships, name)
                for name in DESIGNATED_FIELD_RELATIONSHIPS
                if name in relationships
            },
            attributes=attributes,
        )

    def to_resource(self) -> dict[str, Any]:
        relationships: dict[str, Any] = {
            "fields": {"data": [{"type": "field", "id": fid} for fid in self.field_ids]},
            "fieldsets": {
                "data": [{"type": "fieldset", "id": fid} for fid in self.fieldset_ids]
            },
        }
        for name, field_id in self.designated_fields.items():
            relationships[name] = _ref("field", field_id)
        return {
            "id": self.id,
            "type": "item_type",
            "attributes": {
                **self.attributes,
                "name": self.name,
                "api_key": self.api_key,
                "modular_block": self.is_block,
            },
            "relationships": relationships,
        }


class Field(BaseModel):
    """A single typed attribute of an item type."""

    id: str
    api_key: str
    label: str = ""
    field_type: str
    validators: dict[str, Any] = PydanticField(default_factory=dict)
    appearance: Appearance | None = None
    item_type_id: str
    fieldset_id: str | None = None
    position: int = 0
    localized: bool = False
    default_value: Any = None
    attributes: dict[str, Any] = PydanticField(default_factory=dict)

    @classmethod
    def from_resource(cls, resource: dict) -> "Field":
        attributes = dict(resource.get("attributes") or {})
        relationships = resource.get("relationships") or {}
        # Older documents carry a misspelled, unused key.
        attributes.pop("appeareance", None)
        return cls(
            id=str(resource["id"]),
            api_key=attributes.pop("api_key", ""),
            label=attributes.pop("label", "") or "",
            field_type=attributes.pop("field_type"),
            validators=attributes.pop("validators", None) or {},
            appearance=Appearance.from_payload(attributes.pop("appearance", None)),
            item_type_id=_rel_id(relationships, "item_type") or "",
            fieldset_id=_rel_id(relationships, "fieldset"),
            position=int(attributes.pop("position", 0) or 0),
            localized=bool(attributes.pop("localized", False)),
            default_value=attributes.pop("default_value", None),
            attributes=attributes,
        )

    def to_resource(self) -> dict[str, Any]:
        attributes: dict[str, Any] = {
            **self.attributes,
            "api_key": self.api_key,
            "label": self.label,
            "field_type": self.field_type,
            "validators": self.validators,
            "position": self.position,
            "localized": self.localized,
            "default_value": self.default_value,
        }
        if self.appearance is not None:
            attributes["appearance"] = self.appearance.to_payload()
        return {
            "id": self.id,
            "type": "field",
            "attributes": attributes,
            "relationships": {
                "item_type": _ref("item_type", self.item_type_id),
                "fieldset": _ref("fieldset", self.fieldset_id),
            },
        }


class Fieldset(BaseModel):
    """A named grouping of fields within one item type."""

    id: str
    title: str
    position: int = 0
    item_type_id: str = ""
    attributes: dict[str, Any] = PydanticField(default_factory=dict)

    @classmethod
    def from_resource(cls, resource: dict) -> "Fieldset":
        attributes = dict(resource.get("attributes") or {})
        relationships = resource.get("relationships") or {}
        return cls(
            id=str(resource["id"]),
            title=attributes.pop("title", ""),
            position=int(attributes.pop("position", 0) or 0),
            item_type_id=_rel_id(relationships, "item_type") or "",
            attributes=attributes,
        )

    def to_resource(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "fieldset",
            "attributes": {**self.attributes, "title": self.title, "position": self.position},
            "relationships": {"item_type": _ref("item_type", self.item_type_id or None)},
        }


class Plugin(BaseModel):
    """An installable extension supplying field editors and addons."""

    id: str
    name: str
    url: str | None = None
    package_name: str | None = None
    parameters: dict[str, Any] = PydanticField(default_factory=dict)
    attributes: dict[str, Any] = PydanticField(default_factory=dict)
    meta_version: str | None = None

    @property
    def identity(self) -> str | None:
        """Stable identity used for conflict matching."""
        return self.package_name or self.url

    @classmethod
    def from_resource(cls, resource: dict) -> "Plugin":
        attributes = dict(resource.get("attributes") or {})
        meta = resource.get("meta") or {}
        version = meta.get("version")
        return cls(
            id=str(resource["id"]),
            name=attributes.pop("name", ""),
            url=attributes.pop("url", None),
            package_name=attributes.pop("package_name", None),
            parameters=attributes.pop("parameters", None) or {},
            attributes=attributes,
            meta_version=str(version) if version is not None else None,
        )

    def to_resource(self) -> dict[str, Any]:
        resource: dict[str, Any] = {
            "id": self.id,
            "type": "plugin",
            "attributes": {
                **self.attributes,
                "name": self.name,
                "url": self.url,
                "package_name": self.package_name,
                "parameters": self.parameters,
            },
        }
        if self.meta_version is not None:
            resource["meta"] = {"version": self.meta_version}
        return resource


class Site(BaseModel):
    """The subset of project settings the importer needs."""

    id: str = ""
    name: str = ""
    locales: list[str] = PydanticField(default_factory=list)

    @classmethod
    def from_resource(cls, resource: dict) -> "Site":
        attributes = resource.get("attributes") or {}
        return cls(
            id=str(resource.get("id", "")),
            name=attributes.get("name", ""),
            locales=list(attributes.get("locales") or []),
        )


SchemaEntity = ItemType | Field | Fieldset | Plugin

ENTITY_CLASSES: dict[str, type[BaseModel]] = {
    "item_type": ItemType,
    "field": Field,
    "fieldset": Fieldset,
    "plugin": Plugin,
}
