"""Export file format: parsing, normalization and serialization.

Two versions exist, both shaped as ``{version, entities}`` where each
entity is a JSON:API record of type ``item_type``, ``field``,
``fieldset`` or ``plugin``:

- version ``"2"`` also carries ``rootItemTypeId``;
- version ``"1"`` does not -- its root is re-derived as the single item
  type that no *other* item type links to.  Zero or several candidates
  make the document invalid (``AmbiguousRootError``).

Both versions are upcast to an in-memory ``ExportDocument`` (version 2)
with every id normalized to a string.

Usage:
    from schema_porter.schema.document import load_export_document

    doc = load_export_document("export.json")
    print(doc.root_item_type_id, len(doc.entities))
"""

import json
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field as PydanticField, ValidationError

from schema_porter.errors import AmbiguousRootError, InvalidDocumentError
from schema_porter.schema.models import ENTITY_CLASSES, Field, Fieldset, ItemType, Plugin, SchemaEntity
from schema_porter.schema.references import linked_item_type_ids

SUPPORTED_VERSIONS = ("1", "2")


class ExportDocument(BaseModel):
    """A normalized (version 2) export document."""

    version: str = "2"
    root_item_type_id: str
    entities: list[SchemaEntity] = PydanticField(default_factory=list)

    @property
    def item_types(self) -> list[ItemType]:
        return [e for e in self.entities if isinstance(e, ItemType)]

    @property
    def fields(self) -> list[Field]:
        return [e for e in self.entities if isinstance(e, Field)]

    @property
    def fieldsets(self) -> list[Fieldset]:
        return [e for e in self.entities if isinstance(e, Fieldset)]

    @property
    def plugins(self) -> list[Plugin]:
        return [e for e in self.entities if isinstance(e, Plugin)]

    def to_payload(self) -> dict[str, Any]:
        """Serialize to the on-disk JSON shape."""
        return {
            "version": "2",
            "rootItemTypeId": self.root_item_type_id,
            "entities": [entity.to_resource() for entity in self.entities],
        }


def derive_root_item_type_id(item_types: list[ItemType], fields: list[Field]) -> str:
    """Find the single item type no other item type links to.

    Self-references do not count.  Raises ``AmbiguousRootError`` when
    there is not exactly one candidate.
    """
    targets: set[str] = set()
    for field in fields:
        for linked_id in linked_item_type_ids(field):
            if linked_id != field.item_type_id:
                targets.add(linked_id)

    candidates = [it.id for it in item_types if it.id not in targets]
    if len(candidates) != 1:
        raise AmbiguousRootError(candidates)
    return candidates[0]


def _parse_entity(raw: Any, index: int) -> SchemaEntity:
    if not isinstance(raw, dict):
        raise InvalidDocumentError(f"Entity #{index} is not an object", index=index)
    kind = raw.get("type")
    cls = ENTITY_CLASSES.get(kind)
    if cls is None:
        raise InvalidDocumentError(
            f"Entity #{index} has unsupported type '{kind}'", index=index, kind=kind
        )
    if "id" not in raw:
        raise InvalidDocumentError(f"Entity #{index} has no id", index=index)
    try:
        return cls.from_resource(raw)
    except (KeyError, TypeError, ValueError, ValidationError) as e:
        raise InvalidDocumentError(
            f"Entity #{index} ({kind} '{raw.get('id')}') is malformed: {e}",
            index=index,
            kind=kind,
        ) from e


def parse_export_document(payload: Any) -> ExportDocument:
    """Validate an export payload and upcast it to an ``ExportDocument``.

    Raises:
        InvalidDocumentError: Unsupported version, malformed entities,
            dangling field owners, or an unknown version-2 root.
        AmbiguousRootError: Version-1 document without a single root.
    """
    if not isinstance(payload, dict):
        raise InvalidDocumentError("Export document must be a JSON object")

    version = str(payload.get("version"))
    if version not in SUPPORTED_VERSIONS:
        raise InvalidDocumentError(
            f"Unsupported export version '{payload.get('version')}' "
            f"(expected one of {', '.join(SUPPORTED_VERSIONS)})",
            version=version,
        )

    raw_entities = payload.get("entities")
    if not isinstance(raw_entities, list):
        raise InvalidDocumentError("Export document has no 'entities' list")

    entities = [_parse_entity(raw, i) for i, raw in enumerate(raw_entities)]
    item_types = [e for e in entities if isinstance(e, ItemType)]
    item_type_ids = {it.id for it in item_types}

    # Fieldset records do not always carry their owner
    owner_by_fieldset = {fs_id: it.id for it in item_types for fs_id in it.fieldset_ids}
    for entity in entities:
        if isinstance(entity, Fieldset) and not entity.item_type_id:
            entity.item_type_id = owner_by_fieldset.get(entity.id, "")

    fields = [e for e in entities if isinstance(e, Field)]
    for field in fields:
        if field.item_type_id not in item_type_ids:
            raise InvalidDocumentError(
                f"Field '{field.api_key}' ({field.id}) belongs to item type "
                f"'{field.item_type_id}', which is not in the document",
                field_id=field.id,
            )

    if not item_types:
        raise InvalidDocumentError("Export document contains no item types")

    if version == "2":
        root = payload.get("rootItemTypeId")
        if root is None or str(root) not in item_type_ids:
            raise InvalidDocumentError(
                f"Root item type '{root}' is not in the document", root=root
            )
        root_id = str(root)
    else:
        root_id = derive_root_item_type_id(item_types, fields)

    return ExportDocument(root_item_type_id=root_id, entities=entities)


def load_export_document(path: str | Path) -> ExportDocument:
    """Read and parse an export file.

    Raises:
        InvalidDocumentError: File missing, not JSON, or not a valid document.
    """
    try:
        with open(path, "r") as f:
            payload = json.load(f)
    except FileNotFoundError as e:
        raise InvalidDocumentError(f"Export file not found: {path}", path=str(path)) from e
    except json.JSONDecodeError as e:
        raise InvalidDocumentError(f"Invalid JSON: {e}", path=str(path)) from e
    return parse_export_document(payload)


def dump_export_document(doc: ExportDocument, path: str | Path) -> str:
    """Write an export document as pretty-printed JSON; returns the path."""
    output_path = Path(path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w") as f:
        json.dump(doc.to_payload(), f, indent=2, default=str)
    return str(output_path)
