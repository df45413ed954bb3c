"""Schema entities, export documents, and schema sources.

Provides the entity models (``ItemType``, ``Field``, ``Fieldset``,
``Plugin``), reference helpers, the export document codec, and the two
``SchemaSource`` implementations: ``ProjectSchema`` (a live project)
and ``ExportSchema`` (a parsed export document).

Usage:
    from schema_porter.schema import ProjectSchema, ExportSchema
    from schema_porter.schema import load_export_document, dump_export_document
"""

from schema_porter.schema.models import Field, Fieldset, ItemType, Plugin, Site
from schema_porter.schema.references import linked_item_type_ids, linked_plugin_ids
from schema_porter.schema.appearance import (
    default_appearance,
    ensure_exportable_appearance,
    map_appearance_to_project,
)
from schema_porter.schema.document import (
    ExportDocument,
    dump_export_document,
    load_export_document,
    parse_export_document,
)
from schema_porter.schema.source import SchemaSource
from schema_porter.schema.export_schema import ExportSchema
from schema_porter.schema.project import ProjectSchema

__all__ = [
    "Field",
    "Fieldset",
    "ItemType",
    "Plugin",
    "Site",
    "linked_item_type_ids",
    "linked_plugin_ids",
    "default_appearance",
    "ensure_exportable_appearance",
    "map_appearance_to_project",
    "ExportDocument",
    "dump_export_document",
    "load_export_document",
    "parse_export_document",
    "SchemaSource",
    "ExportSchema",
    "ProjectSchema",
]
