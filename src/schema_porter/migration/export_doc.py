"""Export document building.

``build_export_doc`` assembles a self-contained, version 2 export
document from a selection of item types and plugins:

- plugins are included verbatim;
- item types are included with their fieldsets and fields;
- link/block validators are intersected with the selected item types,
  so the document never references an item type it does not contain;
- appearances pointing at plugins outside the selection fall back to the
  field type's built-in editor, and such addons are dropped.

Progress advances once per plugin and twice per item type (the item
type, then its fields).  Cancellation is checked before every unit and
raises ``ExportCancelledError``.

Usage:
    from schema_porter.migration.export_doc import build_export_doc

    doc = await build_export_doc(project, post.id, [post.id, person.id], [])
    dump_export_document(doc, "export.json")
"""

import logging
from collections.abc import Iterable

from schema_porter.errors import ExportCancelledError, InvalidDocumentError
from schema_porter.schema.appearance import ensure_exportable_appearance
from schema_porter.schema.document import ExportDocument
from schema_porter.schema.models import Field, SchemaEntity
from schema_porter.schema.references import get_path, item_type_validator_paths, set_path
from schema_porter.schema.source import SchemaSource
from schema_porter.tasks import CancelCheck, Progress, ProgressCallback, never_cancel

logger = logging.getLogger(__name__)


def prune_field_for_export(
    field: Field,
    item_type_ids: set[str],
    plugin_ids: set[str],
) -> Field:
    """Return a copy of ``field`` that only references exported entities."""
    exportable = field.model_copy(deep=True)

    for path in item_type_validator_paths(field.field_type):
        linked = get_path(field.validators, path)
        if linked is None:
            continue
        set_path(
            exportable.validators,
            path,
            [str(i) for i in linked if str(i) in item_type_ids],
        )

    exportable.appearance = ensure_exportable_appearance(field, plugin_ids)
    return exportable


async def build_export_doc(
    source: SchemaSource,
    root_item_type_id: str,
    item_type_ids: Iterable[str],
    plugin_ids: Iterable[str],
    on_progress: ProgressCallback | None = None,
    should_cancel: CancelCheck = never_cancel,
) -> ExportDocument:
    """Assemble an export document for a selection.

    Args:
        source: Schema source to read from.
        root_item_type_id: Traversal root recorded in the document.
        item_type_ids: Selected item types (must include the root).
        plugin_ids: Selected plugins.
        on_progress: Optional progress listener.
        should_cancel: Polled before every entity.

    Raises:
        InvalidDocumentError: The root is not part of the selection.
        ExportCancelledError: Cancellation was requested.
    """
    selected_item_type_ids = list(dict.fromkeys(item_type_ids))
    selected_plugin_ids = list(dict.fromkeys(plugin_ids))
    item_type_set = set(selected_item_type_ids)
    plugin_set = set(selected_plugin_ids)

    if root_item_type_id not in item_type_set:
        raise InvalidDocumentError(
            f"Root item type '{root_item_type_id}' is not part of the selection",
            root=root_item_type_id,
        )

    total = len(selected_plugin_ids) + 2 * len(selected_item_type_ids)
    done = 0

    def advance(label: str) -> None:
        nonlocal done
        done += 1
        if on_progress is not None:
            on_progress(Progress(done=done, total=total, label=label, phase="export"))

    def check_cancel() -> None:
        if should_cancel():
            logger.info("Export cancelled after %d/%d units", done, total)
            raise ExportCancelledError()

    entities: list[SchemaEntity] = []

    for plugin_id in selected_plugin_ids:
        check_cancel()
        plugin = await source.get_plugin_by_id(plugin_id)
        entities.append(plugin.model_copy(deep=True))
        advance(f"Plugin: {plugin.name}")

    for item_type_id in selected_item_type_ids:
        check_cancel()
        item_type = await source.get_item_type_by_id(item_type_id)
        fields, fieldsets = await source.get_item_type_fields_and_fieldsets(item_type)
        entities.append(item_type.model_copy(deep=True))
        advance(f"{item_type.kind_label}: {item_type.name}")

        check_cancel()
        entities.extend(fieldset.model_copy(deep=True) for fieldset in fieldsets)
        entities.extend(prune_field_for_export(field, item_type_set, plugin_set) for field in fields)
        advance(f"Fields/Fieldsets for {item_type.name}")

    logger.info(
        "Built export with %d item types and %d plugins",
        len(selected_item_type_ids),
        len(selected_plugin_ids),
    )
    return ExportDocument(root_item_type_id=root_item_type_id, entities=entities)


async def build_full_export_doc(
    source: SchemaSource,
    on_progress: ProgressCallback | None = None,
    should_cancel: CancelCheck = never_cancel,
) -> ExportDocument:
    """Export every item type and plugin of a source.

    The first model (or, failing that, the first item type) is the root.

    Raises:
        InvalidDocumentError: The source has no item types.
    """
    item_types = await source.get_all_item_types()
    if not item_types:
        raise InvalidDocumentError("No item types found in this project")

    known_plugin_ids = await source.get_known_plugin_ids()
    plugins = await source.get_all_plugins() if known_plugin_ids is not None else []

    root = next((it for it in item_types if not it.is_block), item_types[0])
    return await build_export_doc(
        source,
        root.id,
        [it.id for it in item_types],
        [p.id for p in plugins],
        on_progress=on_progress,
        should_cancel=should_cancel,
    )
