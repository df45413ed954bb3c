"""Appearance portability between projects.

A field must never point at an editor that does not exist where it is
sent.  Two rewrites guarantee that:

- on export, plugin editors/addons outside the exported plugin set are
  replaced by the field type's built-in default / dropped;
- on import, plugin editors/addons are translated through the plugin id
  mapping, falling back to the default editor when no mapping exists.
"""

from collections.abc import Collection, Mapping

from schema_porter.schema.models import Addon, Appearance, Field
from schema_porter.schema.references import default_appearance_payload, is_hardcoded_editor


def default_appearance(field_type: str) -> Appearance:
    """Built-in appearance for a field type."""
    return Appearance.model_validate(default_appearance_payload(field_type))


def ensure_exportable_appearance(field: Field, allowed_plugin_ids: Collection[str]) -> Appearance:
    """Return an appearance that only references exported plugins.

    Keeps the original editor when it is built-in or an allowed plugin,
    otherwise falls back to the default for the field type.  Addons are
    always filtered by the allowlist.
    """
    original = field.appearance
    if original is not None and (
        is_hardcoded_editor(original.editor) or original.editor in allowed_plugin_ids
    ):
        appearance = original.model_copy(deep=True)
    else:
        appearance = default_appearance(field.field_type)

    appearance.addons = [
        addon.model_copy(deep=True)
        for addon in (original.addons if original else [])
        if addon.id in allowed_plugin_ids
    ]
    return appearance


def map_appearance_to_project(field: Field, plugin_id_mappings: Mapping[str, str]) -> Appearance:
    """Translate plugin editor/addon ids to the target project's ids.

    Built-in editors are kept with their parameters.  A plugin editor is
    kept only when it has a mapping; otherwise the default editor for
    the field type is used.  Addons without a mapping are dropped.
    """
    appearance = default_appearance(field.field_type)
    original = field.appearance
    if original is None:
        return appearance

    if is_hardcoded_editor(original.editor):
        appearance.editor = original.editor
        appearance.parameters = dict(original.parameters)
        appearance.field_extension = original.field_extension
    elif original.editor in plugin_id_mappings:
        appearance.editor = plugin_id_mappings[original.editor]
        appearance.parameters = dict(original.parameters)
        appearance.field_extension = original.field_extension

    appearance.addons = [
        Addon(
            id=plugin_id_mappings[addon.id],
            parameters=dict(addon.parameters),
            field_extension=addon.field_extension,
        )
        for addon in original.addons
        if addon.id in plugin_id_mappings
    ]
    return appearance
