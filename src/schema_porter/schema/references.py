"""Reference extraction from field configuration.

Pure functions that, given a ``Field``, return the item types and plugins
it references:

- item types, through link-carrying and block-carrying validators (which
  validators apply is decided by the field's ``field_type``);
- plugins, through the field's editor (unless it is a built-in editor)
  and its addons.

No I/O -- results depend only on the field snapshot and the optional set
of installed plugin ids.

Usage:
    from schema_porter.schema.references import (
        linked_item_type_ids,
        linked_plugin_ids,
    )

    item_type_ids = linked_item_type_ids(field)
    plugin_ids = linked_plugin_ids(field, installed_plugin_ids=None)
"""

import logging
from typing import Any

from schema_porter.schema.models import Field

logger = logging.getLogger(__name__)


# (field_type, dotted validator path) pairs whose payload is a list of item type ids
VALIDATORS_CONTAINING_LINKS: tuple[tuple[str, str], ...] = (
    ("link", "item_item_type.item_types"),
    ("links", "items_item_type.item_types"),
    ("structured_text", "structured_text_links.item_types"),
)

VALIDATORS_CONTAINING_BLOCKS: tuple[tuple[str, str], ...] = (
    ("rich_text", "rich_text_blocks.item_types"),
    ("single_block", "single_block_blocks.item_types"),
    ("structured_text", "structured_text_blocks.item_types"),
    ("structured_text", "structured_text_inline_blocks.item_types"),
)

SLUG_TITLE_FIELD_VALIDATOR = "slug_title_field"


def item_type_validator_paths(field_type: str) -> list[str]:
    """Return the validator paths that may carry item type ids for a field type."""
    return [
        path
        for candidate_type, path in (*VALIDATORS_CONTAINING_LINKS, *VALIDATORS_CONTAINING_BLOCKS)
        if candidate_type == field_type
    ]


def get_path(data: dict, path: str, default: Any = None) -> Any:
    """Read a dotted path from nested dicts."""
    current: Any = data
    for key in path.split("."):
        if not isinstance(current, dict) or key not in current:
            return default
        current = current[key]
    return current


def set_path(data: dict, path: str, value: Any) -> None:
    """Write a dotted path into nested dicts, creating parents as needed."""
    keys = path.split(".")
    current = data
    for key in keys[:-1]:
        nxt = current.get(key)
        if not isinstance(nxt, dict):
            nxt = {}
            current[key] = nxt
        current = nxt
    current[keys[-1]] = value


# ============================================================================
# Built-in editors
# ============================================================================

HARDCODED_EDITORS: frozenset[str] = frozenset({
    "single_line",
    "markdown",
    "wysiwyg",
    "textarea",
    "string_radio_group",
    "string_select",
    "string_multi_select",
    "string_checkbox_group",
    "date_picker",
    "date_time_picker",
    "integer",
    "float",
    "boolean",
    "boolean_radio_group",
    "color_picker",
    "map",
    "file",
    "gallery",
    "video",
    "link_select",
    "link_embed",
    "links_select",
    "links_embed",
    "rich_text",
    "framed_single_block",
    "frameless_single_block",
    "structured_text",
    "slug",
    "seo",
    "json",
})

_DEFAULT_EDITORS: dict[str, tuple[str, dict[str, Any]]] = {
    "boolean": ("boolean", {}),
    "color": ("color_picker", {"enable_alpha": False, "preset_colors": []}),
    "date": ("date_picker", {}),
    "date_time": ("date_time_picker", {}),
    "file": ("file", {}),
    "float": ("float", {"placeholder": None}),
    "gallery": ("gallery", {}),
    "integer": ("integer", {"placeholder": None}),
    "json": ("json", {}),
    "lat_lon": ("map", {}),
    "link": ("link_select", {}),
    "links": ("links_select", {}),
    "rich_text": ("rich_text", {"start_collapsed": False}),
    "seo": ("seo", {"fields": ["title", "description", "image", "no_index", "twitter_card"], "previews": []}),
    "single_block": ("framed_single_block", {"start_collapsed": False}),
    "slug": ("slug", {"url_prefix": None, "placeholder": None}),
    "string": ("single_line", {"heading": False, "placeholder": None}),
    "structured_text": (
        "structured_text",
        {
            "blocks_start_collapsed": False,
            "show_links_target_option": False,
            "show_links_meta_editor": False,
        },
    ),
    "text": ("textarea", {"placeholder": None}),
    "video": ("video", {}),
}


def is_hardcoded_editor(editor: str | None) -> bool:
    """True for built-in editors; False for plugin-supplied ones."""
    return editor is None or editor == "" or editor in HARDCODED_EDITORS


def default_appearance_payload(field_type: str) -> dict[str, Any]:
    """Return a fresh built-in appearance payload for a field type."""
    editor, parameters = _DEFAULT_EDITORS.get(field_type, ("single_line", {}))
    return {"editor": editor, "parameters": dict(parameters), "addons": []}


# ============================================================================
# Extraction
# ============================================================================

_advisory_emitted = False


def plugin_detection_advisory() -> bool:
    """Log, once per process, that plugin-dependency detection is degraded.

    Called whenever a traversal runs without knowing which plugins are
    installed.  Returns True the first time (when the warning is emitted).
    """
    global _advisory_emitted
    if _advisory_emitted:
        return False
    _advisory_emitted = True
    logger.warning(
        "Installed plugins are unknown: plugin dependencies are detected "
        "from editor/addon ids alone and may include plugins that do not exist"
    )
    return True


def reset_plugin_detection_advisory() -> None:
    """Re-arm the advisory (used by tests and long-running sessions)."""
    global _advisory_emitted
    _advisory_emitted = False


def linked_item_type_ids(field: Field) -> set[str]:
    """Return every item type id referenced by the field's validators."""
    ids: set[str] = set()
    for path in item_type_validator_paths(field.field_type):
        for item_type_id in get_path(field.validators, path) or []:
            ids.add(str(item_type_id))
    return ids


def linked_plugin_ids(
    field: Field,
    installed_plugin_ids: set[str] | None = None,
) -> set[str]:
    """Return every plugin id referenced by the field's editor and addons.

    When ``installed_plugin_ids`` is known, only ids present in it are
    returned.  When it is ``None`` every non-built-in id is returned
    unconditionally (see ``plugin_detection_advisory``).
    """
    ids: set[str] = set()
    appearance = field.appearance
    if appearance is None:
        return ids

    def _accept(plugin_id: str) -> bool:
        return installed_plugin_ids is None or plugin_id in installed_plugin_ids

    if not is_hardcoded_editor(appearance.editor) and _accept(appearance.editor):
        ids.add(appearance.editor)

    for addon in appearance.addons:
        if _accept(addon.id):
            ids.add(addon.id)

    return ids
