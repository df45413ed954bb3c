"""Conflict resolutions.

A resolution is the user's decision for one conflict:

- item types: ``reuse_existing`` (map onto the conflicting target item
  type) or ``rename`` (create under a new name/api key);
- plugins: ``reuse_existing`` or ``skip``.

Resolutions come from a mass default (applied to every conflict) and
per-entity overrides.  ``resolve`` states the precedence rule;
``build_resolutions`` applies it to a whole conflict map, turning mass
renames into concrete, unique names; ``validate_resolutions`` reports
everything that must be fixed before an import may start.

Usage:
    from schema_porter.migration.resolutions import MassDefaults, build_resolutions

    resolutions = build_resolutions(
        conflicts,
        export_item_types,
        target_item_types,
        mass=MassDefaults(item_types_strategy="rename", plugins_strategy="reuse_existing"),
    )
"""

import re
from collections.abc import Iterable
from typing import Annotated, Literal, TypeVar

from pydantic import BaseModel, Field as PydanticField

from schema_porter.migration.conflicts import ConflictMap
from schema_porter.schema.models import ItemType

API_KEY_PATTERN = re.compile(r"^[a-z](([a-z0-9]|_(?![_0-9]))*[a-z0-9])$")

RESERVED_API_KEYS: frozenset[str] = frozenset({
    "id",
    "find",
    "site",
    "environment",
    "available_locales",
    "item_types",
    "single_instance_item_types",
    "collection_item_types",
    "items_of_type",
    "model",
})

DEFAULT_NAME_SUFFIX = " (Import)"
DEFAULT_API_KEY_SUFFIX = "_import"


# ============================================================================
# Models
# ============================================================================


class ReuseExisting(BaseModel):
    strategy: Literal["reuse_existing"] = "reuse_existing"


class Rename(BaseModel):
    strategy: Literal["rename"] = "rename"
    name: str
    api_key: str


class Skip(BaseModel):
    strategy: Literal["skip"] = "skip"


ItemTypeResolution = Annotated[ReuseExisting | Rename, PydanticField(discriminator="strategy")]
PluginResolution = Annotated[ReuseExisting | Skip, PydanticField(discriminator="strategy")]


class Resolutions(BaseModel):
    """Resolutions keyed by export entity id."""

    item_types: dict[str, ItemTypeResolution] = PydanticField(default_factory=dict)
    plugins: dict[str, PluginResolution] = PydanticField(default_factory=dict)

    def reused_item_type_ids(self) -> list[str]:
        return [i for i, r in self.item_types.items() if r.strategy == "reuse_existing"]

    def reused_plugin_ids(self) -> list[str]:
        return [i for i, r in self.plugins.items() if r.strategy == "reuse_existing"]


class MassDefaults(BaseModel):
    """One strategy for every conflict of a kind (None = decide per entity)."""

    item_types_strategy: Literal["reuse_existing", "rename"] | None = None
    plugins_strategy: Literal["reuse_existing", "skip"] | None = None
    name_suffix: str = DEFAULT_NAME_SUFFIX
    api_key_suffix: str = DEFAULT_API_KEY_SUFFIX


# ============================================================================
# Rules
# ============================================================================

T = TypeVar("T")


def resolve(conflict: object, mass_default: T | None, per_entity_override: T | None) -> T | None:
    """Mass default wins when set; otherwise the per-entity choice (possibly None).

    ``conflict`` is the conflicting target entity.  It does not affect the
    precedence; kind compatibility is checked by ``build_resolutions`` and
    ``validate_resolutions``.
    """
    if conflict is None:
        return None
    if mass_default is not None:
        return mass_default
    return per_entity_override


def is_valid_api_key(api_key: str) -> bool:
    """Check the target's identifier grammar and reserved words.

    Example:
        >>> is_valid_api_key("blog_post")
        True
        >>> is_valid_api_key("post_2")
        False
    """
    if not API_KEY_PATTERN.match(api_key):
        return False
    return api_key not in RESERVED_API_KEYS


def is_valid_api_key_suffix(suffix: str) -> bool:
    return bool(re.fullmatch(r"_?[a-z][a-z0-9_]*[a-z0-9]|_?[a-z]", suffix))


def suggest_rename(item_type: ItemType) -> Rename:
    """Per-entity default rename for a conflicting target item type."""
    return Rename(
        name=f"{item_type.name}{DEFAULT_NAME_SUFFIX}",
        api_key=f"{item_type.api_key}{DEFAULT_API_KEY_SUFFIX}",
    )


def compute_unique_rename(
    base_name: str,
    base_api_key: str,
    name_suffix: str,
    api_key_suffix: str,
    used_names: set[str],
    used_api_keys: set[str],
) -> Rename:
    """Suffix a name/api key pair until both are unused, then reserve them.

    Counters start at 2: ``Post (Import)``, ``Post (Import) 2``, ...
    and ``post_import``, ``post_import2``, ...
    """
    name = f"{base_name}{name_suffix}"
    counter = 2
    while name in used_names:
        name = f"{base_name}{name_suffix} {counter}"
        counter += 1

    api_key = f"{base_api_key}{api_key_suffix}"
    counter = 2
    while api_key in used_api_keys:
        api_key = f"{base_api_key}{api_key_suffix}{counter}"
        counter += 1

    used_names.add(name)
    used_api_keys.add(api_key)
    return Rename(name=name, api_key=api_key)


def build_resolutions(
    conflicts: ConflictMap,
    export_item_types: Iterable[ItemType],
    target_item_types: Iterable[ItemType],
    mass: MassDefaults | None = None,
    overrides: Resolutions | None = None,
    included_item_type_ids: Iterable[str] | None = None,
    included_plugin_ids: Iterable[str] | None = None,
) -> Resolutions:
    """Compute the effective resolution of every conflict.

    Args:
        conflicts: Output of ``detect_conflicts``.
        export_item_types: Item types of the export document.
        target_item_types: Existing item types of the target project.
        mass: Mass defaults; a set strategy overrides every per-entity choice.
        overrides: Per-entity choices.
        included_item_type_ids: Restrict to these export item types
            (e.g. the ones present in the import graph).
        included_plugin_ids: Restrict to these export plugins.

    Returns:
        ``Resolutions``; conflicts without any decision are left out
        (``validate_resolutions`` reports them).
    """
    mass = mass or MassDefaults()
    overrides = overrides or Resolutions()
    export_by_id = {it.id: it for it in export_item_types}
    target_list = list(target_item_types)
    used_names = {it.name for it in target_list}
    used_api_keys = {it.api_key for it in target_list}
    item_type_filter = set(included_item_type_ids) if included_item_type_ids is not None else None
    plugin_filter = set(included_plugin_ids) if included_plugin_ids is not None else None

    resolutions = Resolutions()

    for plugin_id, target_plugin in conflicts.plugins.items():
        if plugin_filter is not None and plugin_id not in plugin_filter:
            continue
        mass_choice = None
        if mass.plugins_strategy == "reuse_existing":
            mass_choice = ReuseExisting()
        elif mass.plugins_strategy == "skip":
            mass_choice = Skip()
        choice = resolve(target_plugin, mass_choice, overrides.plugins.get(plugin_id))
        if choice is not None:
            resolutions.plugins[plugin_id] = choice

    for item_type_id, target_item_type in conflicts.item_types.items():
        if item_type_filter is not None and item_type_id not in item_type_filter:
            continue
        export_item_type = export_by_id.get(item_type_id)
        if export_item_type is None:
            continue

        if mass.item_types_strategy is None:
            choice = resolve(target_item_type, None, overrides.item_types.get(item_type_id))
            if choice is not None:
                resolutions.item_types[item_type_id] = choice
            continue

        compatible = export_item_type.is_block == target_item_type.is_block
        if mass.item_types_strategy == "reuse_existing" and compatible:
            resolutions.item_types[item_type_id] = ReuseExisting()
        else:
            resolutions.item_types[item_type_id] = compute_unique_rename(
                export_item_type.name,
                export_item_type.api_key,
                mass.name_suffix,
                mass.api_key_suffix,
                used_names,
                used_api_keys,
            )

    return resolutions


def validate_resolutions(
    conflicts: ConflictMap,
    resolutions: Resolutions,
    export_item_types: Iterable[ItemType],
    target_item_types: Iterable[ItemType],
    included_item_type_ids: Iterable[str] | None = None,
    included_plugin_ids: Iterable[str] | None = None,
    mass: MassDefaults | None = None,
) -> dict[str, str]:
    """Return one error message per invalid conflict.

    Keys are ``item_type:<export id>`` / ``plugin:<export id>`` (and
    ``mass:api_key_suffix`` for an unusable mass suffix).  An empty dict
    means the import may start.
    """
    errors: dict[str, str] = {}
    if mass is not None and mass.item_types_strategy is not None:
        if not is_valid_api_key_suffix(mass.api_key_suffix):
            errors["mass:api_key_suffix"] = f"Invalid API key suffix '{mass.api_key_suffix}'"
    export_by_id = {it.id: it for it in export_item_types}
    target_list = list(target_item_types)
    target_names = {it.name for it in target_list}
    target_api_keys = {it.api_key for it in target_list}
    item_type_filter = set(included_item_type_ids) if included_item_type_ids is not None else None
    plugin_filter = set(included_plugin_ids) if included_plugin_ids is not None else None

    for plugin_id in conflicts.plugins:
        if plugin_filter is not None and plugin_id not in plugin_filter:
            continue
        if plugin_id not in resolutions.plugins:
            errors[f"plugin:{plugin_id}"] = "Conflict is unresolved"

    renamed_names: dict[str, str] = {}
    renamed_api_keys: dict[str, str] = {}

    for item_type_id, target_item_type in conflicts.item_types.items():
        if item_type_filter is not None and item_type_id not in item_type_filter:
            continue
        key = f"item_type:{item_type_id}"
        resolution = resolutions.item_types.get(item_type_id)

        if resolution is None:
            errors[key] = "Conflict is unresolved"
            continue

        if isinstance(resolution, ReuseExisting):
            export_item_type = export_by_id.get(item_type_id)
            if export_item_type is not None and export_item_type.is_block != target_item_type.is_block:
                errors[key] = (
                    f"Cannot reuse {target_item_type.kind_label.lower()} "
                    f"'{target_item_type.api_key}' for a "
                    f"{export_item_type.kind_label.lower()}"
                )
            continue

        if not resolution.name:
            errors[key] = "Name is required"
        elif resolution.name in target_names:
            errors[key] = f"Name '{resolution.name}' is already used in the project"
        elif resolution.name in renamed_names:
            errors[key] = f"Name '{resolution.name}' is already used by another rename"
        elif not resolution.api_key:
            errors[key] = "API key is required"
        elif not is_valid_api_key(resolution.api_key):
            errors[key] = f"API key '{resolution.api_key}' has an invalid format"
        elif resolution.api_key in target_api_keys:
            errors[key] = f"API key '{resolution.api_key}' is already used in the project"
        elif resolution.api_key in renamed_api_keys:
            errors[key] = f"API key '{resolution.api_key}' is already used by another rename"

        renamed_names.setdefault(resolution.name, item_type_id)
        renamed_api_keys.setdefault(resolution.api_key, item_type_id)

    return errors
