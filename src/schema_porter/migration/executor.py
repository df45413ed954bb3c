"""Multi-phase import executor.

``import_schema`` creates the entities of an ``ImportDoc`` in a target
project, in strictly ordered phases:

1. id allocation -- a target id is minted for every entity to create, so
   forward references resolve without a second pass;
2. plugins;
3. item type shells (attributes only, renamed when resolved so);
4. per item type: fieldsets, then non-slug fields, then slug fields
   (a slug may name a sibling field as its title source);
5. finalization -- designated-field relationships (title, ordering,
   preview...), skipped when nothing differs from the created record;
6. reordering -- one ``position`` update per field/fieldset, for item
   types with more than one child.

Within a phase, units of work run on a few bounded workers pulling from
a shared queue.  A failed unit is logged, recorded in
``ImportResult.failed`` and counted; it never aborts the batch unless
``abort_on_failure`` is set.  Cancellation is polled before every unit:
once observed, in-flight units finish, nothing new starts and no later
phase runs.  Nothing already created is rolled back.

Usage:
    from schema_porter.migration.executor import import_schema

    result = await import_schema(import_doc, client, on_progress=print)
    print(result.status, len(result.failed))
"""

import asyncio
import copy
import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import Any, Literal, TypeVar

from pydantic import BaseModel, Field as PydanticField

from schema_porter.adapters.base import SchemaClient
from schema_porter.migration.import_doc import ImportDoc, ItemTypeToCreate
from schema_porter.schema.appearance import map_appearance_to_project
from schema_porter.schema.models import DESIGNATED_FIELD_RELATIONSHIPS, Field, Fieldset, Plugin
from schema_porter.schema.references import (
    SLUG_TITLE_FIELD_VALIDATOR,
    get_path,
    item_type_validator_paths,
    set_path,
)
from schema_porter.tasks import CancelCheck, ProgressCallback, ProgressCounter, never_cancel

logger = logging.getLogger(__name__)

LEGACY_PLUGIN_ATTRIBUTES = ("parameter_definitions", "field_types", "plugin_type", "parameters")

T = TypeVar("T")


# ============================================================================
# Settings and results
# ============================================================================


class ImportConcurrency(BaseModel):
    """Workers per phase."""

    plugins: int = 4
    item_types: int = 3
    fields: int = 6
    item_types_in_parallel: int = 2
    finalize: int = 3
    reorder: int = 2


class FailedEntity(BaseModel):
    """A unit of work that could not be completed."""

    kind: Literal["plugin", "item_type", "fieldset", "field", "finalize", "reorder"]
    export_id: str
    label: str
    error: str


class ImportResult(BaseModel):
    """Outcome of one import run.

    ``completed`` may still carry failures (best effort); ``cancelled``
    means the user stopped it; ``failed`` means ``abort_on_failure``
    stopped it.
    """

    status: Literal["completed", "cancelled", "failed"] = "completed"
    item_type_ids: dict[str, str] = PydanticField(default_factory=dict)
    field_ids: dict[str, str] = PydanticField(default_factory=dict)
    fieldset_ids: dict[str, str] = PydanticField(default_factory=dict)
    plugin_ids: dict[str, str] = PydanticField(default_factory=dict)
    created: dict[str, list[str]] = PydanticField(
        default_factory=lambda: {"plugin": [], "item_type": [], "fieldset": [], "field": []}
    )
    failed: list[FailedEntity] = PydanticField(default_factory=list)
    done: int = 0
    total: int = 0

    @property
    def ok(self) -> bool:
        return self.status == "completed" and not self.failed


def planned_units(doc: ImportDoc) -> int:
    """Number of progress units an import of ``doc`` plans."""
    item_types = doc.item_types.entities_to_create
    reorders = sum(1 for entry in item_types if len(entry.fields) + len(entry.fieldsets) > 1)
    return (
        len(doc.plugins.entities_to_create)
        + len(item_types)
        + doc.fieldset_count
        + doc.field_count
        + len(item_types)
        + reorders
    )


# ============================================================================
# Payload builders
# ============================================================================


def build_plugin_payload(plugin: Plugin, new_id: str) -> dict[str, Any]:
    """Creation payload for a plugin.

    Packaged plugins are installed by package name alone.  Parameters
    are applied separately after creation.
    """
    attributes = plugin.to_resource()["attributes"]
    if plugin.package_name:
        attributes = {"package_name": plugin.package_name}
    elif plugin.meta_version == "2":
        attributes.pop("parameters", None)
    else:
        for key in LEGACY_PLUGIN_ATTRIBUTES:
            attributes.pop(key, None)
    attributes = {k: v for k, v in attributes.items() if not (k in ("url", "package_name") and v is None)}
    return {"type": "plugin", "id": new_id, "attributes": attributes}


def build_item_type_payload(entry: ItemTypeToCreate, new_id: str) -> dict[str, Any]:
    attributes = entry.entity.to_resource()["attributes"]
    attributes.pop("has_singleton_item", None)
    if entry.rename is not None:
        attributes["name"] = entry.rename.name
        attributes["api_key"] = entry.rename.api_key
    return {"type": "item_type", "id": new_id, "attributes": attributes}


def build_fieldset_payload(fieldset: Fieldset, new_id: str) -> dict[str, Any]:
    attributes = fieldset.to_resource()["attributes"]
    return {"type": "fieldset", "id": new_id, "attributes": attributes}


def build_field_payload(
    field: Field,
    new_id: str,
    locales: list[str],
    item_type_ids: dict[str, str],
    field_ids: dict[str, str],
    fieldset_ids: dict[str, str],
    plugin_ids: dict[str, str],
) -> dict[str, Any]:
    """Creation payload for a field with every reference translated.

    - link/block validators keep only item types that have a mapping;
    - the slug title-field validator points at the mapped sibling field;
    - plugin editors/addons are translated (or fall back to built-ins);
    - a localized default value gets one entry per target locale.
    """
    attributes = field.to_resource()["attributes"]
    validators = copy.deepcopy(field.validators)

    for path in item_type_validator_paths(field.field_type):
        linked = get_path(field.validators, path)
        if linked is None:
            continue
        set_path(validators, path, [item_type_ids[str(i)] for i in linked if str(i) in item_type_ids])

    slug_title = validators.get(SLUG_TITLE_FIELD_VALIDATOR)
    if isinstance(slug_title, dict) and slug_title.get("title_field_id"):
        mapped = field_ids.get(str(slug_title["title_field_id"]))
        if mapped is None:
            validators.pop(SLUG_TITLE_FIELD_VALIDATOR)
        else:
            validators[SLUG_TITLE_FIELD_VALIDATOR] = {**slug_title, "title_field_id": mapped}

    attributes["validators"] = validators
    attributes["appearance"] = map_appearance_to_project(field, plugin_ids).to_payload()

    if field.localized:
        previous = field.default_value if isinstance(field.default_value, dict) else {}
        attributes["default_value"] = {locale: previous.get(locale) for locale in locales}

    fieldset_ref = None
    if field.fieldset_id and field.fieldset_id in fieldset_ids:
        fieldset_ref = {"type": "fieldset", "id": fieldset_ids[field.fieldset_id]}

    return {
        "type": "field",
        "id": new_id,
        "attributes": attributes,
        "relationships": {"fieldset": {"data": fieldset_ref}},
    }


def _relationship_field_id(relationships: dict, name: str) -> str | None:
    data = (relationships.get(name) or {}).get("data")
    return str(data["id"]) if data else None


# ============================================================================
# Executor
# ============================================================================


class ImportExecutor:
    """Runs one import.  Instances are single-use.

    Args:
        doc: The import plan.
        client: Target project adapter.
        on_progress: Listener for ``{done, total, label}`` updates.
        should_cancel: Polled before every unit of work.
        concurrency: Workers per phase.
        abort_on_failure: Stop starting new units after the first failure.
    """

    def __init__(
        self,
        doc: ImportDoc,
        client: SchemaClient,
        on_progress: ProgressCallback | None = None,
        should_cancel: CancelCheck = never_cancel,
        concurrency: ImportConcurrency | None = None,
        abort_on_failure: bool = False,
    ) -> None:
        self.doc = doc
        self.client = client
        self.should_cancel = should_cancel
        self.concurrency = concurrency or ImportConcurrency()
        self.abort_on_failure = abort_on_failure
        self.counter = ProgressCounter(planned_units(doc), on_progress, phase="import")
        self.result = ImportResult(total=self.counter.total)
        self.locales: list[str] = []
        self.cancelled = False
        self.aborted = False

        self._created_item_types: dict[str, dict[str, Any]] = {}
        self._created_field_ids: set[str] = set()
        self._created_fieldset_ids: set[str] = set()

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def _stopped(self) -> bool:
        if not self.cancelled and self.should_cancel():
            self.cancelled = True
            logger.info("Cancellation requested; no new work will start")
        return self.cancelled or self.aborted

    async def _run_bounded(
        self,
        items: Iterable[T],
        worker: Callable[[T], Awaitable[None]],
        limit: int,
    ) -> None:
        """Drain ``items`` with at most ``limit`` concurrent workers."""
        queue: asyncio.Queue[T] = asyncio.Queue()
        for item in items:
            queue.put_nowait(item)
        if queue.empty():
            return

        async def runner() -> None:
            while not self._stopped():
                try:
                    item = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                await worker(item)

        await asyncio.gather(*(runner() for _ in range(min(max(limit, 1), queue.qsize()))))

    async def _unit(
        self,
        kind: str,
        export_id: str,
        label: str,
        action: Callable[[], Awaitable[None]],
    ) -> bool:
        """Run one unit of work, recording its failure; returns success."""
        try:
            await action()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            await self._fail(kind, export_id, label, e)
            return False
        await self.counter.advance(label)
        return True

    async def _fail(self, kind: str, export_id: str, label: str, error: Exception | str) -> None:
        logger.warning("Failed: %s: %s", label, error)
        self.result.failed.append(
            FailedEntity(kind=kind, export_id=export_id, label=label, error=str(error))
        )
        if self.abort_on_failure and not self.aborted:
            self.aborted = True
            logger.info("Aborting import after first failure")
        await self.counter.advance(f"Failed: {label}")

    # ------------------------------------------------------------------
    # Phase 1: id allocation
    # ------------------------------------------------------------------

    def allocate_ids(self) -> None:
        result = self.result
        for entry in self.doc.item_types.entities_to_create:
            result.item_type_ids[entry.entity.id] = self.client.generate_id()
            for field in entry.fields:
                result.field_ids[field.id] = self.client.generate_id()
            for fieldset in entry.fieldsets:
                result.fieldset_ids[fieldset.id] = self.client.generate_id()
        result.item_type_ids.update(self.doc.item_types.ids_to_reuse)

        for plugin in self.doc.plugins.entities_to_create:
            result.plugin_ids[plugin.id] = self.client.generate_id()
        result.plugin_ids.update(self.doc.plugins.ids_to_reuse)

    # ------------------------------------------------------------------
    # Phase 2: plugins
    # ------------------------------------------------------------------

    async def _create_plugin(self, plugin: Plugin) -> None:
        new_id = self.result.plugin_ids[plugin.id]

        async def action() -> None:
            await self.client.create_plugin(build_plugin_payload(plugin, new_id))
            self.result.created["plugin"].append(new_id)
            if plugin.parameters:
                try:
                    await self.client.update_plugin(new_id, {"parameters": plugin.parameters})
                except Exception as e:
                    # Legacy plugin parameters may no longer validate
                    logger.info("Could not apply parameters of plugin %s: %s", plugin.name, e)

        await self._unit("plugin", plugin.id, f"Plugin: {plugin.name}", action)

    # ------------------------------------------------------------------
    # Phase 3: item types
    # ------------------------------------------------------------------

    async def _create_item_type(self, entry: ItemTypeToCreate) -> None:
        new_id = self.result.item_type_ids[entry.entity.id]

        async def action() -> None:
            created = await self.client.create_item_type(build_item_type_payload(entry, new_id))
            self._created_item_types[entry.entity.id] = created if isinstance(created, dict) else {}
            self.result.created["item_type"].append(new_id)

        await self._unit("item_type", entry.entity.id, f"{entry.entity.kind_label}: {entry.name}", action)

    # ------------------------------------------------------------------
    # Phase 4: fieldsets and fields
    # ------------------------------------------------------------------

    async def _create_fieldset(self, item_type_id: str, fieldset: Fieldset) -> None:
        new_id = self.result.fieldset_ids[fieldset.id]

        async def action() -> None:
            await self.client.create_fieldset(item_type_id, build_fieldset_payload(fieldset, new_id))
            self._created_fieldset_ids.add(fieldset.id)
            self.result.created["fieldset"].append(new_id)

        await self._unit("fieldset", fieldset.id, f"Fieldset: {fieldset.title}", action)

    async def _create_field(self, item_type_id: str, field: Field) -> None:
        new_id = self.result.field_ids[field.id]
        result = self.result

        async def action() -> None:
            payload = build_field_payload(
                field,
                new_id,
                self.locales,
                result.item_type_ids,
                result.field_ids,
                result.fieldset_ids,
                result.plugin_ids,
            )
            await self.client.create_field(item_type_id, payload)
            self._created_field_ids.add(field.id)
            result.created["field"].append(new_id)

        await self._unit("field", field.id, f"Field: {field.label or field.api_key}", action)

    async def _create_children(self, entry: ItemTypeToCreate) -> None:
        if self._stopped():
            return

        if entry.entity.id not in self._created_item_types:
            reason = f"item type '{entry.api_key}' was not created"
            for fieldset in entry.fieldsets:
                if self._stopped():
                    return
                await self._fail("fieldset", fieldset.id, f"Fieldset: {fieldset.title}", reason)
            for field in entry.fields:
                if self._stopped():
                    return
                await self._fail("field", field.id, f"Field: {field.label or field.api_key}", reason)
            return

        target_id = self.result.item_type_ids[entry.entity.id]
        limit = self.concurrency.fields

        await self._run_bounded(
            entry.fieldsets, lambda fs: self._create_fieldset(target_id, fs), limit
        )
        await self._run_bounded(
            [f for f in entry.fields if f.field_type != "slug"],
            lambda f: self._create_field(target_id, f),
            limit,
        )
        await self._run_bounded(
            [f for f in entry.fields if f.field_type == "slug"],
            lambda f: self._create_field(target_id, f),
            limit,
        )

    # ------------------------------------------------------------------
    # Phase 5: finalize
    # ------------------------------------------------------------------

    def designated_relationships(self, entry: ItemTypeToCreate) -> dict[str, Any]:
        relationships: dict[str, Any] = {}
        for name in DESIGNATED_FIELD_RELATIONSHIPS:
            field_id = entry.entity.designated_fields.get(name)
            if field_id and field_id in self._created_field_ids:
                relationships[name] = {"data": {"type": "field", "id": self.result.field_ids[field_id]}}
            else:
                relationships[name] = {"data": None}
        return relationships

    async def _finalize(self, entry: ItemTypeToCreate) -> None:
        label = f"Finalize {entry.entity.kind_label.lower()}: {entry.name}"
        created = self._created_item_types.get(entry.entity.id)
        if created is None:
            await self._fail("finalize", entry.entity.id, label, f"item type '{entry.api_key}' was not created")
            return

        new_id = self.result.item_type_ids[entry.entity.id]
        relationships = self.designated_relationships(entry)
        created_relationships = created.get("relationships") or {}

        async def action() -> None:
            unchanged = all(
                _relationship_field_id(relationships, name)
                == _relationship_field_id(created_relationships, name)
                for name in DESIGNATED_FIELD_RELATIONSHIPS
            )
            if unchanged:
                logger.debug("Item type %s needs no finalization", entry.api_key)
                return
            await self.client.update_item_type(
                new_id, {"type": "item_type", "id": new_id, "relationships": relationships}
            )

        await self._unit("finalize", entry.entity.id, label, action)

    # ------------------------------------------------------------------
    # Phase 6: reorder
    # ------------------------------------------------------------------

    async def _reorder(self, entry: ItemTypeToCreate) -> None:
        label = f"Reorder fields of {entry.name}"
        if entry.entity.id not in self._created_item_types:
            await self._fail("reorder", entry.entity.id, label, f"item type '{entry.api_key}' was not created")
            return

        children: list[Field | Fieldset] = [
            *(fs for fs in entry.fieldsets if fs.id in self._created_fieldset_ids),
            *(f for f in entry.fields if f.id in self._created_field_ids),
        ]

        async def action() -> None:
            for child in sorted(children, key=lambda c: c.position):
                if isinstance(child, Fieldset):
                    await self.client.update_fieldset(
                        self.result.fieldset_ids[child.id], {"position": child.position}
                    )
                else:
                    await self.client.update_field(
                        self.result.field_ids[child.id], {"position": child.position}
                    )

        await self._unit("reorder", entry.entity.id, label, action)

    # ------------------------------------------------------------------
    # Orchestration
    # ------------------------------------------------------------------

    def _finish(self) -> ImportResult:
        if self.aborted:
            self.result.status = "failed"
        elif self.cancelled:
            self.result.status = "cancelled"
        else:
            self.result.status = "completed"
        self.result.done = self.counter.done
        logger.info(
            "Import %s: %d/%d units, %d failures",
            self.result.status,
            self.result.done,
            self.result.total,
            len(self.result.failed),
        )
        return self.result

    async def run(self) -> ImportResult:
        """Run every phase in order.

        Raises:
            TransientRemoteError: The target's locales could not be read
                (before anything was written).
        """
        item_types = self.doc.item_types.entities_to_create
        site = await self.client.get_site()
        self.locales = list((site.get("attributes") or {}).get("locales") or [])

        self.allocate_ids()
        self.counter.emit("Starting import...")

        logger.info("Creating %d plugins", len(self.doc.plugins.entities_to_create))
        await self._run_bounded(self.doc.plugins.entities_to_create, self._create_plugin, self.concurrency.plugins)
        if self._stopped():
            return self._finish()

        logger.info("Creating %d item types", len(item_types))
        await self._run_bounded(item_types, self._create_item_type, self.concurrency.item_types)
        if self._stopped():
            return self._finish()

        logger.info("Creating fieldsets and fields")
        await self._run_bounded(item_types, self._create_children, self.concurrency.item_types_in_parallel)
        if self._stopped():
            return self._finish()

        logger.info("Finalizing item types")
        await self._run_bounded(item_types, self._finalize, self.concurrency.finalize)
        if self._stopped():
            return self._finish()

        logger.info("Reordering fields and fieldsets")
        await self._run_bounded(
            [e for e in item_types if len(e.fields) + len(e.fieldsets) > 1],
            self._reorder,
            self.concurrency.reorder,
        )
        return self._finish()


async def import_schema(
    doc: ImportDoc,
    client: SchemaClient,
    on_progress: ProgressCallback | None = None,
    should_cancel: CancelCheck = never_cancel,
    concurrency: ImportConcurrency | None = None,
    abort_on_failure: bool = False,
) -> ImportResult:
    """Create the entities of an import plan in the target project.

    Args:
        doc: Output of ``build_import_doc``; consumed once.
        client: Target project adapter.
        on_progress: Listener for progress updates (``done`` strictly increases).
        should_cancel: Polled before every unit of work.
        concurrency: Workers per phase.
        abort_on_failure: Stop at the first failed unit (status ``failed``).

    Returns:
        ``ImportResult`` with id mappings, created ids and failures.

    Example:
        task = LongTask()
        result = await import_schema(doc, client, should_cancel=task.is_cancel_requested)
        if result.status == "cancelled":
            print(f"Stopped after {result.done} of {result.total} steps")
    """
    executor = ImportExecutor(
        doc,
        client,
        on_progress=on_progress,
        should_cancel=should_cancel,
        concurrency=concurrency,
        abort_on_failure=abort_on_failure,
    )
    return await executor.run()
