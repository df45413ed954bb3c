"""Export, conflict resolution, and import.

Provides the export document builder (``build_export_doc``), conflict
detection (``detect_conflicts``), resolutions (``build_resolutions``,
``validate_resolutions``), the import plan (``build_import_doc``) and
the import executor (``import_schema``).

Usage:
    from schema_porter.migration import detect_conflicts, build_resolutions
    from schema_porter.migration import build_import_doc, import_schema
"""

from schema_porter.migration.export_doc import build_export_doc, build_full_export_doc
from schema_porter.migration.conflicts import ConflictMap, detect_conflicts
from schema_porter.migration.resolutions import (
    MassDefaults,
    Rename,
    Resolutions,
    ReuseExisting,
    Skip,
    build_resolutions,
    validate_resolutions,
)
from schema_porter.migration.import_doc import ImportDoc, build_import_doc
from schema_porter.migration.executor import ImportConcurrency, ImportResult, import_schema
from schema_porter.migration.recipe import fetch_recipe

__all__ = [
    "build_export_doc",
    "build_full_export_doc",
    "ConflictMap",
    "detect_conflicts",
    "MassDefaults",
    "Rename",
    "Resolutions",
    "ReuseExisting",
    "Skip",
    "build_resolutions",
    "validate_resolutions",
    "ImportDoc",
    "build_import_doc",
    "ImportConcurrency",
    "ImportResult",
    "import_schema",
    "fetch_recipe",
]
