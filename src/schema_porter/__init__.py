"""schema-porter: Export and import content schemas between projects.

Builds the dependency graph of item types, fields, fieldsets and plugins,
writes portable export documents, detects and resolves conflicts against a
target project, and recreates the schema there in dependency order.

Usage:
    from schema_porter import AsyncCmaAdapter, ProjectSchema, build_graph
    from schema_porter import load_export_document, ExportSchema
    from schema_porter import detect_conflicts, build_resolutions, build_import_doc
    from schema_porter import import_schema, get_client
"""

__version__ = "0.1.0"

# Adapters
from schema_porter.adapters.base import SchemaClient
from schema_porter.adapters.cma import AsyncCmaAdapter

# Config
from schema_porter.config.loader import load_porter_config
from schema_porter.config.models import PorterConfig, ProjectProfile

# Factory
from schema_porter.factory import connect_and_validate, get_client

# Errors
from schema_porter.errors import ProfileNotFoundError, SchemaPorterError

# Schema
from schema_porter.schema.document import ExportDocument, dump_export_document, load_export_document
from schema_porter.schema.export_schema import ExportSchema
from schema_porter.schema.project import ProjectSchema

# Graph
from schema_porter.graph.builder import build_graph
from schema_porter.graph.dependencies import expand_selection_with_dependencies

# Migration
from schema_porter.migration.conflicts import detect_conflicts
from schema_porter.migration.executor import import_schema
from schema_porter.migration.export_doc import build_export_doc
from schema_porter.migration.import_doc import build_import_doc
from schema_porter.migration.resolutions import build_resolutions

# Tasks
from schema_porter.tasks import LongTask, Progress

__all__ = [
    # Adapters
    "SchemaClient",
    "AsyncCmaAdapter",
    # Config
    "load_porter_config",
    "PorterConfig",
    "ProjectProfile",
    # Factory
    "connect_and_validate",
    "get_client",
    # Errors
    "ProfileNotFoundError",
    "SchemaPorterError",
    # Schema
    "ExportDocument",
    "dump_export_document",
    "load_export_document",
    "ExportSchema",
    "ProjectSchema",
    # Graph
    "build_graph",
    "expand_selection_with_dependencies",
    # Migration
    "detect_conflicts",
    "import_schema",
    "build_export_doc",
    "build_import_doc",
    "build_resolutions",
    # Tasks
    "LongTask",
    "Progress",
]
