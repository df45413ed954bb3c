"""Schema-management API adapters.

Usage:
    from schema_porter.adapters import AsyncCmaAdapter, SchemaClient
"""

from schema_porter.adapters.base import SchemaClient
from schema_porter.adapters.cma import AsyncCmaAdapter, generate_entity_id

__all__ = ["SchemaClient", "AsyncCmaAdapter", "generate_entity_id"]
