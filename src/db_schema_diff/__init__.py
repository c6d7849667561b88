"""db-schema-diff: Compare entity-described schemas with a live database.

Projects resolved entity metadata onto desired tables, merges entities
that share a table, introspects PostgreSQL, MySQL or SQLite, and plans the
structural changes as typed compare results for a DDL generator.

Usage:
    from db_schema_diff import DescriptorProjector, merge_projections
    from db_schema_diff import EngineConnection, SchemaIntrospector, SchemaComparator
    from db_schema_diff import diff_entities, load_db_config
"""

__version__ = "0.1.0"

# Adapters
from db_schema_diff.adapters import DatabaseConnection, EngineConnection

# Config
from db_schema_diff.config.loader import load_db_config
from db_schema_diff.config.models import DatabaseConfig, DatabaseProfile, DiffSettings

# Errors
from db_schema_diff.exceptions import (
    ColumnConflictError,
    ConfigurationError,
    DatabaseError,
    EmptyTableDefinitionError,
    IntrospectionError,
    NameCollisionError,
    NonEntityRelationError,
    ProfileNotFoundError,
    SchemaConfigurationError,
    SchemaDiffError,
    UnsupportedDriverError,
)

# Factory
from db_schema_diff.factory import (
    connect,
    create_comparator,
    create_introspector,
    get_active_profile_name,
    resolve_url,
)

# Schema
from db_schema_diff.schema.comparator import SchemaComparator, diff_entities
from db_schema_diff.schema.introspector import SchemaIntrospector
from db_schema_diff.schema.merge import merge_projections
from db_schema_diff.schema.models import (
    ColumnDescriptor,
    EntityDescriptor,
    EntityProjection,
    IndexDescriptor,
    RelationDescriptor,
    RelationKind,
    TableDefinition,
)
from db_schema_diff.schema.projection import DescriptorProjector
from db_schema_diff.schema.results import (
    ColumnCompareResult,
    ForeignKeyCompareResult,
    IndexCompareResult,
    Operation,
    SchemaDiff,
    TableCompareResult,
)

__all__ = [
    # Adapters
    "DatabaseConnection",
    "EngineConnection",
    # Config
    "load_db_config",
    "DatabaseConfig",
    "DatabaseProfile",
    "DiffSettings",
    # Errors
    "SchemaDiffError",
    "ConfigurationError",
    "ProfileNotFoundError",
    "SchemaConfigurationError",
    "NonEntityRelationError",
    "ColumnConflictError",
    "NameCollisionError",
    "EmptyTableDefinitionError",
    "DatabaseError",
    "IntrospectionError",
    "UnsupportedDriverError",
    # Factory
    "connect",
    "create_comparator",
    "create_introspector",
    "get_active_profile_name",
    "resolve_url",
    # Schema
    "SchemaComparator",
    "SchemaIntrospector",
    "DescriptorProjector",
    "merge_projections",
    "diff_entities",
    "ColumnDescriptor",
    "EntityDescriptor",
    "EntityProjection",
    "IndexDescriptor",
    "RelationDescriptor",
    "RelationKind",
    "TableDefinition",
    # Results
    "Operation",
    "ColumnCompareResult",
    "IndexCompareResult",
    "ForeignKeyCompareResult",
    "TableCompareResult",
    "SchemaDiff",
]
