"""Schema projection, merging, introspection, and comparison.

Turns resolved entity metadata into desired tables (``DescriptorProjector``,
``merge_projections``), reads the live schema (``SchemaIntrospector``), and
plans the structural changes between them (``SchemaComparator``).

Usage:
    from db_schema_diff.schema import DescriptorProjector, merge_projections
    from db_schema_diff.schema import SchemaIntrospector, SchemaComparator
    from db_schema_diff.schema import diff_entities
"""

from db_schema_diff.schema.comparator import (
    SchemaComparator,
    SchemaReader,
    compare_columns,
    compare_foreign_keys,
    compare_indexes,
    diff_entities,
)
from db_schema_diff.schema.introspector import SchemaIntrospector, normalize_column_type
from db_schema_diff.schema.merge import merge_projections
from db_schema_diff.schema.models import (
    ActualColumn,
    ActualForeignKey,
    ActualIndex,
    ColumnDescriptor,
    EntityDescriptor,
    EntityProjection,
    ForeignKeyDescriptor,
    GeneratorKind,
    IndexDescriptor,
    RelationDescriptor,
    RelationKind,
    SoftDeleteDescriptor,
    TableColumns,
    TableDefinition,
    TableState,
)
from db_schema_diff.schema.projection import (
    DescriptorProjector,
    SchemaProjector,
    merge_mapping_columns,
)
from db_schema_diff.schema.results import (
    ColumnCompareResult,
    ForeignKeyCompareResult,
    IndexCompareResult,
    Operation,
    SchemaDiff,
    TableCompareResult,
    default_matches,
)

__all__ = [
    "SchemaComparator",
    "SchemaReader",
    "compare_columns",
    "compare_indexes",
    "compare_foreign_keys",
    "diff_entities",
    "SchemaIntrospector",
    "normalize_column_type",
    "merge_projections",
    "DescriptorProjector",
    "SchemaProjector",
    "merge_mapping_columns",
    "ActualColumn",
    "ActualForeignKey",
    "ActualIndex",
    "ColumnDescriptor",
    "EntityDescriptor",
    "EntityProjection",
    "ForeignKeyDescriptor",
    "GeneratorKind",
    "IndexDescriptor",
    "RelationDescriptor",
    "RelationKind",
    "SoftDeleteDescriptor",
    "TableColumns",
    "TableDefinition",
    "TableState",
    "Operation",
    "ColumnCompareResult",
    "IndexCompareResult",
    "ForeignKeyCompareResult",
    "TableCompareResult",
    "SchemaDiff",
    "default_matches",
]
