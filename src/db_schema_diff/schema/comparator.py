"""Schema comparison: desired table definitions against the live schema.

The column, index and foreign-key comparisons are pure functions over
already-read structures.  ``SchemaComparator`` drives them table by table
using a schema reader, and returns the plan as ``TableCompareResult``
values.

Usage:
    from db_schema_diff.schema.comparator import SchemaComparator
    from db_schema_diff.schema.introspector import SchemaIntrospector
    from db_schema_diff.schema.merge import merge_projections

    desired = merge_projections(projector.project_all())

    with EngineConnection(database_url) as connection:
        reader = SchemaIntrospector(connection)
        diff = SchemaComparator().plan(desired, reader)

    print(diff.format_report())
"""

import logging
from collections.abc import Iterable, Mapping
from typing import Protocol

from db_schema_diff.exceptions import EmptyTableDefinitionError, IntrospectionError
from db_schema_diff.schema.merge import merge_projections
from db_schema_diff.schema.models import (
    ActualColumn,
    ActualForeignKey,
    ActualIndex,
    ColumnDescriptor,
    EntityDescriptor,
    ForeignKeyDefinition,
    IndexDefinition,
    TableColumns,
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
    default_matches,
)

logger = logging.getLogger(__name__)


class SchemaReader(Protocol):
    """Read side of the schema introspector used by the comparator."""

    def get_tables(self) -> set[str]:
        ...

    def read_table(self, table_name: str, tables: set[str] | None = None) -> TableColumns:
        ...

    def get_table_indexes(self, table_name: str) -> dict[str, ActualIndex]:
        ...

    def get_table_foreign_keys(self, table_name: str) -> dict[str, ActualForeignKey]:
        ...


# ============================================================================
# Pure comparisons
# ============================================================================


def column_matches(desired: ColumnDescriptor, actual: ActualColumn) -> bool:
    """True if type, nullability, default and length all agree."""
    return (
        desired.type == actual.type
        and desired.nullable == actual.nullable
        and default_matches(desired, actual)
        and desired.length == actual.length
    )


def compare_columns(
    desired: Mapping[str, ColumnDescriptor],
    actual: Iterable[ActualColumn],
) -> list[ColumnCompareResult]:
    """Diff columns matched by exact (case-sensitive) name.

    Returns creates (desired order), then updates (desired order), then
    deletes (actual order).  Columns that match on type, nullability,
    default and length are left out.

    Examples:
        >>> desired = {"email": ColumnDescriptor(name="email", type="string", length=255)}
        >>> actual = [ActualColumn(name="email", type="string", length=255, nullable=True)]
        >>> [(r.name, r.operation.value) for r in compare_columns(desired, actual)]
        [('email', 'update')]
    """
    actual_by_name: dict[str, ActualColumn] = {col.name: col for col in actual}

    creates: list[ColumnCompareResult] = []
    updates: list[ColumnCompareResult] = []
    for name, column in desired.items():
        existing = actual_by_name.get(name)
        if existing is None:
            creates.append(
                ColumnCompareResult(name=name, operation=Operation.CREATE, desired=column)
            )
            continue

        if not column_matches(column, existing):
            updates.append(
                ColumnCompareResult(
                    name=name, operation=Operation.UPDATE, desired=column, actual=existing
                )
            )

    deletes = [
        ColumnCompareResult(name=name, operation=Operation.DELETE, actual=column)
        for name, column in actual_by_name.items()
        if name not in desired
    ]

    return creates + updates + deletes


def should_skip_index_deletion(
    index: ActualIndex,
    primary_key_columns: list[str],
    foreign_keys: Mapping[str, ActualForeignKey],
) -> bool:
    """True for database-managed indexes that no entity declares.

    Indexes exactly covering the primary key, and single-column indexes on
    a foreign-key column (MySQL creates those implicitly), are kept.
    """
    columns = [col.lower() for col in index.columns]
    if not columns:
        return False
    if index.name.lower() == "primary":
        return True

    if primary_key_columns and columns == [col.lower() for col in primary_key_columns]:
        return True

    fk_columns = {fk.column.lower() for fk in foreign_keys.values()}
    return len(columns) == 1 and columns[0] in fk_columns


def compare_indexes(
    desired: Mapping[str, IndexDefinition],
    actual: Mapping[str, ActualIndex],
    primary_key_columns: list[str] | None = None,
    actual_foreign_keys: Mapping[str, ActualForeignKey] | None = None,
) -> list[IndexCompareResult]:
    """Diff indexes matched by resolved name.

    A changed index (column list, order-sensitive, or uniqueness) becomes a
    delete immediately followed by a create.
    """
    results: list[IndexCompareResult] = []

    for name, index in desired.items():
        existing = actual.get(name)
        if existing is not None:
            if existing.columns == index.columns and existing.unique == index.unique:
                continue
            results.append(
                IndexCompareResult(
                    name=name,
                    operation=Operation.DELETE,
                    columns=existing.columns,
                    unique=existing.unique,
                )
            )
        results.append(
            IndexCompareResult(
                name=name,
                operation=Operation.CREATE,
                columns=index.columns,
                unique=index.unique,
                concurrent=index.concurrent,
            )
        )

    for name, existing in actual.items():
        if name in desired:
            continue
        if should_skip_index_deletion(
            existing, primary_key_columns or [], actual_foreign_keys or {}
        ):
            logger.debug(f"Keeping database-managed index '{name}'")
            continue
        results.append(
            IndexCompareResult(
                name=name,
                operation=Operation.DELETE,
                columns=existing.columns,
                unique=existing.unique,
            )
        )

    return results


def compare_foreign_keys(
    desired: Mapping[str, ForeignKeyDefinition],
    actual: Mapping[str, ActualForeignKey],
) -> list[ForeignKeyCompareResult]:
    """Diff foreign keys matched by resolved name.

    A changed foreign key (owning column, referenced table or referenced
    column) becomes a delete immediately followed by a create.
    """
    results: list[ForeignKeyCompareResult] = []

    for name, fk in desired.items():
        existing = actual.get(name)
        if existing is not None:
            if (
                existing.column == fk.column
                and existing.referenced_table == fk.referenced_table
                and existing.referenced_column == fk.referenced_column
            ):
                continue
            results.append(
                ForeignKeyCompareResult(
                    name=name,
                    operation=Operation.DELETE,
                    column=existing.column,
                    referenced_table=existing.referenced_table,
                    referenced_column=existing.referenced_column,
                )
            )
        results.append(
            ForeignKeyCompareResult(
                name=name,
                operation=Operation.CREATE,
                column=fk.column,
                referenced_table=fk.referenced_table,
                referenced_column=fk.referenced_column,
            )
        )

    for name, existing in actual.items():
        if name in desired:
            continue
        results.append(
            ForeignKeyCompareResult(
                name=name,
                operation=Operation.DELETE,
                column=existing.column,
                referenced_table=existing.referenced_table,
                referenced_column=existing.referenced_column,
            )
        )

    return results


def build_create_table(definition: TableDefinition) -> TableCompareResult:
    """Plan for a table that does not exist yet: everything is created.

    Raises:
        EmptyTableDefinitionError: If the definition has no columns.
    """
    if not definition.columns:
        raise EmptyTableDefinitionError(definition.name)

    return TableCompareResult(
        name=definition.name,
        operation=Operation.CREATE,
        columns=compare_columns(definition.columns, []),
        indexes=compare_indexes(definition.indexes, {}),
        foreign_keys=compare_foreign_keys(definition.foreign_keys, {}),
        primary_key_columns=list(definition.primary_key_columns),
    )


def build_update_table(
    definition: TableDefinition,
    columns: list[ActualColumn],
    indexes: Mapping[str, ActualIndex],
    foreign_keys: Mapping[str, ActualForeignKey],
) -> TableCompareResult:
    """Plan for an existing table; may have no children when nothing changed."""
    return TableCompareResult(
        name=definition.name,
        operation=Operation.UPDATE,
        columns=compare_columns(definition.columns, columns),
        indexes=compare_indexes(
            definition.indexes, indexes, definition.primary_key_columns, foreign_keys
        ),
        foreign_keys=compare_foreign_keys(definition.foreign_keys, foreign_keys),
        primary_key_columns=list(definition.primary_key_columns),
    )


# ============================================================================
# Comparator
# ============================================================================


class SchemaComparator:
    """Compares merged desired tables with the schema seen by a reader.

    Args:
        drop_unknown_tables: Propose ``delete`` for live tables that no
            entity maps to.  Off by default: other applications' tables
            commonly share the database.
        include_unchanged: Emit an empty ``update`` for tables without
            changes instead of leaving them out.
    """

    def __init__(
        self,
        drop_unknown_tables: bool = False,
        include_unchanged: bool = False,
    ) -> None:
        self.drop_unknown_tables = drop_unknown_tables
        self.include_unchanged = include_unchanged

    def compare(
        self,
        desired_tables: Mapping[str, TableDefinition],
        reader: SchemaReader,
    ) -> list[TableCompareResult]:
        """Ordered table results (see ``plan``)."""
        return self.plan(desired_tables, reader).tables

    def plan(
        self,
        desired_tables: Mapping[str, TableDefinition],
        reader: SchemaReader,
    ) -> SchemaDiff:
        """Build the full plan.

        Tables are visited in name order.  Existence comes from
        ``reader.get_tables()``, never from an empty column list.  A table
        whose columns, indexes or foreign keys cannot be read is skipped
        and listed in ``SchemaDiff.skipped_tables``.

        Raises:
            EmptyTableDefinitionError: If a table to create has no columns.
            IntrospectionError: If the table list itself cannot be read.
        """
        existing_tables = reader.get_tables()
        results: list[TableCompareResult] = []
        skipped: dict[str, str] = {}

        for table_name in sorted(desired_tables):
            definition = desired_tables[table_name]

            if table_name not in existing_tables:
                logger.debug(f"Table '{table_name}' missing, planning create")
                results.append(build_create_table(definition))
                continue

            table_columns = reader.read_table(table_name, existing_tables)
            if table_columns.error is not None:
                logger.warning(f"Skipping table '{table_name}': {table_columns.error}")
                skipped[table_name] = table_columns.error
                continue

            try:
                indexes = reader.get_table_indexes(table_name)
                foreign_keys = reader.get_table_foreign_keys(table_name)
            except IntrospectionError as e:
                logger.warning(f"Skipping table '{table_name}': {e}")
                skipped[table_name] = str(e)
                continue

            result = build_update_table(definition, table_columns.columns, indexes, foreign_keys)
            if result.has_changes or self.include_unchanged:
                results.append(result)
            else:
                logger.debug(f"Table '{table_name}' up to date")

        if self.drop_unknown_tables:
            for table_name in sorted(existing_tables - set(desired_tables)):
                results.append(TableCompareResult(name=table_name, operation=Operation.DELETE))

        diff = SchemaDiff(tables=results, skipped_tables=skipped)
        logger.info(
            f"Compared {len(desired_tables)} tables: {len(results)} with changes, "
            f"{len(skipped)} skipped"
        )
        return diff


def diff_entities(
    entities: Iterable[EntityDescriptor],
    reader: SchemaReader,
    drop_unknown_tables: bool = False,
    include_unchanged: bool = False,
) -> SchemaDiff:
    """Project, merge and compare in one call.

    Configuration errors from projection or merging are raised before the
    reader is touched.
    """
    projector = DescriptorProjector(entities)
    desired = merge_projections(projector.project_all())
    comparator = SchemaComparator(
        drop_unknown_tables=drop_unknown_tables,
        include_unchanged=include_unchanged,
    )
    return comparator.plan(desired, reader)
