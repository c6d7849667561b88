"""Merge entity projections that share a physical table.

Pure logic: no I/O.  Projections for one table are unioned into a single
``TableDefinition``; any disagreement between them is a configuration
error rather than something resolved by precedence.

Usage:
    from db_schema_diff.schema.merge import merge_projections

    desired = merge_projections(projector.project_all())
    # {"users": TableDefinition(...), "roles_users": TableDefinition(...)}
"""

import logging
from collections.abc import Iterable

from db_schema_diff.exceptions import ColumnConflictError, NameCollisionError
from db_schema_diff.schema.models import (
    ColumnDescriptor,
    EntityProjection,
    ForeignKeyDefinition,
    GeneratorKind,
    IndexDefinition,
    TableDefinition,
)

logger = logging.getLogger(__name__)

# Type used for soft-delete marker columns that are not declared explicitly
SOFT_DELETE_COLUMN_TYPE = "datetime"


def merge_column(
    existing: ColumnDescriptor,
    incoming: ColumnDescriptor,
    table_name: str,
) -> ColumnDescriptor:
    """Merge two definitions of the same column.

    A relation join column cannot also be a plain column, and two join
    columns must reference the same table and column.  Type, length,
    nullability and default must agree.  Generator, sequence, primary-key
    flag and relation target come from the first definition that sets them.

    Raises:
        ColumnConflictError: If the definitions disagree.
    """
    if existing.relation != incoming.relation:
        raise ColumnConflictError(
            table_name,
            existing.name,
            "relation and scalar definitions",
            {"relation": existing.references if existing.relation else incoming.references},
        )
    if (
        existing.references is not None
        and incoming.references is not None
        and existing.references != incoming.references
    ):
        raise ColumnConflictError(
            table_name,
            existing.name,
            "relation points to different targets",
            {"existing": existing.references, "incoming": incoming.references},
        )

    for attribute in ("type", "length", "nullable", "default"):
        existing_value = getattr(existing, attribute)
        incoming_value = getattr(incoming, attribute)
        if existing_value != incoming_value:
            raise ColumnConflictError(
                table_name,
                existing.name,
                f"{attribute} mismatch",
                {"existing": existing_value, "incoming": incoming_value},
            )

    generator = existing.generator
    if generator == GeneratorKind.NONE:
        generator = incoming.generator

    return existing.model_copy(
        update={
            "generator": generator,
            "sequence": existing.sequence or incoming.sequence,
            "primary_key": existing.primary_key or incoming.primary_key,
            "references": existing.references or incoming.references,
        }
    )


def _check_foreign_key_targets(
    table_name: str,
    foreign_keys: dict[str, ForeignKeyDefinition],
) -> None:
    # One owning column references exactly one table and column
    targets: dict[str, str] = {}
    for fk in foreign_keys.values():
        target = f"{fk.referenced_table}.{fk.referenced_column}"
        current = targets.setdefault(fk.column, target)
        if current != target:
            raise ColumnConflictError(
                table_name,
                fk.column,
                "foreign keys point to different targets",
                {"existing": current, "incoming": target},
            )


def _soft_delete_column(column_name: str) -> ColumnDescriptor:
    return ColumnDescriptor(name=column_name, type=SOFT_DELETE_COLUMN_TYPE, nullable=True)


def _projection_columns(projection: EntityProjection) -> list[ColumnDescriptor]:
    columns = list(projection.columns)
    if projection.soft_delete is not None:
        declared = {col.name for col in columns}
        if projection.soft_delete.column_name not in declared:
            columns.append(_soft_delete_column(projection.soft_delete.column_name))
    return columns


def merge_table(table_name: str, projections: list[EntityProjection]) -> TableDefinition:
    """Merge all projections that target ``table_name``.

    Raises:
        ColumnConflictError: Conflicting column definitions, or one column
            with foreign keys to different targets.
        NameCollisionError: One index or foreign-key name used for two
            different definitions.
    """
    columns: dict[str, ColumnDescriptor] = {}
    indexes: dict[str, IndexDefinition] = {}
    foreign_keys: dict[str, ForeignKeyDefinition] = {}
    primary_key_columns: list[str] = []
    sources: list[str] = []

    for projection in projections:
        if projection.source and projection.source not in sources:
            sources.append(projection.source)

        for column in _projection_columns(projection):
            if column.name in columns:
                columns[column.name] = merge_column(columns[column.name], column, table_name)
            else:
                columns[column.name] = column

        for index in projection.indexes:
            definition = IndexDefinition(
                name=index.resolved_name,
                columns=list(index.columns),
                unique=index.unique,
                concurrent=index.concurrent,
            )
            current = indexes.get(definition.name)
            if current is None:
                indexes[definition.name] = definition
            elif current.columns != definition.columns or current.unique != definition.unique:
                raise NameCollisionError(table_name, "index", definition.name)

        for fk in projection.foreign_keys:
            definition = ForeignKeyDefinition(
                name=fk.resolved_name(table_name),
                column=fk.column,
                referenced_table=fk.referenced_table,
                referenced_column=fk.referenced_column,
            )
            current = foreign_keys.get(definition.name)
            if current is None:
                foreign_keys[definition.name] = definition
            elif current != definition:
                raise NameCollisionError(table_name, "foreign key", definition.name)

        for column_name in projection.primary_key_columns:
            if column_name not in primary_key_columns:
                primary_key_columns.append(column_name)

    _check_foreign_key_targets(table_name, foreign_keys)

    if len(projections) > 1:
        logger.debug(
            f"Merged {len(projections)} projections into table '{table_name}' "
            f"({len(columns)} columns)"
        )

    return TableDefinition(
        name=table_name,
        columns=columns,
        indexes=indexes,
        foreign_keys=foreign_keys,
        primary_key_columns=primary_key_columns,
        sources=sources,
    )


def merge_projections(projections: Iterable[EntityProjection]) -> dict[str, TableDefinition]:
    """Group projections by table name and merge each group.

    Returns:
        Dict mapping table name to its merged ``TableDefinition``, in order
        of first appearance.

    Examples:
        >>> users = EntityProjection(
        ...     table_name="users",
        ...     columns=[ColumnDescriptor(name="id", type="int", primary_key=True)],
        ...     primary_key_columns=["id"],
        ... )
        >>> list(merge_projections([users]))
        ['users']
    """
    grouped: dict[str, list[EntityProjection]] = {}
    for projection in projections:
        grouped.setdefault(projection.table_name, []).append(projection)

    return {
        table_name: merge_table(table_name, group)
        for table_name, group in grouped.items()
    }
