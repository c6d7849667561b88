"""Compare results: the typed plan handed to a migration/DDL generator.

The field names and the ``Operation`` values (``create``, ``update``,
``delete``) are the stable contract.  ``model_dump(mode="json")`` gives a
wire-friendly form of any result.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator

from db_schema_diff.schema.models import ActualColumn, ColumnDescriptor, GeneratorKind


class Operation(str, Enum):
    """Structural change required for a table, column, index or foreign key."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


# Generators whose column default is the sequence the database attaches
_SEQUENCE_GENERATORS = (GeneratorKind.AUTO_INCREMENT, GeneratorKind.SEQUENCE)


def default_matches(desired: ColumnDescriptor, actual: ActualColumn) -> bool:
    """True if the defaults agree.

    None and "" are different defaults.  A generated key declares no
    default, so the ``nextval(...)`` default PostgreSQL attaches to it is
    ignored.
    """
    if (
        desired.default is None
        and desired.generator in _SEQUENCE_GENERATORS
        and actual.default is not None
        and actual.default.startswith("nextval(")
    ):
        return True
    return desired.default == actual.default


class CompareResult(BaseModel):
    """Base class of every compare result."""

    model_config = ConfigDict(frozen=True)

    name: str
    operation: Operation


# ============================================================================
# Child Results
# ============================================================================


class ColumnCompareResult(CompareResult):
    """Difference for one column.

    ``desired`` is absent for deletes and ``actual`` for creates.  An
    ``update`` must carry at least one mismatch.

    Example:
        >>> result = ColumnCompareResult(
        ...     name="email",
        ...     operation=Operation.UPDATE,
        ...     desired=ColumnDescriptor(name="email", type="string", length=255),
        ...     actual=ActualColumn(name="email", type="string", length=255, nullable=True),
        ... )
        >>> result.is_nullable_match
        False
    """

    desired: ColumnDescriptor | None = None
    actual: ActualColumn | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_type_match(self) -> bool:
        if self.desired is None or self.actual is None:
            return False
        return self.desired.type == self.actual.type

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_nullable_match(self) -> bool:
        if self.desired is None or self.actual is None:
            return False
        return self.desired.nullable == self.actual.nullable

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_default_match(self) -> bool:
        if self.desired is None or self.actual is None:
            return False
        return default_matches(self.desired, self.actual)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_length_match(self) -> bool:
        if self.desired is None or self.actual is None:
            return False
        return self.desired.length == self.actual.length

    @property
    def has_changes(self) -> bool:
        """True if any of the four compared attributes differ."""
        return not (
            self.is_type_match
            and self.is_nullable_match
            and self.is_default_match
            and self.is_length_match
        )

    @model_validator(mode="after")
    def _check_sides(self) -> "ColumnCompareResult":
        if self.operation == Operation.CREATE and self.desired is None:
            raise ValueError(f"Column '{self.name}': create requires a desired definition")
        if self.operation == Operation.DELETE and self.actual is None:
            raise ValueError(f"Column '{self.name}': delete requires an actual definition")
        if self.operation == Operation.UPDATE:
            if self.desired is None or self.actual is None:
                raise ValueError(f"Column '{self.name}': update requires both definitions")
            if not self.has_changes:
                raise ValueError(f"Column '{self.name}': update without any mismatch")
        return self


class IndexCompareResult(CompareResult):
    """Index to create or drop.  Indexes are never altered in place."""

    columns: list[str] = Field(default_factory=list)
    unique: bool = False
    concurrent: bool = False

    @model_validator(mode="after")
    def _check_operation(self) -> "IndexCompareResult":
        if self.operation == Operation.UPDATE:
            raise ValueError(f"Index '{self.name}': indexes are recreated, not updated")
        return self


class ForeignKeyCompareResult(CompareResult):
    """Foreign key to create or drop.  Foreign keys are never altered in place."""

    column: str
    referenced_table: str
    referenced_column: str = "id"

    @model_validator(mode="after")
    def _check_operation(self) -> "ForeignKeyCompareResult":
        if self.operation == Operation.UPDATE:
            raise ValueError(f"Foreign key '{self.name}': foreign keys are recreated, not updated")
        return self


# ============================================================================
# Table Result
# ============================================================================


class TableCompareResult(CompareResult):
    """All changes for one table.

    A ``create`` table only holds ``create`` children.  An ``update`` with
    no children is a no-op and only appears when the comparator runs with
    ``include_unchanged=True``.
    """

    columns: list[ColumnCompareResult] = Field(default_factory=list)
    indexes: list[IndexCompareResult] = Field(default_factory=list)
    foreign_keys: list[ForeignKeyCompareResult] = Field(default_factory=list)
    primary_key_columns: list[str] = Field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        if self.operation != Operation.UPDATE:
            return True
        return bool(self.columns or self.indexes or self.foreign_keys)

    @model_validator(mode="after")
    def _check_children(self) -> "TableCompareResult":
        if self.operation == Operation.CREATE:
            children: list[CompareResult] = [*self.columns, *self.indexes, *self.foreign_keys]
            for child in children:
                if child.operation != Operation.CREATE:
                    raise ValueError(
                        f"Table '{self.name}': new table contains "
                        f"{child.operation.value} for '{child.name}'"
                    )
        return self


class SchemaDiff(BaseModel):
    """Full comparator output.

    Example:
        >>> diff = SchemaDiff()
        >>> diff.has_changes
        False
        >>> diff.format_report()
        'Schema up to date'
    """

    tables: list[TableCompareResult] = Field(default_factory=list)
    skipped_tables: dict[str, str] = Field(default_factory=dict)  # table -> reason

    @property
    def has_changes(self) -> bool:
        return any(table.has_changes for table in self.tables)

    @property
    def change_count(self) -> int:
        """Number of changed objects (tables without children count once)."""
        count = 0
        for table in self.tables:
            children = len(table.columns) + len(table.indexes) + len(table.foreign_keys)
            if table.operation == Operation.DELETE:
                count += 1
            else:
                count += children
        return count

    def format_report(self) -> str:
        """Format the plan as a human-readable report."""
        if not self.has_changes and not self.skipped_tables:
            return "Schema up to date"

        lines = ["Schema changes:"]

        for table in self.tables:
            if not table.has_changes:
                continue
            lines.append(f"\n  {table.operation.value} table {table.name}")
            for column in table.columns:
                lines.append(f"    - {column.operation.value} column {column.name}")
            for index in table.indexes:
                lines.append(
                    f"    - {index.operation.value} index {index.name} "
                    f"({', '.join(index.columns)})"
                )
            for fk in table.foreign_keys:
                lines.append(
                    f"    - {fk.operation.value} foreign key {fk.name} "
                    f"({fk.column} -> {fk.referenced_table}.{fk.referenced_column})"
                )

        if self.skipped_tables:
            lines.append(f"\n  Skipped tables ({len(self.skipped_tables)}):")
            for table_name, reason in self.skipped_tables.items():
                lines.append(f"    - {table_name}: {reason}")

        return "\n".join(lines)
