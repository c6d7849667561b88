"""Pydantic models describing the desired and the actual schema.

This module contains schema-domain models:
- Entity metadata (input of the projection step): EntityDescriptor,
  RelationDescriptor
- Desired schema: ColumnDescriptor, IndexDescriptor, ForeignKeyDescriptor,
  SoftDeleteDescriptor, EntityProjection, and the merged TableDefinition
- Actual schema: ActualColumn, ActualIndex, ActualForeignKey, TableColumns

Compare results (the comparator output) live in
db_schema_diff.schema.results.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from db_schema_diff.schema.naming import foreign_key_name, index_name


class GeneratorKind(str, Enum):
    """How a column value is generated on insert."""

    NONE = "none"
    AUTO_INCREMENT = "auto_increment"
    UUID = "uuid"
    ULID = "ulid"
    SEQUENCE = "sequence"


class RelationKind(str, Enum):
    """Relation cardinality between two entities."""

    MANY_TO_ONE = "many_to_one"
    ONE_TO_ONE = "one_to_one"
    ONE_TO_MANY = "one_to_many"
    MANY_TO_MANY = "many_to_many"
    MORPH_TO = "morph_to"
    MORPH_ONE = "morph_one"
    MORPH_MANY = "morph_many"
    MORPH_TO_MANY = "morph_to_many"


class TableState(str, Enum):
    """What the schema reader knows about a table."""

    PRESENT_WITH_COLUMNS = "present_with_columns"
    PRESENT_EMPTY = "present_empty"
    ABSENT = "absent"


# ============================================================================
# Desired Schema Models
# ============================================================================


class ColumnDescriptor(BaseModel):
    """Desired definition of one column.

    Example:
        >>> col = ColumnDescriptor(name="email", type="string", length=255)
        >>> col.nullable
        False
    """

    model_config = ConfigDict(frozen=True)

    name: str
    type: str
    nullable: bool = False
    default: str | None = None
    length: int | None = None
    generator: GeneratorKind = GeneratorKind.NONE
    sequence: str | None = None
    primary_key: bool = False
    relation: bool = False  # Join column of a relation
    references: str | None = None  # "<table>.<column>" the join column points to


class IndexDescriptor(BaseModel):
    """Index declared on an entity."""

    model_config = ConfigDict(frozen=True)

    columns: list[str]
    unique: bool = False
    name: str | None = None  # Explicit name; generated from columns otherwise
    concurrent: bool = False

    @property
    def resolved_name(self) -> str:
        return index_name(self.columns, self.name)


class ForeignKeyDescriptor(BaseModel):
    """Foreign key owned by an entity column."""

    model_config = ConfigDict(frozen=True)

    column: str
    referenced_table: str
    referenced_column: str = "id"

    def resolved_name(self, table_name: str) -> str:
        return foreign_key_name(table_name, self.referenced_table, self.column)


class SoftDeleteDescriptor(BaseModel):
    """Soft-delete marker column of an entity."""

    model_config = ConfigDict(frozen=True)

    column_name: str = "deleted_at"


class EntityProjection(BaseModel):
    """Desired schema contributed by one entity (or one mapping table).

    Several projections may target the same table; they are merged by
    ``merge_projections`` before diffing.
    """

    model_config = ConfigDict(frozen=True)

    table_name: str
    columns: list[ColumnDescriptor] = Field(default_factory=list)
    primary_key_columns: list[str] = Field(default_factory=list)
    indexes: list[IndexDescriptor] = Field(default_factory=list)
    foreign_keys: list[ForeignKeyDescriptor] = Field(default_factory=list)
    soft_delete: SoftDeleteDescriptor | None = None
    source: str = ""  # Entity name, used in error messages


class IndexDefinition(BaseModel):
    """Index in a merged table definition, keyed by its resolved name."""

    model_config = ConfigDict(frozen=True)

    name: str
    columns: list[str]
    unique: bool = False
    concurrent: bool = False


class ForeignKeyDefinition(BaseModel):
    """Foreign key in a merged table definition, keyed by its resolved name."""

    model_config = ConfigDict(frozen=True)

    name: str
    column: str
    referenced_table: str
    referenced_column: str = "id"


class TableDefinition(BaseModel):
    """Merged desired schema for one physical table."""

    model_config = ConfigDict(frozen=True)

    name: str
    columns: dict[str, ColumnDescriptor] = Field(default_factory=dict)
    indexes: dict[str, IndexDefinition] = Field(default_factory=dict)
    foreign_keys: dict[str, ForeignKeyDefinition] = Field(default_factory=dict)
    primary_key_columns: list[str] = Field(default_factory=list)
    sources: list[str] = Field(default_factory=list)


# ============================================================================
# Entity Metadata Models
# ============================================================================


class RelationDescriptor(BaseModel):
    """Resolved relation property of an entity.

    ``target`` is the name of the target entity; only ``morph_to`` has
    none.  ``column_name`` defaults to ``relation_column_name(property_name)``
    for owning relations and ``referenced_column`` to the first primary-key
    column of the target (``"id"`` if it declares none).

    Many-to-many: ``mapping_table`` defaults to
    ``mapping_table_name(owner, target)``; ``column_name`` and
    ``target_column_name`` are the two join columns of the mapping table,
    defaulting to ``relation_column_name`` of each entity name;
    ``mapping_columns`` are extra columns of the mapping table.

    Inverse sides name the owning property with ``mapped_by``; owning sides
    may name the inverse property with ``inversed_by``.  A relation with
    ``mapped_by`` is never the owning side.

    Polymorphic: ``morph_to`` adds ``<property>_type`` (or
    ``type_column_name``) and ``<property>_id`` (or ``column_name``).
    ``morph_to_many`` owns the ``<morph_name>s`` mapping table with
    ``<morph_name>_type``, ``<morph_name>_id`` and the target join column.
    """

    model_config = ConfigDict(frozen=True)

    property_name: str
    kind: RelationKind
    target: str | None = None
    column_name: str | None = None
    referenced_column: str | None = None
    nullable: bool = True
    foreign_key: bool = True
    owning_side: bool = True
    mapped_by: str | None = None
    inversed_by: str | None = None
    mapping_table: str | None = None
    target_column_name: str | None = None  # Many-to-many join column of the target
    mapping_columns: list[ColumnDescriptor] = Field(default_factory=list)
    morph_name: str | None = None
    type_column_name: str | None = None

    @property
    def is_owning_side(self) -> bool:
        return self.owning_side and self.mapped_by is None


class EntityDescriptor(BaseModel):
    """Entity metadata as produced by the metadata resolver.

    Example:
        >>> entity = EntityDescriptor(
        ...     name="User",
        ...     table_name="users",
        ...     columns=[ColumnDescriptor(name="id", type="int", primary_key=True)],
        ... )
        >>> entity.primary_key_columns
        ['id']
    """

    model_config = ConfigDict(frozen=True)

    name: str
    table_name: str
    is_entity: bool = True
    columns: list[ColumnDescriptor] = Field(default_factory=list)
    indexes: list[IndexDescriptor] = Field(default_factory=list)
    relations: list[RelationDescriptor] = Field(default_factory=list)
    soft_delete: SoftDeleteDescriptor | None = None

    @property
    def primary_key_columns(self) -> list[str]:
        return [col.name for col in self.columns if col.primary_key]


# ============================================================================
# Actual Schema Models
# ============================================================================


class ActualColumn(BaseModel):
    """Column as read from the live database, with a normalized type.

    Example:
        >>> col = ActualColumn(name="email", type="string", length=255)
        >>> col.nullable
        True
    """

    model_config = ConfigDict(frozen=True)

    name: str
    type: str
    nullable: bool = True
    default: str | None = None
    length: int | None = None


class ActualIndex(BaseModel):
    """Index as read from the live database."""

    model_config = ConfigDict(frozen=True)

    name: str
    columns: list[str] = Field(default_factory=list)
    unique: bool = False


class ActualForeignKey(BaseModel):
    """Foreign key constraint as read from the live database."""

    model_config = ConfigDict(frozen=True)

    name: str
    column: str
    referenced_table: str
    referenced_column: str = "id"


class TableColumns(BaseModel):
    """Tri-state column read for one table.

    ``error`` is set when the table exists but its column query failed;
    callers must not treat that as an empty table.
    """

    model_config = ConfigDict(frozen=True)

    table: str
    state: TableState
    columns: list[ActualColumn] = Field(default_factory=list)
    error: str | None = None

    @property
    def exists(self) -> bool:
        return self.state != TableState.ABSENT
