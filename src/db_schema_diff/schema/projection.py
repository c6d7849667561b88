"""Project resolved entity metadata onto the desired relational schema.

The metadata resolver (outside this package) turns declarative entity
classes into ``EntityDescriptor`` values.  This module turns those
descriptors into ``EntityProjection`` values: one per entity plus one per
many-to-many and morph-to-many mapping table.  Relations are validated
here, before any diffing starts.

Usage:
    from db_schema_diff.schema.projection import DescriptorProjector

    projector = DescriptorProjector(entities)
    projections = projector.project_all()
"""

from collections.abc import Iterable
from typing import Protocol

from db_schema_diff.exceptions import (
    ColumnConflictError,
    NonEntityRelationError,
    SchemaConfigurationError,
)
from db_schema_diff.schema.models import (
    ColumnDescriptor,
    EntityDescriptor,
    EntityProjection,
    ForeignKeyDescriptor,
    GeneratorKind,
    IndexDescriptor,
    RelationDescriptor,
    RelationKind,
)
from db_schema_diff.schema.naming import mapping_table_name, relation_column_name, snake_case

# Column type used for join columns when the referenced column is not declared
DEFAULT_KEY_TYPE = "int"

# Morph type columns hold entity type names
MORPH_TYPE_LENGTH = 255

_COLUMN_OWNING_KINDS = (RelationKind.MANY_TO_ONE, RelationKind.ONE_TO_ONE)
_MAPPING_KINDS = (RelationKind.MANY_TO_MANY, RelationKind.MORPH_TO_MANY)

_LABELS = {
    RelationKind.MANY_TO_ONE: "Many-to-one inverse side",
    RelationKind.ONE_TO_ONE: "One-to-one inverse side",
    RelationKind.ONE_TO_MANY: "One-to-many inverse side",
    RelationKind.MANY_TO_MANY: "Many-to-many",
    RelationKind.MORPH_TO: "Morph-to",
    RelationKind.MORPH_ONE: "Polymorphic relation inverse side",
    RelationKind.MORPH_MANY: "Polymorphic relation inverse side",
    RelationKind.MORPH_TO_MANY: "Morph-to-many",
}


class SchemaProjector(Protocol):
    """Interface consumed by the comparator tooling."""

    def for_entity(self, entity: EntityDescriptor) -> EntityProjection:
        ...


def merge_mapping_columns(
    existing: dict[str, ColumnDescriptor],
    incoming: Iterable[ColumnDescriptor],
    table_name: str,
) -> dict[str, ColumnDescriptor]:
    """Merge extra mapping-table columns declared by several relations.

    Type, length and default must agree; the merged column is nullable if
    any declaration is.

    Raises:
        SchemaConfigurationError: If two declarations disagree.
    """
    merged = dict(existing)
    for column in incoming:
        current = merged.get(column.name)
        if current is None:
            merged[column.name] = column
            continue
        if (current.type, current.length, current.default) != (
            column.type,
            column.length,
            column.default,
        ):
            raise SchemaConfigurationError(
                f"Many-to-many misconfigured: mapping table '{table_name}' "
                f"column '{column.name}' conflicts between relations",
                {"table": table_name, "column": column.name},
            )
        if column.nullable and not current.nullable:
            merged[column.name] = current.model_copy(update={"nullable": True})
    return merged


class DescriptorProjector:
    """Builds projections from a registry of entity descriptors.

    Args:
        entities: Every descriptor known to the resolver, entities and
            non-entities alike.  Relation targets are looked up by name.
    """

    def __init__(self, entities: Iterable[EntityDescriptor]) -> None:
        self._entities: dict[str, EntityDescriptor] = {}
        for entity in entities:
            self._entities[entity.name] = entity

    @property
    def entities(self) -> list[EntityDescriptor]:
        return list(self._entities.values())

    def for_entity(self, entity: EntityDescriptor) -> EntityProjection:
        """Desired schema of one entity's own table.

        Owning many-to-one and one-to-one relations add a join column and a
        foreign key.  Morph-to relations add a type column, an id column
        and a ``<property>_morph_index`` index.  Inverse, many-to-many and
        morph-to-many relations add nothing here.

        Raises:
            SchemaConfigurationError: If ``entity`` is not an entity, or a
                relation is misconfigured.
            NonEntityRelationError: If a relation targets a non-entity.
            ColumnConflictError: If a declared column clashes with a
                morph-to column.
        """
        if not entity.is_entity:
            raise SchemaConfigurationError(
                f"'{entity.name}' is not an entity", {"table": entity.table_name}
            )

        columns = list(entity.columns)
        positions = {col.name: i for i, col in enumerate(columns)}
        indexes = list(entity.indexes)
        foreign_keys: list[ForeignKeyDescriptor] = []

        for relation in entity.relations:
            if relation.kind == RelationKind.MORPH_TO:
                indexes.append(self._add_morph_columns(entity, relation, columns, positions))
                continue

            target = self._resolve_target(entity, relation)
            if relation.kind not in _COLUMN_OWNING_KINDS or not relation.is_owning_side:
                continue

            referenced_column = relation.referenced_column or _primary_column(target)
            column_name = relation.column_name or relation_column_name(relation.property_name)
            join = self._join_column(column_name, target, referenced_column, relation.nullable)
            if column_name in positions:
                # Declared explicitly: keep the declaration, mark it as a join column
                position = positions[column_name]
                columns[position] = columns[position].model_copy(
                    update={"relation": True, "references": join.references}
                )
            else:
                positions[column_name] = len(columns)
                columns.append(join)

            if relation.foreign_key:
                foreign_keys.append(
                    ForeignKeyDescriptor(
                        column=column_name,
                        referenced_table=target.table_name,
                        referenced_column=referenced_column,
                    )
                )

        return EntityProjection(
            table_name=entity.table_name,
            columns=columns,
            primary_key_columns=entity.primary_key_columns,
            indexes=indexes,
            foreign_keys=foreign_keys,
            soft_delete=entity.soft_delete,
            source=entity.name,
        )

    def mapping_tables(self) -> list[EntityProjection]:
        """Projections for the join tables of owning many-to-many and
        morph-to-many relations.

        Both sides may declare themselves owner; the definitions must then
        describe the same join columns.  Extra mapping columns of all
        relations sharing a table are merged.

        Raises:
            NonEntityRelationError: If a relation targets a non-entity.
            SchemaConfigurationError: If two relations describe one mapping
                table differently, a self-referencing relation has no
                distinct target join column, or a relation is misconfigured.
        """
        definitions: dict[str, EntityProjection] = {}
        morph_names: dict[str, str | None] = {}
        extra_columns: dict[str, dict[str, ColumnDescriptor]] = {}

        for entity in self._entities.values():
            if not entity.is_entity:
                continue
            for relation in entity.relations:
                if relation.kind not in _MAPPING_KINDS:
                    continue
                target = self._resolve_target(entity, relation)
                if not relation.is_owning_side:
                    continue

                if relation.kind == RelationKind.MANY_TO_MANY:
                    projection = self._mapping_projection(entity, target, relation)
                else:
                    projection = self._morph_mapping_projection(entity, target, relation)
                table_name = projection.table_name
                label = _LABELS[relation.kind]

                existing = definitions.get(table_name)
                if existing is None:
                    definitions[table_name] = projection
                    morph_names[table_name] = relation.morph_name
                    extra_columns[table_name] = {}
                elif morph_names[table_name] != relation.morph_name:
                    raise SchemaConfigurationError(
                        f"{label} misconfigured: conflicting morph names for "
                        f"table '{table_name}'",
                        {"first": existing.source, "second": projection.source},
                    )
                elif (
                    existing.columns != projection.columns
                    or existing.foreign_keys != projection.foreign_keys
                ):
                    raise SchemaConfigurationError(
                        f"{label} misconfigured: conflicting mapping table "
                        f"definition for '{table_name}'",
                        {"first": existing.source, "second": projection.source},
                    )

                extra_columns[table_name] = merge_mapping_columns(
                    extra_columns[table_name], relation.mapping_columns, table_name
                )

        projections: list[EntityProjection] = []
        for table_name, projection in definitions.items():
            join_names = {col.name for col in projection.columns}
            for name in extra_columns[table_name]:
                if name in join_names:
                    raise SchemaConfigurationError(
                        f"Mapping table '{table_name}': extra column '{name}' "
                        f"clashes with a join column",
                        {"table": table_name, "column": name},
                    )
            projections.append(
                projection.model_copy(
                    update={
                        "columns": projection.columns + list(extra_columns[table_name].values())
                    }
                )
            )
        return projections

    def project_all(self) -> list[EntityProjection]:
        """Projections for every entity (non-entities skipped), then mapping tables."""
        projections = [
            self.for_entity(entity)
            for entity in self._entities.values()
            if entity.is_entity
        ]
        return projections + self.mapping_tables()

    # ------------------------------------------------------------------
    # Relation validation
    # ------------------------------------------------------------------

    def _resolve_target(
        self,
        entity: EntityDescriptor,
        relation: RelationDescriptor,
    ) -> EntityDescriptor:
        if relation.target is None:
            raise SchemaConfigurationError(
                "Target entity is misconfigured",
                {"relation": f"{entity.name}.{relation.property_name}"},
            )
        target = self._entities.get(relation.target)
        if target is None or not target.is_entity:
            raise NonEntityRelationError(entity.name, relation.property_name, relation.target)
        self._validate_relation(entity, relation, target)
        return target

    def _validate_relation(
        self,
        entity: EntityDescriptor,
        relation: RelationDescriptor,
        target: EntityDescriptor,
    ) -> None:
        """Check that the two sides of a bidirectional relation agree."""
        kind = relation.kind

        if kind == RelationKind.MANY_TO_ONE and relation.inversed_by:
            inverse = _find_relation(target, relation.inversed_by)
            if inverse is None:
                raise _misconfigured(entity, relation, "property not found")
            if inverse.kind == RelationKind.MANY_TO_ONE:
                raise _misconfigured(entity, relation, "inverse side marked as owner")
            if inverse.kind != RelationKind.ONE_TO_MANY:
                raise _misconfigured(entity, relation, "attribute missing")
            if inverse.mapped_by != relation.property_name:
                raise _misconfigured(
                    entity, relation, "mapped_by does not reference owning property"
                )
            if inverse.target != entity.name:
                raise _misconfigured(entity, relation, "target entity mismatch")

        elif kind == RelationKind.ONE_TO_MANY:
            if not relation.mapped_by:
                raise _misconfigured(entity, relation, "mapped_by is required")
            owning = _find_relation(target, relation.mapped_by)
            if owning is None:
                raise _misconfigured(entity, relation, "owning property not found")
            if owning.kind != RelationKind.MANY_TO_ONE:
                raise _misconfigured(entity, relation, "owning property not many-to-one")
            if owning.target != entity.name:
                raise _misconfigured(entity, relation, "target entity mismatch")
            if owning.inversed_by and owning.inversed_by != relation.property_name:
                raise _misconfigured(
                    entity, relation, "inversed_by does not reference inverse property"
                )

        elif kind == RelationKind.ONE_TO_ONE and relation.is_owning_side and relation.inversed_by:
            inverse = _find_relation(target, relation.inversed_by)
            if inverse is None:
                raise _misconfigured(entity, relation, "property not found")
            if inverse.kind != RelationKind.ONE_TO_ONE:
                raise _misconfigured(entity, relation, "attribute missing")
            if inverse.mapped_by is None:
                raise _misconfigured(entity, relation, "mapped_by is required on inverse side")
            if inverse.mapped_by != relation.property_name:
                raise _misconfigured(
                    entity, relation, "mapped_by does not reference owning property"
                )

        elif kind == RelationKind.MANY_TO_MANY:
            self._validate_many_to_many(entity, relation, target)

        elif kind in (RelationKind.MORPH_ONE, RelationKind.MORPH_MANY):
            if not relation.mapped_by:
                raise _misconfigured(entity, relation, "mapped_by is required")
            owning = _find_relation(target, relation.mapped_by)
            if owning is None:
                raise _misconfigured(entity, relation, "property not found")
            if owning.kind != RelationKind.MORPH_TO:
                raise _misconfigured(entity, relation, "morph-to relation not found")

    def _validate_many_to_many(
        self,
        entity: EntityDescriptor,
        relation: RelationDescriptor,
        target: EntityDescriptor,
    ) -> None:
        if relation.mapped_by and relation.inversed_by:
            raise _misconfigured(
                entity, relation, "mapped_by and inversed_by cannot be both defined"
            )
        if not relation.is_owning_side and relation.mapping_columns:
            raise _misconfigured(
                entity, relation, "inverse side cannot define extra mapping columns"
            )

        if relation.is_owning_side:
            if not relation.inversed_by:
                return
            other = _find_relation(target, relation.inversed_by)
            if other is None:
                raise _misconfigured(entity, relation, "inverse side property not found")
            if other.kind != RelationKind.MANY_TO_MANY:
                raise _misconfigured(entity, relation, "inverse side attribute missing")
            if other.mapped_by != relation.property_name:
                raise _misconfigured(
                    entity, relation, "inverse side mapped_by does not reference owning property"
                )
        else:
            if not relation.mapped_by:
                return
            other = _find_relation(target, relation.mapped_by)
            if other is None:
                raise _misconfigured(entity, relation, "owning property not found")
            if other.kind != RelationKind.MANY_TO_MANY:
                raise _misconfigured(entity, relation, "owning property attribute missing")
            if other.mapped_by is not None:
                raise _misconfigured(entity, relation, "owning property cannot declare mapped_by")
            if other.inversed_by and other.inversed_by != relation.property_name:
                raise _misconfigured(
                    entity, relation, "inversed_by does not reference inverse property"
                )

        if (
            relation.mapping_table
            and other.mapping_table
            and relation.mapping_table != other.mapping_table
        ):
            raise _misconfigured(entity, relation, "mapping table name mismatch")

    # ------------------------------------------------------------------
    # Column and table builders
    # ------------------------------------------------------------------

    def _join_column(
        self,
        column_name: str,
        target: EntityDescriptor,
        referenced_column: str,
        nullable: bool,
    ) -> ColumnDescriptor:
        # Join column mirrors the referenced key's type
        referenced = next(
            (col for col in target.columns if col.name == referenced_column),
            None,
        )
        return ColumnDescriptor(
            name=column_name,
            type=referenced.type if referenced else DEFAULT_KEY_TYPE,
            length=referenced.length if referenced else None,
            nullable=nullable,
            relation=True,
            references=f"{target.table_name}.{referenced_column}",
        )

    def _add_morph_columns(
        self,
        entity: EntityDescriptor,
        relation: RelationDescriptor,
        columns: list[ColumnDescriptor],
        positions: dict[str, int],
    ) -> IndexDescriptor:
        type_column = relation.type_column_name or f"{snake_case(relation.property_name)}_type"
        id_column = relation.column_name or relation_column_name(relation.property_name)

        if type_column in positions:
            declared = columns[positions[type_column]]
            if (declared.type, declared.length) != ("string", MORPH_TYPE_LENGTH):
                raise ColumnConflictError(entity.table_name, type_column, "morph type column conflicts")
        else:
            positions[type_column] = len(columns)
            columns.append(
                ColumnDescriptor(name=type_column, type="string", length=MORPH_TYPE_LENGTH)
            )

        if id_column in positions:
            position = positions[id_column]
            if columns[position].type != DEFAULT_KEY_TYPE:
                raise ColumnConflictError(entity.table_name, id_column, "morph id column conflicts")
            columns[position] = columns[position].model_copy(update={"relation": True})
        else:
            positions[id_column] = len(columns)
            # No foreign key: the referenced table depends on the type column
            columns.append(ColumnDescriptor(name=id_column, type=DEFAULT_KEY_TYPE, relation=True))

        return IndexDescriptor(
            columns=[type_column, id_column],
            name=f"{relation.property_name}_morph_index",
        )

    def _mapping_projection(
        self,
        owner: EntityDescriptor,
        target: EntityDescriptor,
        relation: RelationDescriptor,
    ) -> EntityProjection:
        table_name = relation.mapping_table or mapping_table_name(
            owner.table_name, target.table_name
        )
        owner_column = relation.column_name or relation_column_name(owner.name)
        target_column = relation.target_column_name or relation_column_name(target.name)
        if owner_column == target_column:
            raise SchemaConfigurationError(
                f"Many-to-many misconfigured: join columns of '{table_name}' "
                f"are both named '{owner_column}'",
                {"relation": f"{owner.name}.{relation.property_name}"},
            )

        # Sort sides so either owner yields the same definition
        sides = sorted(
            [
                (owner.table_name, owner_column, owner, _primary_column(owner)),
                (
                    target.table_name,
                    target_column,
                    target,
                    relation.referenced_column or _primary_column(target),
                ),
            ],
            key=lambda side: (side[0], side[1]),
        )

        columns: list[ColumnDescriptor] = []
        foreign_keys: list[ForeignKeyDescriptor] = []
        for referenced_table, column_name, side_entity, referenced_column in sides:
            columns.append(
                self._join_column(column_name, side_entity, referenced_column, nullable=False)
            )
            foreign_keys.append(
                ForeignKeyDescriptor(
                    column=column_name,
                    referenced_table=referenced_table,
                    referenced_column=referenced_column,
                )
            )

        return EntityProjection(
            table_name=table_name,
            columns=columns,
            primary_key_columns=[col.name for col in columns],
            foreign_keys=foreign_keys,
            source=f"{owner.name}.{relation.property_name}",
        )

    def _morph_mapping_projection(
        self,
        owner: EntityDescriptor,
        target: EntityDescriptor,
        relation: RelationDescriptor,
    ) -> EntityProjection:
        if not relation.morph_name:
            raise _misconfigured(owner, relation, "morph_name is required")

        morph_name = relation.morph_name
        table_name = relation.mapping_table or f"{morph_name}s"
        type_column = relation.type_column_name or f"{morph_name}_type"
        id_column = relation.column_name or f"{morph_name}_id"
        target_column = relation.target_column_name or relation_column_name(target.name)
        referenced_column = relation.referenced_column or _primary_column(target)

        columns = [
            ColumnDescriptor(
                name="id",
                type=DEFAULT_KEY_TYPE,
                primary_key=True,
                generator=GeneratorKind.AUTO_INCREMENT,
            ),
            ColumnDescriptor(name=type_column, type="string", length=MORPH_TYPE_LENGTH),
            ColumnDescriptor(name=id_column, type=DEFAULT_KEY_TYPE, relation=True),
            self._join_column(target_column, target, referenced_column, nullable=False),
        ]

        return EntityProjection(
            table_name=table_name,
            columns=columns,
            primary_key_columns=["id"],
            indexes=[
                IndexDescriptor(
                    columns=[type_column, id_column],
                    name=f"{type_column}_{id_column}_index",
                )
            ],
            foreign_keys=[
                ForeignKeyDescriptor(
                    column=target_column,
                    referenced_table=target.table_name,
                    referenced_column=referenced_column,
                )
            ],
            source=f"{owner.name}.{relation.property_name}",
        )


def _primary_column(entity: EntityDescriptor) -> str:
    primary_key = entity.primary_key_columns
    return primary_key[0] if primary_key else "id"


def _find_relation(entity: EntityDescriptor, property_name: str) -> RelationDescriptor | None:
    return next(
        (relation for relation in entity.relations if relation.property_name == property_name),
        None,
    )


def _misconfigured(
    entity: EntityDescriptor,
    relation: RelationDescriptor,
    problem: str,
) -> SchemaConfigurationError:
    return SchemaConfigurationError(
        f"{_LABELS[relation.kind]} misconfigured: {problem}",
        {"relation": f"{entity.name}.{relation.property_name}"},
    )
