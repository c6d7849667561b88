"""Tests for the schema comparator.

Covers the pure column/index/foreign-key comparisons, the table-level plan
against an in-memory reader, a full entity-to-plan run against SQLite, and
a PostgreSQL catalog that already matches its entities.
"""

from collections.abc import Iterator
from typing import Any
from unittest.mock import MagicMock

import pytest
from sqlalchemy import Engine, create_engine

from db_schema_diff.adapters.engine import EngineConnection
from db_schema_diff.exceptions import (
    ColumnConflictError,
    EmptyTableDefinitionError,
    IntrospectionError,
    NonEntityRelationError,
)
from db_schema_diff.schema.comparator import (
    SchemaComparator,
    compare_columns,
    compare_foreign_keys,
    compare_indexes,
    diff_entities,
    should_skip_index_deletion,
)
from db_schema_diff.schema.introspector import PostgresDialect, SchemaIntrospector
from db_schema_diff.schema.merge import merge_projections
from db_schema_diff.schema.models import (
    ActualColumn,
    ActualForeignKey,
    ActualIndex,
    ColumnDescriptor,
    EntityDescriptor,
    EntityProjection,
    ForeignKeyDefinition,
    ForeignKeyDescriptor,
    GeneratorKind,
    IndexDefinition,
    IndexDescriptor,
    RelationDescriptor,
    RelationKind,
    SoftDeleteDescriptor,
    TableColumns,
    TableDefinition,
    TableState,
)
from db_schema_diff.schema.results import Operation


class FakeReader:
    """In-memory schema reader.

    ``columns`` maps table name to its columns, or to an error message for
    tables whose column read fails.
    """

    def __init__(
        self,
        columns: dict[str, list[ActualColumn] | str] | None = None,
        indexes: dict[str, dict[str, ActualIndex]] | None = None,
        foreign_keys: dict[str, dict[str, ActualForeignKey]] | None = None,
    ) -> None:
        self.columns = columns or {}
        self.indexes = indexes or {}
        self.foreign_keys = foreign_keys or {}
        self.calls: list[str] = []

    def get_tables(self) -> set[str]:
        self.calls.append("get_tables")
        return set(self.columns)

    def read_table(self, table_name: str, tables: set[str] | None = None) -> TableColumns:
        self.calls.append(f"read_table:{table_name}")
        if table_name not in self.columns:
            return TableColumns(table=table_name, state=TableState.ABSENT)
        columns = self.columns[table_name]
        if isinstance(columns, str):
            return TableColumns(table=table_name, state=TableState.PRESENT_EMPTY, error=columns)
        state = TableState.PRESENT_WITH_COLUMNS if columns else TableState.PRESENT_EMPTY
        return TableColumns(table=table_name, state=state, columns=columns)

    def get_table_indexes(self, table_name: str) -> dict[str, ActualIndex]:
        return self.indexes.get(table_name, {})

    def get_table_foreign_keys(self, table_name: str) -> dict[str, ActualForeignKey]:
        return self.foreign_keys.get(table_name, {})


def _users_table() -> TableDefinition:
    return TableDefinition(
        name="users",
        columns={
            "id": ColumnDescriptor(name="id", type="int", primary_key=True),
            "email": ColumnDescriptor(name="email", type="string", length=255),
        },
        primary_key_columns=["id"],
    )


def _users_columns(email_nullable: bool = False) -> list[ActualColumn]:
    return [
        ActualColumn(name="id", type="int", nullable=False),
        ActualColumn(name="email", type="string", length=255, nullable=email_nullable),
    ]


# ============================================================================
# Pure Comparisons
# ============================================================================


class TestCompareColumns:
    """Test column-level diffing."""

    def test_matching_columns_produce_nothing(self) -> None:
        """Columns equal on every attribute are left out."""
        assert compare_columns(_users_table().columns, _users_columns()) == []

    def test_nullable_only_mismatch(self) -> None:
        """A nullability difference is an update with only that flag false."""
        [result] = compare_columns(_users_table().columns, _users_columns(email_nullable=True))

        assert result.name == "email"
        assert result.operation == Operation.UPDATE
        assert result.is_type_match is True
        assert result.is_length_match is True
        assert result.is_default_match is True
        assert result.is_nullable_match is False

    def test_sequence_default_of_generated_key(self) -> None:
        """The sequence default PostgreSQL attaches to a generated key is not drift."""
        desired = {
            "id": ColumnDescriptor(
                name="id", type="int", primary_key=True, generator=GeneratorKind.AUTO_INCREMENT
            )
        }
        actual = [
            ActualColumn(name="id", type="int", nullable=False, default="nextval('users_id_seq')")
        ]

        assert compare_columns(desired, actual) == []

    def test_sequence_default_without_generator(self) -> None:
        """A plain column with a sequence default still differs."""
        desired = {"id": ColumnDescriptor(name="id", type="int")}
        actual = [
            ActualColumn(name="id", type="int", nullable=False, default="nextval('users_id_seq')")
        ]

        [result] = compare_columns(desired, actual)

        assert result.operation == Operation.UPDATE
        assert result.is_default_match is False

    def test_order_creates_updates_deletes(self) -> None:
        """Creates come first, then updates, then deletes in actual order."""
        desired = {
            "id": ColumnDescriptor(name="id", type="bigint"),
            "email": ColumnDescriptor(name="email", type="string", length=255),
            "name": ColumnDescriptor(name="name", type="text"),
        }
        actual = [
            ActualColumn(name="legacy_b", type="int"),
            ActualColumn(name="id", type="int", nullable=False),
            ActualColumn(name="legacy_a", type="int"),
        ]

        results = compare_columns(desired, actual)

        assert [(r.name, r.operation) for r in results] == [
            ("email", Operation.CREATE),
            ("name", Operation.CREATE),
            ("id", Operation.UPDATE),
            ("legacy_b", Operation.DELETE),
            ("legacy_a", Operation.DELETE),
        ]

    def test_names_case_sensitive(self) -> None:
        """``Email`` and ``email`` are different columns."""
        desired = {"Email": ColumnDescriptor(name="Email", type="text")}
        actual = [ActualColumn(name="email", type="text", nullable=False)]

        results = compare_columns(desired, actual)

        assert [(r.name, r.operation) for r in results] == [
            ("Email", Operation.CREATE),
            ("email", Operation.DELETE),
        ]


class TestCompareIndexes:
    """Test index-level diffing."""

    def test_missing_index_created(self) -> None:
        """A desired index absent from the database is created."""
        desired = {"email_idx": IndexDefinition(name="email_idx", columns=["email"], unique=True)}

        [result] = compare_indexes(desired, {})

        assert result.operation == Operation.CREATE
        assert result.unique is True

    def test_changed_index_recreated(self) -> None:
        """A changed index is a delete immediately followed by a create."""
        desired = {"name_idx": IndexDefinition(name="name_idx", columns=["last", "first"])}
        actual = {"name_idx": ActualIndex(name="name_idx", columns=["first", "last"])}

        results = compare_indexes(desired, actual)

        assert [(r.name, r.operation) for r in results] == [
            ("name_idx", Operation.DELETE),
            ("name_idx", Operation.CREATE),
        ]
        assert results[0].columns == ["first", "last"]
        assert results[1].columns == ["last", "first"]

    def test_uniqueness_change_recreated(self) -> None:
        """Changing uniqueness also recreates the index."""
        desired = {"email_idx": IndexDefinition(name="email_idx", columns=["email"], unique=True)}
        actual = {"email_idx": ActualIndex(name="email_idx", columns=["email"], unique=False)}

        results = compare_indexes(desired, actual)

        assert [r.operation for r in results] == [Operation.DELETE, Operation.CREATE]

    def test_equal_index_untouched(self) -> None:
        """Matching indexes produce nothing."""
        desired = {"email_idx": IndexDefinition(name="email_idx", columns=["email"])}
        actual = {"email_idx": ActualIndex(name="email_idx", columns=["email"])}

        assert compare_indexes(desired, actual) == []

    def test_undeclared_index_deleted(self) -> None:
        """Indexes no entity declares are dropped."""
        actual = {"old_idx": ActualIndex(name="old_idx", columns=["status", "created_at"])}

        [result] = compare_indexes({}, actual, ["id"], {})

        assert result.operation == Operation.DELETE
        assert result.name == "old_idx"

    def test_database_managed_indexes_kept(self) -> None:
        """Primary-key and single foreign-key column indexes are never dropped."""
        actual = {
            "users_pkey_copy": ActualIndex(name="users_pkey_copy", columns=["id"], unique=True),
            "team_id": ActualIndex(name="team_id", columns=["team_id"]),
        }
        foreign_keys = {
            "fk_users_teams_team_id": ActualForeignKey(
                name="fk_users_teams_team_id", column="team_id", referenced_table="teams"
            )
        }

        assert compare_indexes({}, actual, ["id"], foreign_keys) == []


class TestShouldSkipIndexDeletion:
    """Test the database-managed index rule."""

    def test_primary_name(self) -> None:
        """An index named PRIMARY is kept."""
        assert should_skip_index_deletion(ActualIndex(name="PRIMARY", columns=["id"]), [], {})

    def test_multi_column_with_fk_column_not_skipped(self) -> None:
        """Only single-column indexes on a foreign-key column are kept."""
        foreign_keys = {
            "fk": ActualForeignKey(name="fk", column="team_id", referenced_table="teams")
        }
        index = ActualIndex(name="team_status_idx", columns=["team_id", "status"])

        assert should_skip_index_deletion(index, ["id"], foreign_keys) is False


class TestCompareForeignKeys:
    """Test foreign-key diffing."""

    def test_changed_foreign_key_recreated(self) -> None:
        """A retargeted foreign key is a delete followed by a create."""
        desired = {
            "fk_orders_users_user_id": ForeignKeyDefinition(
                name="fk_orders_users_user_id", column="user_id", referenced_table="users"
            )
        }
        actual = {
            "fk_orders_users_user_id": ActualForeignKey(
                name="fk_orders_users_user_id",
                column="user_id",
                referenced_table="users",
                referenced_column="uuid",
            )
        }

        results = compare_foreign_keys(desired, actual)

        assert [r.operation for r in results] == [Operation.DELETE, Operation.CREATE]
        assert results[0].referenced_column == "uuid"
        assert results[1].referenced_column == "id"

    def test_stale_foreign_key_deleted(self) -> None:
        """Foreign keys no entity declares are dropped."""
        actual = {
            "fk_old": ActualForeignKey(name="fk_old", column="team_id", referenced_table="teams")
        }

        [result] = compare_foreign_keys({}, actual)

        assert result.operation == Operation.DELETE
        assert result.column == "team_id"


# ============================================================================
# Table-level Plan
# ============================================================================


class TestSchemaComparator:
    """Test SchemaComparator against an in-memory reader."""

    def test_create_table_orders(self) -> None:
        """A missing table is created with every column, index and foreign key."""
        projection = EntityProjection(
            table_name="orders",
            columns=[
                ColumnDescriptor(name="id", type="int", primary_key=True),
                ColumnDescriptor(name="user_id", type="int"),
                ColumnDescriptor(name="total", type="decimal"),
            ],
            primary_key_columns=["id"],
            indexes=[IndexDescriptor(columns=["user_id"])],
            foreign_keys=[ForeignKeyDescriptor(column="user_id", referenced_table="users")],
        )
        desired = merge_projections([projection])

        [result] = SchemaComparator().compare(desired, FakeReader())

        assert result.name == "orders"
        assert result.operation == Operation.CREATE
        assert [c.name for c in result.columns] == ["id", "user_id", "total"]
        assert all(c.operation == Operation.CREATE for c in result.columns)
        assert [i.name for i in result.indexes] == ["user_id_idx"]
        assert [f.name for f in result.foreign_keys] == ["fk_orders_users_user_id"]
        assert result.primary_key_columns == ["id"]

    def test_idempotent_when_up_to_date(self) -> None:
        """A matching table yields no result."""
        reader = FakeReader(columns={"users": _users_columns()})

        diff = SchemaComparator().plan({"users": _users_table()}, reader)

        assert diff.tables == []
        assert diff.has_changes is False
        assert diff.format_report() == "Schema up to date"

    def test_include_unchanged(self) -> None:
        """With include_unchanged a matching table is an empty update."""
        reader = FakeReader(columns={"users": _users_columns()})

        [result] = SchemaComparator(include_unchanged=True).compare(
            {"users": _users_table()}, reader
        )

        assert result.operation == Operation.UPDATE
        assert result.has_changes is False

    def test_update_table(self) -> None:
        """Column drift on an existing table is an update."""
        reader = FakeReader(columns={"users": _users_columns(email_nullable=True)})

        [result] = SchemaComparator().compare({"users": _users_table()}, reader)

        assert result.operation == Operation.UPDATE
        assert [(c.name, c.operation) for c in result.columns] == [("email", Operation.UPDATE)]

    def test_existing_empty_table_is_updated(self) -> None:
        """A table that exists with no columns is updated, never recreated."""
        reader = FakeReader(columns={"users": []})

        [result] = SchemaComparator().compare({"users": _users_table()}, reader)

        assert result.operation == Operation.UPDATE
        assert [c.operation for c in result.columns] == [Operation.CREATE, Operation.CREATE]

    def test_unreadable_table_skipped(self) -> None:
        """A failed column read skips the table instead of planning changes."""
        reader = FakeReader(columns={"users": "Query failed: permission denied"})

        diff = SchemaComparator().plan({"users": _users_table()}, reader)

        assert diff.tables == []
        assert diff.skipped_tables == {"users": "Query failed: permission denied"}

    def test_index_read_failure_skipped(self) -> None:
        """A failed index read also skips the table."""

        class FailingIndexReader(FakeReader):
            def get_table_indexes(self, table_name: str) -> dict[str, ActualIndex]:
                raise IntrospectionError("Query failed")

        reader = FailingIndexReader(columns={"users": _users_columns()})

        diff = SchemaComparator().plan({"users": _users_table()}, reader)

        assert list(diff.skipped_tables) == ["users"]

    def test_unknown_tables_kept_by_default(self) -> None:
        """Live tables no entity maps to are not dropped by default."""
        reader = FakeReader(columns={"users": _users_columns(), "audit": []})

        assert SchemaComparator().compare({"users": _users_table()}, reader) == []

    def test_drop_unknown_tables(self) -> None:
        """Opting in drops unknown tables, sorted, after all other results."""
        reader = FakeReader(
            columns={"zeta": [], "users": _users_columns(email_nullable=True), "alpha": []}
        )

        results = SchemaComparator(drop_unknown_tables=True).compare(
            {"users": _users_table()}, reader
        )

        assert [(r.name, r.operation) for r in results] == [
            ("users", Operation.UPDATE),
            ("alpha", Operation.DELETE),
            ("zeta", Operation.DELETE),
        ]

    def test_results_sorted_by_table_name(self) -> None:
        """Tables are visited in name order regardless of input order."""
        desired = {
            "orders": TableDefinition(
                name="orders", columns={"id": ColumnDescriptor(name="id", type="int")}
            ),
            "accounts": TableDefinition(
                name="accounts", columns={"id": ColumnDescriptor(name="id", type="int")}
            ),
        }

        results = SchemaComparator().compare(desired, FakeReader())

        assert [r.name for r in results] == ["accounts", "orders"]

    def test_empty_create_rejected(self) -> None:
        """Creating a table without columns is a configuration error."""
        desired = {"empty": TableDefinition(name="empty")}

        with pytest.raises(EmptyTableDefinitionError, match="'empty'"):
            SchemaComparator().compare(desired, FakeReader())

    def test_paired_index_recreate_in_table(self) -> None:
        """Changed indexes on an existing table appear as delete+create."""
        definition = _users_table().model_copy(
            update={
                "indexes": {
                    "email_idx": IndexDefinition(name="email_idx", columns=["email"], unique=True)
                }
            }
        )
        reader = FakeReader(
            columns={"users": _users_columns()},
            indexes={"users": {"email_idx": ActualIndex(name="email_idx", columns=["email"])}},
        )

        [result] = SchemaComparator().compare({"users": definition}, reader)

        assert result.columns == []
        assert [i.operation for i in result.indexes] == [Operation.DELETE, Operation.CREATE]


# ============================================================================
# Entities to Plan
# ============================================================================


class TestDiffEntities:
    """Test projection, merge and comparison in one call."""

    def test_conflict_raised_before_reading(self) -> None:
        """Configuration errors abort before the reader is used."""
        first = EntityDescriptor(
            name="Person",
            table_name="shared_entities",
            columns=[ColumnDescriptor(name="status", type="string", length=20)],
        )
        second = EntityDescriptor(
            name="Company",
            table_name="shared_entities",
            columns=[ColumnDescriptor(name="status", type="int")],
        )
        reader = FakeReader()

        with pytest.raises(ColumnConflictError):
            diff_entities([first, second], reader)

        assert reader.calls == []

    def test_non_entity_relation_raised(self) -> None:
        """A relation to a non-entity aborts the comparison."""
        user = EntityDescriptor(
            name="User",
            table_name="users",
            columns=[ColumnDescriptor(name="id", type="int", primary_key=True)],
            relations=[
                RelationDescriptor(
                    property_name="address", kind=RelationKind.MANY_TO_ONE, target="Address"
                )
            ],
        )
        address = EntityDescriptor(name="Address", table_name="addresses", is_entity=False)

        with pytest.raises(NonEntityRelationError):
            diff_entities([user, address], FakeReader())


@pytest.fixture
def sqlite_engine() -> Iterator[Engine]:
    """In-memory SQLite database with a drifted users table."""
    engine = create_engine("sqlite://")
    with engine.begin() as conn:
        conn.exec_driver_sql(
            "CREATE TABLE users ("
            "id INTEGER NOT NULL PRIMARY KEY, "
            "email VARCHAR(255), "
            "nickname TEXT)"
        )
        conn.exec_driver_sql("CREATE INDEX nickname_idx ON users (nickname)")
    yield engine
    engine.dispose()


class TestSqlitePlan:
    """Entities compared against a real SQLite schema."""

    def test_plan(self, sqlite_engine: Engine) -> None:
        """Drift on users and a missing posts table are both planned."""
        user = EntityDescriptor(
            name="User",
            table_name="users",
            columns=[
                ColumnDescriptor(name="id", type="int", primary_key=True),
                ColumnDescriptor(name="email", type="string", length=255),
            ],
            indexes=[IndexDescriptor(columns=["email"], unique=True)],
        )
        post = EntityDescriptor(
            name="Post",
            table_name="posts",
            columns=[
                ColumnDescriptor(name="id", type="int", primary_key=True),
                ColumnDescriptor(name="title", type="text"),
            ],
            relations=[
                RelationDescriptor(
                    property_name="author", kind=RelationKind.MANY_TO_ONE, target="User"
                )
            ],
        )
        reader = SchemaIntrospector(EngineConnection(engine=sqlite_engine))

        diff = diff_entities([user, post], reader)

        posts, users = diff.tables
        assert posts.name == "posts"
        assert posts.operation == Operation.CREATE
        assert [c.name for c in posts.columns] == ["id", "title", "author_id"]
        assert posts.columns[2].desired is not None
        assert posts.columns[2].desired.type == "int"
        assert [f.name for f in posts.foreign_keys] == ["fk_posts_users_author_id"]

        assert users.operation == Operation.UPDATE
        assert [(c.name, c.operation) for c in users.columns] == [
            ("email", Operation.UPDATE),
            ("nickname", Operation.DELETE),
        ]
        assert [(i.name, i.operation) for i in users.indexes] == [
            ("email_idx", Operation.CREATE),
            ("nickname_idx", Operation.DELETE),
        ]


# ============================================================================
# PostgreSQL Catalog
# ============================================================================


def _postgres_column(
    name: str,
    data_type: str,
    nullable: bool = False,
    default: str | None = None,
    length: int | None = None,
) -> dict[str, Any]:
    return {
        "column_name": name,
        "data_type": data_type,
        "is_nullable": "YES" if nullable else "NO",
        "column_default": default,
        "character_maximum_length": length,
    }


def _postgres_connection(
    columns: dict[str, list[dict[str, Any]]],
    indexes: dict[str, list[dict[str, Any]]],
    foreign_keys: dict[str, list[dict[str, Any]]],
) -> MagicMock:
    """Connection answering PostgreSQL catalog queries per table."""
    dialect = PostgresDialect()
    per_table = {
        dialect.columns_query: columns,
        dialect.indexes_query: indexes,
        dialect.foreign_keys_query: foreign_keys,
    }

    def execute_query(sql: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        if sql == dialect.tables_query:
            return [{"table_name": name} for name in columns]
        assert params is not None
        return per_table[sql].get(params["table"], [])

    connection = MagicMock()
    connection.driver_name.return_value = "postgresql"
    connection.execute_query.side_effect = execute_query
    return connection


class TestPostgresRoundTrip:
    """Entities against a PostgreSQL schema created from them."""

    def _entities(self) -> list[EntityDescriptor]:
        generated_id = ColumnDescriptor(
            name="id", type="int", primary_key=True, generator=GeneratorKind.AUTO_INCREMENT
        )
        user = EntityDescriptor(
            name="User",
            table_name="users",
            columns=[generated_id, ColumnDescriptor(name="email", type="string", length=255)],
            indexes=[IndexDescriptor(columns=["email"], unique=True)],
            soft_delete=SoftDeleteDescriptor(),
        )
        post = EntityDescriptor(
            name="Post",
            table_name="posts",
            columns=[generated_id, ColumnDescriptor(name="published", type="bool", default="false")],
            relations=[
                RelationDescriptor(
                    property_name="author", kind=RelationKind.MANY_TO_ONE, target="User"
                )
            ],
        )
        return [user, post]

    def test_matching_schema_has_no_changes(self) -> None:
        """Native type names, sequence defaults and soft-delete columns all match."""
        connection = _postgres_connection(
            columns={
                "users": [
                    _postgres_column("id", "integer", default="nextval('users_id_seq'::regclass)"),
                    _postgres_column("email", "character varying", length=255),
                    _postgres_column("deleted_at", "timestamp without time zone", nullable=True),
                ],
                "posts": [
                    _postgres_column("id", "integer", default="nextval('posts_id_seq'::regclass)"),
                    _postgres_column("published", "boolean", default="false"),
                    _postgres_column("author_id", "integer", nullable=True),
                ],
            },
            indexes={
                "users": [{"index_name": "email_idx", "column_name": "email", "is_unique": True}],
            },
            foreign_keys={
                "posts": [
                    {
                        "constraint_name": "fk_posts_users_author_id",
                        "column_name": "author_id",
                        "referenced_table": "users",
                        "referenced_column": "id",
                    }
                ],
            },
        )

        diff = diff_entities(self._entities(), SchemaIntrospector(connection))

        assert diff.tables == []
        assert diff.skipped_tables == {}
        assert diff.has_changes is False

    def test_drift_still_reported(self) -> None:
        """A real type change on top of the matching schema is planned."""
        connection = _postgres_connection(
            columns={
                "users": [
                    _postgres_column("id", "integer", default="nextval('users_id_seq'::regclass)"),
                    _postgres_column("email", "text"),
                    _postgres_column("deleted_at", "timestamp without time zone", nullable=True),
                ],
                "posts": [
                    _postgres_column("id", "integer", default="nextval('posts_id_seq'::regclass)"),
                    _postgres_column("published", "boolean", default="false"),
                    _postgres_column("author_id", "integer", nullable=True),
                ],
            },
            indexes={
                "users": [{"index_name": "email_idx", "column_name": "email", "is_unique": True}],
            },
            foreign_keys={
                "posts": [
                    {
                        "constraint_name": "fk_posts_users_author_id",
                        "column_name": "author_id",
                        "referenced_table": "users",
                        "referenced_column": "id",
                    }
                ],
            },
        )

        diff = diff_entities(self._entities(), SchemaIntrospector(connection))

        [users] = diff.tables
        [email] = users.columns
        assert email.name == "email"
        assert email.is_type_match is False
        assert email.is_length_match is False
