"""Live database schema introspection.

This module reads the actual schema through a ``DatabaseConnection``:
- Tables of the current database/schema (minus bookkeeping tables)
- Columns, with normalized types, nullability and defaults
- Indexes (name, ordered columns, uniqueness), primary keys excluded
- Foreign keys (owning column, referenced table and column)

Query text is driver-specific and supplied by an ``IntrospectionDialect``.
PostgreSQL, MySQL and SQLite are built in; ``register_dialect`` adds more.
"""

import logging
import re
from typing import Any

from db_schema_diff.adapters.base import DatabaseConnection
from db_schema_diff.exceptions import IntrospectionError, UnsupportedDriverError
from db_schema_diff.schema.models import (
    ActualColumn,
    ActualForeignKey,
    ActualIndex,
    TableColumns,
    TableState,
)
from db_schema_diff.schema.naming import foreign_key_name

logger = logging.getLogger(__name__)

_SIZED_TYPE = re.compile(r"^(\w+)\((\d+)\)$")


def normalize_column_type(raw_type: str) -> tuple[str, int | None]:
    """Split a raw column type into a semantic type and a length.

    Any ``<base>(<digits>)`` type is a bounded character type: it becomes
    ``"string"`` with the digits as length.  Everything else is returned
    unchanged with no length.

    Examples:
        >>> normalize_column_type("varchar(255)")
        ('string', 255)
        >>> normalize_column_type("int")
        ('int', None)
        >>> normalize_column_type("numeric(10,2)")
        ('numeric(10,2)', None)
    """
    match = _SIZED_TYPE.match(raw_type)
    if match:
        return "string", int(match.group(2))
    return raw_type, None


def _lower_keys(row: dict[str, Any]) -> dict[str, Any]:
    return {key.lower(): value for key, value in row.items()}


# ============================================================================
# Dialects
# ============================================================================


class IntrospectionDialect:
    """Driver-specific introspection statements and row decoding.

    Every query takes a ``:table`` parameter except ``tables_query``.
    Rows are decoded with lower-cased keys.  ``TYPE_MAP`` maps native type
    names onto the names descriptors use (``int``, ``float``, ``bool``,
    ``datetime``, ...) so a matching schema compares equal.
    """

    name: str = ""
    tables_query: str = ""
    columns_query: str = ""
    indexes_query: str = ""
    foreign_keys_query: str = ""

    TYPE_MAP: dict[str, str] = {}

    def semantic_type(self, raw_type: str) -> str:
        """Lower-case a native type and map it through ``TYPE_MAP``."""
        lowered = raw_type.strip().lower()
        return self.TYPE_MAP.get(lowered, lowered)

    def column_from_row(self, row: dict[str, Any]) -> tuple[str, str, bool, str | None]:
        """Decode a column row into (name, raw type, nullable, default)."""
        return (
            row["column_name"],
            self.semantic_type(row["column_type"]),
            row["is_nullable"] == "YES",
            self.normalize_default(row["column_default"]),
        )

    def index_from_row(self, row: dict[str, Any]) -> tuple[str | None, str | None, bool]:
        """Decode an index row into (index name, column name, unique)."""
        return row.get("index_name"), row.get("column_name"), bool(row.get("is_unique"))

    def foreign_key_from_row(self, table: str, row: dict[str, Any]) -> ActualForeignKey | None:
        name = row.get("constraint_name")
        column = row.get("column_name")
        referenced_table = row.get("referenced_table")
        if name is None or column is None or referenced_table is None:
            return None
        return ActualForeignKey(
            name=name,
            column=column,
            referenced_table=referenced_table,
            referenced_column=row.get("referenced_column") or "id",
        )

    def normalize_default(self, default: Any) -> str | None:
        if default is None:
            return None
        return str(default)


class PostgresDialect(IntrospectionDialect):
    """PostgreSQL via information_schema and pg_catalog."""

    name = "postgresql"

    # Verbose information_schema names -> short names
    TYPE_MAP = {
        "character varying": "varchar",
        "character": "char",
        "timestamp with time zone": "timestamptz",
        "timestamp without time zone": "datetime",
        "double precision": "float",
        "real": "float",
        "integer": "int",
        "boolean": "bool",
        "jsonb": "json",
    }

    tables_query = """
        SELECT table_name
        FROM information_schema.tables
        WHERE table_schema = current_schema()
          AND table_type = 'BASE TABLE'
        ORDER BY table_name
    """

    columns_query = """
        SELECT
            column_name,
            data_type,
            is_nullable,
            column_default,
            character_maximum_length
        FROM information_schema.columns
        WHERE table_schema = current_schema()
          AND table_name = :table
        ORDER BY ordinal_position
    """

    indexes_query = """
        SELECT
            i.relname AS index_name,
            a.attname AS column_name,
            ix.indisunique AS is_unique
        FROM pg_index ix
        JOIN pg_class t ON t.oid = ix.indrelid
        JOIN pg_class i ON i.oid = ix.indexrelid
        JOIN pg_namespace n ON n.oid = t.relnamespace
        JOIN LATERAL unnest(ix.indkey) WITH ORDINALITY AS x(attnum, ordinality) ON TRUE
        JOIN pg_attribute a ON a.attrelid = t.oid AND a.attnum = x.attnum
        WHERE n.nspname = current_schema()
          AND t.relname = :table
          AND NOT ix.indisprimary
        ORDER BY i.relname, x.ordinality
    """

    foreign_keys_query = """
        SELECT
            tc.constraint_name,
            kcu.column_name,
            ccu.table_name AS referenced_table,
            ccu.column_name AS referenced_column
        FROM information_schema.table_constraints tc
        JOIN information_schema.key_column_usage kcu
            ON tc.constraint_name = kcu.constraint_name
            AND tc.table_schema = kcu.table_schema
        JOIN information_schema.constraint_column_usage ccu
            ON ccu.constraint_name = tc.constraint_name
            AND ccu.table_schema = tc.table_schema
        WHERE tc.constraint_type = 'FOREIGN KEY'
          AND tc.table_name = :table
          AND tc.table_schema = current_schema()
    """

    def column_from_row(self, row: dict[str, Any]) -> tuple[str, str, bool, str | None]:
        raw_type = self.semantic_type(str(row["data_type"]))
        if row.get("character_maximum_length"):
            raw_type = f"{raw_type}({row['character_maximum_length']})"
        return (
            row["column_name"],
            raw_type,
            row["is_nullable"] == "YES",
            self.normalize_default(row["column_default"]),
        )

    def normalize_default(self, default: Any) -> str | None:
        """Strip PostgreSQL casts: ``'x'::text`` -> ``x``, ``nextval('s'::regclass)`` -> ``nextval('s')``."""
        if default is None:
            return None
        value = str(default)
        literal = re.match(r"^'(.*)'::", value)
        if literal:
            return literal.group(1)
        sequence = re.search(r"nextval\('([^']+)'", value)
        if sequence:
            return f"nextval('{sequence.group(1)}')"
        return value


class MySqlDialect(IntrospectionDialect):
    """MySQL/MariaDB via information_schema."""

    name = "mysql"

    TYPE_MAP = {
        "integer": "int",
        "double": "float",
        "double precision": "float",
        "real": "float",
        "boolean": "bool",
    }

    # Integer display widths (``int(11)``) are not lengths
    _DISPLAY_WIDTH = re.compile(r"^(tinyint|smallint|mediumint|int|integer|bigint)\(\d+\)")

    tables_query = """
        SELECT table_name AS table_name
        FROM information_schema.tables
        WHERE table_schema = DATABASE()
          AND table_type = 'BASE TABLE'
        ORDER BY table_name
    """

    columns_query = """
        SELECT
            column_name AS column_name,
            column_type AS column_type,
            is_nullable AS is_nullable,
            column_default AS column_default
        FROM information_schema.columns
        WHERE table_schema = DATABASE()
          AND table_name = :table
        ORDER BY ordinal_position
    """

    indexes_query = """
        SELECT
            index_name AS index_name,
            column_name AS column_name,
            non_unique AS non_unique
        FROM information_schema.statistics
        WHERE table_schema = DATABASE()
          AND table_name = :table
          AND index_name != 'PRIMARY'
        ORDER BY index_name, seq_in_index
    """

    foreign_keys_query = """
        SELECT
            constraint_name AS constraint_name,
            column_name AS column_name,
            referenced_table_name AS referenced_table,
            referenced_column_name AS referenced_column
        FROM information_schema.key_column_usage
        WHERE table_schema = DATABASE()
          AND table_name = :table
          AND referenced_table_name IS NOT NULL
    """

    def semantic_type(self, raw_type: str) -> str:
        lowered = raw_type.strip().lower()
        if lowered == "tinyint(1)":
            return "bool"
        lowered = self._DISPLAY_WIDTH.sub(r"\1", lowered)
        return self.TYPE_MAP.get(lowered, lowered)

    def index_from_row(self, row: dict[str, Any]) -> tuple[str | None, str | None, bool]:
        return row.get("index_name"), row.get("column_name"), not bool(row.get("non_unique"))


class SqliteDialect(IntrospectionDialect):
    """SQLite via the ``pragma_*`` table-valued functions."""

    name = "sqlite"

    # Declared type names are kept as written, apart from these
    TYPE_MAP = {
        "integer": "int",
        "real": "float",
        "double": "float",
        "double precision": "float",
        "boolean": "bool",
    }

    tables_query = """
        SELECT name AS table_name
        FROM sqlite_master
        WHERE type = 'table'
          AND name NOT LIKE 'sqlite_%'
        ORDER BY name
    """

    columns_query = """
        SELECT
            name AS column_name,
            type AS column_type,
            "notnull" AS not_null,
            dflt_value AS column_default
        FROM pragma_table_info(:table)
        ORDER BY cid
    """

    indexes_query = """
        SELECT
            il.name AS index_name,
            ii.name AS column_name,
            il."unique" AS is_unique
        FROM pragma_index_list(:table) AS il, pragma_index_info(il.name) AS ii
        WHERE il.name NOT LIKE 'sqlite_autoindex_%'
        ORDER BY il.name, ii.seqno
    """

    foreign_keys_query = """
        SELECT
            "from" AS column_name,
            "table" AS referenced_table,
            "to" AS referenced_column
        FROM pragma_foreign_key_list(:table)
        ORDER BY id, seq
    """

    def column_from_row(self, row: dict[str, Any]) -> tuple[str, str, bool, str | None]:
        return (
            row["column_name"],
            self.semantic_type(row["column_type"]),
            not row["not_null"],
            self.normalize_default(row["column_default"]),
        )

    def foreign_key_from_row(self, table: str, row: dict[str, Any]) -> ActualForeignKey | None:
        # SQLite keeps no constraint names; use the generated name
        column = row.get("column_name")
        referenced_table = row.get("referenced_table")
        if column is None or referenced_table is None:
            return None
        return ActualForeignKey(
            name=foreign_key_name(table, referenced_table, column),
            column=column,
            referenced_table=referenced_table,
            referenced_column=row.get("referenced_column") or "id",
        )

    def normalize_default(self, default: Any) -> str | None:
        if default is None:
            return None
        value = str(default)
        quoted = re.match(r"^'(.*)'$", value)
        if quoted:
            return quoted.group(1)
        return value


_DIALECTS: dict[str, IntrospectionDialect] = {
    "postgresql": PostgresDialect(),
    "mysql": MySqlDialect(),
    "sqlite": SqliteDialect(),
}


def register_dialect(driver: str, dialect: IntrospectionDialect) -> None:
    """Register (or replace) the introspection dialect for a driver name."""
    _DIALECTS[driver] = dialect


def get_dialect(driver: str) -> IntrospectionDialect:
    """Look up the dialect for a driver.

    Raises:
        UnsupportedDriverError: If no dialect is registered for ``driver``.
    """
    try:
        return _DIALECTS[driver]
    except KeyError:
        raise UnsupportedDriverError(driver) from None


# ============================================================================
# Schema Reader
# ============================================================================


class SchemaIntrospector:
    """Reads the actual schema of a live database.

    Column reads are contained per table: a failing query is logged and
    yields no columns, so one broken table does not stop the others.  Use
    ``read_table`` to tell an absent table, an empty table and a failed
    read apart.

    Usage:
        with EngineConnection(database_url) as connection:
            introspector = SchemaIntrospector(connection)
            tables = introspector.get_tables()
            columns = introspector.get_table_columns("users")
    """

    # Bookkeeping tables never treated as part of the schema
    EXCLUDED_TABLES = frozenset({"migrations"})

    def __init__(
        self,
        connection: DatabaseConnection,
        excluded_tables: set[str] | frozenset[str] | None = None,
        dialect: IntrospectionDialect | None = None,
    ) -> None:
        """Initialize with a connection.

        Args:
            connection: Connection used for every introspection query.
            excluded_tables: Table names to ignore (default:
                ``EXCLUDED_TABLES``).
            dialect: Explicit dialect; looked up from
                ``connection.driver_name()`` when omitted.

        Raises:
            UnsupportedDriverError: If no dialect matches the driver.
        """
        self._connection = connection
        self._excluded_tables = frozenset(
            self.EXCLUDED_TABLES if excluded_tables is None else excluded_tables
        )
        self._dialect = dialect or get_dialect(connection.driver_name())

    @property
    def dialect(self) -> IntrospectionDialect:
        return self._dialect

    def get_tables(self) -> set[str]:
        """Names of all base tables, minus excluded tables.

        Raises:
            IntrospectionError: If the catalog query fails.  Table
                existence drives create-vs-update, so this is not contained.
        """
        rows = self._connection.execute_query(self._dialect.tables_query)
        tables = {_lower_keys(row)["table_name"] for row in rows}
        return tables - self._excluded_tables

    def get_table_columns(self, table_name: str) -> list[ActualColumn]:
        """Columns of a table in ordinal order; ``[]`` if the query fails."""
        try:
            return self._read_columns(table_name)
        except IntrospectionError as e:
            logger.warning(f"Could not read columns of table '{table_name}': {e}")
            return []

    def read_table(self, table_name: str, tables: set[str] | None = None) -> TableColumns:
        """Tri-state column read.

        Args:
            table_name: Table to read.
            tables: Result of ``get_tables()`` if the caller already has it.

        Returns:
            ``TableColumns`` that is ``absent``, ``present_empty`` or
            ``present_with_columns``.  A failed column query on an existing
            table gives ``present_empty`` with ``error`` set.
        """
        if tables is None:
            tables = self.get_tables()
        if table_name not in tables:
            return TableColumns(table=table_name, state=TableState.ABSENT)

        try:
            columns = self._read_columns(table_name)
        except IntrospectionError as e:
            logger.warning(f"Could not read columns of table '{table_name}': {e}")
            return TableColumns(
                table=table_name,
                state=TableState.PRESENT_EMPTY,
                error=str(e),
            )

        state = TableState.PRESENT_WITH_COLUMNS if columns else TableState.PRESENT_EMPTY
        return TableColumns(table=table_name, state=state, columns=columns)

    def get_table_indexes(self, table_name: str) -> dict[str, ActualIndex]:
        """Indexes of a table keyed by name (primary key excluded).

        The catalog returns one row per (index, column); rows are grouped
        by index name keeping the first-seen column order.
        """
        rows = self._connection.execute_query(
            self._dialect.indexes_query, {"table": table_name}
        )

        grouped: dict[str, dict[str, Any]] = {}
        for row in rows:
            name, column, is_unique = self._dialect.index_from_row(_lower_keys(row))
            if name is None or column is None:
                continue
            if name.lower() == "primary":
                continue
            entry = grouped.setdefault(name, {"columns": [], "unique": is_unique})
            if column not in entry["columns"]:
                entry["columns"].append(column)

        return {
            name: ActualIndex(name=name, columns=entry["columns"], unique=entry["unique"])
            for name, entry in grouped.items()
        }

    def get_table_foreign_keys(self, table_name: str) -> dict[str, ActualForeignKey]:
        """Foreign keys of a table keyed by constraint name."""
        rows = self._connection.execute_query(
            self._dialect.foreign_keys_query, {"table": table_name}
        )

        foreign_keys: dict[str, ActualForeignKey] = {}
        for row in rows:
            fk = self._dialect.foreign_key_from_row(table_name, _lower_keys(row))
            if fk is not None:
                foreign_keys[fk.name] = fk
        return foreign_keys

    def _read_columns(self, table_name: str) -> list[ActualColumn]:
        rows = self._connection.execute_query(
            self._dialect.columns_query, {"table": table_name}
        )

        columns: list[ActualColumn] = []
        for row in rows:
            name, raw_type, nullable, default = self._dialect.column_from_row(_lower_keys(row))
            column_type, length = normalize_column_type(raw_type)
            columns.append(
                ActualColumn(
                    name=name,
                    type=column_type,
                    nullable=nullable,
                    default=default,
                    length=length,
                )
            )
        return columns
