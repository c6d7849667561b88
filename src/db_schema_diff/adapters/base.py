"""Database connection protocol definition.

Defines the ``DatabaseConnection`` Protocol consumed by the schema reader.
The reader only issues read-only introspection queries, so the interface
is deliberately small: run a query, tell which driver is behind it.

Usage:
    from db_schema_diff.adapters.base import DatabaseConnection

    def list_tables(connection: DatabaseConnection) -> list[str]:
        rows = connection.execute_query(
            "SELECT name FROM sqlite_master WHERE type = :type",
            {"type": "table"},
        )
        return [row["name"] for row in rows]
"""

from typing import Any, Protocol


class DatabaseConnection(Protocol):
    """Connection interface that the schema reader depends on.

    Implementations must be synchronous: introspection runs as a single
    blocking pass at deploy time.
    """

    def execute_query(
        self,
        sql: str,
        params: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        """Run a query and return its rows.

        Args:
            sql: SQL text with ``:name`` style named parameters.
            params: Optional dict of parameter values.

        Returns:
            List of dicts (column name -> value), one per row.

        Raises:
            IntrospectionError: If the query fails for any reason.

        Example:
            rows = connection.execute_query(
                "SELECT column_name FROM information_schema.columns "
                "WHERE table_name = :table",
                {"table": "users"},
            )
        """
        ...

    def driver_name(self) -> str:
        """Name of the database backend: ``postgresql``, ``mysql`` or ``sqlite``."""
        ...
