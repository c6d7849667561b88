"""Exception classes for db-schema-diff.

Configuration errors are fatal: they abort the whole comparison and no
partial plan is returned.  Database errors raised while reading a single
table are contained by the schema reader and reported per table.
"""

from typing import Any


class SchemaDiffError(Exception):
    """Base exception for all db-schema-diff errors."""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.cause = cause

    def __str__(self) -> str:
        result = self.message
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            result += f" [{details_str}]"
        if self.cause:
            result += f" (caused by: {self.cause})"
        return result


class ConfigurationError(SchemaDiffError):
    """Raised when tool configuration (db.toml, profiles) is invalid."""

    pass


class ProfileNotFoundError(ConfigurationError):
    """Raised when no database profile is configured."""

    pass


class SchemaConfigurationError(ConfigurationError):
    """Raised when the desired schema described by the entities is inconsistent."""

    pass


class NonEntityRelationError(SchemaConfigurationError):
    """Raised when a relation points to something that is not an entity."""

    def __init__(self, entity: str, property_name: str, target: str) -> None:
        super().__init__(
            f"Non-entity found in relation: '{entity}.{property_name}' "
            f"targets '{target}'",
            {"entity": entity, "property": property_name, "target": target},
        )
        self.entity = entity
        self.property_name = property_name
        self.target = target


class ColumnConflictError(SchemaConfigurationError):
    """Raised when entities sharing a table disagree on a column definition."""

    def __init__(
        self,
        table_name: str,
        column_name: str,
        conflict: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            f"Column '{column_name}' on table '{table_name}' conflicts "
            f"between entities ({conflict})",
            details,
        )
        self.table_name = table_name
        self.column_name = column_name
        self.conflict = conflict


class NameCollisionError(SchemaConfigurationError):
    """Raised when one index or foreign-key name resolves to two definitions."""

    def __init__(self, table_name: str, kind: str, name: str) -> None:
        super().__init__(
            f"{kind.capitalize()} name '{name}' on table '{table_name}' is "
            f"used by conflicting definitions",
            {"table": table_name, "kind": kind},
        )
        self.table_name = table_name
        self.kind = kind
        self.name = name


class EmptyTableDefinitionError(SchemaConfigurationError):
    """Raised when a table would be created without any column."""

    def __init__(self, table_name: str) -> None:
        super().__init__(f"Table '{table_name}' has no columns to create")
        self.table_name = table_name


class DatabaseError(SchemaDiffError):
    """Raised when there's an error talking to the database."""

    pass


class IntrospectionError(DatabaseError):
    """Raised when an introspection query fails."""

    pass


class UnsupportedDriverError(DatabaseError):
    """Raised when no introspection dialect exists for a driver."""

    def __init__(self, driver: str) -> None:
        super().__init__(f"Unsupported database driver: {driver}")
        self.driver = driver
