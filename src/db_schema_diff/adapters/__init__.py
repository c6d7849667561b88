"""Database connection package.

Provides the ``DatabaseConnection`` Protocol used by the schema reader and
``EngineConnection``, its SQLAlchemy implementation.

Usage:
    from db_schema_diff.adapters import DatabaseConnection, EngineConnection
"""

from db_schema_diff.adapters.base import DatabaseConnection
from db_schema_diff.adapters.engine import (
    EngineConnection,
    create_engine_pooled,
    normalize_database_url,
)

__all__ = [
    "DatabaseConnection",
    "EngineConnection",
    "create_engine_pooled",
    "normalize_database_url",
]
