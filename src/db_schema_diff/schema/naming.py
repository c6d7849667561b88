"""Deterministic names for relation columns, foreign keys, mapping tables and indexes.

Every function here is pure: the same inputs always give the same name, no
matter which entity is processed first.
"""

import hashlib
import re

# MySQL identifier limit; also the cut-off used for generated index names
MAX_IDENTIFIER_LENGTH = 64

_CAMEL_BOUNDARY = re.compile(r"\B([A-Z])")


def snake_case(name: str) -> str:
    """Convert ``camelCase``/``PascalCase`` to lower snake case.

    Example:
        >>> snake_case("authorProfile")
        'author_profile'
    """
    return _CAMEL_BOUNDARY.sub(r"_\1", name).lower()


def relation_column_name(property_name: str) -> str:
    """Column holding the foreign key for a relation property.

    Example:
        >>> relation_column_name("authorProfile")
        'author_profile_id'
    """
    return f"{snake_case(property_name)}_id"


def foreign_key_name(table: str, referenced_table: str, column: str) -> str:
    """Example:
    >>> foreign_key_name("posts", "users", "author_id")
    'fk_posts_users_author_id'
    """
    return f"fk_{table}_{referenced_table}_{column}"


def mapping_table_name(table_a: str, table_b: str) -> str:
    """Name of the join table between two entity tables.

    The two names are sorted before joining so both sides of a
    many-to-many relation resolve the same table.

    Example:
        >>> mapping_table_name("users", "roles")
        'roles_users'
    """
    first, second = sorted([table_a, table_b])
    return snake_case(f"{first}_{second}")


def index_name(columns: list[str], explicit_name: str | None = None) -> str:
    """Resolve an index name.

    An explicit name is used as is.  Otherwise the column names are joined
    with ``_`` and suffixed with ``_idx``; names longer than
    ``MAX_IDENTIFIER_LENGTH`` are replaced by the 32-character MD5 hex
    digest of that generated name.

    Example:
        >>> index_name(["email", "status"])
        'email_status_idx'
    """
    if explicit_name:
        return explicit_name

    name = "_".join(columns) + "_idx"
    if len(name) > MAX_IDENTIFIER_LENGTH:
        name = hashlib.md5(name.encode("utf-8")).hexdigest()
    return name
