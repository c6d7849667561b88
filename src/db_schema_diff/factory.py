"""Connection factory driven by db.toml profiles.

The active profile comes from an explicit name, or the ``{prefix}DB_PROFILE``
environment variable.  The profile URL (with ``[YOUR-PASSWORD]``
substituted) is opened as an ``EngineConnection``, and the ``[diff]``
settings configure the introspector and the comparator.

Usage:
    from db_schema_diff.factory import connect, create_comparator, create_introspector

    config = load_db_config()
    with connect(config=config) as connection:
        reader = create_introspector(connection, config)
        diff = create_comparator(config).plan(desired, reader)
"""

import logging
import os
from pathlib import Path
from urllib.parse import quote

from db_schema_diff.adapters import EngineConnection
from db_schema_diff.config.loader import load_db_config
from db_schema_diff.config.models import DatabaseConfig, DatabaseProfile
from db_schema_diff.exceptions import ProfileNotFoundError
from db_schema_diff.schema.comparator import SchemaComparator
from db_schema_diff.schema.introspector import SchemaIntrospector

logger = logging.getLogger(__name__)


# ============================================================================
# Profile Resolution
# ============================================================================


def get_active_profile_name(env_prefix: str = "") -> str:
    """Get active profile name from the environment.

    Args:
        env_prefix: Prefix for the env var lookup.  ``""`` reads
            ``DB_PROFILE``, ``"APP_"`` reads ``APP_DB_PROFILE``.

    Returns:
        Profile name

    Raises:
        ProfileNotFoundError: If the env var is unset or empty
    """
    env_var = f"{env_prefix}DB_PROFILE"
    env_profile = os.environ.get(env_var)
    if env_profile:
        return env_profile

    raise ProfileNotFoundError(
        "No database profile configured.\n"
        f"Set {env_var}=<name> or pass --profile <name>"
    )


def get_active_profile(
    profile_name: str | None = None,
    env_prefix: str = "",
    config: DatabaseConfig | None = None,
) -> tuple[str, DatabaseProfile]:
    """Get active profile name and configuration.

    Args:
        profile_name: Explicit profile; falls back to the env var.
        env_prefix: Prefix for the env var lookup.
        config: Loaded configuration (default: ``load_db_config()``).

    Returns:
        Tuple of (profile_name, DatabaseProfile)

    Raises:
        ProfileNotFoundError: If no profile is configured or it is not in db.toml
        FileNotFoundError: If db.toml doesn't exist
    """
    if profile_name is None:
        profile_name = get_active_profile_name(env_prefix)
    if config is None:
        config = load_db_config()

    if profile_name not in config.profiles:
        available = ", ".join(config.profiles.keys()) or "(none)"
        raise ProfileNotFoundError(
            f"Profile '{profile_name}' not found in db.toml.\n"
            f"Available profiles: {available}"
        )

    return profile_name, config.profiles[profile_name]


def resolve_url(profile: DatabaseProfile) -> str:
    """Resolve profile URL with password substitution.

    Args:
        profile: Database profile from config

    Returns:
        Connection URL with password substituted (URL-encoded)
    """
    url = profile.url
    if profile.db_password and "[YOUR-PASSWORD]" in url:
        url = url.replace("[YOUR-PASSWORD]", quote(profile.db_password, safe=""))
    return url


# ============================================================================
# Factories
# ============================================================================


def connect(
    profile_name: str | None = None,
    env_prefix: str = "",
    config: DatabaseConfig | None = None,
    config_path: Path | None = None,
) -> EngineConnection:
    """Open a connection for the active profile.

    Args:
        profile_name: Explicit profile; falls back to ``{env_prefix}DB_PROFILE``.
        env_prefix: Prefix for the env var lookup.
        config: Loaded configuration; read from ``config_path`` when omitted.
        config_path: Path to db.toml (default: ./db.toml).

    Returns:
        EngineConnection (use as a context manager to dispose the engine)

    Raises:
        ProfileNotFoundError: If no usable profile is configured
        FileNotFoundError: If db.toml doesn't exist
    """
    if config is None:
        config = load_db_config(config_path)
    name, profile = get_active_profile(profile_name, env_prefix, config)
    logger.info(f"Connecting with profile '{name}' ({profile.provider})")
    return EngineConnection(resolve_url(profile))


def create_introspector(
    connection: EngineConnection,
    config: DatabaseConfig | None = None,
) -> SchemaIntrospector:
    """Schema reader honoring ``[diff] excluded_tables``."""
    if config is None:
        return SchemaIntrospector(connection)
    return SchemaIntrospector(connection, excluded_tables=set(config.diff.excluded_tables))


def create_comparator(
    config: DatabaseConfig | None = None,
    drop_unknown_tables: bool | None = None,
    include_unchanged: bool | None = None,
) -> SchemaComparator:
    """Comparator from ``[diff]`` settings; explicit arguments win."""
    settings = config.diff if config is not None else None

    if drop_unknown_tables is None:
        drop_unknown_tables = settings.drop_unknown_tables if settings else False
    if include_unchanged is None:
        include_unchanged = settings.include_unchanged if settings else False

    return SchemaComparator(
        drop_unknown_tables=drop_unknown_tables,
        include_unchanged=include_unchanged,
    )
