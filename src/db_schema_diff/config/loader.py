"""TOML configuration loader for database profiles and diff settings."""

import tomllib
from pathlib import Path

from db_schema_diff.config.models import DatabaseConfig, DatabaseProfile, DiffSettings


def load_db_config(config_path: Path | None = None) -> DatabaseConfig:
    """Load database configuration from TOML file.

    Args:
        config_path: Path to db.toml (default: ./db.toml in the current directory)

    Returns:
        DatabaseConfig with all profiles and diff settings

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If config format is invalid
    """
    if config_path is None:
        config_path = Path.cwd() / "db.toml"

    if not config_path.exists():
        raise FileNotFoundError(
            f"Database config not found: {config_path}\n"
            f"Create db.toml with a [profiles.<name>] section."
        )

    with open(config_path, "rb") as f:
        data = tomllib.load(f)

    # Parse profiles
    profiles = {}
    for name, profile_data in data.get("profiles", {}).items():
        profiles[name] = DatabaseProfile(**profile_data)

    # Parse diff settings
    diff_settings = DiffSettings(**data.get("diff", {}))

    return DatabaseConfig(profiles=profiles, diff=diff_settings)
