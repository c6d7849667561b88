"""Pydantic models for db.toml configuration."""

from pydantic import BaseModel, Field


# ============================================================================
# Configuration Models
# ============================================================================


class DatabaseProfile(BaseModel):
    """Database connection profile from db.toml."""

    url: str
    description: str = ""
    db_password: str | None = None  # For [YOUR-PASSWORD] placeholder substitution
    provider: str = "postgres"


class DiffSettings(BaseModel):
    """Comparator settings from the ``[diff]`` section of db.toml."""

    excluded_tables: list[str] = Field(default_factory=lambda: ["migrations"])
    drop_unknown_tables: bool = False
    include_unchanged: bool = False


class DatabaseConfig(BaseModel):
    """Complete configuration from db.toml."""

    profiles: dict[str, DatabaseProfile]
    diff: DiffSettings = Field(default_factory=DiffSettings)
