"""CLI module for schema comparison.

Provides commands to list configured profiles, inspect the live tables of
the active profile, and plan the structural changes between a desired
schema (JSON) and the live database.

Usage:
    db-schema-diff profiles
    DB_PROFILE=local db-schema-diff tables
    db-schema-diff --profile local diff --desired entities.json
    db-schema-diff --profile local diff --desired entities.json --drop-unknown --json

Commands:
    profiles  - List available profiles
    tables    - List live tables of the active profile
    diff      - Compare a desired schema with the live database
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from db_schema_diff.config.loader import load_db_config
from db_schema_diff.exceptions import ProfileNotFoundError, SchemaDiffError
from db_schema_diff.factory import (
    connect,
    create_comparator,
    create_introspector,
    get_active_profile_name,
)
from db_schema_diff.schema.merge import merge_projections
from db_schema_diff.schema.models import (
    EntityDescriptor,
    EntityProjection,
    TableDefinition,
    TableState,
)
from db_schema_diff.schema.projection import DescriptorProjector
from db_schema_diff.schema.results import Operation, SchemaDiff

console = Console()

_OPERATION_STYLES = {
    Operation.CREATE: "green",
    Operation.UPDATE: "yellow",
    Operation.DELETE: "red",
}


# ============================================================================
# Desired schema file parsing (CLI-internal helper)
# ============================================================================


def _load_desired_tables(desired_file: str | Path) -> dict[str, TableDefinition]:
    """Read a desired-schema JSON file into merged table definitions.

    The file holds either resolved entity metadata or ready projections:

        {"entities": [{"name": "User", "table_name": "users", ...}]}
        {"projections": [{"table_name": "users", "columns": [...]}]}

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the JSON is malformed or has neither key.
        SchemaConfigurationError: If the entities are inconsistent.
    """
    desired_path = Path(desired_file)
    if not desired_path.exists():
        raise FileNotFoundError(f"Desired schema file not found: {desired_path}")

    data = json.loads(desired_path.read_text())
    if not isinstance(data, dict):
        raise ValueError(f"{desired_path.name}: expected a JSON object")

    if "entities" in data:
        entities = [EntityDescriptor.model_validate(item) for item in data["entities"]]
        projections = DescriptorProjector(entities).project_all()
    elif "projections" in data:
        projections = [EntityProjection.model_validate(item) for item in data["projections"]]
    else:
        raise ValueError(
            f"{desired_path.name}: expected an 'entities' or 'projections' list"
        )

    return merge_projections(projections)


def _print_diff(diff: SchemaDiff) -> None:
    if not diff.has_changes and not diff.skipped_tables:
        console.print("[bold green]v[/bold green] Schema up to date")
        return

    table = Table(title="Schema Changes", show_header=True, header_style="bold")
    table.add_column("Table")
    table.add_column("Operation")
    table.add_column("Columns", justify="right")
    table.add_column("Indexes", justify="right")
    table.add_column("Foreign keys", justify="right")

    for result in diff.tables:
        style = _OPERATION_STYLES[result.operation]
        table.add_row(
            result.name,
            f"[{style}]{result.operation.value}[/{style}]",
            str(len(result.columns)),
            str(len(result.indexes)),
            str(len(result.foreign_keys)),
        )

    console.print(table)
    console.print()
    # Reasons may contain brackets; print the report verbatim
    console.print(diff.format_report(), markup=False, highlight=False)
    console.print(f"\n{diff.change_count} change(s)")


# ============================================================================
# Command implementations
# ============================================================================


def cmd_profiles(args: argparse.Namespace) -> int:
    """List available profiles from db.toml.

    Reads only local TOML config -- no database calls.

    Args:
        args: Parsed CLI arguments.

    Returns:
        0 on success, 1 if db.toml not found.
    """
    try:
        config = load_db_config(args.config)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        return 1

    current = args.profile
    if current is None:
        try:
            current = get_active_profile_name(args.env_prefix)
        except ProfileNotFoundError:
            current = None

    table = Table(
        title="Database Profiles", show_header=True, header_style="bold"
    )
    table.add_column("", width=2)
    table.add_column("Profile")
    table.add_column("Provider")
    table.add_column("Description")

    for name, profile in config.profiles.items():
        marker = "[bold green]*[/bold green]" if name == current else " "
        name_style = "bold cyan" if name == current else ""
        table.add_row(
            marker,
            f"[{name_style}]{name}[/{name_style}]" if name_style else name,
            profile.provider,
            profile.description or "",
        )

    console.print(table)

    if current in config.profiles:
        console.print("\n[bold green]*[/bold green] = active profile")

    return 0


def cmd_tables(args: argparse.Namespace) -> int:
    """List live tables of the active profile with their column counts.

    The connection is checked with ``SELECT 1`` before the catalog is read.

    Args:
        args: Parsed CLI arguments with profile, env_prefix and config.

    Returns:
        0 on success, 1 on failure.
    """
    try:
        config = load_db_config(args.config)
        with connect(args.profile, args.env_prefix, config=config) as connection:
            if not connection.test_connection():
                console.print("[red]Error: connection check failed[/red]")
                return 1

            introspector = create_introspector(connection, config)
            tables = introspector.get_tables()

            table = Table(title="Live Tables", show_header=True, header_style="bold")
            table.add_column("Table")
            table.add_column("Columns", justify="right")
            table.add_column("Status")

            for table_name in sorted(tables):
                state = introspector.read_table(table_name, tables)
                if state.error is not None:
                    status = "[red]unreadable[/red]"
                elif state.state == TableState.PRESENT_EMPTY:
                    status = "[yellow]no columns[/yellow]"
                else:
                    status = "[green]ok[/green]"
                table.add_row(table_name, str(len(state.columns)), status)
    except (SchemaDiffError, FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        return 1

    console.print(table)
    console.print(f"\n{len(tables)} table(s)")
    return 0


def cmd_diff(args: argparse.Namespace) -> int:
    """Compare the desired schema file with the live database.

    Args:
        args: Parsed CLI arguments with desired, drop_unknown,
            include_unchanged and json.

    Returns:
        0 on success (changes or not), 1 on failure.
    """
    try:
        # Parse before connecting so configuration errors never touch the database
        desired = _load_desired_tables(args.desired)
        config = load_db_config(args.config)
        comparator = create_comparator(
            config,
            drop_unknown_tables=True if args.drop_unknown else None,
            include_unchanged=True if args.include_unchanged else None,
        )

        if not args.json:
            console.print("Reading live schema...", style="dim")

        with connect(args.profile, args.env_prefix, config=config) as connection:
            introspector = create_introspector(connection, config)
            diff = comparator.plan(desired, introspector)
    except (SchemaDiffError, FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        return 1

    if args.json:
        console.print_json(diff.model_dump_json())
    else:
        _print_diff(diff)

    return 0


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point.

    Parses command line arguments and dispatches to appropriate handler.

    Args:
        argv: Arguments to parse (default: ``sys.argv[1:]``).

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    parser = argparse.ArgumentParser(
        prog="db-schema-diff",
        description="Compare entity-described schemas with a live database",
    )

    # Global options
    parser.add_argument(
        "--env-prefix",
        default="",
        help=(
            "Prefix for environment variable lookup "
            "(e.g., --env-prefix APP_ reads APP_DB_PROFILE)"
        ),
    )
    parser.add_argument(
        "--profile",
        "-p",
        default=None,
        help="Profile from db.toml (default: <PREFIX>DB_PROFILE env var)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to db.toml (default: ./db.toml)",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # profiles command
    p_profiles = subparsers.add_parser(
        "profiles",
        help="List available profiles",
    )
    p_profiles.set_defaults(func=cmd_profiles)

    # tables command
    p_tables = subparsers.add_parser(
        "tables",
        help="List live tables of the active profile",
    )
    p_tables.set_defaults(func=cmd_tables)

    # diff command
    p_diff = subparsers.add_parser(
        "diff",
        help="Compare a desired schema with the live database",
    )
    p_diff.add_argument(
        "--desired",
        "-d",
        required=True,
        help='Path to JSON file with an "entities" or "projections" list',
    )
    p_diff.add_argument(
        "--drop-unknown",
        action="store_true",
        help="Propose dropping live tables no entity maps to",
    )
    p_diff.add_argument(
        "--include-unchanged",
        action="store_true",
        help="List tables without changes as empty updates",
    )
    p_diff.add_argument(
        "--json",
        action="store_true",
        help="Print the plan as JSON",
    )
    p_diff.set_defaults(func=cmd_diff)

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
