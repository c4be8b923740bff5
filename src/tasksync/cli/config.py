"""
tasksync CLI - show the effective configuration.
"""

import json
from pathlib import Path

import typer
from pydantic import ValidationError as PydanticValidationError
from rich.console import Console
from rich.table import Table

from tasksync.cli.errors import ExitCode, print_error
from tasksync.core.config import (
    get_project_config_path,
    get_user_config_path,
    load_config,
)

console = Console()


def show_config(
    project_dir: Path | None = typer.Option(
        None,
        "--project-dir",
        "-C",
        help="Directory to read .tasksync.json from (defaults to cwd)",
    ),
    as_json: bool = typer.Option(
        False,
        "--json",
        help="Print the configuration as JSON",
    ),
) -> None:
    """
    Show the effective configuration after merging all layers.

    Precedence: defaults < user config < project config < TASKSYNC_* env vars.

    Examples:
        tasksync config
        tasksync config --json
    """
    try:
        config = load_config(project_dir, use_cache=False)
    except PydanticValidationError as e:
        print_error(
            "Invalid configuration",
            reason=str(e),
            solution=f"fix {get_project_config_path(project_dir)} or {get_user_config_path()}",
        )
        raise typer.Exit(ExitCode.USER_ERROR)

    data = config.model_dump(mode="json")
    if as_json:
        console.print(json.dumps(data, indent=2), markup=False, highlight=False, soft_wrap=True)
        return

    table = Table(title="tasksync configuration", show_header=True)
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    for section, values in data.items():
        if not isinstance(values, dict):
            table.add_row(section, str(values))
            continue
        for key, value in values.items():
            table.add_row(f"{section}.{key}", "-" if value is None else str(value))
    console.print(table)

    console.print(f"[dim]User config: {get_user_config_path()}[/dim]")
    console.print(f"[dim]Project config: {get_project_config_path(project_dir)}[/dim]")
