"""
tasksync CLI - Main application entry point.

This module sets up the Typer CLI application with all subcommands.
"""

import logging

import typer
from rich.console import Console

from tasksync import __version__
from tasksync.cli import config, replay
from tasksync.core.config.env import load_layered_env

app = typer.Typer(
    name="tasksync",
    help="Client-side task cache synchronization engine",
    no_args_is_help=True,
    add_completion=False,
    context_settings={"help_option_names": ["--help", "-h"]},
)

console = Console()


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"tasksync {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Enable debug output with detailed logging",
    ),
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show the version and exit",
    ),
) -> None:
    """
    tasksync - keep a task cache consistent with a remote store and a change feed.

    Examples:
        tasksync replay tasks.json events.jsonl --filter overdue
        tasksync config --json
    """
    # Load layered env files early so API keys and TASKSYNC_* overrides apply.
    # Precedence: OS env > project .env > user .env
    load_layered_env()

    if debug:
        logging.basicConfig(level=logging.DEBUG)

    ctx.obj = {"debug": debug}


app.command(name="replay")(replay.replay)
app.command(name="config")(config.show_config)


def cli_main() -> None:
    """Main CLI entry point."""
    app()


__all__ = ["app", "cli_main"]
