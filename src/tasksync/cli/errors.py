"""
Standardized error handling and exit codes for the tasksync CLI.
"""

from enum import IntEnum

from rich.console import Console

from tasksync.core.sync.errors import SyncError, ValidationError

console = Console()


class ExitCode(IntEnum):
    """Standard exit codes for tasksync CLI operations."""

    SUCCESS = 0
    """Operation completed successfully."""

    GENERAL_ERROR = 1
    """Generic error (remote failure, unexpected state)."""

    USER_ERROR = 2
    """Bad input file or configuration (actionable by user)."""


def print_error(
    problem: str,
    *,
    reason: str | None = None,
    solution: str | None = None,
) -> None:
    """
    Print a standardized error message with actionable guidance.

    Args:
        problem: Brief description of what went wrong
        reason: Optional explanation of why it happened
        solution: Optional command or action to fix it

    Example:
        >>> print_error(
        ...     "Cannot read tasks file",
        ...     reason="tasks.json: No such file or directory",
        ...     solution="tasksync replay path/to/tasks.json",
        ... )
    """
    console.print(f"[red]Error:[/red] {problem}")

    if reason:
        console.print(f"[dim]{reason}[/dim]")

    if solution:
        console.print(f"[cyan]→ Try:[/cyan] {solution}")


def print_sync_error(error: SyncError) -> None:
    """Print a SyncError returned by the engine, with field details if any."""
    if isinstance(error, ValidationError):
        print_error(error.message, reason="; ".join(error.errors))
        return
    print_error(f"{type(error).__name__}: {error}")
