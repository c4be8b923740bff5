"""
tasksync CLI - replay feed events and mutations against an in-memory backend.

Seeds an in-memory remote store from a JSON file, loads a page into a fresh
engine, replays a JSONL script through the engine and prints the resulting
view. Each script line is one of:

    {"type": "insert" | "update" | "delete", "record": {...}, "previous_record": {...}}
    {"status": "SUBSCRIBED" | "CHANNEL_ERROR" | "TIMED_OUT" | "CLOSED"}
    {"mutation": "toggle_pin", "task_id": "...", "payload": {...}}

Blank lines and lines starting with ``#`` are skipped.
"""

import asyncio
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import typer
from pydantic import ValidationError as PydanticValidationError
from rich.console import Console
from rich.table import Table

from tasksync.cli.errors import ExitCode, print_error, print_sync_error
from tasksync.core.config import SyncConfig, load_config
from tasksync.core.query import classify
from tasksync.core.remote import InMemoryChangeFeed, InMemoryRemoteStore
from tasksync.core.sync import Err, FeedEvent, FeedStatus, MutationKind, TaskSyncEngine
from tasksync.core.tasks.models import Task, TaskCounts, TaskFilter, ensure_utc
from tasksync.utils.logging import SyncEventLogger

console = Console()

ScriptStep = tuple[int, str, Any]


def load_tasks_file(path: Path) -> list[Task]:
    """
    Read task records from a JSON file.

    Accepts a list of records or an object with an ``items`` (or ``tasks``) list.

    Raises:
        ValueError: If the file is not valid JSON or a record is invalid
    """
    data = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("items", data.get("tasks"))
    if not isinstance(data, list):
        raise ValueError("expected a JSON list of task records")
    return [Task.model_validate(record) for record in data]


def load_script(path: Path) -> list[ScriptStep]:
    """
    Parse a JSONL replay script.

    Returns:
        (line number, step kind, value) triples where kind is "event",
        "status" or "mutation"

    Raises:
        ValueError: On the first malformed line, naming its line number
    """
    steps: list[ScriptStep] = []
    with path.open(encoding="utf-8") as f:
        for lineno, raw in enumerate(f, start=1):
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            try:
                data = json.loads(line)
                if not isinstance(data, dict):
                    raise ValueError("expected a JSON object")
                if "status" in data:
                    steps.append((lineno, "status", FeedStatus(data["status"])))
                elif "mutation" in data:
                    MutationKind(data["mutation"])
                    steps.append((lineno, "mutation", data))
                else:
                    steps.append((lineno, "event", FeedEvent.model_validate(data)))
            except ValueError as e:
                raise ValueError(f"{path}:{lineno}: {e}") from e
    return steps


async def _replay(
    tasks: list[Task],
    steps: list[ScriptStep],
    *,
    config: SyncConfig,
    owner_id: str,
    task_filter: TaskFilter,
    page_size: int | None,
    now: datetime | None,
) -> tuple[TaskSyncEngine, int]:
    entity_name = config.realtime.entity_name
    clock = (lambda: now) if now is not None else None

    event_logger = None
    if config.logging.event_log:
        session_id = datetime.now(timezone.utc).strftime("replay-%Y%m%d-%H%M%S-%f")
        event_logger = SyncEventLogger.init(config.logging.project_name, session_id)

    feed = InMemoryChangeFeed()
    remote = InMemoryRemoteStore(feed, entity_name=entity_name, clock=clock)
    remote.seed(tasks)

    engine = TaskSyncEngine(
        remote,
        feed,
        owner_id=owner_id,
        config=config,
        event_logger=event_logger,
        clock=clock,
    )
    await engine.start(load=False)

    # One fetch large enough for the whole seed, so the cache mirrors it
    size = max(len(tasks), page_size or config.cache.page_size)
    loaded = await engine.load_page(1, size, task_filter)
    if isinstance(loaded, Err):
        print_sync_error(loaded.error)

    failures = 0
    for lineno, kind, value in steps:
        if kind == "status":
            feed.set_status(entity_name, value)
        elif kind == "event":
            feed.publish(entity_name, value)
        else:
            result = await engine.issue_mutation(
                value.get("task_id"), value["mutation"], value.get("payload")
            )
            if isinstance(result, Err):
                failures += 1
                console.print(f"[yellow]line {lineno}:[/yellow] {value['mutation']} failed")
                print_sync_error(result.error)

    await engine.close()
    return engine, failures


def _print_view(tasks: tuple[Task, ...], now: datetime, title: str) -> None:
    table = Table(title=title, show_header=True)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Title")
    table.add_column("Status")
    table.add_column("Priority")
    table.add_column("Due")
    table.add_column("Pinned", justify="center")

    status_styles = {
        TaskFilter.PENDING: "yellow",
        TaskFilter.OVERDUE: "red",
        TaskFilter.COMPLETE: "green",
    }
    for task in tasks:
        bucket = classify(task, now)
        table.add_row(
            task.id,
            task.title,
            f"[{status_styles[bucket]}]{bucket.value}[/{status_styles[bucket]}]",
            task.priority.value,
            task.due_date.isoformat() if task.due_date else "-",
            "📌" if task.pinned else "",
        )
    console.print(table)


def _print_counts(counts: TaskCounts) -> None:
    console.print(
        f"Total: {counts.total} | Active: {counts.active} | Pending: {counts.pending} | "
        f"Overdue: {counts.overdue} | Complete: {counts.complete} | "
        f"Assigned: {counts.assigned} | Completion: {counts.completion_percentage:.0f}%"
    )


def replay(
    tasks_file: Path = typer.Argument(
        ...,
        help="JSON file with the task records to seed the remote store with",
    ),
    script_file: Path | None = typer.Argument(
        None,
        help="JSONL file of feed events, status changes and mutations",
    ),
    task_filter: TaskFilter = typer.Option(
        TaskFilter.ALL,
        "--filter",
        "-f",
        help="Bucket to show",
    ),
    page: int = typer.Option(1, "--page", "-p", min=1, help="Page to show (1-based)"),
    page_size: int | None = typer.Option(
        None,
        "--page-size",
        min=1,
        help="Tasks per page (defaults to cache.page_size)",
    ),
    owner_id: str = typer.Option("local", "--owner", help="User id for local mutations"),
    now: datetime | None = typer.Option(
        None,
        "--now",
        help="Reference time for overdue classification (ISO 8601, UTC if naive)",
    ),
    as_json: bool = typer.Option(False, "--json", help="Print the view as JSON"),
) -> None:
    """
    Replay a change feed script against an in-memory backend.

    Examples:
        tasksync replay tasks.json
        tasksync replay tasks.json events.jsonl --filter overdue
        tasksync replay tasks.json events.jsonl --page 2 --page-size 5 --json
    """
    try:
        tasks = load_tasks_file(tasks_file)
        steps = load_script(script_file) if script_file is not None else []
    except OSError as e:
        print_error("Cannot read input file", reason=str(e))
        raise typer.Exit(ExitCode.USER_ERROR)
    except (ValueError, PydanticValidationError) as e:
        print_error("Invalid replay input", reason=str(e))
        raise typer.Exit(ExitCode.USER_ERROR)

    try:
        config = load_config()
    except PydanticValidationError as e:
        print_error("Invalid configuration", reason=str(e), solution="tasksync config")
        raise typer.Exit(ExitCode.USER_ERROR)

    reference = ensure_utc(now)
    engine, failures = asyncio.run(
        _replay(
            tasks,
            steps,
            config=config,
            owner_id=owner_id,
            task_filter=task_filter,
            page_size=page_size,
            now=reference,
        )
    )

    try:
        visible = engine.view(task_filter, page, page_size or engine.config.cache.page_size)
    except ValueError as e:
        print_error("Invalid page", reason=str(e))
        raise typer.Exit(ExitCode.USER_ERROR)
    counts = engine.statistics()

    if as_json:
        output = {
            "filter": task_filter.value,
            "page": page,
            "tasks": [task.model_dump(mode="json") for task in visible],
            "counts": counts.model_dump(mode="json"),
            "total_count": engine.get_snapshot().total_count,
            "stale": engine.stale,
            "failed_mutations": failures,
        }
        console.print(json.dumps(output, indent=2), markup=False, highlight=False, soft_wrap=True)
    else:
        _print_view(visible, engine.clock(), f"{task_filter.value} tasks (page {page})")
        _print_counts(counts)
        if engine.event_logger is not None:
            console.print(f"[dim]Event log: {engine.event_logger.get_log_file()}[/dim]")
        if engine.stale:
            console.print(
                "[yellow]⚠[/yellow]  Change feed is disconnected; cached tasks may be stale"
            )
        if failures:
            console.print(
                f"[yellow]⚠[/yellow]  {failures} mutation(s) failed and were rolled back"
            )

    if failures:
        raise typer.Exit(ExitCode.GENERAL_ERROR)
