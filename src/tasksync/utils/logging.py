"""
Structured JSONL event log for tasksync.

Provides a SyncEventLogger class that writes timestamped JSON Lines events
describing what the sync engine did: mutations begun, committed and
aborted, feed events received, candidates deferred, staleness and resyncs.
Events are written to ~/.local/share/tasksync/logs/{project}/{session}.jsonl

Each log line is valid JSON with the format:
{
  "timestamp": "2026-01-15T12:34:56.789Z",
  "event_type": "mutation_commit",
  "data": { ... event-specific data ... }
}
"""

import os
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class EventType(str, Enum):
    """Types of events that can be logged."""

    MUTATION_BEGIN = "mutation_begin"
    MUTATION_COMMIT = "mutation_commit"
    MUTATION_ABORT = "mutation_abort"
    REALTIME_EVENT = "realtime_event"
    CANDIDATE_DEFERRED = "candidate_deferred"
    CACHE_STALE = "cache_stale"
    RESYNC = "resync"
    ERROR = "error"


class LogEntry(BaseModel):
    """A single structured log entry in JSONL format."""

    model_config = ConfigDict(use_enum_values=True)

    timestamp: datetime = Field(..., description="When the event occurred (ISO 8601 format)")
    event_type: EventType = Field(..., description="Type of event")
    data: dict[str, Any] = Field(default_factory=dict, description="Event-specific data")


class SyncEventLogger:
    """
    Structured JSONL logger for sync engine events.

    Example:
        logger = SyncEventLogger.init("my_project", "session-123")
        logger.log_mutation_begin(1, "toggle_pin", "7f1c")
        logger.log_mutation_commit(1, "toggle_pin", "7f1c")
    """

    def __init__(self, log_file: Path):
        """
        Initialize logger with a log file path.

        Args:
            log_file: Path to the JSONL log file (will be created if needed)
        """
        self.log_file = Path(log_file)
        self.log_file.parent.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def init(project_name: str, session_id: str) -> "SyncEventLogger":
        """
        Initialize a logger for a project session.

        Logs are written to ~/.local/share/tasksync/logs/{project_name}/{session_id}.jsonl

        Raises:
            ValueError: If project_name or session_id are empty
        """
        if not project_name:
            raise ValueError("project_name cannot be empty")
        if not session_id:
            raise ValueError("session_id cannot be empty")

        xdg_data_home = os.environ.get("XDG_DATA_HOME")
        if not xdg_data_home:
            xdg_data_home = os.path.expanduser("~/.local/share")

        log_dir = Path(xdg_data_home) / "tasksync" / "logs" / project_name
        return SyncEventLogger(log_dir / f"{session_id}.jsonl")

    def log_event(self, event_type: EventType, data: dict[str, Any] | None = None) -> None:
        """
        Write a log event to the JSONL file.

        Write failures are reported on stdout and otherwise ignored, so the
        event log can never stall the engine.
        """
        entry = LogEntry(
            timestamp=datetime.now(timezone.utc), event_type=event_type, data=data or {}
        )
        log_line = entry.model_dump_json(exclude_none=True) + "\n"

        try:
            with open(self.log_file, "a", encoding="utf-8") as f:
                f.write(log_line)
        except OSError as e:
            print(f"Warning: Failed to write to log file {self.log_file}: {e}", flush=True)

    def log_mutation_begin(self, mutation_id: int, kind: str, task_id: str) -> None:
        self.log_event(
            EventType.MUTATION_BEGIN,
            {"mutation_id": mutation_id, "kind": kind, "task_id": task_id},
        )

    def log_mutation_commit(
        self, mutation_id: int, kind: str, task_id: str, confirmed_id: str | None = None
    ) -> None:
        data: dict[str, Any] = {"mutation_id": mutation_id, "kind": kind, "task_id": task_id}
        if confirmed_id is not None and confirmed_id != task_id:
            data["confirmed_id"] = confirmed_id
        self.log_event(EventType.MUTATION_COMMIT, data)

    def log_mutation_abort(
        self, mutation_id: int, kind: str, task_id: str, error: BaseException
    ) -> None:
        self.log_event(
            EventType.MUTATION_ABORT,
            {
                "mutation_id": mutation_id,
                "kind": kind,
                "task_id": task_id,
                "error_type": type(error).__name__,
                "error": str(error),
            },
        )

    def log_realtime_event(self, event_type: str, task_id: str | None, verdict: str) -> None:
        self.log_event(
            EventType.REALTIME_EVENT,
            {"type": event_type, "task_id": task_id, "verdict": verdict},
        )

    def log_deferred(self, task_id: str, source: str) -> None:
        self.log_event(EventType.CANDIDATE_DEFERRED, {"task_id": task_id, "source": source})

    def log_stale(self, status: str) -> None:
        self.log_event(EventType.CACHE_STALE, {"status": status})

    def log_resync(self, page: int, fetched: int, total_count: int) -> None:
        self.log_event(
            EventType.RESYNC, {"page": page, "fetched": fetched, "total_count": total_count}
        )

    def log_error(self, message: str, context: dict[str, Any] | None = None) -> None:
        """Log an error event with optional context."""
        data: dict[str, Any] = {"message": message}
        if context:
            data["context"] = context
        self.log_event(EventType.ERROR, data)

    def get_log_file(self) -> Path:
        """Get the path to the log file."""
        return self.log_file
