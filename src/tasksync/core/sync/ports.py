"""
Collaborator protocols consumed by the sync engine.

The engine talks to two external collaborators: the remote store (the
authority for task data) and the change feed (best-effort push
notifications). Both are defined as protocols so any implementation can be
plugged in: the in-memory adapters, the HTTP client, or test fakes.
"""

from __future__ import annotations

from collections.abc import Callable
from enum import Enum
from typing import Any, Literal, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from tasksync.core.sync.errors import Result
from tasksync.core.tasks.models import Task, TaskCreate, TaskFilter, TaskPage, TaskStatus


class FeedStatus(str, Enum):
    """Subscription status reported by a change feed."""

    SUBSCRIBED = "SUBSCRIBED"
    CHANNEL_ERROR = "CHANNEL_ERROR"
    TIMED_OUT = "TIMED_OUT"
    CLOSED = "CLOSED"


class FeedEvent(BaseModel):
    """
    One change notification from the feed.

    ``record`` is the row after the change; for deletes the row before the
    change may only be available in ``previous_record``.
    """

    type: Literal["insert", "update", "delete"]
    record: dict[str, Any] = Field(default_factory=dict)
    previous_record: dict[str, Any] | None = Field(default=None)

    model_config = ConfigDict(frozen=True)

    @property
    def task_id(self) -> str | None:
        """Best-effort id of the affected task."""
        for row in (self.record, self.previous_record or {}):
            value = row.get("id")
            if value:
                return str(value)
        return None


FeedHandler = Callable[[FeedEvent], None]
StatusHandler = Callable[[FeedStatus], None]


@runtime_checkable
class RemoteStore(Protocol):
    """
    Protocol for the remote task store.

    Every operation returns a Result: ``Ok`` with the resulting task (or
    None for deletes), or ``Err`` carrying NetworkError, ServerRejection or
    ConflictError. Implementations should not raise for expected failures.
    """

    async def create(self, fields: TaskCreate, owner_id: str) -> Result[Task]:
        """Create a task; the store assigns id and timestamps."""
        ...

    async def update(self, task_id: str, patch: dict[str, Any]) -> Result[Task]:
        """Apply a partial update to a task."""
        ...

    async def update_status(self, task_id: str, status: TaskStatus) -> Result[Task]:
        """Set a task's stored status."""
        ...

    async def delete(self, task_id: str) -> Result[None]:
        """Delete a task."""
        ...

    async def list(self, page: int, page_size: int, filter: TaskFilter) -> Result[TaskPage]:
        """Fetch one page of tasks plus the total count."""
        ...


@runtime_checkable
class ChangeFeed(Protocol):
    """Protocol for the push/change feed."""

    def subscribe(
        self,
        entity_name: str,
        handler: FeedHandler,
        on_status: StatusHandler | None = None,
    ) -> Callable[[], None]:
        """
        Subscribe to changes of ``entity_name``.

        Delivery is at-least-once with no ordering guarantee.

        Returns:
            A callable that cancels the subscription
        """
        ...
