"""
In-memory remote store and change feed.

These adapters behave like a real backend closely enough to drive the
engine end to end: the store assigns ids and timestamps and echoes every
write to the feed, the way a database change stream would. Both expose
fault injection (failing calls, latency, gating, dropped, duplicated and
reordered feed events) for tests and for ``tasksync replay``.

Example:
    >>> feed = InMemoryChangeFeed()
    >>> remote = InMemoryRemoteStore(feed)
    >>> remote.seed([task])
    >>> remote.fail_next("update_status", ServerRejection("denied", code="permission_denied"))
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import defaultdict, deque
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta, timezone
from typing import Any

from tasksync.core.query.view import matches, view
from tasksync.core.sync.errors import ConflictError, Err, Ok, Result, SyncError
from tasksync.core.sync.ports import FeedEvent, FeedHandler, FeedStatus, StatusHandler
from tasksync.core.tasks.models import Task, TaskCreate, TaskFilter, TaskPage, TaskStatus

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ==============================================================================
# Change feed
# ==============================================================================


class InMemoryChangeFeed:
    """
    Synchronous in-process change feed.

    Events are delivered to handlers as soon as they are published unless
    the feed is held, in which case they are buffered until ``release``.

    Attributes:
        drop_next: Number of upcoming events to silently drop
        duplicate: Deliver every event twice (at-least-once delivery)
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, list[tuple[FeedHandler, StatusHandler | None]]] = (
            defaultdict(list)
        )
        self._held: list[tuple[str, FeedEvent]] | None = None
        self.drop_next = 0
        self.duplicate = False
        self.published: list[tuple[str, FeedEvent]] = []

    def subscribe(
        self,
        entity_name: str,
        handler: FeedHandler,
        on_status: StatusHandler | None = None,
    ) -> Callable[[], None]:
        subscription = (handler, on_status)
        self._subscribers[entity_name].append(subscription)
        if on_status is not None:
            on_status(FeedStatus.SUBSCRIBED)

        def unsubscribe() -> None:
            subscribers = self._subscribers.get(entity_name, [])
            if subscription in subscribers:
                subscribers.remove(subscription)
                if on_status is not None:
                    on_status(FeedStatus.CLOSED)

        return unsubscribe

    def subscriber_count(self, entity_name: str) -> int:
        return len(self._subscribers.get(entity_name, []))

    def publish(self, entity_name: str, event: FeedEvent) -> None:
        """Deliver ``event`` to every subscriber of ``entity_name``."""
        self.published.append((entity_name, event))
        if self.drop_next > 0:
            self.drop_next -= 1
            logger.debug("Dropping %s event for %s", event.type, event.task_id)
            return
        if self._held is not None:
            self._held.append((entity_name, event))
            return
        self._deliver(entity_name, event)

    def emit(
        self,
        entity_name: str,
        event_type: str,
        record: dict[str, Any],
        previous_record: dict[str, Any] | None = None,
    ) -> None:
        """Build and publish an event from raw fields."""
        self.publish(
            entity_name,
            FeedEvent(type=event_type, record=record, previous_record=previous_record),
        )

    def _deliver(self, entity_name: str, event: FeedEvent) -> None:
        copies = 2 if self.duplicate else 1
        for handler, _ in list(self._subscribers.get(entity_name, [])):
            for _ in range(copies):
                try:
                    handler(event)
                except Exception:
                    logger.exception("Feed handler failed on %s event", event.type)

    # ------------------------------------------------------------------
    # Fault injection
    # ------------------------------------------------------------------

    def hold(self) -> None:
        """Buffer events instead of delivering them."""
        if self._held is None:
            self._held = []

    def release(self, reverse: bool = False) -> int:
        """
        Deliver buffered events and stop holding.

        Args:
            reverse: Deliver newest first (simulates reordering)

        Returns:
            Number of events delivered
        """
        held, self._held = self._held or [], None
        if reverse:
            held.reverse()
        for entity_name, event in held:
            self._deliver(entity_name, event)
        return len(held)

    def set_status(self, entity_name: str, status: FeedStatus) -> None:
        """Report a subscription status change (e.g. a dropped channel)."""
        for _, on_status in list(self._subscribers.get(entity_name, [])):
            if on_status is not None:
                on_status(status)


# ==============================================================================
# Remote store
# ==============================================================================


class InMemoryRemoteStore:
    """
    Remote store backed by a dict.

    Timestamps handed out by the store strictly increase, so every write
    is newer than the one before it.

    Attributes:
        feed: Change feed that receives an echo of every write (optional)
        entity_name: Feed entity the echoes are published under
        latency: Seconds to sleep before answering each call
        gate: When set, every call waits for this event before answering
        calls: Log of (operation, task_id) pairs, for assertions
    """

    def __init__(
        self,
        feed: InMemoryChangeFeed | None = None,
        *,
        entity_name: str = "tasks",
        clock: Callable[[], datetime] | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self.feed = feed
        self.entity_name = entity_name
        self.clock = clock or _utcnow
        self.id_factory = id_factory or (lambda: uuid.uuid4().hex)

        self.latency = 0.0
        self.gate: asyncio.Event | None = None
        self.calls: list[tuple[str, str | None]] = []

        self._tasks: dict[str, Task] = {}
        self._faults: dict[str, deque[SyncError]] = defaultdict(deque)
        self._last_stamp: datetime | None = None

    # ------------------------------------------------------------------
    # Test helpers
    # ------------------------------------------------------------------

    def seed(self, tasks: Iterable[Task]) -> None:
        """Store tasks as-is, without echoing them to the feed."""
        for task in tasks:
            self._tasks[task.id] = task

    def get(self, task_id: str) -> Task | None:
        return self._tasks.get(task_id)

    @property
    def tasks(self) -> tuple[Task, ...]:
        return tuple(self._tasks.values())

    def fail_next(self, operation: str, error: SyncError, times: int = 1) -> None:
        """
        Make the next ``times`` calls of ``operation`` return ``Err(error)``.

        ``operation`` is one of create, update, update_status, delete, list.
        """
        for _ in range(times):
            self._faults[operation].append(error)

    def _stamp(self, after: datetime | None = None) -> datetime:
        now = self.clock()
        for floor in (self._last_stamp, after):
            if floor is not None and now <= floor:
                now = floor + timedelta(microseconds=1)
        self._last_stamp = now
        return now

    async def _enter(self, operation: str, task_id: str | None) -> SyncError | None:
        self.calls.append((operation, task_id))
        if self.latency:
            await asyncio.sleep(self.latency)
        if self.gate is not None:
            await self.gate.wait()
        faults = self._faults.get(operation)
        if faults:
            return faults.popleft()
        return None

    def _echo(self, event_type: str, task: Task) -> None:
        if self.feed is None:
            return
        if event_type == "delete":
            # Delete events only carry the old primary key
            self.feed.emit(self.entity_name, "delete", {}, {"id": task.id})
        else:
            self.feed.emit(self.entity_name, event_type, task.model_dump(mode="json"))

    # ------------------------------------------------------------------
    # RemoteStore protocol
    # ------------------------------------------------------------------

    async def create(self, fields: TaskCreate, owner_id: str) -> Result[Task]:
        fault = await self._enter("create", None)
        if fault is not None:
            return Err(fault)

        now = self._stamp()
        task = Task(
            id=self.id_factory(),
            owner_id=owner_id,
            created_at=now,
            updated_at=now,
            **fields.model_dump(),
        )
        self._tasks[task.id] = task
        self._echo("insert", task)
        return Ok(task)

    async def update(self, task_id: str, patch: dict[str, Any]) -> Result[Task]:
        fault = await self._enter("update", task_id)
        if fault is not None:
            return Err(fault)
        return self._write(task_id, patch)

    async def update_status(self, task_id: str, status: TaskStatus) -> Result[Task]:
        fault = await self._enter("update_status", task_id)
        if fault is not None:
            return Err(fault)
        return self._write(task_id, {"status": status})

    def _write(self, task_id: str, changes: dict[str, Any]) -> Result[Task]:
        current = self._tasks.get(task_id)
        if current is None:
            return Err(ConflictError(task_id))
        task = Task.model_validate(
            {**current.model_dump(), **changes, "updated_at": self._stamp(current.updated_at)}
        )
        self._tasks[task_id] = task
        self._echo("update", task)
        return Ok(task)

    async def delete(self, task_id: str) -> Result[None]:
        fault = await self._enter("delete", task_id)
        if fault is not None:
            return Err(fault)
        task = self._tasks.pop(task_id, None)
        if task is None:
            return Err(ConflictError(task_id))
        self._echo("delete", task)
        return Ok(None)

    async def list(self, page: int, page_size: int, filter: TaskFilter) -> Result[TaskPage]:
        fault = await self._enter("list", None)
        if fault is not None:
            return Err(fault)
        now = self.clock()
        tasks = list(self._tasks.values())
        items = view(tasks, filter, page, page_size, now)
        total = sum(1 for task in tasks if matches(task, TaskFilter(filter), now))
        return Ok(TaskPage(items=list(items), total_count=total))


__all__ = ["InMemoryChangeFeed", "InMemoryRemoteStore"]
