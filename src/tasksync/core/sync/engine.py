"""
Presentation-facing sync engine.

TaskSyncEngine wires one TaskCache to its writers (the MutationCoordinator
and the RealtimeIngester) and exposes the API the presentation layer uses:
snapshots, change subscriptions, mutations, page loads and filtered views.

Example:
    >>> feed = InMemoryChangeFeed()
    >>> engine = TaskSyncEngine(InMemoryRemoteStore(feed), feed, owner_id="user-1")
    >>> await engine.start()
    >>> result = await engine.create_task({"title": "Water plants"})
    >>> [task.title for task in engine.view(TaskFilter.ALL)]
    ['Water plants']
    >>> await engine.close()
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from datetime import datetime, timezone
from typing import Any

from tasksync.core.cache.models import CacheChange, CacheSnapshot
from tasksync.core.cache.store import TaskCache
from tasksync.core.config.models import SyncConfig
from tasksync.core.query.view import statistics, view
from tasksync.core.sync.errors import Err, Ok, Result
from tasksync.core.sync.mutations import MutationCoordinator, MutationKind, build_mutation
from tasksync.core.sync.ports import ChangeFeed, RemoteStore
from tasksync.core.sync.realtime import RealtimeIngester
from tasksync.core.sync.retry import RemoteCallPolicy
from tasksync.core.tasks.models import (
    Task,
    TaskCounts,
    TaskCreate,
    TaskFilter,
    TaskPage,
    TaskPatch,
)
from tasksync.utils.logging import SyncEventLogger

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TaskSyncEngine:
    """
    One task cache kept in sync with a remote store and a change feed.

    Attributes:
        cache: The canonical TaskCache
        coordinator: Runs optimistic mutations
        ingester: Applies change feed events (None without a feed)
        policy: Timeout/retry policy for every remote call
    """

    def __init__(
        self,
        remote: RemoteStore,
        feed: ChangeFeed | None = None,
        *,
        owner_id: str,
        config: SyncConfig | None = None,
        policy: RemoteCallPolicy | None = None,
        event_logger: SyncEventLogger | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.config = config or SyncConfig()
        self.remote = remote
        self.owner_id = owner_id
        self.event_logger = event_logger
        self.clock = clock or _utcnow

        remote_config = self.config.remote
        self.policy = policy or RemoteCallPolicy(
            timeout_seconds=remote_config.timeout_seconds,
            max_retries=remote_config.max_retries,
            base_delay=remote_config.base_delay,
            multiplier=remote_config.multiplier,
        )
        self.cache = TaskCache(
            page_size=self.config.cache.page_size,
            tombstone_limit=self.config.cache.tombstone_limit,
        )
        self.coordinator = MutationCoordinator(
            self.cache,
            remote,
            self.policy,
            owner_id=owner_id,
            event_logger=event_logger,
            clock=self.clock,
        )

        self.ingester: RealtimeIngester | None = None
        if feed is not None:
            self.ingester = RealtimeIngester(
                self.cache,
                feed,
                entity_name=self.config.realtime.entity_name,
                on_resync=(
                    self._schedule_resync if self.config.realtime.resync_on_reconnect else None
                ),
                event_logger=event_logger,
            )

        self._filter = TaskFilter.ALL
        self._resync_task: asyncio.Task[Any] | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, *, load: bool = True) -> Result[TaskPage] | None:
        """
        Subscribe to the change feed and (by default) load the first page.

        Returns:
            The first page load result, or None when ``load`` is False
        """
        if self.ingester is not None:
            self.ingester.start()
        if not load:
            return None
        return await self.load_page(1)

    async def close(self) -> None:
        """Unsubscribe from the feed and wait for a running resync."""
        if self.ingester is not None:
            self.ingester.stop()
        task, self._resync_task = self._resync_task, None
        if task is not None and not task.done():
            await task

    async def __aenter__(self) -> TaskSyncEngine:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_snapshot(self) -> CacheSnapshot:
        """Immutable view of the visible cache state."""
        return self.cache.snapshot()

    def subscribe_to_changes(
        self, listener: Callable[[CacheChange], None]
    ) -> Callable[[], None]:
        """Call ``listener`` after every accepted cache write; returns the unsubscriber."""
        return self.cache.subscribe(listener)

    def view(
        self,
        task_filter: TaskFilter | str = TaskFilter.ALL,
        page: int = 1,
        page_size: int | None = None,
    ) -> tuple[Task, ...]:
        """Filtered, ordered page of cached tasks (see ``tasksync.core.query.view``)."""
        size = page_size or self.cache.pagination.page_size
        return view(self.cache.snapshot(), task_filter, page, size, self.clock())

    def statistics(self) -> TaskCounts:
        return statistics(self.cache.snapshot(), self.clock())

    @property
    def stale(self) -> bool:
        return self.cache.stale

    # ------------------------------------------------------------------
    # Page fetches
    # ------------------------------------------------------------------

    async def load_page(
        self,
        page: int = 1,
        page_size: int | None = None,
        task_filter: TaskFilter | str | None = None,
    ) -> Result[TaskPage]:
        """
        Fetch one page from the remote store and merge it into the cache.

        Fetched values go through reconciliation like any other write, so a
        response that raced a delete or a newer feed update cannot undo it.
        """
        if page < 1:
            raise ValueError(f"page must be >= 1, got {page}")
        size = page_size or self.cache.pagination.page_size
        if task_filter is not None:
            self._filter = TaskFilter(task_filter)
        current_filter = self._filter

        result = await self.policy.execute(
            lambda: self.remote.list(page, size, current_filter),
            label=f"list page {page}",
        )
        if isinstance(result, Err):
            logger.warning("Loading page %d failed: %s", page, result.error)
            return result

        fetched = result.value
        self.cache.load_page(fetched.items, fetched.total_count, page, size)
        logger.debug(
            "Loaded page %d (%d tasks of %d)", page, len(fetched.items), fetched.total_count
        )
        return result

    async def refresh(self) -> Result[TaskPage]:
        """Re-fetch the current page with the current filter."""
        pagination = self.cache.pagination
        result = await self.load_page(pagination.current_page, pagination.page_size)
        if isinstance(result, Ok):
            logger.info("Resynced page %d", pagination.current_page)
            if self.event_logger is not None:
                self.event_logger.log_resync(
                    pagination.current_page, len(result.value.items), result.value.total_count
                )
        return result

    def _schedule_resync(self) -> None:
        if self._resync_task is not None and not self._resync_task.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("Feed reconnected outside the event loop; call refresh() to resync")
            return
        self._resync_task = loop.create_task(self._resync())

    async def _resync(self) -> None:
        result = await self.refresh()
        if isinstance(result, Err) and self.event_logger is not None:
            self.event_logger.log_error("resync failed", {"error": str(result.error)})

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def issue_mutation(
        self,
        task_id: str | None,
        kind: MutationKind | str,
        payload: Mapping[str, Any] | None = None,
    ) -> Result[Task | None]:
        """
        Validate and run a mutation.

        Args:
            task_id: Target task; the parent for follow-ups; None for create
            kind: One of the MutationKind values
            payload: Fields for create, follow-up and update

        Returns:
            Ok(confirmed task) (Ok(None) for deletes) or Err(ValidationError,
            ServerRejection or ConflictError), delivered after the cache has
            settled
        """
        built = build_mutation(task_id, kind, payload)
        if isinstance(built, Err):
            return built
        return await self.coordinator.run(built.value)

    async def create_task(self, fields: Mapping[str, Any] | TaskCreate) -> Result[Task | None]:
        return await self.coordinator.create(fields)

    async def update_task(
        self, task_id: str, patch: Mapping[str, Any] | TaskPatch
    ) -> Result[Task | None]:
        return await self.coordinator.update(task_id, patch)

    async def toggle_status(self, task_id: str) -> Result[Task | None]:
        return await self.coordinator.toggle_status(task_id)

    async def toggle_pin(self, task_id: str) -> Result[Task | None]:
        return await self.coordinator.toggle_pin(task_id)

    async def delete_task(self, task_id: str) -> Result[Task | None]:
        return await self.coordinator.delete(task_id)

    async def create_follow_up(
        self, parent_id: str, fields: Mapping[str, Any] | TaskCreate
    ) -> Result[Task | None]:
        return await self.coordinator.create_follow_up(parent_id, fields)


__all__ = ["TaskSyncEngine"]
