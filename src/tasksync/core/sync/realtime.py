"""
Change feed ingestion.

RealtimeIngester turns feed notifications into cache writes. Inserts and
updates are offered to the cache as realtime candidates (and so pass
through reconciliation); deletes remove the task unconditionally. The feed
carries no usable sequence numbers, so events are not reordered here:
ordering between concurrent edits of one task relies on ``updated_at``.

When the subscription drops the cache is marked stale. Once the feed
reports SUBSCRIBED again, the resync callback is invoked so the engine can
re-fetch the current page in the background.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from tasksync.core.cache.models import Verdict, WriteSource
from tasksync.core.cache.store import TaskCache
from tasksync.core.sync.errors import RealtimeDisconnect
from tasksync.core.sync.ports import ChangeFeed, FeedEvent, FeedStatus
from tasksync.core.tasks.models import Task
from tasksync.utils.logging import SyncEventLogger

logger = logging.getLogger(__name__)

DISCONNECTED_STATUSES = frozenset(
    {FeedStatus.CHANNEL_ERROR, FeedStatus.CLOSED, FeedStatus.TIMED_OUT}
)


class RealtimeIngester:
    """
    Subscribes to the change feed and applies its events to the cache.

    Attributes:
        entity_name: Feed entity to subscribe to
        on_resync: Called when the feed reconnects after the cache went stale
    """

    def __init__(
        self,
        cache: TaskCache,
        feed: ChangeFeed,
        *,
        entity_name: str = "tasks",
        on_resync: Callable[[], None] | None = None,
        event_logger: SyncEventLogger | None = None,
    ) -> None:
        self.cache = cache
        self.feed = feed
        self.entity_name = entity_name
        self.on_resync = on_resync
        self.event_logger = event_logger

        self._unsubscribe: Callable[[], None] | None = None
        self._status: FeedStatus | None = None
        self._last_disconnect: RealtimeDisconnect | None = None

    @property
    def running(self) -> bool:
        return self._unsubscribe is not None

    @property
    def status(self) -> FeedStatus | None:
        """Last status reported by the feed."""
        return self._status

    @property
    def last_disconnect(self) -> RealtimeDisconnect | None:
        return self._last_disconnect

    def start(self) -> None:
        """Subscribe to the feed. Calling it again while running is a no-op."""
        if self._unsubscribe is not None:
            return
        self._unsubscribe = self.feed.subscribe(
            self.entity_name, self.handle, self.handle_status
        )
        logger.debug("Subscribed to %s change feed", self.entity_name)

    def stop(self) -> None:
        """Cancel the feed subscription."""
        if self._unsubscribe is None:
            return
        unsubscribe, self._unsubscribe = self._unsubscribe, None
        unsubscribe()
        logger.debug("Unsubscribed from %s change feed", self.entity_name)

    def handle(self, event: FeedEvent | Mapping[str, Any]) -> Verdict | None:
        """
        Apply one feed event to the cache.

        Malformed events and records are logged and dropped.

        Returns:
            The reconciliation verdict for inserts and updates, ACCEPT for a
            delete that removed something, None when the event was dropped
            or the delete was a no-op
        """
        if not isinstance(event, FeedEvent):
            try:
                event = FeedEvent.model_validate(event)
            except PydanticValidationError as e:
                logger.warning("Dropping malformed feed event: %s", e)
                return None

        if event.type == "delete":
            return self._handle_delete(event)

        try:
            candidate = Task.model_validate(event.record)
        except PydanticValidationError as e:
            logger.warning(
                "Dropping %s event with invalid record %s: %s",
                event.type,
                event.task_id,
                e,
            )
            if self.event_logger is not None:
                self.event_logger.log_error(
                    "invalid feed record", {"type": event.type, "task_id": event.task_id}
                )
            return None

        verdict = self.cache.upsert(
            candidate, WriteSource.REALTIME, insert=event.type == "insert"
        )
        logger.debug("Feed %s for %s: %s", event.type, candidate.id, verdict.value)
        if self.event_logger is not None:
            self.event_logger.log_realtime_event(event.type, candidate.id, verdict.value)
            if verdict == Verdict.DEFER:
                self.event_logger.log_deferred(candidate.id, WriteSource.REALTIME.value)
        return verdict

    def _handle_delete(self, event: FeedEvent) -> Verdict | None:
        task_id = event.task_id
        if task_id is None:
            logger.warning("Dropping delete event without a task id")
            return None

        removed = self.cache.remove(task_id)
        logger.debug("Feed delete for %s (removed=%s)", task_id, removed)
        if self.event_logger is not None:
            self.event_logger.log_realtime_event(
                event.type, task_id, Verdict.ACCEPT.value if removed else "noop"
            )
        return Verdict.ACCEPT if removed else None

    def handle_status(self, status: FeedStatus | str) -> None:
        """React to a subscription status change."""
        status = FeedStatus(status)
        previous, self._status = self._status, status

        if status == FeedStatus.CLOSED and not self.running:
            logger.debug("%s feed closed by stop()", self.entity_name)
            return

        if status in DISCONNECTED_STATUSES:
            self._last_disconnect = RealtimeDisconnect(
                f"{self.entity_name} feed reported {status.value}"
            )
            logger.warning("%s; cached tasks may be stale", self._last_disconnect)
            self.cache.mark_stale()
            if self.event_logger is not None:
                self.event_logger.log_stale(status.value)
            return

        if status == FeedStatus.SUBSCRIBED and self.cache.stale:
            logger.info(
                "%s feed reconnected (was %s), resyncing",
                self.entity_name,
                previous.value if previous else "unknown",
            )
            if self.on_resync is not None:
                self.on_resync()


__all__ = ["DISCONNECTED_STATUSES", "RealtimeIngester"]
