"""
Data models for the task cache.

Cache entries, snapshots and pagination are frozen dataclasses: the cache
replaces them instead of mutating them, so a snapshot handed to a reader can
never change underneath it.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType

from tasksync.core.tasks.models import Task


class WriteSource(str, Enum):
    """Where a candidate write came from."""

    MUTATION = "mutation"  # local optimistic write or its confirmation
    REALTIME = "realtime"  # push/change feed
    FETCH = "fetch"  # page fetch from the remote store


class Verdict(str, Enum):
    """Reconciliation outcome for a candidate write."""

    ACCEPT = "accept"
    REJECT = "reject"
    DEFER = "defer"


class ChangeKind(str, Enum):
    """Kinds of accepted cache writes reported to listeners."""

    UPSERT = "upsert"
    REMOVE = "remove"
    HIDE = "hide"
    RESTORE = "restore"
    REPLACE = "replace"
    PAGE = "page"
    STALE = "stale"


@dataclass(frozen=True)
class CacheEntry:
    """
    A task plus the bookkeeping reconciliation needs.

    Attributes:
        task: The current task value
        updated_at: Copy of ``task.updated_at`` for fast comparison
        pending_mutation_id: Generation number of the in-flight local write, if any
        deferred: The most recent candidate withheld while a write was pending
        deferred_source: Where the deferred candidate came from
        deferred_insert: Whether the deferred candidate arrived as a feed insert
        hidden: True while an optimistic delete is awaiting confirmation
    """

    task: Task
    updated_at: datetime
    pending_mutation_id: int | None = None
    deferred: Task | None = None
    deferred_source: WriteSource | None = None
    deferred_insert: bool = False
    hidden: bool = False

    @classmethod
    def from_task(cls, task: Task) -> CacheEntry:
        return cls(task=task, updated_at=task.updated_at)

    @property
    def is_pending(self) -> bool:
        return self.pending_mutation_id is not None


@dataclass(frozen=True)
class Pagination:
    """Pagination aggregate: which page is loaded and how many tasks exist remotely."""

    current_page: int = 1
    page_size: int = 10
    total_count: int = 0


@dataclass(frozen=True)
class CacheSnapshot:
    """
    Immutable view of the cache for readers.

    Only visible entries are included (optimistically deleted tasks are
    not). ``version`` increases with every accepted write and is excluded
    from equality so that two snapshots with the same contents compare
    equal.
    """

    entries: Mapping[str, CacheEntry] = field(default_factory=lambda: MappingProxyType({}))
    pagination: Pagination = field(default_factory=Pagination)
    stale: bool = False
    version: int = field(default=0, compare=False)

    @property
    def tasks(self) -> tuple[Task, ...]:
        """Visible tasks in cache insertion order."""
        return tuple(entry.task for entry in self.entries.values())

    @property
    def total_count(self) -> int:
        return self.pagination.total_count

    def get(self, task_id: str) -> Task | None:
        entry = self.entries.get(task_id)
        return entry.task if entry is not None else None

    def __contains__(self, task_id: object) -> bool:
        return task_id in self.entries

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[Task]:
        return iter(self.tasks)


@dataclass(frozen=True)
class EntrySnapshot:
    """
    State of a single entry captured before an optimistic write.

    Used only for rollback. ``entry`` is None when the id was absent.
    """

    task_id: str
    entry: CacheEntry | None
    position: int | None = None


@dataclass(frozen=True)
class CacheChange:
    """Notification payload delivered to cache listeners."""

    kind: ChangeKind
    task_id: str | None = None
    source: WriteSource | None = None
