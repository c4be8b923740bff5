"""
Canonical in-memory task cache.

TaskCache is the single owner of cached task entries and of the pagination
aggregate. Writers never replace entries directly: every candidate value is
passed through the reconciliation policy, and the cache acts on the verdict.
All operations are synchronous, so on a single event loop a reader never
observes a half-applied write.

Example:
    >>> cache = TaskCache()
    >>> unsubscribe = cache.subscribe(lambda change: print(change.kind))
    >>> cache.upsert(task, WriteSource.REALTIME)
    upsert
    <Verdict.ACCEPT: 'accept'>
    >>> cache.snapshot().get(task.id) == task
    True
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from collections.abc import Callable, Iterable
from dataclasses import replace
from types import MappingProxyType

from tasksync.core.cache.models import (
    CacheChange,
    CacheEntry,
    CacheSnapshot,
    ChangeKind,
    EntrySnapshot,
    Pagination,
    Verdict,
    WriteSource,
)
from tasksync.core.cache.policy import ReconciliationPolicy
from tasksync.core.tasks.models import Task

logger = logging.getLogger(__name__)

Listener = Callable[[CacheChange], None]

# (owner_id, title, parent_task_id) of an optimistic creation
CreationKey = tuple[str, str, str | None]


def _creation_key(task: Task) -> CreationKey:
    return (task.owner_id, task.title, task.parent_task_id)


class TaskCache:
    """
    Keyed store of task entries plus pagination aggregate.

    Attributes:
        policy: Reconciliation policy consulted for every candidate write
        tombstone_limit: How many removed ids are remembered to block resurrection
    """

    def __init__(
        self,
        policy: ReconciliationPolicy | None = None,
        *,
        page_size: int = 10,
        tombstone_limit: int = 1024,
    ) -> None:
        if page_size < 1:
            raise ValueError(f"page_size must be >= 1, got {page_size}")
        if tombstone_limit < 1:
            raise ValueError(f"tombstone_limit must be >= 1, got {tombstone_limit}")

        self.policy = policy or ReconciliationPolicy()
        self.tombstone_limit = tombstone_limit

        self._entries: dict[str, CacheEntry] = {}
        self._pagination = Pagination(page_size=page_size)
        self._tombstones: OrderedDict[str, None] = OrderedDict()
        self._pending_creations: dict[str, CreationKey] = {}
        self._listeners: list[Listener] = []
        self._stale = False
        self._version = 0

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, task_id: str) -> CacheEntry | None:
        """Return the entry for ``task_id`` (hidden entries included), or None."""
        return self._entries.get(task_id)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._entries

    @property
    def pagination(self) -> Pagination:
        return self._pagination

    @property
    def stale(self) -> bool:
        """True after the change feed dropped until the next page load."""
        return self._stale

    @property
    def version(self) -> int:
        return self._version

    def is_tombstoned(self, task_id: str) -> bool:
        return task_id in self._tombstones

    def snapshot(self) -> CacheSnapshot:
        """Return an immutable copy of the visible cache state."""
        visible = {task_id: e for task_id, e in self._entries.items() if not e.hidden}
        return CacheSnapshot(
            entries=MappingProxyType(visible),
            pagination=self._pagination,
            stale=self._stale,
            version=self._version,
        )

    # ------------------------------------------------------------------
    # Observer list
    # ------------------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Register a listener called after every accepted write.

        Returns:
            A callable that unregisters the listener (idempotent)
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _changed(
        self,
        kind: ChangeKind,
        task_id: str | None = None,
        source: WriteSource | None = None,
    ) -> None:
        self._version += 1
        change = CacheChange(kind=kind, task_id=task_id, source=source)
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:
                logger.exception("Cache listener failed on %s for %s", kind.value, task_id)

    # ------------------------------------------------------------------
    # Reconciled writes
    # ------------------------------------------------------------------

    def upsert(self, candidate: Task, source: WriteSource, *, insert: bool = False) -> Verdict:
        """
        Offer a candidate value for ``candidate.id``.

        Tombstoned ids are always rejected. An unknown id that looks like the
        server echo of a pending local creation is deferred into the
        temporary entry instead of being inserted next to it. Everything else
        goes through the reconciliation policy.

        Args:
            candidate: The offered task value
            source: Which writer produced it
            insert: The candidate is a row the server just created (a feed
                insert). Only such rows, and local mutations, add to
                ``total_count`` when the id is new to the cache; an update
                for a task on another page does not.

        Returns:
            The verdict that was applied
        """
        verdict, changed = self._apply(candidate, source, insert)
        if changed:
            self._changed(ChangeKind.UPSERT, candidate.id, source)
        return verdict

    def _apply(
        self, candidate: Task, source: WriteSource, insert: bool = False
    ) -> tuple[Verdict, bool]:
        task_id = candidate.id

        if task_id in self._tombstones:
            logger.debug("Rejecting %s write for deleted task %s", source.value, task_id)
            return Verdict.REJECT, False

        current = self._entries.get(task_id)

        if current is None and source != WriteSource.MUTATION:
            temp_id = self._match_pending_creation(candidate)
            if temp_id is not None:
                self._entries[temp_id] = replace(
                    self._entries[temp_id],
                    deferred=candidate,
                    deferred_source=source,
                    deferred_insert=insert,
                )
                logger.debug("Deferring %s until creation %s settles", task_id, temp_id)
                return Verdict.DEFER, False

        verdict = self.policy.decide(current, candidate, source)

        if verdict == Verdict.DEFER:
            assert current is not None  # policy only defers against an existing entry
            self._entries[task_id] = replace(
                current, deferred=candidate, deferred_source=source, deferred_insert=insert
            )
            logger.debug(
                "Deferred %s candidate for %s (mutation %s pending)",
                source.value,
                task_id,
                current.pending_mutation_id,
            )
            return verdict, False

        if verdict == Verdict.REJECT:
            logger.debug("Rejected stale %s candidate for %s", source.value, task_id)
            return verdict, False

        if current is None:
            self._entries[task_id] = CacheEntry.from_task(candidate)
            # Fetched rows are already in the page's total_count
            if insert or source == WriteSource.MUTATION:
                self._adjust_total(1)
            return verdict, True

        if current.task == candidate:
            return verdict, False

        self._entries[task_id] = replace(
            current, task=candidate, updated_at=candidate.updated_at
        )
        return verdict, True

    def _match_pending_creation(self, candidate: Task) -> str | None:
        key = _creation_key(candidate)
        for temp_id, pending_key in self._pending_creations.items():
            if pending_key == key:
                return temp_id
        return None

    def load_page(
        self,
        items: Iterable[Task],
        total_count: int,
        page: int,
        page_size: int,
    ) -> None:
        """
        Merge one fetched page into the cache and set the pagination aggregate.

        Items are offered with source FETCH, so a fetch issued before a
        deletion can never bring the deleted task back, and a fetched value
        older than a realtime update is discarded. Clears the stale flag.
        """
        for item in items:
            self._apply(item, WriteSource.FETCH)
        self._pagination = Pagination(
            current_page=page,
            page_size=page_size,
            total_count=max(0, total_count),
        )
        self._stale = False
        self._changed(ChangeKind.PAGE, source=WriteSource.FETCH)

    # ------------------------------------------------------------------
    # Unconditional writes
    # ------------------------------------------------------------------

    def remove(self, task_id: str) -> bool:
        """
        Remove ``task_id`` unconditionally.

        Clears any pending token and deferred candidate with the entry and
        tombstones the id, so later candidates for it are rejected.

        Returns:
            True if an entry was removed, False if the id was unknown
        """
        self._tombstone(task_id)
        entry = self._entries.pop(task_id, None)
        self._pending_creations.pop(task_id, None)
        if entry is None:
            return False
        if not entry.hidden:
            self._adjust_total(-1)
        logger.debug("Removed task %s", task_id)
        self._changed(ChangeKind.REMOVE, task_id)
        return True

    def mark_stale(self) -> None:
        """Flag the cache as possibly out of date (the change feed dropped)."""
        if self._stale:
            return
        self._stale = True
        self._changed(ChangeKind.STALE)

    def _tombstone(self, task_id: str) -> None:
        self._tombstones[task_id] = None
        self._tombstones.move_to_end(task_id)
        while len(self._tombstones) > self.tombstone_limit:
            self._tombstones.popitem(last=False)

    def _adjust_total(self, delta: int) -> None:
        total = max(0, self._pagination.total_count + delta)
        self._pagination = replace(self._pagination, total_count=total)

    # ------------------------------------------------------------------
    # Mutation bookkeeping (MutationCoordinator only)
    # ------------------------------------------------------------------

    def capture(self, task_id: str) -> EntrySnapshot:
        """Capture the entry for ``task_id`` so it can be restored exactly."""
        entry = self._entries.get(task_id)
        position = list(self._entries).index(task_id) if entry is not None else None
        return EntrySnapshot(task_id=task_id, entry=entry, position=position)

    def restore(self, snapshot: EntrySnapshot) -> bool:
        """
        Roll an entry back to a captured state.

        The task value, ``updated_at``, visibility, position and count unit
        are restored exactly. A candidate deferred since the capture is kept
        for the coordinator to re-decide. Ids deleted in the meantime stay
        deleted.

        Returns:
            False if the id was tombstoned and nothing was restored
        """
        task_id = snapshot.task_id
        if task_id in self._tombstones:
            logger.debug("Not restoring %s: deleted while mutation was pending", task_id)
            return False

        current = self._entries.get(task_id)
        was_visible = current is not None and not current.hidden

        if snapshot.entry is None:
            if current is not None:
                del self._entries[task_id]
                if was_visible:
                    self._adjust_total(-1)
                self._changed(ChangeKind.RESTORE, task_id, WriteSource.MUTATION)
            return True

        restored = replace(
            snapshot.entry,
            pending_mutation_id=None,
            deferred=current.deferred if current is not None else None,
            deferred_source=current.deferred_source if current is not None else None,
            deferred_insert=current is not None and current.deferred_insert,
        )

        if current is not None:
            self._entries[task_id] = restored
        else:
            self._insert_at(task_id, restored, snapshot.position)

        if not restored.hidden and not was_visible:
            self._adjust_total(1)
        elif restored.hidden and was_visible:
            self._adjust_total(-1)

        self._changed(ChangeKind.RESTORE, task_id, WriteSource.MUTATION)
        return True

    def _insert_at(self, task_id: str, entry: CacheEntry, position: int | None) -> None:
        items = list(self._entries.items())
        index = len(items) if position is None else min(position, len(items))
        items.insert(index, (task_id, entry))
        self._entries = dict(items)

    def mark_pending(self, task_id: str, mutation_id: int) -> None:
        """Attach a pending mutation token to an existing entry."""
        entry = self._entries.get(task_id)
        if entry is None:
            raise KeyError(task_id)
        if entry.is_pending and entry.pending_mutation_id != mutation_id:
            raise RuntimeError(
                f"Task {task_id} already has mutation {entry.pending_mutation_id} pending"
            )
        self._entries[task_id] = replace(entry, pending_mutation_id=mutation_id)

    def clear_pending(self, task_id: str, mutation_id: int) -> None:
        """Detach the pending token if it is still ``mutation_id``."""
        entry = self._entries.get(task_id)
        if entry is not None and entry.pending_mutation_id == mutation_id:
            self._entries[task_id] = replace(entry, pending_mutation_id=None)

    def take_deferred(self, task_id: str) -> tuple[Task, WriteSource] | None:
        """Pop the deferred candidate (and its source) held for ``task_id``, if any."""
        entry = self._entries.get(task_id)
        if entry is None or entry.deferred is None:
            return None
        self._entries[task_id] = replace(
            entry, deferred=None, deferred_source=None, deferred_insert=False
        )
        return entry.deferred, entry.deferred_source or WriteSource.REALTIME

    def hide(self, task_id: str) -> None:
        """Optimistically remove a task from readers' view (delete pending)."""
        entry = self._entries.get(task_id)
        if entry is None or entry.hidden:
            return
        self._entries[task_id] = replace(entry, hidden=True)
        self._adjust_total(-1)
        self._changed(ChangeKind.HIDE, task_id, WriteSource.MUTATION)

    def insert_temporary(self, task: Task, mutation_id: int) -> None:
        """Insert an optimistic creation under its temporary id."""
        if task.id in self._entries:
            raise RuntimeError(f"Temporary id {task.id} already in cache")
        self._entries[task.id] = CacheEntry(
            task=task,
            updated_at=task.updated_at,
            pending_mutation_id=mutation_id,
        )
        self._pending_creations[task.id] = _creation_key(task)
        self._adjust_total(1)
        self._changed(ChangeKind.UPSERT, task.id, WriteSource.MUTATION)

    def replace_temporary(self, temp_id: str, confirmed: Task) -> Verdict:
        """
        Swap a temporary entry for the server-confirmed task in one step.

        The confirmed task takes the temporary entry's position. If the
        server row already reached the cache (through the feed), the
        temporary entry is dropped and the confirmation is reconciled
        against the existing row, so exactly one entry remains.
        """
        self._pending_creations.pop(temp_id, None)
        temp_entry = self._entries.get(temp_id)
        existing = self._entries.get(confirmed.id)

        if temp_entry is None:
            return self.upsert(confirmed, WriteSource.MUTATION)

        if confirmed.id in self._tombstones:
            del self._entries[temp_id]
            self._adjust_total(-1)
            self._changed(ChangeKind.REMOVE, temp_id, WriteSource.MUTATION)
            return Verdict.REJECT

        if existing is not None:
            del self._entries[temp_id]
            self._adjust_total(-1)
            verdict = self.policy.decide(existing, confirmed, WriteSource.MUTATION)
            if verdict == Verdict.ACCEPT:
                self._entries[confirmed.id] = replace(
                    existing, task=confirmed, updated_at=confirmed.updated_at
                )
            self._changed(ChangeKind.REPLACE, confirmed.id, WriteSource.MUTATION)
            return verdict

        self._entries = {
            (confirmed.id if key == temp_id else key): (
                CacheEntry.from_task(confirmed) if key == temp_id else entry
            )
            for key, entry in self._entries.items()
        }
        self._changed(ChangeKind.REPLACE, confirmed.id, WriteSource.MUTATION)
        return Verdict.ACCEPT

    def discard_temporary(self, temp_id: str) -> None:
        """Drop an optimistic creation that the server did not confirm."""
        self._pending_creations.pop(temp_id, None)
        entry = self._entries.pop(temp_id, None)
        if entry is None:
            return
        self._adjust_total(-1)
        self._changed(ChangeKind.REMOVE, temp_id, WriteSource.MUTATION)
