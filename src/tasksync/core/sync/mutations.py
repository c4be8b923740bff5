"""
Optimistic mutations and their coordinator.

Every local write is one of a small closed set of mutation values
(CreateTask, UpdateTask, ToggleStatus, TogglePin, DeleteTask,
CreateFollowUp). The MutationCoordinator runs all of them through the same
begin/commit/abort triad:

- ``begin`` waits for its turn on the task id (FIFO), captures the entry,
  applies the optimistic transform and marks the entry pending.
- ``commit`` writes the server-confirmed value and releases the id.
- ``abort`` restores the captured entry exactly (or removes it on a
  ConflictError) and releases the id.

After either settle step, a candidate the change feed delivered while the
write was in flight is re-decided against the settled entry.

Example:
    >>> coordinator = MutationCoordinator(cache, remote, owner_id="user-1")
    >>> result = await coordinator.run(TogglePin(task_id="7f1c"))
    >>> result.is_ok()
    True
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import uuid
from collections import deque
from collections.abc import Callable, Mapping
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Union

from pydantic import ValidationError as PydanticValidationError

from tasksync.core.cache.models import EntrySnapshot, WriteSource
from tasksync.core.cache.store import TaskCache
from tasksync.core.sync.errors import (
    ConflictError,
    Err,
    Ok,
    Result,
    SyncError,
    ValidationError,
)
from tasksync.core.sync.ports import RemoteStore
from tasksync.core.sync.retry import RemoteCallPolicy
from tasksync.core.tasks.models import Task, TaskCreate, TaskPatch, TaskStatus
from tasksync.utils.logging import SyncEventLogger

logger = logging.getLogger(__name__)

TEMP_ID_PREFIX = "temp-"
FOLLOW_UP_DESCRIPTION = "Follow-up from task: {title}"


def is_temporary_id(task_id: str) -> bool:
    """True for ids assigned locally to optimistic creations."""
    return task_id.startswith(TEMP_ID_PREFIX)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MutationKind(str, Enum):
    """Kinds of local writes."""

    CREATE = "create"
    UPDATE = "update"
    TOGGLE_STATUS = "toggle_status"
    TOGGLE_PIN = "toggle_pin"
    DELETE = "delete"
    CREATE_FOLLOW_UP = "create_follow_up"


# ==============================================================================
# Mutation values
# ==============================================================================


@dataclass(frozen=True)
class CreateTask:
    """Create a new task owned by the current user."""

    kind: ClassVar[MutationKind] = MutationKind.CREATE

    fields: TaskCreate

    def prepare(self, cache: TaskCache, owner_id: str) -> Result[TaskCreate]:
        return Ok(self.fields)


@dataclass(frozen=True)
class CreateFollowUp:
    """
    Create a new task that follows up on ``parent_id``.

    The parent is only read: the follow-up is a separate entity that points
    back at it through ``parent_task_id``. Unset fields default from the
    parent (description, link) and from the current user (assignee).
    """

    kind: ClassVar[MutationKind] = MutationKind.CREATE_FOLLOW_UP

    parent_id: str
    fields: TaskCreate

    def prepare(self, cache: TaskCache, owner_id: str) -> Result[TaskCreate]:
        entry = cache.get(self.parent_id)
        if entry is None or entry.hidden:
            return Err(
                ValidationError(
                    f"Parent task '{self.parent_id}' not found",
                    [f"parent_task_id: no task '{self.parent_id}' in cache"],
                )
            )
        parent = entry.task
        update: dict[str, Any] = {"parent_task_id": parent.id}
        if not self.fields.description:
            update["description"] = FOLLOW_UP_DESCRIPTION.format(title=parent.title)
        if self.fields.url_link is None and parent.url_link:
            update["url_link"] = parent.url_link
        if self.fields.assignee_id is None:
            update["assignee_id"] = owner_id
        return Ok(self.fields.model_copy(update=update))


@dataclass(frozen=True)
class UpdateTask:
    """Change editable fields of an existing task."""

    kind: ClassVar[MutationKind] = MutationKind.UPDATE

    task_id: str
    patch: TaskPatch

    def apply(self, task: Task) -> Task:
        return task.model_copy(update=self.patch.changes())

    async def send(self, remote: RemoteStore, optimistic: Task) -> Result[Task]:
        return await remote.update(self.task_id, self.patch.changes())


@dataclass(frozen=True)
class ToggleStatus:
    """Flip a task between pending and complete.

    Overdue is never a toggle target: any non-complete status goes to
    complete, and complete goes back to pending.
    """

    kind: ClassVar[MutationKind] = MutationKind.TOGGLE_STATUS

    task_id: str

    def apply(self, task: Task) -> Task:
        status = TaskStatus.PENDING if task.is_complete else TaskStatus.COMPLETE
        return task.model_copy(update={"status": status})

    async def send(self, remote: RemoteStore, optimistic: Task) -> Result[Task]:
        return await remote.update_status(self.task_id, optimistic.status)


@dataclass(frozen=True)
class TogglePin:
    """Flip a task's pinned flag."""

    kind: ClassVar[MutationKind] = MutationKind.TOGGLE_PIN

    task_id: str

    def apply(self, task: Task) -> Task:
        return task.model_copy(update={"pinned": not task.pinned})

    async def send(self, remote: RemoteStore, optimistic: Task) -> Result[Task]:
        return await remote.update(self.task_id, {"pinned": optimistic.pinned})


@dataclass(frozen=True)
class DeleteTask:
    """Delete a task (hidden from readers until the store confirms)."""

    kind: ClassVar[MutationKind] = MutationKind.DELETE

    task_id: str

    def apply(self, task: Task) -> Task:
        return task

    async def send(self, remote: RemoteStore, optimistic: Task) -> Result[None]:
        return await remote.delete(self.task_id)


Creation = Union[CreateTask, CreateFollowUp]
Modification = Union[UpdateTask, ToggleStatus, TogglePin, DeleteTask]
Mutation = Union[Creation, Modification]


def build_mutation(
    task_id: str | None,
    kind: MutationKind | str,
    payload: Mapping[str, Any] | None = None,
) -> Result[Mutation]:
    """
    Validate raw input into a mutation value.

    Args:
        task_id: Target task (the parent for follow-ups; ignored for creation)
        kind: Mutation kind or its string value
        payload: Fields for create, follow-up and update

    Returns:
        Ok(mutation) or Err(ValidationError); nothing is written either way
    """
    try:
        kind = MutationKind(kind)
    except ValueError:
        return Err(ValidationError(f"Unknown mutation kind: {kind!r}"))

    data = dict(payload or {})

    try:
        if kind == MutationKind.CREATE:
            return Ok(CreateTask(fields=TaskCreate.model_validate(data)))
        if not task_id:
            return Err(ValidationError(f"{kind.value} requires a task id"))
        if kind == MutationKind.CREATE_FOLLOW_UP:
            return Ok(CreateFollowUp(parent_id=task_id, fields=TaskCreate.model_validate(data)))
        if kind == MutationKind.UPDATE:
            return Ok(UpdateTask(task_id=task_id, patch=TaskPatch.model_validate(data)))
    except PydanticValidationError as e:
        return Err(ValidationError.from_pydantic(e))

    if kind == MutationKind.TOGGLE_STATUS:
        return Ok(ToggleStatus(task_id=task_id))
    if kind == MutationKind.TOGGLE_PIN:
        return Ok(TogglePin(task_id=task_id))
    return Ok(DeleteTask(task_id=task_id))


# ==============================================================================
# Coordinator
# ==============================================================================


@dataclass(frozen=True)
class MutationToken:
    """Handle for one in-flight mutation (the entry's pending token)."""

    id: int
    task_id: str
    kind: MutationKind


@dataclass
class _InFlight:
    token: MutationToken
    mutation: Mutation
    snapshot: EntrySnapshot | None
    optimistic: Task
    fields: TaskCreate | None = None


@dataclass(frozen=True)
class _Deferred:
    task: Task
    source: WriteSource
    insert: bool = False


class MutationCoordinator:
    """
    Runs optimistic mutations against the cache and the remote store.

    Mutations on the same task id are serialized in arrival order; a later
    mutation computes its optimistic value only once the earlier one has
    settled. Mutations on different ids are independent.
    """

    def __init__(
        self,
        cache: TaskCache,
        remote: RemoteStore,
        policy: RemoteCallPolicy | None = None,
        *,
        owner_id: str,
        event_logger: SyncEventLogger | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.cache = cache
        self.remote = remote
        self.policy = policy or RemoteCallPolicy()
        self.owner_id = owner_id
        self.event_logger = event_logger
        self.clock = clock or _utcnow

        self._ids = itertools.count(1)
        self._lanes: dict[str, deque[asyncio.Future[None]]] = {}
        self._in_flight: dict[int, _InFlight] = {}
        self._confirmed_ids: dict[str, str] = {}

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    @property
    def in_flight(self) -> int:
        """Number of mutations between begin and settle."""
        return len(self._in_flight)

    @property
    def redirects(self) -> int:
        """Confirmed creations whose temporary id still has queued mutations."""
        return len(self._confirmed_ids)

    def queued(self, task_id: str) -> int:
        """Number of mutations holding or waiting for ``task_id``."""
        return len(self._lanes.get(task_id, ()))

    # ------------------------------------------------------------------
    # Per-id FIFO lanes
    # ------------------------------------------------------------------

    async def _acquire(self, task_id: str) -> None:
        lane = self._lanes.setdefault(task_id, deque())
        waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        lane.append(waiter)
        if len(lane) == 1:
            return
        try:
            await waiter
        except asyncio.CancelledError:
            if lane and lane[0] is waiter:
                self._release(task_id)
            elif waiter in lane:
                lane.remove(waiter)
            raise

    def _release(self, task_id: str) -> None:
        lane = self._lanes.get(task_id)
        if not lane:
            return
        lane.popleft()
        if not lane:
            del self._lanes[task_id]
            # Only mutations already queued on a temporary id need the redirect
            self._confirmed_ids.pop(task_id, None)
            return
        head = lane[0]
        if not head.done():
            head.set_result(None)

    # ------------------------------------------------------------------
    # begin / commit / abort
    # ------------------------------------------------------------------

    async def begin(self, mutation: Mutation) -> Result[MutationToken]:
        """
        Apply the optimistic state of ``mutation`` and mark it pending.

        Creations are inserted under a fresh temporary id right away. Other
        mutations first wait behind any mutation already pending for the
        same id, then capture the entry and apply their transform to the
        value current at that moment.

        Returns:
            Ok(token), Err(ValidationError) for a follow-up whose parent is
            not cached, or Err(ConflictError) if the task is gone by the
            time the mutation gets its turn
        """
        if isinstance(mutation, (CreateTask, CreateFollowUp)):
            return self._begin_creation(mutation)

        await self._acquire(mutation.task_id)

        entry = self.cache.get(mutation.task_id)
        if entry is None and mutation.task_id in self._confirmed_ids:
            # Queued behind the creation that gave this task its real id.
            confirmed_id = self._confirmed_ids[mutation.task_id]
            self._release(mutation.task_id)
            return await self.begin(replace(mutation, task_id=confirmed_id))

        if entry is None or entry.hidden:
            self._release(mutation.task_id)
            return Err(ConflictError(mutation.task_id))

        token = MutationToken(id=next(self._ids), task_id=mutation.task_id, kind=mutation.kind)
        snapshot = self.cache.capture(mutation.task_id)
        optimistic = mutation.apply(entry.task)

        self.cache.mark_pending(mutation.task_id, token.id)
        if isinstance(mutation, DeleteTask):
            self.cache.hide(mutation.task_id)
        else:
            self.cache.upsert(optimistic, WriteSource.MUTATION)

        self._in_flight[token.id] = _InFlight(token, mutation, snapshot, optimistic)
        self._log_begin(token)
        return Ok(token)

    def _begin_creation(self, mutation: Creation) -> Result[MutationToken]:
        prepared = mutation.prepare(self.cache, self.owner_id)
        if isinstance(prepared, Err):
            return prepared
        fields = prepared.value

        now = self.clock()
        temp_id = f"{TEMP_ID_PREFIX}{uuid.uuid4().hex}"
        optimistic = Task(
            id=temp_id,
            owner_id=self.owner_id,
            created_at=now,
            updated_at=now,
            **fields.model_dump(),
        )

        token = MutationToken(id=next(self._ids), task_id=temp_id, kind=mutation.kind)
        # Fresh id: the lane is free, so later writes to the temp id queue behind us.
        self._lanes[temp_id] = deque([asyncio.get_running_loop().create_future()])
        self.cache.insert_temporary(optimistic, token.id)

        self._in_flight[token.id] = _InFlight(token, mutation, None, optimistic, fields)
        self._log_begin(token)
        return Ok(token)

    def commit(self, token: MutationToken, confirmed: Task | None = None) -> None:
        """
        Settle a mutation the remote store confirmed.

        Raises:
            RuntimeError: If ``token`` is not in flight (already settled or foreign)
        """
        record = self._settle(token)
        mutation = record.mutation
        deferred = self._take_deferred(token.task_id)

        if isinstance(mutation, DeleteTask):
            self.cache.remove(token.task_id)
            deferred = None
        elif isinstance(mutation, (CreateTask, CreateFollowUp)):
            if confirmed is None:
                raise RuntimeError(f"Creation {token.id} committed without a confirmed task")
            self.cache.replace_temporary(token.task_id, confirmed)
            self._confirmed_ids[token.task_id] = confirmed.id
        else:
            self.cache.clear_pending(token.task_id, token.id)
            if confirmed is not None:
                self.cache.upsert(confirmed, WriteSource.MUTATION)

        self._settle_deferred(deferred)
        self._release(token.task_id)

        confirmed_id = confirmed.id if confirmed is not None else None
        logger.info("Committed %s on %s (mutation %d)", token.kind.value, token.task_id, token.id)
        if self.event_logger is not None:
            self.event_logger.log_mutation_commit(
                token.id, token.kind.value, token.task_id, confirmed_id
            )

    def abort(self, token: MutationToken, error: BaseException) -> None:
        """
        Settle a mutation that failed, rolling the cache back.

        A ConflictError removes the task outright; a failed creation drops
        its temporary entry; anything else restores the entry captured by
        ``begin``.

        Raises:
            RuntimeError: If ``token`` is not in flight (already settled or foreign)
        """
        record = self._settle(token)
        mutation = record.mutation
        deferred = None

        if isinstance(mutation, (CreateTask, CreateFollowUp)):
            deferred = self._take_deferred(token.task_id)
            self.cache.discard_temporary(token.task_id)
        elif isinstance(error, ConflictError):
            self.cache.remove(token.task_id)
        else:
            assert record.snapshot is not None
            self.cache.restore(record.snapshot)
            deferred = self._take_deferred(token.task_id)

        self._settle_deferred(deferred)
        self._release(token.task_id)

        logger.info(
            "Aborted %s on %s (mutation %d): %s",
            token.kind.value,
            token.task_id,
            token.id,
            error,
        )
        if self.event_logger is not None:
            self.event_logger.log_mutation_abort(token.id, token.kind.value, token.task_id, error)

    def _settle(self, token: MutationToken) -> _InFlight:
        record = self._in_flight.pop(token.id, None)
        if record is None or record.token != token:
            raise RuntimeError(f"Mutation {token.id} is not in flight")
        return record

    def _take_deferred(self, task_id: str) -> _Deferred | None:
        entry = self.cache.get(task_id)
        taken = self.cache.take_deferred(task_id)
        if taken is None:
            return None
        assert entry is not None
        return _Deferred(taken[0], taken[1], entry.deferred_insert)

    def _settle_deferred(self, deferred: _Deferred | None) -> None:
        """Re-decide a candidate withheld while the mutation was pending."""
        if deferred is None:
            return
        verdict = self.cache.upsert(deferred.task, deferred.source, insert=deferred.insert)
        logger.debug(
            "Re-decided deferred %s candidate for %s: %s",
            deferred.source.value,
            deferred.task.id,
            verdict.value,
        )

    def _log_begin(self, token: MutationToken) -> None:
        logger.debug("Begin %s on %s (mutation %d)", token.kind.value, token.task_id, token.id)
        if self.event_logger is not None:
            self.event_logger.log_mutation_begin(token.id, token.kind.value, token.task_id)

    # ------------------------------------------------------------------
    # Full round trip
    # ------------------------------------------------------------------

    async def run(self, mutation: Mutation) -> Result[Task | None]:
        """
        Begin ``mutation``, call the remote store and settle.

        The returned result is only delivered once the cache holds its
        final state for this mutation.

        Returns:
            Ok(confirmed task), Ok(None) for deletes, or Err with the
            ValidationError, ServerRejection or ConflictError that settled it
        """
        begun = await self.begin(mutation)
        if isinstance(begun, Err):
            return begun
        token = begun.value
        record = self._in_flight[token.id]
        label = f"{token.kind.value} {token.task_id}"

        try:
            result = await self.policy.execute(lambda: self._send(record), label=label)
        except (asyncio.CancelledError, Exception) as e:
            self.abort(token, e)
            raise

        if isinstance(result, Err):
            self.abort(token, result.error)
            return result

        confirmed = result.value
        self.commit(token, confirmed)
        return Ok(confirmed)

    async def _send(self, record: _InFlight) -> Result[Any]:
        mutation = record.mutation
        if isinstance(mutation, (CreateTask, CreateFollowUp)):
            assert record.fields is not None
            return await self.remote.create(record.fields, self.owner_id)
        return await mutation.send(self.remote, record.optimistic)

    # ------------------------------------------------------------------
    # Convenience wrappers
    # ------------------------------------------------------------------

    async def _run_built(self, built: Result[Mutation]) -> Result[Task | None]:
        if isinstance(built, Err):
            return built
        return await self.run(built.value)

    async def create(self, fields: Mapping[str, Any] | TaskCreate) -> Result[Task | None]:
        if isinstance(fields, TaskCreate):
            return await self.run(CreateTask(fields=fields))
        return await self._run_built(build_mutation(None, MutationKind.CREATE, fields))

    async def update(
        self, task_id: str, patch: Mapping[str, Any] | TaskPatch
    ) -> Result[Task | None]:
        if isinstance(patch, TaskPatch):
            return await self.run(UpdateTask(task_id=task_id, patch=patch))
        return await self._run_built(build_mutation(task_id, MutationKind.UPDATE, patch))

    async def toggle_status(self, task_id: str) -> Result[Task | None]:
        return await self.run(ToggleStatus(task_id=task_id))

    async def toggle_pin(self, task_id: str) -> Result[Task | None]:
        return await self.run(TogglePin(task_id=task_id))

    async def delete(self, task_id: str) -> Result[Task | None]:
        return await self.run(DeleteTask(task_id=task_id))

    async def create_follow_up(
        self, parent_id: str, fields: Mapping[str, Any] | TaskCreate
    ) -> Result[Task | None]:
        if isinstance(fields, TaskCreate):
            return await self.run(CreateFollowUp(parent_id=parent_id, fields=fields))
        return await self._run_built(
            build_mutation(parent_id, MutationKind.CREATE_FOLLOW_UP, fields)
        )


__all__ = [
    "CreateFollowUp",
    "CreateTask",
    "DeleteTask",
    "Mutation",
    "MutationCoordinator",
    "MutationKind",
    "MutationToken",
    "ToggleStatus",
    "TogglePin",
    "UpdateTask",
    "build_mutation",
    "is_temporary_id",
]
