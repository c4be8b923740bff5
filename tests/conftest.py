"""
Pytest configuration and shared fixtures.

Provides task factories, a cache, a controllable fake remote store whose
calls only complete when the test resolves them, and in-memory backends.
"""

import asyncio
import os
from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from tasksync.core.cache.store import TaskCache
from tasksync.core.config import clear_cache
from tasksync.core.remote import InMemoryChangeFeed, InMemoryRemoteStore
from tasksync.core.sync.mutations import MutationCoordinator
from tasksync.core.sync.retry import RemoteCallPolicy
from tasksync.core.tasks.models import Task

T0 = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)
T1 = T0 + timedelta(minutes=1)
T2 = T0 + timedelta(minutes=2)
T3 = T0 + timedelta(minutes=3)

OWNER = "user-1"


def build_task(task_id: str = "task-1", **overrides: Any) -> Task:
    """Build a Task with sensible defaults."""
    data: dict[str, Any] = {
        "id": task_id,
        "title": f"Task {task_id}",
        "owner_id": OWNER,
        "created_at": T0,
        "updated_at": T0,
    }
    data.update(overrides)
    return Task(**data)


# ==============================================================================
# Config isolation
# ==============================================================================


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Keep user config, data dirs and TASKSYNC_* env vars out of every test."""
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg-config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "xdg-data"))
    for name in list(os.environ):
        if name.startswith("TASKSYNC_"):
            monkeypatch.delenv(name)
    clear_cache()
    yield
    clear_cache()


# ==============================================================================
# Task Fixtures
# ==============================================================================


@pytest.fixture
def make_task():
    """Factory fixture: ``make_task("id", pinned=True, ...)``."""
    return build_task


@pytest.fixture
def cache():
    """An empty TaskCache."""
    return TaskCache()


# ==============================================================================
# Remote Fixtures
# ==============================================================================


class ControlledRemote:
    """
    RemoteStore fake whose calls block until the test resolves them.

    Calls are answered in order: ``resolve(result)`` answers the oldest
    outstanding call.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self._waiters: deque[asyncio.Future[Any]] = deque()

    @property
    def outstanding(self) -> int:
        return len(self._waiters)

    async def _call(self, name: str, *args: Any) -> Any:
        future = asyncio.get_running_loop().create_future()
        self.calls.append((name, args))
        self._waiters.append(future)
        return await future

    def resolve(self, result: Any) -> None:
        self._waiters.popleft().set_result(result)

    def fail(self, exc: BaseException) -> None:
        self._waiters.popleft().set_exception(exc)

    async def create(self, fields, owner_id):
        return await self._call("create", fields, owner_id)

    async def update(self, task_id, patch):
        return await self._call("update", task_id, patch)

    async def update_status(self, task_id, status):
        return await self._call("update_status", task_id, status)

    async def delete(self, task_id):
        return await self._call("delete", task_id)

    async def list(self, page, page_size, filter):
        return await self._call("list", page, page_size, filter)


@pytest.fixture
def controlled_remote():
    return ControlledRemote()


@pytest.fixture
def direct_policy():
    """Call policy without timeout or retries (no extra tasks or sleeps)."""
    return RemoteCallPolicy(timeout_seconds=None, max_retries=0)


@pytest.fixture
def coordinator(cache, controlled_remote, direct_policy):
    """Coordinator wired to the controlled remote."""
    return MutationCoordinator(
        cache,
        controlled_remote,
        direct_policy,
        owner_id=OWNER,
        clock=lambda: T1,
    )


@pytest.fixture
def feed():
    return InMemoryChangeFeed()


@pytest.fixture
def memory_remote(feed):
    """In-memory store echoing its writes to ``feed``."""
    return InMemoryRemoteStore(feed)


@pytest.fixture
def drain():
    """Let pending tasks on the event loop run."""

    async def _drain(rounds: int = 10) -> None:
        for _ in range(rounds):
            await asyncio.sleep(0)

    return _drain
