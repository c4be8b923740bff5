"""
Tests for the in-memory remote store and change feed.
"""

import asyncio

import pytest

from conftest import OWNER, T0, build_task
from tasksync.core.remote import InMemoryChangeFeed, InMemoryRemoteStore
from tasksync.core.sync.errors import ConflictError, ServerRejection
from tasksync.core.sync.ports import ChangeFeed, FeedEvent, FeedStatus, RemoteStore
from tasksync.core.tasks.models import TaskCreate, TaskFilter, TaskStatus


@pytest.fixture
def events(feed):
    seen = []
    feed.subscribe("tasks", seen.append)
    return seen


# ==============================================================================
# Change feed
# ==============================================================================


class TestChangeFeed:
    """Test subscription and fault injection on the feed."""

    def test_satisfies_protocol(self, feed):
        assert isinstance(feed, ChangeFeed)

    def test_status_callbacks(self, feed):
        statuses = []
        unsubscribe = feed.subscribe("tasks", lambda e: None, statuses.append)
        feed.set_status("tasks", FeedStatus.TIMED_OUT)
        unsubscribe()
        unsubscribe()

        assert statuses == [FeedStatus.SUBSCRIBED, FeedStatus.TIMED_OUT, FeedStatus.CLOSED]
        assert feed.subscriber_count("tasks") == 0

    def test_hold_and_release(self, feed, events):
        feed.hold()
        feed.emit("tasks", "insert", {"id": "a"})
        feed.emit("tasks", "insert", {"id": "b"})
        assert events == []

        assert feed.release() == 2
        assert [e.task_id for e in events] == ["a", "b"]

        feed.emit("tasks", "insert", {"id": "c"})
        assert len(events) == 3

    def test_release_reversed(self, feed, events):
        feed.hold()
        feed.emit("tasks", "insert", {"id": "a"})
        feed.emit("tasks", "insert", {"id": "b"})
        feed.release(reverse=True)
        assert [e.task_id for e in events] == ["b", "a"]

    def test_duplicate(self, feed, events):
        feed.duplicate = True
        feed.emit("tasks", "update", {"id": "a"})
        assert len(events) == 2

    def test_failing_handler_logged(self, feed, events, caplog):
        def broken(event):
            raise RuntimeError("boom")

        feed.subscribe("tasks", broken)
        feed.emit("tasks", "insert", {"id": "a"})

        assert len(events) == 1
        assert "Feed handler failed" in caplog.text

    def test_event_task_id_falls_back_to_previous_record(self):
        event = FeedEvent(type="delete", previous_record={"id": 42})
        assert event.task_id == "42"


# ==============================================================================
# Remote store
# ==============================================================================


class TestRemoteStore:
    """Test the dict-backed store."""

    @pytest.fixture
    def store(self, feed):
        store = InMemoryRemoteStore(feed, id_factory=lambda: "srv-1")
        store.seed([build_task("a"), build_task("b", status=TaskStatus.COMPLETE)])
        return store

    def test_satisfies_protocol(self, store):
        assert isinstance(store, RemoteStore)

    @pytest.mark.asyncio
    async def test_create_assigns_id_and_echoes(self, store, events):
        result = await store.create(TaskCreate(title="Buy milk"), OWNER)

        task = result.value
        assert task.id == "srv-1"
        assert task.owner_id == OWNER
        assert task.created_at == task.updated_at
        assert store.get("srv-1") == task
        assert events[-1].type == "insert"
        assert events[-1].record["id"] == "srv-1"

    @pytest.mark.asyncio
    async def test_update_bumps_timestamp(self, store, events):
        result = await store.update("a", {"title": "Renamed"})

        assert result.value.title == "Renamed"
        assert result.value.updated_at > T0
        assert events[-1].type == "update"

    @pytest.mark.asyncio
    async def test_timestamps_strictly_increase(self, feed):
        store = InMemoryRemoteStore(feed, clock=lambda: T0)
        store.seed([build_task("a")])

        first = (await store.update("a", {"pinned": True})).value
        second = (await store.update("a", {"pinned": False})).value

        assert T0 < first.updated_at < second.updated_at

    @pytest.mark.asyncio
    async def test_update_status(self, store):
        result = await store.update_status("a", TaskStatus.COMPLETE)
        assert result.value.status == TaskStatus.COMPLETE

    @pytest.mark.asyncio
    async def test_missing_task_conflicts(self, store):
        for call in (store.update("zzz", {"pinned": True}), store.delete("zzz")):
            result = await call
            assert isinstance(result.error, ConflictError)

    @pytest.mark.asyncio
    async def test_delete_echo_carries_previous_id(self, store, events):
        await store.delete("a")

        assert store.get("a") is None
        assert events[-1].type == "delete"
        assert events[-1].record == {}
        assert events[-1].task_id == "a"

    @pytest.mark.asyncio
    async def test_fail_next(self, store):
        store.fail_next("update", ServerRejection("no"), times=2)

        assert (await store.update("a", {"pinned": True})).is_err()
        assert (await store.update("a", {"pinned": True})).is_err()
        assert (await store.update("a", {"pinned": True})).is_ok()
        assert store.calls == [("update", "a")] * 3

    @pytest.mark.asyncio
    async def test_list(self, store):
        page = (await store.list(1, 10, TaskFilter.ALL)).value
        assert [t.id for t in page.items] == ["a"]
        assert page.total_count == 1

        page = (await store.list(1, 10, TaskFilter.COMPLETE)).value
        assert [t.id for t in page.items] == ["b"]

    @pytest.mark.asyncio
    async def test_gate_holds_calls(self, store, drain):
        store.gate = asyncio.Event()
        pending = asyncio.create_task(store.update("a", {"pinned": True}))
        await drain()
        assert not pending.done()
        assert store.get("a").pinned is False

        store.gate.set()
        result = await pending
        assert result.value.pinned is True

    @pytest.mark.asyncio
    async def test_without_feed(self):
        store = InMemoryRemoteStore()
        result = await store.create(TaskCreate(title="Quiet"), OWNER)
        assert store.tasks == (result.value,)


class TestEntityName:
    """Test stores publishing under a custom entity name."""

    @pytest.mark.asyncio
    async def test_entity_name(self):
        feed = InMemoryChangeFeed()
        seen = []
        feed.subscribe("todos", seen.append)
        store = InMemoryRemoteStore(feed, entity_name="todos")

        await store.create(TaskCreate(title="x"), OWNER)
        assert len(seen) == 1
