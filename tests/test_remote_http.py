"""
Tests for the HTTP remote store.

Requests are served by httpx.MockTransport handlers; nothing touches the
network.
"""

import json

import httpx
import pytest
import pytest_asyncio

from conftest import OWNER, T1, build_task
from tasksync.core.config.models import RemoteConfig
from tasksync.core.remote import HttpRemoteStore, classify_response
from tasksync.core.sync.errors import ConflictError, NetworkError, ServerRejection
from tasksync.core.tasks.models import TaskCreate, TaskFilter, TaskStatus

BASE_URL = "https://api.test"


class Recorder:
    """Mock transport handler that records requests and replays canned responses."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    @property
    def last(self):
        return self.requests[-1]

    def last_json(self):
        return json.loads(self.last.content)


def task_json(task_id="a", **overrides):
    return build_task(task_id, **overrides).model_dump(mode="json")


@pytest_asyncio.fixture
async def make_store():
    clients = []

    def _make(*responses):
        recorder = Recorder(*responses)
        client = httpx.AsyncClient(transport=httpx.MockTransport(recorder), base_url=BASE_URL)
        clients.append(client)
        return HttpRemoteStore(BASE_URL, client=client), recorder

    yield _make
    for client in clients:
        await client.aclose()


# ==============================================================================
# Response classification
# ==============================================================================


class TestClassifyResponse:
    """Test mapping of HTTP status codes onto sync errors."""

    def test_success(self):
        assert classify_response(httpx.Response(200)) is None
        assert classify_response(httpx.Response(204)) is None

    @pytest.mark.parametrize("status", [404, 410])
    def test_missing_task_is_conflict(self, status):
        result = classify_response(httpx.Response(status), task_id="a")
        assert isinstance(result.error, ConflictError)
        assert result.error.task_id == "a"

    def test_404_without_task_is_rejection(self):
        result = classify_response(httpx.Response(404))
        assert isinstance(result.error, ServerRejection)
        assert result.error.code == "not_found"

    @pytest.mark.parametrize(
        "status,code",
        [(400, "invalid_request"), (401, "unauthenticated"), (403, "permission_denied"),
         (429, "rate_limited"), (418, "rejected")],
    )
    def test_client_errors(self, status, code):
        result = classify_response(httpx.Response(status))
        assert isinstance(result.error, ServerRejection)
        assert result.error.code == code
        assert result.error.status_code == status

    def test_body_code_and_message(self):
        response = httpx.Response(
            403, json={"code": "row_level_security", "message": "Not your task"}
        )
        result = classify_response(response)
        assert result.error.code == "row_level_security"
        assert result.error.message == "HTTP 403: Not your task"

    @pytest.mark.parametrize("status", [500, 502, 503])
    def test_server_errors_are_transient(self, status):
        result = classify_response(httpx.Response(status, text="upstream down"))
        assert isinstance(result.error, NetworkError)


# ==============================================================================
# Operations
# ==============================================================================


class TestOperations:
    """Test request shapes and response parsing."""

    @pytest.mark.asyncio
    async def test_create(self, make_store):
        store, recorder = make_store(httpx.Response(201, json=task_json("srv-1", title="Milk")))

        result = await store.create(TaskCreate(title="Milk", due_date=T1), OWNER)

        assert result.value.id == "srv-1"
        assert recorder.last.method == "POST"
        assert recorder.last.url.path == "/tasks"
        body = recorder.last_json()
        assert body["title"] == "Milk"
        assert body["owner_id"] == OWNER
        assert body["due_date"].startswith("2026-01-15T12:01:00")

    @pytest.mark.asyncio
    async def test_update_sends_json_patch(self, make_store):
        store, recorder = make_store(httpx.Response(200, json=task_json("a", pinned=True)))

        result = await store.update("a", {"pinned": True, "due_date": T1})

        assert result.value.pinned is True
        assert recorder.last.method == "PATCH"
        assert recorder.last.url.path == "/tasks/a"
        assert recorder.last_json()["pinned"] is True
        assert isinstance(recorder.last_json()["due_date"], str)

    @pytest.mark.asyncio
    async def test_update_status(self, make_store):
        store, recorder = make_store(
            httpx.Response(200, json=task_json("a", status="complete"))
        )

        result = await store.update_status("a", TaskStatus.COMPLETE)

        assert result.value.status == TaskStatus.COMPLETE
        assert recorder.last.url.path == "/tasks/a/status"
        assert recorder.last_json() == {"status": "complete"}

    @pytest.mark.asyncio
    async def test_delete(self, make_store):
        store, recorder = make_store(httpx.Response(204))

        result = await store.delete("a")

        assert result.is_ok()
        assert result.value is None
        assert recorder.last.method == "DELETE"

    @pytest.mark.asyncio
    async def test_delete_missing(self, make_store):
        store, _ = make_store(httpx.Response(404))
        result = await store.delete("a")
        assert isinstance(result.error, ConflictError)

    @pytest.mark.asyncio
    async def test_list(self, make_store):
        store, recorder = make_store(
            httpx.Response(200, json={"items": [task_json("a"), task_json("b")], "total_count": 12})
        )

        result = await store.list(2, 5, TaskFilter.OVERDUE)

        assert [t.id for t in result.value.items] == ["a", "b"]
        assert result.value.total_count == 12
        params = recorder.last.url.params
        assert (params["page"], params["page_size"], params["filter"]) == ("2", "5", "overdue")

    @pytest.mark.asyncio
    async def test_invalid_body(self, make_store):
        store, _ = make_store(httpx.Response(200, json={"id": "a"}))
        result = await store.update("a", {"pinned": True})
        assert isinstance(result.error, ServerRejection)
        assert result.error.code == "invalid_response"

    @pytest.mark.asyncio
    async def test_non_json_body(self, make_store):
        store, _ = make_store(httpx.Response(200, text="<html>"))
        result = await store.list(1, 10, TaskFilter.ALL)
        assert result.error.code == "invalid_response"

    @pytest.mark.asyncio
    async def test_transport_failure(self, make_store):
        store, _ = make_store(httpx.ConnectError("connection refused"))
        result = await store.delete("a")
        assert isinstance(result.error, NetworkError)

    @pytest.mark.asyncio
    async def test_timeout(self, make_store):
        store, _ = make_store(httpx.ReadTimeout("slow"))
        result = await store.list(1, 10, TaskFilter.ALL)
        assert isinstance(result.error, NetworkError)
        assert "timed out" in result.error.message


# ==============================================================================
# Construction
# ==============================================================================


class TestFromConfig:
    """Test building the client from config."""

    def test_requires_base_url(self):
        with pytest.raises(ValueError, match="base_url"):
            HttpRemoteStore.from_config(RemoteConfig())

    def test_missing_api_key(self, monkeypatch):
        monkeypatch.delenv("TASKS_API_KEY", raising=False)
        config = RemoteConfig(base_url="https://api.test/", api_key_env="TASKS_API_KEY")
        with pytest.raises(RuntimeError, match="TASKS_API_KEY is not set"):
            HttpRemoteStore.from_config(config)

    @pytest.mark.asyncio
    async def test_bearer_header(self, monkeypatch):
        monkeypatch.setenv("TASKS_API_KEY", "secret")
        config = RemoteConfig(base_url="https://api.test/", api_key_env="TASKS_API_KEY")

        async with HttpRemoteStore.from_config(config) as store:
            assert store.base_url == "https://api.test"
            assert store._client.headers["Authorization"] == "Bearer secret"
