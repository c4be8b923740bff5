"""
REST client implementing the RemoteStore protocol.

Talks JSON to a task API rooted at ``base_url``:

    POST   /tasks                  create
    PATCH  /tasks/{id}             update (partial)
    PATCH  /tasks/{id}/status      update_status
    DELETE /tasks/{id}             delete
    GET    /tasks?page=&page_size=&filter=   list -> {"items": [...], "total_count": n}

Responses are classified into the engine's error taxonomy instead of being
raised:

- 404 / 410 -> ConflictError (the task no longer exists)
- other 4xx -> ServerRejection (code taken from the body when present)
- 5xx, timeouts and transport failures -> NetworkError (retryable)

Retries and the overall timeout are applied by the coordinator's
RemoteCallPolicy, not here.
"""

from __future__ import annotations

import logging
import os
from typing import Any

import httpx
from pydantic import TypeAdapter

from tasksync.core.config.models import RemoteConfig
from tasksync.core.sync.errors import (
    ConflictError,
    Err,
    NetworkError,
    Ok,
    Result,
    ServerRejection,
)
from tasksync.core.tasks.models import Task, TaskCreate, TaskFilter, TaskPage, TaskStatus

logger = logging.getLogger(__name__)

_PAYLOAD = TypeAdapter(dict[str, Any])

_STATUS_CODES = {
    400: "invalid_request",
    401: "unauthenticated",
    403: "permission_denied",
    404: "not_found",
    409: "conflict",
    422: "invalid_request",
    429: "rate_limited",
}


def classify_response(response: httpx.Response, task_id: str | None = None) -> Err | None:
    """
    Map an error response onto the sync error taxonomy.

    Returns:
        Err for non-2xx responses, None for success
    """
    status = response.status_code
    if status < 400:
        return None

    body = _json_or_none(response)
    detail = None
    code = None
    if isinstance(body, dict):
        detail = body.get("message") or body.get("detail") or body.get("error")
        code = body.get("code")
    message = f"HTTP {status}: {detail or response.reason_phrase}"

    if status in (404, 410) and task_id is not None:
        return Err(ConflictError(task_id))
    if status >= 500:
        return Err(NetworkError(message))
    return Err(
        ServerRejection(
            message,
            code=str(code) if code else _STATUS_CODES.get(status, "rejected"),
            status_code=status,
        )
    )


def _json_or_none(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


class HttpRemoteStore:
    """
    RemoteStore over HTTP using an httpx AsyncClient.

    Example:
        >>> async with HttpRemoteStore("https://api.example.com", api_key="...") as remote:
        ...     result = await remote.list(1, 10, TaskFilter.ALL)
    """

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str | None = None,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            base_url: API root (``/tasks`` is appended)
            api_key: Sent as a bearer token when given
            timeout: Per-request timeout in seconds
            client: Preconfigured client (e.g. with a mock transport); its
                base_url and headers are left alone
        """
        self.base_url = base_url.rstrip("/")
        self._owns_client = client is None
        if client is None:
            headers = {"Accept": "application/json"}
            if api_key:
                headers["Authorization"] = f"Bearer {api_key}"
            client = httpx.AsyncClient(base_url=self.base_url, headers=headers, timeout=timeout)
        self._client = client

    @classmethod
    def from_config(cls, config: RemoteConfig) -> HttpRemoteStore:
        """
        Build a client from the ``remote`` config section.

        Raises:
            ValueError: If no base_url is configured
            RuntimeError: If ``api_key_env`` names a variable that is not set
        """
        if not config.base_url:
            raise ValueError("remote.base_url is not configured")

        api_key = None
        if config.api_key_env:
            api_key = os.environ.get(config.api_key_env)
            if not api_key:
                raise RuntimeError(
                    f"{config.api_key_env} is not set. Set it in the environment, e.g.\n\n"
                    f"  export {config.api_key_env}=...\n\n"
                    f"Then re-run the command."
                )
        return cls(config.base_url, api_key=api_key, timeout=config.timeout_seconds)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> HttpRemoteStore:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        task_id: str | None = None,
        **kwargs: Any,
    ) -> Result[httpx.Response]:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning("%s %s timed out: %s", method, path, e)
            return Err(NetworkError(f"Request timed out: {e}"))
        except httpx.RequestError as e:
            logger.warning("%s %s failed: %s", method, path, e)
            return Err(NetworkError(f"Network error: {e}"))

        failure = classify_response(response, task_id)
        if failure is not None:
            logger.debug("%s %s -> %s", method, path, failure.error)
            return failure
        return Ok(response)

    def _parse_task(self, response: httpx.Response) -> Result[Task]:
        try:
            return Ok(Task.model_validate(response.json()))
        except ValueError as e:  # includes pydantic validation errors
            return Err(ServerRejection(f"Invalid task in response: {e}", code="invalid_response"))

    async def create(self, fields: TaskCreate, owner_id: str) -> Result[Task]:
        payload = fields.model_dump(mode="json")
        payload["owner_id"] = owner_id
        result = await self._request("POST", "/tasks", json=payload)
        if isinstance(result, Err):
            return result
        return self._parse_task(result.value)

    async def update(self, task_id: str, patch: dict[str, Any]) -> Result[Task]:
        result = await self._request(
            "PATCH",
            f"/tasks/{task_id}",
            task_id=task_id,
            json=_PAYLOAD.dump_python(patch, mode="json"),
        )
        if isinstance(result, Err):
            return result
        return self._parse_task(result.value)

    async def update_status(self, task_id: str, status: TaskStatus) -> Result[Task]:
        result = await self._request(
            "PATCH",
            f"/tasks/{task_id}/status",
            task_id=task_id,
            json={"status": TaskStatus(status).value},
        )
        if isinstance(result, Err):
            return result
        return self._parse_task(result.value)

    async def delete(self, task_id: str) -> Result[None]:
        result = await self._request("DELETE", f"/tasks/{task_id}", task_id=task_id)
        if isinstance(result, Err):
            return result
        return Ok(None)

    async def list(self, page: int, page_size: int, filter: TaskFilter) -> Result[TaskPage]:
        result = await self._request(
            "GET",
            "/tasks",
            params={"page": page, "page_size": page_size, "filter": TaskFilter(filter).value},
        )
        if isinstance(result, Err):
            return result
        try:
            return Ok(TaskPage.model_validate(result.value.json()))
        except ValueError as e:
            return Err(
                ServerRejection(f"Invalid task page in response: {e}", code="invalid_response")
            )


__all__ = ["HttpRemoteStore", "classify_response"]
