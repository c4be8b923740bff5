"""
Result type and error taxonomy for the sync engine.

Expected failures (a rejected write, a task deleted by someone else, invalid
input) are returned as ``Err`` values rather than raised, so callers branch
on the result instead of catching exceptions. The error classes are still
exceptions: ``Result.unwrap()`` raises them for callers that prefer that
style.

Example:
    >>> result = await engine.toggle_pin(task_id)
    >>> if result.is_ok():
    ...     print(result.value.pinned)
    ... elif isinstance(result.error, ConflictError):
    ...     print("task was deleted elsewhere")
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, NoReturn, TypeVar, Union

from pydantic import ValidationError as PydanticValidationError

T = TypeVar("T")


class SyncError(Exception):
    """Base exception for errors surfaced by the sync engine."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class ValidationError(SyncError):
    """
    Input rejected before dispatch; the cache was not touched.

    Attributes:
        errors: Human-readable messages, one per failing field
    """

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or [message]

    @classmethod
    def from_pydantic(cls, exc: PydanticValidationError) -> ValidationError:
        """Flatten a pydantic validation error into field messages."""
        errors = []
        for err in exc.errors():
            location = ".".join(str(part) for part in err.get("loc", ()))
            errors.append(f"{location}: {err['msg']}" if location else err["msg"])
        return cls("Invalid task fields", errors)


class NetworkError(SyncError):
    """The request was sent but no usable response came back (transient)."""


class ServerRejection(SyncError):
    """
    The remote store explicitly refused the write.

    Attributes:
        code: Short machine-readable reason (e.g. "permission_denied", "timeout")
        status_code: HTTP status if the rejection came from an HTTP response
    """

    def __init__(self, message: str, code: str = "rejected", status_code: int | None = None):
        super().__init__(message)
        self.code = code
        self.status_code = status_code


class ConflictError(SyncError):
    """The task no longer exists remotely (e.g. deleted by another client)."""

    def __init__(self, task_id: str, message: str | None = None) -> None:
        super().__init__(message or f"Task '{task_id}' no longer exists")
        self.task_id = task_id


class RealtimeDisconnect(SyncError):
    """The change feed subscription dropped; cached data may be stale."""


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Successful result carrying a value."""

    value: T

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True)
class Err:
    """Failed result carrying a SyncError."""

    error: SyncError

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self) -> NoReturn:
        raise self.error


Result = Union[Ok[T], Err]


__all__ = [
    "ConflictError",
    "Err",
    "NetworkError",
    "Ok",
    "RealtimeDisconnect",
    "Result",
    "ServerRejection",
    "SyncError",
    "ValidationError",
]
