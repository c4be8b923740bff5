"""
Task data models for tasksync.

Defines the Task entity held by the cache, the enums describing it, and the
input models used to validate user-supplied fields before a mutation is
dispatched. Task values are immutable: every change produces a copy, which
is what makes cache snapshots safe to hand to readers.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, overload
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator, model_validator

TITLE_MAX_LENGTH = 22
DESCRIPTION_MAX_LENGTH = 500

_DOMAIN_PATTERN = re.compile(
    r"^(www\.)?[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(\.[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*\.[a-zA-Z]{2,}$"
)


@overload
def ensure_utc(value: datetime) -> datetime: ...


@overload
def ensure_utc(value: None) -> None: ...


def ensure_utc(value: datetime | None) -> datetime | None:
    """Interpret naive datetimes as UTC so that all comparisons are well defined."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def is_valid_link(value: str) -> bool:
    """
    Check whether a task link is acceptable.

    Accepts absolute http(s) URLs as well as bare domains such as
    ``example.com`` or ``www.example.org``.
    """
    candidate = value.strip()
    parsed = urlparse(candidate)
    if parsed.scheme in ("http", "https") and parsed.netloc:
        return True
    return bool(_DOMAIN_PATTERN.match(candidate))


class TaskStatus(str, Enum):
    """Task status values as stored by the remote store.

    OVERDUE may appear in records written by older clients, but it is never
    the target of a toggle: overdue is a read-time classification derived
    from ``due_date``.
    """

    PENDING = "pending"
    OVERDUE = "overdue"
    COMPLETE = "complete"


class TaskPriority(str, Enum):
    """Task priority levels."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class TaskFilter(str, Enum):
    """Read-time buckets used by the query view."""

    ALL = "all"  # everything not complete
    PENDING = "pending"
    OVERDUE = "overdue"
    COMPLETE = "complete"
    ASSIGNED = "assigned"  # assigned to someone other than the owner
    PINNED = "pinned"


class Task(BaseModel):
    """
    A task entity as held by the cache.

    ``id`` is assigned by the remote store on creation (optimistic entries
    use a temporary local id until the store confirms). ``updated_at`` is
    the last-writer-wins clock used by reconciliation.

    Example:
        >>> task = Task(
        ...     id="7f1c",
        ...     title="Water plants",
        ...     owner_id="user-1",
        ...     updated_at="2026-01-15T12:00:00Z",
        ... )
        >>> task.status
        <TaskStatus.PENDING: 'pending'>
        >>> task.model_copy(update={"pinned": True}).pinned
        True
    """

    id: str = Field(..., min_length=1, description="Unique task identifier")
    title: str = Field(..., description="Task title")
    description: str | None = Field(default=None, description="Optional longer description")
    status: TaskStatus = Field(default=TaskStatus.PENDING, description="Stored task status")
    priority: TaskPriority = Field(default=TaskPriority.MEDIUM, description="Task priority")
    due_date: datetime | None = Field(default=None, description="When the task is due")
    pinned: bool = Field(default=False, description="Whether the task is pinned to the top")

    owner_id: str = Field(..., description="User who created the task")
    assignee_id: str | None = Field(default=None, description="User the task is assigned to")
    parent_task_id: str | None = Field(
        default=None, description="Task this one follows up on (back-reference)"
    )

    photo_url: str | None = Field(default=None, description="Attached photo")
    url_link: str | None = Field(default=None, description="Attached link")

    created_at: datetime | None = Field(default=None, description="When the task was created")
    updated_at: datetime = Field(..., description="When the task was last written")

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",  # feed records carry joined relations we do not cache
    )

    @field_validator("due_date", "created_at", "updated_at", mode="after")
    @classmethod
    def normalize_timestamps(cls, v: datetime | None) -> datetime | None:
        """Attach UTC to naive timestamps."""
        return ensure_utc(v)

    @property
    def is_complete(self) -> bool:
        return self.status == TaskStatus.COMPLETE

    @property
    def is_assigned(self) -> bool:
        """True if the task is assigned to someone other than its owner."""
        return bool(self.owner_id and self.assignee_id and self.owner_id != self.assignee_id)

    def is_overdue(self, now: datetime) -> bool:
        """
        Check if the task is overdue at ``now``.

        A task without a due date is never overdue, and neither is a
        completed one.
        """
        if self.due_date is None or self.is_complete:
            return False
        return self.due_date < ensure_utc(now)


class TaskCreate(BaseModel):
    """
    Validated fields for creating a task (or a follow-up).

    The owner, id and timestamps are assigned elsewhere: the owner by the
    engine, the rest by the remote store.
    """

    title: str = Field(..., min_length=1, max_length=TITLE_MAX_LENGTH)
    description: str | None = Field(default=None, max_length=DESCRIPTION_MAX_LENGTH)
    priority: TaskPriority = Field(default=TaskPriority.MEDIUM)
    due_date: datetime | None = Field(default=None)
    pinned: bool = Field(default=False)
    assignee_id: str | None = Field(default=None)
    parent_task_id: str | None = Field(default=None)
    photo_url: str | None = Field(default=None)
    url_link: str | None = Field(default=None)

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    @field_validator("due_date", mode="after")
    @classmethod
    def normalize_due_date(cls, v: datetime | None) -> datetime | None:
        return ensure_utc(v)

    @field_validator("url_link", mode="after")
    @classmethod
    def validate_link(cls, v: str | None) -> str | None:
        """Empty links are dropped; anything else must look like a URL or domain."""
        if v is None or not v:
            return None
        if not is_valid_link(v):
            raise ValueError("Please enter a valid URL")
        return v


class TaskPatch(BaseModel):
    """
    Validated partial update of a task's editable fields.

    Status changes go through the status toggle, never through a patch.
    """

    title: str | None = Field(default=None, min_length=1, max_length=TITLE_MAX_LENGTH)
    description: str | None = Field(default=None, max_length=DESCRIPTION_MAX_LENGTH)
    priority: TaskPriority | None = Field(default=None)
    due_date: datetime | None = Field(default=None)
    pinned: bool | None = Field(default=None)
    assignee_id: str | None = Field(default=None)
    photo_url: str | None = Field(default=None)
    url_link: str | None = Field(default=None)

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    @field_validator("due_date", mode="after")
    @classmethod
    def normalize_due_date(cls, v: datetime | None) -> datetime | None:
        return ensure_utc(v)

    @field_validator("url_link", mode="after")
    @classmethod
    def validate_link(cls, v: str | None) -> str | None:
        if v and not is_valid_link(v):
            raise ValueError("Please enter a valid URL")
        return v

    @model_validator(mode="after")
    def check_not_empty(self) -> TaskPatch:
        if not self.model_fields_set:
            raise ValueError("Update must change at least one field")
        if "title" in self.model_fields_set and self.title is None:
            raise ValueError("Task title is required")
        return self

    def changes(self) -> dict[str, Any]:
        """Return only the fields the caller actually set."""
        return self.model_dump(exclude_unset=True)


class TaskPage(BaseModel):
    """One page of tasks as returned by the remote store's list operation."""

    items: list[Task] = Field(default_factory=list)
    total_count: int = Field(default=0, ge=0)


class TaskCounts(BaseModel):
    """
    Task count statistics per read-time bucket.

    Used for dashboard headers and filter badges.
    """

    total: int = Field(default=0, description="Total number of tasks")
    active: int = Field(default=0, description="Tasks that are not complete")
    pending: int = Field(default=0, description="Active tasks not yet past due")
    overdue: int = Field(default=0, description="Active tasks past their due date")
    complete: int = Field(default=0, description="Completed tasks")
    assigned: int = Field(default=0, description="Tasks assigned to someone else")

    @computed_field
    @property
    def completion_percentage(self) -> float:
        """Percentage of tasks completed (0-100)."""
        if self.total == 0:
            return 0.0
        return (self.complete / self.total) * 100
