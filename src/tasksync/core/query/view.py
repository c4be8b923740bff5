"""
Read-time projection of cached tasks.

Everything in this module is a pure function of its arguments: the same
snapshot, filter, page and ``now`` always produce an equal result, and the
order in which the cache received its writes never matters. Overdue is
derived here from ``due_date`` and ``now``; a task moves between the
pending and overdue buckets simply because time passed.
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from datetime import datetime, timezone

from tasksync.core.cache.models import CacheSnapshot
from tasksync.core.tasks.models import Task, TaskCounts, TaskFilter, ensure_utc

_FAR_FUTURE = datetime.max.replace(tzinfo=timezone.utc)


def _reference_time(now: datetime | None) -> datetime:
    # Naive times are UTC, like every datetime on Task
    if now is None:
        return datetime.now(timezone.utc)
    return ensure_utc(now)


def _tasks(source: CacheSnapshot | Iterable[Task]) -> tuple[Task, ...]:
    if isinstance(source, CacheSnapshot):
        return source.tasks
    return tuple(source)


def classify(task: Task, now: datetime) -> TaskFilter:
    """
    Return the status bucket of ``task`` at ``now``.

    One of COMPLETE, OVERDUE or PENDING. A stored "overdue" status is
    ignored: only the due date decides.
    """
    if task.is_complete:
        return TaskFilter.COMPLETE
    if task.is_overdue(now):
        return TaskFilter.OVERDUE
    return TaskFilter.PENDING


def matches(task: Task, task_filter: TaskFilter, now: datetime) -> bool:
    """Check whether ``task`` belongs in ``task_filter`` at ``now``."""
    if task_filter == TaskFilter.ALL:
        return not task.is_complete
    if task_filter == TaskFilter.ASSIGNED:
        return task.is_assigned
    if task_filter == TaskFilter.PINNED:
        return task.pinned
    return classify(task, now) == task_filter


def sort_key(task: Task) -> tuple[bool, datetime, str]:
    """Pinned first, then earliest due date (none last), then id."""
    return (not task.pinned, task.due_date or _FAR_FUTURE, task.id)


def view(
    snapshot: CacheSnapshot | Iterable[Task],
    task_filter: TaskFilter | str = TaskFilter.ALL,
    page: int = 1,
    page_size: int = 10,
    now: datetime | None = None,
) -> tuple[Task, ...]:
    """
    Filter, order and paginate tasks.

    Args:
        snapshot: Cache snapshot (or any iterable of tasks)
        task_filter: Bucket to select
        page: 1-based page number; pages past the end are empty
        page_size: Tasks per page
        now: Reference time for overdue classification (defaults to now;
            naive values are taken as UTC)

    Returns:
        The tasks on the requested page

    Raises:
        ValueError: If the filter is unknown or page/page_size are below 1
    """
    task_filter = TaskFilter(task_filter)
    if page < 1:
        raise ValueError(f"page must be >= 1, got {page}")
    if page_size < 1:
        raise ValueError(f"page_size must be >= 1, got {page_size}")
    now = _reference_time(now)

    selected = sorted(
        (task for task in _tasks(snapshot) if matches(task, task_filter, now)),
        key=sort_key,
    )
    start = (page - 1) * page_size
    return tuple(selected[start : start + page_size])


def page_count(total: int, page_size: int) -> int:
    """Number of pages needed for ``total`` items (at least 1)."""
    if page_size < 1:
        raise ValueError(f"page_size must be >= 1, got {page_size}")
    return max(1, math.ceil(total / page_size))


def statistics(
    snapshot: CacheSnapshot | Iterable[Task],
    now: datetime | None = None,
) -> TaskCounts:
    """Count tasks per bucket at ``now``."""
    now = _reference_time(now)

    counts = dict.fromkeys((TaskFilter.PENDING, TaskFilter.OVERDUE, TaskFilter.COMPLETE), 0)
    total = assigned = 0
    for task in _tasks(snapshot):
        total += 1
        counts[classify(task, now)] += 1
        if task.is_assigned:
            assigned += 1

    return TaskCounts(
        total=total,
        active=total - counts[TaskFilter.COMPLETE],
        pending=counts[TaskFilter.PENDING],
        overdue=counts[TaskFilter.OVERDUE],
        complete=counts[TaskFilter.COMPLETE],
        assigned=assigned,
    )


__all__ = ["classify", "matches", "page_count", "sort_key", "statistics", "view"]
