"""
Canonical task cache and its reconciliation policy.

Example:
    >>> from tasksync.core.cache import TaskCache, WriteSource
    >>> cache = TaskCache(page_size=20)
    >>> cache.upsert(task, WriteSource.REALTIME)
    <Verdict.ACCEPT: 'accept'>
"""

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
from tasksync.core.cache.policy import ReconciliationPolicy, decide
from tasksync.core.cache.store import TaskCache

__all__ = [
    "TaskCache",
    "ReconciliationPolicy",
    "decide",
    "CacheChange",
    "CacheEntry",
    "CacheSnapshot",
    "ChangeKind",
    "EntrySnapshot",
    "Pagination",
    "Verdict",
    "WriteSource",
]
