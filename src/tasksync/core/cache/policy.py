"""
Reconciliation policy for candidate cache writes.

Decides whether a candidate task value replaces the cached one, is held back
until the local write in flight for the same id settles, or is discarded as
stale. The rules are applied in priority order:

1. A local write is pending and the candidate is not that write's own
   confirmation -> DEFER.
2. The candidate's ``updated_at`` is strictly older than the cached
   ``updated_at`` -> REJECT.
3. Otherwise -> ACCEPT (last writer wins, ties go to the candidate).

The policy is a pure function; acting on the verdict is the cache's job.
"""

from __future__ import annotations

from tasksync.core.cache.models import CacheEntry, Verdict, WriteSource
from tasksync.core.tasks.models import Task


def decide(current: CacheEntry | None, candidate: Task, source: WriteSource) -> Verdict:
    """
    Decide what to do with a candidate write.

    Args:
        current: The cached entry for the candidate's id, or None if unknown
        candidate: The incoming task value
        source: Where the candidate came from

    Returns:
        ACCEPT, REJECT or DEFER

    Example:
        >>> decide(None, task, WriteSource.REALTIME)
        <Verdict.ACCEPT: 'accept'>
    """
    if current is None:
        return Verdict.ACCEPT

    if current.is_pending and source != WriteSource.MUTATION:
        return Verdict.DEFER

    if candidate.updated_at < current.updated_at:
        return Verdict.REJECT

    return Verdict.ACCEPT


class ReconciliationPolicy:
    """Object wrapper around :func:`decide` so the cache can take a policy instance."""

    def decide(self, current: CacheEntry | None, candidate: Task, source: WriteSource) -> Verdict:
        return decide(current, candidate, source)
