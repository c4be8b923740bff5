"""
Tests for the reconciliation policy.

The policy is a pure function, so these tests enumerate its rules directly.
"""

import pytest

from conftest import T0, T1, T2, build_task
from tasksync.core.cache.models import CacheEntry, Verdict, WriteSource
from tasksync.core.cache.policy import ReconciliationPolicy, decide


def entry(updated_at=T1, pending=None):
    return CacheEntry(
        task=build_task(updated_at=updated_at),
        updated_at=updated_at,
        pending_mutation_id=pending,
    )


class TestDecide:
    """Test the rule order of decide()."""

    @pytest.mark.parametrize("source", list(WriteSource))
    def test_unknown_id_accepted(self, source):
        """Test that a candidate for an unknown id is always accepted."""
        assert decide(None, build_task(), source) == Verdict.ACCEPT

    def test_newer_accepted(self):
        assert decide(entry(T1), build_task(updated_at=T2), WriteSource.REALTIME) == Verdict.ACCEPT

    def test_equal_timestamp_accepted(self):
        """Test that ties go to the candidate."""
        assert decide(entry(T1), build_task(updated_at=T1), WriteSource.FETCH) == Verdict.ACCEPT

    @pytest.mark.parametrize("source", list(WriteSource))
    def test_older_rejected(self, source):
        """Test that strictly older candidates are rejected from every source."""
        assert decide(entry(T1), build_task(updated_at=T0), source) == Verdict.REJECT

    @pytest.mark.parametrize("source", [WriteSource.REALTIME, WriteSource.FETCH])
    def test_pending_defers_foreign_writes(self, source):
        """Test that feed and fetch candidates wait while a mutation is pending."""
        current = entry(T1, pending=1)
        assert decide(current, build_task(updated_at=T2), source) == Verdict.DEFER

    def test_pending_defers_even_older_candidates(self):
        """Test that the pending rule comes before the staleness rule."""
        current = entry(T1, pending=1)
        assert decide(current, build_task(updated_at=T0), WriteSource.REALTIME) == Verdict.DEFER

    def test_pending_does_not_block_own_mutation(self):
        """Test that the mutation's own writes pass while it is pending."""
        current = entry(T1, pending=1)
        assert decide(current, build_task(updated_at=T1), WriteSource.MUTATION) == Verdict.ACCEPT

    def test_policy_object_delegates(self):
        policy = ReconciliationPolicy()
        assert policy.decide(entry(T1), build_task(updated_at=T0), WriteSource.FETCH) == (
            Verdict.REJECT
        )
