"""Tests for fetch-mutate-write retry."""

import pytest

from lector.election.retry import update_with_conflict_retry
from lector.errors import ClusterError, ConflictError, RetryExhaustedError


class Store:
    """Versioned value whose writes fail as scripted."""
    
    def __init__(self, failures):
        self.failures = list(failures)
        self.writes = []
        self.fetches = 0
    
    async def write(self, value):
        self.writes.append(value)
        if self.failures:
            raise self.failures.pop(0)
        return value
    
    async def fetch(self, value):
        self.fetches += 1
        return {"version": self.fetches, "labels": dict(value["labels"])}


def add_role(value):
    return {**value, "labels": {**value["labels"], "role": "master"}}


@pytest.mark.asyncio
class TestConflictRetry:
    """Test update_with_conflict_retry."""
    
    async def test_success_no_retry(self):
        """Test first write succeeding needs no fetch."""
        store = Store([])
        
        result = await update_with_conflict_retry(
            {"version": 0, "labels": {}},
            mutate=add_role,
            write=store.write,
            fetch=store.fetch,
            interval=0,
        )
        
        assert result["labels"] == {"role": "master"}
        assert store.fetches == 0
        assert len(store.writes) == 1
    
    async def test_retry_refetches_and_reapplies(self):
        """Test each retry writes the freshly fetched version."""
        store = Store([ConflictError("conflict"), ConflictError("conflict")])
        
        result = await update_with_conflict_retry(
            {"version": 0, "labels": {"app": "web"}},
            mutate=add_role,
            write=store.write,
            fetch=store.fetch,
            interval=0,
        )
        
        assert store.fetches == 2
        assert [w["version"] for w in store.writes] == [0, 1, 2]
        assert result["labels"] == {"app": "web", "role": "master"}
    
    async def test_exhausted(self):
        """Test exhaustion stops after the configured retries."""
        store = Store([ConflictError("conflict")] * 10)
        
        with pytest.raises(RetryExhaustedError) as exc_info:
            await update_with_conflict_retry(
                {"version": 0, "labels": {}},
                mutate=add_role,
                write=store.write,
                fetch=store.fetch,
                max_retries=3,
                interval=0,
            )
        
        assert exc_info.value.attempts == 4
        assert isinstance(exc_info.value.__cause__, ConflictError)
        assert len(store.writes) == 4
        assert store.fetches == 3
    
    async def test_non_conflict_aborts(self):
        """Test other failures are not retried."""
        store = Store([ClusterError("forbidden", status=403)])
        
        with pytest.raises(ClusterError) as exc_info:
            await update_with_conflict_retry(
                {"version": 0, "labels": {}},
                mutate=add_role,
                write=store.write,
                fetch=store.fetch,
                interval=0,
            )
        
        assert exc_info.value.status == 403
        assert store.fetches == 0
        assert len(store.writes) == 1
    
    async def test_non_conflict_during_retry_aborts(self):
        """Test a non-conflict failure on retry ends the loop."""
        store = Store([ConflictError("conflict"), ClusterError("gone", status=500)])
        
        with pytest.raises(ClusterError, match="retry"):
            await update_with_conflict_retry(
                {"version": 0, "labels": {}},
                mutate=add_role,
                write=store.write,
                fetch=store.fetch,
                interval=0,
            )
        
        assert len(store.writes) == 2
