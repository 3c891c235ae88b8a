"""Tests for the per-resource ingestion lock."""

from __future__ import annotations

import asyncio

import pytest

from mediaingest.ingest.lock import DEFAULT_TTL_SECONDS, ResourceLock


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestAcquireRelease:
    """Tests for exclusive, non-blocking acquisition."""

    def test_default_ttl_is_thirty_minutes(self):
        """Default auto-release is 30 minutes."""
        assert DEFAULT_TTL_SECONDS == 1800
        assert ResourceLock().ttl_seconds == 1800

    def test_second_acquire_rejected(self):
        """A held key rejects a second acquire."""
        lock = ResourceLock()
        assert lock.acquire("abc") is True
        assert lock.acquire("abc") is False
        assert lock.is_locked("abc")

    def test_reacquire_after_release(self):
        """Releasing a key makes it available again."""
        lock = ResourceLock()
        assert lock.acquire("abc")
        lock.release("abc")
        assert not lock.is_locked("abc")
        assert lock.acquire("abc") is True

    def test_distinct_keys_independent(self):
        """Different keys never block each other."""
        lock = ResourceLock()
        assert lock.acquire("a")
        assert lock.acquire("b")
        assert sorted(lock.active_keys()) == ["a", "b"]

    def test_release_unheld_is_noop(self):
        """Releasing a key nobody holds does nothing."""
        lock = ResourceLock()
        lock.release("missing")
        assert lock.active_keys() == []

    def test_clear_drops_everything(self):
        """clear() empties the table."""
        lock = ResourceLock()
        lock.acquire("a")
        lock.acquire("b")
        lock.clear()
        assert lock.active_keys() == []
        assert lock.acquire("a")

    def test_entries_serialize(self):
        """Entries expose key and expiry for the health surface."""
        clock = FakeClock(50.0)
        lock = ResourceLock(ttl_seconds=10, clock=clock)
        lock.acquire("abc")
        (entry,) = lock.entries()
        data = entry.to_dict()
        assert data["key"] == "abc"
        assert data["held_since"] == 50.0
        assert data["auto_release_at"] == 60.0
        assert data["acquired_at"]


class TestExpiry:
    """Tests for TTL-based auto-release."""

    def test_lazy_expiry_without_event_loop(self):
        """An entry past its TTL is dropped on the next lookup."""
        clock = FakeClock()
        lock = ResourceLock(ttl_seconds=60, clock=clock)
        assert lock.acquire("abc")

        clock.now += 59
        assert lock.acquire("abc") is False

        clock.now += 1
        assert not lock.is_locked("abc")
        assert lock.acquire("abc") is True

    def test_active_keys_skips_expired(self):
        """Expired entries do not show up in active_keys()."""
        clock = FakeClock()
        lock = ResourceLock(ttl_seconds=5, clock=clock)
        lock.acquire("old")
        clock.now += 3
        lock.acquire("new")
        clock.now += 3
        assert lock.active_keys() == ["new"]

    @pytest.mark.asyncio
    async def test_timer_releases_on_running_loop(self):
        """With a running loop the key is released by a timer."""
        lock = ResourceLock(ttl_seconds=0.05)
        assert lock.acquire("abc")
        await asyncio.sleep(0.15)
        assert "abc" not in lock.active_keys()
        assert lock.acquire("abc")

    @pytest.mark.asyncio
    async def test_release_cancels_timer(self):
        """A stale timer never releases a newer holder of the same key."""
        lock = ResourceLock(ttl_seconds=0.1)
        assert lock.acquire("abc")
        await asyncio.sleep(0.06)
        lock.release("abc")

        lock.ttl_seconds = 10
        assert lock.acquire("abc")
        await asyncio.sleep(0.1)
        assert lock.is_locked("abc")
        lock.clear()

    @pytest.mark.asyncio
    async def test_concurrent_acquires_admit_one(self):
        """Among many tasks racing for one key exactly one wins."""
        lock = ResourceLock()

        async def attempt() -> bool:
            await asyncio.sleep(0)
            return lock.acquire("same")

        results = await asyncio.gather(*(attempt() for _ in range(10)))
        assert results.count(True) == 1
        lock.clear()
