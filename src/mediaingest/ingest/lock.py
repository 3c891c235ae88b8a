"""Per-resource mutual exclusion for ingestion attempts.

The lock never blocks: ``acquire`` answers immediately and a rejected caller
reports "already in progress" instead of waiting. Every entry carries a TTL
so a crashed or hung attempt cannot hold its key forever. Expiry does not
stop the transfer that held the key; it only lets a new attempt start.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Dict, List, Optional

from .models import LockEntry

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 30 * 60


class ResourceLock:
    """In-memory lock table keyed by resource key.

    All methods are synchronous; on a single event loop the check-then-set
    in ``acquire`` cannot interleave with another task.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = float(ttl_seconds)
        self._clock = clock
        self._entries: Dict[str, LockEntry] = {}
        self._timers: Dict[str, asyncio.TimerHandle] = {}

    def acquire(self, key: str) -> bool:
        """Take the lock for ``key``; False if it is already held."""
        self._expire_stale(key)
        if key in self._entries:
            logger.info("Ingestion already in progress for %s", key)
            return False

        now = self._clock()
        entry = LockEntry(key=key, held_since=now, auto_release_at=now + self.ttl_seconds)
        self._entries[key] = entry
        self._schedule_auto_release(entry)
        logger.info("Acquired ingestion lock for %s", key)
        return True

    def release(self, key: str) -> None:
        """Release ``key``. Releasing an unheld key is a no-op."""
        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()
        if self._entries.pop(key, None) is not None:
            logger.info("Released ingestion lock for %s", key)

    def is_locked(self, key: str) -> bool:
        self._expire_stale(key)
        return key in self._entries

    def active_keys(self) -> List[str]:
        """Keys currently held, for debugging and the health surface."""
        for key in list(self._entries):
            self._expire_stale(key)
        return list(self._entries)

    def entries(self) -> List[LockEntry]:
        self.active_keys()
        return list(self._entries.values())

    def clear(self) -> None:
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        self._entries.clear()
        logger.info("Cleared all ingestion locks")

    def _schedule_auto_release(self, entry: LockEntry) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: expiry is enforced lazily through _expire_stale.
            return
        self._timers[entry.key] = loop.call_later(self.ttl_seconds, self._auto_release, entry)

    def _auto_release(self, entry: LockEntry) -> None:
        self._timers.pop(entry.key, None)
        if self._entries.get(entry.key) is entry:
            del self._entries[entry.key]
            logger.warning(
                "Auto-released ingestion lock for %s after %.0f seconds",
                entry.key,
                self.ttl_seconds,
            )

    def _expire_stale(self, key: str) -> None:
        entry: Optional[LockEntry] = self._entries.get(key)
        if entry is not None and self._clock() >= entry.auto_release_at:
            timer = self._timers.pop(key, None)
            if timer is not None:
                timer.cancel()
            self._auto_release(entry)
