"""
In-memory call state keyed by carrier call id.

Two stores share one implementation: ``SessionStore`` for ``CallSession``
values and ``AttemptTracker`` for failed PIN counts. Entries are replaced
whole, never mutated, and expire after an idle window because call-end
webhooks are not guaranteed to arrive.
"""

import asyncio
import logging
import time
from typing import Callable, Dict, Generic, Optional, TypeVar

from contactline.core.config import get_settings
from contactline.models import AttemptCounter, CallSession

logger = logging.getLogger(__name__)

T = TypeVar("T", CallSession, AttemptCounter)


class _IdleExpiringStore(Generic[T]):
    """
    Call-id keyed map with idle expiry.

    Every entry carries ``touched_at`` (monotonic seconds). Expired entries
    read as absent and are dropped by ``sweep``, which runs on an interval
    once ``start`` is called.
    """

    label = "entries"

    def __init__(
        self,
        idle_seconds: float = 600,
        sweep_interval_seconds: float = 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._entries: Dict[str, T] = {}
        self._lock = asyncio.Lock()
        self._idle_seconds = idle_seconds
        self._sweep_interval = sweep_interval_seconds
        self._clock = clock
        self._sweep_task: Optional[asyncio.Task] = None

    def _expired(self, entry: T) -> bool:
        return self._clock() - entry.touched_at > self._idle_seconds

    async def get(self, call_id: str) -> Optional[T]:
        async with self._lock:
            entry = self._entries.get(call_id)
            if entry is not None and self._expired(entry):
                del self._entries[call_id]
                logger.info(f"Expired idle {self.label} for call {call_id}")
                return None
            return entry

    async def set(self, call_id: str, entry: T) -> T:
        """Store ``entry`` for the call, replacing any previous value."""
        entry = entry.model_copy(update={"touched_at": self._clock()})
        async with self._lock:
            self._entries[call_id] = entry
            return entry

    async def delete(self, call_id: str) -> bool:
        async with self._lock:
            return self._entries.pop(call_id, None) is not None

    async def sweep(self) -> int:
        """Drop every expired entry; returns how many were removed."""
        async with self._lock:
            stale = [call_id for call_id, entry in self._entries.items() if self._expired(entry)]
            for call_id in stale:
                del self._entries[call_id]
        if stale:
            logger.info(f"Evicted {len(stale)} idle {self.label}")
        return len(stale)

    async def size(self) -> int:
        async with self._lock:
            return len(self._entries)

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()

    async def start(self) -> None:
        """Start the background sweep."""
        if self._sweep_task is not None:
            return
        self._sweep_task = asyncio.create_task(self._sweep_loop())
        logger.info(
            f"{type(self).__name__} started: idle={self._idle_seconds}s, "
            f"sweep_interval={self._sweep_interval}s"
        )

    async def stop(self) -> None:
        """Stop the background sweep and drop all entries."""
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None
        await self.clear()

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            try:
                await self.sweep()
            except Exception as e:
                logger.error(f"Error sweeping {self.label}: {e}")


class SessionStore(_IdleExpiringStore[CallSession]):
    """Call sessions keyed by call id."""

    label = "call sessions"


class AttemptTracker(_IdleExpiringStore[AttemptCounter]):
    """Failed PIN attempts keyed by call id."""

    label = "attempt counters"

    async def record_failure(self, call_id: str) -> int:
        """Count one failed attempt and return the new total."""
        async with self._lock:
            current = self._entries.get(call_id)
            count = 0 if current is None or self._expired(current) else current.count
            counter = AttemptCounter(call_id=call_id, count=count + 1, touched_at=self._clock())
            self._entries[call_id] = counter
            return counter.count

    async def count(self, call_id: str) -> int:
        counter = await self.get(call_id)
        return counter.count if counter else 0


# Global instances (started in main.py lifespan)
_session_store: Optional[SessionStore] = None
_attempt_tracker: Optional[AttemptTracker] = None


def get_session_store() -> SessionStore:
    """Get the global call session store."""
    global _session_store
    if _session_store is None:
        settings = get_settings()
        _session_store = SessionStore(
            idle_seconds=settings.SESSION_IDLE_SECONDS,
            sweep_interval_seconds=settings.SESSION_SWEEP_INTERVAL_SECONDS,
        )
    return _session_store


def get_attempt_tracker() -> AttemptTracker:
    """Get the global PIN attempt tracker."""
    global _attempt_tracker
    if _attempt_tracker is None:
        settings = get_settings()
        _attempt_tracker = AttemptTracker(
            idle_seconds=settings.SESSION_IDLE_SECONDS,
            sweep_interval_seconds=settings.SESSION_SWEEP_INTERVAL_SECONDS,
        )
    return _attempt_tracker
