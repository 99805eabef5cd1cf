"""
In-memory cache with a fixed per-instance TTL and a background sweep.

Reads never delete: an expired entry simply reads as missing until the
sweep (or an overwrite) removes it.
"""

import asyncio
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Dict, Generic, Iterator, Optional, Tuple, TypeVar

import structlog

logger = structlog.get_logger(__name__)

K = TypeVar("K")
V = TypeVar("V")


@dataclass(frozen=True)
class CacheEntry(Generic[V]):
    """A cached value and the monotonic time after which it is absent."""
    value: V
    expires_at: float


class ReadWriteLock:
    """Many concurrent readers or one writer."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writing = False

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writing:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            while self._writing or self._readers:
                self._cond.wait()
            self._writing = True
        try:
            yield
        finally:
            with self._cond:
                self._writing = False
                self._cond.notify_all()


class ExpiringCache(Generic[K, V]):
    """
    Key/value store whose entries expire a fixed TTL after they are set.

    The sweep task runs until stop_sweeper() is called; a task still pending
    at process exit is simply dropped with the loop.
    """

    def __init__(
        self,
        ttl_seconds: float,
        sweep_interval_seconds: float = 300,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.sweep_interval = sweep_interval_seconds
        self._clock = clock
        self._items: Dict[K, CacheEntry[V]] = {}
        self._lock = ReadWriteLock()
        self._task: Optional[asyncio.Task[None]] = None
        self._running = False

    def get(self, key: K) -> Tuple[Optional[V], bool]:
        """Return (value, True) for a live entry, (None, False) otherwise."""
        with self._lock.read():
            entry = self._items.get(key)
        if entry is None or self._clock() > entry.expires_at:
            return None, False
        return entry.value, True

    def set(self, key: K, value: V) -> None:
        """Store value under key with a fresh TTL window."""
        entry = CacheEntry(value=value, expires_at=self._clock() + self.ttl_seconds)
        with self._lock.write():
            self._items[key] = entry

    def delete(self, key: K) -> None:
        with self._lock.write():
            self._items.pop(key, None)

    def purge_expired(self) -> int:
        """Remove every expired entry and return how many were removed."""
        now = self._clock()
        with self._lock.write():
            expired = [k for k, e in self._items.items() if now > e.expires_at]
            for k in expired:
                del self._items[k]
        return len(expired)

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._items)

    async def start_sweeper(self) -> None:
        """Start the periodic sweep task."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self.run_sweep())

        logger.info(
            "Cache sweeper started",
            ttl_seconds=self.ttl_seconds,
            interval_seconds=self.sweep_interval,
        )

    async def stop_sweeper(self) -> None:
        """Stop the periodic sweep task."""
        if not self._running:
            return

        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info("Cache sweeper stopped")

    async def run_sweep(self) -> None:
        """Sweep loop: wake every interval and drop expired entries."""
        while self._running:
            try:
                await asyncio.sleep(self.sweep_interval)
                removed = self.purge_expired()
                if removed:
                    logger.debug("Cache sweep removed entries", removed=removed)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Cache sweep error", error=str(e))
