"""
Tests for the expiring route cache.

Covers TTL expiry, lazy removal, sweeping and the sweeper lifecycle.
"""

import asyncio
import threading

import pytest

from hookrelay.core.cache import ExpiringCache, ReadWriteLock


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestExpiringCache:
    """Test get/set/delete semantics."""

    def test_set_then_get(self) -> None:
        cache = ExpiringCache(ttl_seconds=60, clock=FakeClock())
        cache.set("abc", "http://dest/x")
        assert cache.get("abc") == ("http://dest/x", True)

    def test_missing_key(self) -> None:
        cache = ExpiringCache(ttl_seconds=60, clock=FakeClock())
        assert cache.get("nope") == (None, False)

    def test_entry_absent_after_ttl(self) -> None:
        clock = FakeClock()
        cache = ExpiringCache(ttl_seconds=60, clock=clock)
        cache.set("abc", "v")

        clock.now += 60
        assert cache.get("abc") == ("v", True)

        clock.now += 0.001
        assert cache.get("abc") == (None, False)

    def test_expired_read_does_not_delete(self) -> None:
        clock = FakeClock()
        cache = ExpiringCache(ttl_seconds=1, clock=clock)
        cache.set("abc", "v")
        clock.now += 5

        assert cache.get("abc")[1] is False
        assert len(cache) == 1

    def test_set_restarts_ttl_window(self) -> None:
        clock = FakeClock()
        cache = ExpiringCache(ttl_seconds=10, clock=clock)
        cache.set("abc", "old")
        clock.now += 8
        cache.set("abc", "new")
        clock.now += 8

        assert cache.get("abc") == ("new", True)

    def test_delete(self) -> None:
        cache = ExpiringCache(ttl_seconds=60, clock=FakeClock())
        cache.set("abc", "v")
        cache.delete("abc")
        cache.delete("never-set")
        assert cache.get("abc") == (None, False)

    def test_purge_expired_only_removes_expired(self) -> None:
        clock = FakeClock()
        cache = ExpiringCache(ttl_seconds=10, clock=clock)
        cache.set("old", 1)
        clock.now += 6
        cache.set("fresh", 2)
        clock.now += 6

        assert cache.purge_expired() == 1
        assert len(cache) == 1
        assert cache.get("fresh") == (2, True)


class TestCacheSweeper:
    """Test the background sweep task."""

    @pytest.mark.asyncio
    async def test_sweeper_removes_expired_entries(self) -> None:
        cache = ExpiringCache(ttl_seconds=0.01, sweep_interval_seconds=0.02)
        cache.set("abc", "v")

        await cache.start_sweeper()
        try:
            await asyncio.sleep(0.1)
            assert len(cache) == 0
        finally:
            await cache.stop_sweeper()

    @pytest.mark.asyncio
    async def test_start_and_stop_are_idempotent(self) -> None:
        cache = ExpiringCache(ttl_seconds=60, sweep_interval_seconds=60)
        await cache.start_sweeper()
        await cache.start_sweeper()
        await cache.stop_sweeper()
        await cache.stop_sweeper()
        assert cache._task is None


class TestReadWriteLock:
    """Test reader/writer exclusion."""

    def test_readers_share_the_lock(self) -> None:
        lock = ReadWriteLock()
        entered = threading.Event()

        with lock.read():
            def second_reader() -> None:
                with lock.read():
                    entered.set()

            t = threading.Thread(target=second_reader)
            t.start()
            assert entered.wait(timeout=1)
            t.join()

    def test_writer_waits_for_readers(self) -> None:
        lock = ReadWriteLock()
        wrote = threading.Event()

        def writer() -> None:
            with lock.write():
                wrote.set()

        with lock.read():
            t = threading.Thread(target=writer)
            t.start()
            assert not wrote.wait(timeout=0.05)

        assert wrote.wait(timeout=1)
        t.join()
