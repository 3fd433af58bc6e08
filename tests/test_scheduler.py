"""Tests for the eviction scheduler."""

import asyncio
import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from windowguard.exceptions import StoreUnavailable
from windowguard.storage import InMemoryStore
from windowguard.throttler import EvictionScheduler, EvictionStats


def scanning_store(keys, trim_side_effect=None):
    """Mock store yielding ``keys`` from scan_keys."""
    store = MagicMock()
    store.name = "mock"

    async def scan_keys(pattern, batch_size=100):
        for key in keys:
            yield key

    store.scan_keys = MagicMock(side_effect=scan_keys)
    store.trim_expired = AsyncMock(side_effect=trim_side_effect, return_value=1)
    return store


class TestRunOnce:
    """Test a single eviction pass."""

    @pytest.mark.asyncio
    async def test_trims_stale_entries_only(self, clock):
        store = InMemoryStore()
        start = clock.now
        await store.atomic_evaluate("throttle:{a:1}", start, 10, 60_000)
        await store.atomic_evaluate("throttle:{a:1}", start + 50_000, 10, 60_000)
        await store.atomic_evaluate("throttle:{b:2}", start + 50_000, 10, 60_000)
        clock.set(start + 70_000)

        scheduler = EvictionScheduler(
            store, horizon_ms=60_000, pattern="throttle:*", clock=clock
        )
        stats = await scheduler.run_once()

        assert stats == EvictionStats(keys_scanned=2, entries_removed=1, errors=0)
        assert store.stored_count("throttle:{a:1}") == 1
        assert store.stored_count("throttle:{b:2}") == 1

    @pytest.mark.asyncio
    async def test_uses_horizon_cutoff(self, clock):
        store = scanning_store(["k1"])
        scheduler = EvictionScheduler(store, horizon_ms=5000, clock=clock)

        await scheduler.run_once()

        store.trim_expired.assert_awaited_once_with("k1", clock.now - 5000)

    @pytest.mark.asyncio
    async def test_scans_with_pattern_and_batch_size(self, clock):
        store = scanning_store([])
        scheduler = EvictionScheduler(
            store, horizon_ms=1000, pattern="rl:*", batch_size=25, clock=clock
        )

        stats = await scheduler.run_once()

        assert stats == EvictionStats()
        store.scan_keys.assert_called_once_with("rl:*", 25)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("batch_operations", [True, False])
    async def test_key_failure_does_not_abort_pass(self, clock, log_records, batch_operations):
        logger, handler = log_records

        async def trim(key, before_ms):
            if key == "bad":
                raise StoreUnavailable("trim failed")
            return 2

        store = scanning_store(["a", "bad", "b", "c"], trim_side_effect=trim)
        scheduler = EvictionScheduler(
            store,
            horizon_ms=1000,
            batch_size=2,
            batch_operations=batch_operations,
            clock=clock,
            logger=logger,
        )

        stats = await scheduler.run_once()

        assert stats == EvictionStats(keys_scanned=4, entries_removed=6, errors=1)
        assert store.trim_expired.await_count == 4
        assert handler.messages(logging.WARNING) == ["Failed to trim key"]

    @pytest.mark.asyncio
    async def test_batches_run_concurrently(self, clock):
        in_flight = 0
        peak = 0

        async def trim(key, before_ms):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return 0

        store = scanning_store([f"k{i}" for i in range(6)], trim_side_effect=trim)
        scheduler = EvictionScheduler(store, horizon_ms=1000, batch_size=3, clock=clock)

        await scheduler.run_once()

        assert peak == 3

    @pytest.mark.asyncio
    async def test_sequential_mode_trims_one_at_a_time(self, clock):
        in_flight = 0
        peak = 0

        async def trim(key, before_ms):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0)
            in_flight -= 1
            return 0

        store = scanning_store([f"k{i}" for i in range(6)], trim_side_effect=trim)
        scheduler = EvictionScheduler(
            store, horizon_ms=1000, batch_size=3, batch_operations=False, clock=clock
        )

        await scheduler.run_once()

        assert peak == 1

    @pytest.mark.asyncio
    async def test_scan_failure_propagates(self, clock):
        store = MagicMock()
        store.name = "mock"

        async def scan_keys(pattern, batch_size=100):
            raise StoreUnavailable("scan failed")
            yield

        store.scan_keys = MagicMock(side_effect=scan_keys)
        scheduler = EvictionScheduler(store, horizon_ms=1000, clock=clock)

        with pytest.raises(StoreUnavailable):
            await scheduler.run_once()


class TestLifecycle:
    """Test starting and stopping the background task."""

    @pytest.mark.asyncio
    async def test_runs_periodically(self, clock):
        store = scanning_store(["k"])
        scheduler = EvictionScheduler(store, horizon_ms=1000, interval_ms=10, clock=clock)

        await scheduler.start()
        assert scheduler.running is True
        await asyncio.sleep(0.1)
        await scheduler.stop()

        assert scheduler.running is False
        assert store.trim_expired.await_count >= 2

    @pytest.mark.asyncio
    async def test_failed_pass_keeps_loop_alive(self, clock, log_records):
        logger, handler = log_records
        store = MagicMock()
        store.name = "mock"
        calls = 0

        async def scan_keys(pattern, batch_size=100):
            nonlocal calls
            calls += 1
            raise StoreUnavailable("scan failed")
            yield

        store.scan_keys = MagicMock(side_effect=scan_keys)
        scheduler = EvictionScheduler(
            store, horizon_ms=1000, interval_ms=10, clock=clock, logger=logger
        )

        await scheduler.start()
        await asyncio.sleep(0.1)
        await scheduler.stop()

        assert calls >= 2
        assert "Eviction pass failed" in handler.messages(logging.ERROR)

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, clock):
        scheduler = EvictionScheduler(scanning_store([]), horizon_ms=1000, clock=clock)

        await scheduler.start()
        task = scheduler._task
        await scheduler.start()
        assert scheduler._task is task

        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_stop_without_start(self, clock):
        scheduler = EvictionScheduler(scanning_store([]), horizon_ms=1000, clock=clock)
        await scheduler.stop()
        assert scheduler.running is False

    @pytest.mark.asyncio
    async def test_stop_cancels_stuck_pass(self, clock, monkeypatch):
        async def trim(key, before_ms):
            await asyncio.sleep(60)

        store = scanning_store(["k"], trim_side_effect=trim)
        scheduler = EvictionScheduler(store, horizon_ms=1000, interval_ms=10, clock=clock)
        monkeypatch.setattr(EvictionScheduler, "STOP_TIMEOUT_SECONDS", 0.05)

        await scheduler.start()
        await asyncio.sleep(0.05)
        await scheduler.stop()

        assert scheduler.running is False
