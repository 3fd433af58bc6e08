"""Tests for the in-memory store adapter."""

import asyncio
import sys
from concurrent.futures import ThreadPoolExecutor

import pytest

from windowguard.storage import InMemoryStore

NOW = 1_000_000


class TestAtomicEvaluate:
    """Test the in-memory sliding window operation."""

    @pytest.mark.asyncio
    async def test_admits_up_to_limit(self):
        store = InMemoryStore()
        outcomes = [await store.atomic_evaluate("k", NOW, 3, 1000) for _ in range(4)]

        assert [o.admitted for o in outcomes] == [True, True, True, False]
        assert [o.count for o in outcomes] == [1, 2, 3, 3]
        assert outcomes[0].oldest_ms == NOW

    @pytest.mark.asyncio
    async def test_entry_at_window_start_still_counts(self):
        store = InMemoryStore()
        await store.atomic_evaluate("k", NOW, 1, 1000)

        outcome = await store.atomic_evaluate("k", NOW + 1000, 1, 1000)
        assert outcome.admitted is False
        assert outcome.count == 1

        outcome = await store.atomic_evaluate("k", NOW + 1001, 1, 1000)
        assert outcome.admitted is True
        assert outcome.count == 1

    @pytest.mark.asyncio
    async def test_refusal_sets_block(self):
        store = InMemoryStore()
        await store.atomic_evaluate("k", NOW, 1, 1000, 5000)

        outcome = await store.atomic_evaluate("k", NOW + 10, 1, 1000, 5000)
        assert outcome.admitted is False
        assert outcome.blocked_until_ms == NOW + 5010

    @pytest.mark.asyncio
    async def test_block_holds_after_window_empties(self):
        store = InMemoryStore()
        await store.atomic_evaluate("k", NOW, 1, 1000, 5000)
        await store.atomic_evaluate("k", NOW + 10, 1, 1000, 5000)

        outcome = await store.atomic_evaluate("k", NOW + 3000, 1, 1000, 5000)
        assert outcome.admitted is False
        assert outcome.count == 0
        assert outcome.blocked_until_ms == NOW + 5010

        outcome = await store.atomic_evaluate("k", NOW + 5010, 1, 1000, 5000)
        assert outcome.admitted is True
        assert outcome.blocked_until_ms is None

    @pytest.mark.asyncio
    async def test_zero_limit_never_admits(self):
        store = InMemoryStore()
        outcome = await store.atomic_evaluate("k", NOW, 0, 1000)
        assert outcome.admitted is False
        assert outcome.count == 0
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_window_size_is_bounded(self):
        store = InMemoryStore(max_window_size=100)
        for i in range(150):
            await store.atomic_evaluate("k", NOW + i, 1000, 60_000)

        assert store.stored_count("k") == 100
        outcome = await store.atomic_evaluate("k", NOW + 200, 1000, 60_000)
        assert outcome.count == 100
        # Oldest entries were truncated first
        assert outcome.oldest_ms == NOW + 51

    @pytest.mark.asyncio
    async def test_key_expires_after_inactivity(self):
        store = InMemoryStore()
        await store.atomic_evaluate("k", NOW, 1, 1000, 500)

        outcome = await store.atomic_evaluate("k", NOW + 1500, 1, 1000, 500)
        assert outcome.admitted is True
        assert outcome.count == 1

    @pytest.mark.asyncio
    async def test_concurrent_callers_never_exceed_limit(self):
        store = InMemoryStore()
        outcomes = await asyncio.gather(
            *(store.atomic_evaluate("k", NOW, 10, 1000) for _ in range(50))
        )
        assert sum(o.admitted for o in outcomes) == 10
        assert store.stored_count("k") == 10

    @pytest.mark.asyncio
    async def test_max_keys_evicts_expired_first(self):
        store = InMemoryStore(max_keys=2)
        await store.atomic_evaluate("old", NOW, 1, 100)
        await store.atomic_evaluate("live", NOW + 150, 1, 10_000)

        await store.atomic_evaluate("new", NOW + 200, 1, 100)
        assert store.stored_count("old") == 0
        assert store.stored_count("live") == 1
        assert store.stored_count("new") == 1


class TestMaintenance:
    """Test trim, delete and scan."""

    @pytest.mark.asyncio
    async def test_trim_removes_old_entries(self):
        store = InMemoryStore()
        for offset in (0, 100, 200):
            await store.atomic_evaluate("k", NOW + offset, 10, 10_000)

        removed = await store.trim_expired("k", NOW + 150)
        assert removed == 2
        assert store.stored_count("k") == 1

    @pytest.mark.asyncio
    async def test_trim_drops_empty_key(self):
        store = InMemoryStore()
        await store.atomic_evaluate("k", NOW, 10, 1000)

        assert await store.trim_expired("k", NOW + 1) == 1
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_trim_keeps_active_block(self):
        store = InMemoryStore()
        await store.atomic_evaluate("k", NOW, 1, 1000, 60_000)
        await store.atomic_evaluate("k", NOW + 1, 1, 1000, 60_000)

        await store.trim_expired("k", NOW + 2000)
        assert len(store) == 1
        outcome = await store.atomic_evaluate("k", NOW + 2000, 1, 1000, 60_000)
        assert outcome.admitted is False

    @pytest.mark.asyncio
    async def test_trim_unknown_key(self):
        assert await InMemoryStore().trim_expired("missing", NOW) == 0

    @pytest.mark.asyncio
    async def test_delete_key(self):
        store = InMemoryStore()
        await store.atomic_evaluate("k", NOW, 1, 1000, 5000)
        await store.atomic_evaluate("k", NOW, 1, 1000, 5000)

        await store.delete_key("k")
        outcome = await store.atomic_evaluate("k", NOW + 1, 1, 1000, 5000)
        assert outcome.admitted is True

    @pytest.mark.asyncio
    async def test_scan_keys_matches_pattern(self):
        store = InMemoryStore()
        for key in ("throttle:{a:1}", "throttle:{b:2}", "other:{c:3}"):
            await store.atomic_evaluate(key, NOW, 1, 1000)

        keys = [k async for k in store.scan_keys("throttle:*", batch_size=1)]
        assert sorted(keys) == ["throttle:{a:1}", "throttle:{b:2}"]

    @pytest.mark.asyncio
    async def test_close_clears_state(self):
        store = InMemoryStore()
        await store.atomic_evaluate("k", NOW, 1, 1000)
        await store.close()
        assert len(store) == 0


def run_in_threads(worker, workers: int = 16) -> list:
    """Run ``worker(index)`` on a thread pool, each call on its own event loop."""
    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = [pool.submit(asyncio.run, worker(i)) for i in range(workers)]
        results = []
        for future in futures:
            results.extend(future.result())
    return results


class TestThreadSafety:
    """Test evaluations racing from many threads on one key."""

    @pytest.fixture(autouse=True)
    def fast_switching(self):
        original = sys.getswitchinterval()
        sys.setswitchinterval(1e-6)
        yield
        sys.setswitchinterval(original)

    def test_thread_pool_admits_exactly_limit(self):
        store = InMemoryStore()
        limit = 50

        async def worker(index):
            return [
                await store.atomic_evaluate("shared", NOW, limit, 60_000)
                for _ in range(200)
            ]

        outcomes = run_in_threads(worker)

        assert len(outcomes) == 16 * 200
        assert sum(o.admitted for o in outcomes) == limit
        assert all(o.count <= limit for o in outcomes)
        assert store.stored_count("shared") == limit

    def test_delete_and_trim_race_with_evaluations(self):
        store = InMemoryStore()
        limit = 20

        async def worker(index):
            outcomes = []
            for i in range(200):
                now = NOW + i
                if index % 4 == 0 and i % 10 == 0:
                    await store.delete_key("shared")
                elif index % 4 == 1 and i % 10 == 0:
                    await store.trim_expired("shared", now - 50)
                else:
                    outcomes.append(
                        await store.atomic_evaluate("shared", now, limit, 100, 30)
                    )
            return outcomes

        outcomes = run_in_threads(worker)

        assert outcomes
        assert all(o.count <= limit for o in outcomes)
        assert store.stored_count("shared") <= limit
        assert not any(state.deleted for state in store._states.values())
