"""Background eviction of stale window entries.

Native key expiry only fires after a key has been idle for a full
``window + block``. Keys that keep receiving traffic are trimmed on every
evaluation, but keys that stop halfway still hold stale entries. The
scheduler periodically scans the namespace and trims everything older
than the longest configured window.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Optional

from windowguard.core.keys import mask_key
from windowguard.core.logging import ThrottlerLogger
from windowguard.core.utils import Clock, WallClock, elapsed_ms
from windowguard.storage.base import StoreAdapter


@dataclass
class EvictionStats:
    """Counters for one eviction pass."""
    keys_scanned: int = 0
    entries_removed: int = 0
    errors: int = 0


class EvictionScheduler:
    """Periodic trim task bound to one store.

    Args:
        store: Store adapter to trim
        horizon_ms: Entries older than ``now - horizon_ms`` are removed
        pattern: Glob pattern selecting the keys to trim
        interval_ms: Delay between passes
        batch_size: Keys fetched and trimmed per batch
        batch_operations: Trim a batch concurrently instead of key by key
        clock: Millisecond clock
        logger: Logging capability
    """

    STOP_TIMEOUT_SECONDS = 5.0

    def __init__(
        self,
        store: StoreAdapter,
        *,
        horizon_ms: int,
        pattern: str = "*",
        interval_ms: int = 60_000,
        batch_size: int = 100,
        batch_operations: bool = True,
        clock: Optional[Clock] = None,
        logger: Optional[ThrottlerLogger] = None,
    ) -> None:
        self._store = store
        self._horizon_ms = horizon_ms
        self._pattern = pattern
        self._interval = interval_ms / 1000
        self._batch_size = batch_size
        self._batch_operations = batch_operations
        self._clock = clock or WallClock()
        self._logger = logger or ThrottlerLogger()
        self._task: Optional[asyncio.Task] = None
        self._shutdown_event = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the periodic eviction task."""
        if self._task is not None:
            return
        self._shutdown_event.clear()
        self._task = asyncio.create_task(self._run_loop())
        self._logger.info(
            "Started eviction scheduler",
            {"operation": "evict", "source": self._store.name},
        )

    async def stop(self) -> None:
        """Stop the eviction task, cancelling it if it does not finish in time."""
        if self._task is None:
            return
        self._shutdown_event.set()
        try:
            await asyncio.wait_for(self._task, timeout=self.STOP_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        self._logger.info(
            "Stopped eviction scheduler",
            {"operation": "evict", "source": self._store.name},
        )

    async def _run_loop(self) -> None:
        while not self._shutdown_event.is_set():
            try:
                await asyncio.wait_for(
                    self._shutdown_event.wait(),
                    timeout=self._interval,
                )
            except asyncio.TimeoutError:
                pass

            if self._shutdown_event.is_set():
                break

            try:
                await self.run_once()
            except Exception as e:
                self._logger.error(
                    "Eviction pass failed",
                    {"operation": "evict", "source": self._store.name},
                    exc=e,
                )

    async def run_once(self) -> EvictionStats:
        """Run a single eviction pass over every matching key."""
        start = time.perf_counter()
        before_ms = self._clock() - self._horizon_ms
        stats = EvictionStats()

        batch: list[str] = []
        async for key in self._store.scan_keys(self._pattern, self._batch_size):
            batch.append(key)
            if len(batch) >= self._batch_size:
                await self._trim_batch(batch, before_ms, stats)
                batch = []
        if batch:
            await self._trim_batch(batch, before_ms, stats)

        self._logger.debug(
            "Eviction pass completed",
            {
                "operation": "evict",
                "source": self._store.name,
                "keys_scanned": stats.keys_scanned,
                "entries_removed": stats.entries_removed,
                "errors": stats.errors,
                "duration_ms": elapsed_ms(start),
            },
        )
        return stats

    async def _trim_batch(
        self, keys: list[str], before_ms: int, stats: EvictionStats
    ) -> None:
        stats.keys_scanned += len(keys)

        if self._batch_operations:
            results = await asyncio.gather(
                *(self._store.trim_expired(key, before_ms) for key in keys),
                return_exceptions=True,
            )
        else:
            results = []
            for key in keys:
                try:
                    results.append(await self._store.trim_expired(key, before_ms))
                except Exception as e:
                    results.append(e)

        for key, result in zip(keys, results):
            if isinstance(result, BaseException):
                stats.errors += 1
                self._logger.warning(
                    "Failed to trim key",
                    {"operation": "evict", "key": mask_key(key), "error": repr(result)},
                )
            else:
                stats.entries_removed += result
