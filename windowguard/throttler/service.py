"""Throttler facade.

:class:`SlidingWindowThrottler` wires the store, evaluator, failure
strategy and eviction scheduler from one immutable settings object and
exposes the public ``evaluate(throttler_name, key)`` call.

Example:
    >>> settings = ThrottlerSettings(
    ...     policies={"login": {"limit_count": 5, "window_duration_ms": 60000}},
    ... )
    >>> async with SlidingWindowThrottler(settings) as throttler:
    ...     decision = await throttler.evaluate("login", "10.0.0.1")
    ...     if not decision.allowed:
    ...         ...
"""

from typing import Optional

from windowguard.core.config import (
    FailureStrategy,
    PolicyRegistry,
    ThrottlerSettings,
    config_summary,
    config_warnings,
)
from windowguard.core.keys import KeyGenerator, mask_key
from windowguard.core.logging import ThrottlerLogger
from windowguard.core.utils import Clock, WallClock
from windowguard.exceptions import StoreUnavailable
from windowguard.storage import InMemoryStore, StoreAdapter, create_store
from windowguard.throttler.evaluator import WindowEvaluator
from windowguard.throttler.failure import FailureStrategyHandler
from windowguard.throttler.models import SOURCE_LOCAL_FALLBACK, Decision
from windowguard.throttler.scheduler import EvictionScheduler, EvictionStats


class SlidingWindowThrottler:
    """Distributed sliding window rate limiter.

    Args:
        settings: Validated throttler settings
        store: Optional store adapter, built from settings when omitted
        logger: Logging capability, defaults to the ``windowguard.throttler`` logger
        clock: Millisecond clock, defaults to a non-decreasing wall clock
    """

    def __init__(
        self,
        settings: ThrottlerSettings,
        store: Optional[StoreAdapter] = None,
        *,
        logger: Optional[ThrottlerLogger] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.settings = settings
        self.registry = PolicyRegistry(settings.policies)
        self._logger = logger or ThrottlerLogger()
        self._clock = clock or WallClock()
        self._owns_store = store is None
        self.store = store if store is not None else create_store(settings)
        self.keys = KeyGenerator(
            settings.key_prefix,
            settings.max_key_length,
            store_overhead=self.store.key_overhead,
        )

        self._evaluator = WindowEvaluator(
            self.store,
            clock=self._clock,
            timeout_ms=settings.evaluation_timeout_ms,
            logger=self._logger,
            debug=settings.enable_debug_logging,
        )

        self.fallback_store: Optional[InMemoryStore] = None
        fallback = None
        if settings.failure_strategy is FailureStrategy.LOCAL_FALLBACK:
            self.fallback_store = InMemoryStore(max_window_size=settings.max_window_size)
            fallback = WindowEvaluator(
                self.fallback_store,
                clock=self._clock,
                timeout_ms=settings.evaluation_timeout_ms,
                logger=self._logger,
                debug=settings.enable_debug_logging,
                source=SOURCE_LOCAL_FALLBACK,
            )

        self._handler = FailureStrategyHandler(
            self._evaluator,
            settings.failure_strategy,
            fallback=fallback,
            logger=self._logger,
            clock=self._clock,
        )

        self._schedulers = [
            self._build_scheduler(s)
            for s in (self.store, self.fallback_store)
            if s is not None
        ]
        self._started = False

    def _build_scheduler(self, store: StoreAdapter) -> EvictionScheduler:
        return EvictionScheduler(
            store,
            horizon_ms=self.registry.horizon_ms,
            pattern=self.keys.pattern(),
            interval_ms=self.settings.cleanup_interval_ms,
            batch_size=self.settings.batch_size,
            batch_operations=self.settings.enable_batch_operations,
            clock=self._clock,
            logger=self._logger,
        )

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> None:
        """Prepare the store and start background eviction."""
        if self._started:
            return
        for warning in config_warnings(self.settings):
            self._logger.warning(warning, {"operation": "start"})
        self._logger.info(config_summary(self.settings), {"operation": "start"})

        await self.store.initialize()
        for scheduler in self._schedulers:
            await scheduler.start()
        self._started = True

    async def evaluate(self, throttler_name: str, key: str) -> Decision:
        """Decide whether one request for ``key`` is admitted.

        Raises:
            UnknownThrottlerError: If no policy is registered under ``throttler_name``
            InvalidKeyError: If the key is unusable (``KeyTooLong`` included)
        """
        policy = self.registry.get(throttler_name)
        store_key = self.keys.build(throttler_name, key)
        return await self._handler.evaluate(store_key, policy, throttler_name)

    async def reset(self, key: str, throttler_name: Optional[str] = None) -> None:
        """Forget all window and block state for ``key``.

        Resets a single throttler when ``throttler_name`` is given, every
        registered throttler otherwise. Store failures are logged and do
        not propagate.
        """
        if throttler_name is not None:
            self.registry.get(throttler_name)
            names: tuple[str, ...] = (throttler_name,)
        else:
            names = self.registry.names()
        stores = [s for s in (self.store, self.fallback_store) if s is not None]
        for name in names:
            store_key = self.keys.build(name, key)
            for store in stores:
                try:
                    await store.delete_key(store_key)
                except StoreUnavailable as e:
                    self._logger.warning(
                        "Failed to reset rate limit key",
                        {
                            "operation": "reset",
                            "throttler": name,
                            "key": mask_key(store_key),
                            "source": store.name,
                            "error": str(e),
                        },
                    )

    async def run_eviction(self) -> EvictionStats:
        """Run one eviction pass against the shared store immediately."""
        return await self._schedulers[0].run_once()

    async def close(self) -> None:
        """Stop background eviction and release store resources."""
        for scheduler in self._schedulers:
            await scheduler.stop()
        if self.fallback_store is not None:
            await self.fallback_store.close()
        if self._owns_store:
            await self.store.close()
        self._started = False

    async def __aenter__(self) -> "SlidingWindowThrottler":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
