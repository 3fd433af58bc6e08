"""Failure strategies applied when the store is unavailable."""

import time
from typing import Optional

from windowguard.core.config import FailureStrategy, WindowPolicy
from windowguard.core.keys import mask_key
from windowguard.core.logging import ThrottlerLogger
from windowguard.core.utils import Clock, elapsed_ms
from windowguard.exceptions import StoreUnavailable
from windowguard.storage.memory import InMemoryStore
from windowguard.throttler.evaluator import WindowEvaluator
from windowguard.throttler.models import (
    SOURCE_FAIL_CLOSED,
    SOURCE_FAIL_OPEN,
    SOURCE_LOCAL_FALLBACK,
    Decision,
)


class FailureStrategyHandler:
    """Wrap the evaluator so ``StoreUnavailable`` never reaches the caller.

    Strategies:
    - ``fail-open``: admit the request with full remaining capacity
    - ``fail-closed``: refuse the request with no remaining capacity
    - ``local-fallback``: evaluate against a process-local in-memory store,
      an approximation that is not shared across instances

    Every fallback emits a warning event carrying the decision and the
    store error.
    """

    def __init__(
        self,
        evaluator: WindowEvaluator,
        strategy: FailureStrategy = FailureStrategy.FAIL_OPEN,
        *,
        fallback: Optional[WindowEvaluator] = None,
        logger: Optional[ThrottlerLogger] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.evaluator = evaluator
        self.strategy = FailureStrategy(strategy)
        self._logger = logger or ThrottlerLogger()
        self._clock = clock or evaluator.clock

        if self.strategy is FailureStrategy.LOCAL_FALLBACK and fallback is None:
            fallback = WindowEvaluator(
                InMemoryStore(),
                clock=self._clock,
                logger=self._logger,
                source=SOURCE_LOCAL_FALLBACK,
            )
        self.fallback = fallback

    async def evaluate(
        self,
        key: str,
        policy: WindowPolicy,
        throttler_name: Optional[str] = None,
    ) -> Decision:
        start = time.perf_counter()
        try:
            return await self.evaluator.evaluate(key, policy, throttler_name)
        except StoreUnavailable as exc:
            error = exc

        decision = await self._degrade(key, policy, throttler_name)
        self._logger.warning(
            "Rate limit store unavailable, applied failure strategy",
            {
                "operation": "evaluate",
                "throttler": throttler_name,
                "key": mask_key(key),
                "strategy": self.strategy.value,
                "allowed": decision.allowed,
                "source": decision.source,
                "limit": decision.limit,
                "current": decision.current_count,
                "remaining": decision.remaining,
                "duration_ms": elapsed_ms(start),
                "error": str(error),
            },
        )
        return decision

    async def _degrade(
        self, key: str, policy: WindowPolicy, throttler_name: Optional[str]
    ) -> Decision:
        if self.strategy is FailureStrategy.LOCAL_FALLBACK:
            try:
                return await self.fallback.evaluate(key, policy, throttler_name)
            except StoreUnavailable as exc:
                self._logger.error(
                    "Local fallback store failed, refusing request",
                    {"operation": "evaluate", "key": mask_key(key)},
                    exc=exc,
                )
                return self.fail_closed(policy)

        if self.strategy is FailureStrategy.FAIL_CLOSED:
            return self.fail_closed(policy)
        return self.fail_open(policy)

    def fail_open(self, policy: WindowPolicy) -> Decision:
        now = self._clock()
        return Decision(
            allowed=True,
            limit=policy.limit_count,
            current_count=0,
            remaining=policy.limit_count,
            reset_at_ms=now + policy.window_duration_ms,
            evaluated_at_ms=now,
            source=SOURCE_FAIL_OPEN,
        )

    def fail_closed(self, policy: WindowPolicy) -> Decision:
        now = self._clock()
        return Decision(
            allowed=False,
            limit=policy.limit_count,
            current_count=policy.limit_count,
            remaining=0,
            reset_at_ms=now + policy.window_duration_ms,
            evaluated_at_ms=now,
            source=SOURCE_FAIL_CLOSED,
        )
