"""Sliding window evaluation.

The evaluator turns one atomic store round trip into a :class:`Decision`.
It holds no window state of its own, so a single instance can be shared by
any number of concurrent callers.
"""

import asyncio
import time
from typing import Optional

from windowguard.core.config import WindowPolicy
from windowguard.core.keys import mask_key
from windowguard.core.logging import ThrottlerLogger
from windowguard.core.utils import Clock, WallClock, elapsed_ms
from windowguard.exceptions import StoreUnavailable
from windowguard.storage.base import StoreAdapter, StoreOutcome
from windowguard.throttler.models import SOURCE_STORE, Decision


class WindowEvaluator:
    """Atomic check-and-record against a store adapter.

    Args:
        store: Store adapter performing the atomic operation
        clock: Millisecond clock, defaults to a non-decreasing wall clock
        timeout_ms: Upper bound on one store round trip
        logger: Logging capability for evaluation events
        debug: Emit a debug event for every evaluation
        source: Value stamped into ``Decision.source``
    """

    def __init__(
        self,
        store: StoreAdapter,
        *,
        clock: Optional[Clock] = None,
        timeout_ms: int = 1000,
        logger: Optional[ThrottlerLogger] = None,
        debug: bool = False,
        source: str = SOURCE_STORE,
    ) -> None:
        self.store = store
        self.clock = clock or WallClock()
        self._timeout = timeout_ms / 1000
        self._timeout_ms = timeout_ms
        self._logger = logger or ThrottlerLogger()
        self._debug = debug
        self._source = source

    async def evaluate(
        self,
        key: str,
        policy: WindowPolicy,
        throttler_name: Optional[str] = None,
    ) -> Decision:
        """Admit or refuse one request for the store key ``key`` under ``policy``.

        ``key`` is a base store key as built by :class:`KeyGenerator`.

        Raises:
            StoreUnavailable: If the store fails or exceeds the timeout
        """
        now = self.clock()
        start = time.perf_counter()
        try:
            outcome = await asyncio.wait_for(
                self.store.atomic_evaluate(
                    key,
                    now,
                    policy.limit_count,
                    policy.window_duration_ms,
                    policy.block_duration_ms or 0,
                ),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as e:
            raise StoreUnavailable(
                f"Store did not answer within {self._timeout_ms}ms", cause=e
            ) from e

        decision = self.build_decision(outcome, policy, now)
        self._log_decision(key, decision, throttler_name, elapsed_ms(start))
        return decision

    def build_decision(
        self, outcome: StoreOutcome, policy: WindowPolicy, now_ms: int
    ) -> Decision:
        """Derive the caller-facing decision from a store outcome."""
        limit = policy.limit_count
        blocked_until = outcome.blocked_until_ms
        if blocked_until is not None and blocked_until <= now_ms:
            blocked_until = None

        if blocked_until is not None:
            reset_at = blocked_until
        elif outcome.oldest_ms is not None:
            reset_at = outcome.oldest_ms + policy.window_duration_ms
        else:
            reset_at = now_ms + policy.window_duration_ms

        return Decision(
            allowed=outcome.admitted,
            limit=limit,
            current_count=outcome.count,
            remaining=max(0, limit - outcome.count),
            reset_at_ms=reset_at,
            evaluated_at_ms=now_ms,
            blocked_until_ms=blocked_until,
            source=self._source,
        )

    def _log_decision(
        self,
        key: str,
        decision: Decision,
        throttler_name: Optional[str],
        duration_ms: float,
    ) -> None:
        context = {
            "operation": "evaluate",
            "throttler": throttler_name,
            "key": mask_key(key),
            "limit": decision.limit,
            "current": decision.current_count,
            "remaining": decision.remaining,
            "allowed": decision.allowed,
            "source": decision.source,
            "duration_ms": duration_ms,
        }
        if not decision.allowed:
            context["blocked_until_ms"] = decision.blocked_until_ms
            self._logger.info("Rate limit exceeded", context)
        elif self._debug:
            self._logger.debug("Request admitted", context)
