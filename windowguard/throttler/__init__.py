"""Sliding window throttler.

This package provides:
- Decision model (Decision)
- Atomic window evaluation (WindowEvaluator)
- Store outage handling (FailureStrategyHandler)
- Background eviction (EvictionScheduler, EvictionStats)
- The facade wiring them together (SlidingWindowThrottler)
"""

from windowguard.throttler.evaluator import WindowEvaluator
from windowguard.throttler.failure import FailureStrategyHandler
from windowguard.throttler.models import Decision
from windowguard.throttler.scheduler import EvictionScheduler, EvictionStats
from windowguard.throttler.service import SlidingWindowThrottler

__all__ = [
    "Decision",
    "WindowEvaluator",
    "FailureStrategyHandler",
    "EvictionScheduler",
    "EvictionStats",
    "SlidingWindowThrottler",
]
