"""Distributed sliding window rate limiting backed by Redis.

This package provides:
- Settings and named window policies (ThrottlerSettings, WindowPolicy)
- The throttler facade (SlidingWindowThrottler) and its Decision result
- Store adapters for Redis and in-process use (RedisStore, InMemoryStore)
- Failure strategies for store outages (FailureStrategy)
"""

from windowguard.core.config import (
    FailureStrategy,
    PolicyRegistry,
    RedisConnectionSettings,
    StoreBackend,
    ThrottlerSettings,
    WindowPolicy,
)
from windowguard.core.logging import ThrottlerLogger, setup_logging
from windowguard.exceptions import (
    ConfigurationError,
    InvalidKeyError,
    KeyTooLong,
    StoreUnavailable,
    ThrottlerError,
    UnknownThrottlerError,
)
from windowguard.storage import InMemoryStore, RedisStore, StoreAdapter
from windowguard.throttler import Decision, SlidingWindowThrottler

__all__ = [
    # Configuration
    "FailureStrategy",
    "PolicyRegistry",
    "RedisConnectionSettings",
    "StoreBackend",
    "ThrottlerSettings",
    "WindowPolicy",
    # Logging
    "ThrottlerLogger",
    "setup_logging",
    # Errors
    "ConfigurationError",
    "InvalidKeyError",
    "KeyTooLong",
    "StoreUnavailable",
    "ThrottlerError",
    "UnknownThrottlerError",
    # Stores
    "InMemoryStore",
    "RedisStore",
    "StoreAdapter",
    # Throttler
    "Decision",
    "SlidingWindowThrottler",
]
