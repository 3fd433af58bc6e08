"""Core utilities for the throttler."""

from windowguard.core.config import (
    FailureStrategy,
    PolicyRegistry,
    RedisConnectionSettings,
    StoreBackend,
    ThrottlerSettings,
    WindowPolicy,
    config_summary,
    config_warnings,
)
from windowguard.core.keys import KeyGenerator, mask_key, validate_key
from windowguard.core.logging import ThrottlerLogger, get_logger, setup_logging
from windowguard.core.utils import WallClock, now_ms

__all__ = [
    "FailureStrategy",
    "PolicyRegistry",
    "RedisConnectionSettings",
    "StoreBackend",
    "ThrottlerSettings",
    "WindowPolicy",
    "config_summary",
    "config_warnings",
    "KeyGenerator",
    "mask_key",
    "validate_key",
    "ThrottlerLogger",
    "get_logger",
    "setup_logging",
    "WallClock",
    "now_ms",
]
