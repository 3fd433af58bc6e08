"""Store adapters for the sliding window throttler.

Two backends implement :class:`StoreAdapter`: the distributed
:class:`RedisStore` and the process-local :class:`InMemoryStore`. The
backend is chosen once, at construction time, from settings.
"""

from windowguard.core.config import StoreBackend, ThrottlerSettings
from windowguard.storage.base import StoreAdapter, StoreOutcome
from windowguard.storage.memory import InMemoryStore
from windowguard.storage.redis_store import RedisStore

__all__ = [
    "StoreAdapter",
    "StoreOutcome",
    "InMemoryStore",
    "RedisStore",
    "create_store",
]


def create_store(settings: ThrottlerSettings) -> StoreAdapter:
    """Build the store adapter selected by ``settings.store_backend``."""
    if settings.store_backend is StoreBackend.MEMORY:
        return InMemoryStore(max_window_size=settings.max_window_size)
    return RedisStore(
        settings.redis,
        max_window_size=settings.max_window_size,
        use_functions=settings.enable_redis_functions,
    )
