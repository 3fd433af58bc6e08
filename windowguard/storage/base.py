"""Store adapter interface for the sliding window throttler."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterator, Optional


@dataclass(frozen=True)
class StoreOutcome:
    """Result of one atomic evaluate-and-record round trip.

    Attributes:
        admitted: Whether a new entry was recorded for this request
        count: Entries inside the window after the operation
        blocked_until_ms: Block expiry if the key is (or just became) blocked
        oldest_ms: Timestamp of the oldest entry still inside the window
    """
    admitted: bool
    count: int
    blocked_until_ms: Optional[int] = None
    oldest_ms: Optional[int] = None


class StoreAdapter(ABC):
    """Abstract base class for rate limit stores.

    Implementations are the only components that perform I/O. They must
    raise :class:`~windowguard.exceptions.StoreUnavailable` for every
    backend failure and never leak backend-specific exceptions.
    """

    name: str = "store"

    @property
    def key_overhead(self) -> int:
        """Characters the store adds to a base key (prefixes, suffixes)."""
        return 0

    async def initialize(self) -> None:
        """Prepare the backend (load scripts, open connections)."""

    @abstractmethod
    async def atomic_evaluate(
        self,
        key: str,
        now_ms: int,
        limit_count: int,
        window_duration_ms: int,
        block_duration_ms: int = 0,
    ) -> StoreOutcome:
        """Trim, count, conditionally record and block in one step.

        Args:
            key: Base store key
            now_ms: Evaluation timestamp in milliseconds
            limit_count: Maximum entries admitted per window
            window_duration_ms: Window length in milliseconds
            block_duration_ms: Block length applied on refusal (0 disables)

        Returns:
            StoreOutcome describing the admission and window state
        """

    @abstractmethod
    async def trim_expired(self, key: str, before_ms: int) -> int:
        """Remove entries older than ``before_ms``.

        Drops the key entirely once it holds no entries.

        Returns:
            Number of entries removed
        """

    @abstractmethod
    async def delete_key(self, key: str) -> None:
        """Remove all window and block data for ``key``."""

    @abstractmethod
    def scan_keys(self, pattern: str, batch_size: int = 100) -> AsyncIterator[str]:
        """Iterate base keys matching a glob ``pattern``."""

    async def close(self) -> None:
        """Release backend resources."""
