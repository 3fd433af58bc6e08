"""In-memory store adapter.

Single-process implementation of the store protocol, used in tests and as
the local approximation behind the ``local-fallback`` failure strategy.

Each key owns its own ``threading.Lock``; the critical sections contain
no ``await``, so one evaluation is atomic with respect to other coroutines
and threads on the same key while unrelated keys never contend.
"""

import asyncio
import threading
from bisect import bisect_left, insort
from dataclasses import dataclass, field
from fnmatch import fnmatchcase
from typing import AsyncIterator, Optional

from windowguard.core.keys import generate_member
from windowguard.storage.base import StoreAdapter, StoreOutcome


@dataclass
class _KeyState:
    """Window entries and block marker for one key."""
    lock: threading.Lock = field(default_factory=threading.Lock)
    entries: list[tuple[int, str]] = field(default_factory=list)
    blocked_until_ms: Optional[int] = None
    expires_at_ms: Optional[int] = None
    deleted: bool = False

    def is_expired(self, now_ms: int) -> bool:
        return self.expires_at_ms is not None and now_ms > self.expires_at_ms


class InMemoryStore(StoreAdapter):
    """Process-local sliding window store.

    Memory optimization:
    - Entries beyond ``max_window_size`` are truncated oldest-first
    - Keys expire after ``window + block`` of inactivity, like Redis keys
    - At most ``max_keys`` keys are tracked; expired keys are evicted first,
      then the oldest 20%
    """

    name = "memory"
    DEFAULT_MAX_KEYS = 10000

    def __init__(
        self,
        max_window_size: int = 1000,
        max_keys: int = DEFAULT_MAX_KEYS,
    ) -> None:
        self._max_window_size = max_window_size
        self._max_keys = max_keys
        self._states: dict[str, _KeyState] = {}

    def __len__(self) -> int:
        return len(self._states)

    def stored_count(self, key: str) -> int:
        """Number of entries currently held for ``key``, stale ones included."""
        state = self._states.get(key)
        if state is None:
            return 0
        with state.lock:
            return 0 if state.deleted else len(state.entries)

    def _acquire(self, key: str, now_ms: int) -> _KeyState:
        """Return the live state for ``key`` with its lock held."""
        while True:
            state = self._states.get(key)
            if state is None:
                if len(self._states) >= self._max_keys:
                    self._evict(now_ms)
                state = self._states.setdefault(key, _KeyState())
            state.lock.acquire()
            if not state.deleted:
                return state
            state.lock.release()

    def _discard(self, key: str, state: _KeyState) -> None:
        """Drop ``state``; caller must hold its lock."""
        state.deleted = True
        if self._states.get(key) is state:
            self._states.pop(key, None)

    def _evict(self, now_ms: int) -> None:
        """Make room for a new key; busy keys are skipped."""
        snapshot = list(self._states.items())
        expired = [(k, s) for k, s in snapshot if s.is_expired(now_ms)]
        victims = expired or snapshot[: max(1, int(self._max_keys * 0.2))]
        for key, state in victims:
            if state.lock.acquire(blocking=False):
                try:
                    self._discard(key, state)
                finally:
                    state.lock.release()

    async def atomic_evaluate(
        self,
        key: str,
        now_ms: int,
        limit_count: int,
        window_duration_ms: int,
        block_duration_ms: int = 0,
    ) -> StoreOutcome:
        state = self._acquire(key, now_ms)
        try:
            return self._evaluate_locked(
                key, state, now_ms, limit_count, window_duration_ms, block_duration_ms
            )
        finally:
            state.lock.release()

    def _evaluate_locked(
        self,
        key: str,
        state: _KeyState,
        now_ms: int,
        limit_count: int,
        window_duration_ms: int,
        block_duration_ms: int,
    ) -> StoreOutcome:
        if state.is_expired(now_ms):
            state.entries.clear()
            state.blocked_until_ms = None
            state.expires_at_ms = None

        entries = state.entries
        window_start = now_ms - window_duration_ms
        first_in_window = bisect_left(entries, (window_start, ""))

        if state.blocked_until_ms is not None and state.blocked_until_ms > now_ms:
            in_window = entries[first_in_window:]
            return StoreOutcome(
                admitted=False,
                count=len(in_window),
                blocked_until_ms=state.blocked_until_ms,
                oldest_ms=in_window[0][0] if in_window else None,
            )
        state.blocked_until_ms = None

        del entries[:first_in_window]
        count = len(entries)

        admitted = False
        blocked_until = None
        if count < limit_count:
            insort(entries, (now_ms, generate_member(now_ms)))
            count += 1
            admitted = True
        elif block_duration_ms > 0:
            blocked_until = now_ms + block_duration_ms
            state.blocked_until_ms = blocked_until

        if count > self._max_window_size:
            del entries[: count - self._max_window_size]
            count = self._max_window_size

        if not entries and state.blocked_until_ms is None:
            self._discard(key, state)
        else:
            state.expires_at_ms = max(
                now_ms + window_duration_ms + block_duration_ms,
                state.blocked_until_ms or 0,
            )

        return StoreOutcome(
            admitted=admitted,
            count=count,
            blocked_until_ms=blocked_until,
            oldest_ms=entries[0][0] if entries else None,
        )

    async def trim_expired(self, key: str, before_ms: int) -> int:
        state = self._states.get(key)
        if state is None:
            return 0
        with state.lock:
            if state.deleted:
                return 0
            cut = bisect_left(state.entries, (before_ms, ""))
            del state.entries[:cut]
            block_over = (
                state.blocked_until_ms is None or state.blocked_until_ms <= before_ms
            )
            if not state.entries and block_over:
                self._discard(key, state)
            return cut

    async def delete_key(self, key: str) -> None:
        state = self._states.get(key)
        if state is None:
            return
        with state.lock:
            self._discard(key, state)

    async def scan_keys(self, pattern: str, batch_size: int = 100) -> AsyncIterator[str]:
        """Iterate a snapshot of keys, yielding control between batches."""
        for index, key in enumerate(list(self._states)):
            if index and index % batch_size == 0:
                await asyncio.sleep(0)
            if fnmatchcase(key, pattern):
                yield key

    async def close(self) -> None:
        self._states.clear()
