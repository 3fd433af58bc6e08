"""Admission decision returned by the throttler."""

from dataclasses import asdict, dataclass
from typing import Any, Optional

# Where a decision was computed
SOURCE_STORE = "store"
SOURCE_FAIL_OPEN = "fail-open"
SOURCE_FAIL_CLOSED = "fail-closed"
SOURCE_LOCAL_FALLBACK = "local-fallback"


@dataclass(frozen=True)
class Decision:
    """Result of evaluating one request against a window policy.

    Attributes:
        allowed: Whether the request is admitted
        limit: The policy's limit_count
        current_count: Entries inside the window at evaluation time
        remaining: ``max(0, limit - current_count)``
        reset_at_ms: When capacity frees up (block expiry while blocked)
        evaluated_at_ms: Clock reading used for the evaluation
        blocked_until_ms: Block expiry when the key is blocked
        source: 'store', 'fail-open', 'fail-closed' or 'local-fallback'
    """
    allowed: bool
    limit: int
    current_count: int
    remaining: int
    reset_at_ms: int
    evaluated_at_ms: int
    blocked_until_ms: Optional[int] = None
    source: str = SOURCE_STORE

    @property
    def is_blocked(self) -> bool:
        return (
            self.blocked_until_ms is not None
            and self.blocked_until_ms > self.evaluated_at_ms
        )

    @property
    def degraded(self) -> bool:
        """True when the decision was not computed by the shared store."""
        return self.source != SOURCE_STORE

    @property
    def retry_after_ms(self) -> int:
        """Suggested wait before retrying a denied request (0 when allowed)."""
        if self.allowed:
            return 0
        return max(0, self.reset_at_ms - self.evaluated_at_ms)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        data = asdict(self)
        data["retry_after_ms"] = self.retry_after_ms
        return data
