"""Store key generation for the sliding window throttler.

Keys are cluster-safe: the throttler name and caller key are wrapped in a
Redis hash tag so the window set and the block marker derived from the
same base key always land in the same slot, which server-side scripts
require.
"""

import secrets

from windowguard.exceptions import InvalidKeyError, KeyTooLong

FORBIDDEN_CHARS = ("\r", "\n", "\t", "\0")

# Suffixes appended by store adapters to a base key
WINDOW_SUFFIX = "z"
BLOCK_SUFFIX = "block"


class KeyGenerator:
    """Build namespaced store keys and window entry members.

    Example:
        >>> keys = KeyGenerator(prefix="throttle", max_key_length=512)
        >>> keys.build("default", "tenant-1:10.0.0.1:/login")
        'throttle:{default:tenant-1:10.0.0.1:/login}'
    """

    def __init__(
        self,
        prefix: str = "throttle",
        max_key_length: int = 512,
        store_overhead: int = 0,
    ) -> None:
        self.prefix = prefix.strip() or "throttle"
        self.max_key_length = max_key_length
        self.store_overhead = store_overhead

    def build(self, throttler_name: str, key: str) -> str:
        """Return the base store key for ``key`` under ``throttler_name``.

        Raises:
            InvalidKeyError: If the key is empty or contains control characters
            KeyTooLong: If the final store key, including what the store
                appends to it, exceeds ``max_key_length``
        """
        validate_key(key)
        store_key = f"{self.prefix}:{{{throttler_name}:{key}}}"
        length = len(store_key) + self.store_overhead
        if length > self.max_key_length:
            raise KeyTooLong(length, self.max_key_length)
        return store_key

    def pattern(self) -> str:
        """Glob pattern matching every base key under this prefix."""
        return f"{self.prefix}:*"


def validate_key(key: str) -> None:
    """Reject empty keys and keys carrying control characters."""
    if not isinstance(key, str) or not key:
        raise InvalidKeyError("Rate limit key must be a non-empty string")
    for char in FORBIDDEN_CHARS:
        if char in key:
            raise InvalidKeyError("Rate limit key contains control characters")


def generate_member(timestamp_ms: int) -> str:
    """Unique sorted-set member for an entry admitted at ``timestamp_ms``.

    The random suffix keeps same-millisecond admissions from different
    callers distinct.
    """
    return f"{timestamp_ms}:{secrets.token_hex(6)}"


def mask_key(key: str) -> str:
    """Mask the middle of a key for logging."""
    if not key or not isinstance(key, str):
        return "[INVALID_KEY]"
    if len(key) <= 8:
        return "*" * len(key)
    return key[:4] + "*" * (len(key) - 8) + key[-4:]
