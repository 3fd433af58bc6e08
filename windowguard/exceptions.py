"""Custom exceptions for the sliding window throttler."""


class ThrottlerError(Exception):
    """Base class for throttler exceptions.

    All custom exceptions inherit from this class so callers can catch
    every throttler failure with a single ``except`` clause.
    """

    def __init__(self, message: str = "Throttler error"):
        self.message = message
        super().__init__(message)


class ConfigurationError(ThrottlerError):
    """Raised when policy or connection parameters are invalid.

    Only raised while building settings or components at startup, never
    on the request path.
    """

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class StoreUnavailable(ThrottlerError):
    """Raised when the store cannot complete an operation.

    Covers connection failures, timeouts and protocol errors. The
    backend-specific exception is attached as ``cause`` and chained as
    ``__cause__``.
    """

    def __init__(
        self,
        message: str = "Rate limit store unavailable",
        cause: BaseException | None = None,
    ):
        self.cause = cause
        super().__init__(message)


class InvalidKeyError(ThrottlerError, ValueError):
    """Raised when a caller-supplied rate limit key is unusable."""

    def __init__(self, message: str = "Invalid rate limit key"):
        super().__init__(message)


class KeyTooLong(InvalidKeyError):
    """Raised when the generated store key exceeds ``max_key_length``."""

    def __init__(self, length: int, max_length: int):
        self.length = length
        self.max_length = max_length
        super().__init__(
            f"Rate limit key too long ({length} > {max_length} characters)"
        )


class UnknownThrottlerError(ThrottlerError, KeyError):
    """Raised when no policy is registered under the requested name."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"No throttler policy registered as '{name}'")

    def __str__(self) -> str:
        return self.message
