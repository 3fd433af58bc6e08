"""Configuration for the sliding window throttler.

Settings are built once at startup from keyword arguments, environment
variables (``THROTTLER_*``, nested with ``__``) or a ``.env`` file, and
then passed explicitly to every component. Nothing below the facade reads
the environment.

Every validation failure surfaces as :class:`ConfigurationError`.
"""

import re
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterator, Mapping, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict, SettingsError

from windowguard.exceptions import ConfigurationError, UnknownThrottlerError

MIN_WINDOW_SIZE = 100
MAX_WINDOW_SIZE = 10000
LARGE_WINDOW_SIZE_WARNING = 5000

_KEY_PREFIX_PATTERN = re.compile(r"^[A-Za-z0-9_.:\-]+$")
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
_LOG_FORMATS = ("text", "structured", "json")
_LOCAL_HOSTS = ("localhost", "127.0.0.1", "::1")


def _as_configuration_error(exc: ValidationError) -> ConfigurationError:
    """Translate the first pydantic error into a ConfigurationError."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ())) or None
    message = first.get("msg", str(exc))
    if field:
        return ConfigurationError(f"Invalid value for '{field}': {message}", field=field)
    return ConfigurationError(f"Invalid configuration: {message}")


class FailureStrategy(str, Enum):
    """What to do with a request when the store is unavailable."""

    FAIL_OPEN = "fail-open"
    FAIL_CLOSED = "fail-closed"
    LOCAL_FALLBACK = "local-fallback"


class StoreBackend(str, Enum):
    """Store adapter selected at construction time."""

    REDIS = "redis"
    MEMORY = "memory"


class WindowPolicy(BaseModel):
    """Sliding window policy attached to a named throttler.

    Attributes:
        limit_count: Maximum admitted requests per window (0 denies everything)
        window_duration_ms: Length of the sliding window in milliseconds
        block_duration_ms: Optional block applied once the limit is exceeded
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    limit_count: int = Field(ge=0)
    window_duration_ms: int = Field(gt=0)
    block_duration_ms: Optional[int] = Field(default=None, ge=0)

    def __init__(self, **data: Any) -> None:
        try:
            super().__init__(**data)
        except ValidationError as exc:
            raise _as_configuration_error(exc) from exc

    @property
    def blocks(self) -> bool:
        """Whether exceeding the limit puts the key into a block."""
        return bool(self.block_duration_ms)


class RedisConnectionSettings(BaseModel):
    """Connection parameters consumed by the Redis store adapter."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    host: str = "localhost"
    port: int = Field(default=6379, ge=1, le=65535)
    password: Optional[str] = None
    tls: bool = False
    db: int = Field(default=0, ge=0, le=15)
    key_prefix: str = ""
    socket_timeout_ms: int = Field(default=1000, gt=0)

    @field_validator("host")
    @classmethod
    def validate_host(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Redis host must not be empty")
        return v

    @property
    def display_url(self) -> str:
        """Connection URL without credentials, safe for logs."""
        scheme = "rediss" if self.tls else "redis"
        return f"{scheme}://{self.host}:{self.port}/{self.db}"


class ThrottlerSettings(BaseSettings):
    """Immutable throttler configuration.

    All settings can be configured via keyword arguments, ``THROTTLER_*``
    environment variables or a ``.env`` file. Policies are given as JSON
    when loaded from the environment, e.g.
    ``THROTTLER_POLICIES='{"default": {"limit_count": 60, "window_duration_ms": 60000}}'``.
    """

    # Named window policies
    policies: dict[str, WindowPolicy] = Field(
        default_factory=lambda: {
            "default": WindowPolicy(limit_count=60, window_duration_ms=60_000)
        }
    )

    # Behaviour when the store is unreachable
    failure_strategy: FailureStrategy = FailureStrategy.FAIL_OPEN

    # Hard bound on stored entries per key, oldest entries are truncated
    max_window_size: int = Field(default=1000, ge=MIN_WINDOW_SIZE, le=MAX_WINDOW_SIZE)

    # Store key namespacing
    key_prefix: str = "throttle"
    max_key_length: int = Field(default=512, ge=32, le=8192)

    # Eviction scheduler
    cleanup_interval_ms: int = Field(default=60_000, ge=100, le=86_400_000)
    enable_batch_operations: bool = True
    batch_size: int = Field(default=100, ge=1, le=10_000)

    # Store access
    store_backend: StoreBackend = StoreBackend.REDIS
    evaluation_timeout_ms: int = Field(default=1000, ge=1, le=60_000)
    enable_redis_functions: bool = False
    redis: RedisConnectionSettings = Field(default_factory=RedisConnectionSettings)

    # Logging settings
    enable_debug_logging: bool = False
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    model_config = SettingsConfigDict(
        env_prefix="THROTTLER_",
        env_nested_delimiter="__",
        env_file=".env",
        extra="ignore",
        frozen=True,
    )

    def __init__(self, **values: Any) -> None:
        try:
            super().__init__(**values)
        except ValidationError as exc:
            raise _as_configuration_error(exc) from exc
        except SettingsError as exc:
            raise ConfigurationError(f"Could not parse settings: {exc}") from exc

    @field_validator("policies")
    @classmethod
    def validate_policies(cls, v: dict[str, WindowPolicy]) -> dict[str, WindowPolicy]:
        """Require at least one named policy."""
        if not v:
            raise ValueError("at least one throttler policy is required")
        for name in v:
            if not name or not name.strip():
                raise ValueError("throttler names must not be empty")
        return v

    @field_validator("key_prefix")
    @classmethod
    def validate_key_prefix(cls, v: str) -> str:
        if not _KEY_PREFIX_PATTERN.match(v):
            raise ValueError(
                "key_prefix may only contain letters, digits and '_', '.', ':', '-'"
            )
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(_LOG_LEVELS)}")
        return level

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        fmt = v.strip().lower()
        if fmt not in _LOG_FORMATS:
            raise ValueError(f"log_format must be one of {', '.join(_LOG_FORMATS)}")
        return fmt

    @model_validator(mode="after")
    def validate_limits_fit_window_size(self) -> "ThrottlerSettings":
        """A policy must never need more entries than the store keeps."""
        for name, policy in self.policies.items():
            if policy.limit_count > self.max_window_size:
                raise ValueError(
                    f"policy '{name}' limit_count ({policy.limit_count}) exceeds "
                    f"max_window_size ({self.max_window_size})"
                )
        return self


class PolicyRegistry:
    """Read-only mapping from throttler name to its window policy."""

    def __init__(self, policies: Mapping[str, WindowPolicy]) -> None:
        if not policies:
            raise ConfigurationError("at least one throttler policy is required", field="policies")
        self._policies = MappingProxyType(dict(policies))

    def get(self, name: str) -> WindowPolicy:
        try:
            return self._policies[name]
        except KeyError:
            raise UnknownThrottlerError(name) from None

    def names(self) -> tuple[str, ...]:
        return tuple(self._policies)

    @property
    def horizon_ms(self) -> int:
        return max(p.window_duration_ms for p in self._policies.values())

    def __contains__(self, name: object) -> bool:
        return name in self._policies

    def __iter__(self) -> Iterator[str]:
        return iter(self._policies)

    def __len__(self) -> int:
        return len(self._policies)


def config_warnings(settings: ThrottlerSettings) -> list[str]:
    """Return non-fatal warnings about a validated configuration."""
    warnings: list[str] = []

    if (
        settings.store_backend is StoreBackend.REDIS
        and not settings.redis.password
        and settings.redis.host not in _LOCAL_HOSTS
    ):
        warnings.append("Redis password not set for remote connection")

    if settings.failure_strategy is FailureStrategy.FAIL_OPEN:
        warnings.append(
            "Using fail-open strategy, requests are allowed while the store is unavailable"
        )

    if settings.max_window_size > LARGE_WINDOW_SIZE_WARNING:
        warnings.append("Large max_window_size may increase store memory usage")

    return warnings


def config_summary(settings: ThrottlerSettings) -> str:
    """Human-readable configuration summary for startup logs."""
    policies = ", ".join(
        f"{name}={p.limit_count}/{p.window_duration_ms}ms"
        + (f" block {p.block_duration_ms}ms" if p.blocks else "")
        for name, p in settings.policies.items()
    )
    lines = [
        "=== Throttler Configuration ===",
        f"Store: {settings.store_backend.value}",
    ]
    if settings.store_backend is StoreBackend.REDIS:
        lines.append(f"Redis: {settings.redis.display_url}")
    lines.extend([
        f"Key Prefix: {settings.key_prefix}",
        f"Policies: {policies}",
        f"Failure Strategy: {settings.failure_strategy.value}",
        f"Max Window Size: {settings.max_window_size}",
        f"Cleanup Interval: {settings.cleanup_interval_ms}ms",
        f"Debug Logging: {'enabled' if settings.enable_debug_logging else 'disabled'}",
        "==============================",
    ])
    return "\n".join(lines)
