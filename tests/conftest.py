"""Shared fixtures for throttler tests."""

import logging

import pytest

from windowguard.core.config import ThrottlerSettings, WindowPolicy
from windowguard.core.logging import ThrottlerLogger


class ManualClock:
    """Millisecond clock advanced explicitly by tests."""

    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms

    def set(self, ms: int) -> None:
        self.now = ms


class RecordingHandler(logging.Handler):
    """Handler collecting records for assertions."""

    def __init__(self):
        super().__init__(level=logging.DEBUG)
        self.records: list[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)

    def messages(self, level: int | None = None) -> list[str]:
        return [
            r.getMessage() for r in self.records if level is None or r.levelno == level
        ]


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def log_records():
    """ThrottlerLogger writing to an isolated logger, plus its captured records."""
    logger = logging.getLogger("windowguard.tests.capture")
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    handler = RecordingHandler()
    logger.addHandler(handler)
    yield ThrottlerLogger(logger), handler
    logger.removeHandler(handler)


@pytest.fixture
def policy():
    return WindowPolicy(limit_count=5, window_duration_ms=60_000)


@pytest.fixture
def memory_settings():
    return ThrottlerSettings(
        _env_file=None,
        store_backend="memory",
        policies={
            "default": {"limit_count": 5, "window_duration_ms": 60_000},
            "strict": {
                "limit_count": 2,
                "window_duration_ms": 1_000,
                "block_duration_ms": 5_000,
            },
        },
    )


@pytest.fixture
def make_clock():
    """Factory for independent manual clocks."""
    return ManualClock
