"""Injected time source.

Every service that reads "now" takes a Clock instead of calling
datetime.now() itself.  Time-eligibility checks, quiz expiry and drip
schedules then become deterministic under test: hand the service a
FixedClock and move it forward with advance().

All timestamps in the engine are integer epoch seconds (UTC).
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Protocol


class Clock(Protocol):
    def now(self) -> int: ...


class SystemClock:
    """Wall-clock time, truncated to whole seconds."""

    def now(self) -> int:
        return int(datetime.now(UTC).timestamp())


class FixedClock:
    """Manually driven clock for tests and replays."""

    def __init__(self, start: int = 1_767_225_600) -> None:
        self._now = start

    def now(self) -> int:
        return self._now

    def set(self, timestamp: int) -> None:
        self._now = timestamp

    def advance(self, seconds: int) -> int:
        self._now += seconds
        return self._now
