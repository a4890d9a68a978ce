"""
Clock abstractions for deterministic behavior.

Notes
-----
Engine code does not read wall-clock time directly. Callers provide a Clock so
that profile timestamps and change detection times are reproducible in tests.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Protocol


class Clock(Protocol):
    """A source of time for deterministic behavior."""

    def now(self) -> datetime:
        """
        Return the current time.

        Returns
        -------
        datetime
            A timezone-aware datetime.
        """
        ...


@dataclass(frozen=True, slots=True)
class SystemClock:
    """Clock that returns the current system time in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class FixedClock:
    """Clock that always returns a fixed time (useful for tests)."""

    fixed_time: datetime

    def now(self) -> datetime:
        if self.fixed_time.tzinfo is None:
            return self.fixed_time.replace(tzinfo=timezone.utc)
        return self.fixed_time


@dataclass(slots=True)
class SteppingClock:
    """
    Clock that advances by a fixed step on every call.

    Parameters
    ----------
    start:
        First value returned.
    step:
        Amount added after each call.

    Notes
    -----
    Useful in tests that need strictly increasing timestamps without sleeping.
    """

    start: datetime
    step: timedelta = timedelta(seconds=1)
    _current: datetime | None = field(default=None, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def now(self) -> datetime:
        with self._lock:
            if self._current is None:
                base = self.start
                if base.tzinfo is None:
                    base = base.replace(tzinfo=timezone.utc)
                self._current = base
            value = self._current
            self._current = value + self.step
            return value


def to_utc_text(value: datetime) -> str:
    """
    Render a datetime as ISO 8601 UTC text with a 'Z' suffix.

    Parameters
    ----------
    value:
        Datetime to render. Naive values are assumed to be UTC.

    Returns
    -------
    str
        ISO 8601 text, for example '2026-01-01T01:02:03Z'.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def from_utc_text(text: str) -> datetime:
    """Parse text produced by `to_utc_text`."""
    parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
