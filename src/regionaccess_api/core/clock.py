"""Business-time sources used for grant expiry math."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Protocol


def as_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime.

    SQLite hands back naive datetimes for ``DateTime(timezone=True)`` columns;
    every stored timestamp is written in UTC so a naive value is read as UTC.
    """

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Clock(Protocol):
    """Wall-clock provider. Expiry is always computed against it server-side."""

    def now(self) -> datetime:
        ...


class SystemClock:
    """Clock backed by the host's UTC wall clock."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class ManualClock:
    """Clock that only moves when told to. Used by tests and replay tooling."""

    def __init__(self, start: datetime | None = None) -> None:
        self._now = as_utc(start) if start is not None else datetime.now(timezone.utc)

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float = 0.0, **delta: float) -> datetime:
        self._now = self._now + timedelta(seconds=seconds, **delta)
        return self._now

    def set(self, value: datetime) -> datetime:
        self._now = as_utc(value)
        return self._now


_SYSTEM_CLOCK = SystemClock()


def get_system_clock() -> SystemClock:
    return _SYSTEM_CLOCK


__all__ = ["Clock", "ManualClock", "SystemClock", "as_utc", "get_system_clock"]
