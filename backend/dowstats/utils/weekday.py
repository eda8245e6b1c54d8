from __future__ import annotations

from datetime import datetime, timezone
from enum import IntEnum


class Weekday(IntEnum):
    """Day of week, Monday first; the integer value is what gets persisted."""

    MONDAY = 0
    TUESDAY = 1
    WEDNESDAY = 2
    THURSDAY = 3
    FRIDAY = 4
    SATURDAY = 5
    SUNDAY = 6

    @classmethod
    def parse(cls, raw: "int | str | Weekday") -> "Weekday":
        """Accept 0-6, "monday", "Mon" and friends."""
        if isinstance(raw, cls):
            return raw
        if isinstance(raw, int):
            return cls(raw)
        text = str(raw).strip()
        if text.isdigit():
            return cls(int(text))
        key = text.upper()
        for day in cls:
            if day.name == key or day.name[:3] == key:
                return day
        raise ValueError(f"unknown weekday: {raw!r}")


def ensure_utc(ts: datetime) -> datetime:
    """Naive datetimes are taken to be UTC already."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def weekday_of(ts: datetime) -> Weekday:
    return Weekday(ensure_utc(ts).weekday())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
