"""Time grid for the studio operating window.

All wall-clock values are ``HH:MM`` strings (24-hour) on a timezone-less
civil day. Arithmetic happens in minutes since midnight.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta


def to_minutes(value: str) -> int:
    """Convert ``HH:MM`` to minutes since midnight.

    Raises:
        ValueError: if ``value`` is not a valid ``HH:MM`` wall-clock time.
    """
    hours, sep, minutes = value.partition(":")
    if not sep or not hours.isdigit() or not minutes.isdigit() or len(hours) > 2 or len(minutes) != 2:
        raise ValueError(f"Invalid time {value!r}, expected HH:MM")
    h, m = int(hours), int(minutes)
    # 24:00 is allowed so a window may close at midnight
    if h > 24 or m > 59 or (h == 24 and m != 0):
        raise ValueError(f"Invalid time {value!r}, expected HH:MM")
    return h * 60 + m


def format_minutes(minutes: int) -> str:
    """Convert minutes since midnight back to ``HH:MM``."""
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def format_12h(value: str) -> str:
    """Render ``HH:MM`` as ``h:MM AM/PM`` for user-facing messages."""
    minutes = to_minutes(value)
    hour, minute = divmod(minutes, 60)
    suffix = "AM" if hour % 24 < 12 else "PM"
    return f"{(hour % 12) or 12}:{minute:02d} {suffix}"


@dataclass(frozen=True)
class OperatingWindow:
    """Bookable hours of a studio day.

    ``end_hour`` is the last bookable instant: bookings may end at
    ``end_hour:00`` but no slot starts there.
    """

    start_hour: int = 8
    end_hour: int = 23
    slot_minutes: int = 30

    @classmethod
    def from_settings(cls, settings) -> "OperatingWindow":
        return cls(
            start_hour=settings.operating_start_hour,
            end_hour=settings.operating_end_hour,
            slot_minutes=settings.slot_minutes,
        )

    @property
    def open_minutes(self) -> int:
        return self.start_hour * 60

    @property
    def close_minutes(self) -> int:
        return self.end_hour * 60

    def slots(self) -> list[str]:
        """Ordered slot starts from ``start_hour:00`` up to, not including, ``end_hour:00``."""
        return [
            format_minutes(m)
            for m in range(self.open_minutes, self.close_minutes, self.slot_minutes)
        ]

    def is_aligned(self, minutes: int) -> bool:
        return (minutes - self.open_minutes) % self.slot_minutes == 0

    def contains(self, minutes: int) -> bool:
        return self.open_minutes <= minutes <= self.close_minutes


def generate_time_slots(start_hour: int, end_hour: int, slot_minutes: int = 30) -> list[str]:
    """Shorthand for ``OperatingWindow(start_hour, end_hour, slot_minutes).slots()``."""
    return OperatingWindow(start_hour, end_hour, slot_minutes).slots()


def booking_dates(today: date, days: int = 7) -> list[str]:
    """``YYYY-MM-DD`` strings for ``today`` and the following ``days - 1`` days."""
    return [(today + timedelta(days=offset)).isoformat() for offset in range(days)]
