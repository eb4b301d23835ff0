"""Normalization of raw store rows into ``Booking`` objects.

Spreadsheet-backed stores hand back loosely typed rows: dates may arrive
as full timestamps, times as ``9:00`` or ``1899-12-30T09:00:00.000Z``, and
the header row may be renamed or reordered. Rows that cannot be brought
into the canonical shape are dropped.
"""

from __future__ import annotations

import logging
import re
from datetime import date, datetime
from typing import Any, Optional
from zoneinfo import ZoneInfo

from studio_booking.models.booking import Booking, RecordingPurpose
from studio_booking.timegrid import format_minutes, to_minutes

logger = logging.getLogger(__name__)

WIRE_FIELDS = ("id", "studio", "date", "startTime", "endTime", "userName", "purpose", "subject")

_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})(?::\d{2}(?:\.\d+)?)?$")


def _header_key(name: str) -> str:
    return re.sub(r"[\s_\-]", "", str(name)).lower()


_LOOKUP = {_header_key(f): f for f in WIRE_FIELDS}


def _canonical_keys(raw: dict[str, Any]) -> dict[str, Any]:
    """Map loosely named columns (``Start Time``, ``start_time``) onto wire names."""
    out: dict[str, Any] = {}
    for key, value in raw.items():
        field = _LOOKUP.get(_header_key(key))
        if field and field not in out:
            out[field] = value
    return out


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _parse_timestamp(value: str) -> Optional[datetime]:
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def normalize_date(value: Any, tz: Optional[ZoneInfo] = None) -> Optional[str]:
    """Canonical ``YYYY-MM-DD`` for a date or timestamp value, or None.

    Timezone-aware timestamps are converted to ``tz`` first, since sheet
    backends serialize midnight of a local date as a UTC instant.
    """
    if isinstance(value, datetime):
        stamp = value
    elif isinstance(value, date):
        return value.isoformat()
    else:
        text = _as_text(value)
        if not text:
            return None
        if len(text) == 10:
            try:
                return date.fromisoformat(text).isoformat()
            except ValueError:
                return None
        stamp = _parse_timestamp(text)
        if stamp is None:
            return None

    if stamp.tzinfo is not None and tz is not None:
        stamp = stamp.astimezone(tz)
    return stamp.date().isoformat()


def normalize_time(value: Any, tz: Optional[ZoneInfo] = None) -> Optional[str]:
    """Canonical ``HH:MM`` for a time or timestamp value, or None."""
    text = _as_text(value)
    if not text:
        return None

    match = _TIME_RE.match(text)
    if match:
        candidate = f"{int(match.group(1)):02d}:{match.group(2)}"
    else:
        stamp = _parse_timestamp(text)
        if stamp is None:
            return None
        if stamp.tzinfo is not None and tz is not None:
            stamp = stamp.astimezone(tz)
        candidate = f"{stamp.hour:02d}:{stamp.minute:02d}"

    try:
        return format_minutes(to_minutes(candidate))
    except ValueError:
        return None


def normalize_record(raw: Any, tz: Optional[ZoneInfo] = None) -> Optional[Booking]:
    """Build a ``Booking`` from one raw store row, or None if the row is unusable."""
    if not isinstance(raw, dict):
        return None
    row = _canonical_keys(raw)

    booking_id = _as_text(row.get("id"))
    studio = _as_text(row.get("studio"))
    day = normalize_date(row.get("date"), tz)
    start = normalize_time(row.get("startTime"), tz)
    end = normalize_time(row.get("endTime"), tz)
    if not (booking_id and studio and day and start and end):
        return None
    if to_minutes(end) <= to_minutes(start):
        return None

    purpose_text = _as_text(row.get("purpose")) or RecordingPurpose.YOUTUBE.value
    try:
        purpose = RecordingPurpose(purpose_text)
    except ValueError:
        return None

    return Booking(
        id=booking_id,
        studio=studio,
        date=day,
        start_time=start,
        end_time=end,
        user_name=_as_text(row.get("userName")),
        purpose=purpose,
        subject=_as_text(row.get("subject")),
    )


def normalize_records(rows: Any, tz: Optional[ZoneInfo] = None) -> list[Booking]:
    """Normalize a list of raw rows, dropping (and logging) unusable ones.

    Duplicate ids keep their first occurrence.
    """
    if not isinstance(rows, list):
        logger.warning("Store returned %s instead of a row list", type(rows).__name__)
        return []

    bookings: list[Booking] = []
    seen: set[str] = set()
    dropped = 0
    for raw in rows:
        booking = normalize_record(raw, tz)
        if booking is None or booking.id in seen:
            dropped += 1
            continue
        seen.add(booking.id)
        bookings.append(booking)

    if dropped:
        logger.warning("Dropped %d malformed booking row(s) out of %d", dropped, len(rows))
    return bookings

