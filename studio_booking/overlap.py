"""Interval arithmetic for studio bookings.

Every function here is pure: the same booking list always yields the same
answer. Bookings are half-open ``[start, end)`` minute ranges, so two
bookings that share an endpoint do not overlap.

``intervals_overlap`` is the one overlap test. The client pre-check, the
in-process authority and the reference store server all go through
``check_admission``.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Iterable, Optional

from studio_booking.errors import BookingValidationError, OverlapError
from studio_booking.models.booking import Booking, NewBooking
from studio_booking.timegrid import OperatingWindow, format_minutes, to_minutes


def intervals_overlap(a_start: int, a_end: int, b_start: int, b_end: int) -> bool:
    """Half-open overlap test. Touching endpoints are allowed."""
    return a_start < b_end and a_end > b_start


def bookings_for(bookings: Iterable[Booking], studio: str, day: str) -> list[Booking]:
    """Bookings of one studio on one day, sorted by start time."""
    selected = [b for b in bookings if b.studio == studio and b.date == day]
    selected.sort(key=lambda b: to_minutes(b.start_time))
    return selected


def occupied_minutes(bookings: Iterable[Booking]) -> set[int]:
    """Union of ``[start, end)`` minute ranges over ``bookings``."""
    minutes: set[int] = set()
    for booking in bookings:
        minutes.update(range(to_minutes(booking.start_time), to_minutes(booking.end_time)))
    return minutes


def available_start_times(bookings: Iterable[Booking], window: OperatingWindow) -> list[str]:
    """Grid slots of ``window`` not covered by any of ``bookings``."""
    occupied = occupied_minutes(bookings)
    return [slot for slot in window.slots() if to_minutes(slot) not in occupied]


def available_end_times(
    bookings: Iterable[Booking], start_time: str, window: OperatingWindow
) -> list[str]:
    """Legal end times for a booking starting at ``start_time``.

    The run grows one slot at a time from ``start_time`` and stops at the
    next booking's start or at closing time, whichever comes first. Empty
    if ``start_time`` is malformed, off-grid, outside the window or occupied.
    """
    try:
        start = to_minutes(start_time)
    except ValueError:
        return []
    if not window.is_aligned(start) or not window.open_minutes <= start < window.close_minutes:
        return []

    day = list(bookings)
    if start in occupied_minutes(day):
        return []

    limit = window.close_minutes
    for booking in day:
        booking_start = to_minutes(booking.start_time)
        if start < booking_start < limit:
            limit = booking_start

    return [
        format_minutes(m)
        for m in range(start + window.slot_minutes, limit + 1, window.slot_minutes)
    ]


def _parse_canonical_date(value: str) -> date:
    try:
        parsed = date.fromisoformat(value)
    except (TypeError, ValueError):
        raise BookingValidationError(f"Invalid date {value!r}, expected YYYY-MM-DD.") from None
    if parsed.isoformat() != value:
        raise BookingValidationError(f"Invalid date {value!r}, expected YYYY-MM-DD.")
    return parsed


def validate_new_booking(
    new: NewBooking,
    window: OperatingWindow,
    *,
    studios: Optional[Iterable[str]] = None,
    max_booking_minutes: Optional[int] = None,
    min_lead_minutes: Optional[int] = None,
    now: Optional[datetime] = None,
) -> None:
    """Reject malformed booking requests before any I/O.

    Raises:
        BookingValidationError: on the first problem found.
    """
    if not new.user_name.strip():
        raise BookingValidationError("Your name is required.")
    if not new.subject.strip():
        raise BookingValidationError("Subject is required.")
    if not new.studio.strip():
        raise BookingValidationError("Studio is required.")
    if studios is not None and new.studio not in set(studios):
        raise BookingValidationError(f"Unknown studio {new.studio!r}.")

    day = _parse_canonical_date(new.date)

    try:
        start = to_minutes(new.start_time)
        end = to_minutes(new.end_time)
    except ValueError as exc:
        raise BookingValidationError(str(exc)) from None

    if end <= start:
        raise BookingValidationError(
            f"End time {new.end_time} must be after start time {new.start_time}."
        )
    if not (window.contains(start) and window.contains(end)) or start == window.close_minutes:
        raise BookingValidationError(
            f"{new.start_time}-{new.end_time} is outside operating hours "
            f"{format_minutes(window.open_minutes)}-{format_minutes(window.close_minutes)}."
        )
    if not (window.is_aligned(start) and window.is_aligned(end)):
        raise BookingValidationError(
            f"Times must fall on {window.slot_minutes}-minute boundaries."
        )

    if max_booking_minutes is not None and end - start > max_booking_minutes:
        raise BookingValidationError(
            f"Bookings are limited to {max_booking_minutes} minutes."
        )
    if min_lead_minutes is not None and now is not None:
        starts_at = datetime.combine(day, datetime.min.time()) + timedelta(minutes=start)
        if starts_at - now.replace(tzinfo=None) < timedelta(minutes=min_lead_minutes):
            raise BookingValidationError(
                f"Bookings must be made at least {min_lead_minutes} minutes in advance."
            )


def find_conflict(bookings: Iterable[Booking], new: NewBooking) -> Optional[Booking]:
    """First booking on the same studio/day whose interval overlaps ``new``."""
    new_start = to_minutes(new.start_time)
    new_end = to_minutes(new.end_time)
    for booking in bookings:
        if booking.studio != new.studio or booking.date != new.date:
            continue
        if intervals_overlap(
            new_start, new_end, to_minutes(booking.start_time), to_minutes(booking.end_time)
        ):
            return booking
    return None


def check_admission(
    bookings: Iterable[Booking],
    new: NewBooking,
    window: OperatingWindow,
    **validation,
) -> None:
    """Validate ``new`` and make sure it does not overlap ``bookings``.

    Extra keyword arguments are passed to ``validate_new_booking``.

    Raises:
        BookingValidationError: if ``new`` is malformed.
        OverlapError: if ``new`` overlaps an existing booking.
    """
    validate_new_booking(new, window, **validation)
    conflict = find_conflict(bookings, new)
    if conflict is not None:
        raise OverlapError(
            f"This time slot overlaps with an existing booking "
            f"({conflict.start_time}-{conflict.end_time} by {conflict.user_name}).",
            conflicting=conflict,
        )
