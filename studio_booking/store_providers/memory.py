"""In-process booking authority.

Holds the table in memory and serializes writers with an ``asyncio.Lock``,
the way a spreadsheet web app serializes them with its script lock. Every
add is re-checked with ``check_admission`` against the table as it is at
that moment, so clients with stale caches get a ``ConflictError``.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import string
import time
from typing import Iterable, Optional

from studio_booking.errors import ConflictError, NotFoundError, OverlapError
from studio_booking.models.booking import Booking, NewBooking
from studio_booking.overlap import check_admission
from studio_booking.timegrid import OperatingWindow

from .base import BookingStore

logger = logging.getLogger(__name__)

_ID_ALPHABET = string.ascii_lowercase + string.digits


def new_booking_id() -> str:
    """``<epoch-ms>-<9 random chars>``, unique for all practical purposes."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"{int(time.time() * 1000)}-{suffix}"


class InMemoryBookingStore(BookingStore):
    """BookingStore holding its rows in process memory."""

    def __init__(
        self,
        bookings: Optional[Iterable[Booking]] = None,
        window: Optional[OperatingWindow] = None,
    ) -> None:
        self._rows: list[Booking] = list(bookings or [])
        self._window = window or OperatingWindow()
        self._lock = asyncio.Lock()

    @property
    def rows(self) -> list[Booking]:
        return list(self._rows)

    async def list_all(self) -> list[Booking]:
        return list(self._rows)

    async def create(self, new: NewBooking) -> Booking:
        async with self._lock:
            try:
                check_admission(self._rows, new, self._window)
            except OverlapError as exc:
                logger.info("Rejected %s %s %s-%s: overlap", new.studio, new.date,
                            new.start_time, new.end_time)
                raise ConflictError(
                    "This time slot overlaps with an existing booking in the sheet."
                ) from exc

            booking = new.with_id(new_booking_id())
            self._rows.append(booking)
            logger.info("Stored booking %s", booking.id)
            return booking

    async def delete_by_id(self, booking_id: str) -> None:
        async with self._lock:
            for index in range(len(self._rows) - 1, -1, -1):
                if self._rows[index].id == booking_id:
                    del self._rows[index]
                    logger.info("Removed booking %s", booking_id)
                    return
        raise NotFoundError("Booking ID not found.")
