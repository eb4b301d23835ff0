"""Per-client booking session — what the user is looking at and doing.

Each connected client gets a BookingSession that:
  1. Owns a BookingCache (and through it the store client and polling)
  2. Tracks the selected date and studio, and which dialog is open
  3. Turns mutation outcomes into short-lived success/error notifications
  4. Serializes itself for the HTTP API
"""

from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any, Optional

from pydantic import ValidationError

from studio_booking.cache import BookingCache
from studio_booking.config import settings
from studio_booking.errors import BookingError, BookingValidationError
from studio_booking.models.booking import Booking, NewBooking, RecordingPurpose
from studio_booking.models.studio import DEFAULT_STUDIOS, Studio
from studio_booking.timegrid import booking_dates, format_12h

log = logging.getLogger("studio_booking.session")


class Dialog(str, Enum):
    NONE = "none"
    BOOKING = "booking"
    CONFIRM_CANCEL = "confirm_cancel"
    SETTINGS = "settings"


@dataclass
class Notification:
    message: str
    kind: str  # "success" | "error"
    expires_at: float


@dataclass
class Outcome:
    """Result of a user-triggered mutation."""

    ok: bool
    message: str
    booking: Optional[Booking] = None
    error: Optional[BookingError] = None


# ── Session registry ─────────────────────────────────────────────

_active_sessions: dict[str, "BookingSession"] = {}


def register_session(session: "BookingSession") -> str:
    """Register a session and return its unique ID."""
    session_id = secrets.token_urlsafe(18)
    session._session_id = session_id
    session._started_at = time.time()
    _active_sessions[session_id] = session
    log.info("Session registered: %s", session_id)
    return session_id


def unregister_session(session_id: str) -> None:
    """Remove a session from the registry."""
    _active_sessions.pop(session_id, None)
    log.info("Session unregistered: %s", session_id)


def get_active_sessions() -> dict[str, "BookingSession"]:
    return _active_sessions


def get_session(session_id: str) -> "BookingSession | None":
    return _active_sessions.get(session_id)


class BookingSession:
    """One client's view onto the shared booking table.

    Typical lifecycle::

        session = BookingSession(BookingCache(SheetBookingStore()))
        await session.start()

        session.select_date("2024-01-10")
        session.open_booking("studio-1")
        outcome = await session.submit_booking(
            user_name="Jane", subject="Algebra", start_time="10:00",
            end_time="11:00", purpose="YouTube",
        )

        await session.close()
    """

    def __init__(
        self,
        cache: BookingCache,
        studios: list[Studio] | None = None,
        *,
        window_days: int | None = None,
        notification_seconds: float | None = None,
        today: date | None = None,
    ) -> None:
        self._cache = cache
        self._studios = studios or DEFAULT_STUDIOS
        self._window_days = window_days or settings.booking_window_days
        self._notification_seconds = (
            notification_seconds if notification_seconds is not None
            else settings.notification_seconds
        )
        self._today = today

        # Registry metadata (set by register_session)
        self._session_id: str = ""
        self._started_at: float = 0.0

        self._selected_date: str = self.available_dates[0]
        self._selected_studio: str | None = None
        self._dialog = Dialog.NONE
        self._pending_cancel: Booking | None = None
        self._notification: Notification | None = None

    # ── Properties ────────────────────────────────────────────

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def cache(self) -> BookingCache:
        return self._cache

    @property
    def studios(self) -> list[Studio]:
        return list(self._studios)

    @property
    def available_dates(self) -> list[str]:
        today = self._today or self._cache.now().date()
        return booking_dates(today, self._window_days)

    @property
    def selected_date(self) -> str:
        return self._selected_date

    @property
    def selected_studio(self) -> str | None:
        return self._selected_studio

    @property
    def dialog(self) -> Dialog:
        return self._dialog

    @property
    def pending_cancel(self) -> Booking | None:
        return self._pending_cancel

    @property
    def notification(self) -> Notification | None:
        if self._notification and time.monotonic() >= self._notification.expires_at:
            self._notification = None
        return self._notification

    def _studio(self, studio_id: str) -> Studio:
        for studio in self._studios:
            if studio.id == studio_id:
                return studio
        raise BookingValidationError(f"Unknown studio {studio_id!r}.")

    def _notify(self, message: str, kind: str) -> None:
        self._notification = Notification(
            message=message,
            kind=kind,
            expires_at=time.monotonic() + self._notification_seconds,
        )
        log.info("Session %s notify (%s): %s", self._session_id, kind, message)

    def dismiss_notification(self) -> None:
        self._notification = None

    # ── Lifecycle ─────────────────────────────────────────────

    async def start(self) -> None:
        """Load bookings and start polling. Prompts for settings if unconfigured."""
        if not self._cache.store.is_configured:
            self._dialog = Dialog.SETTINGS
        await self._cache.start()

    async def close(self) -> None:
        await self._cache.close()

    async def refresh(self) -> bool:
        return await self._cache.refresh()

    async def configure_store(self, url: str) -> bool:
        """Point the store at ``url`` and reload in the foreground.

        Raises:
            BookingValidationError: the store has no configurable endpoint.
        """
        self._cache.store.configure(url)
        if self._dialog is Dialog.SETTINGS:
            self._dialog = Dialog.NONE
        return await self._cache.refresh()

    def open_settings(self) -> None:
        self._dialog = Dialog.SETTINGS

    # ── Date navigation ───────────────────────────────────────

    def select_date(self, day: str) -> None:
        if day not in self.available_dates:
            raise BookingValidationError(
                f"{day} is outside the booking window "
                f"({self.available_dates[0]} to {self.available_dates[-1]})."
            )
        self._selected_date = day

    @property
    def can_go_back(self) -> bool:
        return self._selected_date != self.available_dates[0]

    @property
    def can_go_forward(self) -> bool:
        return self._selected_date != self.available_dates[-1]

    def next_day(self) -> str:
        dates = self.available_dates
        if self._selected_date in dates:
            index = min(dates.index(self._selected_date) + 1, len(dates) - 1)
        else:
            index = 0
        self._selected_date = dates[index]
        return self._selected_date

    def previous_day(self) -> str:
        dates = self.available_dates
        if self._selected_date in dates:
            index = max(dates.index(self._selected_date) - 1, 0)
        else:
            index = 0
        self._selected_date = dates[index]
        return self._selected_date

    # ── Schedule / availability ───────────────────────────────

    def schedule(self, day: str | None = None) -> dict[str, list[Booking]]:
        """Bookings of ``day`` (default: selected date) per studio, by start time."""
        day = day or self._selected_date
        return {s.id: self._cache.bookings_for(s.id, day) for s in self._studios}

    def available_start_times(self, studio_id: str | None = None, day: str | None = None) -> list[str]:
        studio = self._studio(studio_id or self._selected_studio or "").id
        return self._cache.available_start_times(studio, day or self._selected_date)

    def available_end_times(
        self, start_time: str, studio_id: str | None = None, day: str | None = None
    ) -> list[str]:
        studio = self._studio(studio_id or self._selected_studio or "").id
        return self._cache.available_end_times(studio, day or self._selected_date, start_time)

    # ── Booking dialog ────────────────────────────────────────

    def open_booking(self, studio_id: str) -> None:
        self._selected_studio = self._studio(studio_id).id
        self._dialog = Dialog.BOOKING

    def close_dialog(self) -> None:
        self._dialog = Dialog.NONE
        self._pending_cancel = None

    async def submit_booking(
        self,
        *,
        user_name: str,
        subject: str,
        start_time: str,
        end_time: str,
        purpose: str,
        day: str | None = None,
        studio_id: str | None = None,
    ) -> Outcome:
        """Create a booking for the selected studio and date."""
        try:
            studio = self._studio(studio_id or self._selected_studio or "")
            try:
                purpose_value = RecordingPurpose(purpose)
            except ValueError:
                raise BookingValidationError(f"Unknown purpose {purpose!r}.") from None
            try:
                new = NewBooking(
                    studio=studio.id,
                    date=day or self._selected_date,
                    start_time=start_time,
                    end_time=end_time,
                    user_name=user_name.strip(),
                    purpose=purpose_value,
                    subject=subject.strip(),
                )
            except ValidationError as exc:
                error = exc.errors()[0]
                field = ".".join(str(part) for part in error["loc"])
                raise BookingValidationError(f"Invalid {field}: {error['msg']}") from None
            booking = await self._cache.create(new)
        except BookingError as exc:
            message = f"Booking failed: {exc.message}"
            self._notify(message, "error")
            return Outcome(ok=False, message=message, error=exc)
        finally:
            self.close_dialog()

        message = "Booking successful!"
        self._notify(message, "success")
        return Outcome(ok=True, message=message, booking=booking)

    # ── Cancellation ──────────────────────────────────────────

    def request_cancel(self, booking_id: str) -> str:
        """Open the confirmation dialog for ``booking_id`` and return its prompt."""
        for booking in self._cache.bookings:
            if booking.id == booking_id:
                break
        else:
            raise BookingValidationError(f"Booking {booking_id!r} is not in the schedule.")
        self._pending_cancel = booking
        self._dialog = Dialog.CONFIRM_CANCEL
        return self.cancel_prompt(booking)

    @staticmethod
    def cancel_prompt(booking: Booking) -> str:
        return (
            f"Are you sure you want to cancel the booking for {booking.user_name} "
            f"from {format_12h(booking.start_time)} to {format_12h(booking.end_time)}?"
        )

    async def confirm_cancel(self, booking_id: str | None = None) -> Outcome:
        """Cancel the pending booking (or ``booking_id``)."""
        target = booking_id or (self._pending_cancel.id if self._pending_cancel else "")
        try:
            await self._cache.cancel(target)
        except BookingError as exc:
            message = f"Cancellation failed: {exc.message}"
            self._notify(message, "error")
            return Outcome(ok=False, message=message, error=exc)
        finally:
            self.close_dialog()

        message = "Booking cancelled successfully!"
        self._notify(message, "success")
        return Outcome(ok=True, message=message)

    # ── Serialization ─────────────────────────────────────────

    def to_dict(self, detail: bool = False) -> dict[str, Any]:
        """Serialize session state for the API.

        With detail=False: summary suitable for listing.
        With detail=True: adds the schedule of the selected date.
        """
        notification = self.notification
        d: dict[str, Any] = {
            "session_id": self._session_id,
            "started_at": self._started_at,
            "state": self._cache.state.value,
            "error": self._cache.error,
            "is_mutating": self._cache.is_mutating,
            "store_configured": self._cache.store.is_configured,
            "store_configurable": self._cache.store.supports_endpoint,
            "event_seq": self._cache.events.last_seq,
            "selected_date": self._selected_date,
            "selected_studio": self._selected_studio,
            "available_dates": self.available_dates,
            "dialog": self._dialog.value,
            "notification": (
                {"message": notification.message, "kind": notification.kind}
                if notification else None
            ),
        }
        if detail:
            d["schedule"] = {
                studio_id: [
                    {**b.to_wire(), "pending": self._cache.is_pending(b)} for b in bookings
                ]
                for studio_id, bookings in self.schedule().items()
            }
            if self._pending_cancel:
                d["cancel_prompt"] = self.cancel_prompt(self._pending_cancel)
        return d
