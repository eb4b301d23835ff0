"""Client-side booking cache with optimistic updates.

The cache mirrors the store's booking table for one client session:

  1. ``load()`` replaces the whole collection with the store's answer
     (the store is authoritative, there is no merge)
  2. ``create()`` / ``cancel()`` change the local collection first, for
     immediate feedback, then call the store and always reload afterwards
  3. A background task polls the store on a fixed interval so changes
     made by other clients show up without user action

State machine::

    UNINITIALIZED ──load()──▶ LOADING ──ok──▶ READY ◀─┐
                                  └──fail──▶ ERROR     │ background
                                                       │ loads stay
                                                       └─ in READY

Mutations are serialized with an ``asyncio.Lock``: a create or cancel
finishes, reconciling load included, before the next one is admitted.
A snapshot fetched before a local optimistic change is discarded instead
of applied, so a poll never wipes out a mutation that is still in flight.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import datetime
from enum import Enum
from typing import Callable, Iterable, Optional
from uuid import uuid4
from zoneinfo import ZoneInfo

from studio_booking.config import settings
from studio_booking.errors import BookingValidationError, StoreNotConfiguredError
from studio_booking.events import CacheEventStream, EventType
from studio_booking.models.booking import Booking, NewBooking
from studio_booking.overlap import (
    available_end_times,
    available_start_times,
    bookings_for,
    check_admission,
)
from studio_booking.store_providers.base import BookingStore
from studio_booking.timegrid import OperatingWindow

log = logging.getLogger("studio_booking.cache")

PENDING_PREFIX = "pending-"


class CacheState(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


def _reason(exc: Exception) -> str:
    return getattr(exc, "message", None) or str(exc) or type(exc).__name__


class BookingCache:
    """Local, optimistically written mirror of a BookingStore.

    Typical lifecycle::

        cache = BookingCache(SheetBookingStore())
        await cache.start()            # foreground load + polling
        cache.available_start_times("studio-1", "2024-01-10")
        booking = await cache.create(new_booking)
        await cache.cancel(booking.id)
        await cache.close()
    """

    def __init__(
        self,
        store: BookingStore,
        window: OperatingWindow | None = None,
        *,
        poll_interval: float | None = None,
        studios: Optional[Iterable[str]] = None,
        max_booking_minutes: Optional[int] = None,
        min_lead_minutes: Optional[int] = None,
        timezone: str | None = None,
        clock: Callable[[ZoneInfo], datetime] | None = None,
    ) -> None:
        self._store = store
        self._window = window or OperatingWindow.from_settings(settings)
        self._poll_interval = (
            poll_interval if poll_interval is not None else settings.poll_interval_seconds
        )
        self._studios = list(studios) if studios is not None else None
        self._max_booking_minutes = (
            max_booking_minutes if max_booking_minutes is not None
            else settings.max_booking_minutes
        )
        self._min_lead_minutes = (
            min_lead_minutes if min_lead_minutes is not None else settings.min_lead_minutes
        )
        self._tz = ZoneInfo(timezone or settings.calendar_timezone)
        self._clock = clock or datetime.now

        self._bookings: list[Booking] = []
        self._state = CacheState.UNINITIALIZED
        self._error: str | None = None

        # Bumped on every optimistic change; loads started earlier are discarded
        self._generation = 0
        # Load sequence numbers, so an older snapshot never overwrites a newer one
        self._load_seq = 0
        self._applied_seq = 0

        self._mutation_lock = asyncio.Lock()
        self._poll_task: asyncio.Task | None = None
        self._events = CacheEventStream(self._snapshot)

    # ── Properties ────────────────────────────────────────────

    @property
    def store(self) -> BookingStore:
        return self._store

    @property
    def window(self) -> OperatingWindow:
        return self._window

    @property
    def state(self) -> CacheState:
        return self._state

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def bookings(self) -> list[Booking]:
        return list(self._bookings)

    @property
    def is_mutating(self) -> bool:
        """True while a create/cancel is in flight; callers disable mutation controls."""
        return self._mutation_lock.locked()

    @property
    def is_polling(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    def now(self) -> datetime:
        """Current wall-clock time in the calendar timezone."""
        return self._clock(self._tz)

    @property
    def events(self) -> CacheEventStream:
        return self._events

    @staticmethod
    def is_pending(booking: Booking) -> bool:
        """True for an optimistic entry the store has not confirmed yet."""
        return booking.id.startswith(PENDING_PREFIX)

    # ── Availability queries ──────────────────────────────────

    def bookings_for(self, studio: str, day: str) -> list[Booking]:
        return bookings_for(self._bookings, studio, day)

    def available_start_times(self, studio: str, day: str) -> list[str]:
        return available_start_times(self.bookings_for(studio, day), self._window)

    def available_end_times(self, studio: str, day: str, start_time: str) -> list[str]:
        return available_end_times(self.bookings_for(studio, day), start_time, self._window)

    # ── Internal helpers ──────────────────────────────────────

    def _emit(self, event_type: EventType, data: dict) -> None:
        self._events.publish(event_type, self._state.value, data)

    def _snapshot(self) -> tuple[str, dict]:
        return self._state.value, {
            "error": self._error,
            "bookings": [
                {**b.to_wire(), "pending": self.is_pending(b)} for b in self._bookings
            ],
        }

    def _set_state(self, state: CacheState) -> None:
        if state is self._state:
            return
        log.info("Cache state: %s → %s", self._state.value, state.value)
        previous, self._state = self._state, state
        self._emit(EventType.STATE, {"from": previous.value, "to": state.value})

    def _replace_local(self, bookings: list[Booking]) -> None:
        """Optimistic change of the local collection."""
        self._bookings = bookings
        self._generation += 1

    def _admission_rules(self) -> dict:
        return {
            "studios": self._studios,
            "max_booking_minutes": self._max_booking_minutes,
            "min_lead_minutes": self._min_lead_minutes,
            "now": self.now(),
        }

    # ── Loading ───────────────────────────────────────────────

    async def load(self, foreground: bool = True) -> bool:
        """Replace the local collection with the store's bookings.

        A foreground load shows LOADING and ends in ERROR on failure. A
        background load never leaves READY: on failure the last known
        bookings stay in place.

        Returns:
            True if the store answered, False if the load failed.
        """
        self._load_seq += 1
        seq = self._load_seq
        generation = self._generation
        if foreground:
            self._set_state(CacheState.LOADING)

        try:
            bookings = await self._store.list_all()
        except Exception as exc:
            reason = _reason(exc)
            if foreground:
                self._error = f"Failed to fetch bookings. Reason: {reason}"
                self._set_state(CacheState.ERROR)
                log.error("Foreground load failed: %s", reason)
            else:
                log.warning(
                    "Background refresh failed, keeping %d cached booking(s): %s",
                    len(self._bookings), reason,
                )
            self._emit(EventType.LOAD_FAILED, {"foreground": foreground, "error": reason})
            return False

        if generation != self._generation or seq < self._applied_seq:
            log.info("Discarding booking snapshot taken before a newer local change")
            # Only a snapshot that was actually applied makes the cache READY
            if foreground and self._applied_seq > 0:
                self._error = None
                self._set_state(CacheState.READY)
            return True

        self._applied_seq = seq
        self._bookings = bookings
        self._error = None
        self._set_state(CacheState.READY)
        self._emit(EventType.LOADED, {"foreground": foreground, "count": len(bookings)})
        return True

    async def refresh(self) -> bool:
        """User-triggered reload."""
        return await self.load(foreground=True)

    # ── Mutations ─────────────────────────────────────────────

    async def create(self, new: NewBooking) -> Booking:
        """Admit ``new`` locally, persist it, then reconcile with the store.

        Raises:
            BookingValidationError, OverlapError: rejected before any I/O.
            StoreNotConfiguredError: no store endpoint.
            ConflictError, RemoteError: the store refused or failed. The
                optimistic entry is rolled back and the cache reloaded.
        """
        async with self._mutation_lock:
            check_admission(self._bookings, new, self._window, **self._admission_rules())
            if not self._store.is_configured:
                raise StoreNotConfiguredError("Booking store URL not configured.")

            placeholder = new.with_id(f"{PENDING_PREFIX}{uuid4().hex}")
            self._replace_local([*self._bookings, placeholder])
            log.info("Booking %s %s %s-%s (optimistic %s)", new.studio, new.date,
                     new.start_time, new.end_time, placeholder.id)

            try:
                created = await self._store.create(new)
            except Exception as exc:
                self._replace_local([b for b in self._bookings if b.id != placeholder.id])
                reason = _reason(exc)
                log.warning("Create failed, rolled back %s: %s", placeholder.id, reason)
                self._emit(EventType.CREATE_FAILED, {
                    "booking": new.to_wire(), "error": reason, "kind": type(exc).__name__,
                })
                await self.load(foreground=False)
                raise

            self._replace_local(
                [created if b.id == placeholder.id else b for b in self._bookings]
            )
            self._emit(EventType.CREATED, {"booking": created.to_wire()})
            await self.load(foreground=False)
            return created

    async def cancel(self, booking_id: str) -> None:
        """Remove a booking locally, delete it from the store, then reconcile.

        Raises:
            BookingValidationError: empty id.
            StoreNotConfiguredError: no store endpoint.
            NotFoundError: another client deleted it first. The cache is
                reloaded, so the caller only needs to report it.
            RemoteError: the store refused or failed.
        """
        if not booking_id or not booking_id.strip():
            raise BookingValidationError("Booking id is required.")

        async with self._mutation_lock:
            if not self._store.is_configured:
                raise StoreNotConfiguredError("Booking store URL not configured.")

            previous = self._bookings
            self._replace_local([b for b in previous if b.id != booking_id])
            log.info("Cancelling booking %s", booking_id)

            try:
                await self._store.delete_by_id(booking_id)
            except Exception as exc:
                self._replace_local(previous)
                reason = _reason(exc)
                log.warning("Cancel of %s failed: %s", booking_id, reason)
                self._emit(EventType.CANCEL_FAILED, {
                    "id": booking_id, "error": reason, "kind": type(exc).__name__,
                })
                await self.load(foreground=False)
                raise

            self._emit(EventType.CANCELLED, {"id": booking_id})
            await self.load(foreground=False)

    # ── Polling ───────────────────────────────────────────────

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self._poll_interval)
            if self._mutation_lock.locked():
                log.debug("Skipping poll while a mutation is in flight")
                continue
            try:
                await self.load(foreground=False)
            except Exception:
                log.exception("Unexpected error during background refresh")

    def start_polling(self) -> None:
        """Start the background refresh task if it is not running."""
        if self.is_polling:
            return
        self._poll_task = asyncio.create_task(self._poll_loop(), name="booking-cache-poll")
        log.info("Polling every %.1fs", self._poll_interval)

    async def stop_polling(self) -> None:
        task, self._poll_task = self._poll_task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def start(self) -> bool:
        """Initial foreground load, then background polling."""
        loaded = await self.load(foreground=True)
        self.start_polling()
        return loaded

    async def close(self) -> None:
        await self.stop_polling()

    async def __aenter__(self) -> "BookingCache":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
