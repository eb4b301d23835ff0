"""Failure taxonomy for booking admission and remote store access."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from studio_booking.models.booking import Booking


class BookingError(Exception):
    """Base error for every failure surfaced by the booking engine."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class BookingValidationError(BookingError):
    """Raised for malformed input, before any I/O. Never retried."""


class OverlapError(BookingError):
    """Raised when the local pre-check finds a conflicting booking."""

    def __init__(self, message: str, conflicting: Optional["Booking"] = None) -> None:
        super().__init__(message)
        self.conflicting = conflicting


class RemoteError(BookingError):
    """Base error for remote store failures."""


class RemoteUnavailableError(RemoteError):
    """Raised when the store cannot be reached or answers garbage."""


class StoreNotConfiguredError(RemoteUnavailableError):
    """Raised when a mutation is attempted without a store endpoint."""


class RemoteRejectedError(RemoteError):
    """Raised when the store answers ``success: false``."""


class ConflictError(RemoteRejectedError):
    """Raised when the remote authority's own overlap check rejects a booking."""


class NotFoundError(RemoteRejectedError):
    """Raised when a cancel targets an id the store no longer has."""
