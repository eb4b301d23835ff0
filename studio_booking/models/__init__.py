"""Data models for the booking engine."""

from .booking import Booking, NewBooking, RecordingPurpose
from .studio import DEFAULT_STUDIOS, Studio

__all__ = ["Booking", "NewBooking", "RecordingPurpose", "Studio", "DEFAULT_STUDIOS"]
