"""Booking store abstractions and implementations."""

from .base import BookingStore
from .memory import InMemoryBookingStore
from .sheet import SheetBookingStore

__all__ = ["BookingStore", "InMemoryBookingStore", "SheetBookingStore"]
