"""Application configuration via environment variables."""

from __future__ import annotations

import logging
from typing import Optional

from pydantic_settings import BaseSettings

log = logging.getLogger("studio_booking.config")


class Settings(BaseSettings):
    # Remote booking store (Apps Script web app URL or store_server)
    booking_store_url: str = ""
    request_timeout_seconds: float = 20.0

    # Operating window
    operating_start_hour: int = 8
    operating_end_hour: int = 23
    slot_minutes: int = 30

    # Reconciliation
    poll_interval_seconds: float = 15.0

    # Bookable dates: today plus the following days
    booking_window_days: int = 7
    calendar_timezone: str = "UTC"

    # Optional admission knobs (unset = only the operating window applies)
    max_booking_minutes: Optional[int] = None
    min_lead_minutes: Optional[int] = None

    # How long success/failure notices stay visible
    notification_seconds: float = 3.0

    # Server
    host: str = "127.0.0.1"
    port: int = 8080
    debug: bool = False

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    def validate_startup(self) -> list[str]:
        """Validate configuration at startup. Returns warnings, raises on errors."""
        warnings: list[str] = []

        if not 0 <= self.operating_start_hour < self.operating_end_hour <= 24:
            raise ValueError(
                f"Operating window {self.operating_start_hour}:00-"
                f"{self.operating_end_hour}:00 is empty or out of range."
            )
        if self.slot_minutes <= 0 or 60 % self.slot_minutes != 0:
            raise ValueError(
                f"SLOT_MINUTES={self.slot_minutes} must be a positive divisor of 60."
            )
        if self.poll_interval_seconds <= 0:
            raise ValueError("POLL_INTERVAL_SECONDS must be positive.")

        if not self.booking_store_url:
            warnings.append(
                "BOOKING_STORE_URL not set. Bookings list empty and every "
                "mutation fails until a store endpoint is configured."
            )
        if self.max_booking_minutes is not None and self.max_booking_minutes < self.slot_minutes:
            warnings.append(
                "MAX_BOOKING_MINUTES is shorter than one slot; no booking can be admitted."
            )

        return warnings


settings = Settings()
