"""Booking store backed by a spreadsheet web app.

Speaks the JSON protocol of a Google Apps Script deployment (or the
bundled ``studio_booking.store_server``):

* ``GET <url>`` returns ``{"success": bool, "data": [row, ...], "message"?}``
* ``POST <url>`` with ``{"action": "add" | "delete", "data": ...}`` returns
  ``{"success": bool, "data"?: row, "message"?}``

The endpoint URL is read from ``BOOKING_STORE_URL`` unless passed in.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional
from zoneinfo import ZoneInfo

import httpx

from studio_booking.config import settings
from studio_booking.errors import (
    ConflictError,
    NotFoundError,
    RemoteRejectedError,
    RemoteUnavailableError,
    StoreNotConfiguredError,
)
from studio_booking.models.booking import Booking, NewBooking

from .base import BookingStore
from .records import normalize_record, normalize_records

logger = logging.getLogger(__name__)

# Apps Script web apps only accept simple requests: JSON travels as text/plain
_POST_HEADERS = {"Content-Type": "text/plain;charset=utf-8"}


def classify_rejection(message: str, code: str = "") -> RemoteRejectedError:
    """Turn a ``success: false`` answer into the matching error type."""
    text = message.lower()
    if code == "conflict" or "overlap" in text or "conflict" in text:
        return ConflictError(message)
    if code == "not_found" or "not found" in text:
        return NotFoundError(message)
    return RemoteRejectedError(message)


class SheetBookingStore(BookingStore):
    """BookingStore backed by a spreadsheet web app over HTTP."""

    def __init__(
        self,
        url: str | None = None,
        *,
        timeout: float | None = None,
        timezone: str | None = None,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = (url if url is not None else settings.booking_store_url).strip()
        self._timeout = timeout if timeout is not None else settings.request_timeout_seconds
        self._tz = ZoneInfo(timezone or settings.calendar_timezone)
        self._http = http

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    @property
    def url(self) -> str:
        return self._url

    @property
    def supports_endpoint(self) -> bool:
        return True

    @property
    def is_configured(self) -> bool:
        return bool(self._url)

    def configure(self, endpoint: str) -> None:
        self._url = endpoint.strip()
        logger.info("Booking store endpoint %s", "set" if self._url else "cleared")

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _send(self, method: str, **kwargs: Any) -> httpx.Response:
        try:
            if self._http is not None:
                return await self._http.request(
                    method, self._url, timeout=self._timeout, follow_redirects=True, **kwargs
                )
            async with httpx.AsyncClient(timeout=self._timeout, follow_redirects=True) as client:
                return await client.request(method, self._url, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("Booking store %s failed: %s", method, exc)
            raise RemoteUnavailableError(f"Booking store unreachable: {exc}") from exc

    @staticmethod
    def _decode(response: httpx.Response) -> dict[str, Any]:
        if not response.is_success:
            raise RemoteUnavailableError(
                f"Network response was not ok. Status: {response.status_code}"
            )
        try:
            body = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise RemoteUnavailableError("Booking store returned a non-JSON response.") from None
        if not isinstance(body, dict):
            raise RemoteUnavailableError("Booking store returned an unexpected payload.")
        return body

    async def _post_action(self, action: str, data: dict[str, Any]) -> dict[str, Any]:
        if not self.is_configured:
            raise StoreNotConfiguredError("Booking store URL not configured.")
        response = await self._send(
            "POST",
            content=json.dumps({"action": action, "data": data}),
            headers=_POST_HEADERS,
        )
        body = self._decode(response)
        if not body.get("success"):
            message = str(body.get("message") or f"Failed to {action} booking.")
            raise classify_rejection(message, str(body.get("code") or ""))
        return body

    # ------------------------------------------------------------------
    # BookingStore interface
    # ------------------------------------------------------------------

    async def list_all(self) -> list[Booking]:
        """Fetch every row. Returns an empty list when no endpoint is set."""
        if not self.is_configured:
            return []
        body = self._decode(await self._send("GET"))
        if not body.get("success"):
            raise RemoteRejectedError(
                str(body.get("message") or "An error occurred while fetching bookings.")
            )
        bookings = normalize_records(body.get("data"), self._tz)
        logger.debug("Fetched %d booking(s)", len(bookings))
        return bookings

    async def create(self, new: NewBooking) -> Booking:
        body = await self._post_action("add", new.to_wire())
        created: Optional[Booking] = normalize_record(body.get("data"), self._tz)
        if created is None:
            raise RemoteRejectedError("Booking store did not return the created booking.")
        logger.info("Created booking %s on %s %s", created.id, created.studio, created.date)
        return created

    async def delete_by_id(self, booking_id: str) -> None:
        await self._post_action("delete", {"id": booking_id})
        logger.info("Deleted booking %s", booking_id)
