"""Reference booking store server.

Implements the spreadsheet web app protocol on top of an
InMemoryBookingStore, so the engine can run without a Google Sheet:

  GET  /    {"success": true, "data": [row, ...]}
  POST /    body {"action": "add" | "delete", "data": {...}}

Every answer is HTTP 200 with ``success`` telling the outcome, like the
Apps Script deployment. Rejections also carry a ``code`` ("conflict",
"not_found", "invalid") so clients need not parse the message.

Run with ``uvicorn studio_booking.store_server:app --port 8081``.
"""

from __future__ import annotations

import json
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from studio_booking.config import settings
from studio_booking.errors import BookingValidationError, ConflictError, NotFoundError
from studio_booking.models.booking import NewBooking
from studio_booking.store_providers.memory import InMemoryBookingStore
from studio_booking.timegrid import OperatingWindow

log = logging.getLogger("studio_booking.store_server")


def _failure(message: str, code: str) -> JSONResponse:
    return JSONResponse({"success": False, "message": message, "code": code})


def create_store_app(store: InMemoryBookingStore | None = None) -> FastAPI:
    """Create the store app around ``store`` (a fresh empty table by default)."""
    table = store or InMemoryBookingStore(window=OperatingWindow.from_settings(settings))

    app = FastAPI(
        title="Studio Booking Store",
        description="Reference implementation of the booking store protocol",
        version="0.1.0",
    )
    app.state.store = table

    @app.get("/")
    async def list_bookings() -> JSONResponse:
        rows = [b.to_wire() for b in await table.list_all()]
        return JSONResponse({"success": True, "data": rows})

    @app.post("/")
    async def mutate(request: Request) -> JSONResponse:
        raw = await request.body()
        try:
            body = json.loads(raw or b"{}")
        except json.JSONDecodeError:
            return _failure("Request body is not valid JSON.", "invalid")
        if not isinstance(body, dict):
            return _failure("Request body must be a JSON object.", "invalid")

        action = body.get("action")
        data = body.get("data") or {}

        if action == "add":
            try:
                new = NewBooking.model_validate(data)
                booking = await table.create(new)
            except ValidationError as exc:
                return _failure(f"Invalid booking: {exc.errors()[0]['msg']}", "invalid")
            except BookingValidationError as exc:
                return _failure(exc.message, "invalid")
            except ConflictError as exc:
                return _failure(exc.message, "conflict")
            return JSONResponse({"success": True, "data": booking.to_wire()})

        if action == "delete":
            booking_id = str(data.get("id", "")) if isinstance(data, dict) else ""
            try:
                await table.delete_by_id(booking_id)
            except NotFoundError as exc:
                return _failure(exc.message, "not_found")
            return JSONResponse({"success": True, "message": "Booking deleted."})

        log.warning("Rejected unknown action %r", action)
        return _failure("Invalid action specified.", "invalid")

    return app


app = create_store_app()
