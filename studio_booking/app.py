"""FastAPI application — HTTP + WebSocket endpoints for studio booking clients.

Endpoints:

  GET    /health                                   Health check
  GET    /api/studios                              Studios, purposes and operating window
  POST   /api/sessions                             Open a client session (loads + polls)
  GET    /api/sessions/{id}                        Session state incl. schedule
  DELETE /api/sessions/{id}                        Close a session
  POST   /api/sessions/{id}/date                   Select a date
  GET    /api/sessions/{id}/availability           Start (and end) candidates
  POST   /api/sessions/{id}/bookings               Create a booking
  DELETE /api/sessions/{id}/bookings/{booking_id}  Cancel a booking
  POST   /api/sessions/{id}/refresh                Foreground reload
  PUT    /api/sessions/{id}/store                  Configure the store endpoint
  WS     /api/sessions/{id}/events                 Live cache events

Each session owns its own BookingCache, so every client polls and
reconciles independently against the shared store, exactly like separate
browser tabs would.
"""

from __future__ import annotations

# Load .env into os.environ early so settings and uvicorn see the same values
from dotenv import load_dotenv
load_dotenv()

import json
import logging
import time
from contextlib import asynccontextmanager

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)-24s %(levelname)-7s %(message)s",
)

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse

from studio_booking.cache import BookingCache
from studio_booking.config import settings
from studio_booking.errors import (
    BookingError,
    BookingValidationError,
    ConflictError,
    NotFoundError,
    OverlapError,
    RemoteUnavailableError,
)
from studio_booking.models.booking import RecordingPurpose
from studio_booking.models.studio import DEFAULT_STUDIOS
from studio_booking.session import (
    BookingSession,
    Outcome,
    get_active_sessions,
    get_session,
    register_session,
    unregister_session,
)
from studio_booking.store_providers.sheet import SheetBookingStore
from studio_booking.timegrid import OperatingWindow

log = logging.getLogger("studio_booking.app")

_START_TIME = time.time()


def error_status(exc: BookingError | None) -> int:
    """HTTP status for a booking failure."""
    if isinstance(exc, BookingValidationError):
        return 422
    if isinstance(exc, (OverlapError, ConflictError)):
        return 409
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, RemoteUnavailableError):
        return 503
    return 502


def _outcome_response(outcome: Outcome, session: BookingSession) -> JSONResponse:
    body = {
        "ok": outcome.ok,
        "message": outcome.message,
        "booking": outcome.booking.to_wire() if outcome.booking else None,
        "session": session.to_dict(),
    }
    if outcome.ok:
        return JSONResponse(body)
    body["error"] = type(outcome.error).__name__
    return JSONResponse(body, status_code=error_status(outcome.error))


def _not_found() -> JSONResponse:
    return JSONResponse({"error": "Session not found"}, status_code=404)


async def _json_object(request: Request) -> dict | None:
    """Request body as a JSON object, or None if it is anything else."""
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    return body if isinstance(body, dict) else None


def _bad_body() -> JSONResponse:
    return JSONResponse({"error": "Request body must be a JSON object."}, status_code=422)


def create_app(store_factory=None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        store_factory: Optional zero-argument callable returning a
            BookingStore for each new session. Defaults to a
            SheetBookingStore on ``BOOKING_STORE_URL``.
    """
    for warning in settings.validate_startup():
        log.warning(warning)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        for sid, session in list(get_active_sessions().items()):
            await session.close()
            unregister_session(sid)

    app = FastAPI(
        title="Studio Booking",
        description="Shared recording-studio booking with optimistic sync",
        version="0.1.0",
        lifespan=lifespan,
    )

    def _create_session() -> BookingSession:
        store = store_factory() if store_factory else SheetBookingStore()
        cache = BookingCache(store, studios=[s.id for s in DEFAULT_STUDIOS])
        session = BookingSession(cache)
        register_session(session)
        return session

    # ── Health / reference data ────────────────────────────────

    @app.get("/health")
    async def health() -> JSONResponse:
        """Lightweight health check — confirms the event loop is responsive."""
        uptime = round(time.time() - _START_TIME, 1)
        return JSONResponse({
            "status": "ok",
            "uptime": uptime,
            "sessions": len(get_active_sessions()),
        })

    @app.get("/api/studios")
    async def studios() -> JSONResponse:
        window = OperatingWindow.from_settings(settings)
        return JSONResponse({
            "studios": [s.model_dump() for s in DEFAULT_STUDIOS],
            "purposes": [p.value for p in RecordingPurpose],
            "operating_hours": {
                "start_hour": window.start_hour,
                "end_hour": window.end_hour,
                "slot_minutes": window.slot_minutes,
            },
            "slots": window.slots(),
        })

    # ── Sessions ───────────────────────────────────────────────

    @app.post("/api/sessions")
    async def open_session() -> JSONResponse:
        session = _create_session()
        await session.start()
        return JSONResponse(session.to_dict(detail=True), status_code=201)

    @app.get("/api/sessions/{session_id}")
    async def read_session(session_id: str) -> JSONResponse:
        session = get_session(session_id)
        if not session:
            return _not_found()
        return JSONResponse(session.to_dict(detail=True))

    @app.delete("/api/sessions/{session_id}")
    async def close_session(session_id: str) -> JSONResponse:
        session = get_session(session_id)
        if not session:
            return _not_found()
        await session.close()
        unregister_session(session_id)
        return JSONResponse({"closed": True})

    @app.post("/api/sessions/{session_id}/date")
    async def select_date(session_id: str, request: Request) -> JSONResponse:
        session = get_session(session_id)
        if not session:
            return _not_found()
        body = await _json_object(request)
        if body is None:
            return _bad_body()
        try:
            session.select_date(str(body.get("date", "")))
        except BookingValidationError as exc:
            return JSONResponse({"error": exc.message}, status_code=422)
        return JSONResponse(session.to_dict(detail=True))

    @app.get("/api/sessions/{session_id}/availability")
    async def availability(
        session_id: str, studio: str, date: str | None = None, start: str | None = None,
    ) -> JSONResponse:
        session = get_session(session_id)
        if not session:
            return _not_found()
        try:
            starts = session.available_start_times(studio, date)
            ends = session.available_end_times(start, studio, date) if start else []
        except BookingValidationError as exc:
            return JSONResponse({"error": exc.message}, status_code=422)
        return JSONResponse({
            "studio": studio,
            "date": date or session.selected_date,
            "start_times": starts,
            "end_times": ends,
        })

    # ── Mutations ──────────────────────────────────────────────

    @app.post("/api/sessions/{session_id}/bookings")
    async def create_booking(session_id: str, request: Request) -> JSONResponse:
        session = get_session(session_id)
        if not session:
            return _not_found()
        body = await _json_object(request)
        if body is None:
            return _bad_body()
        outcome = await session.submit_booking(
            studio_id=str(body.get("studio", "")),
            day=body.get("date") or None,
            user_name=str(body.get("userName", "")),
            subject=str(body.get("subject", "")),
            start_time=str(body.get("startTime", "")),
            end_time=str(body.get("endTime", "")),
            purpose=str(body.get("purpose", "")),
        )
        if outcome.ok:
            log.info("Session %s booked %s", session_id, outcome.booking.id)
        return _outcome_response(outcome, session)

    @app.delete("/api/sessions/{session_id}/bookings/{booking_id}")
    async def cancel_booking(session_id: str, booking_id: str) -> JSONResponse:
        session = get_session(session_id)
        if not session:
            return _not_found()
        outcome = await session.confirm_cancel(booking_id)
        return _outcome_response(outcome, session)

    @app.post("/api/sessions/{session_id}/refresh")
    async def refresh(session_id: str) -> JSONResponse:
        session = get_session(session_id)
        if not session:
            return _not_found()
        ok = await session.refresh()
        return JSONResponse(session.to_dict(detail=True), status_code=200 if ok else 503)

    @app.put("/api/sessions/{session_id}/store")
    async def configure_store(session_id: str, request: Request) -> JSONResponse:
        session = get_session(session_id)
        if not session:
            return _not_found()
        body = await _json_object(request)
        if body is None:
            return _bad_body()
        url = str(body.get("url", "")).strip()
        if not url.startswith(("http://", "https://")):
            return JSONResponse({"error": "Store URL must be http(s)."}, status_code=422)
        if not session.cache.store.supports_endpoint:
            return JSONResponse(
                {"error": "This session's store has no configurable endpoint."}, status_code=409,
            )
        ok = await session.configure_store(url)
        return JSONResponse(session.to_dict(detail=True), status_code=200 if ok else 503)

    # ── Event stream WebSocket ─────────────────────────────────

    @app.websocket("/api/sessions/{session_id}/events")
    async def event_stream(websocket: WebSocket, session_id: str) -> None:
        """WebSocket endpoint that streams cache events for one session."""
        session = get_session(session_id)
        if not session:
            await websocket.close(code=4004, reason="Session not found")
            return

        await websocket.accept()
        events = session.cache.events
        queue = events.subscribe()

        try:
            while True:
                event = await queue.get()
                await websocket.send_json(event.to_dict())
        except WebSocketDisconnect:
            pass
        finally:
            events.unsubscribe(queue)

    return app


# ── Module-level app instance for uvicorn ──────────────────────

app = create_app()


if __name__ == "__main__":
    import uvicorn

    log_config = uvicorn.config.LOGGING_CONFIG
    log_config["formatters"]["default"]["fmt"] = (
        "%(asctime)s %(name)-12s %(levelname)-8s %(message)s"
    )

    uvicorn.run(
        "studio_booking.app:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_config=log_config,
    )
