from __future__ import annotations

import logging
import re
import sqlite3
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import quote
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.concurrency import run_in_threadpool

from . import __version__
from .event_store import fetch_events, init_db, list_sessions, replace_events, save_manual_order
from .grouping import GroupingError, arrange
from .markdown_export import render_markdown_timeline
from .models import (
    BuildRequest,
    BuildResponse,
    Event,
    ExportRequest,
    Granularity,
    GroupRequest,
    GroupResponse,
    ReorderRequest,
    ReorderResponse,
    SessionEventsRequest,
    SessionEventsResponse,
    SessionListResponse,
    SessionReorderRequest,
    SessionSummary,
    SessionTimelineResponse,
    TimelineEntry,
    TimelineSettings,
    TimelineView,
)
from .reorder import ReorderError, apply_reorder
from .settings import settings
from .timeline_builder import build_timeline

LOG_LEVEL = getattr(logging, settings.log_level.upper(), logging.INFO)
logging.basicConfig(level=LOG_LEVEL)
logger = logging.getLogger("storytimeline.app")
logger.setLevel(LOG_LEVEL)

ALLOWED_ORIGINS = settings.allowed_origins or ["*"]
UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]")


app = FastAPI(
    title=settings.app_title,
    description=settings.app_description,
    version=__version__,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _uptime_seconds() -> float:
    started_at = getattr(app.state, "started_at", None)
    if not started_at:
        return 0.0
    return max(0.0, (_utcnow() - started_at).total_seconds())


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or str(uuid4())
    request.state.request_id = request_id
    start_time = time.perf_counter()
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id

    if settings.enable_request_logging:
        duration_ms = (time.perf_counter() - start_time) * 1000
        logger.info(
            "Request completed",
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": round(duration_ms, 2),
            },
        )

    return response


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    request_id = getattr(request.state, "request_id", str(uuid4()))
    logger.exception(
        "Unhandled server error",
        extra={"request_id": request_id, "path": request.url.path},
    )
    return JSONResponse(
        status_code=500,
        content={
            "detail": "Unexpected internal server error.",
            "request_id": request_id,
        },
        headers={"X-Request-ID": request_id},
    )


@app.on_event("startup")
async def startup() -> None:
    app.state.started_at = _utcnow()
    app.state.settings = settings
    await run_in_threadpool(init_db, settings.db_path)


def _effective_settings(requested: Optional[TimelineSettings]) -> TimelineSettings:
    """Overlay the fields a request actually sent on the configured defaults."""

    configured = settings.timeline_settings()
    if requested is None:
        return configured
    return configured.model_copy(update=requested.model_dump(exclude_unset=True))


def _attachment_disposition(filename: str) -> str:
    fallback = UNSAFE_FILENAME_CHARS.sub("_", filename)
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename, safe='')}"


def _arrange_or_422(entries: List[TimelineEntry], granularity: Granularity) -> TimelineView:
    try:
        return arrange(entries, granularity)
    except GroupingError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


async def _store_call(func, *args: Any, **kwargs: Any) -> Any:
    try:
        return await run_in_threadpool(func, *args, db_path=settings.db_path, **kwargs)
    except sqlite3.Error as exc:
        logger.exception("Event store failure in %s", getattr(func, "__name__", func))
        raise HTTPException(status_code=503, detail="Event store is unavailable.") from exc


async def _load_session(session_id: str) -> List[Event]:
    updated_at, events = await _store_call(fetch_events, session_id)
    if updated_at is None:
        raise HTTPException(status_code=404, detail="Session not found.")
    return events


def _ensure_drag_drop_enabled() -> None:
    if not settings.drag_drop_enabled:
        raise HTTPException(status_code=403, detail="Manual reordering is disabled.")


@app.get("/health")
async def health() -> Dict[str, Any]:
    return {
        "status": "ok",
        "uptime_seconds": round(_uptime_seconds(), 3),
        "version": app.version,
    }


@app.get("/health/live")
async def health_live() -> Dict[str, Any]:
    return {"status": "ok", "uptime_seconds": round(_uptime_seconds(), 3)}


@app.get("/health/ready")
async def health_ready() -> Dict[str, Any]:
    await _store_call(init_db)
    return {"status": "ok", "uptime_seconds": round(_uptime_seconds(), 3)}


@app.post("/api/timeline/build", response_model=BuildResponse)
async def build(request: BuildRequest) -> BuildResponse:
    entries = build_timeline(request.events, _effective_settings(request.settings))
    return BuildResponse(
        entries=entries,
        total_events=len(entries),
        excluded_events=len(request.events) - len(entries),
        generated_at=_utcnow(),
    )


@app.post("/api/timeline/group", response_model=GroupResponse)
async def group(request: GroupRequest) -> GroupResponse:
    entries = build_timeline(request.events, _effective_settings(request.settings))
    view = _arrange_or_422(entries, request.granularity or settings.default_view)
    return GroupResponse(
        view=view,
        total_events=len(entries),
        excluded_events=len(request.events) - len(entries),
        generated_at=_utcnow(),
    )


@app.post("/api/timeline/reorder", response_model=ReorderResponse)
async def reorder(request: ReorderRequest) -> ReorderResponse:
    _ensure_drag_drop_enabled()
    try:
        assignment = apply_reorder(request.displayed, request.new_order)
    except ReorderError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return ReorderResponse(assignment=assignment)


@app.post("/api/timeline/export", response_class=PlainTextResponse)
async def export(request: ExportRequest) -> PlainTextResponse:
    timeline_settings = _effective_settings(request.settings)
    entries = build_timeline(request.events, timeline_settings)
    markdown = render_markdown_timeline(request.title, entries, settings=timeline_settings)
    return PlainTextResponse(markdown, media_type="text/markdown")


@app.get("/api/sessions", response_model=SessionListResponse)
async def get_sessions(limit: int = Query(default=50, ge=1, le=500)) -> SessionListResponse:
    rows = await _store_call(list_sessions, limit)
    return SessionListResponse(
        sessions=[
            SessionSummary(session_id=session_id, updated_at=updated_at, total_events=total)
            for session_id, updated_at, total in rows
        ]
    )


@app.put("/api/sessions/{session_id}/events", response_model=SessionEventsResponse)
async def put_session_events(session_id: str, request: SessionEventsRequest) -> SessionEventsResponse:
    updated_at = await _store_call(replace_events, session_id, request.events)
    return SessionEventsResponse(
        session_id=session_id,
        total_events=len(request.events),
        updated_at=updated_at,
    )


async def _session_timeline(session_id: str, granularity: Granularity) -> SessionTimelineResponse:
    events = await _load_session(session_id)
    entries = build_timeline(events, settings.timeline_settings())
    return SessionTimelineResponse(
        session_id=session_id,
        view=_arrange_or_422(entries, granularity),
        total_events=len(entries),
        excluded_events=len(events) - len(entries),
        generated_at=_utcnow(),
    )


@app.get("/api/sessions/{session_id}/timeline", response_model=SessionTimelineResponse)
async def get_session_timeline(
    session_id: str,
    granularity: Optional[Granularity] = None,
) -> SessionTimelineResponse:
    return await _session_timeline(session_id, granularity or settings.default_view)


@app.post("/api/sessions/{session_id}/reorder", response_model=SessionTimelineResponse)
async def reorder_session(
    session_id: str,
    request: SessionReorderRequest,
    granularity: Optional[Granularity] = None,
) -> SessionTimelineResponse:
    _ensure_drag_drop_enabled()
    events = await _load_session(session_id)
    displayed = request.displayed
    if displayed is None:
        displayed = [entry.index for entry in build_timeline(events, settings.timeline_settings())]

    try:
        assignment = apply_reorder(displayed, request.new_order)
        await _store_call(save_manual_order, session_id, assignment)
    except ReorderError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    # Rebuild only after the write has committed.
    return await _session_timeline(session_id, granularity or settings.default_view)


@app.get("/api/sessions/{session_id}/export", response_class=PlainTextResponse)
async def export_session(session_id: str) -> PlainTextResponse:
    events = await _load_session(session_id)
    timeline_settings = settings.timeline_settings()
    entries = build_timeline(events, timeline_settings)
    markdown = render_markdown_timeline(session_id, entries, settings=timeline_settings)
    headers = {"Content-Disposition": _attachment_disposition(f"{session_id}_timeline.md")}
    return PlainTextResponse(markdown, media_type="text/markdown", headers=headers)
