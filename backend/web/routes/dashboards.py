"""
Dashboard routes: student dashboard, section overview/analytics, activity,
system overview, weekly calendar, and the live dashboard event stream.

Permissions:
    - `/api/dashboard` and `/api/dashboard/events`: any active principal; data
      is scoped to the caller.
    - `/api/calendar`: any active principal; the caller's own section.
    - Section endpoints: section-admins (own section) and super-admins.
    - `/api/admin/overview`: super-admins only.

Live stream:
    `GET /api/dashboard/events` keeps one `LiveViewController` per connection.
    Each recomputed view model is sent as an SSE `dashboard` event: on change
    feed events for tasks/submissions and on every countdown tick. The optional
    `max_events` query parameter ends the stream after N events. When the
    caller loses access mid-stream the view closes itself and the stream ends
    with one `error` event carrying the usual `{error, detail}` body.
"""
from __future__ import annotations

import asyncio
from dataclasses import asdict
from datetime import date, datetime, timezone
import json
import logging
from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse

from tracking.live_view import LiveViewController, ViewModel, build_view_model
from tracking.services.dashboards import DashboardsService
from tracking.services.members import MembersService

from http_utils import (
    PRIVATE_HEADERS,
    SERVICE_ERRORS,
    current_user_id,
    error_body,
    error_response,
    json_private,
    private_error,
)
from serializers import (
    activity_json,
    admin_overview_json,
    analytics_json,
    calendar_json,
    principal_json,
    view_model_json,
)
from wiring import get_config, get_feed, get_repo, offload_fetch

dashboards_router = APIRouter(tags=["Dashboards"])
logger = logging.getLogger("unitrack.web.dashboards")

_HEARTBEAT_SECONDS = 15.0


@dashboards_router.get("/api/dashboard")
async def get_dashboard(request: Request, category: Optional[str] = None, status: str = "all"):
    """Caller's dashboard: derived task statuses, stats, categories, upcoming."""
    user_id = current_user_id(request)
    if not user_id:
        return private_error("unauthenticated", status_code=401)
    service = DashboardsService(get_repo())
    try:
        model = build_view_model(service.fetch_snapshot(user_id), service.clock())
        body = view_model_json(model, category=category, status=status)
    except SERVICE_ERRORS as exc:
        return error_response(exc)
    return json_private(body)


@dashboards_router.get("/api/calendar")
async def get_calendar(request: Request, week_of: Optional[str] = None):
    """Caller's week (Sunday first): section deadlines and routine slots.

    `week_of` is any `YYYY-MM-DD` inside the wanted week (UTC); default is now.
    """
    user_id = current_user_id(request)
    if not user_id:
        return private_error("unauthenticated", status_code=401)
    week_at: Optional[datetime] = None
    if week_of is not None:
        try:
            day = date.fromisoformat(week_of)
        except ValueError:
            return private_error("bad_request", status_code=400, detail="invalid_week_of")
        week_at = datetime(day.year, day.month, day.day, tzinfo=timezone.utc)
    service = DashboardsService(get_repo())
    try:
        week = service.calendar_week(user_id, week_of=week_at)
    except SERVICE_ERRORS as exc:
        return error_response(exc)
    return json_private(calendar_json(week, service.clock()))


@dashboards_router.get("/api/sections/{section_id}/overview")
async def section_overview(request: Request, section_id: str):
    user_id = current_user_id(request)
    if not user_id:
        return private_error("unauthenticated", status_code=401)
    cfg = get_config()
    try:
        overview = DashboardsService(get_repo()).section_overview(
            user_id, section_id=section_id, window_days=cfg.upcoming_window_days
        )
    except SERVICE_ERRORS as exc:
        return error_response(exc)
    return json_private(admin_overview_json(overview))


@dashboards_router.get("/api/sections/{section_id}/analytics")
async def section_analytics(request: Request, section_id: str, period: Optional[str] = None):
    user_id = current_user_id(request)
    if not user_id:
        return private_error("unauthenticated", status_code=401)
    try:
        analytics = DashboardsService(get_repo()).section_analytics(user_id, section_id=section_id, period=period)
    except SERVICE_ERRORS as exc:
        return error_response(exc)
    return json_private(analytics_json(analytics))


@dashboards_router.get("/api/sections/{section_id}/members")
async def section_members(request: Request, section_id: str, q: Optional[str] = None):
    user_id = current_user_id(request)
    if not user_id:
        return private_error("unauthenticated", status_code=401)
    try:
        members = MembersService(get_repo()).list_members(user_id, query=q, section_id=section_id)
    except SERVICE_ERRORS as exc:
        return error_response(exc)
    return json_private([principal_json(p) for p in members])


@dashboards_router.get("/api/activity")
async def recent_activity(request: Request, limit: int = 15, section_id: Optional[str] = None):
    user_id = current_user_id(request)
    if not user_id:
        return private_error("unauthenticated", status_code=401)
    try:
        items = DashboardsService(get_repo()).recent_activity(user_id, section_id=section_id, limit=limit)
    except SERVICE_ERRORS as exc:
        return error_response(exc)
    return json_private(activity_json(items))


@dashboards_router.get("/api/admin/overview")
async def system_overview(request: Request):
    user_id = current_user_id(request)
    if not user_id:
        return private_error("unauthenticated", status_code=401)
    try:
        overview = DashboardsService(get_repo()).system_overview(user_id)
    except SERVICE_ERRORS as exc:
        return error_response(exc)
    return json_private(asdict(overview))


def _sse(event: str, payload: dict) -> str:
    return f"event: {event}\ndata: {json.dumps(payload, separators=(',', ':'))}\n\n"


@dashboards_router.get("/api/dashboard/events")
async def dashboard_events(request: Request, max_events: Optional[int] = None):
    """
    Server-sent events for the caller's live dashboard.

    Behavior:
        - The initial view model is sent immediately.
        - Heartbeat comments keep idle connections open.
        - Disconnect (or `max_events` reached) closes the controller, which
          unsubscribes from the change feed and stops its timers.
    """
    user_id = current_user_id(request)
    if not user_id:
        return private_error("unauthenticated", status_code=401)
    if max_events is not None and max_events < 1:
        return private_error("bad_request", status_code=400, detail="invalid_max_events")
    cfg = get_config()
    service = DashboardsService(get_repo())
    queue: "asyncio.Queue[Optional[ViewModel]]" = asyncio.Queue()
    controller = LiveViewController(
        lambda: service.fetch_snapshot(user_id),
        get_feed(),
        tick_seconds=cfg.tick_seconds,
        poll_seconds=cfg.stats_poll_seconds,
        clock=service.clock,
        offload_fetch=offload_fetch(),
    )
    try:
        await controller.start()
    except SERVICE_ERRORS as exc:
        return error_response(exc)
    if controller.model is None:
        # Initial fetch hit an unavailable store; nothing to stream yet.
        await controller.close()
        return private_error("unavailable", status_code=503)
    queue.put_nowait(controller.model)
    controller.add_listener(queue.put_nowait)
    # None marks the end of the stream (the view closed itself).
    controller.add_close_listener(lambda _exc: queue.put_nowait(None))

    async def _stream():
        sent = 0
        try:
            while max_events is None or sent < max_events:
                if await request.is_disconnected():
                    break
                try:
                    model = await asyncio.wait_for(queue.get(), timeout=_HEARTBEAT_SECONDS)
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                if model is None:
                    if controller.error is not None:
                        _status, body = error_body(controller.error)
                        yield _sse("error", body)
                    break
                yield _sse("dashboard", view_model_json(model))
                sent += 1
        finally:
            await controller.close()
            logger.debug("dashboard stream closed sub=%s events=%s", user_id, sent)

    headers = dict(PRIVATE_HEADERS)
    headers["X-Accel-Buffering"] = "no"
    return StreamingResponse(_stream(), media_type="text/event-stream", headers=headers)
