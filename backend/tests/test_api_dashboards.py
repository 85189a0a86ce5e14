"""Dashboard, section statistics and live event stream endpoints."""
from __future__ import annotations

import dataclasses
import json
from datetime import timedelta

import pytest
import httpx
from httpx import ASGITransport

import main  # type: ignore
import wiring  # type: ignore
from tracking.ports import StoreUnavailableError

from utils.tracking_world import add_task, build_world, submit

pytestmark = pytest.mark.anyio("asyncio")


async def _client(user_id: str | None = None) -> httpx.AsyncClient:
    client = httpx.AsyncClient(transport=ASGITransport(app=main.app), base_url="http://test")
    if user_id:
        rec = main.SESSION_STORE.create(sub=user_id, name=user_id)
        client.cookies.set(main.SESSION_COOKIE_NAME, rec.session_id)
    return client


@pytest.fixture
def world():
    w = build_world()
    lab = add_task(w, "lab", due_in=timedelta(days=30000))
    add_task(w, "quiz", category="quiz")
    submit(w, lab, "s1")
    submit(w, lab, "s2")
    wiring.set_repo(w.repo)
    return w


def _events(body: str, kind: str = "dashboard") -> list[dict]:
    out = []
    for frame in body.split("\n\n"):
        lines = frame.strip().splitlines()
        if lines and lines[0] == f"event: {kind}":
            out.append(json.loads(lines[1][len("data: "):]))
    return out


@pytest.mark.anyio
async def test_member_dashboard_view_model(world):
    async with (await _client("s1")) as c:
        r = await c.get("/api/dashboard")
    assert r.status_code == 200
    body = r.json()
    assert body["stats"] == {"total": 2, "pending": 1, "submitted": 1, "overdue": 0}
    assert len(body["categories"]) == 14
    assert body["categories"]["quiz"] == 1
    assert {t["title"] for t in body["tasks"]} == {"lab", "quiz"}


@pytest.mark.anyio
async def test_dashboard_filters(world):
    async with (await _client("s1")) as c:
        r = await c.get("/api/dashboard", params={"status": "submitted"})
        assert [t["title"] for t in r.json()["tasks"]] == ["lab"]
        r = await c.get("/api/dashboard", params={"category": "nope"})
        assert r.status_code == 400


@pytest.mark.anyio
async def test_section_overview_scoping(world):
    async with (await _client(world.admin_x.id)) as c:
        r = await c.get(f"/api/sections/{world.section_x}/overview")
        assert r.status_code == 200
        assert r.json()["total_students"] == 3
        assert r.json()["completion_rate"] == 33
        r = await c.get(f"/api/sections/{world.section_y}/overview")
        assert r.status_code == 403
    async with (await _client("s1")) as c:
        r = await c.get(f"/api/sections/{world.section_x}/overview")
        assert r.status_code == 403


@pytest.mark.anyio
async def test_section_analytics_and_members(world):
    async with (await _client(world.admin_x.id)) as c:
        r = await c.get(f"/api/sections/{world.section_x}/analytics")
        assert r.status_code == 200
        body = r.json()
        assert body["total_tasks"] == 2
        assert len(body["trend"]) == 7
        r = await c.get(f"/api/sections/{world.section_x}/analytics", params={"period": "year"})
        assert r.status_code == 400
        r = await c.get(f"/api/sections/{world.section_x}/members", params={"q": "ayesha"})
        assert [m["id"] for m in r.json()] == ["s1"]


@pytest.mark.anyio
async def test_admin_overview_super_admin_only(world):
    async with (await _client(world.admin_x.id)) as c:
        r = await c.get("/api/admin/overview")
        assert r.status_code == 403
    async with (await _client(world.super_admin.id)) as c:
        r = await c.get("/api/admin/overview")
        assert r.status_code == 200
        assert r.json()["pending_approvals"] == 1


@pytest.mark.anyio
async def test_calendar_week_for_member(world):
    add_task(world, "essay", due_in=timedelta(days=1))
    world.repo.create_routine(
        title="Math", section_id=world.section_x, day_of_week=4, start_time="09:00", end_time="10:00", created_by="admin-x"
    )
    async with (await _client("s1")) as c:
        r = await c.get("/api/calendar", params={"week_of": "2025-03-12"})
        bad = await c.get("/api/calendar", params={"week_of": "12/03/2025"})
    async with (await _client()) as c:
        anon = await c.get("/api/calendar")
    assert r.status_code == 200
    assert r.headers["Cache-Control"] == "private, no-store"
    body = r.json()
    assert body["week_start"] == "2025-03-09T00:00:00Z"
    assert [d["date"] for d in body["days"]] == [f"2025-03-{n:02d}" for n in range(9, 16)]
    thursday = body["days"][4]
    assert [t["title"] for t in thursday["deadlines"]] == ["essay"]
    assert [x["title"] for x in thursday["routines"]] == ["Math"]
    assert sum(len(d["deadlines"]) for d in body["days"]) == 1
    assert bad.status_code == 400
    assert bad.json()["detail"] == "invalid_week_of"
    assert anon.status_code == 401


@pytest.mark.anyio
async def test_events_requires_auth_and_valid_limit(world):
    async with (await _client()) as c:
        r = await c.get("/api/dashboard/events")
        assert r.status_code == 401
    async with (await _client("s1")) as c:
        r = await c.get("/api/dashboard/events", params={"max_events": 0})
        assert r.status_code == 400


@pytest.mark.anyio
async def test_events_stream_initial_view_and_unsubscribes(world):
    async with (await _client("s1")) as c:
        r = await c.get("/api/dashboard/events", params={"max_events": 1})
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/event-stream")
    assert r.headers["Cache-Control"] == "private, no-store"
    events = _events(r.text)
    assert len(events) == 1
    assert events[0]["stats"]["submitted"] == 1
    assert world.repo.feed.subscriber_count == 0


@pytest.mark.anyio
async def test_events_return_503_when_store_unavailable(world, monkeypatch: pytest.MonkeyPatch):
    def _down(*_args, **_kwargs):
        raise StoreUnavailableError("db down")

    monkeypatch.setattr(world.repo, "list_tasks", _down)
    async with (await _client("s1")) as c:
        r = await c.get("/api/dashboard/events", params={"max_events": 1})
    assert r.status_code == 503
    assert world.repo.feed.subscriber_count == 0


@pytest.mark.anyio
async def test_events_stream_ends_with_error_when_viewer_loses_access(world, monkeypatch: pytest.MonkeyPatch):
    import routes.dashboards as dashboards_routes  # type: ignore

    fast_poll = dataclasses.replace(wiring.get_config(), stats_poll_seconds=0.01)
    monkeypatch.setattr(dashboards_routes, "get_config", lambda: fast_poll)
    real_list_tasks = world.repo.list_tasks

    def _list_then_deactivate(*args, **kwargs):
        tasks = real_list_tasks(*args, **kwargs)
        world.repo.update_principal("s1", is_active=False)
        return tasks

    monkeypatch.setattr(world.repo, "list_tasks", _list_then_deactivate)
    async with (await _client("s1")) as c:
        r = await c.get("/api/dashboard/events")
    assert r.status_code == 200
    assert len(_events(r.text)) == 1
    assert _events(r.text, "error") == [{"error": "forbidden", "detail": "forbidden"}]
    assert world.repo.feed.subscriber_count == 0
