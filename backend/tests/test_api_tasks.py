"""
Tasks API: authoring, scoping and the caller's derived status.

Uses the seeded in-memory world behind the web adapter; sessions are created
directly on the shared session store.
"""
from __future__ import annotations

import pytest
import httpx
from httpx import ASGITransport

import main  # type: ignore
import wiring  # type: ignore

from utils.tracking_world import add_task, build_world, submit

pytestmark = pytest.mark.anyio("asyncio")


async def _client() -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=ASGITransport(app=main.app), base_url="http://test")


def _login(client: httpx.AsyncClient, user_id: str) -> None:
    rec = main.SESSION_STORE.create(sub=user_id, name=user_id)
    client.cookies.set(main.SESSION_COOKIE_NAME, rec.session_id)


@pytest.fixture
def world():
    w = build_world()
    wiring.set_repo(w.repo)
    return w


@pytest.mark.anyio
async def test_unauthenticated_requests_are_rejected(world):
    async with (await _client()) as c:
        r = await c.get("/api/tasks")
    assert r.status_code == 401
    assert r.json() == {"error": "unauthenticated"}
    assert r.headers.get("Cache-Control") == "private, no-store"


@pytest.mark.anyio
async def test_health_is_public():
    async with (await _client()) as c:
        r = await c.get("/health")
    assert r.status_code == 200
    assert r.json()["service"] == "unitrack"


@pytest.mark.anyio
async def test_admin_creates_publishes_and_member_sees_it(world):
    async with (await _client()) as c:
        _login(c, world.admin_x.id)
        r = await c.post(
            "/api/tasks",
            json={"title": "Lab 4", "category": "lab-report", "due_at": "2099-01-10T09:00:00Z"},
        )
        assert r.status_code == 201
        created = r.json()
        assert created["section_id"] == world.section_x
        assert created["is_published"] is False
        assert r.headers["Cache-Control"] == "private, no-store"

        r = await c.post(f"/api/tasks/{created['id']}/publish", json={"is_published": True})
        assert r.status_code == 200
        assert r.json()["is_published"] is True

    async with (await _client()) as c:
        _login(c, world.s1.id)
        r = await c.get("/api/tasks")
        assert r.status_code == 200
        items = r.json()
        assert [t["title"] for t in items] == ["Lab 4"]
        assert items[0]["status"] == "pending"
        assert items[0]["submission"] is None
        assert items[0]["due_label"].startswith("Due ")


@pytest.mark.anyio
async def test_member_submission_shows_as_submitted(world):
    task = add_task(world, "Essay")
    async with (await _client()) as c:
        _login(c, world.s1.id)
        r = await c.put(f"/api/tasks/{task.id}/submission", json={"body": "done"})
        assert r.status_code == 200
        assert r.json()["status"] == "submitted"
        r = await c.get("/api/tasks", params={"status": "submitted"})
        assert [t["title"] for t in r.json()] == ["Essay"]


@pytest.mark.anyio
async def test_list_filters_are_validated(world):
    async with (await _client()) as c:
        _login(c, world.s1.id)
        r = await c.get("/api/tasks", params={"category": "sports"})
    assert r.status_code == 400
    assert r.json()["detail"] == "invalid_category"


@pytest.mark.anyio
async def test_write_errors_map_to_status_codes(world):
    foreign = add_task(world, "Y only", section_id=world.section_y, created_by=world.admin_y.id)
    async with (await _client()) as c:
        _login(c, world.admin_x.id)
        r = await c.post("/api/tasks", json={"title": ""})
        assert r.status_code == 400
        r = await c.patch(f"/api/tasks/{foreign.id}", json={"title": "mine now"})
        assert r.status_code == 403
        r = await c.delete("/api/tasks/does-not-exist")
        assert r.status_code == 404
    async with (await _client()) as c:
        _login(c, world.s1.id)
        r = await c.post("/api/tasks", json={"title": "Student task"})
        assert r.status_code == 403


@pytest.mark.anyio
async def test_delete_task_returns_204(world):
    task = add_task(world, "Old")
    async with (await _client()) as c:
        _login(c, world.admin_x.id)
        r = await c.delete(f"/api/tasks/{task.id}")
    assert r.status_code == 204
    assert r.headers["Cache-Control"] == "private, no-store"
    assert world.repo.get_task(task.id) is None


@pytest.mark.anyio
async def test_review_flow_and_task_submissions(world):
    task = add_task(world, "Lab")
    sub = submit(world, task, world.s1.id)
    async with (await _client()) as c:
        _login(c, world.admin_x.id)
        r = await c.get(f"/api/tasks/{task.id}/submissions")
        assert [s["user_id"] for s in r.json()] == ["s1"]
        r = await c.patch(f"/api/submissions/{sub.id}/review", json={"grade": 88, "status": "approved"})
        assert r.status_code == 200
        assert r.json()["grade"] == 88
        r = await c.patch(f"/api/submissions/{sub.id}/review", json={"grade": 150})
        assert r.status_code == 400
    async with (await _client()) as c:
        _login(c, world.admin_y.id)
        r = await c.patch(f"/api/submissions/{sub.id}/review", json={"grade": 50})
        assert r.status_code == 403


@pytest.mark.anyio
async def test_security_headers_present(world):
    async with (await _client()) as c:
        _login(c, world.s1.id)
        r = await c.get("/api/tasks")
    assert r.headers["X-Frame-Options"] == "DENY"
    assert r.headers["X-Content-Type-Options"] == "nosniff"
