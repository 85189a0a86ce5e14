"""RoutinesService: weekly schedule entries with soft delete."""
from __future__ import annotations

import pytest

from tracking.services.routines import RoutinesService

from utils.tracking_world import build_world


@pytest.fixture
def world():
    return build_world()


@pytest.fixture
def svc(world):
    return RoutinesService(world.repo)


def _create(svc, actor, **kw):
    fields = {"title": "Data Structures", "day_of_week": 1, "start_time": "09:00", "end_time": "10:30"}
    fields.update(kw)
    return svc.create_routine(actor, **fields)


def test_create_and_list_ordered(world, svc):
    later = _create(svc, world.admin_x.id, title="Algorithms", start_time="11:00", end_time="12:00")
    first = _create(svc, world.admin_x.id, start_time="08:00:00", end_time="09:00", room="R-101")
    monday = _create(svc, world.admin_x.id, title="Networks", day_of_week=0)
    assert first.start_time == "08:00"
    assert first.room == "R-101"
    assert [r.id for r in svc.list_routines("s1")] == [monday.id, first.id, later.id]
    assert svc.list_routines("sy") == []


@pytest.mark.parametrize(
    "kw,error",
    [
        ({"day_of_week": 7}, "invalid_day_of_week"),
        ({"day_of_week": True}, "invalid_day_of_week"),
        ({"start_time": "9am"}, "invalid_start_time"),
        ({"end_time": "24:00"}, "invalid_end_time"),
        ({"start_time": "10:00", "end_time": "10:00"}, "invalid_time_range"),
        ({"title": "  "}, "invalid_title"),
    ],
)
def test_create_validation(world, svc, kw, error):
    with pytest.raises(ValueError) as exc:
        _create(svc, world.admin_x.id, **kw)
    assert str(exc.value) == error


def test_members_and_super_admin_cannot_write(world, svc):
    with pytest.raises(PermissionError):
        _create(svc, "s1")
    with pytest.raises(PermissionError):
        _create(svc, world.super_admin.id)


def test_update_checks_range_against_stored_values(world, svc):
    routine = _create(svc, world.admin_x.id)
    with pytest.raises(ValueError) as exc:
        svc.update_routine(world.admin_x.id, routine.id, start_time="11:00")
    assert str(exc.value) == "invalid_time_range"
    with pytest.raises(ValueError):
        svc.update_routine(world.admin_x.id, routine.id, colour="red")
    moved = svc.update_routine(world.admin_x.id, routine.id, day_of_week=4, room="Lab 2")
    assert (moved.day_of_week, moved.room) == (4, "Lab 2")
    with pytest.raises(PermissionError):
        svc.update_routine(world.admin_y.id, routine.id, room="nope")


def test_delete_is_soft(world, svc):
    routine = _create(svc, world.admin_x.id)
    gone = svc.delete_routine(world.admin_x.id, routine.id)
    assert gone.is_active is False
    assert svc.list_routines("s1") == []
    assert [r.id for r in svc.list_routines(world.admin_x.id)] == []
    assert world.repo.get_routine(routine.id) is not None
    with pytest.raises(LookupError):
        svc.delete_routine(world.admin_x.id, routine.id)
