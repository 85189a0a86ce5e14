"""Class routine routes (weekly timetable per section)."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel

from tracking.services.routines import RoutinesService

from http_utils import SERVICE_ERRORS, current_user_id, error_response, json_private, private_error
from serializers import routine_json
from wiring import get_repo

routines_router = APIRouter(tags=["Routines"])


class RoutineCreate(BaseModel):
    title: str
    day_of_week: int
    start_time: str
    end_time: str
    description: Optional[str] = None
    room: Optional[str] = None
    subject: Optional[str] = None
    instructor_name: Optional[str] = None


class RoutineUpdate(BaseModel):
    title: Optional[str] = None
    day_of_week: Optional[int] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    description: Optional[str] = None
    room: Optional[str] = None
    subject: Optional[str] = None
    instructor_name: Optional[str] = None


@routines_router.get("/api/routines")
async def list_routines(request: Request):
    user_id = current_user_id(request)
    if not user_id:
        return private_error("unauthenticated", status_code=401)
    try:
        items = RoutinesService(get_repo()).list_routines(user_id)
    except SERVICE_ERRORS as exc:
        return error_response(exc)
    return json_private([routine_json(r) for r in items])


@routines_router.post("/api/routines")
async def create_routine(request: Request, payload: RoutineCreate):
    """
    Add a routine slot to the caller's section.

    Permissions:
        Active section-admin with a section; `end_time` must be after `start_time`.
    """
    user_id = current_user_id(request)
    if not user_id:
        return private_error("unauthenticated", status_code=401)
    try:
        routine = RoutinesService(get_repo()).create_routine(user_id, **payload.model_dump())
    except SERVICE_ERRORS as exc:
        return error_response(exc)
    return json_private(routine_json(routine), status_code=201)


@routines_router.patch("/api/routines/{routine_id}")
async def update_routine(request: Request, routine_id: str, payload: RoutineUpdate):
    user_id = current_user_id(request)
    if not user_id:
        return private_error("unauthenticated", status_code=401)
    try:
        routine = RoutinesService(get_repo()).update_routine(
            user_id, routine_id, **payload.model_dump(exclude_unset=True)
        )
    except SERVICE_ERRORS as exc:
        return error_response(exc)
    return json_private(routine_json(routine))


@routines_router.delete("/api/routines/{routine_id}")
async def delete_routine(request: Request, routine_id: str):
    """Deactivate a routine; it disappears from listings but stays stored."""
    user_id = current_user_id(request)
    if not user_id:
        return private_error("unauthenticated", status_code=401)
    try:
        routine = RoutinesService(get_repo()).delete_routine(user_id, routine_id)
    except SERVICE_ERRORS as exc:
        return error_response(exc)
    return json_private(routine_json(routine))
