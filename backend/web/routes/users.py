"""
Users API routes: section rosters, member management and approvals.

Permissions:
    - `GET /api/users`: section-admins see their section, super-admins all.
    - promote/detach: section-admin of the member's section.
    - role/active/reject: super-admin only. Deactivation and rejection end
      the target's open sessions.
"""
from __future__ import annotations

from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import Response
from pydantic import BaseModel

from tracking.services.members import MembersService

from auth_utils import revoke_sessions
from http_utils import SERVICE_ERRORS, current_user_id, error_response, json_private, private_error
from serializers import principal_json
from wiring import get_repo

users_router = APIRouter(tags=["Users"])


class DetachRequest(BaseModel):
    confirm: bool = False


class RoleChange(BaseModel):
    role: str


class ActiveChange(BaseModel):
    is_active: bool


def _caller(request: Request):
    user_id = current_user_id(request)
    if not user_id:
        return None, private_error("unauthenticated", status_code=401)
    return user_id, None


@users_router.get("/api/me")
async def get_me(request: Request):
    user_id, error = _caller(request)
    if error:
        return error
    principal = get_repo().get_principal(user_id)
    if principal is None:
        return private_error("forbidden", status_code=403)
    return json_private(principal_json(principal))


@users_router.get("/api/users")
async def list_users(request: Request, q: Optional[str] = None):
    user_id, error = _caller(request)
    if error:
        return error
    try:
        members = MembersService(get_repo()).list_members(user_id, query=q)
    except SERVICE_ERRORS as exc:
        return error_response(exc)
    return json_private([principal_json(p) for p in members])


@users_router.get("/api/users/pending")
async def list_pending(request: Request):
    user_id, error = _caller(request)
    if error:
        return error
    try:
        pending = MembersService(get_repo()).pending_approvals(user_id)
    except SERVICE_ERRORS as exc:
        return error_response(exc)
    return json_private([principal_json(p) for p in pending])


@users_router.get("/api/users/{target_id}/stats")
async def member_stats(request: Request, target_id: str):
    user_id, error = _caller(request)
    if error:
        return error
    try:
        stats = MembersService(get_repo()).member_stats(user_id, target_id)
    except SERVICE_ERRORS as exc:
        return error_response(exc)
    return json_private(asdict(stats))


@users_router.post("/api/users/{target_id}/promote")
async def promote(request: Request, target_id: str):
    user_id, error = _caller(request)
    if error:
        return error
    try:
        updated = MembersService(get_repo()).promote(user_id, target_id)
    except SERVICE_ERRORS as exc:
        return error_response(exc)
    return json_private(principal_json(updated))


@users_router.post("/api/users/{target_id}/detach")
async def detach(request: Request, target_id: str, payload: DetachRequest):
    user_id, error = _caller(request)
    if error:
        return error
    try:
        updated = MembersService(get_repo()).detach(user_id, target_id, confirm=payload.confirm)
    except SERVICE_ERRORS as exc:
        return error_response(exc)
    return json_private(principal_json(updated))


@users_router.patch("/api/users/{target_id}/role")
async def set_role(request: Request, target_id: str, payload: RoleChange):
    user_id, error = _caller(request)
    if error:
        return error
    try:
        updated = MembersService(get_repo()).set_role(user_id, target_id, payload.role)
    except SERVICE_ERRORS as exc:
        return error_response(exc)
    return json_private(principal_json(updated))


@users_router.patch("/api/users/{target_id}/active")
async def set_active(request: Request, target_id: str, payload: ActiveChange):
    user_id, error = _caller(request)
    if error:
        return error
    try:
        updated = MembersService(get_repo()).set_active(user_id, target_id, payload.is_active)
    except SERVICE_ERRORS as exc:
        return error_response(exc)
    if not updated.is_active:
        revoke_sessions(target_id)
    return json_private(principal_json(updated))


@users_router.delete("/api/users/{target_id}")
async def reject_application(request: Request, target_id: str):
    """Reject (delete) a pending section-admin application."""
    user_id, error = _caller(request)
    if error:
        return error
    try:
        MembersService(get_repo()).reject_application(user_id, target_id)
    except SERVICE_ERRORS as exc:
        return error_response(exc)
    revoke_sessions(target_id)
    return Response(status_code=204, headers={"Cache-Control": "private, no-store"})
