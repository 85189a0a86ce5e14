"""
Organisation routes: departments, batches and sections.

Permissions:
    Any active principal reads the tree; only super-admins create units.
"""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel

from tracking.services.org_units import OrgUnitsService

from http_utils import SERVICE_ERRORS, current_user_id, error_response, json_private, private_error
from serializers import org_tree_json
from wiring import get_repo

org_router = APIRouter(tags=["Organisation"])


class DepartmentCreate(BaseModel):
    name: str
    code: str
    description: Optional[str] = None


class BatchCreate(BaseModel):
    name: str
    department_id: str


class SectionCreate(BaseModel):
    name: str
    batch_id: str


@org_router.get("/api/org")
async def get_org_tree(request: Request):
    user_id = current_user_id(request)
    if not user_id:
        return private_error("unauthenticated", status_code=401)
    try:
        tree = OrgUnitsService(get_repo()).tree(user_id)
    except SERVICE_ERRORS as exc:
        return error_response(exc)
    return json_private(org_tree_json(tree))


@org_router.post("/api/org/departments")
async def create_department(request: Request, payload: DepartmentCreate):
    user_id = current_user_id(request)
    if not user_id:
        return private_error("unauthenticated", status_code=401)
    try:
        dep = OrgUnitsService(get_repo()).create_department(
            user_id, name=payload.name, code=payload.code, description=payload.description
        )
    except SERVICE_ERRORS as exc:
        return error_response(exc)
    return json_private({"id": dep.id, "name": dep.name, "code": dep.code, "description": dep.description}, status_code=201)


@org_router.post("/api/org/batches")
async def create_batch(request: Request, payload: BatchCreate):
    user_id = current_user_id(request)
    if not user_id:
        return private_error("unauthenticated", status_code=401)
    try:
        batch = OrgUnitsService(get_repo()).create_batch(user_id, name=payload.name, department_id=payload.department_id)
    except SERVICE_ERRORS as exc:
        return error_response(exc)
    return json_private({"id": batch.id, "name": batch.name, "department_id": batch.department_id}, status_code=201)


@org_router.post("/api/org/sections")
async def create_section(request: Request, payload: SectionCreate):
    user_id = current_user_id(request)
    if not user_id:
        return private_error("unauthenticated", status_code=401)
    try:
        section = OrgUnitsService(get_repo()).create_section(user_id, name=payload.name, batch_id=payload.batch_id)
    except SERVICE_ERRORS as exc:
        return error_response(exc)
    return json_private({"id": section.id, "name": section.name, "batch_id": section.batch_id}, status_code=201)
