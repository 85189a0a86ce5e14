"""
Tasks API routes: list with derived status, authoring, publishing, submitting.

Permissions:
    - Any active principal lists the tasks in their scope; each item carries
      the caller's derived status (`pending`/`submitted`/`overdue`).
    - Section-admins create/update/publish/delete tasks of their own section.
    - Members save or submit their own submission for a visible task.

Security:
    Responses are `private, no-store`. The principal is re-loaded from the
    store on every call; the session only carries the user id.
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import Response
from pydantic import BaseModel, Field

from tracking.filters import filter_views
from tracking.services.dashboards import DashboardsService
from tracking.services.submissions import SubmissionsService
from tracking.services.tasks import TasksService

from http_utils import SERVICE_ERRORS, current_user_id, error_response, json_private, private_error
from serializers import submission_json, task_json, task_view_json
from wiring import get_repo

tasks_router = APIRouter(tags=["Tasks"])
logger = logging.getLogger("unitrack.web.tasks")


class TaskCreate(BaseModel):
    title: str
    description: Optional[str] = None
    category: Optional[str] = None
    priority: Optional[str] = None
    due_at: Optional[str] = None
    is_published: bool = False


class TaskUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    priority: Optional[str] = None
    due_at: Optional[str] = None


class PublishToggle(BaseModel):
    is_published: bool


class SubmissionSave(BaseModel):
    body: Optional[str] = Field(default=None)
    submit: bool = True


def _unauthenticated():
    return private_error("unauthenticated", status_code=401)


@tasks_router.get("/api/tasks")
async def list_tasks(request: Request, category: Optional[str] = None, status: Optional[str] = None):
    """List tasks in the caller's scope with the caller's derived status."""
    user_id = current_user_id(request)
    if not user_id:
        return _unauthenticated()
    service = DashboardsService(get_repo())
    try:
        views = service.task_views(user_id)
        views = filter_views(views, category=category, status=status)
    except SERVICE_ERRORS as exc:
        return error_response(exc)
    now = service.clock()
    return json_private([task_view_json(v, now) for v in views])


@tasks_router.post("/api/tasks")
async def create_task(request: Request, payload: TaskCreate):
    user_id = current_user_id(request)
    if not user_id:
        return _unauthenticated()
    try:
        task = TasksService(get_repo()).create_task(
            user_id,
            title=payload.title,
            description=payload.description,
            category=payload.category,
            priority=payload.priority,
            due_at=payload.due_at,
            is_published=payload.is_published,
        )
    except SERVICE_ERRORS as exc:
        return error_response(exc)
    return json_private(task_json(task), status_code=201)


@tasks_router.patch("/api/tasks/{task_id}")
async def update_task(request: Request, task_id: str, payload: TaskUpdate):
    user_id = current_user_id(request)
    if not user_id:
        return _unauthenticated()
    changes = payload.model_dump(exclude_unset=True)
    try:
        task = TasksService(get_repo()).update_task(user_id, task_id, **changes)
    except SERVICE_ERRORS as exc:
        return error_response(exc)
    return json_private(task_json(task))


@tasks_router.post("/api/tasks/{task_id}/publish")
async def publish_task(request: Request, task_id: str, payload: PublishToggle):
    user_id = current_user_id(request)
    if not user_id:
        return _unauthenticated()
    try:
        task = TasksService(get_repo()).set_published(user_id, task_id, payload.is_published)
    except SERVICE_ERRORS as exc:
        return error_response(exc)
    return json_private(task_json(task))


@tasks_router.delete("/api/tasks/{task_id}")
async def delete_task(request: Request, task_id: str):
    user_id = current_user_id(request)
    if not user_id:
        return _unauthenticated()
    try:
        TasksService(get_repo()).delete_task(user_id, task_id)
    except SERVICE_ERRORS as exc:
        return error_response(exc)
    return Response(status_code=204, headers={"Cache-Control": "private, no-store"})


@tasks_router.put("/api/tasks/{task_id}/submission")
async def save_submission(request: Request, task_id: str, payload: SubmissionSave):
    """Create or update the caller's submission for a task (one per task and user)."""
    user_id = current_user_id(request)
    if not user_id:
        return _unauthenticated()
    try:
        sub = SubmissionsService(get_repo()).save_submission(user_id, task_id, body=payload.body, submit=payload.submit)
    except SERVICE_ERRORS as exc:
        return error_response(exc)
    return json_private(submission_json(sub))


@tasks_router.get("/api/tasks/{task_id}/submissions")
async def list_task_submissions(request: Request, task_id: str):
    user_id = current_user_id(request)
    if not user_id:
        return _unauthenticated()
    repo = get_repo()
    try:
        TasksService(repo).get_task(user_id, task_id)
        subs = SubmissionsService(repo).list_submissions(user_id, task_id=task_id)
    except SERVICE_ERRORS as exc:
        return error_response(exc)
    return json_private([submission_json(s) for s in subs])
