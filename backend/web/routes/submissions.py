"""Submission routes: the caller's own submissions and section-admin review."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel

from tracking.services.submissions import SubmissionsService

from http_utils import SERVICE_ERRORS, current_user_id, error_response, json_private, private_error
from serializers import submission_json
from wiring import get_repo

submissions_router = APIRouter(tags=["Submissions"])


class SubmissionReview(BaseModel):
    grade: Optional[int] = None
    feedback: Optional[str] = None
    status: Optional[str] = None


@submissions_router.get("/api/submissions")
async def list_submissions(request: Request):
    """Submissions in the caller's scope (own for members, section for admins)."""
    user_id = current_user_id(request)
    if not user_id:
        return private_error("unauthenticated", status_code=401)
    try:
        subs = SubmissionsService(get_repo()).list_submissions(user_id)
    except SERVICE_ERRORS as exc:
        return error_response(exc)
    return json_private([submission_json(s) for s in subs])


@submissions_router.patch("/api/submissions/{submission_id}/review")
async def review_submission(request: Request, submission_id: str, payload: SubmissionReview):
    """
    Grade a submission.

    Permissions:
        Active section-admin of the submission's section; other callers get 403.
    """
    user_id = current_user_id(request)
    if not user_id:
        return private_error("unauthenticated", status_code=401)
    try:
        sub = SubmissionsService(get_repo()).review_submission(
            user_id,
            submission_id,
            grade=payload.grade,
            feedback=payload.feedback,
            status=payload.status,
        )
    except SERVICE_ERRORS as exc:
        return error_response(exc)
    return json_private(submission_json(sub))
