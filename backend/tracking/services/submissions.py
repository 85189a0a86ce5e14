"""Submission use cases: student save/submit and section-admin review.

Why:
    Students keep exactly one submission per task; saving again updates it.
    Reviews are restricted to section-admins of the task's section.

Behavior:
    - `save_submission(submit=True)` sets status `submitted` and stamps
      `submitted_at`; `submit=False` stores a `pending` draft.
    - Concurrent saves for the same (task, user) are last-write-wins.
    - Review grades are integers in 0..100; review status is one of
      reviewed/approved/rejected.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
import logging
from typing import Callable, List, Optional

from identity_access.domain import Role

from ..domain import Submission, SubmissionStatus
from ..ports import TrackingRepoProtocol
from ..visibility import Access, ResourceKind, authorize, visible
from .base import normalize_bool, normalize_text, resolve_actor, utcnow

logger = logging.getLogger("unitrack.tracking.submissions")

_REVIEW_STATUSES = frozenset({SubmissionStatus.REVIEWED, SubmissionStatus.APPROVED, SubmissionStatus.REJECTED})


def _normalize_grade(value: object) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError("invalid_grade")
    try:
        grade = int(value)  # type: ignore[call-overload]
    except (TypeError, ValueError) as exc:
        raise ValueError("invalid_grade") from exc
    if grade < 0 or grade > 100:
        raise ValueError("invalid_grade")
    return grade


def _normalize_review_status(value: object) -> SubmissionStatus:
    if value is None:
        return SubmissionStatus.REVIEWED
    try:
        status = SubmissionStatus(str(value).strip().lower())
    except ValueError as exc:
        raise ValueError("invalid_status") from exc
    if status not in _REVIEW_STATUSES:
        raise ValueError("invalid_status")
    return status


@dataclass
class SubmissionsService:
    repo: TrackingRepoProtocol
    clock: Callable[[], datetime] = field(default=utcnow)

    def save_submission(self, actor_id: str, task_id: str, *, body: object = None, submit: object = True) -> Submission:
        text = normalize_text(body, "body", max_len=10000)
        final = normalize_bool(submit, "submit")
        actor = resolve_actor(self.repo, actor_id)
        if actor.role != Role.MEMBER:
            raise PermissionError("forbidden")
        task = self.repo.get_task(task_id)
        if task is None:
            raise LookupError("task_not_found")
        authorize(actor, ResourceKind.TASK, task, Access.READ)
        pending = Submission(id="", task_id=task.id, user_id=actor.id, section_id=task.section_id)
        authorize(actor, ResourceKind.SUBMISSION, pending, Access.WRITE)
        status = SubmissionStatus.SUBMITTED if final else SubmissionStatus.PENDING
        sub = self.repo.upsert_submission(
            task.id,
            actor.id,
            body=text,
            status=status.value,
            submitted_at=self.clock() if final else None,
        )
        logger.info("submission saved task=%s status=%s", task.id, status.value)
        return sub

    def review_submission(
        self,
        actor_id: str,
        submission_id: str,
        *,
        grade: object = None,
        feedback: object = None,
        status: object = None,
    ) -> Submission:
        clean_grade = _normalize_grade(grade)
        clean_feedback = normalize_text(feedback, "feedback", max_len=2000)
        review_status = _normalize_review_status(status)
        actor = resolve_actor(self.repo, actor_id)
        sub = self.repo.get_submission(submission_id)
        if sub is None:
            raise LookupError("submission_not_found")
        if actor.role != Role.SECTION_ADMIN:
            raise PermissionError("forbidden")
        authorize(actor, ResourceKind.SUBMISSION, sub, Access.WRITE)
        updated = self.repo.update_submission(
            sub.id,
            status=review_status.value,
            grade=clean_grade,
            feedback=clean_feedback,
            reviewed_by=actor.id,
            reviewed_at=self.clock(),
        )
        if updated is None:
            raise LookupError("submission_not_found")
        logger.info("submission reviewed id=%s status=%s", sub.id, review_status.value)
        return updated

    def list_submissions(self, actor_id: str, *, task_id: Optional[str] = None) -> List[Submission]:
        actor = resolve_actor(self.repo, actor_id)
        task_ids = [task_id] if task_id else None
        if actor.role == Role.MEMBER:
            rows = self.repo.list_submissions(task_ids=task_ids, user_id=actor.id)
        elif actor.role == Role.SECTION_ADMIN:
            if actor.section_id is None:
                return []
            rows = self.repo.list_submissions(task_ids=task_ids, section_id=actor.section_id)
        else:
            rows = self.repo.list_submissions(task_ids=task_ids)
        return visible(actor, ResourceKind.SUBMISSION, rows)


__all__ = ["SubmissionsService"]
