"""
Tracking domain entities: org units, principals, tasks, submissions, routines.

Why:
    Services, the live view and the aggregates all work on the same typed
    records. Repositories hand out plain rows (dicts, as stored); the
    `*_from_row` helpers turn them into these dataclasses in one place so the
    wire names (`is_published`, `due_date`, ...) never leak further.

Behavior:
    - Timestamps are timezone-aware UTC `datetime`s. Naive inputs are rejected.
    - Unknown stored categories read as `others` so histograms stay total.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Optional

from identity_access.domain import Role, parse_role


class TaskCategory(str, Enum):
    TASK = "task"
    PRESENTATION = "presentation"
    PROJECT = "project"
    ASSIGNMENT = "assignment"
    QUIZ = "quiz"
    LAB_REPORT = "lab-report"
    LAB_FINAL = "lab-final"
    LAB_PERFORMANCE = "lab-performance"
    DOCUMENTS = "documents"
    BLC = "blc"
    GROUPS = "groups"
    MIDTERM = "midterm"
    FINAL_EXAM = "final-exam"
    OTHERS = "others"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class SubmissionStatus(str, Enum):
    PENDING = "pending"
    SUBMITTED = "submitted"
    REVIEWED = "reviewed"
    APPROVED = "approved"
    REJECTED = "rejected"


class DerivedStatus(str, Enum):
    PENDING = "pending"
    SUBMITTED = "submitted"
    OVERDUE = "overdue"


@dataclass(frozen=True)
class Department:
    id: str
    name: str
    code: str
    description: Optional[str] = None


@dataclass(frozen=True)
class Batch:
    id: str
    name: str
    department_id: str


@dataclass(frozen=True)
class Section:
    id: str
    name: str
    batch_id: str


@dataclass(frozen=True)
class Principal:
    id: str
    email: str
    name: str
    role: Role
    section_id: Optional[str] = None
    batch_id: Optional[str] = None
    department_id: Optional[str] = None
    student_id: Optional[str] = None
    is_active: bool = True
    last_login_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @property
    def is_pending_approval(self) -> bool:
        return self.role == Role.SECTION_ADMIN and not self.is_active


@dataclass(frozen=True)
class Task:
    id: str
    title: str
    section_id: str
    created_by: str
    category: TaskCategory = TaskCategory.ASSIGNMENT
    priority: Priority = Priority.MEDIUM
    description: Optional[str] = None
    due_at: Optional[datetime] = None
    is_published: bool = False
    published_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class Submission:
    id: str
    task_id: str
    user_id: str
    status: SubmissionStatus = SubmissionStatus.PENDING
    body: Optional[str] = None
    submitted_at: Optional[datetime] = None
    # Raw stored `submitted_at` text; trend buckets compare its date prefix.
    submitted_at_raw: Optional[str] = None
    grade: Optional[int] = None
    feedback: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    section_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class Routine:
    id: str
    title: str
    section_id: str
    day_of_week: int
    start_time: str
    end_time: str
    created_by: str
    description: Optional[str] = None
    room: Optional[str] = None
    subject: Optional[str] = None
    instructor_name: Optional[str] = None
    is_active: bool = True


@dataclass
class OrgTree:
    """Loaded org units, used for parent resolution."""

    departments: dict[str, Department] = field(default_factory=dict)
    batches: dict[str, Batch] = field(default_factory=dict)
    sections: dict[str, Section] = field(default_factory=dict)

    def effective_department_id(self, section_id: str) -> Optional[str]:
        section = self.sections.get(section_id)
        if section is None:
            return None
        batch = self.batches.get(section.batch_id)
        return batch.department_id if batch else None


def parse_instant(value: Any) -> Optional[datetime]:
    """Parse a stored timestamp into an aware UTC datetime (None passes through)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        raw = value.strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError as exc:
            raise ValueError("invalid_timestamp") from exc
    else:
        raise ValueError("invalid_timestamp")
    if parsed.tzinfo is None:
        raise ValueError("invalid_timestamp")
    return parsed.astimezone(timezone.utc)


def iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def category_of(value: Any) -> TaskCategory:
    if isinstance(value, TaskCategory):
        return value
    try:
        return TaskCategory(str(value or "").strip().lower())
    except ValueError:
        return TaskCategory.OTHERS


def principal_from_row(row: Mapping[str, Any]) -> Principal:
    return Principal(
        id=str(row["id"]),
        email=str(row.get("email") or ""),
        name=str(row.get("name") or ""),
        role=parse_role(row.get("role")),
        section_id=_opt_str(row.get("section_id")),
        batch_id=_opt_str(row.get("batch_id")),
        department_id=_opt_str(row.get("department_id")),
        student_id=_opt_str(row.get("student_id")),
        is_active=bool(row.get("is_active", True)),
        last_login_at=parse_instant(row.get("last_login_at")),
        created_at=parse_instant(row.get("created_at")),
    )


def task_from_row(row: Mapping[str, Any]) -> Task:
    priority = row.get("priority") or Priority.MEDIUM.value
    return Task(
        id=str(row["id"]),
        title=str(row.get("title") or ""),
        description=row.get("description"),
        category=category_of(row.get("category")),
        priority=Priority(priority) if not isinstance(priority, Priority) else priority,
        due_at=parse_instant(row.get("due_date")),
        section_id=str(row["section_id"]),
        created_by=str(row["created_by"]),
        is_published=bool(row.get("is_published", False)),
        published_at=parse_instant(row.get("published_at")),
        created_at=parse_instant(row.get("created_at")),
        updated_at=parse_instant(row.get("updated_at")),
    )


def submission_from_row(row: Mapping[str, Any]) -> Submission:
    raw_submitted = row.get("submitted_at")
    grade = row.get("grade")
    return Submission(
        id=str(row["id"]),
        task_id=str(row["task_id"]),
        user_id=str(row["user_id"]),
        status=SubmissionStatus(row.get("status") or SubmissionStatus.PENDING.value),
        body=row.get("submission_text"),
        submitted_at=parse_instant(raw_submitted),
        submitted_at_raw=raw_submitted if isinstance(raw_submitted, str) else iso(raw_submitted),
        grade=int(grade) if grade is not None else None,
        feedback=row.get("feedback"),
        reviewed_by=_opt_str(row.get("reviewed_by")),
        reviewed_at=parse_instant(row.get("reviewed_at")),
        section_id=_opt_str(row.get("section_id")),
        created_at=parse_instant(row.get("created_at")),
        updated_at=parse_instant(row.get("updated_at")),
    )


def routine_from_row(row: Mapping[str, Any]) -> Routine:
    return Routine(
        id=str(row["id"]),
        title=str(row.get("title") or ""),
        description=row.get("description"),
        section_id=str(row["section_id"]),
        day_of_week=int(row.get("day_of_week") or 0),
        start_time=str(row.get("start_time") or ""),
        end_time=str(row.get("end_time") or ""),
        room=row.get("room"),
        subject=row.get("subject"),
        instructor_name=row.get("instructor_name"),
        is_active=bool(row.get("is_active", True)),
        created_by=str(row.get("created_by") or ""),
    )


def department_from_row(row: Mapping[str, Any]) -> Department:
    return Department(
        id=str(row["id"]), name=str(row["name"]), code=str(row.get("code") or ""), description=row.get("description")
    )


def batch_from_row(row: Mapping[str, Any]) -> Batch:
    return Batch(id=str(row["id"]), name=str(row["name"]), department_id=str(row["department_id"]))


def section_from_row(row: Mapping[str, Any]) -> Section:
    return Section(id=str(row["id"]), name=str(row["name"]), batch_id=str(row["batch_id"]))


def _opt_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)
