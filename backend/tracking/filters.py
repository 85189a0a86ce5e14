"""Synchronous filter pipeline over an in-memory task view collection.

Filtering never fetches: category first, then derived status.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Tuple

from .domain import DerivedStatus, Principal, TaskCategory, category_of
from .status import TaskView

STATUS_FILTERS = frozenset({"all", "pending", "submitted", "overdue"})


def normalize_category(value: object) -> Optional[TaskCategory]:
    if value is None or value == "" or value == "all":
        return None
    if not isinstance(value, str):
        raise ValueError("invalid_category")
    try:
        return TaskCategory(value.strip().lower())
    except ValueError as exc:
        raise ValueError("invalid_category") from exc


def normalize_status_filter(value: object) -> str:
    if value is None or value == "":
        return "all"
    if not isinstance(value, str) or value.strip().lower() not in STATUS_FILTERS:
        raise ValueError("invalid_status")
    return value.strip().lower()


def filter_views(views: Iterable[TaskView], *, category: object = None, status: object = "all") -> List[TaskView]:
    cat = normalize_category(category)
    wanted = normalize_status_filter(status)
    out = [v for v in views if cat is None or category_of(v.task.category) == cat]
    if wanted != "all":
        target = DerivedStatus(wanted)
        out = [v for v in out if v.status == target]
    return out


def upcoming(views: Iterable[TaskView], *, limit: int = 3) -> List[TaskView]:
    """Unsubmitted tasks with a due instant, soonest first."""
    pending = [v for v in views if v.status != DerivedStatus.SUBMITTED and v.task.due_at is not None]
    pending.sort(key=lambda v: v.task.due_at)  # type: ignore[arg-type,return-value]
    return pending[: max(0, limit)]


def week_bounds(at: datetime) -> Tuple[datetime, datetime]:
    """First and last instant of the Sunday-based week containing `at`, in `at`'s timezone.

    Both bounds are inclusive, matching `TaskQuery.due_from`/`due_to`.
    """
    start = (at - timedelta(days=(at.weekday() + 1) % 7)).replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=7) - timedelta(microseconds=1)


def search_members(principals: Iterable[Principal], query: Optional[str]) -> List[Principal]:
    """Case-insensitive match on name, email or student id; sorted by name."""
    q = (query or "").strip().lower()
    out = []
    for p in principals:
        if not q or q in p.name.lower() or q in p.email.lower() or q in (p.student_id or "").lower():
            out.append(p)
    out.sort(key=lambda p: p.name.lower())
    return out


__all__ = [
    "STATUS_FILTERS",
    "filter_views",
    "normalize_category",
    "normalize_status_filter",
    "search_members",
    "upcoming",
    "week_bounds",
]
