"""
Per-user derived task status plus the countdown helpers shown next to it.

Why:
    The stored submission status alone cannot say whether a task is overdue;
    that depends on the wall clock. Keeping the rule in one pure function lets
    the live view re-run it on every tick without touching the store.

Behavior:
    - `submitted` wins over everything (late-but-completed is never overdue).
    - `overdue` only when a due instant exists, lies strictly before `now`,
      and the user has no submission row at all.
    - Everything else, including reviewed/approved/rejected rows, is `pending`.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
import math
from typing import Dict, Iterable, List, Optional

from .domain import DerivedStatus, Submission, SubmissionStatus, Task


def _require_aware(now: datetime) -> None:
    if not isinstance(now, datetime) or now.tzinfo is None:
        raise ValueError("naive_now")


def derive_status(task: Task, submission: Optional[Submission], now: datetime) -> DerivedStatus:
    _require_aware(now)
    if submission is not None and submission.status == SubmissionStatus.SUBMITTED:
        return DerivedStatus.SUBMITTED
    if task.due_at is not None and task.due_at < now and submission is None:
        return DerivedStatus.OVERDUE
    return DerivedStatus.PENDING


def is_overdue(due_at: Optional[datetime], now: datetime) -> bool:
    _require_aware(now)
    return due_at is not None and due_at < now


@dataclass(frozen=True)
class TaskView:
    task: Task
    submission: Optional[Submission]
    status: DerivedStatus


def build_task_views(
    tasks: Iterable[Task],
    submissions: Iterable[Submission],
    user_id: str,
    now: datetime,
) -> List[TaskView]:
    """Join tasks with the user's own submissions and derive each status.

    Submissions of other users are ignored; order of `tasks` is preserved.
    """
    own: Dict[str, Submission] = {}
    for sub in submissions:
        if sub.user_id == user_id:
            own[sub.task_id] = sub
    views: List[TaskView] = []
    for task in tasks:
        sub = own.get(task.id)
        views.append(TaskView(task=task, submission=sub, status=derive_status(task, sub, now)))
    return views


def rederive(views: Iterable[TaskView], now: datetime) -> List[TaskView]:
    """Recompute statuses against a new `now` without fetching."""
    return [TaskView(task=v.task, submission=v.submission, status=derive_status(v.task, v.submission, now)) for v in views]


_DAY = 24 * 3600


def format_due_label(due_at: Optional[datetime], now: datetime) -> str:
    """Human label relative to `now`, e.g. "Due tomorrow" or "Due 3 days ago"."""
    _require_aware(now)
    if due_at is None:
        return "No due date"
    diff = (due_at - now).total_seconds()
    if diff <= 0:
        past_days = math.ceil(-diff / _DAY) - 1
        if past_days <= 0:
            return "Due now"
        return "Due yesterday" if past_days == 1 else f"Due {past_days} days ago"
    if diff < _DAY:
        hours = math.ceil(diff / 3600)
        return "Due in 1 hour" if hours == 1 else f"Due in {hours} hours"
    diff_days = math.ceil(diff / _DAY)
    if diff_days == 1:
        return "Due tomorrow"
    if diff_days <= 7:
        return f"Due in {diff_days} days"
    return f"Due {due_at.strftime('%b')} {due_at.day}"


@dataclass(frozen=True)
class TimeRemaining:
    days: int
    hours: int
    minutes: int
    is_overdue: bool

    def label(self) -> str:
        if self.is_overdue:
            if self.days > 0:
                return f"{self.days} day{'s' if self.days != 1 else ''} overdue"
            return f"{self.hours} hour{'s' if self.hours != 1 else ''} overdue"
        if self.days > 0:
            return f"{self.days} day{'s' if self.days != 1 else ''} left"
        if self.hours > 0:
            return f"{self.hours} hour{'s' if self.hours != 1 else ''} left"
        return f"{self.minutes} minute{'s' if self.minutes != 1 else ''} left"


def time_remaining(due_at: datetime, now: datetime) -> TimeRemaining:
    _require_aware(now)
    delta: timedelta = due_at - now
    seconds = int(delta.total_seconds())
    overdue = seconds < 0
    seconds = abs(seconds)
    days, rest = divmod(seconds, _DAY)
    hours, rest = divmod(rest, 3600)
    return TimeRemaining(days=days, hours=hours, minutes=rest // 60, is_overdue=overdue)


__all__ = [
    "TaskView",
    "TimeRemaining",
    "build_task_views",
    "derive_status",
    "format_due_label",
    "is_overdue",
    "rederive",
    "time_remaining",
]
