"""
Pure reducers over a fetched (tasks x submissions x principals) snapshot.

Why:
    Dashboards compute every statistic from the snapshot they already hold;
    nothing is aggregated server-side. Keeping these reducers pure makes them
    idempotent and trivially testable.

Numeric semantics:
    - Rates are integer percentages rounded half-up and clamped to 0..100.
    - A zero denominator yields 0, never an exception.
    - "Students" means active principals with the member role; callers pass
      the principals of the section in scope.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List, Optional, Sequence, Set

from identity_access.domain import Role

from .domain import (
    DerivedStatus,
    Principal,
    Routine,
    Submission,
    SubmissionStatus,
    Task,
    TaskCategory,
    category_of,
)
from .status import TaskView


def round_percent(numerator: float, denominator: float) -> int:
    if not denominator:
        return 0
    value = Decimal(str(numerator)) * 100 / Decimal(str(denominator))
    pct = int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return max(0, min(100, pct))


def active_students(principals: Iterable[Principal]) -> List[Principal]:
    return [p for p in principals if p.role == Role.MEMBER and p.is_active]


def _submitted_by_task(submissions: Iterable[Submission], student_ids: Set[str]) -> Dict[str, Set[str]]:
    done: Dict[str, Set[str]] = {}
    for sub in submissions:
        if sub.status == SubmissionStatus.SUBMITTED and sub.user_id in student_ids:
            done.setdefault(sub.task_id, set()).add(sub.user_id)
    return done


def completion_rate(
    tasks: Sequence[Task],
    submissions: Iterable[Submission],
    principals: Iterable[Principal],
    *,
    mode: str = "average",
) -> int:
    """Share of (student, task) pairs with a submitted submission.

    `mode="average"` averages the per-task rates; `mode="pooled"` divides the
    total of distinct submitted pairs by `students x tasks`.
    """
    if mode not in {"average", "pooled"}:
        raise ValueError("invalid_mode")
    students = {p.id for p in active_students(principals)}
    if not students or not tasks:
        return 0
    done = _submitted_by_task(submissions, students)
    if mode == "pooled":
        total_done = sum(len(done.get(t.id, ())) for t in tasks)
        return round_percent(total_done, len(students) * len(tasks))
    per_task = [len(done.get(t.id, ())) / len(students) for t in tasks]
    return round_percent(sum(per_task), len(per_task))


def category_histogram(tasks: Iterable[Task]) -> Dict[str, int]:
    counts: Dict[str, int] = {c.value: 0 for c in TaskCategory}
    for task in tasks:
        counts[category_of(task.category).value] += 1
    return counts


@dataclass(frozen=True)
class PerformanceBuckets:
    excellent: int = 0
    good: int = 0
    needs_improvement: int = 0

    @property
    def total(self) -> int:
        return self.excellent + self.good + self.needs_improvement


def performance_buckets(submissions: Iterable[Submission]) -> PerformanceBuckets:
    grades: Dict[str, List[int]] = {}
    for sub in submissions:
        if sub.grade is not None:
            grades.setdefault(sub.user_id, []).append(sub.grade)
    excellent = good = needs = 0
    for values in grades.values():
        mean = sum(values) / len(values)
        if mean >= 85:
            excellent += 1
        elif mean >= 70:
            good += 1
        else:
            needs += 1
    return PerformanceBuckets(excellent=excellent, good=good, needs_improvement=needs)


def performance_rate(buckets: PerformanceBuckets) -> int:
    return round_percent(buckets.excellent, buckets.total)


@dataclass(frozen=True)
class TrendPoint:
    date: str
    label: str
    submissions: int


def trend_series(submissions: Iterable[Submission], now: datetime, *, days: int = 7) -> List[TrendPoint]:
    """Daily submission counts for the trailing window ending on `now`'s day.

    Day strings come from `now` in its own offset; each submission is matched
    by the date prefix of its stored `submitted_at` text.
    """
    if now.tzinfo is None:
        raise ValueError("naive_now")
    prefixes: Dict[str, int] = {}
    for sub in submissions:
        raw = sub.submitted_at_raw
        if raw:
            prefixes[raw[:10]] = prefixes.get(raw[:10], 0) + 1
    points: List[TrendPoint] = []
    for offset in range(days - 1, -1, -1):
        day = (now - timedelta(days=offset)).date()
        key = day.isoformat()
        points.append(TrendPoint(date=key, label=day.strftime("%a"), submissions=prefixes.get(key, 0)))
    return points


@dataclass(frozen=True)
class TaskBreakdown:
    completed: int = 0
    pending: int = 0
    overdue: int = 0


def task_completion_breakdown(
    tasks: Iterable[Task],
    submissions: Iterable[Submission],
    principals: Iterable[Principal],
    now: datetime,
) -> TaskBreakdown:
    """A task is completed once every active student submitted it."""
    students = {p.id for p in active_students(principals)}
    done = _submitted_by_task(submissions, students)
    completed = pending = overdue = 0
    for task in tasks:
        if students and len(done.get(task.id, ())) == len(students):
            completed += 1
        elif task.due_at is not None and task.due_at < now:
            overdue += 1
        else:
            pending += 1
    return TaskBreakdown(completed=completed, pending=pending, overdue=overdue)


@dataclass(frozen=True)
class StudentStats:
    total: int = 0
    pending: int = 0
    submitted: int = 0
    overdue: int = 0


def student_task_stats(views: Iterable[TaskView]) -> StudentStats:
    counts = {s: 0 for s in DerivedStatus}
    total = 0
    for view in views:
        counts[view.status] += 1
        total += 1
    return StudentStats(
        total=total,
        pending=counts[DerivedStatus.PENDING],
        submitted=counts[DerivedStatus.SUBMITTED],
        overdue=counts[DerivedStatus.OVERDUE],
    )


@dataclass(frozen=True)
class MemberStats:
    user_id: str
    completed: int
    total: int
    completion_rate: int


def member_stats(principal: Principal, submissions: Iterable[Submission]) -> MemberStats:
    own = [s for s in submissions if s.user_id == principal.id]
    completed = sum(1 for s in own if s.status == SubmissionStatus.SUBMITTED)
    return MemberStats(
        user_id=principal.id,
        completed=completed,
        total=len(own),
        completion_rate=round_percent(completed, len(own)),
    )


@dataclass(frozen=True)
class AdminOverview:
    total_students: int
    active_tasks: int
    pending_submissions: int
    completion_rate: int
    total_routines: int
    upcoming_deadlines: List[Task] = field(default_factory=list)


def admin_overview(
    tasks: Sequence[Task],
    submissions: Iterable[Submission],
    principals: Iterable[Principal],
    routines: Iterable[Routine],
    now: datetime,
    *,
    window_days: int = 7,
) -> AdminOverview:
    """Section-admin summary; completion uses the pooled denominator."""
    subs = list(submissions)
    students = active_students(principals)
    student_ids = {p.id for p in students}
    done = _submitted_by_task(subs, student_ids)
    published = [t for t in tasks if t.is_published]
    pending = sum(max(0, len(student_ids) - len(done.get(t.id, ()))) for t in published)
    horizon = now + timedelta(days=window_days)
    upcoming = sorted(
        (t for t in published if t.due_at is not None and now <= t.due_at <= horizon),
        key=lambda t: t.due_at,
    )
    return AdminOverview(
        total_students=len(students),
        active_tasks=len(published),
        pending_submissions=pending,
        completion_rate=completion_rate(published, subs, students, mode="pooled"),
        total_routines=sum(1 for r in routines if r.is_active),
        upcoming_deadlines=upcoming,
    )


@dataclass(frozen=True)
class SectionAnalytics:
    total_tasks: int
    breakdown: TaskBreakdown
    completion_rate: int
    categories: Dict[str, int]
    performance: PerformanceBuckets
    performance_rate: int
    trend: List[TrendPoint]


_PERIODS = {"week": timedelta(days=7), "month": timedelta(days=30), "semester": timedelta(days=120)}


def period_start(period: str, now: datetime) -> datetime:
    try:
        return now - _PERIODS[period]
    except KeyError as exc:
        raise ValueError("invalid_period") from exc


def section_analytics(
    tasks: Sequence[Task],
    submissions: Sequence[Submission],
    principals: Sequence[Principal],
    now: datetime,
    *,
    period: Optional[str] = None,
) -> SectionAnalytics:
    if period is not None:
        start = period_start(period, now)
        tasks = [t for t in tasks if t.created_at is None or t.created_at >= start]
    task_ids = {t.id for t in tasks}
    subs = [s for s in submissions if s.task_id in task_ids]
    breakdown = task_completion_breakdown(tasks, subs, principals, now)
    buckets = performance_buckets(subs)
    return SectionAnalytics(
        total_tasks=len(tasks),
        breakdown=breakdown,
        completion_rate=round_percent(breakdown.completed, len(tasks)),
        categories=category_histogram(tasks),
        performance=buckets,
        performance_rate=performance_rate(buckets),
        trend=trend_series(subs, now),
    )


@dataclass(frozen=True)
class SystemOverview:
    total_users: int
    active_users: int
    departments: int
    sections: int
    total_tasks: int
    active_tasks: int
    completed_submissions: int
    pending_approvals: int
    health: int


def pending_approvals(principals: Iterable[Principal]) -> List[Principal]:
    return [p for p in principals if p.is_pending_approval]


def system_health(active_users: int, total_users: int, active_tasks: int, total_tasks: int, completed: int) -> int:
    """Weighted activity score, floored at 70 and capped at 100."""
    user_activity = active_users / max(total_users, 1) * 20
    task_activity = active_tasks / max(total_tasks, 1) * 20
    submission_rate = completed / max(total_tasks * 10, 1) * 20
    score = user_activity + task_activity + submission_rate
    return int(round(min(100.0, max(70.0, score))))


def system_overview(
    principals: Sequence[Principal],
    tasks: Sequence[Task],
    submissions: Iterable[Submission],
    *,
    departments: int,
    sections: int,
) -> SystemOverview:
    active = sum(1 for p in principals if p.is_active)
    published = sum(1 for t in tasks if t.is_published)
    completed = sum(1 for s in submissions if s.status == SubmissionStatus.SUBMITTED)
    return SystemOverview(
        total_users=len(principals),
        active_users=active,
        departments=departments,
        sections=sections,
        total_tasks=len(tasks),
        active_tasks=published,
        completed_submissions=completed,
        pending_approvals=len(pending_approvals(principals)),
        health=system_health(active, len(principals), published, len(tasks), completed),
    )


@dataclass(frozen=True)
class ActivityItem:
    kind: str
    ref_id: str
    title: str
    at: datetime


def recent_activity(
    tasks: Iterable[Task],
    submissions: Iterable[Submission],
    principals: Iterable[Principal],
    now: datetime,
    *,
    days: int = 7,
    limit: int = 15,
) -> List[ActivityItem]:
    """Newest-first feed of submissions, new tasks and new members in the window."""
    since = now - timedelta(days=days)
    titles: Dict[str, str] = {}
    items: List[ActivityItem] = []
    for task in tasks:
        titles[task.id] = task.title
        if task.created_at is not None and task.created_at >= since:
            items.append(ActivityItem(kind="task_created", ref_id=task.id, title=task.title, at=task.created_at))
    for sub in submissions:
        if sub.submitted_at is not None and sub.submitted_at >= since:
            title = titles.get(sub.task_id, "")
            items.append(ActivityItem(kind="submission", ref_id=sub.id, title=title, at=sub.submitted_at))
    for p in principals:
        if p.created_at is not None and p.created_at >= since:
            items.append(ActivityItem(kind="member_joined", ref_id=p.id, title=p.name, at=p.created_at))
    items.sort(key=lambda item: item.at, reverse=True)
    return items[:limit]


__all__ = [
    "ActivityItem",
    "AdminOverview",
    "MemberStats",
    "PerformanceBuckets",
    "SectionAnalytics",
    "StudentStats",
    "SystemOverview",
    "TaskBreakdown",
    "TrendPoint",
    "active_students",
    "admin_overview",
    "category_histogram",
    "completion_rate",
    "member_stats",
    "pending_approvals",
    "performance_buckets",
    "performance_rate",
    "recent_activity",
    "period_start",
    "round_percent",
    "section_analytics",
    "student_task_stats",
    "system_health",
    "system_overview",
    "task_completion_breakdown",
    "trend_series",
]
