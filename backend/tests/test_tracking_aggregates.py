"""Aggregator reducers: rates, histograms, buckets, trends, health."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from identity_access.domain import Role
from tracking.aggregates import (
    admin_overview,
    category_histogram,
    completion_rate,
    member_stats,
    performance_buckets,
    performance_rate,
    recent_activity,
    round_percent,
    section_analytics,
    student_task_stats,
    system_health,
    system_overview,
    task_completion_breakdown,
    trend_series,
)
from tracking.domain import (
    DerivedStatus,
    Principal,
    Routine,
    Submission,
    SubmissionStatus,
    Task,
    TaskCategory,
    iso,
)
from tracking.status import build_task_views

NOW = datetime(2025, 3, 12, 10, 0, tzinfo=timezone.utc)


def _students(n: int, section: str = "X") -> list[Principal]:
    return [
        Principal(id=f"s{i}", email=f"s{i}@example.edu", name=f"Student {i}", role=Role.MEMBER, section_id=section)
        for i in range(n)
    ]


def _task(tid: str, **kw) -> Task:
    kw.setdefault("is_published", True)
    return Task(id=tid, title=tid, section_id="X", created_by="ax", **kw)


def _sub(task_id: str, user_id: str, status=SubmissionStatus.SUBMITTED, *, at: datetime | None = None, grade=None):
    at = at or NOW
    return Submission(
        id=f"{task_id}-{user_id}",
        task_id=task_id,
        user_id=user_id,
        status=status,
        submitted_at=at,
        submitted_at_raw=iso(at),
        grade=grade,
    )


def test_ten_students_six_submitted_is_sixty_percent():
    students = _students(10)
    subs = [_sub("t1", s.id) for s in students[:6]]
    assert completion_rate([_task("t1")], subs, students) == 60
    assert completion_rate([_task("t1")], subs, students, mode="pooled") == 60


def test_histogram_over_zero_tasks_lists_every_category():
    hist = category_histogram([])
    assert set(hist) == {c.value for c in TaskCategory}
    assert len(hist) == 14
    assert all(v == 0 for v in hist.values())


def test_histogram_counts_unknown_category_as_others():
    hist = category_histogram([_task("a", category=TaskCategory.QUIZ), _task("b", category="mystery")])  # type: ignore[arg-type]
    assert hist["quiz"] == 1
    assert hist["others"] == 1


def test_completion_rate_is_zero_without_students_or_tasks():
    assert completion_rate([_task("t1")], [], []) == 0
    assert completion_rate([], [], _students(3)) == 0


def test_completion_rate_ignores_drafts_inactive_and_non_students():
    students = _students(2)
    inactive = Principal(id="gone", email="g@example.edu", name="Gone", role=Role.MEMBER, is_active=False)
    admin = Principal(id="ax", email="a@example.edu", name="Admin", role=Role.SECTION_ADMIN)
    subs = [
        _sub("t1", "s0"),
        _sub("t1", "s1", status=SubmissionStatus.PENDING),
        _sub("t1", "gone"),
        _sub("t1", "ax"),
    ]
    assert completion_rate([_task("t1")], subs, students + [inactive, admin]) == 50


def test_pooled_and_average_differ_only_in_rounding_path():
    students = _students(3)
    tasks = [_task("t1"), _task("t2")]
    subs = [_sub("t1", "s0"), _sub("t1", "s1"), _sub("t2", "s0")]
    # average: (2/3 + 1/3) / 2 = 0.5 ; pooled: 3 / 6 = 0.5
    assert completion_rate(tasks, subs, students) == 50
    assert completion_rate(tasks, subs, students, mode="pooled") == 50


def test_completion_rate_rejects_unknown_mode():
    with pytest.raises(ValueError):
        completion_rate([_task("t1")], [], _students(1), mode="median")


def test_aggregates_are_idempotent():
    students = _students(4)
    tasks = [_task("t1"), _task("t2")]
    subs = [_sub("t1", "s0"), _sub("t2", "s1"), _sub("t2", "s2")]
    first = section_analytics(tasks, subs, students, NOW)
    second = section_analytics(tasks, subs, students, NOW)
    assert first == second


@pytest.mark.parametrize("num,den,expected", [(1, 3, 33), (2, 3, 67), (1, 8, 13), (5, 0, 0), (7, 5, 100)])
def test_round_percent_half_up_and_clamped(num, den, expected):
    assert round_percent(num, den) == expected


def test_performance_buckets_use_mean_grade_per_student():
    subs = [
        _sub("t1", "a", grade=90),
        _sub("t2", "a", grade=80),  # mean 85 -> excellent
        _sub("t1", "b", grade=70),  # good
        _sub("t1", "c", grade=69),  # needs improvement
        _sub("t1", "d"),  # ungraded, ignored
    ]
    buckets = performance_buckets(subs)
    assert (buckets.excellent, buckets.good, buckets.needs_improvement) == (1, 1, 1)
    assert performance_rate(buckets) == 33


def test_performance_rate_zero_without_grades():
    assert performance_rate(performance_buckets([])) == 0


def test_trend_series_counts_per_day_for_trailing_week():
    subs = [
        _sub("t1", "a", at=NOW),
        _sub("t1", "b", at=NOW - timedelta(hours=2)),
        _sub("t1", "c", at=NOW - timedelta(days=3)),
        _sub("t1", "d", at=NOW - timedelta(days=9)),
    ]
    points = trend_series(subs, NOW)
    assert len(points) == 7
    assert points[-1].date == "2025-03-12"
    assert points[-1].label == "Wed"
    assert points[-1].submissions == 2
    assert points[0].date == "2025-03-06"
    assert sum(p.submissions for p in points) == 3


def test_trend_series_rejects_naive_now():
    with pytest.raises(ValueError):
        trend_series([], datetime(2025, 3, 12))


def test_breakdown_completed_pending_overdue():
    students = _students(2)
    tasks = [
        _task("done", due_at=NOW - timedelta(days=1)),
        _task("late", due_at=NOW - timedelta(days=1)),
        _task("open", due_at=NOW + timedelta(days=1)),
        _task("nodue"),
    ]
    subs = [_sub("done", "s0"), _sub("done", "s1"), _sub("late", "s0")]
    breakdown = task_completion_breakdown(tasks, subs, students, NOW)
    assert (breakdown.completed, breakdown.pending, breakdown.overdue) == (1, 2, 1)


def test_student_task_stats_counts_derived_statuses():
    tasks = [
        _task("a", due_at=NOW - timedelta(days=1)),
        _task("b", due_at=NOW + timedelta(days=1)),
        _task("c"),
    ]
    views = build_task_views(tasks, [_sub("c", "me")], "me", NOW)
    stats = student_task_stats(views)
    assert (stats.total, stats.pending, stats.submitted, stats.overdue) == (3, 1, 1, 1)
    assert views[0].status == DerivedStatus.OVERDUE


def test_member_stats():
    me = _students(1)[0]
    subs = [_sub("t1", me.id), _sub("t2", me.id, status=SubmissionStatus.PENDING), _sub("t1", "other")]
    stats = member_stats(me, subs)
    assert (stats.completed, stats.total, stats.completion_rate) == (1, 2, 50)


def test_admin_overview_pending_and_upcoming():
    students = _students(3)
    soon = _task("soon", due_at=NOW + timedelta(days=2))
    later = _task("later", due_at=NOW + timedelta(days=30))
    draft = _task("draft", is_published=False, due_at=NOW + timedelta(days=1))
    subs = [_sub("soon", "s0"), _sub("later", "s0"), _sub("later", "s1")]
    routines = [
        Routine(id="r1", title="Math", section_id="X", day_of_week=1, start_time="09:00", end_time="10:00", created_by="ax"),
        Routine(
            id="r2", title="Old", section_id="X", day_of_week=2, start_time="09:00", end_time="10:00", created_by="ax", is_active=False
        ),
    ]
    overview = admin_overview([soon, later, draft], subs, students, routines, NOW)
    assert overview.total_students == 3
    assert overview.active_tasks == 2
    assert overview.pending_submissions == 3
    assert overview.completion_rate == 50
    assert overview.total_routines == 1
    assert [t.id for t in overview.upcoming_deadlines] == ["soon"]


def test_section_analytics_period_filter_and_invalid_period():
    students = _students(1)
    old = _task("old", created_at=NOW - timedelta(days=40))
    new = _task("new", created_at=NOW - timedelta(days=2))
    analytics = section_analytics([old, new], [_sub("new", "s0")], students, NOW, period="month")
    assert analytics.total_tasks == 1
    assert analytics.completion_rate == 100
    with pytest.raises(ValueError) as exc:
        section_analytics([old], [], students, NOW, period="decade")
    assert str(exc.value) == "invalid_period"


@pytest.mark.parametrize(
    "args",
    [(0, 0, 0, 0, 0), (10, 10, 5, 5, 50), (1, 100, 0, 100, 0), (100, 100, 100, 100, 100000)],
)
def test_system_health_stays_within_bounds(args):
    assert 70 <= system_health(*args) <= 100


def test_system_overview_counts():
    students = _students(2)
    pending = Principal(id="p", email="p@example.edu", name="P", role=Role.SECTION_ADMIN, is_active=False)
    tasks = [_task("t1"), _task("t2", is_published=False)]
    overview = system_overview(students + [pending], tasks, [_sub("t1", "s0")], departments=1, sections=2)
    assert overview.total_users == 3
    assert overview.active_users == 2
    assert overview.active_tasks == 1
    assert overview.completed_submissions == 1
    assert overview.pending_approvals == 1
    assert overview.health == 70


def test_recent_activity_newest_first_within_window():
    tasks = [_task("fresh", created_at=NOW - timedelta(days=1)), _task("stale", created_at=NOW - timedelta(days=30))]
    subs = [_sub("fresh", "s0", at=NOW - timedelta(hours=1))]
    joined = Principal(
        id="n", email="n@example.edu", name="Newbie", role=Role.MEMBER, created_at=NOW - timedelta(days=2)
    )
    items = recent_activity(tasks, subs, [joined], NOW)
    assert [i.kind for i in items] == ["submission", "task_created", "member_joined"]
    assert items[0].title == "fresh"
    assert recent_activity(tasks, subs, [joined], NOW, limit=1)[0].kind == "submission"
