"""
Dashboard queries: role-scoped snapshots and the statistics computed from them.

Intent:
    Each dashboard works on one scoped snapshot fetched in a single pass; all
    statistics are derived from it by the pure reducers in `aggregates`.

Permissions:
    - Members get their section's published tasks and their own submissions.
    - Section-admins get everything in their section.
    - Super-admins get everything.
    - Inactive principals get nothing (`PermissionError`).
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Callable, List, Optional

from identity_access.domain import Role

from .. import aggregates
from ..domain import Principal, Routine, Submission, Task
from ..filters import week_bounds
from ..ports import TaskQuery, TrackingRepoProtocol
from ..status import TaskView, build_task_views
from ..visibility import ResourceKind, visible
from .base import resolve_actor, utcnow


@dataclass(frozen=True)
class Snapshot:
    actor: Principal
    tasks: List[Task]
    submissions: List[Submission]
    principals: List[Principal]
    routines: List[Routine]


@dataclass(frozen=True)
class CalendarDay:
    day: date
    deadlines: List[TaskView]
    routines: List[Routine]


@dataclass(frozen=True)
class CalendarWeek:
    start: datetime
    end: datetime
    days: List[CalendarDay]


@dataclass
class DashboardsService:
    repo: TrackingRepoProtocol
    clock: Callable[[], datetime] = field(default=utcnow)

    def fetch_snapshot(self, actor_id: str) -> Snapshot:
        actor = resolve_actor(self.repo, actor_id)
        if not actor.is_active:
            raise PermissionError("forbidden")
        if actor.role == Role.SUPER_ADMIN:
            tasks = self.repo.list_tasks(TaskQuery())
            submissions = self.repo.list_submissions()
            principals = self.repo.list_principals()
            routines = self.repo.list_routines()
        elif actor.section_id is None:
            tasks, submissions, principals, routines = [], [], [actor], []
        elif actor.role == Role.MEMBER:
            tasks = self.repo.list_tasks(TaskQuery(section_id=actor.section_id, is_published=True))
            submissions = self.repo.list_submissions(user_id=actor.id)
            principals = [actor]
            routines = self.repo.list_routines(section_id=actor.section_id)
        else:
            tasks = self.repo.list_tasks(TaskQuery(section_id=actor.section_id))
            submissions = self.repo.list_submissions(section_id=actor.section_id)
            principals = self.repo.list_principals(section_id=actor.section_id)
            routines = self.repo.list_routines(section_id=actor.section_id)
        return Snapshot(
            actor=actor,
            tasks=visible(actor, ResourceKind.TASK, tasks),
            submissions=visible(actor, ResourceKind.SUBMISSION, submissions),
            principals=visible(actor, ResourceKind.PRINCIPAL, principals),
            routines=visible(actor, ResourceKind.ROUTINE, routines),
        )

    def task_views(self, actor_id: str, now: Optional[datetime] = None) -> List[TaskView]:
        snap = self.fetch_snapshot(actor_id)
        return build_task_views(snap.tasks, snap.submissions, snap.actor.id, now or self.clock())

    def section_overview(
        self, actor_id: str, *, section_id: Optional[str] = None, window_days: int = 7
    ) -> aggregates.AdminOverview:
        snap = self._admin_snapshot(actor_id, section_id)
        return aggregates.admin_overview(
            snap.tasks, snap.submissions, snap.principals, snap.routines, self.clock(), window_days=window_days
        )

    def section_analytics(
        self, actor_id: str, *, section_id: Optional[str] = None, period: Optional[str] = None
    ) -> aggregates.SectionAnalytics:
        snap = self._admin_snapshot(actor_id, section_id)
        published = [t for t in snap.tasks if t.is_published]
        return aggregates.section_analytics(published, snap.submissions, snap.principals, self.clock(), period=period)

    def recent_activity(
        self, actor_id: str, *, section_id: Optional[str] = None, limit: int = 15
    ) -> List[aggregates.ActivityItem]:
        snap = self._admin_snapshot(actor_id, section_id)
        limit = max(1, min(100, int(limit)))
        return aggregates.recent_activity(snap.tasks, snap.submissions, snap.principals, self.clock(), limit=limit)

    def system_overview(self, actor_id: str) -> aggregates.SystemOverview:
        snap = self.fetch_snapshot(actor_id)
        if snap.actor.role != Role.SUPER_ADMIN:
            raise PermissionError("forbidden")
        tree = self.repo.load_org_tree()
        return aggregates.system_overview(
            snap.principals,
            snap.tasks,
            snap.submissions,
            departments=len(tree.departments),
            sections=len(tree.sections),
        )

    def calendar_week(self, actor_id: str, *, week_of: Optional[datetime] = None) -> CalendarWeek:
        """
        Published deadlines and active routine slots of the caller's section,
        laid out over one Sunday-based week.

        Behavior:
            - The week contains `week_of` (default: now); naive values are UTC.
            - Deadlines come from a due-range fetch and carry the caller's
              derived status, soonest first within a day.
            - Routines repeat on their `day_of_week` (0=Sunday) every week.
            - Principals without a section get seven empty days.
        """
        actor = resolve_actor(self.repo, actor_id)
        if not actor.is_active:
            raise PermissionError("forbidden")
        now = self.clock()
        at = week_of or now
        if at.tzinfo is None:
            at = at.replace(tzinfo=timezone.utc)
        start, end = week_bounds(at)
        tasks: List[Task] = []
        submissions: List[Submission] = []
        routines: List[Routine] = []
        if actor.section_id is not None:
            tasks = self.repo.list_tasks(
                TaskQuery(section_id=actor.section_id, is_published=True, due_from=start, due_to=end)
            )
            if tasks:
                submissions = self.repo.list_submissions(task_ids=[t.id for t in tasks], user_id=actor.id)
            routines = self.repo.list_routines(section_id=actor.section_id)
        views = build_task_views(
            visible(actor, ResourceKind.TASK, tasks),
            visible(actor, ResourceKind.SUBMISSION, submissions),
            actor.id,
            now,
        )
        routines = visible(actor, ResourceKind.ROUTINE, routines)
        days: List[CalendarDay] = []
        for offset in range(7):
            day_start = start + timedelta(days=offset)
            day_end = day_start + timedelta(days=1)
            deadlines = [v for v in views if v.task.due_at is not None and day_start <= v.task.due_at < day_end]
            deadlines.sort(key=lambda v: v.task.due_at)  # type: ignore[arg-type,return-value]
            days.append(
                CalendarDay(
                    day=day_start.date(),
                    deadlines=deadlines,
                    routines=[r for r in routines if r.day_of_week == offset],
                )
            )
        return CalendarWeek(start=start, end=end, days=days)

    def _admin_snapshot(self, actor_id: str, section_id: Optional[str] = None) -> Snapshot:
        """Admin snapshot, optionally narrowed to one section.

        Section-admins may only name their own section; super-admins any.
        """
        snap = self.fetch_snapshot(actor_id)
        if snap.actor.role == Role.MEMBER:
            raise PermissionError("forbidden")
        if section_id is None:
            return snap
        if snap.actor.role == Role.SECTION_ADMIN and section_id != snap.actor.section_id:
            raise PermissionError("forbidden")
        tasks = [t for t in snap.tasks if t.section_id == section_id]
        task_ids = {t.id for t in tasks}
        return Snapshot(
            actor=snap.actor,
            tasks=tasks,
            submissions=[s for s in snap.submissions if s.task_id in task_ids],
            principals=[p for p in snap.principals if p.section_id == section_id],
            routines=[r for r in snap.routines if r.section_id == section_id],
        )


__all__ = ["CalendarDay", "CalendarWeek", "DashboardsService", "Snapshot"]
