"""JSON shapes for tracking records and view models (camelCase-free, wire names)."""
from __future__ import annotations

from dataclasses import asdict
from datetime import datetime
from typing import Any, Dict, List, Optional

from tracking import aggregates
from tracking.filters import filter_views
from tracking.domain import Batch, Department, OrgTree, Principal, Routine, Submission, Task, iso
from tracking.live_view import ViewModel
from tracking.services.dashboards import CalendarWeek
from tracking.status import TaskView, format_due_label, time_remaining


def task_json(task: Task) -> Dict[str, Any]:
    return {
        "id": task.id,
        "title": task.title,
        "description": task.description,
        "category": task.category.value,
        "priority": task.priority.value,
        "due_at": iso(task.due_at),
        "section_id": task.section_id,
        "created_by": task.created_by,
        "is_published": task.is_published,
        "published_at": iso(task.published_at),
        "created_at": iso(task.created_at),
    }


def submission_json(sub: Submission) -> Dict[str, Any]:
    return {
        "id": sub.id,
        "task_id": sub.task_id,
        "user_id": sub.user_id,
        "status": sub.status.value,
        "body": sub.body,
        "submitted_at": iso(sub.submitted_at),
        "grade": sub.grade,
        "feedback": sub.feedback,
        "reviewed_by": sub.reviewed_by,
        "reviewed_at": iso(sub.reviewed_at),
    }


def principal_json(p: Principal) -> Dict[str, Any]:
    return {
        "id": p.id,
        "name": p.name,
        "email": p.email,
        "role": p.role.value,
        "section_id": p.section_id,
        "batch_id": p.batch_id,
        "department_id": p.department_id,
        "student_id": p.student_id,
        "is_active": p.is_active,
        "pending_approval": p.is_pending_approval,
    }


def routine_json(r: Routine) -> Dict[str, Any]:
    return {
        "id": r.id,
        "title": r.title,
        "description": r.description,
        "section_id": r.section_id,
        "day_of_week": r.day_of_week,
        "start_time": r.start_time,
        "end_time": r.end_time,
        "room": r.room,
        "subject": r.subject,
        "instructor_name": r.instructor_name,
        "is_active": r.is_active,
    }


def org_tree_json(tree: OrgTree) -> Dict[str, Any]:
    def _dep(d: Department) -> Dict[str, Any]:
        return {"id": d.id, "name": d.name, "code": d.code, "description": d.description}

    def _batch(b: Batch) -> Dict[str, Any]:
        return {"id": b.id, "name": b.name, "department_id": b.department_id}

    return {
        "departments": [_dep(d) for d in tree.departments.values()],
        "batches": [_batch(b) for b in tree.batches.values()],
        "sections": [{"id": s.id, "name": s.name, "batch_id": s.batch_id} for s in tree.sections.values()],
    }


def task_view_json(view: TaskView, now: datetime) -> Dict[str, Any]:
    body = task_json(view.task)
    body["status"] = view.status.value
    body["submission"] = submission_json(view.submission) if view.submission else None
    body["due_label"] = format_due_label(view.task.due_at, now)
    body["time_left"] = time_remaining(view.task.due_at, now).label() if view.task.due_at else None
    return body


def view_model_json(model: ViewModel, *, category: Optional[str] = None, status: str = "all") -> Dict[str, Any]:
    now = model.generated_at
    views: List[TaskView] = filter_views(model.views, category=category, status=status)
    return {
        "generated_at": iso(now),
        "stats": asdict(model.stats),
        "categories": dict(model.categories),
        "completion_rate": model.completion_rate,
        "upcoming": [task_view_json(v, now) for v in model.upcoming],
        "tasks": [task_view_json(v, now) for v in views],
    }


def calendar_json(week: CalendarWeek, now: datetime) -> Dict[str, Any]:
    return {
        "week_start": iso(week.start),
        "week_end": iso(week.end),
        "days": [
            {
                "date": d.day.isoformat(),
                "deadlines": [task_view_json(v, now) for v in d.deadlines],
                "routines": [routine_json(r) for r in d.routines],
            }
            for d in week.days
        ],
    }


def admin_overview_json(o: aggregates.AdminOverview) -> Dict[str, Any]:
    return {
        "total_students": o.total_students,
        "active_tasks": o.active_tasks,
        "pending_submissions": o.pending_submissions,
        "completion_rate": o.completion_rate,
        "total_routines": o.total_routines,
        "upcoming_deadlines": [task_json(t) for t in o.upcoming_deadlines],
    }


def analytics_json(a: aggregates.SectionAnalytics) -> Dict[str, Any]:
    return {
        "total_tasks": a.total_tasks,
        "completed_tasks": a.breakdown.completed,
        "pending_tasks": a.breakdown.pending,
        "overdue_tasks": a.breakdown.overdue,
        "completion_rate": a.completion_rate,
        "categories": a.categories,
        "performance": asdict(a.performance),
        "performance_rate": a.performance_rate,
        "trend": [asdict(p) for p in a.trend],
    }


def activity_json(items: List[aggregates.ActivityItem]) -> List[Dict[str, Any]]:
    return [{"kind": i.kind, "ref_id": i.ref_id, "title": i.title, "at": iso(i.at)} for i in items]
