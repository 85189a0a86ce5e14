"""
In-memory tracking repository for development and tests.

Why:
    Lets the web adapter and the live view run without Postgres. Rows are
    kept exactly as the store would hold them (wire names) and every write is
    published to an `InMemoryChangeFeed`, so live views see the same events
    they would receive from the real feed.

Behavior:
    - Submissions are unique per (task_id, user_id); a second save updates the
      existing row. Concurrent writers are last-write-wins.
    - Deleting a task cascades to its submissions.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence
from uuid import uuid4

from .change_feed import InMemoryChangeFeed
from .domain import (
    Batch,
    Department,
    OrgTree,
    Principal,
    Routine,
    Section,
    Submission,
    Task,
    batch_from_row,
    department_from_row,
    iso,
    principal_from_row,
    routine_from_row,
    section_from_row,
    submission_from_row,
    task_from_row,
)
from .ports import (
    TOPIC_ROUTINES,
    TOPIC_SUBMISSIONS,
    TOPIC_TASKS,
    TOPIC_USERS,
    ChangeEvent,
    TaskQuery,
    _UNSET,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _value(v: Any) -> Any:
    # Enums are stored by value, datetimes as ISO text.
    if isinstance(v, datetime):
        return iso(v)
    return getattr(v, "value", v)


class InMemoryTrackingRepo:
    def __init__(
        self,
        feed: Optional[InMemoryChangeFeed] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.feed = feed or InMemoryChangeFeed()
        self.clock = clock
        self.users: Dict[str, dict] = {}
        self.tasks: Dict[str, dict] = {}
        self.submissions: Dict[str, dict] = {}
        self.routines: Dict[str, dict] = {}
        self.departments: Dict[str, dict] = {}
        self.batches: Dict[str, dict] = {}
        self.sections: Dict[str, dict] = {}

    # --- helpers -----------------------------------------------------------
    def _emit(self, event: str, table: str, row: dict) -> None:
        self.feed.publish(ChangeEvent(event=event, table=table, row=dict(row)))

    def _now_iso(self) -> str:
        return iso(self.clock()) or ""

    def _submission(self, row: dict) -> Submission:
        task = self.tasks.get(row["task_id"])
        merged = dict(row)
        merged["section_id"] = task["section_id"] if task else None
        return submission_from_row(merged)

    # --- principals ----------------------------------------------------------
    def add_principal(self, **fields: Any) -> Principal:
        row = {k: _value(v) for k, v in fields.items()}
        row.setdefault("id", str(uuid4()))
        row.setdefault("is_active", True)
        row.setdefault("created_at", self._now_iso())
        row.setdefault("name", row.get("email", ""))
        self.users[row["id"]] = row
        self._emit("insert", TOPIC_USERS, row)
        return principal_from_row(row)

    def get_principal(self, user_id: str) -> Optional[Principal]:
        row = self.users.get(user_id)
        return principal_from_row(row) if row else None

    def list_principals(self, *, section_id: Optional[str] = None) -> List[Principal]:
        rows = [r for r in self.users.values() if section_id is None or r.get("section_id") == section_id]
        rows.sort(key=lambda r: (r.get("name") or "").lower())
        return [principal_from_row(r) for r in rows]

    def update_principal(self, user_id, *, role=_UNSET, is_active=_UNSET, section_id=_UNSET, batch_id=_UNSET):
        row = self.users.get(user_id)
        if row is None:
            return None
        if role is not _UNSET:
            row["role"] = _value(role)
        if is_active is not _UNSET:
            row["is_active"] = bool(is_active)
        if section_id is not _UNSET:
            row["section_id"] = section_id
        if batch_id is not _UNSET:
            row["batch_id"] = batch_id
        row["updated_at"] = self._now_iso()
        self._emit("update", TOPIC_USERS, row)
        return principal_from_row(row)

    def delete_principal(self, user_id: str) -> bool:
        row = self.users.pop(user_id, None)
        if row is None:
            return False
        self._emit("delete", TOPIC_USERS, {"id": user_id})
        return True

    # --- tasks -----------------------------------------------------------------
    def list_tasks(self, query: TaskQuery) -> List[Task]:
        tasks = [task_from_row(r) for r in self.tasks.values()]
        tasks = [t for t in tasks if query.matches(t)]
        # Newest first, matching the dashboard order.
        tasks.sort(key=lambda t: t.created_at or datetime.min.replace(tzinfo=timezone.utc), reverse=True)
        return tasks

    def get_task(self, task_id: str) -> Optional[Task]:
        row = self.tasks.get(task_id)
        return task_from_row(row) if row else None

    def create_task(self, *, section_id, created_by, title, description, category, priority, due_at, is_published):
        now = self._now_iso()
        row = {
            "id": str(uuid4()),
            "title": title,
            "description": description,
            "category": _value(category),
            "priority": _value(priority),
            "due_date": iso(due_at),
            "section_id": section_id,
            "created_by": created_by,
            "is_published": bool(is_published),
            "published_at": now if is_published else None,
            "created_at": now,
            "updated_at": now,
        }
        self.tasks[row["id"]] = row
        self._emit("insert", TOPIC_TASKS, row)
        return task_from_row(row)

    def update_task(self, task_id: str, **fields: Any) -> Optional[Task]:
        row = self.tasks.get(task_id)
        if row is None:
            return None
        for key, value in fields.items():
            column = "due_date" if key == "due_at" else key
            row[column] = _value(value)
        row["updated_at"] = self._now_iso()
        self._emit("update", TOPIC_TASKS, row)
        return task_from_row(row)

    def delete_task(self, task_id: str) -> bool:
        row = self.tasks.pop(task_id, None)
        if row is None:
            return False
        # Cascade like the foreign key does; each removed submission publishes its own delete.
        for sid in [sid for sid, s in self.submissions.items() if s["task_id"] == task_id]:
            self.submissions.pop(sid, None)
            self._emit("delete", TOPIC_SUBMISSIONS, {"id": sid, "task_id": task_id})
        self._emit("delete", TOPIC_TASKS, {"id": task_id, "section_id": row["section_id"]})
        return True

    # --- submissions -------------------------------------------------------------
    def list_submissions(
        self,
        *,
        task_ids: Optional[Sequence[str]] = None,
        user_id: Optional[str] = None,
        section_id: Optional[str] = None,
    ) -> List[Submission]:
        wanted = set(task_ids) if task_ids is not None else None
        out: List[Submission] = []
        for row in self.submissions.values():
            if wanted is not None and row["task_id"] not in wanted:
                continue
            if user_id is not None and row["user_id"] != user_id:
                continue
            sub = self._submission(row)
            if section_id is not None and sub.section_id != section_id:
                continue
            out.append(sub)
        return out

    def get_submission(self, submission_id: str) -> Optional[Submission]:
        row = self.submissions.get(submission_id)
        return self._submission(row) if row else None

    def upsert_submission(self, task_id, user_id, *, body, status, submitted_at):
        now = self._now_iso()
        existing = next(
            (r for r in self.submissions.values() if r["task_id"] == task_id and r["user_id"] == user_id),
            None,
        )
        if existing is None:
            row = {
                "id": str(uuid4()),
                "task_id": task_id,
                "user_id": user_id,
                "created_at": now,
            }
            self.submissions[row["id"]] = row
            event = "insert"
        else:
            row = existing
            event = "update"
        row.update(
            {
                "status": _value(status),
                "submission_text": body,
                "submitted_at": iso(submitted_at),
                "updated_at": now,
            }
        )
        self._emit(event, TOPIC_SUBMISSIONS, row)
        return self._submission(row)

    def update_submission(self, submission_id: str, **fields: Any) -> Optional[Submission]:
        row = self.submissions.get(submission_id)
        if row is None:
            return None
        for key, value in fields.items():
            row[key] = _value(value)
        row["updated_at"] = self._now_iso()
        self._emit("update", TOPIC_SUBMISSIONS, row)
        return self._submission(row)

    # --- routines ------------------------------------------------------------------
    def list_routines(self, *, section_id: Optional[str] = None, include_inactive: bool = False) -> List[Routine]:
        rows = [
            r
            for r in self.routines.values()
            if (section_id is None or r["section_id"] == section_id) and (include_inactive or r.get("is_active", True))
        ]
        rows.sort(key=lambda r: (int(r["day_of_week"]), r["start_time"]))
        return [routine_from_row(r) for r in rows]

    def get_routine(self, routine_id: str) -> Optional[Routine]:
        row = self.routines.get(routine_id)
        return routine_from_row(row) if row else None

    def create_routine(self, **fields: Any) -> Routine:
        row = {k: _value(v) for k, v in fields.items()}
        row["id"] = str(uuid4())
        row.setdefault("is_active", True)
        row["created_at"] = self._now_iso()
        self.routines[row["id"]] = row
        self._emit("insert", TOPIC_ROUTINES, row)
        return routine_from_row(row)

    def update_routine(self, routine_id: str, **fields: Any) -> Optional[Routine]:
        row = self.routines.get(routine_id)
        if row is None:
            return None
        for key, value in fields.items():
            row[key] = _value(value)
        self._emit("update", TOPIC_ROUTINES, row)
        return routine_from_row(row)

    # --- org units -------------------------------------------------------------------
    def load_org_tree(self) -> OrgTree:
        return OrgTree(
            departments={k: department_from_row(r) for k, r in self.departments.items()},
            batches={k: batch_from_row(r) for k, r in self.batches.items()},
            sections={k: section_from_row(r) for k, r in self.sections.items()},
        )

    def create_department(self, *, name: str, code: str, description: Optional[str] = None) -> Department:
        row = {"id": str(uuid4()), "name": name, "code": code, "description": description}
        self.departments[row["id"]] = row
        return department_from_row(row)

    def create_batch(self, *, name: str, department_id: str) -> Batch:
        row = {"id": str(uuid4()), "name": name, "department_id": department_id}
        self.batches[row["id"]] = row
        return batch_from_row(row)

    def create_section(self, *, name: str, batch_id: str) -> Section:
        row = {"id": str(uuid4()), "name": name, "batch_id": batch_id}
        self.sections[row["id"]] = row
        return section_from_row(row)


__all__ = ["InMemoryTrackingRepo"]
