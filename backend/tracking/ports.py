"""
Ports to the external entity store and change feed.

Intent:
    Services and the live view depend on these Protocols only. Adapters live in
    `repo_memory.py` / `repo_db.py` (store) and `change_feed.py` (feed), and
    tests supply their own fakes.

Behavior:
    - Reads return domain dataclasses; writes return the stored record.
    - A missing row on update/delete is reported as `None`/`False`, and the
      service layer turns that into `LookupError`.
    - Transient I/O problems surface as `StoreUnavailableError`.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable, List, Mapping, Optional, Protocol, Sequence

from .domain import Batch, Department, OrgTree, Principal, Routine, Section, Submission, Task, TaskCategory

TOPIC_TASKS = "tasks"
TOPIC_SUBMISSIONS = "task_submissions"
TOPIC_USERS = "users"
TOPIC_ROUTINES = "routines"
ALL_TOPICS = frozenset({TOPIC_TASKS, TOPIC_SUBMISSIONS, TOPIC_USERS, TOPIC_ROUTINES})


class StoreUnavailableError(RuntimeError):
    """Transient store or feed failure; safe to retry on the next trigger."""


_UNSET: Any = object()


@dataclass(frozen=True)
class TaskQuery:
    section_id: Optional[str] = None
    is_published: Optional[bool] = None
    category: Optional[TaskCategory] = None
    due_from: Optional[datetime] = None
    due_to: Optional[datetime] = None
    created_by: Optional[str] = None

    def matches(self, task: Task) -> bool:
        if self.section_id is not None and task.section_id != self.section_id:
            return False
        if self.is_published is not None and task.is_published != self.is_published:
            return False
        if self.category is not None and task.category != self.category:
            return False
        if self.created_by is not None and task.created_by != self.created_by:
            return False
        if self.due_from is not None and (task.due_at is None or task.due_at < self.due_from):
            return False
        if self.due_to is not None and (task.due_at is None or task.due_at > self.due_to):
            return False
        return True


@dataclass(frozen=True)
class ChangeEvent:
    event: str  # "insert" | "update" | "delete"
    table: str
    row: Mapping[str, Any] = field(default_factory=dict)


ChangeCallback = Callable[[ChangeEvent], None]


class Subscription(Protocol):
    def close(self) -> None:
        ...


class ChangeFeedProtocol(Protocol):
    def subscribe(self, topics: Iterable[str], callback: ChangeCallback) -> Subscription:
        ...


class TrackingRepoProtocol(Protocol):
    # Principals
    def get_principal(self, user_id: str) -> Optional[Principal]:
        ...

    def list_principals(self, *, section_id: Optional[str] = None) -> List[Principal]:
        ...

    def update_principal(
        self,
        user_id: str,
        *,
        role: Any = _UNSET,
        is_active: Any = _UNSET,
        section_id: Any = _UNSET,
        batch_id: Any = _UNSET,
    ) -> Optional[Principal]:
        ...

    def delete_principal(self, user_id: str) -> bool:
        ...

    # Tasks
    def list_tasks(self, query: TaskQuery) -> List[Task]:
        ...

    def get_task(self, task_id: str) -> Optional[Task]:
        ...

    def create_task(
        self,
        *,
        section_id: str,
        created_by: str,
        title: str,
        description: Optional[str],
        category: str,
        priority: str,
        due_at: Optional[datetime],
        is_published: bool,
    ) -> Task:
        ...

    def update_task(self, task_id: str, **fields: Any) -> Optional[Task]:
        ...

    def delete_task(self, task_id: str) -> bool:
        ...

    # Submissions
    def list_submissions(
        self,
        *,
        task_ids: Optional[Sequence[str]] = None,
        user_id: Optional[str] = None,
        section_id: Optional[str] = None,
    ) -> List[Submission]:
        ...

    def get_submission(self, submission_id: str) -> Optional[Submission]:
        ...

    def upsert_submission(
        self,
        task_id: str,
        user_id: str,
        *,
        body: Optional[str],
        status: str,
        submitted_at: Optional[datetime],
    ) -> Submission:
        ...

    def update_submission(self, submission_id: str, **fields: Any) -> Optional[Submission]:
        ...

    # Routines
    def list_routines(self, *, section_id: Optional[str] = None, include_inactive: bool = False) -> List[Routine]:
        ...

    def get_routine(self, routine_id: str) -> Optional[Routine]:
        ...

    def create_routine(self, **fields: Any) -> Routine:
        ...

    def update_routine(self, routine_id: str, **fields: Any) -> Optional[Routine]:
        ...

    # Org units
    def load_org_tree(self) -> OrgTree:
        ...

    def create_department(self, *, name: str, code: str, description: Optional[str]) -> Department:
        ...

    def create_batch(self, *, name: str, department_id: str) -> Batch:
        ...

    def create_section(self, *, name: str, batch_id: str) -> Section:
        ...


__all__ = [
    "ALL_TOPICS",
    "ChangeCallback",
    "ChangeEvent",
    "ChangeFeedProtocol",
    "StoreUnavailableError",
    "Subscription",
    "TOPIC_ROUTINES",
    "TOPIC_SUBMISSIONS",
    "TOPIC_TASKS",
    "TOPIC_USERS",
    "TaskQuery",
    "TrackingRepoProtocol",
]
