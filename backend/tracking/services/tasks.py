"""Tasks service layer (framework-free use cases).

Why:
    Encapsulates task use cases (list/create/update/publish/delete) so the web
    adapter stays thin and validation is unit-testable without FastAPI.

Behavior:
    - Inputs are normalized before the store is touched; invalid input raises
      `ValueError("invalid_<field>")`.
    - Tasks are always created in the acting section-admin's own section.
    - Publishing stamps `published_at`; unpublishing clears it.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
import logging
from typing import Any, Callable, Dict, List

from identity_access.domain import Role

from ..domain import Priority, Task, TaskCategory
from ..ports import TaskQuery, TrackingRepoProtocol
from ..visibility import Access, ResourceKind, authorize, visible
from .base import normalize_bool, normalize_text, parse_instant_input, resolve_actor, utcnow

logger = logging.getLogger("unitrack.tracking.tasks")

_UNSET = object()


def _normalize_title(value: object) -> str:
    title = normalize_text(value, "title", max_len=100, required=True)
    if title is None:  # pragma: no cover - required=True never yields None
        raise ValueError("invalid_title")
    return title


def _normalize_category(value: object) -> TaskCategory:
    if value is None:
        return TaskCategory.ASSIGNMENT
    if not isinstance(value, str):
        raise ValueError("invalid_category")
    try:
        return TaskCategory(value.strip().lower())
    except ValueError as exc:
        raise ValueError("invalid_category") from exc


def _normalize_priority(value: object) -> Priority:
    if value is None:
        return Priority.MEDIUM
    if not isinstance(value, str):
        raise ValueError("invalid_priority")
    try:
        return Priority(value.strip().lower())
    except ValueError as exc:
        raise ValueError("invalid_priority") from exc


@dataclass
class TasksService:
    """Use cases for section tasks."""

    repo: TrackingRepoProtocol
    clock: Callable[[], datetime] = field(default=utcnow)

    def list_tasks(self, actor_id: str, *, category: object = None) -> List[Task]:
        cat = None if category in (None, "", "all") else _normalize_category(category)
        actor = resolve_actor(self.repo, actor_id)
        if not actor.is_active:
            raise PermissionError("forbidden")
        if actor.role == Role.SUPER_ADMIN:
            query = TaskQuery(category=cat)
        elif actor.section_id is None:
            return []
        elif actor.role == Role.MEMBER:
            query = TaskQuery(section_id=actor.section_id, is_published=True, category=cat)
        else:
            query = TaskQuery(section_id=actor.section_id, category=cat)
        return visible(actor, ResourceKind.TASK, self.repo.list_tasks(query))

    def get_task(self, actor_id: str, task_id: str) -> Task:
        actor = resolve_actor(self.repo, actor_id)
        task = self.repo.get_task(task_id)
        if task is None:
            raise LookupError("task_not_found")
        authorize(actor, ResourceKind.TASK, task, Access.READ)
        return task

    def create_task(
        self,
        actor_id: str,
        *,
        title: object,
        description: object = None,
        category: object = None,
        priority: object = None,
        due_at: object = None,
        is_published: object = False,
    ) -> Task:
        clean_title = _normalize_title(title)
        clean_desc = normalize_text(description, "description", max_len=5000)
        cat = _normalize_category(category)
        prio = _normalize_priority(priority)
        due = parse_instant_input(due_at, "due_at")
        publish = normalize_bool(is_published, "is_published")
        actor = resolve_actor(self.repo, actor_id)
        if actor.section_id is None:
            raise PermissionError("no_section")
        draft = Task(
            id="",
            title=clean_title,
            section_id=actor.section_id,
            created_by=actor.id,
            category=cat,
            priority=prio,
            is_published=publish,
        )
        authorize(actor, ResourceKind.TASK, draft, Access.WRITE)
        task = self.repo.create_task(
            section_id=actor.section_id,
            created_by=actor.id,
            title=clean_title,
            description=clean_desc,
            category=cat.value,
            priority=prio.value,
            due_at=due,
            is_published=publish,
        )
        logger.info("task created id=%s section=%s published=%s", task.id, task.section_id, task.is_published)
        return task

    def update_task(
        self,
        actor_id: str,
        task_id: str,
        *,
        title: object = _UNSET,
        description: object = _UNSET,
        category: object = _UNSET,
        priority: object = _UNSET,
        due_at: object = _UNSET,
    ) -> Task:
        changes: Dict[str, Any] = {}
        if title is not _UNSET:
            changes["title"] = _normalize_title(title)
        if description is not _UNSET:
            changes["description"] = normalize_text(description, "description", max_len=5000)
        if category is not _UNSET:
            changes["category"] = _normalize_category(category).value
        if priority is not _UNSET:
            changes["priority"] = _normalize_priority(priority).value
        if due_at is not _UNSET:
            changes["due_at"] = parse_instant_input(due_at, "due_at")
        task = self._load_writable(actor_id, task_id)
        if not changes:
            return task
        updated = self.repo.update_task(task.id, **changes)
        if updated is None:
            raise LookupError("task_not_found")
        return updated

    def set_published(self, actor_id: str, task_id: str, published: object) -> Task:
        flag = normalize_bool(published, "is_published")
        task = self._load_writable(actor_id, task_id)
        updated = self.repo.update_task(
            task.id,
            is_published=flag,
            published_at=self.clock() if flag else None,
        )
        if updated is None:
            raise LookupError("task_not_found")
        logger.info("task %s id=%s", "published" if flag else "unpublished", task.id)
        return updated

    def delete_task(self, actor_id: str, task_id: str) -> None:
        task = self._load_writable(actor_id, task_id)
        if not self.repo.delete_task(task.id):
            raise LookupError("task_not_found")
        logger.info("task deleted id=%s", task.id)

    def _load_writable(self, actor_id: str, task_id: str) -> Task:
        actor = resolve_actor(self.repo, actor_id)
        task = self.repo.get_task(task_id)
        if task is None:
            raise LookupError("task_not_found")
        authorize(actor, ResourceKind.TASK, task, Access.WRITE)
        return task


__all__ = ["TasksService"]
