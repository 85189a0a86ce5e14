"""
Role- and org-scoped visibility for every resource kind.

Why:
    Visibility is decided in one place from the principal's role and section.
    Services call `authorize` before any mutation; list endpoints call
    `visible` on fetched rows. Row-level security in the store is a second
    layer, never a replacement.

Permissions:
    - Member: published tasks of own section; own submissions (write only for
      tasks they can read); active routines of own section; own record.
    - Section-admin (active): tasks/routines of own section (drafts only when
      they created them); read and grade submissions of own section; read
      principals of own section and manage members there.
    - Super-admin: reads everything, writes principals and org units only.
    - Inactive principals: only their own record, read-only.

Invariant:
    The principal passed in must be freshly loaded from the store for the
    current request. Nothing here caches membership.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Callable, Iterable, List

from identity_access.domain import Role

from .domain import Principal, Task


class ResourceKind(str, Enum):
    TASK = "task"
    SUBMISSION = "submission"
    ROUTINE = "routine"
    PRINCIPAL = "principal"
    ORG_UNIT = "org_unit"


class Access(str, Enum):
    READ = "read"
    WRITE = "write"


Predicate = Callable[[Any], bool]


def _nothing(_resource: Any) -> bool:
    return False


def _everything(_resource: Any) -> bool:
    return True


def _task_readable_by_member(principal: Principal, task: Task) -> bool:
    return principal.section_id is not None and task.section_id == principal.section_id and task.is_published


def _task_in_admin_scope(principal: Principal, task: Task) -> bool:
    if principal.section_id is None or task.section_id != principal.section_id:
        return False
    return task.is_published or task.created_by == principal.id


def _member_scope(principal: Principal, kind: ResourceKind, access: Access) -> Predicate:
    if kind == ResourceKind.TASK:
        if access == Access.WRITE:
            return _nothing
        return lambda task: _task_readable_by_member(principal, task)
    if kind == ResourceKind.SUBMISSION:
        # Submissions carry their task's section; writing additionally needs a readable task.
        if access == Access.WRITE:
            return lambda sub: sub.user_id == principal.id and sub.section_id == principal.section_id
        return lambda sub: sub.user_id == principal.id
    if kind == ResourceKind.ROUTINE:
        if access == Access.WRITE:
            return _nothing
        return lambda r: principal.section_id is not None and r.section_id == principal.section_id and r.is_active
    if kind == ResourceKind.PRINCIPAL:
        if access == Access.WRITE:
            return _nothing
        return lambda p: p.id == principal.id
    if kind == ResourceKind.ORG_UNIT:
        return _everything if access == Access.READ else _nothing
    raise ValueError("invalid_resource_kind")


def _section_admin_scope(principal: Principal, kind: ResourceKind, access: Access) -> Predicate:
    section_id = principal.section_id
    if kind == ResourceKind.TASK:
        return lambda task: _task_in_admin_scope(principal, task)
    if kind == ResourceKind.SUBMISSION:
        return lambda sub: section_id is not None and sub.section_id == section_id
    if kind == ResourceKind.ROUTINE:
        return lambda r: section_id is not None and r.section_id == section_id
    if kind == ResourceKind.PRINCIPAL:
        if access == Access.READ:
            return lambda p: p.id == principal.id or (section_id is not None and p.section_id == section_id)
        return lambda p: (
            section_id is not None
            and p.section_id == section_id
            and p.id != principal.id
            and p.role != Role.SUPER_ADMIN
        )
    if kind == ResourceKind.ORG_UNIT:
        return _everything if access == Access.READ else _nothing
    raise ValueError("invalid_resource_kind")


def _super_admin_scope(principal: Principal, kind: ResourceKind, access: Access) -> Predicate:
    if kind in (ResourceKind.TASK, ResourceKind.SUBMISSION, ResourceKind.ROUTINE):
        return _everything if access == Access.READ else _nothing
    if kind in (ResourceKind.PRINCIPAL, ResourceKind.ORG_UNIT):
        return _everything
    raise ValueError("invalid_resource_kind")


def scope(principal: Principal, kind: ResourceKind, access: Access = Access.READ) -> Predicate:
    """Return a predicate telling whether `principal` may `access` a resource of `kind`."""
    if not principal.is_active:
        if kind == ResourceKind.PRINCIPAL and access == Access.READ:
            return lambda p: p.id == principal.id
        return _nothing
    if principal.role == Role.MEMBER:
        return _member_scope(principal, kind, access)
    if principal.role == Role.SECTION_ADMIN:
        return _section_admin_scope(principal, kind, access)
    if principal.role == Role.SUPER_ADMIN:
        return _super_admin_scope(principal, kind, access)
    raise ValueError("invalid_role")


def can(principal: Principal, kind: ResourceKind, resource: Any, access: Access = Access.READ) -> bool:
    return scope(principal, kind, access)(resource)


def authorize(principal: Principal, kind: ResourceKind, resource: Any, access: Access = Access.READ) -> None:
    """Raise `PermissionError("forbidden")` unless the access is in scope."""
    if not can(principal, kind, resource, access):
        raise PermissionError("forbidden")


def visible(principal: Principal, kind: ResourceKind, items: Iterable[Any]) -> List[Any]:
    allowed = scope(principal, kind, Access.READ)
    return [item for item in items if allowed(item)]


__all__ = ["Access", "ResourceKind", "authorize", "can", "scope", "visible"]
