"""Member management: section rosters, promotion, detachment, approvals.

Permissions:
    - Section-admins manage members of their own section (promote, detach).
    - Super-admins change roles, toggle activation and reject pending
      section-admin applications anywhere.
"""
from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import List, Optional

from identity_access.domain import Role, parse_role

from ..aggregates import MemberStats, member_stats
from ..domain import Principal
from ..filters import search_members
from ..ports import TrackingRepoProtocol
from ..visibility import Access, ResourceKind, authorize
from .base import normalize_bool, normalize_text, resolve_actor

logger = logging.getLogger("unitrack.tracking.members")


@dataclass
class MembersService:
    repo: TrackingRepoProtocol

    def list_members(self, actor_id: str, *, query: object = None, section_id: Optional[str] = None) -> List[Principal]:
        """Section roster (excluding the caller) for admins, filtered by search text.

        Section-admins only see their own section; naming another is forbidden.
        """
        q = normalize_text(query, "query", max_len=100)
        actor = resolve_actor(self.repo, actor_id)
        if not actor.is_active or actor.role == Role.MEMBER:
            raise PermissionError("forbidden")
        if actor.role == Role.SECTION_ADMIN:
            if section_id is not None and section_id != actor.section_id:
                raise PermissionError("forbidden")
            if actor.section_id is None:
                return []
            rows = self.repo.list_principals(section_id=actor.section_id)
        else:
            rows = self.repo.list_principals(section_id=section_id)
        return search_members([p for p in rows if p.id != actor.id], q)

    def member_stats(self, actor_id: str, user_id: str) -> MemberStats:
        actor = resolve_actor(self.repo, actor_id)
        target = self._load(user_id)
        authorize(actor, ResourceKind.PRINCIPAL, target, Access.READ)
        return member_stats(target, self.repo.list_submissions(user_id=target.id))

    def promote(self, actor_id: str, user_id: str) -> Principal:
        actor = resolve_actor(self.repo, actor_id)
        target = self._load(user_id)
        authorize(actor, ResourceKind.PRINCIPAL, target, Access.WRITE)
        if target.role != Role.MEMBER:
            raise ValueError("not_a_member")
        updated = self._update(target.id, role=Role.SECTION_ADMIN.value)
        logger.info("member promoted id=%s", target.id)
        return updated

    def detach(self, actor_id: str, user_id: str, *, confirm: object = False) -> Principal:
        """Remove a member from the section and deactivate them; requires `confirm=True`."""
        if confirm is not True:
            raise ValueError("confirmation_required")
        actor = resolve_actor(self.repo, actor_id)
        target = self._load(user_id)
        authorize(actor, ResourceKind.PRINCIPAL, target, Access.WRITE)
        updated = self._update(target.id, is_active=False, section_id=None, batch_id=None)
        logger.info("member detached id=%s", target.id)
        return updated

    def set_role(self, actor_id: str, user_id: str, role: object) -> Principal:
        new_role = parse_role(role)
        actor = self._super_admin(actor_id)
        target = self._load(user_id)
        authorize(actor, ResourceKind.PRINCIPAL, target, Access.WRITE)
        return self._update(target.id, role=new_role.value)

    def set_active(self, actor_id: str, user_id: str, active: object) -> Principal:
        flag = normalize_bool(active, "is_active")
        actor = self._super_admin(actor_id)
        target = self._load(user_id)
        authorize(actor, ResourceKind.PRINCIPAL, target, Access.WRITE)
        updated = self._update(target.id, is_active=flag)
        logger.info("principal %s id=%s", "activated" if flag else "deactivated", target.id)
        return updated

    def pending_approvals(self, actor_id: str) -> List[Principal]:
        self._super_admin(actor_id)
        return [p for p in self.repo.list_principals() if p.is_pending_approval]

    def reject_application(self, actor_id: str, user_id: str) -> None:
        actor = self._super_admin(actor_id)
        target = self._load(user_id)
        authorize(actor, ResourceKind.PRINCIPAL, target, Access.WRITE)
        if not target.is_pending_approval:
            raise ValueError("not_pending")
        if not self.repo.delete_principal(target.id):
            raise LookupError("user_not_found")
        logger.info("application rejected id=%s", target.id)

    def _super_admin(self, actor_id: str) -> Principal:
        actor = resolve_actor(self.repo, actor_id)
        if actor.role != Role.SUPER_ADMIN or not actor.is_active:
            raise PermissionError("forbidden")
        return actor

    def _load(self, user_id: str) -> Principal:
        target = self.repo.get_principal(user_id)
        if target is None:
            raise LookupError("user_not_found")
        return target

    def _update(self, user_id: str, **fields) -> Principal:
        updated: Optional[Principal] = self.repo.update_principal(user_id, **fields)
        if updated is None:
            raise LookupError("user_not_found")
        return updated


__all__ = ["MembersService"]
