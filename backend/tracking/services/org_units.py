"""Org unit use cases: Department -> Batch -> Section.

Invariant: a child is created only when its parent resolves; otherwise
`LookupError("<parent>_not_found")`. Only super-admins create org units.
"""
from __future__ import annotations

from dataclasses import dataclass
import logging
import re

from ..domain import Batch, Department, OrgTree, Section
from ..ports import TrackingRepoProtocol
from ..visibility import Access, ResourceKind, authorize
from .base import normalize_text, resolve_actor

logger = logging.getLogger("unitrack.tracking.org_units")

_CODE_RE = re.compile(r"^[A-Z0-9][A-Z0-9_-]{0,15}$")


def _normalize_code(value: object) -> str:
    if not isinstance(value, str):
        raise ValueError("invalid_code")
    code = value.strip().upper()
    if not _CODE_RE.match(code):
        raise ValueError("invalid_code")
    return code


@dataclass
class OrgUnitsService:
    repo: TrackingRepoProtocol

    def tree(self, actor_id: str) -> OrgTree:
        actor = resolve_actor(self.repo, actor_id)
        tree = self.repo.load_org_tree()
        # Org units are readable by every active principal; the check keeps inactive ones out.
        authorize(actor, ResourceKind.ORG_UNIT, tree, Access.READ)
        return tree

    def create_department(self, actor_id: str, *, name: object, code: object, description: object = None) -> Department:
        clean_name = normalize_text(name, "name", max_len=100, required=True)
        clean_code = _normalize_code(code)
        clean_desc = normalize_text(description, "description", max_len=500)
        self._authorize_write(actor_id)
        dep = self.repo.create_department(name=clean_name or "", code=clean_code, description=clean_desc)
        logger.info("department created id=%s", dep.id)
        return dep

    def create_batch(self, actor_id: str, *, name: object, department_id: object) -> Batch:
        clean_name = normalize_text(name, "name", max_len=100, required=True)
        parent = normalize_text(department_id, "department_id", max_len=64, required=True)
        self._authorize_write(actor_id)
        if parent not in self.repo.load_org_tree().departments:
            raise LookupError("department_not_found")
        return self.repo.create_batch(name=clean_name or "", department_id=parent or "")

    def create_section(self, actor_id: str, *, name: object, batch_id: object) -> Section:
        clean_name = normalize_text(name, "name", max_len=100, required=True)
        parent = normalize_text(batch_id, "batch_id", max_len=64, required=True)
        self._authorize_write(actor_id)
        if parent not in self.repo.load_org_tree().batches:
            raise LookupError("batch_not_found")
        return self.repo.create_section(name=clean_name or "", batch_id=parent or "")

    def _authorize_write(self, actor_id: str) -> None:
        actor = resolve_actor(self.repo, actor_id)
        authorize(actor, ResourceKind.ORG_UNIT, None, Access.WRITE)


__all__ = ["OrgUnitsService"]
