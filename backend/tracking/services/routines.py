"""Weekly class routine use cases (section-scoped, soft delete)."""
from __future__ import annotations

from dataclasses import dataclass
import logging
import re
from typing import Any, Dict, List, Optional

from identity_access.domain import Role

from ..domain import Routine
from ..ports import TrackingRepoProtocol
from ..visibility import Access, ResourceKind, authorize, visible
from .base import normalize_text, resolve_actor

logger = logging.getLogger("unitrack.tracking.routines")

_UNSET = object()
_TIME_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def _normalize_day(value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError("invalid_day_of_week")
    if value < 0 or value > 6:
        raise ValueError("invalid_day_of_week")
    return value


def _normalize_time(value: object, field: str) -> str:
    if not isinstance(value, str):
        raise ValueError(f"invalid_{field}")
    raw = value.strip()
    # Accept HH:MM:SS from stores and forms; keep minutes precision.
    if len(raw) == 8 and raw[5] == ":":
        raw = raw[:5]
    if not _TIME_RE.match(raw):
        raise ValueError(f"invalid_{field}")
    return raw


def _check_order(start: str, end: str) -> None:
    if start >= end:
        raise ValueError("invalid_time_range")


@dataclass
class RoutinesService:
    repo: TrackingRepoProtocol

    def list_routines(self, actor_id: str) -> List[Routine]:
        """Active routines visible to the caller, ordered by day then start time."""
        actor = resolve_actor(self.repo, actor_id)
        if actor.role == Role.SUPER_ADMIN:
            rows = self.repo.list_routines()
        elif actor.section_id is None:
            return []
        else:
            rows = self.repo.list_routines(section_id=actor.section_id)
        return visible(actor, ResourceKind.ROUTINE, rows)

    def create_routine(
        self,
        actor_id: str,
        *,
        title: object,
        day_of_week: object,
        start_time: object,
        end_time: object,
        description: object = None,
        room: object = None,
        subject: object = None,
        instructor_name: object = None,
    ) -> Routine:
        fields: Dict[str, Any] = {
            "title": normalize_text(title, "title", max_len=100, required=True),
            "day_of_week": _normalize_day(day_of_week),
            "start_time": _normalize_time(start_time, "start_time"),
            "end_time": _normalize_time(end_time, "end_time"),
            "description": normalize_text(description, "description", max_len=1000),
            "room": normalize_text(room, "room", max_len=50),
            "subject": normalize_text(subject, "subject", max_len=100),
            "instructor_name": normalize_text(instructor_name, "instructor_name", max_len=100),
        }
        _check_order(fields["start_time"], fields["end_time"])
        actor = resolve_actor(self.repo, actor_id)
        if actor.section_id is None:
            raise PermissionError("no_section")
        draft = Routine(
            id="",
            title=fields["title"],
            section_id=actor.section_id,
            day_of_week=fields["day_of_week"],
            start_time=fields["start_time"],
            end_time=fields["end_time"],
            created_by=actor.id,
        )
        authorize(actor, ResourceKind.ROUTINE, draft, Access.WRITE)
        routine = self.repo.create_routine(section_id=actor.section_id, created_by=actor.id, is_active=True, **fields)
        logger.info("routine created id=%s section=%s", routine.id, routine.section_id)
        return routine

    def update_routine(self, actor_id: str, routine_id: str, **changes: object) -> Routine:
        allowed = {"title", "day_of_week", "start_time", "end_time", "description", "room", "subject", "instructor_name"}
        unknown = set(changes) - allowed
        if unknown:
            raise ValueError("invalid_fields")
        clean: Dict[str, Any] = {}
        for key, value in changes.items():
            if key == "title":
                clean[key] = normalize_text(value, "title", max_len=100, required=True)
            elif key == "day_of_week":
                clean[key] = _normalize_day(value)
            elif key in ("start_time", "end_time"):
                clean[key] = _normalize_time(value, key)
            else:
                clean[key] = normalize_text(value, key, max_len=1000 if key == "description" else 100)
        routine = self._load_writable(actor_id, routine_id)
        _check_order(clean.get("start_time", routine.start_time), clean.get("end_time", routine.end_time))
        if not clean:
            return routine
        return self._update(routine.id, **clean)

    def delete_routine(self, actor_id: str, routine_id: str) -> Routine:
        """Soft delete: the routine stays stored with `is_active=false`."""
        routine = self._load_writable(actor_id, routine_id)
        updated = self._update(routine.id, is_active=False)
        logger.info("routine deactivated id=%s", routine.id)
        return updated

    def _load_writable(self, actor_id: str, routine_id: str) -> Routine:
        actor = resolve_actor(self.repo, actor_id)
        routine = self.repo.get_routine(routine_id)
        if routine is None or not routine.is_active:
            raise LookupError("routine_not_found")
        authorize(actor, ResourceKind.ROUTINE, routine, Access.WRITE)
        return routine

    def _update(self, routine_id: str, **fields: Any) -> Routine:
        updated: Optional[Routine] = self.repo.update_routine(routine_id, **fields)
        if updated is None:
            raise LookupError("routine_not_found")
        return updated


__all__ = ["RoutinesService"]
