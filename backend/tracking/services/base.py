"""Shared helpers for tracking use cases: actor resolution and input normalizers."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from ..domain import Principal
from ..ports import TrackingRepoProtocol


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def resolve_actor(repo: TrackingRepoProtocol, actor_id: str) -> Principal:
    """Load the acting principal fresh from the store.

    Membership and role are never taken from the session; an unknown id is an
    authorization failure.
    """
    if not isinstance(actor_id, str) or not actor_id:
        raise PermissionError("unknown_principal")
    principal = repo.get_principal(actor_id)
    if principal is None:
        raise PermissionError("unknown_principal")
    return principal


def normalize_text(value: object, field: str, *, max_len: int, required: bool = False) -> Optional[str]:
    if value is None:
        if required:
            raise ValueError(f"invalid_{field}")
        return None
    if not isinstance(value, str):
        raise ValueError(f"invalid_{field}")
    trimmed = value.strip()
    if not trimmed:
        if required:
            raise ValueError(f"invalid_{field}")
        return None
    if len(trimmed) > max_len:
        raise ValueError(f"invalid_{field}")
    return trimmed


def parse_instant_input(value: object, field: str) -> Optional[datetime]:
    """Accept an aware datetime or an ISO-8601 string with offset; return UTC."""
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        raw = value.strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError as exc:
            raise ValueError(f"invalid_{field}") from exc
    else:
        raise ValueError(f"invalid_{field}")
    if parsed.tzinfo is None:
        raise ValueError(f"invalid_{field}")
    return parsed.astimezone(timezone.utc)


def normalize_bool(value: object, field: str) -> bool:
    if isinstance(value, bool):
        return value
    raise ValueError(f"invalid_{field}")
