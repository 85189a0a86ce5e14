"""
Server-side session store for the tracker API (in-memory).

Why: The browser only ever holds an opaque session id. The store maps it to
the principal id (`sub`) and nothing else: role, section and active flag are
re-read from the tracking store on every request, so a promotion or a
deactivation takes effect without waiting for the session to expire.

Behavior:
    - `create` rejects an empty `sub` and a non-positive TTL.
    - `get` drops expired records lazily on read.
    - `revoke_user` ends every session of one principal; the users API calls
      it when an account is deactivated or a pending application is rejected.

Security: Session ids come from `secrets.token_urlsafe`. A single process
holds the data, so multi-worker deployments need a shared store instead.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Set
import secrets
import threading
import time


def _now() -> int:
    return int(time.time())


@dataclass(frozen=True)
class SessionRecord:
    session_id: str
    sub: str
    name: str = ""
    expires_at: Optional[int] = None

    def expired(self, at: int) -> bool:
        return self.expires_at is not None and self.expires_at < at


class SessionStore:
    def __init__(self, *, clock=_now):
        self._clock = clock
        self._lock = threading.Lock()
        self._by_id: Dict[str, SessionRecord] = {}
        self._by_sub: Dict[str, Set[str]] = {}

    def create(self, *, sub: str, name: str = "", ttl_seconds: int = 3600) -> SessionRecord:
        if not sub:
            raise ValueError("invalid_sub")
        if ttl_seconds <= 0:
            raise ValueError("invalid_ttl")
        record = SessionRecord(
            session_id=secrets.token_urlsafe(24),
            sub=sub,
            name=name,
            expires_at=self._clock() + ttl_seconds,
        )
        with self._lock:
            self._by_id[record.session_id] = record
            self._by_sub.setdefault(sub, set()).add(record.session_id)
        return record

    def get(self, session_id: str) -> Optional[SessionRecord]:
        with self._lock:
            record = self._by_id.get(session_id)
            if record is None:
                return None
            if record.expired(self._clock()):
                self._forget(session_id)
                return None
            return record

    def delete(self, session_id: str) -> None:
        with self._lock:
            self._forget(session_id)

    def revoke_user(self, sub: str) -> int:
        """End all sessions of `sub`; returns how many were open."""
        with self._lock:
            ids = list(self._by_sub.get(sub, ()))
            for sid in ids:
                self._forget(sid)
            return len(ids)

    def sessions_for(self, sub: str) -> int:
        with self._lock:
            return len(self._by_sub.get(sub, ()))

    def _forget(self, session_id: str) -> None:
        record = self._by_id.pop(session_id, None)
        if record is None:
            return
        ids = self._by_sub.get(record.sub)
        if ids is not None:
            ids.discard(session_id)
            if not ids:
                del self._by_sub[record.sub]
