"""
Session helpers shared by the middleware in `main` and the routers.

Why:
    Cookie flags and the process-wide session store are needed by the auth
    router (open/close sessions) and the users router (revoke sessions of a
    deactivated account). Routers resolve `main` lazily so tests that swap
    `main.SESSION_STORE` are honored.
"""

from __future__ import annotations

import logging

logger = logging.getLogger("unitrack.web.auth")

_SECURE_ENVIRONMENTS = {"prod", "production", "stage", "staging"}


def cookie_opts(environment: str) -> dict:
    """Return flags for the session cookie.

    `secure` is on outside dev so the cookie never travels over plain HTTP in
    deployed environments; dev keeps it off for `http://localhost`.
    """
    env = (environment or "").lower()
    return {"secure": env in _SECURE_ENVIRONMENTS, "samesite": "lax"}


def main_module():
    try:
        from backend.web import main as mod  # type: ignore
    except ImportError:
        import main as mod  # type: ignore
    return mod


def revoke_sessions(user_id: str) -> int:
    """Drop every open session of `user_id` (no-op when none are open)."""
    dropped = main_module().SESSION_STORE.revoke_user(user_id)
    if dropped:
        logger.info("sessions revoked sub=%s count=%s", user_id, dropped)
    return dropped
