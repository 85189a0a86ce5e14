"""
Startup configuration guard for the tracker API.

Why: Student records must not end up behind an accidentally insecure
deployment, and a live view with nonsense timers should fail at boot rather
than silently never refresh.

Behavior:
    - Tracking settings (`tracking.config.load_tracking_config`) are validated
      in every environment; a `ValueError` there aborts startup.
    - Production/staging additionally refuse DSNs with TLS disabled and the
      dev-session login.
"""
from __future__ import annotations

import logging
import os
from typing import List

from tracking.config import load_tracking_config

logger = logging.getLogger("unitrack.web.config")

PROD_LIKE = frozenset({"prod", "production", "stage", "staging"})
DSN_KEYS = ("DATABASE_URL", "TRACKING_DATABASE_URL")


def startup_problems() -> List[str]:
    """Collect fatal configuration problems for the current environment."""
    problems: List[str] = []
    try:
        load_tracking_config()
    except ValueError as exc:
        problems.append(str(exc))

    if (os.getenv("UNITRACK_ENV") or "dev").lower() not in PROD_LIKE:
        return problems

    problems.extend(
        f"{key} contains sslmode=disable; use sslmode=require or verify-full"
        for key in DSN_KEYS
        if "sslmode=disable" in (os.getenv(key) or "")
    )
    if (os.getenv("DEV_SESSIONS_ENABLED") or "").strip().lower() in {"1", "true", "yes"}:
        problems.append("DEV_SESSIONS_ENABLED must be false outside dev")
    return problems


def ensure_secure_config_on_startup() -> None:
    """Raise `SystemExit` listing every problem found; no-op when clean."""
    problems = startup_problems()
    if problems:
        for problem in problems:
            logger.error("config: %s", problem)
        raise SystemExit("Refusing to start: " + "; ".join(problems))
