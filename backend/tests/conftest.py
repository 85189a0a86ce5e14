"""
Shared pytest fixtures for the tracker backend.

Imports are flat (`tracking`, `identity_access`, `main`, `wiring`, `utils`),
matching how `backend/web/main.py` extends `sys.path` at runtime. AnyIO runs
on asyncio only.
"""
import os
import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[2]
for _path in (REPO_ROOT, REPO_ROOT / "backend", REPO_ROOT / "backend" / "web", REPO_ROOT / "backend" / "tests"):
    if str(_path) not in sys.path:
        sys.path.insert(0, str(_path))

# Every env var read by web/config.py or tracking/config.py.
TRACKER_ENV_VARS = (
    "UNITRACK_ENV",
    "TRACKING_BACKEND",
    "DEV_SESSIONS_ENABLED",
    "LIVE_VIEW_TICK_SECONDS",
    "STATS_POLL_SECONDS",
    "ACTIVITY_POLL_SECONDS",
    "CHANGE_FEED_CHANNEL",
    "UPCOMING_WINDOW_DAYS",
    "TRACKING_DATABASE_URL",
)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def _clean_tracker_env(monkeypatch: pytest.MonkeyPatch):
    """Start each test from dev defaults; config tests set prod values locally."""
    for var in TRACKER_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    if os.getenv("DATABASE_URL") and not _reachable(os.environ["DATABASE_URL"]):
        monkeypatch.delenv("DATABASE_URL")
    yield


def _reachable(dsn: str) -> bool:
    try:
        import psycopg  # type: ignore
    except ImportError:
        return False
    try:
        with psycopg.connect(dsn, connect_timeout=3):
            return True
    except psycopg.OperationalError:
        return False


@pytest.fixture(autouse=True)
def _fresh_app_state(monkeypatch: pytest.MonkeyPatch):
    """Empty in-memory store and session store behind the web app.

    `main` and `backend.web.main` are the same module object (aliased in
    main.py), so one patch covers both import styles.
    """
    import main  # type: ignore
    import wiring  # type: ignore
    from identity_access.stores import SessionStore
    from tracking.repo_memory import InMemoryTrackingRepo

    wiring.set_repo(InMemoryTrackingRepo())
    monkeypatch.setattr(main, "SESSION_STORE", SessionStore())
    yield
