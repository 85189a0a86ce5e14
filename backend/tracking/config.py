"""
Tracking configuration parsing and validation.

Intent:
    One place reads the environment variables that pick the store backend and
    control live-view timers (countdown tick, statistics polling).

Why:
    Explicit defaults and ranges make misconfiguration fail at startup instead
    of surfacing as a dashboard that never refreshes.
"""
from __future__ import annotations

from dataclasses import dataclass
import os
import re


@dataclass(frozen=True)
class TrackingConfig:
    backend: str  # "memory" | "db"
    tick_seconds: int
    stats_poll_seconds: int
    activity_poll_seconds: int
    change_feed_channel: str
    upcoming_window_days: int


def _int_env(name: str, default: int, *, low: int, high: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got: {raw!r}")
    if value < low or value > high:
        raise ValueError(f"{name} out of range ({low}..{high}), got: {value}")
    return value


_CHANNEL_RE = re.compile(r"^[a-z_][a-z0-9_]{0,62}$")


def _is_prod_like() -> bool:
    env = (os.getenv("UNITRACK_ENV") or "dev").lower()
    return env in {"prod", "production", "stage", "staging"}


def load_tracking_config() -> TrackingConfig:
    """
    Parse and validate tracking configuration from environment variables.

    Behavior:
        - `TRACKING_BACKEND` selects "memory" (default) or "db"; "memory" is
          refused in production/staging.
        - `LIVE_VIEW_TICK_SECONDS` (default 60, 1..3600) drives countdown
          re-derivation; `STATS_POLL_SECONDS` (default 300) and
          `ACTIVITY_POLL_SECONDS` (default 30) drive panel re-fetches.
        - `CHANGE_FEED_CHANNEL` must be a plain lowercase SQL identifier.
    """
    backend = (os.getenv("TRACKING_BACKEND") or "memory").strip().lower()
    if backend not in {"memory", "db"}:
        raise ValueError("TRACKING_BACKEND must be 'memory' or 'db'")
    if backend == "memory" and _is_prod_like():
        raise ValueError("TRACKING_BACKEND=memory is not allowed in production/staging environments.")

    channel = (os.getenv("CHANGE_FEED_CHANNEL") or "unitrack_changes").strip()
    if not _CHANNEL_RE.match(channel):
        raise ValueError("CHANGE_FEED_CHANNEL must be a lowercase identifier (a-z, 0-9, _)")

    return TrackingConfig(
        backend=backend,
        tick_seconds=_int_env("LIVE_VIEW_TICK_SECONDS", 60, low=1, high=3600),
        stats_poll_seconds=_int_env("STATS_POLL_SECONDS", 300, low=5, high=3600),
        activity_poll_seconds=_int_env("ACTIVITY_POLL_SECONDS", 30, low=5, high=3600),
        change_feed_channel=channel,
        upcoming_window_days=_int_env("UPCOMING_WINDOW_DAYS", 7, low=1, high=60),
    )


__all__ = ["TrackingConfig", "load_tracking_config"]
