"""
Store and change-feed wiring for the web adapter.

Behavior:
    - `TRACKING_BACKEND=memory` (dev default): one `InMemoryTrackingRepo` whose
      writes are published on its in-process feed.
    - `TRACKING_BACKEND=db`: `DBTrackingRepo` plus a `PostgresChangeFeed`
      listening on `CHANGE_FEED_CHANNEL`; live views fetch in a worker thread.
    - Tests call `set_repo` to swap in their own repo/feed pair.
"""
from __future__ import annotations

import logging
from typing import Any, Optional, Tuple

from tracking.change_feed import InMemoryChangeFeed, PostgresChangeFeed
from tracking.config import TrackingConfig, load_tracking_config
from tracking.repo_memory import InMemoryTrackingRepo

logger = logging.getLogger("unitrack.web.wiring")

_REPO: Any = None
_FEED: Any = None
_OFFLOAD = False


def _build_default() -> Tuple[Any, Any, bool]:
    cfg = load_tracking_config()
    if cfg.backend == "db":
        from tracking.repo_db import DBTrackingRepo, resolve_dsn

        dsn = resolve_dsn()
        logger.info("using Postgres tracking store channel=%s", cfg.change_feed_channel)
        return DBTrackingRepo(dsn), PostgresChangeFeed(dsn, cfg.change_feed_channel), True
    feed = InMemoryChangeFeed()
    return InMemoryTrackingRepo(feed=feed), feed, False


def get_repo():
    global _REPO, _FEED, _OFFLOAD
    if _REPO is None:
        _REPO, _FEED, _OFFLOAD = _build_default()
    return _REPO


def get_feed():
    get_repo()
    return _FEED


def offload_fetch() -> bool:
    get_repo()
    return _OFFLOAD


def get_config() -> TrackingConfig:
    return load_tracking_config()


def set_repo(repo, feed: Optional[Any] = None, *, offload: bool = False) -> None:
    """Allow tests to swap the tracking repository (and its feed)."""
    global _REPO, _FEED, _OFFLOAD
    _REPO = repo
    _FEED = feed if feed is not None else getattr(repo, "feed", None) or InMemoryChangeFeed()
    _OFFLOAD = offload
