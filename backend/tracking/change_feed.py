"""
Change feed adapters: in-process fan-out and Postgres LISTEN/NOTIFY.

Intent:
    Deliver row-level insert/update/delete events for the `tasks`,
    `task_submissions`, `users` and `routines` topics to subscribers. The feed
    is at-least-once: consumers must treat events as "something changed" and
    re-fetch.

Behavior:
    - `subscribe()` returns a handle whose `close()` is idempotent.
    - A failing subscriber is logged and does not stop delivery to others.
    - `PostgresChangeFeed` expects NOTIFY payloads shaped as
      `{"event": ..., "table": ..., "row": {...}}` on one channel and keeps
      reconnecting while subscribers exist.
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from .ports import ALL_TOPICS, ChangeCallback, ChangeEvent

try:
    import psycopg
    HAVE_PSYCOPG = True
except Exception:  # pragma: no cover - optional in some dev envs
    psycopg = None  # type: ignore
    HAVE_PSYCOPG = False


logger = logging.getLogger("unitrack.tracking.change_feed")

_CHANNEL_RE_CHARS = set("abcdefghijklmnopqrstuvwxyz0123456789_")


class _Subscription:
    def __init__(self, feed: "InMemoryChangeFeed", topics: frozenset[str], callback: ChangeCallback) -> None:
        self._feed = feed
        self.topics = topics
        self.callback = callback
        self.closed = False

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._feed._remove(self)


class InMemoryChangeFeed:
    """Synchronous fan-out used by the in-memory repo and by tests."""

    def __init__(self) -> None:
        self._subs: List[_Subscription] = []

    def subscribe(self, topics: Iterable[str], callback: ChangeCallback) -> _Subscription:
        sub = _Subscription(self, frozenset(topics), callback)
        self._subs.append(sub)
        return sub

    def _remove(self, sub: _Subscription) -> None:
        try:
            self._subs.remove(sub)
        except ValueError:
            pass

    @property
    def subscriber_count(self) -> int:
        return len(self._subs)

    def publish(self, event: ChangeEvent) -> None:
        for sub in list(self._subs):
            if sub.closed or event.table not in sub.topics:
                continue
            try:
                sub.callback(event)
            except Exception:  # pragma: no cover - subscriber bug must not break writers
                logger.exception("change feed subscriber failed table=%s", event.table)


def parse_notify_payload(payload: str) -> Optional[ChangeEvent]:
    """Decode a NOTIFY payload; malformed payloads are dropped (logged)."""
    try:
        data: Dict[str, Any] = json.loads(payload)
        event = str(data["event"]).lower()
        table = str(data["table"])
    except (ValueError, KeyError, TypeError):
        logger.warning("dropping malformed change payload")
        return None
    if event not in {"insert", "update", "delete"}:
        logger.warning("dropping change payload with unknown event=%s", event)
        return None
    row = data.get("row") or {}
    return ChangeEvent(event=event, table=table, row=row if isinstance(row, dict) else {})


def _validate_channel(channel: str) -> str:
    name = (channel or "").strip().lower()
    if not name or not set(name) <= _CHANNEL_RE_CHARS or name[0].isdigit():
        raise ValueError("invalid_channel")
    return name


class PostgresChangeFeed:
    """LISTEN on one channel and fan events out to local subscribers.

    Subscriptions are local; one background task holds the LISTEN connection
    while at least one subscriber exists and is cancelled when the last one
    closes.

    Behavior:
        - A dropped or refused connection is logged and retried every
          `reconnect_seconds`; the task never ends on its own.
        - After a reconnect, one synthetic `update` event per topic is
          published with an empty row, since NOTIFYs sent while disconnected
          are lost. Subscribers re-fetch as for any other event.
    """

    def __init__(
        self,
        dsn: str,
        channel: str = "unitrack_changes",
        *,
        reconnect_seconds: float = 5.0,
        connect: Optional[Callable[[], Awaitable[Any]]] = None,
    ) -> None:
        if connect is None and not HAVE_PSYCOPG:  # pragma: no cover - exercised only without driver
            raise RuntimeError("psycopg3 is required for PostgresChangeFeed")
        if reconnect_seconds <= 0:
            raise ValueError("invalid_reconnect_seconds")
        self._dsn = dsn
        self._channel = _validate_channel(channel)
        self._reconnect_seconds = float(reconnect_seconds)
        self._connect = connect or self._open_connection
        self._fanout = InMemoryChangeFeed()
        self._listener: Optional[asyncio.Task] = None

    def subscribe(self, topics: Iterable[str], callback: ChangeCallback) -> _Subscription:
        sub = self._fanout.subscribe(topics, callback)
        original_close = sub.close

        def _close() -> None:
            original_close()
            if self._fanout.subscriber_count == 0:
                self._stop()

        sub.close = _close  # type: ignore[method-assign]
        self._start()
        return sub

    def _start(self) -> None:
        if self._listener is None or self._listener.done():
            self._listener = asyncio.get_running_loop().create_task(self._listen())

    def _stop(self) -> None:
        if self._listener is not None:
            self._listener.cancel()
            self._listener = None

    async def _open_connection(self):
        return await psycopg.AsyncConnection.connect(self._dsn, autocommit=True)  # type: ignore[union-attr]

    async def _listen(self) -> None:
        attempt = 0
        while True:
            try:
                await self._listen_once(resync=attempt > 0)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning(
                    "change feed connection lost: %s; retrying in %ss", exc.__class__.__name__, self._reconnect_seconds
                )
            else:
                logger.warning("change feed connection closed; retrying in %ss", self._reconnect_seconds)
            attempt += 1
            await asyncio.sleep(self._reconnect_seconds)

    async def _listen_once(self, *, resync: bool) -> None:
        conn = await self._connect()
        async with conn:
            await conn.execute(f"LISTEN {self._channel}")
            logger.info("listening channel=%s", self._channel)
            if resync:
                for topic in sorted(ALL_TOPICS):
                    self._fanout.publish(ChangeEvent(event="update", table=topic, row={}))
            async for notify in conn.notifies():
                event = parse_notify_payload(notify.payload)
                if event is not None:
                    self._fanout.publish(event)


__all__ = ["InMemoryChangeFeed", "PostgresChangeFeed", "parse_notify_payload"]
