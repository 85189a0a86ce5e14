"""
Live dashboard view: one controller per open dashboard session.

Intent:
    Hold the scoped working set (tasks, submissions, members, routines) for a
    single viewer and keep the derived view model current under two triggers:

    - change feed events for the subscribed topics re-fetch the snapshot;
    - a timer tick re-derives statuses from the held snapshot (no fetch),
      because wall-clock advancement alone flips `pending -> overdue`.

    An optional poll timer re-fetches for panels without feed coverage.

Behavior:
    - States: LOADING -> READY <-> REFRESHING, terminal CLOSED.
    - `refresh()` is the single fetch entry point. Triggers arriving while a
      fetch is in flight mark the view dirty and run exactly one follow-up.
    - `StoreUnavailableError` keeps the previous snapshot and is logged; the
      next event, tick or poll tries again.
    - `PermissionError`, `LookupError` and `ValueError` from a fetch are
      terminal: the view drops its snapshot, records the error (`error`) and
      closes itself. A caller awaiting `refresh()` gets the error re-raised;
      close listeners receive it.
    - `close()` unsubscribes from the feed and cancels timers; idempotent.

To stop the controller, leave the `async with` block or call `close()`.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Union

from .aggregates import StudentStats, category_histogram, completion_rate, student_task_stats
from .filters import filter_views, upcoming
from .ports import TOPIC_SUBMISSIONS, TOPIC_TASKS, ChangeEvent, ChangeFeedProtocol, StoreUnavailableError, Subscription
from .services.base import utcnow
from .services.dashboards import Snapshot
from .status import TaskView, build_task_views

logger = logging.getLogger("unitrack.tracking.live_view")

FetchFn = Callable[[], Union[Snapshot, Awaitable[Snapshot]]]
Listener = Callable[["ViewModel"], None]
CloseListener = Callable[[Optional[Exception]], None]

TERMINAL_ERRORS = (PermissionError, LookupError, ValueError)


class ViewState(str, Enum):
    LOADING = "loading"
    READY = "ready"
    REFRESHING = "refreshing"
    CLOSED = "closed"


@dataclass(frozen=True)
class ViewModel:
    generated_at: datetime
    views: List[TaskView] = field(default_factory=list)
    stats: StudentStats = field(default_factory=StudentStats)
    categories: Dict[str, int] = field(default_factory=dict)
    upcoming: List[TaskView] = field(default_factory=list)
    completion_rate: int = 0
    snapshot: Optional[Snapshot] = None


def build_view_model(snapshot: Snapshot, now: datetime) -> ViewModel:
    views = build_task_views(snapshot.tasks, snapshot.submissions, snapshot.actor.id, now)
    published = [t for t in snapshot.tasks if t.is_published]
    return ViewModel(
        generated_at=now,
        views=views,
        stats=student_task_stats(views),
        categories=category_histogram(snapshot.tasks),
        upcoming=upcoming(views, limit=3),
        completion_rate=completion_rate(published, snapshot.submissions, snapshot.principals),
        snapshot=snapshot,
    )


class LiveViewController:
    def __init__(
        self,
        fetch: FetchFn,
        feed: ChangeFeedProtocol,
        *,
        topics: Iterable[str] = (TOPIC_TASKS, TOPIC_SUBMISSIONS),
        tick_seconds: float = 60.0,
        poll_seconds: Optional[float] = None,
        clock: Callable[[], datetime] = utcnow,
        offload_fetch: bool = False,
    ) -> None:
        if tick_seconds <= 0:
            raise ValueError("invalid_tick_seconds")
        if poll_seconds is not None and poll_seconds <= 0:
            raise ValueError("invalid_poll_seconds")
        self._fetch = fetch
        self._feed = feed
        self._topics = frozenset(topics)
        self._tick_seconds = float(tick_seconds)
        self._poll_seconds = float(poll_seconds) if poll_seconds is not None else None
        self._clock = clock
        self._offload = offload_fetch

        self._state = ViewState.LOADING
        self._snapshot: Optional[Snapshot] = None
        self._model: Optional[ViewModel] = None
        self._listeners: List[Listener] = []
        self._close_listeners: List[CloseListener] = []
        self._error: Optional[Exception] = None
        self._subscription: Optional[Subscription] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._inflight: Optional[asyncio.Task] = None
        self._dirty = False
        self._timers: List[asyncio.Task] = []
        self.fetch_count = 0

    # --- lifecycle -----------------------------------------------------------------
    @property
    def state(self) -> ViewState:
        return self._state

    @property
    def model(self) -> Optional[ViewModel]:
        return self._model

    @property
    def error(self) -> Optional[Exception]:
        """Terminal fetch error that closed the view, if any."""
        return self._error

    async def start(self) -> "LiveViewController":
        if self._state == ViewState.CLOSED:
            raise RuntimeError("live view closed")
        if self._loop is not None:
            return self
        self._loop = asyncio.get_running_loop()
        self._subscription = self._feed.subscribe(self._topics, self._on_change)
        logger.info("live view started topics=%s", ",".join(sorted(self._topics)))
        try:
            await self.refresh()
        except BaseException:
            await self.close()
            raise
        self._timers.append(self._loop.create_task(self._tick_loop()))
        if self._poll_seconds is not None:
            self._timers.append(self._loop.create_task(self._poll_loop()))
        return self

    async def close(self) -> None:
        if self._state == ViewState.CLOSED:
            return
        self._state = ViewState.CLOSED
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
        # A terminal fetch error closes the view from inside the refresh task.
        current = asyncio.current_task()
        pending = [t for t in self._timers if t is not current]
        if self._inflight is not None and self._inflight is not current and not self._inflight.done():
            pending.append(self._inflight)
        for task in pending:
            task.cancel()
        for task in pending:
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as exc:
                logger.warning("live view task ended with error on close: %s", exc.__class__.__name__)
        self._timers.clear()
        self._inflight = None
        self._listeners.clear()
        close_listeners, self._close_listeners = self._close_listeners, []
        for listener in close_listeners:
            try:
                listener(self._error)
            except Exception:
                logger.exception("live view close listener failed")
        logger.info("live view closed")

    async def __aenter__(self) -> "LiveViewController":
        return await self.start()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # --- listeners -----------------------------------------------------------------
    def add_listener(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    def add_close_listener(self, listener: CloseListener) -> None:
        """Call `listener(error)` once when the view closes; `error` may be None."""
        if self._state == ViewState.CLOSED:
            listener(self._error)
            return
        self._close_listeners.append(listener)

    def _notify(self) -> None:
        if self._model is None:
            return
        for listener in list(self._listeners):
            try:
                listener(self._model)
            except Exception:
                logger.exception("live view listener failed")

    # --- refresh -------------------------------------------------------------------
    async def refresh(self) -> None:
        """Re-fetch the snapshot; overlapping calls coalesce into one follow-up."""
        if self._state == ViewState.CLOSED:
            return
        self._schedule_refresh()
        inflight = self._inflight
        if inflight is not None:
            await asyncio.shield(inflight)
        if self._error is not None:
            raise self._error

    def _schedule_refresh(self) -> None:
        if self._state == ViewState.CLOSED:
            return
        if self._inflight is not None and not self._inflight.done():
            self._dirty = True
            return
        loop = self._loop or asyncio.get_running_loop()
        self._inflight = loop.create_task(self._run_refresh())

    async def _run_refresh(self) -> None:
        while True:
            self._dirty = False
            if self._state == ViewState.READY:
                self._state = ViewState.REFRESHING
            try:
                snapshot = await self._call_fetch()
            except StoreUnavailableError as exc:
                logger.warning("live view refresh skipped: %s", exc)
                break
            except TERMINAL_ERRORS as exc:
                logger.info("live view ended by fetch error: %s(%s)", exc.__class__.__name__, exc)
                self._error = exc
                self._snapshot = None
                self._model = None
                await self.close()
                return
            if self._state == ViewState.CLOSED:
                return
            self._snapshot = snapshot
            self._model = build_view_model(snapshot, self._clock())
            self._state = ViewState.REFRESHING
            self._notify()
            if not self._dirty:
                break
        if self._state != ViewState.CLOSED and self._snapshot is not None:
            self._state = ViewState.READY

    async def _call_fetch(self) -> Snapshot:
        self.fetch_count += 1
        if self._offload:
            result: Any = await asyncio.to_thread(self._fetch)
        else:
            result = self._fetch()
        if inspect.isawaitable(result):
            result = await result
        return result

    def _on_change(self, event: ChangeEvent) -> None:
        if self._state == ViewState.CLOSED or self._loop is None:
            return
        logger.debug("change event table=%s event=%s", event.table, event.event)
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            self._schedule_refresh()
        else:
            self._loop.call_soon_threadsafe(self._schedule_refresh)

    # --- time-driven ---------------------------------------------------------------
    def rederive(self) -> None:
        """Recompute derived statuses against the current clock (no fetch)."""
        if self._state == ViewState.CLOSED:
            return
        if self._snapshot is None:
            # Nothing held yet (initial fetch failed); retry the fetch instead.
            self._schedule_refresh()
            return
        self._model = build_view_model(self._snapshot, self._clock())
        self._notify()

    async def _tick_loop(self) -> None:
        while True:
            await asyncio.sleep(self._tick_seconds)
            self.rederive()

    async def _poll_loop(self) -> None:
        interval = self._poll_seconds or self._tick_seconds
        while True:
            await asyncio.sleep(interval)
            self._schedule_refresh()

    # --- display helpers -----------------------------------------------------------
    def filtered(self, *, category: object = None, status: object = "all") -> List[TaskView]:
        if self._model is None:
            return []
        return filter_views(self._model.views, category=category, status=status)


__all__ = ["LiveViewController", "ViewModel", "ViewState", "build_view_model"]
