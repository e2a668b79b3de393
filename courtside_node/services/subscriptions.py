"""Live subscription bus: pushes full aggregate snapshots to subscribers as events land.

Each subscription owns a queue, a delivery task and a running aggregate. The
bus only routes events; snapshots are computed per subscription so a slow
consumer never holds back the others. Events that arrive ahead of a missing
position are held until the sequence is contiguous again; only a gap that
stays open past `gap_timeout_seconds` falls back to a recompute from the log.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable

from courtside_node.entities.stats import MatchStats, PlayerStats, StatEvent
from courtside_node.services.aggregation import NegativePolicy, RunningAggregate
from courtside_node.services.interfaces.stat_event_repository import StatEventRepository
from courtside_node.services.stat_log import EventStream

logger = logging.getLogger(__name__)

Snapshot = PlayerStats | MatchStats
Callback = Callable[[Snapshot], Any]
ErrorCallback = Callable[[Exception], Any]


@dataclass(frozen=True)
class Topic:
    match_id: str
    player_id: str | None = None
    set_number: int | None = None


class Subscription:
    """Disposable handle. `close()`, calling the handle, or leaving a `with` block ends it."""

    def __init__(
        self,
        bus: "SubscriptionBus",
        topic: Topic,
        callback: Callback,
        on_error: ErrorCallback | None = None,
    ):
        self.topic = topic
        self.callback = callback
        self.on_error = on_error
        self.closed = False
        self._bus = bus
        self._queue: asyncio.Queue[StatEvent] = asyncio.Queue()
        self._aggregate = RunningAggregate(
            topic.match_id, topic.player_id, topic.set_number, policy=bus.policy,
        )
        self._watermark = 0
        self._pending: dict[int, StatEvent] = {}
        self._task: asyncio.Task | None = None

    @property
    def watermark(self) -> int:
        return self._watermark

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._bus._discard(self)
        if self._task is not None and not self._task.done():
            self._task.cancel()
        logger.debug("subscription closed for %s", self.topic)

    def __call__(self) -> None:
        self.close()

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self.close()

    # ── delivery ──

    def _enqueue(self, event: StatEvent) -> None:
        if not self.closed:
            self._queue.put_nowait(event)

    async def _prime(self) -> None:
        await self._recompute()
        await self._deliver()

    def _start(self) -> None:
        self._task = asyncio.create_task(self._run(), name=f"subscription:{self.topic.match_id}")

    async def _run(self) -> None:
        while not self.closed:
            timeout = self._bus.gap_timeout_seconds if self._pending else None
            try:
                event: StatEvent | None = await asyncio.wait_for(self._queue.get(), timeout)
            except asyncio.TimeoutError:
                event = None
            if self.closed:
                return
            try:
                if event is None:
                    await self._fill_gap()
                else:
                    await self._handle(event)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                await self._report(exc)

    async def _handle(self, event: StatEvent) -> None:
        position = event.position
        if position is None:
            await self._fill_gap()
            return
        if position <= self._watermark:
            return

        if position > self._watermark + 1:
            # Held until the missing positions arrive; _run falls back to the log on timeout.
            self._pending[position] = event
            if len(self._pending) > self._bus.max_pending:
                await self._fill_gap()
            return

        await self._apply(event)
        while self._watermark + 1 in self._pending:
            await self._apply(self._pending.pop(self._watermark + 1))

    async def _apply(self, event: StatEvent) -> None:
        self._watermark = event.position
        if self._aggregate.apply(event):
            await self._deliver()

    async def _fill_gap(self) -> None:
        """Rebuild from the log when a gap did not close; one snapshot covers the missed events."""
        await self._recompute()
        self._pending = {p: e for p, e in self._pending.items() if p > self._watermark}
        await self._deliver()

    async def _recompute(self) -> None:
        stream = EventStream(
            self._bus.event_repository, self.topic.match_id, page_size=self._bus.page_size,
        )
        events = await stream.to_list()
        self._aggregate.reset(events)
        if events:
            self._watermark = max(self._watermark, max(e.position or 0 for e in events))

    async def _deliver(self) -> None:
        if self.closed:
            return
        snapshot = self._aggregate.snapshot()
        try:
            result = self.callback(snapshot)
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("subscriber callback failed for %s", self.topic)

    async def _report(self, exc: Exception) -> None:
        if self.on_error is None:
            logger.error("live stats refresh failed for %s: %s", self.topic, exc)
            return
        try:
            result = self.on_error(exc)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("on_error handler failed for %s", self.topic)


class SubscriptionBus:
    def __init__(
        self,
        event_repository: StatEventRepository,
        policy: NegativePolicy = NegativePolicy.ALLOW,
        page_size: int = 500,
        gap_timeout_seconds: float = 0.25,
        max_pending: int = 256,
    ):
        self.event_repository = event_repository
        self.policy = NegativePolicy(policy)
        self.page_size = page_size
        self.gap_timeout_seconds = gap_timeout_seconds
        self.max_pending = max_pending
        self._lock = threading.Lock()
        self._subscriptions: dict[tuple[Topic, Callback], Subscription] = {}
        self._loop: asyncio.AbstractEventLoop | None = None

    async def subscribe(
        self,
        topic: Topic,
        callback: Callback,
        on_error: ErrorCallback | None = None,
    ) -> Subscription:
        """Register `callback` for `topic`; it receives the current aggregate before this returns."""
        self._loop = asyncio.get_running_loop()
        key = (topic, callback)
        with self._lock:
            existing = self._subscriptions.get(key)
            if existing is not None and not existing.closed:
                return existing
            subscription = Subscription(self, topic, callback, on_error)
            # Registered before the initial read so nothing appended meanwhile is missed.
            self._subscriptions[key] = subscription

        try:
            await subscription._prime()
        except BaseException:
            subscription.close()
            raise

        subscription._start()
        logger.info("subscribed to %s (watermark=%d)", topic, subscription.watermark)
        return subscription

    def publish(self, event: StatEvent) -> None:
        """Route an appended event to matching subscriptions. Safe from any thread."""
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            self._dispatch(event)
        else:
            loop.call_soon_threadsafe(self._dispatch, event)

    def subscription_count(self, match_id: str | None = None) -> int:
        with self._lock:
            return sum(
                1 for sub in self._subscriptions.values()
                if match_id is None or sub.topic.match_id == match_id
            )

    def close_all(self) -> None:
        with self._lock:
            subscriptions = list(self._subscriptions.values())
        for subscription in subscriptions:
            subscription.close()

    def _dispatch(self, event: StatEvent) -> None:
        with self._lock:
            targets = [
                sub for sub in self._subscriptions.values()
                if sub.topic.match_id == event.match_id
            ]
        # Every event of the match goes to the queue so the position watermark stays contiguous.
        for subscription in targets:
            subscription._enqueue(event)

    def _discard(self, subscription: Subscription) -> None:
        with self._lock:
            key = (subscription.topic, subscription.callback)
            if self._subscriptions.get(key) is subscription:
                del self._subscriptions[key]
