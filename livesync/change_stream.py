"""
ChangeStream Client
===================
Maintains live subscriptions to row changes on remote tables.

Each `open()` yields a `Subscription` handle that owns:
  - one Realtime channel (replaced on every reconnection attempt)
  - a queue of parsed ChangeEvents, drained in order by a pump task
  - a `ConnectionStatus` snapshot readable at any time

Reconnection uses linear backoff (base_delay × attempt) and gives up after
`max_retries` consecutive failures until `reconnect()` is called.
"""
from __future__ import annotations

import asyncio
import functools
import inspect
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Protocol, Union

from pydantic import BaseModel, ConfigDict

from config.logging_config import logger
from config.settings import settings
from livesync.backend import RemoteBackend, SubscribeStatus
from livesync.events import ChangeEvent, EventType, parse_change_payload
from livesync.models import KNOWN_COLLECTIONS

Consumer = Callable[[ChangeEvent], Union[None, Awaitable[None]]]


class StreamState(str, Enum):
    DISCONNECTED  = "disconnected"
    CONNECTING    = "connecting"
    SUBSCRIBED    = "subscribed"
    CHANNEL_ERROR = "channel_error"
    TIMED_OUT     = "timed_out"
    RECONNECTING  = "reconnecting"
    FAILED        = "failed"


class ConnectionStatus(BaseModel):
    model_config = ConfigDict(frozen=True)

    state:         StreamState = StreamState.DISCONNECTED
    connected:     bool = False
    subscribed:    bool = False
    last_error:    Optional[str] = None
    last_event_at: Optional[datetime] = None
    retry_count:   int = 0


# ── Timer scheduling ───────────────────────────────────────────────────────────
class Cancellable(Protocol):
    def cancel(self) -> Any: ...


Scheduler = Callable[[float, Callable[[], Awaitable[None]]], Cancellable]


class LoopScheduler:
    """Runs a coroutine function after `delay` seconds on the running loop."""

    def __init__(self) -> None:
        self._timers: set[asyncio.TimerHandle] = set()
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        """Timers not yet fired plus retry tasks still running."""
        return sum(1 for t in self._timers if not t.cancelled()) + len(self._tasks)

    def __call__(self, delay: float, callback: Callable[[], Awaitable[None]]) -> asyncio.TimerHandle:
        loop = asyncio.get_running_loop()
        self._timers = {t for t in self._timers if not t.cancelled()}

        def fire() -> None:
            self._timers.discard(timer)
            task = loop.create_task(callback())
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        timer = loop.call_later(delay, fire)
        self._timers.add(timer)
        return timer

    async def shutdown(self) -> None:
        """Cancel every pending timer and retry task, and wait for the tasks to finish."""
        for timer in self._timers:
            timer.cancel()
        self._timers.clear()

        tasks = [t for t in self._tasks if t is not asyncio.current_task()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.wait(tasks)


# ── Subscription handle ────────────────────────────────────────────────────────
class Subscription:
    """Handle returned by `ChangeStreamClient.open`."""

    def __init__(
        self,
        collection:  str,
        consumer:    Consumer,
        event_mask:  EventType,
        filter_expr: str | None,
        queue_size:  int,
    ) -> None:
        self.collection  = collection
        self.consumer    = consumer
        self.event_mask  = event_mask
        self.filter_expr = filter_expr
        self.closed      = False

        self._status     = ConnectionStatus()
        self._queue: asyncio.Queue[ChangeEvent] = asyncio.Queue(maxsize=queue_size)
        self._pump: asyncio.Task | None = None
        self._channel: Any = None
        self._timer: Cancellable | None = None
        self._handshake = asyncio.Event()
        self._epoch = 0

    def __repr__(self) -> str:
        return f"<Subscription {self.collection} {self._status.state.value}>"

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def retry_count(self) -> int:
        return self._status.retry_count

    async def drain(self) -> None:
        """Wait until every event queued so far has been handled."""
        if not self.closed:
            await self._queue.join()

    def _update(self, **changes: Any) -> None:
        self._status = self._status.model_copy(update=changes)


# ── Client ─────────────────────────────────────────────────────────────────────
class ChangeStreamClient:
    """
    Factory and lifecycle owner for change subscriptions.

    Construct one per composition root and `dispose()` it on shutdown; it
    holds no module-level state.
    """

    def __init__(
        self,
        backend: RemoteBackend,
        *,
        max_retries:       int | None = None,
        base_delay_ms:     int | None = None,
        handshake_timeout: float | None = None,
        queue_size:        int | None = None,
        scheduler:         Scheduler | None = None,
    ) -> None:
        self._backend           = backend
        self._max_retries       = settings.realtime_max_retries if max_retries is None else max_retries
        self._base_delay_ms     = settings.realtime_base_delay_ms if base_delay_ms is None else base_delay_ms
        self._handshake_timeout = (
            settings.realtime_handshake_timeout_s if handshake_timeout is None else handshake_timeout
        )
        self._queue_size        = settings.realtime_queue_size if queue_size is None else queue_size
        self._scheduler         = scheduler or LoopScheduler()
        self._handles: list[Subscription] = []

    @property
    def subscriptions(self) -> tuple[Subscription, ...]:
        return tuple(self._handles)

    # ── Public API ────────────────────────────────────────────────────────────
    async def open(
        self,
        collection:  str,
        consumer:    Consumer,
        *,
        event_mask:  EventType = EventType.ALL,
        filter_expr: str | None = None,
    ) -> Subscription:
        """Subscribe to `collection` and wait for the handshake to resolve."""
        if collection not in KNOWN_COLLECTIONS:
            raise ValueError(
                f"Unknown collection '{collection}'. Expected one of: {sorted(KNOWN_COLLECTIONS)}"
            )

        handle = Subscription(collection, consumer, event_mask, filter_expr, self._queue_size)
        handle._pump = asyncio.create_task(self._pump(handle))
        self._handles.append(handle)
        await self._connect(handle)
        return handle

    async def close(self, handle: Subscription) -> None:
        """Tear down the subscription. Safe to call more than once."""
        if handle.closed:
            return
        handle.closed = True
        handle._epoch += 1
        # Release any open() or retry still waiting on the handshake.
        handle._handshake.set()
        self._cancel_timer(handle)

        pump, handle._pump = handle._pump, None
        # A consumer closing its own subscription runs inside the pump; that
        # pump stops on its own once the current event is done.
        if pump is not None and pump is not asyncio.current_task():
            pump.cancel()
            await asyncio.wait({pump})
        while not handle._queue.empty():
            handle._queue.get_nowait()
            handle._queue.task_done()

        await self._release_channel(handle)
        handle._status = ConnectionStatus()
        if handle in self._handles:
            self._handles.remove(handle)
        logger.info(f"🔌 Subscription to {handle.collection} closed")

    async def reconnect(self, handle: Subscription) -> None:
        """Drop the current channel and start over with a fresh retry budget."""
        if handle.closed:
            logger.warning(f"Ignoring reconnect on closed subscription to {handle.collection}")
            return
        logger.info(f"🔄 Manual reconnect requested for {handle.collection}")
        self._cancel_timer(handle)
        handle._epoch += 1
        handle._handshake.set()
        handle._update(retry_count=0, last_error=None)
        await self._release_channel(handle)
        await self._connect(handle)

    async def dispose(self) -> None:
        for handle in list(self._handles):
            await self.close(handle)
        if isinstance(self._scheduler, LoopScheduler):
            await self._scheduler.shutdown()

    # ── Connection lifecycle ──────────────────────────────────────────────────
    async def _connect(self, handle: Subscription) -> None:
        handle._epoch += 1
        epoch = handle._epoch
        handle._handshake = asyncio.Event()
        handle._update(state=StreamState.CONNECTING, connected=False, subscribed=False)

        try:
            channel = await self._backend.subscribe(
                handle.collection,
                event_mask  = handle.event_mask,
                filter_expr = handle.filter_expr,
                on_message  = functools.partial(self._on_message, handle, epoch),
                on_status   = functools.partial(self._on_status, handle, epoch),
            )
        except Exception as exc:
            logger.error(f"Error setting up subscription for {handle.collection}: {exc}")
            self._fail(handle, epoch, StreamState.CHANNEL_ERROR, f"Failed to set up subscription: {exc}")
            return

        if handle.closed or epoch != handle._epoch:
            # Closed, failed or superseded while the request was in flight.
            await self._remove_quietly(channel)
            return
        handle._channel = channel

        try:
            await asyncio.wait_for(handle._handshake.wait(), timeout=self._handshake_timeout)
        except asyncio.TimeoutError:
            logger.error(f"⏱️ Connection timed out for {handle.collection}")
            self._fail(handle, epoch, StreamState.TIMED_OUT, "Connection timed out")

    def _on_status(
        self, handle: Subscription, epoch: int, status: SubscribeStatus, error: str | None = None
    ) -> None:
        if handle.closed or epoch != handle._epoch:
            return

        if status is SubscribeStatus.SUBSCRIBED:
            handle._update(
                state=StreamState.SUBSCRIBED,
                connected=True,
                subscribed=True,
                last_error=None,
                retry_count=0,
            )
            handle._handshake.set()
            logger.info(f"✅ Subscribed to {handle.collection} realtime updates")
        elif status is SubscribeStatus.CHANNEL_ERROR:
            logger.error(f"❌ Channel error for {handle.collection}" + (f": {error}" if error else ""))
            message = "Channel error occurred" + (f": {error}" if error else "")
            self._fail(handle, epoch, StreamState.CHANNEL_ERROR, message)
        elif status is SubscribeStatus.TIMED_OUT:
            logger.error(f"⏱️ Connection timed out for {handle.collection}")
            self._fail(handle, epoch, StreamState.TIMED_OUT, "Connection timed out")
        elif status is SubscribeStatus.CLOSED:
            handle._update(state=StreamState.DISCONNECTED, connected=False, subscribed=False)
            handle._handshake.set()
            logger.info(f"🔌 Channel closed for {handle.collection}")

    def _fail(self, handle: Subscription, epoch: int, state: StreamState, message: str) -> None:
        if handle.closed or epoch != handle._epoch:
            return
        # Anything the failed channel reports from here on is stale.
        handle._epoch += 1
        handle._handshake.set()
        handle._update(state=state, connected=False, subscribed=False, last_error=message)
        self._schedule_retry(handle)

    def _schedule_retry(self, handle: Subscription) -> None:
        attempts = handle.retry_count
        if attempts >= self._max_retries:
            handle._update(state=StreamState.FAILED, last_error="Max reconnection attempts reached")
            logger.error(
                f"❌ Max reconnection attempts ({self._max_retries}) reached for {handle.collection}"
            )
            return

        attempts += 1
        delay = self._base_delay_ms * attempts / 1000
        handle._update(state=StreamState.RECONNECTING, retry_count=attempts)
        logger.info(
            f"🔄 Reconnecting to {handle.collection} in {delay:.1f}s "
            f"({attempts}/{self._max_retries})"
        )
        self._cancel_timer(handle)
        handle._timer = self._scheduler(delay, functools.partial(self._retry, handle))

    async def _retry(self, handle: Subscription) -> None:
        handle._timer = None
        if handle.closed:
            return
        await self._release_channel(handle)
        await self._connect(handle)

    async def _release_channel(self, handle: Subscription) -> None:
        channel, handle._channel = handle._channel, None
        if channel is not None:
            await self._remove_quietly(channel)

    async def _remove_quietly(self, channel: Any) -> None:
        try:
            await self._backend.remove_channel(channel)
        except Exception as exc:
            logger.warning(f"Failed to remove channel cleanly: {exc}")

    @staticmethod
    def _cancel_timer(handle: Subscription) -> None:
        if handle._timer is not None:
            handle._timer.cancel()
            handle._timer = None

    # ── Event delivery ────────────────────────────────────────────────────────
    def _on_message(self, handle: Subscription, epoch: int, payload: dict[str, Any]) -> None:
        if handle.closed or epoch != handle._epoch:
            return
        try:
            event = parse_change_payload(payload)
        except ValueError as exc:
            logger.error(f"Discarding malformed {handle.collection} payload: {exc}")
            handle._update(last_error=str(exc))
            return

        if not handle.event_mask.admits(event.event_type):
            return

        try:
            handle._queue.put_nowait(event)
        except asyncio.QueueFull:
            message = f"Event queue full for {handle.collection}; {event.event_type.value} for {event.record_id} lost"
            logger.error(message)
            handle._update(last_error=message)

    async def _pump(self, handle: Subscription) -> None:
        while not handle.closed:
            event = await handle._queue.get()
            try:
                changes: dict[str, Any] = {
                    "last_event_at": datetime.now(timezone.utc),
                    "last_error": None,
                }
                if handle.status.subscribed:
                    changes["retry_count"] = 0
                handle._update(**changes)

                result = handle.consumer(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                logger.exception(f"Error handling realtime {event.event_type.value} on {handle.collection}")
                handle._update(last_error=f"Error handling realtime update: {exc}")
            finally:
                handle._queue.task_done()
