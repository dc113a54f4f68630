"""
Serializing request governor for the Gemini backend.

Work is submitted as a nullary coroutine factory and executed one item at a
time by a single drain task, with at least ``min_interval`` seconds between
dispatches. Throttling failures are retried with exponential backoff seeded
by the backend's own retry hint; every other failure is returned to the
caller untouched.

    Queued -> Dispatching -> Succeeded
                          -> RateLimited -> Waiting -> Queued (retry_count + 1)
                          -> FailedPermanently

Retries are scheduled through the clock's ``call_later`` so they do not hold
up the rest of the queue, and a retried item re-enters at the back. A short
``dispatch_pause`` separates consecutive dispatch cycles whatever the outcome
of the previous item (success, failure or rate limit).
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, Protocol

from governor.errors import (
    GovernorClosedError,
    RetriesExhaustedError,
    is_rate_limit_error,
    suggested_retry_delay,
)

log = logging.getLogger("studybuddy.governor")

WorkFn = Callable[[], Awaitable[Any]]


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class GovernorClock(Protocol):
    def monotonic(self) -> float: ...

    async def sleep(self, seconds: float) -> None: ...

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


class LoopClock:
    """Wall clock backed by the running asyncio loop."""

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        return asyncio.get_running_loop().call_later(delay, callback)


@dataclass
class WorkItem:
    item_id: int
    run: WorkFn
    future: asyncio.Future
    retry_count: int = 0


class RequestGovernor:
    def __init__(
        self,
        min_interval: float = 30.0,
        max_retries: int = 3,
        default_retry_delay: float = 30.0,
        dispatch_pause: float = 0.1,
        clock: Optional[GovernorClock] = None,
    ):
        if min_interval < 0 or max_retries < 0 or default_retry_delay <= 0 or dispatch_pause < 0:
            raise ValueError("invalid governor configuration")
        self.min_interval = min_interval
        self.max_retries = max_retries
        self.default_retry_delay = default_retry_delay
        self.dispatch_pause = dispatch_pause
        self.clock: GovernorClock = clock or LoopClock()

        self._queue: Deque[WorkItem] = deque()
        self._draining = False
        self._drain_task: Optional[asyncio.Task] = None
        self._inflight: Optional[WorkItem] = None
        self._last_dispatch: Optional[float] = None
        self._retry_timers: Dict[int, TimerHandle] = {}
        self._waiting: Dict[int, WorkItem] = {}
        self._ids = itertools.count(1)
        self._closed = False
        self.dispatched = 0

    @property
    def queue_depth(self) -> int:
        return len(self._queue)

    @property
    def pending_retries(self) -> int:
        return len(self._retry_timers)

    def stats(self) -> Dict[str, Any]:
        return {
            "queue_depth": self.queue_depth,
            "pending_retries": self.pending_retries,
            "draining": self._draining,
            "dispatched": self.dispatched,
            "min_interval_seconds": self.min_interval,
            "max_retries": self.max_retries,
        }

    def submit(self, run: WorkFn) -> asyncio.Future:
        """Queue one outbound call; the returned future settles at its terminal state."""
        if self._closed:
            raise GovernorClosedError()
        fut = asyncio.get_running_loop().create_future()
        item = WorkItem(item_id=next(self._ids), run=run, future=fut)
        self._enqueue(item)
        return fut

    def _enqueue(self, item: WorkItem) -> None:
        self._queue.append(item)
        log.debug(
            "governor_enqueued",
            extra={"extra": {"event": "governor_enqueued", "item_id": item.item_id, "retry_count": item.retry_count, "queue_depth": len(self._queue)}},
        )
        if not self._draining:
            self._draining = True
            self._drain_task = asyncio.ensure_future(self._drain())

    async def _drain(self) -> None:
        try:
            while self._queue:
                item = self._queue.popleft()
                self._inflight = item
                await self._dispatch(item)
                self._inflight = None
                if self._queue and self.dispatch_pause > 0:
                    await self.clock.sleep(self.dispatch_pause)
        except asyncio.CancelledError:
            item, self._inflight = self._inflight, None
            if item is not None:
                if self._closed:
                    self._settle(item, exc=GovernorClosedError())
                elif not item.future.done():
                    item.future.cancel()
            raise
        finally:
            self._draining = False
            # An item can raise CancelledError on its own; the rest of the queue still has to run.
            if self._queue and not self._closed:
                self._draining = True
                self._drain_task = asyncio.ensure_future(self._drain())

    async def _dispatch(self, item: WorkItem) -> None:
        if self._last_dispatch is not None:
            wait = max(0.0, self._last_dispatch + self.min_interval - self.clock.monotonic())
            if wait > 0:
                log.info(
                    "governor_pacing_wait",
                    extra={"extra": {"event": "governor_pacing_wait", "item_id": item.item_id, "wait_seconds": round(wait, 3)}},
                )
                await self.clock.sleep(wait)

        self._last_dispatch = self.clock.monotonic()
        self.dispatched += 1
        log.info(
            "governor_dispatch",
            extra={"extra": {"event": "governor_dispatch", "item_id": item.item_id, "retry_count": item.retry_count}},
        )
        try:
            result = await item.run()
        except Exception as e:
            if is_rate_limit_error(e):
                self._on_rate_limited(item, e)
            else:
                log.warning(
                    "governor_item_failed",
                    extra={"extra": {"event": "governor_item_failed", "item_id": item.item_id, "error_type": type(e).__name__, "message": str(e)}},
                )
                self._settle(item, exc=e)
        else:
            self._settle(item, result=result)

    def _on_rate_limited(self, item: WorkItem, err: Exception) -> None:
        hint = suggested_retry_delay(err)
        delay = (hint if hint is not None else self.default_retry_delay) * (2 ** item.retry_count)

        if item.retry_count >= self.max_retries:
            log.error(
                "governor_retries_exhausted",
                extra={"extra": {"event": "governor_retries_exhausted", "item_id": item.item_id, "attempts": item.retry_count + 1}},
            )
            self._settle(item, exc=RetriesExhaustedError(attempts=item.retry_count + 1, retry_after=delay))
            return

        log.warning(
            "governor_retry_scheduled",
            extra={"extra": {
                "event": "governor_retry_scheduled",
                "item_id": item.item_id,
                "retry": item.retry_count + 1,
                "max_retries": self.max_retries,
                "delay_seconds": delay,
                "backend_hint_seconds": hint,
            }},
        )
        self._waiting[item.item_id] = item
        self._retry_timers[item.item_id] = self.clock.call_later(delay, lambda: self._requeue(item.item_id))

    def _requeue(self, item_id: int) -> None:
        self._retry_timers.pop(item_id, None)
        item = self._waiting.pop(item_id, None)
        if item is None or self._closed:
            return
        item.retry_count += 1
        self._enqueue(item)

    @staticmethod
    def _settle(item: WorkItem, result: Any = None, exc: Optional[BaseException] = None) -> None:
        # The caller may have gone away (client disconnect cancels its await).
        if item.future.done():
            return
        if exc is not None:
            item.future.set_exception(exc)
        else:
            item.future.set_result(result)

    async def close(self) -> None:
        """Stop accepting work and fail everything still queued or waiting to retry."""
        if self._closed:
            return
        self._closed = True

        for item_id, handle in list(self._retry_timers.items()):
            handle.cancel()
            item = self._waiting.pop(item_id, None)
            if item is not None:
                self._settle(item, exc=GovernorClosedError())
        self._retry_timers.clear()

        while self._queue:
            self._settle(self._queue.popleft(), exc=GovernorClosedError())

        task = self._drain_task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        log.info("governor_closed", extra={"extra": {"event": "governor_closed", "dispatched": self.dispatched}})
