"""
tickflow — Tick Synchronization Bridge
=========================================
FIFO queue of host operations paired with timeout-guarded futures.

Task logic runs as ordinary coroutines and may submit work at any time;
the work itself only runs when the host's tick callback calls ``drain()``.

Usage:
    bridge = TickBridge()
    level = await bridge.run(lambda: host.get_varbit(1173))

    # inside the host tick callback
    bridge.drain()
"""

from __future__ import annotations

import asyncio
import itertools
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable

from tickflow.core.config import get_settings
from tickflow.core.exceptions import TickExecutionError, TickTimeoutError
from tickflow.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(slots=True)
class PendingOperation:
    """One queued unit of host-touching work."""

    operation_id: int
    thunk: Callable[[], Any]


@dataclass(slots=True)
class CompletionHandle:
    """One-shot completion sink plus the deadline timer guarding it."""

    future: asyncio.Future
    timer: asyncio.TimerHandle
    timeout_seconds: float


class TickBridge:
    """
    Defers host access from task coroutines to the tick callback.

    Operations are executed strictly in submission order, at most once,
    and never after their deadline has elapsed.

    Thread safety: NOT thread-safe.  Submitters and the drainer must share
    one event loop, and the host must deliver ticks non-reentrantly.
    """

    def __init__(self, default_timeout: float | None = None) -> None:
        if default_timeout is None:
            default_timeout = get_settings().bridge_timeout_seconds
        if default_timeout <= 0:
            raise ValueError("default_timeout must be positive")
        self._default_timeout = default_timeout
        self._queue: OrderedDict[int, PendingOperation] = OrderedDict()
        self._pending: dict[int, CompletionHandle] = {}
        self._ids = itertools.count(1)

    @property
    def default_timeout(self) -> float:
        return self._default_timeout

    @property
    def queued_count(self) -> int:
        """Operations waiting for a drain.  Expired and abandoned ones leave at once."""
        return len(self._queue)

    @property
    def pending_count(self) -> int:
        """Operations whose future has not settled yet."""
        return len(self._pending)

    # ── Submission ──────────────────────────────────────────────────────

    def submit(
        self,
        thunk: Callable[[], Any],
        timeout: float | None = None,
    ) -> asyncio.Future:
        """
        Queue ``thunk`` for the next drain and return its future.

        Must be called while an event loop is running.  The future
        settles with the thunk's return value, with
        ``TickExecutionError`` if the thunk raises, or with
        ``TickTimeoutError`` if no drain reaches it within ``timeout``.
        """
        timeout_seconds = self._default_timeout if timeout is None else timeout
        if timeout_seconds <= 0:
            raise ValueError("timeout must be positive")

        loop = asyncio.get_running_loop()
        operation_id = next(self._ids)
        future: asyncio.Future = loop.create_future()
        timer = loop.call_later(timeout_seconds, self._expire, operation_id)

        self._pending[operation_id] = CompletionHandle(
            future=future,
            timer=timer,
            timeout_seconds=timeout_seconds,
        )
        self._queue[operation_id] = PendingOperation(operation_id, thunk)
        future.add_done_callback(
            lambda fut, op_id=operation_id: self._on_done(op_id, fut)
        )
        return future

    async def run(
        self,
        thunk: Callable[[], Any],
        timeout: float | None = None,
    ) -> Any:
        """Submit ``thunk`` and wait for the tick that runs it."""
        return await self.submit(thunk, timeout)

    # ── Tick side ───────────────────────────────────────────────────────

    def drain(self) -> int:
        """
        Run every queued operation, oldest first.

        Operations queued by thunks during this call are run by this call
        too.  Expired or abandoned operations are dropped without running
        their thunk.  Never raises, apart from letting
        ``KeyboardInterrupt`` and ``SystemExit`` through once the failing
        operation has settled.

        Returns the number of thunks executed.
        """
        executed = 0
        while self._queue:
            _, operation = self._queue.popitem(last=False)
            handle = self._pending.pop(operation.operation_id, None)
            if handle is None:
                continue

            handle.timer.cancel()
            if handle.future.done():
                continue

            try:
                result = operation.thunk()
            except BaseException as exc:
                logger.debug(
                    "bridge.operation_failed",
                    operation_id=operation.operation_id,
                    error=f"{type(exc).__name__}: {exc}",
                )
                handle.future.set_exception(
                    TickExecutionError(operation.operation_id, exc)
                )
                if isinstance(exc, (KeyboardInterrupt, SystemExit)):
                    raise
            else:
                handle.future.set_result(result)
            executed += 1

        if executed:
            logger.debug("bridge.drained", executed=executed)
        return executed

    def cancel_all(self) -> int:
        """
        Cancel every unsettled operation and empty the queue.

        Used at shutdown so no coroutine stays parked on a tick that
        will never come.  Returns the number of futures cancelled.
        """
        handles = list(self._pending.values())
        self._pending.clear()
        self._queue.clear()
        cancelled = 0
        for handle in handles:
            handle.timer.cancel()
            if handle.future.cancel():
                cancelled += 1
        if cancelled:
            logger.info("bridge.cancelled", cancelled=cancelled)
        return cancelled

    # ── Internal ────────────────────────────────────────────────────────

    def _expire(self, operation_id: int) -> None:
        self._queue.pop(operation_id, None)
        handle = self._pending.pop(operation_id, None)
        if handle is None or handle.future.done():
            return
        logger.warning(
            "bridge.operation_timeout",
            operation_id=operation_id,
            timeout_seconds=handle.timeout_seconds,
        )
        handle.future.set_exception(
            TickTimeoutError(operation_id, handle.timeout_seconds)
        )

    def _on_done(self, operation_id: int, future: asyncio.Future) -> None:
        """Release the handle of a future its awaiter gave up on."""
        if not future.cancelled():
            return
        self._queue.pop(operation_id, None)
        handle = self._pending.pop(operation_id, None)
        if handle is not None:
            handle.timer.cancel()
