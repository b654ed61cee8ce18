"""
tickflow — Simulated Host
===========================
In-process host used by the test-suite and for dry runs without a client.

The simulated host enforces the one rule the real host imposes: state may
only be read inside the tick callback.  ``TickClock`` delivers ticks on a
fixed period, never re-entrantly.

Usage:
    host = SimulatedHost(varbits={1173: 13_363})
    clock = TickClock(host, plugin.on_tick, interval_seconds=0.6)
    clock.start()
    ...
    await clock.stop()
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable

from tickflow.core.config import get_settings
from tickflow.core.logging import get_logger
from tickflow.host.ports import HostPort

logger = get_logger(__name__)


class HostAccessError(RuntimeError):
    """Raised when host state is touched outside the tick callback."""


class SimulatedHost(HostPort):
    """
    Dictionary-backed host.

    ``state`` holds arbitrary named values (player position, inventory
    counts, ...) that test tasks read through ``run_on_tick`` thunks via
    ``read()`` and mutate via ``write()``.
    """

    def __init__(
        self,
        *,
        varbits: dict[int, Any] | None = None,
        varps: dict[int, Any] | None = None,
        widgets: dict[tuple[int, int], Any] | None = None,
        state: dict[str, Any] | None = None,
        strict: bool = True,
    ) -> None:
        self.varbits: dict[int, Any] = dict(varbits or {})
        self.varps: dict[int, Any] = dict(varps or {})
        self.widgets: dict[tuple[int, int], Any] = dict(widgets or {})
        self.state: dict[str, Any] = dict(state or {})
        self._strict = strict
        self._in_tick = False
        self._tick_count = 0

    @property
    def in_tick(self) -> bool:
        return self._in_tick

    @property
    def tick_count(self) -> int:
        return self._tick_count

    def run_tick(self, callback: Callable[[], None]) -> None:
        """Deliver one tick: run ``callback`` with host access enabled."""
        if self._in_tick:
            raise HostAccessError("Tick callback re-entered.")
        self._in_tick = True
        self._tick_count += 1
        try:
            callback()
        finally:
            self._in_tick = False

    def assert_in_tick(self) -> None:
        if self._strict and not self._in_tick:
            raise HostAccessError("Host state touched outside the tick callback.")

    # ── HostPort ────────────────────────────────────────────────────────

    def get_varbit(self, varbit_id: int) -> Any:
        self.assert_in_tick()
        return self.varbits.get(varbit_id, 0)

    def get_varp(self, varp_id: int) -> Any:
        self.assert_in_tick()
        return self.varps.get(varp_id, 0)

    def get_widget(self, group_id: int, child_id: int) -> Any:
        self.assert_in_tick()
        return self.widgets.get((group_id, child_id))

    def invoke_later(self, callback: Callable[[], None], delay_ms: int) -> None:
        loop = asyncio.get_running_loop()
        loop.call_later(max(0, delay_ms) / 1000, callback)

    # ── Generic state ───────────────────────────────────────────────────

    def read(self, key: str, default: Any = None) -> Any:
        self.assert_in_tick()
        return self.state.get(key, default)

    def write(self, key: str, value: Any) -> None:
        self.assert_in_tick()
        self.state[key] = value


class TickClock:
    """
    Periodic tick source for a ``SimulatedHost``.

    Each tick runs ``callback`` through ``host.run_tick`` so host access is
    allowed for exactly the duration of the callback.
    """

    def __init__(
        self,
        host: SimulatedHost,
        callback: Callable[[], None],
        interval_seconds: float | None = None,
    ) -> None:
        if interval_seconds is None:
            interval_seconds = get_settings().tick_interval_seconds
        self._host = host
        self._callback = callback
        self._interval = interval_seconds
        self._task: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def step(self) -> None:
        """Deliver a single tick immediately."""
        self._host.run_tick(self._callback)

    def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.get_running_loop().create_task(self._loop())
        logger.info("clock.started", interval_seconds=self._interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("clock.stopped", ticks=self._host.tick_count)

    async def _loop(self) -> None:
        while True:
            self.step()
            await asyncio.sleep(self._interval)
