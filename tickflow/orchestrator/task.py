"""
tickflow — Task Abstractions
==============================
Units of automation logic run one at a time by the ``TaskRunner``.

Design decisions:
- Tasks never touch the host directly; every host read goes through the
  ``TickBridge`` and runs inside the next tick callback
- Collaborators (bridge, host, runner) are passed in a ``TaskContext``
  rather than looked up from module globals
- Tick-resident behaviour is a capability (``TickResident``), detected by
  the runner's tick integration at runtime

Usage:
    class WalkTask(Task):
        async def execute(self):
            pos = await self.run_on_tick(lambda: host.read("position"))
            if near(pos):
                return self.next_index()
            await self.delay(2000)
            return self.stay()
"""

from __future__ import annotations

import abc
import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Protocol, runtime_checkable

from tickflow.core.exceptions import TickflowError
from tickflow.core.logging import LogSeverity, get_logger, log_message
from tickflow.host.ports import HostPort
from tickflow.orchestrator.bridge import TickBridge
from tickflow.orchestrator.outcomes import AWAIT_SIGNAL, NextIndex, TaskOutcome
from tickflow.orchestrator.state_machine import TaskPhase, validate_phase_transition

if TYPE_CHECKING:
    from tickflow.orchestrator.runner import TaskRunner

logger = get_logger(__name__)


# ── Context ─────────────────────────────────────────────────────────────


@dataclass
class TaskContext:
    """
    Collaborators shared by every task of one runner.

    Built by the host integration layer, which owns the bridge and the
    runner, and handed to each task at construction.
    """

    bridge: TickBridge
    host: HostPort
    runner: TaskRunner | None = None


# ── Capability ──────────────────────────────────────────────────────────


@runtime_checkable
class TickResident(Protocol):
    """Anything the tick integration should call once per tick while active."""

    def process_tick(self) -> bool:
        ...


# ── Base Task ───────────────────────────────────────────────────────────


class Task(abc.ABC):
    """
    Abstract base for all tasks.

    Lifecycle per activation: ``initialize()`` → ``execute()`` →
    ``cleanup()``.  ``execute()`` returns a ``TaskOutcome`` (or a bare
    non-negative ``int``) telling the runner which task comes next.
    """

    def __init__(self, context: TaskContext, name: str | None = None) -> None:
        self._context = context
        self.name = name or type(self).__name__
        self.phase = TaskPhase.NOT_STARTED

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, phase={self.phase.value})"

    # ── Properties ──────────────────────────────────────────────────────

    @property
    def context(self) -> TaskContext:
        return self._context

    @property
    def bridge(self) -> TickBridge:
        return self._context.bridge

    @property
    def host(self) -> HostPort:
        return self._context.host

    @property
    def runner(self) -> TaskRunner:
        runner = self._context.runner
        if runner is None:
            raise TickflowError(
                f"Task '{self.name}' is not attached to a runner.",
                task_name=self.name,
            )
        return runner

    @property
    def current_index(self) -> int:
        """The runner's current task index."""
        return self.runner.current_index

    # ── Lifecycle ───────────────────────────────────────────────────────

    async def initialize(self) -> None:
        """Set up task-local state before ``execute()``.  Default: no-op."""

    @abc.abstractmethod
    async def execute(self) -> TaskOutcome | int:
        """
        Run the task's main logic and return the next transition.

        Raise (``HostPreconditionError`` or any other exception) on an
        unrecoverable failure; the runner treats it as fatal.
        """
        ...

    async def cleanup(self) -> None:
        """Release task-local state.  Default: no-op."""

    async def on_error(self, exc: BaseException) -> None:
        """Called by the runner after ``execute()`` failed.  Default: no-op."""

    def set_phase(self, phase: TaskPhase) -> None:
        """Move to ``phase``; raises ``InvalidPhaseTransitionError`` if out of order."""
        validate_phase_transition(self.phase, phase, task_name=self.name)
        self.phase = phase

    # ── Host access (deferred to the tick) ──────────────────────────────

    async def read_host_value(self, varbit_id: int) -> Any:
        return await self.bridge.run(lambda: self.host.get_varbit(varbit_id))

    async def read_player_var(self, varp_id: int) -> Any:
        return await self.bridge.run(lambda: self.host.get_varp(varp_id))

    async def read_widget(self, group_id: int, child_id: int) -> Any:
        return await self.bridge.run(
            lambda: self.host.get_widget(group_id, child_id)
        )

    async def run_on_tick(
        self,
        thunk: Callable[[], Any],
        timeout: float | None = None,
    ) -> Any:
        """Run an arbitrary host read or command on the next tick."""
        return await self.bridge.run(thunk, timeout)

    async def delay(self, ms: int) -> None:
        """Sleep ``ms`` milliseconds on the host's timer.  Does not touch host state."""
        loop = asyncio.get_running_loop()
        fired: asyncio.Future = loop.create_future()

        def _fire() -> None:
            if not fired.done():
                fired.set_result(None)

        self.host.invoke_later(_fire, ms)
        await fired

    # ── Transitions ─────────────────────────────────────────────────────

    def next_index(self) -> NextIndex:
        return NextIndex(self.current_index + 1)

    def stay(self) -> NextIndex:
        """Run this task again (after cleanup and re-initialization)."""
        return NextIndex(self.current_index)

    def signal_transition(self, target_index: int | None = None) -> bool:
        return self.runner.signal_transition(target_index)

    def stop_runner(self) -> None:
        self.runner.stop()

    def log(self, message: str, severity: LogSeverity | str = LogSeverity.INFO) -> None:
        log_message(message, severity, task=self.name)


# ── Tick-Resident Task ──────────────────────────────────────────────────


class TickTask(Task):
    """
    Task whose work happens in ``on_tick()``, once per host tick.

    ``execute()`` only initializes and then parks the runner on
    ``AWAIT_SIGNAL``.  Returning ``False`` from ``on_tick()`` (or calling
    ``signal_transition``) ends the task.  ``on_tick()`` runs inside the
    tick callback, so it may read host state directly, but it must not
    block; longer bridge-based work goes through ``spawn()``.
    """

    def __init__(self, context: TaskContext, name: str | None = None) -> None:
        super().__init__(context, name)
        self.is_running = False
        self.tick_count = 0
        self._spawned: set[asyncio.Task] = set()

    async def initialize(self) -> None:
        self.is_running = True
        self.tick_count = 0

    async def execute(self) -> TaskOutcome | int:
        logger.info("task.tick_resident_started", task=self.name)
        if not self.is_running:
            await self.initialize()
        return AWAIT_SIGNAL

    def process_tick(self) -> bool:
        """Called by the tick integration; returns ``False`` when finished."""
        if not self.is_running:
            return False
        self.tick_count += 1
        return bool(self.on_tick())

    def on_tick(self) -> bool:
        """Per-tick work.  Default: keep running."""
        return True

    def spawn(self, coro: Awaitable[Any]) -> asyncio.Task:
        """Start background work that may await bridge helpers."""
        task = asyncio.ensure_future(coro)
        self._spawned.add(task)
        task.add_done_callback(self._on_spawned_done)
        return task

    async def cleanup(self) -> None:
        self.is_running = False
        pending = [t for t in self._spawned if not t.done()]
        for t in pending:
            t.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._spawned.clear()

    def _on_spawned_done(self, task: asyncio.Task) -> None:
        self._spawned.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "task.spawned_failed",
                task=self.name,
                error=f"{type(exc).__name__}: {exc}",
            )
