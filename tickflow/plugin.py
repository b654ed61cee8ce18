"""
tickflow — Host Integration Layer
===================================
Startup, shutdown and per-tick entry points the host calls.

The plugin owns exactly one ``TickBridge`` and one ``TaskRunner`` and
hands both to its tasks through a ``TaskContext``.  Nothing raised by
the runner or a task ever reaches the host.

Usage:
    class Woodcutting(TaskRunnerPlugin):
        def build_tasks(self, context):
            return [InitTask(context), WalkTask(context), ChopTask(context)]

    plugin = Woodcutting(host)
    plugin.on_start()          # host startup hook (inside a running loop)
    plugin.on_tick()           # host tick callback, once per tick
    plugin.on_shutdown()       # host shutdown hook
"""

from __future__ import annotations

import abc
import asyncio
from typing import Sequence

import structlog

from tickflow.core.exceptions import RunnerStateError
from tickflow.core.logging import configure_logging, current_tick_ctx, get_logger
from tickflow.host.ports import HostPort
from tickflow.orchestrator.bridge import TickBridge
from tickflow.orchestrator.runner import TaskRunner
from tickflow.orchestrator.task import Task, TaskContext, TickResident

logger = get_logger(__name__)


class TaskRunnerPlugin(abc.ABC):
    """Template for a host plugin driving a ``TaskRunner``."""

    def __init__(self, host: HostPort, *, bridge: TickBridge | None = None) -> None:
        self._host = host
        self._bridge = bridge or TickBridge()
        self._runner: TaskRunner | None = None
        self._run_task: asyncio.Task | None = None
        self._tick_number = 0

    # ── Properties ──────────────────────────────────────────────────────

    @property
    def host(self) -> HostPort:
        return self._host

    @property
    def bridge(self) -> TickBridge:
        return self._bridge

    @property
    def runner(self) -> TaskRunner | None:
        return self._runner

    @property
    def tick_number(self) -> int:
        return self._tick_number

    # ── Abstract ────────────────────────────────────────────────────────

    @abc.abstractmethod
    def build_tasks(self, context: TaskContext) -> Sequence[Task]:
        """Return the ordered task list; list positions are transition indices."""
        ...

    # ── Host hooks ──────────────────────────────────────────────────────

    def on_start(self) -> None:
        """
        Configure logging, build the runner and start its loop in the
        background.

        Must be called from inside the running event loop.  Logging set up
        by the embedding application is left alone.
        """
        if self._runner is not None:
            raise RunnerStateError("Plugin already started.")
        if not structlog.is_configured():
            configure_logging()
        logger.info("plugin.starting", plugin=type(self).__name__)

        runner = TaskRunner()
        context = TaskContext(bridge=self._bridge, host=self._host, runner=runner)
        runner.add_tasks(self.build_tasks(context))
        self._runner = runner

        self._run_task = asyncio.get_running_loop().create_task(runner.run())
        self._run_task.add_done_callback(self._on_run_done)
        logger.info("plugin.started", task_count=len(runner.tasks))

    def on_shutdown(self) -> None:
        """Stop the runner and release every coroutine parked on the bridge."""
        logger.info("plugin.stopping")
        if self._runner is not None:
            self._runner.stop()
        self._bridge.cancel_all()
        logger.info("plugin.stopped")

    def on_tick(self) -> None:
        """
        Per-tick entry point.  Never raises.

        1. Drain the bridge: the only place host state is touched.
        2. Give the active tick-resident task its tick, if the runner is
           parked on it.
        """
        self._tick_number += 1
        token = current_tick_ctx.set(self._tick_number)
        try:
            self._bridge.drain()
            self._process_tick_resident()
        except Exception as exc:
            logger.error(
                "plugin.tick_failed",
                error=f"{type(exc).__name__}: {exc}",
            )
        finally:
            current_tick_ctx.reset(token)

    async def wait_stopped(self, timeout: float | None = None) -> bool:
        """Wait for the run loop to finish.  Returns ``False`` on timeout."""
        if self._run_task is None:
            return True
        done, _ = await asyncio.wait({self._run_task}, timeout=timeout)
        return bool(done)

    # ── Internal ────────────────────────────────────────────────────────

    def _process_tick_resident(self) -> None:
        runner = self._runner
        if runner is None or not runner.awaiting_transition:
            return
        task = runner.active_task
        if not isinstance(task, TickResident):
            return

        try:
            keep_running = task.process_tick()
        except Exception as exc:
            logger.error(
                "plugin.tick_task_failed",
                task=getattr(task, "name", type(task).__name__),
                error=f"{type(exc).__name__}: {exc}",
            )
            runner.fail_active_task(exc)
            return

        if not keep_running:
            runner.signal_transition()

    def _on_run_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            logger.warning("plugin.runner_cancelled")
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "plugin.runner_crashed",
                error=f"{type(exc).__name__}: {exc}",
            )
        elif self._runner is not None and self._runner.failure is not None:
            logger.error("plugin.runner_failed", error=str(self._runner.failure))
        else:
            logger.info("plugin.runner_finished")
