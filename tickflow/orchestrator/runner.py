"""
tickflow — Sequential Task Runner
===================================
Runs an ordered list of tasks one at a time, choosing the next task from
each task's outcome or from an out-of-band transition signal.

Invariants:
- At most one task is active at any instant
- The outgoing task's ``cleanup()`` completes before the next task's
  ``initialize()`` starts, including on termination
- A task failure ends the run; it is never retried
- The runner is not restartable once STOPPED

Usage:
    runner = TaskRunner().add_task(InitTask(ctx)).add_task(ChopTask(ctx))
    await runner.run()

    # from the tick integration
    runner.signal_transition()      # advance to current_index + 1
    runner.stop()                   # terminate, cleaning up the active task
"""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable

import structlog

from tickflow.core.config import get_settings
from tickflow.core.exceptions import InvalidOutcomeError, TaskFailureError
from tickflow.core.logging import get_logger
from tickflow.orchestrator.outcomes import AwaitSignal, coerce_outcome
from tickflow.orchestrator.state_machine import (
    RunnerState,
    TaskPhase,
    validate_runner_transition,
)
from tickflow.orchestrator.task import Task

logger = get_logger(__name__)


class TaskRunner:
    """
    Sequential state machine over an ordered task list.

    States: IDLE (before ``run()``), RUNNING, STOPPED (terminal).
    The current index is the sole source of truth for what runs next.
    """

    def __init__(self, *, log_transitions: bool | None = None) -> None:
        if log_transitions is None:
            log_transitions = get_settings().runner_log_transitions
        self._log_transitions = log_transitions
        self._tasks: list[Task] = []
        self._current_index = 0
        self._active_task: Task | None = None
        self._active_index = 0
        self._state = RunnerState.IDLE
        self._running = False
        self._transition_wait: asyncio.Future | None = None
        self._failure: TaskFailureError | None = None

    # ── Properties ──────────────────────────────────────────────────────

    @property
    def tasks(self) -> tuple[Task, ...]:
        return tuple(self._tasks)

    @property
    def current_index(self) -> int:
        return self._current_index

    @property
    def active_task(self) -> Task | None:
        return self._active_task

    @property
    def state(self) -> RunnerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def awaiting_transition(self) -> bool:
        """``True`` while the loop is parked on a transition signal."""
        return self._transition_wait is not None and not self._transition_wait.done()

    @property
    def failure(self) -> TaskFailureError | None:
        """The failure that ended the run, if any."""
        return self._failure

    # ── Setup ───────────────────────────────────────────────────────────

    def add_task(self, task: Task) -> TaskRunner:
        """Append a task; its position is its transition index."""
        if self._state != RunnerState.IDLE:
            raise RuntimeError("Tasks can only be added before run().")
        if task.context.runner is None:
            task.context.runner = self
        self._tasks.append(task)
        return self

    def add_tasks(self, tasks: Iterable[Task]) -> TaskRunner:
        for task in tasks:
            self.add_task(task)
        return self

    # ── Run loop ────────────────────────────────────────────────────────

    async def run(self) -> None:
        """
        Run tasks until the list is exhausted, ``stop()`` is called, or a
        task fails.

        Raises ``RunnerStateError`` if the runner was already started or
        stopped.  Task failures are logged and exposed via ``failure``;
        they do not propagate.
        """
        self._set_state(RunnerState.RUNNING)
        self._running = True
        logger.info("runner.started", task_count=len(self._tasks))

        try:
            while self._running and self._current_index < len(self._tasks):
                if self._active_task is not None:
                    logger.debug(
                        "runner.cleaning_up", task=self._active_task.name
                    )
                    await self._cleanup_active()
                    if not self._running:
                        break

                index = self._current_index
                task = self._tasks[index]
                self._active_task = task
                self._active_index = index

                with structlog.contextvars.bound_contextvars(
                    task=task.name, task_index=index
                ):
                    try:
                        next_index = await self._activate(task, index)
                    except Exception as exc:
                        await self._handle_failure(task, index, exc)
                        break

                self._log_transition(index, next_index)
                self._current_index = next_index
        finally:
            if self._active_task is not None:
                logger.debug(
                    "runner.final_cleanup", task=self._active_task.name
                )
                await self._cleanup_active()
            self._running = False
            self._set_state(RunnerState.STOPPED)
            logger.info(
                "runner.stopped",
                current_index=self._current_index,
                failed=self._failure is not None,
            )

    async def _activate(self, task: Task, index: int) -> int:
        logger.log(
            self._transition_level(),
            "runner.task_executing",
            position=f"{index + 1}/{len(self._tasks)}",
        )
        task.set_phase(TaskPhase.INITIALIZING)
        await task.initialize()
        task.set_phase(TaskPhase.EXECUTING)
        result = await task.execute()

        try:
            outcome = coerce_outcome(result)
        except InvalidOutcomeError:
            raise InvalidOutcomeError(
                result, task_name=task.name, task_index=index
            ) from None

        if isinstance(outcome, AwaitSignal):
            logger.debug("runner.awaiting_transition")
            return await self._wait_for_transition()
        return outcome.index

    async def _wait_for_transition(self) -> int:
        if not self._running:
            return self._current_index
        self._transition_wait = asyncio.get_running_loop().create_future()
        try:
            return await self._transition_wait
        finally:
            self._transition_wait = None

    async def _cleanup_active(self) -> None:
        task = self._active_task
        self._active_task = None
        if task is None or task.phase in (TaskPhase.NOT_STARTED, TaskPhase.DONE):
            return
        task.set_phase(TaskPhase.CLEANING_UP)
        try:
            await task.cleanup()
        except Exception as exc:
            logger.error(
                "runner.cleanup_failed",
                task=task.name,
                error=f"{type(exc).__name__}: {exc}",
            )
            if self._failure is None:
                self._failure = self._wrap_failure(
                    task, self._active_index, exc
                )
            self._running = False
        finally:
            task.set_phase(TaskPhase.DONE)

    async def _handle_failure(
        self, task: Task, index: int, exc: Exception
    ) -> None:
        self._failure = self._wrap_failure(task, index, exc)
        logger.error(
            "runner.task_failed",
            error=f"{type(exc).__name__}: {exc}",
        )
        try:
            await task.on_error(exc)
        except Exception as hook_exc:
            logger.error(
                "runner.error_hook_failed",
                error=f"{type(hook_exc).__name__}: {hook_exc}",
            )

    @staticmethod
    def _wrap_failure(task: Task, index: int, exc: Exception) -> TaskFailureError:
        failure = TaskFailureError(
            f"Task '{task.name}' failed: {exc}",
            task_name=task.name,
            task_index=index,
        )
        failure.__cause__ = exc
        return failure

    # ── Out-of-band control ─────────────────────────────────────────────

    def signal_transition(self, target_index: int | None = None) -> bool:
        """
        Release a task parked on ``AWAIT_SIGNAL``.

        Moves to ``target_index``, or to ``current_index + 1`` if omitted.
        No-op (returns ``False``) when nothing is waiting, so a second
        signal in the same tick is harmless.
        """
        wait = self._transition_wait
        if wait is None or wait.done():
            return False
        if target_index is None:
            target_index = self._current_index + 1
        elif (
            not isinstance(target_index, int)
            or isinstance(target_index, bool)
            or target_index < 0
        ):
            raise InvalidOutcomeError(target_index)
        wait.set_result(target_index)
        logger.debug("runner.transition_signaled", target_index=target_index)
        return True

    def fail_active_task(self, exc: Exception) -> bool:
        """
        Fail the parked task with ``exc`` (e.g. its tick hook raised).

        The run loop handles it like a failure raised by ``execute()``.
        Returns ``False`` when nothing is waiting.
        """
        wait = self._transition_wait
        if wait is None or wait.done():
            return False
        wait.set_exception(exc)
        return True

    def stop(self) -> None:
        """
        Request termination.

        The active task is cleaned up by the run loop before the runner
        reports STOPPED.  A parked transition wait is released with the
        current index so the loop never hangs.
        """
        if self._state == RunnerState.IDLE:
            self._set_state(RunnerState.STOPPED)
            logger.info("runner.stopped_before_start")
            return
        if self._state == RunnerState.STOPPED:
            return

        self._running = False
        logger.info("runner.stop_requested", current_index=self._current_index)
        wait = self._transition_wait
        if wait is not None and not wait.done():
            wait.set_result(self._current_index)

    # ── Internal ────────────────────────────────────────────────────────

    def _set_state(self, state: RunnerState) -> None:
        validate_runner_transition(self._state, state)
        self._state = state

    def _transition_level(self) -> int:
        return logging.INFO if self._log_transitions else logging.DEBUG

    def _log_transition(self, index: int, next_index: int) -> None:
        logger.log(
            self._transition_level(),
            "runner.transition",
            from_index=index,
            to_index=next_index,
        )
