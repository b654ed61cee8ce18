"""
tickflow Tests — Task Runner
===============================
Validates:
- Tasks are activated in the order dictated by outcomes and signals
- cleanup() of the outgoing task completes before the incoming task starts,
  including on termination
- stop() releases a parked transition wait; the loop never hangs
- Task failures are fatal, logged at error, delegated to on_error, never
  retried
- The runner is not restartable
"""

from __future__ import annotations

import asyncio

import pytest
from structlog.testing import capture_logs

from tickflow.core.exceptions import (
    HostPreconditionError,
    InvalidOutcomeError,
    RunnerStateError,
    TaskFailureError,
)
from tickflow.orchestrator.outcomes import AWAIT_SIGNAL, NextIndex
from tickflow.orchestrator.runner import TaskRunner
from tickflow.orchestrator.state_machine import RunnerState, TaskPhase
from tickflow.orchestrator.task import Task, TickTask


# ── Scripted test tasks ─────────────────────────────────────────────────


class ScriptedTask(Task):
    """Returns the next value from ``outcomes`` on each execution."""

    def __init__(self, context, name, events, outcomes) -> None:
        super().__init__(context, name=name)
        self.events = events
        self.outcomes = list(outcomes)
        self.errors: list[BaseException] = []

    async def initialize(self) -> None:
        self.events.append(f"{self.name}.initialize")

    async def execute(self):
        self.events.append(f"{self.name}.execute")
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def cleanup(self) -> None:
        self.events.append(f"{self.name}.cleanup:start")
        await asyncio.sleep(0)
        self.events.append(f"{self.name}.cleanup:end")

    async def on_error(self, exc: BaseException) -> None:
        self.errors.append(exc)


class ParkedTickTask(TickTask):
    def __init__(self, context, events) -> None:
        super().__init__(context, name="Parked")
        self.events = events

    async def cleanup(self) -> None:
        self.events.append("Parked.cleanup")
        await super().cleanup()


async def _wait_until(predicate, timeout: float = 1.0) -> None:
    async def _poll():
        while not predicate():
            await asyncio.sleep(0)
    await asyncio.wait_for(_poll(), timeout)


@pytest.fixture
def events() -> list[str]:
    return []


# ── Ordering ────────────────────────────────────────────────────────────


class TestRunnerOrdering:

    async def test_outcomes_and_signals_drive_order(self, context, events):
        runner = TaskRunner()
        a = ScriptedTask(context, "A", events, [1, NextIndex(3)])
        b = ScriptedTask(context, "B", events, [AWAIT_SIGNAL])
        c = ScriptedTask(context, "C", events, [0])
        runner.add_task(a).add_task(b).add_task(c)

        run = asyncio.ensure_future(runner.run())
        await _wait_until(lambda: runner.awaiting_transition)
        assert runner.active_task is b

        assert runner.signal_transition(0) is True
        await asyncio.wait_for(run, 1.0)

        executed = [e for e in events if e.endswith(".execute")]
        assert executed == ["A.execute", "B.execute", "A.execute"]
        assert runner.state == RunnerState.STOPPED
        assert runner.current_index == 3
        assert runner.failure is None

    async def test_signal_without_target_advances(self, context, events):
        runner = TaskRunner().add_tasks([
            ScriptedTask(context, "A", events, [AWAIT_SIGNAL]),
            ScriptedTask(context, "B", events, [2]),
        ])

        run = asyncio.ensure_future(runner.run())
        await _wait_until(lambda: runner.awaiting_transition)
        runner.signal_transition()
        await asyncio.wait_for(run, 1.0)

        assert "B.execute" in events

    async def test_returning_current_index_reruns_task(self, context, events):
        runner = TaskRunner().add_task(
            ScriptedTask(context, "A", events, [0, 0, 1])
        )

        await asyncio.wait_for(runner.run(), 1.0)

        assert events.count("A.initialize") == 3
        assert events.count("A.cleanup:end") == 3

    async def test_cleanup_completes_before_next_task_starts(self, context, events):
        runner = TaskRunner().add_tasks([
            ScriptedTask(context, "A", events, [1]),
            ScriptedTask(context, "B", events, [2]),
        ])

        await asyncio.wait_for(runner.run(), 1.0)

        assert events == [
            "A.initialize", "A.execute",
            "A.cleanup:start", "A.cleanup:end",
            "B.initialize", "B.execute",
            "B.cleanup:start", "B.cleanup:end",
        ]

    async def test_phases_end_done(self, context, events):
        task = ScriptedTask(context, "A", events, [1])
        runner = TaskRunner().add_task(task)

        await runner.run()

        assert task.phase == TaskPhase.DONE
        assert runner.active_task is None

    async def test_empty_runner_completes(self):
        runner = TaskRunner()
        await runner.run()
        assert runner.state == RunnerState.STOPPED

    async def test_add_task_attaches_runner(self, context, events):
        runner = TaskRunner()
        task = ScriptedTask(context, "A", events, [1])
        runner.add_task(task)
        assert task.runner is runner
        assert runner.tasks == (task,)


# ── Signals & stop ──────────────────────────────────────────────────────


class TestRunnerSignals:

    def test_signal_without_waiter_is_noop(self):
        runner = TaskRunner()
        assert runner.signal_transition() is False
        assert runner.signal_transition(3) is False

    async def test_double_signal_only_first_counts(self, context, events):
        runner = TaskRunner().add_tasks([
            ScriptedTask(context, "A", events, [AWAIT_SIGNAL]),
            ScriptedTask(context, "B", events, [3]),
            ScriptedTask(context, "C", events, [3]),
        ])
        run = asyncio.ensure_future(runner.run())
        await _wait_until(lambda: runner.awaiting_transition)

        assert runner.signal_transition(2) is True
        assert runner.signal_transition(1) is False
        await asyncio.wait_for(run, 1.0)

        assert "C.execute" in events
        assert "B.execute" not in events

    async def test_negative_signal_rejected(self, context, events):
        runner = TaskRunner().add_task(
            ScriptedTask(context, "A", events, [AWAIT_SIGNAL])
        )
        run = asyncio.ensure_future(runner.run())
        await _wait_until(lambda: runner.awaiting_transition)

        with pytest.raises(InvalidOutcomeError):
            runner.signal_transition(-1)

        runner.stop()
        await asyncio.wait_for(run, 1.0)

    async def test_non_integer_signal_rejected(self, context, events):
        runner = TaskRunner().add_task(
            ScriptedTask(context, "A", events, [AWAIT_SIGNAL])
        )
        run = asyncio.ensure_future(runner.run())
        await _wait_until(lambda: runner.awaiting_transition)

        with pytest.raises(InvalidOutcomeError):
            runner.signal_transition("3")
        assert runner.awaiting_transition

        runner.stop()
        await asyncio.wait_for(run, 1.0)

    async def test_stop_releases_parked_tick_task(self, context, events):
        task = ParkedTickTask(context, events)
        runner = TaskRunner().add_tasks([
            task,
            ScriptedTask(context, "Never", events, [2]),
        ])
        run = asyncio.ensure_future(runner.run())
        await _wait_until(lambda: runner.awaiting_transition)
        assert task.is_running is True

        runner.stop()
        assert runner.is_running is False
        await asyncio.wait_for(run, 1.0)

        assert runner.state == RunnerState.STOPPED
        assert events == ["Parked.cleanup"]
        assert task.is_running is False
        assert runner.current_index == 0

    async def test_stop_from_inside_execute(self, context, events):
        class StopsRunner(Task):
            async def execute(self):
                self.stop_runner()
                return self.stay()

        runner = TaskRunner().add_tasks([
            StopsRunner(context),
            ScriptedTask(context, "Never", events, [2]),
        ])

        await asyncio.wait_for(runner.run(), 1.0)

        assert runner.state == RunnerState.STOPPED
        assert events == []

    async def test_stop_before_run(self):
        runner = TaskRunner()
        runner.stop()
        assert runner.state == RunnerState.STOPPED
        with pytest.raises(RunnerStateError):
            await runner.run()

    async def test_not_restartable(self):
        runner = TaskRunner()
        await runner.run()
        with pytest.raises(RunnerStateError):
            await runner.run()

    async def test_no_tasks_added_after_start(self, context, events):
        runner = TaskRunner()
        await runner.run()
        with pytest.raises(RuntimeError):
            runner.add_task(ScriptedTask(context, "A", events, [1]))


# ── Failures ────────────────────────────────────────────────────────────


class TestRunnerFailures:

    async def test_failure_is_fatal_and_delegated(self, context, events):
        boom = HostPreconditionError("player not logged in")
        a = ScriptedTask(context, "A", events, [boom])
        b = ScriptedTask(context, "B", events, [2])
        runner = TaskRunner().add_tasks([a, b])

        with capture_logs() as logs:
            await asyncio.wait_for(runner.run(), 1.0)

        failed = [e for e in logs if e["event"] == "runner.task_failed"]
        assert len(failed) == 1
        assert failed[0]["log_level"] == "error"
        assert a.errors == [boom]
        assert "B.execute" not in events
        assert "A.cleanup:end" in events
        assert runner.state == RunnerState.STOPPED
        assert isinstance(runner.failure, TaskFailureError)
        assert runner.failure.__cause__ is boom
        assert runner.failure.task_name == "A"
        assert runner.failure.task_index == 0

    async def test_invalid_outcome_is_a_failure(self, context, events):
        runner = TaskRunner().add_task(
            ScriptedTask(context, "A", events, ["STAY_ON_CURRENT_TASK"])
        )

        await runner.run()

        assert isinstance(runner.failure.__cause__, InvalidOutcomeError)

    async def test_failing_error_hook_is_contained(self, context, events):
        class BadHook(Task):
            async def execute(self):
                raise RuntimeError("execute")

            async def on_error(self, exc):
                raise RuntimeError("hook")

        runner = TaskRunner().add_task(BadHook(context))

        await runner.run()

        assert runner.state == RunnerState.STOPPED
        assert "execute" in str(runner.failure)

    async def test_failing_cleanup_stops_run(self, context, events):
        class BadCleanup(Task):
            async def execute(self):
                return 1

            async def cleanup(self):
                raise RuntimeError("cleanup")

        runner = TaskRunner().add_tasks([
            BadCleanup(context),
            ScriptedTask(context, "B", events, [2]),
        ])

        with capture_logs() as logs:
            await runner.run()

        assert events == []
        assert runner.failure.task_name == "BadCleanup"
        assert runner.failure.task_index == 0
        assert {
            "event": "runner.cleanup_failed",
            "task": "BadCleanup",
            "error": "RuntimeError: cleanup",
            "log_level": "error",
        } in logs

    async def test_cleanup_failure_reports_activation_index(self, context):
        class FailsSecondCleanup(Task):
            cleanups = 0

            async def execute(self):
                return self.next_index()

            async def cleanup(self):
                self.cleanups += 1
                if self.cleanups == 2:
                    raise RuntimeError("cleanup")

        task = FailsSecondCleanup(context)
        runner = TaskRunner().add_tasks([task, task])

        await runner.run()

        assert task.cleanups == 2
        assert runner.failure.task_index == 1

    async def test_fail_active_task(self, context, events):
        task = ParkedTickTask(context, events)
        runner = TaskRunner().add_task(task)
        run = asyncio.ensure_future(runner.run())
        await _wait_until(lambda: runner.awaiting_transition)

        assert runner.fail_active_task(ValueError("tick hook")) is True
        await asyncio.wait_for(run, 1.0)

        assert isinstance(runner.failure.__cause__, ValueError)
        assert events == ["Parked.cleanup"]
        assert runner.fail_active_task(ValueError("late")) is False
