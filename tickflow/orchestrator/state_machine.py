"""
tickflow — Runner and Task State Machines
===========================================
Whitelisted lifecycle transitions for the ``TaskRunner`` and its tasks.

Invariants enforced:
- The runner goes IDLE → RUNNING → STOPPED exactly once (not restartable)
- A task is only executed after being initialized, and only cleaned up
  after it was activated
"""

from __future__ import annotations

from enum import StrEnum

from tickflow.core.exceptions import InvalidPhaseTransitionError, RunnerStateError


# ── Runner States ───────────────────────────────────────────────────────


class RunnerState(StrEnum):
    """Task runner lifecycle states."""

    IDLE = "IDLE"
    RUNNING = "RUNNING"
    STOPPED = "STOPPED"


RUNNER_TRANSITIONS: dict[RunnerState, frozenset[RunnerState]] = {
    RunnerState.IDLE: frozenset({RunnerState.RUNNING, RunnerState.STOPPED}),
    RunnerState.RUNNING: frozenset({RunnerState.STOPPED}),
    # Terminal
    RunnerState.STOPPED: frozenset(),
}


# ── Task Phases ─────────────────────────────────────────────────────────


class TaskPhase(StrEnum):
    """Lifecycle phase of a single task activation."""

    NOT_STARTED = "NOT_STARTED"
    INITIALIZING = "INITIALIZING"
    EXECUTING = "EXECUTING"
    CLEANING_UP = "CLEANING_UP"
    DONE = "DONE"


PHASE_TRANSITIONS: dict[TaskPhase, frozenset[TaskPhase]] = {
    TaskPhase.NOT_STARTED: frozenset({TaskPhase.INITIALIZING}),
    TaskPhase.INITIALIZING: frozenset(
        {TaskPhase.EXECUTING, TaskPhase.CLEANING_UP}
    ),
    TaskPhase.EXECUTING: frozenset({TaskPhase.CLEANING_UP}),
    TaskPhase.CLEANING_UP: frozenset({TaskPhase.DONE}),
    # Re-activation after cleanup (a task may return its own index)
    TaskPhase.DONE: frozenset({TaskPhase.INITIALIZING}),
}


def validate_runner_transition(
    from_state: RunnerState, to_state: RunnerState
) -> bool:
    """
    Return ``True`` if the runner may move ``from_state`` → ``to_state``.

    Raises ``RunnerStateError`` otherwise.
    """
    if to_state not in RUNNER_TRANSITIONS[from_state]:
        raise RunnerStateError(
            f"Invalid runner transition {from_state.value} → {to_state.value}."
        )
    return True


def validate_phase_transition(
    from_phase: TaskPhase, to_phase: TaskPhase, *, task_name: str | None = None
) -> bool:
    """
    Return ``True`` if a task may move ``from_phase`` → ``to_phase``.

    Raises ``InvalidPhaseTransitionError`` otherwise.
    """
    allowed = PHASE_TRANSITIONS[from_phase]
    if to_phase not in allowed:
        raise InvalidPhaseTransitionError(
            f"Invalid phase transition {from_phase.value} → {to_phase.value}. "
            f"Allowed: {sorted(p.value for p in allowed)}.",
            task_name=task_name,
        )
    return True


def is_terminal(state: RunnerState) -> bool:
    """Return ``True`` if the runner state has no outgoing transitions."""
    return not RUNNER_TRANSITIONS[state]
