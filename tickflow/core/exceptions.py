"""
tickflow — Centralized Exception Taxonomy
==========================================
Category-based exception hierarchy with a severity property.

Design decisions:
- Bridge errors (timeout, execution failure) are local to the task that
  submitted the operation and are recoverable by its logic.
- Task errors are fatal to the current run of the ``TaskRunner``.
- Each exception carries an ``error_code`` and the task it concerns, when known.

Usage:
    from tickflow.core.exceptions import TickTimeoutError

    try:
        value = await task.read_host_value(1173)
    except TickTimeoutError:
        ...
"""

from __future__ import annotations

from enum import StrEnum


class ErrorSeverity(StrEnum):
    """
    Error severity levels for exception classification.

    LOW < MEDIUM < HIGH < CRITICAL
    """

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class TickflowError(Exception):
    """
    Base exception for all tickflow-specific errors.

    Provides:
    - severity: Classification for error handling/routing
    - error_code: Unique identifier for programmatic handling
    - task_name / task_index: the task the error concerns, if any
    """

    severity: ErrorSeverity = ErrorSeverity.MEDIUM
    error_code: str = "TICKFLOW_ERROR"

    def __init__(
        self,
        message: str,
        *,
        task_name: str | None = None,
        task_index: int | None = None,
    ) -> None:
        self.task_name = task_name
        self.task_index = task_index
        super().__init__(message)

    def __repr__(self) -> str:
        parts = [
            f"{self.__class__.__name__}(",
            f"error_code={self.error_code!r}, ",
            f"severity={self.severity.value!r}",
        ]
        if self.task_name:
            parts.append(f", task_name={self.task_name!r}")
        if self.task_index is not None:
            parts.append(f", task_index={self.task_index!r}")
        parts.append(")")
        return "".join(parts)


# ── Bridge Exceptions ─────────────────────────────────────────────────────


class BridgeError(TickflowError):
    """Errors raised while servicing a queued host operation."""

    error_code = "BRIDGE_ERROR"


class TickTimeoutError(BridgeError):
    """Raised when an operation's deadline elapsed before any drain ran it."""

    severity = ErrorSeverity.MEDIUM
    error_code = "TICK_TIMEOUT"

    def __init__(self, operation_id: int, timeout_seconds: float) -> None:
        self.operation_id = operation_id
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Operation #{operation_id} was not run by a tick within "
            f"{timeout_seconds}s."
        )


class TickExecutionError(BridgeError):
    """Raised when a host operation failed while being run inside a tick."""

    severity = ErrorSeverity.MEDIUM
    error_code = "TICK_EXECUTION_FAILED"

    def __init__(self, operation_id: int, original: BaseException) -> None:
        self.operation_id = operation_id
        self.original = original
        self.__cause__ = original
        super().__init__(
            f"Operation #{operation_id} failed on tick: "
            f"{type(original).__name__}: {original}"
        )


# ── Task Exceptions ───────────────────────────────────────────────────────


class TaskError(TickflowError):
    """Errors in task execution; fatal to the current run."""

    severity = ErrorSeverity.HIGH
    error_code = "TASK_ERROR"


class TaskFailureError(TaskError):
    """Wraps whatever a task's ``execute()`` or ``process_tick()`` raised."""

    error_code = "TASK_FAILURE"


class InvalidOutcomeError(TaskError):
    """Raised when ``execute()`` returns something that is not a transition."""

    error_code = "INVALID_OUTCOME"

    def __init__(
        self,
        value: object,
        *,
        task_name: str | None = None,
        task_index: int | None = None,
    ) -> None:
        self.value = value
        super().__init__(
            f"Invalid task outcome {value!r}: expected NextIndex, "
            f"AWAIT_SIGNAL or a non-negative int.",
            task_name=task_name,
            task_index=task_index,
        )


class HostPreconditionError(TaskError):
    """Raised by task logic when required host state is missing or wrong."""

    error_code = "HOST_PRECONDITION_FAILED"


class InvalidPhaseTransitionError(TaskError):
    """Raised when a task is moved between lifecycle phases out of order."""

    severity = ErrorSeverity.CRITICAL
    error_code = "INVALID_PHASE_TRANSITION"


# ── Runner Exceptions ─────────────────────────────────────────────────────


class RunnerStateError(TickflowError):
    """Raised on an illegal runner state change (the runner is not restartable)."""

    severity = ErrorSeverity.HIGH
    error_code = "RUNNER_STATE_ERROR"
