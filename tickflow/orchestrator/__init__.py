"""
tickflow — Orchestration Core
===============================
Tick-synchronized host access and sequential task execution.

Public API:
    TickBridge - FIFO host-operation queue drained inside the tick
    Task, TickTask, TaskContext, TickResident - task abstractions
    TaskRunner - sequential task state machine
    NextIndex, AWAIT_SIGNAL, TaskOutcome - task outcomes
    RunnerState, TaskPhase - lifecycle states
"""

from tickflow.orchestrator.bridge import CompletionHandle, PendingOperation, TickBridge
from tickflow.orchestrator.outcomes import (
    AWAIT_SIGNAL,
    AwaitSignal,
    NextIndex,
    TaskOutcome,
    coerce_outcome,
)
from tickflow.orchestrator.runner import TaskRunner
from tickflow.orchestrator.state_machine import RunnerState, TaskPhase
from tickflow.orchestrator.task import Task, TaskContext, TickResident, TickTask

__all__ = [
    "TickBridge",
    "PendingOperation",
    "CompletionHandle",
    "NextIndex",
    "AwaitSignal",
    "AWAIT_SIGNAL",
    "TaskOutcome",
    "coerce_outcome",
    "TaskRunner",
    "RunnerState",
    "TaskPhase",
    "Task",
    "TaskContext",
    "TickResident",
    "TickTask",
]
