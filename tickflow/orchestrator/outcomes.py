"""
tickflow — Task Outcomes
==========================
What a task's ``execute()`` tells the runner to do next.

    NextIndex(i)   activate task ``i`` now (``i`` may be the current index)
    AWAIT_SIGNAL   stay active until someone signals a transition
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final, Union

from tickflow.core.exceptions import InvalidOutcomeError


@dataclass(frozen=True, slots=True)
class NextIndex:
    """Move to the task at ``index``."""

    index: int

    def __post_init__(self) -> None:
        if isinstance(self.index, bool) or not isinstance(self.index, int):
            raise InvalidOutcomeError(self.index)
        if self.index < 0:
            raise InvalidOutcomeError(self.index)


class AwaitSignal:
    """Remain active and wait for an explicit transition signal."""

    _instance: AwaitSignal | None = None

    def __new__(cls) -> AwaitSignal:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "AWAIT_SIGNAL"


AWAIT_SIGNAL: Final = AwaitSignal()

TaskOutcome = Union[NextIndex, AwaitSignal]


def coerce_outcome(value: object) -> TaskOutcome:
    """
    Normalise an ``execute()`` return value.

    A bare non-negative ``int`` is shorthand for ``NextIndex``.
    Raises ``InvalidOutcomeError`` for anything else.
    """
    if isinstance(value, (NextIndex, AwaitSignal)):
        return value
    if isinstance(value, int) and not isinstance(value, bool):
        return NextIndex(value)
    raise InvalidOutcomeError(value)
