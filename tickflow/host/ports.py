"""
tickflow — Host Port
======================
The narrow surface of the host environment the core depends on.

Every read method is synchronous and may only be called from inside the
host tick callback, i.e. from a thunk run by ``TickBridge.drain()``.
``invoke_later`` is the one call that is safe outside the tick.
"""

from __future__ import annotations

import abc
from typing import Any, Callable


class HostPort(abc.ABC):
    """
    Abstract host contract.

    Implementations wrap the real host API.  Task code never calls these
    methods directly; it goes through the ``Task`` helpers, which defer the
    call to the next tick.
    """

    @abc.abstractmethod
    def get_varbit(self, varbit_id: int) -> Any:
        """Read a host variable by id."""
        ...

    @abc.abstractmethod
    def get_varp(self, varp_id: int) -> Any:
        """Read a player variable by id."""
        ...

    @abc.abstractmethod
    def get_widget(self, group_id: int, child_id: int) -> Any:
        """Return the widget at ``group_id``/``child_id``, or ``None`` if closed."""
        ...

    @abc.abstractmethod
    def invoke_later(self, callback: Callable[[], None], delay_ms: int) -> None:
        """Call ``callback`` once after ``delay_ms`` milliseconds."""
        ...
