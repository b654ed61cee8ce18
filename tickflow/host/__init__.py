"""
tickflow — Host Integration
=============================
Host-facing contract plus an in-process simulated host.

Public API:
    HostPort - Abstract host capability surface
    SimulatedHost - Dictionary-backed host for tests and dry runs
    TickClock - Periodic, non-reentrant tick source
"""

from tickflow.host.ports import HostPort
from tickflow.host.simulated import SimulatedHost, TickClock

__all__ = [
    "HostPort",
    "SimulatedHost",
    "TickClock",
]
