"""
tickflow — Test Fixtures
==========================
Shared pytest fixtures: fresh settings, a strict simulated host, a bridge
with a short deadline and a task context wiring them together.
"""

from __future__ import annotations

import asyncio

import pytest
import structlog
from structlog.testing import LogCapture

from tickflow.core.logging import _add_tick_number
from tickflow.host.simulated import SimulatedHost
from tickflow.orchestrator.bridge import TickBridge
from tickflow.orchestrator.task import TaskContext


# ── Override settings BEFORE any app import ──────────────────────────────
@pytest.fixture(autouse=True)
def _clear_settings_cache():
    """Ensure a fresh Settings instance for each test."""
    from tickflow.core.config import get_settings
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings(monkeypatch):
    """Return a settings instance with test defaults."""
    monkeypatch.setenv("TICKFLOW_ENVIRONMENT", "development")
    monkeypatch.setenv("TICKFLOW_LOG_LEVEL", "DEBUG")
    monkeypatch.setenv("TICKFLOW_LOG_FORMAT", "console")
    from tickflow.core.config import get_settings
    return get_settings()


# ── Host / bridge ────────────────────────────────────────────────────────
@pytest.fixture
def host() -> SimulatedHost:
    """A strict simulated host: state reads outside a tick raise."""
    return SimulatedHost(
        varbits={1173: 13_363},
        varps={281: 1000},
        widgets={(12, 1): "bank"},
        state={"game_state": 30, "position": (3200, 3430)},
    )


@pytest.fixture
def bridge() -> TickBridge:
    return TickBridge(default_timeout=1.0)


@pytest.fixture
def context(bridge: TickBridge, host: SimulatedHost) -> TaskContext:
    return TaskContext(bridge=bridge, host=host)


@pytest.fixture
def tick(host: SimulatedHost, bridge: TickBridge):
    """Deliver one tick that drains the bridge."""
    def _tick() -> int:
        drained: list[int] = []
        host.run_tick(lambda: drained.append(bridge.drain()))
        return drained[0]
    return _tick


# ── Helpers ──────────────────────────────────────────────────────────────
async def flush(rounds: int = 20) -> None:
    """Let every ready coroutine run until it parks again."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def settle():
    return flush


@pytest.fixture
def tick_logs():
    """
    Capture log entries with the tick-number processor still applied.

    The processor list is swapped in place, like ``capture_logs()``, so
    loggers cached by an earlier ``configure_logging()`` are captured too.
    """
    capture = LogCapture()
    processors = structlog.get_config()["processors"]
    saved = processors.copy()
    processors[:] = [_add_tick_number, capture]
    try:
        yield capture.entries
    finally:
        processors[:] = saved
