"""
Shared pytest fixtures for conveyor tests.

This module provides:
- A controllable clock (``FakeClock``) so retries and schedules are deterministic
- In-memory and temporary-file SQLite connections with the conveyor schema
- Fresh stores, registries and a fully wired ``Engine``

Usage:
    Fixtures are auto-discovered by pytest; request them as arguments.

    def test_something(engine, clock):
        clock.advance(60_000)
        ...
"""

from __future__ import annotations

import sqlite3
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any, Generator

import pytest

from conveyor.core.database import connect, create_tables
from conveyor.core.logging import configure_logging
from conveyor.core.settings import ConveyorSettings
from conveyor.engine import Engine
from conveyor.execution.notify import WakeupQueue
from conveyor.execution.registry import HandlerRegistry
from conveyor.execution.store import JobStore
from conveyor.triggers.definitions import TriggerDefinition, parse_definition
from conveyor.triggers.registry import TriggerRegistry
from conveyor.triggers.tools import ToolRegistry

EPOCH = datetime(2026, 3, 1, 9, 0, 0, tzinfo=UTC)


# =============================================================================
# Session configuration
# =============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Keep structlog quiet; tests assert on records, not log lines."""
    configure_logging("WARNING", json_format=False)


# =============================================================================
# Clock
# =============================================================================


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = EPOCH):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, milliseconds: int | float = 0, **kwargs: Any) -> datetime:
        self.now = self.now + timedelta(milliseconds=milliseconds, **kwargs)
        return self.now

    def set(self, moment: datetime) -> None:
        self.now = moment


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def conn() -> Generator[sqlite3.Connection, None, None]:
    """In-memory connection with all conveyor tables."""
    connection = connect(":memory:")
    create_tables(connection)
    yield connection
    connection.close()


@pytest.fixture
def db_path(tmp_path: Path) -> str:
    """Path of an initialised on-disk database (for multi-connection tests)."""
    path = tmp_path / "conveyor.db"
    connection = connect(path)
    create_tables(connection)
    connection.close()
    return str(path)


# =============================================================================
# Execution
# =============================================================================


@pytest.fixture
def notifier() -> WakeupQueue:
    return WakeupQueue()


@pytest.fixture
def store(conn: sqlite3.Connection, clock: FakeClock, notifier: WakeupQueue) -> JobStore:
    return JobStore(conn, notifier=notifier, clock=clock)


@pytest.fixture
def registry() -> HandlerRegistry:
    return HandlerRegistry()


# =============================================================================
# Triggers / engine
# =============================================================================


@pytest.fixture
def tools() -> ToolRegistry:
    """Tool registry with a recording ``echo`` and an always-failing ``boom``."""
    registry = ToolRegistry()
    registry.calls = []  # type: ignore[attr-defined]

    @registry.tool("echo")
    def echo(args, context):
        registry.calls.append(("echo", args, context))  # type: ignore[attr-defined]
        return args

    @registry.tool("boom")
    def boom(args, context):
        registry.calls.append(("boom", args, context))  # type: ignore[attr-defined]
        raise RuntimeError("tool exploded")

    return registry


@pytest.fixture
def settings() -> ConveyorSettings:
    return ConveyorSettings(
        database_path=":memory:",
        default_max_attempts=3,
        retry_backoff_ms=1000,
        trigger_backoff_ms=60_000,
        _env_file=None,
    )


@pytest.fixture
def engine(
    conn: sqlite3.Connection,
    settings: ConveyorSettings,
    clock: FakeClock,
    tools: ToolRegistry,
) -> Engine:
    return Engine(conn, settings=settings, triggers=TriggerRegistry(), tools=tools, clock=clock)


def make_definition(**overrides: Any) -> TriggerDefinition:
    """A valid ``session``/``created`` definition calling ``echo``."""
    data: dict[str, Any] = {
        "slug": "session-created",
        "name": "Session created",
        "entityType": "session",
        "action": "created",
        "actions": [{"tool": "echo", "args": {"id": "{{entity.id}}"}}],
    }
    data.update(overrides)
    return parse_definition(data)


@pytest.fixture
def definition_factory():
    return make_definition
