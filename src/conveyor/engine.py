"""
Composition root.

``Engine`` wires the stores, registries, interpreter, supervisor, dispatcher
and wake-up queue around one SQLite connection, and builds workers that use
them. The API and CLI both start from here.

Example:
    >>> engine = Engine.from_settings(ConveyorSettings(database_path=":memory:"))
    >>> @engine.handlers.handler("send_email")
    ... def send_email(job):
    ...     return {"sent": True}
    >>> engine.enqueue("org_1", "send_email", {"to": "a@b.c"})
    'job_...'
    >>> engine.create_worker().run_once()
    1
"""

from __future__ import annotations

import sqlite3
import threading
from typing import Any

from conveyor.core.database import connect, create_tables
from conveyor.core.logging import get_logger
from conveyor.core.settings import ConveyorSettings
from conveyor.core.timestamps import Clock, utc_now
from conveyor.execution.notify import WakeupQueue
from conveyor.execution.registry import HandlerRegistry
from conveyor.execution.retry import ExponentialBackoff, RetryController
from conveyor.execution.store import JobStore
from conveyor.execution.worker import Worker
from conveyor.triggers.dispatcher import DispatchReport, TriggerDispatcher
from conveyor.triggers.interpreter import PipelineInterpreter
from conveyor.triggers.models import EntityEvent
from conveyor.triggers.registry import TriggerRegistry
from conveyor.triggers.store import ExecutionEventLog, TriggerRunStore
from conveyor.triggers.supervisor import RunSupervisor
from conveyor.triggers.tools import TimeboxedInvoker, ToolInvoker, ToolRegistry

logger = get_logger(__name__)


class Engine:
    """All conveyor components over one connection."""

    def __init__(
        self,
        conn: sqlite3.Connection,
        *,
        settings: ConveyorSettings | None = None,
        triggers: TriggerRegistry | None = None,
        tools: ToolRegistry | None = None,
        clock: Clock = utc_now,
    ):
        self.settings = settings or ConveyorSettings()
        self.conn = conn
        self.clock = clock
        lock = threading.RLock()

        self.notifier = WakeupQueue(maxsize=self.settings.wakeup_queue_size)
        self.jobs = JobStore(
            conn,
            notifier=self.notifier,
            clock=clock,
            default_max_attempts=self.settings.default_max_attempts,
            default_backoff_ms=self.settings.retry_backoff_ms,
            lock=lock,
        )
        self.runs = TriggerRunStore(conn, clock=clock, lock=lock)
        self.events = ExecutionEventLog(conn, lock=lock)

        self.handlers = HandlerRegistry()
        self.triggers = triggers if triggers is not None else TriggerRegistry()
        self.tools = tools if tools is not None else ToolRegistry()
        self.retry = RetryController(
            ExponentialBackoff(max_delay_ms=self.settings.retry_max_backoff_ms),
            clock=clock,
        )

        invoker: ToolInvoker = self.tools
        if self.settings.tool_timeout_seconds:
            invoker = TimeboxedInvoker(self.tools, self.settings.tool_timeout_seconds)
        self.interpreter = PipelineInterpreter(invoker)

        self.supervisor = RunSupervisor(
            self.jobs,
            self.runs,
            self.events,
            self.triggers,
            self.interpreter,
            clock=clock,
            default_max_attempts=self.settings.default_max_attempts,
            default_backoff_ms=self.settings.trigger_backoff_ms,
        )
        self.supervisor.register(self.handlers)
        self.dispatcher = TriggerDispatcher(self.triggers, self.interpreter, self.supervisor, clock=clock)

    @classmethod
    def from_settings(cls, settings: ConveyorSettings | None = None, **kwargs: Any) -> Engine:
        """Open the configured database, create tables and load trigger files."""
        settings = settings or ConveyorSettings()
        conn = connect(settings.database_path, busy_timeout_ms=settings.busy_timeout_ms)
        create_tables(conn)
        if "triggers" not in kwargs and settings.trigger_paths:
            kwargs["triggers"] = TriggerRegistry.from_paths(settings.trigger_paths)
        logger.info(
            "engine.ready",
            database_path=settings.database_path,
            triggers=len(kwargs["triggers"]) if kwargs.get("triggers") else 0,
        )
        return cls(conn, settings=settings, **kwargs)

    def create_worker(self, worker_id: str | None = None, **overrides: Any) -> Worker:
        """A worker over this engine's store with the run supervisor attached."""
        options: dict[str, Any] = {
            "retry": self.retry,
            "notifier": self.notifier,
            "worker_id": worker_id,
            "poll_interval": self.settings.worker_poll_interval,
            "batch_size": self.settings.worker_batch_size,
            "max_workers": self.settings.worker_threads,
        }
        options.update(overrides)
        worker = Worker(self.jobs, self.handlers, **options)
        worker.add_listener(self.supervisor.on_job_outcome)
        return worker

    def enqueue(self, org_id: str, job_type: str, payload: dict[str, Any] | None = None, **kwargs: Any) -> str:
        return self.jobs.enqueue(org_id, job_type, payload, **kwargs)

    def dispatch(self, event: EntityEvent) -> DispatchReport:
        return self.dispatcher.dispatch(event)

    def close(self) -> None:
        self.conn.close()


__all__ = ["Engine"]
