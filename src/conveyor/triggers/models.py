"""
Runtime records for the trigger engine.

``EntityEvent`` is the input, ``TriggerRun`` the durable record of one
deferred firing, ``ExecutionLogEntry``/``PipelineResult`` the output of one
interpreter pass, and ``TriggerExecutionEvent`` its append-only trace.

Run lifecycle::

    PENDING → RUNNING → COMPLETED
       │         ├──→ PENDING  (retry after backoff)
       │         ├──→ FAILED   (configuration error)
       │         └──→ DEAD     (attempts exhausted)
       └──→ DEAD (cancelled / superseded)

    FAILED | DEAD → PENDING only through RunSupervisor.retry_run
"""

from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from conveyor.core.timestamps import from_iso8601, to_iso8601


class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    DEAD = "dead"


RETRYABLE_RUN_STATUSES = frozenset({RunStatus.FAILED, RunStatus.DEAD})

CANCELLED = "cancelled"
SUPERSEDED = "superseded"


class StepStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


class ExecutionEventType(str, Enum):
    EXECUTED = "trigger.executed"
    FAILED = "trigger.failed"


@dataclass(frozen=True)
class EntityEvent:
    """A create/update/delete of a domain entity."""

    entity_type: str
    action: str
    entity_id: str
    data: dict[str, Any] = field(default_factory=dict)
    previous_data: dict[str, Any] | None = None
    org_id: str = "default"
    environment: str = "production"

    def bindings(self) -> dict[str, Any]:
        """Initial interpreter namespace for this event."""
        return {
            "trigger": self.data,
            "entity": {
                "id": self.entity_id,
                "type": self.entity_type,
                "action": self.action,
                "data": self.data,
                "previousData": self.previous_data,
            },
            "steps": {},
        }


@dataclass
class ExecutionLogEntry:
    """Outcome of one action step."""

    tool: str
    args: Any
    status: StepStatus
    duration_ms: int
    as_name: str | None = None
    result: Any = None
    error: str | None = None
    stack: str | None = None

    def to_dict(self) -> dict[str, Any]:
        entry: dict[str, Any] = {
            "tool": self.tool,
            "as": self.as_name,
            "args": self.args,
            "status": self.status.value,
            "durationMs": self.duration_ms,
        }
        if self.status == StepStatus.SUCCESS:
            entry["result"] = self.result
        else:
            entry["error"] = self.error
            entry["stack"] = self.stack
        return entry

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExecutionLogEntry:
        return cls(
            tool=data["tool"],
            args=data.get("args"),
            status=StepStatus(data["status"]),
            duration_ms=data.get("durationMs", 0),
            as_name=data.get("as"),
            result=data.get("result"),
            error=data.get("error"),
            stack=data.get("stack"),
        )


@dataclass
class PipelineResult:
    """Everything one interpreter pass produced."""

    execution_log: list[ExecutionLogEntry]
    total_actions: int
    bindings: dict[str, Any] = field(default_factory=dict)
    failed_action_index: int | None = None
    configuration_error: bool = False

    @property
    def success(self) -> bool:
        return self.failed_action_index is None

    @property
    def failed_entry(self) -> ExecutionLogEntry | None:
        if self.failed_action_index is None:
            return None
        return self.execution_log[self.failed_action_index]

    @property
    def error(self) -> str | None:
        entry = self.failed_entry
        return entry.error if entry else None

    def outputs(self) -> dict[str, Any]:
        """Results of every step that declared ``as``."""
        return {
            entry.as_name: entry.result
            for entry in self.execution_log
            if entry.as_name and entry.status == StepStatus.SUCCESS
        }

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "success": self.success,
            "totalActions": self.total_actions,
            "executionLog": [entry.to_dict() for entry in self.execution_log],
        }
        if not self.success:
            failed = self.failed_entry
            data["failedAction"] = failed.tool if failed else None
            data["failedActionIndex"] = self.failed_action_index
            data["error"] = self.error
        return data


@dataclass
class TriggerRun:
    """Durable record of one scheduled trigger firing."""

    id: str
    org_id: str
    trigger_slug: str
    entity_id: str
    entity_type: str
    action: str
    status: RunStatus
    scheduled_for: datetime
    created_at: datetime
    environment: str = "production"
    data: dict[str, Any] = field(default_factory=dict)
    previous_data: dict[str, Any] | None = None
    attempts: int = 0
    max_attempts: int = 3
    backoff_ms: int = 60_000
    job_id: str | None = None
    generation: int = 0
    result: Any = None
    error_message: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    def to_event(self) -> EntityEvent:
        """Rebuild the entity event captured when the run was scheduled."""
        return EntityEvent(
            entity_type=self.entity_type,
            action=self.action,
            entity_id=self.entity_id,
            data=self.data,
            previous_data=self.previous_data,
            org_id=self.org_id,
            environment=self.environment,
        )

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> TriggerRun:
        return cls(
            id=row["id"],
            org_id=row["org_id"],
            trigger_slug=row["trigger_slug"],
            entity_id=row["entity_id"],
            entity_type=row["entity_type"],
            action=row["action"],
            status=RunStatus(row["status"]),
            scheduled_for=from_iso8601(row["scheduled_for"]),
            created_at=from_iso8601(row["created_at"]),
            environment=row["environment"],
            data=json.loads(row["data"]) if row["data"] else {},
            previous_data=json.loads(row["previous_data"]) if row["previous_data"] else None,
            attempts=row["attempts"],
            max_attempts=row["max_attempts"],
            backoff_ms=row["backoff_ms"],
            job_id=row["job_id"],
            generation=row["generation"],
            result=json.loads(row["result"]) if row["result"] is not None else None,
            error_message=row["error_message"],
            started_at=from_iso8601(row["started_at"]),
            completed_at=from_iso8601(row["completed_at"]),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "environment": self.environment,
            "trigger_slug": self.trigger_slug,
            "entity_id": self.entity_id,
            "entity_type": self.entity_type,
            "action": self.action,
            "status": self.status.value,
            "data": self.data,
            "previous_data": self.previous_data,
            "scheduled_for": to_iso8601(self.scheduled_for),
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "backoff_ms": self.backoff_ms,
            "job_id": self.job_id,
            "generation": self.generation,
            "result": self.result,
            "error_message": self.error_message,
            "started_at": to_iso8601(self.started_at),
            "completed_at": to_iso8601(self.completed_at),
            "created_at": to_iso8601(self.created_at),
        }


@dataclass
class TriggerExecutionEvent:
    """Append-only trace of one pipeline execution."""

    id: str
    event_type: ExecutionEventType
    trigger_slug: str
    entity_id: str
    org_id: str
    created_at: datetime
    execution_log: list[ExecutionLogEntry] = field(default_factory=list)
    total_actions: int = 0
    failed_action_index: int | None = None
    error: str | None = None
    run_id: str | None = None
    environment: str = "production"

    @property
    def failed_action(self) -> str | None:
        if self.failed_action_index is None or self.failed_action_index >= len(self.execution_log):
            return None
        return self.execution_log[self.failed_action_index].tool

    def payload(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "triggerSlug": self.trigger_slug,
            "totalActions": self.total_actions,
            "executionLog": [entry.to_dict() for entry in self.execution_log],
        }
        if self.event_type == ExecutionEventType.FAILED:
            data["failedAction"] = self.failed_action
            data["failedActionIndex"] = self.failed_action_index
            data["error"] = self.error
        return data

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "event_type": self.event_type.value,
            "trigger_slug": self.trigger_slug,
            "run_id": self.run_id,
            "entity_id": self.entity_id,
            "org_id": self.org_id,
            "environment": self.environment,
            "created_at": to_iso8601(self.created_at),
            **self.payload(),
        }

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> TriggerExecutionEvent:
        payload = json.loads(row["payload"]) if row["payload"] else {}
        return cls(
            id=row["id"],
            event_type=ExecutionEventType(row["event_type"]),
            trigger_slug=row["trigger_slug"],
            entity_id=row["entity_id"],
            org_id=row["org_id"],
            created_at=from_iso8601(row["created_at"]),
            execution_log=[ExecutionLogEntry.from_dict(e) for e in payload.get("executionLog", [])],
            total_actions=payload.get("totalActions", 0),
            failed_action_index=payload.get("failedActionIndex"),
            error=payload.get("error"),
            run_id=row["run_id"],
            environment=row["environment"],
        )


__all__ = [
    "RunStatus",
    "RETRYABLE_RUN_STATUSES",
    "CANCELLED",
    "SUPERSEDED",
    "StepStatus",
    "ExecutionEventType",
    "EntityEvent",
    "ExecutionLogEntry",
    "PipelineResult",
    "TriggerRun",
    "TriggerExecutionEvent",
]
