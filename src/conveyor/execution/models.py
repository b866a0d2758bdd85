"""
Job model and lifecycle.

A job is one unit of background work: a ``job_type`` naming the handler, a
JSON ``payload``, and bookkeeping for claims and retries.

Valid transition graph::

    PENDING  → CLAIMED | DEAD (cancel)
    CLAIMED  → RUNNING | DEAD (no handler registered)
    RUNNING  → COMPLETED | PENDING (retry) | DEAD (exhausted) | FAILED (config)
    COMPLETED, FAILED, DEAD → (terminal)

The store enforces the graph with conditional updates; ``validate_job_transition``
is the same table for callers that reason about states in memory.
"""

from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from conveyor.core.errors import InvalidTransitionError
from conveyor.core.timestamps import from_iso8601, to_iso8601


class JobStatus(str, Enum):
    """Status of a job."""

    PENDING = "pending"
    CLAIMED = "claimed"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    DEAD = "dead"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_JOB_STATUSES


TERMINAL_JOB_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.DEAD})

JOB_VALID_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.CLAIMED, JobStatus.DEAD}),
    JobStatus.CLAIMED: frozenset({JobStatus.RUNNING, JobStatus.DEAD}),
    JobStatus.RUNNING: frozenset({
        JobStatus.COMPLETED,
        JobStatus.PENDING,  # retry
        JobStatus.DEAD,
        JobStatus.FAILED,
    }),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.DEAD: frozenset(),
}


def validate_job_transition(job_id: str, current: JobStatus, target: JobStatus) -> None:
    """Raise :class:`InvalidTransitionError` if *current → target* is illegal.

    Example:
        >>> validate_job_transition("job_1", JobStatus.RUNNING, JobStatus.COMPLETED)
        >>> validate_job_transition("job_1", JobStatus.DEAD, JobStatus.PENDING)
        Traceback (most recent call last):
        ...
        InvalidTransitionError: Invalid job transition for job_1: dead -> pending
    """
    if target not in JOB_VALID_TRANSITIONS.get(current, frozenset()):
        raise InvalidTransitionError("job", job_id, current.value, target.value)


@dataclass
class Job:
    """A queued unit of work."""

    id: str
    org_id: str
    job_type: str
    status: JobStatus
    scheduled_for: datetime
    created_at: datetime
    payload: dict[str, Any] = field(default_factory=dict)
    entity_id: str | None = None
    idempotency_key: str | None = None
    priority: int = 0
    result: Any = None
    error_message: str | None = None
    attempts: int = 0
    max_attempts: int = 3
    backoff_ms: int = 1000
    claimed_by: str | None = None
    claimed_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def attempts_remaining(self) -> int:
        return max(self.max_attempts - self.attempts, 0)

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Job:
        return cls(
            id=row["id"],
            org_id=row["org_id"],
            job_type=row["job_type"],
            status=JobStatus(row["status"]),
            scheduled_for=from_iso8601(row["scheduled_for"]),
            created_at=from_iso8601(row["created_at"]),
            payload=json.loads(row["payload"]) if row["payload"] else {},
            entity_id=row["entity_id"],
            idempotency_key=row["idempotency_key"],
            priority=row["priority"],
            result=json.loads(row["result"]) if row["result"] is not None else None,
            error_message=row["error_message"],
            attempts=row["attempts"],
            max_attempts=row["max_attempts"],
            backoff_ms=row["backoff_ms"],
            claimed_by=row["claimed_by"],
            claimed_at=from_iso8601(row["claimed_at"]),
            started_at=from_iso8601(row["started_at"]),
            completed_at=from_iso8601(row["completed_at"]),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "entity_id": self.entity_id,
            "job_type": self.job_type,
            "idempotency_key": self.idempotency_key,
            "status": self.status.value,
            "priority": self.priority,
            "payload": self.payload,
            "result": self.result,
            "error_message": self.error_message,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "backoff_ms": self.backoff_ms,
            "claimed_by": self.claimed_by,
            "claimed_at": to_iso8601(self.claimed_at),
            "scheduled_for": to_iso8601(self.scheduled_for),
            "started_at": to_iso8601(self.started_at),
            "completed_at": to_iso8601(self.completed_at),
            "created_at": to_iso8601(self.created_at),
        }


@dataclass(frozen=True)
class EnqueueResult:
    """Outcome of an enqueue: the job id and whether a row was inserted."""

    job_id: str
    created: bool


@dataclass(frozen=True)
class JobOutcome:
    """What happened to a job during one worker pass.

    Delivered to worker listeners after the store transition commits.
    ``error`` is the handler's exception (``None`` on success or rejection).
    """

    job: Job
    previous_status: JobStatus
    error: BaseException | None = None

    @property
    def status(self) -> JobStatus:
        return self.job.status

    @property
    def requeued(self) -> bool:
        return self.previous_status == JobStatus.RUNNING and self.job.status == JobStatus.PENDING


__all__ = [
    "JobStatus",
    "TERMINAL_JOB_STATUSES",
    "JOB_VALID_TRANSITIONS",
    "validate_job_transition",
    "Job",
    "EnqueueResult",
    "JobOutcome",
]
