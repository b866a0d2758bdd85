"""
Job store and claim broker.

``JobStore`` persists jobs in ``conveyor_jobs`` and is the only component
that changes a job's status. Every transition is a single conditional
``UPDATE ... WHERE id = ? AND status = ?``; the affected row count says
whether the caller won. Exclusivity never depends on an in-process lock, so
any number of workers, each with its own connection to the same database
file, can race on ``claim`` and exactly one of them wins.

Architecture:
    ::

        enqueue ──▶ pending ──claim──▶ claimed ──start──▶ running
                      ▲  │                │                  │
                      │  └─cancel─▶ dead  └─reject─▶ dead    ├─complete─▶ completed
                      │                                      ├─fail(permanent)─▶ failed
                      └──────────fail(attempts < max)────────┤
                                                             └─fail(attempts ≥ max)─▶ dead

Invariants:
    - ``claimed_by``/``claimed_at`` are non-null exactly while the job is
      claimed or running.
    - ``attempts`` only grows on claimed → running.
    - A duplicate ``(org_id, idempotency_key)`` enqueue returns the existing
      id; the partial unique index settles concurrent inserts.

Examples:
    >>> store = JobStore(conn)
    >>> job_id = store.enqueue("org_1", "send_email", {"to": "a@b.c"})
    >>> store.claim(job_id, "worker-1")
    True
    >>> store.claim(job_id, "worker-2")
    False
"""

from __future__ import annotations

import json
import sqlite3
import threading
from datetime import datetime
from typing import Any

from conveyor.core.database import SqliteStore
from conveyor.core.errors import InvalidTransitionError, NotFoundError
from conveyor.core.logging import get_logger
from conveyor.core.timestamps import Clock, new_id, to_iso8601, utc_now
from conveyor.execution.models import EnqueueResult, Job, JobStatus, validate_job_transition
from conveyor.execution.notify import WakeupNotifier

logger = get_logger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_MS = 1000

_COLUMNS = """
    id, org_id, entity_id, job_type, idempotency_key, status, priority,
    payload, result, error_message, attempts, max_attempts, backoff_ms,
    claimed_by, claimed_at, scheduled_for, started_at, completed_at, created_at
"""


def _dumps(value: Any) -> str:
    return json.dumps(value, default=str)


class JobStore(SqliteStore):
    """Durable job queue over a SQLite connection.

    Args:
        conn: sqlite3 connection with the conveyor schema (``create_tables``)
        notifier: Optional wake-up transport published to on insert
        clock: Source of "now"; tests inject a controllable clock
        default_max_attempts: Used when ``enqueue`` gets no ``max_attempts``
        default_backoff_ms: Used when ``enqueue`` gets no ``backoff_ms``
        lock: Connection lock shared with other stores on ``conn``
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        *,
        notifier: WakeupNotifier | None = None,
        clock: Clock = utc_now,
        default_max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        default_backoff_ms: int = DEFAULT_BACKOFF_MS,
        lock: threading.RLock | None = None,
    ):
        super().__init__(conn, lock=lock)
        self._notifier = notifier
        self._clock = clock
        self._default_max_attempts = default_max_attempts
        self._default_backoff_ms = default_backoff_ms

    @property
    def clock(self) -> Clock:
        return self._clock

    def _now(self) -> str:
        return to_iso8601(self._clock())

    # =========================================================================
    # ENQUEUE
    # =========================================================================

    def enqueue(
        self,
        org_id: str,
        job_type: str,
        payload: dict[str, Any] | None = None,
        *,
        idempotency_key: str | None = None,
        priority: int = 0,
        scheduled_for: datetime | None = None,
        max_attempts: int | None = None,
        entity_id: str | None = None,
        backoff_ms: int | None = None,
    ) -> str:
        """Insert a pending job and return its id.

        With an ``idempotency_key`` already used in ``org_id``, nothing is
        inserted and the existing job's id is returned.
        """
        return self.submit(
            org_id,
            job_type,
            payload,
            idempotency_key=idempotency_key,
            priority=priority,
            scheduled_for=scheduled_for,
            max_attempts=max_attempts,
            entity_id=entity_id,
            backoff_ms=backoff_ms,
        ).job_id

    def submit(
        self,
        org_id: str,
        job_type: str,
        payload: dict[str, Any] | None = None,
        *,
        idempotency_key: str | None = None,
        priority: int = 0,
        scheduled_for: datetime | None = None,
        max_attempts: int | None = None,
        entity_id: str | None = None,
        backoff_ms: int | None = None,
    ) -> EnqueueResult:
        """Like :meth:`enqueue` but also reports whether a row was created."""
        if idempotency_key is not None:
            existing = self.get_by_idempotency_key(org_id, idempotency_key)
            if existing is not None:
                logger.debug("job.enqueue_deduplicated", job_id=existing.id, key=idempotency_key)
                return EnqueueResult(existing.id, created=False)

        max_attempts = max_attempts if max_attempts is not None else self._default_max_attempts
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

        now = self._clock()
        job_id = new_id("job")
        try:
            self._execute(
                f"""
                INSERT INTO conveyor_jobs ({_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, NULL, NULL, 0, ?, ?, NULL, NULL, ?, NULL, NULL, ?)
                """,
                (
                    job_id,
                    org_id,
                    entity_id,
                    job_type,
                    idempotency_key,
                    JobStatus.PENDING.value,
                    priority,
                    _dumps(payload or {}),
                    max_attempts,
                    backoff_ms if backoff_ms is not None else self._default_backoff_ms,
                    to_iso8601(scheduled_for or now),
                    to_iso8601(now),
                ),
            )
        except sqlite3.IntegrityError:
            # Lost an insert race on the idempotency index.
            if idempotency_key is None:
                raise
            existing = self.get_by_idempotency_key(org_id, idempotency_key)
            if existing is None:
                raise
            return EnqueueResult(existing.id, created=False)

        logger.info("job.enqueued", job_id=job_id, job_type=job_type, org_id=org_id, priority=priority)
        if self._notifier is not None:
            self._notifier.notify(job_id)
        return EnqueueResult(job_id, created=True)

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    def claim(self, job_id: str, worker_id: str) -> bool:
        """Atomically move a due pending job to claimed.

        Returns ``False`` (never raises) when the job is not pending, not yet
        due, or another worker claimed it first.
        """
        now = self._now()
        cursor = self._execute(
            """
            UPDATE conveyor_jobs
            SET status = 'claimed', claimed_by = ?, claimed_at = ?
            WHERE id = ? AND status = 'pending' AND scheduled_for <= ?
            """,
            (worker_id, now, job_id, now),
        )
        won = cursor.rowcount == 1
        if won:
            logger.debug("job.claimed", job_id=job_id, worker_id=worker_id)
        return won

    def start(self, job_id: str) -> Job:
        """claimed → running; consumes one attempt."""
        cursor = self._execute(
            """
            UPDATE conveyor_jobs
            SET status = 'running', attempts = attempts + 1, started_at = ?
            WHERE id = ? AND status = 'claimed'
            """,
            (self._now(), job_id),
        )
        if cursor.rowcount != 1:
            self._raise_transition(job_id, JobStatus.RUNNING)
        return self.require(job_id)

    def complete(self, job_id: str, result: Any = None) -> Job:
        """running → completed."""
        cursor = self._execute(
            """
            UPDATE conveyor_jobs
            SET status = 'completed', result = ?, error_message = NULL,
                completed_at = ?, claimed_by = NULL, claimed_at = NULL
            WHERE id = ? AND status = 'running'
            """,
            (_dumps(result), self._now(), job_id),
        )
        if cursor.rowcount != 1:
            self._raise_transition(job_id, JobStatus.COMPLETED)
        logger.info("job.completed", job_id=job_id)
        return self.require(job_id)

    def fail(
        self,
        job_id: str,
        error: str,
        *,
        retry_at: datetime | None = None,
        permanent: bool = False,
        dead_letter: bool = False,
    ) -> Job:
        """Record a handler failure on a running job.

        ``permanent`` → failed. ``dead_letter`` or attempts exhausted → dead.
        Otherwise the job returns to pending, claimable again at ``retry_at``
        (default: now).
        """
        job = self.require(job_id)
        now = self._now()
        if permanent:
            target = JobStatus.FAILED
        elif dead_letter or job.attempts >= job.max_attempts:
            target = JobStatus.DEAD
        else:
            target = JobStatus.PENDING
        validate_job_transition(job_id, job.status, target)

        if target == JobStatus.PENDING:
            cursor = self._execute(
                """
                UPDATE conveyor_jobs
                SET status = 'pending', error_message = ?, scheduled_for = ?,
                    claimed_by = NULL, claimed_at = NULL, started_at = NULL
                WHERE id = ? AND status = 'running'
                """,
                (error, to_iso8601(retry_at) if retry_at else now, job_id),
            )
        else:
            cursor = self._execute(
                """
                UPDATE conveyor_jobs
                SET status = ?, error_message = ?, completed_at = ?,
                    claimed_by = NULL, claimed_at = NULL
                WHERE id = ? AND status = 'running'
                """,
                (target.value, error, now, job_id),
            )
        if cursor.rowcount != 1:
            self._raise_transition(job_id, target)

        log = logger.warning if target == JobStatus.PENDING else logger.error
        log(
            "job.failed",
            job_id=job_id,
            status=target.value,
            attempts=job.attempts,
            max_attempts=job.max_attempts,
            error=error,
        )
        return self.require(job_id)

    def reject(self, job_id: str, error: str) -> Job:
        """claimed → dead without consuming an attempt (e.g. no handler)."""
        cursor = self._execute(
            """
            UPDATE conveyor_jobs
            SET status = 'dead', error_message = ?, completed_at = ?,
                claimed_by = NULL, claimed_at = NULL
            WHERE id = ? AND status = 'claimed'
            """,
            (error, self._now(), job_id),
        )
        if cursor.rowcount != 1:
            self._raise_transition(job_id, JobStatus.DEAD)
        logger.error("job.rejected", job_id=job_id, error=error)
        return self.require(job_id)

    def cancel(self, job_id: str, reason: str = "cancelled") -> bool:
        """pending → dead with ``error_message = reason``.

        Returns ``False`` when the job is already terminal, or claimed or
        running (those cannot be interrupted). Raises ``NotFoundError`` for
        unknown ids.
        """
        cursor = self._execute(
            """
            UPDATE conveyor_jobs
            SET status = 'dead', error_message = ?, completed_at = ?
            WHERE id = ? AND status = 'pending'
            """,
            (reason, self._now(), job_id),
        )
        if cursor.rowcount == 1:
            logger.info("job.cancelled", job_id=job_id, reason=reason)
            return True
        self.require(job_id)
        return False

    def _raise_transition(self, job_id: str, target: JobStatus) -> None:
        """The conditional update matched no row; report the state that blocked it."""
        job = self.require(job_id)
        validate_job_transition(job_id, job.status, target)
        # Allowed by the table from this state, but not by this operation.
        raise InvalidTransitionError("job", job_id, job.status.value, target.value)

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get(self, job_id: str) -> Job | None:
        row = self._fetchone(f"SELECT {_COLUMNS} FROM conveyor_jobs WHERE id = ?", (job_id,))
        return Job.from_row(row) if row else None

    def require(self, job_id: str) -> Job:
        job = self.get(job_id)
        if job is None:
            raise NotFoundError("job", job_id)
        return job

    def get_by_idempotency_key(self, org_id: str, idempotency_key: str) -> Job | None:
        row = self._fetchone(
            f"""
            SELECT {_COLUMNS} FROM conveyor_jobs
            WHERE org_id = ? AND idempotency_key = ?
            """,
            (org_id, idempotency_key),
        )
        return Job.from_row(row) if row else None

    def list_claimable(self, limit: int = 10) -> list[Job]:
        """Due pending jobs, highest priority first, then earliest scheduled."""
        rows = self._fetchall(
            f"""
            SELECT {_COLUMNS} FROM conveyor_jobs
            WHERE status = 'pending' AND scheduled_for <= ?
            ORDER BY priority DESC, scheduled_for ASC, created_at ASC
            LIMIT ?
            """,
            (self._now(), limit),
        )
        return [Job.from_row(row) for row in rows]

    def list_jobs(
        self,
        *,
        status: JobStatus | str | None = None,
        job_type: str | None = None,
        org_id: str | None = None,
        entity_id: str | None = None,
        limit: int = 50,
    ) -> list[Job]:
        """Most recently created first."""
        conditions = []
        params: list[Any] = []
        if status is not None:
            conditions.append("status = ?")
            params.append(JobStatus(status).value)
        if job_type is not None:
            conditions.append("job_type = ?")
            params.append(job_type)
        if org_id is not None:
            conditions.append("org_id = ?")
            params.append(org_id)
        if entity_id is not None:
            conditions.append("entity_id = ?")
            params.append(entity_id)
        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        params.append(limit)
        rows = self._fetchall(
            f"SELECT {_COLUMNS} FROM conveyor_jobs {where} ORDER BY created_at DESC, id DESC LIMIT ?",
            tuple(params),
        )
        return [Job.from_row(row) for row in rows]

    def stats(self, org_id: str | None = None) -> dict[str, int]:
        """Count of jobs per status plus ``total``."""
        if org_id is None:
            rows = self._fetchall("SELECT status, COUNT(*) AS n FROM conveyor_jobs GROUP BY status")
        else:
            rows = self._fetchall(
                "SELECT status, COUNT(*) AS n FROM conveyor_jobs WHERE org_id = ? GROUP BY status",
                (org_id,),
            )
        counts = {status.value: 0 for status in JobStatus}
        for row in rows:
            counts[row["status"]] = row["n"]
        counts["total"] = sum(counts.values())
        return counts


__all__ = ["JobStore", "DEFAULT_MAX_ATTEMPTS", "DEFAULT_BACKOFF_MS"]
