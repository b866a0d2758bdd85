"""
Persistence for trigger runs and execution events.

``TriggerRunStore`` follows the job store's discipline: every status change
is one conditional ``UPDATE`` whose row count says whether it applied, so a
cancel racing a worker start has exactly one winner. ``ExecutionEventLog``
is append-only.
"""

from __future__ import annotations

import json
import sqlite3
import threading
from typing import Any

from conveyor.core.database import SqliteStore
from conveyor.core.errors import NotFoundError
from conveyor.core.logging import get_logger
from conveyor.core.timestamps import Clock, to_iso8601, utc_now
from conveyor.triggers.models import (
    RunStatus,
    TriggerExecutionEvent,
    TriggerRun,
)

logger = get_logger(__name__)

_RUN_COLUMNS = """
    id, org_id, environment, trigger_slug, entity_id, entity_type, action,
    data, previous_data, status, scheduled_for, attempts, max_attempts,
    backoff_ms, job_id, generation, result, error_message, started_at,
    completed_at, created_at
"""


def _dumps(value: Any) -> str | None:
    return None if value is None else json.dumps(value, default=str)


class TriggerRunStore(SqliteStore):
    """CRUD and conditional transitions for ``conveyor_trigger_runs``."""

    def __init__(
        self,
        conn: sqlite3.Connection,
        *,
        clock: Clock = utc_now,
        lock: threading.RLock | None = None,
    ):
        super().__init__(conn, lock=lock)
        self._clock = clock

    def _now(self) -> str:
        return to_iso8601(self._clock())

    # =========================================================================
    # CREATE / READ
    # =========================================================================

    def insert(self, run: TriggerRun) -> TriggerRun:
        self._execute(
            f"""
            INSERT INTO conveyor_trigger_runs ({_RUN_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                run.id,
                run.org_id,
                run.environment,
                run.trigger_slug,
                run.entity_id,
                run.entity_type,
                run.action,
                json.dumps(run.data, default=str),
                _dumps(run.previous_data),
                run.status.value,
                to_iso8601(run.scheduled_for),
                run.attempts,
                run.max_attempts,
                run.backoff_ms,
                run.job_id,
                run.generation,
                _dumps(run.result),
                run.error_message,
                to_iso8601(run.started_at),
                to_iso8601(run.completed_at),
                to_iso8601(run.created_at),
            ),
        )
        return run

    def get(self, run_id: str) -> TriggerRun | None:
        row = self._fetchone(f"SELECT {_RUN_COLUMNS} FROM conveyor_trigger_runs WHERE id = ?", (run_id,))
        return TriggerRun.from_row(row) if row else None

    def require(self, run_id: str) -> TriggerRun:
        run = self.get(run_id)
        if run is None:
            raise NotFoundError("trigger run", run_id)
        return run

    def find_by_job(self, job_id: str) -> TriggerRun | None:
        row = self._fetchone(
            f"SELECT {_RUN_COLUMNS} FROM conveyor_trigger_runs WHERE job_id = ?", (job_id,)
        )
        return TriggerRun.from_row(row) if row else None

    def list_pending_for_entity(self, trigger_slug: str, entity_id: str) -> list[TriggerRun]:
        rows = self._fetchall(
            f"""
            SELECT {_RUN_COLUMNS} FROM conveyor_trigger_runs
            WHERE trigger_slug = ? AND entity_id = ? AND status = 'pending'
            ORDER BY created_at ASC
            """,
            (trigger_slug, entity_id),
        )
        return [TriggerRun.from_row(row) for row in rows]

    def list_runs(
        self,
        *,
        status: RunStatus | str | None = None,
        trigger_slug: str | None = None,
        org_id: str | None = None,
        entity_id: str | None = None,
        limit: int = 50,
    ) -> list[TriggerRun]:
        """Most recently created first."""
        conditions = []
        params: list[Any] = []
        if status is not None:
            conditions.append("status = ?")
            params.append(RunStatus(status).value)
        if trigger_slug is not None:
            conditions.append("trigger_slug = ?")
            params.append(trigger_slug)
        if org_id is not None:
            conditions.append("org_id = ?")
            params.append(org_id)
        if entity_id is not None:
            conditions.append("entity_id = ?")
            params.append(entity_id)
        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        params.append(limit)
        rows = self._fetchall(
            f"""
            SELECT {_RUN_COLUMNS} FROM conveyor_trigger_runs {where}
            ORDER BY created_at DESC, id DESC LIMIT ?
            """,
            tuple(params),
        )
        return [TriggerRun.from_row(row) for row in rows]

    def stats(self, org_id: str | None = None) -> dict[str, int]:
        """Count of runs per status plus ``total``."""
        if org_id is None:
            rows = self._fetchall(
                "SELECT status, COUNT(*) AS n FROM conveyor_trigger_runs GROUP BY status"
            )
        else:
            rows = self._fetchall(
                "SELECT status, COUNT(*) AS n FROM conveyor_trigger_runs WHERE org_id = ? GROUP BY status",
                (org_id,),
            )
        counts = {status.value: 0 for status in RunStatus}
        for row in rows:
            counts[row["status"]] = row["n"]
        counts["total"] = sum(counts.values())
        return counts

    # =========================================================================
    # CONDITIONAL TRANSITIONS (return True when applied)
    # =========================================================================

    def set_job(self, run_id: str, job_id: str) -> None:
        self._execute("UPDATE conveyor_trigger_runs SET job_id = ? WHERE id = ?", (job_id, run_id))

    def dead_letter_pending(self, run_id: str, reason: str) -> bool:
        """pending → dead (cancel or supersede)."""
        cursor = self._execute(
            """
            UPDATE conveyor_trigger_runs
            SET status = 'dead', error_message = ?, completed_at = ?
            WHERE id = ? AND status = 'pending'
            """,
            (reason, self._now(), run_id),
        )
        return cursor.rowcount == 1

    def mark_running(self, run_id: str, attempts: int) -> bool:
        """pending → running for job attempt ``attempts``.

        A run still ``running`` from an earlier attempt is taken over: its
        job was requeued before the previous worker's outcome reached the run.
        """
        cursor = self._execute(
            """
            UPDATE conveyor_trigger_runs
            SET status = 'running', attempts = ?, started_at = ?
            WHERE id = ? AND (status = 'pending' OR (status = 'running' AND attempts < ?))
            """,
            (attempts, self._now(), run_id, attempts),
        )
        return cursor.rowcount == 1

    def mark_completed(self, run_id: str, result: Any, attempts: int) -> bool:
        cursor = self._execute(
            """
            UPDATE conveyor_trigger_runs
            SET status = 'completed', result = ?, error_message = NULL, completed_at = ?
            WHERE id = ? AND status = 'running' AND attempts = ?
            """,
            (_dumps(result), self._now(), run_id, attempts),
        )
        return cursor.rowcount == 1

    def mark_requeued(self, run_id: str, error: str | None, scheduled_for: str, attempts: int) -> bool:
        cursor = self._execute(
            """
            UPDATE conveyor_trigger_runs
            SET status = 'pending', error_message = ?, scheduled_for = ?, started_at = NULL
            WHERE id = ? AND status = 'running' AND attempts = ?
            """,
            (error, scheduled_for, run_id, attempts),
        )
        return cursor.rowcount == 1

    def mark_finished(
        self,
        run_id: str,
        status: RunStatus,
        error: str | None,
        attempts: int,
        result: Any = None,
    ) -> bool:
        """pending|running → failed|dead, unless a later attempt already owns the run."""
        if status not in (RunStatus.FAILED, RunStatus.DEAD):
            raise ValueError(f"mark_finished expects failed or dead, got {status.value}")
        cursor = self._execute(
            """
            UPDATE conveyor_trigger_runs
            SET status = ?, error_message = ?, attempts = ?, result = ?, completed_at = ?
            WHERE id = ? AND status IN ('pending', 'running') AND attempts <= ?
            """,
            (status.value, error, attempts, _dumps(result), self._now(), run_id, attempts),
        )
        return cursor.rowcount == 1

    def reset_for_retry(self, run_id: str) -> bool:
        """failed|dead → pending, due now, attempts reset, next generation."""
        cursor = self._execute(
            """
            UPDATE conveyor_trigger_runs
            SET status = 'pending', attempts = 0, error_message = NULL, result = NULL,
                scheduled_for = ?, started_at = NULL, completed_at = NULL,
                generation = generation + 1
            WHERE id = ? AND status IN ('failed', 'dead')
            """,
            (self._now(), run_id),
        )
        return cursor.rowcount == 1


class ExecutionEventLog(SqliteStore):
    """Append-only store of ``TriggerExecutionEvent``."""

    def append(self, event: TriggerExecutionEvent) -> TriggerExecutionEvent:
        self._execute(
            """
            INSERT INTO conveyor_trigger_events (
                id, event_type, org_id, environment, trigger_slug, run_id,
                entity_id, payload, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                event.id,
                event.event_type.value,
                event.org_id,
                event.environment,
                event.trigger_slug,
                event.run_id,
                event.entity_id,
                json.dumps(event.payload(), default=str),
                to_iso8601(event.created_at),
            ),
        )
        logger.info(
            event.event_type.value,
            trigger_slug=event.trigger_slug,
            entity_id=event.entity_id,
            run_id=event.run_id,
            total_actions=event.total_actions,
            failed_action_index=event.failed_action_index,
        )
        return event

    def list_executions(
        self,
        trigger_slug: str,
        limit: int = 20,
        *,
        org_id: str | None = None,
    ) -> list[TriggerExecutionEvent]:
        """Newest first."""
        sql = """
            SELECT id, event_type, org_id, environment, trigger_slug, run_id,
                   entity_id, payload, created_at
            FROM conveyor_trigger_events
            WHERE trigger_slug = ?
        """
        params: list[Any] = [trigger_slug]
        if org_id is not None:
            sql += " AND org_id = ?"
            params.append(org_id)
        sql += " ORDER BY created_at DESC, id DESC LIMIT ?"
        params.append(limit)
        return [TriggerExecutionEvent.from_row(row) for row in self._fetchall(sql, tuple(params))]


__all__ = ["TriggerRunStore", "ExecutionEventLog"]
