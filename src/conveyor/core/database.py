"""
SQLite schema and connection helpers.

Three tables back the whole system:

    ┌────────────────────────────────────────────────────────────┐
    │ jobs            → conveyor_jobs            (mutable queue)  │
    │ trigger_runs    → conveyor_trigger_runs    (deferred runs)  │
    │ trigger_events  → conveyor_trigger_events  (append-only)    │
    └────────────────────────────────────────────────────────────┘

Timestamps are fixed-width ISO-8601 UTC text (see ``core.timestamps``), so
``scheduled_for <= ?`` comparisons and ``ORDER BY scheduled_for`` are
chronological. JSON columns hold ``json.dumps`` text.

Examples:
    >>> conn = connect(":memory:")
    >>> create_tables(conn)
    >>> TABLES["jobs"]
    'conveyor_jobs'
"""

from __future__ import annotations

import sqlite3
import threading
from pathlib import Path

# =============================================================================
# TABLE NAMES
# =============================================================================

TABLES = {
    "jobs": "conveyor_jobs",
    "trigger_runs": "conveyor_trigger_runs",
    "trigger_events": "conveyor_trigger_events",
}

# =============================================================================
# DDL
# =============================================================================

DDL = {
    "jobs": """
        CREATE TABLE IF NOT EXISTS conveyor_jobs (
            id TEXT PRIMARY KEY,
            org_id TEXT NOT NULL,
            entity_id TEXT,
            job_type TEXT NOT NULL,
            idempotency_key TEXT,
            status TEXT NOT NULL DEFAULT 'pending',
            priority INTEGER NOT NULL DEFAULT 0,
            payload TEXT NOT NULL DEFAULT '{}',
            result TEXT,
            error_message TEXT,
            attempts INTEGER NOT NULL DEFAULT 0,
            max_attempts INTEGER NOT NULL DEFAULT 3,
            backoff_ms INTEGER NOT NULL DEFAULT 1000,
            claimed_by TEXT,
            claimed_at TEXT,
            scheduled_for TEXT NOT NULL,
            started_at TEXT,
            completed_at TEXT,
            created_at TEXT NOT NULL
        );
        CREATE UNIQUE INDEX IF NOT EXISTS idx_conveyor_jobs_idempotency
            ON conveyor_jobs(org_id, idempotency_key)
            WHERE idempotency_key IS NOT NULL;
        CREATE INDEX IF NOT EXISTS idx_conveyor_jobs_claimable
            ON conveyor_jobs(status, priority DESC, scheduled_for);
        CREATE INDEX IF NOT EXISTS idx_conveyor_jobs_type
            ON conveyor_jobs(job_type, status);
        CREATE INDEX IF NOT EXISTS idx_conveyor_jobs_entity
            ON conveyor_jobs(org_id, entity_id);
    """,
    "trigger_runs": """
        CREATE TABLE IF NOT EXISTS conveyor_trigger_runs (
            id TEXT PRIMARY KEY,
            org_id TEXT NOT NULL,
            environment TEXT NOT NULL DEFAULT 'production',
            trigger_slug TEXT NOT NULL,
            entity_id TEXT NOT NULL,
            entity_type TEXT NOT NULL,
            action TEXT NOT NULL,
            data TEXT NOT NULL DEFAULT '{}',
            previous_data TEXT,
            status TEXT NOT NULL DEFAULT 'pending',
            scheduled_for TEXT NOT NULL,
            attempts INTEGER NOT NULL DEFAULT 0,
            max_attempts INTEGER NOT NULL DEFAULT 3,
            backoff_ms INTEGER NOT NULL DEFAULT 60000,
            job_id TEXT,
            generation INTEGER NOT NULL DEFAULT 0,
            result TEXT,
            error_message TEXT,
            started_at TEXT,
            completed_at TEXT,
            created_at TEXT NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_conveyor_runs_slug_entity
            ON conveyor_trigger_runs(trigger_slug, entity_id, status);
        CREATE INDEX IF NOT EXISTS idx_conveyor_runs_status
            ON conveyor_trigger_runs(status, created_at);
        CREATE INDEX IF NOT EXISTS idx_conveyor_runs_job
            ON conveyor_trigger_runs(job_id);
    """,
    "trigger_events": """
        CREATE TABLE IF NOT EXISTS conveyor_trigger_events (
            id TEXT PRIMARY KEY,
            event_type TEXT NOT NULL,
            org_id TEXT NOT NULL,
            environment TEXT NOT NULL DEFAULT 'production',
            trigger_slug TEXT NOT NULL,
            run_id TEXT,
            entity_id TEXT NOT NULL,
            payload TEXT NOT NULL DEFAULT '{}',
            created_at TEXT NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_conveyor_trigger_events_slug
            ON conveyor_trigger_events(trigger_slug, created_at);
    """,
}


def connect(path: str | Path = ":memory:", *, busy_timeout_ms: int = 5000) -> sqlite3.Connection:
    """Open a SQLite connection configured for concurrent workers.

    File databases use WAL journaling so readers never block the single
    writer; ``busy_timeout`` makes competing writers wait instead of failing.
    The connection may be shared across threads; callers serialize access.
    """
    path_str = str(path)
    if path_str != ":memory:":
        Path(path_str).parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(
        path_str,
        timeout=busy_timeout_ms / 1000,
        check_same_thread=False,
        isolation_level=None,
    )
    conn.row_factory = sqlite3.Row
    conn.execute(f"PRAGMA busy_timeout = {int(busy_timeout_ms)}")
    if path_str != ":memory:":
        conn.execute("PRAGMA journal_mode = WAL")
    return conn


def create_tables(conn: sqlite3.Connection) -> None:
    """Create all conveyor tables and indexes (idempotent)."""
    for ddl in DDL.values():
        conn.executescript(ddl)


class SqliteStore:
    """Base for stores that share one sqlite3 connection.

    Stores built over the same connection should share ``lock`` so that no
    two threads drive the connection at once. Row-level exclusivity between
    workers never relies on this lock; it comes from conditional updates.
    """

    def __init__(self, conn: sqlite3.Connection, *, lock: threading.RLock | None = None):
        self._conn = conn
        self._conn_lock = lock or threading.RLock()

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    @property
    def lock(self) -> threading.RLock:
        return self._conn_lock

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        with self._conn_lock:
            return self._conn.execute(sql, params)

    def _fetchone(self, sql: str, params: tuple = ()) -> sqlite3.Row | None:
        with self._conn_lock:
            return self._conn.execute(sql, params).fetchone()

    def _fetchall(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        with self._conn_lock:
            return self._conn.execute(sql, params).fetchall()


__all__ = ["TABLES", "DDL", "connect", "create_tables", "SqliteStore"]
