"""
Worker: claims due jobs and runs their handlers.

Per job, one pass of::

    claim ──lost──▶ (skip, no error)
      │
    lookup handler ──missing──▶ reject: claimed → dead (no attempt consumed)
      │
    start: claimed → running (attempts + 1)
      │
    handler(job) ──ok──▶ complete
      │
      └──raises──▶ RetryController.decide ──▶ requeue (after backoff) | dead | failed

Handler exceptions never escape the worker; they end up on the job record.
After each pass the resulting :class:`JobOutcome` is delivered to the
registered listeners (the trigger run supervisor mirrors runs this way).

Candidates come from two sources: wake-up notifications (a hint, may be
duplicated or early) and a periodic ``list_claimable`` poll. Both only lead
to a ``claim`` attempt, and the store decides who wins.

Example:
    >>> worker = Worker(store, registry, worker_id="worker-1")
    >>> worker.run_once()       # synchronous pass, useful in tests and CLIs
    3
    >>> worker.start_background()
    >>> worker.stop()
"""

from __future__ import annotations

import os
import platform
import signal
import threading
import uuid
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from conveyor.core.errors import HandlerNotFoundError
from conveyor.core.logging import LogContext, get_logger
from conveyor.core.timestamps import utc_now
from conveyor.execution.models import JobOutcome, JobStatus
from conveyor.execution.notify import WakeupQueue
from conveyor.execution.registry import HandlerRegistry
from conveyor.execution.retry import RetryAction, RetryController, format_error
from conveyor.execution.store import JobStore

logger = get_logger(__name__)

OutcomeListener = Callable[[JobOutcome], None]


@dataclass
class WorkerInfo:
    """Metadata about a running worker."""

    worker_id: str
    pid: int
    started_at: datetime
    poll_interval: float
    max_workers: int
    status: str = "idle"
    hostname: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "worker_id": self.worker_id,
            "pid": self.pid,
            "started_at": self.started_at.isoformat(),
            "poll_interval": self.poll_interval,
            "max_workers": self.max_workers,
            "status": self.status,
            "hostname": self.hostname,
        }


@dataclass
class WorkerStats:
    """Aggregate statistics for a worker."""

    total_processed: int = 0
    total_completed: int = 0
    total_requeued: int = 0
    total_failed: int = 0
    total_dead: int = 0
    claims_lost: int = 0
    uptime_seconds: float = 0
    last_poll_at: datetime | None = None
    active_jobs: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_processed": self.total_processed,
            "total_completed": self.total_completed,
            "total_requeued": self.total_requeued,
            "total_failed": self.total_failed,
            "total_dead": self.total_dead,
            "claims_lost": self.claims_lost,
            "uptime_seconds": round(self.uptime_seconds, 2),
            "last_poll_at": self.last_poll_at.isoformat() if self.last_poll_at else None,
            "active_jobs": self.active_jobs,
        }


class Worker:
    """Consumer loop over a :class:`JobStore`.

    Args:
        store: Job store (one per connection; give each worker process its own)
        registry: Explicit handler registry
        retry: Retry controller (default: exponential backoff capped at 1h)
        notifier: Wake-up queue to drain between polls
        worker_id: Identifier recorded in ``claimed_by``
        poll_interval: Seconds between ``list_claimable`` polls
        batch_size: Max candidates examined per poll
        max_workers: Handler threads used by :meth:`start`
    """

    def __init__(
        self,
        store: JobStore,
        registry: HandlerRegistry,
        *,
        retry: RetryController | None = None,
        notifier: WakeupQueue | None = None,
        worker_id: str | None = None,
        poll_interval: float = 2.0,
        batch_size: int = 10,
        max_workers: int = 4,
        listeners: list[OutcomeListener] | None = None,
    ):
        self._store = store
        self._registry = registry
        self._retry = retry or RetryController(clock=store.clock)
        self._notifier = notifier
        self._worker_id = worker_id or f"worker-{uuid.uuid4().hex[:8]}"
        self._poll_interval = poll_interval
        self._batch_size = batch_size
        self._max_workers = max_workers
        self._listeners: list[OutcomeListener] = list(listeners or [])

        self._shutdown = threading.Event()
        self._started_at = utc_now()
        self._stats = WorkerStats()
        self._stats_lock = threading.Lock()
        self._active: set[str] = set()
        self._active_lock = threading.Lock()

        self.info = WorkerInfo(
            worker_id=self._worker_id,
            pid=os.getpid(),
            started_at=self._started_at,
            poll_interval=poll_interval,
            max_workers=max_workers,
            hostname=platform.node(),
        )

    @property
    def worker_id(self) -> str:
        return self._worker_id

    def add_listener(self, listener: OutcomeListener) -> None:
        """Call ``listener(outcome)`` after every job pass."""
        self._listeners.append(listener)

    # ------------------------------------------------------------------ #
    # Single job
    # ------------------------------------------------------------------ #

    def process(self, job_id: str) -> JobOutcome | None:
        """Claim and run one job in the calling thread.

        Returns ``None`` when the claim was lost or the job is not due.
        """
        if not self._store.claim(job_id, self._worker_id):
            with self._stats_lock:
                self._stats.claims_lost += 1
            return None
        return self._execute(job_id)

    def _execute(self, job_id: str) -> JobOutcome:
        job = self._store.require(job_id)
        handler = self._registry.lookup(job.job_type)

        if handler is None:
            error = HandlerNotFoundError(job.job_type)
            job = self._store.reject(job_id, error.message)
            outcome = JobOutcome(job, JobStatus.CLAIMED, error=error)
            self._record(outcome)
            return outcome

        job = self._store.start(job_id)
        with LogContext(job_id=job.id, job_type=job.job_type, worker_id=self._worker_id):
            logger.info("job.started", attempt=job.attempts, max_attempts=job.max_attempts)
            try:
                result = handler(job)
            except Exception as exc:
                job = self._apply_failure(job, exc)
                outcome = JobOutcome(job, JobStatus.RUNNING, error=exc)
            else:
                job = self._store.complete(job_id, result)
                outcome = JobOutcome(job, JobStatus.RUNNING)

        self._record(outcome)
        return outcome

    def _apply_failure(self, job, exc: Exception):
        decision = self._retry.decide(job, exc)
        message = format_error(exc)
        logger.warning(
            "job.handler_failed",
            error=message,
            action=decision.action.value,
            delay_ms=decision.delay_ms,
        )
        if decision.action == RetryAction.FAIL:
            return self._store.fail(job.id, message, permanent=True)
        if decision.action == RetryAction.DEAD:
            return self._store.fail(job.id, message, dead_letter=True)
        return self._store.fail(job.id, message, retry_at=decision.retry_at)

    def _record(self, outcome: JobOutcome) -> None:
        with self._stats_lock:
            self._stats.total_processed += 1
            if outcome.status == JobStatus.COMPLETED:
                self._stats.total_completed += 1
            elif outcome.status == JobStatus.PENDING:
                self._stats.total_requeued += 1
            elif outcome.status == JobStatus.FAILED:
                self._stats.total_failed += 1
            elif outcome.status == JobStatus.DEAD:
                self._stats.total_dead += 1

        for listener in self._listeners:
            try:
                listener(outcome)
            except Exception:
                logger.exception("worker.listener_failed", job_id=outcome.job.id)

    # ------------------------------------------------------------------ #
    # Batches
    # ------------------------------------------------------------------ #

    def candidates(self) -> list[str]:
        """Job ids worth a claim attempt.

        The poll comes first so priority order holds; notified ids the poll
        did not return (beyond ``batch_size``) follow.
        """
        notified = self._notifier.drain(self._batch_size) if self._notifier is not None else []
        ids = [job.id for job in self._store.list_claimable(self._batch_size)]
        seen = set(ids)
        for job_id in notified:
            if job_id not in seen:
                seen.add(job_id)
                ids.append(job_id)
        with self._stats_lock:
            self._stats.last_poll_at = utc_now()
        return ids

    def run_once(self) -> int:
        """Process every currently claimable job synchronously.

        Returns the number of jobs this worker ran (claims won).
        """
        processed = 0
        for job_id in self.candidates():
            if self.process(job_id) is not None:
                processed += 1
        return processed

    def run_until_idle(self, max_passes: int = 100) -> int:
        """Repeat :meth:`run_once` until a pass finds nothing to do."""
        total = 0
        for _ in range(max_passes):
            processed = self.run_once()
            if processed == 0:
                break
            total += processed
        return total

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def start(self) -> None:
        """Run the poll loop until :meth:`stop` (blocking).

        Installs SIGINT/SIGTERM handlers when called from the main thread.
        """
        logger.info(
            "worker.starting",
            worker_id=self._worker_id,
            poll_interval=self._poll_interval,
            batch_size=self._batch_size,
            max_workers=self._max_workers,
        )
        try:
            signal.signal(signal.SIGINT, self._handle_signal)
            signal.signal(signal.SIGTERM, self._handle_signal)
        except ValueError:
            pass  # not the main thread

        self.info.status = "running"
        pool = ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix=self._worker_id)
        try:
            while not self._shutdown.is_set():
                try:
                    self._dispatch(pool)
                except Exception:
                    logger.exception("worker.poll_failed", worker_id=self._worker_id)
                self._wait()
        finally:
            pool.shutdown(wait=True)
            self.info.status = "stopped"
            logger.info("worker.stopped", worker_id=self._worker_id)

    def start_background(self) -> threading.Thread:
        """Start the worker in a daemon thread. Returns the thread."""
        thread = threading.Thread(target=self.start, name=f"{self._worker_id}-loop", daemon=True)
        thread.start()
        return thread

    def stop(self) -> None:
        """Request graceful shutdown; running handlers finish first."""
        logger.info("worker.stopping", worker_id=self._worker_id)
        self._shutdown.set()
        self.info.status = "stopping"

    def get_stats(self) -> WorkerStats:
        with self._active_lock:
            active = len(self._active)
        with self._stats_lock:
            self._stats.active_jobs = active
            self._stats.uptime_seconds = (utc_now() - self._started_at).total_seconds()
            return self._stats

    def _handle_signal(self, signum: int, frame: Any) -> None:
        self.stop()

    def _wait(self) -> None:
        if self._notifier is None:
            self._shutdown.wait(self._poll_interval)
            return
        job_id = self._notifier.wait(self._poll_interval)
        if job_id is not None:
            # Put it back for the next candidates() pass.
            self._notifier.notify(job_id)

    def _dispatch(self, pool: ThreadPoolExecutor) -> int:
        dispatched = 0
        for job_id in self.candidates():
            with self._active_lock:
                if len(self._active) >= self._max_workers:
                    break
            if not self._store.claim(job_id, self._worker_id):
                with self._stats_lock:
                    self._stats.claims_lost += 1
                continue
            with self._active_lock:
                self._active.add(job_id)
            pool.submit(self._run_claimed, job_id)
            dispatched += 1
        return dispatched

    def _run_claimed(self, job_id: str) -> None:
        try:
            self._execute(job_id)
        except Exception:
            logger.exception("worker.execute_failed", job_id=job_id)
        finally:
            with self._active_lock:
                self._active.discard(job_id)


__all__ = ["OutcomeListener", "WorkerInfo", "WorkerStats", "Worker"]
