"""
Trigger run supervisor.

Owns the lifecycle of deferred trigger firings. Each ``TriggerRun`` is
backed by a job of type ``trigger.run``; the job queue supplies claiming,
retries and backoff, and the supervisor keeps the run record in step:

    schedule_run ──▶ run pending + job pending
    worker claims job ──▶ run_handler: run pending → running, interpreter runs
    job outcome ──▶ on_job_outcome mirrors it onto the run:
        completed            → run completed, trigger.executed event
        requeued             → run pending (new scheduled_for)
        failed | dead        → run failed | dead, trigger.failed event

Supersession (``schedule.cancel_previous``) and ``cancel_run`` dead-letter
*pending* runs with a conditional update and cancel their backing jobs. A
job that was already claimed when its run was cancelled finds the run no
longer pending in ``run_handler`` and skips the pipeline.

Every mirror update is conditional on the job attempt that produced it. A
worker whose outcome arrives after the requeued job was claimed again finds
the run owned by the later attempt and changes nothing; the later attempt
takes over a run still marked ``running`` in ``run_handler``.
"""

from __future__ import annotations

from typing import Any

from conveyor.core.errors import (
    ConfigurationError,
    InvalidTransitionError,
    PipelineConfigurationError,
    PipelineFailedError,
)
from conveyor.core.logging import LogContext, get_logger
from conveyor.core.timestamps import Clock, new_id, to_iso8601, utc_now
from conveyor.execution.models import Job, JobOutcome, JobStatus
from conveyor.execution.registry import HandlerRegistry
from conveyor.execution.store import JobStore
from conveyor.triggers.definitions import TriggerDefinition
from conveyor.triggers.interpreter import PipelineInterpreter
from conveyor.triggers.models import (
    CANCELLED,
    SUPERSEDED,
    EntityEvent,
    ExecutionEventType,
    ExecutionLogEntry,
    RETRYABLE_RUN_STATUSES,
    PipelineResult,
    RunStatus,
    TriggerExecutionEvent,
    TriggerRun,
)
from conveyor.triggers.registry import TriggerRegistry
from conveyor.triggers.store import ExecutionEventLog, TriggerRunStore
from conveyor.triggers.tools import ToolContext

logger = get_logger(__name__)

TRIGGER_RUN_JOB_TYPE = "trigger.run"
DEFAULT_TRIGGER_BACKOFF_MS = 60_000


class RunSupervisor:
    """Creates, executes, mirrors and administers trigger runs."""

    def __init__(
        self,
        jobs: JobStore,
        runs: TriggerRunStore,
        events: ExecutionEventLog,
        triggers: TriggerRegistry,
        interpreter: PipelineInterpreter,
        *,
        clock: Clock = utc_now,
        default_max_attempts: int = 3,
        default_backoff_ms: int = DEFAULT_TRIGGER_BACKOFF_MS,
    ):
        self._jobs = jobs
        self._runs = runs
        self._events = events
        self._triggers = triggers
        self._interpreter = interpreter
        self._clock = clock
        self._default_max_attempts = default_max_attempts
        self._default_backoff_ms = default_backoff_ms

    def register(self, handlers: HandlerRegistry) -> None:
        """Install :meth:`run_handler` as the ``trigger.run`` job handler."""
        handlers.register(
            TRIGGER_RUN_JOB_TYPE,
            self.run_handler,
            description="Execute the action pipeline of a scheduled trigger run",
        )

    # =========================================================================
    # SCHEDULING
    # =========================================================================

    def schedule_run(self, definition: TriggerDefinition, event: EntityEvent, scheduled_for) -> TriggerRun:
        """Persist a pending run for ``definition`` and enqueue its backing job."""
        if definition.cancel_previous:
            self.supersede(definition.slug, event.entity_id)

        retry = definition.retry
        run = TriggerRun(
            id=new_id("run"),
            org_id=event.org_id,
            environment=event.environment,
            trigger_slug=definition.slug,
            entity_id=event.entity_id,
            entity_type=event.entity_type,
            action=event.action,
            status=RunStatus.PENDING,
            scheduled_for=scheduled_for,
            created_at=self._clock(),
            data=event.data,
            previous_data=event.previous_data,
            max_attempts=retry.max_attempts if retry else self._default_max_attempts,
            backoff_ms=(retry.backoff_ms if retry and retry.backoff_ms else self._default_backoff_ms),
        )
        self._runs.insert(run)
        self._enqueue_backing_job(run)
        logger.info(
            "run.scheduled",
            run_id=run.id,
            trigger_slug=run.trigger_slug,
            entity_id=run.entity_id,
            scheduled_for=to_iso8601(run.scheduled_for),
        )
        return run

    def supersede(self, trigger_slug: str, entity_id: str) -> list[str]:
        """Dead-letter every pending run for this trigger and entity."""
        superseded: list[str] = []
        for run in self._runs.list_pending_for_entity(trigger_slug, entity_id):
            if not self._runs.dead_letter_pending(run.id, SUPERSEDED):
                continue
            if run.job_id:
                self._jobs.cancel(run.job_id, SUPERSEDED)
            superseded.append(run.id)
        if superseded:
            logger.info(
                "run.superseded",
                trigger_slug=trigger_slug,
                entity_id=entity_id,
                run_ids=superseded,
            )
        return superseded

    def _enqueue_backing_job(self, run: TriggerRun) -> str:
        job_id = self._jobs.enqueue(
            run.org_id,
            TRIGGER_RUN_JOB_TYPE,
            {"runId": run.id, "triggerSlug": run.trigger_slug},
            idempotency_key=f"trigger-run:{run.id}:{run.generation}",
            scheduled_for=run.scheduled_for,
            max_attempts=run.max_attempts,
            entity_id=run.entity_id,
            backoff_ms=run.backoff_ms,
        )
        self._runs.set_job(run.id, job_id)
        run.job_id = job_id
        return job_id

    # =========================================================================
    # EXECUTION
    # =========================================================================

    def run_handler(self, job: Job) -> dict[str, Any]:
        """Job handler for ``trigger.run``."""
        run_id = job.payload.get("runId")
        run = self._runs.get(run_id) if run_id else None
        if run is None:
            raise ConfigurationError(f"Trigger run not found: {run_id}").with_context(job_id=job.id)

        if not self._runs.mark_running(run.id, job.attempts):
            current = self._runs.require(run.id)
            logger.info("run.skipped", run_id=run.id, status=current.status.value)
            return {
                "skipped": True,
                "reason": f"run is {current.status.value}",
                "runStatus": current.status.value,
            }

        definition = self._triggers.get(run.trigger_slug)
        if definition is None or not definition.enabled:
            logger.info("run.skipped", run_id=run.id, reason="trigger disabled or deleted")
            return {"skipped": True, "reason": "Trigger disabled or deleted"}

        event = run.to_event()
        context = ToolContext(
            org_id=run.org_id,
            environment=run.environment,
            trigger_slug=run.trigger_slug,
            entity_id=run.entity_id,
            run_id=run.id,
        )
        with LogContext(run_id=run.id, trigger_slug=run.trigger_slug):
            result = self._interpreter.run(definition.actions, event.bindings(), context)

        if result.success:
            return result.to_dict()

        failed = result.failed_entry
        message = f"Action '{failed.tool}' failed: {failed.error}"
        if result.configuration_error:
            raise PipelineConfigurationError(message, result).with_context(run_id=run.id, tool=failed.tool)
        raise PipelineFailedError(message, result).with_context(run_id=run.id, tool=failed.tool)

    def on_job_outcome(self, outcome: JobOutcome) -> None:
        """Worker listener: mirror a ``trigger.run`` job's new state onto its run."""
        job = outcome.job
        if job.job_type != TRIGGER_RUN_JOB_TYPE:
            return
        run = self._runs.find_by_job(job.id)
        if run is None:
            return

        pipeline = getattr(outcome.error, "result", None)
        if not isinstance(pipeline, PipelineResult):
            pipeline = None

        if job.status == JobStatus.COMPLETED:
            if _skipped_by_run_state(job.result):
                # The run belongs to another attempt or was cancelled; leave it.
                return
            if self._runs.mark_completed(run.id, job.result, job.attempts) and _is_pipeline_output(job.result):
                self.record_execution(
                    run.trigger_slug,
                    run.to_event(),
                    _result_from_output(job.result),
                    run_id=run.id,
                )
        elif job.status == JobStatus.PENDING:
            if self._runs.mark_requeued(run.id, job.error_message, to_iso8601(job.scheduled_for), job.attempts):
                logger.info(
                    "run.retry_scheduled",
                    run_id=run.id,
                    attempts=job.attempts,
                    scheduled_for=to_iso8601(job.scheduled_for),
                )
        elif job.status in (JobStatus.FAILED, JobStatus.DEAD):
            status = RunStatus.FAILED if job.status == JobStatus.FAILED else RunStatus.DEAD
            applied = self._runs.mark_finished(
                run.id,
                status,
                job.error_message,
                job.attempts,
                result=pipeline.to_dict() if pipeline else None,
            )
            if applied:
                logger.error("run.finished", run_id=run.id, status=status.value, error=job.error_message)
                self.record_execution(
                    run.trigger_slug,
                    run.to_event(),
                    pipeline,
                    run_id=run.id,
                    error=job.error_message,
                )

    def record_execution(
        self,
        trigger_slug: str,
        event: EntityEvent,
        result: PipelineResult | None,
        *,
        run_id: str | None = None,
        error: str | None = None,
    ) -> TriggerExecutionEvent:
        """Append a ``trigger.executed`` or ``trigger.failed`` event."""
        succeeded = result is not None and result.success and error is None
        execution = TriggerExecutionEvent(
            id=new_id("evt"),
            event_type=ExecutionEventType.EXECUTED if succeeded else ExecutionEventType.FAILED,
            trigger_slug=trigger_slug,
            entity_id=event.entity_id,
            org_id=event.org_id,
            environment=event.environment,
            created_at=self._clock(),
            execution_log=list(result.execution_log) if result else [],
            total_actions=result.total_actions if result else 0,
            failed_action_index=result.failed_action_index if result else None,
            error=(result.error if result and result.error else error),
            run_id=run_id,
        )
        return self._events.append(execution)

    # =========================================================================
    # ADMINISTRATION
    # =========================================================================

    def retry_run(self, run_id: str) -> TriggerRun:
        """failed|dead → pending now, with attempts reset and a fresh backing job."""
        run = self._runs.require(run_id)
        if run.status not in RETRYABLE_RUN_STATUSES or not self._runs.reset_for_retry(run_id):
            current = self._runs.require(run_id)
            raise InvalidTransitionError("trigger run", run_id, current.status.value, RunStatus.PENDING.value)
        run = self._runs.require(run_id)
        self._enqueue_backing_job(run)
        logger.info("run.retried", run_id=run_id, generation=run.generation)
        return self._runs.require(run_id)

    def cancel_run(self, run_id: str) -> TriggerRun:
        """pending → dead ("cancelled"); anything else is rejected."""
        run = self._runs.require(run_id)
        if not self._runs.dead_letter_pending(run_id, CANCELLED):
            current = self._runs.require(run_id)
            raise InvalidTransitionError("trigger run", run_id, current.status.value, RunStatus.DEAD.value)
        if run.job_id:
            self._jobs.cancel(run.job_id, CANCELLED)
        logger.info("run.cancelled", run_id=run_id)
        return self._runs.require(run_id)

    def get_run(self, run_id: str) -> TriggerRun:
        return self._runs.require(run_id)

    def list_runs(
        self,
        status: RunStatus | str | None = None,
        trigger_slug: str | None = None,
        *,
        org_id: str | None = None,
        limit: int = 50,
    ) -> list[TriggerRun]:
        return self._runs.list_runs(status=status, trigger_slug=trigger_slug, org_id=org_id, limit=limit)

    def get_run_stats(self, org_id: str | None = None) -> dict[str, int]:
        return self._runs.stats(org_id)

    def list_executions(
        self, trigger_slug: str, limit: int = 20, *, org_id: str | None = None
    ) -> list[TriggerExecutionEvent]:
        return self._events.list_executions(trigger_slug, limit, org_id=org_id)


def _is_pipeline_output(value: Any) -> bool:
    return isinstance(value, dict) and "executionLog" in value


def _skipped_by_run_state(value: Any) -> bool:
    return isinstance(value, dict) and value.get("skipped") is True and "runStatus" in value


def _result_from_output(output: dict[str, Any]) -> PipelineResult:
    return PipelineResult(
        execution_log=[ExecutionLogEntry.from_dict(entry) for entry in output["executionLog"]],
        total_actions=output.get("totalActions", len(output["executionLog"])),
        failed_action_index=output.get("failedActionIndex"),
    )


__all__ = ["TRIGGER_RUN_JOB_TYPE", "RunSupervisor"]
