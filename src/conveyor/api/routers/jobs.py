"""
Jobs router: enqueue, inspect and cancel queued work.

Endpoints:
    GET  /jobs              List jobs, newest first, with filters
    GET  /jobs/stats        Count of jobs per status
    GET  /jobs/{id}         One job
    POST /jobs              Enqueue (idempotent with ``idempotency_key``)
    POST /jobs/{id}/cancel  pending → dead ("cancelled")
"""

from __future__ import annotations

from fastapi import APIRouter, Path, Query, status

from conveyor.api.deps import EngineDep
from conveyor.api.schemas import (
    CancelJobResponse,
    EnqueueJobRequest,
    EnqueueJobResponse,
    JobSchema,
    ListResponse,
    StatsResponse,
)
from conveyor.core.errors import InvalidTransitionError
from conveyor.execution.models import JobStatus

router = APIRouter(prefix="/jobs")


@router.get("", response_model=ListResponse[JobSchema])
def list_jobs(
    engine: EngineDep,
    status: JobStatus | None = Query(None, description="Filter by job status"),
    job_type: str | None = Query(None, description="Filter by handler name"),
    org_id: str | None = Query(None, description="Filter by tenant"),
    entity_id: str | None = Query(None, description="Filter by related entity"),
    limit: int = Query(50, ge=1, le=500, description="Maximum items to return (1-500)"),
):
    """List jobs, most recently created first.

    Example:
        GET /api/v1/jobs?status=dead&limit=10
    """
    jobs = engine.jobs.list_jobs(
        status=status,
        job_type=job_type,
        org_id=org_id,
        entity_id=entity_id,
        limit=limit,
    )
    return ListResponse.of([JobSchema.from_record(job) for job in jobs])


@router.get("/stats", response_model=StatsResponse)
def job_stats(engine: EngineDep, org_id: str | None = Query(None, description="Restrict to one tenant")):
    return StatsResponse(counts=engine.jobs.stats(org_id))


@router.get("/{job_id}", response_model=JobSchema)
def get_job(engine: EngineDep, job_id: str = Path(..., description="Job ID")):
    return JobSchema.from_record(engine.jobs.require(job_id))


@router.post("", response_model=EnqueueJobResponse, status_code=status.HTTP_201_CREATED)
def enqueue_job(engine: EngineDep, body: EnqueueJobRequest):
    """Enqueue a job.

    A repeated ``idempotency_key`` within the same org returns the existing
    job's id with ``created: false``.

    Example:
        POST /api/v1/jobs
        {"org_id": "org_1", "job_type": "send_email", "payload": {"to": "a@b.c"}}

        Response:
        {"job_id": "job_01J...", "created": true}
    """
    result = engine.jobs.submit(
        body.org_id,
        body.job_type,
        body.payload,
        idempotency_key=body.idempotency_key,
        priority=body.priority,
        scheduled_for=body.scheduled_for,
        max_attempts=body.max_attempts,
        entity_id=body.entity_id,
    )
    return EnqueueJobResponse(job_id=result.job_id, created=result.created)


@router.post("/{job_id}/cancel", response_model=CancelJobResponse)
def cancel_job(engine: EngineDep, job_id: str = Path(..., description="Job ID")):
    """Cancel a pending job. Claimed, running or finished jobs answer 409."""
    if not engine.jobs.cancel(job_id):
        job = engine.jobs.require(job_id)
        raise InvalidTransitionError("job", job_id, job.status.value, JobStatus.DEAD.value)
    job = engine.jobs.require(job_id)
    return CancelJobResponse(job_id=job_id, cancelled=True, status=job.status.value)
