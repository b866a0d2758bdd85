"""
Trigger runs router: observe and administer scheduled trigger firings.

Endpoints:
    GET  /runs              List runs, newest first
    GET  /runs/stats        Count of runs per status
    GET  /runs/{id}         One run
    POST /runs/{id}/retry   failed|dead → pending, attempts reset
    POST /runs/{id}/cancel  pending → dead ("cancelled")
"""

from __future__ import annotations

from fastapi import APIRouter, Path, Query

from conveyor.api.deps import EngineDep
from conveyor.api.schemas import ListResponse, StatsResponse, TriggerRunSchema
from conveyor.triggers.models import RunStatus

router = APIRouter(prefix="/runs")


@router.get("", response_model=ListResponse[TriggerRunSchema])
def list_runs(
    engine: EngineDep,
    status: RunStatus | None = Query(None, description="Filter by run status"),
    trigger_slug: str | None = Query(None, description="Filter by trigger"),
    org_id: str | None = Query(None, description="Filter by tenant"),
    limit: int = Query(50, ge=1, le=500, description="Maximum items to return (1-500)"),
):
    runs = engine.supervisor.list_runs(status, trigger_slug, org_id=org_id, limit=limit)
    return ListResponse.of([TriggerRunSchema.from_record(run) for run in runs])


@router.get("/stats", response_model=StatsResponse)
def run_stats(engine: EngineDep, org_id: str | None = Query(None, description="Restrict to one tenant")):
    return StatsResponse(counts=engine.supervisor.get_run_stats(org_id))


@router.get("/{run_id}", response_model=TriggerRunSchema)
def get_run(engine: EngineDep, run_id: str = Path(..., description="Run ID")):
    return TriggerRunSchema.from_record(engine.supervisor.get_run(run_id))


@router.post("/{run_id}/retry", response_model=TriggerRunSchema)
def retry_run(engine: EngineDep, run_id: str = Path(..., description="Run ID")):
    """Re-queue a failed or dead run now with a fresh backing job.

    Raises:
        404: unknown run.
        409: the run is pending, running or completed.
    """
    return TriggerRunSchema.from_record(engine.supervisor.retry_run(run_id))


@router.post("/{run_id}/cancel", response_model=TriggerRunSchema)
def cancel_run(engine: EngineDep, run_id: str = Path(..., description="Run ID")):
    """Dead-letter a pending run and cancel its backing job (409 otherwise)."""
    return TriggerRunSchema.from_record(engine.supervisor.cancel_run(run_id))
