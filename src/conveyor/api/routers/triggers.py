"""
Triggers router: loaded definitions and their execution history.

Endpoints:
    GET /triggers                    Loaded trigger definitions
    GET /triggers/{slug}/executions  Execution events, newest first
"""

from __future__ import annotations

from fastapi import APIRouter, Path, Query

from conveyor.api.deps import EngineDep
from conveyor.api.schemas import ExecutionEventSchema, ListResponse, TriggerSummarySchema

router = APIRouter(prefix="/triggers")


@router.get("", response_model=ListResponse[TriggerSummarySchema])
def list_triggers(
    engine: EngineDep,
    include_disabled: bool = Query(True, description="Include disabled definitions"),
):
    definitions = engine.triggers.list_definitions(include_disabled=include_disabled)
    return ListResponse.of([TriggerSummarySchema.from_record(d) for d in definitions])


@router.get("/{slug}/executions", response_model=ListResponse[ExecutionEventSchema])
def list_executions(
    engine: EngineDep,
    slug: str = Path(..., description="Trigger slug"),
    org_id: str | None = Query(None, description="Restrict to one tenant"),
    limit: int = Query(20, ge=1, le=500, description="Maximum items to return (1-500)"),
):
    """Execution events for a trigger.

    History is kept for triggers that have since been removed, so an
    unknown slug yields an empty list rather than 404.
    """
    events = engine.supervisor.list_executions(slug, limit, org_id=org_id)
    return ListResponse.of([ExecutionEventSchema.from_record(e) for e in events])
