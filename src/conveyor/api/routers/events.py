"""
Entity events router: the HTTP entry point of the trigger dispatcher.

Endpoints:
    POST /entity-events  Dispatch an entity create/update/delete
"""

from __future__ import annotations

from fastapi import APIRouter

from conveyor.api.deps import EngineDep
from conveyor.api.schemas import (
    DispatchResponse,
    EntityEventRequest,
    ExecutionEventSchema,
    TriggerRunSchema,
)

router = APIRouter(prefix="/entity-events")


@router.post("", response_model=DispatchResponse)
def dispatch_entity_event(engine: EngineDep, body: EntityEventRequest):
    """Run matching unscheduled triggers inline and schedule the rest.

    Example:
        POST /api/v1/entity-events
        {
            "entityType": "session",
            "action": "updated",
            "entityId": "s1",
            "data": {"status": "scheduled", "startsAt": "2026-03-01T09:00:00Z"}
        }

        Response:
        {"entity_id": "s1", "matched": ["session-reminder"], "scheduled": [...], ...}
    """
    report = engine.dispatch(body.to_event())
    return DispatchResponse(
        entity_id=report.event.entity_id,
        entity_type=report.event.entity_type,
        action=report.event.action,
        matched=report.matched,
        executed=[ExecutionEventSchema.from_record(e) for e in report.executed],
        scheduled=[TriggerRunSchema.from_record(r) for r in report.scheduled],
        skipped=report.skipped,
        errors=report.errors,
    )
