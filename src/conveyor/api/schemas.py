"""
API schemas: request bodies, response models and the RFC 7807 envelope.

Response models are built from the domain records with ``from_record`` so
routers stay one-liners; field names follow the records' ``to_dict`` keys.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from conveyor.execution.models import Job
from conveyor.triggers.definitions import TriggerDefinition
from conveyor.triggers.models import EntityEvent, TriggerExecutionEvent, TriggerRun

T = TypeVar("T")


# ── Envelopes ────────────────────────────────────────────────────────────


class ProblemDetail(BaseModel):
    """RFC 7807 «Problem Details for HTTP APIs».

    Example:
        {
            "type": "about:blank",
            "title": "Not Found",
            "status": 404,
            "detail": "trigger run not found: run_01J...",
            "instance": "/api/v1/runs/run_01J...",
            "code": "NotFoundError"
        }
    """

    type: str = Field(default="about:blank", description="Error type URI")
    title: str = Field(description="Short human-readable summary")
    status: int = Field(description="HTTP status code")
    detail: str = Field(default="", description="Human-readable explanation")
    instance: str = Field(default="", description="Path of the failing request")
    code: str = Field(default="", description="Error class name")


class ListResponse(BaseModel, Generic[T]):
    data: list[T]
    count: int = Field(description="Number of items in this response")

    @classmethod
    def of(cls, items: list[T]) -> ListResponse[T]:
        return cls(data=items, count=len(items))


class StatsResponse(BaseModel):
    counts: dict[str, int] = Field(description="Records per status, plus 'total'")


# ── Jobs ─────────────────────────────────────────────────────────────────


class JobSchema(BaseModel):
    id: str
    org_id: str
    entity_id: str | None = None
    job_type: str
    idempotency_key: str | None = None
    status: str
    priority: int
    payload: dict[str, Any]
    result: Any = None
    error_message: str | None = None
    attempts: int
    max_attempts: int
    backoff_ms: int
    claimed_by: str | None = None
    claimed_at: str | None = None
    scheduled_for: str
    started_at: str | None = None
    completed_at: str | None = None
    created_at: str

    @classmethod
    def from_record(cls, job: Job) -> JobSchema:
        return cls(**job.to_dict())


class EnqueueJobRequest(BaseModel):
    org_id: str = Field(description="Tenant that owns the job")
    job_type: str = Field(description="Registered handler name")
    payload: dict[str, Any] = Field(default_factory=dict)
    idempotency_key: str | None = Field(default=None, description="Deduplicates enqueues within the org")
    priority: int = 0
    scheduled_for: datetime | None = Field(default=None, description="Not claimable before this instant")
    max_attempts: int | None = Field(default=None, ge=1)
    entity_id: str | None = None


class EnqueueJobResponse(BaseModel):
    job_id: str
    created: bool = Field(description="False when an existing job matched the idempotency key")


class CancelJobResponse(BaseModel):
    job_id: str
    cancelled: bool
    status: str


# ── Trigger runs and executions ──────────────────────────────────────────


class TriggerRunSchema(BaseModel):
    id: str
    org_id: str
    environment: str
    trigger_slug: str
    entity_id: str
    entity_type: str
    action: str
    status: str
    data: dict[str, Any]
    previous_data: dict[str, Any] | None = None
    scheduled_for: str
    attempts: int
    max_attempts: int
    backoff_ms: int
    job_id: str | None = None
    generation: int
    result: Any = None
    error_message: str | None = None
    started_at: str | None = None
    completed_at: str | None = None
    created_at: str

    @classmethod
    def from_record(cls, run: TriggerRun) -> TriggerRunSchema:
        return cls(**run.to_dict())


class ExecutionEventSchema(BaseModel):
    id: str
    event_type: str
    trigger_slug: str
    run_id: str | None = None
    entity_id: str
    org_id: str
    environment: str
    created_at: str
    total_actions: int
    execution_log: list[dict[str, Any]]
    failed_action: str | None = None
    failed_action_index: int | None = None
    error: str | None = None

    @classmethod
    def from_record(cls, event: TriggerExecutionEvent) -> ExecutionEventSchema:
        data = event.to_dict()
        return cls(
            id=data["id"],
            event_type=data["event_type"],
            trigger_slug=data["trigger_slug"],
            run_id=data["run_id"],
            entity_id=data["entity_id"],
            org_id=data["org_id"],
            environment=data["environment"],
            created_at=data["created_at"],
            total_actions=data["totalActions"],
            execution_log=data["executionLog"],
            failed_action=data.get("failedAction"),
            failed_action_index=data.get("failedActionIndex"),
            error=data.get("error"),
        )


# ── Trigger definitions ──────────────────────────────────────────────────


class TriggerSummarySchema(BaseModel):
    slug: str
    name: str | None = None
    entity_type: str
    action: str
    enabled: bool
    scheduled: bool
    actions: list[str]

    @classmethod
    def from_record(cls, definition: TriggerDefinition) -> TriggerSummarySchema:
        return cls(**definition.to_summary())


# ── Entity events ────────────────────────────────────────────────────────


class EntityEventRequest(BaseModel):
    """An entity create/update/delete to feed through the trigger dispatcher.

    Accepts snake_case or camelCase keys (``entityType`` / ``entity_type``).
    """

    model_config = ConfigDict(populate_by_name=True)

    entity_type: str = Field(alias="entityType")
    action: str
    entity_id: str = Field(alias="entityId")
    data: dict[str, Any] = Field(default_factory=dict)
    previous_data: dict[str, Any] | None = Field(default=None, alias="previousData")
    org_id: str = Field(default="default", alias="orgId")
    environment: str = "production"

    def to_event(self) -> EntityEvent:
        return EntityEvent(
            entity_type=self.entity_type,
            action=self.action,
            entity_id=self.entity_id,
            data=self.data,
            previous_data=self.previous_data,
            org_id=self.org_id,
            environment=self.environment,
        )


class DispatchResponse(BaseModel):
    entity_id: str
    entity_type: str
    action: str
    matched: list[str]
    executed: list[ExecutionEventSchema]
    scheduled: list[TriggerRunSchema]
    skipped: dict[str, str]
    errors: dict[str, str]


class HealthResponse(BaseModel):
    status: str
    version: str
    database: str
    triggers: int
    handlers: list[str]


__all__ = [
    "ProblemDetail",
    "ListResponse",
    "StatsResponse",
    "JobSchema",
    "EnqueueJobRequest",
    "EnqueueJobResponse",
    "CancelJobResponse",
    "TriggerRunSchema",
    "ExecutionEventSchema",
    "TriggerSummarySchema",
    "EntityEventRequest",
    "DispatchResponse",
    "HealthResponse",
]
