"""
Trigger dispatcher: entity events in, pipeline executions or runs out.

For each enabled definition matching the event's entity type and action
whose condition holds:

- no ``schedule``: the pipeline runs inline and a ``TriggerExecutionEvent``
  is appended;
- with ``schedule``: ``scheduled_for`` is computed and the run supervisor
  creates a run (superseding older pending runs when configured).

Each definition is handled on its own; an error in one is logged and
reported in the ``DispatchReport`` while the others proceed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from conveyor.core.errors import ConfigurationError
from conveyor.core.logging import get_logger
from conveyor.core.timestamps import Clock, add_ms, parse_timestamp, utc_now
from conveyor.execution.retry import format_error
from conveyor.triggers.conditions import MISSING, evaluate_condition, get_path
from conveyor.triggers.definitions import TriggerDefinition, TriggerSchedule
from conveyor.triggers.interpreter import PipelineInterpreter
from conveyor.triggers.models import EntityEvent, TriggerExecutionEvent, TriggerRun
from conveyor.triggers.registry import TriggerRegistry
from conveyor.triggers.supervisor import RunSupervisor
from conveyor.triggers.templates import render
from conveyor.triggers.tools import ToolContext

logger = get_logger(__name__)


@dataclass
class DispatchReport:
    """What one entity event caused."""

    event: EntityEvent
    matched: list[str] = field(default_factory=list)
    executed: list[TriggerExecutionEvent] = field(default_factory=list)
    scheduled: list[TriggerRun] = field(default_factory=list)
    skipped: dict[str, str] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity_id": self.event.entity_id,
            "entity_type": self.event.entity_type,
            "action": self.event.action,
            "matched": self.matched,
            "executed": [e.to_dict() for e in self.executed],
            "scheduled": [r.to_dict() for r in self.scheduled],
            "skipped": self.skipped,
            "errors": self.errors,
        }


class TriggerDispatcher:
    def __init__(
        self,
        triggers: TriggerRegistry,
        interpreter: PipelineInterpreter,
        supervisor: RunSupervisor,
        *,
        clock: Clock = utc_now,
    ):
        self._triggers = triggers
        self._interpreter = interpreter
        self._supervisor = supervisor
        self._clock = clock

    def dispatch(self, event: EntityEvent) -> DispatchReport:
        report = DispatchReport(event=event)
        for definition in self._triggers.candidates(event.entity_type, event.action):
            if not evaluate_condition(definition.condition, event.data):
                continue
            report.matched.append(definition.slug)
            try:
                self._fire(definition, event, report)
            except Exception as exc:
                logger.exception(
                    "dispatch.trigger_failed",
                    trigger_slug=definition.slug,
                    entity_id=event.entity_id,
                )
                report.errors[definition.slug] = format_error(exc)
        return report

    def _fire(self, definition: TriggerDefinition, event: EntityEvent, report: DispatchReport) -> None:
        if definition.schedule is None:
            report.executed.append(self.execute_inline(definition, event))
            return

        scheduled_for = self.compute_scheduled_for(definition.schedule, event)
        if scheduled_for is None:
            reason = f"schedule.at {definition.schedule.at!r} did not yield a timestamp"
            logger.warning(
                "dispatch.schedule_unresolved",
                trigger_slug=definition.slug,
                entity_id=event.entity_id,
                at=definition.schedule.at,
            )
            report.skipped[definition.slug] = reason
            return
        report.scheduled.append(self._supervisor.schedule_run(definition, event, scheduled_for))

    def execute_inline(self, definition: TriggerDefinition, event: EntityEvent) -> TriggerExecutionEvent:
        """Run the pipeline now and record the outcome. Never retried."""
        context = ToolContext(
            org_id=event.org_id,
            environment=event.environment,
            trigger_slug=definition.slug,
            entity_id=event.entity_id,
        )
        result = self._interpreter.run(definition.actions, event.bindings(), context)
        return self._supervisor.record_execution(definition.slug, event, result)

    def compute_scheduled_for(self, schedule: TriggerSchedule, event: EntityEvent) -> datetime | None:
        """When a scheduled firing becomes due, or ``None`` if ``at`` cannot be read.

        ``delay``: now + delay ms. ``at``: a dot path into the entity data, or
        a ``{{...}}`` template over the event bindings, yielding epoch ms,
        epoch seconds or ISO-8601; ``offset`` ms is added. Neither: now.
        """
        now = self._clock()
        if schedule.delay is not None:
            return add_ms(now, schedule.delay)
        if schedule.at is None:
            return now

        expression = schedule.at.strip()
        if "{{" in expression:
            try:
                value = render(expression, event.bindings())
            except ConfigurationError:
                return None
        else:
            value = get_path(event.data, expression)
            if value is MISSING:
                return None

        moment = parse_timestamp(value)
        if moment is None:
            return None
        return add_ms(moment, schedule.offset)


__all__ = ["DispatchReport", "TriggerDispatcher"]
