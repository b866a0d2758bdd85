"""Event-triggered action pipelines: definitions, interpreter, dispatcher and run supervisor."""

from conveyor.triggers.conditions import evaluate_condition, get_path
from conveyor.triggers.definitions import (
    TriggerAction,
    TriggerDefinition,
    TriggerRetry,
    TriggerSchedule,
    load_definitions,
)
from conveyor.triggers.dispatcher import DispatchReport, TriggerDispatcher
from conveyor.triggers.interpreter import PipelineInterpreter
from conveyor.triggers.models import (
    EntityEvent,
    ExecutionLogEntry,
    PipelineResult,
    RunStatus,
    TriggerExecutionEvent,
    TriggerRun,
)
from conveyor.triggers.registry import SyncResult, TriggerRegistry
from conveyor.triggers.store import ExecutionEventLog, TriggerRunStore
from conveyor.triggers.supervisor import TRIGGER_RUN_JOB_TYPE, RunSupervisor
from conveyor.triggers.tools import TimeboxedInvoker, ToolContext, ToolInvoker, ToolRegistry

__all__ = [
    "evaluate_condition",
    "get_path",
    "TriggerAction",
    "TriggerDefinition",
    "TriggerRetry",
    "TriggerSchedule",
    "load_definitions",
    "DispatchReport",
    "TriggerDispatcher",
    "PipelineInterpreter",
    "EntityEvent",
    "ExecutionLogEntry",
    "PipelineResult",
    "RunStatus",
    "TriggerExecutionEvent",
    "TriggerRun",
    "SyncResult",
    "TriggerRegistry",
    "ExecutionEventLog",
    "TriggerRunStore",
    "TRIGGER_RUN_JOB_TYPE",
    "RunSupervisor",
    "TimeboxedInvoker",
    "ToolContext",
    "ToolInvoker",
    "ToolRegistry",
]
