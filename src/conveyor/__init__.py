"""
conveyor - durable job queue and event-triggered action pipelines.

Subpackages:
- conveyor.core: errors, logging, settings, timestamps, SQLite schema
- conveyor.execution: job store, handler registry, retries, workers
- conveyor.triggers: trigger definitions, interpreter, dispatcher, run supervisor
- conveyor.api / conveyor.cli: FastAPI admin surface and Typer CLI
"""

__version__ = "0.1.0"

from conveyor.engine import Engine
from conveyor.execution import HandlerRegistry, Job, JobStatus, JobStore, Worker
from conveyor.triggers import EntityEvent, TriggerDefinition, TriggerRegistry, ToolRegistry

__all__ = [
    "__version__",
    "Engine",
    "HandlerRegistry",
    "Job",
    "JobStatus",
    "JobStore",
    "Worker",
    "EntityEvent",
    "TriggerDefinition",
    "TriggerRegistry",
    "ToolRegistry",
]
