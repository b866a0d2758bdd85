"""Durable job queue: store and claim broker, handlers, retries and workers."""

from conveyor.execution.models import EnqueueResult, Job, JobOutcome, JobStatus
from conveyor.execution.notify import WakeupNotifier, WakeupQueue
from conveyor.execution.registry import Handler, HandlerRegistry
from conveyor.execution.retry import (
    ExponentialBackoff,
    RetryAction,
    RetryController,
    RetryDecision,
)
from conveyor.execution.store import JobStore
from conveyor.execution.worker import Worker, WorkerStats

__all__ = [
    "EnqueueResult",
    "Job",
    "JobOutcome",
    "JobStatus",
    "WakeupNotifier",
    "WakeupQueue",
    "Handler",
    "HandlerRegistry",
    "ExponentialBackoff",
    "RetryAction",
    "RetryController",
    "RetryDecision",
    "JobStore",
    "Worker",
    "WorkerStats",
]
