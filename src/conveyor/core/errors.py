"""
Structured error types for conveyor.

Every failure that crosses a component boundary is a ``ConveyorError`` (or
a subclass). Errors carry the metadata the retry controller and the
observability surfaces need:

- **Category:** What kind of failure (handler, config, pipeline, state, ...)
- **Retryable:** Whether the retry controller may requeue the work
- **Retry-after:** Minimum delay (seconds) a handler asks for
- **Context:** job/run/trigger identifiers for logging
- **Cause:** The chained underlying exception

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────┐
        │                        ConveyorError                          │
        │  (category, retryable, retry_after, context, cause)          │
        ├──────────────────────────────────────────────────────────────┤
        │                                                               │
        │  TransientHandlerError      PermanentHandlerError             │
        │  (retryable=True)           (retryable=False)                 │
        │        │                                                      │
        │  PipelineFailedError                                          │
        │                                                               │
        │  ConfigurationError (CONFIG, never retried)                   │
        │        │                                                      │
        │  HandlerNotFoundError       UnresolvedBindingError            │
        │  TemplateSyntaxError        ToolNotFoundError                 │
        │  TriggerDefinitionError     PipelineConfigurationError        │
        │                                                               │
        │  InvalidTransitionError (STATE)   NotFoundError (NOT_FOUND)   │
        └──────────────────────────────────────────────────────────────┘

Two outcomes are deliberately *not* exceptions: a condition mismatch (the
dispatcher simply does not fire) and a lost claim race (``claim`` returns
``False``).

Examples:
    >>> error = TransientHandlerError("SMTP relay busy", retry_after=30)
    >>> error.retryable
    True
    >>> ConfigurationError("bad template").retryable
    False
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    HANDLER = "HANDLER"
    CONFIG = "CONFIG"
    PIPELINE = "PIPELINE"
    STATE = "STATE"
    NOT_FOUND = "NOT_FOUND"
    STORAGE = "STORAGE"
    INTERNAL = "INTERNAL"


@dataclass
class ErrorContext:
    """Identifiers attached to an error for logging and reporting."""

    job_id: str | None = None
    job_type: str | None = None
    run_id: str | None = None
    trigger_slug: str | None = None
    tool: str | None = None
    org_id: str | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["job_id", "job_type", "run_id", "trigger_slug", "tool", "org_id"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class ConveyorError(Exception):
    """
    Base class for all conveyor errors.

    Subclasses set ``default_category`` and ``default_retryable``; callers can
    override both per instance.

    Example:
        >>> error = ConveyorError("Fetch failed").with_context(job_id="job_01")
        >>> error.context.job_id
        'job_01'
        >>> error.to_dict()["category"]
        'INTERNAL'
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        retry_after: int | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.retry_after = retry_after
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> ConveyorError:
        """Add context to this error (fluent API)."""
        for key, value in kwargs.items():
            if hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        if self.retry_after is not None:
            result["retry_after"] = self.retry_after
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# HANDLER ERRORS
# =============================================================================


class TransientHandlerError(ConveyorError):
    """A handler failure worth retrying (network blip, busy dependency)."""

    default_category = ErrorCategory.HANDLER
    default_retryable = True


class PermanentHandlerError(ConveyorError):
    """A handler failure that must not be retried; the job is dead-lettered."""

    default_category = ErrorCategory.HANDLER
    default_retryable = False


# =============================================================================
# CONFIGURATION ERRORS (never retried)
# =============================================================================


class ConfigurationError(ConveyorError):
    """Misconfiguration: retrying cannot help."""

    default_category = ErrorCategory.CONFIG
    default_retryable = False


class HandlerNotFoundError(ConfigurationError):
    """No handler is registered for a job type."""

    def __init__(self, job_type: str):
        super().__init__(f"No handler registered for job type: {job_type}")
        self.job_type = job_type
        self.context.job_type = job_type


class ToolNotFoundError(ConfigurationError):
    """An action step names a tool the invoker does not know."""

    def __init__(self, tool: str):
        super().__init__(f"Unknown tool: {tool}")
        self.tool = tool
        self.context.tool = tool


class TemplateSyntaxError(ConfigurationError):
    """A ``{{...}}`` template could not be parsed."""

    def __init__(self, template: str, reason: str):
        super().__init__(f"Malformed template {template!r}: {reason}")
        self.template = template
        self.reason = reason


class UnresolvedBindingError(ConfigurationError):
    """A template references a name or path absent from the binding namespace."""

    def __init__(self, reference: str, tool: str | None = None):
        where = f" in args for tool '{tool}'" if tool else ""
        super().__init__(f"Unresolved binding '{reference}'{where}")
        self.reference = reference
        self.tool = tool
        self.context.tool = tool


class TriggerDefinitionError(ConfigurationError):
    """A trigger definition failed validation or could not be loaded."""


# =============================================================================
# PIPELINE ERRORS
# =============================================================================


class PipelineFailedError(TransientHandlerError):
    """An action pipeline stopped on a failing step.

    Carries the ``PipelineResult`` so callers can record the execution log.
    """

    default_category = ErrorCategory.PIPELINE

    def __init__(self, message: str, result: Any, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.result = result


class PipelineConfigurationError(ConfigurationError):
    """An action pipeline stopped on a binding or template error."""

    def __init__(self, message: str, result: Any, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.result = result


# =============================================================================
# STATE ERRORS
# =============================================================================


class InvalidTransitionError(ConveyorError):
    """A record is not in a state that allows the requested transition."""

    default_category = ErrorCategory.STATE

    def __init__(self, kind: str, record_id: str, current: str, target: str):
        super().__init__(
            f"Invalid {kind} transition for {record_id}: {current} -> {target}"
        )
        self.kind = kind
        self.record_id = record_id
        self.current = current
        self.target = target


class NotFoundError(ConveyorError):
    """A job, run or trigger does not exist."""

    default_category = ErrorCategory.NOT_FOUND

    def __init__(self, kind: str, record_id: str):
        super().__init__(f"{kind} not found: {record_id}")
        self.kind = kind
        self.record_id = record_id


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "ConveyorError",
    "TransientHandlerError",
    "PermanentHandlerError",
    "ConfigurationError",
    "HandlerNotFoundError",
    "ToolNotFoundError",
    "TemplateSyntaxError",
    "UnresolvedBindingError",
    "TriggerDefinitionError",
    "PipelineFailedError",
    "PipelineConfigurationError",
    "InvalidTransitionError",
    "NotFoundError",
]
