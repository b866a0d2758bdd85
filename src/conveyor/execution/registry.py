"""
Handler registry: ``job_type`` → handler callable.

There is no process-global registry. A registry is built by the caller and
passed to each ``Worker``, so tests and tenants get isolated handler sets.

Handler contract::

    def handler(job: Job) -> Any   # return value is stored as job.result
                                   # raising marks the attempt failed

Example:
    >>> registry = HandlerRegistry()
    >>>
    >>> @registry.handler("send_email", description="Deliver one message")
    ... def send_email(job):
    ...     return {"sent": True}
    >>>
    >>> registry.lookup("send_email") is send_email
    True
    >>> registry.lookup("unknown") is None
    True
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from conveyor.core.errors import HandlerNotFoundError
from conveyor.execution.models import Job

Handler = Callable[[Job], Any]


class HandlerRegistry:
    """Injectable job handler registry."""

    def __init__(self):
        self._handlers: dict[str, Handler] = {}
        self._metadata: dict[str, dict[str, Any]] = {}

    def register(
        self,
        job_type: str,
        handler: Handler,
        description: str | None = None,
        tags: dict[str, str] | None = None,
    ) -> None:
        """Register (or replace) the handler for ``job_type``."""
        self._handlers[job_type] = handler
        self._metadata[job_type] = {
            "job_type": job_type,
            "description": description,
            "tags": tags or {},
        }

    def handler(
        self,
        job_type: str,
        description: str | None = None,
        tags: dict[str, str] | None = None,
    ) -> Callable[[Handler], Handler]:
        """Decorator form of :meth:`register`."""

        def decorator(func: Handler) -> Handler:
            self.register(job_type, func, description=description or func.__doc__, tags=tags)
            return func

        return decorator

    def lookup(self, job_type: str) -> Handler | None:
        """Handler for ``job_type``, or ``None`` when unregistered."""
        return self._handlers.get(job_type)

    def get(self, job_type: str) -> Handler:
        """Handler for ``job_type``.

        Raises:
            HandlerNotFoundError: If nothing is registered for ``job_type``
        """
        handler = self._handlers.get(job_type)
        if handler is None:
            raise HandlerNotFoundError(job_type)
        return handler

    def has(self, job_type: str) -> bool:
        return job_type in self._handlers

    def get_metadata(self, job_type: str) -> dict[str, Any] | None:
        return self._metadata.get(job_type)

    def list_handlers(self) -> list[str]:
        return sorted(self._handlers)

    def list_with_metadata(self) -> list[dict[str, Any]]:
        """Handlers with their metadata, for admin listings."""
        return [self._metadata[name].copy() for name in sorted(self._metadata)]

    def unregister(self, job_type: str) -> bool:
        if job_type in self._handlers:
            del self._handlers[job_type]
            del self._metadata[job_type]
            return True
        return False

    def clear(self) -> None:
        """Clear all handlers (for testing)."""
        self._handlers.clear()
        self._metadata.clear()

    def __contains__(self, job_type: str) -> bool:
        return job_type in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)


__all__ = ["Handler", "HandlerRegistry"]
