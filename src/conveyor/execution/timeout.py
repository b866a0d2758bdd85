"""Bounded-duration execution of blocking callables."""

from __future__ import annotations

import concurrent.futures
import time
from collections.abc import Callable
from typing import Any, TypeVar

from conveyor.core.errors import TransientHandlerError

T = TypeVar("T")


class TimeoutExpired(TransientHandlerError):
    """Raised when an operation exceeds its time limit."""

    def __init__(self, timeout: float, elapsed: float, operation: str | None = None):
        self.timeout = timeout
        self.elapsed = elapsed
        self.operation = operation
        msg = f"Operation timed out after {elapsed:.2f}s (limit: {timeout:.2f}s)"
        if operation:
            msg = f"{operation}: {msg}"
        super().__init__(msg)


def run_with_timeout(
    func: Callable[..., T],
    timeout_seconds: float,
    operation: str | None = None,
    args: tuple[Any, ...] | None = None,
    kwargs: dict[str, Any] | None = None,
) -> T:
    """Run a callable in a helper thread and stop waiting after ``timeout_seconds``.

    The helper thread cannot be killed; on expiry it keeps running in the
    background and its eventual result is discarded.

    Raises:
        TimeoutExpired: If execution exceeds timeout
        Exception: Any exception raised by func
    """
    if timeout_seconds <= 0:
        raise ValueError(f"Timeout must be positive, got {timeout_seconds}")

    start = time.monotonic()
    executor = concurrent.futures.ThreadPoolExecutor(max_workers=1)
    future = executor.submit(func, *(args or ()), **(kwargs or {}))
    try:
        return future.result(timeout=timeout_seconds)
    except concurrent.futures.TimeoutError:
        raise TimeoutExpired(
            timeout=timeout_seconds,
            elapsed=time.monotonic() - start,
            operation=operation or getattr(func, "__name__", "unknown"),
        ) from None
    finally:
        executor.shutdown(wait=False)


__all__ = ["TimeoutExpired", "run_with_timeout"]
