"""
Wake-up notifications for newly enqueued jobs.

Notifications are an optimization over polling: delivery is at-least-once,
may be duplicated and may arrive before the job is due. Consumers treat a
notification only as a hint to attempt a claim.
"""

from __future__ import annotations

import queue
from typing import Protocol


class WakeupNotifier(Protocol):
    """Transport that tells workers a job id may be claimable."""

    def notify(self, job_id: str) -> None: ...


class WakeupQueue:
    """In-process notifier backed by a bounded thread-safe FIFO.

    Hints beyond ``maxsize`` are dropped; the worker poll still finds those jobs.
    """

    def __init__(self, maxsize: int = 1000):
        if maxsize < 1:
            raise ValueError("maxsize must be at least 1")
        self._queue: queue.Queue[str] = queue.Queue(maxsize=maxsize)

    def notify(self, job_id: str) -> None:
        try:
            self._queue.put_nowait(job_id)
        except queue.Full:
            # Polling still finds the job.
            pass

    def wait(self, timeout: float) -> str | None:
        """Block up to *timeout* seconds for the next job id."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self, max_items: int | None = None) -> list[str]:
        """Pop every pending notification without blocking."""
        items: list[str] = []
        while max_items is None or len(items) < max_items:
            try:
                items.append(self._queue.get_nowait())
            except queue.Empty:
                break
        return items

    def __len__(self) -> int:
        return self._queue.qsize()


__all__ = ["WakeupNotifier", "WakeupQueue"]
