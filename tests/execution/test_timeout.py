"""Tests for run_with_timeout and the wake-up queue."""

import time

import pytest

from conveyor.core.errors import TransientHandlerError
from conveyor.core.settings import ConveyorSettings
from conveyor.engine import Engine
from conveyor.execution.notify import WakeupQueue
from conveyor.execution.timeout import TimeoutExpired, run_with_timeout


class TestRunWithTimeout:
    def test_returns_result(self):
        assert run_with_timeout(lambda a, b: a + b, 1.0, args=(1, 2)) == 3

    def test_propagates_exceptions(self):
        def fails():
            raise ValueError("bad")

        with pytest.raises(ValueError, match="bad"):
            run_with_timeout(fails, 1.0)

    @pytest.mark.slow
    def test_expires(self):
        with pytest.raises(TimeoutExpired) as excinfo:
            run_with_timeout(time.sleep, 0.05, operation="tool slow", args=(1,))
        assert isinstance(excinfo.value, TransientHandlerError)
        assert excinfo.value.message.startswith("tool slow: Operation timed out")

    def test_rejects_non_positive_timeout(self):
        with pytest.raises(ValueError):
            run_with_timeout(lambda: None, 0)


class TestWakeupQueue:
    def test_drain(self):
        queue = WakeupQueue()
        queue.notify("a")
        queue.notify("b")
        assert len(queue) == 2
        assert queue.drain(max_items=1) == ["a"]
        assert queue.drain() == ["b"]
        assert queue.drain() == []

    def test_wait_timeout(self):
        assert WakeupQueue().wait(0.01) is None

    def test_full_queue_drops(self):
        queue = WakeupQueue(maxsize=1)
        queue.notify("a")
        queue.notify("b")
        assert queue.drain() == ["a"]

    def test_rejects_unbounded_queue(self):
        with pytest.raises(ValueError):
            WakeupQueue(maxsize=0)


class TestEngineWakeups:
    def test_hints_are_bounded_without_a_worker(self, conn, clock):
        engine = Engine(
            conn,
            settings=ConveyorSettings(database_path=":memory:", wakeup_queue_size=10, _env_file=None),
            clock=clock,
        )
        job_ids = [engine.enqueue("org_1", "noop") for _ in range(50)]

        assert len(engine.notifier) == 10
        assert engine.notifier.drain() == job_ids[:10]

    def test_dropped_hints_are_found_by_polling(self, conn, clock):
        engine = Engine(
            conn,
            settings=ConveyorSettings(database_path=":memory:", wakeup_queue_size=2, _env_file=None),
            clock=clock,
        )
        engine.handlers.register("noop", lambda job: None)
        for _ in range(5):
            engine.enqueue("org_1", "noop")

        assert engine.create_worker("w1", batch_size=10).run_until_idle() == 5
        assert engine.jobs.stats()["completed"] == 5
