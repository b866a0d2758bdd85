"""
Tests for RunSupervisor: the life of a scheduled trigger run.

Runs are driven the way production drives them: a worker from
``engine.create_worker()`` claims the backing ``trigger.run`` job once the
fake clock reaches ``scheduled_for``, and the supervisor's listener mirrors
the job outcome onto the run.
"""

from __future__ import annotations

import pytest

from conveyor.core.errors import InvalidTransitionError, NotFoundError
from conveyor.core.timestamps import add_ms
from conveyor.execution.models import JobStatus
from conveyor.execution.worker import Worker
from conveyor.triggers.models import EntityEvent, ExecutionEventType, RunStatus

DELAY_MS = 60_000


def _event(entity_id="s1", **data):
    return EntityEvent("session", "created", entity_id, data=data, org_id="org_1")


@pytest.fixture
def worker(engine):
    return engine.create_worker("w1")


def _schedule(engine, definition_factory, **overrides):
    overrides.setdefault("schedule", {"delay": DELAY_MS})
    definition = definition_factory(**overrides)
    engine.triggers.register(definition)
    [run] = engine.dispatch(_event()).scheduled
    return run


# ── Happy path ──────────────────────────────────────────────────────────


class TestExecution:
    def test_not_run_before_due(self, engine, worker, tools, definition_factory):
        run = _schedule(engine, definition_factory)

        assert worker.run_once() == 0
        assert tools.calls == []
        assert engine.supervisor.get_run(run.id).status == RunStatus.PENDING

    def test_completes_when_due(self, engine, worker, clock, tools, definition_factory):
        run = _schedule(engine, definition_factory)
        clock.advance(DELAY_MS)

        assert worker.run_once() == 1

        finished = engine.supervisor.get_run(run.id)
        assert finished.status == RunStatus.COMPLETED
        assert finished.attempts == 1
        assert finished.started_at is not None
        assert finished.completed_at is not None
        assert finished.result["success"] is True
        assert engine.jobs.require(run.job_id).status == JobStatus.COMPLETED

        _, args, context = tools.calls[0]
        assert args == {"id": "s1"}
        assert context.run_id == run.id

        [execution] = engine.supervisor.list_executions("session-created")
        assert execution.event_type == ExecutionEventType.EXECUTED
        assert execution.run_id == run.id
        assert execution.execution_log[0].result == {"id": "s1"}

    def test_uses_captured_event_data(self, engine, worker, clock, tools, definition_factory):
        engine.triggers.register(
            definition_factory(schedule={"delay": 1}, actions=[{"tool": "echo", "args": {"t": "{{trigger.title}}"}}])
        )
        engine.dispatch(_event(title="Kickoff"))
        clock.advance(1)
        worker.run_once()
        assert tools.calls[0][1] == {"t": "Kickoff"}


# ── Failure handling ────────────────────────────────────────────────────


class TestRetries:
    def test_tool_failure_requeues_with_backoff(self, engine, worker, clock, definition_factory):
        run = _schedule(
            engine,
            definition_factory,
            actions=[{"tool": "boom"}],
            retry={"maxAttempts": 3, "backoffMs": 1000},
        )
        clock.advance(DELAY_MS)
        worker.run_once()

        requeued = engine.supervisor.get_run(run.id)
        job = engine.jobs.require(run.job_id)
        assert requeued.status == RunStatus.PENDING
        assert requeued.attempts == 1
        assert requeued.error_message == "Action 'boom' failed: RuntimeError: tool exploded"
        assert job.status == JobStatus.PENDING
        assert job.scheduled_for == add_ms(clock(), 1000)
        assert requeued.scheduled_for == job.scheduled_for
        assert engine.supervisor.list_executions("session-created") == []

    def test_exhaustion_dead_letters_and_records_failure(self, engine, worker, clock, tools, definition_factory):
        run = _schedule(
            engine,
            definition_factory,
            actions=[{"tool": "boom"}],
            retry={"maxAttempts": 3, "backoffMs": 1000},
        )
        clock.advance(DELAY_MS)

        worker.run_once()
        clock.advance(1000)
        worker.run_once()
        clock.advance(1999)
        assert worker.run_once() == 0
        clock.advance(1)
        worker.run_once()

        dead = engine.supervisor.get_run(run.id)
        assert dead.status == RunStatus.DEAD
        assert dead.attempts == 3
        assert len([c for c in tools.calls if c[0] == "boom"]) == 3
        assert engine.jobs.require(run.job_id).status == JobStatus.DEAD

        [execution] = engine.supervisor.list_executions("session-created")
        assert execution.event_type == ExecutionEventType.FAILED
        assert execution.run_id == run.id
        assert execution.failed_action == "boom"
        assert execution.failed_action_index == 0
        assert execution.error == "RuntimeError: tool exploded"

    def test_configuration_error_fails_without_retry(self, engine, worker, clock, tools, definition_factory):
        run = _schedule(
            engine,
            definition_factory,
            actions=[{"tool": "echo", "args": {"to": "{{booking.email}}"}}],
        )
        clock.advance(DELAY_MS)
        worker.run_once()

        failed = engine.supervisor.get_run(run.id)
        assert failed.status == RunStatus.FAILED
        assert failed.attempts == 1
        assert "Unresolved binding 'booking.email'" in failed.error_message
        assert tools.calls == []
        assert engine.jobs.require(run.job_id).status == JobStatus.FAILED

        [execution] = engine.supervisor.list_executions("session-created")
        assert execution.event_type == ExecutionEventType.FAILED
        assert execution.error == "Unresolved binding 'booking.email' in args for tool 'echo'"

    def test_unknown_tool_fails(self, engine, worker, clock, definition_factory):
        run = _schedule(engine, definition_factory, actions=[{"tool": "sms.send"}])
        clock.advance(DELAY_MS)
        worker.run_once()
        assert engine.supervisor.get_run(run.id).status == RunStatus.FAILED


# ── Supersession and skipping ───────────────────────────────────────────


class TestSupersession:
    def test_cancel_previous_supersedes_pending_run(self, engine, worker, clock, tools, definition_factory):
        engine.triggers.register(definition_factory(schedule={"delay": DELAY_MS, "cancelPrevious": True}))
        [first] = engine.dispatch(_event(version=1)).scheduled
        clock.advance(1000)
        [second] = engine.dispatch(_event(version=2)).scheduled

        superseded = engine.supervisor.get_run(first.id)
        assert superseded.status == RunStatus.DEAD
        assert superseded.error_message == "superseded"
        assert engine.jobs.require(first.job_id).status == JobStatus.DEAD

        clock.advance(DELAY_MS)
        assert worker.run_until_idle() == 1
        assert engine.supervisor.get_run(second.id).status == RunStatus.COMPLETED
        assert len(tools.calls) == 1

    def test_other_entities_are_not_superseded(self, engine, definition_factory):
        engine.triggers.register(definition_factory(schedule={"delay": DELAY_MS, "cancelPrevious": True}))
        [a] = engine.dispatch(_event("s1")).scheduled
        engine.dispatch(_event("s2"))
        assert engine.supervisor.get_run(a.id).status == RunStatus.PENDING

    def test_without_cancel_previous_runs_accumulate(self, engine, definition_factory):
        engine.triggers.register(definition_factory(schedule={"delay": DELAY_MS}))
        engine.dispatch(_event())
        engine.dispatch(_event())
        assert engine.supervisor.get_run_stats()["pending"] == 2

    def test_disabled_trigger_is_skipped_at_execution(self, engine, worker, clock, tools, definition_factory):
        run = _schedule(engine, definition_factory)
        engine.triggers.register(definition_factory(schedule={"delay": DELAY_MS}, enabled=False))
        clock.advance(DELAY_MS)

        worker.run_once()

        skipped = engine.supervisor.get_run(run.id)
        assert skipped.status == RunStatus.COMPLETED
        assert skipped.result == {"skipped": True, "reason": "Trigger disabled or deleted"}
        assert tools.calls == []
        assert engine.supervisor.list_executions("session-created") == []

    def test_handler_skips_run_cancelled_after_claim(self, engine, clock, tools, definition_factory):
        run = _schedule(engine, definition_factory)
        clock.advance(DELAY_MS)
        assert engine.jobs.claim(run.job_id, "w1")

        engine.supervisor.cancel_run(run.id)
        job = engine.jobs.start(run.job_id)

        assert engine.supervisor.run_handler(job) == {"skipped": True, "reason": "run is dead", "runStatus": "dead"}
        assert tools.calls == []


# ── Late worker outcomes ────────────────────────────────────────────────


@pytest.fixture
def flaky(tools):
    """``flaky`` fails on its first call and succeeds afterwards."""
    state = {"calls": 0}

    @tools.tool("flaky")
    def flaky_tool(args, context):
        state["calls"] += 1
        if state["calls"] == 1:
            raise RuntimeError("first call fails")
        return {"call": state["calls"]}

    return state


def _detached_worker(engine, worker_id):
    """A worker without the supervisor listener; outcomes are delivered by hand."""
    return Worker(engine.jobs, engine.handlers, retry=engine.retry, worker_id=worker_id)


class TestLateOutcomes:
    def _fail_first_attempt(self, engine, clock, definition_factory):
        run = _schedule(
            engine,
            definition_factory,
            actions=[{"tool": "flaky"}],
            retry={"maxAttempts": 3, "backoffMs": 1},
        )
        clock.advance(DELAY_MS)
        outcome = _detached_worker(engine, "a").process(run.job_id)
        assert outcome.status == JobStatus.PENDING
        assert engine.supervisor.get_run(run.id).status == RunStatus.RUNNING
        clock.advance(5)
        return run, outcome

    def test_requeued_job_claimed_before_outcome_is_mirrored(self, engine, clock, flaky, definition_factory):
        run, held = self._fail_first_attempt(engine, clock, definition_factory)

        assert engine.create_worker("b").run_once() == 1
        engine.supervisor.on_job_outcome(held)

        finished = engine.supervisor.get_run(run.id)
        job = engine.jobs.require(run.job_id)
        assert flaky["calls"] == 2
        assert job.status == JobStatus.COMPLETED
        assert "skipped" not in job.result
        assert finished.status == RunStatus.COMPLETED
        assert finished.attempts == 2
        assert finished.result["success"] is True

        [execution] = engine.supervisor.list_executions("session-created")
        assert execution.event_type == ExecutionEventType.EXECUTED

    def test_stale_outcome_delivered_first(self, engine, clock, flaky, definition_factory):
        run, held = self._fail_first_attempt(engine, clock, definition_factory)
        second = _detached_worker(engine, "b").process(run.job_id)

        engine.supervisor.on_job_outcome(held)
        assert engine.supervisor.get_run(run.id).status == RunStatus.RUNNING

        engine.supervisor.on_job_outcome(second)
        assert engine.supervisor.get_run(run.id).status == RunStatus.COMPLETED
        assert len(engine.supervisor.list_executions("session-created")) == 1

    def test_stale_outcome_does_not_override_final_failure(self, engine, clock, tools, definition_factory):
        run = _schedule(
            engine,
            definition_factory,
            actions=[{"tool": "boom"}],
            retry={"maxAttempts": 2, "backoffMs": 1},
        )
        clock.advance(DELAY_MS)
        held = _detached_worker(engine, "a").process(run.job_id)
        clock.advance(5)

        engine.create_worker("b").run_once()
        engine.supervisor.on_job_outcome(held)

        dead = engine.supervisor.get_run(run.id)
        assert dead.status == RunStatus.DEAD
        assert dead.attempts == 2
        [execution] = engine.supervisor.list_executions("session-created")
        assert execution.event_type == ExecutionEventType.FAILED


# ── Administration ──────────────────────────────────────────────────────


class TestAdministration:
    def test_cancel_pending_run(self, engine, definition_factory):
        run = _schedule(engine, definition_factory)

        cancelled = engine.supervisor.cancel_run(run.id)

        assert cancelled.status == RunStatus.DEAD
        assert cancelled.error_message == "cancelled"
        assert engine.jobs.require(run.job_id).status == JobStatus.DEAD
        with pytest.raises(InvalidTransitionError):
            engine.supervisor.cancel_run(run.id)

    def test_cancel_unknown_run(self, engine):
        with pytest.raises(NotFoundError):
            engine.supervisor.cancel_run("run_missing")

    def test_retry_requires_terminal_failure(self, engine, definition_factory):
        run = _schedule(engine, definition_factory)
        with pytest.raises(InvalidTransitionError):
            engine.supervisor.retry_run(run.id)

    def test_retry_refuses_completed_run(self, engine, worker, clock, definition_factory):
        run = _schedule(engine, definition_factory)
        clock.advance(DELAY_MS)
        worker.run_once()
        with pytest.raises(InvalidTransitionError, match="completed -> pending"):
            engine.supervisor.retry_run(run.id)

    def test_retry_dead_run(self, engine, worker, clock, tools, definition_factory):
        run = _schedule(engine, definition_factory, actions=[{"tool": "boom"}], retry={"maxAttempts": 1})
        clock.advance(DELAY_MS)
        worker.run_once()
        assert engine.supervisor.get_run(run.id).status == RunStatus.DEAD

        tools.register("boom", lambda args, context: "recovered")
        retried = engine.supervisor.retry_run(run.id)

        assert retried.status == RunStatus.PENDING
        assert retried.attempts == 0
        assert retried.generation == 1
        assert retried.error_message is None
        assert retried.scheduled_for == clock()
        assert retried.job_id != run.job_id
        assert engine.jobs.require(retried.job_id).idempotency_key == f"trigger-run:{run.id}:1"

        clock.advance(1)
        worker.run_once()
        assert engine.supervisor.get_run(run.id).status == RunStatus.COMPLETED
        events = engine.supervisor.list_executions("session-created")
        assert [e.event_type for e in events] == [ExecutionEventType.EXECUTED, ExecutionEventType.FAILED]

    def test_retry_cancelled_run(self, engine, worker, tools, definition_factory):
        run = _schedule(engine, definition_factory)
        engine.supervisor.cancel_run(run.id)

        retried = engine.supervisor.retry_run(run.id)

        assert retried.status == RunStatus.PENDING
        worker.run_once()
        assert engine.supervisor.get_run(run.id).status == RunStatus.COMPLETED
        assert len(tools.calls) == 1

    def test_list_runs_and_stats(self, engine, clock, definition_factory):
        engine.triggers.register(definition_factory(schedule={"delay": DELAY_MS}))
        engine.triggers.register(definition_factory(slug="other", schedule={"delay": DELAY_MS}))
        engine.dispatch(_event("s1"))
        clock.advance(1)
        [latest, _] = engine.dispatch(_event("s2")).scheduled
        engine.supervisor.cancel_run(latest.id)

        assert len(engine.supervisor.list_runs()) == 4
        assert [r.id for r in engine.supervisor.list_runs(status=RunStatus.DEAD)] == [latest.id]
        assert len(engine.supervisor.list_runs(trigger_slug="other")) == 2
        assert engine.supervisor.list_runs(org_id="org_2") == []
        assert len(engine.supervisor.list_runs(limit=1)) == 1

        stats = engine.supervisor.get_run_stats()
        assert stats["pending"] == 3
        assert stats["dead"] == 1
        assert stats["total"] == 4
        assert engine.supervisor.get_run_stats("org_2")["total"] == 0
