"""
End-to-end scenarios across the queue, the dispatcher and the supervisor.

Each test drives a full ``Engine`` with a fake clock and a synchronous
worker; nothing here sleeps.
"""

from __future__ import annotations

from conveyor.execution.models import JobStatus
from conveyor.triggers.definitions import parse_definition
from conveyor.triggers.models import EntityEvent, ExecutionEventType, RunStatus


def test_idempotent_enqueue(engine):
    first = engine.enqueue("org_1", "send_followup", {"sessionId": "s1"}, idempotency_key="followup-s1")
    second = engine.enqueue("org_1", "send_followup", {"sessionId": "s1"}, idempotency_key="followup-s1")

    assert first == second
    assert [job.id for job in engine.jobs.list_jobs(job_type="send_followup")] == [first]


def test_exhaustion_trace(engine, clock):
    seen_running: list[int] = []

    @engine.handlers.handler("flaky")
    def flaky(job):
        seen_running.append(engine.jobs.require(job.id).attempts)
        assert engine.jobs.require(job.id).status == JobStatus.RUNNING
        raise RuntimeError("always fails")

    outcomes = []
    worker = engine.create_worker(listeners=[outcomes.append])
    job_id = engine.enqueue("org_1", "flaky", max_attempts=3)

    for delay in (0, 1000, 2000):
        clock.advance(delay)
        assert worker.run_once() == 1

    assert [(o.previous_status, o.status) for o in outcomes] == [
        (JobStatus.RUNNING, JobStatus.PENDING),
        (JobStatus.RUNNING, JobStatus.PENDING),
        (JobStatus.RUNNING, JobStatus.DEAD),
    ]
    assert seen_running == [1, 2, 3]
    job = engine.jobs.require(job_id)
    assert job.status == JobStatus.DEAD
    assert job.attempts == 3
    assert job.error_message == "RuntimeError: always fails"

    clock.advance(3_600_000)
    assert worker.run_once() == 0


def test_condition_gating(engine, tools):
    tools.register("notify", lambda args, context: tools.calls.append(("notify", args, context)))
    engine.triggers.register(
        parse_definition(
            {
                "slug": "order-ready",
                "name": "Order ready",
                "entityType": "order",
                "action": "updated",
                "condition": {"status": "ready"},
                "actions": [{"tool": "notify"}],
            }
        )
    )

    pending = engine.dispatch(EntityEvent("order", "updated", "o1", data={"status": "pending"}))
    ready = engine.dispatch(EntityEvent("order", "updated", "o1", data={"status": "ready"}))

    assert pending.matched == []
    assert ready.matched == ["order-ready"]
    assert [name for name, _, _ in tools.calls] == ["notify"]


def test_supersession_yields_one_execution(engine, clock, tools, definition_factory):
    engine.triggers.register(definition_factory(schedule={"delay": 5000, "cancelPrevious": True}))
    worker = engine.create_worker()

    [first] = engine.dispatch(EntityEvent("session", "created", "s1")).scheduled
    clock.advance(10)
    [second] = engine.dispatch(EntityEvent("session", "created", "s1")).scheduled
    clock.advance(5000)
    worker.run_until_idle()

    assert engine.supervisor.get_run(first.id).status == RunStatus.DEAD
    assert engine.supervisor.get_run(first.id).error_message == "superseded"
    assert engine.supervisor.get_run(second.id).status == RunStatus.COMPLETED
    assert len(tools.calls) == 1
    executions = engine.supervisor.list_executions("session-created")
    assert [(e.event_type, e.run_id) for e in executions] == [(ExecutionEventType.EXECUTED, second.id)]


def test_handler_errors_do_not_affect_siblings(engine):
    @engine.handlers.handler("bad")
    def bad(job):
        raise ValueError("nope")

    @engine.handlers.handler("good")
    def good(job):
        return {"ok": job.payload["n"]}

    bad_id = engine.enqueue("org_1", "bad", max_attempts=1)
    good_id = engine.enqueue("org_1", "good", {"n": 1})
    unknown_id = engine.enqueue("org_1", "missing")

    engine.create_worker().run_once()

    assert engine.jobs.require(bad_id).status == JobStatus.DEAD
    assert engine.jobs.require(good_id).result == {"ok": 1}
    unknown = engine.jobs.require(unknown_id)
    assert unknown.status == JobStatus.DEAD
    assert unknown.error_message == "No handler registered for job type: missing"
