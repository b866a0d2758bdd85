"""
CLI tests using Typer's CliRunner.

Every command runs against a temporary on-disk database passed with
``-d``; state is seeded either through other commands or directly through
an ``Engine`` on the same file.
"""

from __future__ import annotations

import json
import textwrap

import pytest
from typer.testing import CliRunner

from conveyor import __version__
from conveyor.cli.app import app
from conveyor.core.settings import ConveyorSettings, clear_settings_cache
from conveyor.engine import Engine
from conveyor.triggers.models import EntityEvent

runner = CliRunner()

TRIGGER_YAML = textwrap.dedent(
    """
    triggers:
      - slug: session-reminder
        name: Remind attendees
        on:
          entityType: session
          action: created
        actions:
          - tool: email.send
            args: {to: "{{trigger.email}}"}
        schedule:
          delay: 60000
    """
)

PLUGIN = textwrap.dedent(
    '''
    def register(engine):
        @engine.handlers.handler("greet")
        def greet(job):
            """Say hello."""
            return {"hello": job.payload.get("name", "world")}
    '''
)


@pytest.fixture(autouse=True)
def quiet_settings(monkeypatch):
    monkeypatch.setenv("CONVEYOR_LOG_LEVEL", "WARNING")
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def trigger_file(tmp_path):
    path = tmp_path / "triggers.yaml"
    path.write_text(TRIGGER_YAML)
    return path


def invoke(*args: str):
    return runner.invoke(app, list(args))


# ── Root ────────────────────────────────────────────────────────────────


def test_version():
    result = invoke("--version")
    assert result.exit_code == 0
    assert f"conveyor {__version__}" in result.output


def test_no_args_shows_help():
    result = invoke()
    assert "jobs" in result.output
    assert "worker" in result.output


# ── db ──────────────────────────────────────────────────────────────────


def test_db_init(tmp_path):
    result = invoke("db", "init", "-d", str(tmp_path / "new.db"))

    assert result.exit_code == 0, result.output
    assert "Initialised" in result.output
    assert "conveyor_jobs" in result.output
    assert (tmp_path / "new.db").exists()


# ── jobs ────────────────────────────────────────────────────────────────


class TestJobs:
    def test_enqueue_is_idempotent(self, db_path):
        first = invoke("jobs", "enqueue", "send_email", "--payload", '{"to": "a@b.c"}', "-k", "k1", "-d", db_path)
        second = invoke("jobs", "enqueue", "send_email", "-k", "k1", "-d", db_path)

        assert first.exit_code == 0, first.output
        assert "Enqueued" in first.output
        assert "Already enqueued" in second.output

    def test_enqueue_json(self, db_path):
        result = invoke("jobs", "enqueue", "send_email", "--json", "-d", db_path)
        assert result.exit_code == 0, result.output
        assert '"created": true' in result.output

    def test_enqueue_rejects_bad_payload(self, db_path):
        result = invoke("jobs", "enqueue", "send_email", "--payload", "[1, 2]", "-d", db_path)
        assert result.exit_code != 0

    def test_list_show_and_stats(self, db_path):
        invoke("jobs", "enqueue", "send_email", "--org", "org_1", "-d", db_path)
        engine = Engine.from_settings(ConveyorSettings(database_path=db_path, _env_file=None))
        try:
            [job] = engine.jobs.list_jobs()
        finally:
            engine.close()

        listed = invoke("jobs", "list", "--json", "-d", db_path)
        assert listed.exit_code == 0, listed.output
        assert job.id in listed.output

        shown = invoke("jobs", "show", job.id, "-d", db_path)
        assert "send_email" in shown.output
        assert "org_1" in shown.output

        stats = invoke("jobs", "stats", "--json", "-d", db_path)
        assert '"pending": 1' in stats.output

        empty = invoke("jobs", "list", "--status", "dead", "-d", db_path)
        assert "No items." in empty.output

    def test_cancel(self, db_path):
        invoke("jobs", "enqueue", "send_email", "-d", db_path)
        engine = Engine.from_settings(ConveyorSettings(database_path=db_path, _env_file=None))
        try:
            [job] = engine.jobs.list_jobs()
        finally:
            engine.close()

        assert "Cancelled" in invoke("jobs", "cancel", job.id, "-d", db_path).output

        again = invoke("jobs", "cancel", job.id, "-d", db_path)
        assert again.exit_code == 1
        assert "Not cancelled" in again.output

    def test_unknown_job_exits_with_error(self, db_path):
        result = invoke("jobs", "show", "job_missing", "-d", db_path)
        assert result.exit_code == 1
        assert "NotFoundError" in result.output


# ── worker ──────────────────────────────────────────────────────────────


def test_worker_until_idle_with_plugin(db_path, tmp_path, monkeypatch):
    (tmp_path / "greet_plugin.py").write_text(PLUGIN)
    monkeypatch.syspath_prepend(str(tmp_path))
    invoke("jobs", "enqueue", "greet", "--payload", '{"name": "ada"}', "-d", db_path)

    result = invoke("worker", "start", "--until-idle", "--plugin", "greet_plugin:register", "-d", db_path)

    assert result.exit_code == 0, result.output
    assert "Processed 1 job(s)" in result.output
    listed = invoke("jobs", "list", "--status", "completed", "--json", "-d", db_path)
    assert "ada" in listed.output


# ── triggers ────────────────────────────────────────────────────────────


class TestTriggers:
    def test_validate(self, trigger_file):
        result = invoke("triggers", "validate", str(trigger_file))
        assert result.exit_code == 0, result.output
        assert "1 trigger definition(s) valid" in result.output

    def test_validate_json(self, trigger_file):
        result = invoke("triggers", "validate", str(trigger_file), "--json")
        assert json.loads(result.stdout)[0]["slug"] == "session-reminder"

    def test_validate_reports_errors(self, tmp_path):
        bad = tmp_path / "bad.yaml"
        bad.write_text("- slug: x\n  name: X\n  entityType: s\n  action: archived\n  actions: []\n")

        result = invoke("triggers", "validate", str(bad))

        assert result.exit_code == 1
        assert "TriggerDefinitionError" in result.output

    def test_list(self, trigger_file, db_path):
        result = invoke("triggers", "list", "-t", str(trigger_file), "--json", "-d", db_path)
        assert result.exit_code == 0, result.output
        assert "session-reminder" in result.output


# ── runs ────────────────────────────────────────────────────────────────


@pytest.fixture
def scheduled_run_id(db_path, trigger_file):
    settings = ConveyorSettings(database_path=db_path, trigger_paths=[str(trigger_file)], _env_file=None)
    engine = Engine.from_settings(settings)
    try:
        [run] = engine.dispatch(EntityEvent("session", "created", "s1", data={"email": "a@b.c"})).scheduled
    finally:
        engine.close()
    return run.id


class TestRuns:
    def test_list_and_stats(self, db_path, scheduled_run_id):
        listed = invoke("runs", "list", "--json", "-d", db_path)
        assert listed.exit_code == 0, listed.output
        assert scheduled_run_id in listed.output

        stats = invoke("runs", "stats", "--json", "-d", db_path)
        assert '"pending": 1' in stats.output

    def test_cancel_then_retry(self, db_path, scheduled_run_id):
        cancelled = invoke("runs", "cancel", scheduled_run_id, "-d", db_path)
        assert cancelled.exit_code == 0, cancelled.output
        assert "Cancelled" in cancelled.output

        again = invoke("runs", "cancel", scheduled_run_id, "-d", db_path)
        assert again.exit_code == 1
        assert "InvalidTransitionError" in again.output

        retried = invoke("runs", "retry", scheduled_run_id, "-d", db_path)
        assert retried.exit_code == 0, retried.output
        assert "Retrying" in retried.output

    def test_executions_empty(self, db_path):
        result = invoke("triggers", "executions", "session-reminder", "-d", db_path)
        assert result.exit_code == 0
        assert "No items." in result.output
