"""Tests for TriggerRegistry matching and sync."""

from __future__ import annotations

import pytest

from conveyor.triggers.models import EntityEvent
from conveyor.triggers.registry import TriggerRegistry


@pytest.fixture
def triggers(definition_factory):
    return TriggerRegistry(
        [
            definition_factory(),
            definition_factory(slug="vip-session", condition={"tier": "vip"}),
            definition_factory(slug="session-deleted", action="deleted"),
            definition_factory(slug="disabled", enabled=False),
        ]
    )


class TestMatching:
    def test_candidates_skip_disabled_and_other_actions(self, triggers):
        assert [d.slug for d in triggers.candidates("session", "created")] == ["session-created", "vip-session"]

    def test_match_applies_condition(self, triggers):
        plain = EntityEvent("session", "created", "s1", data={"tier": "basic"})
        vip = EntityEvent("session", "created", "s2", data={"tier": "vip"})
        assert [d.slug for d in triggers.match(plain)] == ["session-created"]
        assert [d.slug for d in triggers.match(vip)] == ["session-created", "vip-session"]

    def test_other_entity_type(self, triggers):
        assert triggers.match(EntityEvent("booking", "created", "b1")) == []

    def test_list_definitions(self, triggers):
        assert len(triggers.list_definitions()) == 4
        assert "disabled" not in [d.slug for d in triggers.list_definitions(include_disabled=False)]
        assert len(triggers) == 4
        assert "vip-session" in triggers


class TestSync:
    def test_sync_reports_changes(self, triggers, definition_factory):
        result = triggers.sync(
            [
                definition_factory(),
                definition_factory(slug="vip-session", condition={"tier": "gold"}),
                definition_factory(slug="brand-new"),
            ]
        )

        assert result.created == ["brand-new"]
        assert result.updated == ["vip-session"]
        assert result.unchanged == ["session-created"]
        assert sorted(result.deleted) == ["disabled", "session-deleted"]
        assert triggers.get("vip-session").condition == {"tier": "gold"}
        assert triggers.get("disabled") is None

    def test_sync_rejects_duplicates(self, triggers, definition_factory):
        with pytest.raises(ValueError):
            triggers.sync([definition_factory(), definition_factory()])
        assert len(triggers) == 4

    def test_register_replaces_and_remove(self, triggers, definition_factory):
        triggers.register(definition_factory(name="Renamed"))
        assert triggers.get("session-created").name == "Renamed"
        assert triggers.remove("session-created") is True
        assert triggers.remove("session-created") is False


def test_from_paths(tmp_path):
    (tmp_path / "t.yaml").write_text(
        "- slug: a\n  name: A\n  entityType: x\n  action: updated\n  actions: [{tool: echo}]\n"
    )
    registry = TriggerRegistry.from_paths(tmp_path)
    assert [d.slug for d in registry.list_definitions()] == ["a"]
