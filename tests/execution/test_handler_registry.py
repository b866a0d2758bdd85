"""Tests for the injectable handler registry."""

import pytest

from conveyor.core.errors import HandlerNotFoundError
from conveyor.execution.registry import HandlerRegistry


class TestHandlerRegistry:
    def test_register_and_lookup(self):
        registry = HandlerRegistry()
        handler = lambda job: None  # noqa: E731
        registry.register("send_email", handler, description="Send an email", tags={"team": "growth"})

        assert registry.lookup("send_email") is handler
        assert registry.get("send_email") is handler
        assert registry.has("send_email")
        assert "send_email" in registry
        assert len(registry) == 1
        assert registry.get_metadata("send_email") == {
            "job_type": "send_email",
            "description": "Send an email",
            "tags": {"team": "growth"},
        }

    def test_missing(self):
        registry = HandlerRegistry()
        assert registry.lookup("nope") is None
        with pytest.raises(HandlerNotFoundError):
            registry.get("nope")

    def test_decorator_uses_docstring(self):
        registry = HandlerRegistry()

        @registry.handler("resize")
        def resize(job):
            """Resize an image."""
            return "ok"

        assert registry.get("resize") is resize
        assert registry.get_metadata("resize")["description"] == "Resize an image."

    def test_register_replaces(self):
        registry = HandlerRegistry()
        registry.register("t", lambda job: 1)
        second = lambda job: 2  # noqa: E731
        registry.register("t", second)
        assert registry.get("t") is second
        assert len(registry) == 1

    def test_listing_and_removal(self):
        registry = HandlerRegistry()
        registry.register("b", lambda job: None)
        registry.register("a", lambda job: None)

        assert registry.list_handlers() == ["a", "b"]
        assert [m["job_type"] for m in registry.list_with_metadata()] == ["a", "b"]
        assert registry.unregister("a") is True
        assert registry.unregister("a") is False
        registry.clear()
        assert len(registry) == 0

    def test_registries_are_independent(self):
        first, second = HandlerRegistry(), HandlerRegistry()
        first.register("t", lambda job: None)
        assert not second.has("t")
