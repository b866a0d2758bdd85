"""
In-memory registry of trigger definitions.

The registry mirrors an external definition source. ``sync`` replaces the
whole set and reports what changed, so an admin surface or a file watcher
can push new definitions without restarting workers. Definitions are
immutable; an update swaps the object.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from conveyor.core.logging import get_logger
from conveyor.triggers.conditions import evaluate_condition
from conveyor.triggers.definitions import TriggerDefinition, load_definitions
from conveyor.triggers.models import EntityEvent

logger = get_logger(__name__)


@dataclass
class SyncResult:
    created: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, list[str]]:
        return {
            "created": self.created,
            "updated": self.updated,
            "deleted": self.deleted,
            "unchanged": self.unchanged,
        }


class TriggerRegistry:
    """Definitions keyed by slug, kept in registration order."""

    def __init__(self, definitions: Iterable[TriggerDefinition] = ()):
        self._definitions: dict[str, TriggerDefinition] = {}
        self._lock = threading.Lock()
        for definition in definitions:
            self.register(definition)

    @classmethod
    def from_paths(cls, paths: str | Path | Iterable[str | Path]) -> TriggerRegistry:
        return cls(load_definitions(paths))

    def register(self, definition: TriggerDefinition) -> None:
        """Add or replace one definition."""
        with self._lock:
            self._definitions[definition.slug] = definition

    def remove(self, slug: str) -> bool:
        with self._lock:
            return self._definitions.pop(slug, None) is not None

    def sync(self, definitions: Iterable[TriggerDefinition]) -> SyncResult:
        """Make the registry hold exactly ``definitions``."""
        incoming: dict[str, TriggerDefinition] = {}
        for definition in definitions:
            if definition.slug in incoming:
                raise ValueError(f"Duplicate trigger slug: {definition.slug}")
            incoming[definition.slug] = definition

        result = SyncResult()
        with self._lock:
            for slug, definition in incoming.items():
                current = self._definitions.get(slug)
                if current is None:
                    result.created.append(slug)
                elif current != definition:
                    result.updated.append(slug)
                else:
                    result.unchanged.append(slug)
            result.deleted = [slug for slug in self._definitions if slug not in incoming]
            self._definitions = incoming

        logger.info(
            "triggers.synced",
            created=len(result.created),
            updated=len(result.updated),
            deleted=len(result.deleted),
        )
        return result

    def get(self, slug: str) -> TriggerDefinition | None:
        return self._definitions.get(slug)

    def list_definitions(self, *, include_disabled: bool = True) -> list[TriggerDefinition]:
        definitions = list(self._definitions.values())
        if include_disabled:
            return definitions
        return [d for d in definitions if d.enabled]

    def candidates(self, entity_type: str, action: str) -> list[TriggerDefinition]:
        """Enabled definitions for this entity type and action."""
        return [
            d
            for d in self._definitions.values()
            if d.enabled and d.entity_type == entity_type and d.action == action
        ]

    def match(self, event: EntityEvent) -> list[TriggerDefinition]:
        """Enabled definitions whose type, action and condition fit ``event``."""
        return [
            d
            for d in self.candidates(event.entity_type, event.action)
            if evaluate_condition(d.condition, event.data)
        ]

    def __len__(self) -> int:
        return len(self._definitions)

    def __contains__(self, slug: str) -> bool:
        return slug in self._definitions


__all__ = ["SyncResult", "TriggerRegistry"]
