"""
Declarative trigger definitions.

Definitions are authored outside the process (YAML or JSON files, or an
admin sync) and validated into immutable pydantic models. Both snake_case
and the camelCase authoring names are accepted (``entity_type`` /
``entityType``, ``cancel_previous`` / ``cancelPrevious``, ...), as is the
nested ``on:`` block.

Example YAML::

    triggers:
      - slug: session-reminder
        name: Remind attendees before a session
        on:
          entityType: session
          action: created
          condition:
            status: scheduled
        actions:
          - tool: entity.query
            args: {type: attendee, sessionId: "{{entity.id}}"}
            as: attendees
          - tool: email.send
            args:
              to: "{{attendees.0.email}}"
              subject: "Reminder: {{trigger.title}}"
        schedule:
          at: startsAt
          offset: -3600000
          cancelPrevious: true
        retry:
          maxAttempts: 5
          backoffMs: 30000
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from conveyor.core.errors import TriggerDefinitionError

EntityAction = Literal["created", "updated", "deleted"]

RESERVED_BINDINGS = frozenset({"trigger", "entity", "steps"})

_MODEL_CONFIG = ConfigDict(extra="forbid", frozen=True, populate_by_name=True)


class TriggerAction(BaseModel):
    """One pipeline step: call ``tool`` with templated ``args``."""

    model_config = _MODEL_CONFIG

    tool: str = Field(..., min_length=1, description="Tool identifier")
    args: dict[str, Any] = Field(default_factory=dict, description="Argument template")
    as_name: str | None = Field(default=None, alias="as", description="Binding name for the result")

    @field_validator("as_name")
    @classmethod
    def _validate_binding_name(cls, value: str | None) -> str | None:
        if value is None:
            return value
        if not value or "." in value or "{" in value:
            raise ValueError(f"Invalid binding name: {value!r}")
        if value in RESERVED_BINDINGS:
            raise ValueError(f"Binding name {value!r} is reserved")
        return value


class TriggerSchedule(BaseModel):
    """Deferred execution settings.

    ``delay`` (ms after the event) and ``at`` (entity field path or
    ``{{...}}`` template yielding a timestamp) are mutually exclusive;
    ``offset`` (ms, may be negative) shifts ``at``.
    """

    model_config = _MODEL_CONFIG

    delay: int | None = Field(default=None, description="Milliseconds after the event")
    at: str | None = Field(default=None, description="Field path or template yielding a timestamp")
    offset: int = Field(default=0, description="Milliseconds added to `at`")
    cancel_previous: bool = Field(default=False, alias="cancelPrevious")

    @model_validator(mode="after")
    def _validate_timing(self) -> TriggerSchedule:
        if self.delay is not None and self.at is not None:
            raise ValueError("schedule cannot have both 'delay' and 'at'")
        if self.delay is not None and self.delay <= 0:
            raise ValueError("schedule.delay must be a positive number of milliseconds")
        if self.at is not None and not self.at.strip():
            raise ValueError("schedule.at must be a non-empty field path or template")
        return self


class TriggerRetry(BaseModel):
    """Retry policy for scheduled runs."""

    model_config = _MODEL_CONFIG

    max_attempts: int = Field(default=3, ge=1, alias="maxAttempts")
    backoff_ms: int | None = Field(default=None, gt=0, alias="backoffMs")


class TriggerDefinition(BaseModel):
    """A declarative rule: on entity change, run an action pipeline."""

    model_config = _MODEL_CONFIG

    slug: str = Field(..., min_length=1, description="Unique identifier")
    name: str = Field(..., min_length=1)
    description: str = Field(default="")
    entity_type: str = Field(..., min_length=1, alias="entityType")
    action: EntityAction
    condition: dict[str, Any] = Field(default_factory=dict, description="Dot-path equality map (AND)")
    actions: tuple[TriggerAction, ...] = Field(..., min_length=1)
    schedule: TriggerSchedule | None = None
    retry: TriggerRetry | None = None
    enabled: bool = True

    @model_validator(mode="before")
    @classmethod
    def _flatten_on_block(cls, data: Any) -> Any:
        # YAML 1.1 reads a bare ``on:`` key as boolean True.
        if isinstance(data, dict) and ("on" in data or True in data):
            data = dict(data)
            on = (data.pop("on") if "on" in data else data.pop(True)) or {}
            if not isinstance(on, dict):
                raise ValueError("'on' must be a mapping")
            for key, value in on.items():
                data.setdefault(key, value)
        return data

    @property
    def is_scheduled(self) -> bool:
        return self.schedule is not None

    @property
    def cancel_previous(self) -> bool:
        return self.schedule is not None and self.schedule.cancel_previous

    def to_summary(self) -> dict[str, Any]:
        return {
            "slug": self.slug,
            "name": self.name,
            "entity_type": self.entity_type,
            "action": self.action,
            "enabled": self.enabled,
            "scheduled": self.is_scheduled,
            "actions": [action.tool for action in self.actions],
        }


# ── Loading ──────────────────────────────────────────────────────────


def parse_definition(data: dict[str, Any]) -> TriggerDefinition:
    """Validate one definition mapping.

    Raises:
        TriggerDefinitionError: If the mapping does not describe a valid trigger
    """
    try:
        return TriggerDefinition.model_validate(data)
    except ValidationError as e:
        slug = data.get("slug") if isinstance(data, dict) else None
        raise TriggerDefinitionError(
            f"Invalid trigger definition {slug or '<unnamed>'}: {e}", cause=e
        ) from e


def parse_definitions(document: Any) -> list[TriggerDefinition]:
    """Accept a single definition, a list, or ``{"triggers": [...]}``."""
    if document is None:
        return []
    if isinstance(document, dict) and "triggers" in document:
        document = document["triggers"] or []
    if isinstance(document, dict):
        document = [document]
    if not isinstance(document, list):
        raise TriggerDefinitionError("Trigger document must be a mapping or a list of mappings")
    definitions = [parse_definition(item) for item in document]
    _ensure_unique_slugs(definitions)
    return definitions


def loads(content: str) -> list[TriggerDefinition]:
    """Parse YAML (or JSON, which YAML accepts) text."""
    try:
        document = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise TriggerDefinitionError(f"Invalid YAML: {e}", cause=e) from e
    return parse_definitions(document)


def load_definitions(paths: str | Path | Iterable[str | Path]) -> list[TriggerDefinition]:
    """Load definitions from files and directories (``*.yaml``, ``*.yml``, ``*.json``)."""
    if isinstance(paths, (str, Path)):
        paths = [paths]

    definitions: list[TriggerDefinition] = []
    for path in _expand(paths):
        content = path.read_text(encoding="utf-8")
        if path.suffix == ".json":
            try:
                loaded = parse_definitions(json.loads(content))
            except json.JSONDecodeError as e:
                raise TriggerDefinitionError(f"Invalid JSON in {path}: {e}", cause=e) from e
        else:
            loaded = loads(content)
        definitions.extend(loaded)

    _ensure_unique_slugs(definitions)
    return definitions


def _expand(paths: Iterable[str | Path]) -> list[Path]:
    files: list[Path] = []
    for raw in paths:
        path = Path(raw)
        if path.is_dir():
            files.extend(
                sorted(p for p in path.iterdir() if p.suffix in (".yaml", ".yml", ".json"))
            )
        elif path.exists():
            files.append(path)
        else:
            raise TriggerDefinitionError(f"Trigger definition path not found: {path}")
    return files


def _ensure_unique_slugs(definitions: list[TriggerDefinition]) -> None:
    seen: set[str] = set()
    for definition in definitions:
        if definition.slug in seen:
            raise TriggerDefinitionError(f"Duplicate trigger slug: {definition.slug}")
        seen.add(definition.slug)


__all__ = [
    "EntityAction",
    "RESERVED_BINDINGS",
    "TriggerAction",
    "TriggerSchedule",
    "TriggerRetry",
    "TriggerDefinition",
    "parse_definition",
    "parse_definitions",
    "loads",
    "load_definitions",
]
