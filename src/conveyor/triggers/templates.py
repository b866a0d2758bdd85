"""
Argument templates for action steps.

Templates are data, not code. An args structure is compiled into a tree of
tagged nodes and resolved against a binding namespace; nothing is ever
evaluated, so an author cannot run arbitrary expressions.

Node kinds::

    Literal        any JSON value without references
    Ref            "{{name.path}}" as the whole string, or {"$ref": "name.path"}
                   (also {"$ref": "name", "path": "a.b"}); resolves to the raw
                   value, keeping its type
    Interpolation  "Hello {{user.name}}!"; resolves to a string, objects and
                   lists rendered as JSON
    ListOf, MapOf  containers resolved element-wise

Example:
    >>> template = compile_template({"to": "{{contact.email}}", "n": 3})
    >>> resolve(template, {"contact": {"email": "a@b.c"}})
    {'to': 'a@b.c', 'n': 3}
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Union

from conveyor.core.errors import TemplateSyntaxError, UnresolvedBindingError
from conveyor.triggers.conditions import MISSING, get_path

_PLACEHOLDER = re.compile(r"\{\{(.*?)\}\}")
_REFERENCE = re.compile(r"^[A-Za-z_$][\w$-]*(\.[\w$-]+)*$")


@dataclass(frozen=True)
class Literal:
    value: Any


@dataclass(frozen=True)
class Ref:
    name: str
    path: tuple[str, ...] = ()

    @property
    def reference(self) -> str:
        return ".".join((self.name, *self.path))


@dataclass(frozen=True)
class Interpolation:
    parts: tuple[Union[str, Ref], ...]


@dataclass(frozen=True)
class ListOf:
    items: tuple[Template, ...]


@dataclass(frozen=True)
class MapOf:
    entries: tuple[tuple[str, Template], ...]


Template = Union[Literal, Ref, Interpolation, ListOf, MapOf]


# ── Compilation ──────────────────────────────────────────────────────


def parse_reference(text: str, template: str | None = None) -> Ref:
    """``"a.b.c"`` → ``Ref("a", ("b", "c"))``."""
    reference = text.strip()
    if not _REFERENCE.match(reference):
        raise TemplateSyntaxError(template if template is not None else text, f"invalid reference {reference!r}")
    name, *path = reference.split(".")
    return Ref(name, tuple(path))


def _compile_string(text: str) -> Template:
    matches = list(_PLACEHOLDER.finditer(text))
    if not matches:
        if "{{" in text:
            raise TemplateSyntaxError(text, "unterminated '{{'")
        return Literal(text)

    if len(matches) == 1 and matches[0].span() == (0, len(text)):
        return parse_reference(matches[0].group(1), text)

    parts: list[str | Ref] = []
    cursor = 0
    for match in matches:
        start, end = match.span()
        if start > cursor:
            parts.append(text[cursor:start])
        parts.append(parse_reference(match.group(1), text))
        cursor = end
    if cursor < len(text):
        parts.append(text[cursor:])
    if any(isinstance(part, str) and "{{" in part for part in parts):
        raise TemplateSyntaxError(text, "unterminated '{{'")
    return Interpolation(tuple(parts))


def _is_tagged_ref(value: Mapping[str, Any]) -> bool:
    return "$ref" in value and set(value) <= {"$ref", "path"}


def compile_template(value: Any) -> Template:
    """Compile an args structure into a template tree.

    Raises:
        TemplateSyntaxError: For unterminated or malformed placeholders
    """
    if isinstance(value, str):
        return _compile_string(value)
    if isinstance(value, Mapping):
        if _is_tagged_ref(value):
            ref = value["$ref"]
            path = value.get("path")
            if not isinstance(ref, str) or (path is not None and not isinstance(path, str)):
                raise TemplateSyntaxError(json.dumps(value, default=str), "'$ref' and 'path' must be strings")
            joined = f"{ref}.{path}" if path else ref
            return parse_reference(joined, json.dumps(value, default=str))
        entries = tuple((str(key), compile_template(item)) for key, item in value.items())
        if all(isinstance(node, Literal) for _, node in entries):
            return Literal(dict(value))
        return MapOf(entries)
    if isinstance(value, (list, tuple)):
        items = tuple(compile_template(item) for item in value)
        if all(isinstance(node, Literal) for node in items):
            return Literal(list(value))
        return ListOf(items)
    return Literal(value)


def references(template: Template) -> list[str]:
    """Every reference used in a template, in order of appearance."""
    if isinstance(template, Ref):
        return [template.reference]
    if isinstance(template, Interpolation):
        return [part.reference for part in template.parts if isinstance(part, Ref)]
    if isinstance(template, ListOf):
        return [ref for item in template.items for ref in references(item)]
    if isinstance(template, MapOf):
        return [ref for _, node in template.entries for ref in references(node)]
    return []


# ── Resolution ───────────────────────────────────────────────────────


def lookup(ref: Ref, bindings: Mapping[str, Any], tool: str | None = None) -> Any:
    if ref.name not in bindings:
        raise UnresolvedBindingError(ref.reference, tool)
    value = get_path(bindings[ref.name], ".".join(ref.path))
    if value is MISSING:
        raise UnresolvedBindingError(ref.reference, tool)
    return value


def stringify(value: Any) -> str:
    """Render a resolved value inside an interpolated string."""
    if isinstance(value, str):
        return value
    if value is None:
        return ""
    if isinstance(value, (dict, list, tuple, bool)):
        return json.dumps(value, default=str)
    return str(value)


def resolve(template: Template, bindings: Mapping[str, Any], tool: str | None = None) -> Any:
    """Substitute bindings into a compiled template.

    Raises:
        UnresolvedBindingError: When a reference names an absent binding or path
    """
    if isinstance(template, Literal):
        return template.value
    if isinstance(template, Ref):
        return lookup(template, bindings, tool)
    if isinstance(template, Interpolation):
        return "".join(
            stringify(lookup(part, bindings, tool)) if isinstance(part, Ref) else part
            for part in template.parts
        )
    if isinstance(template, ListOf):
        return [resolve(item, bindings, tool) for item in template.items]
    if isinstance(template, MapOf):
        return {key: resolve(node, bindings, tool) for key, node in template.entries}
    raise TypeError(f"Unknown template node: {template!r}")


def render(value: Any, bindings: Mapping[str, Any], tool: str | None = None) -> Any:
    """Compile and resolve in one step."""
    return resolve(compile_template(value), bindings, tool)


__all__ = [
    "Literal",
    "Ref",
    "Interpolation",
    "ListOf",
    "MapOf",
    "Template",
    "parse_reference",
    "compile_template",
    "references",
    "lookup",
    "stringify",
    "resolve",
    "render",
]
