"""
Tool invocation for action steps.

A tool is any named capability a pipeline step can call (send an email,
update an entity, call a webhook). The interpreter only knows the
``ToolInvoker`` protocol; ``ToolRegistry`` is the in-process implementation
and ``TimeboxedInvoker`` bounds how long a single call may block.

Example:
    >>> tools = ToolRegistry()
    >>> @tools.tool("math.add")
    ... def add(args, context):
    ...     return args["a"] + args["b"]
    >>> tools.invoke("math.add", {"a": 1, "b": 2}, ToolContext(org_id="org_1"))
    3
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

from conveyor.core.errors import ToolNotFoundError
from conveyor.execution.timeout import run_with_timeout


@dataclass(frozen=True)
class ToolContext:
    """Who is calling a tool, and on behalf of which firing."""

    org_id: str
    environment: str = "production"
    trigger_slug: str | None = None
    entity_id: str | None = None
    run_id: str | None = None
    actor: str = "system"


class ToolInvoker(Protocol):
    def invoke(self, tool: str, args: Any, context: ToolContext) -> Any: ...


Tool = Callable[[Any, ToolContext], Any]


class ToolRegistry:
    """Name → callable ``tool(args, context)``."""

    def __init__(self, tools: dict[str, Tool] | None = None):
        self._tools: dict[str, Tool] = dict(tools or {})

    def register(self, name: str, tool: Tool) -> None:
        self._tools[name] = tool

    def tool(self, name: str) -> Callable[[Tool], Tool]:
        def decorator(func: Tool) -> Tool:
            self.register(name, func)
            return func

        return decorator

    def unregister(self, name: str) -> bool:
        return self._tools.pop(name, None) is not None

    def has(self, name: str) -> bool:
        return name in self._tools

    def list_tools(self) -> list[str]:
        return sorted(self._tools)

    def invoke(self, tool: str, args: Any, context: ToolContext) -> Any:
        func = self._tools.get(tool)
        if func is None:
            raise ToolNotFoundError(tool)
        return func(args, context)


class TimeboxedInvoker:
    """Wraps another invoker; a call running past ``timeout_seconds`` fails.

    The late call keeps running in its helper thread; its result is dropped.
    """

    def __init__(self, inner: ToolInvoker, timeout_seconds: float):
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        self._inner = inner
        self.timeout_seconds = timeout_seconds

    def invoke(self, tool: str, args: Any, context: ToolContext) -> Any:
        return run_with_timeout(
            self._inner.invoke,
            self.timeout_seconds,
            operation=f"tool {tool}",
            args=(tool, args, context),
        )


__all__ = ["ToolContext", "ToolInvoker", "Tool", "ToolRegistry", "TimeboxedInvoker"]
