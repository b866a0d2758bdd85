"""
Action pipeline interpreter.

Runs a trigger's steps strictly in order. Each step's args are resolved
against the binding namespace, the tool is invoked, and a successful step
with ``as`` binds its result for the steps after it (also reachable as
``steps.<as>``). The first failing step (tool error, unknown tool,
unresolved binding, malformed template) ends the pipeline; nothing after it
runs and the log holds exactly ``failed_action_index + 1`` entries.

The interpreter never retries and never raises for a step failure; callers
read the returned ``PipelineResult``.
"""

from __future__ import annotations

import time
import traceback
from collections.abc import Mapping, Sequence
from typing import Any

from conveyor.core.errors import ConfigurationError
from conveyor.core.logging import get_logger
from conveyor.execution.retry import format_error
from conveyor.triggers.definitions import TriggerAction
from conveyor.triggers.models import ExecutionLogEntry, PipelineResult, StepStatus
from conveyor.triggers.templates import compile_template, resolve
from conveyor.triggers.tools import ToolContext, ToolInvoker

logger = get_logger(__name__)


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


class PipelineInterpreter:
    """Sequential, fail-fast executor of ``TriggerAction`` lists."""

    def __init__(self, invoker: ToolInvoker):
        self._invoker = invoker

    def run(
        self,
        actions: Sequence[TriggerAction],
        bindings: Mapping[str, Any],
        context: ToolContext,
    ) -> PipelineResult:
        namespace: dict[str, Any] = dict(bindings)
        namespace["steps"] = dict(namespace.get("steps") or {})
        log: list[ExecutionLogEntry] = []

        for index, action in enumerate(actions):
            started = time.perf_counter()

            try:
                args = resolve(compile_template(action.args), namespace, action.tool)
            except ConfigurationError as exc:
                log.append(self._failure(action, action.args, exc, started))
                return self._stopped(log, len(actions), namespace, index, configuration=True)

            try:
                result = self._invoker.invoke(action.tool, args, context)
            except Exception as exc:
                log.append(self._failure(action, args, exc, started))
                return self._stopped(
                    log,
                    len(actions),
                    namespace,
                    index,
                    configuration=isinstance(exc, ConfigurationError),
                )

            log.append(
                ExecutionLogEntry(
                    tool=action.tool,
                    as_name=action.as_name,
                    args=args,
                    status=StepStatus.SUCCESS,
                    result=result,
                    duration_ms=_elapsed_ms(started),
                )
            )
            if action.as_name:
                namespace[action.as_name] = result
                namespace["steps"][action.as_name] = result

        return PipelineResult(execution_log=log, total_actions=len(actions), bindings=namespace)

    def _failure(
        self, action: TriggerAction, args: Any, exc: Exception, started: float
    ) -> ExecutionLogEntry:
        return ExecutionLogEntry(
            tool=action.tool,
            as_name=action.as_name,
            args=args,
            status=StepStatus.FAILED,
            error=format_error(exc),
            stack="".join(traceback.format_exception(exc)),
            duration_ms=_elapsed_ms(started),
        )

    def _stopped(
        self,
        log: list[ExecutionLogEntry],
        total: int,
        namespace: dict[str, Any],
        index: int,
        *,
        configuration: bool,
    ) -> PipelineResult:
        logger.warning(
            "pipeline.step_failed",
            tool=log[index].tool,
            failed_action_index=index,
            total_actions=total,
            error=log[index].error,
        )
        return PipelineResult(
            execution_log=log,
            total_actions=total,
            bindings=namespace,
            failed_action_index=index,
            configuration_error=configuration,
        )


__all__ = ["PipelineInterpreter"]
