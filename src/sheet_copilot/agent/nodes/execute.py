"""Tool execution node.

The selected tools run concurrently and are joined before the node
returns. Each call is isolated: an exception, a timeout or an unknown
tool name becomes a failed ``ToolResult`` and a failed ``Step`` for that
tool only. Steps are recorded in the order the calls finish.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from typing import Any

import structlog
from pydantic import ValidationError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from sheet_copilot.agent.state import WorkflowState
from sheet_copilot.config.settings import Settings, settings as default_settings
from sheet_copilot.models.workflow import Step, ToolResult, ToolSpec
from sheet_copilot.runtime.errors import ToolExecutionError
from sheet_copilot.tools.base import ToolContract, ToolRegistry

log = structlog.get_logger(__name__)


def _as_result(raw: Any) -> ToolResult:
    # Third-party tools may hand back the serialized form.
    if isinstance(raw, ToolResult):
        return raw
    if isinstance(raw, (str, bytes)):
        return ToolResult.model_validate_json(raw)
    return ToolResult.model_validate(raw)


async def _attempt(tool: ToolContract, args: Mapping[str, Any], timeout: float) -> Any:
    try:
        return await asyncio.wait_for(tool.call(dict(args)), timeout)
    except TimeoutError as exc:
        raise ToolExecutionError(tool.name, f"Timed out after {timeout:g}s") from exc
    except Exception as exc:
        raise ToolExecutionError(tool.name, f"{type(exc).__name__}: {exc}") from exc


async def _call_with_retry(tool: ToolContract, args: Mapping[str, Any], settings: Settings) -> Any:
    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(settings.tool_max_retries + 1),
        wait=wait_exponential(multiplier=0.2, max=2),
        retry=retry_if_exception_type(ToolExecutionError),
        reraise=True,
    ):
        with attempt:
            if attempt.retry_state.attempt_number > 1:
                log.info("tool_retry", tool=tool.name, attempt=attempt.retry_state.attempt_number)
            return await _attempt(tool, args, settings.tool_timeout_seconds)
    raise ToolExecutionError(tool.name, "No attempt was made")  # pragma: no cover


async def call_tool(
    registry: ToolRegistry, spec: ToolSpec, settings: Settings = default_settings
) -> ToolResult:
    """Run one tool call to a ``ToolResult``. Never raises."""
    tool = registry.get(spec.name)
    if tool is None:
        log.warning("tool_unknown", tool=spec.name)
        return ToolResult.fail(f"Unknown tool {spec.name!r}")

    try:
        raw = await _call_with_retry(tool, spec.args, settings)
        return _as_result(raw)
    except ToolExecutionError as exc:
        log.warning("tool_failed", tool=spec.name, error=str(exc))
        return ToolResult.fail(str(exc))
    except (ValidationError, ValueError) as exc:
        log.warning("tool_result_malformed", tool=spec.name, error=str(exc))
        return ToolResult.fail(f"Malformed tool result: {exc}")


def _step_for(spec: ToolSpec, result: ToolResult) -> Step:
    return Step(
        node="execute_tools",
        action=f"Tool: {spec.name}",
        input=spec.args,
        result="Success" if result.success else "Failed",
        success=result.success,
        error=result.error,
        details=result.payload or None,
    )


async def run(
    state: WorkflowState,
    *,
    registry: ToolRegistry,
    settings: Settings = default_settings,
) -> dict[str, Any]:
    """Execute every selected tool and record one result and one step per call."""
    specs: list[ToolSpec] = state.get("selected_tools", [])
    if not specs:
        step = Step(node="execute_tools", action="Tool Execution", result="No tools selected", success=True)
        return {"processing_steps": [step]}

    async def _run_one(spec: ToolSpec) -> tuple[ToolSpec, ToolResult]:
        log.info("tool_started", tool=spec.name)
        return spec, await call_tool(registry, spec, settings)

    results: dict[str, ToolResult] = {}
    steps: list[Step] = []
    tasks = [asyncio.create_task(_run_one(spec)) for spec in specs]
    for finished in asyncio.as_completed(tasks):
        spec, result = await finished
        log.info("tool_finished", tool=spec.name, success=result.success)
        results[spec.name] = result
        steps.append(_step_for(spec, result))

    return {"tool_results": results, "processing_steps": steps}
