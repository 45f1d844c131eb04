"""Response synthesis node.

Renders the turn's tool results into one assistant message, one line per
tool. Failed tools always get a visible line. A formatter that breaks, or
a tool without a formatter, degrades to a generic line instead of failing
the node.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import structlog

from sheet_copilot.agent.state import WorkflowState
from sheet_copilot.models.workflow import Intent, IntentType, Message, MessageKind, Step, ToolResult

log = structlog.get_logger(__name__)

ResultFormatter = Callable[[ToolResult], str]

_TITLES: dict[IntentType, str] = {
    IntentType.FORMATTING: "🎨 Cell Formatting Complete",
    IntentType.CALCULATION: "📊 Calculation Results",
    IntentType.SEARCH: "🔍 Search Results",
}
_DEFAULT_TITLE = "📋 Operation Complete"


def _metric_line(payload: dict[str, Any]) -> str:
    line = f"{payload['metric']}: {payload['value']} at {payload['location']}"
    extras = []
    if payload.get("sheet"):
        extras.append(f"sheet {payload['sheet']}")
    if payload.get("period"):
        extras.append(f"period {payload['period']}")
    if extras:
        line += f" ({', '.join(extras)})"
    return line


def format_find_metric(result: ToolResult) -> str:
    return f"✅ {_metric_line(result.payload)}"


def format_list_metrics(result: ToolResult) -> str:
    metrics = result.payload["metrics"]
    found = "; ".join(_metric_line(payload) for payload in metrics.values())
    return f"✅ Found {len(metrics)} metrics: {found}"


def format_formatting(result: ToolResult) -> str:
    payload = result.payload
    return f"✅ Formatted {payload['cellsFormatted']} cells matching \"{payload['searchTerm']}\""


def format_read_range(result: ToolResult) -> str:
    payload = result.payload
    flat = [value for row in payload["values"] for value in row if value not in (None, "")]
    preview = ", ".join(str(value) for value in flat[:10])
    if len(flat) > 10:
        preview += ", …"
    return f"✅ {payload['address']}: {preview or 'empty'}"


def format_write_range(result: ToolResult) -> str:
    payload = result.payload
    return f"✅ Updated {payload['address']} ({payload['rowsUpdated']}x{payload['columnsUpdated']})"


FORMATTERS: dict[str, ResultFormatter] = {
    "find_financial_metric": format_find_metric,
    "list_financial_metrics": format_list_metrics,
    "smart_cell_formatting": format_formatting,
    "read_range": format_read_range,
    "write_range": format_write_range,
}


def failure_line(tool: str, result: ToolResult) -> str:
    line = f"❌ {tool}: {result.error or 'failed'}"
    available = result.payload.get("availableMetrics")
    if available:
        line += f" (available: {', '.join(available)})"
    return line


def result_line(tool: str, result: ToolResult, formatters: dict[str, ResultFormatter] = FORMATTERS) -> str:
    if not result.success:
        return failure_line(tool, result)
    formatter = formatters.get(tool)
    if formatter is None:
        return f"✅ {tool}: operation completed"
    try:
        return formatter(result)
    except Exception as exc:
        log.warning("result_format_failed", tool=tool, error=str(exc))
        return f"✅ {tool}: operation completed"


def render(intent: Intent | None, tool_results: dict[str, ToolResult]) -> str:
    title = _TITLES.get(intent.type, _DEFAULT_TITLE) if intent else _DEFAULT_TITLE
    if not tool_results:
        return f"{title}\n\nNo spreadsheet actions were needed for this request."
    lines = [result_line(tool, result) for tool, result in tool_results.items()]
    return "\n".join([title, "", *lines])


async def run(state: WorkflowState) -> dict[str, Any]:
    """Write the final assistant message for this turn."""
    tool_results = state.get("tool_results", {})
    content = render(state.get("intent"), tool_results)
    failed = [name for name, result in tool_results.items() if not result.success]

    log.info("response_synthesized", tools=list(tool_results), failed=failed)

    message = Message(
        role="assistant",
        content=content,
        kind=MessageKind.FINAL_RESPONSE,
        tools_used=list(tool_results),
    )
    step = Step(
        node="synthesize_response",
        action="Response Generation",
        result=f"Summarised {len(tool_results)} tool results ({len(failed)} failed)",
        success=True,
    )
    return {"messages": [message], "processing_steps": [step]}
