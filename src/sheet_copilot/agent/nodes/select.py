"""Tool selection node: turns the classified intent into tool calls."""

from __future__ import annotations

from typing import Any

import structlog

from sheet_copilot.agent.state import WorkflowState
from sheet_copilot.models.workflow import Intent, IntentType, Step, ToolSpec

log = structlog.get_logger(__name__)

DEFAULT_METRIC = "IRR"
DEFAULT_COLOR = "green"


def tools_for_intent(intent: Intent | None) -> list[ToolSpec]:
    if intent is None:
        return []
    entities = intent.extracted_entities

    if intent.type is IntentType.FORMATTING:
        if not entities.get("search_term"):
            return []
        format_type = entities.get("format_type", "color")
        format_value = entities.get("color", DEFAULT_COLOR) if format_type == "color" else format_type
        return [
            ToolSpec(
                name="smart_cell_formatting",
                args={
                    "search_term": entities["search_term"],
                    "format_type": format_type,
                    "format_value": format_value,
                    "search_all_sheets": True,
                },
            )
        ]

    if intent.type is IntentType.CALCULATION:
        return [
            ToolSpec(
                name="find_financial_metric",
                args={"metric_name": entities.get("metric", DEFAULT_METRIC)},
            )
        ]

    if intent.type is IntentType.SEARCH:
        if entities.get("cells"):
            return [ToolSpec(name="read_range", args={"range": entities["cells"][0]})]
        if entities.get("metric"):
            return [ToolSpec(name="find_financial_metric", args={"metric_name": entities["metric"]})]
        return [ToolSpec(name="list_financial_metrics", args={})]

    return []


async def run(state: WorkflowState) -> dict[str, Any]:
    """Pick the tools for the current intent."""
    selected = tools_for_intent(state.get("intent"))
    names = ", ".join(spec.name for spec in selected) or "none"

    log.info("tools_selected", tools=[spec.name for spec in selected])

    step = Step(
        node="select_tools",
        action="Tool Selection",
        result=f"Selected: {names}",
        success=True,
    )
    return {"selected_tools": selected, "processing_steps": [step]}
