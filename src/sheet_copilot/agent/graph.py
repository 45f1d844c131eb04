from __future__ import annotations

import enum
import functools
from collections.abc import Callable, Mapping
from typing import Any

import structlog

from sheet_copilot.agent.nodes import clarify, execute, intent, select, synthesize
from sheet_copilot.agent.state import WorkflowState
from sheet_copilot.config.settings import Settings, settings as default_settings
from sheet_copilot.models.workflow import Step
from sheet_copilot.runtime.graph import END, START, CompiledGraph, StateGraph
from sheet_copilot.tools.base import ToolRegistry

log = structlog.get_logger(__name__)


class ClarificationRoute(enum.StrEnum):
    CLARIFY = "clarify"
    CONTINUE = "continue"


def make_confidence_gate(threshold: float) -> Callable[[Mapping[str, Any]], ClarificationRoute]:
    """Route to clarification when confidence is under ``threshold``."""

    def gate(state: Mapping[str, Any]) -> ClarificationRoute:
        confidence = state.get("confidence", 0.0)
        if confidence < threshold:
            log.info("clarification_needed", confidence=confidence, threshold=threshold)
            return ClarificationRoute.CLARIFY
        return ClarificationRoute.CONTINUE

    return gate


def record_node_failure(node: str, exc: Exception) -> dict[str, Any]:
    """Turn an unexpected node exception into a failed audit step."""
    step = Step(
        node=node,
        action="Node execution",
        result="Failed",
        success=False,
        error=f"{type(exc).__name__}: {exc}",
    )
    return {"processing_steps": [step]}


def build_workflow(registry: ToolRegistry, *, settings: Settings = default_settings) -> CompiledGraph:
    """Assemble and compile the assistant graph around ``registry``.

    The registry is frozen here; tools must be registered beforehand.
    """
    registry.freeze()

    builder = StateGraph(WorkflowState)

    builder.add_node("analyze_intent", intent.run)
    builder.add_node("request_clarification", clarify.run)
    builder.add_node("select_tools", select.run)
    builder.add_node("execute_tools", functools.partial(execute.run, registry=registry, settings=settings))
    builder.add_node("synthesize_response", synthesize.run)

    builder.add_edge(START, "analyze_intent")
    builder.add_conditional_edges(
        "analyze_intent",
        make_confidence_gate(settings.clarification_threshold),
        {
            ClarificationRoute.CLARIFY: "request_clarification",
            ClarificationRoute.CONTINUE: "select_tools",
        },
    )
    builder.add_edge("select_tools", "execute_tools")
    builder.add_edge("execute_tools", "synthesize_response")
    builder.add_edge("synthesize_response", END)
    builder.add_edge("request_clarification", END)

    log.debug("workflow_built", tools=registry.names())
    return builder.compile(
        on_node_error=record_node_failure, audit_field="processing_steps", settings=settings
    )
