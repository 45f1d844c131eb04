"""Workflow state for the assistant graph."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Annotated, Any, TypedDict

from sheet_copilot.models.workflow import Intent, Message, Step, ToolResult, ToolSpec
from sheet_copilot.runtime.reducers import StateStore, append, merge_mapping, overwrite


def append_steps(current: list[Step] | None, update: Iterable[Step]) -> list[Step]:
    """Append steps, numbering them so ``step_number == index + 1`` always holds."""
    existing = list(current or ())
    numbered = [
        step.model_copy(update={"step_number": len(existing) + offset})
        for offset, step in enumerate(update, start=1)
    ]
    return existing + numbered


class WorkflowState(TypedDict, total=False):
    """State passed between nodes in the assistant graph.

    Attributes:
        messages: Conversation so far, in order. Appended, never reordered.
        intent: Classification of the latest user message.
        tool_results: Outcome per tool name for this turn, merged by key.
        processing_steps: Append-only audit log with gapless numbering.
        confidence: Intent confidence in [0, 1]; gates clarification.
        needs_clarification: Set when the turn ended by asking the user.
        selected_tools: Tool calls chosen by select_tools for execute_tools.
    """

    messages: Annotated[list[Message], append]
    intent: Annotated[Intent | None, overwrite]
    tool_results: Annotated[dict[str, ToolResult], merge_mapping]
    processing_steps: Annotated[list[Step], append_steps]
    confidence: Annotated[float, overwrite]
    needs_clarification: Annotated[bool, overwrite]
    selected_tools: Annotated[list[ToolSpec], overwrite]


STATE_STORE = StateStore(WorkflowState)


def initial_state(**fields: Any) -> WorkflowState:
    state: WorkflowState = {
        "messages": [],
        "intent": None,
        "tool_results": {},
        "processing_steps": [],
        "confidence": 0.0,
        "needs_clarification": False,
        "selected_tools": [],
    }
    state.update(fields)  # type: ignore[typeddict-item]
    return state


def latest_user_message(state: Mapping[str, Any]) -> Message | None:
    for message in reversed(state.get("messages", [])):
        if message.role == "user":
            return message
    return None
