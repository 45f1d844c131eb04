"""Persisted snapshot of a conversation, used to continue across turns.

The wire form is JSON with camelCase keys:
``messages, toolResults, userIntent, currentStep, processingSteps`` plus
``confidence, needsClarification, selectedTools`` so that
``deserialize(serialize(state)) == state``.
"""

from __future__ import annotations

import structlog
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from sheet_copilot.agent.state import STATE_STORE, WorkflowState, initial_state
from sheet_copilot.config.settings import settings as default_settings
from sheet_copilot.models.workflow import Intent, Message, MessageKind, Step, ToolResult, ToolSpec

log = structlog.get_logger(__name__)


class Snapshot(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    messages: list[Message] = Field(default_factory=list)
    tool_results: dict[str, ToolResult] = Field(default_factory=dict)
    user_intent: Intent | None = None
    current_step: str = "start"
    processing_steps: list[Step] = Field(default_factory=list)
    confidence: float = 0.0
    needs_clarification: bool = False
    selected_tools: list[ToolSpec] = Field(default_factory=list)


def serialize(state: WorkflowState) -> str:
    steps = state.get("processing_steps", [])
    snapshot = Snapshot(
        messages=state.get("messages", []),
        tool_results=state.get("tool_results", {}),
        user_intent=state.get("intent"),
        current_step=steps[-1].node if steps else "start",
        processing_steps=steps,
        confidence=state.get("confidence", 0.0),
        needs_clarification=state.get("needs_clarification", False),
        selected_tools=state.get("selected_tools", []),
    )
    return snapshot.model_dump_json(by_alias=True)


def deserialize(data: str | bytes) -> WorkflowState:
    snapshot = Snapshot.model_validate_json(data)
    return initial_state(
        messages=snapshot.messages,
        intent=snapshot.user_intent,
        tool_results=snapshot.tool_results,
        processing_steps=snapshot.processing_steps,
        confidence=snapshot.confidence,
        needs_clarification=snapshot.needs_clarification,
        selected_tools=snapshot.selected_tools,
    )


def new_turn_state(
    text: str,
    snapshot: str | bytes | None = None,
    *,
    history_limit: int | None = None,
) -> WorkflowState:
    """Start a turn for ``text``, continuing the conversation in ``snapshot``.

    Messages beyond ``history_limit`` are dropped oldest first; processing
    steps are kept. Per-turn fields start over.
    """
    limit = history_limit or default_settings.history_limit
    previous = deserialize(snapshot) if snapshot else initial_state()
    history: list[Message] = previous["messages"][-limit:]
    if len(history) < len(previous["messages"]):
        log.debug("history_trimmed", kept=len(history), dropped=len(previous["messages"]) - len(history))

    state = initial_state(messages=history, processing_steps=previous["processing_steps"])
    user = Message(role="user", content=text, kind=MessageKind.USER_INPUT)
    return STATE_STORE.merge(state, {"messages": [user]})  # type: ignore[return-value]
