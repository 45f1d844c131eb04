"""Clarification node: a dead end that asks the user to rephrase."""

from __future__ import annotations

from typing import Any

import structlog

from sheet_copilot.agent.state import WorkflowState
from sheet_copilot.models.workflow import Intent, Message, MessageKind, Step

log = structlog.get_logger(__name__)

EXAMPLE_PHRASINGS: tuple[tuple[str, str], ...] = (
    ("Format cells", "Change the IRR cell to green"),
    ("Analyze data", "Calculate the NPV for this model"),
    ("Find values", "Show me where the revenue is located"),
)


def clarification_text(intent: Intent | None) -> str:
    confidence = intent.confidence if intent else 0.0
    examples = "\n".join(f'• {title}: "{example}"' for title, example in EXAMPLE_PHRASINGS)
    return (
        f"I'm {round(confidence * 100)}% confident about your request. "
        "Could you please clarify what you'd like me to do? For example:\n\n"
        f"{examples}\n\n"
        "What specifically would you like me to help with?"
    )


async def run(state: WorkflowState) -> dict[str, Any]:
    """Ask for a clearer request. Never calls tools."""
    intent = state.get("intent")
    log.info("clarification_requested", confidence=state.get("confidence", 0.0))

    message = Message(
        role="assistant",
        content=clarification_text(intent),
        kind=MessageKind.CLARIFICATION,
    )
    step = Step(
        node="request_clarification",
        action="Clarification Request",
        result="Asked the user to rephrase",
        success=True,
    )
    return {"messages": [message], "needs_clarification": True, "processing_steps": [step]}
