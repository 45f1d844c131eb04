"""Pydantic v2 records that flow through the workflow state.

Field names are snake_case in Python and camelCase on the wire
(snapshots, tool arguments); both spellings are accepted on input.
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class IntentType(enum.StrEnum):
    FORMATTING = "formatting"
    CALCULATION = "calculation"
    SEARCH = "search"
    UNCLEAR = "unclear"


class MessageKind(enum.StrEnum):
    USER_INPUT = "user_input"
    CLARIFICATION = "clarification"
    FINAL_RESPONSE = "final_response"


class Message(WireModel):
    """One chat turn.

    Attributes:
        role: Who wrote it.
        content: Plain text body.
        timestamp: UTC creation time.
        kind: What produced the message, for assistant messages.
        tools_used: Tool names whose results the message summarises.
    """

    role: Literal["user", "assistant"]
    content: str
    timestamp: datetime = Field(default_factory=utcnow)
    kind: MessageKind | None = None
    tools_used: list[str] = Field(default_factory=list)


class Intent(WireModel):
    type: IntentType
    confidence: float = Field(ge=0.0, le=1.0)
    extracted_entities: dict[str, Any] = Field(default_factory=dict)
    description: str = ""


class Step(WireModel):
    """An entry in the append-only processing audit log.

    ``step_number`` is assigned by the state reducer when the step is
    merged, so nodes leave it at 0.
    """

    step_number: int = 0
    node: str
    action: str
    input: dict[str, Any] | None = None
    result: str
    success: bool
    error: str | None = None
    details: dict[str, Any] | None = None
    timestamp: datetime = Field(default_factory=utcnow)


class ToolSpec(WireModel):
    name: str
    args: dict[str, Any] = Field(default_factory=dict)


class ToolResult(WireModel):
    """Uniform outcome of a tool call: success flag plus payload or error."""

    success: bool
    payload: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None

    @classmethod
    def ok(cls, **payload: Any) -> ToolResult:
        return cls(success=True, payload=payload)

    @classmethod
    def fail(cls, error: str, **payload: Any) -> ToolResult:
        return cls(success=False, error=error, payload=payload)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)
