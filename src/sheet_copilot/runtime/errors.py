"""Error taxonomy for the orchestration runtime.

Only ``GraphConfigError`` is meant to reach callers. Tool failures are
turned into data (a failed ``ToolResult`` and ``Step``) before they leave
the node that produced them.
"""

from __future__ import annotations


class CopilotError(Exception):
    """Base class for every error raised by sheet_copilot."""


class GraphConfigError(CopilotError):
    """A graph definition references nodes or routes that do not exist.

    Attributes:
        problems: Every problem found during compilation, in declaration order.
    """

    def __init__(self, problems: list[str] | str) -> None:
        self.problems = [problems] if isinstance(problems, str) else list(problems)
        super().__init__("; ".join(self.problems))


class ToolExecutionError(CopilotError):
    """A tool call raised or timed out. Caught inside ``execute_tools``."""

    def __init__(self, tool: str, message: str) -> None:
        self.tool = tool
        super().__init__(message)
