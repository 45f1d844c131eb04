"""Command-line entrypoint.

Runs one conversational turn against a workbook file and prints the
assistant's reply. Conversation history is carried between runs through
an optional JSON snapshot file.
"""

import argparse
import asyncio
import sys
import uuid
from pathlib import Path

import structlog

from sheet_copilot.agent.graph import build_workflow
from sheet_copilot.agent.snapshot import new_turn_state, serialize
from sheet_copilot.config.logging import configure_logging
from sheet_copilot.config.settings import settings
from sheet_copilot.runtime.graph import END
from sheet_copilot.tools.defaults import build_default_registry
from sheet_copilot.workbook.source import InMemoryWorkbook

log = structlog.get_logger(__name__)


async def run_turn(
    workbook: InMemoryWorkbook, question: str, snapshot_path: Path | None, stream: bool
) -> int:
    previous = None
    if snapshot_path is not None and snapshot_path.exists():
        previous = snapshot_path.read_text(encoding="utf-8")

    state = new_turn_state(question, previous, history_limit=settings.history_limit)
    graph = build_workflow(build_default_registry(workbook, settings=settings), settings=settings)

    final = state
    finished = True
    async for event in graph.stream(state):
        final = event.state
        finished = event.next_node == END
        if stream and event.step is not None:
            marker = "✓" if event.step.success else "✗"
            print(f"[{event.index}] {event.node}: {marker} {event.step.action} - {event.step.result}")

    if not finished:
        print("Stopped: the step budget ran out before the turn finished.", file=sys.stderr)

    replies = [message for message in final["messages"] if message.role == "assistant"]
    if replies and replies[-1] is final["messages"][-1]:
        print(replies[-1].content)

    if snapshot_path is not None:
        snapshot_path.write_text(serialize(final), encoding="utf-8")
        log.info("snapshot_written", path=str(snapshot_path))

    return 0 if finished else 1


def main() -> None:
    parser = argparse.ArgumentParser(prog="sheet-copilot", description="Ask questions about a workbook.")
    parser.add_argument("workbook", type=Path, help="Workbook file (.csv or .json)")
    parser.add_argument("question", help="What to ask, e.g. 'What is our IRR?'")
    parser.add_argument("--snapshot", type=Path, default=None, help="Conversation snapshot to read and update")
    parser.add_argument("--stream", action="store_true", help="Print each node as it runs")
    args = parser.parse_args()

    configure_logging()
    structlog.contextvars.bind_contextvars(turn_id=uuid.uuid4().hex[:8])

    try:
        workbook = InMemoryWorkbook.load(args.workbook)
    except (OSError, ValueError, KeyError) as exc:
        log.error("workbook_load_failed", path=str(args.workbook), error=str(exc))
        parser.exit(2, f"sheet-copilot: cannot load {args.workbook}: {exc}\n")

    log.info("turn_started", workbook=str(args.workbook), sheets=len(workbook.sheets))
    sys.exit(asyncio.run(run_turn(workbook, args.question, args.snapshot, args.stream)))


if __name__ == "__main__":
    main()
