"""Unit tests for the graph builder and executor."""

import enum
from typing import Annotated, TypedDict

import pytest

from sheet_copilot.runtime.errors import GraphConfigError
from sheet_copilot.runtime.graph import END, START, StateGraph
from sheet_copilot.runtime.reducers import append, overwrite


class TraceState(TypedDict, total=False):
    visited: Annotated[list[str], append]
    route: Annotated[str, overwrite]
    errors: Annotated[list[str], append]


class Route(enum.StrEnum):
    LEFT = "left"
    RIGHT = "right"


def visit(name: str):
    def node(state):
        return {"visited": [name]}

    return node


def avisit(name: str):
    async def node(state):
        return {"visited": [name]}

    return node


@pytest.mark.asyncio
async def test_linear_path_visits_nodes_in_order() -> None:
    graph = StateGraph(TraceState)
    graph.add_node("A", visit("A"))
    graph.add_node("B", avisit("B"))
    graph.add_edge(START, "A")
    graph.add_edge("A", "B")
    graph.add_edge("B", END)

    final = await graph.compile().invoke({"visited": []})

    assert final["visited"] == ["A", "B"]


@pytest.mark.asyncio
async def test_stream_yields_one_event_per_node() -> None:
    graph = StateGraph(TraceState)
    graph.add_node("A", visit("A"))
    graph.add_node("B", visit("B"))
    graph.set_entry_point("A")
    graph.add_edge("A", "B")
    compiled = graph.compile()

    events = [event async for event in compiled.stream({"visited": []})]

    assert [event.node for event in events] == ["A", "B"]
    assert [event.index for event in events] == [1, 2]
    assert [event.step for event in events] == [None, None]
    assert [event.next_node for event in events] == ["B", END]
    assert events[-1].state == await compiled.invoke({"visited": []})


@pytest.mark.asyncio
async def test_stream_event_carries_the_record_the_node_appended() -> None:
    graph = StateGraph(TraceState)
    graph.add_node("A", visit("A"))
    graph.add_node("quiet", lambda state: {"route": "left"})
    graph.add_node("B", visit("B"))
    graph.set_entry_point("A")
    graph.add_edge("A", "quiet")
    graph.add_edge("quiet", "B")
    compiled = graph.compile(audit_field="visited")

    events = [event async for event in compiled.stream({"visited": ["seed"]})]

    assert [event.step for event in events] == ["A", None, "B"]
    assert [event.index for event in events] == [1, 2, 3]


def test_audit_field_must_be_declared() -> None:
    graph = StateGraph(TraceState)
    graph.add_node("A", visit("A"))
    graph.set_entry_point("A")

    with pytest.raises(GraphConfigError, match="history"):
        graph.compile(audit_field="history")


@pytest.mark.asyncio
async def test_input_state_is_not_mutated() -> None:
    graph = StateGraph(TraceState)
    graph.add_node("A", visit("A"))
    graph.set_entry_point("A")
    start = {"visited": ["seed"]}

    await graph.compile().invoke(start)

    assert start == {"visited": ["seed"]}


@pytest.mark.asyncio
async def test_conditional_edge_takes_priority_over_direct_edge() -> None:
    graph = StateGraph(TraceState)
    graph.add_node("A", visit("A"))
    graph.add_node("B", visit("B"))
    graph.add_node("C", visit("C"))
    graph.set_entry_point("A")
    graph.add_edge("A", "B")
    graph.add_conditional_edges("A", lambda state: Route.RIGHT, {Route.LEFT: "B", Route.RIGHT: "C"})

    final = await graph.compile().invoke({"visited": []})

    assert final["visited"] == ["A", "C"]


@pytest.mark.asyncio
async def test_unmapped_route_key_ends_the_run() -> None:
    graph = StateGraph(TraceState)
    graph.add_node("A", visit("A"))
    graph.add_node("B", visit("B"))
    graph.set_entry_point("A")
    graph.add_conditional_edges("A", lambda state: "nowhere", {"somewhere": "B"})

    events = [event async for event in graph.compile().stream({"visited": []})]

    assert [event.node for event in events] == ["A"]
    assert events[-1].next_node == END


@pytest.mark.asyncio
async def test_step_budget_stops_a_cycle() -> None:
    graph = StateGraph(TraceState)
    graph.add_node("A", visit("A"))
    graph.set_entry_point("A")
    graph.add_edge("A", "A")

    events = [event async for event in graph.compile(max_steps=3).stream({"visited": []})]

    assert len(events) == 3
    assert events[-1].state["visited"] == ["A", "A", "A"]
    assert events[-1].next_node == "A"


@pytest.mark.asyncio
async def test_default_budget_comes_from_settings(settings) -> None:
    graph = StateGraph(TraceState)
    graph.add_node("A", visit("A"))
    graph.set_entry_point("A")
    graph.add_edge("A", "A")

    final = await graph.compile(settings=settings).invoke({"visited": []})

    assert len(final["visited"]) == settings.max_graph_steps == 20


@pytest.mark.asyncio
async def test_raising_node_is_recorded_and_routing_continues() -> None:
    def explode(state):
        raise RuntimeError("boom")

    graph = StateGraph(TraceState)
    graph.add_node("A", explode)
    graph.add_node("B", visit("B"))
    graph.set_entry_point("A")
    graph.add_edge("A", "B")
    compiled = graph.compile(on_node_error=lambda node, exc: {"errors": [f"{node}: {exc}"]})

    final = await compiled.invoke({"visited": [], "errors": []})

    assert final["errors"] == ["A: boom"]
    assert final["visited"] == ["B"]


@pytest.mark.asyncio
async def test_node_returning_undeclared_field_is_treated_as_failure() -> None:
    graph = StateGraph(TraceState)
    graph.add_node("A", lambda state: {"unknown": 1})
    graph.set_entry_point("A")
    compiled = graph.compile(on_node_error=lambda node, exc: {"errors": [type(exc).__name__]})

    final = await compiled.invoke({"errors": []})

    assert final["errors"] == ["KeyError"]
    assert "unknown" not in final


def test_compile_reports_every_problem() -> None:
    graph = StateGraph(TraceState)
    graph.add_node("A", visit("A"))
    graph.add_edge("A", "missing")
    graph.add_edge("ghost", "A")
    graph.add_conditional_edges("A", lambda state: "x", {"x": "also_missing"})

    with pytest.raises(GraphConfigError) as info:
        graph.compile()

    problems = info.value.problems
    assert any("No entry point" in problem for problem in problems)
    assert any("'missing'" in problem for problem in problems)
    assert any("'ghost'" in problem for problem in problems)
    assert any("'also_missing'" in problem for problem in problems)


def test_enum_mapping_must_cover_every_member() -> None:
    graph = StateGraph(TraceState)
    graph.add_node("A", visit("A"))
    graph.add_node("B", visit("B"))
    graph.set_entry_point("A")
    graph.add_conditional_edges("A", lambda state: Route.LEFT, {Route.LEFT: "B"})

    with pytest.raises(GraphConfigError, match="RIGHT"):
        graph.compile()


def test_add_node_rejects_reserved_and_duplicate_names() -> None:
    graph = StateGraph(TraceState)
    graph.add_node("A", visit("A"))
    with pytest.raises(GraphConfigError):
        graph.add_node("A", visit("A"))
    with pytest.raises(GraphConfigError):
        graph.add_node(END, visit("end"))
