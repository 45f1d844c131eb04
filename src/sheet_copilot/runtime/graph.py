"""A small directed-graph executor over reducer-merged state.

The builder API follows LangGraph's ``StateGraph`` (``add_node``,
``add_edge``, ``add_conditional_edges``, ``set_entry_point``,
``compile``) so node code reads the same as in a LangGraph project, but
execution is strictly sequential and bounded by a step budget.
"""

from __future__ import annotations

import enum
import inspect
from collections.abc import AsyncIterator, Awaitable, Callable, Hashable, Mapping
from dataclasses import dataclass, field
from typing import Any

import structlog

from sheet_copilot.config.settings import Settings, settings as default_settings
from sheet_copilot.models.workflow import Step
from sheet_copilot.runtime.errors import GraphConfigError
from sheet_copilot.runtime.reducers import StateStore

log = structlog.get_logger(__name__)

START = "__start__"
END = "__end__"

PartialState = Mapping[str, Any]
NodeFn = Callable[[Mapping[str, Any]], PartialState | None | Awaitable[PartialState | None]]
Selector = Callable[[Mapping[str, Any]], Hashable]
NodeErrorHandler = Callable[[str, Exception], PartialState]


@dataclass(frozen=True)
class ConditionalEdge:
    source: str
    selector: Selector
    mapping: Mapping[Hashable, str]


@dataclass(frozen=True)
class GraphEvent:
    """One executed node, as yielded by ``CompiledGraph.stream``.

    Attributes:
        node: Name of the node that just ran.
        state: Full state after merging the node's output.
        step: Audit record the node appended, read from the graph's audit
            field; None when the graph has none or the node added nothing.
        index: 1-based count of nodes executed so far in this run.
        next_node: Where execution goes next; ``END`` when the run is over.
    """

    node: str
    state: dict[str, Any]
    step: Step | None
    index: int
    next_node: str


@dataclass
class StateGraph:
    """Declares nodes and edges. Nothing runs until ``compile``."""

    state_schema: type
    nodes: dict[str, NodeFn] = field(default_factory=dict)
    edges: list[tuple[str, str]] = field(default_factory=list)
    conditional_edges: list[ConditionalEdge] = field(default_factory=list)
    entry_point: str | None = None

    def add_node(self, name: str, fn: NodeFn) -> StateGraph:
        if name in (START, END):
            raise GraphConfigError(f"Node name {name!r} is reserved")
        if name in self.nodes:
            raise GraphConfigError(f"Node {name!r} is already declared")
        if not callable(fn):
            raise GraphConfigError(f"Node {name!r} must be callable")
        self.nodes[name] = fn
        return self

    def add_edge(self, source: str, target: str) -> StateGraph:
        if source == START:
            return self.set_entry_point(target)
        self.edges.append((source, target))
        return self

    def add_conditional_edges(
        self, source: str, selector: Selector, mapping: Mapping[Hashable, str]
    ) -> StateGraph:
        self.conditional_edges.append(ConditionalEdge(source, selector, dict(mapping)))
        return self

    def set_entry_point(self, name: str) -> StateGraph:
        self.entry_point = name
        return self

    def compile(
        self,
        *,
        max_steps: int | None = None,
        on_node_error: NodeErrorHandler | None = None,
        audit_field: str | None = None,
        settings: Settings = default_settings,
    ) -> CompiledGraph:
        """Validate the definition and return an executable graph.

        Raises:
            GraphConfigError: listing every problem found, not just the first.
        """
        problems: list[str] = []

        if self.entry_point is None:
            problems.append("No entry point set")
        elif self.entry_point not in self.nodes:
            problems.append(f"Entry point {self.entry_point!r} is not a declared node")

        direct: dict[str, str] = {}
        for source, target in self.edges:
            if source not in self.nodes:
                problems.append(f"Edge source {source!r} is not a declared node")
            if target != END and target not in self.nodes:
                problems.append(f"Edge target {target!r} (from {source!r}) is not a declared node")
            if source in direct:
                problems.append(f"Node {source!r} has more than one direct edge")
            direct[source] = target

        conditional: dict[str, ConditionalEdge] = {}
        for edge in self.conditional_edges:
            if edge.source not in self.nodes:
                problems.append(f"Conditional edge source {edge.source!r} is not a declared node")
            if edge.source in conditional:
                problems.append(f"Node {edge.source!r} has more than one conditional edge set")
            for key, target in edge.mapping.items():
                if target != END and target not in self.nodes:
                    problems.append(
                        f"Conditional target {target!r} for key {key!r} "
                        f"(from {edge.source!r}) is not a declared node"
                    )
            problems.extend(_route_key_problems(edge))
            conditional[edge.source] = edge

        store = StateStore(self.state_schema)
        if audit_field is not None and audit_field not in store.fields:
            problems.append(
                f"Audit field {audit_field!r} is not declared on {self.state_schema.__name__}"
            )

        if problems:
            raise GraphConfigError(problems)

        steps = max_steps if max_steps is not None else settings.max_graph_steps
        if steps < 1:
            raise GraphConfigError(f"max_steps must be at least 1, got {steps}")

        return CompiledGraph(
            nodes=dict(self.nodes),
            edges=direct,
            conditional_edges=conditional,
            entry_point=self.entry_point,
            store=store,
            max_steps=steps,
            on_node_error=on_node_error,
            audit_field=audit_field,
        )


def _route_key_problems(edge: ConditionalEdge) -> list[str]:
    # Enum-keyed mappings must cover the whole enum.
    enum_types = {type(key) for key in edge.mapping if isinstance(key, enum.Enum)}
    if not enum_types:
        return []
    if len(enum_types) > 1 or len(edge.mapping) != sum(
        isinstance(key, enum.Enum) for key in edge.mapping
    ):
        return [f"Conditional mapping from {edge.source!r} mixes route key types"]
    route_type = enum_types.pop()
    missing = [member.name for member in route_type if member not in edge.mapping]
    if missing:
        return [
            f"Conditional mapping from {edge.source!r} does not cover "
            f"{route_type.__name__} members {missing}"
        ]
    return []


class CompiledGraph:
    """Runs a validated graph one node at a time."""

    def __init__(
        self,
        *,
        nodes: dict[str, NodeFn],
        edges: dict[str, str],
        conditional_edges: dict[str, ConditionalEdge],
        entry_point: str,
        store: StateStore,
        max_steps: int,
        on_node_error: NodeErrorHandler | None = None,
        audit_field: str | None = None,
    ) -> None:
        self.nodes = nodes
        self.edges = edges
        self.conditional_edges = conditional_edges
        self.entry_point = entry_point
        self.store = store
        self.max_steps = max_steps
        self.on_node_error = on_node_error
        self.audit_field = audit_field

    async def invoke(self, state: Mapping[str, Any]) -> dict[str, Any]:
        """Run to ``END`` (or the step budget) and return the final state."""
        final = dict(state)
        async for event in self.stream(state):
            final = event.state
        return final

    async def stream(self, state: Mapping[str, Any]) -> AsyncIterator[GraphEvent]:
        """Yield a ``GraphEvent`` after every node execution.

        Each call starts over from ``state``; the input is never mutated.
        """
        current = dict(state)
        node = self.entry_point
        executed = 0

        while node != END:
            if executed >= self.max_steps:
                log.warning("step_budget_exhausted", steps=executed, pending_node=node)
                return
            executed += 1
            log.debug("graph_node_started", node=node, step=executed)

            recorded = self._audit_length(current)
            current = await self._execute(node, current)
            next_node = self._next_node(node, current)

            log.debug("graph_node_finished", node=node, step=executed, next_node=next_node)
            yield GraphEvent(
                node=node,
                state=current,
                step=self._latest_record(current, recorded),
                index=executed,
                next_node=next_node,
            )
            node = next_node

    def _audit_length(self, state: Mapping[str, Any]) -> int:
        if self.audit_field is None:
            return 0
        return len(state.get(self.audit_field) or ())

    def _latest_record(self, state: Mapping[str, Any], before: int) -> Step | None:
        if self.audit_field is None:
            return None
        records = state.get(self.audit_field) or []
        return records[-1] if len(records) > before else None

    async def _execute(self, node: str, state: dict[str, Any]) -> dict[str, Any]:
        try:
            result = self.nodes[node](state)
            if inspect.isawaitable(result):
                result = await result
            if result is not None and not isinstance(result, Mapping):
                raise TypeError(f"Node {node!r} returned {type(result).__name__}, expected a mapping")
            return self.store.merge(state, result)
        except Exception as exc:
            log.exception("graph_node_failed", node=node, error=str(exc))
            if self.on_node_error is None:
                return state
            return self.store.merge(state, self.on_node_error(node, exc))

    def _next_node(self, node: str, state: Mapping[str, Any]) -> str:
        edge = self.conditional_edges.get(node)
        if edge is not None:
            try:
                key = edge.selector(state)
            except Exception as exc:
                log.exception("conditional_route_failed", node=node, error=str(exc))
                return END
            target = edge.mapping.get(key)
            if target is None:
                log.warning("conditional_route_unmapped", node=node, key=repr(key))
                return END
            return target
        return self.edges.get(node, END)
