"""State reducers and the StateStore that applies them.

A state schema is a ``TypedDict`` whose fields are annotated with their
reducer, the same way LangGraph reads ``Annotated[list, add_messages]``:

    class State(TypedDict, total=False):
        messages: Annotated[list[Message], append]
        intent: Annotated[Intent | None, overwrite]

Fields without a reducer annotation are overwritten.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from typing import Annotated, Any, get_args, get_origin, get_type_hints

import structlog

log = structlog.get_logger(__name__)

Reducer = Callable[[Any, Any], Any]


def overwrite(current: Any, update: Any) -> Any:
    return update


def append(current: list[Any] | None, update: Iterable[Any]) -> list[Any]:
    """Concatenate, keeping existing items first."""
    return [*(current or ()), *update]


def merge_mapping(current: Mapping[str, Any] | None, update: Mapping[str, Any]) -> dict[str, Any]:
    """Shallow merge by key; the update wins on collisions."""
    return {**(current or {}), **update}


def _reducer_from_hint(hint: Any) -> Reducer:
    if get_origin(hint) is Annotated:
        for meta in get_args(hint)[1:]:
            if callable(meta):
                return meta
    return overwrite


class StateStore:
    """Merges partial node outputs into a state according to per-field reducers."""

    def __init__(self, schema: type) -> None:
        hints = get_type_hints(schema, include_extras=True)
        self.schema = schema
        self.reducers: dict[str, Reducer] = {
            name: _reducer_from_hint(hint) for name, hint in hints.items()
        }

    @property
    def fields(self) -> tuple[str, ...]:
        return tuple(self.reducers)

    def merge(self, state: Mapping[str, Any], partial: Mapping[str, Any] | None) -> dict[str, Any]:
        """Return a new state with ``partial`` folded in.

        Neither argument is mutated. Fields missing from ``partial`` keep the
        exact object they had in ``state``.

        Raises:
            KeyError: ``partial`` names a field the schema does not declare.
        """
        merged = dict(state)
        if not partial:
            return merged

        unknown = [key for key in partial if key not in self.reducers]
        if unknown:
            raise KeyError(f"Undeclared state fields for {self.schema.__name__}: {unknown}")

        for key, update in partial.items():
            merged[key] = self.reducers[key](state.get(key), update)
        return merged
