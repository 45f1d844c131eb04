"""Tool contract and the name-keyed registry tools are looked up through."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Iterator, Mapping
from typing import Any, ClassVar, Protocol, runtime_checkable

import structlog
from pydantic import BaseModel, ValidationError

from sheet_copilot.models.workflow import ToolResult

log = structlog.get_logger(__name__)


@runtime_checkable
class ToolContract(Protocol):
    """Anything with a name, description, argument schema and async ``call``.

    ``call`` reports failure through ``ToolResult(success=False)`` instead of
    raising.
    """

    name: str
    description: str

    @property
    def schema(self) -> dict[str, Any]: ...

    async def call(self, args: Mapping[str, Any] | None = None) -> ToolResult: ...


class BaseTool(ABC):
    """Validates arguments with ``args_model`` and guards ``_run``.

    Subclasses set ``name``, ``description`` and ``args_model`` and implement
    ``_run``. Lookup errors (``KeyError``) and bad input (``ValueError``) from
    the data source are expected and reported without a traceback.
    """

    name: ClassVar[str]
    description: ClassVar[str]
    args_model: ClassVar[type[BaseModel]]

    @property
    def schema(self) -> dict[str, Any]:
        return self.args_model.model_json_schema(by_alias=True)

    async def call(self, args: Mapping[str, Any] | None = None) -> ToolResult:
        try:
            parsed = self.args_model.model_validate(dict(args or {}))
        except ValidationError as exc:
            log.info("tool_args_invalid", tool=self.name, errors=exc.error_count())
            return ToolResult.fail(f"Invalid arguments: {_describe(exc)}")

        try:
            return await self._run(parsed)
        except KeyError as exc:
            message = exc.args[0] if exc.args else repr(exc)
            log.info("tool_lookup_failed", tool=self.name, error=message)
            return ToolResult.fail(str(message))
        except ValueError as exc:
            log.info("tool_input_rejected", tool=self.name, error=str(exc))
            return ToolResult.fail(str(exc))
        except Exception as exc:
            log.exception("tool_crashed", tool=self.name)
            return ToolResult.fail(f"{type(exc).__name__}: {exc}")

    @abstractmethod
    async def _run(self, args: Any) -> ToolResult:
        raise NotImplementedError


def _describe(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        where = ".".join(str(part) for part in error["loc"]) or "args"
        parts.append(f"{where}: {error['msg']}")
    return "; ".join(parts)


class ToolRegistry:
    """Name-keyed tool lookup, populated at startup and frozen once a graph uses it."""

    def __init__(self, tools: Iterable[ToolContract] = ()) -> None:
        self._tools: dict[str, ToolContract] = {}
        self._frozen = False
        for tool in tools:
            self.register(tool)

    def register(self, tool: ToolContract) -> None:
        if self._frozen:
            raise RuntimeError("Tool registry is frozen; register tools before building the graph")
        if tool.name in self._tools:
            raise ValueError(f"Tool {tool.name!r} is already registered")
        self._tools[tool.name] = tool
        log.debug("tool_registered", tool=tool.name)

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def get(self, name: str) -> ToolContract | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def describe(self) -> list[dict[str, Any]]:
        return [
            {"name": tool.name, "description": tool.description, "schema": tool.schema}
            for tool in self._tools.values()
        ]

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[ToolContract]:
        return iter(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)
