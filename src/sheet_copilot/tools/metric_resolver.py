"""Locate named financial values in an unstructured grid of cells.

For every cell whose text matches a metric's label terms, four strategies
are tried in order and the first that yields a valid number wins for that
label:

1. ``right_adjacent`` - up to 5 cells to the right in the same row.
2. ``below`` - up to 3 cells below in the same column.
3. ``inline_colon`` - the label itself reads ``"IRR: 25%"``.
4. ``grid_with_period`` - a year/period header sits in the row above,
   within 10 columns; take the label row's value under it.

Candidates from different label occurrences are then arbitrated: high
confidence beats medium, a formula-backed cell beats a literal, a
period-grid match beats the others, and ties keep the first one scanned.
"""

from __future__ import annotations

import math
import numbers
import re
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from sheet_copilot.config.settings import Settings, settings as default_settings
from sheet_copilot.models.metrics import (
    METRIC_CATALOG,
    ConfidenceTier,
    MetricCandidate,
    MetricDefinition,
    Strategy,
    definition_for,
)
from sheet_copilot.models.workflow import ToolResult
from sheet_copilot.tools.base import BaseTool
from sheet_copilot.workbook.addressing import cell_address
from sheet_copilot.workbook.source import DataSource, RangeData

log = structlog.get_logger(__name__)

RIGHT_SCAN = 5
BELOW_SCAN = 3
PERIOD_SCAN = 10

_CLEAN = re.compile(r"[\s,$€£¥]")
_YEAR_IN_TEXT = re.compile(r"20\d{2}")
_PERIOD_LABEL = re.compile(r"^(year|yr|y|period|p)\s*\d+$", re.IGNORECASE)


def parse_numeric(text: str) -> float | None:
    """Parse ``"$1,200"``, ``"(350)"``, ``"25.3%"``, ``"2.5x"`` and plain numbers."""
    cleaned = _CLEAN.sub("", text)
    negative = cleaned.startswith("(") and cleaned.endswith(")")
    if negative:
        cleaned = cleaned[1:-1]

    scale = 1.0
    if cleaned.endswith("%"):
        cleaned, scale = cleaned[:-1], 0.01
    elif cleaned.lower().endswith("x"):
        cleaned = cleaned[:-1]

    # float() would read digit grouping such as "1_200".
    if "_" in cleaned:
        return None
    try:
        number = float(cleaned)
    except ValueError:
        return None
    if not math.isfinite(number):
        return None
    number *= scale
    return -number if negative else number


def coerce_cell(value: Any) -> float | None:
    """Numeric reading of a cell value, or None. Formula text is never a value."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, numbers.Real):
        number = float(value)
        return number if math.isfinite(number) else None
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped or stripped.startswith("="):
            return None
        return parse_numeric(stripped)
    return None


def looks_like_period(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, numbers.Real):
        return 2020 <= value <= 2030
    if isinstance(value, str):
        stripped = value.strip()
        return bool(_YEAR_IN_TEXT.search(stripped) or _PERIOD_LABEL.match(stripped))
    return False


def _period_text(header: Any) -> str:
    if isinstance(header, float) and header.is_integer():
        return str(int(header))
    return str(header).strip()


def _rank(candidate: MetricCandidate) -> tuple[bool, bool, bool]:
    return (
        candidate.confidence_tier is ConfidenceTier.HIGH,
        candidate.has_formula,
        candidate.strategy is Strategy.GRID_WITH_PERIOD,
    )


def is_better(new: MetricCandidate, existing: MetricCandidate) -> bool:
    """True only when ``new`` strictly outranks ``existing``."""
    return _rank(new) > _rank(existing)


def _at(grid: list[list[Any]], row: int, col: int) -> Any:
    if 0 <= row < len(grid) and 0 <= col < len(grid[row]):
        return grid[row][col]
    return None


def _candidate(
    grid: RangeData,
    label_row: int,
    label_col: int,
    row: int,
    col: int,
    definition: MetricDefinition,
    strategy: Strategy,
    tier: ConfidenceTier = ConfidenceTier.HIGH,
    number: float | None = None,
    period: str | None = None,
) -> MetricCandidate | None:
    if number is None:
        number = coerce_cell(_at(grid.values, row, col))
    if number is None or not definition.is_valid(number):
        return None
    formula = _at(grid.formulas, row, col)
    has_formula = isinstance(formula, str) and formula.startswith("=")
    return MetricCandidate(
        metric=definition.name,
        sheet=grid.sheet,
        cell=cell_address(row, col),
        label=str(_at(grid.values, label_row, label_col)).strip(),
        raw_value=number,
        formatted_value=definition.format(number),
        strategy=strategy,
        confidence_tier=tier,
        has_formula=has_formula,
        formula=formula if has_formula else None,
        period=period,
    )


def find_associated_value(
    grid: RangeData, row: int, col: int, definition: MetricDefinition
) -> MetricCandidate | None:
    """Try each strategy for the label at (row, col); first valid value wins."""
    values = grid.values

    for offset in range(1, RIGHT_SCAN + 1):
        if col + offset >= len(values[row]):
            break
        found = _candidate(grid, row, col, row, col + offset, definition, Strategy.RIGHT_ADJACENT)
        if found:
            return found

    for offset in range(1, BELOW_SCAN + 1):
        if row + offset >= len(values):
            break
        found = _candidate(grid, row, col, row + offset, col, definition, Strategy.BELOW)
        if found:
            return found

    label = str(values[row][col])
    if label.count(":") == 1:
        number = parse_numeric(label.split(":")[1].strip())
        if number is not None:
            found = _candidate(
                grid, row, col, row, col, definition, Strategy.INLINE_COLON,
                tier=ConfidenceTier.MEDIUM, number=number,
            )
            if found:
                return found

    if row > 0:
        above = values[row - 1]
        for header_col in range(col + 1, min(col + 1 + PERIOD_SCAN, len(above))):
            header = above[header_col]
            if not looks_like_period(header):
                continue
            found = _candidate(
                grid, row, col, row, header_col, definition, Strategy.GRID_WITH_PERIOD,
                period=_period_text(header),
            )
            if found:
                return found

    return None


def scan(
    grids: Iterable[RangeData], definitions: Iterable[MetricDefinition]
) -> dict[str, MetricCandidate]:
    """Best candidate per metric name across all grids, in scan order."""
    definitions = list(definitions)
    best: dict[str, MetricCandidate] = {}
    for grid in grids:
        for r, row in enumerate(grid.values):
            for c, value in enumerate(row):
                if not isinstance(value, str):
                    continue
                text = value.strip().lower()
                if not text:
                    continue
                for definition in definitions:
                    if not definition.matches(text):
                        continue
                    found = find_associated_value(grid, r, c, definition)
                    if found is None:
                        continue
                    current = best.get(definition.name)
                    if current is None or is_better(found, current):
                        best[definition.name] = found
                        log.debug(
                            "metric_candidate_selected",
                            metric=definition.name,
                            address=found.address,
                            strategy=found.strategy.value,
                        )
    return best


@dataclass(frozen=True)
class _CacheEntry:
    stored_at: float
    candidate: MetricCandidate | None


class MetricResolver:
    """Scans a data source for metric values and caches results briefly.

    Args:
        source: Where the grids come from.
        cache_ttl: Freshness window in seconds; defaults to settings.
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        source: DataSource,
        *,
        cache_ttl: float | None = None,
        clock: Callable[[], float] = time.monotonic,
        settings: Settings = default_settings,
    ) -> None:
        self.source = source
        self.cache_ttl = settings.metric_cache_ttl_seconds if cache_ttl is None else cache_ttl
        self._clock = clock
        self._cache: dict[tuple[str, bool], _CacheEntry] = {}

    def invalidate(self) -> None:
        self._cache.clear()

    def _fresh(self, name: str, search_all_sheets: bool) -> _CacheEntry | None:
        entry = self._cache.get((name.lower(), search_all_sheets))
        if entry is None or self._clock() - entry.stored_at >= self.cache_ttl:
            return None
        return entry

    async def _grids(self, search_all_sheets: bool) -> list[RangeData]:
        names = await self.source.sheet_names()
        if not search_all_sheets:
            names = names[:1]
        return [await self.source.read_range(name) for name in names]

    async def _refresh(
        self, definitions: list[MetricDefinition], search_all_sheets: bool
    ) -> dict[str, MetricCandidate]:
        grids = await self._grids(search_all_sheets)
        found = scan(grids, definitions)
        now = self._clock()
        stale = [
            key for key, entry in self._cache.items() if now - entry.stored_at >= self.cache_ttl
        ]
        for key in stale:
            del self._cache[key]
        for definition in definitions:
            key = (definition.name.lower(), search_all_sheets)
            self._cache[key] = _CacheEntry(now, found.get(definition.name))
        log.info(
            "metrics_scanned",
            sheets=len(grids),
            searched=len(definitions),
            found=sorted(found),
            evicted=len(stale),
        )
        return found

    async def resolve(self, metric_name: str, *, search_all_sheets: bool = True) -> MetricCandidate | None:
        definition = definition_for(metric_name)
        entry = self._fresh(definition.name, search_all_sheets)
        if entry is not None:
            log.debug("metric_cache_hit", metric=definition.name)
            return entry.candidate

        definitions = list(METRIC_CATALOG)
        if definition not in definitions:
            definitions.append(definition)
        found = await self._refresh(definitions, search_all_sheets)
        return found.get(definition.name)

    async def resolve_all(self, *, search_all_sheets: bool = True) -> dict[str, MetricCandidate]:
        """Best candidate for every catalog metric that exists in the workbook."""
        entries = [self._fresh(d.name, search_all_sheets) for d in METRIC_CATALOG]
        if all(entry is not None for entry in entries):
            log.debug("metric_cache_hit", metric="*")
            return {
                d.name: entry.candidate
                for d, entry in zip(METRIC_CATALOG, entries)
                if entry.candidate is not None
            }
        return await self._refresh(list(METRIC_CATALOG), search_all_sheets)


class _WireArgs(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class FindMetricArgs(_WireArgs):
    metric_name: str = Field(min_length=1, description="Metric to find, e.g. 'IRR', 'MOIC', 'Revenue'")
    search_all_sheets: bool = Field(default=True, description="Search every sheet, not only the first")

    @field_validator("metric_name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            raise ValueError("metric name is blank")
        return stripped


class ListMetricsArgs(_WireArgs):
    search_all_sheets: bool = True


class FindFinancialMetricTool(BaseTool):
    name = "find_financial_metric"
    description = (
        "Search for and locate financial metrics like IRR, MOIC, Revenue in the "
        "workbook with precise cell locations."
    )
    args_model = FindMetricArgs

    def __init__(self, resolver: MetricResolver) -> None:
        self.resolver = resolver

    async def _run(self, args: FindMetricArgs) -> ToolResult:
        candidate = await self.resolver.resolve(
            args.metric_name, search_all_sheets=args.search_all_sheets
        )
        if candidate is None:
            available = await self.resolver.resolve_all(search_all_sheets=args.search_all_sheets)
            log.info("metric_not_found", metric=args.metric_name, available=list(available))
            return ToolResult.fail(
                f"Metric {args.metric_name!r} not found in workbook",
                message="not found",
                metric=args.metric_name,
                availableMetrics=list(available),
                suggestion="Try searching for one of the available metrics listed above",
            )
        return ToolResult.ok(**candidate.to_payload())


class ListFinancialMetricsTool(BaseTool):
    name = "list_financial_metrics"
    description = "List every known financial metric found in the workbook with its value and location."
    args_model = ListMetricsArgs

    def __init__(self, resolver: MetricResolver) -> None:
        self.resolver = resolver

    async def _run(self, args: ListMetricsArgs) -> ToolResult:
        found = await self.resolver.resolve_all(search_all_sheets=args.search_all_sheets)
        if not found:
            return ToolResult.fail("No financial metrics found in the workbook", metrics={})
        return ToolResult.ok(
            count=len(found),
            metrics={name: candidate.to_payload() for name, candidate in found.items()},
        )
