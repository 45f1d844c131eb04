"""Unit tests for metric location, validation and arbitration."""

import pytest

from sheet_copilot.models.metrics import ConfidenceTier, Strategy, definition_for
from sheet_copilot.tools.metric_resolver import (
    FindFinancialMetricTool,
    ListFinancialMetricsTool,
    MetricResolver,
    coerce_cell,
    looks_like_period,
    parse_numeric,
)
from sheet_copilot.workbook.source import InMemoryWorkbook


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def workbook(values, formulas=None, name="Sheet1") -> InMemoryWorkbook:
    return InMemoryWorkbook.from_grids({name: values}, formulas={name: formulas} if formulas else None)


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("$1,200", 1200.0),
        ("(350)", -350.0),
        ("25.3%", 0.253),
        ("2.5x", 2.5),
        ("n/a", None),
        ("", None),
        ("1_200", None),
        ("2_5%", None),
    ],
)
def test_parse_numeric(text: str, expected: float | None) -> None:
    result = parse_numeric(text)
    if expected is None:
        assert result is None
    else:
        assert result == pytest.approx(expected)


def test_coerce_cell_ignores_formula_text_and_booleans() -> None:
    assert coerce_cell("=C4/C3") is None
    assert coerce_cell(True) is None
    assert coerce_cell(3) == 3.0
    assert coerce_cell(float("nan")) is None


def test_period_headers() -> None:
    assert looks_like_period(2025)
    assert looks_like_period("FY2024")
    assert looks_like_period("Year 3")
    assert not looks_like_period(1999)
    assert not looks_like_period("Total")


@pytest.mark.asyncio
async def test_right_adjacent_value() -> None:
    resolver = MetricResolver(workbook([["IRR", None, 0.18]]))

    found = await resolver.resolve("IRR")

    assert found is not None
    assert found.cell == "C1"
    assert found.strategy is Strategy.RIGHT_ADJACENT
    assert found.formatted_value == "18.0%"


@pytest.mark.asyncio
async def test_value_below_label() -> None:
    resolver = MetricResolver(workbook([["MOIC"], [2.5]]))

    found = await resolver.resolve("moic")

    assert found is not None
    assert found.cell == "A2"
    assert found.strategy is Strategy.BELOW
    assert found.formatted_value == "2.50x"


@pytest.mark.asyncio
async def test_inline_colon_value_is_medium_confidence() -> None:
    resolver = MetricResolver(workbook([["IRR: 22.5%"]]))

    found = await resolver.resolve("IRR")

    assert found is not None
    assert found.strategy is Strategy.INLINE_COLON
    assert found.confidence_tier is ConfidenceTier.MEDIUM
    assert found.raw_value == pytest.approx(0.225)


@pytest.mark.asyncio
async def test_period_grid_value() -> None:
    values = [
        [None, None, None, None, None, None, 2025],
        ["Revenue", None, None, None, None, None, 5_400_000],
    ]
    resolver = MetricResolver(workbook(values))

    found = await resolver.resolve("Revenue")

    assert found is not None
    assert found.strategy is Strategy.GRID_WITH_PERIOD
    assert found.cell == "G2"
    assert found.period == "2025"
    assert found.formatted_value == "$5.4M"


@pytest.mark.asyncio
async def test_out_of_range_values_are_rejected() -> None:
    resolver = MetricResolver(workbook([["IRR", 45.0], ["MOIC", -1.0], ["Debt", 0]]))

    assert await resolver.resolve("IRR") is None
    assert await resolver.resolve("MOIC") is None
    assert await resolver.resolve("Debt") is None


@pytest.mark.asyncio
async def test_formula_cell_beats_adjacent_literal() -> None:
    values = [[None] * 4 for _ in range(5)]
    values[2][2], values[3][2] = 10.0, 32.0
    values[4][1], values[4][2], values[4][3] = "MOIC", 3.2, 3.2
    formulas = [[None] * 4 for _ in range(5)]
    formulas[4][2] = "=C4/C3"

    found = await MetricResolver(workbook(values, formulas)).resolve("MOIC")

    assert found is not None
    assert found.cell == "C5"
    assert found.has_formula
    assert found.formula == "=C4/C3"


@pytest.mark.asyncio
async def test_formula_backed_occurrence_wins_over_earlier_literal() -> None:
    values = [["MOIC", 2.0], [None, None], ["Gross MOIC", 2.1]]
    formulas = [[None, None], [None, None], [None, "=B10/B9"]]

    found = await MetricResolver(workbook(values, formulas)).resolve("MOIC")

    assert found is not None
    assert found.cell == "B3"


@pytest.mark.asyncio
async def test_high_confidence_beats_inline_colon() -> None:
    values = [["IRR: 15%", None], [None, None], ["Project IRR", 0.2]]

    found = await MetricResolver(workbook(values)).resolve("IRR")

    assert found is not None
    assert found.cell == "B3"
    assert found.confidence_tier is ConfidenceTier.HIGH


@pytest.mark.asyncio
async def test_equal_candidates_keep_the_first_scanned() -> None:
    values = [["IRR", 0.1], ["IRR", 0.3]]

    found = await MetricResolver(workbook(values)).resolve("IRR")

    assert found is not None
    assert found.cell == "B1"


@pytest.mark.asyncio
async def test_search_all_sheets_flag() -> None:
    book = InMemoryWorkbook.from_grids({"Cover": [["Title"]], "Returns": [["IRR", 0.19]]})
    resolver = MetricResolver(book)

    assert await resolver.resolve("IRR", search_all_sheets=False) is None
    found = await resolver.resolve("IRR")
    assert found is not None
    assert found.address == "Returns!B1"


@pytest.mark.asyncio
async def test_cache_expires_after_ttl() -> None:
    book = workbook([["IRR", 0.1]])
    clock = FakeClock()
    resolver = MetricResolver(book, cache_ttl=30.0, clock=clock)

    assert (await resolver.resolve("IRR")).raw_value == pytest.approx(0.1)
    await book.write_range("Sheet1", "B1", [[0.2]])

    clock.now += 10
    assert (await resolver.resolve("IRR")).raw_value == pytest.approx(0.1)

    clock.now += 25
    assert (await resolver.resolve("IRR")).raw_value == pytest.approx(0.2)


@pytest.mark.asyncio
async def test_refresh_evicts_expired_lookups() -> None:
    book = workbook([["NPV", 1200], ["IRR", 0.1]])
    clock = FakeClock()
    resolver = MetricResolver(book, cache_ttl=30.0, clock=clock)

    await resolver.resolve("NPV")
    assert ("npv", True) in resolver._cache

    clock.now += 31
    await resolver.resolve("IRR")

    assert ("npv", True) not in resolver._cache
    assert ("irr", True) in resolver._cache


@pytest.mark.asyncio
async def test_invalidate_drops_cached_values() -> None:
    book = workbook([["IRR", 0.1]])
    resolver = MetricResolver(book, cache_ttl=300.0, clock=FakeClock())
    await resolver.resolve("IRR")

    await book.write_range("Sheet1", "B1", [[0.4]])
    resolver.invalidate()

    assert (await resolver.resolve("IRR")).raw_value == pytest.approx(0.4)


def test_unknown_metric_searches_for_its_own_name() -> None:
    definition = definition_for("NPV")
    assert definition.name == "NPV"
    assert definition.matches("npv (10%)")


def test_blank_metric_name_has_no_definition() -> None:
    with pytest.raises(ValueError, match="blank"):
        definition_for("   ")


@pytest.mark.asyncio
async def test_find_tool_rejects_blank_metric_name(deal_workbook) -> None:
    tool = FindFinancialMetricTool(MetricResolver(deal_workbook))

    result = await tool.call({"metricName": "   "})

    assert not result.success
    assert result.error.startswith("Invalid arguments")


@pytest.mark.asyncio
async def test_find_tool_strips_metric_name(deal_workbook) -> None:
    result = await FindFinancialMetricTool(MetricResolver(deal_workbook)).call({"metricName": "  IRR "})

    assert result.success
    assert result.payload["metric"] == "IRR"


@pytest.mark.asyncio
async def test_find_tool_payload(deal_workbook) -> None:
    tool = FindFinancialMetricTool(MetricResolver(deal_workbook))

    result = await tool.call({"metricName": "IRR"})

    assert result.success
    assert result.payload["metric"] == "IRR"
    assert result.payload["value"] == "25.3%"
    assert result.payload["location"] == "B10"
    assert result.payload["formula"] == "=IRR(C20:H20)"


@pytest.mark.asyncio
async def test_find_tool_reports_available_metrics_when_missing(deal_workbook) -> None:
    tool = FindFinancialMetricTool(MetricResolver(deal_workbook))

    result = await tool.call({"metricName": "NPV"})

    assert not result.success
    assert "not found" in result.error
    assert set(result.payload["availableMetrics"]) == {"IRR", "MOIC", "Revenue", "EBITDA", "Equity"}


@pytest.mark.asyncio
async def test_list_tool(deal_workbook) -> None:
    result = await ListFinancialMetricsTool(MetricResolver(deal_workbook)).call({})

    assert result.success
    assert result.payload["count"] == 5
    assert result.payload["metrics"]["MOIC"]["value"] == "2.75x"
