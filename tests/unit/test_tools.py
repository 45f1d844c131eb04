"""Unit tests for the tool contract, registry and cell tools."""

import pytest

from sheet_copilot.models.workflow import ToolResult
from sheet_copilot.tools.base import BaseTool, ToolContract, ToolRegistry
from sheet_copilot.tools.cells import ReadRangeTool, SmartCellFormattingTool, WriteRangeTool, color_code
from sheet_copilot.tools.metric_resolver import FindMetricArgs, MetricResolver


class Crashing(BaseTool):
    name = "crashing"
    description = "Always raises."
    args_model = FindMetricArgs

    async def _run(self, args):
        raise RuntimeError("disk on fire")


def test_default_registry_holds_five_tools(registry: ToolRegistry) -> None:
    assert registry.names() == [
        "find_financial_metric",
        "list_financial_metrics",
        "read_range",
        "write_range",
        "smart_cell_formatting",
    ]
    assert all(isinstance(tool, ToolContract) for tool in registry)
    assert "read_range" in registry
    assert len(registry.describe()) == 5


def test_registry_rejects_duplicates_and_late_registration(registry: ToolRegistry, deal_workbook) -> None:
    with pytest.raises(ValueError, match="already registered"):
        registry.register(ReadRangeTool(deal_workbook))

    registry.freeze()
    with pytest.raises(RuntimeError, match="frozen"):
        registry.register(Crashing())


def test_schema_uses_camel_case(registry: ToolRegistry) -> None:
    schema = registry.get("find_financial_metric").schema
    assert set(schema["properties"]) == {"metricName", "searchAllSheets"}


@pytest.mark.asyncio
async def test_invalid_arguments_become_failed_result(registry: ToolRegistry) -> None:
    result = await registry.get("find_financial_metric").call({"metricName": ""})

    assert isinstance(result, ToolResult)
    assert not result.success
    assert result.error.startswith("Invalid arguments")


@pytest.mark.asyncio
async def test_unexpected_exception_becomes_failed_result() -> None:
    result = await Crashing().call({"metricName": "IRR"})

    assert not result.success
    assert result.error == "RuntimeError: disk on fire"


@pytest.mark.asyncio
async def test_read_range_with_sheet_reference(deal_workbook) -> None:
    result = await ReadRangeTool(deal_workbook).call({"range": "Model!A10:B10"})

    assert result.success
    assert result.payload["address"] == "Model!A10:B10"
    assert result.payload["values"] == [["Unlevered IRR", 0.253]]
    assert result.payload["formulas"] == [["Unlevered IRR", "=IRR(C20:H20)"]]


@pytest.mark.asyncio
async def test_read_range_rejects_oversized_range(deal_workbook) -> None:
    result = await ReadRangeTool(deal_workbook).call({"range": "A1:ZZ4000"})

    assert not result.success
    assert "2,808,000 cells" in result.error


@pytest.mark.asyncio
async def test_read_range_unknown_sheet(deal_workbook) -> None:
    result = await ReadRangeTool(deal_workbook).call({"sheetName": "Nope", "range": "A1"})

    assert not result.success
    assert result.error == "Sheet 'Nope' does not exist"


@pytest.mark.asyncio
async def test_write_range_invalidates_metric_cache(deal_workbook) -> None:
    resolver = MetricResolver(deal_workbook, cache_ttl=300.0)
    assert (await resolver.resolve("IRR")).raw_value == pytest.approx(0.253)
    tool = WriteRangeTool(deal_workbook, on_write=resolver.invalidate)

    result = await tool.call({"sheetName": "Model", "range": "B10", "values": [[0.31]]})

    assert result.success
    assert result.payload["rowsUpdated"] == 1
    assert (await resolver.resolve("IRR")).raw_value == pytest.approx(0.31)


@pytest.mark.asyncio
async def test_write_range_shape_mismatch(deal_workbook) -> None:
    result = await WriteRangeTool(deal_workbook).call({"range": "A1:B2", "values": [[1, 2, 3]]})

    assert not result.success
    assert "1x3" in result.error


@pytest.mark.asyncio
async def test_smart_formatting_colours_label_and_value(deal_workbook) -> None:
    tool = SmartCellFormattingTool(deal_workbook)

    result = await tool.call({"searchTerm": "unlevered irr", "formatType": "color", "formatValue": "green"})

    assert result.success
    assert result.payload["cellsFound"] == 2
    assert result.payload["cellsFormatted"] == 2
    assert [item["address"] for item in result.payload["results"]] == ["Model!A10", "Model!B10"]
    assert deal_workbook.cell("Model!A10").format["fill"] == "#00FF00"
    assert deal_workbook.cell("Model!B10").format["fill"] == "#00FF00"


@pytest.mark.asyncio
async def test_smart_formatting_without_matches(deal_workbook) -> None:
    result = await SmartCellFormattingTool(deal_workbook).call({"searchTerm": "goodwill"})

    assert not result.success
    assert "goodwill" in result.error


def test_color_code_passes_through_unknown_values() -> None:
    assert color_code("Light Blue") == "#ADD8E6"
    assert color_code("#123456") == "#123456"
