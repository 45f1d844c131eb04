"""Range read/write and label-driven formatting tools."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Literal

import structlog
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from sheet_copilot.models.workflow import ToolResult
from sheet_copilot.tools.base import BaseTool
from sheet_copilot.workbook.addressing import cell_address, split_sheet
from sheet_copilot.workbook.source import CellMatch, CellQuery, DataSource

log = structlog.get_logger(__name__)

COLOR_CODES: dict[str, str] = {
    "red": "#FF0000",
    "green": "#00FF00",
    "blue": "#0000FF",
    "yellow": "#FFFF00",
    "orange": "#FFA500",
    "purple": "#800080",
    "pink": "#FFC0CB",
    "light green": "#90EE90",
    "light blue": "#ADD8E6",
    "light gray": "#D3D3D3",
    "dark gray": "#A9A9A9",
}


def color_code(name: str) -> str:
    return COLOR_CODES.get(name.strip().lower(), name)


class _WireArgs(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class ReadRangeArgs(_WireArgs):
    sheet_name: str | None = None
    range: str = Field(min_length=1, description="e.g. 'A1:B10' or 'Model!B10'")


class WriteRangeArgs(_WireArgs):
    sheet_name: str | None = None
    range: str = Field(min_length=1)
    values: list[list[Any]] = Field(min_length=1)


class FormattingArgs(_WireArgs):
    search_term: str = Field(min_length=1, description="Label to look for, e.g. 'unlevered irr'")
    format_type: Literal["color", "bold", "italic", "border"] = "color"
    format_value: str = "green"
    search_all_sheets: bool = True

    @field_validator("search_term")
    @classmethod
    def strip_term(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            raise ValueError("search term is blank")
        return stripped


def _target(sheet_name: str | None, reference: str) -> tuple[str | None, str]:
    # An explicit "Sheet!A1" reference wins over sheetName.
    sheet, address = split_sheet(reference)
    return sheet or sheet_name, address


class ReadRangeTool(BaseTool):
    name = "read_range"
    description = (
        "Read values or formulas from a range in the active workbook. "
        "Useful for fetching financial data like revenue projections."
    )
    args_model = ReadRangeArgs

    def __init__(self, source: DataSource) -> None:
        self.source = source

    async def _run(self, args: ReadRangeArgs) -> ToolResult:
        sheet, address = _target(args.sheet_name, args.range)
        data = await self.source.read_range(sheet, address)
        return ToolResult.ok(
            address=data.address,
            sheet=data.sheet,
            values=data.values,
            formulas=data.formulas,
            summary=f"Read {data.address}: {len(data.values)} rows",
        )


class WriteRangeTool(BaseTool):
    """Writes values immediately. There is no transaction and no rollback."""

    name = "write_range"
    description = (
        "Write values or formulas to a range. Use for updating financial "
        "assumptions, e.g. changing discount rates."
    )
    args_model = WriteRangeArgs

    def __init__(self, source: DataSource, on_write: Callable[[], None] | None = None) -> None:
        self.source = source
        self.on_write = on_write

    async def _run(self, args: WriteRangeArgs) -> ToolResult:
        sheet, address = _target(args.sheet_name, args.range)
        ack = await self.source.write_range(sheet, address, args.values)
        if self.on_write is not None:
            self.on_write()
        return ToolResult.ok(
            address=ack.address,
            rowsUpdated=ack.rows,
            columnsUpdated=ack.columns,
            message=f"Updated {ack.address}",
        )


class SmartCellFormattingTool(BaseTool):
    """Finds cells by label text and formats each label plus its value cell.

    Cells are formatted one by one; a failure on one cell is recorded and
    the rest still get formatted.
    """

    name = "smart_cell_formatting"
    description = (
        "Find and format cells based on their content or labels, "
        "not just the selected cells."
    )
    args_model = FormattingArgs

    def __init__(self, source: DataSource) -> None:
        self.source = source

    async def _targets(self, args: FormattingArgs) -> list[CellMatch]:
        sheet = None
        if not args.search_all_sheets:
            names = await self.source.sheet_names()
            sheet = names[0] if names else None
        labels = await self.source.find_cells(CellQuery(text=args.search_term, sheet=sheet))

        targets: list[CellMatch] = []
        for label in labels:
            targets.append(label)
            neighbour = await self.source.read_range(label.sheet, cell_address(label.row, label.col + 1))
            value = neighbour.values[0][0] if neighbour.values and neighbour.values[0] else None
            if value not in (None, ""):
                targets.append(
                    CellMatch(
                        sheet=label.sheet,
                        cell=cell_address(label.row, label.col + 1),
                        row=label.row,
                        col=label.col + 1,
                        value=value,
                    )
                )
        return targets

    async def _run(self, args: FormattingArgs) -> ToolResult:
        targets = await self._targets(args)
        if not targets:
            return ToolResult.fail(
                f"No cells found containing {args.search_term!r}",
                searchTerm=args.search_term,
                suggestion="Try a different search term or check spelling",
            )

        value = color_code(args.format_value) if args.format_type == "color" else args.format_value
        results: list[dict[str, Any]] = []
        for target in targets:
            try:
                await self.source.apply_format(target.sheet, target.cell, args.format_type, value)
            except (KeyError, ValueError) as exc:
                log.warning("cell_format_failed", address=target.address, error=str(exc))
                results.append({"address": target.address, "success": False, "error": str(exc)})
            else:
                results.append({"address": target.address, "content": target.value, "success": True})

        formatted = sum(1 for result in results if result["success"])
        message = (
            f"Found {len(targets)} cells matching {args.search_term!r} "
            f"and formatted {formatted} of them"
        )
        payload = {
            "searchTerm": args.search_term,
            "formatType": args.format_type,
            "formatValue": value,
            "cellsFound": len(targets),
            "cellsFormatted": formatted,
            "results": results,
            "message": message,
        }
        if formatted == 0:
            return ToolResult.fail(message, **payload)
        return ToolResult.ok(**payload)
