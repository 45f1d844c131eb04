"""Tabular data source the tools read from and write to.

``DataSource`` is the only interface tools depend on. ``InMemoryWorkbook``
implements it over plain Python grids so the assistant can run against
CSV/JSON exports, pandas DataFrames, or test fixtures.
"""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

import pandas as pd
import structlog
from pydantic import BaseModel, ConfigDict

from sheet_copilot.config.settings import Settings, settings as default_settings
from sheet_copilot.workbook.addressing import (
    cell_address,
    parse_cell,
    parse_range,
    range_address,
    split_sheet,
)

log = structlog.get_logger(__name__)

Grid = list[list[Any]]

FORMAT_TYPES = ("color", "bold", "italic", "border")


class RangeData(BaseModel):
    """Values, formulas and number formats of a rectangular block of cells.

    For cells without a formula, ``formulas`` repeats the value, matching
    what spreadsheet hosts return.
    """

    sheet: str
    address: str
    values: Grid
    formulas: Grid
    number_formats: Grid


class WriteAck(BaseModel):
    sheet: str
    address: str
    rows: int
    columns: int


class CellQuery(BaseModel):
    text: str
    sheet: str | None = None
    match_case: bool = False


class CellMatch(BaseModel):
    model_config = ConfigDict(frozen=True)

    sheet: str
    cell: str
    row: int
    col: int
    value: Any

    @property
    def address(self) -> str:
        return f"{self.sheet}!{self.cell}"


class DataSource(Protocol):
    async def sheet_names(self) -> list[str]: ...

    async def read_range(self, sheet: str | None = None, range: str | None = None) -> RangeData: ...

    async def write_range(
        self, sheet: str | None, range: str, values: Sequence[Sequence[Any]]
    ) -> WriteAck: ...

    async def find_cells(self, query: CellQuery) -> list[CellMatch]: ...

    async def apply_format(
        self, sheet: str, address: str, format_type: str, format_value: str
    ) -> None: ...


@dataclass
class Cell:
    value: Any = None
    formula: str | None = None
    number_format: str = "General"
    format: dict[str, Any] = field(default_factory=dict)


class Worksheet:
    def __init__(self, name: str) -> None:
        self.name = name
        self.cells: dict[tuple[int, int], Cell] = {}

    def get(self, row: int, col: int) -> Cell | None:
        return self.cells.get((row, col))

    def ensure(self, row: int, col: int) -> Cell:
        return self.cells.setdefault((row, col), Cell())

    def used_extent(self) -> tuple[int, int]:
        """Rows and columns spanned from A1 to the last non-empty cell."""
        occupied = [
            key for key, cell in self.cells.items()
            if cell.value not in (None, "") or cell.formula
        ]
        if not occupied:
            return 0, 0
        return max(r for r, _ in occupied) + 1, max(c for _, c in occupied) + 1


class InMemoryWorkbook:
    """A workbook held in memory. Formulas are stored, never evaluated.

    Explicit ranges passed to ``read_range`` may cover at most ``max_cells``
    cells (``settings.max_range_cells`` by default).
    """

    def __init__(
        self,
        sheets: Sequence[Worksheet] = (),
        *,
        max_cells: int | None = None,
        settings: Settings = default_settings,
    ) -> None:
        self.sheets: dict[str, Worksheet] = {sheet.name: sheet for sheet in sheets}
        self.max_cells = settings.max_range_cells if max_cells is None else max_cells

    # ── Construction ──────────────────────────────────────────────────────

    @classmethod
    def from_grids(
        cls,
        values: Mapping[str, Sequence[Sequence[Any]]],
        formulas: Mapping[str, Sequence[Sequence[Any]]] | None = None,
        number_formats: Mapping[str, Sequence[Sequence[Any]]] | None = None,
    ) -> InMemoryWorkbook:
        """Build from row-major grids keyed by sheet name.

        ``formulas`` grids hold a formula string (``"=C4/C3"``) where a cell is
        calculated; the evaluated result stays in ``values``.
        """
        formulas = formulas or {}
        number_formats = number_formats or {}
        sheets = []
        for name, grid in values.items():
            sheet = Worksheet(name)
            for r, row in enumerate(grid):
                for c, value in enumerate(row):
                    if value is None or value == "":
                        continue
                    sheet.ensure(r, c).value = value
            for r, row in enumerate(formulas.get(name, ())):
                for c, formula in enumerate(row):
                    if isinstance(formula, str) and formula.startswith("="):
                        sheet.ensure(r, c).formula = formula
            for r, row in enumerate(number_formats.get(name, ())):
                for c, number_format in enumerate(row):
                    if number_format:
                        sheet.ensure(r, c).number_format = str(number_format)
            sheets.append(sheet)
        return cls(sheets)

    @classmethod
    def from_frames(
        cls, frames: Mapping[str, pd.DataFrame], *, include_header: bool = False
    ) -> InMemoryWorkbook:
        grids: dict[str, Grid] = {}
        for name, frame in frames.items():
            cleaned = frame.astype(object).where(frame.notna(), None)
            rows = cleaned.values.tolist()
            if include_header:
                rows.insert(0, [str(column) for column in frame.columns])
            grids[name] = rows
        return cls.from_grids(grids)

    @classmethod
    def load(cls, path: str | Path) -> InMemoryWorkbook:
        """Load a ``.csv`` (one sheet named after the file) or ``.json`` workbook.

        The JSON layout is ``{"Sheet": {"values": [[...]], "formulas": [[...]],
        "numberFormats": [[...]]}}``; only ``values`` is required.
        """
        path = Path(path)
        suffix = path.suffix.lower()
        if suffix == ".csv":
            frame = pd.read_csv(path, header=None)
            return cls.from_frames({path.stem: frame})
        if suffix == ".json":
            raw = json.loads(path.read_text(encoding="utf-8"))
            return cls.from_grids(
                {name: sheet["values"] for name, sheet in raw.items()},
                formulas={name: sheet.get("formulas", []) for name, sheet in raw.items()},
                number_formats={name: sheet.get("numberFormats", []) for name, sheet in raw.items()},
            )
        raise ValueError(f"Unsupported workbook format {suffix!r}; expected .csv or .json")

    # ── Direct access (tests, loaders) ────────────────────────────────────

    def sheet(self, name: str | None = None) -> Worksheet:
        if name is None:
            if not self.sheets:
                raise KeyError("Workbook has no sheets")
            return next(iter(self.sheets.values()))
        try:
            return self.sheets[name]
        except KeyError:
            raise KeyError(f"Sheet {name!r} does not exist") from None

    def cell(self, reference: str) -> Cell | None:
        sheet_name, address = split_sheet(reference)
        return self.sheet(sheet_name).get(*parse_cell(address))

    # ── DataSource ────────────────────────────────────────────────────────

    async def sheet_names(self) -> list[str]:
        return list(self.sheets)

    async def read_range(self, sheet: str | None = None, range: str | None = None) -> RangeData:
        ws = self.sheet(sheet)
        if range is None:
            rows, cols = ws.used_extent()
            if rows == 0:
                return RangeData(sheet=ws.name, address=f"{ws.name}!A1", values=[],
                                 formulas=[], number_formats=[])
            first_row, first_col, last_row, last_col = 0, 0, rows - 1, cols - 1
        else:
            first_row, first_col, last_row, last_col = parse_range(range)
            size = (last_row - first_row + 1) * (last_col - first_col + 1)
            if size > self.max_cells:
                log.warning("range_too_large", sheet=ws.name, range=range, cells=size)
                raise ValueError(
                    f"Range {range} covers {size:,} cells; reads are limited to {self.max_cells:,}"
                )

        values: Grid = []
        formulas: Grid = []
        number_formats: Grid = []
        for r in _inclusive(first_row, last_row):
            value_row, formula_row, format_row = [], [], []
            for c in _inclusive(first_col, last_col):
                cell = ws.get(r, c) or Cell()
                value_row.append(cell.value)
                formula_row.append(cell.formula if cell.formula else cell.value)
                format_row.append(cell.number_format)
            values.append(value_row)
            formulas.append(formula_row)
            number_formats.append(format_row)

        address = range_address(first_row, first_col, last_row, last_col)
        return RangeData(
            sheet=ws.name,
            address=f"{ws.name}!{address}",
            values=values,
            formulas=formulas,
            number_formats=number_formats,
        )

    async def write_range(
        self, sheet: str | None, range: str, values: Sequence[Sequence[Any]]
    ) -> WriteAck:
        ws = self.sheet(sheet)
        first_row, first_col, last_row, last_col = parse_range(range)
        height = len(values)
        width = max((len(row) for row in values), default=0)
        if height == 0 or width == 0:
            raise ValueError("Nothing to write: values is empty")

        single_anchor = (first_row, first_col) == (last_row, last_col)
        if not single_anchor and (height, width) != (last_row - first_row + 1, last_col - first_col + 1):
            raise ValueError(
                f"Values are {height}x{width} but range {range} is "
                f"{last_row - first_row + 1}x{last_col - first_col + 1}"
            )

        for dr, row in enumerate(values):
            for dc, value in enumerate(row):
                cell = ws.ensure(first_row + dr, first_col + dc)
                if isinstance(value, str) and value.startswith("="):
                    cell.formula, cell.value = value, None
                else:
                    cell.formula, cell.value = None, value

        address = range_address(first_row, first_col, first_row + height - 1, first_col + width - 1)
        log.info("range_written", sheet=ws.name, address=address)
        return WriteAck(sheet=ws.name, address=f"{ws.name}!{address}", rows=height, columns=width)

    async def find_cells(self, query: CellQuery) -> list[CellMatch]:
        needle = query.text if query.match_case else query.text.lower()
        sheets = [self.sheet(query.sheet)] if query.sheet else list(self.sheets.values())
        matches: list[CellMatch] = []
        for ws in sheets:
            for (r, c) in sorted(ws.cells):
                value = ws.cells[(r, c)].value
                if value is None:
                    continue
                text = str(value) if query.match_case else str(value).lower()
                if needle in text:
                    matches.append(
                        CellMatch(sheet=ws.name, cell=cell_address(r, c), row=r, col=c, value=value)
                    )
        return matches

    async def apply_format(
        self, sheet: str, address: str, format_type: str, format_value: str
    ) -> None:
        kind = format_type.lower()
        if kind not in FORMAT_TYPES:
            raise ValueError(f"Unknown format type {format_type!r}; expected one of {FORMAT_TYPES}")
        cell = self.sheet(sheet).ensure(*parse_cell(address))
        if kind == "color":
            cell.format["fill"] = format_value
        elif kind == "bold":
            cell.format["bold"] = format_value.lower() in ("true", "bold")
        elif kind == "italic":
            cell.format["italic"] = format_value.lower() in ("true", "italic")
        else:
            cell.format["border"] = "continuous"


def _inclusive(first: int, last: int) -> range:
    return range(first, last + 1)
