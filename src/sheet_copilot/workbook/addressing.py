"""A1-style cell address helpers. Rows and columns are 0-based internally."""

from __future__ import annotations

import re

_CELL = re.compile(r"^\$?([A-Za-z]{1,3})\$?([1-9]\d*)$")


def column_letter(col: int) -> str:
    if col < 0:
        raise ValueError(f"Column index must be >= 0, got {col}")
    letters = ""
    col += 1
    while col:
        col, rem = divmod(col - 1, 26)
        letters = chr(65 + rem) + letters
    return letters


def column_index(letters: str) -> int:
    index = 0
    for char in letters.upper():
        index = index * 26 + (ord(char) - 64)
    return index - 1


def cell_address(row: int, col: int) -> str:
    return f"{column_letter(col)}{row + 1}"


def parse_cell(address: str) -> tuple[int, int]:
    match = _CELL.match(address.strip())
    if not match:
        raise ValueError(f"Not a cell address: {address!r}")
    return int(match.group(2)) - 1, column_index(match.group(1))


def split_sheet(reference: str) -> tuple[str | None, str]:
    """``"'Deal Model'!B3"`` -> ``("Deal Model", "B3")``."""
    if "!" not in reference:
        return None, reference.strip()
    sheet, _, address = reference.rpartition("!")
    return sheet.strip().strip("'"), address.strip()


def parse_range(reference: str) -> tuple[int, int, int, int]:
    """Return ``(first_row, first_col, last_row, last_col)``, normalised so first <= last."""
    start, _, end = reference.strip().partition(":")
    r1, c1 = parse_cell(start)
    r2, c2 = parse_cell(end) if end else (r1, c1)
    return min(r1, r2), min(c1, c2), max(r1, r2), max(c1, c2)


def range_address(first_row: int, first_col: int, last_row: int, last_col: int) -> str:
    start = cell_address(first_row, first_col)
    if (first_row, first_col) == (last_row, last_col):
        return start
    return f"{start}:{cell_address(last_row, last_col)}"
