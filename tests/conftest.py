import pytest

from sheet_copilot.config.settings import Settings
from sheet_copilot.tools.defaults import build_default_registry
from sheet_copilot.workbook.source import InMemoryWorkbook


@pytest.fixture()
def settings() -> Settings:
    """Settings with defaults only, independent of any local .env."""
    return Settings(_env_file=None)


@pytest.fixture()
def deal_workbook() -> InMemoryWorkbook:
    """Small returns model: unlevered IRR at A10 backed by a formula at B10."""
    values = [
        ["Deal Summary", None, None],
        ["Revenue", 1_200_000, None],
        ["EBITDA", 300_000, None],
        ["Equity", 450_000, None],
        ["Gross MOIC", 2.75, None],
        [None, None, None],
        [None, None, None],
        [None, None, None],
        ["Returns", None, None],
        ["Unlevered IRR", 0.253, None],
    ]
    formulas = [[None] * 3 for _ in values]
    formulas[9][1] = "=IRR(C20:H20)"
    return InMemoryWorkbook.from_grids({"Model": values}, formulas={"Model": formulas})


@pytest.fixture()
def registry(deal_workbook: InMemoryWorkbook, settings: Settings):
    return build_default_registry(deal_workbook, settings=settings)
