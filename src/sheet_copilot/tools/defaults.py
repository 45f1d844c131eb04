"""Standard tool set wired to one data source."""

from __future__ import annotations

from sheet_copilot.config.settings import Settings, settings as default_settings
from sheet_copilot.tools.base import ToolRegistry
from sheet_copilot.tools.cells import ReadRangeTool, SmartCellFormattingTool, WriteRangeTool
from sheet_copilot.tools.metric_resolver import (
    FindFinancialMetricTool,
    ListFinancialMetricsTool,
    MetricResolver,
)
from sheet_copilot.workbook.source import DataSource


def build_default_registry(
    source: DataSource,
    *,
    resolver: MetricResolver | None = None,
    settings: Settings = default_settings,
) -> ToolRegistry:
    resolver = resolver or MetricResolver(source, settings=settings)
    return ToolRegistry(
        [
            FindFinancialMetricTool(resolver),
            ListFinancialMetricsTool(resolver),
            ReadRangeTool(source),
            WriteRangeTool(source, on_write=resolver.invalidate),
            SmartCellFormattingTool(source),
        ]
    )
