"""Financial metric definitions and resolution candidates."""

from __future__ import annotations

import enum
import math
from collections.abc import Callable
from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, model_validator


class Strategy(enum.StrEnum):
    RIGHT_ADJACENT = "right_adjacent"
    BELOW = "below"
    INLINE_COLON = "inline_colon"
    GRID_WITH_PERIOD = "grid_with_period"


class ConfidenceTier(enum.StrEnum):
    HIGH = "high"
    MEDIUM = "medium"


class Display(enum.StrEnum):
    PERCENT = "percent"
    MULTIPLE = "multiple"
    CURRENCY = "currency"


def _irr_range(v: float) -> bool:
    # Fractional: -100% .. 1000%
    return -1.0 <= v <= 10.0


def _moic_range(v: float) -> bool:
    return 0.0 < v <= 20.0


def _non_zero(v: float) -> bool:
    return v != 0


@dataclass(frozen=True)
class MetricDefinition:
    """A named metric, the label terms that identify it and its valid range.

    Attributes:
        name: Canonical display name, e.g. ``IRR``.
        terms: Lower-case label fragments; a cell matches when its text
            equals or contains one of them.
        accepts: Validity predicate applied to every numeric candidate.
        display: How resolved values are formatted.
    """

    name: str
    terms: tuple[str, ...]
    accepts: Callable[[float], bool] = _non_zero
    display: Display = Display.CURRENCY

    def matches(self, text: str) -> bool:
        return any(text == term or term in text for term in self.terms)

    def is_valid(self, value: float) -> bool:
        return math.isfinite(value) and self.accepts(value)

    def format(self, value: float) -> str:
        if self.display is Display.PERCENT:
            return f"{value * 100:.1f}%"
        if self.display is Display.MULTIPLE:
            return f"{value:.2f}x"
        sign = "-" if value < 0 else ""
        magnitude = abs(value)
        if magnitude >= 1_000_000:
            return f"{sign}${magnitude / 1_000_000:.1f}M"
        if magnitude >= 1_000:
            return f"{sign}${magnitude / 1_000:.1f}K"
        return f"{sign}${magnitude:.2f}"


METRIC_CATALOG: tuple[MetricDefinition, ...] = (
    MetricDefinition(
        "IRR",
        (
            "irr", "internal rate of return", "return rate", "project irr",
            "unlevered irr", "levered irr", "equity irr",
        ),
        accepts=_irr_range,
        display=Display.PERCENT,
    ),
    MetricDefinition(
        "MOIC",
        (
            "moic", "multiple on invested capital", "money multiple", "total moic",
            "gross moic", "net moic", "realized moic",
        ),
        accepts=_moic_range,
        display=Display.MULTIPLE,
    ),
    MetricDefinition(
        "Revenue",
        (
            "revenue", "sales", "total revenue", "net revenue",
            "annual revenue", "monthly revenue", "projected revenue",
        ),
    ),
    MetricDefinition(
        "EBITDA",
        ("ebitda", "earnings before", "operating income", "adjusted ebitda", "normalized ebitda"),
    ),
    MetricDefinition(
        "Exit Value",
        (
            "exit value", "terminal value", "enterprise value", "sale price",
            "exit enterprise value", "exit equity value",
        ),
    ),
    MetricDefinition(
        "Deal Value",
        (
            "deal value", "purchase price", "acquisition price", "transaction value",
            "total deal value",
        ),
    ),
    MetricDefinition(
        "Equity",
        (
            "equity", "equity investment", "equity contribution", "sponsor equity",
            "initial equity", "total equity",
        ),
    ),
    MetricDefinition(
        "Debt",
        (
            "debt", "debt financing", "leverage", "total debt",
            "senior debt", "subordinated debt", "term loan",
        ),
    ),
)

_BY_NAME = {definition.name.lower(): definition for definition in METRIC_CATALOG}


def definition_for(name: str) -> MetricDefinition:
    """Look up a catalog metric; unknown names search for their own label.

    Raises:
        ValueError: ``name`` is empty or whitespace.
    """
    key = name.strip().lower()
    if not key:
        raise ValueError("metric name is blank")
    known = _BY_NAME.get(key)
    if known is not None:
        return known
    return MetricDefinition(name.strip(), (key,))


class MetricCandidate(BaseModel):
    """A provisional (location, value, strategy) match found before arbitration."""

    model_config = ConfigDict(frozen=True)

    metric: str
    sheet: str
    cell: str
    label: str
    raw_value: float
    formatted_value: str
    strategy: Strategy
    confidence_tier: ConfidenceTier
    has_formula: bool
    formula: str | None = None
    period: str | None = None

    @model_validator(mode="after")
    def check_value_in_range(self) -> MetricCandidate:
        if not definition_for(self.metric).is_valid(self.raw_value):
            raise ValueError(f"{self.raw_value!r} is outside the valid range for {self.metric}")
        return self

    @property
    def address(self) -> str:
        return f"{self.sheet}!{self.cell}"

    def to_payload(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "metric": self.metric,
            "value": self.formatted_value,
            "rawValue": self.raw_value,
            "location": self.cell,
            "sheet": self.sheet,
            "address": self.address,
            "label": self.label,
            "formula": self.formula,
            "strategy": self.strategy.value,
            "confidence": self.confidence_tier.value,
        }
        if self.period is not None:
            payload["period"] = self.period
        return payload
