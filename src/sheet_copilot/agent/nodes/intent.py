"""Intent classification node.

This is keyword/pattern matching, not NLP. ``INTENT_RULES`` is evaluated
top to bottom and the first rule whose pattern matches wins; nothing
matching yields ``unclear`` at 0.3 confidence, which the graph routes to
clarification.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

import structlog

from sheet_copilot.agent.state import WorkflowState, latest_user_message
from sheet_copilot.models.workflow import Intent, IntentType, Step

log = structlog.get_logger(__name__)

UNCLEAR_CONFIDENCE = 0.3

# Longest phrases first so "unlevered irr" wins over "irr".
METRIC_VOCABULARY: tuple[tuple[str, str], ...] = (
    ("multiple on invested capital", "MOIC"),
    ("internal rate of return", "IRR"),
    ("net present value", "NPV"),
    ("unlevered irr", "IRR"),
    ("levered irr", "IRR"),
    ("equity irr", "IRR"),
    ("project irr", "IRR"),
    ("purchase price", "Deal Value"),
    ("deal value", "Deal Value"),
    ("exit value", "Exit Value"),
    ("revenue", "Revenue"),
    ("ebitda", "EBITDA"),
    ("sales", "Revenue"),
    ("equity", "Equity"),
    ("moic", "MOIC"),
    ("debt", "Debt"),
    ("irr", "IRR"),
    ("npv", "NPV"),
)

COLORS: tuple[str, ...] = (
    "light green", "light blue", "light gray", "dark gray",
    "red", "green", "blue", "yellow", "orange", "purple", "pink",
)

_METRIC_PATTERNS = [
    (re.compile(rf"\b{re.escape(phrase)}\b", re.IGNORECASE), phrase, canonical)
    for phrase, canonical in METRIC_VOCABULARY
]
_COLOR_PATTERNS = [(re.compile(rf"\b{re.escape(color)}\b", re.IGNORECASE), color) for color in COLORS]
# Fiscal periods such as FY2024, Q3 or H1 are not cell references.
_CELL_REF = re.compile(r"(?<![\w!])(?!(?:FY|CY)\d|Q[1-4]\b|H[12]\b)(?:[A-Za-z_][\w]*!)?\$?[A-Z]{1,3}\$?[1-9]\d{0,6}(?::\$?[A-Z]{1,3}\$?[1-9]\d{0,6})?\b")
_FORMULA = re.compile(r"\b(irr|npv|pv|fv)\s*\([^)]+\)", re.IGNORECASE)
_FORMAT_STYLE = re.compile(r"\b(bold|italic|border)", re.IGNORECASE)


def extract_entities(text: str) -> dict[str, Any]:
    """Pull metric, colour, style, cell references and formulas out of ``text``.

    Only keys that were found are present.
    """
    entities: dict[str, Any] = {}

    for pattern, phrase, canonical in _METRIC_PATTERNS:
        if pattern.search(text):
            entities["metric"] = canonical
            entities["search_term"] = phrase
            break

    for pattern, color in _COLOR_PATTERNS:
        if pattern.search(text):
            entities["color"] = color
            break

    style = _FORMAT_STYLE.search(text)
    entities["format_type"] = style.group(1).lower() if style else "color"

    cells = _CELL_REF.findall(text)
    if cells:
        entities["cells"] = cells

    formula = _FORMULA.search(text)
    if formula:
        entities["formula"] = formula.group(0)

    return entities


@dataclass(frozen=True)
class IntentRule:
    """One classification rule.

    Attributes:
        name: Rule identifier, logged on match.
        pattern: Matched against the raw message.
        intent_type: Intent produced on match.
        confidence: Confidence when the rule matches.
        entities: Entity keys this intent keeps.
        description: Human-readable summary stored on the intent.
        requires: Entity that must be present for full confidence.
        fallback_confidence: Confidence used when ``requires`` is missing.
    """

    name: str
    pattern: re.Pattern[str]
    intent_type: IntentType
    confidence: float
    entities: tuple[str, ...]
    description: str
    requires: str | None = None
    fallback_confidence: float | None = None

    def matches(self, text: str) -> bool:
        return bool(self.pattern.search(text))

    def build(self, text: str) -> Intent:
        found = extract_entities(text)
        kept = {key: found[key] for key in self.entities if key in found}
        confidence = self.confidence
        if self.requires and self.requires not in kept and self.fallback_confidence is not None:
            confidence = self.fallback_confidence
        return Intent(
            type=self.intent_type,
            confidence=confidence,
            extracted_entities=kept,
            description=self.description,
        )


INTENT_RULES: tuple[IntentRule, ...] = (
    IntentRule(
        name="formatting",
        pattern=re.compile(
            r"\b(change|format\w*|colou?r\w*|highlight\w*|bold|italic\w*|border\w*)\b", re.IGNORECASE
        ),
        intent_type=IntentType.FORMATTING,
        confidence=0.9,
        entities=("search_term", "metric", "color", "format_type", "cells"),
        description="User wants to format spreadsheet cells",
        requires="search_term",
        fallback_confidence=0.6,
    ),
    IntentRule(
        name="calculation",
        pattern=re.compile(r"\b(calculate|compute|irr|npv)\b", re.IGNORECASE),
        intent_type=IntentType.CALCULATION,
        confidence=0.85,
        entities=("metric", "formula", "cells"),
        description="User wants to perform calculations",
    ),
    IntentRule(
        name="search",
        pattern=re.compile(r"\b(find|where|show|locate|look\s*up|what(?:'s|\s+is|\s+are))\b", re.IGNORECASE),
        intent_type=IntentType.SEARCH,
        confidence=0.8,
        entities=("metric", "cells"),
        description="User wants to find data",
    ),
)


def classify(text: str, rules: tuple[IntentRule, ...] = INTENT_RULES) -> Intent:
    for rule in rules:
        if rule.matches(text):
            log.debug("intent_rule_matched", rule=rule.name)
            return rule.build(text)
    return Intent(
        type=IntentType.UNCLEAR,
        confidence=UNCLEAR_CONFIDENCE,
        description="Intent unclear - needs clarification",
    )


async def run(state: WorkflowState) -> dict[str, Any]:
    """Classify the latest user message."""
    message = latest_user_message(state)
    text = message.content if message else ""
    intent = classify(text)

    log.info("intent_classified", intent=intent.type.value, confidence=intent.confidence)

    step = Step(
        node="analyze_intent",
        action="Intent Analysis",
        result=f"Detected: {intent.type.value} ({round(intent.confidence * 100)}% confidence)",
        success=True,
        details={"entities": intent.extracted_entities},
    )
    return {"intent": intent, "confidence": intent.confidence, "processing_steps": [step]}
