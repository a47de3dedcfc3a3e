"""
Structured output of the AI extraction pipeline.

The model returns loosely-typed JSON; everything downstream works on these
dataclasses. Amount parsing is deliberately forgiving (currency symbols,
thousand separators, strings) and drops items that carry no value.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from ..errors import ParseError
from .codification import normalize_alias

DEFAULT_CURRENCY = "GBP"

CURRENCY_SYMBOLS = {"£": "GBP", "$": "USD", "€": "EUR"}

_NUMBER_CLEAN = re.compile(r"[^0-9.\-]")


def parse_amount(value: Any) -> float | None:
    """Parse a numeric amount from a model value.

    Accepts numbers and strings such as "£1,250,000" or "12.5%".
    Returns None for blanks, "N/A" and anything non-numeric.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if not isinstance(value, str):
        return None

    cleaned = _NUMBER_CLEAN.sub("", value.strip())
    if cleaned in ("", "-", ".", "-."):
        return None
    try:
        return float(cleaned)
    except ValueError:
        return None


@dataclass
class LineItem:
    """One extracted financial line item."""

    name: str
    amount: float
    currency: str | None = None
    category: str = "Uncategorized"

    @classmethod
    def from_dict(cls, data: dict[str, Any], default_currency: str | None = None) -> LineItem | None:
        """Build from a model cost entry; None if the entry has no name or no value."""
        name = data.get("type") or data.get("name")
        if not isinstance(name, str) or not name.strip():
            return None

        amount = parse_amount(data.get("amount"))
        if amount is None or amount == 0:
            return None

        return cls(
            name=name.strip(),
            amount=amount,
            currency=data.get("currency") or default_currency,
            category=data.get("category") or "Uncategorized",
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.name,
            "amount": self.amount,
            "currency": self.currency,
            "category": self.category,
        }


@dataclass
class Discrepancy:
    """A problem the verify stage found between extraction and source."""

    type: str
    description: str

    def to_dict(self) -> dict[str, str]:
        return {"type": self.type, "description": self.description}


COST_CATEGORY_NAMES = {
    "siteCosts": "Site Costs",
    "netConstructionCosts": "Construction Costs",
    "professionalFees": "Professional Fees",
    "financingLegalFees": "Financing Costs",
    "disposalFees": "Disposal Costs",
}


@dataclass
class ExtractedData:
    """Financial facts extracted from one document.

    ``costs`` are the individual cost line items; ``financing``, ``revenue``,
    ``profit`` and ``units`` hold the deal-level figures the model found.
    ``plots`` carries per-plot costs and ``cost_categories`` the items a
    document only lists under category blocks, keyed by category.
    """

    costs: list[LineItem] = field(default_factory=list)
    financing: dict[str, Any] = field(default_factory=dict)
    revenue: dict[str, Any] = field(default_factory=dict)
    profit: dict[str, Any] = field(default_factory=dict)
    units: dict[str, Any] = field(default_factory=dict)
    plots: list[LineItem] = field(default_factory=list)
    cost_categories: dict[str, list[LineItem]] = field(default_factory=dict)
    detected_currency: str = DEFAULT_CURRENCY
    notes: str | None = None
    confidence: float = 0.0

    @classmethod
    def from_model_json(
        cls, data: dict[str, Any], previous: ExtractedData | None = None
    ) -> ExtractedData:
        """Build from the JSON object returned by an extraction-stage prompt.

        With ``previous`` (the earlier stage's result), every section the
        response leaves out or returns empty keeps the earlier value, so a
        partial normalize or verify answer never drops data.

        Raises:
            ParseError: A list or object section has the wrong JSON type
        """
        fallback = previous or cls()
        currency = data.get("detectedCurrency") or fallback.detected_currency

        costs = _parse_items(data, "costs", currency)
        plots = _parse_items(data, "plots", currency)
        cost_categories = _parse_cost_categories(data.get("costCategories"), currency)
        confidence = parse_amount(data.get("confidence"))

        return cls(
            costs=costs or list(fallback.costs),
            financing=_as_dict(data.get("financing")) or dict(fallback.financing),
            revenue=_as_dict(data.get("revenue")) or dict(fallback.revenue),
            profit=_as_dict(data.get("profit")) or dict(fallback.profit),
            units=_as_dict(data.get("units")) or dict(fallback.units),
            plots=plots or list(fallback.plots),
            cost_categories=cost_categories or dict(fallback.cost_categories),
            detected_currency=currency,
            notes=data.get("extractionNotes") or fallback.notes,
            confidence=(
                _clamp_confidence(confidence) if confidence is not None else fallback.confidence
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "costs": [c.to_dict() for c in self.costs],
            "financing": self.financing,
            "revenue": self.revenue,
            "profit": self.profit,
            "units": self.units,
            "plots": [
                {"name": p.name, "cost": p.amount, "currency": p.currency} for p in self.plots
            ],
            "costCategories": {
                key: {"items": [item.to_dict() for item in items]}
                for key, items in self.cost_categories.items()
            },
            "detectedCurrency": self.detected_currency,
            "extractionNotes": self.notes,
            "confidence": self.confidence,
        }

    def line_items(self) -> list[LineItem]:
        """Flatten costs and deal-level figures into one list for codification."""
        items = list(self.costs)
        currency = self.detected_currency

        # Category blocks often repeat the costs list; keep only new items.
        seen = {(normalize_alias(item.name), item.amount) for item in items}
        for key, category_items in self.cost_categories.items():
            for item in category_items:
                identity = (normalize_alias(item.name), item.amount)
                if identity in seen:
                    continue
                seen.add(identity)
                items.append(
                    LineItem(
                        name=item.name,
                        amount=item.amount,
                        currency=item.currency or currency,
                        category=COST_CATEGORY_NAMES.get(key, key),
                    )
                )

        loan_amount = parse_amount(self.financing.get("loanAmount"))
        if loan_amount:
            items.append(
                LineItem(
                    name="Loan Amount",
                    amount=loan_amount,
                    currency=self.financing.get("currency") or currency,
                    category="Financing",
                )
            )
        interest_rate = parse_amount(self.financing.get("interestRate"))
        if interest_rate is not None:
            items.append(LineItem(name="Interest Rate", amount=interest_rate, category="Financing"))

        for plot in self.plots:
            items.append(
                LineItem(
                    name=f"Plot: {plot.name}",
                    amount=plot.amount,
                    currency=plot.currency or currency,
                    category="Plots",
                )
            )

        total_sales = parse_amount(self.revenue.get("totalSales"))
        if total_sales:
            items.append(
                LineItem(
                    name="Total Sales",
                    amount=total_sales,
                    currency=self.revenue.get("currency") or currency,
                    category="Revenue",
                )
            )

        total_profit = parse_amount(self.profit.get("total"))
        if total_profit:
            items.append(
                LineItem(
                    name="Total Profit",
                    amount=total_profit,
                    currency=self.profit.get("currency") or currency,
                    category="Profit",
                )
            )

        unit_count = parse_amount(self.units.get("count"))
        if unit_count:
            items.append(LineItem(name="Unit Count", amount=unit_count, category="Units"))

        return items


def _parse_items(data: dict[str, Any], key: str, currency: str) -> list[LineItem]:
    raw_items = data.get(key)
    if raw_items is None:
        return []
    if not isinstance(raw_items, list):
        raise ParseError(f'"{key}" must be a list, got {type(raw_items).__name__}')

    items = []
    for raw in raw_items:
        if not isinstance(raw, dict):
            continue
        if "amount" not in raw and "cost" in raw:
            raw = {**raw, "amount": raw["cost"]}
        item = LineItem.from_dict(raw, default_currency=currency)
        if item is not None:
            items.append(item)
    return items


def _parse_cost_categories(raw: Any, currency: str) -> dict[str, list[LineItem]]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ParseError(f'"costCategories" must be an object, got {type(raw).__name__}')

    categories = {}
    for key, block in raw.items():
        if not isinstance(block, dict):
            continue
        items = _parse_items(block, "items", block.get("currency") or currency)
        if items:
            categories[key] = items
    return categories


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _clamp_confidence(value: Any) -> float:
    parsed = parse_amount(value)
    if parsed is None:
        return 0.0
    return max(0.0, min(1.0, parsed))
