"""
Codification models: canonical codes, aliases and codified line items.

Mapping lifecycle of a codified item:

    matched         Fast Pass found the alias (exact or fuzzy)
    pending_review  Fast Pass residue, waiting for Smart Pass
    suggested       Smart Pass proposed a code
    confirmed       a human approved the code
    unmatched       a human skipped the item
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


def normalize_alias(text: str) -> str:
    """Normalize alias text for lookup: lowercase, trim, collapse whitespace.

    Idempotent: normalize_alias(normalize_alias(s)) == normalize_alias(s).
    """
    return " ".join(text.lower().split())


class MappingStatus(str, Enum):
    """Lifecycle tag on a codified item."""

    MATCHED = "matched"
    SUGGESTED = "suggested"
    PENDING_REVIEW = "pending_review"
    CONFIRMED = "confirmed"
    UNMATCHED = "unmatched"


class DataType(str, Enum):
    """Value type of a canonical code."""

    CURRENCY = "currency"
    NUMBER = "number"
    PERCENTAGE = "percentage"
    STRING = "string"

    @classmethod
    def coerce(cls, value: Any, default: DataType | None = None) -> DataType:
        """Parse a loosely-typed value, falling back to default (currency)."""
        try:
            return cls(str(value).lower())
        except ValueError:
            return default or cls.CURRENCY


class AliasSource(str, Enum):
    """Provenance of an alias mapping."""

    SYSTEM_SEED = "system_seed"
    LLM_SUGGESTED = "llm_suggested"
    USER_CONFIRMED = "user_confirmed"
    MANUAL = "manual"

    @property
    def is_authoritative(self) -> bool:
        """Human-sourced mappings always replace existing ones."""
        return self in (AliasSource.USER_CONFIRMED, AliasSource.MANUAL)


@dataclass
class CodifiedItem:
    """One extracted line item annotated with its mapping."""

    item_id: str
    original_name: str
    value: float
    category: str
    data_type: DataType = DataType.CURRENCY
    currency: str | None = None
    document_id: str | None = None
    item_code: str | None = None
    suggested_code: str | None = None
    suggested_code_id: int | None = None
    confidence: float = 0.0
    mapping_status: MappingStatus = MappingStatus.PENDING_REVIEW

    def to_dict(self) -> dict[str, Any]:
        return {
            "item_id": self.item_id,
            "original_name": self.original_name,
            "value": self.value,
            "category": self.category,
            "data_type": self.data_type.value,
            "currency": self.currency,
            "document_id": self.document_id,
            "item_code": self.item_code,
            "suggested_code": self.suggested_code,
            "suggested_code_id": self.suggested_code_id,
            "confidence": self.confidence,
            "mapping_status": self.mapping_status.value,
        }


@dataclass
class FastPassStats:
    matched_count: int = 0
    pending_count: int = 0
    total_count: int = 0


@dataclass
class FastPassResult:
    """Output of the Fast Pass matcher."""

    items: list[CodifiedItem]
    stats: FastPassStats

    @property
    def pending_items(self) -> list[CodifiedItem]:
        return [i for i in self.items if i.mapping_status == MappingStatus.PENDING_REVIEW]


@dataclass
class CodeSuggestion:
    """Smart Pass proposal for one pending item."""

    item_id: str
    original_name: str
    suggested_code: str
    display_name: str
    category: str
    data_type: DataType
    is_new_code: bool
    confidence: float
    reasoning: str = ""
    existing_code_id: int | None = None
    is_fallback: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "item_id": self.item_id,
            "original_name": self.original_name,
            "suggested_code": self.suggested_code,
            "display_name": self.display_name,
            "category": self.category,
            "data_type": self.data_type.value,
            "is_new_code": self.is_new_code,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "existing_code_id": self.existing_code_id,
            "is_fallback": self.is_fallback,
        }


@dataclass
class NewCodeProposal:
    """A code the catalog does not have yet, with every item that would use it."""

    code: str
    display_name: str
    category: str
    data_type: DataType
    for_items: list[str] = field(default_factory=list)


@dataclass
class SmartPassResult:
    """Output of the Smart Pass codifier; one suggestion per input item."""

    suggestions: list[CodeSuggestion]
    new_codes: list[NewCodeProposal]
    tokens_used: int = 0
    used_fallback: bool = False


@dataclass
class MappingStats:
    """Per-status counts for a codified extraction."""

    matched: int = 0
    suggested: int = 0
    pending_review: int = 0
    confirmed: int = 0
    unmatched: int = 0

    @classmethod
    def from_items(cls, items: list[CodifiedItem]) -> MappingStats:
        stats = cls()
        for item in items:
            name = item.mapping_status.value
            setattr(stats, name, getattr(stats, name) + 1)
        return stats

    @property
    def is_fully_confirmed(self) -> bool:
        """Nothing is waiting on a human decision."""
        return self.pending_review == 0 and self.suggested == 0

    def to_dict(self) -> dict[str, int]:
        return {
            "matched": self.matched,
            "suggested": self.suggested,
            "pending_review": self.pending_review,
            "confirmed": self.confirmed,
            "unmatched": self.unmatched,
        }
