"""
Fast Pass codification: deterministic alias matching, no model call.

Per line item:
1. Exact lookup of the normalized label. Duplicate normalized aliases
   resolve to the highest-confidence one; the item takes that alias's
   confidence.
2. Otherwise the best fuzzy score against every normalized alias. A score
   >= threshold matches with confidence = score; anything lower stays
   pending_review for Smart Pass.

Similarity is rapidfuzz's normalized Indel ratio (symmetric), scaled to
[0, 1] and rounded to 4 decimal places so thresholds compare exactly.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Protocol

from rapidfuzz import fuzz

from ..schemas.codification import (
    CodifiedItem,
    DataType,
    FastPassResult,
    FastPassStats,
    MappingStatus,
    normalize_alias,
)
from ..schemas.extraction import ExtractedData, LineItem
from ..state_store import ALIAS_VERSION_KEY, ItemCodeAlias

logger = logging.getLogger(__name__)

DEFAULT_FUZZY_THRESHOLD = 0.85

Scorer = Callable[[str, str], float]


class AliasRepository(Protocol):
    """What Fast Pass needs from alias storage."""

    def list_aliases(self) -> list[ItemCodeAlias]: ...

    def get_version(self, name: str) -> int: ...

    def increment_alias_usage(self, alias_ids: list[int]) -> None: ...


def similarity(a: str, b: str) -> float:
    """Symmetric string similarity in [0, 1]."""
    return round(fuzz.ratio(a, b) / 100.0, 4)


def detect_data_type(value: float, currency: str | None) -> DataType:
    """Infer an item's data type from its value."""
    if currency:
        return DataType.CURRENCY
    if 0 <= value <= 1 and value != int(value):
        return DataType.PERCENTAGE
    return DataType.NUMBER


@dataclass
class AliasMatch:
    alias_id: int
    canonical_code: str
    canonical_code_id: int
    confidence: float


class AliasLookup:
    """In-memory normalized alias index."""

    def __init__(self, aliases: Iterable[ItemCodeAlias]):
        self._by_normalized: dict[str, ItemCodeAlias] = {}
        for alias in aliases:
            key = normalize_alias(alias.alias_normalized or alias.alias)
            current = self._by_normalized.get(key)
            if current is None or alias.confidence > current.confidence:
                self._by_normalized[key] = alias
        self._keys = sorted(self._by_normalized)

    def __len__(self) -> int:
        return len(self._keys)

    def exact(self, normalized: str) -> ItemCodeAlias | None:
        return self._by_normalized.get(normalized)

    def best_fuzzy(self, normalized: str, scorer: Scorer) -> tuple[ItemCodeAlias | None, float]:
        """Best-scoring alias; ties go to the higher-confidence alias, then key order."""
        best: ItemCodeAlias | None = None
        best_score = 0.0
        for key in self._keys:
            score = scorer(normalized, key)
            candidate = self._by_normalized[key]
            if score > best_score or (
                best is not None and score == best_score and candidate.confidence > best.confidence
            ):
                best, best_score = candidate, score
        return best, best_score


class FastPassMatcher:
    """
    Alias-based matcher with a version-checked lookup cache.

    The lookup is rebuilt only when the repository's alias version counter
    changes, so repeated runs against an unchanged alias set reuse it.
    """

    def __init__(
        self,
        repository: AliasRepository,
        threshold: float = DEFAULT_FUZZY_THRESHOLD,
        scorer: Scorer = similarity,
    ):
        if not 0.0 <= threshold <= 1.0:
            raise ValueError(f"Fuzzy threshold must be between 0 and 1, got {threshold}")
        self.repository = repository
        self.threshold = threshold
        self.scorer = scorer
        self._lookup: AliasLookup | None = None
        self._lookup_version: int | None = None

    def lookup(self) -> AliasLookup:
        version = self.repository.get_version(ALIAS_VERSION_KEY)
        if self._lookup is None or version != self._lookup_version:
            self._lookup = AliasLookup(self.repository.list_aliases())
            self._lookup_version = version
            logger.debug(f"Built alias lookup with {len(self._lookup)} aliases (v{version})")
        return self._lookup

    def invalidate(self) -> None:
        """Drop the cached lookup."""
        self._lookup = None
        self._lookup_version = None

    def match(self, label: str) -> AliasMatch | None:
        """Match one label; None when nothing reaches the threshold."""
        normalized = normalize_alias(label)
        lookup = self.lookup()

        alias = lookup.exact(normalized)
        if alias is not None:
            return AliasMatch(alias.id, alias.canonical_code, alias.canonical_code_id, alias.confidence)

        alias, score = lookup.best_fuzzy(normalized, self.scorer)
        if alias is not None and score >= self.threshold:
            return AliasMatch(alias.id, alias.canonical_code, alias.canonical_code_id, score)
        return None

    def match_items(
        self,
        line_items: list[LineItem],
        document_id: str | None = None,
    ) -> FastPassResult:
        """Codify line items; increments usage on every matched alias."""
        items: list[CodifiedItem] = []
        matched_alias_ids: list[int] = []

        for index, line_item in enumerate(line_items):
            item = CodifiedItem(
                item_id=f"item_{index}",
                original_name=line_item.name,
                value=line_item.amount,
                category=line_item.category,
                data_type=detect_data_type(line_item.amount, line_item.currency),
                currency=line_item.currency,
                document_id=document_id,
            )
            found = self.match(line_item.name)
            if found is not None:
                item.item_code = found.canonical_code
                item.confidence = found.confidence
                item.mapping_status = MappingStatus.MATCHED
                matched_alias_ids.append(found.alias_id)
            items.append(item)

        if matched_alias_ids:
            self.repository.increment_alias_usage(matched_alias_ids)

        matched = len(matched_alias_ids)
        stats = FastPassStats(
            matched_count=matched,
            pending_count=len(items) - matched,
            total_count=len(items),
        )
        logger.info(
            f"Fast Pass: {stats.matched_count}/{stats.total_count} matched, "
            f"{stats.pending_count} pending review"
        )
        return FastPassResult(items=items, stats=stats)

    def run(self, extracted: ExtractedData, document_id: str | None = None) -> FastPassResult:
        """Codify every line item of an extraction."""
        return self.match_items(extracted.line_items(), document_id=document_id)
