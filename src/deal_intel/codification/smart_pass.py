"""
Smart Pass codification: LLM-assisted code suggestions for Fast Pass residue.

One prompt carries the pending items, the catalog grouped by category and a
sample of known aliases per code. Post-processing:
- a suggested code already in the catalog is never "new" and gets the
  catalog id attached
- new codes are deduplicated by code string, collecting the items that use them
- a failed model call, an unparseable response, or an item the model left
  out gets the heuristic fallback; suggest() itself never raises
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Any

from ..errors import LLMError
from ..llm.client import parse_json_response
from ..llm.prompts import CodificationPrompt
from ..schemas.codification import (
    CodeSuggestion,
    CodifiedItem,
    DataType,
    NewCodeProposal,
    SmartPassResult,
)

if TYPE_CHECKING:
    from ..llm.client import LLMClient
    from ..state_store import CanonicalCode

logger = logging.getLogger(__name__)

FALLBACK_CONFIDENCE = 0.5

_PERCENTAGE_KEYWORDS = ("rate", "percentage", "%")
_NUMBER_KEYWORDS = ("count", "number", "units")


def generate_fallback_code(name: str) -> str:
    """Derive a code token from an item name: "Stamp Duty (SDLT)" -> "<stamp.duty.sdlt>"."""
    cleaned = re.sub(r"[^a-z0-9\s]", "", name.lower())
    words = cleaned.split()
    return f"<{'.'.join(words) or 'item'}>"


def infer_data_type(name: str) -> DataType:
    """Keyword heuristic for an item's data type."""
    lowered = name.lower()
    if any(keyword in lowered for keyword in _PERCENTAGE_KEYWORDS):
        return DataType.PERCENTAGE
    if any(keyword in lowered for keyword in _NUMBER_KEYWORDS):
        return DataType.NUMBER
    return DataType.CURRENCY


def fallback_suggestion(item: CodifiedItem, reason: str = "Model unavailable") -> CodeSuggestion:
    """Heuristic suggestion for one item."""
    return CodeSuggestion(
        item_id=item.item_id,
        original_name=item.original_name,
        suggested_code=generate_fallback_code(item.original_name),
        display_name=item.original_name,
        category=item.category or "Other",
        data_type=infer_data_type(item.original_name),
        is_new_code=True,
        confidence=FALLBACK_CONFIDENCE,
        reasoning=f"Heuristic fallback: {reason}",
        is_fallback=True,
    )


class SmartPassCodifier:
    """Proposes canonical codes for items Fast Pass could not match."""

    def __init__(
        self,
        llm_client: LLMClient | None,
        model: str | None = None,
        temperature: float = 0.3,
        max_tokens: int = 4000,
        alias_sample_size: int = 5,
    ):
        self.llm_client = llm_client
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.alias_sample_size = alias_sample_size
        self._prompt = CodificationPrompt()

    def suggest(
        self,
        items: list[CodifiedItem],
        codes: list[CanonicalCode],
        alias_samples: dict[str, list[str]] | None = None,
    ) -> SmartPassResult:
        """Return exactly one suggestion per item, in input order."""
        if not items:
            return SmartPassResult(suggestions=[], new_codes=[])

        raw_suggestions: list[dict[str, Any]] = []
        tokens_used = 0
        failure_reason: str | None = None

        if self.llm_client is None:
            failure_reason = "no model configured"
        else:
            try:
                response = self.llm_client.complete(
                    system_prompt=self._prompt.system_prompt,
                    user_prompt=self._prompt.format_user_message(
                        items, codes, alias_samples or {}, self.alias_sample_size
                    ),
                    temperature=self.temperature,
                    max_tokens=self.max_tokens,
                    json_mode=True,
                    model=self.model,
                )
                tokens_used = response.tokens_used
                raw_suggestions = self._extract_suggestions(parse_json_response(response.content))
            except LLMError as e:
                failure_reason = str(e)
                logger.warning(f"Smart Pass model call failed, using heuristic fallback: {e}")
            except Exception as e:
                failure_reason = f"unexpected model error: {e}"
                logger.exception(f"Unexpected error in Smart Pass model call: {e}")

        by_index = self._index_suggestions(raw_suggestions, len(items))
        codes_by_string = {code.code: code for code in codes}

        suggestions = []
        for position, item in enumerate(items, start=1):
            raw = by_index.get(position)
            suggestion = self._from_model(item, raw, codes_by_string) if raw else None
            if suggestion is None:
                suggestion = fallback_suggestion(
                    item, failure_reason or "model returned no usable suggestion"
                )
                existing = codes_by_string.get(suggestion.suggested_code)
                if existing is not None:
                    suggestion.is_new_code = False
                    suggestion.existing_code_id = existing.id
            suggestions.append(suggestion)

        used_fallback = any(s.is_fallback for s in suggestions)
        new_codes = self._collect_new_codes(suggestions)
        logger.info(
            f"Smart Pass: {len(suggestions)} suggestions, {len(new_codes)} new codes"
            + (" (fallback used)" if used_fallback else "")
        )
        return SmartPassResult(
            suggestions=suggestions,
            new_codes=new_codes,
            tokens_used=tokens_used,
            used_fallback=used_fallback,
        )

    def _extract_suggestions(self, parsed: Any) -> list[dict[str, Any]]:
        if isinstance(parsed, list):
            entries = parsed
        elif isinstance(parsed, dict):
            entries = parsed.get("suggestions") or parsed.get("items") or []
            if not isinstance(entries, list):
                entries = []
        else:
            entries = []
        return [entry for entry in entries if isinstance(entry, dict)]

    def _index_suggestions(
        self,
        raw_suggestions: list[dict[str, Any]],
        item_count: int,
    ) -> dict[int, dict[str, Any]]:
        """Key model entries by 1-based item index; first entry per index wins."""
        by_index: dict[int, dict[str, Any]] = {}
        for position, raw in enumerate(raw_suggestions, start=1):
            try:
                index = int(raw.get("itemIndex", position))
            except (TypeError, ValueError):
                continue
            if 1 <= index <= item_count and index not in by_index:
                by_index[index] = raw
        return by_index

    def _from_model(
        self,
        item: CodifiedItem,
        raw: dict[str, Any],
        codes_by_string: dict[str, CanonicalCode],
    ) -> CodeSuggestion | None:
        code = raw.get("suggestedCode")
        if not isinstance(code, str) or not code.strip():
            return None
        code = code.strip()
        if not code.startswith("<"):
            code = f"<{code.strip('<>')}>"

        try:
            confidence = max(0.0, min(1.0, float(raw.get("confidence", 0.0))))
        except (TypeError, ValueError):
            confidence = 0.0

        existing = codes_by_string.get(code)
        return CodeSuggestion(
            item_id=item.item_id,
            original_name=item.original_name,
            suggested_code=code,
            display_name=str(
                raw.get("suggestedDisplayName") or raw.get("displayName") or item.original_name
            ),
            category=str(raw.get("suggestedCategory") or raw.get("category") or item.category),
            data_type=DataType.coerce(
                raw.get("suggestedDataType") or raw.get("dataType"),
                default=infer_data_type(item.original_name),
            ),
            # A code missing from the catalog has to be created, whatever the model claims
            is_new_code=existing is None,
            confidence=confidence,
            reasoning=str(raw.get("reasoning") or ""),
            existing_code_id=existing.id if existing is not None else None,
        )

    def _collect_new_codes(self, suggestions: list[CodeSuggestion]) -> list[NewCodeProposal]:
        new_codes: dict[str, NewCodeProposal] = {}
        for suggestion in suggestions:
            if not suggestion.is_new_code:
                continue
            proposal = new_codes.get(suggestion.suggested_code)
            if proposal is None:
                proposal = NewCodeProposal(
                    code=suggestion.suggested_code,
                    display_name=suggestion.display_name,
                    category=suggestion.category,
                    data_type=suggestion.data_type,
                )
                new_codes[suggestion.suggested_code] = proposal
            proposal.for_items.append(suggestion.item_id)
        return list(new_codes.values())
