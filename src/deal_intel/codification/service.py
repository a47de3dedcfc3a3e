"""
Codification service: Smart Pass over stored extractions and human review.

Review actions feed the alias store: a confirmed item records a
user_confirmed alias at confidence 1.0, which outranks any earlier
LLM-suggested mapping for the same term on the next Fast Pass.
"""

import logging
from typing import Any

from ..errors import CodeNotFoundError, ExtractionNotFoundError, NotFoundError
from ..schemas.codification import (
    AliasSource,
    CodifiedItem,
    DataType,
    MappingStats,
    MappingStatus,
    SmartPassResult,
)
from ..state_store import CanonicalCode, CodifiedExtraction, StateStore
from .smart_pass import SmartPassCodifier

logger = logging.getLogger(__name__)


class CodificationService:
    """Runs Smart Pass and applies review decisions for one store."""

    def __init__(self, store: StateStore, codifier: SmartPassCodifier, alias_sample_size: int = 5):
        self.store = store
        self.codifier = codifier
        self.alias_sample_size = alias_sample_size

    def _load(self, document_id: str) -> CodifiedExtraction:
        extraction = self.store.get_codified_extraction(document_id)
        if extraction is None:
            raise ExtractionNotFoundError(f"No codified extraction for document {document_id}")
        return extraction

    def _get_item(self, extraction: CodifiedExtraction, item_id: str) -> CodifiedItem:
        item = extraction.get_item(item_id)
        if item is None:
            raise NotFoundError(f"Item {item_id} not found in document {extraction.document_id}")
        return item

    def run_smart_pass(self, document_id: str) -> SmartPassResult:
        """
        Suggest codes for the document's pending_review items.

        Items become `suggested`; the extraction is marked smart-pass
        completed. A second run on a completed extraction does nothing.
        """
        extraction = self._load(document_id)
        if extraction.smart_pass_completed:
            logger.info(f"Smart Pass already completed for document {document_id}")
            return SmartPassResult(suggestions=[], new_codes=[])

        pending = [i for i in extraction.items if i.mapping_status == MappingStatus.PENDING_REVIEW]
        if not pending:
            self.store.update_codified_items(document_id, [], smart_pass_completed=True)
            return SmartPassResult(suggestions=[], new_codes=[])

        result = self.codifier.suggest(
            pending,
            self.store.list_codes(),
            self.store.get_alias_samples(per_code=self.alias_sample_size),
        )

        for item, suggestion in zip(pending, result.suggestions):
            item.suggested_code = suggestion.suggested_code
            item.suggested_code_id = suggestion.existing_code_id
            item.data_type = suggestion.data_type
            item.confidence = suggestion.confidence
            item.mapping_status = MappingStatus.SUGGESTED

        self.store.update_codified_items(document_id, pending, smart_pass_completed=True)
        return result

    def _resolve_code(
        self,
        item: CodifiedItem,
        code: str | None,
        code_id: int | None,
        new_code: dict[str, Any] | None,
    ) -> CanonicalCode:
        if code_id is not None:
            canonical = self.store.get_code(code_id)
            if canonical is None:
                raise CodeNotFoundError(f"Canonical code {code_id} not found")
            return canonical

        new_code = new_code or {}
        code = new_code.get("code") or code or item.suggested_code or item.item_code
        if not code:
            raise ValueError(f"Item {item.item_id} has no code to confirm")

        existing = self.store.get_code_by_code(code)
        if existing is not None:
            return existing
        logger.info(f"Creating canonical code {code} for item '{item.original_name}'")
        return self.store.create_code(
            code=code,
            display_name=new_code.get("display_name") or item.original_name,
            category=new_code.get("category") or item.category,
            data_type=DataType.coerce(new_code.get("data_type"), default=item.data_type),
        )

    def confirm_item(
        self,
        document_id: str,
        item_id: str,
        code: str | None = None,
        code_id: int | None = None,
        new_code: dict[str, Any] | None = None,
    ) -> CodifiedItem:
        """
        Confirm an item's code.

        The code comes from `code_id`, then `new_code` (a dict with code,
        display_name, category, data_type), then `code`, then the item's
        suggestion. A code missing from the catalog is created. The item's
        name is recorded as a user_confirmed alias at confidence 1.0.
        """
        extraction = self._load(document_id)
        item = self._get_item(extraction, item_id)

        canonical = self._resolve_code(item, code, code_id, new_code)

        item.item_code = canonical.code
        item.suggested_code = canonical.code
        item.suggested_code_id = canonical.id
        item.data_type = canonical.data_type
        item.confidence = 1.0
        item.mapping_status = MappingStatus.CONFIRMED
        self.store.update_codified_items(document_id, [item])

        self.store.upsert_alias(
            alias=item.original_name,
            canonical_code_id=canonical.id,
            confidence=1.0,
            source=AliasSource.USER_CONFIRMED,
        )
        return item

    def confirm_all_suggested(self, document_id: str) -> int:
        """Confirm every suggested item; returns how many were confirmed."""
        extraction = self._load(document_id)
        suggested = [i for i in extraction.items if i.mapping_status == MappingStatus.SUGGESTED]
        for item in suggested:
            self.confirm_item(document_id, item.item_id)
        if suggested:
            logger.info(f"Confirmed {len(suggested)} suggested items for document {document_id}")
        return len(suggested)

    def skip_item(self, document_id: str, item_id: str) -> CodifiedItem:
        """Mark an item unmatched; no alias is recorded."""
        extraction = self._load(document_id)
        item = self._get_item(extraction, item_id)
        item.mapping_status = MappingStatus.UNMATCHED
        self.store.update_codified_items(document_id, [item])
        return item

    def get_mapping_stats(self, document_id: str) -> MappingStats:
        return self._load(document_id).stats
