"""
Per-entity intelligence records backed by the state store.
"""

import logging
from typing import Any

from ..schemas.intelligence import (
    DocumentCategory,
    DocumentPayload,
    EntityType,
    IntelligenceField,
    payload_from_dict,
)
from ..state_store import StateStore
from .merge import MergeStats, merge_fields

logger = logging.getLogger(__name__)


class IntelligenceService:
    """Loads, merges and persists intelligence fields for clients and projects."""

    def __init__(self, store: StateStore):
        self.store = store

    def merge(
        self,
        entity_type: EntityType | str,
        entity_id: str,
        fields: list[IntelligenceField],
    ) -> MergeStats:
        """Merge fields into an entity's record; only changed paths are written."""
        entity_type = EntityType(entity_type)
        existing = self.store.get_intelligence_fields(entity_type, entity_id)
        merged, stats = merge_fields(existing, fields)

        if stats.changed_paths:
            self.store.save_intelligence_fields(
                entity_type, entity_id, [merged[path] for path in stats.changed_paths]
            )

        logger.info(
            f"Merged intelligence for {entity_type.value} {entity_id}: "
            f"added={stats.added} updated={stats.updated} skipped={stats.skipped}"
        )
        return stats

    def merge_payload(
        self,
        entity_id: str,
        payload: DocumentPayload,
        document_id: str | None = None,
        document_name: str | None = None,
    ) -> MergeStats:
        """Merge a typed document payload into the entity it describes."""
        return self.merge(
            payload.ENTITY_TYPE,
            entity_id,
            payload.to_fields(document_id=document_id, document_name=document_name),
        )

    def merge_document(
        self,
        category: DocumentCategory | str,
        entity_id: str,
        data: dict[str, Any],
        document_id: str | None = None,
        document_name: str | None = None,
    ) -> MergeStats:
        """
        Merge raw extracted facts for a document category.

        Raises:
            ValueError: If the category has no payload type
        """
        payload = payload_from_dict(category, data)
        return self.merge_payload(entity_id, payload, document_id, document_name)

    def get_fields(self, entity_type: EntityType | str, entity_id: str) -> dict[str, Any]:
        """
        Nested view of an entity's values.

        "financials.currentValue" becomes {"financials": {"currentValue": ...}}.
        """
        nested: dict[str, Any] = {}
        for path, record in self.store.get_intelligence_fields(entity_type, entity_id).items():
            node = nested
            *parents, leaf = path.split(".")
            for part in parents:
                child = node.get(part)
                if not isinstance(child, dict):
                    child = {}
                    node[part] = child
                node = child
            node[leaf] = record.value
        return nested
