"""
State Store (SQLite-based).

Lightweight persistent DB for tracking:
- Extraction jobs and their retry state
- Canonical codes and alias mappings
- Codified extractions
- Per-entity intelligence fields

Enforces uniqueness on document_id (jobs), code and normalized alias.
"""

from .sqlite_store import (
    ALIAS_VERSION_KEY,
    AliasUpsertResult,
    CanonicalCode,
    CodifiedExtraction,
    ExtractionJob,
    ItemCodeAlias,
    JobStatus,
    StateStore,
)

__all__ = [
    "ALIAS_VERSION_KEY",
    "AliasUpsertResult",
    "CanonicalCode",
    "CodifiedExtraction",
    "ExtractionJob",
    "ItemCodeAlias",
    "JobStatus",
    "StateStore",
]
