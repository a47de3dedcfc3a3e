"""
SSOT (Single Source of Truth) schemas for the pipeline.

These canonical schemas are the ONLY models used across all modules.
No duplicated "near-same" models allowed.
"""

from .codification import (
    AliasSource,
    CodeSuggestion,
    CodifiedItem,
    DataType,
    FastPassResult,
    FastPassStats,
    MappingStats,
    MappingStatus,
    NewCodeProposal,
    SmartPassResult,
    normalize_alias,
)
from .extraction import (
    DEFAULT_CURRENCY,
    Discrepancy,
    ExtractedData,
    LineItem,
    parse_amount,
)
from .intelligence import (
    PAYLOAD_TYPES,
    BankStatementPayload,
    DocumentCategory,
    DocumentPayload,
    EntityType,
    IntelligenceField,
    KycPayload,
    PlanningDecisionPayload,
    ValuationPayload,
    payload_from_dict,
)

__all__ = [
    # Codification
    "AliasSource",
    "CodeSuggestion",
    "CodifiedItem",
    "DataType",
    "FastPassResult",
    "FastPassStats",
    "MappingStats",
    "MappingStatus",
    "NewCodeProposal",
    "SmartPassResult",
    "normalize_alias",
    # Extraction
    "DEFAULT_CURRENCY",
    "Discrepancy",
    "ExtractedData",
    "LineItem",
    "parse_amount",
    # Intelligence
    "PAYLOAD_TYPES",
    "BankStatementPayload",
    "DocumentCategory",
    "DocumentPayload",
    "EntityType",
    "IntelligenceField",
    "KycPayload",
    "PlanningDecisionPayload",
    "ValuationPayload",
    "payload_from_dict",
]
