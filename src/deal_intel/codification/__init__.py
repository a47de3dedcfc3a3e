"""
Two-tier codification of extracted line items.

- Fast Pass: exact / fuzzy alias matching, offline and deterministic
- Smart Pass: LLM code suggestions for the residue, with heuristic fallback
"""

from .catalog import load_seed_catalog, seed_catalog
from .fast_pass import (
    DEFAULT_FUZZY_THRESHOLD,
    AliasLookup,
    AliasRepository,
    FastPassMatcher,
    detect_data_type,
    similarity,
)
from .service import CodificationService
from .smart_pass import (
    SmartPassCodifier,
    fallback_suggestion,
    generate_fallback_code,
    infer_data_type,
)

__all__ = [
    "load_seed_catalog",
    "seed_catalog",
    "DEFAULT_FUZZY_THRESHOLD",
    "AliasLookup",
    "AliasRepository",
    "FastPassMatcher",
    "detect_data_type",
    "similarity",
    "CodificationService",
    "SmartPassCodifier",
    "fallback_suggestion",
    "generate_fallback_code",
    "infer_data_type",
]
