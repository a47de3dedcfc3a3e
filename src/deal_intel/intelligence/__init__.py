"""Confidence-weighted intelligence records for clients and projects."""

from .merge import MergeStats, merge_fields
from .service import IntelligenceService

__all__ = ["MergeStats", "merge_fields", "IntelligenceService"]
