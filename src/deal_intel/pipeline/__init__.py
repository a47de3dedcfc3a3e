"""Staged LLM extraction pipeline."""

from .extraction import (
    STAGE_EXTRACT,
    STAGE_NORMALIZE,
    STAGE_VERIFY,
    ExtractionPipeline,
    PipelineResult,
)

__all__ = [
    "STAGE_EXTRACT",
    "STAGE_NORMALIZE",
    "STAGE_VERIFY",
    "ExtractionPipeline",
    "PipelineResult",
]
