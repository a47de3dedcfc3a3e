"""
Language-model integration.

Provides the chat-completion client and the versioned prompt templates
used by the extraction pipeline and Smart Pass.
"""

from .client import LLMClient, LLMConcurrencyLimiter, LLMResponse, parse_json_response
from .prompts import (
    PROMPT_VERSION,
    CodificationPrompt,
    ExtractPrompt,
    NormalizePrompt,
    VerifyPrompt,
)

__all__ = [
    "LLMClient",
    "LLMConcurrencyLimiter",
    "LLMResponse",
    "parse_json_response",
    "PROMPT_VERSION",
    "CodificationPrompt",
    "ExtractPrompt",
    "NormalizePrompt",
    "VerifyPrompt",
]
