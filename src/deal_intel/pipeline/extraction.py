"""
Staged LLM extraction: extract -> normalize -> verify.

Only the extract stage is fatal. A failed normalize or verify call keeps the
previous stage's data, and a partial answer only replaces the sections it
returns, so a flaky provider degrades quality instead of failing the job.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ..errors import ContentError, LLMError, ParseError
from ..llm.client import parse_json_response
from ..llm.prompts import PROMPT_VERSION, ExtractPrompt, NormalizePrompt, VerifyPrompt
from ..schemas.extraction import Discrepancy, ExtractedData, LineItem, parse_amount

if TYPE_CHECKING:
    from ..config import LLMConfig
    from ..llm.client import LLMClient

logger = logging.getLogger(__name__)

STAGE_EXTRACT = "extract"
STAGE_NORMALIZE = "normalize"
STAGE_VERIFY = "verify"


@dataclass
class PipelineResult:
    """Output of one pipeline run over a document."""

    extracted: ExtractedData
    discrepancies: list[Discrepancy] = field(default_factory=list)
    verification_confidence: float | None = None
    verification_notes: str | None = None
    tokens_used: int = 0
    stages_completed: list[str] = field(default_factory=list)
    prompt_version: str = PROMPT_VERSION

    @property
    def costs(self) -> list[LineItem]:
        return self.extracted.costs

    @property
    def confidence(self) -> float:
        return self.extracted.confidence

    @property
    def notes(self) -> str | None:
        return self.extracted.notes

    def line_items(self) -> list[LineItem]:
        return self.extracted.line_items()

    def to_summary(self) -> dict[str, Any]:
        """Compact summary stored with the completed job."""
        return {
            "costs": len(self.costs),
            "line_items": len(self.line_items()),
            "confidence": self.confidence,
            "verification_confidence": self.verification_confidence,
            "discrepancies": [d.to_dict() for d in self.discrepancies],
            "tokens_used": self.tokens_used,
            "stages_completed": self.stages_completed,
            "prompt_version": self.prompt_version,
            "notes": self.notes,
        }


class ExtractionPipeline:
    """Runs the three extraction stages against one LLM client."""

    def __init__(self, llm_client: LLMClient, llm_config: LLMConfig):
        self.llm_client = llm_client
        self.llm_config = llm_config
        self.extract_prompt = ExtractPrompt()
        self.normalize_prompt = NormalizePrompt()
        self.verify_prompt = VerifyPrompt()

    def _call(self, stage: str, system_prompt: str, user_prompt: str) -> tuple[dict[str, Any], int]:
        response = self.llm_client.complete(
            system_prompt=system_prompt,
            user_prompt=user_prompt,
            temperature=getattr(self.llm_config, f"{stage}_temperature"),
            max_tokens=getattr(self.llm_config, f"{stage}_max_tokens"),
            json_mode=True,
            model=self.llm_config.model_for(stage),
        )
        parsed = parse_json_response(response.content)
        if not isinstance(parsed, dict):
            raise ParseError(f"{stage} stage returned {type(parsed).__name__}, expected an object")
        return parsed, response.tokens_used

    def run(self, content: str, file_name: str) -> PipelineResult:
        """
        Extract line items from document text.

        Raises:
            ContentError: Content is empty
            LLMError: The extract stage failed
        """
        if not content or not content.strip():
            raise ContentError(f"Document {file_name} has no content to extract")

        data, tokens = self._call(
            STAGE_EXTRACT,
            self.extract_prompt.system_prompt,
            self.extract_prompt.format_user_message(content, file_name),
        )
        result = PipelineResult(
            extracted=ExtractedData.from_model_json(data),
            tokens_used=tokens,
            stages_completed=[STAGE_EXTRACT],
        )
        logger.info(f"Extract stage found {len(result.costs)} costs in {file_name}")

        try:
            data, tokens = self._call(
                STAGE_NORMALIZE,
                self.normalize_prompt.system_prompt,
                self.normalize_prompt.format_user_message(
                    json.dumps(result.extracted.to_dict(), indent=2), content, file_name
                ),
            )
            normalized = ExtractedData.from_model_json(data, previous=result.extracted)
        except LLMError as e:
            logger.warning(f"Normalize stage failed for {file_name}, keeping extracted data: {e}")
        else:
            result.extracted = normalized
            result.tokens_used += tokens
            result.stages_completed.append(STAGE_NORMALIZE)

        try:
            data, tokens = self._call(
                STAGE_VERIFY,
                self.verify_prompt.system_prompt,
                self.verify_prompt.format_user_message(
                    json.dumps(result.extracted.to_dict(), indent=2), content, file_name
                ),
            )
            verified = ExtractedData.from_model_json(data, previous=result.extracted)
        except LLMError as e:
            logger.warning(f"Verify stage failed for {file_name}, keeping normalized data: {e}")
        else:
            result.extracted = verified
            result.tokens_used += tokens
            result.stages_completed.append(STAGE_VERIFY)
            result.discrepancies = _parse_discrepancies(data.get("verificationDiscrepancies"))
            verification_confidence = parse_amount(data.get("verificationConfidence"))
            if verification_confidence is not None:
                result.verification_confidence = max(0.0, min(1.0, verification_confidence))
            result.verification_notes = data.get("verificationNotes")

        logger.info(
            f"Pipeline finished for {file_name}: {len(result.costs)} costs, "
            f"stages={','.join(result.stages_completed)}, tokens={result.tokens_used}"
        )
        return result


def _parse_discrepancies(raw: Any) -> list[Discrepancy]:
    if not isinstance(raw, list):
        return []
    discrepancies = []
    for entry in raw:
        if isinstance(entry, dict):
            discrepancies.append(
                Discrepancy(
                    type=str(entry.get("type") or "unknown"),
                    description=str(entry.get("description") or ""),
                )
            )
        elif isinstance(entry, str):
            discrepancies.append(Discrepancy(type="note", description=entry))
    return discrepancies
