"""Tests for the staged extraction pipeline."""

import pytest

from conftest import make_llm_response
from deal_intel.config import LLMConfig
from deal_intel.errors import ContentError, ParseError, TransientProviderError
from deal_intel.pipeline import STAGE_EXTRACT, STAGE_NORMALIZE, STAGE_VERIFY, ExtractionPipeline


@pytest.fixture
def llm_config():
    return LLMConfig(model="base-model", model_verify="verify-model")


@pytest.fixture
def pipeline(mock_llm_client, llm_config):
    return ExtractionPipeline(mock_llm_client, llm_config)


class TestExtractionPipeline:
    """Stage sequencing and degradation."""

    def test_all_stages_succeed(self, pipeline, mock_llm_client, sample_extract_json, sample_appraisal_text):
        normalized = dict(sample_extract_json, confidence=0.9)
        normalized["costs"] = sample_extract_json["costs"][:4]
        verified = dict(
            normalized,
            verificationDiscrepancies=[
                {"type": "missing_item", "description": "Contingency not extracted"},
                "Loan rate quoted per annum",
            ],
            verificationConfidence=0.93,
            verificationNotes="Checked against summary page",
        )
        mock_llm_client.complete.side_effect = [
            make_llm_response(sample_extract_json, tokens=1000),
            make_llm_response(normalized, tokens=800),
            make_llm_response(verified, tokens=600),
        ]

        result = pipeline.run(sample_appraisal_text, "appraisal.pdf")

        assert result.stages_completed == [STAGE_EXTRACT, STAGE_NORMALIZE, STAGE_VERIFY]
        assert result.tokens_used == 2400
        assert len(result.costs) == 4
        assert result.confidence == 0.9
        assert result.verification_confidence == 0.93
        assert result.verification_notes == "Checked against summary page"
        assert [d.type for d in result.discrepancies] == ["missing_item", "note"]

    def test_extract_amounts_parsed(self, pipeline, mock_llm_client, sample_extract_json):
        mock_llm_client.complete.side_effect = [
            make_llm_response(sample_extract_json),
            TransientProviderError("timed out"),
            TransientProviderError("timed out"),
        ]

        result = pipeline.run("Stamp Duty (SDLT) £14,500", "appraisal.txt")

        stamp = next(c for c in result.costs if c.name == "Stamp Duty (SDLT)")
        assert stamp.amount == 14500.0
        # Missing currency falls back to the detected currency
        planning = next(c for c in result.costs if c.name == "Planning Consultant Retainer")
        assert planning.currency == "GBP"

    def test_normalize_failure_keeps_extracted_data(
        self, pipeline, mock_llm_client, sample_extract_json, caplog
    ):
        verified = dict(sample_extract_json, verificationConfidence=0.7)
        mock_llm_client.complete.side_effect = [
            make_llm_response(sample_extract_json, tokens=500),
            TransientProviderError("LLM API error 503", status_code=503),
            make_llm_response(verified, tokens=300),
        ]

        with caplog.at_level("WARNING"):
            result = pipeline.run("appraisal text", "appraisal.txt")

        assert result.stages_completed == [STAGE_EXTRACT, STAGE_VERIFY]
        assert result.tokens_used == 800
        assert len(result.costs) == 5
        assert "Normalize stage failed" in caplog.text

    def test_verify_failure_keeps_normalized_data(
        self, pipeline, mock_llm_client, sample_extract_json
    ):
        normalized = dict(sample_extract_json)
        normalized["costs"] = sample_extract_json["costs"][:2]
        mock_llm_client.complete.side_effect = [
            make_llm_response(sample_extract_json),
            make_llm_response(normalized),
            make_llm_response("not json at all"),
        ]

        result = pipeline.run("appraisal text", "appraisal.txt")

        assert result.stages_completed == [STAGE_EXTRACT, STAGE_NORMALIZE]
        assert len(result.costs) == 2
        assert result.verification_confidence is None
        assert result.discrepancies == []

    def test_verify_without_sections_keeps_line_items(
        self, pipeline, mock_llm_client, sample_extract_json
    ):
        mock_llm_client.complete.side_effect = [
            make_llm_response(sample_extract_json),
            make_llm_response(sample_extract_json),
            make_llm_response({"verificationConfidence": 0.9, "verificationDiscrepancies": []}),
        ]

        result = pipeline.run("appraisal text", "appraisal.txt")

        assert result.stages_completed == [STAGE_EXTRACT, STAGE_NORMALIZE, STAGE_VERIFY]
        assert len(result.costs) == 5
        assert len(result.line_items()) == 9
        assert result.confidence == 0.82
        assert result.verification_confidence == 0.9

    def test_normalize_without_deal_figures_keeps_them(
        self, pipeline, mock_llm_client, sample_extract_json
    ):
        normalized = {"costs": sample_extract_json["costs"][:3], "confidence": 0.9}
        mock_llm_client.complete.side_effect = [
            make_llm_response(sample_extract_json),
            make_llm_response(normalized),
            TransientProviderError("timed out"),
        ]

        result = pipeline.run("appraisal text", "appraisal.txt")

        names = [item.name for item in result.line_items()]
        assert result.stages_completed == [STAGE_EXTRACT, STAGE_NORMALIZE]
        assert len(result.costs) == 3
        assert result.confidence == 0.9
        assert "Loan Amount" in names
        assert "Total Sales" in names
        assert "Total Profit" in names

    @pytest.mark.parametrize(
        "malformed",
        [{"costs": 5}, {"costs": "Site Purchase Price 500000"}, {"costCategories": [1, 2]}],
    )
    def test_malformed_normalize_keeps_extracted_data(
        self, pipeline, mock_llm_client, sample_extract_json, malformed
    ):
        mock_llm_client.complete.side_effect = [
            make_llm_response(sample_extract_json, tokens=500),
            make_llm_response(malformed, tokens=400),
            make_llm_response(dict(malformed, verificationConfidence=0.9), tokens=300),
        ]

        result = pipeline.run("appraisal text", "appraisal.txt")

        assert result.stages_completed == [STAGE_EXTRACT]
        assert result.tokens_used == 500
        assert len(result.costs) == 5
        assert result.verification_confidence is None

    def test_malformed_extract_is_parse_error(self, pipeline, mock_llm_client):
        mock_llm_client.complete.return_value = make_llm_response({"costs": 5})

        with pytest.raises(ParseError):
            pipeline.run("appraisal text", "appraisal.txt")

    def test_extract_failure_is_fatal(self, pipeline, mock_llm_client):
        mock_llm_client.complete.side_effect = TransientProviderError("connection refused")

        with pytest.raises(TransientProviderError):
            pipeline.run("appraisal text", "appraisal.txt")

        assert mock_llm_client.complete.call_count == 1

    def test_extract_must_return_object(self, pipeline, mock_llm_client):
        mock_llm_client.complete.return_value = make_llm_response([1, 2, 3])

        with pytest.raises(ParseError):
            pipeline.run("appraisal text", "appraisal.txt")

    @pytest.mark.parametrize("content", ["", "   \n\t"])
    def test_empty_content(self, pipeline, mock_llm_client, content):
        with pytest.raises(ContentError):
            pipeline.run(content, "empty.txt")

        mock_llm_client.complete.assert_not_called()

    def test_stage_parameters(self, pipeline, mock_llm_client, sample_extract_json):
        mock_llm_client.complete.return_value = make_llm_response(sample_extract_json)

        pipeline.run("appraisal text", "appraisal.txt")

        calls = [c.kwargs for c in mock_llm_client.complete.call_args_list]
        assert [c["model"] for c in calls] == ["base-model", "base-model", "verify-model"]
        assert [c["temperature"] for c in calls] == [0.2, 0.2, 0.1]
        assert all(c["json_mode"] for c in calls)
        assert "appraisal text" in calls[0]["user_prompt"]

    def test_verification_confidence_clamped(self, pipeline, mock_llm_client, sample_extract_json):
        mock_llm_client.complete.side_effect = [
            make_llm_response(sample_extract_json),
            make_llm_response(sample_extract_json),
            make_llm_response(dict(sample_extract_json, verificationConfidence="140")),
        ]

        result = pipeline.run("appraisal text", "appraisal.txt")

        assert result.verification_confidence == 1.0

    def test_summary(self, pipeline, mock_llm_client, sample_extract_json):
        mock_llm_client.complete.return_value = make_llm_response(sample_extract_json, tokens=10)

        summary = pipeline.run("appraisal text", "appraisal.txt").to_summary()

        assert summary["costs"] == 5
        # 5 costs + loan amount, interest rate, total sales, total profit
        assert summary["line_items"] == 9
        assert summary["tokens_used"] == 30
        assert summary["prompt_version"]
