"""Test fixtures and utilities."""

import json
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from deal_intel.config import Config
from deal_intel.llm.client import LLMResponse
from deal_intel.schemas.codification import AliasSource
from deal_intel.state_store import StateStore

# Sample development appraisal as the pipeline receives it
SAMPLE_APPRAISAL_TEXT = """
DEVELOPMENT APPRAISAL - 8 Orchard Close, Reading

Site Purchase Price           £500,000
Stamp Duty (SDLT)              £14,500
Net Construction Cost       £1,250,000
Engineers                       £9,800
Contingency                    £62,500

Gross Development Value     £3,200,000
Developer Profit              £450,000
Loan Amount                 £1,500,000 @ 8.5%
"""

SAMPLE_APPRAISAL_CSV = (
    "Item,Amount,Category\n"
    "Site Purchase Price,500000,Site Costs\n"
    "Net Construction Cost,1250000,Net Construction Costs\n"
    "Engineers,9800,Professional Fees\n"
)

# Model output for the extract stage of SAMPLE_APPRAISAL_TEXT
SAMPLE_EXTRACT_JSON = {
    "costs": [
        {"type": "Site Purchase Price", "amount": 500000, "currency": "GBP", "category": "Site Costs"},
        {"type": "Stamp Duty (SDLT)", "amount": "£14,500", "currency": "GBP", "category": "Site Costs"},
        {
            "type": "Net Construction Cost",
            "amount": 1250000,
            "currency": "GBP",
            "category": "Net Construction Costs",
        },
        {"type": "Engineers", "amount": 9800, "currency": "GBP", "category": "Professional Fees"},
        {"type": "Planning Consultant Retainer", "amount": 4200, "category": "Professional Fees"},
    ],
    "financing": {"loanAmount": 1500000, "interestRate": 0.085, "currency": "GBP"},
    "revenue": {"totalSales": 3200000, "currency": "GBP"},
    "profit": {"total": 450000, "percentage": 0.14, "currency": "GBP"},
    "units": {},
    "detectedCurrency": "GBP",
    "extractionNotes": "Appraisal summary page",
    "confidence": 0.82,
}


@pytest.fixture
def sample_appraisal_text() -> str:
    """Appraisal rendered as plain text."""
    return SAMPLE_APPRAISAL_TEXT


@pytest.fixture
def sample_appraisal_csv() -> bytes:
    """Appraisal as a CSV upload."""
    return SAMPLE_APPRAISAL_CSV.encode("utf-8")


@pytest.fixture
def sample_extract_json() -> dict:
    """Extract-stage model output (a fresh copy per test)."""
    return json.loads(json.dumps(SAMPLE_EXTRACT_JSON))


@pytest.fixture
def temp_db(tmp_path) -> Path:
    """Temporary database path for testing."""
    return tmp_path / "test_state.db"


@pytest.fixture
def store(temp_db) -> StateStore:
    """Fresh state store with all migrations applied."""
    return StateStore(temp_db, run_migrations=True)


@pytest.fixture
def seeded_store(store: StateStore) -> StateStore:
    """State store with a small catalog and seed aliases."""
    build = store.create_code("<build.cost>", "Build Cost", "Net Construction Costs")
    stamp = store.create_code("<stamp.duty>", "Stamp Duty", "Site Costs")
    site = store.create_code("<site.purchase.price>", "Site Purchase Price", "Site Costs")
    store.upsert_alias("Net Construction Cost", build.id, 1.0, AliasSource.SYSTEM_SEED)
    store.upsert_alias("Stamp Duty", stamp.id, 1.0, AliasSource.SYSTEM_SEED)
    store.upsert_alias("Site Purchase Price", site.id, 1.0, AliasSource.SYSTEM_SEED)
    return store


@pytest.fixture
def config(temp_db) -> Config:
    """Default configuration pointing at the temporary database."""
    return Config(state_db_path=temp_db)


def make_llm_response(payload, tokens: int = 100) -> LLMResponse:
    """LLMResponse carrying a JSON payload (or raw text)."""
    content = payload if isinstance(payload, str) else json.dumps(payload)
    return LLMResponse(content=content, tokens_used=tokens, model="test-model")


@pytest.fixture
def mock_llm_client() -> MagicMock:
    """LLM client double; set side_effect/return_value on .complete per test."""
    client = MagicMock()
    client.complete.return_value = make_llm_response({})
    return client
