"""Prompt templates for the extraction pipeline and Smart Pass.

Prompts are versioned; the version is stored with every job result so
extractions can be traced back to the prompt that produced them.
JSON examples live in the system prompts so user templates can use
str.format without escaping.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from deal_intel.schemas.codification import CodifiedItem
    from deal_intel.state_store import CanonicalCode

# v1.0: extract / normalize / verify / codify
PROMPT_VERSION = "v1.1"


@dataclass
class ExtractPrompt:
    """Prompt template for the extract stage: free text -> raw line items."""

    version: str = PROMPT_VERSION

    system_prompt: str = """You are a financial data extraction specialist for real-estate development appraisals.
Extract structured financial data from the document text or markdown tables.

RULES:
- Extract EVERY individual cost line item as a separate entry
- PRESERVE the cost names exactly as written in the "type" field
- "category" is separate from "type": Site Costs, Professional Fees, Net Construction Costs,
  Financing/Legal Fees, Disposal Fees
- Strip ALL currency symbols and thousand separators from amounts
- EXCLUDE zero, blank and "N/A" values
- EXCLUDE subtotals and totals
- Revenue and sales are NOT costs
- Per-plot build costs go in "plots"; costs the document only shows under category blocks
  may go in "costCategories"
- Detect the primary currency: £ -> GBP, $ -> USD, € -> EUR
- If nothing extractable is found, set extractionNotes to "No extractable financial data found"

Respond with COMPLETE, valid JSON only, in this EXACT format:
{
  "costs": [
    {"type": "Site Purchase Price", "amount": 500000, "currency": "GBP", "category": "Site Costs"},
    {"type": "Engineers", "amount": 9800, "currency": "GBP", "category": "Professional Fees"}
  ],
  "financing": {"loanAmount": 1500000, "interestRate": 0.085, "currency": "GBP"},
  "revenue": {"totalSales": 3200000, "currency": "GBP"},
  "profit": {"total": 450000, "percentage": 0.14, "currency": "GBP"},
  "units": {"count": 8, "type": "houses"},
  "plots": [{"name": "Plot 1", "cost": 285000, "currency": "GBP"}],
  "costCategories": {"siteCosts": {"items": [{"type": "Legal Fees", "amount": 6500}]}},
  "detectedCurrency": "GBP",
  "extractionNotes": "Brief notes on what was found or missing",
  "confidence": 0.85
}"""

    user_template: str = """Extract the financial data from this document.

File name: {file_name}

Document content:
{content}"""

    def format_user_message(self, content: str, file_name: str) -> str:
        """Format the user message with document content."""
        return self.user_template.format(file_name=file_name, content=content)


@dataclass
class NormalizePrompt:
    """Prompt template for the normalize stage.

    Removes subtotals and duplicates and canonicalizes units, currency and
    category grouping. Output uses the extract-stage format.
    """

    version: str = PROMPT_VERSION

    system_prompt: str = """You are a financial data normalization specialist.
Clean extracted financial data using the source document to validate it.

RULES:
- Remove subtotals, totals and duplicated line items
- Keep every original cost name ("type") exactly as extracted
- Express all amounts as plain numbers in the detected currency (e.g. "1.2m" -> 1200000)
- Express rates as decimals (8.5% -> 0.085)
- Group each cost under one category: Site Costs, Professional Fees, Net Construction Costs,
  Financing/Legal Fees, Disposal Fees
- Do NOT invent items that are not in the source

Respond with COMPLETE, valid JSON only, in the SAME format as the extracted data:
{
  "costs": [{"type": "...", "amount": 0, "currency": "GBP", "category": "..."}],
  "financing": {}, "revenue": {}, "profit": {}, "units": {},
  "detectedCurrency": "GBP",
  "extractionNotes": "What was cleaned",
  "confidence": 0.85
}"""

    user_template: str = """Normalize this extracted data.

File name: {file_name}

Extracted data:
{extracted_json}

Source document:
{content}"""

    def format_user_message(self, extracted_json: str, content: str, file_name: str) -> str:
        """Format the user message with extracted data and source content."""
        return self.user_template.format(
            file_name=file_name,
            extracted_json=extracted_json,
            content=content,
        )


@dataclass
class VerifyPrompt:
    """Prompt template for the verify stage.

    Cross-checks normalized data against the source and returns a corrected
    item set plus discrepancies and a verification confidence.
    """

    version: str = PROMPT_VERSION

    system_prompt: str = """You are a financial data verification specialist.
Validate extracted financial data against the source document.

RULES:
- Correct math errors and unit misinterpretations (thousands vs units)
- Ensure line items add up to the totals shown in the source
- Add items that were missed; remove subtotals, duplicates and revenue posted as costs
- PRESERVE all cost names and the data structure; do NOT simplify names
- Report every correction as a discrepancy

Respond with COMPLETE, valid JSON only, in the SAME format as the input data plus
verification fields:
{
  "costs": [{"type": "...", "amount": 0, "currency": "GBP", "category": "..."}],
  "financing": {}, "revenue": {}, "profit": {}, "units": {},
  "detectedCurrency": "GBP",
  "extractionNotes": "...",
  "confidence": 0.9,
  "verificationConfidence": 0.9,
  "verificationDiscrepancies": [
    {"type": "missing_item", "description": "Contingency of 45000 was not extracted"}
  ],
  "verificationNotes": "Totals reconcile with source"
}"""

    user_template: str = """Verify this data against the source document.

File name: {file_name}

Normalized data:
{normalized_json}

Source document:
{content}"""

    def format_user_message(self, normalized_json: str, content: str, file_name: str) -> str:
        """Format the user message with normalized data and source content."""
        return self.user_template.format(
            file_name=file_name,
            normalized_json=normalized_json,
            content=content,
        )


@dataclass
class CodificationPrompt:
    """Prompt template for Smart Pass code suggestions.

    Attributes:
        version: Prompt version.
        system_prompt: Code format and response contract.
        user_template: Catalog, alias context and the items to codify.
    """

    version: str = PROMPT_VERSION

    system_prompt: str = """You are a financial data codification specialist. Map extracted financial
items to standardized codes for a real-estate financial modeling system.

For each item, either map it to an existing code (if semantically equivalent) or suggest a new code.

CODE FORMAT RULES:
- Codes use angle brackets: <category.item> or <item>
- Lowercase with dots for hierarchy, e.g. <stamp.duty>, <site.costs>, <build.cost>, <interest.rate>
- Keep codes short and descriptive

DATA TYPES: currency (costs, prices, fees), number (counts), percentage (rates), string (text)

Use confidence 0.9+ for clear matches and 0.7-0.8 for ambiguous ones. Always give reasoning.

Respond with valid JSON only, one entry per item:
{
  "suggestions": [
    {
      "itemIndex": 1,
      "originalName": "SDLT",
      "suggestedCode": "<stamp.duty>",
      "suggestedDisplayName": "Stamp Duty",
      "suggestedCategory": "Purchase Costs",
      "suggestedDataType": "currency",
      "isNewCode": true,
      "confidence": 0.98,
      "reasoning": "SDLT is Stamp Duty Land Tax"
    }
  ]
}"""

    user_template: str = """{existing_codes}
{known_aliases}
ITEMS TO CODIFY:
{items}"""

    def format_user_message(
        self,
        items: list[CodifiedItem],
        codes: list[CanonicalCode],
        alias_samples: dict[str, list[str]],
        sample_size: int = 5,
    ) -> str:
        """Format the user message.

        Args:
            items: Pending items, numbered from 1 in prompt order.
            codes: Active catalog codes.
            alias_samples: Known aliases per code string.
            sample_size: Max aliases listed per code.

        Returns:
            Formatted user message.
        """
        if codes:
            by_category: dict[str, list[CanonicalCode]] = {}
            for code in codes:
                by_category.setdefault(code.category, []).append(code)
            lines = ["EXISTING CODES IN THE SYSTEM:"]
            for category in sorted(by_category):
                lines.append(f"{category}:")
                for code in by_category[category]:
                    lines.append(f"  - {code.code} ({code.display_name}) [{code.data_type.value}]")
            existing_codes = "\n".join(lines) + "\n"
        else:
            existing_codes = (
                "NO EXISTING CODES IN THE SYSTEM YET.\n"
                "This is a cold start - suggest new codes for all items.\n"
            )

        known_aliases = ""
        if alias_samples and sample_size > 0:
            lines = ["KNOWN ALIASES (terms that map to codes):"]
            for code in sorted(alias_samples):
                aliases = alias_samples[code]
                more = "..." if len(aliases) > sample_size else ""
                lines.append(f"  {code}: {', '.join(aliases[:sample_size])}{more}")
            known_aliases = "\n".join(lines) + "\n"

        items_text = "\n".join(
            f'{index}. "{item.original_name}" (value: {item.value:g}, category: {item.category})'
            for index, item in enumerate(items, start=1)
        )

        return self.user_template.format(
            existing_codes=existing_codes,
            known_aliases=known_aliases,
            items=items_text,
        )
