"""
Intelligence fields and typed document payloads.

A document that yields deal-level facts produces one payload, tagged by its
document category. Each payload knows the entity it describes (client or
project) and converts itself into dotted-path IntelligenceFields that the
merge engine can reconcile.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, ClassVar


class EntityType(str, Enum):
    """Owner of an intelligence record."""

    CLIENT = "client"
    PROJECT = "project"


class DocumentCategory(str, Enum):
    """Document categories that carry field-level facts."""

    VALUATION = "valuation"
    BANK_STATEMENT = "bank_statement"
    PLANNING_DECISION = "planning_decision"
    KYC = "kyc"


@dataclass
class IntelligenceField:
    """A single fact about a client or project."""

    field_path: str
    value: Any
    confidence: float
    source_text: str | None = None
    source_document_id: str | None = None
    source_document_name: str | None = None
    updated_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "field_path": self.field_path,
            "value": self.value,
            "confidence": self.confidence,
            "source_text": self.source_text,
            "source_document_id": self.source_document_id,
            "source_document_name": self.source_document_name,
            "updated_at": self.updated_at,
        }


def _snake_to_camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _camel_to_snake(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


@dataclass
class DocumentPayload:
    """Base class for typed document payloads.

    Subclasses declare their data attributes plus ``FIELD_PATHS`` (attribute
    name to intelligence path) and ``ENTITY_TYPE``.
    """

    CATEGORY: ClassVar[DocumentCategory]
    ENTITY_TYPE: ClassVar[EntityType]
    FIELD_PATHS: ClassVar[dict[str, str]] = {}

    confidence: float = 0.0
    source_text: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DocumentPayload:
        """Build from snake_case or camelCase keys; unknown keys are ignored."""
        normalized = {_camel_to_snake(k): v for k, v in data.items()}
        names = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in normalized.items() if k in names}
        if "confidence" in kwargs:
            kwargs["confidence"] = max(0.0, min(1.0, float(kwargs["confidence"])))
        return cls(**kwargs)

    def to_fields(
        self,
        document_id: str | None = None,
        document_name: str | None = None,
    ) -> list[IntelligenceField]:
        """Convert populated attributes into intelligence fields."""
        result = []
        for attr, path in self.FIELD_PATHS.items():
            value = getattr(self, attr)
            if value is None or value == "":
                continue
            result.append(
                IntelligenceField(
                    field_path=path,
                    value=value,
                    confidence=self.confidence,
                    source_text=self.source_text,
                    source_document_id=document_id,
                    source_document_name=document_name,
                )
            )
        return result

    def to_dict(self) -> dict[str, Any]:
        data = {_snake_to_camel(f.name): getattr(self, f.name) for f in fields(self)}
        data["category"] = self.CATEGORY.value
        return data


@dataclass
class ValuationPayload(DocumentPayload):
    """RICS-style valuation report for a development site."""

    CATEGORY: ClassVar[DocumentCategory] = DocumentCategory.VALUATION
    ENTITY_TYPE: ClassVar[EntityType] = EntityType.PROJECT
    FIELD_PATHS: ClassVar[dict[str, str]] = {
        "market_value": "financials.currentValue",
        "gross_development_value": "financials.grossDevelopmentValue",
        "day_one_value": "valuation.dayOneValue",
        "valuation_date": "valuation.date",
        "valuer": "valuation.valuer",
    }

    market_value: float | None = None
    gross_development_value: float | None = None
    day_one_value: float | None = None
    valuation_date: str | None = None
    valuer: str | None = None


@dataclass
class BankStatementPayload(DocumentPayload):
    """Borrower bank statement."""

    CATEGORY: ClassVar[DocumentCategory] = DocumentCategory.BANK_STATEMENT
    ENTITY_TYPE: ClassVar[EntityType] = EntityType.CLIENT
    FIELD_PATHS: ClassVar[dict[str, str]] = {
        "bank_name": "banking.bankName",
        "account_holder": "banking.accountHolder",
        "closing_balance": "financials.closingBalance",
        "average_balance": "financials.averageBalance",
        "period_end": "banking.statementPeriodEnd",
    }

    bank_name: str | None = None
    account_holder: str | None = None
    closing_balance: float | None = None
    average_balance: float | None = None
    period_end: str | None = None


@dataclass
class PlanningDecisionPayload(DocumentPayload):
    """Local-authority planning decision notice."""

    CATEGORY: ClassVar[DocumentCategory] = DocumentCategory.PLANNING_DECISION
    ENTITY_TYPE: ClassVar[EntityType] = EntityType.PROJECT
    FIELD_PATHS: ClassVar[dict[str, str]] = {
        "planning_reference": "planning.reference",
        "planning_status": "planning.status",
        "approval_date": "planning.approvalDate",
        "local_authority": "planning.localAuthority",
        "unit_count": "overview.unitCount",
    }

    planning_reference: str | None = None
    planning_status: str | None = None
    approval_date: str | None = None
    local_authority: str | None = None
    unit_count: int | None = None


@dataclass
class KycPayload(DocumentPayload):
    """Identity / KYC document for a client's principal."""

    CATEGORY: ClassVar[DocumentCategory] = DocumentCategory.KYC
    ENTITY_TYPE: ClassVar[EntityType] = EntityType.CLIENT
    FIELD_PATHS: ClassVar[dict[str, str]] = {
        "full_name": "contact.primaryName",
        "date_of_birth": "kyc.dateOfBirth",
        "nationality": "kyc.nationality",
        "address": "contact.address",
        "id_document_type": "kyc.idDocumentType",
    }

    full_name: str | None = None
    date_of_birth: str | None = None
    nationality: str | None = None
    address: str | None = None
    id_document_type: str | None = None


PAYLOAD_TYPES: dict[DocumentCategory, type[DocumentPayload]] = {
    DocumentCategory.VALUATION: ValuationPayload,
    DocumentCategory.BANK_STATEMENT: BankStatementPayload,
    DocumentCategory.PLANNING_DECISION: PlanningDecisionPayload,
    DocumentCategory.KYC: KycPayload,
}


def payload_from_dict(category: str | DocumentCategory, data: dict[str, Any]) -> DocumentPayload:
    """Build the typed payload for a document category.

    Raises:
        ValueError: If the category has no payload type.
    """
    try:
        payload_cls = PAYLOAD_TYPES[DocumentCategory(category)]
    except ValueError:
        raise ValueError(f"Unknown document category: {category}") from None
    return payload_cls.from_dict(data)
