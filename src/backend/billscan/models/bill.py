"""
Pydantic models for bills and extraction inputs/outputs.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from billscan.models.language import Language


class SourceKind(str, Enum):
    """Where a bill came from."""
    EMAIL = "email"
    PDF = "pdf"
    MANUAL = "manual"
    COMBINED = "combined"  # Email body and its PDF attachment merged


class ExtractionErrorKind(str, Enum):
    """Failure taxonomy for extraction results."""
    NOT_A_BILL = "not_a_bill"
    MISSING_FIELD = "missing_field"
    MALFORMED_INPUT = "malformed_input"
    TIMEOUT = "timeout"


class BillSource(BaseModel):
    """Source descriptor stamped on every bill."""
    kind: SourceKind
    message_id: Optional[str] = None
    attachment_id: Optional[str] = None
    file_name: Optional[str] = None

    class Config:
        frozen = True

    def identity(self) -> Optional[tuple]:
        """
        Identifiers that make two bills the same document.

        Returns:
            (kind, message_id, attachment_id) tuple, or None when the
            source carries no message id (manual bills)
        """
        if not self.message_id:
            return None
        return (self.kind.value, self.message_id, self.attachment_id)


class Bill(BaseModel):
    """Canonical normalized bill record. Immutable once created."""
    id: str
    vendor: str
    amount: Decimal = Field(ge=0)
    currency: str
    billing_date: date
    due_date: Optional[date] = None
    category: str = "Other"
    account_number: Optional[str] = None
    invoice_number: Optional[str] = None
    is_paid: bool = False
    source: BillSource
    extraction_method: str
    language: Language
    extraction_confidence: float = Field(ge=0.0, le=1.0)
    # User-configured fields, kept apart from the fixed schema
    user_fields: Dict[str, Optional[str]] = Field(default_factory=dict)

    class Config:
        frozen = True


class ExtractionResult(BaseModel):
    """Outcome of one extraction attempt on one document."""
    success: bool
    bills: List[Bill] = Field(default_factory=list)
    confidence: float = 0.0
    error: Optional[str] = None
    error_kind: Optional[ExtractionErrorKind] = None
    debug: Dict[str, Any] = Field(default_factory=dict)

    @field_validator('confidence')
    @classmethod
    def _clamp_confidence(cls, value: float) -> float:
        return max(0.0, min(1.0, float(value)))

    @model_validator(mode='after')
    def _failed_results_carry_no_bills(self) -> "ExtractionResult":
        if not self.success and self.bills:
            raise ValueError("failed extraction result cannot carry bills")
        return self

    @classmethod
    def ok(cls, bills: List[Bill], confidence: float, **debug: Any) -> "ExtractionResult":
        return cls(success=True, bills=bills, confidence=confidence, debug=debug)

    @classmethod
    def failure(
        cls,
        error: str,
        confidence: float = 0.0,
        kind: ExtractionErrorKind = ExtractionErrorKind.NOT_A_BILL,
        **debug: Any
    ) -> "ExtractionResult":
        return cls(success=False, confidence=confidence, error=error, error_kind=kind, debug=debug)


class EmailContext(BaseModel):
    """Already-fetched email handed to the engine."""
    message_id: str
    subject: str = ""
    body: str = ""
    sender: str = ""
    received_at: Optional[datetime] = None
    trusted_source: bool = False
    language: Optional[str] = None


class PdfContext(BaseModel):
    """PDF attachment given as raw bytes, already-recovered text, or both."""
    data: Optional[bytes] = None
    text: Optional[str] = None
    file_name: str = "document.pdf"
    source_message_id: Optional[str] = None
    attachment_id: Optional[str] = None
    received_at: Optional[datetime] = None
    trusted_source: bool = False
    language: Optional[str] = None


class UserFieldDefinition(BaseModel):
    """A user-configured output column."""
    name: str
    display_name: str = ""
    field_type: str = "text"  # text, currency, decimal, number, date
    enabled: bool = True


@dataclass
class RawBillFields:
    """Fields a strategy pulled out of a document, before normalization."""
    amount: Optional[Decimal] = None
    vendor: Optional[str] = None
    currency: Optional[str] = None
    billing_date: Optional[date] = None
    due_date: Optional[date] = None
    category: Optional[str] = None
    account_number: Optional[str] = None
    invoice_number: Optional[str] = None
    user_fields: Dict[str, Optional[str]] = field(default_factory=dict)
