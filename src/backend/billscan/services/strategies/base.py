"""
Common interface and shared confidence policy for extraction strategies.
"""

import logging
import re
from abc import ABC, abstractmethod
from datetime import date
from email.utils import parseaddr
from pathlib import PurePath
from typing import Optional, Tuple

from billscan.config import settings
from billscan.models.bill import (
    BillSource,
    EmailContext,
    ExtractionErrorKind,
    ExtractionResult,
    PdfContext,
    SourceKind,
)
from billscan.models.language import Language
from billscan.patterns.store import LanguagePatternPack, PatternStore, VendorOverride, get_default_store
from billscan.services.pdf_text import TextRecoveryChain
from billscan.utils.language import detect_language

logger = logging.getLogger(__name__)

# Gate failures never report more than this
REJECT_CONFIDENCE_CAP = 0.2

# Errors a malformed document can trigger inside extraction code
EXTRACTION_ERRORS = (re.error, ValueError, ArithmeticError, AttributeError, TypeError)


class ExtractionStrategy(ABC):
    """
    Base class for bill extraction strategies.

    Subclasses implement _extract_email() and _extract_pdf(). The public
    methods wrap them so malformed input always degrades to a failed
    ExtractionResult instead of an exception.
    """
    name: str = "base"

    def __init__(
        self,
        store: Optional[PatternStore] = None,
        recovery_chain: Optional[TextRecoveryChain] = None
    ):
        self.store = store or get_default_store()
        self.recovery_chain = recovery_chain or TextRecoveryChain()

    async def extract_from_email(self, context: EmailContext) -> ExtractionResult:
        try:
            return await self._extract_email(context)
        except EXTRACTION_ERRORS as e:
            logger.warning(
                "Email extraction failed",
                extra={'strategy': self.name, 'message_id': context.message_id},
                exc_info=True
            )
            return ExtractionResult.failure(
                f"Extraction error: {e}", 0.0, ExtractionErrorKind.MALFORMED_INPUT
            )

    async def extract_from_pdf(self, context: PdfContext) -> ExtractionResult:
        try:
            text = await self.pdf_text(context)
            if not text.strip():
                return ExtractionResult.failure(
                    "No bills found: no text could be recovered from PDF",
                    0.0,
                    ExtractionErrorKind.MALFORMED_INPUT
                )
            return await self._extract_pdf(context, text)
        except EXTRACTION_ERRORS as e:
            logger.warning(
                "PDF extraction failed",
                extra={'strategy': self.name, 'file_name': context.file_name},
                exc_info=True
            )
            return ExtractionResult.failure(
                f"Extraction error: {e}", 0.0, ExtractionErrorKind.MALFORMED_INPUT
            )

    @abstractmethod
    async def _extract_email(self, context: EmailContext) -> ExtractionResult:
        ...

    @abstractmethod
    async def _extract_pdf(self, context: PdfContext, text: str) -> ExtractionResult:
        ...

    async def pdf_text(self, context: PdfContext) -> str:
        """Already-recovered text if the caller supplied it, else run the recovery chain."""
        if context.text:
            return context.text
        if not context.data:
            return ""
        recovered = await self.recovery_chain.recover(context.data)
        return recovered.text

    # Shared policy

    def resolve_language(self, hint: Optional[str], text: str) -> Language:
        """Language hint when given, otherwise detected from the text."""
        if hint:
            return Language.resolve(hint)
        return detect_language(text)

    def apply_confidence_policy(
        self,
        confidence: float,
        *,
        trusted: bool = False,
        vendor_override: bool = False
    ) -> float:
        """
        Apply the confidence rules every strategy shares.

        - A vendor-override match lifts confidence to VENDOR_OVERRIDE_CONFIDENCE
        - A trusted source lifts confidence to TRUSTED_CONFIDENCE_FLOOR
        """
        if vendor_override:
            confidence = max(confidence, settings.VENDOR_OVERRIDE_CONFIDENCE)
        if trusted:
            confidence = max(confidence, settings.TRUSTED_CONFIDENCE_FLOOR)
        return max(0.0, min(1.0, confidence))

    def reject(self, error: str, confidence: float = 0.1, **debug) -> ExtractionResult:
        """Failed result for a document that does not look like a bill."""
        return ExtractionResult.failure(
            error,
            min(confidence, REJECT_CONFIDENCE_CAP),
            ExtractionErrorKind.NOT_A_BILL,
            strategy=self.name,
            **debug
        )

    def missing_field(self, error: str, confidence: float, **debug) -> ExtractionResult:
        return ExtractionResult.failure(
            error, confidence, ExtractionErrorKind.MISSING_FIELD, strategy=self.name, **debug
        )

    def resolve_currency(
        self,
        pack: LanguagePatternPack,
        text: str,
        override: Optional[VendorOverride] = None
    ) -> str:
        """Vendor override currency, then a symbol in the text, then the language default."""
        if override and override.currency:
            return override.currency
        return pack.currency_for(text) or pack.default_currency

    # Source helpers

    @staticmethod
    def email_source(context: EmailContext) -> BillSource:
        return BillSource(kind=SourceKind.EMAIL, message_id=context.message_id)

    @staticmethod
    def pdf_source(context: PdfContext) -> BillSource:
        return BillSource(
            kind=SourceKind.PDF,
            message_id=context.source_message_id,
            attachment_id=context.attachment_id,
            file_name=context.file_name,
        )

    @staticmethod
    def received_date(received_at) -> Optional[date]:
        return received_at.date() if received_at else None

    @staticmethod
    def sender_parts(sender: str) -> Tuple[str, str, str]:
        """
        Split a From: header.

        Returns:
            (display_name, local_part, domain), empty strings when absent
        """
        display_name, address = parseaddr(sender or "")
        local_part, _, domain = address.partition('@')
        return display_name.strip().strip('"'), local_part, domain.lower()

    @staticmethod
    def file_stem(file_name: str) -> str:
        stem = PurePath(file_name or "").stem
        return re.sub(r'[_\-]+', ' ', stem).strip()
