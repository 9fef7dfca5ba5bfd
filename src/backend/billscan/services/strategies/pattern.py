"""
Pattern-based extraction strategy.

Relies entirely on the language pattern pack: the document must contain
one of the pack's identifier phrases (trusted senders skip this gate), the
pack's field patterns pull the values, and the pack's weights score the
result.
"""

import logging
from typing import Optional, Tuple

from billscan.models.bill import EmailContext, ExtractionResult, PdfContext, RawBillFields
from billscan.patterns.store import LanguagePatternPack, VendorOverride
from billscan.services.normalizer import normalize_bill
from billscan.services.strategies.base import ExtractionStrategy
from billscan.utils.dates import parse_date
from billscan.utils.money import parse_amount

logger = logging.getLogger(__name__)


class PatternStrategy(ExtractionStrategy):
    """Language-pack driven extraction."""
    name = "pattern-based"

    async def _extract_email(self, context: EmailContext) -> ExtractionResult:
        full_text = f"{context.subject}\n\n{context.body}"
        language = self.resolve_language(context.language, full_text)
        pack = self.store.get_pattern_pack(language)

        if not context.trusted_source and not pack.matches_document_identifier(full_text):
            return self.reject(
                "Email does not match bill patterns", 0.1, language=language.value
            )

        confidence = pack.calculate_confidence(full_text)
        raw, override = self.extract_fields(pack, full_text)

        if raw.amount is None or raw.amount <= 0:
            return self.missing_field(
                "Could not extract amount from email", confidence, language=language.value
            )

        if not raw.vendor:
            display_name, local_part, _ = self.sender_parts(context.sender)
            raw.vendor = display_name or local_part or None
        raw.billing_date = raw.billing_date or self.received_date(context.received_at)

        confidence = self.apply_confidence_policy(
            confidence,
            trusted=context.trusted_source,
            vendor_override=override is not None,
        )
        bill = normalize_bill(
            raw, self.email_source(context),
            language=language, extraction_method=self.name,
            confidence=confidence, store=self.store,
        )

        logger.info(
            "Pattern extraction succeeded",
            extra={'bill_id': bill.id, 'language': language.value, 'confidence': confidence}
        )
        return ExtractionResult.ok([bill], confidence, strategy=self.name, language=language.value)

    async def _extract_pdf(self, context: PdfContext, text: str) -> ExtractionResult:
        language = self.resolve_language(context.language, text)
        pack = self.store.get_pattern_pack(language)

        confidence = pack.calculate_confidence(text)
        has_identifier = pack.matches_document_identifier(text)
        below_minimum = confidence < pack.confidence.minimum_required
        if not context.trusted_source and not has_identifier and below_minimum:
            return self.reject(
                "PDF does not match bill patterns", confidence, language=language.value
            )

        raw, override = self.extract_fields(pack, text)
        if raw.amount is None or raw.amount <= 0:
            return self.missing_field(
                "Could not extract amount from PDF", confidence, language=language.value
            )

        raw.vendor = raw.vendor or self.file_stem(context.file_name) or None
        raw.billing_date = raw.billing_date or self.received_date(context.received_at)

        confidence = self.apply_confidence_policy(
            confidence,
            trusted=context.trusted_source,
            vendor_override=override is not None,
        )
        bill = normalize_bill(
            raw, self.pdf_source(context),
            language=language, extraction_method=self.name,
            confidence=confidence, store=self.store,
        )
        return ExtractionResult.ok([bill], confidence, strategy=self.name, language=language.value)

    def extract_fields(
        self,
        pack: LanguagePatternPack,
        text: str
    ) -> Tuple[RawBillFields, Optional[VendorOverride]]:
        """
        Pull every Bill field the pack knows about out of the text.

        Args:
            pack: Pattern pack of the document language
            text: Document text

        Returns:
            (RawBillFields, matched vendor override or None)
        """
        override = pack.match_vendor_override(text)
        raw = RawBillFields()

        amount_text = pack.extract_field(text, 'amount')
        if amount_text:
            raw.amount = parse_amount(amount_text, pack.language)

        raw.due_date = parse_date(pack.extract_field(text, 'dueDate'), pack.language)
        raw.billing_date = parse_date(pack.extract_field(text, 'billingDate'), pack.language)
        raw.vendor = pack.extract_field(text, 'vendor') or (override.name if override else None)
        raw.account_number = pack.extract_field(text, 'accountNumber')
        raw.invoice_number = pack.extract_field(text, 'invoiceNumber')
        raw.currency = self.resolve_currency(pack, text, override)

        service = pack.detect_service_type(text)
        if override and override.category:
            raw.category = override.category
        elif service:
            raw.category = service.category

        return raw, override
