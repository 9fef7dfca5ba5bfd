"""
User-defined field extraction strategy.

Users configure the columns they track (for example "Issuer", "Total",
"Payment deadline"). Each column name is mapped onto a known field type and
extracted with a generic pattern set for that type. Values land in
Bill.user_fields under the column name; recognised core fields (amount,
vendor, dates, account and invoice numbers) also fill the Bill itself.
"""

import logging
import re
from typing import Dict, List, Optional, Sequence, Tuple

from billscan.models.bill import (
    EmailContext,
    ExtractionResult,
    PdfContext,
    RawBillFields,
    UserFieldDefinition,
)
from billscan.models.language import Language
from billscan.services.normalizer import normalize_bill
from billscan.services.strategies.base import ExtractionStrategy
from billscan.utils.dates import parse_date, to_iso
from billscan.utils.money import parse_amount

logger = logging.getLogger(__name__)

# Field types a user column can map onto
AMOUNT = "amount"
DATE = "date"
VENDOR = "vendor"
ACCOUNT_NUMBER = "account_number"
INVOICE_NUMBER = "invoice_number"
TEXT = "text"

# Checked in order, first hit wins
NAME_HEURISTICS: Tuple[Tuple[Tuple[str, ...], str], ...] = (
    (("issuer", "vendor", "company", "merchant"), VENDOR),
    (("amount", "price", "total", "cost"), AMOUNT),
    (("due_date", "payment_due", "deadline"), DATE),
    (("invoice_number", "bill_number", "reference"), INVOICE_NUMBER),
    (("account", "customer_id", "client"), ACCOUNT_NUMBER),
    (("invoice_date", "bill_date", "issued"), DATE),
)

FIELD_TYPE_FALLBACK = {
    "currency": AMOUNT,
    "decimal": AMOUNT,
    "number": AMOUNT,
    "date": DATE,
}

_NUMBER = r'\d[\d .,\u00a0]*\d|\d'
_DATE_VALUE = (
    r'\d{4}[./-]\s?\d{1,2}[./-]\s?\d{1,2}\.?'
    r'|\d{1,2}[./-]\d{1,2}[./-]\d{2,4}'
    r'|[A-Z][a-z]{2,8}\.? \d{1,2},? \d{4}'
)
_IDENTIFIER = r'[A-Za-z0-9][\w\-/]{4,}'

GENERIC_PATTERNS: Dict[str, Tuple[re.Pattern, ...]] = {
    AMOUNT: (
        re.compile(
            r'(?:összesen|végösszeg|fizetendő|összeg|total|amount due|balance due|amount)'
            r'\s*:?\s*(?:[$€£]\s*)?(' + _NUMBER + r')\s*(?:Ft|HUF|forint|EUR|€|USD)?',
            re.IGNORECASE
        ),
        re.compile(r'(' + _NUMBER + r')\s*(?:Ft|HUF|forint|EUR|€)\b', re.IGNORECASE),
        re.compile(r'[$€£]\s*(' + _NUMBER + r')'),
    ),
    DATE: (
        re.compile(
            r'(?:határidő|dátum|kelte|date|issued|due)\s*:?\s*(' + _DATE_VALUE + r')',
            re.IGNORECASE
        ),
        re.compile(r'(' + _DATE_VALUE + r')'),
    ),
    VENDOR: (
        re.compile(
            r'(?:szolgáltató|eladó|company|vendor|provider|issuer|merchant)\s*:?\s*'
            r'([A-Za-zÀ-ž][^\n]{1,80}?)\s*(?:\n|$)',
            re.IGNORECASE
        ),
        re.compile(r'\b(MVM|Főgáz|ELMŰ|ÉMÁSZ|E\.ON|Tigáz|DIGI|Telekom|Vodafone|Yettel)\b'),
    ),
    ACCOUNT_NUMBER: (
        re.compile(
            r'(?:számlaszám|account(?: number| no\.?| #)?|customer id|ügyfél ?azonosító)'
            r'\s*:?\s*(' + _IDENTIFIER + r')',
            re.IGNORECASE
        ),
        re.compile(
            r'(?:felhasználó azonosító|fogyasztó azonosító|client id)\s*:?\s*(' + _IDENTIFIER + r')',
            re.IGNORECASE
        ),
    ),
    INVOICE_NUMBER: (
        re.compile(
            r'(?:számla sorszáma|invoice (?:number|no\.?|#)|bill number|reference)'
            r'\s*:?\s*(' + _IDENTIFIER + r')',
            re.IGNORECASE
        ),
        re.compile(r'(?:bizonylatszám)\s*:?\s*(' + _IDENTIFIER + r')', re.IGNORECASE),
    ),
    TEXT: (),
}


def map_field_type(name: str, field_type: str = "text") -> str:
    """
    Classify a user column into one of the known field types.

    The column name decides first (so "Total cost" is an amount even when
    configured as text); the configured field_type is the fallback.

    Args:
        name: Column name as configured by the user
        field_type: Configured value type (text, currency, decimal, number, date)

    Returns:
        One of amount, date, vendor, account_number, invoice_number, text
    """
    key = re.sub(r'[\s\-]+', '_', (name or "").strip().lower())
    for words, mapped in NAME_HEURISTICS:
        if any(word in key for word in words):
            return mapped
    return FIELD_TYPE_FALLBACK.get((field_type or "").lower(), TEXT)


def is_due_date_field(name: str) -> bool:
    key = re.sub(r'[\s\-]+', '_', (name or "").strip().lower())
    return any(word in key for word in ("due", "deadline", "határidő"))


class UserFieldStrategy(ExtractionStrategy):
    """Extraction driven by user-configured field definitions."""
    name = "user-field"

    EMAIL_CONFIDENCE = 0.7
    PDF_CONFIDENCE = 0.8

    def __init__(self, definitions: Sequence[UserFieldDefinition] = (), **kwargs):
        super().__init__(**kwargs)
        self.definitions = [d for d in definitions if d.enabled]

    async def _extract_email(self, context: EmailContext) -> ExtractionResult:
        text = f"{context.subject}\n\n{context.body}"
        language = self.resolve_language(context.language, text)
        result = self._extract(text, language)
        if isinstance(result, ExtractionResult):
            return result

        raw = result
        if not raw.vendor:
            display_name, local_part, _ = self.sender_parts(context.sender)
            raw.vendor = display_name or local_part or None
        raw.billing_date = raw.billing_date or self.received_date(context.received_at)

        confidence = self.apply_confidence_policy(
            self.EMAIL_CONFIDENCE, trusted=context.trusted_source
        )
        bill = normalize_bill(
            raw, self.email_source(context),
            language=language, extraction_method=self.name,
            confidence=confidence, store=self.store,
        )
        return ExtractionResult.ok(
            [bill], confidence, strategy=self.name,
            language=language.value, fields=sorted(raw.user_fields)
        )

    async def _extract_pdf(self, context: PdfContext, text: str) -> ExtractionResult:
        language = self.resolve_language(context.language, text)
        result = self._extract(text, language)
        if isinstance(result, ExtractionResult):
            return result

        raw = result
        raw.vendor = raw.vendor or self.file_stem(context.file_name) or None
        raw.billing_date = raw.billing_date or self.received_date(context.received_at)

        confidence = self.apply_confidence_policy(
            self.PDF_CONFIDENCE, trusted=context.trusted_source
        )
        bill = normalize_bill(
            raw, self.pdf_source(context),
            language=language, extraction_method=self.name,
            confidence=confidence, store=self.store,
        )
        return ExtractionResult.ok(
            [bill], confidence, strategy=self.name,
            language=language.value, fields=sorted(raw.user_fields)
        )

    def _extract(self, text: str, language: Language):
        """RawBillFields on success, otherwise the failed ExtractionResult."""
        if not self.definitions:
            return self.reject("No user field definitions configured", 0.0)

        raw = self.extract_user_fields(text, language)
        if not any(raw.user_fields.values()):
            return self.missing_field(
                "No fields could be extracted", 0.0, language=language.value
            )
        if raw.amount is None or raw.amount <= 0:
            return self.missing_field(
                "Could not extract amount from user fields", 0.2, language=language.value
            )

        pack = self.store.get_pattern_pack(language)
        raw.currency = self.resolve_currency(pack, text)
        service = pack.detect_service_type(text)
        if service:
            raw.category = service.category
        return raw

    def extract_user_fields(self, text: str, language: Language) -> RawBillFields:
        """
        Extract every enabled user field and map recognised ones onto the Bill.

        Returns:
            RawBillFields with user_fields filled for each definition
            (None when the value was not found)
        """
        raw = RawBillFields()
        for definition in self.definitions:
            mapped = map_field_type(definition.name, definition.field_type)
            value = self.find_value(text, definition, mapped)

            if mapped == AMOUNT:
                amount = parse_amount(value, language) if value else None
                if amount is not None and amount > 0:
                    raw.amount = raw.amount if raw.amount is not None else amount
                    raw.user_fields[definition.name] = str(amount)
                else:
                    raw.user_fields[definition.name] = None
            elif mapped == DATE:
                parsed = parse_date(value, language) if value else None
                if parsed and is_due_date_field(definition.name):
                    raw.due_date = raw.due_date or parsed
                elif parsed:
                    raw.billing_date = raw.billing_date or parsed
                raw.user_fields[definition.name] = to_iso(parsed)
            else:
                if mapped == VENDOR:
                    raw.vendor = raw.vendor or value
                elif mapped == ACCOUNT_NUMBER:
                    raw.account_number = raw.account_number or value
                elif mapped == INVOICE_NUMBER:
                    raw.invoice_number = raw.invoice_number or value
                raw.user_fields[definition.name] = value

        logger.debug(
            "User fields extracted",
            extra={'fields': {k: v is not None for k, v in raw.user_fields.items()}}
        )
        return raw

    def find_value(self, text: str, definition: UserFieldDefinition, mapped: str) -> Optional[str]:
        """Labelled value first ("<display name>: value"), then the type's generic patterns."""
        for label in self._labels(definition):
            match = re.search(
                r'(?:^|\n)[ \t]*' + re.escape(label) + r'[ \t]*[:\-][ \t]*([^\n]+)',
                text,
                re.IGNORECASE
            )
            if match:
                value = match.group(1).strip()
                if value:
                    return value

        for pattern in GENERIC_PATTERNS.get(mapped, ()):
            match = pattern.search(text)
            if match:
                value = (match.group(1) if match.groups() else match.group(0)).strip()
                if value:
                    return value
        return None

    @staticmethod
    def _labels(definition: UserFieldDefinition) -> List[str]:
        labels = []
        for label in (definition.display_name, definition.name, definition.name.replace('_', ' ')):
            label = (label or "").strip()
            if label and label not in labels:
                labels.append(label)
        return labels
