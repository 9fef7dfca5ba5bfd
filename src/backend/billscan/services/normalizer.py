"""
Bill normalization and deduplication.

Strategies hand over RawBillFields. normalize_bill() fills defaults and
stamps identity from the source descriptor. deduplicate_bills() removes
repeats across a batch, keeping the first occurrence.
"""

import logging
import re
import unicodedata
import uuid
from datetime import date, timedelta
from decimal import Decimal
from pathlib import PurePath
from typing import Dict, Iterable, List, Optional

from billscan.models.bill import Bill, BillSource, RawBillFields, SourceKind
from billscan.models.language import Language
from billscan.patterns.store import PatternStore, get_default_store

logger = logging.getLogger(__name__)

DEFAULT_VENDOR = "Unknown Vendor"
DEFAULT_CATEGORY = "Other"

CORPORATE_SUFFIXES = re.compile(
    r'\b(?:inc|llc|ltd|limited|corp|corporation|co|gmbh|plc|kft|zrt|nyrt|bt)\b\.?',
    re.IGNORECASE
)

# Email body and PDF attachment of one message describe the same bill when
# amounts agree within 1% and billing dates within a week
MERGE_AMOUNT_TOLERANCE = Decimal("0.01")
MERGE_DATE_WINDOW = timedelta(days=7)


def bill_id_for(source: BillSource) -> str:
    """
    Deterministic bill id from source identifiers.

    Examples:
        email + message "m1"                 -> "email-m1"
        pdf + message "m1" + attachment "a2" -> "pdf-m1-a2"
        manual                               -> "manual-<uuid>"
    """
    if source.kind == SourceKind.MANUAL or not (source.message_id or source.file_name):
        return f"{source.kind.value}-{uuid.uuid4()}"

    if source.kind == SourceKind.PDF:
        if source.message_id:
            parts = [source.message_id, source.attachment_id or "0"]
        else:
            parts = [_slug(PurePath(source.file_name).stem)]
        return "pdf-" + "-".join(parts)

    return f"{source.kind.value}-{source.message_id or _slug(source.file_name)}"


def _slug(value: str) -> str:
    return re.sub(r'[^a-z0-9]+', '-', value.lower()).strip('-') or "document"


def clean_vendor_name(name: Optional[str]) -> Optional[str]:
    """Collapse whitespace and strip stray punctuation from a vendor name."""
    if not name:
        return None
    cleaned = re.sub(r'\s+', ' ', name).strip(' \t\n.,;:-"\'')
    return cleaned[:100] or None


def normalize_bill(
    raw: RawBillFields,
    source: BillSource,
    *,
    language: Language,
    extraction_method: str,
    confidence: float,
    store: Optional[PatternStore] = None
) -> Bill:
    """
    Build a canonical Bill from extracted fields.

    Defaults:
        vendor -> "Unknown Vendor", category -> "Other",
        currency -> the language's default currency,
        billing_date -> today, is_paid -> False

    Args:
        raw: Fields extracted by a strategy
        source: Source descriptor to stamp on the bill
        language: Resolved document language
        extraction_method: Name of the producing strategy
        confidence: Extraction confidence
        store: Pattern store used for the default currency

    Returns:
        Immutable Bill

    Raises:
        pydantic.ValidationError: If a field cannot be coerced
    """
    store = store or get_default_store()
    pack = store.get_pattern_pack(language)

    amount = raw.amount if raw.amount is not None else Decimal("0")
    if amount < 0:
        amount = -amount

    currency = (raw.currency or pack.default_currency).upper()

    return Bill(
        id=bill_id_for(source),
        vendor=clean_vendor_name(raw.vendor) or DEFAULT_VENDOR,
        amount=amount,
        currency=currency,
        billing_date=raw.billing_date or date.today(),
        due_date=raw.due_date,
        category=raw.category or DEFAULT_CATEGORY,
        account_number=raw.account_number,
        invoice_number=raw.invoice_number,
        is_paid=False,
        source=source,
        extraction_method=extraction_method,
        language=language,
        extraction_confidence=max(0.0, min(1.0, confidence)),
        user_fields=dict(raw.user_fields),
    )


def normalize_vendor(name: str) -> str:
    """
    Comparison key for vendor names.

    Case, accents, punctuation and corporate suffixes are ignored:
    "MVM Next Zrt." and "mvm next" compare equal.
    """
    decomposed = unicodedata.normalize('NFKD', name or '')
    ascii_name = ''.join(ch for ch in decomposed if not unicodedata.combining(ch))
    ascii_name = CORPORATE_SUFFIXES.sub(' ', ascii_name.casefold())
    ascii_name = re.sub(r'[^\w\s]', ' ', ascii_name)
    return re.sub(r'\s+', ' ', ascii_name).strip()


def dedupe_key(bill: Bill) -> tuple:
    return (
        normalize_vendor(bill.vendor),
        bill.amount.quantize(Decimal("0.01")),
        bill.billing_date,
    )


def deduplicate_bills(bills: Iterable[Bill]) -> List[Bill]:
    """
    Remove duplicate bills, keeping the first occurrence.

    Two bills are duplicates when vendor (normalized), amount (to the cent)
    and billing day match, or when their source identifiers match.
    Order of the kept bills is the input order, and applying the function
    twice gives the same result as applying it once.

    Args:
        bills: Bills in arrival order

    Returns:
        Deduplicated list
    """
    seen_keys = set()
    seen_sources = set()
    unique: List[Bill] = []

    for bill in bills:
        key = dedupe_key(bill)
        identity = bill.source.identity()

        if key in seen_keys or (identity is not None and identity in seen_sources):
            logger.debug("Dropping duplicate bill", extra={'bill_id': bill.id})
            continue

        seen_keys.add(key)
        if identity is not None:
            seen_sources.add(identity)
        unique.append(bill)

    return unique


def _amounts_agree(a: Decimal, b: Decimal) -> bool:
    larger = max(a, b)
    if larger == 0:
        return a == b
    return abs(a - b) / larger <= MERGE_AMOUNT_TOLERANCE


def merge_bills(email_bill: Bill, pdf_bill: Bill) -> Bill:
    """
    Combine the bill found in an email body with the one in its attachment.

    The attachment is the authoritative document for amount and dates; the
    email usually names the vendor better.
    """
    vendor = email_bill.vendor if email_bill.vendor != DEFAULT_VENDOR else pdf_bill.vendor
    category = pdf_bill.category if pdf_bill.category != DEFAULT_CATEGORY else email_bill.category
    source = BillSource(
        kind=SourceKind.COMBINED,
        message_id=email_bill.source.message_id or pdf_bill.source.message_id,
        attachment_id=pdf_bill.source.attachment_id,
        file_name=pdf_bill.source.file_name,
    )

    return pdf_bill.model_copy(update={
        'id': f"combined-{source.message_id}",
        'vendor': vendor,
        'category': category,
        'due_date': pdf_bill.due_date or email_bill.due_date,
        'account_number': pdf_bill.account_number or email_bill.account_number,
        'invoice_number': pdf_bill.invoice_number or email_bill.invoice_number,
        'source': source,
        'extraction_method': f"{email_bill.extraction_method}+{pdf_bill.extraction_method}",
        'extraction_confidence': max(email_bill.extraction_confidence, pdf_bill.extraction_confidence),
        'user_fields': {**email_bill.user_fields, **pdf_bill.user_fields},
    })


def merge_related_bills(bills: Iterable[Bill]) -> List[Bill]:
    """
    Merge email/attachment bill pairs that come from the same message.

    A pair merges when both share a message id, amounts agree within 1% and
    billing dates are at most 7 days apart. The merged bill takes the
    position of the email bill; unpaired bills pass through unchanged.
    """
    bills = list(bills)
    pdf_by_message: Dict[str, List[int]] = {}
    for index, bill in enumerate(bills):
        if bill.source.kind == SourceKind.PDF and bill.source.message_id:
            pdf_by_message.setdefault(bill.source.message_id, []).append(index)

    pairs: Dict[int, int] = {}
    consumed = set()
    for index, bill in enumerate(bills):
        if bill.source.kind != SourceKind.EMAIL or not bill.source.message_id:
            continue
        for pdf_index in pdf_by_message.get(bill.source.message_id, []):
            if pdf_index in consumed:
                continue
            pdf_bill = bills[pdf_index]
            if (_amounts_agree(bill.amount, pdf_bill.amount)
                    and abs(bill.billing_date - pdf_bill.billing_date) <= MERGE_DATE_WINDOW):
                pairs[index] = pdf_index
                consumed.add(pdf_index)
                break

    merged: List[Bill] = []
    for index, bill in enumerate(bills):
        if index in consumed:
            continue
        if index in pairs:
            bill = merge_bills(bill, bills[pairs[index]])
            logger.debug("Merged email and attachment bills", extra={'bill_id': bill.id})
        merged.append(bill)

    return merged
