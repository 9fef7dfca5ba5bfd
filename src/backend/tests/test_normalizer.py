"""
Test suite for bill normalization, deduplication and email/attachment merging.
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from billscan.models.bill import Bill, BillSource, ExtractionResult, RawBillFields, SourceKind
from billscan.models.language import Language
from billscan.services.normalizer import (
    bill_id_for,
    deduplicate_bills,
    merge_bills,
    merge_related_bills,
    normalize_bill,
    normalize_vendor,
)
from datetime import date
from decimal import Decimal
import pytest


def make_bill(vendor="Netflix", amount="15.49", billing_date=date(2023, 6, 1),
              kind=SourceKind.EMAIL, message_id="m1", attachment_id=None, **extra):
    source = BillSource(kind=kind, message_id=message_id, attachment_id=attachment_id)
    raw = RawBillFields(amount=Decimal(amount), vendor=vendor, billing_date=billing_date, **extra)
    return normalize_bill(
        raw, source, language=Language.EN, extraction_method="pattern-based", confidence=0.8
    )


class TestNormalizeBill:

    def test_defaults(self):
        bill = normalize_bill(
            RawBillFields(amount=Decimal("10")),
            BillSource(kind=SourceKind.EMAIL, message_id="abc"),
            language=Language.HU, extraction_method="regex-based", confidence=0.6,
        )
        assert bill.vendor == "Unknown Vendor"
        assert bill.category == "Other"
        assert bill.currency == "HUF"
        assert bill.billing_date == date.today()
        assert bill.is_paid is False
        assert bill.id == "email-abc"

    def test_bill_is_immutable(self):
        bill = make_bill()
        with pytest.raises(Exception):
            bill.amount = Decimal("1")

    def test_vendor_cleanup(self):
        assert make_bill(vendor='  "Acme   Utilities",  ').vendor == "Acme Utilities"


class TestBillIds:

    def test_email(self):
        assert bill_id_for(BillSource(kind=SourceKind.EMAIL, message_id="m1")) == "email-m1"

    def test_pdf_attachment(self):
        source = BillSource(kind=SourceKind.PDF, message_id="m1", attachment_id="a2")
        assert bill_id_for(source) == "pdf-m1-a2"

    def test_pdf_upload(self):
        source = BillSource(kind=SourceKind.PDF, file_name="My Bill (June).pdf")
        assert bill_id_for(source) == "pdf-my-bill-june"

    def test_manual(self):
        first = bill_id_for(BillSource(kind=SourceKind.MANUAL))
        second = bill_id_for(BillSource(kind=SourceKind.MANUAL))
        assert first.startswith("manual-")
        assert first != second


class TestExtractionResultInvariants:

    def test_failure_carries_no_bills(self):
        with pytest.raises(ValueError):
            ExtractionResult(success=False, bills=[make_bill()])

    def test_confidence_clamped(self):
        assert ExtractionResult(success=True, confidence=1.4).confidence == 1.0
        assert ExtractionResult(success=False, confidence=-0.3).confidence == 0.0


class TestDeduplicate:

    def test_same_bill_different_messages(self):
        first = make_bill(message_id="m1")
        second = make_bill(message_id="m2")
        assert deduplicate_bills([first, second]) == [first]

    def test_vendor_normalization(self):
        assert normalize_vendor("Acme, Inc.") == normalize_vendor("ACME inc") == "acme"
        first = make_bill(vendor="Acme, Inc.", message_id="m1")
        second = make_bill(vendor="ACME", message_id="m2")
        assert len(deduplicate_bills([first, second])) == 1

    def test_amount_rounding(self):
        first = make_bill(amount="15.494", message_id="m1")
        second = make_bill(amount="15.49", message_id="m2")
        assert len(deduplicate_bills([first, second])) == 1

    def test_same_source_identity(self):
        first = make_bill(amount="10.00", message_id="m1")
        second = make_bill(amount="99.00", vendor="Other Co", message_id="m1")
        assert deduplicate_bills([first, second]) == [first]

    def test_distinct_bills_kept_in_order(self):
        bills = [
            make_bill(vendor="B", message_id="m1"),
            make_bill(vendor="A", message_id="m2"),
            make_bill(vendor="C", message_id="m3"),
        ]
        assert [b.vendor for b in deduplicate_bills(bills)] == ["B", "A", "C"]

    def test_idempotent(self):
        bills = [
            make_bill(message_id="m1"),
            make_bill(vendor="Spotify", amount="9.99", message_id="m2"),
            make_bill(message_id="m3"),
            make_bill(vendor="Spotify", amount="9.99", message_id="m4"),
        ]
        once = deduplicate_bills(bills)
        assert deduplicate_bills(once) == once
        assert len(once) == 2

    def test_empty(self):
        assert deduplicate_bills([]) == []


class TestMergeRelatedBills:

    def test_merge_email_and_attachment(self):
        email_bill = make_bill(vendor="City Power", amount="135.00", message_id="m1")
        pdf_bill = make_bill(
            vendor="Unknown Vendor", amount="135.00", message_id="m1", kind=SourceKind.PDF,
            attachment_id="a1", due_date=date(2023, 6, 15), category="Utilities",
        )
        merged = merge_bills(email_bill, pdf_bill)

        assert merged.id == "combined-m1"
        assert merged.vendor == "City Power"
        assert merged.category == "Utilities"
        assert merged.due_date == date(2023, 6, 15)
        assert merged.source.kind == SourceKind.COMBINED

    def test_related_pairs_merge_in_email_position(self):
        pdf_bill = make_bill(amount="135.50", message_id="m1", kind=SourceKind.PDF, attachment_id="a1")
        other = make_bill(vendor="Spotify", amount="9.99", message_id="m2")
        email_bill = make_bill(amount="135.00", message_id="m1")

        merged = merge_related_bills([pdf_bill, other, email_bill])
        assert [b.source.kind for b in merged] == [SourceKind.EMAIL, SourceKind.COMBINED]
        assert merged[1].id == "combined-m1"

    def test_amount_mismatch_not_merged(self):
        email_bill = make_bill(amount="100.00", message_id="m1")
        pdf_bill = make_bill(amount="150.00", message_id="m1", kind=SourceKind.PDF, attachment_id="a1")
        assert len(merge_related_bills([email_bill, pdf_bill])) == 2

    def test_different_messages_not_merged(self):
        email_bill = make_bill(message_id="m1")
        pdf_bill = make_bill(message_id="m2", kind=SourceKind.PDF, attachment_id="a1")
        assert merge_related_bills([email_bill, pdf_bill]) == [email_bill, pdf_bill]
