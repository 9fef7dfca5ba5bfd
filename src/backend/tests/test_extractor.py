"""
Test suite for the document coordinator.

Tests cover:
- Strategy ordering and early exit on an adequate result
- PDF confidence scaled by text-recovery quality
- Malformed and timed-out documents become failed results
- Batch processing with dedupe and error counting
- Unexpected errors in one document leave the rest of the batch intact
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from billscan.models.bill import (
    Bill,
    BillSource,
    ExtractionErrorKind,
    ExtractionResult,
    PdfContext,
    SourceKind,
    UserFieldDefinition,
)
from billscan.models.language import Language
from billscan.patterns.store import PatternStore
from billscan.services.extractor import (
    BillExtractor,
    DocumentInput,
    build_strategies,
    scale_by_text_quality,
)
from billscan.services.pdf_text import (
    ByteHeuristicStrategy,
    RecoveredText,
    RecoveryStrategy,
    StructuredTextStrategy,
    TextRecoveryChain,
)
from billscan.services.strategies.base import ExtractionStrategy
from billscan.services.strategies.pattern import PatternStrategy
from datetime import date, datetime
from decimal import Decimal
from pydantic import ValidationError
import asyncio
import base64
import time
import pytest

BILL_TEXT = "ELECTRIC BILL Total Amount Due: $135.00 Payment Due Date: 06/15/2023"
BROKEN_PDF = b"%PDF-1.4\n\x00\x8f\x9c\x00" + BILL_TEXT.encode("ascii") + b"\x00\x8f\x9c\x00\xff"


@pytest.fixture(scope="module")
def store():
    return PatternStore.from_directory()


def electric_email(message_id="m1", **overrides):
    fields = dict(
        kind="email",
        message_id=message_id,
        subject="Your electric bill is ready",
        body="Total Amount Due: $135.00\nPayment Due Date: 06/15/2023",
        sender="City Power <billing@citypower.com>",
        received_at=datetime(2023, 6, 1, 9, 30),
    )
    fields.update(overrides)
    return DocumentInput(**fields)


def make_bill(confidence=0.5):
    return Bill(
        id="email-x",
        vendor="Acme",
        amount=Decimal("10.00"),
        currency="USD",
        billing_date=date(2023, 1, 1),
        source=BillSource(kind=SourceKind.EMAIL, message_id="x"),
        extraction_method="fixed",
        language=Language.EN,
        extraction_confidence=confidence,
    )


class FixedStrategy(ExtractionStrategy):
    """Returns a canned result and counts calls."""

    def __init__(self, name, success, confidence, store):
        super().__init__(store=store)
        self.name = name
        self.success = success
        self.confidence = confidence
        self.calls = 0

    def _result(self):
        self.calls += 1
        if self.success:
            return ExtractionResult.ok([make_bill(self.confidence)], self.confidence, strategy=self.name)
        return ExtractionResult.failure("nothing here", self.confidence, strategy=self.name)

    async def _extract_email(self, context):
        return self._result()

    async def _extract_pdf(self, context, text):
        return self._result()


class FixedText(RecoveryStrategy):
    def __init__(self, text, hint):
        self.name = f"fixed-{hint}"
        self.text = text
        self.hint = hint

    async def recover(self, data):
        return RecoveredText(text=self.text, confidence_hint=self.hint, strategy=self.name)


class CrashingStrategy(PatternStrategy):
    """Raises an error the strategies do not handle themselves for one message."""

    async def _extract_email(self, context):
        if context.message_id == "bad":
            raise IndexError("no such group")
        return await super()._extract_email(context)


class SlowStructuredStrategy(StructuredTextStrategy):
    def _extract(self, data):
        time.sleep(0.5)
        return ["never"], []


class TestStrategyOrdering:

    def test_adequate_first_result_stops_the_chain(self, store):
        first = FixedStrategy("first", True, 0.9, store)
        second = FixedStrategy("second", True, 0.8, store)
        extractor = BillExtractor(store=store, strategies=[first, second])

        result = asyncio.run(extractor.extract(electric_email()))

        assert result.debug["strategy"] == "first"
        assert second.calls == 0

    def test_low_confidence_falls_through(self, store):
        first = FixedStrategy("first", True, 0.1, store)
        second = FixedStrategy("second", True, 0.6, store)
        extractor = BillExtractor(store=store, strategies=[first, second])

        result = asyncio.run(extractor.extract(electric_email()))

        assert result.debug["strategy"] == "second"
        assert first.calls == 1 and second.calls == 1

    def test_best_success_beats_failures(self, store):
        strategies = [
            FixedStrategy("weak", True, 0.1, store),
            FixedStrategy("failed", False, 0.2, store),
        ]
        result = asyncio.run(BillExtractor(store=store, strategies=strategies).extract(electric_email()))

        assert result.success
        assert result.debug["strategy"] == "weak"

    def test_most_confident_failure_returned(self, store):
        strategies = [
            FixedStrategy("a", False, 0.05, store),
            FixedStrategy("b", False, 0.2, store),
        ]
        result = asyncio.run(BillExtractor(store=store, strategies=strategies).extract(electric_email()))

        assert not result.success
        assert result.debug["strategy"] == "b"
        assert result.confidence == pytest.approx(0.2)

    def test_no_strategies(self, store):
        result = asyncio.run(BillExtractor(store=store, strategies=[]).extract(electric_email()))
        assert not result.success


class TestEmailDocuments:

    def test_electric_bill(self, store):
        result = asyncio.run(BillExtractor(store=store).extract(electric_email()))

        assert result.success
        bill = result.bills[0]
        assert bill.amount == Decimal("135.00")
        assert bill.currency == "USD"
        assert bill.due_date == date(2023, 6, 15)
        assert bill.extraction_method == "pattern-based"

    def test_empty_email_is_malformed(self, store):
        result = asyncio.run(BillExtractor(store=store).extract(DocumentInput(kind="email")))

        assert not result.success
        assert result.error == "Email has no subject or body"
        assert result.error_kind == ExtractionErrorKind.MALFORMED_INPUT

    def test_text_field_used_as_body(self, store):
        document = DocumentInput(
            kind="email", message_id="m5", subject="Invoice",
            text="Total Amount Due: $20.00",
        )
        result = asyncio.run(BillExtractor(store=store).extract(document))

        assert result.success
        assert result.bills[0].amount == Decimal("20.00")


class TestPdfDocuments:

    def test_byte_heuristic_text_is_discounted(self, store):
        def run(hint):
            extractor = BillExtractor(
                store=store,
                chain=TextRecoveryChain([FixedText(BILL_TEXT, hint)]),
                strategies=[PatternStrategy(store=store)],
            )
            return asyncio.run(extractor.extract(DocumentInput(kind="pdf", data=b"%PDF-1.4")))

        structured = run(0.9)
        heuristic = run(0.4)

        assert structured.success and heuristic.success
        assert heuristic.confidence < structured.confidence
        assert heuristic.confidence == pytest.approx(structured.confidence * 0.7 / 0.95)
        assert heuristic.bills[0].extraction_confidence == pytest.approx(heuristic.confidence)

    def test_unparseable_pdf_uses_byte_heuristic(self, store):
        extractor = BillExtractor(store=store, chain=TextRecoveryChain([ByteHeuristicStrategy()]))
        document = DocumentInput(kind="pdf", data=BROKEN_PDF, message_id="m1", attachment_id="a1")

        result = asyncio.run(extractor.extract(document))

        assert result.success
        assert result.bills[0].amount == Decimal("135.00")
        assert result.debug["text_strategy"] == "byte_heuristic"
        assert result.confidence <= 0.7

    def test_provided_text_is_not_discounted(self, store):
        document = DocumentInput(kind="pdf", text=BILL_TEXT, message_id="m1")
        extractor = BillExtractor(store=store, strategies=[PatternStrategy(store=store)])

        result = asyncio.run(extractor.extract(document))
        direct = asyncio.run(PatternStrategy(store=store).extract_from_pdf(PdfContext(text=BILL_TEXT)))

        assert result.confidence == pytest.approx(direct.confidence)
        assert result.debug["text_strategy"] == "provided"

    def test_neither_bytes_nor_text(self, store):
        result = asyncio.run(BillExtractor(store=store).extract(DocumentInput(kind="pdf")))

        assert not result.success
        assert result.error_kind == ExtractionErrorKind.MALFORMED_INPUT

    def test_timeout(self, store):
        extractor = BillExtractor(
            store=store,
            chain=TextRecoveryChain([SlowStructuredStrategy(timeout=0.05)]),
        )
        result = asyncio.run(extractor.extract(DocumentInput(kind="pdf", data=b"%PDF-1.4")))

        assert not result.success
        assert result.error_kind == ExtractionErrorKind.TIMEOUT

    def test_no_text_recovered(self, store):
        extractor = BillExtractor(store=store, chain=TextRecoveryChain([]))
        result = asyncio.run(extractor.extract(DocumentInput(kind="pdf", data=b"\x00\x01")))

        assert not result.success
        assert result.error.startswith("No bills found")
        assert result.error_kind == ExtractionErrorKind.MALFORMED_INPUT


class TestBatch:

    def test_duplicates_and_errors(self, store):
        documents = [
            electric_email("m1"),
            electric_email("m2"),
            DocumentInput(kind="email", message_id="m3", subject="Lunch on Friday?", body="See you at noon."),
            DocumentInput(kind="pdf", message_id="m4"),
        ]
        batch = asyncio.run(BillExtractor(store=store).process_batch(documents))

        assert batch.stats.processed == 4
        assert batch.stats.bills_found == 1
        assert batch.stats.errors == 2
        assert len(batch.bills) == 1
        assert batch.bills[0].id == "email-m1"
        assert [r.success for r in batch.results] == [True, True, False, False]

    def test_email_and_attachment_merge(self, store):
        extractor = BillExtractor(store=store)
        documents = [
            electric_email("m1"),
            DocumentInput(
                kind="pdf", message_id="m1", attachment_id="a1", text=BILL_TEXT,
                received_at=datetime(2023, 6, 1, 9, 30),
            ),
        ]
        batch = asyncio.run(extractor.process_batch(documents))

        assert batch.stats.bills_found == 1
        assert batch.bills[0].source.kind == SourceKind.COMBINED
        assert batch.bills[0].id == "combined-m1"

    def test_unexpected_error_does_not_abort_batch(self, store):
        extractor = BillExtractor(store=store, strategies=[CrashingStrategy(store=store)])
        documents = [electric_email("m1"), electric_email("bad"), electric_email("m2")]
        batch = asyncio.run(extractor.process_batch(documents))

        assert batch.stats.processed == 3
        assert batch.stats.errors == 1
        assert [r.success for r in batch.results] == [True, False, True]
        assert batch.results[1].error_kind == ExtractionErrorKind.MALFORMED_INPUT
        assert "no such group" in batch.results[1].error

    def test_empty_batch(self, store):
        batch = asyncio.run(BillExtractor(store=store).process_batch([]))
        assert batch.bills == []
        assert batch.stats.processed == 0


class TestDocumentInput:

    def test_base64_data(self):
        encoded = base64.b64encode(b"%PDF-1.4 data").decode("ascii")
        assert DocumentInput(kind="pdf", data=encoded).data == b"%PDF-1.4 data"

    def test_invalid_base64(self):
        with pytest.raises(ValidationError):
            DocumentInput(kind="pdf", data="not base64!!")


class TestHelpers:

    def test_unknown_strategy(self, store):
        with pytest.raises(ValueError, match="Unknown extraction strategy"):
            build_strategies(["pattern", "magic"], store, TextRecoveryChain())

    def test_user_fields_append_strategy(self, store):
        strategies = build_strategies(
            ["pattern"], store, TextRecoveryChain(), [UserFieldDefinition(name="Total")]
        )
        assert [s.name for s in strategies] == ["pattern-based", "user-field"]

    def test_scale_by_text_quality(self):
        result = ExtractionResult.ok([make_bill(0.8)], 0.8)
        scaled = scale_by_text_quality(result, 0.4)

        assert scaled.confidence == pytest.approx(0.56)
        assert scaled.bills[0].extraction_confidence == pytest.approx(0.56)
        assert result.confidence == pytest.approx(0.8)
