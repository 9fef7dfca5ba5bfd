"""
Document coordinator.

Routes each document to the extraction strategies in order, keeps the first
adequate result, scales PDF confidence by the quality of the recovered
text and aggregates batch statistics. Per-document failures never abort a
batch.
"""

import base64
import binascii
import logging
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from pydantic import BaseModel, Field, field_validator

from billscan.config import settings
from billscan.models.bill import (
    Bill,
    EmailContext,
    ExtractionErrorKind,
    ExtractionResult,
    PdfContext,
    SourceKind,
    UserFieldDefinition,
)
from billscan.patterns.store import PatternStore, get_default_store
from billscan.services.email_text import email_body_text
from billscan.services.normalizer import deduplicate_bills, merge_related_bills
from billscan.services.pdf_text import RecoveredText, TextRecoveryChain
from billscan.services.strategies.base import EXTRACTION_ERRORS, ExtractionStrategy
from billscan.services.strategies.pattern import PatternStrategy
from billscan.services.strategies.regex import RegexStrategy
from billscan.services.strategies.user_field import UserFieldStrategy
from billscan.utils.money import format_amount

logger = logging.getLogger(__name__)

STRATEGY_REGISTRY: Dict[str, Callable[..., ExtractionStrategy]] = {
    "pattern": PatternStrategy,
    "regex": RegexStrategy,
    "user_field": UserFieldStrategy,
}


class DocumentInput(BaseModel):
    """One email or PDF handed to the coordinator."""
    kind: SourceKind
    text: Optional[str] = None
    data: Optional[bytes] = None
    language: Optional[str] = None
    is_trusted_source: bool = False

    # Source identifiers and email headers
    message_id: Optional[str] = None
    attachment_id: Optional[str] = None
    subject: str = ""
    body: Optional[str] = None
    html_body: Optional[str] = None
    sender: str = ""
    file_name: str = "document.pdf"
    received_at: Optional[datetime] = None

    @field_validator('data', mode='before')
    @classmethod
    def _decode_base64(cls, value):
        # JSON callers send PDF bytes base64 encoded
        if isinstance(value, str):
            try:
                return base64.b64decode(value, validate=True)
            except binascii.Error as e:
                raise ValueError("data must be base64 encoded") from e
        return value


class BatchStats(BaseModel):
    processed: int = 0
    bills_found: int = 0
    errors: int = 0


class BatchResult(BaseModel):
    """Deduplicated bills of a batch plus the per-document results in input order."""
    bills: List[Bill] = Field(default_factory=list)
    stats: BatchStats = Field(default_factory=BatchStats)
    results: List[ExtractionResult] = Field(default_factory=list)


def build_strategies(
    names: Sequence[str],
    store: PatternStore,
    chain: TextRecoveryChain,
    user_fields: Sequence[UserFieldDefinition] = ()
) -> List[ExtractionStrategy]:
    """
    Instantiate strategies by registry name, in the given order.

    The user-field strategy is appended automatically when field
    definitions are supplied and it was not named explicitly.

    Raises:
        ValueError: If a name is not registered
    """
    names = list(names)
    if user_fields and "user_field" not in names:
        names.append("user_field")

    strategies: List[ExtractionStrategy] = []
    for name in names:
        factory = STRATEGY_REGISTRY.get(name)
        if factory is None:
            raise ValueError(f"Unknown extraction strategy: {name}")
        if factory is UserFieldStrategy:
            strategies.append(UserFieldStrategy(user_fields, store=store, recovery_chain=chain))
        else:
            strategies.append(factory(store=store, recovery_chain=chain))
    return strategies


def scale_by_text_quality(result: ExtractionResult, confidence_hint: float) -> ExtractionResult:
    """
    Scale a PDF result's confidence by how reliable the recovered text is.

    confidence * (0.5 + 0.5 * hint): structured text (hint 0.9) loses 5%,
    byte-heuristic text (hint 0.4) loses 30%.
    """
    factor = 0.5 + 0.5 * max(0.0, min(1.0, confidence_hint))
    confidence = result.confidence * factor
    bills = [
        bill.model_copy(update={'extraction_confidence': bill.extraction_confidence * factor})
        for bill in result.bills
    ]
    return result.model_copy(update={'confidence': confidence, 'bills': bills})


class BillExtractor:
    """
    Entry point of the extraction engine.

    Usage:
        extractor = BillExtractor()
        result = await extractor.extract(DocumentInput(kind="email", ...))
        batch = await extractor.process_batch(documents)
    """

    def __init__(
        self,
        store: Optional[PatternStore] = None,
        chain: Optional[TextRecoveryChain] = None,
        strategies: Optional[Sequence[ExtractionStrategy]] = None,
        user_fields: Sequence[UserFieldDefinition] = (),
        min_confidence: Optional[float] = None
    ):
        self.store = store or get_default_store()
        self.chain = chain or TextRecoveryChain()
        if strategies is None:
            strategies = build_strategies(
                settings.DEFAULT_STRATEGIES, self.store, self.chain, user_fields
            )
        self.strategies = list(strategies)
        self.min_confidence = (
            min_confidence if min_confidence is not None else settings.MIN_ACCEPT_CONFIDENCE
        )

    async def extract(self, document: DocumentInput) -> ExtractionResult:
        """
        Extract bills from one document.

        Strategies run in order; the first successful result whose
        confidence reaches min_confidence is returned. Otherwise the best
        successful result, or failing that the most confident failure.

        Returns:
            ExtractionResult (never raises for bad document content)
        """
        try:
            if document.kind == SourceKind.EMAIL:
                return await self._extract_email(document)
            if document.kind == SourceKind.PDF:
                return await self._extract_pdf(document)
        except EXTRACTION_ERRORS as e:
            logger.warning(
                "Document extraction failed",
                extra={'kind': document.kind.value, 'message_id': document.message_id},
                exc_info=True
            )
            return ExtractionResult.failure(
                f"Extraction error: {e}", 0.0, ExtractionErrorKind.MALFORMED_INPUT
            )

        return ExtractionResult.failure(
            f"Unsupported document kind: {document.kind.value}",
            0.0,
            ExtractionErrorKind.MALFORMED_INPUT
        )

    async def _extract_email(self, document: DocumentInput) -> ExtractionResult:
        body = document.body if document.body is not None else (document.text or "")
        body = email_body_text(body, document.html_body or "")
        context = EmailContext(
            message_id=document.message_id or "",
            subject=document.subject,
            body=body,
            sender=document.sender,
            received_at=document.received_at,
            trusted_source=document.is_trusted_source,
            language=document.language,
        )
        if not (context.subject + context.body).strip():
            return ExtractionResult.failure(
                "Email has no subject or body", 0.0, ExtractionErrorKind.MALFORMED_INPUT
            )

        results = []
        for strategy in self.strategies:
            result = await strategy.extract_from_email(context)
            results.append(result)
            if result.success and result.confidence >= self.min_confidence:
                break
        return self._pick(results, document)

    async def _extract_pdf(self, document: DocumentInput) -> ExtractionResult:
        if document.text:
            recovered = RecoveredText(
                text=document.text, confidence_hint=1.0, strategy="provided"
            )
        elif document.data:
            recovered = await self.chain.recover(document.data)
        else:
            return ExtractionResult.failure(
                "PDF document has neither bytes nor text", 0.0,
                ExtractionErrorKind.MALFORMED_INPUT
            )

        if recovered.is_empty:
            if recovered.timed_out:
                return ExtractionResult.failure(
                    "PDF text extraction timed out", 0.0, ExtractionErrorKind.TIMEOUT
                )
            return ExtractionResult.failure(
                "No bills found: no text could be recovered from PDF", 0.0,
                ExtractionErrorKind.MALFORMED_INPUT
            )

        context = PdfContext(
            data=document.data,
            text=recovered.text,
            file_name=document.file_name,
            source_message_id=document.message_id,
            attachment_id=document.attachment_id,
            received_at=document.received_at,
            trusted_source=document.is_trusted_source,
            language=document.language,
        )

        results = []
        for strategy in self.strategies:
            result = await strategy.extract_from_pdf(context)
            result = scale_by_text_quality(result, recovered.confidence_hint)
            result.debug.update({
                'text_strategy': recovered.strategy,
                'text_length': len(recovered.text),
            })
            results.append(result)
            if result.success and result.confidence >= self.min_confidence:
                break
        return self._pick(results, document)

    def _pick(self, results: List[ExtractionResult], document: DocumentInput) -> ExtractionResult:
        """First adequate success, else best success, else most confident failure."""
        if not results:
            return ExtractionResult.failure("No extraction strategies configured", 0.0)

        successes = [r for r in results if r.success]
        for result in successes:
            if result.confidence >= self.min_confidence:
                self._log_success(result, document)
                return result
        if successes:
            best = max(successes, key=lambda r: r.confidence)
            self._log_success(best, document)
            return best

        best_failure = max(results, key=lambda r: r.confidence)
        logger.info(
            "No bill extracted",
            extra={
                'kind': document.kind.value,
                'message_id': document.message_id,
                'error': best_failure.error,
                'error_kind': best_failure.error_kind.value if best_failure.error_kind else None,
            }
        )
        return best_failure

    @staticmethod
    def _log_success(result: ExtractionResult, document: DocumentInput) -> None:
        for bill in result.bills:
            logger.info(
                "Bill extracted",
                extra={
                    'bill_id': bill.id,
                    'vendor': bill.vendor,
                    'amount': format_amount(bill.amount, bill.currency, bill.language),
                    'strategy': bill.extraction_method,
                    'confidence': round(bill.extraction_confidence, 3),
                    'kind': document.kind.value,
                }
            )

    async def process_batch(self, documents: Iterable[DocumentInput]) -> BatchResult:
        """
        Extract every document and combine the bills.

        Email/attachment pairs of the same message are merged, then
        duplicates are dropped. A failing document counts as an error and
        processing continues.

        Returns:
            BatchResult with deduplicated bills, stats and per-document results
        """
        stats = BatchStats()
        results: List[ExtractionResult] = []
        bills: List[Bill] = []

        for document in documents:
            stats.processed += 1
            try:
                result = await self.extract(document)
            except Exception as e:
                # One bad document never aborts the batch
                logger.error(
                    "Unexpected error extracting document",
                    extra={'kind': document.kind.value, 'message_id': document.message_id},
                    exc_info=True
                )
                result = ExtractionResult.failure(
                    f"Extraction error: {e}", 0.0, ExtractionErrorKind.MALFORMED_INPUT
                )
            results.append(result)
            if result.success:
                bills.extend(result.bills)
            else:
                stats.errors += 1

        unique = deduplicate_bills(merge_related_bills(bills))
        stats.bills_found = len(unique)

        logger.info(
            "Batch processed",
            extra={
                'processed': stats.processed,
                'bills_found': stats.bills_found,
                'errors': stats.errors,
            }
        )
        return BatchResult(bills=unique, stats=stats, results=results)
