"""
Extraction API router.

Emails arrive as JSON (already fetched by the caller), PDFs as multipart
uploads. Bad document content never produces an HTTP error: the response
carries a failed ExtractionResult instead.
"""

from fastapi import APIRouter, Depends, HTTPException, UploadFile, File, Form
from functools import lru_cache
from typing import List, Optional
from datetime import datetime
import logging

from pydantic import BaseModel, Field

from billscan.config import settings
from billscan.models.bill import ExtractionResult, SourceKind
from billscan.services.extractor import BatchResult, BillExtractor, DocumentInput

router = APIRouter(prefix="/extract", tags=["extract"])
logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 10 * 1024 * 1024


@lru_cache()
def get_extractor() -> BillExtractor:
    return BillExtractor()


class EmailRequest(BaseModel):
    message_id: str
    subject: str = ""
    body: str = ""
    html_body: Optional[str] = None
    sender: str = ""
    received_at: Optional[datetime] = None
    language: Optional[str] = None
    is_trusted_source: bool = False


class BatchRequest(BaseModel):
    documents: List[DocumentInput] = Field(default_factory=list)


@router.post("/email", response_model=ExtractionResult)
async def extract_email(
    request: EmailRequest,
    extractor: BillExtractor = Depends(get_extractor)
):
    """Extract bills from an email body."""
    document = DocumentInput(kind=SourceKind.EMAIL, **request.model_dump())
    return await extractor.extract(document)


@router.post("/pdf", response_model=ExtractionResult)
async def extract_pdf(
    file: UploadFile = File(...),
    message_id: Optional[str] = Form(None),
    attachment_id: Optional[str] = Form(None),
    language: Optional[str] = Form(None),
    is_trusted_source: bool = Form(False),
    extractor: BillExtractor = Depends(get_extractor)
):
    """
    Extract bills from an uploaded PDF.

    Args:
        file: PDF upload
        message_id: Id of the email the PDF was attached to
        attachment_id: Attachment id inside that email
        language: Language hint (en, hu)
        is_trusted_source: Sender is a known biller

    Returns:
        ExtractionResult
    """
    data = await file.read()
    if not data:
        raise HTTPException(status_code=400, detail="Empty file")

    if len(data) > MAX_UPLOAD_BYTES:
        size_mb = len(data) / (1024 * 1024)
        raise HTTPException(
            status_code=400,
            detail=f"File too large: {size_mb:.2f}MB. Maximum: {MAX_UPLOAD_BYTES // (1024 * 1024)}MB"
        )

    logger.info("PDF uploaded", extra={
        "file_name": file.filename,
        "size": len(data),
        "message_id": message_id
    })

    document = DocumentInput(
        kind=SourceKind.PDF,
        data=data,
        file_name=file.filename or "document.pdf",
        message_id=message_id,
        attachment_id=attachment_id,
        language=language,
        is_trusted_source=is_trusted_source,
    )
    return await extractor.extract(document)


@router.post("/batch", response_model=BatchResult)
async def extract_batch(
    request: BatchRequest,
    extractor: BillExtractor = Depends(get_extractor)
):
    """Extract a batch of documents; bills come back merged and deduplicated."""
    if len(request.documents) > settings.BATCH_MAX_DOCUMENTS:
        raise HTTPException(
            status_code=400,
            detail=f"Too many documents: {len(request.documents)}. Maximum: {settings.BATCH_MAX_DOCUMENTS}"
        )
    return await extractor.process_batch(request.documents)
