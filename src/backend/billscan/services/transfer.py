"""
Chunked PDF transfer sessions.

Large attachments arrive over a WebSocket in indexed chunks. A session is
opened per connection with the expected chunk count, chunks may arrive in
any order, and completion reassembles the bytes in index order. Completion
and disconnect both tear the session down.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import ValidationError

from billscan.config import settings
from billscan.models.bill import ExtractionResult, SourceKind
from billscan.services.extractor import BillExtractor, DocumentInput

logger = logging.getLogger(__name__)

# Session metadata copied onto the assembled document
METADATA_TYPES: Dict[str, type] = {
    'file_name': str,
    'message_id': str,
    'attachment_id': str,
    'language': str,
    'is_trusted_source': bool,
}


class TransferError(Exception):
    """Chunked transfer protocol violation."""
    pass


@dataclass
class TransferSession:
    connection_id: str
    total_chunks: int
    metadata: Dict[str, Any] = field(default_factory=dict)
    chunks: Dict[int, bytes] = field(default_factory=dict)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def received_bytes(self) -> int:
        return sum(len(chunk) for chunk in self.chunks.values())

    def missing_chunks(self) -> list:
        return [index for index in range(self.total_chunks) if index not in self.chunks]


class TransferSessionManager:
    """
    In-memory registry of transfer sessions, one per connection.

    Re-initialising a connection replaces its previous session.
    """

    def __init__(self, max_chunks: Optional[int] = None, max_bytes: Optional[int] = None):
        self.max_chunks = max_chunks if max_chunks is not None else settings.TRANSFER_MAX_CHUNKS
        self.max_bytes = max_bytes if max_bytes is not None else settings.TRANSFER_MAX_BYTES
        self._sessions: Dict[str, TransferSession] = {}

    def __contains__(self, connection_id: str) -> bool:
        return connection_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def init(
        self,
        connection_id: str,
        total_chunks: int,
        metadata: Optional[Dict[str, Any]] = None
    ) -> TransferSession:
        """
        Open a session for a connection.

        Raises:
            TransferError: If total_chunks is outside [1, max_chunks] or a
                metadata value has the wrong type
        """
        if not _is_index(total_chunks) or total_chunks < 1:
            raise TransferError("Invalid chunk count")
        if total_chunks > self.max_chunks:
            raise TransferError(
                f"Too many chunks: {total_chunks} (maximum {self.max_chunks})"
            )

        metadata = dict(metadata or {})
        for key, value in metadata.items():
            expected = METADATA_TYPES.get(key)
            if expected is not None and value is not None and not isinstance(value, expected):
                raise TransferError(f"Invalid {key}: expected {expected.__name__}")

        if connection_id in self._sessions:
            logger.info("Replacing transfer session", extra={'connection_id': connection_id})

        session = TransferSession(
            connection_id=connection_id,
            total_chunks=total_chunks,
            metadata=metadata,
        )
        self._sessions[connection_id] = session
        logger.debug(
            "Transfer session opened",
            extra={'connection_id': connection_id, 'total_chunks': total_chunks}
        )
        return session

    def receive_chunk(self, connection_id: str, index: int, data: bytes) -> int:
        """
        Store one chunk. A repeated index overwrites the earlier chunk.

        Returns:
            Number of distinct chunks received so far

        Raises:
            TransferError: No session, index outside [0, total), or size limit exceeded
        """
        session = self._get(connection_id)
        if not _is_index(index) or index < 0 or index >= session.total_chunks:
            raise TransferError("Invalid chunk index")

        previous = len(session.chunks.get(index, b''))
        if session.received_bytes - previous + len(data) > self.max_bytes:
            self.discard(connection_id)
            raise TransferError(f"Transfer exceeds {self.max_bytes} bytes")

        session.chunks[index] = bytes(data)
        return len(session.chunks)

    def complete(self, connection_id: str) -> bytes:
        """
        Reassemble the chunks in index order. The session is removed either way.

        Raises:
            TransferError: No session, or a chunk is missing
        """
        session = self._get(connection_id)
        self.discard(connection_id)

        missing = session.missing_chunks()
        if missing:
            raise TransferError(f"Incomplete PDF transfer: missing chunk {missing[0]}")

        data = b''.join(session.chunks[index] for index in range(session.total_chunks))
        logger.info(
            "Transfer complete",
            extra={'connection_id': connection_id, 'size': len(data), 'chunks': session.total_chunks}
        )
        return data

    def discard(self, connection_id: str) -> None:
        if self._sessions.pop(connection_id, None) is not None:
            logger.debug("Transfer session discarded", extra={'connection_id': connection_id})

    def metadata(self, connection_id: str) -> Dict[str, Any]:
        return dict(self._get(connection_id).metadata)

    async def complete_and_extract(
        self,
        connection_id: str,
        extractor: BillExtractor,
        **overrides
    ) -> ExtractionResult:
        """
        Complete the transfer and run the assembled PDF through the extractor.

        Session metadata (file_name, message_id, attachment_id, language,
        is_trusted_source) is used as document fields; keyword arguments
        override it.

        Raises:
            TransferError: If the transfer is incomplete or its metadata is invalid
        """
        fields = self.metadata(connection_id)
        data = self.complete(connection_id)
        fields.update(overrides)

        try:
            document = DocumentInput(
                kind=SourceKind.PDF,
                data=data,
                file_name=fields.get('file_name') or "document.pdf",
                message_id=fields.get('message_id'),
                attachment_id=fields.get('attachment_id'),
                language=fields.get('language'),
                is_trusted_source=bool(fields.get('is_trusted_source', False)),
            )
        except ValidationError as e:
            raise TransferError(f"Invalid transfer metadata: {e.error_count()} field error(s)") from e
        return await extractor.extract(document)

    def _get(self, connection_id: str) -> TransferSession:
        session = self._sessions.get(connection_id)
        if session is None:
            raise TransferError("No transfer in progress")
        return session


def _is_index(value) -> bool:
    # bool is an int subclass; JSON true must not count as 1
    return isinstance(value, int) and not isinstance(value, bool)
