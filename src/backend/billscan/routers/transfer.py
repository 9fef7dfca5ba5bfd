"""
WebSocket endpoint for chunked PDF transfers.

Protocol (JSON text frames):
    -> {"type": "init", "total_chunks": 3, "file_name": "bill.pdf", ...}
    <- {"type": "ready", "total_chunks": 3}
    -> {"type": "chunk", "index": 0, "data": "<base64>"}
    <- {"type": "ack", "index": 0, "received": 1}
    -> {"type": "complete"}
    <- {"type": "result", "result": {...ExtractionResult...}}

Protocol errors, binary frames included, are answered with
{"type": "error", "error": "..."} and the connection stays open. A disconnect discards the connection's session.
"""

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from functools import lru_cache
import base64
import binascii
import json
import logging
import uuid

from billscan.routers.extract import get_extractor
from billscan.services.extractor import BillExtractor
from billscan.services.transfer import TransferError, TransferSessionManager

router = APIRouter(tags=["transfer"])
logger = logging.getLogger(__name__)

# Init message keys carried into the extracted document
METADATA_KEYS = ('file_name', 'message_id', 'attachment_id', 'language', 'is_trusted_source')


@lru_cache()
def get_transfer_manager() -> TransferSessionManager:
    return TransferSessionManager()


async def handle_message(
    message: dict,
    connection_id: str,
    manager: TransferSessionManager,
    extractor: BillExtractor
) -> dict:
    """
    Apply one protocol message and build the reply.

    Raises:
        TransferError: On any protocol violation
    """
    message_type = message.get('type')

    if message_type == 'init':
        total_chunks = message.get('total_chunks')
        metadata = {key: message[key] for key in METADATA_KEYS if key in message}
        manager.init(connection_id, total_chunks, metadata)
        return {'type': 'ready', 'total_chunks': total_chunks}

    if message_type == 'chunk':
        try:
            data = base64.b64decode(message.get('data') or '', validate=True)
        except (binascii.Error, TypeError) as e:
            raise TransferError("Chunk data must be base64 encoded") from e
        index = message.get('index')
        received = manager.receive_chunk(connection_id, index, data)
        return {'type': 'ack', 'index': index, 'received': received}

    if message_type == 'complete':
        result = await manager.complete_and_extract(connection_id, extractor)
        return {'type': 'result', 'result': result.model_dump(mode='json')}

    if message_type == 'cancel':
        manager.discard(connection_id)
        return {'type': 'cancelled'}

    raise TransferError(f"Unknown message type: {message_type}")


@router.websocket("/transfer")
async def transfer(
    websocket: WebSocket,
    manager: TransferSessionManager = Depends(get_transfer_manager),
    extractor: BillExtractor = Depends(get_extractor)
):
    await websocket.accept()
    connection_id = str(uuid.uuid4())
    logger.info("Transfer connection opened", extra={"connection_id": connection_id})

    try:
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(frame.get("code", 1000))
            if frame.get("text") is None:
                await websocket.send_json({'type': 'error', 'error': "Binary frames are not supported"})
                continue
            try:
                message = json.loads(frame["text"])
            except ValueError:
                message = None
            if not isinstance(message, dict):
                await websocket.send_json({'type': 'error', 'error': "Message must be a JSON object"})
                continue
            try:
                reply = await handle_message(message, connection_id, manager, extractor)
            except TransferError as e:
                logger.warning("Transfer protocol error", extra={
                    "connection_id": connection_id,
                    "error": str(e)
                })
                reply = {'type': 'error', 'error': str(e)}
            await websocket.send_json(reply)
    except WebSocketDisconnect:
        logger.info("Transfer connection closed", extra={"connection_id": connection_id})
    finally:
        manager.discard(connection_id)
