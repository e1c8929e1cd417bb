"""WebSocket endpoint for the realtime channel.

    WebSocket /ws?token=<jwt>   identity taken from the verified token
    WebSocket /ws?userId=<id>   identity as supplied ("", "null", "undefined" are anonymous)
    WebSocket /ws               anonymous: receives presence, never appears in it

An invalid token is refused with close code 1008 before the socket is
accepted. Malformed JSON and binary frames get a ``message_error`` reply; the
socket stays open.
"""
import json
import logging
from typing import Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from ..auth.service import TokenService
from ..dependencies import get_gateway
from ..errors import AuthenticationError, ValidationError
from .hub import hub

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    token: Optional[str] = Query(None),
    userId: Optional[str] = Query(None),
) -> None:
    user_id = userId
    if token:
        try:
            user_id = TokenService().verify_token(token)
        except AuthenticationError as e:
            logger.warning(f"[WS] Rejecting connection: {e.message}")
            await websocket.close(code=1008)  # 1008 = Policy Violation
            return

    gateway = get_gateway()
    session_id = await hub.accept(websocket)
    logger.info(f"[WS] New connection: session={session_id}, user={user_id or 'anonymous'}")

    try:
        await gateway.open(session_id, user_id)

        # Main message loop
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))
            text = message.get("text")
            if text is None:
                await gateway.report_error(session_id, ValidationError("Binary frames are not supported"))
                continue
            try:
                data = json.loads(text)
            except ValueError:
                await gateway.report_error(session_id, ValidationError("Invalid message format: expected JSON"))
                continue
            await gateway.handle(session_id, data)

    except WebSocketDisconnect:
        logger.info(f"[WS] Client disconnected: session={session_id}")
    finally:
        await gateway.close(session_id)
