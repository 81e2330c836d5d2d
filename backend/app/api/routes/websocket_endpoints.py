"""
WebSocket endpoints for real-time updates.

One route per channel: ``/ws/notifications``, ``/ws/orders`` and a queue per
department (``/ws/kitchen``, ``/ws/barista``, ``/ws/shisha``). The access
token comes from the ``token`` query parameter or the ``access_token``
cookie; clients without a valid token are closed with 1008.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status

from app.core.security import decode_access_token
from app.services.websocket_service import Channel, EventType, build_message, ws_manager

logger = logging.getLogger(__name__)

router = APIRouter()


def _token_user_id(websocket: WebSocket, token: Optional[str]) -> Optional[int]:
    for candidate in (token, websocket.cookies.get("access_token")):
        if not candidate:
            continue
        payload = decode_access_token(candidate)
        if payload and payload.get("sub"):
            return int(payload["sub"])
    return None


@router.websocket("/ws/{channel}")
async def channel_socket(websocket: WebSocket, channel: Channel, token: Optional[str] = Query(None)):
    user_id = _token_user_id(websocket, token)
    if user_id is None:
        logger.warning(f"WebSocket rejected for '{channel.value}': no valid token")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    if not await ws_manager.connect(websocket, channel.value, user_id=user_id):
        return

    await websocket.send_json(build_message(
        EventType.CONNECTED.value, {"channel": channel.value, "user_id": user_id},
    ))
    try:
        while True:
            if await websocket.receive_text() == EventType.PING.value:
                await websocket.send_text(EventType.PONG.value)
    except WebSocketDisconnect:
        pass
    finally:
        ws_manager.disconnect(websocket, channel.value)
