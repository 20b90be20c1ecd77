"""WebSocket endpoint for the real-time chat gateway."""

from typing import Optional
from fastapi import APIRouter, Depends, Query, WebSocket

from chathub.api.dependencies import get_connection_manager, get_lifecycle_engine
from chathub.infra.config import config
from chathub.realtime.gateway import ChatGateway, ConnectionManager
from chathub.services.lifecycle import MessageLifecycleEngine

router = APIRouter()


@router.websocket("/ws")
async def chat_socket(
    websocket: WebSocket,
    token: Optional[str] = Query(None),
    channel: Optional[str] = Query(None),
    manager: ConnectionManager = Depends(get_connection_manager),
    engine: MessageLifecycleEngine = Depends(get_lifecycle_engine),
):
    """
    Join a channel room.

    Frames are JSON objects `{"event": ..., "data": {...}}`. Without a valid
    `token` the connection only receives broadcasts.
    """
    gateway = ChatGateway(manager, engine)
    await gateway.serve(websocket, token, channel or config.CHAT_DEFAULT_CHANNEL)
