"""Real-time connection gateway.

One WebSocket per client, joined to a single room named after its channel.
Connections authenticate opportunistically with a bearer token at connect
time; anonymous connections may read and receive broadcasts but every
write event fails with UNKNOWN_SENDER.

Frames in both directions are JSON objects ``{"event": ..., "data": {...}}``.
Errors go only to the originating connection as ``message-error`` carrying
the client's ``tempId``; everything else is broadcast to the room.
"""

import asyncio
import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from fastapi import WebSocket, WebSocketDisconnect, status
from pydantic import ValidationError

from chathub.infra.auth import verify_credential
from chathub.infra.clock import utcnow
from chathub.infra.errors import ChatError
from chathub.infra.metrics import broadcast_duration, broadcasts_total, websocket_connections
from chathub.models.events import (
    ClientEvent,
    EditMessagePayload,
    MessageRefPayload,
    ReactionPayload,
    SendMessagePayload,
    ServerEvent,
    TempId,
    envelope,
)
from chathub.models.message import MAX_CHANNEL_LENGTH, Message
from chathub.models.user import UserProfile
from chathub.services.lifecycle import MessageLifecycleEngine
from chathub.services.previews import present, present_reply_preview

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class Connection:
    """A client socket and the identity resolved for it."""
    websocket: WebSocket
    channel: str
    user: Optional[UserProfile] = None
    connection_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def user_id(self) -> Optional[str]:
        return self.user.id if self.user else None

    async def send(self, payload: Dict[str, Any]) -> bool:
        try:
            await self.websocket.send_json(payload)
        except Exception as e:
            logger.debug(f"Send failed on connection {self.connection_id}: {e}")
            return False
        return True


class ConnectionManager:
    """Tracks open connections per channel room and fans events out to them."""

    def __init__(self) -> None:
        self.rooms: Dict[str, Set[Connection]] = {}

    async def connect(self, websocket: WebSocket, channel: str, user: Optional[UserProfile]) -> Connection:
        await websocket.accept()
        connection = Connection(websocket=websocket, channel=channel, user=user)
        self.rooms.setdefault(channel, set()).add(connection)
        websocket_connections.inc()
        return connection

    def disconnect(self, connection: Connection) -> None:
        room = self.rooms.get(connection.channel)
        if room is None or connection not in room:
            return
        room.discard(connection)
        websocket_connections.dec()
        if not room:
            del self.rooms[connection.channel]

    async def broadcast(
        self,
        channel: str,
        payload: Dict[str, Any],
        exclude: Optional[Connection] = None,
    ) -> None:
        """Send to every connection in the room concurrently; drop dead sockets."""
        targets = [conn for conn in self.rooms.get(channel, ()) if conn is not exclude]
        if not targets:
            return

        start = time.perf_counter()
        results = await asyncio.gather(*[conn.send(payload) for conn in targets])
        broadcast_duration.observe(time.perf_counter() - start)
        broadcasts_total.labels(event=payload.get("event", "unknown")).inc()

        for conn, delivered in zip(targets, results):
            if not delivered:
                self.disconnect(conn)


Handler = Callable[[Connection, Dict[str, Any]], Awaitable[None]]


class ChatGateway:
    """Routes inbound client events to the lifecycle engine and broadcasts results."""

    def __init__(self, manager: ConnectionManager, engine: MessageLifecycleEngine):
        self.manager = manager
        self.engine = engine
        self._handlers: Dict[ClientEvent, Handler] = {
            ClientEvent.SEND_MESSAGE: self.on_send_message,
            ClientEvent.EDIT_MESSAGE: self.on_edit_message,
            ClientEvent.UNSEND_MESSAGE: self.on_unsend_message,
            ClientEvent.TYPING_START: self.on_typing_start,
            ClientEvent.TYPING_STOP: self.on_typing_stop,
            ClientEvent.MARK_READ: self.on_mark_read,
            ClientEvent.GET_MESSAGE_FOR_REPLY: self.on_get_message_for_reply,
            ClientEvent.REACT: self.on_react,
            ClientEvent.REMOVE_REACTION: self.on_remove_reaction,
        }

    # Connection lifecycle

    def authenticate(self, token: Optional[str]) -> Optional[UserProfile]:
        """Resolve the connecting user; failures fall back to an anonymous connection."""
        if not token:
            return None
        user_id = verify_credential(token)
        if user_id is None:
            logger.warning("Invalid token in socket connection; continuing anonymously")
            return None
        user = self.engine.directory.resolve_user(user_id)
        if user is None:
            logger.warning("Socket token names an unknown user", extra={"user_id": user_id})
        return user

    async def serve(self, websocket: WebSocket, token: Optional[str], channel: str) -> None:
        if len(channel) > MAX_CHANNEL_LENGTH:
            logger.warning("Rejected socket with oversized channel name", extra={"length": len(channel)})
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return

        user = self.authenticate(token)
        conn = await self.manager.connect(websocket, channel, user)
        logger.info(
            "User connected",
            extra={"connection_id": conn.connection_id, "user_id": conn.user_id or "anonymous", "channel": channel},
        )

        await conn.send(envelope(ServerEvent.CONNECTION_ACK, {
            "message": "Connected to chat server",
            "connectionId": conn.connection_id,
            "userId": conn.user_id,
            "channel": channel,
            "timestamp": utcnow().isoformat(),
        }))
        if user is not None:
            await self.manager.broadcast(channel, envelope(ServerEvent.USER_JOINED, {
                "userId": user.id,
                "userName": user.display_name,
                "timestamp": utcnow().isoformat(),
            }), exclude=conn)

        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(message.get("code", status.WS_1000_NORMAL_CLOSURE))
                raw = message.get("text")
                if raw is None:
                    await self._send_error(conn, "Only text frames are supported", "INVALID_FRAME")
                    continue
                await self.handle_frame(conn, raw)
        except WebSocketDisconnect as e:
            logger.info(
                "User disconnected",
                extra={"connection_id": conn.connection_id, "user_id": conn.user_id or "anonymous", "code": e.code},
            )
        finally:
            self.manager.disconnect(conn)
            if user is not None:
                await self.manager.broadcast(channel, envelope(ServerEvent.USER_LEFT, {
                    "userId": user.id,
                    "timestamp": utcnow().isoformat(),
                }))

    # Frame routing

    async def handle_frame(self, conn: Connection, raw: str) -> None:
        try:
            frame = json.loads(raw)
        except json.JSONDecodeError:
            await self._send_error(conn, "Malformed frame", "INVALID_FRAME")
            return
        if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
            await self._send_error(conn, "Malformed frame", "INVALID_FRAME")
            return

        data = frame.get("data") or {}
        if not isinstance(data, dict):
            await self._send_error(conn, "Malformed frame", "INVALID_FRAME")
            return
        await self.handle_event(conn, frame["event"], data)

    async def handle_event(self, conn: Connection, event: str, data: Dict[str, Any]) -> None:
        temp_id = data.get("tempId")
        try:
            handler = self._handlers[ClientEvent(event)]
        except ValueError:
            await self._send_error(conn, f"Unknown event: {event}", "UNKNOWN_EVENT", temp_id, event)
            return

        try:
            await handler(conn, data)
        except ValidationError:
            await self._send_error(conn, "Invalid event payload", "INVALID_CONTENT", temp_id, event)
        except ChatError as e:
            await self._send_error(conn, e.message, e.code, temp_id, event)
        except Exception as e:
            logger.error(f"Socket {event} error: {e}", exc_info=True)
            await self._send_error(conn, "Failed to process event. Please try again.", "INTERNAL_ERROR", temp_id, event)

    async def _send_error(
        self,
        conn: Connection,
        message: str,
        code: str,
        temp_id: Optional[TempId] = None,
        event: Optional[str] = None,
    ) -> None:
        await conn.send(envelope(ServerEvent.MESSAGE_ERROR, {
            "message": message,
            "code": code,
            "tempId": temp_id,
            "event": event,
        }))

    async def _broadcast_update(self, message: Message) -> None:
        await self.manager.broadcast(message.channel, envelope(ServerEvent.MESSAGE_UPDATED, present(message)))

    # Event handlers

    async def on_send_message(self, conn: Connection, data: Dict[str, Any]) -> None:
        payload = SendMessagePayload.model_validate(data)
        message = await self.engine.create_message(
            conn.user_id,
            text=payload.text,
            channel=conn.channel,
            images=payload.images,
            reply_to=payload.reply_to,
        )
        await self.manager.broadcast(message.channel, envelope(ServerEvent.MESSAGE_CREATED, present(message)))
        await conn.send(envelope(ServerEvent.MESSAGE_CONFIRMED, {
            "tempId": payload.temp_id,
            "messageId": message.id,
            "timestamp": message.created_at.isoformat(),
        }))

    async def on_edit_message(self, conn: Connection, data: Dict[str, Any]) -> None:
        payload = EditMessagePayload.model_validate(data)
        result = await self.engine.edit_message(conn.user_id, payload.message_id, payload.text)
        if result.changed:
            await self._broadcast_update(result.message)

    async def on_unsend_message(self, conn: Connection, data: Dict[str, Any]) -> None:
        payload = MessageRefPayload.model_validate(data)
        result = await self.engine.unsend_message(conn.user_id, payload.message_id)
        if result.changed:
            await self._broadcast_update(result.message)

    async def on_typing_start(self, conn: Connection, data: Dict[str, Any]) -> None:
        if conn.user is None:
            return
        await self.manager.broadcast(conn.channel, envelope(ServerEvent.USER_TYPING, {
            "userId": conn.user.id,
            "userName": conn.user.display_name,
            "connectionId": conn.connection_id,
        }), exclude=conn)

    async def on_typing_stop(self, conn: Connection, data: Dict[str, Any]) -> None:
        if conn.user is None:
            return
        await self.manager.broadcast(conn.channel, envelope(ServerEvent.USER_STOPPED_TYPING, {
            "userId": conn.user.id,
            "connectionId": conn.connection_id,
        }), exclude=conn)

    async def on_mark_read(self, conn: Connection, data: Dict[str, Any]) -> None:
        payload = MessageRefPayload.model_validate(data)
        result = await self.engine.mark_read(conn.user_id, payload.message_id)
        if result.changed:
            await self._broadcast_update(result.message)

    async def on_get_message_for_reply(self, conn: Connection, data: Dict[str, Any]) -> None:
        payload = MessageRefPayload.model_validate(data)
        message = await self.engine.get_message_for_reply(payload.message_id)
        await conn.send(envelope(ServerEvent.MESSAGE_FOR_REPLY, {
            "tempId": payload.temp_id,
            "messageId": message.id,
            "preview": present_reply_preview(message),
        }))

    async def on_react(self, conn: Connection, data: Dict[str, Any]) -> None:
        payload = ReactionPayload.model_validate(data)
        result = await self.engine.add_reaction(conn.user_id, payload.message_id, payload.emoji)
        if result.changed:
            await self._broadcast_update(result.message)

    async def on_remove_reaction(self, conn: Connection, data: Dict[str, Any]) -> None:
        payload = ReactionPayload.model_validate(data)
        result = await self.engine.remove_reaction(conn.user_id, payload.message_id, payload.emoji)
        if result.changed:
            await self._broadcast_update(result.message)


# Shared by the WebSocket endpoint and REST write paths
connection_manager = ConnectionManager()
