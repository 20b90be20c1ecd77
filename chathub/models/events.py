"""Real-time event names and inbound payload schemas."""

from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import Field

from chathub.models.message import MediaItem, WireModel

# Client correlation id, echoed back unchanged
TempId = Union[str, int]


class ClientEvent(str, Enum):
    """Events accepted from a client connection."""
    SEND_MESSAGE = "send-message"
    EDIT_MESSAGE = "edit-message"
    UNSEND_MESSAGE = "unsend-message"
    TYPING_START = "typing-start"
    TYPING_STOP = "typing-stop"
    MARK_READ = "mark-read"
    GET_MESSAGE_FOR_REPLY = "get-message-for-reply"
    REACT = "react"
    REMOVE_REACTION = "remove-reaction"


class ServerEvent(str, Enum):
    """Events emitted to client connections."""
    MESSAGE_CREATED = "message-created"
    MESSAGE_UPDATED = "message-updated"
    MESSAGE_CONFIRMED = "message-confirmed"
    MESSAGE_FOR_REPLY = "message-for-reply"
    USER_TYPING = "user-typing"
    USER_STOPPED_TYPING = "user-stopped-typing"
    USER_JOINED = "user-joined"
    USER_LEFT = "user-left"
    MESSAGE_ERROR = "message-error"
    CONNECTION_ACK = "connection-ack"


class SendMessagePayload(WireModel):
    text: Optional[str] = None
    images: List[MediaItem] = Field(default_factory=list)
    reply_to: Optional[str] = None
    temp_id: Optional[TempId] = None


class EditMessagePayload(WireModel):
    message_id: str
    text: str
    temp_id: Optional[TempId] = None


class MessageRefPayload(WireModel):
    """Payload for events that only reference a message."""
    message_id: str
    temp_id: Optional[TempId] = None


class ReactionPayload(WireModel):
    message_id: str
    emoji: str
    temp_id: Optional[TempId] = None


def envelope(event: ServerEvent, data: Dict[str, Any]) -> Dict[str, Any]:
    """Frame an outbound event."""
    return {"event": event.value, "data": data}
