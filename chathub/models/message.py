"""Chat message models shared by the store, the lifecycle engine and the wire."""

from datetime import datetime
from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel


UNSENT_PLACEHOLDER = "This message was unsent"
DELETED_PLACEHOLDER = "[message deleted]"
MAX_CHANNEL_LENGTH = 64


class WireModel(BaseModel):
    """Base model serialized with camelCase keys for clients."""

    model_config = {"populate_by_name": True, "alias_generator": to_camel}

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class MessageStatus(str, Enum):
    """Delivery-confirmation progress (best effort)."""
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"


class MessageState(str, Enum):
    """Lifecycle state derived from the edit/delete/unsend flags."""
    ACTIVE = "active"
    EDITED = "edited"
    DELETED = "deleted"
    UNSENT = "unsent"


class MessageKind(str, Enum):
    USER = "user"
    SYSTEM = "system"


class MediaType(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    DOCUMENT = "document"


class MediaItem(WireModel):
    """Externally hosted attachment; the URL is opaque to the chat core."""
    url: str = Field(..., min_length=1)
    type: MediaType = MediaType.IMAGE
    filename: Optional[str] = None
    size: Optional[int] = Field(None, ge=0)
    mime_type: Optional[str] = None


class AuthorSnapshot(WireModel):
    """Author details captured at send time."""
    id: str
    name: str
    profile_picture: Optional[str] = None


class ReplySnapshot(WireModel):
    """Point-in-time preview of the message being replied to."""
    message_id: str
    text: str = ""
    author_name: str
    thumbnail_url: Optional[str] = None
    media_type: Optional[MediaType] = None
    media_count: int = 0


class Reaction(WireModel):
    emoji: str
    users: List[str] = Field(default_factory=list)
    count: int = 0


class ReadReceipt(WireModel):
    user_id: str
    read_at: datetime


class EditRecord(WireModel):
    text: str
    edited_at: datetime


class MemberJoined(WireModel):
    kind: Literal["member_joined"] = "member_joined"
    user_id: str
    display_name: str


class EventAnnounced(WireModel):
    kind: Literal["event_announced"] = "event_announced"
    event_id: str
    title: str
    starts_at: Optional[datetime] = None


class RoleGranted(WireModel):
    kind: Literal["role_granted"] = "role_granted"
    user_id: str
    display_name: str
    role: str


SystemPayload = Annotated[
    Union[MemberJoined, EventAnnounced, RoleGranted],
    Field(discriminator="kind"),
]


class MessageDraft(WireModel):
    """A validated message that has not been assigned an id or timestamps yet."""
    channel: str
    text: Optional[str] = None
    images: List[MediaItem] = Field(default_factory=list)
    user: AuthorSnapshot
    message_type: MessageKind = MessageKind.USER
    system: Optional[SystemPayload] = None
    reply_to: Optional[str] = None
    reply_snapshot: Optional[ReplySnapshot] = None


class Message(WireModel):
    """Persisted chat message."""
    id: str
    channel: str
    text: Optional[str] = None
    images: List[MediaItem] = Field(default_factory=list)
    user: AuthorSnapshot
    status: MessageStatus = MessageStatus.SENT
    message_type: MessageKind = MessageKind.USER
    system: Optional[SystemPayload] = None

    is_edited: bool = False
    edited_at: Optional[datetime] = None
    edit_history: List[EditRecord] = Field(default_factory=list)

    is_deleted: bool = False
    deleted_at: Optional[datetime] = None
    deleted_by: Optional[str] = None

    is_unsent: bool = False
    unsent_at: Optional[datetime] = None
    original_text: Optional[str] = None

    reply_to: Optional[str] = None
    reply_snapshot: Optional[ReplySnapshot] = None

    reactions: List[Reaction] = Field(default_factory=list)
    read_by: List[ReadReceipt] = Field(default_factory=list)

    created_at: datetime
    updated_at: datetime

    @property
    def state(self) -> MessageState:
        if self.is_unsent:
            return MessageState.UNSENT
        if self.is_deleted:
            return MessageState.DELETED
        if self.is_edited:
            return MessageState.EDITED
        return MessageState.ACTIVE

    @property
    def is_terminal(self) -> bool:
        return self.state in (MessageState.DELETED, MessageState.UNSENT)

    def reaction_for(self, emoji: str) -> Optional[Reaction]:
        for reaction in self.reactions:
            if reaction.emoji == emoji:
                return reaction
        return None

    def has_read(self, user_id: str) -> bool:
        return any(receipt.user_id == user_id for receipt in self.read_by)
