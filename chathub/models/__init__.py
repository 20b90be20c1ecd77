from .message import (
    AuthorSnapshot,
    MediaItem,
    Message,
    MessageDraft,
    MessageKind,
    MessageState,
    MessageStatus,
    ReplySnapshot,
    SystemPayload,
)
from .user import UserProfile

__all__ = [
    "AuthorSnapshot",
    "MediaItem",
    "Message",
    "MessageDraft",
    "MessageKind",
    "MessageState",
    "MessageStatus",
    "ReplySnapshot",
    "SystemPayload",
    "UserProfile",
]
