"""Derived views of messages: reply snapshots, push bodies and client payloads."""

from typing import Any, Dict, Optional

from chathub.models.message import (
    DELETED_PLACEHOLDER,
    MediaType,
    Message,
    ReplySnapshot,
)

REPLY_PREVIEW_LENGTH = 100
NOTIFICATION_BODY_LENGTH = 150
ELLIPSIS = "..."


def truncate(text: str, length: int) -> str:
    """Shorten to at most ``length`` characters, ellipsis included."""
    if len(text) <= length:
        return text
    return text[:length - len(ELLIPSIS)] + ELLIPSIS


def build_reply_snapshot(target: Message) -> ReplySnapshot:
    """Capture what the replied-to message looks like right now."""
    first = target.images[0] if target.images else None
    return ReplySnapshot(
        message_id=target.id,
        text=truncate(target.text or "", REPLY_PREVIEW_LENGTH),
        author_name=target.user.name,
        thumbnail_url=first.url if first else None,
        media_type=first.type if first else None,
        media_count=len(target.images),
    )


def describe_media(message: Message) -> str:
    """Fallback text for messages that only carry attachments."""
    count = len(message.images)
    kinds = {item.type for item in message.images}
    if kinds == {MediaType.IMAGE}:
        noun = "image"
    elif kinds == {MediaType.VIDEO}:
        noun = "video"
    elif kinds == {MediaType.DOCUMENT}:
        noun = "document"
    else:
        noun = "attachment"
    return f"sent {count} {noun}(s)"


def notification_body(message: Message) -> str:
    body = (message.text or "").strip() or describe_media(message)
    if message.reply_snapshot is not None:
        body = f"Replied to {message.reply_snapshot.author_name}: {body}"
    return truncate(body, NOTIFICATION_BODY_LENGTH)


def present(message: Message) -> Dict[str, Any]:
    """
    Client-facing payload for a message.

    Soft-deleted content is redacted here rather than in storage. The archived
    text of an unsent message is never sent to clients.
    """
    payload = message.to_wire()
    payload.pop("originalText", None)
    payload["state"] = message.state.value
    if message.is_deleted:
        payload["text"] = DELETED_PLACEHOLDER
        payload["images"] = []
        payload["editHistory"] = []
        payload["replySnapshot"] = None
    return payload


def present_reply_preview(message: Message) -> Optional[Dict[str, Any]]:
    if message.is_terminal:
        return None
    return build_reply_snapshot(message).to_wire()
