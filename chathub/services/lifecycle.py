"""Message lifecycle engine.

Validates every chat event, applies it to the message store and returns the
canonical persisted record for broadcasting. Message states::

    Active -> Edited (re-entrant)
    Active | Edited -> Deleted   (terminal, redacted on presentation)
    Active | Edited -> Unsent    (terminal, text archived, media cleared)

Nothing is persisted until validation succeeds, so a rejected event leaves no
state behind. Concurrent edits and deletes of one message are not version
checked; the store applies them last-write-wins.
"""

import functools
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, Sequence

from chathub.infra.clock import utcnow
from chathub.infra.config import config
from chathub.infra.errors import (
    ChatError,
    InvalidContent,
    InvalidState,
    NotOwner,
    RateLimited,
    TooOld,
    UnknownSender,
)
from chathub.infra.metrics import chat_events_total, chat_rate_limited_total
from chathub.infra.rate_limiter import RateLimiter
from chathub.models.message import (
    MAX_CHANNEL_LENGTH,
    UNSENT_PLACEHOLDER,
    AuthorSnapshot,
    EditRecord,
    EventAnnounced,
    MediaItem,
    MemberJoined,
    Message,
    MessageDraft,
    MessageKind,
    MessageStatus,
    Reaction,
    ReadReceipt,
    RoleGranted,
)
from chathub.models.user import UserProfile
from chathub.services.identity import UserDirectory
from chathub.services.message_store import MessageStore
from chathub.services.notification_dispatcher import NotificationDispatcher, PushNotification
from chathub.services.previews import build_reply_snapshot, notification_body

logger = logging.getLogger(__name__)

SYSTEM_AUTHOR = AuthorSnapshot(id="system", name="System")


@dataclass
class MutationResult:
    message: Message
    changed: bool


def tracked(event: str):
    """Count outcomes of a lifecycle operation by error code."""
    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            try:
                result = await func(*args, **kwargs)
            except ChatError as e:
                chat_events_total.labels(event=event, status=e.code).inc()
                raise
            chat_events_total.labels(event=event, status="ok").inc()
            return result
        return wrapper
    return decorator


def render_system_text(payload) -> str:
    if isinstance(payload, MemberJoined):
        return f"{payload.display_name} joined the community"
    if isinstance(payload, EventAnnounced):
        if payload.starts_at:
            return f"New event: {payload.title} ({payload.starts_at:%Y-%m-%d %H:%M} UTC)"
        return f"New event: {payload.title}"
    if isinstance(payload, RoleGranted):
        return f"{payload.display_name} is now {payload.role}"
    raise InvalidContent("Unknown system message type")


class MessageLifecycleEngine:
    """Validates and applies create/edit/delete/unsend/react/read transitions."""

    def __init__(
        self,
        store: MessageStore,
        directory: UserDirectory,
        rate_limiter: RateLimiter,
        dispatcher: Optional[NotificationDispatcher] = None,
        max_text_length: Optional[int] = None,
        edit_window_seconds: Optional[int] = None,
        max_emoji_length: Optional[int] = None,
        default_channel: Optional[str] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.directory = directory
        self.rate_limiter = rate_limiter
        self.dispatcher = dispatcher
        self.max_text_length = max_text_length or config.CHAT_MAX_TEXT_LENGTH
        self.edit_window_seconds = edit_window_seconds or config.CHAT_EDIT_WINDOW_SECONDS
        self.max_emoji_length = max_emoji_length or config.CHAT_MAX_EMOJI_LENGTH
        self.default_channel = default_channel or config.CHAT_DEFAULT_CHANNEL
        self._clock = clock

    # Validation helpers

    def _normalize_text(self, text: Optional[str]) -> str:
        text = (text or "").strip()
        if len(text) > self.max_text_length:
            raise InvalidContent(
                f"Message too long. Maximum length: {self.max_text_length} characters"
            )
        return text

    def _normalize_channel(self, channel: Optional[str]) -> str:
        channel = (channel or "").strip() or self.default_channel
        if len(channel) > MAX_CHANNEL_LENGTH:
            raise InvalidContent(f"Channel name too long. Maximum length: {MAX_CHANNEL_LENGTH} characters")
        return channel

    def _require_user(self, user_id: Optional[str]) -> UserProfile:
        user = self.directory.resolve_user(user_id)
        if user is None:
            raise UnknownSender("User not found")
        return user

    def _require_emoji(self, emoji: Optional[str]) -> str:
        emoji = (emoji or "").strip()
        if not emoji or len(emoji) > self.max_emoji_length:
            raise InvalidContent("Invalid reaction")
        return emoji

    # Create

    @tracked("create")
    async def create_message(
        self,
        sender_id: Optional[str],
        text: Optional[str] = None,
        channel: Optional[str] = None,
        images: Optional[Sequence[MediaItem]] = None,
        reply_to: Optional[str] = None,
    ) -> Message:
        """
        Persist a new user message.

        Raises:
            UnknownSender: If the sender is missing or unknown
            InvalidContent: If there is neither text nor media, or the text is too long
            RateLimited: If the sender exceeded the admission window
        """
        if not sender_id:
            raise UnknownSender()
        channel = self._normalize_channel(channel)
        images = list(images or [])
        text = self._normalize_text(text)
        if not text and not images:
            raise InvalidContent("Message text is required")

        if not self.rate_limiter.admit(sender_id):
            chat_rate_limited_total.inc()
            raise RateLimited(retry_after=self.rate_limiter.reset_in(sender_id))

        user = self._require_user(sender_id)

        reply_snapshot = None
        if reply_to:
            target = self.store.get(reply_to)
            if target is not None and not target.is_terminal and target.channel == channel:
                reply_snapshot = build_reply_snapshot(target)
            else:
                # A dangling reply link is dropped rather than rejected
                logger.info("Reply target unavailable; sending without reply", extra={"reply_to": reply_to})
                reply_to = None

        message = self.store.append(MessageDraft(
            channel=channel,
            text=text or None,
            images=images,
            user=AuthorSnapshot(id=user.id, name=user.display_name, profile_picture=user.avatar_url),
            reply_to=reply_to,
            reply_snapshot=reply_snapshot,
        ))
        logger.info(
            "Message saved",
            extra={"message_id": message.id, "channel": channel, "author_id": user.id},
        )
        self._notify(message)
        return message

    @tracked("system")
    async def post_system_message(self, requester_id: str, channel: Optional[str], payload) -> Message:
        """Post a system notice; only elevated users may do so."""
        requester = self._require_user(requester_id)
        if not requester.is_elevated:
            raise NotOwner("Only admins can post system messages")
        message = self.store.append(MessageDraft(
            channel=self._normalize_channel(channel),
            text=render_system_text(payload),
            user=SYSTEM_AUTHOR,
            message_type=MessageKind.SYSTEM,
            system=payload,
        ))
        logger.info("System message saved", extra={"message_id": message.id, "kind": payload.kind})
        return message

    def _notify(self, message: Message) -> None:
        if self.dispatcher is None:
            return
        notification = PushNotification(
            title=message.user.name,
            body=notification_body(message),
            author_id=message.user.id,
            data={"type": "chat_message", "messageId": message.id, "channel": message.channel},
        )
        try:
            self.dispatcher.dispatch(notification)
        except Exception as e:
            # Notification problems must never fail the send
            logger.error(f"Notification hand-off failed: {e}", exc_info=True)

    # Mutations

    def _mutate(self, message_id: str, patch: Callable[[Message], bool]) -> MutationResult:
        changed = False

        def apply(message: Message) -> Optional[Message]:
            nonlocal changed
            changed = patch(message)
            return message if changed else None

        message = self.store.mutate(message_id, apply)
        return MutationResult(message=message, changed=changed)

    @tracked("edit")
    async def edit_message(self, requester_id: Optional[str], message_id: str, text: Optional[str]) -> MutationResult:
        """
        Replace the text of the requester's own message.

        Raises:
            NotFound, NotOwner, InvalidState, TooOld, InvalidContent
        """
        now = self._clock()

        def patch(message: Message) -> bool:
            if not requester_id or message.user.id != requester_id:
                raise NotOwner("You can only edit your own messages")
            if message.is_terminal:
                raise InvalidState("Deleted or unsent messages cannot be edited")
            if (now - message.created_at).total_seconds() > self.edit_window_seconds:
                raise TooOld()
            new_text = self._normalize_text(text)
            if not new_text:
                raise InvalidContent("Message text is required")
            if new_text == message.text:
                return False
            message.edit_history.append(EditRecord(text=message.text or "", edited_at=now))
            message.text = new_text
            message.is_edited = True
            message.edited_at = now
            return True

        return self._mutate(message_id, patch)

    @tracked("delete")
    async def delete_message(self, requester_id: Optional[str], message_id: str) -> MutationResult:
        """
        Soft-delete a message. Authors and elevated users may delete.

        Raises:
            NotFound, NotOwner
        """
        now = self._clock()
        requester: Optional[UserProfile] = None

        def patch(message: Message) -> bool:
            nonlocal requester
            if not requester_id:
                raise NotOwner("You can only delete your own messages")
            if message.user.id != requester_id:
                requester = requester or self.directory.resolve_user(requester_id)
                if requester is None or not requester.is_elevated:
                    raise NotOwner("You can only delete your own messages")
            if message.is_terminal:
                return False
            message.is_deleted = True
            message.deleted_at = now
            message.deleted_by = requester_id
            return True

        return self._mutate(message_id, patch)

    @tracked("unsend")
    async def unsend_message(self, requester_id: Optional[str], message_id: str) -> MutationResult:
        """
        Author-only redaction: archive the text, show a placeholder, drop media.

        Raises:
            NotFound, NotOwner, InvalidState
        """
        now = self._clock()

        def patch(message: Message) -> bool:
            if not requester_id or message.user.id != requester_id:
                raise NotOwner("You can only unsend your own messages")
            if message.is_unsent:
                return False
            if message.is_deleted:
                raise InvalidState("Deleted messages cannot be unsent")
            message.original_text = message.text
            message.text = UNSENT_PLACEHOLDER
            message.images = []
            message.is_unsent = True
            message.unsent_at = now
            return True

        return self._mutate(message_id, patch)

    @tracked("react")
    async def add_reaction(self, sender_id: Optional[str], message_id: str, emoji: Optional[str]) -> MutationResult:
        """
        Add the sender to an emoji's reaction set.

        Raises:
            UnknownSender, InvalidContent, NotFound, InvalidState
        """
        user = self._require_user(sender_id)
        emoji = self._require_emoji(emoji)

        def patch(message: Message) -> bool:
            if message.is_terminal:
                raise InvalidState("Cannot react to a deleted or unsent message")
            reaction = message.reaction_for(emoji)
            if reaction is None:
                reaction = Reaction(emoji=emoji)
                message.reactions.append(reaction)
            if user.id in reaction.users:
                return False
            reaction.users.append(user.id)
            reaction.count = len(reaction.users)
            return True

        return self._mutate(message_id, patch)

    @tracked("remove_reaction")
    async def remove_reaction(self, sender_id: Optional[str], message_id: str, emoji: Optional[str]) -> MutationResult:
        """Remove the sender from an emoji's set; no-op if they never reacted."""
        if not sender_id:
            raise UnknownSender()
        emoji = (emoji or "").strip()

        def patch(message: Message) -> bool:
            reaction = message.reaction_for(emoji)
            if reaction is None or sender_id not in reaction.users:
                return False
            reaction.users.remove(sender_id)
            reaction.count = len(reaction.users)
            if not reaction.users:
                message.reactions.remove(reaction)
            return True

        return self._mutate(message_id, patch)

    @tracked("mark_read")
    async def mark_read(self, sender_id: Optional[str], message_id: str) -> MutationResult:
        """Record a read receipt once per reader; authors never receipt their own messages."""
        user = self._require_user(sender_id)
        now = self._clock()

        def patch(message: Message) -> bool:
            if message.user.id == user.id or message.has_read(user.id):
                return False
            message.read_by.append(ReadReceipt(user_id=user.id, read_at=now))
            if message.status in (MessageStatus.SENT, MessageStatus.DELIVERED):
                message.status = MessageStatus.READ
            return True

        return self._mutate(message_id, patch)

    # Reads

    @tracked("reply_lookup")
    async def get_message_for_reply(self, message_id: str) -> Message:
        """
        Raises:
            NotFound: If the message does not exist
            InvalidState: If it was deleted or unsent
        """
        message = self.store.find_by_id(message_id)
        if message.is_terminal:
            raise InvalidState("This message can no longer be replied to")
        return message

    async def mark_delivered(self, message_ids: List[str]) -> int:
        return self.store.mark_delivered(message_ids)
