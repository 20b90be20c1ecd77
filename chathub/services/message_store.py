"""Persistence for chat messages.

All reads and writes go through SQLAlchemy Core against the ``chat_messages``
table. Mutations of a single message run inside one transaction and lock the
row where the backend supports it, so each patch is applied atomically per
message. There are no cross-message transactions.
"""

import base64
import binascii
import logging
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Generator, List, Optional, Sequence, Tuple

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from chathub.infra.clock import utcnow
from chathub.infra.errors import InvalidContent, NotFound, UpstreamUnavailable
from chathub.models.message import (
    AuthorSnapshot,
    Message,
    MessageDraft,
    MessageStatus,
)
from chathub.models.tables import chat_messages

logger = logging.getLogger(__name__)

# Upper bound on rows pulled into the ranking step of a search
SEARCH_CANDIDATE_FACTOR = 10


@dataclass
class MessagePage:
    """Slice of a channel's history ordered oldest to newest."""
    messages: List[Message]
    has_more: bool
    next_cursor: Optional[str] = None
    total: Optional[int] = None


def encode_cursor(created_at: datetime, message_id: str) -> str:
    """Opaque keyset cursor for (created_at, id)."""
    raw = f"{created_at.isoformat()}|{message_id}".encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii")


def decode_cursor(cursor: str) -> Tuple[datetime, str]:
    try:
        raw = base64.urlsafe_b64decode(cursor.encode("ascii")).decode("utf-8")
        created_at, message_id = raw.split("|", 1)
        return datetime.fromisoformat(created_at), message_id
    except (ValueError, UnicodeError, binascii.Error):
        raise InvalidContent("Invalid pagination cursor")


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _message_to_row(message: Message) -> Dict[str, Any]:
    return {
        "id": message.id,
        "channel": message.channel,
        "message_type": message.message_type.value,
        "text": message.text,
        "images": [item.model_dump(mode="json") for item in message.images],
        "system_payload": message.system.model_dump(mode="json") if message.system else None,
        "author_id": message.user.id,
        "author_name": message.user.name,
        "author_avatar": message.user.profile_picture,
        "status": message.status.value,
        "is_edited": message.is_edited,
        "edited_at": message.edited_at,
        "edit_history": [record.model_dump(mode="json") for record in message.edit_history],
        "is_deleted": message.is_deleted,
        "deleted_at": message.deleted_at,
        "deleted_by": message.deleted_by,
        "is_unsent": message.is_unsent,
        "unsent_at": message.unsent_at,
        "original_text": message.original_text,
        "reply_to": message.reply_to,
        "reply_snapshot": message.reply_snapshot.model_dump(mode="json") if message.reply_snapshot else None,
        "reactions": [reaction.model_dump(mode="json") for reaction in message.reactions],
        "read_by": [receipt.model_dump(mode="json") for receipt in message.read_by],
        "created_at": message.created_at,
        "updated_at": message.updated_at,
    }


def _row_to_message(row) -> Message:
    data = row._mapping
    return Message.model_validate({
        "id": data["id"],
        "channel": data["channel"],
        "message_type": data["message_type"],
        "text": data["text"],
        "images": data["images"] or [],
        "system": data["system_payload"],
        "user": AuthorSnapshot(
            id=data["author_id"],
            name=data["author_name"],
            profile_picture=data["author_avatar"],
        ),
        "status": data["status"],
        "is_edited": bool(data["is_edited"]),
        "edited_at": data["edited_at"],
        "edit_history": data["edit_history"] or [],
        "is_deleted": bool(data["is_deleted"]),
        "deleted_at": data["deleted_at"],
        "deleted_by": data["deleted_by"],
        "is_unsent": bool(data["is_unsent"]),
        "unsent_at": data["unsent_at"],
        "original_text": data["original_text"],
        "reply_to": data["reply_to"],
        "reply_snapshot": data["reply_snapshot"],
        "reactions": data["reactions"] or [],
        "read_by": data["read_by"] or [],
        "created_at": data["created_at"],
        "updated_at": data["updated_at"],
    })


class MessageStore:
    """Message persistence with keyset pagination and per-message atomic updates."""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory
        self._last_created_at: Optional[datetime] = None

    @contextmanager
    def _session_scope(self) -> Generator[Session, None, None]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            logger.error(f"Message store failure: {exc}", exc_info=True)
            raise UpstreamUnavailable("Message store unavailable") from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _next_timestamp(self) -> datetime:
        # Strictly increasing within this process so sequential sends never tie
        now = utcnow()
        if self._last_created_at is not None and now <= self._last_created_at:
            now = self._last_created_at + timedelta(microseconds=1)
        self._last_created_at = now
        return now

    def append(self, draft: MessageDraft) -> Message:
        """Persist a new message and return it with its id and timestamps."""
        created_at = self._next_timestamp()
        message = Message.model_validate({
            **draft.model_dump(),
            "id": str(uuid.uuid4()),
            "created_at": created_at,
            "updated_at": created_at,
        })
        with self._session_scope() as session:
            session.execute(chat_messages.insert().values(**_message_to_row(message)))
        return message

    def get(self, message_id: str) -> Optional[Message]:
        with self._session_scope() as session:
            row = session.execute(
                select(chat_messages).where(chat_messages.c.id == message_id)
            ).first()
        return _row_to_message(row) if row else None

    def find_by_id(self, message_id: str) -> Message:
        message = self.get(message_id)
        if message is None:
            raise NotFound()
        return message

    def page(
        self,
        channel: str,
        cursor: Optional[str] = None,
        limit: int = 50,
        include_deleted: bool = False,
    ) -> MessagePage:
        """
        Keyset page of a channel's history.

        Without a cursor the newest ``limit`` messages are returned. With a
        cursor, the ``limit`` messages strictly older than the cursor position.
        Either way the slice is ordered oldest to newest and ``next_cursor``
        points at its oldest message.
        """
        conditions = [chat_messages.c.channel == channel]
        if not include_deleted:
            conditions.append(chat_messages.c.is_deleted.is_(False))
        if cursor:
            created_at, message_id = decode_cursor(cursor)
            conditions.append(
                or_(
                    chat_messages.c.created_at < created_at,
                    and_(
                        chat_messages.c.created_at == created_at,
                        chat_messages.c.id < message_id,
                    ),
                )
            )

        stmt = (
            select(chat_messages)
            .where(*conditions)
            .order_by(chat_messages.c.created_at.desc(), chat_messages.c.id.desc())
            .limit(limit + 1)
        )
        with self._session_scope() as session:
            rows = session.execute(stmt).fetchall()

        has_more = len(rows) > limit
        rows = rows[:limit]
        messages = [_row_to_message(row) for row in reversed(rows)]
        next_cursor = None
        if has_more and messages:
            next_cursor = encode_cursor(messages[0].created_at, messages[0].id)
        return MessagePage(messages=messages, has_more=has_more, next_cursor=next_cursor)

    def page_by_number(
        self,
        channel: str,
        page: int = 1,
        limit: int = 50,
        include_deleted: bool = False,
    ) -> MessagePage:
        """Page-numbered history; page 1 holds the newest messages, oldest first."""
        conditions = [chat_messages.c.channel == channel]
        if not include_deleted:
            conditions.append(chat_messages.c.is_deleted.is_(False))

        offset = (page - 1) * limit
        stmt = (
            select(chat_messages)
            .where(*conditions)
            .order_by(chat_messages.c.created_at.desc(), chat_messages.c.id.desc())
            .offset(offset)
            .limit(limit)
        )
        with self._session_scope() as session:
            rows = session.execute(stmt).fetchall()
            total = session.execute(
                select(func.count()).select_from(chat_messages).where(*conditions)
            ).scalar() or 0

        messages = [_row_to_message(row) for row in reversed(rows)]
        next_cursor = None
        if messages:
            next_cursor = encode_cursor(messages[0].created_at, messages[0].id)
        return MessagePage(
            messages=messages,
            has_more=offset + len(messages) < total,
            next_cursor=next_cursor,
            total=total,
        )

    def search(self, channel: Optional[str], query: str, limit: int = 50) -> List[Message]:
        """Case-insensitive match over text and author name, best matches first."""
        needle = query.strip().lower()
        if not needle:
            return []
        pattern = f"%{_escape_like(needle)}%"

        conditions = [
            chat_messages.c.is_deleted.is_(False),
            chat_messages.c.is_unsent.is_(False),
            or_(
                chat_messages.c.text.ilike(pattern, escape="\\"),
                chat_messages.c.author_name.ilike(pattern, escape="\\"),
            ),
        ]
        if channel:
            conditions.append(chat_messages.c.channel == channel)

        stmt = (
            select(chat_messages)
            .where(*conditions)
            .order_by(chat_messages.c.created_at.desc())
            .limit(limit * SEARCH_CANDIDATE_FACTOR)
        )
        with self._session_scope() as session:
            rows = session.execute(stmt).fetchall()

        candidates = [_row_to_message(row) for row in rows]

        def relevance(message: Message) -> Tuple[int, datetime]:
            text = (message.text or "").lower()
            score = text.count(needle) * 2
            if text.startswith(needle):
                score += 1
            if needle in message.user.name.lower():
                score += 1
            return score, message.created_at

        candidates.sort(key=relevance, reverse=True)
        return candidates[:limit]

    def list_by_author(self, user_id: str, limit: int = 50) -> List[Message]:
        """A user's own non-deleted messages, newest first."""
        stmt = (
            select(chat_messages)
            .where(
                chat_messages.c.author_id == user_id,
                chat_messages.c.is_deleted.is_(False),
            )
            .order_by(chat_messages.c.created_at.desc(), chat_messages.c.id.desc())
            .limit(limit)
        )
        with self._session_scope() as session:
            rows = session.execute(stmt).fetchall()
        return [_row_to_message(row) for row in rows]

    def mutate(self, message_id: str, patch: Callable[[Message], Optional[Message]]) -> Message:
        """
        Apply ``patch`` to one message atomically.

        ``patch`` receives a private copy of the current message and returns the
        updated copy, or None to leave the stored message untouched. Exceptions
        raised by ``patch`` abort the update and propagate to the caller.
        """
        with self._session_scope() as session:
            row = session.execute(
                select(chat_messages)
                .where(chat_messages.c.id == message_id)
                .with_for_update()
            ).first()
            if row is None:
                raise NotFound()

            current = _row_to_message(row)
            updated = patch(current.model_copy(deep=True))
            if updated is None:
                return current

            updated.updated_at = utcnow()
            values = _message_to_row(updated)
            values.pop("id")
            session.execute(
                update(chat_messages)
                .where(chat_messages.c.id == message_id)
                .values(**values)
            )
        return updated

    def mark_delivered(self, message_ids: Sequence[str]) -> int:
        """Bulk sent -> delivered transition; returns how many rows moved."""
        if not message_ids:
            return 0
        with self._session_scope() as session:
            result = session.execute(
                update(chat_messages)
                .where(
                    chat_messages.c.id.in_(list(message_ids)),
                    chat_messages.c.status == MessageStatus.SENT.value,
                )
                .values(status=MessageStatus.DELIVERED.value, updated_at=utcnow())
            )
        return result.rowcount or 0
