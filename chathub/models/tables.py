"""SQLAlchemy table definitions for chat persistence."""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Index,
    JSON,
    MetaData,
    String,
    Table,
    Text,
)

from chathub.models.message import MAX_CHANNEL_LENGTH

metadata = MetaData()


# Owned by the identity service; the chat core only reads it.
users = Table(
    "users",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("name", String(120), nullable=False),
    Column("email", String(255), nullable=True),
    Column("role", String(32), nullable=False, server_default="Member"),
    Column("profile_picture", String(512), nullable=True),
    Column("push_token", String(512), nullable=True),
)


chat_messages = Table(
    "chat_messages",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("channel", String(MAX_CHANNEL_LENGTH), nullable=False, server_default="general"),
    Column("message_type", String(16), nullable=False, server_default="user"),
    Column("text", Text, nullable=True),
    Column("images", JSON, nullable=False, default=list),
    Column("system_payload", JSON, nullable=True),
    # Author snapshot
    Column("author_id", String(64), nullable=False),
    Column("author_name", String(120), nullable=False),
    Column("author_avatar", String(512), nullable=True),
    Column("status", String(16), nullable=False, server_default="sent"),
    # Edit state
    Column("is_edited", Boolean, nullable=False, default=False),
    Column("edited_at", DateTime, nullable=True),
    Column("edit_history", JSON, nullable=False, default=list),
    # Soft delete
    Column("is_deleted", Boolean, nullable=False, default=False),
    Column("deleted_at", DateTime, nullable=True),
    Column("deleted_by", String(64), nullable=True),
    # Unsend
    Column("is_unsent", Boolean, nullable=False, default=False),
    Column("unsent_at", DateTime, nullable=True),
    Column("original_text", Text, nullable=True),
    # Reply linkage (weak reference + snapshot)
    Column("reply_to", String(36), nullable=True),
    Column("reply_snapshot", JSON, nullable=True),
    Column("reactions", JSON, nullable=False, default=list),
    Column("read_by", JSON, nullable=False, default=list),
    Column("created_at", DateTime, nullable=False),
    Column("updated_at", DateTime, nullable=False),
)

Index("ix_chat_messages_channel_created", chat_messages.c.channel, chat_messages.c.created_at, chat_messages.c.id)
Index("ix_chat_messages_author_id", chat_messages.c.author_id)
Index("ix_chat_messages_author_name", chat_messages.c.author_name)
