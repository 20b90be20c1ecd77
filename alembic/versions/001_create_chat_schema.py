"""Create chat schema

Revision ID: 001
Revises: 
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("role", sa.String(32), nullable=False, server_default="Member"),
        sa.Column("profile_picture", sa.String(512), nullable=True),
        sa.Column("push_token", sa.String(512), nullable=True),
    )

    op.create_table(
        "chat_messages",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("channel", sa.String(64), nullable=False, server_default="general"),
        sa.Column("message_type", sa.String(16), nullable=False, server_default="user"),
        sa.Column("text", sa.Text, nullable=True),
        sa.Column("images", sa.JSON, nullable=False),
        sa.Column("system_payload", sa.JSON, nullable=True),
        sa.Column("author_id", sa.String(64), nullable=False),
        sa.Column("author_name", sa.String(120), nullable=False),
        sa.Column("author_avatar", sa.String(512), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="sent"),
        sa.Column("is_edited", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("edited_at", sa.DateTime, nullable=True),
        sa.Column("edit_history", sa.JSON, nullable=False),
        sa.Column("is_deleted", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("deleted_at", sa.DateTime, nullable=True),
        sa.Column("deleted_by", sa.String(64), nullable=True),
        sa.Column("is_unsent", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("unsent_at", sa.DateTime, nullable=True),
        sa.Column("original_text", sa.Text, nullable=True),
        sa.Column("reply_to", sa.String(36), nullable=True),
        sa.Column("reply_snapshot", sa.JSON, nullable=True),
        sa.Column("reactions", sa.JSON, nullable=False),
        sa.Column("read_by", sa.JSON, nullable=False),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("updated_at", sa.DateTime, nullable=False),
    )
    op.create_index("ix_chat_messages_channel_created", "chat_messages", ["channel", "created_at", "id"])
    op.create_index("ix_chat_messages_author_id", "chat_messages", ["author_id"])
    op.create_index("ix_chat_messages_author_name", "chat_messages", ["author_name"])

    # Trigram indexes back ILIKE search on Postgres
    if op.get_bind().dialect.name == "postgresql":
        op.execute("CREATE EXTENSION IF NOT EXISTS pg_trgm")
        op.execute(
            "CREATE INDEX ix_chat_messages_text_trgm ON chat_messages "
            "USING gin (text gin_trgm_ops)"
        )
        op.execute(
            "CREATE INDEX ix_chat_messages_author_name_trgm ON chat_messages "
            "USING gin (author_name gin_trgm_ops)"
        )


def downgrade() -> None:
    if op.get_bind().dialect.name == "postgresql":
        op.execute("DROP INDEX IF EXISTS ix_chat_messages_author_name_trgm")
        op.execute("DROP INDEX IF EXISTS ix_chat_messages_text_trgm")
    op.drop_index("ix_chat_messages_author_name", table_name="chat_messages")
    op.drop_index("ix_chat_messages_author_id", table_name="chat_messages")
    op.drop_index("ix_chat_messages_channel_created", table_name="chat_messages")
    op.drop_table("chat_messages")
    op.drop_table("users")
