"""add whatsapp bridge tables

Revision ID: 7a3c9e1f4b2d
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "7a3c9e1f4b2d"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _uuid_pk() -> sa.Column:
    return sa.Column(
        "id",
        postgresql.UUID(as_uuid=True),
        primary_key=True,
        server_default=sa.text("gen_random_uuid()"),
    )


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    """Upgrade schema: sessions, bots, chats, messages and jid mappings."""
    op.create_table(
        "whatsapp_sessions",
        _uuid_pk(),
        sa.Column("owner_id", sa.String(length=256), nullable=True),
        sa.Column("is_ready", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column(
            "should_disconnect", sa.Boolean(), server_default=sa.false(), nullable=False
        ),
        *_timestamps(),
    )

    op.create_table(
        "bots",
        _uuid_pk(),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("personality", sa.Text(), server_default="", nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column("temperature", sa.Float(), server_default="0.7", nullable=False),
        sa.Column("max_tokens", sa.Integer(), server_default="200", nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "bot_knowledge",
        _uuid_pk(),
        sa.Column(
            "bot_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("bots.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("title", sa.String(length=256), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("category", sa.String(length=128), nullable=True),
        sa.Column(
            "keywords",
            postgresql.JSONB(),
            server_default=sa.text("'[]'::jsonb"),
            nullable=False,
        ),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column("priority", sa.Integer(), server_default="0", nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_bot_knowledge_bot_id", "bot_knowledge", ["bot_id"])

    op.create_table(
        "chats",
        _uuid_pk(),
        sa.Column(
            "session_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("whatsapp_sessions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("remote_id", sa.String(length=128), nullable=False),
        sa.Column("phone_jid", sa.String(length=128), nullable=True),
        sa.Column("name", sa.String(length=256), nullable=True),
        sa.Column("type", sa.String(length=16), server_default="INDIVIDUAL", nullable=False),
        sa.Column("is_group", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("status", sa.String(length=16), server_default="INBOX", nullable=False),
        sa.Column("mode", sa.String(length=16), server_default="ai", nullable=False),
        sa.Column("needs_human", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("unread_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("last_message", sa.Text(), nullable=True),
        sa.Column(
            "last_message_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("assigned_to", sa.String(length=256), nullable=True),
        sa.Column(
            "bot_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("bots.id", ondelete="SET NULL"),
            nullable=True,
        ),
        *_timestamps(),
        sa.UniqueConstraint("session_id", "remote_id", name="uq_chats_session_remote_id"),
    )
    op.create_index("ix_chats_session_phone_jid", "chats", ["session_id", "phone_jid"])

    op.create_table(
        "messages",
        _uuid_pk(),
        sa.Column(
            "chat_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("chats.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("session_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("remote_id", sa.String(length=128), nullable=False),
        sa.Column("sender", sa.String(length=16), nullable=False),
        sa.Column("body", sa.Text(), nullable=True),
        sa.Column("media_type", sa.String(length=16), nullable=True),
        sa.Column("media_url", sa.Text(), nullable=True),
        sa.Column(
            "timestamp",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("is_from_us", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("provider_message_id", sa.String(length=256), nullable=True),
        sa.Column("client_request_id", sa.String(length=128), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.UniqueConstraint(
            "session_id",
            "provider_message_id",
            name="uq_messages_session_provider_message_id",
        ),
    )
    op.create_index(
        "ix_messages_chat_id_created_at", "messages", ["chat_id", "created_at"]
    )
    op.create_index("ix_messages_session_status", "messages", ["session_id", "status"])

    op.create_table(
        "jid_mappings",
        _uuid_pk(),
        sa.Column("session_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("lid_jid", sa.String(length=128), nullable=False),
        sa.Column("phone_jid", sa.String(length=128), nullable=False),
        sa.Column("source", sa.String(length=16), server_default="hint", nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("session_id", "lid_jid", name="uq_jid_mappings_session_lid"),
    )
    op.create_index("ix_jid_mappings_session_id", "jid_mappings", ["session_id"])


def downgrade() -> None:
    """Downgrade schema: drop bridge tables."""
    op.drop_index("ix_jid_mappings_session_id", table_name="jid_mappings")
    op.drop_table("jid_mappings")
    op.drop_index("ix_messages_session_status", table_name="messages")
    op.drop_index("ix_messages_chat_id_created_at", table_name="messages")
    op.drop_table("messages")
    op.drop_index("ix_chats_session_phone_jid", table_name="chats")
    op.drop_table("chats")
    op.drop_index("ix_bot_knowledge_bot_id", table_name="bot_knowledge")
    op.drop_table("bot_knowledge")
    op.drop_table("bots")
    op.drop_table("whatsapp_sessions")
