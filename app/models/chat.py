"""Chat model: the canonical conversation with one contact inside one session."""

from __future__ import annotations

import uuid

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import relationship

from app.db import Base
from app.models.mixins import TimestampMixin, utcnow

CHAT_TYPE_INDIVIDUAL = "INDIVIDUAL"
CHAT_TYPE_GROUP = "GROUP"

CHAT_STATUS_INBOX = "INBOX"
CHAT_STATUS_DONE = "DONE"
CHAT_STATUS_ARCHIVED = "ARCHIVED"

MODE_AI = "ai"
MODE_HUMAN = "human"
CHAT_MODES = (MODE_AI, MODE_HUMAN)


class Chat(Base, TimestampMixin):
    """
    One row per (session_id, remote_id).

    remote_id is whatever JID the network currently uses for the contact
    (phone or LID form). phone_jid is the last known phone-form JID and is
    sticky once learned.
    """

    __tablename__ = "chats"
    __table_args__ = (
        UniqueConstraint("session_id", "remote_id", name="uq_chats_session_remote_id"),
        Index("ix_chats_session_phone_jid", "session_id", "phone_jid"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    session_id = Column(
        Uuid,
        ForeignKey("whatsapp_sessions.id", ondelete="CASCADE"),
        nullable=False,
    )
    remote_id = Column(String(128), nullable=False)
    phone_jid = Column(String(128), nullable=True)
    name = Column(String(256), nullable=True)
    type = Column(String(16), nullable=False, default=CHAT_TYPE_INDIVIDUAL)
    is_group = Column(Boolean, nullable=False, default=False)
    status = Column(String(16), nullable=False, default=CHAT_STATUS_INBOX)
    mode = Column(String(16), nullable=False, default=MODE_AI)
    needs_human = Column(Boolean, nullable=False, default=False)
    unread_count = Column(Integer, nullable=False, default=0)
    last_message = Column(Text, nullable=True)
    last_message_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    assigned_to = Column(String(256), nullable=True)
    bot_id = Column(
        Uuid, ForeignKey("bots.id", ondelete="SET NULL"), nullable=True
    )

    session = relationship("WhatsAppSession", back_populates="chats")
    bot = relationship("Bot")
