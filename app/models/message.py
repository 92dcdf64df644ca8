"""Message model: one row per unit of conversation content."""

from __future__ import annotations

import uuid

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)

from app.db import Base
from app.models.mixins import utcnow

STATUS_PENDING = "pending"
STATUS_SENT = "sent"
STATUS_DELIVERED = "delivered"
STATUS_READ = "read"
STATUS_FAILED = "failed"

SENDER_USER = "user"
SENDER_AGENT = "agent"


class Message(Base):
    """
    provider_message_id is the network id (or a deterministic fallback).
    It stays NULL for an optimistic send until the echo is reconciled.
    """

    __tablename__ = "messages"
    __table_args__ = (
        UniqueConstraint(
            "session_id",
            "provider_message_id",
            name="uq_messages_session_provider_message_id",
        ),
        Index("ix_messages_chat_id_created_at", "chat_id", "created_at"),
        Index("ix_messages_session_status", "session_id", "status"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    chat_id = Column(
        Uuid, ForeignKey("chats.id", ondelete="CASCADE"), nullable=False
    )
    session_id = Column(Uuid, nullable=False)
    remote_id = Column(String(128), nullable=False)
    sender = Column(String(16), nullable=False)
    body = Column(Text, nullable=True)
    media_type = Column(String(16), nullable=True)
    media_url = Column(Text, nullable=True)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    is_from_us = Column(Boolean, nullable=False, default=False)
    status = Column(String(16), nullable=False)
    provider_message_id = Column(String(256), nullable=True)
    client_request_id = Column(String(128), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
