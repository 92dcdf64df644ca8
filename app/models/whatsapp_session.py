"""WhatsAppSession model: one row per connected WhatsApp account."""

from __future__ import annotations

import uuid

from sqlalchemy import Boolean, Column, String, Uuid
from sqlalchemy.orm import relationship

from app.db import Base
from app.models.mixins import TimestampMixin


class WhatsAppSession(Base, TimestampMixin):
    """Created by connection setup; the bridge only reads it."""

    __tablename__ = "whatsapp_sessions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id = Column(String(256), nullable=True)
    is_ready = Column(Boolean, nullable=False, default=False)
    should_disconnect = Column(Boolean, nullable=False, default=False)

    chats = relationship(
        "Chat", back_populates="session", cascade="all, delete-orphan"
    )
