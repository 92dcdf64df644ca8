"""Bot and BotKnowledge models: configuration fed to reply generation."""

from __future__ import annotations

import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import relationship

from app.db import Base
from app.models.mixins import TimestampMixin


class Bot(Base, TimestampMixin):
    __tablename__ = "bots"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(128), nullable=False)
    personality = Column(Text, nullable=False, default="")
    is_active = Column(Boolean, nullable=False, default=True)
    temperature = Column(Float, nullable=False, default=0.7)
    max_tokens = Column(Integer, nullable=False, default=200)

    knowledge = relationship(
        "BotKnowledge",
        back_populates="bot",
        cascade="all, delete-orphan",
        order_by="BotKnowledge.priority.desc()",
    )


class BotKnowledge(Base, TimestampMixin):
    """One knowledge snippet; selected for a prompt by keyword overlap."""

    __tablename__ = "bot_knowledge"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    bot_id = Column(
        Uuid, ForeignKey("bots.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title = Column(String(256), nullable=False)
    content = Column(Text, nullable=False)
    category = Column(String(128), nullable=True)
    keywords = Column(JSON, nullable=False, default=list)
    is_active = Column(Boolean, nullable=False, default=True)
    priority = Column(Integer, nullable=False, default=0)

    bot = relationship("Bot", back_populates="knowledge")
