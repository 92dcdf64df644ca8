"""Pydantic schemas for Chat and Message API responses and requests."""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field

ChatMode = Literal["ai", "human"]
MessageStatus = Literal["pending", "sent", "delivered", "read", "failed"]

# -----------------------------------------------------------------------------
# Chat schemas
# -----------------------------------------------------------------------------


class ChatRead(BaseModel):
    id: UUID
    session_id: UUID
    remote_id: str
    phone_jid: Optional[str] = None
    name: Optional[str] = None
    type: str
    is_group: bool
    status: str
    mode: ChatMode
    needs_human: bool
    unread_count: int
    last_message: Optional[str] = None
    last_message_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    # Phone JID learned for a LID-addressed chat, from the lid -> phone mapping
    mapped_phone_jid: Optional[str] = None

    model_config = {"from_attributes": True}


class ChatModeUpdate(BaseModel):
    session_id: UUID
    mode: ChatMode


# -----------------------------------------------------------------------------
# Message schemas
# -----------------------------------------------------------------------------


class MessageRead(BaseModel):
    id: UUID
    chat_id: UUID
    session_id: UUID
    remote_id: str
    sender: str
    body: Optional[str] = None
    media_type: Optional[str] = None
    timestamp: datetime
    is_from_us: bool
    status: MessageStatus
    provider_message_id: Optional[str] = None
    client_request_id: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class SendMessageRequest(BaseModel):
    """Operator-initiated send. ``to`` is a phone number or JID."""

    session_id: UUID
    to: str = Field(min_length=1)
    text: str = Field(min_length=1)
    client_request_id: Optional[str] = None
    assigned_to: Optional[str] = None


class SendMessageResponse(BaseModel):
    chat_id: UUID
    message_id: UUID
