"""
Normalized contracts for the bridge.

Gateway payloads are converted into InboundEvent; everything downstream
(dedup, chat resolution, reconciliation, handoff) only sees these shapes.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, Field

MEDIA_IMAGE = "image"
MEDIA_VIDEO = "video"
MEDIA_AUDIO = "audio"
MEDIA_STICKER = "sticker"
MEDIA_DOCUMENT = "document"

# Stands in for the network timestamp in fallback ids when the event has none
UNKNOWN_TIMESTAMP = "unknown"

MEDIA_PLACEHOLDERS = {
    MEDIA_IMAGE: "[image]",
    MEDIA_VIDEO: "[video]",
    MEDIA_AUDIO: "[audio]",
    MEDIA_STICKER: "[sticker]",
    MEDIA_DOCUMENT: "[document]",
}


class InboundEvent(BaseModel):
    """One message event delivered by the network (at-least-once)."""

    remote_jid: str
    from_me: bool = False
    wa_message_id: Optional[str] = None
    timestamp_seconds: Optional[int] = None
    body: str = ""
    media_type: Optional[str] = None
    push_name: Optional[str] = None
    # Phone JID of the contact when the gateway reports it alongside a LID
    phone_jid: Optional[str] = None
    client_request_id: Optional[str] = None
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def timestamp(self) -> datetime:
        """Network send time, or the time the event was parsed when the network gave none."""
        if self.timestamp_seconds is None:
            return self.received_at
        return datetime.fromtimestamp(self.timestamp_seconds, tz=timezone.utc)

    @property
    def timestamp_iso(self) -> str:
        """Timestamp used in fallback ids. Only the network time is stable across redeliveries."""
        if self.timestamp_seconds is None:
            return UNKNOWN_TIMESTAMP
        return self.timestamp.isoformat()

    @property
    def is_empty(self) -> bool:
        return not self.media_type and not (self.body or "").strip()


class OutboundSendResult(BaseModel):
    """Result of sending a message through the transport."""

    success: bool
    provider_message_id: Optional[str] = None
    error: Optional[str] = None


class BotConfig(BaseModel):
    """Configuration passed to reply generation for one chat."""

    bot_id: Optional[str] = None
    personality: Optional[str] = None
    knowledge: list[str] = Field(default_factory=list)
    temperature: float = 0.7
    max_tokens: int = 200


class HistoryItem(BaseModel):
    role: str
    content: str


class ReplyResult(BaseModel):
    """Structured output of reply generation."""

    reply: str
    handoff: bool = False
    handoff_reason: Optional[str] = None


class ReceiptEvent(BaseModel):
    """Delivery receipt for a message we sent."""

    provider_message_id: str
    status: Literal["delivered", "read"]
