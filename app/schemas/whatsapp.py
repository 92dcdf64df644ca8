"""
WhatsApp gateway webhook payload schemas.

Mirrors the message shape the gateway forwards from the WhatsApp Web socket
(``messages.upsert`` and history sync events).
"""

from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, Field


class WhatsAppMessageKey(BaseModel):
    remote_jid: Optional[str] = Field(None, alias="remoteJid")
    from_me: bool = Field(False, alias="fromMe")
    id: Optional[str] = None
    # Phone-form JID some gateways attach when remoteJid is a LID
    sender_pn: Optional[str] = Field(None, alias="senderPn")

    model_config = {"populate_by_name": True}


class WhatsAppWebMessage(BaseModel):
    key: WhatsAppMessageKey
    message: Optional[dict[str, Any]] = None
    message_timestamp: Optional[int] = Field(None, alias="messageTimestamp")
    push_name: Optional[str] = Field(None, alias="pushName")
    client_request_id: Optional[str] = Field(None, alias="clientRequestId")

    model_config = {"populate_by_name": True}


class WhatsAppReceipt(BaseModel):
    key: WhatsAppMessageKey
    status: Literal["delivered", "read"]


class WhatsAppWebhookPayload(BaseModel):
    """Root object POSTed by the gateway for one session."""

    type: Literal["notify", "append", "history", "receipt"] = "notify"
    messages: list[WhatsAppWebMessage] = Field(default_factory=list)
    receipts: list[WhatsAppReceipt] = Field(default_factory=list)
