"""
WhatsApp gateway adapter.

The gateway holds the WhatsApp Web socket for each session and talks to the
bridge over HTTP: it POSTs message events to our webhook and accepts sends
on ``POST /sessions/{session_id}/messages``.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Tuple
from uuid import UUID

import httpx

from app.adapters.base import BasePlatformAdapter
from app.config import get_settings
from app.core.jid import is_ignored_jid
from app.schemas.bridge import (
    MEDIA_AUDIO,
    MEDIA_DOCUMENT,
    MEDIA_IMAGE,
    MEDIA_PLACEHOLDERS,
    MEDIA_STICKER,
    MEDIA_VIDEO,
    InboundEvent,
    OutboundSendResult,
    ReceiptEvent,
)
from app.schemas.whatsapp import WhatsAppWebhookPayload, WhatsAppWebMessage

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 20.0
API_KEY_HEADER = "X-API-Key"


def parse_message_content(message: Optional[dict[str, Any]]) -> Tuple[str, Optional[str]]:
    """Text body and media type of a WhatsApp Web message; media without caption gets a placeholder."""
    if not message:
        return "", None
    if message.get("conversation"):
        return message["conversation"], None
    extended = message.get("extendedTextMessage") or {}
    if extended.get("text"):
        return extended["text"], None
    for key, media_type in (
        ("imageMessage", MEDIA_IMAGE),
        ("videoMessage", MEDIA_VIDEO),
    ):
        if key in message:
            content = message.get(key) or {}
            return content.get("caption") or MEDIA_PLACEHOLDERS[media_type], media_type
    if "audioMessage" in message:
        return MEDIA_PLACEHOLDERS[MEDIA_AUDIO], MEDIA_AUDIO
    if "stickerMessage" in message:
        return MEDIA_PLACEHOLDERS[MEDIA_STICKER], MEDIA_STICKER
    if "documentMessage" in message:
        document = message.get("documentMessage") or {}
        file_name = document.get("fileName") or MEDIA_PLACEHOLDERS[MEDIA_DOCUMENT]
        return f"{MEDIA_PLACEHOLDERS[MEDIA_DOCUMENT]} {file_name}", MEDIA_DOCUMENT
    return "", None


def to_inbound_event(msg: WhatsAppWebMessage) -> Optional[InboundEvent]:
    """Normalize one gateway message; None for stubs and status broadcasts."""
    remote_jid = msg.key.remote_jid
    if msg.message is None or is_ignored_jid(remote_jid):
        return None
    body, media_type = parse_message_content(msg.message)
    return InboundEvent(
        remote_jid=remote_jid,
        from_me=msg.key.from_me,
        wa_message_id=msg.key.id,
        timestamp_seconds=msg.message_timestamp,
        body=body,
        media_type=media_type,
        push_name=msg.push_name,
        phone_jid=msg.key.sender_pn,
        client_request_id=msg.client_request_id,
    )


def verify_api_key_header(
    expected: Optional[str], request_headers: Optional[dict[str, str]] = None
) -> bool:
    if not expected:
        return True
    header_lower = API_KEY_HEADER.lower()
    for key, value in (request_headers or {}).items():
        if key.lower() == header_lower:
            return value == expected
    return False


def events_from_payload(payload: WhatsAppWebhookPayload) -> list[InboundEvent]:
    events = [to_inbound_event(m) for m in payload.messages]
    return [e for e in events if e is not None]


def receipts_from_payload(payload: WhatsAppWebhookPayload) -> list[ReceiptEvent]:
    return [
        ReceiptEvent(provider_message_id=r.key.id, status=r.status)
        for r in payload.receipts
        if r.key.id
    ]


class WhatsAppGatewayAdapter(BasePlatformAdapter):
    """Adapter for one session on the WhatsApp HTTP gateway."""

    def __init__(
        self,
        session_id: UUID,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.session_id = session_id
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {API_KEY_HEADER: self._api_key} if self._api_key else {}
            self._client = httpx.AsyncClient(
                base_url=self._base_url, headers=headers, timeout=self._timeout
            )
        return self._client

    def verify_webhook(
        self, secret: Optional[str], request_headers: Optional[dict[str, str]] = None
    ) -> bool:
        """Validate the gateway's X-API-Key header if an api key is configured."""
        return verify_api_key_header(secret or self._api_key, request_headers)

    @staticmethod
    def parse_payload(raw_payload: dict[str, Any]) -> WhatsAppWebhookPayload:
        return WhatsAppWebhookPayload.model_validate(raw_payload)

    def parse_webhook(self, raw_payload: dict[str, Any]) -> list[InboundEvent]:
        return events_from_payload(self.parse_payload(raw_payload))

    def parse_receipts(self, raw_payload: dict[str, Any]) -> list[ReceiptEvent]:
        return receipts_from_payload(self.parse_payload(raw_payload))

    async def send(self, remote_jid: str, text: str) -> OutboundSendResult:
        """Send a text message; HTTP error statuses come back as an unsuccessful result."""
        response = await self._get_client().post(
            f"/sessions/{self.session_id}/messages",
            json={"jid": remote_jid, "text": text},
        )
        if response.is_error:
            logger.warning(
                "Gateway rejected send session=%s jid=%s status=%s",
                self.session_id,
                remote_jid,
                response.status_code,
            )
            return OutboundSendResult(
                success=False, error=f"gateway returned {response.status_code}"
            )
        data = response.json() if response.content else {}
        return OutboundSendResult(success=True, provider_message_id=data.get("id"))

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


def build_gateway_adapter(session_id: UUID) -> Optional[WhatsAppGatewayAdapter]:
    """Transport factory for the session registry; None when no gateway is configured."""
    settings = get_settings()
    if not settings.gateway_base_url:
        return None
    return WhatsAppGatewayAdapter(
        session_id=session_id,
        base_url=settings.gateway_base_url,
        api_key=settings.gateway_api_key,
        timeout=settings.outbound_send_timeout_seconds,
    )
