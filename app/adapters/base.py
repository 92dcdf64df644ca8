"""
Platform adapter interface.

Adapters encapsulate gateway-specific logic and expose normalized inbound
events to the bridge core.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional, Protocol

from app.schemas.bridge import InboundEvent, OutboundSendResult


class MessagingTransport(Protocol):
    """Anything that can deliver a text message to a JID."""

    async def send(self, remote_jid: str, text: str) -> OutboundSendResult: ...


class BasePlatformAdapter(ABC):
    """Contract for platform adapters. New gateways implement this interface."""

    @abstractmethod
    def parse_webhook(self, raw_payload: dict[str, Any]) -> list[InboundEvent]:
        """Parse raw webhook payload into normalized inbound events. Raise if invalid."""
        ...

    @abstractmethod
    async def send(self, remote_jid: str, text: str) -> OutboundSendResult:
        """Send a text message via the gateway. Return success and optional message id."""
        ...

    async def aclose(self) -> None:
        """Release network resources. Override when the adapter holds a client."""
        return None

    def verify_webhook(
        self, secret: Optional[str], request_headers: Optional[dict[str, str]] = None
    ) -> bool:
        """
        Verify webhook request (e.g. shared secret header). Override if supported.
        Return True if valid or verification not required; False to reject.
        """
        return True
