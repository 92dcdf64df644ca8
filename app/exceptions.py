"""Domain errors raised by the reconciliation engine."""

from __future__ import annotations

from typing import Optional
from uuid import UUID


class BridgeError(Exception):
    """Base class for errors raised by the bridge."""


class InvalidIdentifier(BridgeError, ValueError):
    """Raw identifier cannot be normalized to a JID. Not retryable."""

    def __init__(self, raw: object, reason: str) -> None:
        self.raw = raw
        self.reason = reason
        super().__init__(f"Invalid identifier {raw!r}: {reason}")


class MergeFailed(BridgeError):
    """A merge or relink lost its race twice. Retry by re-delivering the event."""

    def __init__(
        self,
        session_id: UUID,
        chat_id: Optional[UUID],
        remote_id: str,
        detail: str = "",
    ) -> None:
        self.session_id = session_id
        self.chat_id = chat_id
        self.remote_id = remote_id
        message = f"Could not relink chat {chat_id} to {remote_id} in session {session_id}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class DuplicateSuppressed(BridgeError):
    """Inbound event already persisted. Normal dedup outcome, never surfaced."""

    def __init__(self, provider_message_id: str) -> None:
        self.provider_message_id = provider_message_id
        super().__init__(f"Duplicate message {provider_message_id}")


class SendFailed(BridgeError):
    """Network rejected or timed out an outbound send. The message is marked failed."""

    def __init__(self, message_id: UUID, reason: Optional[str] = None) -> None:
        self.message_id = message_id
        self.reason = reason
        super().__init__(f"Send failed for message {message_id}: {reason or 'unknown'}")


class ChatNotFound(BridgeError):
    pass


class SessionNotFound(BridgeError):
    pass
