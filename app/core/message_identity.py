"""
Message identity.

Write side: a stable provider id for every inbound network message, used as
the dedup key under the (session_id, provider_message_id) unique constraint.

Read side: every message carries up to three keys (provider id, client
request id, row id). Two entries sharing any key are the same message.
"""

from __future__ import annotations

import hashlib
from typing import Any, Iterable, List, Optional, Sequence, TypeVar

FALLBACK_PREFIX = "fallback"
BODY_HASH_LENGTH = 10

T = TypeVar("T")

_KEY_FIELDS = (
    "provider_message_id",
    "providerMessageId",
    "client_request_id",
    "clientRequestId",
    "id",
)


def body_hash(body: Optional[str]) -> str:
    return hashlib.sha1((body or "").encode("utf-8")).hexdigest()[:BODY_HASH_LENGTH]


def compute_provider_id(
    wa_message_id: Optional[str],
    remote_jid: str,
    timestamp: str,
    body: Optional[str],
    from_me: bool,
) -> str:
    """Network id when present, otherwise a deterministic fallback."""
    if wa_message_id:
        return wa_message_id
    return ":".join(
        [
            FALLBACK_PREFIX,
            remote_jid,
            timestamp,
            body_hash(body),
            "1" if from_me else "0",
        ]
    )


def is_fallback_id(provider_message_id: Optional[str]) -> bool:
    return bool(provider_message_id) and provider_message_id.startswith(
        f"{FALLBACK_PREFIX}:"
    )


def message_keys(msg: Any) -> List[str]:
    """All identity keys of a message (ORM row, pydantic model or dict)."""
    keys: List[str] = []
    for field in _KEY_FIELDS:
        if isinstance(msg, dict):
            value = msg.get(field)
        else:
            value = getattr(msg, field, None)
        if value:
            keys.append(str(value))
    return keys


def dedupe_messages(messages: Optional[Iterable[T]]) -> List[T]:
    """Drop later entries that share a key with an earlier one; order is preserved."""
    seen: set[str] = set()
    result: List[T] = []
    for msg in messages or []:
        keys = message_keys(msg)
        if any(k in seen for k in keys):
            continue
        seen.update(keys)
        result.append(msg)
    return result


def upsert_message(messages: Optional[Sequence[T]], incoming: T) -> List[T]:
    """Replace every entry sharing a key with ``incoming`` (or append), then dedupe."""
    incoming_keys = set(message_keys(incoming))
    replaced = False
    merged: List[T] = []
    for msg in messages or []:
        if incoming_keys.intersection(message_keys(msg)):
            replaced = True
            merged.append(incoming)
        else:
            merged.append(msg)
    if not replaced:
        merged.append(incoming)
    return dedupe_messages(merged)
