"""
WhatsApp identifier (JID) normalization.

The network addresses one contact either by phone JID
(``201234567890@s.whatsapp.net``) or by a private LID (``146784835875021@lid``),
and sometimes reuses the phone domain for LID digits. The only discriminator
available on the phone domain is the digit count.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from app.exceptions import InvalidIdentifier

PHONE_DOMAIN = "s.whatsapp.net"
LID_DOMAIN = "lid"
GROUP_DOMAIN = "g.us"
STATUS_BROADCAST_JID = "status@broadcast"

PHONE_MIN_DIGITS = 10
PHONE_MAX_DIGITS = 15
JID_MIN_DIGITS = 6

_NON_DIGITS = re.compile(r"\D")
_PHONE_DOMAIN_JID = re.compile(r"^(\d+)@s\.whatsapp\.net$")


class JidKind(str, Enum):
    PHONE = "phone"
    LID = "lid"


@dataclass(frozen=True)
class NormalizedJid:
    jid: str
    kind: JidKind

    @property
    def digits(self) -> str:
        return extract_jid_number(self.jid)

    @property
    def is_phone(self) -> bool:
        return self.kind is JidKind.PHONE


def _digits(value: str) -> str:
    return _NON_DIGITS.sub("", value)


def _kind_for_phone_domain(digits: str) -> JidKind:
    if PHONE_MIN_DIGITS <= len(digits) <= PHONE_MAX_DIGITS:
        return JidKind.PHONE
    return JidKind.LID


def classify_jid(raw: Any) -> NormalizedJid:
    """Normalize ``raw`` and tag it as phone or LID. Raises InvalidIdentifier."""
    if raw is None:
        raise InvalidIdentifier(raw, "identifier is required")
    trimmed = str(raw).strip()
    if not trimmed:
        raise InvalidIdentifier(raw, "identifier is required")

    if f"@{LID_DOMAIN}" in trimmed:
        digits = _digits(trimmed.split("@")[0])
        if len(digits) < JID_MIN_DIGITS:
            raise InvalidIdentifier(raw, f"LID must have at least {JID_MIN_DIGITS} digits")
        return NormalizedJid(f"{digits}@{LID_DOMAIN}", JidKind.LID)

    if "@" in trimmed:
        digits = _digits(trimmed.split("@")[0])
        if len(digits) < JID_MIN_DIGITS:
            raise InvalidIdentifier(raw, f"JID must have at least {JID_MIN_DIGITS} digits")
        return NormalizedJid(f"{digits}@{PHONE_DOMAIN}", _kind_for_phone_domain(digits))

    digits = _digits(trimmed)
    if len(digits) < PHONE_MIN_DIGITS:
        raise InvalidIdentifier(
            raw, f"phone number must have at least {PHONE_MIN_DIGITS} digits"
        )
    return NormalizedJid(f"{digits}@{PHONE_DOMAIN}", _kind_for_phone_domain(digits))


def normalize_jid(raw: Any) -> str:
    return classify_jid(raw).jid


def is_phone_jid(jid: Optional[str]) -> bool:
    """Phone JID: 10-15 digits on the phone domain."""
    if not jid or jid.endswith(f"@{LID_DOMAIN}"):
        return False
    match = _PHONE_DOMAIN_JID.match(jid)
    if not match:
        return False
    return _kind_for_phone_domain(match.group(1)) is JidKind.PHONE


def is_lid_jid(jid: Optional[str]) -> bool:
    """Explicit @lid, or a phone-domain JID whose digit count is outside the phone range."""
    if not jid:
        return False
    if jid.endswith(f"@{LID_DOMAIN}"):
        return True
    match = _PHONE_DOMAIN_JID.match(jid)
    if not match:
        return False
    digits = match.group(1)
    return len(digits) >= JID_MIN_DIGITS and _kind_for_phone_domain(digits) is JidKind.LID


def is_group_jid(jid: Optional[str]) -> bool:
    return bool(jid) and jid.endswith(f"@{GROUP_DOMAIN}")


def is_ignored_jid(jid: Optional[str]) -> bool:
    return not jid or jid == STATUS_BROADCAST_JID


def extract_jid_number(jid: Optional[str]) -> str:
    if not jid:
        return ""
    return jid.split("@")[0]


# -----------------------------------------------------------------------------
# Presentation helpers
# -----------------------------------------------------------------------------


def format_phone_from_jid(jid: Optional[str]) -> str:
    """Human readable number for a JID; LIDs are shortened to first/last four digits."""
    digits = extract_jid_number(jid)
    if not digits:
        return ""
    if len(digits) > PHONE_MAX_DIGITS:
        return f"{digits[:4]}...{digits[-4:]}"
    if len(digits) < PHONE_MIN_DIGITS:
        return f"+{digits}"
    if digits.startswith("20") and len(digits) == 12:
        return f"+{digits[:2]} {digits[2:5]} {digits[5:8]} {digits[8:]}"
    if digits.startswith("966") and len(digits) == 12:
        return f"+{digits[:3]} {digits[3:5]} {digits[5:8]} {digits[8:]}"
    return f"+{digits[:3]} {digits[3:6]} {digits[6:9]} {digits[9:]}"


def _field(chat: Any, name: str) -> Optional[str]:
    if chat is None:
        return None
    if isinstance(chat, dict):
        return chat.get(name)
    return getattr(chat, name, None)


def display_jid(chat: Any) -> Optional[str]:
    """Digits to show for a chat, preferring the sticky phone JID over a LID remote_id."""
    phone_jid = _field(chat, "phone_jid")
    remote_id = _field(chat, "remote_id")
    if phone_jid and is_phone_jid(phone_jid):
        return extract_jid_number(phone_jid)
    if remote_id:
        return extract_jid_number(remote_id)
    return None


def display_name(chat: Any) -> str:
    phone_jid = _field(chat, "phone_jid")
    if phone_jid and is_phone_jid(phone_jid):
        return format_phone_from_jid(phone_jid)
    name = (_field(chat, "name") or "").strip()
    if name:
        return name
    return display_jid(chat) or "Unknown number"


def needs_mapping(chat: Any) -> bool:
    """True when the chat is addressed by a LID and no phone JID is known yet."""
    if chat is None:
        return True
    phone_jid = _field(chat, "phone_jid")
    return not is_phone_jid(phone_jid) and is_lid_jid(_field(chat, "remote_id") or "")
