"""Canonical chat resolution: one chat per contact per session."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session as DBSession

from app.core.jid import (
    JidKind,
    classify_jid,
    extract_jid_number,
    is_group_jid,
    is_phone_jid,
)
from app.exceptions import InvalidIdentifier, MergeFailed
from app.models.chat import (
    CHAT_STATUS_INBOX,
    CHAT_TYPE_GROUP,
    CHAT_TYPE_INDIVIDUAL,
    MODE_AI,
    Chat,
)
from app.models.jid_mapping import MAPPING_SOURCE_HINT
from app.services.chat_merge_service import ChatMergeService
from app.services.chat_service import ChatService
from app.services.jid_mapping_service import JidMappingService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChatHints:
    name: Optional[str] = None
    is_group: bool = False
    last_message: Optional[str] = None


@dataclass(frozen=True)
class ResolvedChat:
    chat: Chat
    created: bool


class ChatResolver:
    """
    Finds or creates the single chat for an identifier.

    Lookup order, first match wins:

    1. exact ``remote_id`` match (backfilling ``phone_jid`` from the hint)
    2. ``phone_jid`` match on the hint, relinked to the requested identifier
    3. a new chat

    After the call no other chat in the session carries the same or an
    equivalent identifier. ``InvalidIdentifier`` and ``MergeFailed`` propagate;
    the triggering event is expected to be redelivered.
    """

    def __init__(self, db: DBSession) -> None:
        self.db = db
        self.chats = ChatService(db)
        self.merges = ChatMergeService(db)
        self.mappings = JidMappingService(db)

    def resolve_chat(
        self,
        session_id: UUID,
        raw_identifier: str,
        known_phone_identifier: Optional[str] = None,
        hints: Optional[ChatHints] = None,
    ) -> ResolvedChat:
        hints = hints or ChatHints()

        if hints.is_group or is_group_jid(str(raw_identifier or "").strip()):
            return self._resolve_group(session_id, str(raw_identifier).strip(), hints)

        target = classify_jid(raw_identifier)
        phone = self._phone_hint(known_phone_identifier)

        existing = self.chats.get_by_remote_id(session_id, target.jid)
        if existing is not None:
            if phone and not existing.phone_jid:
                logger.info("Backfilling phone_jid=%s on chat %s", phone, existing.id)
                existing = self.chats.update_chat(existing, phone_jid=phone)
            return ResolvedChat(existing, False)

        if phone:
            by_phone = self.chats.get_by_phone_jid(session_id, phone)
            if by_phone is not None:
                if by_phone.remote_id != target.jid:
                    logger.info(
                        "Relinking chat %s remote_id %s -> %s",
                        by_phone.id,
                        by_phone.remote_id,
                        target.jid,
                    )
                    by_phone = self.merges.safe_relink(session_id, by_phone.id, target.jid)
                    if target.kind is JidKind.LID:
                        self.mappings.record(
                            session_id, target.jid, phone, source=MAPPING_SOURCE_HINT
                        )
                return ResolvedChat(by_phone, False)

        if phone is None and target.is_phone:
            phone = target.jid

        try:
            chat = self.chats.create_chat(
                session_id=session_id,
                remote_id=target.jid,
                phone_jid=phone,
                name=hints.name or extract_jid_number(target.jid),
                type=CHAT_TYPE_INDIVIDUAL,
                is_group=False,
                status=CHAT_STATUS_INBOX,
                mode=MODE_AI,
                last_message=hints.last_message,
            )
        except IntegrityError as exc:
            self.db.rollback()
            logger.info("Chat create raced for %s, re-reading winner", target.jid)
            winner = self.chats.get_by_remote_id(session_id, target.jid)
            if winner is None and phone:
                winner = self.chats.get_by_phone_jid(session_id, phone)
            if winner is None:
                raise MergeFailed(
                    session_id, None, target.jid, "create raced but no winner found"
                ) from exc
            return ResolvedChat(winner, False)

        if target.kind is JidKind.LID and phone:
            self.mappings.record(session_id, target.jid, phone, source=MAPPING_SOURCE_HINT)
        logger.info("Created chat %s for %s", chat.id, target.jid)
        return ResolvedChat(chat, True)

    def _phone_hint(self, known_phone_identifier: Optional[str]) -> Optional[str]:
        if not known_phone_identifier:
            return None
        try:
            hint = classify_jid(known_phone_identifier).jid
        except InvalidIdentifier:
            logger.warning("Ignoring malformed phone hint %r", known_phone_identifier)
            return None
        if not is_phone_jid(hint):
            logger.warning("Ignoring non-phone phone hint %s", known_phone_identifier)
            return None
        return hint

    def _resolve_group(self, session_id: UUID, group_jid: str, hints: ChatHints) -> ResolvedChat:
        existing = self.chats.get_by_remote_id(session_id, group_jid)
        if existing is not None:
            return ResolvedChat(existing, False)
        try:
            chat = self.chats.create_chat(
                session_id=session_id,
                remote_id=group_jid,
                name=hints.name or extract_jid_number(group_jid),
                type=CHAT_TYPE_GROUP,
                is_group=True,
                status=CHAT_STATUS_INBOX,
                mode=MODE_AI,
                last_message=hints.last_message,
            )
        except IntegrityError:
            self.db.rollback()
            winner = self.chats.get_by_remote_id(session_id, group_jid)
            if winner is None:
                raise
            return ResolvedChat(winner, False)
        return ResolvedChat(chat, True)
