"""
Chat merge engine.

Merges never take a lock. A merge is two committed steps (move messages,
delete the duplicate); a crash between them leaves an empty duplicate row,
which the next merge or audit removes. Re-running any operation here on the
same input converges to the same end state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session as DBSession

from app.core.jid import classify_jid, extract_jid_number, is_phone_jid
from app.exceptions import InvalidIdentifier, MergeFailed
from app.models.chat import (
    CHAT_STATUS_INBOX,
    CHAT_TYPE_INDIVIDUAL,
    MODE_AI,
    Chat,
)
from app.models.jid_mapping import MAPPING_SOURCE_ECHO
from app.services.chat_service import ChatService
from app.services.jid_mapping_service import JidMappingService
from app.services.message_service import MessageService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MergeResult:
    primary_id: UUID
    duplicate_id: UUID
    moved_messages: int


def _as_aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class ChatMergeService:
    def __init__(self, db: DBSession) -> None:
        self.db = db
        self.chats = ChatService(db)
        self.messages = MessageService(db)
        self.mappings = JidMappingService(db)

    def merge_chats(
        self, session_id: UUID, primary_id: UUID, duplicate_id: UUID
    ) -> MergeResult:
        """Move all messages of duplicate_id onto primary_id, then delete duplicate_id."""
        if primary_id == duplicate_id:
            return MergeResult(primary_id, duplicate_id, 0)

        logger.info(
            "Merging chats session=%s primary=%s duplicate=%s",
            session_id,
            primary_id,
            duplicate_id,
        )
        duplicate = self.chats.get_chat_in_session(session_id, duplicate_id)
        primary = self.chats.get_chat_in_session(session_id, primary_id)

        moved = self.messages.reassign_chat(duplicate_id, primary_id)

        if primary is not None and duplicate is not None:
            self._fold_into_primary(primary, duplicate)

        self.chats.delete_chat(session_id, duplicate_id)
        logger.info(
            "Merged chats session=%s primary=%s duplicate=%s moved_messages=%d",
            session_id,
            primary_id,
            duplicate_id,
            moved,
        )
        return MergeResult(primary_id, duplicate_id, moved)

    def safe_relink(self, session_id: UUID, chat_id: UUID, new_remote_id: str) -> Chat:
        """
        Point chat_id at new_remote_id, merging whichever chat already owns it.

        A unique violation on the final update means a third writer claimed the
        identifier in between; the lookup and merge are retried once.
        """
        other = self.chats.get_by_remote_id(session_id, new_remote_id, exclude_id=chat_id)
        if other is not None:
            self.merge_chats(session_id, chat_id, other.id)

        try:
            self.chats.set_remote_id(session_id, chat_id, new_remote_id)
        except IntegrityError as first_error:
            self.db.rollback()
            logger.warning(
                "Relink race session=%s chat=%s remote_id=%s, retrying",
                session_id,
                chat_id,
                new_remote_id,
            )
            race_other = self.chats.get_by_remote_id(
                session_id, new_remote_id, exclude_id=chat_id
            )
            if race_other is None:
                raise MergeFailed(
                    session_id, chat_id, new_remote_id, str(first_error.orig)
                ) from first_error
            self.merge_chats(session_id, chat_id, race_other.id)
            try:
                self.chats.set_remote_id(session_id, chat_id, new_remote_id)
            except IntegrityError as retry_error:
                self.db.rollback()
                raise MergeFailed(
                    session_id, chat_id, new_remote_id, "retry lost the race again"
                ) from retry_error

        chat = self.chats.get_chat_in_session(session_id, chat_id)
        if chat is None:
            raise MergeFailed(session_id, chat_id, new_remote_id, "chat disappeared")
        return chat

    def link_identifiers(
        self,
        session_id: UUID,
        lid_jid: str,
        phone_jid: str,
        source: str = MAPPING_SOURCE_ECHO,
    ) -> Chat:
        """
        Cross-link a LID and a phone JID known to be the same contact.

        The phone chat survives. It absorbs the LID chat and takes the LID as
        its remote_id (the network addresses the contact by LID from now on)
        while phone_jid keeps the phone number.
        """
        lid = classify_jid(lid_jid).jid
        phone = classify_jid(phone_jid).jid
        if not is_phone_jid(phone):
            raise InvalidIdentifier(phone_jid, "not a phone JID")

        lid_chat = self.chats.get_by_remote_id(session_id, lid)
        lid_chat_id = lid_chat.id if lid_chat is not None else None
        phone_chat = self.chats.get_by_phone_jid(
            session_id, phone, exclude_id=lid_chat_id
        ) or self.chats.get_by_remote_id(session_id, phone)

        if phone_chat is not None and lid_chat is not None:
            self.merge_chats(session_id, phone_chat.id, lid_chat.id)
            chat = self._ensure_phone_jid(phone_chat, phone)
            if chat.remote_id != lid:
                chat = self.safe_relink(session_id, chat.id, lid)
            logger.info(
                "Linked LID %s to phone %s by merging chat %s into %s",
                lid,
                phone,
                lid_chat.id,
                chat.id,
            )
        elif phone_chat is not None:
            chat = self._ensure_phone_jid(phone_chat, phone)
            if chat.remote_id != lid:
                chat = self.safe_relink(session_id, chat.id, lid)
            logger.info("Linked LID %s to phone chat %s", lid, chat.id)
        elif lid_chat is not None:
            chat = lid_chat
            if not chat.phone_jid:
                chat = self.chats.update_chat(chat, phone_jid=phone)
            logger.info("Backfilled phone %s on LID chat %s", phone, chat.id)
        else:
            chat = self._create_linked_chat(session_id, lid, phone, source)
            logger.info("Created chat %s for LID %s / phone %s", chat.id, lid, phone)

        self.mappings.record(session_id, lid, phone, source=source)
        return chat

    def _create_linked_chat(
        self, session_id: UUID, lid: str, phone: str, source: str
    ) -> Chat:
        try:
            return self.chats.create_chat(
                session_id=session_id,
                remote_id=lid,
                phone_jid=phone,
                name=extract_jid_number(phone),
                type=CHAT_TYPE_INDIVIDUAL,
                is_group=False,
                status=CHAT_STATUS_INBOX,
                mode=MODE_AI,
            )
        except IntegrityError:
            self.db.rollback()
            # Someone created the LID chat meanwhile; link against it instead
            return self.link_identifiers(session_id, lid, phone, source=source)

    def _ensure_phone_jid(self, chat: Chat, phone: str) -> Chat:
        if chat.phone_jid:
            return chat
        return self.chats.update_chat(chat, phone_jid=phone)

    def _fold_into_primary(self, primary: Chat, duplicate: Chat) -> None:
        fields: dict = {}
        if duplicate.unread_count:
            fields["unread_count"] = (primary.unread_count or 0) + duplicate.unread_count
        dup_at = _as_aware(duplicate.last_message_at)
        primary_at = _as_aware(primary.last_message_at)
        if duplicate.last_message and (primary_at is None or (dup_at and dup_at > primary_at)):
            fields["last_message"] = duplicate.last_message
            fields["last_message_at"] = duplicate.last_message_at
        if not primary.phone_jid and is_phone_jid(duplicate.phone_jid):
            fields["phone_jid"] = duplicate.phone_jid
        if not primary.name and duplicate.name:
            fields["name"] = duplicate.name
        if duplicate.needs_human and not primary.needs_human:
            fields["needs_human"] = True
            fields["mode"] = duplicate.mode
        if primary.bot_id is None and duplicate.bot_id is not None:
            fields["bot_id"] = duplicate.bot_id
        if fields:
            self.chats.update_chat(primary, **fields)
