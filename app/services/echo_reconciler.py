"""
Outbound delivery reconciliation.

An optimistic send is stored as a pending row without a provider id. When the
network echoes the message back to us (``from_me``), the echo is matched to
that row instead of being inserted a second time.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session as DBSession

from app.config import Settings, get_settings
from app.core.jid import is_lid_jid, is_phone_jid
from app.exceptions import DuplicateSuppressed, MergeFailed
from app.models.jid_mapping import MAPPING_SOURCE_ECHO
from app.models.message import Message
from app.schemas.bridge import InboundEvent
from app.services.chat_merge_service import ChatMergeService
from app.services.chat_service import ChatService
from app.services.message_service import MessageService

logger = logging.getLogger(__name__)


class EchoReconciler:
    def __init__(self, db: DBSession, settings: Optional[Settings] = None) -> None:
        self.db = db
        self.settings = settings or get_settings()
        self.messages = MessageService(db)
        self.chats = ChatService(db)
        self.merges = ChatMergeService(db)

    def find_candidate(self, session_id: UUID, event: InboundEvent) -> Optional[Message]:
        """
        Pending row this echo belongs to, if any.

        A client_request_id carried by the echo is matched first. Otherwise the
        newest unreconciled outbound row with the same body created within the
        reconcile window before the echo timestamp wins.
        """
        if event.client_request_id:
            by_request = self.messages.find_by_client_request_id(
                session_id, event.client_request_id
            )
            if by_request is not None:
                return by_request

        window_start = event.timestamp - timedelta(
            minutes=self.settings.echo_reconcile_window_minutes
        )
        return self.messages.find_echo_candidate(session_id, event.body, window_start)

    def reconcile(
        self,
        session_id: UUID,
        event: InboundEvent,
        remote_jid: str,
        provider_message_id: str,
    ) -> Optional[Message]:
        """
        Attach the echo's provider id to its pending row.

        Returns the reconciled row, or None when there is nothing to reconcile
        and the echo should be inserted normally. Raises DuplicateSuppressed
        when a concurrent writer attached the same provider id first.
        """
        if not event.from_me:
            return None

        candidate = self.find_candidate(session_id, event)
        if candidate is None:
            return None

        try:
            msg = self.messages.attach_provider_id(
                candidate,
                provider_message_id,
                remote_id=remote_jid,
                timestamp=event.timestamp,
            )
        except IntegrityError as exc:
            self.db.rollback()
            logger.info(
                "Pending row %s already reconciled provider_message_id=%s",
                candidate.id,
                provider_message_id,
            )
            raise DuplicateSuppressed(provider_message_id) from exc

        logger.info(
            "Echo reconciled provider_message_id=%s message=%s chat=%s remote=%s",
            provider_message_id,
            msg.id,
            msg.chat_id,
            remote_jid,
        )
        self._link_from_echo(session_id, msg, remote_jid)
        return msg

    def _link_from_echo(self, session_id: UUID, msg: Message, remote_jid: str) -> None:
        if not is_lid_jid(remote_jid):
            return
        chat = self.chats.get_chat(msg.chat_id)
        if chat is None:
            return
        phone_jid = chat.phone_jid
        if not phone_jid and is_phone_jid(chat.remote_id):
            phone_jid = chat.remote_id
        if not phone_jid:
            return
        try:
            self.merges.link_identifiers(
                session_id, remote_jid, phone_jid, source=MAPPING_SOURCE_ECHO
            )
        except MergeFailed:
            # The message itself is already reconciled; the next echo or resolve retries the link
            logger.warning(
                "Could not link LID %s to phone %s after echo of message %s",
                remote_jid,
                phone_jid,
                msg.id,
                exc_info=True,
            )
            return
        logger.info(
            "Linked LID %s to phone %s via pending message %s",
            remote_jid,
            phone_jid,
            msg.id,
        )
