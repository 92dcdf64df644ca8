"""
Command for an operator-initiated send.

Stores the message as pending and returns immediately; the outbound poller
delivers it and the network echo later reconciles the row.
"""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from app.core.jid import classify_jid, is_group_jid
from app.exceptions import SessionNotFound
from app.models.message import SENDER_AGENT, STATUS_PENDING
from app.models.mixins import utcnow
from app.schemas.chat import SendMessageRequest, SendMessageResponse
from app.services.chat_resolver import ChatResolver
from app.services.chat_service import ChatService
from app.services.message_service import MessageService
from app.services.session_service import SessionService

logger = logging.getLogger(__name__)


class SendMessageCommand:
    """
    Resolve (or create) the chat for the recipient and insert a pending message.
    """

    def __init__(self, db: Session) -> None:
        self.db = db
        self.sessions = SessionService(db)
        self.chats = ChatService(db)
        self.messages = MessageService(db)
        self.resolver = ChatResolver(db)

    def execute(self, body: SendMessageRequest) -> SendMessageResponse:
        """
        Raises:
            SessionNotFound: unknown session id.
            InvalidIdentifier: ``to`` is not a usable phone number or JID.
            MergeFailed: chat resolution lost its race twice.
        """
        if self.sessions.get_session(body.session_id) is None:
            raise SessionNotFound(f"Session {body.session_id} not found")

        recipient = body.to.strip()
        phone_hint = None
        if not is_group_jid(recipient):
            target = classify_jid(recipient)
            recipient = target.jid
            # A phone target also matches a chat that was relinked to its LID
            phone_hint = target.jid if target.is_phone else None
        resolved = self.resolver.resolve_chat(body.session_id, recipient, phone_hint)
        chat = resolved.chat
        if body.assigned_to:
            chat = self.chats.update_chat(chat, assigned_to=body.assigned_to)

        now = utcnow()
        msg = self.messages.create_message(
            chat_id=chat.id,
            session_id=body.session_id,
            remote_id=chat.remote_id,
            sender=SENDER_AGENT,
            body=body.text,
            timestamp=now,
            created_at=now,
            is_from_us=True,
            status=STATUS_PENDING,
            client_request_id=body.client_request_id,
        )
        self.chats.record_message(chat.id, body.text, now, increment_unread=False)
        logger.info(
            "Queued outbound message=%s chat=%s remote=%s new_chat=%s",
            msg.id,
            chat.id,
            chat.remote_id,
            resolved.created,
        )
        return SendMessageResponse(chat_id=chat.id, message_id=msg.id)
