"""Message CRUD, dedup lookups and the echo reconciliation window query."""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional, Sequence
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Query, Session as DBSession

from app.models.message import (
    STATUS_DELIVERED,
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_READ,
    STATUS_SENT,
    Message,
)

# Forward-only order for delivery receipts
_STATUS_RANK = {
    STATUS_PENDING: 0,
    STATUS_SENT: 1,
    STATUS_DELIVERED: 2,
    STATUS_READ: 3,
}


class MessageService:
    def __init__(self, db: DBSession) -> None:
        self.db = db

    def get_message(self, message_id: UUID) -> Optional[Message]:
        return self.db.query(Message).filter(Message.id == message_id).first()

    def get_by_provider_id(
        self, session_id: UUID, provider_message_id: str
    ) -> Optional[Message]:
        return (
            self.db.query(Message)
            .filter(
                Message.session_id == session_id,
                Message.provider_message_id == provider_message_id,
            )
            .first()
        )

    def create_message(self, **data: Any) -> Message:
        """Insert a message. IntegrityError on provider id propagates to the caller."""
        msg = Message(**data)
        self.db.add(msg)
        self.db.commit()
        self.db.refresh(msg)
        return msg

    def find_echo_candidate(
        self,
        session_id: UUID,
        body: str,
        window_start: datetime,
    ) -> Optional[Message]:
        """Most recent unreconciled outbound row with the same body created since window_start."""
        return (
            self.db.query(Message)
            .filter(
                Message.session_id == session_id,
                Message.is_from_us.is_(True),
                Message.provider_message_id.is_(None),
                Message.status.in_([STATUS_PENDING, STATUS_SENT]),
                Message.body == body,
                Message.created_at >= window_start,
            )
            .order_by(Message.created_at.desc())
            .first()
        )

    def find_by_client_request_id(
        self, session_id: UUID, client_request_id: str
    ) -> Optional[Message]:
        return (
            self.db.query(Message)
            .filter(
                Message.session_id == session_id,
                Message.client_request_id == client_request_id,
                Message.provider_message_id.is_(None),
            )
            .first()
        )

    def attach_provider_id(
        self,
        msg: Message,
        provider_message_id: str,
        remote_id: str,
        timestamp: datetime,
    ) -> Message:
        msg.provider_message_id = provider_message_id
        msg.status = STATUS_SENT
        msg.remote_id = remote_id
        msg.timestamp = timestamp
        self.db.commit()
        self.db.refresh(msg)
        return msg

    def reassign_chat(self, from_chat_id: UUID, to_chat_id: UUID) -> int:
        """Point every message of from_chat_id at to_chat_id. Idempotent."""
        moved = (
            self.db.query(Message)
            .filter(Message.chat_id == from_chat_id)
            .update({Message.chat_id: to_chat_id}, synchronize_session=False)
        )
        self.db.commit()
        return moved

    def get_message_count(self, chat_id: UUID) -> int:
        return self.db.query(Message).filter(Message.chat_id == chat_id).count()

    def get_messages_query(self, chat_id: UUID) -> Query[Message]:
        return (
            self.db.query(Message)
            .filter(Message.chat_id == chat_id)
            .order_by(Message.created_at.asc())
        )

    def get_messages(
        self, chat_id: UUID, limit: int = 100, offset: int = 0
    ) -> List[Message]:
        return self.get_messages_query(chat_id).offset(offset).limit(limit).all()

    def get_recent_messages(self, chat_id: UUID, limit: int) -> List[Message]:
        """Last ``limit`` messages of a chat in chronological order."""
        rows = (
            self.db.query(Message)
            .filter(Message.chat_id == chat_id)
            .order_by(Message.created_at.desc())
            .limit(limit)
            .all()
        )
        rows.reverse()
        return rows

    def list_pending(
        self, limit: int, session_ids: Optional[Sequence[UUID]] = None
    ) -> List[Message]:
        """Oldest pending outbound rows, optionally only for the given sessions."""
        query = self.db.query(Message).filter(Message.status == STATUS_PENDING)
        if session_ids is not None:
            query = query.filter(Message.session_id.in_(list(session_ids)))
        return query.order_by(Message.created_at.asc()).limit(limit).all()

    def mark_sent(
        self, message_id: UUID, provider_message_id: Optional[str] = None
    ) -> bool:
        """
        pending -> sent. A row already reconciled by its echo is left alone.

        The network id returned by the send is attached when the row has none
        yet, so the later echo is caught by provider id dedup.
        """
        if provider_message_id:
            try:
                updated = (
                    self.db.query(Message)
                    .filter(
                        Message.id == message_id,
                        Message.status == STATUS_PENDING,
                        Message.provider_message_id.is_(None),
                    )
                    .update(
                        {
                            Message.status: STATUS_SENT,
                            Message.provider_message_id: provider_message_id,
                        },
                        synchronize_session=False,
                    )
                )
                self.db.commit()
            except IntegrityError:
                # The echo was already stored as its own row
                self.db.rollback()
                updated = 0
            if updated:
                return True
        return self._transition(message_id, STATUS_PENDING, STATUS_SENT)

    def mark_failed(self, message_id: UUID) -> bool:
        return self._transition(message_id, STATUS_PENDING, STATUS_FAILED)

    def advance_status(self, msg: Message, status: str) -> Message:
        """Apply a delivery receipt; never moves backwards and never leaves failed."""
        current = _STATUS_RANK.get(msg.status)
        target = _STATUS_RANK.get(status)
        if current is None or target is None or target <= current:
            return msg
        msg.status = status
        self.db.commit()
        self.db.refresh(msg)
        return msg

    def _transition(self, message_id: UUID, from_status: str, to_status: str) -> bool:
        updated = (
            self.db.query(Message)
            .filter(Message.id == message_id, Message.status == from_status)
            .update({Message.status: to_status}, synchronize_session=False)
        )
        self.db.commit()
        return updated > 0
