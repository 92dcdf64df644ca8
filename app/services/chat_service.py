"""Chat CRUD and the lookups the resolver and merge engine build on."""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional
from uuid import UUID

from sqlalchemy.orm import Session as DBSession

from app.models.chat import CHAT_TYPE_INDIVIDUAL, Chat
from app.models.mixins import utcnow


class ChatService:
    def __init__(self, db: DBSession) -> None:
        self.db = db

    def get_chat(self, chat_id: UUID) -> Optional[Chat]:
        return self.db.query(Chat).filter(Chat.id == chat_id).first()

    def get_chat_in_session(self, session_id: UUID, chat_id: UUID) -> Optional[Chat]:
        return (
            self.db.query(Chat)
            .filter(Chat.session_id == session_id, Chat.id == chat_id)
            .first()
        )

    def get_by_remote_id(
        self,
        session_id: UUID,
        remote_id: str,
        exclude_id: Optional[UUID] = None,
    ) -> Optional[Chat]:
        query = self.db.query(Chat).filter(
            Chat.session_id == session_id, Chat.remote_id == remote_id
        )
        if exclude_id is not None:
            query = query.filter(Chat.id != exclude_id)
        return query.first()

    def get_by_phone_jid(
        self,
        session_id: UUID,
        phone_jid: str,
        exclude_id: Optional[UUID] = None,
    ) -> Optional[Chat]:
        query = self.db.query(Chat).filter(
            Chat.session_id == session_id, Chat.phone_jid == phone_jid
        )
        if exclude_id is not None:
            query = query.filter(Chat.id != exclude_id)
        return query.order_by(Chat.created_at).first()

    def list_individual_chats(self, session_id: UUID) -> List[Chat]:
        return (
            self.db.query(Chat)
            .filter(Chat.session_id == session_id, Chat.type == CHAT_TYPE_INDIVIDUAL)
            .order_by(Chat.created_at.asc())
            .all()
        )

    def create_chat(self, **data: Any) -> Chat:
        """Insert a chat. IntegrityError (session_id, remote_id) propagates to the caller."""
        chat = Chat(**data)
        self.db.add(chat)
        self.db.commit()
        self.db.refresh(chat)
        return chat

    def update_chat(self, chat: Chat, **fields: Any) -> Chat:
        for key, value in fields.items():
            setattr(chat, key, value)
        chat.updated_at = utcnow()
        self.db.commit()
        self.db.refresh(chat)
        return chat

    def set_remote_id(self, session_id: UUID, chat_id: UUID, remote_id: str) -> int:
        """Single-row UPDATE; IntegrityError propagates so callers can treat it as a race."""
        updated = (
            self.db.query(Chat)
            .filter(Chat.id == chat_id, Chat.session_id == session_id)
            .update(
                {Chat.remote_id: remote_id, Chat.updated_at: utcnow()},
                synchronize_session=False,
            )
        )
        self.db.commit()
        return updated

    def delete_chat(self, session_id: UUID, chat_id: UUID) -> bool:
        deleted = (
            self.db.query(Chat)
            .filter(Chat.id == chat_id, Chat.session_id == session_id)
            .delete(synchronize_session=False)
        )
        self.db.commit()
        return deleted > 0

    def record_message(
        self,
        chat_id: UUID,
        body: Optional[str],
        at: datetime,
        increment_unread: bool,
    ) -> None:
        """Update last-message bookkeeping; the unread counter is incremented in SQL."""
        values: dict[Any, Any] = {
            Chat.last_message: body,
            Chat.last_message_at: at,
            Chat.updated_at: utcnow(),
        }
        if increment_unread:
            values[Chat.unread_count] = Chat.unread_count + 1
        self.db.query(Chat).filter(Chat.id == chat_id).update(
            values, synchronize_session=False
        )
        self.db.commit()
