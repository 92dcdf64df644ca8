"""WhatsApp session lookups used by the registry and the API."""

from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from sqlalchemy.orm import Session as DBSession

from app.models.whatsapp_session import WhatsAppSession


class SessionService:
    def __init__(self, db: DBSession) -> None:
        self.db = db

    def get_session(self, session_id: UUID) -> Optional[WhatsAppSession]:
        return (
            self.db.query(WhatsAppSession)
            .filter(WhatsAppSession.id == session_id)
            .first()
        )

    def list_active_sessions(self) -> List[WhatsAppSession]:
        """Sessions the worker should hold a transport for."""
        return (
            self.db.query(WhatsAppSession)
            .filter(WhatsAppSession.should_disconnect.is_(False))
            .all()
        )

    def list_disconnecting_sessions(self) -> List[WhatsAppSession]:
        return (
            self.db.query(WhatsAppSession)
            .filter(WhatsAppSession.should_disconnect.is_(True))
            .all()
        )
