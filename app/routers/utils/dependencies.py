from uuid import UUID

from fastapi import Depends, HTTPException
from sqlalchemy.orm import Session

from app.db import get_db
from app.models.whatsapp_session import WhatsAppSession
from app.services.session_service import SessionService


def get_session_by_id(
    session_id: UUID,
    db: Session = Depends(get_db),
) -> WhatsAppSession:
    """FastAPI dependency to get a WhatsApp session by ID."""
    session = SessionService(db).get_session(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return session
