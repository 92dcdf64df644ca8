"""
Duplicate chat audit API.

Finds chats that address the same contact once by phone JID and once by LID
and merges them onto one canonical chat.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.db import get_db
from app.models.whatsapp_session import WhatsAppSession
from app.routers.utils.dependencies import get_session_by_id
from app.schemas.audit import AuditReport, DuplicateAnalysis, MergeExecution
from app.services.duplicate_auditor import DuplicateChatAuditor

router = APIRouter(
    prefix="/sessions",
    tags=["duplicates"],
    responses={404: {"description": "Not found"}},
)


@router.get("/{session_id}/duplicates", response_model=DuplicateAnalysis)
def analyze_duplicates(
    session: WhatsAppSession = Depends(get_session_by_id),
    db: Session = Depends(get_db),
) -> DuplicateAnalysis:
    """Classify every individual chat of the session as phone or LID addressed."""
    return DuplicateChatAuditor(db).analyze(session.id)


@router.post("/{session_id}/duplicates/audit", response_model=AuditReport)
def audit_duplicates(
    session: WhatsAppSession = Depends(get_session_by_id),
    db: Session = Depends(get_db),
) -> AuditReport:
    """Dry run: list merge candidates without changing anything."""
    return DuplicateChatAuditor(db).audit(session.id)


@router.post("/{session_id}/duplicates/merge", response_model=MergeExecution)
def merge_duplicates(
    session: WhatsAppSession = Depends(get_session_by_id),
    db: Session = Depends(get_db),
) -> MergeExecution:
    """Merge every candidate pair; failures are reported per pair."""
    return DuplicateChatAuditor(db).execute(session.id)
