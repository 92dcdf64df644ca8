"""
Messages API: operator-initiated sends.

The message is stored as pending and delivered by the outbound poller; the
response returns as soon as the row exists.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.commands.outbound.send_message_command import SendMessageCommand
from app.db import get_db
from app.exceptions import InvalidIdentifier, MergeFailed, SessionNotFound
from app.schemas.chat import SendMessageRequest, SendMessageResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/messages", tags=["messages"])


@router.post("/send", response_model=SendMessageResponse, status_code=202)
def send_message(
    body: SendMessageRequest,
    db: Session = Depends(get_db),
) -> SendMessageResponse:
    """Queue a text message to a phone number or JID."""
    try:
        return SendMessageCommand(db).execute(body)
    except SessionNotFound as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except InvalidIdentifier as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except MergeFailed as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
