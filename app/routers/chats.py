"""Chats API: mode switching and message listing."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.core.jid import is_lid_jid
from app.core.message_identity import dedupe_messages
from app.db import get_db
from app.exceptions import ChatNotFound
from app.schemas.chat import ChatModeUpdate, ChatRead, MessageRead
from app.services.chat_service import ChatService
from app.services.handoff_service import HandoffService
from app.services.jid_mapping_service import JidMappingService
from app.services.message_service import MessageService

router = APIRouter(
    prefix="/chats",
    tags=["chats"],
    responses={404: {"description": "Not found"}},
)


@router.get("/{chat_id}", response_model=ChatRead)
def get_chat(
    chat_id: UUID,
    db: Session = Depends(get_db),
) -> ChatRead:
    chat = ChatService(db).get_chat(chat_id)
    if chat is None:
        raise HTTPException(status_code=404, detail="Chat not found")
    result = ChatRead.model_validate(chat)
    if is_lid_jid(chat.remote_id):
        result.mapped_phone_jid = JidMappingService(db).get_phone_for_lid(
            chat.session_id, chat.remote_id
        )
    return result


@router.post("/{chat_id}/mode", response_model=ChatRead)
def set_chat_mode(
    chat_id: UUID,
    data: ChatModeUpdate,
    db: Session = Depends(get_db),
) -> ChatRead:
    """Switch a chat between automated replies and a human operator."""
    try:
        chat = HandoffService(db).set_mode(data.session_id, chat_id, data.mode)
    except ChatNotFound as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return chat


@router.get("/{chat_id}/messages", response_model=dict)
def list_chat_messages(
    chat_id: UUID,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
) -> dict:
    """Messages of a chat, oldest first, with any duplicate rows collapsed."""
    if ChatService(db).get_chat(chat_id) is None:
        raise HTTPException(status_code=404, detail="Chat not found")
    messages = MessageService(db).get_messages(chat_id, limit=limit, offset=skip)
    items = [MessageRead.model_validate(m) for m in dedupe_messages(messages)]
    return {"items": items}
