"""
Webhook routes for the WhatsApp gateway.

The gateway POSTs message upserts, history sync batches and delivery receipts
here, one delivery per request. Deliveries for a session are processed in
arrival order on that session's inbox; the route only validates and enqueues.
"""

from __future__ import annotations

import functools
import logging
from typing import Any
from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import ValidationError
from sqlalchemy.orm import Session

from app.adapters.whatsapp_gateway import (
    WhatsAppGatewayAdapter,
    events_from_payload,
    receipts_from_payload,
    verify_api_key_header,
)
from app.commands.inbound import HandleInboundMessageCommand
from app.commands.inbound.handle_inbound_command import run_inbound_batch
from app.config import get_settings
from app.core.app_state import state
from app.db import get_db
from app.models.whatsapp_session import WhatsAppSession
from app.routers.utils.dependencies import get_session_by_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

HISTORY_PAYLOAD_TYPES = ("history",)


@router.post("/whatsapp/{session_id}")
async def whatsapp_webhook(
    request: Request,
    session: WhatsAppSession = Depends(get_session_by_id),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    """
    Receive one gateway delivery for a session.
    Validate X-API-Key if GATEWAY_API_KEY is set.
    """
    settings = get_settings()
    headers = dict(request.headers) if request.headers else {}
    if not verify_api_key_header(settings.gateway_api_key, headers):
        raise HTTPException(status_code=403, detail="Invalid gateway api key")
    try:
        body = await request.json()
    except Exception as e:
        logger.warning("WhatsApp webhook invalid JSON: %s", e)
        raise HTTPException(status_code=400, detail="Invalid JSON body") from e
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Body must be a JSON object")
    try:
        payload = WhatsAppGatewayAdapter.parse_payload(body)
    except ValidationError as e:
        logger.warning("WhatsApp webhook parse error: %s", e)
        raise HTTPException(status_code=400, detail="Invalid gateway payload") from e

    events = events_from_payload(payload)
    receipts = receipts_from_payload(payload)
    history = payload.type in HISTORY_PAYLOAD_TYPES

    if not state.inline_inbound:
        inbox = await state.registry.get_inbox(session.id)
        await inbox.submit(
            functools.partial(run_inbound_batch, session.id, events, receipts, history)
        )
        return {"status": "queued", "events": len(events), "receipts": len(receipts)}

    command = HandleInboundMessageCommand(
        db,
        transport=state.registry.get_transport(session.id),
        reply_generator=state.reply_generator,
    )
    result = await command.process_batch(session.id, events, receipts, history=history)
    if result.retry:
        # Processed events are deduped when the gateway redelivers the whole body
        raise HTTPException(
            status_code=409,
            detail=f"{len(result.retry)} events could not be resolved, redeliver",
        )

    response: dict[str, Any] = {
        "status": "processed",
        "outcomes": [
            {
                "status": o.status.value,
                "provider_message_id": o.provider_message_id,
                "message_id": str(o.message_id) if o.message_id else None,
                "chat_id": str(o.chat_id) if o.chat_id else None,
                "handoff": o.handoff.value if o.handoff else None,
            }
            for o in result.outcomes
        ],
        "receipts_applied": result.receipts_applied,
    }
    if result.history is not None:
        response["history"] = {
            "inserted": result.history.inserted,
            "duplicates": result.history.duplicates,
            "skipped": result.history.skipped,
        }
    return response
