"""
Command to persist inbound WhatsApp message events exactly once.

Events arrive at least once and in any mix of live messages, self-echoes of
our own sends, and history sync batches. Every event goes through the same
identity checks before a row is written:

1. provider id dedup (network id, or a deterministic fallback)
2. self-echo reconciliation against pending outbound rows
3. canonical chat resolution
4. insert guarded by the (session_id, provider_message_id) constraint
"""

from __future__ import annotations

import functools
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Iterable, Optional, Sequence
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.adapters.base import MessagingTransport
from app.config import Settings, get_settings
from app.core.app_state import state
from app.core.jid import is_group_jid, is_ignored_jid, is_phone_jid, normalize_jid
from app.core.message_identity import compute_provider_id
from app.db import db_manager
from app.exceptions import DuplicateSuppressed, InvalidIdentifier, MergeFailed
from app.models.chat import Chat
from app.models.message import (
    SENDER_AGENT,
    SENDER_USER,
    STATUS_DELIVERED,
    STATUS_SENT,
    Message,
)
from app.schemas.bridge import InboundEvent, ReceiptEvent
from app.services.chat_resolver import ChatHints, ChatResolver
from app.services.chat_service import ChatService
from app.services.echo_reconciler import EchoReconciler
from app.services.handoff_service import HandoffAction, HandoffService
from app.services.message_service import MessageService
from app.workers.llm import ReplyGenerator

logger = logging.getLogger(__name__)


class InboundStatus(str, Enum):
    PERSISTED = "persisted"
    RECONCILED = "reconciled"
    DUPLICATE = "duplicate"
    SKIPPED = "skipped"
    REJECTED = "rejected"


@dataclass
class InboundOutcome:
    status: InboundStatus
    provider_message_id: Optional[str] = None
    message_id: Optional[UUID] = None
    chat_id: Optional[UUID] = None
    handoff: Optional[HandoffAction] = None


@dataclass
class HistoryIngestResult:
    inserted: int = 0
    duplicates: int = 0
    skipped: int = 0
    chat_ids: set = field(default_factory=set)
    retry: list = field(default_factory=list)


@dataclass
class BatchResult:
    outcomes: list = field(default_factory=list)
    history: Optional[HistoryIngestResult] = None
    receipts_applied: int = 0
    # Events whose chat resolution lost its race; they must be processed again
    retry: list = field(default_factory=list)


class HandleInboundMessageCommand:
    """
    Command to persist inbound events for one session and trigger automated replies.
    """

    def __init__(
        self,
        db: Session,
        transport: Optional[MessagingTransport] = None,
        reply_generator: Optional[ReplyGenerator] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.db = db
        self.settings = settings or get_settings()
        self.transport = transport
        self.chats = ChatService(db)
        self.messages = MessageService(db)
        self.resolver = ChatResolver(db)
        self.reconciler = EchoReconciler(db, settings=self.settings)
        self.handoff = HandoffService(
            db, reply_generator=reply_generator, settings=self.settings
        )
        self.logger = logging.getLogger(__name__)

    async def execute(self, session_id: UUID, event: InboundEvent) -> InboundOutcome:
        """
        Persist one live event and run the mode/handoff step for customer messages.

        Raises:
            MergeFailed: chat resolution lost its race twice; process the event again.
        """
        prepared = self._prepare(session_id, event)
        if isinstance(prepared, InboundOutcome):
            return prepared
        remote_jid, provider_id = prepared

        if event.from_me:
            try:
                reconciled = self.reconciler.reconcile(
                    session_id, event, remote_jid, provider_id
                )
            except DuplicateSuppressed:
                return InboundOutcome(InboundStatus.DUPLICATE, provider_id)
            if reconciled is not None:
                return InboundOutcome(
                    InboundStatus.RECONCILED,
                    provider_id,
                    message_id=reconciled.id,
                    chat_id=reconciled.chat_id,
                )

        chat = self._resolve_chat(session_id, remote_jid, event)
        msg = self._insert(session_id, chat, remote_jid, provider_id, event)
        if msg is None:
            return InboundOutcome(InboundStatus.DUPLICATE, provider_id, chat_id=chat.id)

        self.chats.record_message(
            chat.id, event.body, event.timestamp, increment_unread=not event.from_me
        )
        self.logger.info(
            "Saved message=%s provider=%s chat=%s from_me=%s",
            msg.id,
            provider_id,
            chat.id,
            event.from_me,
        )

        outcome = InboundOutcome(
            InboundStatus.PERSISTED, provider_id, message_id=msg.id, chat_id=chat.id
        )
        if not event.from_me and not chat.is_group:
            outcome.handoff = await self._run_handoff(chat, msg)
        return outcome

    def ingest_history(
        self, session_id: UUID, events: Iterable[InboundEvent]
    ) -> HistoryIngestResult:
        """
        Persist a history sync batch. No echo reconciliation and no automated replies.

        A message with an invalid identifier is logged and skipped, and one whose
        chat resolution lost its race is deferred to ``retry``, so one bad entry
        does not block the batch. Each touched chat ends with the newest ingested
        message as its last message.
        """
        result = HistoryIngestResult()
        newest: dict[UUID, tuple[datetime, str]] = {}

        for event in events:
            try:
                prepared = self._prepare(session_id, event)
                if isinstance(prepared, InboundOutcome):
                    if prepared.status is InboundStatus.DUPLICATE:
                        result.duplicates += 1
                    else:
                        result.skipped += 1
                    continue
                remote_jid, provider_id = prepared
                chat = self._resolve_chat(session_id, remote_jid, event)
                msg = self._insert(session_id, chat, remote_jid, provider_id, event)
            except InvalidIdentifier as e:
                self.logger.warning("History message skipped: %s", e)
                result.skipped += 1
                continue
            except MergeFailed as e:
                self.logger.warning("History message deferred for retry: %s", e)
                result.retry.append(event)
                continue

            if msg is None:
                result.duplicates += 1
                continue
            result.inserted += 1
            result.chat_ids.add(chat.id)
            previous = newest.get(chat.id)
            if previous is None or event.timestamp > previous[0]:
                newest[chat.id] = (event.timestamp, event.body)

        for chat_id, (at, body) in newest.items():
            self.chats.record_message(chat_id, body, at, increment_unread=False)

        self.logger.info(
            "History ingest session=%s inserted=%d duplicates=%d skipped=%d retry=%d",
            session_id,
            result.inserted,
            result.duplicates,
            result.skipped,
            len(result.retry),
        )
        return result

    async def process_batch(
        self,
        session_id: UUID,
        events: Sequence[InboundEvent],
        receipts: Sequence[ReceiptEvent] = (),
        history: bool = False,
    ) -> BatchResult:
        """
        Process one webhook delivery: live events in order, or a history batch, then receipts.

        An event that hits ``MergeFailed`` does not stop the rest of the batch;
        it is collected in ``BatchResult.retry`` for the caller to resubmit.
        """
        result = BatchResult()
        if history:
            result.history = self.ingest_history(session_id, events)
            result.retry.extend(result.history.retry)
        else:
            for event in events:
                try:
                    result.outcomes.append(await self.execute(session_id, event))
                except MergeFailed as e:
                    self.logger.warning("Event %s deferred for retry: %s", event.wa_message_id, e)
                    result.retry.append(event)
        if receipts:
            result.receipts_applied = self.apply_receipts(session_id, receipts)
        return result

    def apply_receipts(self, session_id: UUID, receipts: Iterable[ReceiptEvent]) -> int:
        """Advance delivery status of our sent messages; returns how many changed."""
        updated = 0
        for receipt in receipts:
            msg = self.messages.get_by_provider_id(session_id, receipt.provider_message_id)
            if msg is None:
                continue
            before = msg.status
            msg = self.messages.advance_status(msg, receipt.status)
            if msg.status != before:
                updated += 1
        return updated

    def _prepare(self, session_id: UUID, event: InboundEvent):
        """Normalized remote JID and provider id, or the outcome that ends processing early."""
        if is_ignored_jid(event.remote_jid):
            return InboundOutcome(InboundStatus.SKIPPED)
        if event.is_empty:
            self.logger.info(
                "Skip empty message provider=%s from_me=%s",
                event.wa_message_id,
                event.from_me,
            )
            return InboundOutcome(InboundStatus.SKIPPED)

        try:
            remote_jid = (
                event.remote_jid.strip()
                if is_group_jid(event.remote_jid)
                else normalize_jid(event.remote_jid)
            )
        except InvalidIdentifier as e:
            self.logger.warning("Rejecting inbound event: %s", e)
            return InboundOutcome(InboundStatus.REJECTED)

        provider_id = compute_provider_id(
            event.wa_message_id,
            remote_jid,
            event.timestamp_iso,
            event.body,
            event.from_me,
        )
        if self.messages.get_by_provider_id(session_id, provider_id) is not None:
            self.logger.info("Duplicate skipped provider_message_id=%s", provider_id)
            return InboundOutcome(InboundStatus.DUPLICATE, provider_id)
        return remote_jid, provider_id

    def _resolve_chat(self, session_id: UUID, remote_jid: str, event: InboundEvent) -> Chat:
        is_group = is_group_jid(remote_jid)
        phone_hint = None
        if not is_group:
            phone_hint = event.phone_jid or (remote_jid if is_phone_jid(remote_jid) else None)
        hints = ChatHints(
            name=None if event.from_me else event.push_name,
            is_group=is_group,
            last_message=event.body,
        )
        return self.resolver.resolve_chat(session_id, remote_jid, phone_hint, hints).chat

    def _insert(
        self,
        session_id: UUID,
        chat: Chat,
        remote_jid: str,
        provider_id: str,
        event: InboundEvent,
    ) -> Optional[Message]:
        """Insert the message row; None when a concurrent writer inserted it first."""
        try:
            return self.messages.create_message(
                chat_id=chat.id,
                session_id=session_id,
                remote_id=remote_jid,
                sender=SENDER_AGENT if event.from_me else SENDER_USER,
                body=event.body,
                media_type=event.media_type,
                timestamp=event.timestamp,
                created_at=event.timestamp,
                is_from_us=event.from_me,
                status=STATUS_SENT if event.from_me else STATUS_DELIVERED,
                provider_message_id=provider_id,
                client_request_id=event.client_request_id,
            )
        except IntegrityError:
            self.db.rollback()
            self.logger.info("Duplicate blocked by unique index: %s", provider_id)
            return None

    async def _run_handoff(self, chat: Chat, msg: Message) -> Optional[HandoffAction]:
        if self.transport is None:
            self.logger.warning("No transport for chat %s, skipping automated reply", chat.id)
            return None
        try:
            return await self.handoff.handle_inbound(chat, msg, self.transport)
        except Exception as e:
            # The message is stored; a failed reply must not cause redelivery
            self.logger.exception("Automated reply failed for chat %s: %s", chat.id, e)
            return None


async def run_inbound_batch(
    session_id: UUID,
    events: Sequence[InboundEvent],
    receipts: Sequence[ReceiptEvent],
    history: bool,
    attempt: int = 1,
) -> BatchResult:
    """
    Inbox job: process one queued webhook delivery in its own database session.

    The gateway was already acknowledged, so events deferred by ``MergeFailed``
    are put back on the session inbox until ``inbound_max_attempts`` is reached.
    """
    settings = get_settings()
    with db_manager.db_session() as db:
        command = HandleInboundMessageCommand(
            db,
            transport=state.registry.get_transport(session_id),
            reply_generator=state.reply_generator,
            settings=settings,
        )
        result = await command.process_batch(session_id, events, receipts, history=history)

    if result.retry:
        if attempt < settings.inbound_max_attempts:
            logger.warning(
                "Resubmitting %d events for session %s (attempt %d)",
                len(result.retry),
                session_id,
                attempt + 1,
            )
            inbox = await state.registry.get_inbox(session_id)
            await inbox.submit(
                functools.partial(
                    run_inbound_batch, session_id, result.retry, (), history, attempt + 1
                )
            )
        else:
            logger.error(
                "Dropping %d events for session %s after %d attempts: %s",
                len(result.retry),
                session_id,
                attempt,
                [e.wa_message_id for e in result.retry],
            )
    return result
