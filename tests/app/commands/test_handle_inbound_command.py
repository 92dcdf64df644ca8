"""Tests for exactly-once inbound persistence."""

import asyncio
import functools
import time
from types import SimpleNamespace
from unittest.mock import patch

import pytest

from app.commands.inbound import HandleInboundMessageCommand, InboundStatus
from app.commands.inbound.handle_inbound_command import run_inbound_batch
from app.config import Settings
from app.core.app_state import state
from app.exceptions import MergeFailed
from app.models.chat import Chat
from app.models.message import (
    SENDER_AGENT,
    STATUS_DELIVERED,
    STATUS_PENDING,
    STATUS_READ,
    STATUS_SENT,
    Message,
)
from app.schemas.bridge import InboundEvent, ReceiptEvent
from app.services.chat_resolver import ChatResolver
from app.services.handoff_service import HandoffAction
from tests.fixtures.transport_fixtures import FakeTransport
from tests.fixtures.whatsapp_fixtures import LID_JID, PHONE_JID


def _event(body="hello", remote_jid=PHONE_JID, wa_id="3EB0IN0001", **extra):
    data = dict(
        remote_jid=remote_jid,
        from_me=False,
        wa_message_id=wa_id,
        timestamp_seconds=int(time.time()),
        body=body,
        push_name="Ahmed",
    )
    data.update(extra)
    return InboundEvent(**data)


@pytest.fixture
def command(db, transport, reply_generator):
    return HandleInboundMessageCommand(
        db,
        transport=transport,
        reply_generator=reply_generator,
        settings=Settings(ai_enabled=True),
    )


def _messages(db, session_id):
    return db.query(Message).filter(Message.session_id == session_id).all()


def test_replayed_event_is_persisted_once(db, setup_session, command):
    event = _event()
    outcomes = [asyncio.run(command.execute(setup_session.id, event)) for _ in range(3)]
    assert [o.status for o in outcomes] == [
        InboundStatus.PERSISTED,
        InboundStatus.DUPLICATE,
        InboundStatus.DUPLICATE,
    ]
    [msg] = _messages(db, setup_session.id)
    assert msg.provider_message_id == "3EB0IN0001"
    assert msg.status == STATUS_DELIVERED


def test_customer_message_updates_chat_and_triggers_reply(
    db, setup_session, command, transport
):
    outcome = asyncio.run(command.execute(setup_session.id, _event("where is my order")))
    chat = db.query(Chat).filter(Chat.id == outcome.chat_id).one()
    assert chat.name == "Ahmed"
    assert chat.unread_count == 1
    assert chat.last_message == "where is my order"
    assert outcome.handoff is HandoffAction.REPLIED
    assert transport.sent == [(PHONE_JID, "Sure, happy to help")]


def test_event_without_network_id_uses_fallback_id(db, setup_session, command):
    event = _event(wa_id=None, timestamp_seconds=1760000000)
    first = asyncio.run(command.execute(setup_session.id, event))
    second = asyncio.run(command.execute(setup_session.id, event))
    assert first.provider_message_id.startswith("fallback:")
    assert second.status is InboundStatus.DUPLICATE
    assert len(_messages(db, setup_session.id)) == 1


def test_redelivery_without_id_or_timestamp_is_stored_once(db, setup_session, command):
    first_delivery = InboundEvent(remote_jid=PHONE_JID, body="hello")
    assert first_delivery.timestamp == first_delivery.timestamp

    first = asyncio.run(command.execute(setup_session.id, first_delivery))
    second = asyncio.run(
        command.execute(setup_session.id, InboundEvent(remote_jid=PHONE_JID, body="hello"))
    )

    assert first.status is InboundStatus.PERSISTED
    assert second.status is InboundStatus.DUPLICATE
    assert first.provider_message_id == second.provider_message_id
    assert len(_messages(db, setup_session.id)) == 1


def test_lid_event_with_phone_hint_lands_in_phone_chat(db, setup_session, phone_chat, command):
    outcome = asyncio.run(
        command.execute(setup_session.id, _event(remote_jid=LID_JID, phone_jid=PHONE_JID))
    )
    assert outcome.chat_id == phone_chat.id
    db.refresh(phone_chat)
    assert phone_chat.remote_id == LID_JID
    assert phone_chat.phone_jid == PHONE_JID


def test_self_echo_reconciles_pending_row(db, setup_session, phone_chat, make_message, command):
    pending = make_message(
        phone_chat,
        "Your order shipped",
        sender=SENDER_AGENT,
        is_from_us=True,
        status=STATUS_PENDING,
        provider_message_id=None,
    )
    echo = _event("Your order shipped", from_me=True, wa_id="3EB0ECHO01", push_name=None)

    first = asyncio.run(command.execute(setup_session.id, echo))
    second = asyncio.run(command.execute(setup_session.id, echo))

    assert first.status is InboundStatus.RECONCILED
    assert first.message_id == pending.id
    assert second.status is InboundStatus.DUPLICATE
    [msg] = _messages(db, setup_session.id)
    assert msg.status == STATUS_SENT
    assert msg.provider_message_id == "3EB0ECHO01"


def test_unmatched_own_message_is_inserted_without_reply(
    db, setup_session, phone_chat, command, transport
):
    outcome = asyncio.run(
        command.execute(setup_session.id, _event("sent from phone", from_me=True))
    )
    assert outcome.status is InboundStatus.PERSISTED
    assert outcome.handoff is None
    msg = db.query(Message).filter(Message.id == outcome.message_id).one()
    assert msg.is_from_us
    assert msg.sender == SENDER_AGENT
    assert msg.status == STATUS_SENT
    db.refresh(phone_chat)
    assert phone_chat.unread_count == 0
    assert transport.sent == []


def test_group_messages_are_stored_without_reply(db, setup_session, command, transport):
    group = "120363025246125486@g.us"
    outcome = asyncio.run(command.execute(setup_session.id, _event(remote_jid=group)))
    chat = db.query(Chat).filter(Chat.id == outcome.chat_id).one()
    assert chat.is_group
    assert chat.remote_id == group
    assert outcome.handoff is None
    assert transport.sent == []


def test_broadcast_and_empty_events_are_skipped(db, setup_session, command):
    skipped = [
        _event(remote_jid="status@broadcast"),
        _event(body="   ", wa_id="3EB0EMPTY"),
    ]
    outcomes = [asyncio.run(command.execute(setup_session.id, e)) for e in skipped]
    assert {o.status for o in outcomes} == {InboundStatus.SKIPPED}
    assert _messages(db, setup_session.id) == []


def test_media_only_event_is_kept(db, setup_session, command):
    outcome = asyncio.run(
        command.execute(setup_session.id, _event(body="[image]", media_type="image"))
    )
    assert outcome.status is InboundStatus.PERSISTED


def test_invalid_identifier_is_rejected(db, setup_session, command):
    outcome = asyncio.run(command.execute(setup_session.id, _event(remote_jid="123@s.whatsapp.net")))
    assert outcome.status is InboundStatus.REJECTED
    assert db.query(Chat).count() == 0


def test_failed_reply_does_not_fail_the_event(db, setup_session, reply_generator):
    broken = FakeTransport(error=RuntimeError("socket closed"))
    command = HandleInboundMessageCommand(
        db, transport=broken, reply_generator=reply_generator, settings=Settings(ai_enabled=True)
    )
    outcome = asyncio.run(command.execute(setup_session.id, _event()))
    assert outcome.status is InboundStatus.PERSISTED
    assert outcome.handoff is None
    assert len(_messages(db, setup_session.id)) == 1


def test_history_ingest_dedups_and_never_replies(db, setup_session, command, transport, reply_generator):
    events = [
        _event("first", wa_id="H1", timestamp_seconds=1760000000),
        _event("second", wa_id="H2", timestamp_seconds=1760000100),
        _event("first", wa_id="H1", timestamp_seconds=1760000000),
        _event("", wa_id="H3"),
    ]
    result = command.ingest_history(setup_session.id, events)
    again = command.ingest_history(setup_session.id, events[:2])

    assert (result.inserted, result.duplicates, result.skipped) == (2, 1, 1)
    assert (again.inserted, again.duplicates) == (0, 2)
    [chat_id] = result.chat_ids
    chat = db.query(Chat).filter(Chat.id == chat_id).one()
    assert chat.last_message == "second"
    assert chat.unread_count == 0
    assert transport.sent == []
    assert reply_generator.calls == []


def test_receipts_only_move_status_forward(db, setup_session, phone_chat, make_message, command):
    make_message(
        phone_chat,
        "hi",
        sender=SENDER_AGENT,
        is_from_us=True,
        status=STATUS_SENT,
        provider_message_id="3EB0OUT1",
    )
    read = command.apply_receipts(
        setup_session.id, [ReceiptEvent(provider_message_id="3EB0OUT1", status="read")]
    )
    late = command.apply_receipts(
        setup_session.id,
        [
            ReceiptEvent(provider_message_id="3EB0OUT1", status="delivered"),
            ReceiptEvent(provider_message_id="UNKNOWN", status="read"),
        ],
    )
    assert (read, late) == (1, 0)
    [msg] = _messages(db, setup_session.id)
    assert msg.status == STATUS_READ


def test_process_batch_handles_live_events_in_order(db, setup_session, command):
    events = [_event("one", wa_id="B1"), _event("two", wa_id="B2"), _event("one", wa_id="B1")]
    result = asyncio.run(command.process_batch(setup_session.id, events))
    assert [o.status for o in result.outcomes] == [
        InboundStatus.PERSISTED,
        InboundStatus.PERSISTED,
        InboundStatus.DUPLICATE,
    ]
    assert result.history is None


def _losing_resolver(failures):
    """resolve_chat that raises MergeFailed for its first ``failures`` calls."""
    resolve = ChatResolver.resolve_chat
    attempts = []

    def resolve_chat(self, session_id, raw_identifier, *args, **kwargs):
        attempts.append(raw_identifier)
        if len(attempts) <= failures:
            raise MergeFailed(session_id, None, raw_identifier, "lost twice")
        return resolve(self, session_id, raw_identifier, *args, **kwargs)

    return resolve_chat, attempts


def test_process_batch_defers_merge_failure_and_continues(db, setup_session, command):
    resolve_chat, _ = _losing_resolver(failures=1)
    first, second = _event("one", wa_id="B1"), _event("two", wa_id="B2")
    with patch.object(ChatResolver, "resolve_chat", resolve_chat):
        result = asyncio.run(command.process_batch(setup_session.id, [first, second]))

    assert result.retry == [first]
    assert [o.provider_message_id for o in result.outcomes] == ["B2"]


def test_history_merge_failure_is_deferred_not_skipped(db, setup_session, command):
    resolve_chat, _ = _losing_resolver(failures=1)
    event = _event("old", wa_id="H1", timestamp_seconds=1760000000)
    with patch.object(ChatResolver, "resolve_chat", resolve_chat):
        result = asyncio.run(command.process_batch(setup_session.id, [event], history=True))

    assert result.history.skipped == 0
    assert result.retry == [event]


def _run_queued(setup_session, session_scope, events):
    async def scenario():
        inbox = await state.registry.get_inbox(setup_session.id)
        await inbox.submit(
            functools.partial(run_inbound_batch, setup_session.id, events, (), False)
        )
        await inbox.join()
        await state.registry.close_all()

    state.reset()
    try:
        with patch(
            "app.commands.inbound.handle_inbound_command.db_manager",
            SimpleNamespace(db_session=session_scope),
        ):
            asyncio.run(scenario())
    finally:
        state.reset()


def test_queued_merge_failure_is_retried_on_the_inbox(db, setup_session, session_scope):
    resolve_chat, attempts = _losing_resolver(failures=1)
    with patch.object(ChatResolver, "resolve_chat", resolve_chat):
        _run_queued(setup_session, session_scope, [_event()])

    assert attempts == [PHONE_JID, PHONE_JID]
    [msg] = _messages(db, setup_session.id)
    assert msg.provider_message_id == "3EB0IN0001"


def test_queued_retries_stop_after_max_attempts(db, setup_session, session_scope):
    resolve_chat, attempts = _losing_resolver(failures=10)
    with patch.object(ChatResolver, "resolve_chat", resolve_chat), patch(
        "app.commands.inbound.handle_inbound_command.get_settings",
        return_value=Settings(inbound_max_attempts=3),
    ):
        _run_queued(setup_session, session_scope, [_event()])

    assert len(attempts) == 3
    assert _messages(db, setup_session.id) == []
