"""Tests for self-echo reconciliation of optimistic sends."""

import time
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from sqlalchemy.exc import IntegrityError

from app.exceptions import DuplicateSuppressed, MergeFailed
from app.models.chat import Chat
from app.models.message import SENDER_AGENT, STATUS_FAILED, STATUS_PENDING, STATUS_SENT
from app.schemas.bridge import InboundEvent
from app.services.echo_reconciler import EchoReconciler
from tests.fixtures.whatsapp_fixtures import LID_JID, PHONE_JID


@pytest.fixture
def make_pending(make_message):
    def _make(chat, body="Your order shipped", **extra):
        data = dict(
            sender=SENDER_AGENT,
            is_from_us=True,
            status=STATUS_PENDING,
            provider_message_id=None,
        )
        data.update(extra)
        return make_message(chat, body, **data)

    return _make


def _echo(body="Your order shipped", remote_jid=PHONE_JID, **extra):
    return InboundEvent(
        remote_jid=remote_jid,
        from_me=True,
        wa_message_id="3EB0ECHO01",
        timestamp_seconds=int(time.time()),
        body=body,
        **extra,
    )


def test_echo_attaches_provider_id_to_pending_row(db, setup_session, phone_chat, make_pending):
    pending = make_pending(phone_chat)
    msg = EchoReconciler(db).reconcile(setup_session.id, _echo(), PHONE_JID, "3EB0ECHO01")
    assert msg.id == pending.id
    assert msg.status == STATUS_SENT
    assert msg.provider_message_id == "3EB0ECHO01"


def test_newest_matching_row_wins(db, setup_session, phone_chat, make_pending):
    now = datetime.now(timezone.utc)
    older = make_pending(phone_chat, created_at=now - timedelta(minutes=2))
    newer = make_pending(phone_chat, created_at=now - timedelta(seconds=5))
    msg = EchoReconciler(db).reconcile(setup_session.id, _echo(), PHONE_JID, "3EB0ECHO01")
    assert msg.id == newer.id
    db.refresh(older)
    assert older.provider_message_id is None


def test_row_outside_window_is_not_matched(db, setup_session, phone_chat, make_pending):
    make_pending(phone_chat, created_at=datetime.now(timezone.utc) - timedelta(minutes=30))
    assert EchoReconciler(db).reconcile(setup_session.id, _echo(), PHONE_JID, "X") is None


@pytest.mark.parametrize(
    "extra",
    [
        {"body": "something else"},
        {"status": STATUS_FAILED},
        {"provider_message_id": "ALREADY"},
        {"is_from_us": False},
    ],
)
def test_non_matching_rows_are_ignored(db, setup_session, phone_chat, make_pending, extra):
    make_pending(phone_chat, **extra)
    assert EchoReconciler(db).reconcile(setup_session.id, _echo(), PHONE_JID, "X") is None


def test_inbound_customer_message_is_never_reconciled(db, setup_session, phone_chat, make_pending):
    make_pending(phone_chat)
    event = _echo().model_copy(update={"from_me": False})
    assert EchoReconciler(db).reconcile(setup_session.id, event, PHONE_JID, "X") is None


def test_client_request_id_wins_over_body_heuristic(db, setup_session, phone_chat, make_pending):
    tagged = make_pending(phone_chat, body="Edited text", client_request_id="req-1")
    make_pending(phone_chat)
    event = _echo(client_request_id="req-1")
    msg = EchoReconciler(db).reconcile(setup_session.id, event, PHONE_JID, "3EB0ECHO01")
    assert msg.id == tagged.id


def test_attach_race_is_reported_as_duplicate(db, setup_session, phone_chat, make_pending):
    make_pending(phone_chat)
    reconciler = EchoReconciler(db)
    error = IntegrityError("UPDATE", {}, Exception("unique"))
    with patch.object(reconciler.messages, "attach_provider_id", side_effect=error):
        with pytest.raises(DuplicateSuppressed):
            reconciler.reconcile(setup_session.id, _echo(), PHONE_JID, "3EB0ECHO01")


def test_echo_from_lid_links_phone_chat(db, setup_session, phone_chat, make_chat, make_pending):
    lid_chat = make_chat(LID_JID)
    make_pending(phone_chat)
    msg = EchoReconciler(db).reconcile(
        setup_session.id, _echo(remote_jid=LID_JID), LID_JID, "3EB0ECHO01"
    )
    assert msg.remote_id == LID_JID
    chats = db.query(Chat).filter(Chat.session_id == setup_session.id).all()
    assert [c.id for c in chats] == [phone_chat.id]
    assert chats[0].remote_id == LID_JID
    assert chats[0].phone_jid == PHONE_JID
    assert db.query(Chat).filter(Chat.id == lid_chat.id).first() is None


def test_link_failure_after_echo_keeps_reconciled_row(db, setup_session, phone_chat, make_pending):
    make_pending(phone_chat)
    reconciler = EchoReconciler(db)
    failure = MergeFailed(setup_session.id, phone_chat.id, LID_JID, "lost twice")
    with patch.object(reconciler.merges, "link_identifiers", side_effect=failure):
        msg = reconciler.reconcile(
            setup_session.id, _echo(remote_jid=LID_JID), LID_JID, "3EB0ECHO01"
        )
    assert msg.status == STATUS_SENT
    assert msg.provider_message_id == "3EB0ECHO01"
