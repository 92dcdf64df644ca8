"""Tests for operator-initiated sends."""

import uuid

import pytest

from app.commands.outbound.send_message_command import SendMessageCommand
from app.exceptions import InvalidIdentifier, SessionNotFound
from app.models.chat import Chat
from app.models.message import STATUS_PENDING, Message
from app.schemas.chat import SendMessageRequest
from tests.fixtures.whatsapp_fixtures import LID_JID, PHONE_JID


def test_send_creates_chat_and_pending_message(db, setup_session):
    response = SendMessageCommand(db).execute(
        SendMessageRequest(
            session_id=setup_session.id,
            to="+20 123 456 7890",
            text="Hello from the shop",
            client_request_id="req-1",
        )
    )
    chat = db.query(Chat).filter(Chat.id == response.chat_id).one()
    msg = db.query(Message).filter(Message.id == response.message_id).one()
    assert chat.remote_id == PHONE_JID
    assert msg.status == STATUS_PENDING
    assert msg.is_from_us
    assert msg.provider_message_id is None
    assert msg.client_request_id == "req-1"
    assert chat.last_message == "Hello from the shop"
    assert chat.unread_count == 0


def test_send_to_lid_reuses_existing_chat(db, setup_session, make_chat):
    chat = make_chat(LID_JID, phone_jid=PHONE_JID)
    response = SendMessageCommand(db).execute(
        SendMessageRequest(session_id=setup_session.id, to=LID_JID, text="hi")
    )
    assert response.chat_id == chat.id
    assert db.query(Chat).count() == 1


def test_send_to_phone_of_relinked_chat_reuses_it(db, setup_session, make_chat):
    chat = make_chat(LID_JID, phone_jid=PHONE_JID)
    response = SendMessageCommand(db).execute(
        SendMessageRequest(session_id=setup_session.id, to="201234567890", text="hi")
    )
    assert response.chat_id == chat.id
    assert db.query(Chat).count() == 1
    msg = db.query(Message).filter(Message.id == response.message_id).one()
    assert msg.remote_id == PHONE_JID


def test_send_to_group_keeps_group_jid(db, setup_session):
    group = "120363025246125486@g.us"
    response = SendMessageCommand(db).execute(
        SendMessageRequest(session_id=setup_session.id, to=group, text="hi all")
    )
    chat = db.query(Chat).filter(Chat.id == response.chat_id).one()
    assert chat.remote_id == group
    assert chat.is_group


def test_send_applies_assignment(db, setup_session):
    response = SendMessageCommand(db).execute(
        SendMessageRequest(
            session_id=setup_session.id, to=PHONE_JID, text="hi", assigned_to="agent-7"
        )
    )
    assert db.query(Chat).filter(Chat.id == response.chat_id).one().assigned_to == "agent-7"


def test_send_unknown_session(db):
    with pytest.raises(SessionNotFound):
        SendMessageCommand(db).execute(
            SendMessageRequest(session_id=uuid.uuid4(), to=PHONE_JID, text="hi")
        )


def test_send_invalid_identifier(db, setup_session):
    with pytest.raises(InvalidIdentifier):
        SendMessageCommand(db).execute(
            SendMessageRequest(session_id=setup_session.id, to="12345", text="hi")
        )
