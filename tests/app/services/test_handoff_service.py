"""Tests for chat mode tracking and automated reply handoff."""

import asyncio
import uuid

import pytest

from app.config import Settings
from app.exceptions import ChatNotFound
from app.models.message import SENDER_AGENT
from app.services.handoff_service import HandoffAction, HandoffService, requests_human
from tests.fixtures.transport_fixtures import FakeReplyGenerator


@pytest.fixture
def settings():
    return Settings(ai_enabled=True, reply_history_limit=6)


@pytest.mark.parametrize(
    "text",
    [
        "عايز اكلم خدمة العملاء لو سمحت",
        "ممكن موظف",
        "Can I talk to a HUMAN please",
        "customer service!",
    ],
)
def test_human_request_phrases_match(text):
    assert requests_human(text)


@pytest.mark.parametrize("text", ["", None, "where is my order", "شكرا"])
def test_ordinary_text_is_not_a_human_request(text):
    assert not requests_human(text)


def test_human_request_switches_mode_and_confirms_once(
    db, phone_chat, make_message, transport, reply_generator, settings
):
    msg = make_message(phone_chat, "عايز موظف")
    service = HandoffService(db, reply_generator=reply_generator, settings=settings)

    action = asyncio.run(service.handle_inbound(phone_chat, msg, transport))

    assert action is HandoffAction.HUMAN_REQUESTED
    db.refresh(phone_chat)
    assert phone_chat.mode == "human"
    assert phone_chat.needs_human
    assert transport.sent == [(phone_chat.remote_id, settings.handoff_confirmation_message)]
    assert reply_generator.calls == []


def test_human_mode_skips_reply_generation(
    db, phone_chat, make_message, transport, reply_generator, settings
):
    service = HandoffService(db, reply_generator=reply_generator, settings=settings)
    service.hand_off(phone_chat)
    msg = make_message(phone_chat, "where is my order")

    action = asyncio.run(service.handle_inbound(phone_chat, msg, transport))

    assert action is HandoffAction.HUMAN_MODE
    assert transport.sent == []
    assert reply_generator.calls == []


def test_ai_reply_is_sent_with_history(
    db, phone_chat, make_message, transport, reply_generator, settings
):
    make_message(phone_chat, "hello")
    make_message(phone_chat, "Hi, how can I help?", sender=SENDER_AGENT, is_from_us=True)
    msg = make_message(phone_chat, "where is my order")
    service = HandoffService(db, reply_generator=reply_generator, settings=settings)

    action = asyncio.run(service.handle_inbound(phone_chat, msg, transport))

    assert action is HandoffAction.REPLIED
    assert transport.sent == [(phone_chat.remote_id, "Sure, happy to help")]
    history, text, _ = reply_generator.calls[0]
    assert text == "where is my order"
    assert [(h.role, h.content) for h in history] == [
        ("user", "hello"),
        ("assistant", "Hi, how can I help?"),
    ]
    db.refresh(phone_chat)
    assert phone_chat.mode == "ai"


def test_generator_handoff_moves_chat_to_human(
    db, phone_chat, make_message, transport, settings
):
    generator = FakeReplyGenerator(reply="Let me get a colleague", handoff=True)
    msg = make_message(phone_chat, "I want to cancel my contract")
    service = HandoffService(db, reply_generator=generator, settings=settings)

    action = asyncio.run(service.handle_inbound(phone_chat, msg, transport))

    assert action is HandoffAction.HANDED_OFF
    assert transport.sent == [(phone_chat.remote_id, "Let me get a colleague")]
    db.refresh(phone_chat)
    assert phone_chat.mode == "human"


def test_disabled_ai_persists_without_reply(db, phone_chat, make_message, transport, reply_generator):
    service = HandoffService(
        db, reply_generator=reply_generator, settings=Settings(ai_enabled=False)
    )
    msg = make_message(phone_chat, "hello there")
    action = asyncio.run(service.handle_inbound(phone_chat, msg, transport))
    assert action is HandoffAction.DISABLED
    assert transport.sent == []


def test_history_respects_limit(db, phone_chat, make_message, settings):
    for i in range(10):
        make_message(phone_chat, f"message {i}")
    current = make_message(phone_chat, "current")
    service = HandoffService(db, settings=Settings(reply_history_limit=4))
    history = service.build_history(phone_chat.id, current)
    assert [h.content for h in history] == ["message 7", "message 8", "message 9"]


def test_set_mode_round_trip(db, setup_session, phone_chat):
    service = HandoffService(db)
    chat = service.set_mode(setup_session.id, phone_chat.id, "human")
    assert (chat.mode, chat.needs_human) == ("human", True)
    chat = service.set_mode(setup_session.id, phone_chat.id, "ai")
    assert (chat.mode, chat.needs_human) == ("ai", False)


def test_set_mode_rejects_unknown_mode(db, setup_session, phone_chat):
    with pytest.raises(ValueError):
        HandoffService(db).set_mode(setup_session.id, phone_chat.id, "automated")


def test_set_mode_unknown_chat(db, setup_session):
    with pytest.raises(ChatNotFound):
        HandoffService(db).set_mode(setup_session.id, uuid.uuid4(), "human")
