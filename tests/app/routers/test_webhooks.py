"""Tests for the WhatsApp gateway webhook."""

import asyncio
import time
import uuid
from unittest.mock import AsyncMock, patch

from fastapi.testclient import TestClient

from app.commands.inbound.handle_inbound_command import run_inbound_batch
from app.core.app_state import state
from app.exceptions import MergeFailed
from app.models.message import SENDER_AGENT, STATUS_PENDING, STATUS_SENT, Message
from tests.fixtures.transport_fixtures import FakeReplyGenerator, FakeTransport
from tests.fixtures.whatsapp_fixtures import LID_JID, PHONE_JID


def whatsapp_upsert(wa_id="3EB0A1", text="hello", remote_jid=PHONE_JID, **key):
    return {
        "type": "notify",
        "messages": [
            {
                "key": {"remoteJid": remote_jid, "fromMe": False, "id": wa_id, **key},
                "messageTimestamp": int(time.time()),
                "pushName": "Ahmed",
                "message": {"conversation": text},
            }
        ],
    }


def test_unknown_session_is_404(client: TestClient):
    resp = client.post(f"/webhooks/whatsapp/{uuid.uuid4()}", json=whatsapp_upsert())
    assert resp.status_code == 404


def test_invalid_json_is_400(client: TestClient, setup_session):
    resp = client.post(
        f"/webhooks/whatsapp/{setup_session.id}",
        content=b"{not json",
        headers={"Content-Type": "application/json"},
    )
    assert resp.status_code == 400


def test_invalid_payload_is_400(client: TestClient, setup_session):
    resp = client.post(
        f"/webhooks/whatsapp/{setup_session.id}", json={"type": "unknown", "messages": []}
    )
    assert resp.status_code == 400


@patch("app.routers.webhooks.get_settings")
def test_wrong_api_key_is_403(mock_settings, client: TestClient, setup_session):
    mock_settings.return_value.gateway_api_key = "secret"
    resp = client.post(
        f"/webhooks/whatsapp/{setup_session.id}",
        json=whatsapp_upsert(),
        headers={"X-API-Key": "wrong"},
    )
    assert resp.status_code == 403


def test_redelivered_event_is_stored_once(client: TestClient, db, setup_session):
    url = f"/webhooks/whatsapp/{setup_session.id}"
    first = client.post(url, json=whatsapp_upsert())
    second = client.post(url, json=whatsapp_upsert())
    assert first.status_code == 200
    assert first.json()["outcomes"][0]["status"] == "persisted"
    assert second.json()["outcomes"][0]["status"] == "duplicate"
    assert db.query(Message).count() == 1


def test_customer_message_gets_automated_reply(client: TestClient, setup_session):
    transport = FakeTransport()
    asyncio.run(state.registry.register(setup_session.id, transport))
    state.reply_generator = FakeReplyGenerator(reply="We are on it")

    resp = client.post(f"/webhooks/whatsapp/{setup_session.id}", json=whatsapp_upsert())

    assert resp.json()["outcomes"][0]["handoff"] == "replied"
    assert transport.sent == [(PHONE_JID, "We are on it")]


def test_lid_delivery_with_sender_phone_joins_phone_chat(
    client: TestClient, setup_session, phone_chat
):
    payload = whatsapp_upsert(remote_jid=LID_JID, senderPn=PHONE_JID)
    resp = client.post(f"/webhooks/whatsapp/{setup_session.id}", json=payload)
    assert resp.json()["outcomes"][0]["chat_id"] == str(phone_chat.id)


def test_append_self_echo_reconciles_pending_row(
    client: TestClient, db, setup_session, phone_chat, make_message
):
    pending = make_message(
        phone_chat,
        "hi there",
        sender=SENDER_AGENT,
        is_from_us=True,
        status=STATUS_PENDING,
        provider_message_id=None,
    )
    payload = whatsapp_upsert(wa_id="3EB0ECHO1", text="hi there", fromMe=True)
    payload["type"] = "append"

    resp = client.post(f"/webhooks/whatsapp/{setup_session.id}", json=payload)

    [outcome] = resp.json()["outcomes"]
    assert outcome["status"] == "reconciled"
    assert outcome["message_id"] == str(pending.id)
    assert "history" not in resp.json()
    rows = db.query(Message.status, Message.provider_message_id).all()
    assert rows == [(STATUS_SENT, "3EB0ECHO1")]


def test_history_batch_is_ingested(client: TestClient, setup_session):
    payload = whatsapp_upsert()
    payload["type"] = "history"
    resp = client.post(f"/webhooks/whatsapp/{setup_session.id}", json=payload)
    assert resp.json()["history"] == {"inserted": 1, "duplicates": 0, "skipped": 0}
    assert resp.json()["outcomes"] == []


def test_merge_failure_is_409(client: TestClient, setup_session):
    failure = MergeFailed(setup_session.id, None, PHONE_JID, "lost twice")
    with patch(
        "app.commands.inbound.handle_inbound_command.ChatResolver.resolve_chat",
        side_effect=failure,
    ):
        resp = client.post(f"/webhooks/whatsapp/{setup_session.id}", json=whatsapp_upsert())
    assert resp.status_code == 409


class RecordingInbox:
    def __init__(self):
        self.jobs = []

    async def submit(self, job):
        self.jobs.append(job)


def test_queued_mode_hands_delivery_to_session_inbox(client: TestClient, db, setup_session):
    state.inline_inbound = False
    inbox = RecordingInbox()
    with patch.object(state.registry, "get_inbox", AsyncMock(return_value=inbox)):
        resp = client.post(f"/webhooks/whatsapp/{setup_session.id}", json=whatsapp_upsert())

    assert resp.json() == {"status": "queued", "events": 1, "receipts": 0}
    [job] = inbox.jobs
    assert job.func is run_inbound_batch
    session_id, events, receipts, history = job.args
    assert session_id == setup_session.id
    assert [e.wa_message_id for e in events] == ["3EB0A1"]
    assert receipts == []
    assert history is False
    assert db.query(Message).count() == 0
