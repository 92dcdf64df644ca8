"""Tests for the duplicate chat audit API."""

import uuid

from fastapi.testclient import TestClient

from app.models.chat import Chat
from tests.fixtures.whatsapp_fixtures import LID_JID, PHONE_JID


def test_audit_then_merge(client: TestClient, db, setup_session, phone_chat, make_chat):
    make_chat(LID_JID, phone_jid=PHONE_JID)
    base = f"/sessions/{setup_session.id}/duplicates"

    analysis = client.get(base).json()
    assert (analysis["phone_chats"], analysis["lid_chats"]) == (1, 1)

    report = client.post(f"{base}/audit").json()
    assert report["dry_run"] is True
    assert report["stats"]["potential_merges"] == 1
    assert db.query(Chat).count() == 2

    execution = client.post(f"{base}/merge").json()
    assert [r["success"] for r in execution["results"]] == [True]
    [survivor] = db.query(Chat).all()
    assert survivor.id == phone_chat.id
    assert survivor.remote_id == LID_JID


def test_unknown_session_is_404(client: TestClient):
    assert client.get(f"/sessions/{uuid.uuid4()}/duplicates").status_code == 404
