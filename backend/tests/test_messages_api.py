import pytest

pytest.importorskip("fastapi")
pytest.importorskip("sqlalchemy")
pytest.importorskip("pgvector")
pytest.importorskip("openai")

from fastapi.testclient import TestClient

from replydesk.api.deps import get_conversation_store, get_scheduler
from replydesk.main import app


class RecordingScheduler:
    def __init__(self):
        self.scheduled = []

    def schedule(self, conversation_id, trigger_message_id, enqueued_at=None, generation=None):
        self.scheduled.append((conversation_id, trigger_message_id, generation))


@pytest.fixture
def client(conversation_store):
    scheduler = RecordingScheduler()
    app.dependency_overrides[get_conversation_store] = lambda: conversation_store
    app.dependency_overrides[get_scheduler] = lambda: scheduler
    try:
        yield TestClient(app), scheduler
    finally:
        app.dependency_overrides.clear()


def test_inbound_message_is_recorded_and_scheduled(client) -> None:
    http, scheduler = client

    resp = http.post("/api/v1/conversations/5/messages", json={"content": "gümüş kolye", "channel": "whatsapp"})

    assert resp.status_code == 202
    assert resp.json() == {"conversation_id": 5, "message_id": 1, "generation": 1, "scheduled": True}
    assert scheduler.scheduled == [(5, 1, 1)]


def test_private_note_is_not_scheduled(client) -> None:
    http, scheduler = client

    resp = http.post("/api/v1/conversations/5/messages", json={"content": "VIP müşteri", "private": True})

    assert resp.status_code == 202
    assert resp.json()["scheduled"] is False
    assert scheduler.scheduled == []


def test_empty_message_is_rejected(client) -> None:
    http, _ = client

    resp = http.post("/api/v1/conversations/5/messages", json={"content": ""})

    assert resp.status_code == 422
