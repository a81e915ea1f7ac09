"""HTTP surface: status mapping for denials, busy turns, membership errors and content endpoints."""
import base64

import pytest
from fastapi.testclient import TestClient

from conftest import FakeGenerator
from langcampus.core.errors import GenerationFailure
from langcampus.main import app
from langcampus.services.session import get_session_facade

PARTNER = {
    "name": "Lucía",
    "avatar": "",
    "native_language": "Spanish",
    "learning_language": "English",
    "interests": ["cooking"],
}


@pytest.fixture
def facade(build_facade):
    return build_facade(speech=lambda text, language_code: b"RIFF....WAVEfmt ")


@pytest.fixture
def client(facade):
    app.dependency_overrides[get_session_facade] = lambda: facade
    yield TestClient(app)
    app.dependency_overrides.clear()


def _open_chat(client, user_id="user-1"):
    response = client.post("/api/v1/chats", json={"user_id": user_id, "partner": PARTNER})
    assert response.status_code == 200
    return response.json()["conversation_id"]


def test_health_check(client):
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert "version" in data


def test_open_chat_and_send(client):
    conversation_id = _open_chat(client)

    response = client.post(
        f"/api/v1/chats/{conversation_id}/messages",
        json={"user_id": "user-1", "text": "  Hola  "},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert [m["sender"] for m in data["messages"]] == ["user", "ai"]
    assert data["messages"][0]["text"] == "Hola"

    view = client.get(f"/api/v1/chats/{conversation_id}", params={"user_id": "user-1"}).json()
    assert len(view["messages"]) == 2
    assert view["pending_generation"] is False


def test_quota_denial_returns_429_with_messages(client, seed_user):
    seed_user(messages=20)
    conversation_id = _open_chat(client)

    response = client.post(
        f"/api/v1/chats/{conversation_id}/messages",
        json={"user_id": "user-1", "text": "Hola"},
    )

    assert response.status_code == 429
    data = response.json()
    assert data["status"] == "denied"
    assert data["reason"] == "quota_exceeded"
    assert data["action"] == "messages"
    assert data["messages"] == []


def test_content_quota_denial_returns_429(client, seed_user):
    seed_user(searches=5)

    response = client.post(
        "/api/v1/partners/search",
        json={"user_id": "user-1", "native_language": "English", "target_language": "Spanish"},
    )

    assert response.status_code == 429
    assert response.json() == {
        "detail": "Daily limit reached for searches.",
        "reason": "quota_exceeded",
        "action": "searches",
    }


def test_empty_message_rejected(client):
    conversation_id = _open_chat(client)

    response = client.post(
        f"/api/v1/chats/{conversation_id}/messages",
        json={"user_id": "user-1", "text": ""},
    )

    assert response.status_code == 422


def test_unknown_conversation_is_404(client):
    response = client.get("/api/v1/chats/missing", params={"user_id": "user-1"})
    assert response.status_code == 404

    response = client.post("/api/v1/chats/missing/messages", json={"user_id": "user-1", "text": "Hola"})
    assert response.status_code == 404


def test_full_group_returns_409(client):
    group = client.post("/api/v1/groups", json={"user_id": "alice", "partner": PARTNER}).json()
    for user_id in ("bob", "carol"):
        assert client.post(f"/api/v1/groups/{group['id']}/join", json={"user_id": user_id}).status_code == 200

    response = client.post(f"/api/v1/groups/{group['id']}/join", json={"user_id": "dave"})

    assert response.status_code == 409


def test_group_delete_by_member_is_403(client):
    group = client.post("/api/v1/groups", json={"user_id": "alice", "partner": PARTNER}).json()
    client.post(f"/api/v1/groups/{group['id']}/join", json={"user_id": "bob"})

    response = client.delete(f"/api/v1/groups/{group['id']}", params={"user_id": "bob"})
    assert response.status_code == 403

    response = client.delete(f"/api/v1/groups/{group['id']}", params={"user_id": "alice"})
    assert response.status_code == 200
    assert client.get(f"/api/v1/groups/{group['id']}").status_code == 404


def test_group_mention(client):
    group = client.post("/api/v1/groups", json={"user_id": "alice", "partner": PARTNER}).json()
    client.put(f"/api/v1/groups/{group['id']}/topic", json={"user_id": "alice", "topic": "Food"})

    response = client.post(
        f"/api/v1/groups/{group['id']}/messages",
        json={"user_id": "alice", "text": "@bot ¿cómo se dice apple?"},
    )

    assert response.status_code == 200
    assert [m["sender"] for m in response.json()["messages"]] == ["user", "ai"]
    assert client.get(f"/api/v1/groups/{group['id']}").json()["topic"] == "Food"


def test_speech_returns_base64_wav(client):
    response = client.post("/api/v1/speech", json={"user_id": "user-1", "text": "Hola", "language_code": "es-ES"})

    assert response.status_code == 200
    data = response.json()
    assert data["mime_type"] == "audio/wav"
    assert base64.b64decode(data["audio_base64"]).startswith(b"RIFF")

    usage = client.get("/api/v1/users/user-1/usage").json()
    assert usage["counters"]["audioPlays"] == 1
    assert usage["limits"]["audioPlays"] == 5


def test_generation_failure_on_content_endpoint_is_502(build_facade):
    class BrokenLessons(FakeGenerator):
        def generate_lesson(self, topic, kind, target_language, native_language):
            raise GenerationFailure("model unavailable")

    facade = build_facade(generator=BrokenLessons())
    app.dependency_overrides[get_session_facade] = lambda: facade
    try:
        response = TestClient(app).post(
            "/api/v1/lessons",
            json={"user_id": "user-1", "topic": "Food", "target_language": "Spanish", "native_language": "English"},
        )
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 502
    assert response.json()["retryable"] is True


def test_profile_and_notes(client):
    profile = {"name": "Sam", "hobbies": "hiking", "bio": "Learning Spanish", "native_language": "English (US)"}
    assert client.put("/api/v1/users/user-1/profile", json=profile).json() == profile

    assert client.get("/api/v1/users/user-1/notes").json() == {"notes": ""}
    client.put("/api/v1/users/user-1/notes", json={"notes": "ser vs estar"})
    assert client.get("/api/v1/users/user-1/notes").json() == {"notes": "ser vs estar"}
