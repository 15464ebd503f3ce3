"""Tests for the chat conversation endpoints."""

from __future__ import annotations

from fastapi.testclient import TestClient

from conftest import FALLBACK_MODEL, PRIMARY_MODEL, FakeGemini

USER = {"X-User-Id": "user-1"}
OTHER = {"X-User-Id": "user-2"}
QUESTION = "What does a high LDL value mean for my heart?"


def _start_chat(client: TestClient, headers=USER) -> dict:
    response = client.post(
        "/api/chat", json={"messages": [{"role": "user", "content": QUESTION}]}, headers=headers
    )
    assert response.status_code == 200
    return response.json()


def test_chat_requires_identity(client: TestClient) -> None:
    assert client.get("/api/chat").status_code == 401
    response = client.post("/api/chat", json={"messages": [{"role": "user", "content": "hi"}]})
    assert response.status_code == 401


def test_new_chat_is_saved_and_listed(client: TestClient, fake_gemini: FakeGemini) -> None:
    payload = _start_chat(client)

    assert payload["success"] is True
    assert payload["model"] == PRIMARY_MODEL
    assert payload["reply"] == {"role": "assistant", "content": fake_gemini.default_reply, "id": None}
    chat = payload["chat"]
    assert chat["title"] == "What does a high LDL value mean..."
    assert [message["role"] for message in chat["messages"]] == ["user", "assistant"]
    assert chat["source"] == "database"

    listing = client.get("/api/chat", headers=USER).json()
    assert [item["id"] for item in listing] == [chat["id"]]
    assert listing[0]["message_count"] == 2

    fetched = client.get(f"/api/chat/{chat['id']}", headers=USER)
    assert fetched.status_code == 200
    assert fetched.json()["messages"][1]["content"] == fake_gemini.default_reply


def test_history_is_sent_with_model_roles(client: TestClient, fake_gemini: FakeGemini) -> None:
    chat = _start_chat(client)["chat"]
    messages = chat["messages"] + [{"role": "user", "content": "And my HDL?"}]

    response = client.post("/api/chat", json={"chatId": chat["id"], "messages": messages}, headers=USER)

    assert response.status_code == 200
    assert len(response.json()["chat"]["messages"]) == 4
    roles = [content["role"] for content in fake_gemini.calls[-1].contents]
    assert roles == ["user", "model", "user"]


def test_chat_uses_fallback_model(client: TestClient, fake_gemini: FakeGemini) -> None:
    fake_gemini.failing.add(PRIMARY_MODEL)

    payload = _start_chat(client)

    assert payload["fallback"] is True
    assert payload["model"] == FALLBACK_MODEL


def test_last_message_must_be_from_user(client: TestClient) -> None:
    response = client.post(
        "/api/chat", json={"messages": [{"role": "assistant", "content": "hello"}]}, headers=USER
    )
    assert response.status_code == 400


def test_stale_history_is_rejected(client: TestClient) -> None:
    chat = _start_chat(client)["chat"]

    response = client.post(
        "/api/chat",
        json={"chatId": chat["id"], "messages": [{"role": "user", "content": "again"}]},
        headers=USER,
    )

    assert response.status_code == 409


def test_rewritten_history_is_rejected(client: TestClient) -> None:
    chat = _start_chat(client)["chat"]
    forged = [
        {"role": "user", "content": "REWRITTEN"},
        {"role": "assistant", "content": "forged"},
        {"role": "user", "content": "next"},
    ]

    response = client.post("/api/chat", json={"chatId": chat["id"], "messages": forged}, headers=USER)

    assert response.status_code == 409
    stored = client.get(f"/api/chat/{chat['id']}", headers=USER).json()
    assert stored["messages"][0]["content"] == QUESTION
    assert len(stored["messages"]) == 2


def test_other_users_cannot_touch_a_chat(client: TestClient) -> None:
    chat = _start_chat(client)["chat"]

    assert client.get(f"/api/chat/{chat['id']}", headers=OTHER).status_code == 403
    assert client.delete(f"/api/chat/{chat['id']}", headers=OTHER).status_code == 403
    overwrite = client.post(
        "/api/chat",
        json={"chatId": chat["id"], "messages": chat["messages"] + [{"role": "user", "content": "x"}]},
        headers=OTHER,
    )
    assert overwrite.status_code == 403
    assert client.get("/api/chat", headers=OTHER).json() == []


def test_delete_chat(client: TestClient) -> None:
    chat = _start_chat(client)["chat"]

    assert client.delete(f"/api/chat/{chat['id']}", headers=USER).json() == {"success": True}
    assert client.get(f"/api/chat/{chat['id']}", headers=USER).status_code == 404
    assert client.delete(f"/api/chat/{chat['id']}", headers=USER).status_code == 404


def test_invalid_chat_id_is_rejected(client: TestClient) -> None:
    assert client.get("/api/chat/bad.id", headers=USER).status_code == 400
