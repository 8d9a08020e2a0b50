"""Tests for the chat history endpoint."""

from sqlmodel import Session

from chatrelay.models.conversation import ChatSession, Message
from tests.conftest import test_engine


def _seed_session(title="Test Chat", messages=None, chat_id=None):
    """Insert a session + messages directly into the test DB."""
    with Session(test_engine) as session:
        chat = ChatSession(title=title)
        if chat_id:
            chat.id = chat_id
        session.add(chat)
        session.commit()
        session.refresh(chat)

        for role, content in messages or []:
            session.add(Message(chat_id=chat.id, role=role, content=content))
        session.commit()

        return chat.id


def test_list_sessions_empty(client):
    response = client.get("/get-chat-history")
    assert response.status_code == 200
    assert response.json() == {"success": True, "sessions": []}


def test_list_sessions_most_recent_first(client, store):
    older = _seed_session("Chat A")
    newer = _seed_session("Chat B")
    store.add_user_message(older, "bump")  # touches updated_at

    response = client.get("/get-chat-history")
    sessions = response.json()["sessions"]
    assert [s["id"] for s in sessions] == [older, newer]
    assert set(sessions[0]) == {"id", "created_at", "updated_at", "title"}


def test_list_sessions_limited_to_fifty(client):
    for i in range(55):
        _seed_session(f"Chat {i}")

    response = client.get("/get-chat-history")
    assert len(response.json()["sessions"]) == 50


def test_get_messages_by_query(client):
    cid = _seed_session("My Chat", [("user", "hello"), ("assistant", "hi there")])

    response = client.get("/get-chat-history", params={"chatId": cid})
    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["chatId"] == cid
    assert [(m["role"], m["content"]) for m in data["messages"]] == [
        ("user", "hello"),
        ("assistant", "hi there"),
    ]
    assert data["messages"][0]["chat_id"] == cid
    assert data["messages"][0]["type"] == "text"
    assert data["messages"][0]["image_url"] is None


def test_get_messages_by_post_body(client):
    cid = _seed_session("My Chat", [("user", "hello")])

    response = client.post("/get-chat-history", json={"chatId": cid})
    assert response.status_code == 200
    assert [m["content"] for m in response.json()["messages"]] == ["hello"]


def test_post_without_body_lists_sessions(client):
    _seed_session("Only")
    response = client.post("/get-chat-history")
    assert response.status_code == 200
    assert [s["title"] for s in response.json()["sessions"]] == ["Only"]


def test_unknown_chat_has_no_messages(client):
    response = client.get("/get-chat-history", params={"chatId": "missing"})
    assert response.status_code == 200
    assert response.json()["messages"] == []


def test_post_invalid_json_rejected(client):
    response = client.post(
        "/get-chat-history",
        content=b"{oops",
        headers={"Content-Type": "application/json"},
    )
    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "Invalid JSON in request body"}


def test_wrong_method_rejected(client):
    response = client.delete("/get-chat-history")
    assert response.status_code == 405
    assert response.json()["success"] is False
