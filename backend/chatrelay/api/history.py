"""Chat history - recent sessions, or the messages of one session."""

import json
import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.exc import SQLAlchemyError

from chatrelay.core.config import settings
from chatrelay.core.errors import RequestError
from chatrelay.models.conversation import ChatSession, Message
from chatrelay.services.store import ConversationStore, get_store

router = APIRouter()
logger = logging.getLogger(__name__)


def _session_to_dict(s: ChatSession) -> dict:
    return {
        "id": s.id,
        "created_at": s.created_at.isoformat(),
        "updated_at": s.updated_at.isoformat(),
        "title": s.title,
    }


def _message_to_dict(m: Message) -> dict:
    return {
        "id": m.id,
        "created_at": m.created_at.isoformat(),
        "chat_id": m.chat_id,
        "role": m.role,
        "content": m.content,
        "type": m.type,
        "image_url": m.image_url,
    }


async def _chat_id_from_body(request: Request) -> str | None:
    raw = await request.body()
    if not raw.strip():
        return None
    try:
        body = json.loads(raw)
    except json.JSONDecodeError:
        raise RequestError("Invalid JSON in request body")
    chat_id = body.get("chatId") if isinstance(body, dict) else None
    if chat_id is not None and not isinstance(chat_id, str):
        raise RequestError("chatId must be a string")
    return chat_id


@router.api_route("/get-chat-history", methods=["GET", "POST"])
async def get_chat_history(
    request: Request,
    chatId: str | None = None,
    store: ConversationStore = Depends(get_store),
):
    chat_id = chatId
    if not chat_id and request.method == "POST":
        chat_id = await _chat_id_from_body(request)

    try:
        if chat_id:
            messages = store.list_messages(chat_id)
            return {
                "success": True,
                "chatId": chat_id,
                "messages": [_message_to_dict(m) for m in messages],
            }

        sessions = store.list_sessions(settings.history_session_limit)
        return {"success": True, "sessions": [_session_to_dict(s) for s in sessions]}
    except SQLAlchemyError as e:
        logger.error(f"Failed to load chat history (chat {chat_id}): {e}")
        raise RequestError("Failed to load chat history", status_code=500)
