import logging

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from chatrelay.core.config import settings
from chatrelay.core.errors import RequestError
from chatrelay.core.ratelimit import enforce_rate_limit
from chatrelay.models.conversation import TYPE_IMAGE
from chatrelay.services.image import ImageGenerator, validate_image_prompt
from chatrelay.services.llm import get_llm_provider
from chatrelay.services.llm.base import BaseLLMProvider
from chatrelay.services.relay import StreamRelay
from chatrelay.services.store import ConversationStore, get_store

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(enforce_rate_limit)])


class ChatRequest(BaseModel):
    message: str
    chatId: str | None = None


def _validate_message(message: str) -> str:
    message = message.strip()
    if not message:
        raise RequestError("Please enter a message")
    if len(message) > settings.max_message_length:
        raise RequestError(f"Message too long (max {settings.max_message_length} characters)")
    return message


@router.post("/chat-text")
async def chat_text(
    body: ChatRequest,
    store: ConversationStore = Depends(get_store),
    provider: BaseLLMProvider = Depends(get_llm_provider),
):
    """Stream a text completion as SSE frames, ending with ``data: [DONE]``."""
    message = _validate_message(body.message)

    chat_id = store.resolve_session(body.chatId, message)
    # Stored before the upstream call so the prompt survives any upstream failure.
    store.add_user_message(chat_id, message)

    relay = StreamRelay(provider, store, chat_id, word_delay=settings.fallback_word_delay)
    return StreamingResponse(
        relay.stream(message),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Chat-Id": chat_id},
    )


@router.post("/chat-image")
async def chat_image(
    body: ChatRequest,
    store: ConversationStore = Depends(get_store),
    provider: BaseLLMProvider = Depends(get_llm_provider),
):
    prompt = validate_image_prompt(body.message)

    chat_id = store.resolve_session(body.chatId, prompt)
    store.add_user_message(chat_id, prompt, type=TYPE_IMAGE)

    image = await ImageGenerator(provider, store).generate(chat_id, prompt)
    logger.info(f"Generated image for chat {chat_id} after {image.attempts} attempt(s)")
    return {
        "success": True,
        "imageUrl": image.image_url,
        "prompt": image.prompt,
        "revisedPrompt": image.revised_prompt,
        "chatId": image.chat_id,
    }
