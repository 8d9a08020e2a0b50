"""Stream relay - forwards one upstream completion stream to one client.

Each decoded token is re-emitted downstream before the next upstream chunk is
read. The full answer is only written to the conversation store once the
upstream sends ``[DONE]``; a truncated or abandoned stream leaves no assistant
message behind.

If the upstream cannot be opened at all, a locally written explanation is
stored as the assistant reply and played back word by word through the same
frame format, so the client always sees the same kind of stream.
"""

import asyncio
import logging
from contextlib import aclosing
from typing import AsyncIterator

from chatrelay.services.llm.base import BaseLLMProvider, UpstreamError, UpstreamStream
from chatrelay.services.sse import (
    DONE_SENTINEL,
    SSEDecoder,
    encode_content,
    encode_done,
    encode_error,
    extract_delta,
)
from chatrelay.services.store import ConversationStore

logger = logging.getLogger(__name__)

FALLBACK_MESSAGES = {
    "network": (
        "I couldn't reach the language model service right now. "
        "Please check the connection and try again in a moment."
    ),
    "timeout": (
        "The language model service took too long to respond. "
        "Please try again in a moment."
    ),
    "authentication": (
        "The language model service rejected this server's credentials. "
        "Please check the API key configuration."
    ),
    "generic": (
        "Something went wrong while generating a response. "
        "Please try again."
    ),
}

TRUNCATED_STREAM_MESSAGE = "The response was interrupted before it finished."


def fallback_message(error: UpstreamError) -> str:
    return FALLBACK_MESSAGES.get(error.kind, FALLBACK_MESSAGES["generic"])


async def _payloads(upstream: UpstreamStream) -> AsyncIterator[str]:
    decoder = SSEDecoder()
    async for chunk in upstream.iter_bytes():
        for payload in decoder.feed(chunk):
            yield payload
    for payload in decoder.flush():
        yield payload


class StreamRelay:
    """Relays a single completion for one chat session."""

    def __init__(
        self,
        provider: BaseLLMProvider,
        store: ConversationStore,
        chat_id: str,
        word_delay: float = 0.1,
    ):
        self._provider = provider
        self._store = store
        self._chat_id = chat_id
        self._word_delay = word_delay

    async def stream(self, prompt: str) -> AsyncIterator[bytes]:
        """Downstream frames for ``prompt``; the user message is already stored."""
        try:
            upstream = await self._provider.open_completion_stream(prompt)
        except UpstreamError as e:
            logger.warning(f"Upstream unavailable for chat {self._chat_id} ({e.kind}): {e}")
            async for frame in self.replay(fallback_message(e)):
                yield frame
            return

        try:
            async with aclosing(self.relay(upstream)) as frames:
                async for frame in frames:
                    yield frame
        finally:
            await upstream.aclose()

    async def relay(self, upstream: UpstreamStream) -> AsyncIterator[bytes]:
        parts: list[str] = []
        try:
            async with aclosing(_payloads(upstream)) as payloads:
                async for payload in payloads:
                    if payload == DONE_SENTINEL:
                        self._commit("".join(parts))
                        yield encode_done()
                        return

                    content = extract_delta(payload)
                    if content:
                        parts.append(content)
                        yield encode_content(content)
        except UpstreamError as e:
            logger.warning(f"Upstream stream for chat {self._chat_id} failed mid-way: {e}")
        else:
            logger.warning(f"Upstream stream for chat {self._chat_id} ended without [DONE]")

        # Truncated: what was forwarded stays forwarded, nothing is stored.
        yield encode_error(TRUNCATED_STREAM_MESSAGE)

    async def replay(self, text: str) -> AsyncIterator[bytes]:
        """Store ``text`` as the assistant reply and emit it word by word."""
        self._commit(text)
        for i, word in enumerate(text.split(" ")):
            if i:
                await asyncio.sleep(self._word_delay)
            yield encode_content(word if i == 0 else f" {word}")
        yield encode_done()

    def _commit(self, text: str) -> None:
        if not text:
            logger.info(f"Completion for chat {self._chat_id} was empty, nothing stored")
            return
        self._store.add_assistant_message(self._chat_id, text)
