"""OpenAI-compatible provider over plain HTTP.

The chat completion body is consumed as raw bytes so the relay can decode the
SSE framing itself and forward tokens as soon as they arrive.
"""

import asyncio
import logging
import time
from typing import AsyncIterator

import httpx

from chatrelay.core.config import settings
from chatrelay.services.llm.base import (
    BaseLLMProvider,
    ImageResult,
    UpstreamAuthError,
    UpstreamConnectionError,
    UpstreamError,
    UpstreamPolicyError,
    UpstreamStatusError,
    UpstreamStream,
    UpstreamTimeoutError,
)

logger = logging.getLogger(__name__)

_POLICY_MARKERS = ("content_policy_violation", "safety system")


def _status_error(status_code: int, detail: str) -> UpstreamError:
    if status_code in (401, 403):
        return UpstreamAuthError(f"Upstream rejected credentials ({status_code})")
    if status_code == 400 and any(marker in detail.lower() for marker in _POLICY_MARKERS):
        return UpstreamPolicyError(status_code, detail)
    return UpstreamStatusError(status_code, detail)


def _transport_error(e: Exception) -> UpstreamError:
    if isinstance(e, (httpx.TimeoutException, asyncio.TimeoutError)):
        return UpstreamTimeoutError(f"Upstream timed out: {e!r}")
    return UpstreamConnectionError(f"Upstream unreachable: {e!r}")


class HTTPXUpstreamStream(UpstreamStream):
    def __init__(self, client: httpx.AsyncClient, response: httpx.Response, deadline: float):
        self._client = client
        self._response = response
        self._deadline = deadline

    async def iter_bytes(self) -> AsyncIterator[bytes]:
        """Yield body chunks until the body ends or the call's deadline passes.

        httpx read timeouts restart on every chunk, so a body of keep-alive
        comments would never time out on its own.
        """
        chunks = self._response.aiter_bytes()
        try:
            while True:
                remaining = self._deadline - time.monotonic()
                if remaining <= 0:
                    raise UpstreamTimeoutError("Upstream stream exceeded its deadline")
                try:
                    chunk = await asyncio.wait_for(chunks.__anext__(), timeout=remaining)
                except StopAsyncIteration:
                    return
                yield chunk
        except (httpx.HTTPError, asyncio.TimeoutError) as e:
            raise _transport_error(e) from e

    async def aclose(self) -> None:
        try:
            await self._response.aclose()
        finally:
            await self._client.aclose()


class OpenAIProvider(BaseLLMProvider):
    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._api_key = settings.openai_api_key if api_key is None else api_key
        self._base_url = (base_url or settings.openai_base_url).rstrip("/")
        self._timeout = timeout or settings.upstream_timeout
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        if not self._api_key:
            raise UpstreamAuthError(
                "OpenAI API key not configured. Set CHATRELAY_OPENAI_API_KEY."
            )
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            transport=self._transport,
        )

    async def open_completion_stream(self, prompt: str) -> UpstreamStream:
        headers = self._headers()
        client = self._client()
        request = client.build_request(
            "POST",
            "/chat/completions",
            headers=headers,
            json={
                "model": settings.chat_model,
                "messages": [{"role": "user", "content": prompt}],
                "stream": True,
            },
        )
        # One ceiling for the whole call, from send until the last body byte.
        deadline = time.monotonic() + self._timeout

        try:
            response = await asyncio.wait_for(
                client.send(request, stream=True), timeout=self._timeout
            )
        except (httpx.HTTPError, asyncio.TimeoutError) as e:
            await client.aclose()
            raise _transport_error(e) from e

        if not response.is_success:
            detail = ""
            try:
                body = await response.aread()
                detail = body.decode("utf-8", errors="replace")
            except httpx.HTTPError as e:
                logger.warning(f"Could not read upstream error body: {e!r}")
            finally:
                await response.aclose()
                await client.aclose()
            raise _status_error(response.status_code, detail)

        logger.info(f"Streaming completion from {settings.chat_model}")
        return HTTPXUpstreamStream(client, response, deadline)

    async def generate_image(self, prompt: str) -> ImageResult:
        headers = self._headers()
        async with self._client() as client:
            try:
                resp = await client.post(
                    "/images/generations",
                    headers=headers,
                    json={
                        "model": settings.image_model,
                        "prompt": prompt,
                        "n": 1,
                        "size": settings.image_size,
                        "quality": settings.image_quality,
                    },
                )
            except httpx.HTTPError as e:
                raise _transport_error(e) from e

            if not resp.is_success:
                raise _status_error(resp.status_code, resp.text)

            try:
                data = resp.json()["data"][0]
                return ImageResult(url=data["url"], revised_prompt=data.get("revised_prompt"))
            except (ValueError, KeyError, IndexError, TypeError) as e:
                raise UpstreamError(f"Unexpected image response: {e!r}") from e
