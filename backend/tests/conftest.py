"""Shared test fixtures for backend tests."""

import asyncio
import json
from unittest.mock import patch

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine

from chatrelay.core.config import settings
from chatrelay.core.ratelimit import InMemoryCounterStore, RateLimiter, get_rate_limiter
from chatrelay.services.llm import get_llm_provider
from chatrelay.services.llm.base import (
    BaseLLMProvider,
    ImageResult,
    UpstreamConnectionError,
    UpstreamError,
    UpstreamStream,
)
from chatrelay.services.store import ConversationStore, get_store

# In-memory SQLite with StaticPool so all connections (including threads) share one DB
test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


def sse_chunk(content: str) -> bytes:
    """One upstream completion chunk in the provider's framing."""
    return f"data: {json.dumps({'choices': [{'delta': {'content': content}}]})}\n\n".encode()


UPSTREAM_DONE = b"data: [DONE]\n\n"


class KeepAliveBody(httpx.AsyncByteStream):
    """Response body that only ever sends SSE keep-alive comments."""

    def __init__(self, interval: float = 0.01):
        self.interval = interval
        self.closed = False

    async def __aiter__(self):
        while True:
            await asyncio.sleep(self.interval)
            yield b": keep-alive\n\n"

    async def aclose(self) -> None:
        self.closed = True


class UnreadableBody(httpx.AsyncByteStream):
    """Response body whose connection drops on the first read."""

    def __init__(self):
        self.closed = False

    async def __aiter__(self):
        raise httpx.ReadError("connection reset by peer")
        yield b""  # pragma: no cover

    async def aclose(self) -> None:
        self.closed = True


class FakeUpstream(UpstreamStream):
    """Replays canned byte chunks, optionally failing after the last one."""

    def __init__(self, chunks: list[bytes], error: UpstreamError | None = None):
        self.chunks = chunks
        self.error = error
        self.reads = 0
        self.closed = False

    async def iter_bytes(self):
        for chunk in self.chunks:
            self.reads += 1
            yield chunk
        if self.error:
            raise self.error

    async def aclose(self) -> None:
        self.closed = True


class FakeProvider(BaseLLMProvider):
    """Provider double: serves a FakeUpstream or raises ``open_error``."""

    def __init__(self, chunks=None, open_error=None, image_results=None):
        self.chunks = chunks if chunks is not None else [
            sse_chunk("Hello"), sse_chunk(" from"), sse_chunk(" relay"), UPSTREAM_DONE,
        ]
        self.open_error = open_error
        self.image_results = list(image_results or [])
        self.prompts: list[str] = []
        self.image_prompts: list[str] = []
        self.upstreams: list[FakeUpstream] = []

    async def open_completion_stream(self, prompt: str) -> UpstreamStream:
        self.prompts.append(prompt)
        if self.open_error:
            raise self.open_error
        upstream = FakeUpstream(self.chunks)
        self.upstreams.append(upstream)
        return upstream

    async def generate_image(self, prompt: str) -> ImageResult:
        self.image_prompts.append(prompt)
        outcome = self.image_results.pop(0) if self.image_results else UpstreamConnectionError("no result")
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture(autouse=True)
def setup_test_db():
    """Create all tables before each test, drop after."""
    import chatrelay.models.conversation  # noqa: F401 - register models
    SQLModel.metadata.create_all(test_engine)
    yield
    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture(autouse=True)
def no_fallback_delay(monkeypatch):
    monkeypatch.setattr(settings, "fallback_word_delay", 0.0)


@pytest.fixture
def store():
    return ConversationStore(test_engine)


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def client(provider, store):
    """FastAPI TestClient with the store, provider and rate limiter overridden."""
    from chatrelay.main import app

    limiter = RateLimiter(InMemoryCounterStore(), limit=1000, window_seconds=60)
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_llm_provider] = lambda: provider
    app.dependency_overrides[get_rate_limiter] = lambda: limiter

    with patch("chatrelay.core.database.engine", test_engine):
        with TestClient(app) as c:
            yield c

    app.dependency_overrides.clear()
