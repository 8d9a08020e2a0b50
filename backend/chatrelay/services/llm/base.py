"""Abstract LLM provider interface. All providers must implement this."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterator


class UpstreamError(Exception):
    """The language-model provider could not serve the request."""

    kind = "generic"


class UpstreamConnectionError(UpstreamError):
    kind = "network"


class UpstreamTimeoutError(UpstreamError):
    kind = "timeout"


class UpstreamAuthError(UpstreamError):
    kind = "authentication"


class UpstreamStatusError(UpstreamError):
    def __init__(self, status_code: int, detail: str = ""):
        super().__init__(f"Upstream returned {status_code}: {detail[:300]}")
        self.status_code = status_code
        self.detail = detail


class UpstreamPolicyError(UpstreamStatusError):
    """The prompt was rejected by the provider's content policy."""


@dataclass
class ImageResult:
    url: str
    revised_prompt: str | None = None


class UpstreamStream(ABC):
    """An opened upstream SSE response. Must be closed with ``aclose()``."""

    @abstractmethod
    def iter_bytes(self) -> AsyncIterator[bytes]:
        """Yield raw body chunks as they arrive. Raises ``UpstreamError``."""
        ...

    @abstractmethod
    async def aclose(self) -> None:
        ...


class BaseLLMProvider(ABC):
    @abstractmethod
    async def open_completion_stream(self, prompt: str) -> UpstreamStream:
        """Start a streaming completion for a single user prompt.

        Raises ``UpstreamError`` if the stream cannot be opened (network,
        timeout, credentials, non-2xx response).
        """
        ...

    @abstractmethod
    async def generate_image(self, prompt: str) -> ImageResult:
        """Generate one image for ``prompt``."""
        ...
