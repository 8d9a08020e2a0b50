"""LLM provider factory."""

from chatrelay.services.llm.base import BaseLLMProvider


def get_llm_provider() -> BaseLLMProvider:
    """Factory function that returns the OpenAI-compatible provider."""
    from chatrelay.services.llm.openai import OpenAIProvider
    return OpenAIProvider()
