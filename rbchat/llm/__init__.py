"""Backend adapters and the factory that picks one per model."""

from __future__ import annotations

from typing import TYPE_CHECKING

from rbchat.llm.anthropic_backend import AnthropicBackend
from rbchat.llm.base import ChatBackend, SendOptions, UsageStats
from rbchat.llm.models import ModelConfig, Provider, resolve_model
from rbchat.llm.ollama_backend import OllamaBackend
from rbchat.llm.openai_backend import OpenAIBackend

if TYPE_CHECKING:
    from rbchat.config import Settings


def build_backend(model: ModelConfig, settings: Settings) -> ChatBackend:
    """Create the adapter that serves *model*."""
    if model.provider is Provider.OPENAI:
        return OpenAIBackend(api_key=settings.openai_api_key, base_url=model.url)
    if model.provider is Provider.ANTHROPIC:
        return AnthropicBackend(api_key=settings.anthropic_api_key)
    return OllamaBackend(url=model.url or settings.ollama_url)


__all__ = [
    "AnthropicBackend",
    "ChatBackend",
    "ModelConfig",
    "OllamaBackend",
    "OpenAIBackend",
    "Provider",
    "SendOptions",
    "UsageStats",
    "build_backend",
    "resolve_model",
]
