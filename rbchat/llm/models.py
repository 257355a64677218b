"""Model catalog — friendly model names to provider endpoints."""

import logging
from enum import StrEnum

from pydantic import BaseModel

logger = logging.getLogger(__name__)

OLLAMA_PREFIX = "ollama:"


class Provider(StrEnum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    OLLAMA = "ollama"


class ModelConfig(BaseModel):
    """How to reach one model and what it can do."""

    name: str
    api_name: str
    provider: Provider
    url: str | None = None  # endpoint override; provider default when None
    vision: bool = False
    tools: bool = True


MODEL_MAP: dict[str, ModelConfig] = {
    m.name: m
    for m in (
        ModelConfig(name="gpt-4o", api_name="gpt-4o", provider=Provider.OPENAI, vision=True),
        ModelConfig(name="gpt-4o-mini", api_name="gpt-4o-mini", provider=Provider.OPENAI, vision=True),
        ModelConfig(name="gpt-4-turbo", api_name="gpt-4-turbo", provider=Provider.OPENAI, vision=True),
        ModelConfig(name="o1", api_name="o1", provider=Provider.OPENAI, vision=True),
        ModelConfig(name="o1-mini", api_name="o1-mini", provider=Provider.OPENAI, tools=False),
        ModelConfig(name="haiku", api_name="claude-haiku-4-5-20251001", provider=Provider.ANTHROPIC, vision=True),
        ModelConfig(name="sonnet", api_name="claude-sonnet-4-5-20250929", provider=Provider.ANTHROPIC, vision=True),
        ModelConfig(name="llama3.2", api_name="llama3.2", provider=Provider.OLLAMA),
        ModelConfig(name="llama3.2-vision", api_name="llama3.2-vision", provider=Provider.OLLAMA, vision=True, tools=False),
        ModelConfig(name="qwen2.5-coder", api_name="qwen2.5-coder", provider=Provider.OLLAMA),
    )
}

# Reverse lookup: API model id → friendly name
FRIENDLY_NAMES: dict[str, str] = {m.api_name: name for name, m in MODEL_MAP.items()}


def resolve_model(name_or_id: str, ollama_url: str | None = None) -> ModelConfig:
    """Resolve a friendly name, an API model id, or ``ollama:<name>``.

    ``ollama:<name>`` describes any locally pulled model; it is assumed to
    support tools but not images. Raises ``ValueError`` for unknown names.
    """
    if name_or_id.startswith(OLLAMA_PREFIX):
        api_name = name_or_id.removeprefix(OLLAMA_PREFIX).strip()
        if not api_name:
            msg = f"Missing model name in {name_or_id!r}"
            raise ValueError(msg)
        return ModelConfig(name=name_or_id, api_name=api_name, provider=Provider.OLLAMA, url=ollama_url)

    model = MODEL_MAP.get(name_or_id) or MODEL_MAP.get(FRIENDLY_NAMES.get(name_or_id, ""))
    if model is None:
        known = ", ".join(sorted(MODEL_MAP))
        msg = f"Unknown model {name_or_id!r}. Known models: {known}, or ollama:<name>"
        raise ValueError(msg)
    if model.provider is Provider.OLLAMA and ollama_url:
        model = model.model_copy(update={"url": ollama_url})
    logger.debug("Resolved model %s → %s (%s)", name_or_id, model.api_name, model.provider)
    return model

