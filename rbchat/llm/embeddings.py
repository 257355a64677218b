"""Embedding services used by the knowledge store."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

import httpx
import openai

from rbchat.errors import EmbeddingError

if TYPE_CHECKING:
    from rbchat.config import Settings

logger = logging.getLogger(__name__)

MAX_INPUT_BYTES = 32_000


class EmbeddingService(Protocol):
    async def embed(self, text: str) -> list[float]: ...


def truncate_utf8(text: str, limit: int = MAX_INPUT_BYTES) -> str:
    """Cut *text* to at most *limit* UTF-8 bytes without splitting a character."""
    data = text.encode("utf-8")
    if len(data) <= limit:
        return text
    return data[:limit].decode("utf-8", errors="ignore")


class OpenAIEmbeddings:
    """OpenAI embeddings (``text-embedding-3-large``, 3072 dimensions by default)."""

    def __init__(
        self,
        api_key: str,
        model: str = "text-embedding-3-large",
        client: openai.AsyncOpenAI | None = None,
    ) -> None:
        self._client = client or openai.AsyncOpenAI(api_key=api_key, max_retries=0)
        self.model = model

    async def embed(self, text: str) -> list[float]:
        try:
            response = await self._client.embeddings.create(model=self.model, input=truncate_utf8(text))
        except openai.OpenAIError as exc:
            msg = f"OpenAI embedding request failed: {exc}"
            raise EmbeddingError(msg) from exc
        if not response.data:
            msg = "OpenAI returned no embedding"
            raise EmbeddingError(msg)
        logger.debug("Embedded %d chars with %s", len(text), self.model)
        return list(response.data[0].embedding)


class OllamaEmbeddings:
    """Embeddings from a local Ollama server (``/api/embed``)."""

    def __init__(
        self,
        model: str = "mxbai-embed-large",
        url: str = "http://localhost:11434",
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.model = model
        self._url = url.rstrip("/")
        self._client = client
        self._timeout = timeout

    async def _post(self, payload: dict) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(f"{self._url}/api/embed", json=payload)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await client.post(f"{self._url}/api/embed", json=payload)

    async def embed(self, text: str) -> list[float]:
        try:
            response = await self._post({"model": self.model, "input": truncate_utf8(text)})
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            msg = f"Ollama embedding request failed: {exc}"
            raise EmbeddingError(msg) from exc

        embeddings = data.get("embeddings") if isinstance(data, dict) else None
        if not embeddings or not isinstance(embeddings[0], list):
            msg = f"Ollama returned no embedding: {data!r}"
            raise EmbeddingError(msg)
        return [float(x) for x in embeddings[0]]


def build_embeddings(settings: Settings) -> EmbeddingService:
    """Pick the embedding service for the configured embedding model."""
    name = settings.embedding_model
    if name.startswith("ollama:"):
        return OllamaEmbeddings(model=name.removeprefix("ollama:"), url=settings.ollama_url)
    return OpenAIEmbeddings(api_key=settings.openai_api_key, model=name)
