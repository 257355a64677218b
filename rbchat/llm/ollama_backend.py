"""Ollama adapter — local models over plain HTTP."""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING, Any

import httpx

from rbchat.chat.models import AssistantTurn, Role, ToolCall, Usage
from rbchat.errors import BackendProtocolError, BackendTimeoutError, NetworkError
from rbchat.llm.base import SendOptions, UsageStats, check_content, with_timeout

if TYPE_CHECKING:
    from collections.abc import Sequence

    from rbchat.chat.models import Message
    from rbchat.tools.base import ToolSpec

logger = logging.getLogger(__name__)

DEFAULT_URL = "http://localhost:11434"


def to_wire_messages(messages: Sequence[Message]) -> list[dict[str, Any]]:
    """Convert conversation messages to the /api/chat format."""
    wire: list[dict[str, Any]] = []
    for message in messages:
        entry: dict[str, Any] = {"role": str(message.role), "content": message.text}
        if message.images:
            entry["images"] = [img.base64_data() for img in message.images]
        if message.role is Role.ASSISTANT and message.tool_calls:
            entry["tool_calls"] = [
                {"function": {"name": call.name, "arguments": call.arguments}} for call in message.tool_calls
            ]
        wire.append(entry)
    return wire


def to_wire_tools(tools: Sequence[ToolSpec]) -> list[dict[str, Any]]:
    return [
        {
            "type": "function",
            "function": {"name": t.name, "description": t.description, "parameters": t.parameters},
        }
        for t in tools
    ]


def _call_id() -> str:
    return f"call_{uuid.uuid4().hex[:12]}"


def parse_response(data: Any, model: str) -> AssistantTurn:
    """Normalize an /api/chat reply. Ollama sends no call ids, so they are generated."""
    message = data.get("message") if isinstance(data, dict) else None
    if not isinstance(message, dict):
        msg = f"Malformed response from {model}: {data!r}"
        raise BackendProtocolError(msg)

    calls: list[ToolCall] = []
    for raw in message.get("tool_calls") or []:
        function = raw.get("function") if isinstance(raw, dict) else None
        if not isinstance(function, dict) or not function.get("name"):
            msg = f"Malformed tool call from {model}: {raw!r}"
            raise BackendProtocolError(msg)
        arguments = function.get("arguments") or {}
        if not isinstance(arguments, dict):
            msg = f"Tool call '{function['name']}' arguments are not an object: {arguments!r}"
            raise BackendProtocolError(msg)
        calls.append(ToolCall(id=raw.get("id") or _call_id(), name=function["name"], arguments=arguments))

    text = message.get("content") or None
    if text is None and not calls:
        msg = f"Empty response from {model}"
        raise BackendProtocolError(msg)

    usage = Usage(
        prompt_tokens=data.get("prompt_eval_count") or 0,
        completion_tokens=data.get("eval_count") or 0,
    )
    return AssistantTurn(text=text, tool_calls=calls, usage=usage, model=data.get("model") or model)


class OllamaBackend:
    """Chat backend for a locally running Ollama server."""

    def __init__(self, url: str = DEFAULT_URL, client: httpx.AsyncClient | None = None) -> None:
        self._url = url.rstrip("/")
        self._client = client
        self.stats = UsageStats()

    async def _post(self, payload: dict[str, Any], url: str) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(f"{url}/api/chat", json=payload)
        async with httpx.AsyncClient(timeout=None) as client:
            return await client.post(f"{url}/api/chat", json=payload)

    async def send(self, messages: Sequence[Message], options: SendOptions) -> AssistantTurn:
        check_content(messages, options)
        url = (options.model.url or self._url).rstrip("/")
        payload: dict[str, Any] = {
            "model": options.model.api_name,
            "messages": to_wire_messages(messages),
            "stream": False,
            "options": {"num_predict": options.max_tokens},
        }
        if options.tools:
            payload["tools"] = to_wire_tools(options.tools)

        logger.info("Dispatching %d messages to %s at %s", len(messages), options.model.api_name, url)
        try:
            response = await with_timeout(self._post(payload, url), options)
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            msg = f"Request to '{options.model.name}' timed out"
            raise BackendTimeoutError(msg) from exc
        except httpx.HTTPStatusError as exc:
            msg = f"Ollama returned HTTP {exc.response.status_code}: {exc.response.text[:200]}"
            raise NetworkError(msg) from exc
        except httpx.HTTPError as exc:
            msg = f"Could not reach Ollama at {url}: {exc}"
            raise NetworkError(msg) from exc

        try:
            data = response.json()
        except ValueError as exc:
            msg = f"Ollama sent invalid JSON: {response.text[:200]}"
            raise BackendProtocolError(msg) from exc

        turn = parse_response(data, options.model.api_name)
        self.stats.record(turn.usage)
        return turn
