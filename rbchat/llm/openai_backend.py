"""OpenAI chat completions adapter."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

import openai

from rbchat.chat.models import AssistantTurn, ImagePart, Role, TextPart, ToolCall, Usage
from rbchat.errors import BackendProtocolError, BackendTimeoutError, NetworkError
from rbchat.llm.base import SendOptions, UsageStats, check_content, with_timeout

if TYPE_CHECKING:
    from collections.abc import Sequence

    from rbchat.chat.models import Message
    from rbchat.tools.base import ToolSpec

logger = logging.getLogger(__name__)


def _content(message: Message) -> str | list[dict[str, Any]]:
    if not message.images:
        return message.text
    parts: list[dict[str, Any]] = []
    for part in message.content:
        if isinstance(part, TextPart):
            parts.append({"type": "text", "text": part.text})
        elif isinstance(part, ImagePart):
            url = f"data:{part.media_type};base64,{part.base64_data()}"
            parts.append({"type": "image_url", "image_url": {"url": url}})
    return parts


def to_wire_messages(messages: Sequence[Message]) -> list[dict[str, Any]]:
    """Convert conversation messages to the chat completions format."""
    wire: list[dict[str, Any]] = []
    for message in messages:
        if message.role is Role.TOOL:
            wire.append({
                "role": "tool",
                "tool_call_id": message.info.tool_call_id,
                "content": message.text,
            })
        elif message.role is Role.ASSISTANT:
            entry: dict[str, Any] = {"role": "assistant", "content": message.text or None}
            if message.tool_calls:
                entry["tool_calls"] = [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {"name": call.name, "arguments": json.dumps(call.arguments)},
                    }
                    for call in message.tool_calls
                ]
            wire.append(entry)
        else:
            wire.append({"role": str(message.role), "content": _content(message)})
    return wire


def to_wire_tools(tools: Sequence[ToolSpec]) -> list[dict[str, Any]]:
    return [
        {
            "type": "function",
            "function": {"name": t.name, "description": t.description, "parameters": t.parameters},
        }
        for t in tools
    ]


def parse_response(response: Any, model: str) -> AssistantTurn:
    """Normalize a chat completion into an AssistantTurn."""
    try:
        choice = response.choices[0].message
    except (AttributeError, IndexError, TypeError) as exc:
        msg = f"Malformed response from {model}: no choices"
        raise BackendProtocolError(msg) from exc

    calls: list[ToolCall] = []
    for raw in choice.tool_calls or []:
        try:
            arguments = json.loads(raw.function.arguments or "{}")
        except json.JSONDecodeError as exc:
            msg = f"Malformed arguments for tool call '{raw.function.name}': {raw.function.arguments!r}"
            raise BackendProtocolError(msg) from exc
        if not isinstance(arguments, dict):
            msg = f"Tool call '{raw.function.name}' arguments are not an object: {raw.function.arguments!r}"
            raise BackendProtocolError(msg)
        calls.append(ToolCall(id=raw.id, name=raw.function.name, arguments=arguments))

    text = choice.content or None
    if text is None and not calls:
        msg = f"Empty response from {model}"
        raise BackendProtocolError(msg)

    usage = Usage()
    if response.usage is not None:
        usage = Usage(
            prompt_tokens=response.usage.prompt_tokens or 0,
            completion_tokens=response.usage.completion_tokens or 0,
        )
    return AssistantTurn(text=text, tool_calls=calls, usage=usage, model=getattr(response, "model", None) or model)


class OpenAIBackend:
    """Chat backend for the OpenAI API (or any compatible endpoint)."""

    def __init__(self, api_key: str, client: openai.AsyncOpenAI | None = None, base_url: str | None = None) -> None:
        # Retries happen only when the user asks again.
        self._client = client or openai.AsyncOpenAI(api_key=api_key, base_url=base_url, max_retries=0)
        self.stats = UsageStats()

    async def send(self, messages: Sequence[Message], options: SendOptions) -> AssistantTurn:
        check_content(messages, options)
        kwargs: dict[str, Any] = {
            "model": options.model.api_name,
            "messages": to_wire_messages(messages),
            "max_completion_tokens": options.max_tokens,
        }
        if options.tools:
            kwargs["tools"] = to_wire_tools(options.tools)

        logger.info("Dispatching %d messages to %s", len(messages), options.model.api_name)
        try:
            response = await with_timeout(self._client.chat.completions.create(**kwargs), options)
        except openai.APITimeoutError as exc:
            msg = f"Request to '{options.model.name}' timed out"
            raise BackendTimeoutError(msg) from exc
        except openai.APIConnectionError as exc:
            msg = f"Could not reach OpenAI: {exc}"
            raise NetworkError(msg) from exc
        except openai.APIStatusError as exc:
            msg = f"OpenAI returned HTTP {exc.status_code}: {exc.message}"
            raise NetworkError(msg) from exc
        except openai.OpenAIError as exc:
            raise BackendProtocolError(str(exc)) from exc

        turn = parse_response(response, options.model.api_name)
        self.stats.record(turn.usage)
        return turn
