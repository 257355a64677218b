"""Anthropic Messages API adapter."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import anthropic

from rbchat.chat.models import AssistantTurn, ImagePart, Role, TextPart, ToolCall, Usage
from rbchat.errors import BackendProtocolError, BackendTimeoutError, NetworkError
from rbchat.llm.base import SendOptions, UsageStats, check_content, with_timeout

if TYPE_CHECKING:
    from collections.abc import Sequence

    from rbchat.chat.models import Message
    from rbchat.tools.base import ToolSpec

logger = logging.getLogger(__name__)


def _blocks(message: Message) -> list[dict[str, Any]]:
    if message.role is Role.TOOL:
        return [{
            "type": "tool_result",
            "tool_use_id": message.info.tool_call_id,
            "content": message.text,
            "is_error": message.info.is_error,
        }]

    blocks: list[dict[str, Any]] = []
    for part in message.content:
        if isinstance(part, TextPart):
            blocks.append({"type": "text", "text": part.text})
        elif isinstance(part, ImagePart):
            blocks.append({
                "type": "image",
                "source": {"type": "base64", "media_type": part.media_type, "data": part.base64_data()},
            })
    for call in message.tool_calls:
        blocks.append({"type": "tool_use", "id": call.id, "name": call.name, "input": call.arguments})
    return blocks


def to_wire_messages(messages: Sequence[Message]) -> tuple[str, list[dict[str, Any]]]:
    """Split out the system prompt and convert the rest to Messages API format.

    Only the leading run of system messages (persona and directory context)
    becomes the system prompt. System messages later in the dialogue, such as
    per-turn knowledge, stay in place as user text. Tool results travel inside
    user messages, and consecutive messages of the same wire role are merged
    into one.
    """
    system_parts: list[str] = []
    wire: list[dict[str, Any]] = []
    for message in messages:
        if message.role is Role.SYSTEM and not wire:
            system_parts.append(message.text)
            continue
        role = "assistant" if message.role is Role.ASSISTANT else "user"
        blocks = _blocks(message)
        if wire and wire[-1]["role"] == role:
            wire[-1]["content"].extend(blocks)
        else:
            wire.append({"role": role, "content": blocks})
    return "\n\n".join(system_parts), wire


def to_wire_tools(tools: Sequence[ToolSpec]) -> list[dict[str, Any]]:
    return [{"name": t.name, "description": t.description, "input_schema": t.parameters} for t in tools]


def parse_response(response: Any, model: str) -> AssistantTurn:
    """Normalize a Messages API response into an AssistantTurn."""
    content = getattr(response, "content", None)
    if content is None:
        msg = f"Malformed response from {model}: no content"
        raise BackendProtocolError(msg)

    texts: list[str] = []
    calls: list[ToolCall] = []
    for block in content:
        if block.type == "text":
            texts.append(block.text)
        elif block.type == "tool_use":
            if not isinstance(block.input, dict):
                msg = f"Tool call '{block.name}' input is not an object"
                raise BackendProtocolError(msg)
            calls.append(ToolCall(id=block.id, name=block.name, arguments=block.input))

    text = "".join(texts) or None
    if text is None and not calls:
        msg = f"Empty response from {model}"
        raise BackendProtocolError(msg)

    usage = Usage(
        prompt_tokens=response.usage.input_tokens,
        completion_tokens=response.usage.output_tokens,
    )
    return AssistantTurn(text=text, tool_calls=calls, usage=usage, model=getattr(response, "model", None) or model)


class AnthropicBackend:
    """Chat backend for Claude models."""

    def __init__(self, api_key: str, client: anthropic.AsyncAnthropic | None = None) -> None:
        self._client = client or anthropic.AsyncAnthropic(api_key=api_key, max_retries=0)
        self.stats = UsageStats()

    async def send(self, messages: Sequence[Message], options: SendOptions) -> AssistantTurn:
        check_content(messages, options)
        system, wire = to_wire_messages(messages)
        kwargs: dict[str, Any] = {
            "model": options.model.api_name,
            "max_tokens": options.max_tokens,
            "messages": wire,
        }
        if system:
            kwargs["system"] = system
        if options.tools:
            kwargs["tools"] = to_wire_tools(options.tools)

        logger.info("Dispatching %d messages to %s", len(messages), options.model.api_name)
        try:
            response = await with_timeout(self._client.messages.create(**kwargs), options)
        except anthropic.APITimeoutError as exc:
            msg = f"Request to '{options.model.name}' timed out"
            raise BackendTimeoutError(msg) from exc
        except anthropic.APIConnectionError as exc:
            msg = f"Could not reach Anthropic: {exc}"
            raise NetworkError(msg) from exc
        except anthropic.APIStatusError as exc:
            msg = f"Anthropic returned HTTP {exc.status_code}: {exc.message}"
            raise NetworkError(msg) from exc
        except anthropic.AnthropicError as exc:
            raise BackendProtocolError(str(exc)) from exc

        turn = parse_response(response, options.model.api_name)
        self.stats.record(turn.usage)
        return turn
