"""Backend contract shared by all provider adapters."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol, TypeVar

from rbchat.errors import BackendTimeoutError, UnsupportedContentError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Sequence

    from rbchat.chat.models import AssistantTurn, Message, Usage
    from rbchat.llm.models import ModelConfig
    from rbchat.tools.base import ToolSpec

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class SendOptions:
    """Per-request settings for a backend call."""

    model: ModelConfig
    timeout: float = 30.0
    tools: list[ToolSpec] = field(default_factory=list)
    vision: bool = False
    max_tokens: int = 4096


@dataclass
class UsageStats:
    """Token counts of the last call and the running totals."""

    last_prompt_tokens: int = 0
    last_completion_tokens: int = 0
    total_prompt_tokens: int = 0
    total_completion_tokens: int = 0
    calls: int = 0

    def record(self, usage: Usage) -> None:
        self.last_prompt_tokens = usage.prompt_tokens
        self.last_completion_tokens = usage.completion_tokens
        self.total_prompt_tokens += usage.prompt_tokens
        self.total_completion_tokens += usage.completion_tokens
        self.calls += 1

    def summary(self) -> str:
        return (
            f"Last call: {self.last_prompt_tokens} prompt + {self.last_completion_tokens} completion tokens\n"
            f"Overall ({self.calls} calls): {self.total_prompt_tokens} prompt + "
            f"{self.total_completion_tokens} completion tokens"
        )


class ChatBackend(Protocol):
    """Anything that can answer a conversation with an AssistantTurn.

    Implementations raise a ``BackendError`` subclass on failure and never
    return a partial turn.
    """

    stats: UsageStats

    async def send(self, messages: Sequence[Message], options: SendOptions) -> AssistantTurn: ...


def check_content(messages: Sequence[Message], options: SendOptions) -> None:
    """Reject image content for non-vision requests before anything is sent."""
    if options.vision:
        return
    for message in messages:
        if message.images:
            msg = f"Model '{options.model.name}' does not accept image content"
            raise UnsupportedContentError(msg)


async def with_timeout(awaitable: Awaitable[T], options: SendOptions) -> T:
    """Await a provider call, mapping an expired deadline to BackendTimeoutError."""
    try:
        return await asyncio.wait_for(awaitable, timeout=options.timeout)
    except TimeoutError as exc:
        if isinstance(exc, BackendTimeoutError):
            raise
        msg = f"Request to '{options.model.name}' timed out after {options.timeout:g}s"
        raise BackendTimeoutError(msg) from exc
