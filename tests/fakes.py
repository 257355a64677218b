"""Scripted backend, deterministic embedder and reply builders shared by the tests."""

from __future__ import annotations

import re
import zlib
from collections.abc import Sequence

from rbchat.chat.models import AssistantTurn, Message, ToolCall, Usage
from rbchat.errors import EmbeddingError
from rbchat.llm.base import SendOptions, UsageStats, check_content


def text_turn(text: str) -> AssistantTurn:
    return AssistantTurn(text=text, usage=Usage(prompt_tokens=10, completion_tokens=5), model="fake")


def tool_turn(*calls: tuple[str, str, dict]) -> AssistantTurn:
    return AssistantTurn(
        tool_calls=[ToolCall(id=call_id, name=name, arguments=args) for call_id, name, args in calls],
        usage=Usage(prompt_tokens=10, completion_tokens=5),
        model="fake",
    )


class FakeBackend:
    """Scripted backend: returns (or raises) the queued replies in order.

    Every call records a copy of the messages and the options it was given.
    Once the script is exhausted the last reply repeats.
    """

    def __init__(self, replies: Sequence[AssistantTurn | BaseException] = ()) -> None:
        self.replies = list(replies)
        self.calls: list[tuple[list[Message], SendOptions]] = []
        self.stats = UsageStats()

    async def send(self, messages: Sequence[Message], options: SendOptions) -> AssistantTurn:
        check_content(messages, options)
        self.calls.append((list(messages), options))
        index = min(len(self.calls) - 1, len(self.replies) - 1)
        reply = self.replies[index]
        if isinstance(reply, BaseException):
            raise reply
        self.stats.record(reply.usage)
        return reply


_WORD = re.compile(r"[a-z0-9]+")


class BagOfWordsEmbedder:
    """Deterministic embedding: hashed word counts in a fixed-size vector."""

    def __init__(self, dimensions: int = 256, fail_on: str | None = None) -> None:
        self.dimensions = dimensions
        self.fail_on = fail_on
        self.calls: list[str] = []

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.fail_on is not None and self.fail_on in text:
            msg = f"embedding failed for {text[:20]!r}"
            raise EmbeddingError(msg)
        vec = [0.0] * self.dimensions
        for word in _WORD.findall(text.lower()):
            vec[zlib.crc32(word.encode()) % self.dimensions] += 1.0
        return vec
