"""Data models for conversation messages, tool calls and saved sessions."""

from __future__ import annotations

import base64
import mimetypes
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Any, Literal

from pydantic import BaseModel, Field, model_validator

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator


def _now() -> datetime:
    return datetime.now(UTC)


class Role(StrEnum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class MessageKind(StrEnum):
    """Where a message came from. Only ``chat`` messages are actual dialogue."""

    PERSONA = "persona"
    CONTEXT = "context"
    KNOWLEDGE = "knowledge"
    CHAT = "chat"


# -- Content parts -------------------------------------------------------------


class TextPart(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ImagePart(BaseModel):
    """An image attached to a user message.

    Carries either an inline base64 payload (``data``) or a file reference
    (``path``), never both.
    """

    type: Literal["image"] = "image"
    media_type: str = "image/png"
    data: str | None = None
    path: str | None = None

    @model_validator(mode="after")
    def _payload_or_reference(self) -> ImagePart:
        if (self.data is None) == (self.path is None):
            msg = "ImagePart needs exactly one of 'data' or 'path'"
            raise ValueError(msg)
        return self

    @classmethod
    def from_file(cls, path: str | Path) -> ImagePart:
        """Read an image file and embed it, so saved sessions are self-contained."""
        file_path = Path(path)
        media_type = mimetypes.guess_type(file_path.name)[0] or "image/png"
        data = base64.b64encode(file_path.read_bytes()).decode("ascii")
        return cls(media_type=media_type, data=data)

    def base64_data(self) -> str:
        if self.data is not None:
            return self.data
        return base64.b64encode(Path(self.path).read_bytes()).decode("ascii")


ContentPart = Annotated[TextPart | ImagePart, Field(discriminator="type")]


# -- Tool calling --------------------------------------------------------------


class ToolCall(BaseModel):
    """A request from the backend to run a named local tool."""

    id: str
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class ToolResult(BaseModel):
    """Outcome of one ToolCall, keyed by the call id."""

    id: str
    output: str
    is_error: bool = False


class Usage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0


class AssistantTurn(BaseModel):
    """A backend reply normalized across providers."""

    text: str | None = None
    tool_calls: list[ToolCall] = Field(default_factory=list)
    usage: Usage = Field(default_factory=Usage)
    model: str = ""


# -- Messages ------------------------------------------------------------------


class MessageInfo(BaseModel):
    created_at: datetime = Field(default_factory=_now)
    kind: MessageKind = MessageKind.CHAT
    model: str | None = None
    persona_name: str | None = None
    usage: Usage | None = None
    tool_call_id: str | None = None
    is_error: bool = False
    origin: str | None = None  # context filename or knowledge source
    score: float | None = None  # knowledge similarity, display only


class Message(BaseModel):
    """A single conversation entry."""

    role: Role
    content: list[ContentPart] = Field(default_factory=list)
    tool_calls: list[ToolCall] = Field(default_factory=list)
    info: MessageInfo = Field(default_factory=MessageInfo)

    @model_validator(mode="after")
    def _check_shape(self) -> Message:
        if self.tool_calls and self.role is not Role.ASSISTANT:
            msg = f"Only assistant messages can carry tool calls, not {self.role}"
            raise ValueError(msg)
        if any(isinstance(p, TextPart) and not p.text for p in self.content):
            msg = "Text parts must not be empty"
            raise ValueError(msg)
        if self.role is Role.USER and not self.content:
            msg = "User messages need at least one content part"
            raise ValueError(msg)
        if self.role is Role.ASSISTANT and not self.content and not self.tool_calls:
            msg = "Assistant messages need text or tool calls"
            raise ValueError(msg)
        if self.role is Role.TOOL and not self.info.tool_call_id:
            msg = "Tool messages need the originating tool_call_id"
            raise ValueError(msg)
        return self

    # -- Constructors ----------------------------------------------------------

    @classmethod
    def system(
        cls,
        text: str,
        *,
        kind: MessageKind = MessageKind.PERSONA,
        origin: str | None = None,
        score: float | None = None,
    ) -> Message:
        return cls(
            role=Role.SYSTEM,
            content=[TextPart(text=text)],
            info=MessageInfo(kind=kind, origin=origin, score=score),
        )

    @classmethod
    def user(cls, text: str, images: Iterable[ImagePart] = ()) -> Message:
        parts: list[TextPart | ImagePart] = [TextPart(text=text)] if text else []
        parts.extend(images)
        return cls(role=Role.USER, content=parts)

    @classmethod
    def assistant(cls, turn: AssistantTurn, persona_name: str | None = None) -> Message:
        return cls(
            role=Role.ASSISTANT,
            content=[TextPart(text=turn.text)] if turn.text else [],
            tool_calls=list(turn.tool_calls),
            info=MessageInfo(model=turn.model, persona_name=persona_name, usage=turn.usage),
        )

    @classmethod
    def tool(cls, result: ToolResult) -> Message:
        return cls(
            role=Role.TOOL,
            content=[TextPart(text=result.output)] if result.output else [],
            info=MessageInfo(tool_call_id=result.id, is_error=result.is_error),
        )

    # -- Accessors -------------------------------------------------------------

    @property
    def text(self) -> str:
        return "\n".join(p.text for p in self.content if isinstance(p, TextPart))

    @property
    def images(self) -> list[ImagePart]:
        return [p for p in self.content if isinstance(p, ImagePart)]


@dataclass
class Conversation:
    """Append-ordered message history for one chat.

    Messages are never reordered. Tool messages may only answer tool calls
    that are still pending, and no other message may be appended while
    calls are pending.
    """

    messages: list[Message] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(self.messages)

    def __getitem__(self, index: int) -> Message:
        return self.messages[index]

    def append(self, message: Message) -> None:
        pending = self.pending_tool_call_ids()
        if message.role is Role.TOOL:
            if message.info.tool_call_id not in pending:
                msg = f"No pending tool call with id {message.info.tool_call_id!r}"
                raise ValueError(msg)
        elif pending:
            msg = f"Tool calls still awaiting results: {', '.join(pending)}"
            raise ValueError(msg)
        self.messages.append(message)

    def extend(self, messages: Iterable[Message]) -> None:
        for message in messages:
            self.append(message)

    def truncate(self, length: int) -> None:
        """Drop every message after the first *length*."""
        del self.messages[length:]

    def replace(self, messages: Iterable[Message]) -> None:
        """Swap the whole history, e.g. after loading a saved session."""
        self.messages = list(messages)

    def pending_tool_call_ids(self) -> list[str]:
        """Ids of tool calls from the latest assistant message not yet answered."""
        pending: list[str] = []
        for message in self.messages:
            if message.role is Role.ASSISTANT:
                pending = [call.id for call in message.tool_calls]
            elif message.role is Role.TOOL and message.info.tool_call_id in pending:
                pending.remove(message.info.tool_call_id)
        return pending

    def last_assistant_text(self) -> str | None:
        for message in reversed(self.messages):
            if message.role is Role.ASSISTANT and message.text:
                return message.text
        return None

    def has_images(self) -> bool:
        return any(m.images for m in self.messages)

    def snapshot(self) -> list[Message]:
        return list(self.messages)


class Session(BaseModel):
    """A saved conversation transcript."""

    name: str
    persona_name: str
    messages: list[Message] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)
