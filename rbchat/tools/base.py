"""Base types for the tool-calling framework."""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel


@dataclass
class ToolOutput:
    """What a tool handler returns.

    The executor turns it into a ``ToolResult`` keyed by the call id.
    Plain-text results (diffs, file listings) go in ``text``; structured
    results in ``data``.
    """

    data: dict[str, Any] | None = None
    text: str | None = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None

    def to_content(self) -> str:
        """Serialize as the text sent back to the backend."""
        if self.error:
            return json.dumps({"error": self.error})
        if self.text is not None:
            return self.text
        return json.dumps(self.data or {})


@dataclass(frozen=True)
class ToolSpec:
    """Provider-neutral tool definition offered to a backend.

    Each backend adapter maps this onto its own wire format.
    """

    name: str
    description: str
    parameters: dict[str, Any]


class ToolParams(BaseModel):
    """Argument model of a tool.

    Field descriptions end up in the JSON schema each backend receives.
    """


class BaseTool(ABC):
    """A tool with its own state, registered through ``ToolRegistry.register``."""

    name: str = ""
    description: str = ""
    category: str = ""
    params_model: type[ToolParams] | None = None

    @abstractmethod
    async def execute(self, **kwargs: Any) -> ToolOutput:
        """Run with arguments already validated against ``params_model``."""
