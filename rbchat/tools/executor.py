"""Tool executor — turns backend tool calls into tool results."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from rbchat.chat.models import ToolCall, ToolResult
from rbchat.tools.base import ToolOutput

if TYPE_CHECKING:
    from rbchat.tools.registry import ToolRegistry
    from rbchat.tools.workspace import Workspace

logger = logging.getLogger(__name__)

DISABLED_MESSAGE = "Tool execution is disabled for this session."


class ToolExecutor:
    """Runs the tool calls of one assistant turn.

    Calls run sequentially in the order received and every call gets
    exactly one result, so a failing call never hides its siblings. With
    ``enabled=False`` nothing runs and every call is answered with an
    error result.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        workspace: Workspace | None = None,
        *,
        enabled: bool = True,
    ) -> None:
        self.registry = registry
        self.workspace = workspace
        self.enabled = enabled

    async def run(self, calls: list[ToolCall]) -> list[ToolResult]:
        results: list[ToolResult] = []
        for call in calls:
            if not self.enabled:
                logger.info("Tool '%s' skipped: execution disabled", call.name)
                output = ToolOutput(error=DISABLED_MESSAGE)
            else:
                output = await self.registry.execute(call.name, call.arguments, workspace=self.workspace)
            results.append(ToolResult(id=call.id, output=output.to_content(), is_error=not output.success))
        return results
