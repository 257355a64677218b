"""Tool registry — the catalog of local actions a backend may request."""

from __future__ import annotations

import inspect
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from rbchat.errors import ToolExecutionError, ToolValidationError
from rbchat.tools.base import BaseTool, ToolOutput, ToolParams, ToolSpec

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from rbchat.tools.workspace import Workspace

logger = logging.getLogger(__name__)

_EMPTY_SCHEMA: dict[str, Any] = {"type": "object", "properties": {}}


@dataclass
class ToolDef:
    """A registered tool: its description, argument model and handler."""

    name: str
    description: str
    category: str
    handler: Callable[..., Awaitable[ToolOutput]]
    params_model: type[ToolParams] | None = None
    wants_workspace: bool = False

    @classmethod
    def from_instance(cls, tool: BaseTool) -> ToolDef:
        return cls(
            name=tool.name,
            description=tool.description,
            category=tool.category,
            handler=tool.execute,
            params_model=tool.params_model,
            wants_workspace=_has_parameter(tool.execute, "workspace"),
        )

    def spec(self) -> ToolSpec:
        schema = self.params_model.model_json_schema() if self.params_model else dict(_EMPTY_SCHEMA)
        return ToolSpec(name=self.name, description=self.description, parameters=schema)

    def check(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Validated keyword arguments for the handler."""
        if self.params_model is None:
            return dict(arguments)
        try:
            return self.params_model.model_validate(arguments).model_dump()
        except ValidationError as exc:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'arguments'}: {err['msg']}" for err in exc.errors()
            )
            msg = f"Invalid arguments for '{self.name}': {problems}"
            raise ToolValidationError(msg) from exc


class ToolRegistry:
    """Tools offered to backends, looked up by name when a call comes back.

    Stateless tools register with the decorator::

        @registry.tool(name="read_file", description="Reads a file", category="files",
                       params_model=ReadFileParams)
        async def read_file(file_path: str, workspace: Workspace | None = None) -> ToolOutput:
            ...

    Tools that carry state subclass ``BaseTool`` and go through
    ``register()``. A handler that declares a ``workspace`` parameter gets
    the executor's Workspace passed in.
    """

    def __init__(self) -> None:
        self._tools: dict[str, ToolDef] = {}

    def _add(self, tool_def: ToolDef) -> None:
        if tool_def.name in self._tools:
            logger.warning("Tool '%s' registered twice, keeping the later one", tool_def.name)
        self._tools[tool_def.name] = tool_def

    def tool(
        self,
        *,
        name: str,
        description: str,
        category: str,
        params_model: type[ToolParams] | None = None,
    ) -> Callable:
        """Register the decorated coroutine function as tool *name*."""

        def decorator(fn: Callable[..., Awaitable[ToolOutput]]) -> Callable:
            if not inspect.iscoroutinefunction(fn):
                msg = f"Tool handler '{name}' must be an async function"
                raise TypeError(msg)
            self._add(
                ToolDef(
                    name=name,
                    description=description,
                    category=category,
                    handler=fn,
                    params_model=params_model,
                    wants_workspace=_has_parameter(fn, "workspace"),
                )
            )
            return fn

        return decorator

    def register(self, tool: BaseTool) -> None:
        self._add(ToolDef.from_instance(tool))

    def get(self, name: str) -> ToolDef | None:
        return self._tools.get(name)

    @property
    def names(self) -> list[str]:
        return list(self._tools)

    def get_specs(self) -> list[ToolSpec]:
        """Provider-neutral definitions of every registered tool."""
        return [t.spec() for t in self._tools.values()]

    def validate(self, name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        """Check *arguments* for tool *name* and return the handler kwargs.

        Raises ``ToolValidationError`` for unknown tools and for arguments
        that do not fit the tool's params model.
        """
        tool_def = self._tools.get(name)
        if tool_def is None:
            msg = f"Unknown tool: {name}"
            raise ToolValidationError(msg)
        return tool_def.check(arguments)

    async def execute(
        self,
        name: str,
        arguments: dict[str, Any],
        workspace: Workspace | None = None,
    ) -> ToolOutput:
        """Run one tool call. Never raises: every failure becomes an error ToolOutput."""
        try:
            kwargs = self.validate(name, arguments)
        except ToolValidationError as exc:
            logger.warning("Tool '%s' rejected: %s", name, exc)
            return ToolOutput(error=str(exc))

        tool_def = self._tools[name]
        if workspace is not None and tool_def.wants_workspace:
            kwargs["workspace"] = workspace

        logger.info("Tool '%s' called with %s", name, _shorten(arguments))
        started = time.monotonic()
        try:
            output = await tool_def.handler(**kwargs)
        except (ToolExecutionError, OSError, ValueError) as exc:
            logger.warning("Tool '%s' failed after %.2fs: %s", name, time.monotonic() - started, exc)
            return ToolOutput(error=f"Tool '{name}' failed: {exc}")
        except Exception:
            logger.exception("Tool '%s' crashed after %.2fs", name, time.monotonic() - started)
            return ToolOutput(error=f"Tool '{name}' failed unexpectedly. Check logs for details.")

        if output.success:
            logger.info("Tool '%s' finished in %.2fs", name, time.monotonic() - started)
        else:
            logger.warning("Tool '%s' reported an error: %s", name, output.error)
        return output


def _has_parameter(fn: Callable[..., Any], param_name: str) -> bool:
    return param_name in inspect.signature(fn).parameters


def _shorten(arguments: dict[str, Any], limit: int = 80) -> dict[str, Any]:
    """File contents are cut down for the log line."""
    return {k: (v[:limit] + "...") if isinstance(v, str) and len(v) > limit else v for k, v in arguments.items()}


# File tools register themselves here on import (see rbchat.tools.file_tools).
registry = ToolRegistry()
