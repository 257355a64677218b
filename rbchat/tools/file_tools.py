"""File tools — let the backend create, update, diff and list workspace files."""

from __future__ import annotations

import asyncio
import difflib
import logging
import shlex
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import Field

from rbchat.errors import ToolExecutionError
from rbchat.tools.base import ToolOutput, ToolParams
from rbchat.tools.registry import registry

if TYPE_CHECKING:
    from rbchat.tools.workspace import Workspace

logger = logging.getLogger(__name__)

MAX_LISTED_ENTRIES = 500


# -- Param models --------------------------------------------------------------


class CreateFileParams(ToolParams):
    file_path: str = Field(description="The path for the new file, relative to the project directory.")
    file_content: str = Field(description="The content to write to the new file.")


class UpdateFileSectionParams(ToolParams):
    file_path: str = Field(description="The path to the file to update.")
    start_line: int = Field(
        ge=0,
        description="First line to replace (0-based, inclusive).",
    )
    end_line: int = Field(
        ge=0,
        description="Line after the last one to replace (0-based, exclusive).",
    )
    new_content: str = Field(description="The new content that will replace the specified section.")


class CreateDirectoryParams(ToolParams):
    directory_path: str = Field(description="The path where the new directory should be created.")


class ShowDiffParams(ToolParams):
    diff_file: str = Field(description="The path to the original file.")
    diff_content: str = Field(description="The proposed new content of that file.")


class ListDirectoryParams(ToolParams):
    path: str = Field(default=".", description="Directory to list, relative to the project directory.")


class ReadFileParams(ToolParams):
    file_path: str = Field(description="The path of the file to read.")


# -- Helpers -------------------------------------------------------------------


def _require(workspace: Workspace | None) -> Workspace:
    if workspace is None:
        msg = "No workspace configured for file tools"
        raise ToolExecutionError(msg)
    return workspace


def unified_diff(original: str, proposed: str, name: str) -> str:
    """Unified diff of *original* vs *proposed*; empty string when identical."""
    lines = difflib.unified_diff(
        original.splitlines(keepends=True),
        proposed.splitlines(keepends=True),
        fromfile=f"a/{name}",
        tofile=f"b/{name}",
    )
    return "".join(lines)


async def _open_diff_viewer(command: str, original: Path, proposed: str) -> None:
    """Launch the configured external viewer and wait for it to close."""
    with tempfile.NamedTemporaryFile("w", suffix=original.suffix, delete=False) as fh:
        fh.write(proposed)
        proposed_path = Path(fh.name)
    try:
        proc = await asyncio.create_subprocess_exec(
            *shlex.split(command), str(original), str(proposed_path)
        )
        returncode = await proc.wait()
        if returncode != 0:
            logger.warning("Diff viewer '%s' exited with %d", command, returncode)
    finally:
        proposed_path.unlink(missing_ok=True)


# -- Tools ---------------------------------------------------------------------


@registry.tool(
    name="create_file",
    description="Creates a new file with given content at the specified path, or replaces an existing one.",
    category="files",
    params_model=CreateFileParams,
)
async def create_file(
    file_path: str,
    file_content: str,
    workspace: Workspace | None = None,
) -> ToolOutput:
    ws = _require(workspace)
    target = ws.write(file_path, file_content)
    logger.info("Created or updated file %s", target)
    return ToolOutput(data={"written": ws.relative(target), "bytes": len(file_content.encode("utf-8"))})


@registry.tool(
    name="update_file_section",
    description=(
        "Updates a section of a file specified by starting and ending lines with new content. "
        "Lines start_line up to (but not including) end_line are replaced."
    ),
    category="files",
    params_model=UpdateFileSectionParams,
)
async def update_file_section(
    file_path: str,
    start_line: int,
    end_line: int,
    new_content: str,
    workspace: Workspace | None = None,
) -> ToolOutput:
    ws = _require(workspace)
    lines = ws.read(file_path).splitlines()
    if start_line > end_line or end_line > len(lines):
        msg = f"Invalid line range {start_line}..{end_line} for a file with {len(lines)} lines"
        raise ToolExecutionError(msg)

    lines[start_line:end_line] = new_content.splitlines()
    target = ws.write(file_path, "\n".join(lines) + "\n")
    logger.info("Updated file '%s' from lines %d to %d", target, start_line, end_line)
    return ToolOutput(data={"updated": ws.relative(target), "start_line": start_line, "end_line": end_line})


@registry.tool(
    name="create_directory",
    description="Creates a new directory at the specified path.",
    category="files",
    params_model=CreateDirectoryParams,
)
async def create_directory(directory_path: str, workspace: Workspace | None = None) -> ToolOutput:
    ws = _require(workspace)
    target = ws.mkdir(directory_path)
    logger.info("Created directory %s", target)
    return ToolOutput(data={"created": ws.relative(target)})


@registry.tool(
    name="show_diff",
    description=(
        "Shows the diff between an existing file and the newly generated content of that file "
        "so the user can review the change before it is applied."
    ),
    category="files",
    params_model=ShowDiffParams,
)
async def show_diff(diff_file: str, diff_content: str, workspace: Workspace | None = None) -> ToolOutput:
    ws = _require(workspace)
    target = ws.resolve(diff_file)
    original = ws.read(diff_file) if target.exists() else ""
    name = ws.relative(target)

    if ws.diff_command:
        await _open_diff_viewer(ws.diff_command, target, diff_content)

    diff = unified_diff(original, diff_content, name)
    return ToolOutput(text=diff or f"No differences for {name}.")


@registry.tool(
    name="list_directory",
    description="Lists files and subdirectories of a directory inside the project directory.",
    category="files",
    params_model=ListDirectoryParams,
)
async def list_directory(path: str = ".", workspace: Workspace | None = None) -> ToolOutput:
    ws = _require(workspace)
    entries = ws.list_entries(path)
    truncated = len(entries) > MAX_LISTED_ENTRIES
    return ToolOutput(
        data={
            "path": path,
            "entries": entries[:MAX_LISTED_ENTRIES],
            "count": len(entries),
            "truncated": truncated,
        }
    )


@registry.tool(
    name="read_file",
    description="Reads a text file inside the project directory.",
    category="files",
    params_model=ReadFileParams,
)
async def read_file(file_path: str, workspace: Workspace | None = None) -> ToolOutput:
    ws = _require(workspace)
    return ToolOutput(text=ws.read(file_path))
