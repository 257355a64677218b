"""Tests for the ToolExecutor."""

import json

from rbchat.chat.models import ToolCall
from rbchat.tools import registry
from rbchat.tools.executor import DISABLED_MESSAGE, ToolExecutor
from rbchat.tools.workspace import Workspace


async def test_one_result_per_call_in_order(workspace: Workspace) -> None:
    executor = ToolExecutor(registry, workspace)
    calls = [
        ToolCall(id="c1", name="create_directory", arguments={"directory_path": "src"}),
        ToolCall(id="c2", name="create_file", arguments={"file_path": "src/a.py", "file_content": "a = 1\n"}),
        ToolCall(id="c3", name="list_directory", arguments={"path": "src"}),
    ]

    results = await executor.run(calls)

    assert [r.id for r in results] == ["c1", "c2", "c3"]
    assert not any(r.is_error for r in results)
    listing = json.loads(results[2].output)
    assert [e["name"] for e in listing["entries"]] == ["src/a.py"]


async def test_failure_does_not_stop_siblings(workspace: Workspace) -> None:
    executor = ToolExecutor(registry, workspace)
    calls = [
        ToolCall(id="bad", name="read_file", arguments={"file_path": "missing.txt"}),
        ToolCall(id="unknown", name="format_disk", arguments={}),
        ToolCall(id="good", name="create_file", arguments={"file_path": "ok.txt", "file_content": "ok"}),
    ]

    results = await executor.run(calls)

    assert [(r.id, r.is_error) for r in results] == [("bad", True), ("unknown", True), ("good", False)]
    assert "Unknown tool: format_disk" in results[1].output
    assert (workspace.root / "ok.txt").read_text() == "ok"


async def test_disabled_executor_touches_nothing(workspace: Workspace) -> None:
    executor = ToolExecutor(registry, workspace, enabled=False)
    calls = [
        ToolCall(id="c1", name="create_file", arguments={"file_path": "x.txt", "file_content": "x"}),
        ToolCall(id="c2", name="create_directory", arguments={"directory_path": "d"}),
    ]

    results = await executor.run(calls)

    assert [r.id for r in results] == ["c1", "c2"]
    assert all(r.is_error for r in results)
    assert all(json.loads(r.output) == {"error": DISABLED_MESSAGE} for r in results)
    assert list(workspace.root.iterdir()) == []


async def test_empty_call_list(workspace: Workspace) -> None:
    assert await ToolExecutor(registry, workspace).run([]) == []
