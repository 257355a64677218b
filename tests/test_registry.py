"""Tests for the tool registry."""

import pytest
from pydantic import Field

from rbchat.errors import ToolExecutionError, ToolValidationError
from rbchat.tools import registry as global_registry
from rbchat.tools.base import BaseTool, ToolOutput, ToolParams
from rbchat.tools.registry import ToolRegistry
from rbchat.tools.workspace import Workspace

# -- Fixtures ----------------------------------------------------------------


@pytest.fixture
def reg() -> ToolRegistry:
    """Fresh registry for each test."""
    return ToolRegistry()


# -- Registration ------------------------------------------------------------


def test_register_via_decorator(reg: ToolRegistry) -> None:
    @reg.tool(name="ping", description="Ping", category="test")
    async def ping() -> ToolOutput:
        return ToolOutput(data={"pong": True})

    assert "ping" in reg.names
    assert reg.get("ping").category == "test"


def test_decorator_rejects_sync_function(reg: ToolRegistry) -> None:
    with pytest.raises(TypeError, match="must be an async function"):

        @reg.tool(name="bad", description="Bad", category="test")
        def bad() -> ToolOutput:
            return ToolOutput()


def test_register_class_based_tool(reg: ToolRegistry) -> None:
    class Echo(BaseTool):
        name = "echo"
        description = "Echo text back"
        category = "custom"

        async def execute(self, **kwargs) -> ToolOutput:
            return ToolOutput(text="echo")

    reg.register(Echo())
    assert "echo" in reg.names
    assert reg.get("echo").description == "Echo text back"


def test_builtin_file_tools_registered() -> None:
    names = set(global_registry.names)
    assert {
        "create_file",
        "update_file_section",
        "create_directory",
        "show_diff",
        "list_directory",
        "read_file",
    } <= names


# -- Specs -------------------------------------------------------------------


def test_specs_without_params(reg: ToolRegistry) -> None:
    @reg.tool(name="simple", description="Simple tool", category="test")
    async def simple() -> ToolOutput:
        return ToolOutput()

    [spec] = reg.get_specs()
    assert spec.name == "simple"
    assert spec.description == "Simple tool"
    assert spec.parameters == {"type": "object", "properties": {}}


def test_specs_with_params(reg: ToolRegistry) -> None:
    class Params(ToolParams):
        query: str = Field(description="Search query")
        limit: int = Field(default=10, description="Max results")

    @reg.tool(name="search", description="Search things", category="test", params_model=Params)
    async def search(query: str, limit: int = 10) -> ToolOutput:
        return ToolOutput()

    [spec] = reg.get_specs()
    props = spec.parameters["properties"]
    assert props["query"]["type"] == "string"
    assert props["limit"]["type"] == "integer"
    assert spec.parameters["required"] == ["query"]


# -- Validation --------------------------------------------------------------


def test_validate_unknown_tool(reg: ToolRegistry) -> None:
    with pytest.raises(ToolValidationError, match="Unknown tool: nope"):
        reg.validate("nope", {})


def test_validate_reports_field(reg: ToolRegistry) -> None:
    class Params(ToolParams):
        count: int = Field(description="A number")

    @reg.tool(name="strict", description="Strict", category="test", params_model=Params)
    async def strict(count: int) -> ToolOutput:
        return ToolOutput()

    with pytest.raises(ToolValidationError, match="Invalid arguments for 'strict': count"):
        reg.validate("strict", {"count": "many"})


# -- Execution ---------------------------------------------------------------


async def test_execute_with_params(reg: ToolRegistry) -> None:
    class AddParams(ToolParams):
        a: int = Field(description="First number")
        b: int = Field(description="Second number")

    @reg.tool(name="add", description="Add", category="test", params_model=AddParams)
    async def add(a: int, b: int) -> ToolOutput:
        return ToolOutput(data={"sum": a + b})

    result = await reg.execute("add", {"a": 3, "b": 7})
    assert result.success
    assert result.data["sum"] == 10


async def test_execute_unknown_tool(reg: ToolRegistry) -> None:
    result = await reg.execute("nonexistent", {})
    assert not result.success
    assert "Unknown tool" in result.error


async def test_execute_injects_workspace(reg: ToolRegistry, workspace: Workspace) -> None:
    @reg.tool(name="where", description="Where", category="test")
    async def where(workspace: Workspace | None = None) -> ToolOutput:
        return ToolOutput(text=str(workspace.root))

    result = await reg.execute("where", {}, workspace=workspace)
    assert result.text == str(workspace.root)


async def test_execute_expected_failure(reg: ToolRegistry) -> None:
    @reg.tool(name="refuse", description="Refuse", category="test")
    async def refuse() -> ToolOutput:
        msg = "not today"
        raise ToolExecutionError(msg)

    result = await reg.execute("refuse", {})
    assert result.error == "Tool 'refuse' failed: not today"


async def test_execute_handler_crash(reg: ToolRegistry) -> None:
    @reg.tool(name="boom", description="Boom", category="test")
    async def boom() -> ToolOutput:
        msg = "kaboom"
        raise RuntimeError(msg)

    result = await reg.execute("boom", {})
    assert not result.success
    assert "failed unexpectedly" in result.error


# -- ToolOutput serialization ------------------------------------------------


def test_output_data_serialization() -> None:
    out = ToolOutput(data={"key": "val"})
    assert out.success
    assert out.to_content() == '{"key": "val"}'


def test_output_text_sent_verbatim() -> None:
    assert ToolOutput(text="--- a/x\n+++ b/x\n").to_content() == "--- a/x\n+++ b/x\n"


def test_output_error_serialization() -> None:
    out = ToolOutput(error="something broke")
    assert not out.success
    assert out.to_content() == '{"error": "something broke"}'
