"""Tool framework — import tool modules here to register them."""

# Import tool modules so their @registry.tool() decorators execute.
from rbchat.tools import file_tools  # noqa: F401
from rbchat.tools.registry import registry

__all__ = ["registry"]
