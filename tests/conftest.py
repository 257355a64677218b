"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Callable

import pytest
from fakes import BagOfWordsEmbedder, FakeBackend

from rbchat.chat.orchestrator import Orchestrator
from rbchat.chat.persona import Persona
from rbchat.chat.storage import SessionStore
from rbchat.llm.models import ModelConfig, Provider
from rbchat.tools import registry
from rbchat.tools.executor import ToolExecutor
from rbchat.tools.workspace import Workspace

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def workspace(tmp_path) -> Workspace:
    """A Workspace rooted in a fresh project directory."""
    root = tmp_path / "project"
    root.mkdir()
    return Workspace(root)


@pytest.fixture
def persona() -> Persona:
    return Persona(name="tester", system_prompt="You are a test persona.", file_types=["py", "md"])


@pytest.fixture
def model() -> ModelConfig:
    return ModelConfig(name="fake", api_name="fake-1", provider=Provider.OPENAI, vision=False, tools=True)


@pytest.fixture
def embedder() -> BagOfWordsEmbedder:
    return BagOfWordsEmbedder()


@pytest.fixture
def make_orchestrator(
    tmp_path, persona: Persona, model: ModelConfig, workspace: Workspace
) -> Callable[..., Orchestrator]:
    """Factory for an Orchestrator around a FakeBackend.

    Keyword arguments override the Orchestrator defaults; ``tools_enabled``
    controls the executor policy.
    """

    def _make(backend: FakeBackend, *, tools_enabled: bool = True, **kwargs) -> Orchestrator:
        kwargs.setdefault("sessions", SessionStore(tmp_path / "sessions"))
        kwargs.setdefault("executor", ToolExecutor(registry, workspace, enabled=tools_enabled))
        kwargs.setdefault("model", model)
        chosen_model = kwargs.pop("model")
        return Orchestrator(backend, chosen_model, persona, **kwargs)

    return _make
