"""Application settings loaded from environment variables."""

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_file() -> str | None:
    if os.getenv("PYTEST_CURRENT_TEST"):
        return None
    return ".env"


class Settings(BaseSettings):
    """rbchat configuration. All values come from environment variables."""

    # Providers
    openai_api_key: str = Field(default="")
    anthropic_api_key: str = Field(default="")
    ollama_url: str = Field(default="http://localhost:11434")

    # Models (friendly names from rbchat.llm.models, or "ollama:<name>")
    chat_model: str = Field(default="gpt-4o")
    wish_model: str = Field(default="gpt-4o")
    embedding_model: str = Field(default="text-embedding-3-large")
    chat_timeout_secs: float = Field(default=30.0)
    max_tokens: int = Field(default=4096)

    # Conversation
    max_tool_rounds: int = Field(default=10)
    knowledge_top_k: int = Field(default=10)
    tools_enabled: bool = Field(default=False)

    # Personas
    default_persona: str = Field(default="rust")
    personas_file: Path | None = Field(default=None)

    # Storage
    data_dir: Path = Field(default=Path.home() / ".rbchat")

    # External diff viewer for show_diff (e.g. "bcomp"); empty = text diff only
    diff_command: str = Field(default="")

    # Logging
    log_level: str = Field(default="WARNING")

    model_config = SettingsConfigDict(env_file=_env_file(), env_file_encoding="utf-8")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        if os.getenv("PYTEST_CURRENT_TEST"):
            return (init_settings,)
        return (init_settings, env_settings, dotenv_settings, file_secret_settings)

    @property
    def sessions_dir(self) -> Path:
        """Directory holding one JSON file per saved chat session."""
        return self.data_dir / "sessions"

    @property
    def knowledge_path(self) -> Path:
        """SQLite file backing the knowledge index."""
        return self.data_dir / "knowledge.db"


settings = Settings()
