"""Personas — the system prompt and file types a chat starts with."""

from __future__ import annotations

import logging
import tomllib
from typing import TYPE_CHECKING

from pydantic import AliasChoices, BaseModel, Field, ValidationError

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)


class Persona(BaseModel):
    name: str
    system_prompt: str = Field(validation_alias=AliasChoices("system_prompt", "chat_prompt"))
    file_types: list[str] = Field(default_factory=list)

    def matches(self, filename: str) -> bool:
        """True if *filename* is one of the persona's file names or extensions."""
        return any(filename == ft or filename.endswith(f".{ft}") for ft in self.file_types)


def _developer(name: str, language: str, file_types: list[str]) -> Persona:
    return Persona(
        name=name,
        system_prompt=(
            f"You are an experienced {language} developer assisting a colleague with feature "
            f"development and answering questions related to {language} programming."
        ),
        file_types=file_types,
    )


BUILTIN_PERSONAS: dict[str, Persona] = {
    p.name: p
    for p in (
        _developer("rust", "Rust", ["rs", "toml", "md"]),
        _developer("python", "Python", ["py", "toml", "cfg", "md"]),
        _developer("swift", "Swift", ["swift", "md"]),
        _developer("java", "Java", ["java", "gradle", "xml", "md"]),
        _developer("typescript", "Typescript", ["ts", "tsx", "json", "md"]),
    )
}


def load_personas(path: Path | None = None) -> dict[str, Persona]:
    """Built-in personas plus those defined in a TOML file.

    The file holds ``[[personas]]`` tables with ``name``, ``chat_prompt``
    (or ``system_prompt``) and ``file_types``. File entries override
    built-ins of the same name. A missing file is not an error.
    """
    personas = dict(BUILTIN_PERSONAS)
    if path is None or not path.exists():
        return personas

    try:
        data = tomllib.loads(path.read_text("utf-8"))
    except (OSError, tomllib.TOMLDecodeError) as exc:
        msg = f"Cannot read personas file {path}: {exc}"
        raise ValueError(msg) from exc

    for raw in data.get("personas", []):
        try:
            persona = Persona.model_validate(raw)
        except ValidationError as exc:
            msg = f"Invalid persona in {path}: {exc}"
            raise ValueError(msg) from exc
        personas[persona.name] = persona
    logger.debug("Loaded %d persona(s) from %s", len(data.get("personas", [])), path)
    return personas


def resolve_persona(name: str, path: Path | None = None) -> Persona:
    """Look up a persona by name. Raises ``ValueError`` if it doesn't exist."""
    personas = load_personas(path)
    if name not in personas:
        msg = f"Unknown persona {name!r}. Available: {', '.join(sorted(personas))}"
        raise ValueError(msg)
    return personas[name]
