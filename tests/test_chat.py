"""Tests for personas, directory context and the SessionStore."""

from __future__ import annotations

import os
from datetime import UTC, datetime

import pytest

from rbchat.chat.context import CONTEXT_HEADER, build_context_messages, collect_files
from rbchat.chat.models import (
    AssistantTurn,
    ImagePart,
    Message,
    MessageKind,
    Session,
    ToolCall,
    ToolResult,
    Usage,
)
from rbchat.chat.persona import BUILTIN_PERSONAS, Persona, load_personas, resolve_persona
from rbchat.chat.storage import SessionStore, default_session_name, validate_session_name
from rbchat.errors import SessionIOError

# ---------------------------------------------------------------------------
# Personas
# ---------------------------------------------------------------------------


def test_builtin_rust_persona() -> None:
    rust = resolve_persona("rust")
    assert rust.system_prompt.startswith("You are an experienced Rust developer")
    assert rust.file_types == ["rs", "toml", "md"]


def test_persona_matches_extension_or_full_name() -> None:
    persona = Persona(name="p", system_prompt="x", file_types=["rs", "Makefile"])
    assert persona.matches("main.rs")
    assert persona.matches("Makefile")
    assert not persona.matches("mainrs")
    assert not persona.matches("main.py")


def test_personas_file_adds_and_overrides(tmp_path) -> None:
    path = tmp_path / "personas.toml"
    path.write_text(
        """
[[personas]]
name = "go"
chat_prompt = "You are an experienced Go developer."
file_types = ["go", "mod"]

[[personas]]
name = "rust"
system_prompt = "You review Rust code."
file_types = ["rs"]
"""
    )

    personas = load_personas(path)

    assert personas["go"].system_prompt == "You are an experienced Go developer."
    assert personas["rust"].system_prompt == "You review Rust code."
    assert set(BUILTIN_PERSONAS) <= set(personas)


def test_missing_personas_file_gives_builtins(tmp_path) -> None:
    assert load_personas(tmp_path / "absent.toml") == BUILTIN_PERSONAS


def test_broken_personas_file(tmp_path) -> None:
    path = tmp_path / "personas.toml"
    path.write_text("[[personas]\nname = ")
    with pytest.raises(ValueError, match="Cannot read personas file"):
        load_personas(path)


def test_persona_without_prompt_rejected(tmp_path) -> None:
    path = tmp_path / "personas.toml"
    path.write_text('[[personas]]\nname = "empty"\n')
    with pytest.raises(ValueError, match="Invalid persona"):
        load_personas(path)


def test_unknown_persona() -> None:
    with pytest.raises(ValueError, match="Unknown persona 'cobol'"):
        resolve_persona("cobol")


# ---------------------------------------------------------------------------
# Directory context
# ---------------------------------------------------------------------------


@pytest.fixture
def project(tmp_path):
    root = tmp_path / "proj"
    (root / "pkg").mkdir(parents=True)
    (root / "pkg" / "core.py").write_text("def core(): ...\n")
    (root / "README.md").write_text("# Project\n")
    (root / "image.png").write_bytes(b"\x89PNG")
    (root / ".hidden.py").write_text("secret = 1\n")
    (root / "node_modules").mkdir()
    (root / "node_modules" / "dep.py").write_text("x = 1\n")
    (root / "generated").mkdir()
    (root / "generated" / "out.py").write_text("y = 2\n")
    (root / "notes_local.md").write_text("mine\n")
    (root / ".gitignore").write_text("# comment\ngenerated/\n*_local.md\n")
    return root


def test_collect_files_respects_persona_and_ignores(project, persona: Persona) -> None:
    files = collect_files(project, persona)
    assert [p.relative_to(project).as_posix() for p in files] == ["README.md", "pkg/core.py"]


def test_no_directories_no_context(persona: Persona) -> None:
    assert build_context_messages([], persona) == []


def test_context_messages(project, persona: Persona) -> None:
    messages = build_context_messages([project], persona, cwd=project.parent)

    assert messages[0].text == CONTEXT_HEADER
    assert all(m.info.kind is MessageKind.CONTEXT for m in messages)
    assert [m.info.origin for m in messages[1:]] == ["proj/README.md", "proj/pkg/core.py"]
    assert messages[2].text == "Filename: proj/pkg/core.py\nContent:\ndef core(): ...\n\n"


def test_missing_context_directory_is_skipped(tmp_path, persona: Persona) -> None:
    messages = build_context_messages([tmp_path / "gone"], persona)
    assert [m.text for m in messages] == [CONTEXT_HEADER]


def test_unreadable_context_file_is_skipped(tmp_path, persona: Persona) -> None:
    (tmp_path / "bad.py").write_bytes(b"\xff\xfe\x00")
    (tmp_path / "good.py").write_text("ok = True\n")

    messages = build_context_messages([tmp_path], persona, cwd=tmp_path)

    assert [m.info.origin for m in messages[1:]] == ["good.py"]


# ---------------------------------------------------------------------------
# SessionStore
# ---------------------------------------------------------------------------


@pytest.fixture
def sessions(tmp_path) -> SessionStore:
    return SessionStore(tmp_path / "sessions")


def _session(name: str) -> Session:
    return Session(
        name=name,
        persona_name="rust",
        messages=[
            Message.system("persona"),
            Message.user("hello"),
            Message.assistant(AssistantTurn(text="hi there")),
        ],
    )


def test_save_and_load_round_trip(sessions: SessionStore) -> None:
    path = sessions.save(_session("demo"))

    assert path == sessions.directory / "demo.json"
    loaded = sessions.load("demo")
    assert loaded.persona_name == "rust"
    assert [m.text for m in loaded.messages] == ["persona", "hello", "hi there"]
    assert [p.name for p in sessions.directory.iterdir()] == ["demo.json"]


def test_round_trip_keeps_every_message_field(sessions: SessionStore) -> None:
    msgs = [
        Message.system("persona"),
        Message.system("Filename: a.py", kind=MessageKind.CONTEXT, origin="a.py"),
        Message.system("Rust ownership", kind=MessageKind.KNOWLEDGE, origin="rust.md", score=0.82),
        Message.user("what is this?", [ImagePart(data="aGk=", media_type="image/png")]),
        Message.assistant(
            AssistantTurn(
                text="Let me look.",
                tool_calls=[ToolCall(id="c1", name="read_file", arguments={"file_path": "a.py"})],
                usage=Usage(prompt_tokens=12, completion_tokens=4),
                model="fake-1",
            ),
            persona_name="rust",
        ),
        Message.tool(ToolResult(id="c1", output='{"error": "missing"}', is_error=True)),
        Message.assistant(AssistantTurn(text="The file is missing.")),
    ]
    sessions.save(Session(name="demo", persona_name="rust", messages=msgs))

    loaded = sessions.load("demo")

    assert loaded.messages == msgs
    assert loaded.messages[3].images[0].data == "aGk="
    assert loaded.messages[5].info.is_error is True


def test_save_overwrites(sessions: SessionStore) -> None:
    sessions.save(_session("demo"))
    updated = _session("demo")
    updated.messages.append(Message.user("more"))
    sessions.save(updated)

    assert len(sessions.load("demo").messages) == 4


def test_load_missing(sessions: SessionStore) -> None:
    with pytest.raises(SessionIOError, match="Session not found: nope"):
        sessions.load("nope")


def test_load_corrupt(sessions: SessionStore) -> None:
    sessions.directory.mkdir(parents=True)
    (sessions.directory / "broken.json").write_text('{"name": "broken"')
    with pytest.raises(SessionIOError, match="corrupt"):
        sessions.load("broken")


@pytest.mark.parametrize("name", ["", "  ", ".hidden", "a/b", "..\\up"])
def test_invalid_session_names(name: str) -> None:
    with pytest.raises(SessionIOError, match="Invalid session name"):
        validate_session_name(name)


def test_list_oldest_first_and_continue_last(sessions: SessionStore) -> None:
    for i, name in enumerate(["b", "a", "c"]):
        path = sessions.save(_session(name))
        os.utime(path, (1_700_000_000 + i, 1_700_000_000 + i))

    assert [s.name for s in sessions.list()] == ["b", "a", "c"]
    assert sessions.continue_last().name == "c"


def test_continue_last_without_sessions(sessions: SessionStore) -> None:
    assert sessions.list() == []
    assert sessions.continue_last() is None


def test_default_session_name() -> None:
    assert default_session_name(datetime(2024, 3, 9, 14, 5, 7, tzinfo=UTC)) == "20240309-140507"
