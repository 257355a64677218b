"""Tests for command-line parsing and wiring."""

import pytest
from fakes import BagOfWordsEmbedder, FakeBackend, text_turn, tool_turn

from rbchat import main as cli
from rbchat.config import Settings
from rbchat.knowledge.store import KnowledgeStore
from rbchat.llm.openai_backend import OpenAIBackend
from rbchat.tools.executor import DISABLED_MESSAGE


def test_chat_defaults() -> None:
    args = cli.build_parser().parse_args(["chat"])
    assert args.message == []
    assert args.directory == []
    assert args.knowledge is None
    assert args.tools is False
    assert args.continue_last is False


def test_chat_options() -> None:
    args = cli.build_parser().parse_args(
        [
            "chat", "-p", "python", "-m", "ollama:llama3.2", "-d", "src", "-d", "docs",
            "-i", "a.png", "-k", "5", "-t", "-s", "demo", "hi", "there",
        ]
    )
    assert args.persona == "python"
    assert args.model == "ollama:llama3.2"
    assert args.directory == ["src", "docs"]
    assert args.image == ["a.png"]
    assert args.knowledge == 5
    assert args.tools is True
    assert args.save == "demo"
    assert args.message == ["hi", "there"]


def test_knowledge_flag_without_count() -> None:
    args = cli.build_parser().parse_args(["chat", "-k"])
    assert args.knowledge == 0


def test_wish_requires_message() -> None:
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args(["wish"])
    args = cli.build_parser().parse_args(["wish", "--dry-run", "add", "tests"])
    assert args.dry_run is True
    assert args.message == ["add", "tests"]


def test_knowledge_subcommands() -> None:
    args = cli.build_parser().parse_args(["knowledge", "search", "-k", "3", "ownership", "rules"])
    assert (args.knowledge_command, args.k, args.query) == ("search", 3, ["ownership", "rules"])
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args(["knowledge"])


def test_knowledge_init_arguments() -> None:
    args = cli.build_parser().parse_args(["knowledge", "init"])
    assert (args.knowledge_command, args.persona, args.directory) == ("init", None, ".")


def test_build_orchestrator(tmp_path) -> None:
    src = tmp_path / "src"
    src.mkdir()
    (src / "lib.rs").write_text("pub fn f() {}\n")
    config = Settings(data_dir=tmp_path / "data", openai_api_key="sk-test", knowledge_top_k=4)
    args = cli.build_parser().parse_args(["chat", "-d", str(src), "-k"])

    orch = cli.build_orchestrator(args, config, model_name="gpt-4o", tools_enabled=False, offer_tools=False)

    assert isinstance(orch.backend, OpenAIBackend)
    assert orch.persona.name == "rust"
    assert orch.use_knowledge is True
    assert orch.knowledge_top_k == 4
    assert orch.executor.workspace.root == src.resolve()
    assert orch.executor.enabled is False
    assert [m.info.origin for m in orch.conversation][-1].endswith("lib.rs")


async def test_run_wish_dry_run_executes_nothing(tmp_path, monkeypatch, capsys) -> None:
    backend = FakeBackend([
        tool_turn(("c1", "create_file", {"file_path": "new.rs", "file_content": "x"})),
        text_turn("Dry run finished."),
    ])
    monkeypatch.setattr(cli, "build_backend", lambda model, config: backend)
    config = Settings(data_dir=tmp_path / "data")
    args = cli.build_parser().parse_args(["wish", "--dry-run", "-d", str(tmp_path), "create new.rs"])

    assert await cli.run_wish(args, config) == 0

    assert capsys.readouterr().out.strip() == "Dry run finished."
    assert not (tmp_path / "new.rs").exists()
    tool_result = backend.calls[1][0][-1]
    assert DISABLED_MESSAGE in tool_result.text


def test_main_reports_errors(tmp_path, monkeypatch, capsys) -> None:
    monkeypatch.setattr(cli, "settings", Settings(data_dir=tmp_path, default_persona="cobol"))
    assert cli.main(["chat", "hello"]) == 1
    assert "Unknown persona 'cobol'" in capsys.readouterr().err


def test_list_personas(capsys) -> None:
    assert cli.list_personas(Settings()) == 0
    out = capsys.readouterr().out
    assert "* rust" in out
    assert "python" in out


class _Terminal:
    def isatty(self) -> bool:
        return True


async def test_ctrl_c_at_prompt_ends_chat_and_saves(tmp_path, monkeypatch, capsys) -> None:
    backend = FakeBackend([text_turn("Hi!")])
    monkeypatch.setattr(cli, "build_backend", lambda model, config: backend)
    lines = iter(["hello"])

    def fake_input(prompt: str) -> str:
        try:
            return next(lines)
        except StopIteration:
            raise KeyboardInterrupt from None

    monkeypatch.setattr("builtins.input", fake_input)
    monkeypatch.setattr("sys.stdin", _Terminal())
    config = Settings(data_dir=tmp_path / "data")
    args = cli.build_parser().parse_args(["chat", "-d", str(tmp_path), "-s", "demo"])

    assert await cli.run_chat(args, config) == 0

    out = capsys.readouterr().out
    assert "Hi!" in out
    assert "Session saved as 'demo'." in out
    assert (config.sessions_dir / "demo.json").is_file()


async def test_knowledge_init_indexes_persona_files(tmp_path, monkeypatch, capsys) -> None:
    project = tmp_path / "project"
    (project / "src").mkdir(parents=True)
    (project / "src" / "lib.rs").write_text("pub fn borrow() {}\n")
    (project / "Cargo.toml").write_text('[package]\nname = "demo"\n')
    (project / "empty.md").write_text("   \n")
    (project / "tool.py").write_text("print('not rust')\n")
    monkeypatch.setattr(cli, "build_embeddings", lambda config: BagOfWordsEmbedder())
    config = Settings(data_dir=tmp_path / "data")
    args = cli.build_parser().parse_args(["knowledge", "init", "-p", "rust", "-d", str(project)])

    assert await cli.run_knowledge(args, config) == 0

    assert "Added 2 chunk(s)" in capsys.readouterr().out
    store = KnowledgeStore(config.knowledge_path, BagOfWordsEmbedder())
    root = project.resolve()
    assert await store.sources() == [str(root / "Cargo.toml"), str(root / "src" / "lib.rs")]


async def test_knowledge_init_requires_directory(tmp_path, monkeypatch) -> None:
    monkeypatch.setattr(cli, "build_embeddings", lambda config: BagOfWordsEmbedder())
    config = Settings(data_dir=tmp_path / "data")
    args = cli.build_parser().parse_args(["knowledge", "init", "-d", str(tmp_path / "missing")])

    with pytest.raises(ValueError, match="Not a directory"):
        await cli.run_knowledge(args, config)
