"""rbchat entry point."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from rbchat.chat.commands import commands
from rbchat.chat.context import collect_files
from rbchat.chat.models import ImagePart
from rbchat.chat.orchestrator import Orchestrator, run_one_shot
from rbchat.chat.persona import load_personas, resolve_persona
from rbchat.chat.storage import SessionStore
from rbchat.config import Settings, settings
from rbchat.errors import EmbeddingError, RbchatError, SessionIOError
from rbchat.knowledge.store import KnowledgeStore
from rbchat.llm import build_backend, resolve_model
from rbchat.llm.embeddings import build_embeddings
from rbchat.tools import registry
from rbchat.tools.executor import ToolExecutor
from rbchat.tools.workspace import Workspace

if TYPE_CHECKING:
    from rbchat.chat.persona import Persona

logger = logging.getLogger(__name__)

EXIT_COMMANDS = frozenset({"exit", "quit"})


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="rbchat", description="Chat with AI models about your code.")
    parser.add_argument("-v", "--verbose", action="store_true", help="log at INFO level")
    sub = parser.add_subparsers(dest="command", required=True)

    chat = sub.add_parser("chat", help="interactive chat, or one turn when a message is given")
    chat.add_argument("message", nargs="*", help="send this message once and print the answer")
    chat.add_argument("-p", "--persona", help="persona to use (default from settings)")
    chat.add_argument("-m", "--model", help="model name, or ollama:<name>")
    chat.add_argument("-d", "--directory", action="append", default=[], help="add a directory to the context")
    chat.add_argument("-i", "--image", action="append", default=[], help="attach an image to the first message")
    chat.add_argument(
        "-k",
        "--knowledge",
        nargs="?",
        type=int,
        const=0,
        default=None,
        help="augment each message with the top N knowledge entries",
    )
    chat.add_argument("-t", "--tools", action="store_true", help="let the model create and update files")
    chat.add_argument("-c", "--continue", dest="continue_last", action="store_true", help="continue the last session")
    chat.add_argument("-l", "--load", help="load a saved session by name")
    chat.add_argument("-s", "--save", help="name to save the session under on exit")

    wish = sub.add_parser("wish", help="let the model change the project files")
    wish.add_argument("message", nargs="+")
    wish.add_argument("-p", "--persona")
    wish.add_argument("-m", "--model")
    wish.add_argument("-d", "--directory", action="append", default=[])
    wish.add_argument("--dry-run", action="store_true", help="offer tools but do not execute them")

    knowledge = sub.add_parser("knowledge", help="manage the knowledge index")
    ksub = knowledge.add_subparsers(dest="knowledge_command", required=True)
    add = ksub.add_parser("add", help="index files, directories or URLs")
    add.add_argument("sources", nargs="+")
    search = ksub.add_parser("search", help="show the entries closest to a query")
    search.add_argument("query", nargs="+")
    search.add_argument("-k", type=int, default=None, help="number of results")
    init = ksub.add_parser("init", help="index the project files a persona cares about")
    init.add_argument("-p", "--persona", help="persona whose file types are indexed (default from settings)")
    init.add_argument("-d", "--directory", default=".", help="project directory (default: current directory)")
    ksub.add_parser("list", help="list indexed sources")

    sub.add_parser("sessions", help="list saved sessions")
    sub.add_parser("personas", help="list available personas")
    return parser


# -- Wiring --------------------------------------------------------------------


def build_orchestrator(
    args: argparse.Namespace,
    config: Settings,
    *,
    model_name: str,
    tools_enabled: bool,
    offer_tools: bool,
) -> Orchestrator:
    model = resolve_model(model_name, config.ollama_url)
    persona = resolve_persona(args.persona or config.default_persona, config.personas_file)
    directories = [Path(d) for d in args.directory]
    workspace = Workspace(directories[0] if directories else Path.cwd(), diff_command=config.diff_command)

    knowledge_k = getattr(args, "knowledge", None)
    knowledge = None
    if knowledge_k is not None:
        knowledge = KnowledgeStore(config.knowledge_path, build_embeddings(config))

    orchestrator = Orchestrator(
        build_backend(model, config),
        model,
        persona,
        directories=directories,
        executor=ToolExecutor(registry, workspace, enabled=tools_enabled),
        knowledge=knowledge,
        use_knowledge=knowledge is not None,
        knowledge_top_k=knowledge_k or config.knowledge_top_k,
        sessions=SessionStore(config.sessions_dir),
        offer_tools=offer_tools,
        timeout=config.chat_timeout_secs,
        max_tokens=config.max_tokens,
        max_tool_rounds=config.max_tool_rounds,
    )
    orchestrator.setup_context()
    logger.info("Chat ready: model=%s persona=%s", model.name, persona.name)
    return orchestrator


# -- Chat ----------------------------------------------------------------------


async def _run_turn(orchestrator: Orchestrator, text: str, images: list[ImagePart]) -> str | None:
    """Run one turn as a task that Ctrl-C cancels. Returns None when cancelled."""
    loop = asyncio.get_running_loop()
    task = asyncio.create_task(orchestrator.send(text, images))
    with contextlib.suppress(NotImplementedError):
        loop.add_signal_handler(signal.SIGINT, task.cancel)
    try:
        return await task
    except asyncio.CancelledError:
        if asyncio.current_task().cancelling():
            raise
        return None
    finally:
        with contextlib.suppress(NotImplementedError):
            loop.remove_signal_handler(signal.SIGINT)


def _read_line(prompt: str = "> ") -> str | None:
    """Read one line from the terminal. Returns None on EOF or Ctrl-C."""
    previous = signal.signal(signal.SIGINT, signal.default_int_handler)
    try:
        return input(prompt)
    except (EOFError, KeyboardInterrupt):
        print()
        return None
    finally:
        signal.signal(signal.SIGINT, previous)


async def interactive_loop(orchestrator: Orchestrator, images: list[ImagePart]) -> None:
    print("Type /help for commands, exit to quit.")
    pending_images = images
    while True:
        raw = _read_line()
        if raw is None:
            break
        line = raw.strip()
        if not line:
            continue
        if line.lower() in EXIT_COMMANDS:
            break
        if commands.is_command(line):
            print(await commands.dispatch(line, orchestrator))
            continue

        try:
            answer = await _run_turn(orchestrator, line, pending_images)
        except RbchatError as exc:
            print(f"Error: {exc}")
            continue
        if answer is None:
            print("Cancelled.")
            continue
        pending_images = []
        print(answer)


async def run_chat(args: argparse.Namespace, config: Settings) -> int:
    orchestrator = build_orchestrator(
        args,
        config,
        model_name=args.model or config.chat_model,
        tools_enabled=args.tools or config.tools_enabled,
        offer_tools=args.tools or config.tools_enabled,
    )
    if args.load:
        orchestrator.load(args.load)
    elif args.continue_last and orchestrator.continue_last() is None:
        print("No saved session to continue, starting a new one.")

    images = [ImagePart.from_file(p) for p in args.image]
    message = " ".join(args.message)
    if not message and not sys.stdin.isatty():
        message = sys.stdin.read().strip()

    if message:
        print(await run_one_shot(orchestrator, message, images))
        if args.save:
            orchestrator.save(args.save)
        return 0

    await interactive_loop(orchestrator, images)
    if orchestrator.conversation.last_assistant_text():
        try:
            session = orchestrator.save(args.save)
            print(f"Session saved as '{session.name}'.")
        except SessionIOError as exc:
            print(f"Could not save session: {exc}")
    return 0


async def run_wish(args: argparse.Namespace, config: Settings) -> int:
    orchestrator = build_orchestrator(
        args,
        config,
        model_name=args.model or config.wish_model,
        tools_enabled=not args.dry_run,
        offer_tools=True,
    )
    print(await orchestrator.wish(" ".join(args.message)))
    return 0


# -- Knowledge / listings ------------------------------------------------------


async def index_project(store: KnowledgeStore, directory: Path, persona: Persona) -> int:
    """Index every file under *directory* that matches the persona's file types.

    Each file is its own source. Files that cannot be read, are empty or fail
    to embed are logged and skipped. Returns the number of chunks stored.
    """
    total = 0
    for path in collect_files(directory, persona):
        try:
            total += await store.add_text(str(path), path.read_text("utf-8"))
        except (OSError, ValueError, EmbeddingError) as exc:
            logger.warning("Skipping %s: %s", path, exc)
    return total


async def run_knowledge(args: argparse.Namespace, config: Settings) -> int:
    store = KnowledgeStore(config.knowledge_path, build_embeddings(config))
    if args.knowledge_command == "add":
        for source in args.sources:
            count = await store.add(source)
            print(f"Added {count} chunk(s) from {source}")
    elif args.knowledge_command == "init":
        persona = resolve_persona(args.persona or config.default_persona, config.personas_file)
        directory = Path(args.directory)
        if not directory.is_dir():
            msg = f"Not a directory: {directory}"
            raise ValueError(msg)
        count = await index_project(store, directory, persona)
        print(f"Added {count} chunk(s) from {directory} for persona '{persona.name}'")
    elif args.knowledge_command == "search":
        hits = await store.search(" ".join(args.query), args.k or config.knowledge_top_k)
        if not hits:
            print("No knowledge found.")
        for hit in hits:
            print(f"[{hit.score:.3f}] {hit.entry.source} #{hit.entry.chunk_index}")
            print(hit.entry.text)
            print()
    else:
        for source in await store.sources():
            print(source)
        print(f"{await store.count()} chunk(s) indexed")
    return 0


def list_sessions(config: Settings) -> int:
    sessions = SessionStore(config.sessions_dir).list()
    if not sessions:
        print("No saved sessions.")
    for info in sessions:
        print(f"{info.modified:%Y-%m-%d %H:%M:%S}  {info.name}")
    return 0


def list_personas(config: Settings) -> int:
    for name, persona in sorted(load_personas(config.personas_file).items()):
        marker = "*" if name == config.default_persona else " "
        print(f"{marker} {name:<12} {', '.join(persona.file_types)}")
    return 0


async def run(args: argparse.Namespace, config: Settings) -> int:
    if args.command == "chat":
        return await run_chat(args, config)
    if args.command == "wish":
        return await run_wish(args, config)
    if args.command == "knowledge":
        return await run_knowledge(args, config)
    if args.command == "sessions":
        return list_sessions(config)
    return list_personas(config)


def main(argv: list[str] | None = None) -> int:
    """Parse arguments, configure logging and run the selected command."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=logging.INFO if args.verbose else getattr(logging, settings.log_level.upper(), logging.WARNING),
    )
    try:
        return asyncio.run(run(args, settings))
    except KeyboardInterrupt:
        return 130
    except (RbchatError, ValueError, OSError) as exc:
        logger.debug("Command failed", exc_info=True)
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
