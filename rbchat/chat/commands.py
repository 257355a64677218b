"""Slash commands available in the interactive chat loop."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from rbchat.errors import SessionIOError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from rbchat.chat.orchestrator import Orchestrator

    CommandHandler = Callable[[Orchestrator, list[str]], Awaitable[str]]

logger = logging.getLogger(__name__)

DEFAULT_ANSWER_FILE = "last_answer.txt"
DEFAULT_BLOCKS_FILE = "extracted_content.txt"

_FENCE = "```"
_CODE_BLOCK = re.compile(r"```(.*?)```", re.DOTALL)


def _drop_info_line(block: str) -> str:
    return "\n".join(block.splitlines()[1:])


def extract_code_blocks(text: str, greedy: bool = False) -> list[str]:
    """Bodies of the fenced code blocks in *text*, without their info lines.

    In greedy mode everything between the first and the last fence is one
    block. Empty blocks are dropped.
    """
    if greedy:
        start, end = text.find(_FENCE), text.rfind(_FENCE)
        if start == -1 or start >= end:
            return []
        blocks = [_drop_info_line(text[start + len(_FENCE) : end].strip())]
    else:
        blocks = [_drop_info_line(m.group(1)) for m in _CODE_BLOCK.finditer(text)]
    return [b for b in blocks if b.strip()]


@dataclass
class ChatCommand:
    name: str
    help: str
    handler: CommandHandler
    aliases: tuple[str, ...] = ()


class CommandRegistry:
    """Maps ``/name`` to an async handler that returns text for the user."""

    def __init__(self) -> None:
        self._commands: dict[str, ChatCommand] = {}
        self._lookup: dict[str, ChatCommand] = {}

    def command(self, name: str, help: str, aliases: tuple[str, ...] = ()) -> Callable:  # noqa: A002
        def decorator(fn: CommandHandler) -> CommandHandler:
            cmd = ChatCommand(name=name, help=help, handler=fn, aliases=aliases)
            self._commands[name] = cmd
            for key in (name, *aliases):
                self._lookup[key] = cmd
            return fn

        return decorator

    @property
    def commands(self) -> list[ChatCommand]:
        return list(self._commands.values())

    def is_command(self, line: str) -> bool:
        return line.startswith("/")

    async def dispatch(self, line: str, orchestrator: Orchestrator) -> str:
        """Run the command in *line* and return its output."""
        name, *args = line.strip().split()
        cmd = self._lookup.get(name.lstrip("/").lower())
        if cmd is None:
            return f"Unknown command {name}. Type /help for the list of commands."
        logger.debug("Running command /%s %s", cmd.name, args)
        return await cmd.handler(orchestrator, args)


commands = CommandRegistry()


@commands.command("renew", "Start over with only the persona and directory context.", aliases=("refresh",))
async def renew(orchestrator: Orchestrator, args: list[str]) -> str:
    orchestrator.renew()
    return f"Conversation renewed ({len(orchestrator.conversation)} context message(s))."


@commands.command("save", "Save the conversation as a session: /save [name]")
async def save(orchestrator: Orchestrator, args: list[str]) -> str:
    try:
        session = orchestrator.save(args[0] if args else None)
    except SessionIOError as exc:
        return f"Could not save session: {exc}"
    return f"Session saved as '{session.name}'."


@commands.command("save-answer", "Write the last answer to a file: /save-answer [path]")
async def save_answer(orchestrator: Orchestrator, args: list[str]) -> str:
    answer = orchestrator.conversation.last_assistant_text()
    if answer is None:
        return "No assistant answer yet."
    path = Path(args[0] if args else DEFAULT_ANSWER_FILE)
    try:
        path.write_text(answer, encoding="utf-8")
    except OSError as exc:
        return f"Could not write {path}: {exc}"
    return f"Last answer saved to '{path}'."


@commands.command("save-files", "Write the code blocks of the last answer to files: /save-files [greedy] [path]")
async def save_files(orchestrator: Orchestrator, args: list[str]) -> str:
    answer = orchestrator.conversation.last_assistant_text()
    if answer is None:
        return "No assistant answer yet."
    greedy = "greedy" in args
    rest = [a for a in args if a != "greedy"]
    blocks = extract_code_blocks(answer, greedy=greedy)
    if not blocks:
        return "No code blocks in the last answer."

    base = Path(rest[0] if rest else DEFAULT_BLOCKS_FILE)
    if len(blocks) == 1:
        targets = [base]
    else:
        targets = [base.with_name(f"{base.stem}_{i}{base.suffix}") for i in range(1, len(blocks) + 1)]

    written = []
    for target, block in zip(targets, blocks, strict=True):
        try:
            target.write_text(block + "\n", encoding="utf-8")
        except OSError as exc:
            return f"Could not write {target}: {exc}"
        written.append(f"'{target}'")
    logger.info("Saved %d code block(s) from the last answer", len(written))
    return f"Saved {len(written)} code block(s) to {', '.join(written)}."



@commands.command("stats", "Show token usage of the last call and of the whole chat.")
async def stats(orchestrator: Orchestrator, args: list[str]) -> str:
    return orchestrator.stats.summary()


@commands.command("help", "List the available commands.")
async def show_help(orchestrator: Orchestrator, args: list[str]) -> str:
    lines = []
    for cmd in commands.commands:
        aliases = f" (/{', /'.join(cmd.aliases)})" if cmd.aliases else ""
        lines.append(f"/{cmd.name}{aliases} — {cmd.help}")
    lines.append("exit, quit — leave the chat")
    return "\n".join(lines)
