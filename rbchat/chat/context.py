"""Directory context — source files loaded into the conversation up front."""

from __future__ import annotations

import fnmatch
import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING

from rbchat.chat.models import Message, MessageKind

if TYPE_CHECKING:
    from collections.abc import Iterable

    from rbchat.chat.persona import Persona

logger = logging.getLogger(__name__)

CONTEXT_HEADER = "The following context are the information I need, to assist the user.\nContext:\n"

IGNORED_DIRS = frozenset({"node_modules", "target", "build", "dist", "__pycache__", "venv"})
MAX_CONTEXT_FILE_BYTES = 512 * 1024


def _gitignore_patterns(root: Path) -> list[str]:
    gitignore = root / ".gitignore"
    if not gitignore.is_file():
        return []
    patterns = []
    for line in gitignore.read_text("utf-8", errors="replace").splitlines():
        line = line.strip()
        if line and not line.startswith(("#", "!")):
            patterns.append(line.rstrip("/").lstrip("/"))
    return patterns


def _ignored(rel: str, name: str, patterns: list[str]) -> bool:
    return any(fnmatch.fnmatch(name, p) or fnmatch.fnmatch(rel, p) for p in patterns)


def collect_files(directory: Path, persona: Persona) -> list[Path]:
    """Files under *directory* that match the persona's file types.

    Hidden entries, common build/dependency directories and anything
    matched by the directory's top-level ``.gitignore`` are skipped.
    Results are sorted for a stable context order.
    """
    root = directory.resolve()
    patterns = _gitignore_patterns(root)
    found: list[Path] = []
    for dirpath, dirnames, filenames in os.walk(root):
        current = Path(dirpath)
        rel_dir = current.relative_to(root)
        dirnames[:] = sorted(
            d
            for d in dirnames
            if not d.startswith(".")
            and d not in IGNORED_DIRS
            and not _ignored((rel_dir / d).as_posix(), d, patterns)
        )
        for name in sorted(filenames):
            if name.startswith(".") or not persona.matches(name):
                continue
            if _ignored((rel_dir / name).as_posix(), name, patterns):
                continue
            found.append(current / name)
    return found


def _display_name(path: Path, cwd: Path) -> str:
    try:
        return str(path.relative_to(cwd))
    except ValueError:
        return str(path)


def build_context_messages(
    directories: Iterable[Path | str],
    persona: Persona,
    cwd: Path | None = None,
) -> list[Message]:
    """Context messages for *directories*: a header, then one message per file.

    Returns an empty list when no directories are configured. Files that
    are unreadable, binary or too large are logged and left out.
    """
    dirs = [Path(d) for d in directories]
    if not dirs:
        return []
    base = (cwd or Path.cwd()).resolve()

    messages = [Message.system(CONTEXT_HEADER, kind=MessageKind.CONTEXT)]
    for directory in dirs:
        if not directory.is_dir():
            logger.warning("Context directory not found: %s", directory)
            continue
        for path in collect_files(directory, persona):
            try:
                if path.stat().st_size > MAX_CONTEXT_FILE_BYTES:
                    logger.warning("Skipping large context file %s", path)
                    continue
                content = path.read_text("utf-8")
            except (OSError, UnicodeDecodeError) as exc:
                logger.warning("Skipping context file %s: %s", path, exc)
                continue
            name = _display_name(path, base)
            messages.append(
                Message.system(f"Filename: {name}\nContent:\n{content}\n", kind=MessageKind.CONTEXT, origin=name)
            )
    logger.info("Loaded %d context file(s) from %d director(ies)", len(messages) - 1, len(dirs))
    return messages
