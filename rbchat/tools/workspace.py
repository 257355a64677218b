"""Workspace — the directory tree file tools are allowed to touch."""

from __future__ import annotations

import logging
import os
import tempfile
from datetime import UTC, datetime
from pathlib import Path

logger = logging.getLogger(__name__)

MAX_FILE_SIZE = 5 * 1024 * 1024  # 5 MB per written or read file


class Workspace:
    """Confines tool file access to one root directory.

    The root is the active directory context of the chat (the first
    ``--directory`` given, or the current directory). Paths from the
    backend may be relative to the root or absolute inside it; anything
    resolving outside is rejected.

    ``diff_command`` optionally names an external viewer that
    ``show_diff`` opens with the original file and the proposed content.

    All methods are synchronous and raise ``ValueError`` or ``OSError``,
    which the registry turns into error results.
    """

    def __init__(self, root: Path | str, diff_command: str = "") -> None:
        self._root = Path(root).resolve()
        self.diff_command = diff_command

    @property
    def root(self) -> Path:
        return self._root

    # -- Path helpers ----------------------------------------------------------

    def resolve(self, name: str | Path) -> Path:
        """Resolve *name* to an absolute path inside the workspace root.

        Raises ``ValueError`` on empty paths and on paths that escape the
        root (``..`` components, absolute paths elsewhere, symlinks out).
        """
        if not str(name).strip():
            msg = "Path must not be empty"
            raise ValueError(msg)
        candidate = Path(name)
        if not candidate.is_absolute():
            candidate = self._root / candidate
        target = candidate.resolve()
        if not target.is_relative_to(self._root):
            msg = f"Path is outside the workspace: {name!s}"
            raise ValueError(msg)
        return target

    def relative(self, path: Path) -> str:
        """Display form of a workspace path."""
        rel = path.relative_to(self._root)
        return str(rel) if str(rel) != "." else "."

    # -- File operations -------------------------------------------------------

    def write(self, name: str, content: str) -> Path:
        """Atomically create or replace a text file.

        The content goes to a temporary file in the target directory first
        and is then renamed over the target, so readers see either the old
        file or the complete new one.
        """
        data = content.encode("utf-8")
        if len(data) > MAX_FILE_SIZE:
            msg = f"File too large: {len(data)} bytes (max {MAX_FILE_SIZE})"
            raise ValueError(msg)

        target = self.resolve(name)
        if target.is_dir():
            msg = f"Path is a directory: {name}"
            raise IsADirectoryError(msg)
        target.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
            if target.exists():
                os.chmod(tmp_name, target.stat().st_mode)
            os.replace(tmp_name, target)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug("Wrote %d bytes to %s", len(data), target)
        return target

    def read(self, name: str) -> str:
        """Read a text file.

        Raises ``FileNotFoundError`` if the file doesn't exist, or
        ``ValueError`` if the file is binary or too large.
        """
        target = self.resolve(name)
        if not target.is_file():
            msg = f"File not found: {name}"
            raise FileNotFoundError(msg)
        if target.stat().st_size > MAX_FILE_SIZE:
            msg = f"File too large to read: {name}"
            raise ValueError(msg)
        try:
            return target.read_text("utf-8")
        except UnicodeDecodeError as exc:
            msg = f"File is binary (not UTF-8 text): {name}"
            raise ValueError(msg) from exc

    def mkdir(self, name: str) -> Path:
        target = self.resolve(name)
        target.mkdir(parents=True, exist_ok=True)
        return target

    def list_entries(self, name: str = ".") -> list[dict]:
        """List the direct children of a workspace directory.

        Returns a list of dicts with keys: name, type, size, modified_iso.
        """
        target = self.resolve(name)
        if not target.is_dir():
            msg = f"Not a directory: {name}"
            raise NotADirectoryError(msg)
        entries = []
        for path in sorted(target.iterdir()):
            stat = path.stat()
            entries.append(
                {
                    "name": self.relative(path),
                    "type": "directory" if path.is_dir() else "file",
                    "size": stat.st_size if path.is_file() else None,
                    "modified_iso": datetime.fromtimestamp(stat.st_mtime, tz=UTC).isoformat(),
                }
            )
        return entries
