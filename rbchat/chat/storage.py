"""SessionStore — saved conversations as one JSON file per session."""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from pydantic import ValidationError

from rbchat.chat.models import Session
from rbchat.errors import SessionIOError

logger = logging.getLogger(__name__)

SESSION_SUFFIX = ".json"


@dataclass(frozen=True)
class SessionInfo:
    name: str
    modified: datetime


def default_session_name(now: datetime | None = None) -> str:
    """Timestamp name used when the user saves without naming the session."""
    return (now or datetime.now(UTC)).strftime("%Y%m%d-%H%M%S")


def validate_session_name(name: str) -> str:
    name = name.strip()
    if not name or name.startswith(".") or "/" in name or "\\" in name or os.sep in name:
        msg = f"Invalid session name: {name!r}"
        raise SessionIOError(msg)
    return name


class SessionStore:
    """Reads and writes ``<sessions_dir>/<name>.json``.

    Writes go to a temporary file in the same directory and are renamed
    into place, so an interrupted save never leaves a truncated session.
    """

    def __init__(self, sessions_dir: Path) -> None:
        self._dir = sessions_dir

    @property
    def directory(self) -> Path:
        return self._dir

    def path_for(self, name: str) -> Path:
        return self._dir / f"{validate_session_name(name)}{SESSION_SUFFIX}"

    def save(self, session: Session) -> Path:
        target = self.path_for(session.name)
        session.updated_at = datetime.now(UTC)
        payload = session.model_dump_json(indent=2)

        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self._dir, prefix=f".{target.stem}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    fh.write(payload)
                    fh.flush()
                    os.fsync(fh.fileno())
                os.replace(tmp_name, target)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            msg = f"Could not save session '{session.name}': {exc}"
            raise SessionIOError(msg) from exc

        logger.info("Saved session '%s' (%d messages) to %s", session.name, len(session.messages), target)
        return target

    def load(self, name: str) -> Session:
        path = self.path_for(name)
        try:
            raw = path.read_text("utf-8")
        except FileNotFoundError as exc:
            msg = f"Session not found: {name}"
            raise SessionIOError(msg) from exc
        except OSError as exc:
            msg = f"Could not read session '{name}': {exc}"
            raise SessionIOError(msg) from exc

        try:
            session = Session.model_validate_json(raw)
        except ValidationError as exc:
            msg = f"Session '{name}' is corrupt: {exc.error_count()} validation error(s)"
            raise SessionIOError(msg) from exc
        logger.info("Loaded session '%s' (%d messages)", name, len(session.messages))
        return session

    def list(self) -> list[SessionInfo]:
        """All saved sessions, oldest first."""
        if not self._dir.is_dir():
            return []
        infos = [
            SessionInfo(
                name=path.stem,
                modified=datetime.fromtimestamp(path.stat().st_mtime, tz=UTC),
            )
            for path in self._dir.glob(f"*{SESSION_SUFFIX}")
            if not path.name.startswith(".")
        ]
        return sorted(infos, key=lambda info: (info.modified, info.name))

    def continue_last(self) -> Session | None:
        """Load the most recently modified session, if any."""
        sessions = self.list()
        if not sessions:
            return None
        return self.load(sessions[-1].name)
