"""KnowledgeStore — embedded text chunks in SQLite, searched by cosine similarity."""

from __future__ import annotations

import asyncio
import json
import logging
import math
import sqlite3
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

import aiosqlite
from pydantic import BaseModel, Field, ValidationError

from rbchat.errors import EmbeddingError, KnowledgeIndexError
from rbchat.knowledge.chunker import chunk_text
from rbchat.knowledge.sources import load_source

if TYPE_CHECKING:
    from rbchat.llm.embeddings import EmbeddingService

logger = logging.getLogger(__name__)

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS knowledge_entries (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL UNIQUE,
    source TEXT NOT NULL,
    chunk_index INTEGER NOT NULL,
    text TEXT NOT NULL,
    embedding TEXT NOT NULL,
    added_at TEXT NOT NULL
)
"""

_CREATE_INDEX = "CREATE INDEX IF NOT EXISTS idx_knowledge_source ON knowledge_entries (source)"


class KnowledgeEntry(BaseModel):
    """One embedded chunk of a source. Never modified after insertion."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    source: str
    chunk_index: int = 0
    text: str
    embedding: list[float]
    added_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


@dataclass
class KnowledgeHit:
    entry: KnowledgeEntry
    score: float


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Cosine of the angle between two vectors; 0.0 when either is all zeros."""
    dot = sum(x * y for x, y in zip(a, b, strict=True))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    if norm == 0:
        return 0.0
    return dot / norm


class KnowledgeStore:
    """Persists knowledge entries in SQLite.

    Adding a source replaces everything previously stored for it, in one
    transaction. Writers are serialized by a lock; searches only ever see
    committed rows. Once the index turns out to be unreadable the store
    reports itself unavailable for the rest of the process.
    """

    def __init__(self, db_path: Path, embedder: EmbeddingService) -> None:
        self._db_path = db_path
        self._embedder = embedder
        self._initialised = False
        self._available = True
        self._write_lock = asyncio.Lock()

    @property
    def available(self) -> bool:
        return self._available

    # -- Internal helpers ------------------------------------------------------

    def _corrupted(self, exc: Exception) -> KnowledgeIndexError:
        self._available = False
        logger.error("Knowledge index %s is unusable: %s", self._db_path, exc)
        msg = f"Knowledge index {self._db_path} is unusable: {exc}"
        return KnowledgeIndexError(msg)

    async def _connect(self) -> aiosqlite.Connection:
        if not self._available:
            msg = f"Knowledge index {self._db_path} is unavailable"
            raise KnowledgeIndexError(msg)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            db = await aiosqlite.connect(str(self._db_path))
        except sqlite3.Error as exc:
            raise self._corrupted(exc) from exc
        if not self._initialised:
            try:
                await db.execute(_CREATE_TABLE)
                await db.execute(_CREATE_INDEX)
                await db.commit()
            except sqlite3.DatabaseError as exc:
                await db.close()
                raise self._corrupted(exc) from exc
            self._initialised = True
        return db

    def _row_to_entry(self, row: tuple) -> KnowledgeEntry:
        _seq, entry_id, source, chunk_index, text, embedding, added_at = row
        try:
            return KnowledgeEntry(
                id=entry_id,
                source=source,
                chunk_index=chunk_index,
                text=text,
                embedding=json.loads(embedding),
                added_at=added_at,
            )
        except (ValueError, TypeError, ValidationError) as exc:
            raise self._corrupted(exc) from exc

    # -- Write -----------------------------------------------------------------

    async def add(self, source: str) -> int:
        """Index a file, directory or URL. Returns the number of chunks stored.

        Every file of a directory is its own source; a file that fails to
        embed is logged and skipped. For a single file or URL the failure
        propagates and the store is left unchanged.
        """
        documents = await load_source(source)
        if len(documents) == 1 and not Path(source).expanduser().is_dir():
            return await self.add_text(documents[0].source, documents[0].text)

        total = 0
        for doc in documents:
            try:
                total += await self.add_text(doc.source, doc.text)
            except EmbeddingError:
                logger.warning("Skipping %s: embedding failed", doc.source, exc_info=True)
        return total

    async def add_text(self, source: str, text: str) -> int:
        """Chunk, embed and store *text* under *source*, replacing older entries."""
        chunks = chunk_text(text)
        if not chunks:
            msg = f"No text to index for {source}"
            raise ValueError(msg)

        # Embed everything first so a failure leaves the store untouched.
        entries = [
            KnowledgeEntry(source=source, chunk_index=i, text=chunk, embedding=await self._embedder.embed(chunk))
            for i, chunk in enumerate(chunks)
        ]

        async with self._write_lock:
            db = await self._connect()
            try:
                await db.execute("DELETE FROM knowledge_entries WHERE source = ?", (source,))
                await db.executemany(
                    """
                    INSERT INTO knowledge_entries (id, source, chunk_index, text, embedding, added_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    [
                        (e.id, e.source, e.chunk_index, e.text, json.dumps(e.embedding), e.added_at.isoformat())
                        for e in entries
                    ],
                )
                await db.commit()
            except sqlite3.DatabaseError as exc:
                await db.rollback()
                raise self._corrupted(exc) from exc
            finally:
                await db.close()

        logger.info("Indexed %s: %d chunk(s)", source, len(entries))
        return len(entries)

    # -- Read ------------------------------------------------------------------

    async def _all_rows(self) -> list[tuple]:
        db = await self._connect()
        try:
            cursor = await db.execute("SELECT * FROM knowledge_entries ORDER BY seq")
            return list(await cursor.fetchall())
        except sqlite3.DatabaseError as exc:
            raise self._corrupted(exc) from exc
        finally:
            await db.close()

    async def search(self, query: str, k: int = 10) -> list[KnowledgeHit]:
        """Return the *k* entries most similar to *query*.

        Sorted by descending cosine similarity; equal scores keep insertion
        order. An empty store returns an empty list without embedding the
        query.
        """
        if k <= 0:
            return []
        rows = await self._all_rows()
        if not rows:
            return []

        query_vec = await self._embedder.embed(query)
        scored: list[tuple[float, int, KnowledgeEntry]] = []
        for row in rows:
            entry = self._row_to_entry(row)
            if len(entry.embedding) != len(query_vec):
                exc = ValueError(
                    f"entry {entry.id} has dimension {len(entry.embedding)}, query has {len(query_vec)}"
                )
                raise self._corrupted(exc)
            scored.append((cosine_similarity(query_vec, entry.embedding), row[0], entry))

        scored.sort(key=lambda item: (-item[0], item[1]))
        return [KnowledgeHit(entry=entry, score=score) for score, _seq, entry in scored[:k]]

    async def count(self) -> int:
        db = await self._connect()
        try:
            cursor = await db.execute("SELECT COUNT(*) FROM knowledge_entries")
            row = await cursor.fetchone()
            return row[0] if row else 0
        except sqlite3.DatabaseError as exc:
            raise self._corrupted(exc) from exc
        finally:
            await db.close()

    async def sources(self) -> list[str]:
        """Distinct sources in the order they were first indexed."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                "SELECT source FROM knowledge_entries GROUP BY source ORDER BY MIN(seq)"
            )
            return [row[0] for row in await cursor.fetchall()]
        except sqlite3.DatabaseError as exc:
            raise self._corrupted(exc) from exc
        finally:
            await db.close()
