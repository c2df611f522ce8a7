"""SQLite-backed chunk and embedding store."""

from __future__ import annotations

import hashlib
import json
import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Sequence

import numpy as np

from beri.errors import CorpusError, EmbeddingDimensionError
from beri.ingestion.chunker import default_corpus_path, load_document, parse_document
from beri.models import Chunk, ChunkMetadata

LOGGER = logging.getLogger(__name__)

EmbedFn = Callable[[str], Sequence[float]]
ProgressFn = Callable[[int, int], None]


def _sha256_text(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


class SQLiteChunkStore:
    """Persistence layer for chunk text, metadata and embeddings.

    The store is populated once per corpus version and read many times after.
    """

    def __init__(self, db_path: Path, *, dimension: int | None = None) -> None:
        self.db_path = Path(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._conn.execute("PRAGMA synchronous=NORMAL;")
        self._ensure_schema()
        self._expected_dimension = dimension
        stored = self._get_meta("dimension")
        self.dimension = dimension if dimension is not None else (int(stored) if stored else None)

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    def close(self) -> None:
        self._conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        try:
            yield self._conn
            self._conn.commit()
        except Exception:
            self._conn.rollback()
            raise

    def _ensure_schema(self) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS chunks (
                    id TEXT PRIMARY KEY,
                    chunk_index INTEGER NOT NULL UNIQUE,
                    content TEXT NOT NULL,
                    source TEXT NOT NULL,
                    section TEXT NOT NULL,
                    embedding BLOB,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS meta (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
                """
            )

    def _get_meta(self, key: str) -> Optional[str]:
        row = self._conn.execute("SELECT value FROM meta WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    def _set_meta(self, conn: sqlite3.Connection, key: str, value: str) -> None:
        conn.execute(
            "INSERT INTO meta(key, value) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
            (key, value),
        )

    @property
    def corpus_version(self) -> Optional[str]:
        """SHA-256 of the corpus the stored chunks were built from."""
        return self._get_meta("corpus_sha256")

    def count(self) -> int:
        return int(self._conn.execute("SELECT COUNT(*) FROM chunks").fetchone()[0])

    def has(self) -> bool:
        """True when at least one chunk is stored and every stored chunk is embedded."""
        row = self._conn.execute(
            "SELECT COUNT(*) AS total, COUNT(embedding) AS embedded FROM chunks"
        ).fetchone()
        return row["total"] > 0 and row["total"] == row["embedded"]

    def _row_to_chunk(self, row: sqlite3.Row) -> Chunk:
        embedding = None
        if row["embedding"] is not None:
            vector = np.frombuffer(row["embedding"], dtype="float32")
            embedding = tuple(float(value) for value in vector)
        return Chunk(
            id=row["id"],
            content=row["content"],
            metadata=ChunkMetadata(
                source=row["source"],
                section=row["section"],
                chunk_index=row["chunk_index"],
            ),
            embedding=embedding,
        )

    def all(self) -> List[Chunk]:
        """Every stored chunk in chunking order."""
        rows = self._conn.execute(
            "SELECT id, chunk_index, content, source, section, embedding FROM chunks "
            "ORDER BY chunk_index"
        ).fetchall()
        return [self._row_to_chunk(row) for row in rows]

    def get(self, chunk_id: str) -> Optional[Chunk]:
        row = self._conn.execute(
            "SELECT id, chunk_index, content, source, section, embedding FROM chunks WHERE id = ?",
            (chunk_id,),
        ).fetchone()
        return self._row_to_chunk(row) if row else None

    @staticmethod
    def _validate_dimension(chunks: Sequence[Chunk], expected: int | None) -> int | None:
        for chunk in chunks:
            if chunk.embedding is None:
                continue
            size = len(chunk.embedding)
            if expected is None:
                expected = size
            elif size != expected:
                raise EmbeddingDimensionError(expected, size, chunk.id)
        return expected

    def _insert(self, conn: sqlite3.Connection, chunk: Chunk) -> None:
        blob = None
        if chunk.embedding is not None:
            blob = sqlite3.Binary(np.asarray(chunk.embedding, dtype="float32").tobytes())
        conn.execute(
            """
            INSERT INTO chunks(id, chunk_index, content, source, section, embedding)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                chunk_index = excluded.chunk_index,
                content = excluded.content,
                source = excluded.source,
                section = excluded.section,
                embedding = excluded.embedding
            """,
            (
                chunk.id,
                chunk.chunk_index,
                chunk.content,
                chunk.metadata.source,
                chunk.metadata.section,
                blob,
            ),
        )

    def put(self, chunk: Chunk) -> None:
        self.dimension = self._validate_dimension([chunk], self.dimension)
        with self.transaction() as conn:
            self._insert(conn, chunk)
            if self.dimension is not None:
                self._set_meta(conn, "dimension", str(self.dimension))

    def clear(self) -> None:
        with self.transaction() as conn:
            conn.execute("DELETE FROM chunks")
            conn.execute("DELETE FROM meta")
        self.dimension = self._expected_dimension

    def replace_all(self, chunks: Sequence[Chunk], *, corpus_version: str | None = None) -> None:
        """Swap the stored corpus for ``chunks`` in a single transaction."""
        if not chunks:
            raise CorpusError("Refusing to store an empty corpus")
        dimension = self._validate_dimension(chunks, self._expected_dimension)

        with self.transaction() as conn:
            conn.execute("DELETE FROM chunks")
            conn.execute("DELETE FROM meta")
            for chunk in chunks:
                self._insert(conn, chunk)
            if dimension is not None:
                self._set_meta(conn, "dimension", str(dimension))
            if corpus_version is not None:
                self._set_meta(conn, "corpus_sha256", corpus_version)
        self.dimension = dimension

    def load_all(
        self,
        embed_fn: EmbedFn,
        on_progress: ProgressFn | None = None,
        *,
        document: str | None = None,
        chunks: Sequence[Chunk] | None = None,
    ) -> int:
        """Chunk, embed and persist the corpus unless it is already present.

        Returns the number of chunks embedded, 0 when the store was already populated.
        """
        if self.has():
            LOGGER.debug("Chunk store already populated, skipping embedding")
            return 0

        version = None
        if chunks is None:
            if document is None:
                document = load_document(default_corpus_path())
            version = _sha256_text(document)
            chunks = parse_document(document)
        if not chunks:
            raise CorpusError("Corpus produced no chunks")

        total = len(chunks)
        embedded: List[Chunk] = []
        for current, chunk in enumerate(chunks, start=1):
            vector = np.asarray(embed_fn(chunk.content), dtype="float32").ravel()
            enriched = chunk.with_embedding(vector)
            embedded.append(enriched)
            if on_progress is not None:
                on_progress(current, total)

        self.replace_all(embedded, corpus_version=version)
        LOGGER.info("Stored %d embedded chunks (dimension %s)", total, self.dimension)
        return total

    def save_bundle(self, path: Path, *, include_embeddings: bool = True) -> int:
        """Write the stored chunks as a JSON bundle."""
        chunks = self.all()
        payload = [chunk.to_dict(include_embedding=include_embeddings) for chunk in chunks]
        Path(path).write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
        return len(chunks)

    def load_bundle(
        self,
        path: Path,
        embed_fn: EmbedFn | None = None,
        on_progress: ProgressFn | None = None,
    ) -> int:
        """Replace the stored corpus with the chunks of a JSON bundle.

        Content-only bundles are embedded with ``embed_fn`` first.
        """
        path = Path(path)
        try:
            raw = path.read_text(encoding="utf-8")
            records = json.loads(raw)
            chunks = [Chunk.from_dict(record) for record in records]
        except (OSError, ValueError, KeyError, TypeError) as exc:
            raise CorpusError(f"Cannot read chunk bundle {path}: {exc}") from exc
        if not chunks:
            raise CorpusError(f"Chunk bundle {path} is empty")

        missing = [chunk for chunk in chunks if not chunk.has_embedding]
        if missing:
            if embed_fn is None:
                raise CorpusError(
                    f"Chunk bundle {path} has {len(missing)} chunks without embeddings "
                    "and no embedding function was given"
                )
            total = len(chunks)
            enriched: List[Chunk] = []
            for current, chunk in enumerate(chunks, start=1):
                if not chunk.has_embedding:
                    vector = np.asarray(embed_fn(chunk.content), dtype="float32").ravel()
                    chunk = chunk.with_embedding(vector)
                enriched.append(chunk)
                if on_progress is not None:
                    on_progress(current, total)
            chunks = enriched

        self.replace_all(chunks, corpus_version=_sha256_text(raw))
        LOGGER.info("Loaded %d chunks from %s", len(chunks), path)
        return len(chunks)
