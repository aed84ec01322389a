"""SQLite-backed chunk repository storing embeddings as JSON text."""

from __future__ import annotations

import json
import sqlite3
from contextlib import closing, contextmanager
from pathlib import Path
from typing import TYPE_CHECKING

from levrag.config import config
from levrag.errors import RepositoryError
from levrag.models import Chunk, ChunkMetadata, SourceType

from .base import ChunkRepository, StoredChunk

if TYPE_CHECKING:
    from collections.abc import Iterator

logger = config.get_logger(__name__)

_SELECT_CHUNKS = """
    SELECT content, source_id, source_type, chunk_index, source, chunk_count, embedding
    FROM chunks
    ORDER BY id
"""


class SQLiteChunkRepository(ChunkRepository):
    """Chunk repository persisted in a single SQLite table."""

    backend = "sqlite"

    def __init__(
        self,
        db_path: Path | None = None,
        dimension: int | None = None,
    ) -> None:
        """Open (or create) the chunk table.

        Args:
            db_path: Database file. If None, uses config.CHUNK_STORE_DB_PATH.
            dimension: Expected embedding length. If None, uses
                config.EMBEDDING_DIMENSION.
        """
        super().__init__(dimension)
        self.db_path = Path(db_path if db_path is not None else config.CHUNK_STORE_DB_PATH)
        self.db_path.parent.mkdir(exist_ok=True, parents=True)
        self._create_tables()

    @contextmanager
    def _cursor(self) -> Iterator[sqlite3.Cursor]:
        try:
            with closing(sqlite3.connect(str(self.db_path))) as conn, conn:
                yield conn.cursor()
        except sqlite3.Error as exc:
            logger.exception("SQLite chunk store failure at %s", self.db_path)
            msg = f"Chunk store error: {exc}"
            raise RepositoryError(msg) from exc

    def _create_tables(self) -> None:
        valid_types = ", ".join(f"'{source_type.value}'" for source_type in SourceType)
        with self._cursor() as cursor:
            cursor.execute(f"""
                CREATE TABLE IF NOT EXISTS chunks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    content TEXT NOT NULL,
                    source_id TEXT NOT NULL,
                    source_type TEXT NOT NULL CHECK(source_type IN ({valid_types})),
                    chunk_index INTEGER NOT NULL,
                    source TEXT NOT NULL,
                    chunk_count INTEGER NOT NULL,
                    embedding TEXT,
                    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
                )
            """)
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_chunks_source ON chunks(source)"
            )

    def _store(self, chunks: list[Chunk]) -> None:
        rows = [
            (
                chunk.content,
                chunk.source_id,
                chunk.source_type.value,
                chunk.chunk_index,
                chunk.source,
                chunk.metadata.chunk_count,
                json.dumps(list(chunk.embedding)),
            )
            for chunk in chunks
        ]
        with self._cursor() as cursor:
            cursor.executemany(
                """
                INSERT INTO chunks (
                    content, source_id, source_type, chunk_index,
                    source, chunk_count, embedding
                )
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                rows,
            )

    def _clear(self) -> None:
        with self._cursor() as cursor:
            cursor.execute("DELETE FROM chunks")

    def scan(self) -> Iterator[StoredChunk]:
        with self._cursor() as cursor:
            cursor.execute(_SELECT_CHUNKS)
            rows = cursor.fetchall()

        for content, source_id, source_type, chunk_index, source, chunk_count, raw in rows:
            chunk = Chunk(
                content=content,
                source_id=source_id,
                source_type=SourceType(source_type),
                chunk_index=int(chunk_index),
                metadata=ChunkMetadata(source=source, chunk_count=int(chunk_count)),
            )
            yield StoredChunk(chunk=chunk, raw_embedding=raw)

    def count(self) -> int:
        with self._cursor() as cursor:
            cursor.execute("SELECT COUNT(*) FROM chunks")
            (total,) = cursor.fetchone()
        return int(total)

    def source_breakdown(self) -> dict[str, int]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT source, COUNT(*) FROM chunks
                GROUP BY source
                ORDER BY MIN(id)
                """
            )
            rows = cursor.fetchall()
        return {source: int(total) for source, total in rows}
