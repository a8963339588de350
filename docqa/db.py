"""SQLite storage for documents and their chunks.

Stores:
- Documents as ingested (immutable)
- Text chunks with metadata, raw embedding blobs and FAISS vector ids
"""
import sqlite3
from pathlib import Path
from typing import Optional, List, Dict, Any, Tuple

import numpy as np
import structlog

from docqa import config

logger = structlog.get_logger()

CHUNK_COLUMNS = """
    c.vector_id, c.id, c.document_id, c.chunk_index, c.total_chunks,
    c.content, c.title, c.source, c.tags, c.created_at
"""


def encode_vector(vector) -> bytes:
    return np.asarray(vector, dtype=np.float32).tobytes()


def decode_vector(blob: bytes) -> np.ndarray:
    return np.frombuffer(blob, dtype=np.float32)


class ChunkDatabase:
    """Row storage behind the vector index."""

    def __init__(self, db_path: Path = None):
        """Initialize the database handle.

        Args:
            db_path: SQLite file path (default from config)
        """
        self.db_path = Path(db_path or config.DB_PATH)

    def get_connection(self) -> sqlite3.Connection:
        """Get a connection with row_factory set to sqlite3.Row and
        foreign keys enforced."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def init_database(self) -> None:
        """Create tables if they don't exist:
        - documents: one row per ingested document
        - chunks: text chunks keyed by FAISS vector id
        """
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = self.get_connection()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS documents (
                    id TEXT PRIMARY KEY,
                    content TEXT NOT NULL,
                    title TEXT,
                    source TEXT,
                    tags TEXT,
                    created_at TEXT NOT NULL
                )
            """)

            # vector_id doubles as the FAISS id, so row order is insertion order
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS chunks (
                    vector_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT NOT NULL UNIQUE,
                    document_id TEXT REFERENCES documents(id) ON DELETE CASCADE,
                    chunk_index INTEGER NOT NULL,
                    total_chunks INTEGER NOT NULL,
                    content TEXT NOT NULL,
                    title TEXT,
                    source TEXT,
                    tags TEXT,
                    embedding BLOB NOT NULL,
                    created_at TEXT
                )
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_chunks_document_id
                ON chunks(document_id)
            """)

            conn.commit()
            logger.info("database_initialized", db_path=str(self.db_path))

        except sqlite3.Error as e:
            conn.rollback()
            logger.error("database_init_failed", error=str(e))
            raise
        finally:
            conn.close()

    def insert_document(
        self,
        document_id: str,
        content: str,
        created_at: str,
        title: Optional[str] = None,
        source: Optional[str] = None,
        tags: Optional[str] = None,
    ) -> None:
        """Insert a document row."""
        conn = self.get_connection()

        try:
            conn.execute("""
                INSERT INTO documents (id, content, title, source, tags, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (document_id, content, title, source, tags, created_at))
            conn.commit()

        except sqlite3.Error as e:
            conn.rollback()
            logger.error("document_insert_failed", error=str(e), document_id=document_id)
            raise
        finally:
            conn.close()

    def get_document(self, document_id: str) -> Optional[Dict[str, Any]]:
        conn = self.get_connection()
        try:
            row = conn.execute(
                "SELECT * FROM documents WHERE id = ?", (document_id,)
            ).fetchone()
            return dict(row) if row else None
        finally:
            conn.close()

    def list_documents(self, limit: int = 100) -> List[Dict[str, Any]]:
        """List documents with their chunk counts, newest first."""
        conn = self.get_connection()
        try:
            rows = conn.execute("""
                SELECT d.id, d.title, d.source, d.tags, d.created_at,
                       LENGTH(d.content) AS content_length,
                       COUNT(c.vector_id) AS chunk_count
                FROM documents d
                LEFT JOIN chunks c ON c.document_id = d.id
                GROUP BY d.id
                ORDER BY d.created_at DESC
                LIMIT ?
            """, (limit,)).fetchall()
            return [dict(row) for row in rows]
        finally:
            conn.close()

    def delete_document(self, document_id: str) -> bool:
        """Delete a document; its chunk rows go with it.

        Returns:
            True if deleted, False if not found
        """
        conn = self.get_connection()

        try:
            cursor = conn.execute("DELETE FROM documents WHERE id = ?", (document_id,))
            conn.commit()
            deleted = cursor.rowcount > 0
            if deleted:
                logger.info("document_deleted", document_id=document_id)
            return deleted

        except sqlite3.Error as e:
            conn.rollback()
            logger.error("document_delete_failed", error=str(e), document_id=document_id)
            raise
        finally:
            conn.close()

    def insert_chunk(
        self,
        chunk_id: str,
        content: str,
        embedding,
        document_id: Optional[str] = None,
        chunk_index: int = 0,
        total_chunks: int = 1,
        title: Optional[str] = None,
        source: Optional[str] = None,
        tags: Optional[str] = None,
        created_at: Optional[str] = None,
    ) -> int:
        """Insert a text chunk.

        Args:
            chunk_id: Chunk identity
            content: The actual text content of the chunk
            embedding: Vector stored as a float32 blob
            document_id: Owning document, if any
            chunk_index: Index of this chunk within its document
            total_chunks: Number of chunks produced in the same ingestion
            title: Display title
            source: Source name (file name, URL, ...)
            tags: Free-form tags
            created_at: ISO timestamp

        Returns:
            The vector id assigned to the chunk
        """
        conn = self.get_connection()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                INSERT INTO chunks (
                    id, document_id, chunk_index, total_chunks, content,
                    title, source, tags, embedding, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                chunk_id,
                document_id,
                chunk_index,
                total_chunks,
                content,
                title,
                source,
                tags,
                encode_vector(embedding),
                created_at,
            ))

            conn.commit()
            return cursor.lastrowid

        except sqlite3.Error as e:
            conn.rollback()
            logger.error("chunk_insert_failed", error=str(e), chunk_id=chunk_id)
            raise
        finally:
            conn.close()

    def get_chunk_vector_id(self, chunk_id: str) -> Optional[int]:
        conn = self.get_connection()
        try:
            row = conn.execute(
                "SELECT vector_id FROM chunks WHERE id = ?", (chunk_id,)
            ).fetchone()
            return row["vector_id"] if row else None
        finally:
            conn.close()

    def delete_chunk(self, vector_id: int) -> None:
        conn = self.get_connection()
        try:
            conn.execute("DELETE FROM chunks WHERE vector_id = ?", (vector_id,))
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            logger.error("chunk_delete_failed", error=str(e), vector_id=vector_id)
            raise
        finally:
            conn.close()

    def get_chunks_by_vector_ids(self, vector_ids: List[int]) -> List[Dict[str, Any]]:
        """Retrieve chunks by their FAISS vector ids (in no particular order)."""
        if not vector_ids:
            return []

        conn = self.get_connection()

        try:
            placeholders = ",".join("?" * len(vector_ids))
            rows = conn.execute(f"""
                SELECT {CHUNK_COLUMNS}
                FROM chunks c
                WHERE c.vector_id IN ({placeholders})
            """, vector_ids).fetchall()

            return [dict(row) for row in rows]

        except sqlite3.Error as e:
            logger.error("chunks_retrieval_failed", error=str(e))
            raise
        finally:
            conn.close()

    def get_all_embeddings(self) -> Tuple[List[Dict[str, Any]], List[np.ndarray]]:
        """Return every chunk row and its decoded vector, in row order."""
        conn = self.get_connection()

        try:
            rows = conn.execute(f"""
                SELECT {CHUNK_COLUMNS}, c.embedding
                FROM chunks c
                ORDER BY c.vector_id
            """).fetchall()

            chunks, vectors = [], []
            for row in rows:
                chunk = dict(row)
                vectors.append(decode_vector(chunk.pop("embedding")))
                chunks.append(chunk)
            return chunks, vectors

        except sqlite3.Error as e:
            logger.error("embeddings_retrieval_failed", error=str(e))
            raise
        finally:
            conn.close()

    def get_vector_ids_for_document(self, document_id: str) -> List[int]:
        conn = self.get_connection()
        try:
            rows = conn.execute(
                "SELECT vector_id FROM chunks WHERE document_id = ? ORDER BY chunk_index",
                (document_id,),
            ).fetchall()
            return [row["vector_id"] for row in rows]
        finally:
            conn.close()

    def get_chunk_count(self) -> int:
        """Get the total number of chunks in the database."""
        conn = self.get_connection()
        try:
            return conn.execute("SELECT COUNT(*) FROM chunks").fetchone()[0]
        finally:
            conn.close()

    def clear_all(self) -> int:
        """Delete all documents and chunks. Returns the number of chunks deleted."""
        conn = self.get_connection()

        try:
            count = conn.execute("SELECT COUNT(*) FROM chunks").fetchone()[0]
            conn.execute("DELETE FROM chunks")
            conn.execute("DELETE FROM documents")
            conn.commit()

            logger.info("chunks_cleared", count=count)
            return count

        except sqlite3.Error as e:
            conn.rollback()
            logger.error("chunks_clear_failed", error=str(e))
            raise
        finally:
            conn.close()
