"""Vector index joining FAISS vectors with SQLite chunk rows.

Exposes two ways to rank chunks for a query vector:
- search_documents: the packaged ranking function backed by FAISS
- nearest_neighbors: a raw ordering query over the stored embedding blobs

Both return the same row shape, closest first, with distances measured as
squared Euclidean distance.
"""
import math
import sqlite3
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import structlog

from docqa.db import ChunkDatabase
from docqa.errors import (
    DimensionMismatchError,
    InvalidInputError,
    RankingUnavailableError,
    VectorIndexError,
)
from docqa.models import Document
from docqa.rag.store_faiss import FAISSVectorStore

logger = structlog.get_logger()

CHUNK_METADATA_FIELDS = (
    "document_id",
    "chunk_index",
    "total_chunks",
    "title",
    "source",
    "tags",
    "created_at",
)


def distance_to_similarity(distance: float) -> float:
    """Map a squared L2 distance to a 0-1 similarity (1 = identical)."""
    return math.exp(-distance / 2.0)


def _result_row(chunk: Dict[str, Any], distance: float) -> Dict[str, Any]:
    row = dict(chunk)
    row["distance"] = float(distance)
    row["similarity"] = distance_to_similarity(float(distance))
    return row


class VectorIndex:
    """Stores (chunk, vector, metadata) tuples and answers nearest-neighbour queries."""

    def __init__(self, database: ChunkDatabase, store: FAISSVectorStore):
        self.database = database
        self.store = store

    @property
    def dimension(self) -> Optional[int]:
        return self.store.dimension

    async def init(self, rebuild: bool = False) -> None:
        """Create tables and load (or create) the FAISS index.

        Args:
            rebuild: Drop every stored chunk and start a new index sized for the
                current embedding model instead of loading the saved one
        """
        try:
            self.database.init_database()
            if rebuild:
                cleared = self.database.clear_all()
                logger.warning("vector_index_rebuild", chunks_cleared=cleared)
        except sqlite3.Error as e:
            raise VectorIndexError(f"Failed to initialize database: {e}") from e

        if rebuild:
            await self.store.rebuild_index(await self.store.get_embedding_dimension())
        else:
            await self.store.init_or_load()

        row_count = self.database.get_chunk_count()
        if self.store.index.ntotal != row_count:
            logger.warning(
                "vector_index_out_of_sync",
                vector_count=self.store.index.ntotal,
                row_count=row_count,
            )

    def _check_dimension(self, vector: Sequence[float], what: str) -> None:
        if self.dimension is None:
            raise VectorIndexError("Vector index not initialized. Call init() first.")
        if len(vector) != self.dimension:
            raise DimensionMismatchError(self.dimension, len(vector), what=what)

    async def add_document(self, document: Document) -> None:
        try:
            self.database.insert_document(
                document_id=document.id,
                content=document.content,
                created_at=document.created_at.isoformat(),
                title=document.title,
                source=document.source,
                tags=document.tags,
            )
        except sqlite3.Error as e:
            raise VectorIndexError(f"Failed to store document: {e}") from e

    async def upsert(
        self, chunk_id: str, vector: Sequence[float], metadata: Dict[str, Any]
    ) -> int:
        """Write one chunk and its vector, replacing any previous version.

        Args:
            chunk_id: Chunk identity
            vector: Embedding of the chunk content
            metadata: Must contain 'content'; may contain document_id,
                chunk_index, total_chunks, title, source, tags, created_at

        Returns:
            The integer vector id of the stored chunk

        Raises:
            DimensionMismatchError: If the vector length differs from the index
            VectorIndexError: If either write fails
        """
        if "content" not in metadata:
            raise InvalidInputError("Chunk metadata must include 'content'")

        self._check_dimension(vector, what="Embedding")

        fields = {k: metadata.get(k) for k in CHUNK_METADATA_FIELDS if k in metadata}

        try:
            existing = self.database.get_chunk_vector_id(chunk_id)
            if existing is not None:
                await self.store.remove_vectors([existing])
                self.database.delete_chunk(existing)
                logger.debug("chunk_replaced", chunk_id=chunk_id, vector_id=existing)

            vector_id = self.database.insert_chunk(
                chunk_id=chunk_id,
                content=metadata["content"],
                embedding=vector,
                **fields,
            )
        except sqlite3.Error as e:
            raise VectorIndexError(f"Failed to store chunk {chunk_id}: {e}") from e

        try:
            await self.store.add_vectors([list(vector)], [vector_id])
        except RuntimeError as e:
            # Keep rows and vectors in step
            self.database.delete_chunk(vector_id)
            logger.error("vector_write_failed", chunk_id=chunk_id, error=str(e))
            raise VectorIndexError(f"Failed to store vector for {chunk_id}: {e}") from e

        return vector_id

    async def search_documents(
        self, vector: Sequence[float], limit: int
    ) -> List[Dict[str, Any]]:
        """Rank chunks with FAISS and join them with their rows.

        Raises:
            RankingUnavailableError: If FAISS is not loaded or out of sync with the rows
        """
        if self.store.index is None:
            raise RankingUnavailableError("FAISS index not loaded")

        try:
            row_count = self.database.get_chunk_count()
        except sqlite3.Error as e:
            raise VectorIndexError(f"Failed to count chunks: {e}") from e

        if self.store.index.ntotal != row_count:
            raise RankingUnavailableError(
                f"FAISS index holds {self.store.index.ntotal} vectors "
                f"but the database holds {row_count} chunks"
            )

        self._check_dimension(vector, what="Query")

        vector_ids, distances = await self.store.search(list(vector), top_k=limit)
        if not vector_ids:
            return []

        try:
            chunks = self.database.get_chunks_by_vector_ids(vector_ids)
        except sqlite3.Error as e:
            raise VectorIndexError(f"Failed to load chunks: {e}") from e

        by_vector_id = {chunk["vector_id"]: chunk for chunk in chunks}

        rows = []
        for vector_id, distance in zip(vector_ids, distances):
            chunk = by_vector_id.get(vector_id)
            if chunk is None:
                logger.warning("vector_id_not_found_in_database", vector_id=vector_id)
                continue
            rows.append(_result_row(chunk, distance))

        # FAISS does not promise an order among equal distances
        rows.sort(key=lambda r: (r["distance"], r["vector_id"]))
        return rows

    async def nearest_neighbors(
        self, vector: Sequence[float], k: int
    ) -> List[Dict[str, Any]]:
        """Order every stored chunk by distance to vector and keep the first k."""
        try:
            chunks, vectors = self.database.get_all_embeddings()
        except sqlite3.Error as e:
            raise VectorIndexError(f"Failed to load embeddings: {e}") from e

        if not chunks:
            return []

        matrix = np.vstack(vectors)
        query = np.asarray(vector, dtype=np.float32)

        if query.ndim != 1 or query.shape[0] != matrix.shape[1]:
            raise DimensionMismatchError(matrix.shape[1], query.size, what="Query")

        distances = np.sum((matrix - query) ** 2, axis=1)
        order = np.argsort(distances, kind="stable")[:k]

        return [_result_row(chunks[i], distances[i]) for i in order]

    async def delete_document(self, document_id: str) -> int:
        """Delete a document with its chunks and vectors.

        Returns:
            Number of chunks removed
        """
        try:
            vector_ids = self.database.get_vector_ids_for_document(document_id)
            deleted = self.database.delete_document(document_id)
        except sqlite3.Error as e:
            raise VectorIndexError(f"Failed to delete document {document_id}: {e}") from e

        if not deleted:
            return 0

        await self.store.remove_vectors(vector_ids)
        logger.info(
            "document_cascade_deleted",
            document_id=document_id,
            chunks_removed=len(vector_ids),
        )
        return len(vector_ids)

    def list_documents(self, limit: int = 100) -> List[Dict[str, Any]]:
        return self.database.list_documents(limit)

    def count(self) -> int:
        return self.database.get_chunk_count()

    async def save(self) -> None:
        await self.store.save_index()

    async def clear(self) -> None:
        """Remove every document, chunk and vector."""
        self.database.clear_all()
        await self.store.rebuild_index()
