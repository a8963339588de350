"""FAISS vector store for semantic search.

Handles:
- Runtime embedding dimension detection
- FAISS index initialization and loading
- Vector addition, removal and search by explicit integer ids
- Metadata persistence
"""
import json
from pathlib import Path
from typing import List, Tuple, Optional, Dict, Any

import faiss
import numpy as np
import structlog

from docqa import config
from docqa.errors import DimensionMismatchError, EmbeddingError, VectorIndexError
from docqa.models import EmbeddingGateway

logger = structlog.get_logger()

INDEX_TYPE = "IndexIDMap2(IndexFlatL2)"


class FAISSVectorStore:
    """FAISS-based vector store with dimension detection and metadata."""

    def __init__(
        self,
        index_dir: Path = None,
        gateway: Optional[EmbeddingGateway] = None,
        embedding_model: str = None,
        dimension: Optional[int] = None,
    ):
        """Initialize the FAISS vector store.

        Args:
            index_dir: Directory to store index and metadata (default: DATA_DIR)
            gateway: Embedding gateway used to probe the dimension
            embedding_model: Embedding model name recorded in metadata
            dimension: Known embedding dimension; probed through the gateway if omitted
        """
        self.index_dir = Path(index_dir or config.DATA_DIR)
        self.gateway = gateway
        self.embedding_model = embedding_model or config.EMBEDDING_MODEL
        self.configured_dimension = dimension

        self.index_path = self.index_dir / config.VECTOR_INDEX_PATH.name
        self.metadata_path = self.index_dir / config.METADATA_PATH.name

        self.index: Optional[faiss.Index] = None
        self.dimension: Optional[int] = None
        self.metadata: Dict[str, Any] = {}

        logger.info(
            "faiss_store_initialized",
            index_dir=str(self.index_dir),
            embedding_model=self.embedding_model,
        )

    async def get_embedding_dimension(self) -> int:
        """Return the configured dimension or detect it by embedding a probe string.

        Returns:
            Embedding dimension

        Raises:
            VectorIndexError: If no dimension is configured and probing fails
        """
        if self.configured_dimension:
            return self.configured_dimension

        if self.gateway is None:
            raise VectorIndexError(
                "Cannot detect embedding dimension without an embedding gateway"
            )

        logger.info("detecting_embedding_dimension", model=self.embedding_model)

        try:
            embedding = await self.gateway.embed("test")
        except EmbeddingError as e:
            logger.error(
                "embedding_dimension_detection_failed",
                model=self.embedding_model,
                error=str(e),
            )
            raise VectorIndexError(f"Failed to detect embedding dimension: {e}") from e

        dimension = len(embedding)
        logger.info("embedding_dimension_detected", dimension=dimension)
        return dimension

    async def init_new_index(self, dimension: Optional[int] = None) -> None:
        """Initialize a new, empty FAISS index.

        Args:
            dimension: Embedding dimension (detected if not provided)
        """
        if dimension is None:
            dimension = await self.get_embedding_dimension()

        self.dimension = dimension

        # Exact L2 search keyed by our own chunk row ids
        self.index = faiss.IndexIDMap2(faiss.IndexFlatL2(self.dimension))

        self.metadata = {
            "embedding_model": self.embedding_model,
            "embedding_dimension": self.dimension,
            "index_type": INDEX_TYPE,
            "vector_count": 0,
        }

        logger.info(
            "faiss_index_initialized",
            dimension=self.dimension,
            index_type=INDEX_TYPE,
        )

    async def load_index(self) -> None:
        """Load existing FAISS index from disk.

        Validates dimension compatibility with the current embedding model.

        Raises:
            FileNotFoundError: If index files don't exist
            DimensionMismatchError: If dimension mismatch detected
            VectorIndexError: If loading fails
        """
        if not self.index_path.exists():
            raise FileNotFoundError(f"Index not found: {self.index_path}")

        if not self.metadata_path.exists():
            raise FileNotFoundError(f"Metadata not found: {self.metadata_path}")

        try:
            with open(self.metadata_path, "r") as f:
                self.metadata = json.load(f)
        except (OSError, ValueError) as e:
            raise VectorIndexError(f"Failed to load metadata: {e}") from e

        stored_model = self.metadata.get("embedding_model")
        stored_dim = self.metadata.get("embedding_dimension")

        current_dim = await self.get_embedding_dimension()

        if current_dim != stored_dim:
            logger.error(
                "index_dimension_mismatch",
                stored_model=stored_model,
                stored_dimension=stored_dim,
                current_dimension=current_dim,
            )
            raise DimensionMismatchError(stored_dim, current_dim, what="Index")

        try:
            self.index = faiss.read_index(str(self.index_path))
            self.dimension = stored_dim
        except RuntimeError as e:
            raise VectorIndexError(f"Failed to load FAISS index: {e}") from e

        logger.info(
            "faiss_index_loaded",
            dimension=self.dimension,
            vector_count=self.index.ntotal,
            model=stored_model,
        )

    async def save_index(self) -> None:
        """Save FAISS index and metadata to disk.

        Raises:
            VectorIndexError: If there is no index or writing fails
        """
        if self.index is None:
            raise VectorIndexError("No index to save. Initialize or load an index first.")

        self.index_dir.mkdir(parents=True, exist_ok=True)

        self.metadata["vector_count"] = self.index.ntotal

        try:
            faiss.write_index(self.index, str(self.index_path))
        except RuntimeError as e:
            raise VectorIndexError(f"Failed to save FAISS index: {e}") from e

        try:
            with open(self.metadata_path, "w") as f:
                json.dump(self.metadata, f, indent=2)
        except OSError as e:
            raise VectorIndexError(f"Failed to save metadata: {e}") from e

        logger.info(
            "faiss_index_saved",
            index_path=str(self.index_path),
            vector_count=self.index.ntotal,
        )

    def _as_matrix(self, embeddings: List[List[float]], what: str) -> np.ndarray:
        vectors = np.asarray(embeddings, dtype=np.float32)
        if vectors.ndim != 2 or vectors.shape[1] != self.dimension:
            actual = vectors.shape[-1] if vectors.ndim >= 1 else 0
            raise DimensionMismatchError(self.dimension, actual, what=what)
        return vectors

    async def add_vectors(
        self, embeddings: List[List[float]], vector_ids: List[int]
    ) -> List[int]:
        """Add vectors to the FAISS index under explicit ids.

        Args:
            embeddings: List of embedding vectors
            vector_ids: One integer id per vector

        Returns:
            The vector ids

        Raises:
            VectorIndexError: If no index is initialized
            DimensionMismatchError: If a vector has the wrong length
        """
        if self.index is None:
            raise VectorIndexError("No index initialized. Call init_new_index() first.")

        if not embeddings:
            return []

        vectors = self._as_matrix(embeddings, what="Embedding")
        ids = np.asarray(vector_ids, dtype=np.int64)

        self.index.add_with_ids(vectors, ids)

        logger.debug(
            "vectors_added",
            count=len(embeddings),
            total_vectors=self.index.ntotal,
        )

        return list(vector_ids)

    async def remove_vectors(self, vector_ids: List[int]) -> int:
        """Remove vectors by id. Returns the number removed."""
        if self.index is None or not vector_ids:
            return 0

        removed = self.index.remove_ids(np.asarray(vector_ids, dtype=np.int64))

        logger.debug("vectors_removed", count=removed, total_vectors=self.index.ntotal)
        return int(removed)

    async def search(
        self, query_embedding: List[float], top_k: int = None
    ) -> Tuple[List[int], List[float]]:
        """Search for similar vectors in the index.

        Args:
            query_embedding: Query vector
            top_k: Number of results to return (default from config)

        Returns:
            Tuple of (vector_ids, squared L2 distances), closest first

        Raises:
            VectorIndexError: If no index initialized
            DimensionMismatchError: If the query has the wrong length
        """
        if self.index is None:
            raise VectorIndexError("No index initialized. Call load_index() first.")

        if top_k is None:
            top_k = config.RETRIEVAL_TOP_K

        query_vector = self._as_matrix([query_embedding], what="Query")

        # Ensure we don't request more results than we have
        top_k = min(top_k, self.index.ntotal)

        if top_k == 0:
            return [], []

        distances, indices = self.index.search(query_vector, top_k)

        vector_ids = indices[0].tolist()
        distance_scores = distances[0].tolist()

        logger.debug(
            "vector_search_completed",
            top_k=top_k,
            results_found=len(vector_ids),
        )

        return vector_ids, distance_scores

    async def init_or_load(self) -> None:
        """Initialize new index or load existing one.

        Raises:
            DimensionMismatchError: If dimension mismatch on load
            VectorIndexError: If initialization or loading fails
        """
        if self.index_path.exists() and self.metadata_path.exists():
            logger.info("existing_index_detected", path=str(self.index_path))
            await self.load_index()
        else:
            logger.info("no_index_found_initializing_new")
            await self.init_new_index()

    def get_stats(self) -> Dict[str, Any]:
        """Get statistics about the vector store.

        Returns:
            Dictionary with store statistics
        """
        if self.index is None:
            return {
                "initialized": False,
                "vector_count": 0,
                "dimension": None,
            }

        return {
            "initialized": True,
            "vector_count": self.index.ntotal,
            "dimension": self.dimension,
            "embedding_model": self.embedding_model,
            "index_exists_on_disk": self.index_path.exists(),
        }

    async def rebuild_index(self, dimension: Optional[int] = None) -> None:
        """Delete the persisted index and start a new, empty one.

        Args:
            dimension: Dimension of the new index (default: keep the current one)
        """
        logger.warning("rebuilding_index", index_dir=str(self.index_dir))

        if self.index_path.exists():
            self.index_path.unlink()
            logger.info("deleted_existing_index", path=str(self.index_path))

        if self.metadata_path.exists():
            self.metadata_path.unlink()
            logger.info("deleted_existing_metadata", path=str(self.metadata_path))

        await self.init_new_index(dimension or self.dimension)
