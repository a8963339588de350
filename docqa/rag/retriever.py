"""Retriever for semantic search over indexed chunks.

Handles:
- Query validation and embedding
- Nearest-neighbour search through the vector index
- Validation of index rows into SearchResult objects
"""
import asyncio
from numbers import Real
from typing import Any, Dict, List, Optional, Sequence

import pydantic
import structlog

from docqa import config
from docqa.errors import (
    DimensionMismatchError,
    InvalidInputError,
    ProviderError,
    RankingUnavailableError,
    RetrievalError,
    VectorIndexError,
)
from docqa.models import EmbeddingGateway, SearchResult

logger = structlog.get_logger()


def validate_query_vector(query_vector: Any) -> List[float]:
    if isinstance(query_vector, (str, bytes)) or not isinstance(query_vector, Sequence):
        raise InvalidInputError("Query vector must be a sequence of numbers")
    if not query_vector:
        raise InvalidInputError("Query vector must not be empty")
    if not all(isinstance(x, Real) and not isinstance(x, bool) for x in query_vector):
        raise InvalidInputError("Query vector must contain only numbers")
    return [float(x) for x in query_vector]


def validate_limit(limit: Any) -> int:
    if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
        raise InvalidInputError(f"Limit must be an integer >= 1, got {limit!r}")
    return limit


class Retriever:
    """Semantic retriever for the RAG pipeline.

    The index may offer a packaged ranking function (``search_documents``),
    a raw ordering query (``nearest_neighbors``) or both. The packaged
    function is preferred; results look the same either way.
    """

    def __init__(
        self,
        index,
        gateway: Optional[EmbeddingGateway] = None,
        top_k: int = None,
        timeout: float = None,
        embed_timeout: float = None,
    ):
        """Initialize the retriever.

        Args:
            index: Vector index to query
            gateway: Embedding gateway used by retrieve() for query text
            top_k: Default number of results (default from config)
            timeout: Seconds allowed per index call (default from config)
            embed_timeout: Seconds allowed for embedding the query (default from config)
        """
        self.index = index
        self.gateway = gateway
        self.top_k = top_k or config.RETRIEVAL_TOP_K
        self.timeout = timeout or config.INDEX_TIMEOUT
        self.embed_timeout = embed_timeout or config.EMBEDDING_TIMEOUT

        logger.debug("retriever_initialized", top_k=self.top_k, timeout=self.timeout)

    async def _rank(self, vector: List[float], limit: int) -> List[Dict[str, Any]]:
        ranking = getattr(self.index, "search_documents", None)
        if ranking is not None:
            try:
                return await asyncio.wait_for(ranking(vector, limit), self.timeout)
            except RankingUnavailableError as e:
                logger.info("ranking_function_unavailable", reason=str(e))

        return await asyncio.wait_for(
            self.index.nearest_neighbors(vector, limit), self.timeout
        )

    @staticmethod
    def _to_results(rows: List[Dict[str, Any]]) -> List[SearchResult]:
        results = []
        for row in rows:
            try:
                results.append(SearchResult.model_validate(dict(row)))
            except (pydantic.ValidationError, TypeError, ValueError) as e:
                logger.error("malformed_index_row", error=str(e))
                raise RetrievalError(f"Vector index returned a malformed row: {e}") from e

        # Stable: equal distances keep the index's row order
        return sorted(
            results,
            key=lambda r: r.distance if r.distance is not None else float("inf"),
        )

    async def search(self, query_vector: Sequence[float], limit: int = 3) -> List[SearchResult]:
        """Return the chunks closest to query_vector, closest first.

        Args:
            query_vector: Embedding of the query
            limit: Maximum number of results (>= 1)

        Returns:
            Up to ``limit`` SearchResult objects; empty if the index is empty

        Raises:
            InvalidInputError: If the vector or limit is invalid
            DimensionMismatchError: If the vector does not fit the index
            RetrievalError: If the index fails or times out
        """
        vector = validate_query_vector(query_vector)
        limit = validate_limit(limit)

        logger.info("retrieval_started", dimension=len(vector), limit=limit)

        try:
            rows = await self._rank(vector, limit)
        except asyncio.TimeoutError as e:
            logger.error("retrieval_timed_out", timeout=self.timeout)
            raise RetrievalError(f"Vector index timed out after {self.timeout}s") from e
        except DimensionMismatchError:
            raise
        except VectorIndexError as e:
            logger.error("retrieval_failed", error=str(e), error_type=type(e).__name__)
            raise RetrievalError(f"Retrieval failed: {e}") from e

        results = self._to_results(rows)[:limit]

        logger.info(
            "retrieval_completed",
            results_returned=len(results),
            top_distance=results[0].distance if results else None,
        )

        return results

    async def retrieve(self, query: str, limit: Optional[int] = None) -> List[SearchResult]:
        """Embed query text and search for it.

        Raises:
            InvalidInputError: If the query is empty or not a string
            RetrievalError: If embedding or search fails
        """
        if not isinstance(query, str) or not query.strip():
            raise InvalidInputError("Query must be a non-empty string")

        if self.gateway is None:
            raise RetrievalError("Retriever has no embedding gateway configured")

        limit = validate_limit(limit if limit is not None else self.top_k)

        try:
            query_vector = await asyncio.wait_for(self.gateway.embed(query), self.embed_timeout)
        except asyncio.TimeoutError as e:
            logger.error("query_embedding_timed_out", timeout=self.embed_timeout)
            raise RetrievalError(f"Query embedding timed out after {self.embed_timeout}s") from e
        except ProviderError as e:
            logger.error(
                "query_embedding_failed",
                error=str(e),
                query_preview=query[:100],
            )
            raise RetrievalError(f"Query embedding failed: {e}") from e

        return await self.search(query_vector, limit=limit)
