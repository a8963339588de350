"""Ingest pipeline for indexing documents.

Orchestrates:
- Input validation
- Text chunking
- Concurrent embedding generation (one request per chunk)
- Vector and metadata storage
"""
import asyncio
from pathlib import Path
from typing import List, Optional

import structlog

from docqa import config
from docqa.errors import (
    DimensionMismatchError,
    DocQAError,
    IngestionError,
    InvalidInputError,
)
from docqa.models import (
    BatchIngestResult,
    Chunk,
    ChunkOutcome,
    Document,
    Embedding,
    EmbeddingGateway,
)
from docqa.rag.chunker import TextChunk, TextChunker
from docqa.rag.vector_index import VectorIndex

logger = structlog.get_logger()

TEXT_SUFFIXES = (".txt", ".md")


def chunk_title(title: Optional[str], chunk: Chunk) -> Optional[str]:
    """Per-chunk display title, e.g. ``"report.pdf (2/5)"``."""
    if not title:
        return None
    return f"{title} ({chunk.chunk_index + 1}/{chunk.total_chunks})"


class IngestPipeline:
    """Pipeline for ingesting documents into the RAG system."""

    def __init__(
        self,
        gateway: EmbeddingGateway,
        index: VectorIndex,
        chunker: Optional[TextChunker] = None,
        concurrency: int = None,
        timeout: float = None,
    ):
        """Initialize the ingest pipeline.

        Args:
            gateway: Embedding gateway (one call per chunk)
            index: Vector index receiving the chunks
            chunker: Text chunker (default settings from config)
            concurrency: Maximum embedding requests in flight
            timeout: Seconds allowed per embedding and per write
        """
        self.gateway = gateway
        self.index = index
        self.chunker = chunker or TextChunker()
        self.concurrency = concurrency or config.EMBEDDING_CONCURRENCY
        self.timeout = timeout or config.EMBEDDING_TIMEOUT

        logger.info(
            "ingest_pipeline_initialized",
            chunk_size=self.chunker.chunk_size,
            chunk_overlap=self.chunker.chunk_overlap,
            concurrency=self.concurrency,
        )

    def discover_files(self, directory: Path) -> List[Path]:
        """Discover text and markdown files under a directory.

        Raises:
            FileNotFoundError: If the directory doesn't exist
        """
        directory = Path(directory)
        if not directory.exists():
            raise FileNotFoundError(f"Directory not found: {directory}")

        files = sorted(
            p for p in directory.rglob("*") if p.is_file() and p.suffix.lower() in TEXT_SUFFIXES
        )

        logger.info("text_files_discovered", count=len(files), directory=str(directory))
        return files

    def _build_chunks(self, document: Document, enable_chunking: bool) -> List[Chunk]:
        if enable_chunking:
            text_chunks = self.chunker.chunk_text(document.content)
        else:
            text_chunks = [TextChunk(content=document.content, chunk_index=0, total_chunks=1)]

        return [
            Chunk(
                document_id=document.id,
                content=tc.content,
                chunk_index=tc.chunk_index,
                total_chunks=tc.total_chunks,
            )
            for tc in text_chunks
        ]

    async def _ingest_chunk(
        self,
        document: Document,
        chunk: Chunk,
        title: Optional[str],
        semaphore: asyncio.Semaphore,
    ) -> ChunkOutcome:
        async with semaphore:
            try:
                vector = await asyncio.wait_for(
                    self.gateway.embed(chunk.content), self.timeout
                )
                embedding = Embedding(chunk_id=chunk.id, vector=tuple(vector))
                if self.index.dimension is not None and embedding.dimension != self.index.dimension:
                    raise DimensionMismatchError(self.index.dimension, embedding.dimension)

                await asyncio.wait_for(
                    self.index.upsert(
                        chunk.id,
                        embedding.vector,
                        {
                            "content": chunk.content,
                            "document_id": document.id,
                            "chunk_index": chunk.chunk_index,
                            "total_chunks": chunk.total_chunks,
                            "title": title,
                            "source": document.source,
                            "tags": document.tags,
                            "created_at": document.created_at.isoformat(),
                        },
                    ),
                    self.timeout,
                )
            except asyncio.TimeoutError:
                logger.error(
                    "chunk_ingestion_timed_out",
                    document_id=document.id,
                    chunk_index=chunk.chunk_index,
                )
                return ChunkOutcome(
                    chunk_index=chunk.chunk_index,
                    chunk_id=chunk.id,
                    success=False,
                    error=f"Timed out after {self.timeout}s",
                )
            except DocQAError as e:
                logger.error(
                    "chunk_ingestion_failed",
                    document_id=document.id,
                    chunk_index=chunk.chunk_index,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                return ChunkOutcome(
                    chunk_index=chunk.chunk_index,
                    chunk_id=chunk.id,
                    success=False,
                    error=str(e),
                )
            except Exception as e:
                # Any other failure still yields an outcome for this chunk
                logger.exception(
                    "chunk_ingestion_crashed",
                    document_id=document.id,
                    chunk_index=chunk.chunk_index,
                    error_type=type(e).__name__,
                )
                return ChunkOutcome(
                    chunk_index=chunk.chunk_index,
                    chunk_id=chunk.id,
                    success=False,
                    error=f"{type(e).__name__}: {e}",
                )

        return ChunkOutcome(chunk_index=chunk.chunk_index, chunk_id=chunk.id, success=True)

    async def ingest_text(
        self,
        content: str,
        title: Optional[str] = None,
        source: Optional[str] = None,
        tags: Optional[str] = None,
        enable_chunking: bool = True,
        allow_partial: bool = False,
    ) -> BatchIngestResult:
        """Ingest one document.

        Chunk indices are fixed before any embedding request is sent; the
        requests then run concurrently and complete in any order.

        Args:
            content: Document text
            title: Optional title; chunk titles become "title (i/n)"
            source: Optional source name
            tags: Optional free-form tags
            enable_chunking: Store the text as a single chunk when False
            allow_partial: Return a result with failed chunks instead of raising

        Returns:
            BatchIngestResult with one outcome per chunk, in chunk order

        Raises:
            InvalidInputError: If content is empty or not a string
            IngestionError: If any chunk failed and allow_partial is False;
                the per-chunk outcomes are on ``error.result``
        """
        if not isinstance(content, str):
            raise InvalidInputError(
                f"Document content must be a string, got {type(content).__name__}"
            )
        if not content.strip():
            raise InvalidInputError("Document content is empty")

        document = Document(content=content, title=title, source=source, tags=tags)
        chunks = self._build_chunks(document, enable_chunking)

        logger.info(
            "ingesting_document",
            document_id=document.id,
            text_length=len(content),
            **self.chunker.get_chunk_stats(chunks),
        )

        await self.index.add_document(document)

        semaphore = asyncio.Semaphore(self.concurrency)
        outcomes = await asyncio.gather(
            *(
                self._ingest_chunk(
                    document,
                    chunk,
                    chunk_title(title, chunk) if enable_chunking else title,
                    semaphore,
                )
                for chunk in chunks
            )
        )

        result = BatchIngestResult(document=document, outcomes=list(outcomes))

        if result.succeeded:
            await self.index.save()
        else:
            # Nothing was indexed, so drop the chunkless document row
            await self.index.delete_document(document.id)
            logger.warning("empty_document_discarded", document_id=document.id)

        logger.info(
            "document_ingested",
            document_id=document.id,
            chunks_created=len(result.succeeded),
            chunks_failed=len(result.failed),
        )

        if not result.ok and not allow_partial:
            raise IngestionError(
                f"{len(result.failed)} of {result.chunk_count} chunks failed to ingest "
                f"for document {document.id}",
                result=result,
            )

        return result

    async def ingest_file(self, file_path: Path, **kwargs) -> BatchIngestResult:
        """Ingest a UTF-8 text or markdown file.

        Title and source default to the file name.
        """
        file_path = Path(file_path)
        logger.info("ingesting_file", path=str(file_path))

        content = file_path.read_text(encoding="utf-8")
        if not kwargs.get("title"):
            kwargs["title"] = file_path.name
        if not kwargs.get("source"):
            kwargs["source"] = file_path.name

        return await self.ingest_text(content, **kwargs)

    async def delete_document(self, document_id: str) -> int:
        """Delete a document with its chunks and vectors."""
        return await self.index.delete_document(document_id)
