"""Construct every collaborator once and hand them out explicitly."""
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import structlog

from docqa import config
from docqa.db import ChunkDatabase
from docqa.llm_client import OllamaClient
from docqa.rag.answer import AnswerSynthesizer
from docqa.rag.chunker import TextChunker
from docqa.rag.context import ContextAssembler
from docqa.rag.ingest import IngestPipeline
from docqa.rag.pipeline import QueryPipeline
from docqa.rag.retriever import Retriever
from docqa.rag.store_faiss import FAISSVectorStore
from docqa.rag.vector_index import VectorIndex

logger = structlog.get_logger()


@dataclass
class Services:
    client: OllamaClient
    index: VectorIndex
    ingest: IngestPipeline
    retriever: Retriever
    assembler: ContextAssembler
    query: QueryPipeline


def create_services(
    data_dir: Optional[Path] = None,
    client: Optional[OllamaClient] = None,
    chunk_size: int = None,
    chunk_overlap: int = None,
) -> Services:
    """Build the object graph used by the CLI and by library callers.

    Call ``await services.index.init()`` before ingesting or querying.
    """
    data_dir = Path(data_dir or config.DATA_DIR)
    client = client or OllamaClient()

    database = ChunkDatabase(data_dir / config.DB_PATH.name)
    store = FAISSVectorStore(
        index_dir=data_dir,
        gateway=client,
        embedding_model=client.embedding_model,
        dimension=config.EMBEDDING_DIMENSION,
    )
    index = VectorIndex(database, store)

    chunker = TextChunker(chunk_size=chunk_size, chunk_overlap=chunk_overlap)
    retriever = Retriever(index, gateway=client)
    assembler = ContextAssembler()

    services = Services(
        client=client,
        index=index,
        ingest=IngestPipeline(client, index, chunker=chunker),
        retriever=retriever,
        assembler=assembler,
        query=QueryPipeline(retriever, assembler, AnswerSynthesizer(client)),
    )

    logger.info("services_created", data_dir=str(data_dir))
    return services
