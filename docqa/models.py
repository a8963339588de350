"""Shared data model for ingestion and retrieval."""
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Literal, Optional, Protocol, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field


def new_id() -> str:
    """Return a fresh identifier for documents and chunks."""
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Document:
    """A source document. Never edited after ingestion."""

    content: str
    id: str = field(default_factory=new_id)
    title: Optional[str] = None
    source: Optional[str] = None
    tags: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class Chunk:
    """A stored segment of exactly one document."""

    document_id: str
    content: str
    chunk_index: int
    total_chunks: int
    id: str = field(default_factory=new_id)


@dataclass(frozen=True)
class Embedding:
    """The vector owned by one chunk."""

    chunk_id: str
    vector: Tuple[float, ...]

    @property
    def dimension(self) -> int:
        return len(self.vector)


class SearchResult(BaseModel):
    """A chunk joined with its distance to the query vector."""

    model_config = ConfigDict(frozen=True)

    id: str
    content: str
    title: Optional[str] = None
    source: Optional[str] = None
    tags: Optional[str] = None
    created_at: Optional[datetime] = None
    distance: Optional[float] = None
    similarity: Optional[float] = None


class Citation(BaseModel):
    """Source attribution for one chunk used in an answer."""

    id: str
    preview: str = Field(..., max_length=103)


class AssembledContext(BaseModel):
    context_text: str = ""
    citations: List[Citation] = Field(default_factory=list)


class ConversationTurn(BaseModel):
    """One message of a conversation owned by the caller."""

    role: Literal["user", "assistant"]
    content: str
    sources: Optional[List[SearchResult]] = None


class QueryResponse(BaseModel):
    answer: str
    citations: List[Citation] = Field(default_factory=list)
    sources: List[SearchResult] = Field(default_factory=list)
    turn: ConversationTurn


@dataclass
class ChunkOutcome:
    """Result of embedding and writing a single chunk."""

    chunk_index: int
    chunk_id: str
    success: bool
    error: Optional[str] = None


@dataclass
class BatchIngestResult:
    """Per-chunk outcomes of one ingestion call."""

    document: Document
    outcomes: List[ChunkOutcome] = field(default_factory=list)

    @property
    def succeeded(self) -> List[ChunkOutcome]:
        return [o for o in self.outcomes if o.success]

    @property
    def failed(self) -> List[ChunkOutcome]:
        return [o for o in self.outcomes if not o.success]

    @property
    def ok(self) -> bool:
        return not self.failed

    @property
    def chunk_count(self) -> int:
        return len(self.outcomes)


class EmbeddingGateway(Protocol):
    """Anything that turns text into a fixed-dimension vector."""

    async def embed(self, text: str) -> List[float]:
        ...


class ChatModel(Protocol):
    async def chat(
        self, messages: Sequence[dict], model: str = None, temperature: float = None
    ) -> dict:
        ...
