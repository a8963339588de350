"""Shared fixtures and in-memory fakes for the test suite."""
import asyncio
from typing import Dict, List, Optional

import pytest

from docqa.db import ChunkDatabase
from docqa.errors import EmbeddingError
from docqa.logging_config import configure_logging
from docqa.rag.store_faiss import FAISSVectorStore
from docqa.rag.vector_index import VectorIndex

DIMENSION = 3


def fake_vector(text: str) -> List[float]:
    """Deterministic 3-d embedding derived from the text."""
    return [
        float(len(text) % 97),
        float(sum(ord(c) for c in text) % 101),
        float(text.count("a")),
    ]


class FakeGateway:
    """Embedding gateway that never touches the network."""

    embedding_model = "fake-embed"
    chat_model = "fake-chat"

    def __init__(self, fail_on: Optional[str] = None, delay: float = 0.0):
        self.fail_on = fail_on
        self.delay = delay
        self.calls: List[str] = []
        self.chat_calls: List[Dict] = []
        self.answer = "The answer."

    async def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        if self.delay:
            # Later chunks finish first
            await asyncio.sleep(self.delay / (len(self.calls) + 1))
        if self.fail_on is not None and self.fail_on in text:
            raise EmbeddingError("upstream unavailable")
        return fake_vector(text)

    async def chat(self, messages, model=None, temperature=None):
        self.chat_calls.append({"messages": messages, "model": model})
        return {"message": {"role": "assistant", "content": self.answer}}


@pytest.fixture(scope="session", autouse=True)
def structured_logging():
    # Route structlog through stdlib logging so stdout stays clean for CLI output
    configure_logging("DEBUG")


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
async def vector_index(tmp_path):
    """A real FAISS + SQLite index under a temporary directory."""
    database = ChunkDatabase(tmp_path / "docqa.sqlite")
    store = FAISSVectorStore(index_dir=tmp_path, dimension=DIMENSION)
    index = VectorIndex(database, store)
    await index.init()
    return index
