"""Tests for the ingest pipeline over a real index and a fake gateway."""
import httpx
import pytest

from docqa.errors import IngestionError, InvalidInputError
from docqa.llm_client import OllamaClient
from docqa.rag.chunker import TextChunker
from docqa.rag.ingest import IngestPipeline

from conftest import FakeGateway

A, B, C = "a" * 50, "b" * 50, "c" * 50
THREE_CHUNK_TEXT = f"{A}\n\n{B}\n\n{C}"


def _pipeline(gateway, index, **kwargs):
    return IngestPipeline(
        gateway, index, chunker=TextChunker(chunk_size=60, chunk_overlap=10), **kwargs
    )


async def _stored(index):
    return await index.nearest_neighbors([0.0, 0.0, 0.0], 100)


async def test_ingest_text_stores_every_chunk(vector_index, gateway):
    result = await _pipeline(gateway, vector_index).ingest_text(
        THREE_CHUNK_TEXT, title="doc", source="doc.txt", tags="notes"
    )

    assert result.ok
    assert result.chunk_count == 3
    assert vector_index.count() == 3
    assert vector_index.store.index.ntotal == 3

    rows = sorted(await _stored(vector_index), key=lambda r: r["chunk_index"])
    assert [r["content"] for r in rows] == [A, "a" * 10 + " " + B, "b" * 10 + " " + C]
    assert [r["title"] for r in rows] == ["doc (1/3)", "doc (2/3)", "doc (3/3)"]
    assert {r["document_id"] for r in rows} == {result.document.id}
    assert {r["source"] for r in rows} == {"doc.txt"}
    assert {r["tags"] for r in rows} == {"notes"}


async def test_each_chunk_is_embedded_once(vector_index, gateway):
    await _pipeline(gateway, vector_index).ingest_text(THREE_CHUNK_TEXT)

    assert sorted(gateway.calls) == sorted([A, "a" * 10 + " " + B, "b" * 10 + " " + C])


async def test_outcomes_follow_chunk_order_when_embeddings_finish_out_of_order(vector_index):
    gateway = FakeGateway(delay=0.05)

    result = await _pipeline(gateway, vector_index).ingest_text(THREE_CHUNK_TEXT)

    assert [o.chunk_index for o in result.outcomes] == [0, 1, 2]
    assert all(o.success for o in result.outcomes)


async def test_failed_chunk_raises_with_per_chunk_result(vector_index):
    gateway = FakeGateway(fail_on="c" * 20)

    with pytest.raises(IngestionError) as exc_info:
        await _pipeline(gateway, vector_index).ingest_text(THREE_CHUNK_TEXT, title="doc")

    result = exc_info.value.result
    assert [o.success for o in result.outcomes] == [True, True, False]
    assert result.failed[0].chunk_index == 2
    assert "upstream unavailable" in result.failed[0].error
    # Successful chunks stay indexed
    assert vector_index.count() == 2


async def test_allow_partial_returns_result(vector_index):
    gateway = FakeGateway(fail_on="c" * 20)

    result = await _pipeline(gateway, vector_index).ingest_text(
        THREE_CHUNK_TEXT, allow_partial=True
    )

    assert not result.ok
    assert len(result.succeeded) == 2
    assert len(result.failed) == 1


async def test_embedding_timeout_is_reported_per_chunk(vector_index):
    gateway = FakeGateway(delay=1.0)

    result = await _pipeline(gateway, vector_index, timeout=0.01).ingest_text(
        THREE_CHUNK_TEXT, allow_partial=True
    )

    assert len(result.failed) == 3
    assert all("Timed out" in o.error for o in result.failed)
    assert vector_index.count() == 0


@pytest.mark.parametrize("content", ["", "   \n", None, 7])
async def test_empty_or_non_text_content_rejected(vector_index, gateway, content):
    with pytest.raises(InvalidInputError):
        await _pipeline(gateway, vector_index).ingest_text(content)

    assert gateway.calls == []
    assert vector_index.list_documents() == []


async def test_chunking_disabled_stores_whole_text(vector_index, gateway):
    result = await _pipeline(gateway, vector_index).ingest_text(
        THREE_CHUNK_TEXT, title="doc", enable_chunking=False
    )

    [row] = await _stored(vector_index)
    assert result.chunk_count == 1
    assert row["content"] == THREE_CHUNK_TEXT
    assert row["title"] == "doc"


async def test_ingest_file_uses_file_name(vector_index, gateway, tmp_path):
    path = tmp_path / "notes.md"
    path.write_text("Short note about ravens.", encoding="utf-8")

    result = await _pipeline(gateway, vector_index).ingest_file(path)

    [row] = await _stored(vector_index)
    assert result.document.title == "notes.md"
    assert row["source"] == "notes.md"
    assert row["title"] == "notes.md (1/1)"


async def test_discover_files(vector_index, gateway, tmp_path):
    docs = tmp_path / "docs"
    (docs / "nested").mkdir(parents=True)
    (docs / "a.txt").write_text("a")
    (docs / "nested" / "b.md").write_text("b")
    (docs / "image.png").write_bytes(b"\x89PNG")

    files = _pipeline(gateway, vector_index).discover_files(docs)

    assert [f.name for f in files] == ["a.txt", "b.md"]


async def test_discover_files_missing_directory(vector_index, gateway, tmp_path):
    with pytest.raises(FileNotFoundError):
        _pipeline(gateway, vector_index).discover_files(tmp_path / "missing")


async def test_delete_document_removes_chunks(vector_index, gateway):
    pipeline = _pipeline(gateway, vector_index)
    kept = await pipeline.ingest_text("Kept document.")
    dropped = await pipeline.ingest_text(THREE_CHUNK_TEXT)

    assert await pipeline.delete_document(dropped.document.id) == 3

    rows = await _stored(vector_index)
    assert [r["document_id"] for r in rows] == [kept.document.id]
    assert vector_index.store.index.ntotal == 1


class CrashingGateway(FakeGateway):
    """Raises a non-library error for one chunk, like a bad provider body would."""

    async def embed(self, text):
        if "c" * 20 in text:
            self.calls.append(text)
            raise ValueError("Expecting value: line 1 column 1 (char 0)")
        return await super().embed(text)


class WideGateway(FakeGateway):
    async def embed(self, text):
        return (await super().embed(text)) + [1.0]


async def test_unexpected_gateway_error_becomes_failed_outcome(vector_index):
    gateway = CrashingGateway()

    with pytest.raises(IngestionError) as exc_info:
        await _pipeline(gateway, vector_index).ingest_text(THREE_CHUNK_TEXT)

    result = exc_info.value.result
    assert [o.success for o in result.outcomes] == [True, True, False]
    assert result.failed[0].error.startswith("ValueError:")
    assert vector_index.count() == 2


async def test_wrong_dimension_embedding_fails_the_chunk(vector_index):
    result = await _pipeline(WideGateway(), vector_index).ingest_text(
        "A short note.", allow_partial=True
    )

    [outcome] = result.outcomes
    assert not outcome.success
    assert "expected 3, got 4" in outcome.error
    assert vector_index.count() == 0


async def test_malformed_provider_body_fails_the_chunk(vector_index):
    def handler(request):
        return httpx.Response(200, content=b"<html>proxy error</html>")

    client = OllamaClient(
        base_url="http://ollama.test", transport=httpx.MockTransport(handler)
    )

    with pytest.raises(IngestionError) as exc_info:
        await IngestPipeline(client, vector_index).ingest_text("A short note.")

    [outcome] = exc_info.value.result.outcomes
    assert not outcome.success
    assert "non-JSON" in outcome.error


async def test_document_discarded_when_no_chunk_is_indexed(vector_index):
    gateway = FakeGateway(fail_on="")

    with pytest.raises(IngestionError):
        await _pipeline(gateway, vector_index).ingest_text(THREE_CHUNK_TEXT)

    assert vector_index.list_documents() == []
