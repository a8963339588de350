"""Tests for the FAISS + SQLite vector index."""
import pytest

from docqa.db import ChunkDatabase
from docqa.errors import DimensionMismatchError, RankingUnavailableError
from docqa.models import Document
from docqa.rag.retriever import Retriever
from docqa.rag.store_faiss import FAISSVectorStore
from docqa.rag.vector_index import VectorIndex

from conftest import DIMENSION


async def _fill(index, count, document_id=None):
    for i in range(count):
        await index.upsert(
            f"chunk-{i}",
            [float(i), 0.0, 0.0],
            {
                "content": f"content {i}",
                "document_id": document_id,
                "chunk_index": i,
                "total_chunks": count,
                "title": f"doc ({i + 1}/{count})",
                "created_at": "2026-01-01T00:00:00+00:00",
            },
        )


async def test_packaged_ranking_orders_by_distance(vector_index):
    await _fill(vector_index, 5)

    rows = await vector_index.search_documents([0.0, 0.0, 0.0], 3)

    assert [r["id"] for r in rows] == ["chunk-0", "chunk-1", "chunk-2"]
    assert [r["distance"] for r in rows] == pytest.approx([0.0, 1.0, 4.0])
    assert rows[0]["similarity"] == pytest.approx(1.0)


async def test_raw_ordering_matches_packaged_ranking(vector_index):
    await _fill(vector_index, 5)
    query = [2.2, 0.0, 0.0]

    packaged = await vector_index.search_documents(query, 4)
    raw = await vector_index.nearest_neighbors(query, 4)

    assert [r["id"] for r in raw] == [r["id"] for r in packaged]
    assert [r["distance"] for r in raw] == pytest.approx([r["distance"] for r in packaged])


async def test_retriever_hides_which_path_served(vector_index):
    await _fill(vector_index, 5)
    retriever = Retriever(vector_index)

    via_faiss = await retriever.search([0.0, 0.0, 0.0], limit=3)
    vector_index.store.index = None
    via_raw = await retriever.search([0.0, 0.0, 0.0], limit=3)

    assert [r.id for r in via_faiss] == [r.id for r in via_raw]
    assert [r.distance for r in via_faiss] == pytest.approx([r.distance for r in via_raw])


async def test_limit_larger_than_index(vector_index):
    await _fill(vector_index, 2)

    assert len(await vector_index.search_documents([0.0, 0.0, 0.0], 3)) == 2
    assert len(await vector_index.nearest_neighbors([0.0, 0.0, 0.0], 3)) == 2


async def test_empty_index(vector_index):
    assert await vector_index.search_documents([0.0, 0.0, 0.0], 3) == []
    assert await vector_index.nearest_neighbors([0.0, 0.0, 0.0], 3) == []


async def test_ties_follow_insertion_order(vector_index):
    for name in ("first", "second", "third"):
        await vector_index.upsert(name, [1.0, 1.0, 1.0], {"content": name})

    packaged = await vector_index.search_documents([0.0, 0.0, 0.0], 3)
    raw = await vector_index.nearest_neighbors([0.0, 0.0, 0.0], 3)

    assert [r["id"] for r in packaged] == ["first", "second", "third"]
    assert [r["id"] for r in raw] == ["first", "second", "third"]


async def test_wrong_dimension_rejected(vector_index):
    with pytest.raises(DimensionMismatchError):
        await vector_index.upsert("bad", [1.0, 2.0], {"content": "bad"})

    await _fill(vector_index, 1)
    with pytest.raises(DimensionMismatchError):
        await vector_index.search_documents([1.0] * (DIMENSION + 1), 3)
    with pytest.raises(DimensionMismatchError):
        await vector_index.nearest_neighbors([1.0] * (DIMENSION + 1), 3)


async def test_ranking_unavailable_when_out_of_sync(vector_index):
    await _fill(vector_index, 2)
    await vector_index.store.remove_vectors([1])

    with pytest.raises(RankingUnavailableError):
        await vector_index.search_documents([0.0, 0.0, 0.0], 3)


async def test_upsert_replaces_existing_chunk(vector_index):
    await vector_index.upsert("chunk", [1.0, 0.0, 0.0], {"content": "old"})
    await vector_index.upsert("chunk", [2.0, 0.0, 0.0], {"content": "new"})

    rows = await vector_index.search_documents([0.0, 0.0, 0.0], 3)

    assert vector_index.count() == 1
    assert vector_index.store.index.ntotal == 1
    assert [(r["id"], r["content"]) for r in rows] == [("chunk", "new")]


async def test_delete_document_cascades(vector_index):
    document = Document(content="whole text", title="doc")
    await vector_index.add_document(document)
    await _fill(vector_index, 3, document_id=document.id)
    await vector_index.upsert("other", [9.0, 9.0, 9.0], {"content": "unrelated"})

    removed = await vector_index.delete_document(document.id)

    assert removed == 3
    assert vector_index.count() == 1
    assert vector_index.store.index.ntotal == 1
    assert vector_index.database.get_document(document.id) is None
    rows = await vector_index.search_documents([0.0, 0.0, 0.0], 5)
    assert [r["id"] for r in rows] == ["other"]


async def test_delete_unknown_document(vector_index):
    assert await vector_index.delete_document("missing") == 0


async def test_list_documents_counts_chunks(vector_index):
    document = Document(content="whole text", title="doc", source="doc.txt")
    await vector_index.add_document(document)
    await _fill(vector_index, 2, document_id=document.id)

    [listed] = vector_index.list_documents()

    assert listed["id"] == document.id
    assert listed["chunk_count"] == 2
    assert listed["source"] == "doc.txt"


async def test_save_and_reload(vector_index, tmp_path):
    await _fill(vector_index, 4)
    await vector_index.save()

    store = FAISSVectorStore(index_dir=tmp_path, dimension=DIMENSION)
    reloaded = VectorIndex(ChunkDatabase(tmp_path / "docqa.sqlite"), store)
    await reloaded.init()

    assert store.index.ntotal == 4
    rows = await reloaded.search_documents([3.0, 0.0, 0.0], 1)
    assert rows[0]["id"] == "chunk-3"


async def test_reload_with_other_dimension_fails(vector_index, tmp_path):
    await _fill(vector_index, 1)
    await vector_index.save()

    store = FAISSVectorStore(index_dir=tmp_path, dimension=DIMENSION + 1)

    with pytest.raises(DimensionMismatchError):
        await store.load_index()


async def test_clear(vector_index):
    await _fill(vector_index, 3)

    await vector_index.clear()

    assert vector_index.count() == 0
    assert vector_index.store.index.ntotal == 0
    assert vector_index.dimension == DIMENSION


async def test_init_with_rebuild_ignores_saved_index_of_other_dimension(vector_index, tmp_path):
    await _fill(vector_index, 2)
    await vector_index.save()

    store = FAISSVectorStore(index_dir=tmp_path, dimension=DIMENSION + 1)
    rebuilt = VectorIndex(ChunkDatabase(tmp_path / "docqa.sqlite"), store)
    await rebuilt.init(rebuild=True)

    assert rebuilt.dimension == DIMENSION + 1
    assert rebuilt.count() == 0
    assert store.index.ntotal == 0
