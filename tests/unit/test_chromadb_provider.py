"""Unit tests for the ChromaDB vector store provider (real on-disk ChromaDB)."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from sitekb.models.rag import EmbeddingRecord
from sitekb.providers.vector_store.chromadb_provider import ChromaDBProvider, record_id
from sitekb.utils.errors import VectorStoreError


def _record(
    tenant_id: str,
    text: str,
    vector: list[float],
    generation: str = "g1",
    ordinal: int = 0,
    source_url: str = "https://acme.test/",
) -> EmbeddingRecord:
    return EmbeddingRecord(
        tenant_id=tenant_id,
        source_url=source_url,
        text=text,
        ordinal=ordinal,
        vector=vector,
        generation=generation,
    )


@pytest.fixture()
def store(tmp_path: Path) -> ChromaDBProvider:
    return ChromaDBProvider(persist_directory=str(tmp_path / "chroma"), collection_name="test_chunks")


class TestChromaDBProvider:
    @pytest.mark.asyncio
    async def test_add_and_count(self, store: ChromaDBProvider) -> None:
        written = await store.add_records(
            [
                _record("acme", "widgets", [1.0, 0.0, 0.0, 0.0], ordinal=0),
                _record("acme", "gadgets", [0.0, 1.0, 0.0, 0.0], ordinal=1),
            ]
        )
        assert written == 2
        assert await store.count("acme") == 2
        assert await store.count("acme", "g1") == 2
        assert await store.count("acme", "other") == 0
        assert await store.count("globex") == 0

    @pytest.mark.asyncio
    async def test_upsert_same_record_is_idempotent(self, store: ChromaDBProvider) -> None:
        record = _record("acme", "widgets", [1.0, 0.0, 0.0, 0.0])
        await store.add_records([record])
        await store.add_records([record])
        assert await store.count("acme") == 1

    @pytest.mark.asyncio
    async def test_query_is_tenant_scoped(self, store: ChromaDBProvider) -> None:
        vector = [1.0, 0.0, 0.0, 0.0]
        await store.add_records(
            [
                _record("acme", "acme opening hours", vector),
                _record("globex", "globex opening hours", vector),
            ]
        )

        results = await store.query("acme", "g1", vector, top_k=10)

        assert [r.text for r in results] == ["acme opening hours"]
        assert results[0].similarity == pytest.approx(1.0, abs=1e-4)

    @pytest.mark.asyncio
    async def test_query_is_generation_scoped(self, store: ChromaDBProvider) -> None:
        vector = [1.0, 0.0, 0.0, 0.0]
        await store.add_records(
            [
                _record("acme", "old text", vector, generation="g1"),
                _record("acme", "new text", vector, generation="g2"),
            ]
        )
        results = await store.query("acme", "g2", vector, top_k=10)
        assert [r.text for r in results] == ["new text"]

    @pytest.mark.asyncio
    async def test_results_sorted_and_thresholded(self, store: ChromaDBProvider) -> None:
        await store.add_records(
            [
                _record("acme", "exact", [1.0, 0.0, 0.0, 0.0], ordinal=0),
                _record("acme", "close", [0.9, 0.1, 0.0, 0.0], ordinal=1),
                _record("acme", "orthogonal", [0.0, 0.0, 1.0, 0.0], ordinal=2),
            ]
        )

        results = await store.query("acme", "g1", [1.0, 0.0, 0.0, 0.0], top_k=5, min_similarity=0.5)

        assert [r.text for r in results] == ["exact", "close"]
        assert results[0].similarity >= results[1].similarity
        assert all(0.0 <= r.similarity <= 1.0 for r in results)

    @pytest.mark.asyncio
    async def test_top_k_limits_results(self, store: ChromaDBProvider) -> None:
        await store.add_records(
            [_record("acme", f"text {i}", [1.0, float(i), 0.0, 0.0], ordinal=i) for i in range(5)]
        )
        results = await store.query("acme", "g1", [1.0, 0.0, 0.0, 0.0], top_k=2)
        assert len(results) == 2

    @pytest.mark.asyncio
    async def test_query_empty_tenant(self, store: ChromaDBProvider) -> None:
        assert await store.query("nobody", "g1", [1.0, 0.0, 0.0, 0.0], top_k=5) == []

    @pytest.mark.asyncio
    async def test_delete_other_generations(self, store: ChromaDBProvider) -> None:
        await store.add_records(
            [
                _record("acme", "old", [1.0, 0.0, 0.0, 0.0], generation="g1"),
                _record("acme", "new", [1.0, 0.0, 0.0, 0.0], generation="g2"),
                _record("globex", "theirs", [1.0, 0.0, 0.0, 0.0], generation="g1"),
            ]
        )

        removed = await store.delete_other_generations("acme", "g2")

        assert removed == 1
        assert await store.count("acme", "g2") == 1
        assert await store.count("acme", "g1") == 0
        assert await store.count("globex") == 1

    @pytest.mark.asyncio
    async def test_delete_generation_and_tenant(self, store: ChromaDBProvider) -> None:
        await store.add_records(
            [
                _record("acme", "a", [1.0, 0.0, 0.0, 0.0], generation="g1"),
                _record("acme", "b", [1.0, 0.0, 0.0, 0.0], generation="g2"),
                _record("globex", "c", [1.0, 0.0, 0.0, 0.0]),
            ]
        )
        assert await store.delete_generation("acme", "g1") == 1
        assert await store.delete_tenant("acme") == 1
        assert await store.count("acme") == 0
        assert await store.count("globex") == 1

    @pytest.mark.asyncio
    async def test_store_failures_are_translated(self, store: ChromaDBProvider) -> None:
        store._collection = MagicMock()
        store._collection.get.side_effect = RuntimeError("disk full")
        with pytest.raises(VectorStoreError):
            await store.count("acme")
        with pytest.raises(VectorStoreError):
            await store.query("acme", "g1", [1.0], top_k=1)

    @pytest.mark.asyncio
    async def test_dimension_mismatch_detected_on_startup(self, tmp_path: Path) -> None:
        path = str(tmp_path / "chroma")
        first = ChromaDBProvider(persist_directory=path, collection_name="dims")
        await first.add_records([_record("acme", "x", [1.0, 0.0, 0.0, 0.0])])

        with pytest.raises(VectorStoreError):
            ChromaDBProvider(persist_directory=path, collection_name="dims", dimension=8)

    def test_record_id_is_deterministic_and_scoped(self) -> None:
        first = record_id("acme", "g1", "https://acme.test/", 0)
        assert first == record_id("acme", "g1", "https://acme.test/", 0)
        assert first != record_id("globex", "g1", "https://acme.test/", 0)
        assert first != record_id("acme", "g2", "https://acme.test/", 0)

    def test_metadata(self, store: ChromaDBProvider) -> None:
        assert store.get_provider_name() == "chromadb"
        assert store.is_available() is True
