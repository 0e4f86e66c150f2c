"""Unit tests for IndexWriter staging-then-swap replacement."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from sitekb.models.rag import Chunk
from sitekb.services.index_writer import IndexWriter
from sitekb.utils.errors import IndexWriteError, VectorStoreError
from tests.conftest import HashingEmbeddingProvider, InMemoryStateProvider, InMemoryVectorStore


def _chunks(tenant_id: str, texts: list[str], url: str = "https://acme.test/") -> list[Chunk]:
    return [
        Chunk(tenant_id=tenant_id, source_url=url, text=text, ordinal=i)
        for i, text in enumerate(texts)
    ]


_FIRST = [f"first crawl passage {i} about widgets" for i in range(6)]
_SECOND = [f"second crawl passage {i} about gadgets" for i in range(3)]


class TestReplaceAll:
    @pytest.mark.asyncio
    async def test_writes_and_activates(
        self,
        index_writer: IndexWriter,
        state_provider: InMemoryStateProvider,
        vector_store: InMemoryVectorStore,
    ) -> None:
        written = await index_writer.replace_all("acme", _chunks("acme", _FIRST))

        assert written == 6
        assert await index_writer.count("acme") == 6
        active = state_provider.generations["acme"]
        assert vector_store.generations("acme") == {active}

    @pytest.mark.asyncio
    async def test_reingestion_replaces_previous_records(
        self,
        index_writer: IndexWriter,
        state_provider: InMemoryStateProvider,
        vector_store: InMemoryVectorStore,
    ) -> None:
        await index_writer.replace_all("acme", _chunks("acme", _FIRST))
        first_generation = state_provider.generations["acme"]

        await index_writer.replace_all("acme", _chunks("acme", _SECOND))

        assert await index_writer.count("acme") == 3
        assert state_provider.generations["acme"] != first_generation
        assert len(vector_store.records) == 3
        assert {r.text for r in vector_store.records.values()} == set(_SECOND)

    @pytest.mark.asyncio
    async def test_other_tenants_untouched(self, index_writer: IndexWriter) -> None:
        await index_writer.replace_all("globex", _chunks("globex", _SECOND))
        await index_writer.replace_all("acme", _chunks("acme", _FIRST))
        await index_writer.replace_all("acme", _chunks("acme", _SECOND))
        assert await index_writer.count("globex") == 3

    @pytest.mark.asyncio
    async def test_chunks_that_fail_to_embed_are_dropped(
        self, index_writer: IndexWriter, embedding_provider: HashingEmbeddingProvider
    ) -> None:
        embedding_provider.fail_on = {"POISON"}
        texts = ["good passage one", "POISON passage", "good passage two"]

        written = await index_writer.replace_all("acme", _chunks("acme", texts))

        assert written == 2
        assert await index_writer.count("acme") == 2

    @pytest.mark.asyncio
    async def test_records_carry_chunk_fields(
        self, index_writer: IndexWriter, vector_store: InMemoryVectorStore
    ) -> None:
        await index_writer.replace_all(
            "acme", _chunks("acme", ["only passage"], url="https://acme.test/faq")
        )
        (record,) = vector_store.records.values()
        assert (record.tenant_id, record.source_url, record.ordinal) == (
            "acme",
            "https://acme.test/faq",
            0,
        )
        assert record.vector


class TestReplaceAllFailures:
    @pytest.mark.asyncio
    async def test_empty_chunk_list_is_rejected(self, index_writer: IndexWriter) -> None:
        await index_writer.replace_all("acme", _chunks("acme", _FIRST))
        with pytest.raises(IndexWriteError):
            await index_writer.replace_all("acme", [])
        assert await index_writer.count("acme") == 6

    @pytest.mark.asyncio
    async def test_foreign_chunks_are_rejected(self, index_writer: IndexWriter) -> None:
        with pytest.raises(IndexWriteError):
            await index_writer.replace_all("acme", _chunks("globex", _FIRST))
        assert await index_writer.count("acme") == 0

    @pytest.mark.asyncio
    async def test_embedding_outage_keeps_previous_index(
        self,
        index_writer: IndexWriter,
        embedding_provider: HashingEmbeddingProvider,
        vector_store: InMemoryVectorStore,
    ) -> None:
        await index_writer.replace_all("acme", _chunks("acme", _FIRST))
        embedding_provider.fail_all = True

        with pytest.raises(IndexWriteError):
            await index_writer.replace_all("acme", _chunks("acme", _SECOND))

        assert await index_writer.count("acme") == 6
        assert len(vector_store.generations("acme")) == 1

    @pytest.mark.asyncio
    async def test_store_failure_keeps_previous_index(
        self, index_writer: IndexWriter, vector_store: InMemoryVectorStore
    ) -> None:
        await index_writer.replace_all("acme", _chunks("acme", _FIRST))
        vector_store.fail_add = True

        with pytest.raises(IndexWriteError):
            await index_writer.replace_all("acme", _chunks("acme", _SECOND))

        assert await index_writer.count("acme") == 6

    @pytest.mark.asyncio
    async def test_pointer_failure_discards_staged_generation(
        self,
        index_writer: IndexWriter,
        state_provider: InMemoryStateProvider,
        vector_store: InMemoryVectorStore,
    ) -> None:
        await index_writer.replace_all("acme", _chunks("acme", _FIRST))
        active = state_provider.generations["acme"]
        state_provider.fail_set_generation = True

        with pytest.raises(IndexWriteError):
            await index_writer.replace_all("acme", _chunks("acme", _SECOND))

        assert state_provider.generations["acme"] == active
        assert vector_store.generations("acme") == {active}

    @pytest.mark.asyncio
    async def test_stale_cleanup_failure_is_not_fatal(
        self, index_writer: IndexWriter, vector_store: InMemoryVectorStore
    ) -> None:
        await index_writer.replace_all("acme", _chunks("acme", _FIRST))
        vector_store.delete_other_generations = AsyncMock(
            side_effect=VectorStoreError(message="timeout", provider_name="memory")
        )

        written = await index_writer.replace_all("acme", _chunks("acme", _SECOND))

        assert written == 3
        # Stale rows linger but are invisible to count and retrieval.
        assert await index_writer.count("acme") == 3
        assert len(vector_store.records) == 9


class TestCountAndDelete:
    @pytest.mark.asyncio
    async def test_untrained_tenant_counts_zero(self, index_writer: IndexWriter) -> None:
        assert await index_writer.count("nobody") == 0

    @pytest.mark.asyncio
    async def test_delete_tenant(
        self, index_writer: IndexWriter, state_provider: InMemoryStateProvider
    ) -> None:
        await index_writer.replace_all("acme", _chunks("acme", _FIRST))
        await index_writer.replace_all("globex", _chunks("globex", _SECOND))

        removed = await index_writer.delete_tenant("acme")

        assert removed == 6
        assert await index_writer.count("acme") == 0
        assert "acme" not in state_provider.generations
        assert await index_writer.count("globex") == 3


class TestConcurrentReplacement:
    @staticmethod
    def _slow_first_flip(state_provider: InMemoryStateProvider) -> None:
        original = state_provider.set_active_generation
        calls = 0

        async def set_active_generation(tenant_id: str, generation: str) -> None:
            nonlocal calls
            calls += 1
            if calls == 1:
                await asyncio.sleep(0.05)
            await original(tenant_id, generation)

        state_provider.set_active_generation = set_active_generation

    @pytest.mark.asyncio
    async def test_overlapping_replacements_keep_a_live_index(
        self,
        index_writer: IndexWriter,
        state_provider: InMemoryStateProvider,
        vector_store: InMemoryVectorStore,
    ) -> None:
        self._slow_first_flip(state_provider)

        await asyncio.gather(
            index_writer.replace_all("acme", _chunks("acme", _FIRST)),
            index_writer.replace_all("acme", _chunks("acme", _SECOND)),
        )

        assert await index_writer.count("acme") == 3
        assert vector_store.generations("acme") == {state_provider.generations["acme"]}

    @pytest.mark.asyncio
    async def test_delete_waits_for_running_replacement(
        self,
        index_writer: IndexWriter,
        state_provider: InMemoryStateProvider,
        vector_store: InMemoryVectorStore,
    ) -> None:
        self._slow_first_flip(state_provider)

        await asyncio.gather(
            index_writer.replace_all("acme", _chunks("acme", _FIRST)),
            index_writer.delete_tenant("acme"),
        )

        assert await index_writer.count("acme") == 0
        assert "acme" not in state_provider.generations
        assert vector_store.generations("acme") == set()
