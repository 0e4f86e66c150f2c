"""Tests for the composition root in sitekb.main."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import httpx
import pytest

from sitekb.config.settings import Settings
from sitekb.main import _build_embedding_provider, build_services
from sitekb.models.rag import Chunk
from sitekb.providers.embedding.fastembed_embedding_provider import FastEmbedEmbeddingProvider
from sitekb.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider
from sitekb.utils.errors import ConfigurationError, VectorStoreError
from tests.conftest import HashingEmbeddingProvider


def _settings(tmp_path: Path, **overrides) -> Settings:
    values = {
        "chromadb_persist_dir": str(tmp_path / "chromadb"),
        "state_db_path": str(tmp_path / "state.db"),
        "openai_api_key": "",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


class TestEmbeddingProviderSelection:
    def test_openai_with_key(self, tmp_path: Path) -> None:
        provider = _build_embedding_provider(_settings(tmp_path, openai_api_key="sk-test"))
        assert isinstance(provider, OpenAIEmbeddingProvider)
        assert provider.get_provider_name() == "openai_embedding"

    def test_openai_without_key_falls_back_to_fastembed(self, tmp_path: Path) -> None:
        provider = _build_embedding_provider(_settings(tmp_path))
        assert isinstance(provider, FastEmbedEmbeddingProvider)

    def test_fastembed_model_from_settings(self, tmp_path: Path) -> None:
        provider = _build_embedding_provider(
            _settings(
                tmp_path,
                embedding_provider="FastEmbed",
                fastembed_model="sentence-transformers/all-MiniLM-L6-v2",
            )
        )
        assert provider.get_provider_name() == "fastembed_all-MiniLM-L6-v2"
        assert provider.get_dimension() == 384

    def test_unknown_provider_is_rejected(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError):
            _build_embedding_provider(_settings(tmp_path, embedding_provider="word2vec"))


class TestBuildServices:
    @pytest.mark.asyncio
    async def test_wires_every_component(self, tmp_path: Path) -> None:
        kb = build_services(_settings(tmp_path), embedding_provider=HashingEmbeddingProvider())
        try:
            await kb.initialize()
            assert kb.embedding_service.provider_name == "hashing"
            assert kb.vector_store.get_provider_name() == "chromadb"
            assert await kb.index_writer.count("acme") == 0
            assert await kb.orchestrator.history("acme") == []
            assert (tmp_path / "state.db").exists()
        finally:
            await kb.aclose()
        assert kb.http_client is None

    @pytest.mark.asyncio
    async def test_supplied_http_client_is_shared_and_closed(self, tmp_path: Path) -> None:
        client = httpx.AsyncClient()
        kb = build_services(
            _settings(tmp_path), embedding_provider=HashingEmbeddingProvider(), http_client=client
        )
        await kb.aclose()
        assert kb.http_client is client
        assert client.is_closed

    @pytest.mark.asyncio
    async def test_embedding_dimension_mismatch_fails_at_startup(self, tmp_path: Path) -> None:
        settings = _settings(tmp_path, embedding_batch_delay=0)
        kb = build_services(settings, embedding_provider=HashingEmbeddingProvider(dimension=64))
        await kb.initialize()
        await kb.index_writer.replace_all(
            "acme",
            [Chunk(tenant_id="acme", source_url="https://acme.test/", text="opening hours", ordinal=0)],
        )
        await kb.aclose()

        with pytest.raises(VectorStoreError):
            build_services(settings, embedding_provider=HashingEmbeddingProvider(dimension=32))

    def test_failed_assembly_opens_no_http_client(self, tmp_path: Path) -> None:
        with patch("sitekb.main.httpx.AsyncClient") as client_cls:
            with pytest.raises(ConfigurationError):
                build_services(
                    _settings(tmp_path, crawl_concurrency=0),
                    embedding_provider=HashingEmbeddingProvider(),
                )
        client_cls.assert_not_called()

    def test_invalid_chunk_overlap_is_configuration_error(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError):
            build_services(
                _settings(tmp_path, chunk_size=100, chunk_overlap=100, chunk_max_chars=200),
                embedding_provider=HashingEmbeddingProvider(),
            )

    def test_invalid_concurrency_is_configuration_error(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError):
            build_services(
                _settings(tmp_path, crawl_concurrency=0),
                embedding_provider=HashingEmbeddingProvider(),
            )
