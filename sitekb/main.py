"""SiteKB composition root.

Wires every provider and service from :class:`~sitekb.config.settings.Settings`
into a :class:`SiteKB` container used by the CLI and by embedding
applications (job workers, chat backends).

Usage::

    kb = build_services(Settings())
    await kb.initialize()
    run = await kb.orchestrator.run(IngestionJob(tenant_id="acme", base_url="https://acme.test"))
    hits = await kb.retriever.find_similar("acme", "What are your opening hours?")
    await kb.aclose()
"""

from __future__ import annotations

from dataclasses import dataclass

import httpx
import structlog

from sitekb.config.settings import Settings
from sitekb.interfaces.embedding_provider import IEmbeddingProvider
from sitekb.interfaces.page_renderer import IPageRenderer
from sitekb.pipeline.progress_tracker import IngestionProgressTracker
from sitekb.providers.cache.memory_cache import MemoryCacheProvider
from sitekb.providers.state.sqlite_ingestion_state_provider import SQLiteIngestionStateProvider
from sitekb.providers.vector_store.chromadb_provider import ChromaDBProvider
from sitekb.services.chunker import TextChunker
from sitekb.services.crawler.site_crawler import SiteCrawler
from sitekb.services.embedding_service import EmbeddingService
from sitekb.services.index_writer import IndexWriter
from sitekb.services.ingestion_orchestrator import IngestionOrchestrator
from sitekb.services.retriever import Retriever
from sitekb.utils.errors import ConfigurationError

_logger = structlog.get_logger(logger_name=__name__)


@dataclass
class SiteKB:
    """Every long-lived component of one SiteKB deployment.

    ``http_client`` is the caller-supplied shared client, closed by
    :meth:`aclose`; ``None`` when each crawl manages its own.
    """

    settings: Settings
    http_client: httpx.AsyncClient | None
    embedding_provider: IEmbeddingProvider
    vector_store: ChromaDBProvider
    state_provider: SQLiteIngestionStateProvider
    cache: MemoryCacheProvider
    embedding_service: EmbeddingService
    crawler: SiteCrawler
    chunker: TextChunker
    index_writer: IndexWriter
    retriever: Retriever
    progress_tracker: IngestionProgressTracker
    orchestrator: IngestionOrchestrator

    async def initialize(self) -> None:
        """Create the ingestion-state tables.  Call once before first use."""
        await self.state_provider.initialize()

    async def aclose(self) -> None:
        if self.http_client is not None:
            await self.http_client.aclose()


# ---------------------------------------------------------------------------
# Provider selection
# ---------------------------------------------------------------------------


def _build_embedding_provider(app_settings: Settings) -> IEmbeddingProvider:
    """Return the embedding provider named by ``EMBEDDING_PROVIDER``.

    ``openai`` without an API key falls back to the local fastembed model
    so a development checkout works offline.
    """
    name = app_settings.embedding_provider.strip().lower()

    if name == "openai":
        from sitekb.providers.embedding.openai_embedding_provider import (
            OpenAIEmbeddingProvider,
        )

        provider: IEmbeddingProvider = OpenAIEmbeddingProvider(settings=app_settings)
        if provider.is_available():
            return provider
        _logger.warning(
            "openai_embedding_unavailable",
            msg="OPENAI_API_KEY is not set; falling back to fastembed.",
        )
        name = "fastembed"

    if name == "fastembed":
        from sitekb.providers.embedding.fastembed_embedding_provider import (
            FastEmbedEmbeddingProvider,
        )

        return FastEmbedEmbeddingProvider(model_name=app_settings.fastembed_model)

    raise ConfigurationError(
        message=f"Unknown EMBEDDING_PROVIDER {app_settings.embedding_provider!r} "
        "(expected 'openai' or 'fastembed')"
    )


# ---------------------------------------------------------------------------
# Full assembly
# ---------------------------------------------------------------------------


def build_services(
    app_settings: Settings,
    embedding_provider: IEmbeddingProvider | None = None,
    renderer: IPageRenderer | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> SiteKB:
    """Construct every provider and service for *app_settings*.

    The optional arguments replace the configured adapters (tests, or a
    host application that owns its own HTTP client or headless browser).
    Without *http_client* the crawler opens a client per crawl, so a failed
    assembly leaves no connection pool behind.

    Raises
    ------
    ConfigurationError
        If the settings describe an invalid combination.
    VectorStoreError
        If the stored vectors do not match the embedding provider's dimension.
    """
    try:
        # -- Embeddings --
        embedding_provider = embedding_provider or _build_embedding_provider(app_settings)
        embedding_service = EmbeddingService(
            provider=embedding_provider,
            batch_size=app_settings.embedding_batch_size,
            batch_delay=app_settings.embedding_batch_delay,
            max_retries=app_settings.embedding_max_retries,
            retry_delay=app_settings.embedding_retry_delay,
        )

        # -- Storage --
        vector_store = ChromaDBProvider(
            persist_directory=app_settings.chromadb_persist_dir,
            collection_name=app_settings.chromadb_collection,
            dimension=embedding_provider.get_dimension(),
        )
        state_provider = SQLiteIngestionStateProvider(db_path=app_settings.state_db_path)
        cache = MemoryCacheProvider(
            max_size=app_settings.retrieval_cache_max_size,
            ttl=app_settings.retrieval_cache_ttl,
        )

        # -- Ingestion --
        crawler = SiteCrawler.from_settings(
            app_settings, http_client=http_client, renderer=renderer
        )
        chunker = TextChunker(
            chunk_size=app_settings.chunk_size,
            overlap=app_settings.chunk_overlap,
            min_chunk_chars=app_settings.chunk_min_chars,
            max_chunk_chars=app_settings.chunk_max_chars,
        )
    except ValueError as exc:
        raise ConfigurationError(message=f"Invalid configuration: {exc}") from exc

    index_writer = IndexWriter(
        vector_store=vector_store,
        embedding_service=embedding_service,
        state_provider=state_provider,
    )
    retriever = Retriever(
        embedding_service=embedding_service,
        vector_store=vector_store,
        state_provider=state_provider,
        cache=cache,
        default_top_k=app_settings.retrieval_top_k,
        default_min_similarity=app_settings.retrieval_min_similarity,
        cache_ttl=app_settings.retrieval_cache_ttl,
    )
    progress_tracker = IngestionProgressTracker()
    orchestrator = IngestionOrchestrator(
        crawler=crawler,
        chunker=chunker,
        index_writer=index_writer,
        state_provider=state_provider,
        retriever=retriever,
        progress_tracker=progress_tracker,
        default_max_pages=app_settings.ingestion_max_pages,
        default_max_bytes=app_settings.ingestion_max_bytes,
    )

    _logger.info(
        "services_built",
        embedding_provider=embedding_provider.get_provider_name(),
        vector_store=vector_store.get_provider_name(),
        persist_dir=app_settings.chromadb_persist_dir,
        state_db=app_settings.state_db_path,
    )

    return SiteKB(
        settings=app_settings,
        http_client=http_client,
        embedding_provider=embedding_provider,
        vector_store=vector_store,
        state_provider=state_provider,
        cache=cache,
        embedding_service=embedding_service,
        crawler=crawler,
        chunker=chunker,
        index_writer=index_writer,
        retriever=retriever,
        progress_tracker=progress_tracker,
        orchestrator=orchestrator,
    )
