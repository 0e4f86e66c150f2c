"""Public interface definitions for all external collaborators.

Every external service sitekb talks to (embedding model, vector store,
cache, headless renderer, run-state database) is accessed exclusively
through the abstract base classes in this package.  Concrete adapters live
in ``sitekb/providers/`` and are wired together in ``sitekb/main.py``;
tests inject fakes.

CONCRETE PROVIDER MAP:
    Interface                  →  Concrete implementations (in sitekb/providers/)
    ─────────────────────────────────────────────────────────────────────
    IEmbeddingProvider         →  OpenAIEmbeddingProvider,
                                  FastEmbedEmbeddingProvider
    IVectorStoreProvider       →  ChromaDBProvider
    ICacheProvider             →  MemoryCacheProvider
    IIngestionStateProvider    →  SQLiteIngestionStateProvider
    IPageRenderer              →  (none shipped; injected by the host)
"""

from sitekb.interfaces.cache_provider import ICacheProvider
from sitekb.interfaces.embedding_provider import IEmbeddingProvider
from sitekb.interfaces.ingestion_state_provider import IIngestionStateProvider
from sitekb.interfaces.page_renderer import IPageRenderer
from sitekb.interfaces.vector_store_provider import IVectorStoreProvider

__all__ = [
    "ICacheProvider",
    "IEmbeddingProvider",
    "IIngestionStateProvider",
    "IPageRenderer",
    "IVectorStoreProvider",
]
