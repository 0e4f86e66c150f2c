"""Shared pytest fixtures and fakes for the sitekb test suite."""

from __future__ import annotations

import hashlib
import math
import re
from collections.abc import Iterable
from typing import Any

import httpx
import pytest

from sitekb.interfaces.embedding_provider import IEmbeddingProvider
from sitekb.interfaces.ingestion_state_provider import IIngestionStateProvider
from sitekb.interfaces.page_renderer import IPageRenderer
from sitekb.interfaces.vector_store_provider import IVectorStoreProvider
from sitekb.models.ingestion import IngestionRun
from sitekb.models.rag import EmbeddingRecord, RetrievalResult
from sitekb.providers.cache.memory_cache import MemoryCacheProvider
from sitekb.services.embedding_service import EmbeddingService
from sitekb.services.index_writer import IndexWriter
from sitekb.services.retriever import Retriever
from sitekb.utils.errors import EmbeddingProviderError, VectorStoreError

ORIGIN = "https://acme.test"
EMBEDDING_DIM = 64

_TOKEN_RE = re.compile(r"[a-z0-9]+")


# ---------------------------------------------------------------------------
# Embeddings
# ---------------------------------------------------------------------------


def hashed_vector(text: str, dimension: int = EMBEDDING_DIM) -> list[float]:
    """Deterministic bag-of-words vector: shared words mean higher cosine."""
    vector = [0.0] * dimension
    for token in _TOKEN_RE.findall(text.lower()):
        index = int(hashlib.md5(token.encode("utf-8")).hexdigest(), 16) % dimension
        vector[index] += 1.0
    norm = math.sqrt(sum(v * v for v in vector))
    if norm == 0:
        vector[0] = 1.0
        return vector
    return [v / norm for v in vector]


class HashingEmbeddingProvider(IEmbeddingProvider):
    """Offline embedder.  Texts containing a *fail_on* marker raise."""

    def __init__(self, dimension: int = EMBEDDING_DIM, fail_on: Iterable[str] = ()) -> None:
        self.dimension = dimension
        self.fail_on = set(fail_on)
        self.fail_all = False
        self.batch_calls: list[list[str]] = []
        self.single_calls: list[str] = []

    def _check(self, text: str) -> None:
        if self.fail_all or any(marker in text for marker in self.fail_on):
            raise EmbeddingProviderError(message="simulated outage", provider_name="hashing")

    async def embed(self, texts: list[str]) -> list[list[float]]:
        self.batch_calls.append(list(texts))
        for text in texts:
            self._check(text)
        return [hashed_vector(t, self.dimension) for t in texts]

    async def embed_single(self, text: str) -> list[float]:
        self.single_calls.append(text)
        self._check(text)
        return hashed_vector(text, self.dimension)

    def get_dimension(self) -> int:
        return self.dimension

    def get_provider_name(self) -> str:
        return "hashing"

    def is_available(self) -> bool:
        return True


# ---------------------------------------------------------------------------
# Storage fakes
# ---------------------------------------------------------------------------


def _cosine(a: list[float], b: list[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


class InMemoryVectorStore(IVectorStoreProvider):
    """Dict-backed vector store with the same tenant/generation scoping as ChromaDB."""

    def __init__(self) -> None:
        self.records: dict[tuple[str, str, str, int], EmbeddingRecord] = {}
        self.fail_add = False
        self.fail_query = False
        self.query_calls = 0

    async def add_records(self, records: list[EmbeddingRecord]) -> int:
        if self.fail_add:
            raise VectorStoreError(message="simulated write failure", provider_name="memory")
        for record in records:
            key = (record.tenant_id, record.generation, record.source_url, record.ordinal)
            self.records[key] = record
        return len(records)

    async def query(
        self,
        tenant_id: str,
        generation: str,
        vector: list[float],
        top_k: int,
        min_similarity: float = 0.0,
    ) -> list[RetrievalResult]:
        self.query_calls += 1
        if self.fail_query:
            raise VectorStoreError(message="simulated search failure", provider_name="memory")
        scored = []
        for record in self._scoped(tenant_id, generation):
            similarity = max(0.0, min(1.0, _cosine(vector, record.vector)))
            if similarity >= min_similarity:
                scored.append(
                    RetrievalResult(
                        text=record.text, source_url=record.source_url, similarity=similarity
                    )
                )
        scored.sort(key=lambda r: r.similarity, reverse=True)
        return scored[:top_k]

    async def count(self, tenant_id: str, generation: str | None = None) -> int:
        return len(self._scoped(tenant_id, generation))

    async def delete_generation(self, tenant_id: str, generation: str) -> int:
        return self._delete(lambda r: r.tenant_id == tenant_id and r.generation == generation)

    async def delete_other_generations(self, tenant_id: str, keep_generation: str) -> int:
        return self._delete(lambda r: r.tenant_id == tenant_id and r.generation != keep_generation)

    async def delete_tenant(self, tenant_id: str) -> int:
        return self._delete(lambda r: r.tenant_id == tenant_id)

    def get_provider_name(self) -> str:
        return "memory"

    def is_available(self) -> bool:
        return True

    def generations(self, tenant_id: str) -> set[str]:
        return {r.generation for r in self.records.values() if r.tenant_id == tenant_id}

    def _scoped(self, tenant_id: str, generation: str | None) -> list[EmbeddingRecord]:
        return [
            r
            for r in self.records.values()
            if r.tenant_id == tenant_id and (generation is None or r.generation == generation)
        ]

    def _delete(self, predicate: Any) -> int:
        doomed = [key for key, record in self.records.items() if predicate(record)]
        for key in doomed:
            del self.records[key]
        return len(doomed)


class InMemoryStateProvider(IIngestionStateProvider):
    def __init__(self) -> None:
        self.generations: dict[str, str] = {}
        self.runs: dict[str, IngestionRun] = {}
        self.fail_set_generation = False

    async def initialize(self) -> None:
        return None

    async def get_active_generation(self, tenant_id: str) -> str | None:
        return self.generations.get(tenant_id)

    async def set_active_generation(self, tenant_id: str, generation: str) -> None:
        if self.fail_set_generation:
            raise RuntimeError("state store unavailable")
        self.generations[tenant_id] = generation

    async def clear_active_generation(self, tenant_id: str) -> None:
        self.generations.pop(tenant_id, None)

    async def record_run(self, run: IngestionRun) -> None:
        self.runs[run.run_id] = run

    async def get_run(self, run_id: str) -> IngestionRun | None:
        return self.runs.get(run_id)

    async def list_runs(self, tenant_id: str, limit: int = 20) -> list[IngestionRun]:
        runs = [r for r in self.runs.values() if r.tenant_id == tenant_id]
        runs.sort(key=lambda r: r.started_at, reverse=True)
        return runs[:limit]


class FakeRenderer(IPageRenderer):
    """Returns canned HTML per URL; unknown URLs render to ``None``."""

    def __init__(self, pages: dict[str, str] | None = None, fail: bool = False) -> None:
        self.pages = pages or {}
        self.fail = fail
        self.rendered: list[str] = []

    async def render(self, url: str) -> str | None:
        self.rendered.append(url)
        if self.fail:
            raise RuntimeError("browser crashed")
        return self.pages.get(url)

    def get_provider_name(self) -> str:
        return "fake-renderer"


# ---------------------------------------------------------------------------
# Fake websites
# ---------------------------------------------------------------------------


def make_html(title: str, body: str, links: Iterable[str] = ()) -> str:
    """A page with navigation links, a footer, and *body* as main content."""
    nav = "".join(f'<a href="{href}">{href}</a> ' for href in links)
    return (
        f"<html><head><title>{title}</title><script>var tracking = 1;</script></head>"
        f"<body><nav>{nav}</nav><main><h1>{title}</h1><p>{body}</p></main>"
        "<footer>Copyright Acme Widgets</footer></body></html>"
    )


def prose(topic: str, sentences: int = 3) -> str:
    """Readable filler text about *topic*, comfortably above the thin-page cutoff."""
    return " ".join(
        f"Our {topic} guide explains detail number {i} for every customer." for i in range(sentences)
    )


class FakeSite:
    """Routes ``path -> response`` for an ``httpx.MockTransport``.

    Unknown paths (including robots.txt and sitemaps) answer 404.
    """

    def __init__(self, origin: str = ORIGIN) -> None:
        self.origin = origin
        self.routes: dict[str, tuple[int, str, dict[str, str]]] = {}
        self.broken: set[str] = set()
        self.requests: list[str] = []

    def page(self, path: str, title: str, body: str, links: Iterable[str] = ()) -> FakeSite:
        return self.route(path, 200, make_html(title, body, links))

    def route(
        self,
        path: str,
        status: int,
        content: str = "",
        content_type: str = "text/html; charset=utf-8",
        headers: dict[str, str] | None = None,
    ) -> FakeSite:
        self.routes[path] = (status, content, {"content-type": content_type, **(headers or {})})
        return self

    def redirect(self, path: str, location: str) -> FakeSite:
        return self.route(path, 301, headers={"location": location})

    def unreachable(self, path: str) -> FakeSite:
        self.broken.add(path)
        return self

    def url(self, path: str = "/") -> str:
        return self.origin + path

    def fetched_paths(self) -> list[str]:
        return [httpx.URL(url).path for url in self.requests]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(str(request.url))
        path = request.url.path
        if path in self.broken:
            raise httpx.ConnectError("connection refused", request=request)
        if path not in self.routes:
            return httpx.Response(404, text="missing", headers={"content-type": "text/plain"})
        status, content, headers = self.routes[path]
        return httpx.Response(status, text=content, headers=headers)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler), follow_redirects=True)


def three_page_site() -> FakeSite:
    site = FakeSite()
    site.page("/", "Acme Home", prose("welcome"), links=["/about", "/contact"])
    site.page("/about", "About Acme", prose("history"), links=["/", "/contact"])
    site.page("/contact", "Contact Acme", prose("opening hours"), links=["/"])
    return site


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def embedding_provider() -> HashingEmbeddingProvider:
    return HashingEmbeddingProvider()


@pytest.fixture()
def vector_store() -> InMemoryVectorStore:
    return InMemoryVectorStore()


@pytest.fixture()
def state_provider() -> InMemoryStateProvider:
    return InMemoryStateProvider()


@pytest.fixture()
def cache() -> MemoryCacheProvider:
    return MemoryCacheProvider(max_size=100, ttl=3600)


@pytest.fixture()
def embedding_service(embedding_provider: HashingEmbeddingProvider) -> EmbeddingService:
    return EmbeddingService(
        provider=embedding_provider, batch_size=4, batch_delay=0, max_retries=2, retry_delay=0
    )


@pytest.fixture()
def index_writer(
    vector_store: InMemoryVectorStore,
    embedding_service: EmbeddingService,
    state_provider: InMemoryStateProvider,
) -> IndexWriter:
    return IndexWriter(
        vector_store=vector_store,
        embedding_service=embedding_service,
        state_provider=state_provider,
    )


@pytest.fixture()
def retriever(
    embedding_service: EmbeddingService,
    vector_store: InMemoryVectorStore,
    state_provider: InMemoryStateProvider,
    cache: MemoryCacheProvider,
) -> Retriever:
    return Retriever(
        embedding_service=embedding_service,
        vector_store=vector_store,
        state_provider=state_provider,
        cache=cache,
        default_top_k=5,
        default_min_similarity=0.0,
    )

