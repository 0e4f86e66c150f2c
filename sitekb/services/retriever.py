"""Tenant-scoped semantic retrieval with a read-through cache.

``find_similar`` flow::

    normalize query ──→ cache hit? ──yes──→ cached results
                             │no
                             ▼
            embed query ──→ nearest-neighbour search (tenant + active
            generation filter inside the store) ──→ threshold / top-k
                             │
                             ▼
                     cache the list ──→ results

An empty list is a normal answer (nothing above the threshold, or a
tenant that has not been trained yet).  Provider failures raise
:class:`~sitekb.utils.errors.RetrievalError`, which the chat layer treats
as "no context available".
"""

from __future__ import annotations

import hashlib

import structlog

from sitekb.interfaces.cache_provider import ICacheProvider
from sitekb.interfaces.ingestion_state_provider import IIngestionStateProvider
from sitekb.interfaces.vector_store_provider import IVectorStoreProvider
from sitekb.models.rag import RetrievalResult
from sitekb.services.embedding_service import EmbeddingService
from sitekb.utils.errors import EmbeddingProviderError, RetrievalError, VectorStoreError

logger = structlog.get_logger(logger_name=__name__)

_CACHE_PREFIX = "similar"


def normalize_query(query: str) -> str:
    """Lower-case and collapse whitespace; used only for cache keys."""
    return " ".join(query.lower().split())


class Retriever:
    """Finds the passages of one tenant most similar to a query."""

    def __init__(
        self,
        embedding_service: EmbeddingService,
        vector_store: IVectorStoreProvider,
        state_provider: IIngestionStateProvider,
        cache: ICacheProvider,
        default_top_k: int = 5,
        default_min_similarity: float = 0.7,
        cache_ttl: int = 300,
    ) -> None:
        self._embeddings = embedding_service
        self._store = vector_store
        self._state = state_provider
        self._cache = cache
        self._default_top_k = default_top_k
        self._default_min_similarity = default_min_similarity
        self._cache_ttl = cache_ttl

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def find_similar(
        self,
        tenant_id: str,
        query: str,
        top_k: int | None = None,
        min_similarity: float | None = None,
    ) -> list[RetrievalResult]:
        """Return up to *top_k* passages of *tenant_id* at or above *min_similarity*.

        Parameters
        ----------
        tenant_id:
            Tenant whose index is searched.  Other tenants' passages are
            never returned.
        query:
            Free-text question.
        top_k:
            Maximum results (default from settings, 5).
        min_similarity:
            Cosine-similarity floor (default from settings, 0.7).

        Returns
        -------
        list[RetrievalResult]
            Most similar first; possibly empty.

        Raises
        ------
        RetrievalError
            If embedding the query or searching the store failed.
        """
        top_k = self._default_top_k if top_k is None else top_k
        min_similarity = (
            self._default_min_similarity if min_similarity is None else min_similarity
        )
        normalized = normalize_query(query)
        if not normalized or top_k <= 0:
            return []

        key = self.cache_key(tenant_id, normalized, top_k, min_similarity)
        cached = await self._cache.get(key)
        if cached is not None:
            logger.debug("retrieval_cache_hit", tenant_id=tenant_id)
            return list(cached)

        try:
            generation = await self._state.get_active_generation(tenant_id)
        except Exception as exc:
            raise RetrievalError(
                message=f"Could not resolve active index for {tenant_id}: {exc}"
            ) from exc
        if generation is None:
            logger.info("retrieval_tenant_untrained", tenant_id=tenant_id)
            return []

        try:
            vector = await self._embeddings.embed(query.strip())
        except EmbeddingProviderError as exc:
            raise RetrievalError(
                message=f"Query embedding failed: {exc.message}",
                provider_name=exc.provider_name,
            ) from exc

        try:
            results = await self._store.query(
                tenant_id=tenant_id,
                generation=generation,
                vector=vector,
                top_k=top_k,
                min_similarity=min_similarity,
            )
        except VectorStoreError as exc:
            raise RetrievalError(
                message=f"Similarity search failed: {exc.message}",
                provider_name=exc.provider_name,
            ) from exc

        await self._cache.set(key, list(results), ttl=self._cache_ttl)
        logger.info(
            "retrieval_complete",
            tenant_id=tenant_id,
            results=len(results),
            top_score=results[0].similarity if results else 0.0,
        )
        return list(results)

    async def invalidate_tenant(self, tenant_id: str) -> int:
        """Drop every cached result for *tenant_id*.  Returns entries removed."""
        removed = await self._cache.delete_prefix(f"{_CACHE_PREFIX}:{tenant_id}:")
        logger.info("retrieval_cache_invalidated", tenant_id=tenant_id, removed=removed)
        return removed

    @staticmethod
    def cache_key(tenant_id: str, normalized_query: str, top_k: int, min_similarity: float) -> str:
        digest = hashlib.sha256(
            f"{normalized_query}|{top_k}|{min_similarity:.4f}".encode("utf-8")
        ).hexdigest()
        return f"{_CACHE_PREFIX}:{tenant_id}:{digest[:32]}"
