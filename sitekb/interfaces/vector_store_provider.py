"""Abstract base class for vector-store providers.

The store holds :class:`~sitekb.models.rag.EmbeddingRecord` rows keyed by
``(tenant_id, generation, source_url, ordinal)``.  Every read and delete is
scoped by tenant inside the store query itself; implementations must never
rely on filtering results after the search.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from sitekb.models.rag import EmbeddingRecord, RetrievalResult


# Concrete implementations:
#   ChromaDBProvider - local persistent ChromaDB, cosine space
# Located in: sitekb/providers/vector_store/
class IVectorStoreProvider(ABC):
    """Contract for per-tenant nearest-neighbour storage."""

    @abstractmethod
    async def add_records(self, records: list[EmbeddingRecord]) -> int:
        """Insert (or overwrite) *records*.

        Returns
        -------
        int
            Number of records stored.

        Raises
        ------
        sitekb.utils.errors.VectorStoreError
            If the store rejects the write.
        """

    @abstractmethod
    async def query(
        self,
        tenant_id: str,
        generation: str,
        vector: list[float],
        top_k: int,
        min_similarity: float = 0.0,
    ) -> list[RetrievalResult]:
        """Return up to *top_k* records of one tenant generation nearest to *vector*.

        Parameters
        ----------
        tenant_id:
            Tenant whose records may be returned.  Applied as a store-side filter.
        generation:
            The tenant's active generation.
        vector:
            Query embedding.
        top_k:
            Maximum number of results.
        min_similarity:
            Results with cosine similarity below this value are dropped.

        Returns
        -------
        list[RetrievalResult]
            Most similar first.  An empty list is a valid outcome.

        Raises
        ------
        sitekb.utils.errors.VectorStoreError
            If the search itself fails.
        """

    @abstractmethod
    async def count(self, tenant_id: str, generation: str | None = None) -> int:
        """Count records of *tenant_id*, optionally restricted to one generation."""

    @abstractmethod
    async def delete_generation(self, tenant_id: str, generation: str) -> int:
        """Delete every record of one tenant generation.  Returns the number deleted."""

    @abstractmethod
    async def delete_other_generations(self, tenant_id: str, keep_generation: str) -> int:
        """Delete every record of *tenant_id* not in *keep_generation*."""

    @abstractmethod
    async def delete_tenant(self, tenant_id: str) -> int:
        """Delete every record of *tenant_id*."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this store."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the store is reachable."""
