"""ChromaDB vector store provider adapter.

Wraps ``chromadb.PersistentClient`` to implement :class:`IVectorStoreProvider`.
One collection holds every tenant; each record carries ``tenant_id`` and
``generation`` metadata, and every query, count and delete is issued with a
``where`` filter on those fields so tenant scoping happens inside ChromaDB.
Uses cosine distance, so similarity is ``1 - distance``.
"""

from __future__ import annotations

import hashlib
import os
from typing import Any

# Telemetry must be off before chromadb is imported.
os.environ["ANONYMIZED_TELEMETRY"] = "False"

import chromadb
import structlog

from sitekb.interfaces.vector_store_provider import IVectorStoreProvider
from sitekb.models.rag import EmbeddingRecord, RetrievalResult
from sitekb.utils.errors import VectorStoreError

logger = structlog.get_logger(logger_name=__name__)

_UPSERT_BATCH_SIZE = 500


class _NoopEmbeddingFunction(chromadb.EmbeddingFunction[list[str]]):
    """No-op embedding function that prevents ChromaDB from loading a model.

    sitekb always passes pre-computed embeddings, so ChromaDB's built-in
    embedding is never invoked.  Without this, ChromaDB downloads its
    default ONNX model on collection creation.
    """

    def __call__(self, input: list[str]) -> list[list[float]]:
        raise NotImplementedError(
            "sitekb uses pre-computed embeddings; "
            "ChromaDB's built-in embedding should never be called."
        )

    def name(self) -> str:
        """Return function name (required by ChromaDB's EmbeddingFunction protocol)."""
        return "noop_precomputed"


def record_id(tenant_id: str, generation: str, source_url: str, ordinal: int) -> str:
    """Deterministic record id for ``(tenant, generation, url, ordinal)``."""
    raw = f"{tenant_id}|{generation}|{source_url}|{ordinal}"
    return hashlib.sha1(raw.encode("utf-8")).hexdigest()


class ChromaDBProvider(IVectorStoreProvider):
    """Vector store provider backed by ChromaDB with local persistence.

    Parameters
    ----------
    persist_directory:
        Directory for the on-disk database.  Ignored when *client* is given.
    collection_name:
        Collection holding every tenant's records.
    dimension:
        Expected embedding dimension.  When given, a non-empty collection
        holding vectors of another size is rejected at startup.
    client:
        Pre-built ChromaDB client (tests pass an ephemeral one).
    """

    def __init__(
        self,
        persist_directory: str = "./data/chromadb",
        collection_name: str = "sitekb_chunks",
        dimension: int | None = None,
        client: Any | None = None,
    ) -> None:
        self._persist_directory = persist_directory
        self._collection_name = collection_name
        try:
            self._client = client or chromadb.PersistentClient(
                path=persist_directory,
                settings=chromadb.config.Settings(anonymized_telemetry=False),
            )
            self._collection = self._client.get_or_create_collection(
                name=collection_name,
                metadata={"hnsw:space": "cosine"},
                embedding_function=_NoopEmbeddingFunction(),
            )
        except Exception as exc:
            raise VectorStoreError(
                message=f"ChromaDB initialisation failed: {exc}",
                provider_name="chromadb",
            ) from exc

        if dimension:
            self._validate_embedding_dimensions(dimension)

    # ------------------------------------------------------------------
    # Startup validation
    # ------------------------------------------------------------------

    def _validate_embedding_dimensions(self, expected_dim: int) -> None:
        """Peek at one stored vector and compare its length to *expected_dim*.

        A mismatch means every query would return garbage, so it fails loud.
        """
        try:
            if self._collection.count() == 0:
                return
            sample = self._collection.peek(limit=1)
            embeddings = sample.get("embeddings") if sample else None
            if embeddings is None or len(embeddings) == 0:
                return
            stored_dim = len(embeddings[0])
        except Exception as exc:
            logger.warning("embedding_dimension_check_skipped", error=str(exc))
            return

        if stored_dim != expected_dim:
            logger.error(
                "embedding_dimension_mismatch",
                stored_dim=stored_dim,
                expected_dim=expected_dim,
            )
            raise VectorStoreError(
                message=(
                    f"Embedding dimension mismatch: collection has {stored_dim}-dim vectors "
                    f"but the embedding provider produces {expected_dim}-dim vectors"
                ),
                provider_name="chromadb",
            )

    # ------------------------------------------------------------------
    # IVectorStoreProvider implementation
    # ------------------------------------------------------------------

    async def add_records(self, records: list[EmbeddingRecord]) -> int:
        """Upsert records in batches of 500 to keep memory bounded."""
        if not records:
            return 0

        try:
            total_stored = 0
            for start in range(0, len(records), _UPSERT_BATCH_SIZE):
                batch = records[start : start + _UPSERT_BATCH_SIZE]
                self._collection.upsert(
                    ids=[
                        record_id(r.tenant_id, r.generation, r.source_url, r.ordinal)
                        for r in batch
                    ],
                    embeddings=[r.vector for r in batch],
                    documents=[r.text for r in batch],
                    metadatas=[self._record_to_metadata(r) for r in batch],
                )
                total_stored += len(batch)

            logger.debug("chromadb_add_records", count=total_stored)
            return total_stored
        except Exception as exc:
            raise VectorStoreError(
                message=f"ChromaDB add_records failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    async def query(
        self,
        tenant_id: str,
        generation: str,
        vector: list[float],
        top_k: int,
        min_similarity: float = 0.0,
    ) -> list[RetrievalResult]:
        """Nearest-neighbour search restricted to one tenant generation."""
        if top_k <= 0:
            return []

        where = self._scope(tenant_id, generation)
        try:
            # Ask for no more neighbours than the filter can match; HNSW
            # filtered queries misbehave when n_results exceeds that.
            available = len(self._collection.get(where=where, include=[])["ids"])
            if available == 0:
                return []

            results = self._collection.query(
                query_embeddings=[vector],
                n_results=min(top_k, available),
                where=where,
                include=["documents", "metadatas", "distances"],
            )
        except Exception as exc:
            raise VectorStoreError(
                message=f"ChromaDB query failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        if not results["documents"] or not results["documents"][0]:
            return []

        documents = results["documents"][0]
        metadatas = results["metadatas"][0] if results["metadatas"] else [{}] * len(documents)
        distances = results["distances"][0] if results["distances"] else [1.0] * len(documents)

        matched: list[RetrievalResult] = []
        for doc_text, meta, distance in zip(documents, metadatas, distances, strict=True):
            similarity = max(0.0, min(1.0, 1.0 - float(distance)))
            if similarity < min_similarity:
                continue
            matched.append(
                RetrievalResult(
                    text=doc_text,
                    source_url=str(meta.get("source_url", "")),
                    similarity=similarity,
                )
            )

        matched.sort(key=lambda r: r.similarity, reverse=True)
        logger.debug(
            "chromadb_query",
            tenant_id=tenant_id,
            candidates=len(documents),
            results_count=len(matched),
            top_score=matched[0].similarity if matched else 0.0,
        )
        return matched[:top_k]

    async def count(self, tenant_id: str, generation: str | None = None) -> int:
        where = self._scope(tenant_id, generation)
        try:
            return len(self._collection.get(where=where, include=[])["ids"])
        except Exception as exc:
            raise VectorStoreError(
                message=f"ChromaDB count failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    async def delete_generation(self, tenant_id: str, generation: str) -> int:
        return self._delete_where(self._scope(tenant_id, generation), "delete_generation")

    async def delete_other_generations(self, tenant_id: str, keep_generation: str) -> int:
        where = {"$and": [{"tenant_id": tenant_id}, {"generation": {"$ne": keep_generation}}]}
        return self._delete_where(where, "delete_other_generations")

    async def delete_tenant(self, tenant_id: str) -> int:
        return self._delete_where(self._scope(tenant_id), "delete_tenant")

    def get_provider_name(self) -> str:
        return "chromadb"

    def is_available(self) -> bool:
        """Return ``True`` if the ChromaDB collection is accessible."""
        try:
            self._collection.count()
            return True
        except Exception:
            return False

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _delete_where(self, where: dict[str, Any], operation: str) -> int:
        try:
            ids = self._collection.get(where=where, include=[])["ids"]
            if ids:
                self._collection.delete(ids=ids)
        except Exception as exc:
            raise VectorStoreError(
                message=f"ChromaDB {operation} failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        logger.info(f"chromadb_{operation}", where=where, deleted_count=len(ids))
        return len(ids)

    @staticmethod
    def _scope(tenant_id: str, generation: str | None = None) -> dict[str, Any]:
        if generation is None:
            return {"tenant_id": tenant_id}
        return {"$and": [{"tenant_id": tenant_id}, {"generation": generation}]}

    @staticmethod
    def _record_to_metadata(record: EmbeddingRecord) -> dict[str, str | int]:
        return {
            "tenant_id": record.tenant_id,
            "generation": record.generation,
            "source_url": record.source_url,
            "ordinal": record.ordinal,
            "created_at": record.created_at.isoformat(),
        }
