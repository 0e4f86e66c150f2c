"""Per-tenant index replacement using staged generations.

``replace_all`` never deletes a tenant's live records before the new ones
exist:

1. every new record is embedded and written under a fresh *generation* id;
2. the tenant's active-generation pointer is flipped to it;
3. every other generation of the tenant is garbage-collected.

Readers only ever see the active generation, so a tenant is never
observed with an empty or half-written index.  If step 1 or 2 fails the
staged generation is removed and the previous one stays active.

Replacements and deletions of the same tenant run one at a time, so a
slow run can never flip the pointer back to a generation that a later run
has already collected.
"""

from __future__ import annotations

import asyncio
import uuid

import structlog

from sitekb.interfaces.ingestion_state_provider import IIngestionStateProvider
from sitekb.interfaces.vector_store_provider import IVectorStoreProvider
from sitekb.models.rag import Chunk, EmbeddingRecord
from sitekb.services.embedding_service import EmbeddingService
from sitekb.utils.errors import IndexWriteError, VectorStoreError

logger = structlog.get_logger(logger_name=__name__)

_WRITE_BATCH_SIZE = 100


class IndexWriter:
    """Writes, swaps and counts tenant embedding records."""

    def __init__(
        self,
        vector_store: IVectorStoreProvider,
        embedding_service: EmbeddingService,
        state_provider: IIngestionStateProvider,
        write_batch_size: int = _WRITE_BATCH_SIZE,
    ) -> None:
        self._store = vector_store
        self._embeddings = embedding_service
        self._state = state_provider
        self._write_batch_size = write_batch_size
        # Replacements and deletions of one tenant must not interleave.
        self._locks: dict[str, asyncio.Lock] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def replace_all(self, tenant_id: str, chunks: list[Chunk]) -> int:
        """Replace every record of *tenant_id* with embeddings of *chunks*.

        Chunks that fail to embed individually are dropped and logged.

        Returns
        -------
        int
            Number of records written (and now live).

        Raises
        ------
        IndexWriteError
            If *chunks* is empty or belongs to another tenant, if nothing
            could be embedded, or if the store or state provider rejected
            the write.  The previously active index is untouched.
        """
        if not chunks:
            raise IndexWriteError(message=f"Refusing to replace index of {tenant_id} with nothing")
        foreign = {c.tenant_id for c in chunks if c.tenant_id != tenant_id}
        if foreign:
            raise IndexWriteError(
                message=f"Chunks for tenants {sorted(foreign)} passed to replace_all({tenant_id})"
            )

        async with self._tenant_lock(tenant_id):
            return await self._swap_in(tenant_id, chunks)

    async def count(self, tenant_id: str) -> int:
        """Number of live records for *tenant_id*; 0 means not yet trained."""
        generation = await self._state.get_active_generation(tenant_id)
        if generation is None:
            return 0
        return await self._store.count(tenant_id, generation)

    async def delete_tenant(self, tenant_id: str) -> int:
        """Remove every record of *tenant_id* and forget its active generation."""
        async with self._tenant_lock(tenant_id):
            await self._state.clear_active_generation(tenant_id)
            removed = await self._store.delete_tenant(tenant_id)
        logger.info("index_tenant_deleted", tenant_id=tenant_id, removed=removed)
        return removed

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _swap_in(self, tenant_id: str, chunks: list[Chunk]) -> int:
        """Stage *chunks* as a new generation and make it live.  Caller holds the tenant lock."""
        generation = uuid.uuid4().hex
        log = logger.bind(tenant_id=tenant_id, generation=generation)
        log.info("index_replace_started", chunks=len(chunks))

        written = 0
        dropped = 0
        try:
            for start in range(0, len(chunks), self._write_batch_size):
                batch = chunks[start : start + self._write_batch_size]
                vectors = await self._embeddings.embed_many([c.text for c in batch])
                records = [
                    EmbeddingRecord(
                        tenant_id=tenant_id,
                        source_url=chunk.source_url,
                        text=chunk.text,
                        ordinal=chunk.ordinal,
                        vector=vector,
                        generation=generation,
                    )
                    for chunk, vector in zip(batch, vectors)
                    if vector is not None
                ]
                dropped += len(batch) - len(records)
                if records:
                    written += await self._store.add_records(records)

            if written == 0:
                raise IndexWriteError(message="No chunk could be embedded")

            await self._state.set_active_generation(tenant_id, generation)
        except Exception as exc:
            log.error("index_replace_failed", written=written, error=str(exc))
            await self._discard_generation(tenant_id, generation)
            if isinstance(exc, IndexWriteError):
                raise
            raise IndexWriteError(
                message=f"Index replacement for {tenant_id} failed: {exc}",
                provider_name=getattr(exc, "provider_name", None),
            ) from exc

        try:
            removed = await self._store.delete_other_generations(tenant_id, generation)
        except VectorStoreError as exc:
            # The new generation is already live; stale rows are invisible and
            # get collected by the next successful replacement.
            log.warning("index_gc_failed", error=str(exc))
            removed = 0

        log.info(
            "index_replace_complete",
            written=written,
            dropped=dropped,
            stale_removed=removed,
        )
        return written

    def _tenant_lock(self, tenant_id: str) -> asyncio.Lock:
        return self._locks.setdefault(tenant_id, asyncio.Lock())

    async def _discard_generation(self, tenant_id: str, generation: str) -> None:
        try:
            await self._store.delete_generation(tenant_id, generation)
        except VectorStoreError as exc:
            logger.warning(
                "index_staged_cleanup_failed",
                tenant_id=tenant_id,
                generation=generation,
                error=str(exc),
            )
