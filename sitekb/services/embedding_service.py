"""Embedding generation with bounded retries and partial-failure handling.

Wraps an :class:`IEmbeddingProvider` with the policies its callers need:

* :meth:`EmbeddingService.embed` -- one text, retried up to
  ``max_retries`` times with linear backoff; raises
  :class:`EmbeddingProviderError` once retries are exhausted.
* :meth:`EmbeddingService.embed_many` -- many texts in small batches with
  a pause between batches.  A batch that still fails after its retries is
  re-tried item by item; items that fail individually come back as
  ``None`` so the index writer can drop them as per-chunk failures.  If
  every item of a batch fails, the provider is treated as down and the
  error escalates.
"""

from __future__ import annotations

import asyncio

import structlog

from sitekb.interfaces.embedding_provider import IEmbeddingProvider
from sitekb.utils.concurrency import retry_async
from sitekb.utils.errors import EmbeddingProviderError

logger = structlog.get_logger(logger_name=__name__)


class EmbeddingService:
    """Retry and batching policy around one embedding provider."""

    def __init__(
        self,
        provider: IEmbeddingProvider,
        batch_size: int = 10,
        batch_delay: float = 0.5,
        max_retries: int = 3,
        retry_delay: float = 1.0,
    ) -> None:
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        self._provider = provider
        self._batch_size = batch_size
        self._batch_delay = batch_delay
        self._max_retries = max_retries
        self._retry_delay = retry_delay

    @property
    def provider_name(self) -> str:
        return self._provider.get_provider_name()

    async def embed(self, text: str) -> list[float]:
        """Embed one text, retrying transient provider failures.

        Raises
        ------
        EmbeddingProviderError
            When every attempt failed or the provider returned an empty vector.
        """
        vector = await retry_async(
            lambda: self._provider.embed_single(text),
            max_attempts=self._max_retries,
            backoff=self._retry_delay,
            retry_on=(EmbeddingProviderError,),
            operation="embed_single",
            logger=logger,
        )
        if not vector:
            raise EmbeddingProviderError(
                message="Embedding provider returned an empty vector",
                provider_name=self.provider_name,
            )
        return vector

    async def embed_many(self, texts: list[str]) -> list[list[float] | None]:
        """Embed *texts* in order; failed items are ``None``.

        Raises
        ------
        EmbeddingProviderError
            When an entire batch fails both as a batch and item by item.
        """
        vectors: list[list[float] | None] = []
        for start in range(0, len(texts), self._batch_size):
            if start > 0 and self._batch_delay > 0:
                await asyncio.sleep(self._batch_delay)
            batch = texts[start : start + self._batch_size]
            vectors.extend(await self._embed_batch(batch, start))

        failed = sum(1 for v in vectors if v is None)
        logger.info(
            "embedding_batch_complete",
            provider=self.provider_name,
            texts=len(texts),
            failed=failed,
        )
        return vectors

    async def _embed_batch(self, batch: list[str], offset: int) -> list[list[float] | None]:
        try:
            result = await retry_async(
                lambda: self._provider.embed(batch),
                max_attempts=self._max_retries,
                backoff=self._retry_delay,
                retry_on=(EmbeddingProviderError,),
                operation="embed_batch",
                logger=logger,
            )
            if len(result) != len(batch):
                raise EmbeddingProviderError(
                    message=f"Expected {len(batch)} vectors, got {len(result)}",
                    provider_name=self.provider_name,
                )
            return [vector or None for vector in result]
        except EmbeddingProviderError as exc:
            logger.warning(
                "embedding_batch_failed",
                offset=offset,
                size=len(batch),
                error=str(exc),
            )

        # One attempt per item: the batch already spent its retries.
        items: list[list[float] | None] = []
        for index, text in enumerate(batch):
            try:
                vector = await self._provider.embed_single(text)
                items.append(vector or None)
            except EmbeddingProviderError as exc:
                logger.warning("embedding_item_failed", index=offset + index, error=str(exc))
                items.append(None)

        if all(item is None for item in items):
            raise EmbeddingProviderError(
                message=f"All {len(batch)} texts of a batch failed to embed",
                provider_name=self.provider_name,
            )
        return items
