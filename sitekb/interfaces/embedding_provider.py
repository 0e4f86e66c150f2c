"""Abstract base class for text-embedding service providers.

Defines the contract for turning text into fixed-length vectors.  No
chunking or business logic lives behind this interface; retries and
batching policy belong to :class:`~sitekb.services.embedding_service.EmbeddingService`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementations:
#   OpenAIEmbeddingProvider     - text-embedding-3-small (requires API key)
#   FastEmbedEmbeddingProvider  - local ONNX model, no API key
# Located in: sitekb/providers/embedding/
class IEmbeddingProvider(ABC):
    """Contract for text-embedding services used by indexing and retrieval."""

    @abstractmethod
    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Generate embedding vectors for a batch of texts.

        Parameters
        ----------
        texts:
            One or more text strings to embed.  Implementations should
            handle batching internally if the underlying API has a per-call
            limit.

        Returns
        -------
        list[list[float]]
            Embedding vectors corresponding positionally to *texts*.  Each
            inner list has length equal to :meth:`get_dimension`.

        Raises
        ------
        sitekb.utils.errors.EmbeddingProviderError
            If the embedding API call fails or times out.
        """

    @abstractmethod
    async def embed_single(self, text: str) -> list[float]:
        """Generate an embedding vector for a single text string.

        Convenience wrapper around :meth:`embed` for the query case.
        """

    @abstractmethod
    def get_dimension(self) -> int:
        """Return the dimensionality of the embedding vectors.

        Constant for the lifetime of the provider instance, e.g. ``1536``
        for OpenAI ``text-embedding-3-small``.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this embedding provider."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the provider is configured.

        Must not generate an actual embedding.
        """
