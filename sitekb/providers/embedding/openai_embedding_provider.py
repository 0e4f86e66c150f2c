"""OpenAI-compatible embedding provider adapter.

Wraps the ``openai`` async client to implement :class:`IEmbeddingProvider`.
Supports real OpenAI and OpenAI-compatible providers via custom
``base_url`` and model name settings.
"""

from __future__ import annotations

import openai
import structlog

from sitekb.config.settings import Settings
from sitekb.interfaces.embedding_provider import IEmbeddingProvider
from sitekb.utils.errors import EmbeddingProviderError

logger = structlog.get_logger(logger_name=__name__)

_OPENAI_BATCH_LIMIT = 2048

# Known embedding model dimensions.
_MODEL_DIMENSIONS: dict[str, int] = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
    "BAAI/bge-base-en-v1.5": 768,
    "BAAI/bge-large-en-v1.5": 1024,
    "intfloat/multilingual-e5-large-instruct": 1024,
}


class OpenAIEmbeddingProvider(IEmbeddingProvider):
    """Embedding provider backed by an OpenAI-compatible embeddings API.

    Uses ``text-embedding-3-small`` (1536 dims) by default.  The client's
    own retries are disabled: retry policy lives in
    :class:`~sitekb.services.embedding_service.EmbeddingService`.
    """

    def __init__(self, settings: Settings, client: openai.AsyncOpenAI | None = None) -> None:
        self._settings = settings
        self._api_key = settings.openai_api_key

        if client is None:
            client_kwargs: dict = {
                "api_key": self._api_key or "unset",
                "timeout": settings.embedding_timeout,
                "max_retries": 0,
            }
            if settings.openai_base_url:
                client_kwargs["base_url"] = settings.openai_base_url
            client = openai.AsyncOpenAI(**client_kwargs)

        self._client = client
        self._model = settings.openai_embedding_model or "text-embedding-3-small"
        self._dimension = _MODEL_DIMENSIONS.get(self._model, 0)
        self._provider_label = (
            "openai-compatible_embedding" if settings.openai_base_url else "openai_embedding"
        )

    # ------------------------------------------------------------------
    # IEmbeddingProvider implementation
    # ------------------------------------------------------------------

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Generate embedding vectors for a batch of texts.

        Splits into batches of 2048 if the input exceeds the per-call limit.
        A response with the wrong number of vectors or the wrong vector
        length is treated as a provider failure.
        """
        if not texts:
            return []

        try:
            all_embeddings: list[list[float]] = []
            for start in range(0, len(texts), _OPENAI_BATCH_LIMIT):
                batch = texts[start : start + _OPENAI_BATCH_LIMIT]
                response = await self._client.embeddings.create(
                    input=batch,
                    model=self._model,
                )
                # The API may return items out of order; ``index`` is authoritative.
                items = sorted(response.data, key=lambda item: item.index)
                batch_embeddings = [list(item.embedding) for item in items]
                self._validate(batch_embeddings, expected=len(batch))
                all_embeddings.extend(batch_embeddings)
                logger.debug(
                    "openai_embedding_batch",
                    model=self._model,
                    provider=self._provider_label,
                    batch_size=len(batch),
                    tokens=response.usage.total_tokens if response.usage else None,
                )
            return all_embeddings
        except openai.APIError as exc:
            raise EmbeddingProviderError(
                message=f"{self._provider_label} API error: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    async def embed_single(self, text: str) -> list[float]:
        """Generate an embedding vector for a single text string."""
        result = await self.embed([text])
        return result[0]

    def get_dimension(self) -> int:
        return self._dimension

    def get_provider_name(self) -> str:
        return self._provider_label

    def is_available(self) -> bool:
        """Return ``True`` if an API key is configured."""
        return bool(self._api_key)

    def _validate(self, vectors: list[list[float]], expected: int) -> None:
        if len(vectors) != expected:
            raise EmbeddingProviderError(
                message=f"Malformed response: expected {expected} vectors, got {len(vectors)}",
                provider_name=self.get_provider_name(),
            )
        for vector in vectors:
            if not vector:
                raise EmbeddingProviderError(
                    message="Malformed response: empty embedding vector",
                    provider_name=self.get_provider_name(),
                )
            if self._dimension == 0:
                # Unknown model: adopt the first observed dimension.
                self._dimension = len(vector)
            if len(vector) != self._dimension:
                raise EmbeddingProviderError(
                    message=(
                        f"Malformed response: {len(vector)}-dim vector, "
                        f"expected {self._dimension}"
                    ),
                    provider_name=self.get_provider_name(),
                )
