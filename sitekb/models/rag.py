"""Chunk, embedding-record and retrieval-result models.

All models use frozen config.  A :class:`Chunk` is produced by the
chunker, paired with its vector as an :class:`EmbeddingRecord` by the
index writer, and read back as a :class:`RetrievalResult` by the retriever.
"""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


class Chunk(BaseModel):
    """A contiguous slice of one page's text, the unit of embedding."""

    model_config = ConfigDict(frozen=True)

    tenant_id: str = Field(description="Owning tenant.")
    source_url: str = Field(description="URL of the page the text was taken from.")
    text: str = Field(min_length=1, description="Trimmed chunk text.")
    ordinal: int = Field(ge=0, description="Position of the chunk within its page.")


class EmbeddingRecord(BaseModel):
    """One persisted row: a chunk plus its vector, owned by exactly one tenant.

    ``generation`` identifies the ingestion run that wrote the record; only
    the tenant's active generation is visible to readers.
    """

    model_config = ConfigDict(frozen=True)

    tenant_id: str
    source_url: str
    text: str
    ordinal: int = Field(ge=0)
    vector: list[float]
    generation: str
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(tz=timezone.utc)  # noqa: UP017
    )


class RetrievalResult(BaseModel):
    """A passage returned for a query, most similar first."""

    model_config = ConfigDict(frozen=True)

    text: str
    source_url: str
    similarity: float = Field(ge=0.0, le=1.0, description="Cosine similarity to the query.")
