"""Pydantic data models for crawling, indexing, retrieval and ingestion runs."""

from sitekb.models.crawl import CrawlState, CrawlStopReason, Page, UrlStatus
from sitekb.models.ingestion import IngestionJob, IngestionPhase, IngestionRun
from sitekb.models.rag import Chunk, EmbeddingRecord, RetrievalResult

__all__ = [
    "Chunk",
    "CrawlState",
    "CrawlStopReason",
    "EmbeddingRecord",
    "IngestionJob",
    "IngestionPhase",
    "IngestionRun",
    "Page",
    "RetrievalResult",
    "UrlStatus",
]
