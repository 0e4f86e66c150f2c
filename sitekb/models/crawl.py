"""Crawl data models.

:class:`Page` is the transient unit the crawler hands to the chunker.
:class:`CrawlState` is the mutable bookkeeping of exactly one crawl: it is
created by :meth:`SiteCrawler.crawl`, owned by that call, and discarded
when the crawl finishes.  It is a plain dataclass (like the progress
tracker's session snapshot) because it is never serialized.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class UrlStatus(str, Enum):  # noqa: UP042
    """Per-URL crawl state: DISCOVERED → FETCHING → FETCHED | SKIPPED | FAILED."""

    DISCOVERED = "DISCOVERED"
    FETCHING = "FETCHING"
    FETCHED = "FETCHED"    # 200/201, HTML, passed post-fetch filters
    SKIPPED = "SKIPPED"    # filtered (robots, non-HTML, login/error page, too thin)
    FAILED = "FAILED"      # network error, timeout or non-200/201 status


class CrawlStopReason(str, Enum):  # noqa: UP042
    """Why a crawl stopped issuing fetches."""

    QUEUE_EMPTY = "QUEUE_EMPTY"
    MAX_PAGES = "MAX_PAGES"    # the crawl was exhausted by its page limit
    CANCELLED = "CANCELLED"


class Page(BaseModel):
    """A fetched page with boilerplate stripped and whitespace collapsed."""

    model_config = ConfigDict(frozen=True)

    url: str = Field(description="Normalized URL the page was fetched from.")
    title: str = Field(description="Page <title>, first <h1>, or the URL.")
    text: str = Field(description="Extracted main-content text.")


@dataclass
class CrawlState:
    """Visited set, FIFO queue and counters for one crawl."""

    visited: set[str] = field(default_factory=set)
    queue: deque[str] = field(default_factory=deque)
    statuses: dict[str, UrlStatus] = field(default_factory=dict)
    pages_fetched: int = 0
    stop_reason: CrawlStopReason | None = None

    def enqueue(self, url: str) -> bool:
        """Queue *url* unless it has been seen before.  Returns ``True`` if queued."""
        if url in self.visited:
            return False
        self.visited.add(url)
        self.queue.append(url)
        self.statuses[url] = UrlStatus.DISCOVERED
        return True

    def next_batch(self, size: int) -> list[str]:
        """Pop up to *size* URLs from the front of the queue."""
        batch: list[str] = []
        while self.queue and len(batch) < size:
            batch.append(self.queue.popleft())
        return batch

    def mark(self, url: str, status: UrlStatus) -> None:
        self.statuses[url] = status

    def count(self, status: UrlStatus) -> int:
        return sum(1 for s in self.statuses.values() if s is status)
