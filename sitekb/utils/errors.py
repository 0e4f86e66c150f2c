"""Custom exception hierarchy for sitekb.

All application exceptions inherit from :class:`SiteKBError`, which
carries an optional ``provider_name`` so error handlers can identify which
external service (e.g. "openai", "chromadb", "httpx") caused the failure.

The hierarchy is organized by ingestion/retrieval domain:

    SiteKBError  (base -- catch-all for any sitekb error)
    +-- FetchError               (one URL could not be fetched; non-fatal)
    +-- CrawlError               (the crawl could not start at all)
    +-- EmbeddingProviderError   (embedding call failed or was malformed)
    +-- VectorStoreError         (vector store rejected a read or write)
    +-- IndexWriteError          (index replacement failed; fatal to the run)
    +-- RetrievalError           (live query failed)
    +-- IngestionError           (ingestion job ended in FAILED)
    +-- ConfigurationError       (startup / missing config)

Per-URL and per-chunk errors are absorbed where they occur; everything
else propagates to the caller of the run or query.
"""


class SiteKBError(Exception):
    """Base exception for all sitekb errors.

    Every subclass carries a human-readable ``message`` and an optional
    ``provider_name`` identifying which external service triggered the
    error.  The ``__str__`` method prefixes the provider name in brackets
    for structured log output, e.g. ``[openai] Rate limit exceeded``.
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        provider_name: str | None = None,
    ) -> None:
        self._message = message
        self._provider_name = provider_name
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


# ---------------------------------------------------------------------------
# Crawl errors
# ---------------------------------------------------------------------------

class FetchError(SiteKBError):
    """Raised when a single URL cannot be fetched.

    Covers network failures, timeouts and any status other than 200/201.
    The crawler marks the URL FAILED and carries on.
    """

    def __init__(
        self,
        message: str = "Page fetch failed",
        url: str = "",
        status_code: int | None = None,
        provider_name: str | None = "httpx",
    ) -> None:
        self.url = url
        self.status_code = status_code
        super().__init__(message=message, provider_name=provider_name)


class CrawlError(SiteKBError):
    """Raised when a crawl cannot proceed (invalid base URL, unreachable seed)."""

    def __init__(
        self,
        message: str = "Crawl could not be started",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Embedding / storage errors
# ---------------------------------------------------------------------------

class EmbeddingProviderError(SiteKBError):
    """Raised when the external embedding model errors, times out, or
    returns a malformed response.

    Callers retry a bounded number of times before surfacing it.
    """

    def __init__(
        self,
        message: str = "Embedding provider call failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class VectorStoreError(SiteKBError):
    """Raised when the vector store rejects a read or write."""

    def __init__(
        self,
        message: str = "Vector store operation failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class IndexWriteError(SiteKBError):
    """Raised when a tenant's index replacement fails.

    Fatal to the ingestion run; the previously active index is left untouched.
    """

    def __init__(
        self,
        message: str = "Index write failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class RetrievalError(SiteKBError):
    """Raised when a live similarity query fails (embedding or search).

    The chat-serving layer treats this as "no context available".
    """

    def __init__(
        self,
        message: str = "Retrieval failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Orchestration / configuration errors
# ---------------------------------------------------------------------------

class IngestionError(SiteKBError):
    """Raised by the job handler when an ingestion run ends in FAILED."""

    def __init__(
        self,
        message: str = "Ingestion run failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ConfigurationError(SiteKBError):
    """Raised when configuration is invalid or missing at startup."""

    def __init__(
        self,
        message: str = "Invalid or missing configuration",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
