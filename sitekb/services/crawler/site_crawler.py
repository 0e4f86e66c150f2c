"""Breadth-first, same-origin site crawler.

Fetches a website in fixed-size batches of concurrent requests with a
pause between batches, extracts each page's main text and yields
:class:`~sitekb.models.Page` objects lazily.  All mutable crawl
bookkeeping lives in a :class:`~sitekb.models.CrawlState` owned by a
single :meth:`SiteCrawler.crawl` call.

Per-URL lifecycle::

    DISCOVERED → FETCHING → FETCHED | SKIPPED | FAILED

Only the seed URL is fatal: if it cannot be fetched the crawl raises
:class:`~sitekb.utils.errors.CrawlError`.  Every other failure is logged,
the URL is marked FAILED and the crawl continues.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator
from dataclasses import dataclass, field

import httpx
import structlog

from sitekb.config.settings import Settings
from sitekb.interfaces.page_renderer import IPageRenderer
from sitekb.models.crawl import CrawlState, CrawlStopReason, Page, UrlStatus
from sitekb.services.crawler.content_extractor import ExtractedPage, extract_page
from sitekb.services.crawler.discovery import (
    WELL_KNOWN_SITEMAPS,
    RobotsPolicy,
    discover_sitemap_urls,
    fetch_robots,
)
from sitekb.services.crawler.url_filters import (
    UrlFilter,
    normalize_url,
    origin_url,
    same_origin,
)
from sitekb.utils.concurrency import throttled_gather
from sitekb.utils.errors import CrawlError, FetchError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_USER_AGENT = "SiteKBCrawler/1.0 (+https://example.com/bot)"
_ACCEPTED_STATUSES = frozenset({200, 201})
_MIN_CONTENT_CHARS = 50


@dataclass
class _FetchOutcome:
    url: str
    status: UrlStatus
    page: Page | None = None
    links: list[str] = field(default_factory=list)
    reason: str | None = None
    error: FetchError | None = None


class SiteCrawler:
    """Bounded-concurrency crawler for one website at a time.

    Parameters
    ----------
    url_filter:
        Pre-fetch URL rules.  Defaults to login and error filtering on.
    http_client:
        Optional shared ``httpx.AsyncClient``.  When omitted, each crawl
        opens (and closes) its own client.
    renderer:
        Optional headless renderer used for JavaScript-heavy pages.
    concurrency:
        Fetches in flight per batch (default 3).
    batch_delay:
        Seconds to pause between batches (default 1.0).
    render_javascript:
        Render every page through *renderer* instead of only thin ones.
    """

    def __init__(
        self,
        url_filter: UrlFilter | None = None,
        http_client: httpx.AsyncClient | None = None,
        renderer: IPageRenderer | None = None,
        concurrency: int = 3,
        batch_delay: float = 1.0,
        timeout: float = 30.0,
        max_redirects: int = 5,
        user_agent: str = _DEFAULT_USER_AGENT,
        respect_robots: bool = True,
        use_sitemaps: bool = True,
        render_javascript: bool = False,
        min_content_chars: int = _MIN_CONTENT_CHARS,
    ) -> None:
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")
        self._url_filter = url_filter or UrlFilter()
        self._http_client = http_client
        self._renderer = renderer
        self._concurrency = concurrency
        self._batch_delay = batch_delay
        self._timeout = timeout
        self._max_redirects = max_redirects
        self._user_agent = user_agent
        self._respect_robots = respect_robots
        self._use_sitemaps = use_sitemaps
        self._render_javascript = render_javascript and renderer is not None
        self._min_content_chars = min_content_chars
        self._headers = {
            "User-Agent": user_agent,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.5",
        }
        if render_javascript and renderer is None:
            logger.warning("render_javascript_without_renderer")

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        http_client: httpx.AsyncClient | None = None,
        renderer: IPageRenderer | None = None,
    ) -> SiteCrawler:
        return cls(
            url_filter=UrlFilter(
                filter_login_pages=settings.filter_login_pages,
                filter_error_pages=settings.filter_error_pages,
                custom_patterns=settings.custom_filter_patterns,
            ),
            http_client=http_client,
            renderer=renderer,
            concurrency=settings.crawl_concurrency,
            batch_delay=settings.crawl_batch_delay,
            timeout=settings.crawl_timeout,
            max_redirects=settings.crawl_max_redirects,
            user_agent=settings.crawl_user_agent,
            respect_robots=settings.crawl_respect_robots,
            use_sitemaps=settings.crawl_use_sitemaps,
            render_javascript=settings.render_javascript,
            min_content_chars=settings.chunk_min_chars,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def crawl(
        self,
        base_url: str,
        max_pages: int,
        cancel_event: asyncio.Event | None = None,
        state: CrawlState | None = None,
    ) -> AsyncIterator[Page]:
        """Yield up to *max_pages* pages of the site rooted at *base_url*.

        Parameters
        ----------
        base_url:
            Seed URL; its origin bounds the crawl.
        max_pages:
            Maximum number of pages yielded.  Results of an in-flight batch
            beyond this limit are discarded.
        cancel_event:
            When set, no further batches are started; the batch in flight
            drains and the generator returns.
        state:
            Optional caller-owned :class:`CrawlState` to inspect afterwards.
            A fresh one is used when omitted; never reuse one across crawls.

        Raises
        ------
        CrawlError
            If *base_url* is invalid, filtered out, or cannot be fetched.
        """
        if max_pages < 1:
            raise ValueError(f"max_pages must be >= 1, got {max_pages}")

        seed = normalize_url(base_url, base_url)
        if seed is None:
            raise CrawlError(message=f"Invalid base URL: {base_url!r}")
        rejection = self._url_filter.rejection_reason(seed)
        if rejection:
            raise CrawlError(message=f"Base URL {seed} is excluded ({rejection})")

        state = state if state is not None else CrawlState()
        log = logger.bind(seed=seed, max_pages=max_pages)
        log.info("crawl_started", concurrency=self._concurrency)

        async with self._client_scope() as client:
            robots = RobotsPolicy.allow_all(self._user_agent)
            if self._respect_robots:
                robots = await fetch_robots(
                    client, origin_url(seed), self._user_agent, self._headers
                )
            if not robots.can_fetch(seed):
                raise CrawlError(message=f"Base URL {seed} is disallowed by robots.txt")

            # The seed is fetched alone so an unreachable site fails fast.
            state.enqueue(seed)
            state.next_batch(1)
            outcome = await self._process(client, seed, seed, robots, state)
            if outcome.status is UrlStatus.FAILED:
                log.error("crawl_seed_unreachable", error=str(outcome.error))
                raise CrawlError(
                    message=f"Seed URL {seed} could not be fetched: {outcome.error}",
                    provider_name="httpx",
                ) from outcome.error
            self._enqueue_links(outcome.links, seed, robots, state)
            if outcome.page is not None:
                state.pages_fetched += 1
                yield outcome.page

            if self._use_sitemaps and state.pages_fetched < max_pages:
                await self._seed_from_sitemaps(client, seed, robots, state)

            semaphore = asyncio.Semaphore(self._concurrency)
            while state.queue and state.pages_fetched < max_pages:
                if await self._pause(cancel_event):
                    state.stop_reason = CrawlStopReason.CANCELLED
                    break

                batch = state.next_batch(self._concurrency)
                results = await throttled_gather(
                    [self._process(client, url, seed, robots, state) for url in batch],
                    semaphore,
                )

                for url, result in zip(batch, results):
                    if isinstance(result, BaseException):
                        state.mark(url, UrlStatus.FAILED)
                        log.warning("crawl_page_error", url=url, error=str(result))
                        continue
                    self._enqueue_links(result.links, seed, robots, state)
                    if result.page is None:
                        continue
                    if state.pages_fetched >= max_pages:
                        log.debug("crawl_page_discarded_over_limit", url=result.url)
                        continue
                    state.pages_fetched += 1
                    yield result.page

        if state.stop_reason is None:
            if state.pages_fetched >= max_pages:
                state.stop_reason = CrawlStopReason.MAX_PAGES
                log.info("crawl_exhausted", pending=len(state.queue))
            else:
                state.stop_reason = CrawlStopReason.QUEUE_EMPTY

        log.info(
            "crawl_finished",
            stop_reason=state.stop_reason.value,
            pages=state.pages_fetched,
            skipped=state.count(UrlStatus.SKIPPED),
            failed=state.count(UrlStatus.FAILED),
            discovered=len(state.visited),
        )

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------

    @contextlib.asynccontextmanager
    async def _client_scope(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http_client is not None:
            yield self._http_client
            return
        async with httpx.AsyncClient(
            timeout=self._timeout,
            follow_redirects=True,
            max_redirects=self._max_redirects,
            headers=self._headers,
        ) as client:
            yield client

    async def _fetch(self, client: httpx.AsyncClient, url: str) -> tuple[str | None, str]:
        """GET *url*.  Returns ``(html or None if not HTML, final URL)``.

        Raises
        ------
        FetchError
            On network error, timeout, too many redirects, or a status
            other than 200/201.
        """
        try:
            response = await client.get(url, headers=self._headers)
        except httpx.TimeoutException as exc:
            raise FetchError(message=f"Timed out fetching {url}", url=url) from exc
        except httpx.HTTPError as exc:
            raise FetchError(message=f"Request to {url} failed: {exc}", url=url) from exc

        if response.status_code not in _ACCEPTED_STATUSES:
            raise FetchError(
                message=f"HTTP {response.status_code} for {url}",
                url=url,
                status_code=response.status_code,
            )

        content_type = response.headers.get("content-type", "").lower()
        if content_type and "html" not in content_type:
            return None, str(response.url)
        return response.text, str(response.url)

    async def _render(self, url: str) -> str | None:
        if self._renderer is None:
            return None
        try:
            return await self._renderer.render(url)
        except Exception as exc:
            logger.warning(
                "page_render_failed",
                url=url,
                renderer=self._renderer.get_provider_name(),
                error=str(exc),
            )
            return None

    async def _process(
        self,
        client: httpx.AsyncClient,
        url: str,
        seed: str,
        robots: RobotsPolicy,
        state: CrawlState,
    ) -> _FetchOutcome:
        state.mark(url, UrlStatus.FETCHING)
        try:
            html, final_url = await self._fetch(client, url)
        except FetchError as exc:
            state.mark(url, UrlStatus.FAILED)
            logger.warning(
                "crawl_fetch_failed",
                url=url,
                status_code=exc.status_code,
                error=exc.message,
            )
            return _FetchOutcome(url=url, status=UrlStatus.FAILED, error=exc)

        if html is None:
            return self._skip(state, url, "non_html")

        page_url = normalize_url(final_url, final_url) or url
        if page_url != url:
            if not same_origin(page_url, seed):
                return self._skip(state, url, "redirected_off_origin")
            # The target is already queued or fetched under its own URL.
            if page_url in state.visited:
                return self._skip(state, url, "duplicate_redirect_target")
            # A redirect target counts as visited so it is not fetched again.
            state.visited.add(page_url)

        if self._render_javascript:
            html = await self._render(url) or html

        extracted = self._extract(html, page_url)
        if (
            len(extracted.text) < self._min_content_chars
            and self._renderer is not None
            and not self._render_javascript
            and extracted.rejection is None
        ):
            rendered = await self._render(url)
            if rendered:
                extracted = self._extract(rendered, page_url)

        links = [
            link for link in (normalize_url(href, page_url) for href in extracted.links) if link
        ]

        if extracted.rejection:
            return self._skip(state, url, extracted.rejection, links)
        if len(extracted.text) < self._min_content_chars:
            return self._skip(state, url, "insufficient_content", links)

        state.mark(url, UrlStatus.FETCHED)
        logger.debug("crawl_page_fetched", url=page_url, chars=len(extracted.text))
        return _FetchOutcome(
            url=page_url,
            status=UrlStatus.FETCHED,
            page=Page(url=page_url, title=extracted.title, text=extracted.text),
            links=links,
        )

    def _extract(self, html: str, url: str) -> ExtractedPage:
        return extract_page(
            html,
            url,
            filter_login_pages=self._url_filter.filter_login_pages,
            filter_error_pages=self._url_filter.filter_error_pages,
        )

    # ------------------------------------------------------------------
    # Queue management
    # ------------------------------------------------------------------

    def _enqueue_links(
        self,
        links: list[str],
        seed: str,
        robots: RobotsPolicy,
        state: CrawlState,
    ) -> None:
        for link in links:
            if link in state.visited:
                continue
            reason = self._admission_reason(link, seed, robots)
            if reason is None:
                state.enqueue(link)
                continue
            # Remember rejected links so they are judged only once.
            state.visited.add(link)
            state.mark(link, UrlStatus.SKIPPED)
            logger.debug("crawl_url_filtered", url=link, reason=reason)

    def _admission_reason(self, url: str, seed: str, robots: RobotsPolicy) -> str | None:
        if not same_origin(url, seed):
            return "cross_origin"
        reason = self._url_filter.rejection_reason(url)
        if reason:
            return reason
        if not robots.can_fetch(url):
            return "robots_disallowed"
        return None

    async def _seed_from_sitemaps(
        self,
        client: httpx.AsyncClient,
        seed: str,
        robots: RobotsPolicy,
        state: CrawlState,
    ) -> None:
        origin = origin_url(seed)
        candidates = [origin + path for path in WELL_KNOWN_SITEMAPS]
        candidates += [url for url in robots.sitemaps if url not in candidates]
        found = await discover_sitemap_urls(client, candidates, self._headers)
        normalized = [url for url in (normalize_url(u, seed) for u in found) if url]
        before = len(state.queue)
        self._enqueue_links(normalized, seed, robots, state)
        logger.debug(
            "crawl_sitemap_seeded",
            listed=len(found),
            queued=len(state.queue) - before,
        )

    async def _pause(self, cancel_event: asyncio.Event | None) -> bool:
        """Sleep ``batch_delay`` seconds.  Returns ``True`` if cancelled."""
        if cancel_event is None:
            await asyncio.sleep(self._batch_delay)
            return False
        if cancel_event.is_set():
            return True
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=self._batch_delay)
        except asyncio.TimeoutError:
            return False
        return True

    @staticmethod
    def _skip(
        state: CrawlState,
        url: str,
        reason: str,
        links: list[str] | None = None,
    ) -> _FetchOutcome:
        state.mark(url, UrlStatus.SKIPPED)
        logger.debug("crawl_page_skipped", url=url, reason=reason)
        return _FetchOutcome(url=url, status=UrlStatus.SKIPPED, links=links or [], reason=reason)
