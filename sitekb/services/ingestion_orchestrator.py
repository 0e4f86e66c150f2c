"""Ingestion orchestrator: Crawler → Chunker → Embedding → Index Writer.

Drives one ingestion run per tenant through::

    QUEUED → CRAWLING → CHUNKING → EMBEDDING → INDEXED | FAILED

Rules:

* the crawl is bounded by the job's page limit and by a cap on total
  extracted bytes;
* chunks from every page are accumulated and handed to
  :meth:`IndexWriter.replace_all` exactly once;
* a run that crawls zero pages, produces zero chunks, or is cancelled
  fails *without touching the index*, so a failed re-crawl never wipes a
  good index;
* a run that leaves a previously trained tenant with zero records is
  reported as FAILED/degraded, never as INDEXED;
* after a successful run the tenant's cached query results are dropped.

Runs are recorded in the ingestion history.  Re-invoking a job is safe
because every run fully replaces the tenant's index.
"""

from __future__ import annotations

import asyncio
import contextlib

import structlog
from pydantic import ValidationError

from sitekb.interfaces.ingestion_state_provider import IIngestionStateProvider
from sitekb.models.crawl import CrawlState, Page
from sitekb.models.ingestion import IngestionJob, IngestionPhase, IngestionRun
from sitekb.models.rag import Chunk
from sitekb.pipeline.progress_tracker import IngestionProgressTracker
from sitekb.services.chunker import TextChunker
from sitekb.services.crawler.site_crawler import SiteCrawler
from sitekb.services.index_writer import IndexWriter
from sitekb.services.retriever import Retriever
from sitekb.utils.errors import CrawlError, IndexWriteError, IngestionError, SiteKBError

logger = structlog.get_logger(logger_name=__name__)

# Share of the progress bar given to each phase.
_CRAWL_PROGRESS_SPAN = 60.0
_CHUNK_PROGRESS = 65.0
_EMBED_PROGRESS = 70.0


class IngestionOrchestrator:
    """Runs ingestion jobs end to end.

    Parameters
    ----------
    crawler:
        Site crawler.
    chunker:
        Page-text chunker.
    index_writer:
        Writes and swaps the tenant index.
    state_provider:
        Persists run history.
    retriever:
        Optional; its cache is invalidated after successful runs.
    progress_tracker:
        Optional progress broadcaster.
    default_max_pages:
        Page limit used when a job does not carry one.
    default_max_bytes:
        Extracted-text budget used when a job does not carry one.
    """

    def __init__(
        self,
        crawler: SiteCrawler,
        chunker: TextChunker,
        index_writer: IndexWriter,
        state_provider: IIngestionStateProvider,
        retriever: Retriever | None = None,
        progress_tracker: IngestionProgressTracker | None = None,
        default_max_pages: int = 50,
        default_max_bytes: int = 20 * 1024 * 1024,
    ) -> None:
        self._crawler = crawler
        self._chunker = chunker
        self._index = index_writer
        self._state = state_provider
        self._retriever = retriever
        self._progress = progress_tracker
        self._default_max_pages = default_max_pages
        self._default_max_bytes = default_max_bytes
        # Cancellation signals of runs in flight, per tenant.
        self._active: dict[str, list[asyncio.Event]] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def handle_job(self, payload: dict) -> IngestionRun:
        """Job-scheduler entry point for ``{tenantId, baseUrl, maxPages}``.

        Raises
        ------
        IngestionError
            If the payload is invalid or the run ended FAILED, so the
            scheduler can apply its own retry policy.
        """
        try:
            job = IngestionJob.model_validate(payload)
        except ValidationError as exc:
            raise IngestionError(message=f"Invalid ingestion job payload: {exc}") from exc

        run = await self.run(job)
        if not run.succeeded:
            raise IngestionError(
                message=f"Ingestion of {job.base_url} for {job.tenant_id} failed: "
                f"{run.error_message}"
            )
        return run

    async def run(
        self,
        job: IngestionJob,
        cancel_event: asyncio.Event | None = None,
        run_id: str | None = None,
    ) -> IngestionRun:
        """Execute one ingestion run and return its final state.

        Expected failures (unreachable site, empty crawl, provider or
        storage errors, cancellation) are returned as a FAILED run rather
        than raised.
        """
        run = IngestionRun(tenant_id=job.tenant_id, base_url=job.base_url)
        if run_id:
            run = run.model_copy(update={"run_id": run_id})
        cancel_event = cancel_event or asyncio.Event()
        self._active.setdefault(job.tenant_id, []).append(cancel_event)

        structlog.contextvars.bind_contextvars(tenant_id=job.tenant_id, run_id=run.run_id)
        try:
            logger.info("ingestion_started", base_url=job.base_url)
            await self._record(run)
            try:
                run = await self._execute(run, job, cancel_event)
            except SiteKBError as exc:
                logger.error("ingestion_error", error=str(exc))
                run = run.fail(str(exc))
            except Exception as exc:
                logger.exception("ingestion_crashed")
                await self._record(run.fail(f"Unexpected error: {exc}"))
                raise

            await self._record(run)
            await self._report(run, 100.0, run.error_message or "Ingestion complete")
            logger.info(
                "ingestion_finished",
                status=run.phase.value,
                pages=run.pages_crawled,
                chunks=run.chunks_created,
                records=run.records_written,
                degraded=run.degraded,
                error=run.error_message,
            )
            return run
        finally:
            structlog.contextvars.unbind_contextvars("tenant_id", "run_id")
            events = self._active.get(job.tenant_id, [])
            if cancel_event in events:
                events.remove(cancel_event)
            if not events:
                self._active.pop(job.tenant_id, None)

    def cancel(self, tenant_id: str) -> int:
        """Signal every in-flight run of *tenant_id* to stop.  Returns runs signalled."""
        events = self._active.get(tenant_id, [])
        for event in events:
            event.set()
        if events:
            logger.info("ingestion_cancel_requested", tenant_id=tenant_id, runs=len(events))
        return len(events)

    async def delete_tenant(self, tenant_id: str) -> int:
        """Cancel running ingestions, then remove the tenant's index and cache."""
        self.cancel(tenant_id)
        removed = await self._index.delete_tenant(tenant_id)
        if self._retriever is not None:
            await self._retriever.invalidate_tenant(tenant_id)
        return removed

    async def history(self, tenant_id: str, limit: int = 20) -> list[IngestionRun]:
        return await self._state.list_runs(tenant_id, limit)

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    async def _execute(
        self,
        run: IngestionRun,
        job: IngestionJob,
        cancel_event: asyncio.Event,
    ) -> IngestionRun:
        if cancel_event.is_set():
            return run.fail("Ingestion cancelled before start")

        # -- Crawling --
        run = run.advance(IngestionPhase.CRAWLING)
        await self._report(run, 0.0, f"Crawling {job.base_url}")
        max_pages = job.max_pages or self._default_max_pages
        try:
            pages = await self._crawl(run, job.base_url, max_pages, job, cancel_event)
        except CrawlError as exc:
            return run.fail(f"Crawl failed: {exc}")

        if cancel_event.is_set():
            return run.fail("Ingestion cancelled", pages_crawled=len(pages))
        if not pages:
            return run.fail("Crawl produced no usable pages")

        # -- Chunking --
        run = run.advance(IngestionPhase.CHUNKING, pages_crawled=len(pages))
        await self._report(run, _CHUNK_PROGRESS, f"Chunking {len(pages)} pages")
        chunks = self._chunk_pages(job.tenant_id, pages)
        if not chunks:
            return run.fail("Crawled pages produced no chunks")

        # -- Embedding + index swap --
        run = run.advance(IngestionPhase.EMBEDDING, chunks_created=len(chunks))
        await self._report(run, _EMBED_PROGRESS, f"Embedding {len(chunks)} chunks")
        if cancel_event.is_set():
            return run.fail("Ingestion cancelled")

        previous_count = await self._index.count(job.tenant_id)
        try:
            written = await self._index.replace_all(job.tenant_id, chunks)
        except IndexWriteError as exc:
            return run.fail(f"Index write failed: {exc}")

        current_count = await self._index.count(job.tenant_id)
        if current_count == 0 and previous_count > 0:
            logger.error(
                "ingestion_index_degraded",
                previous_count=previous_count,
                written=written,
            )
            return run.fail(
                f"Index left empty after replacement (previously {previous_count} records)",
                records_written=written,
                degraded=True,
            )

        run = run.advance(IngestionPhase.INDEXED, records_written=current_count)
        if self._retriever is not None:
            await self._retriever.invalidate_tenant(job.tenant_id)
        return run

    async def _crawl(
        self,
        run: IngestionRun,
        base_url: str,
        max_pages: int,
        job: IngestionJob,
        cancel_event: asyncio.Event,
    ) -> list[Page]:
        max_bytes = job.max_bytes or self._default_max_bytes
        pages: list[Page] = []
        total_bytes = 0
        state = CrawlState()

        stream = self._crawler.crawl(base_url, max_pages, cancel_event=cancel_event, state=state)
        async with contextlib.aclosing(stream) as crawled:
            async for page in crawled:
                size = len(page.text.encode("utf-8"))
                if total_bytes + size > max_bytes:
                    logger.warning(
                        "ingestion_byte_limit_reached",
                        max_bytes=max_bytes,
                        pages=len(pages),
                    )
                    break
                pages.append(page)
                total_bytes += size
                await self._report(
                    run,
                    _CRAWL_PROGRESS_SPAN * len(pages) / max_pages,
                    f"Fetched {page.url}",
                )

        logger.info(
            "ingestion_crawl_complete",
            pages=len(pages),
            bytes=total_bytes,
            stop_reason=state.stop_reason.value if state.stop_reason else "BYTE_LIMIT",
        )
        return pages

    def _chunk_pages(self, tenant_id: str, pages: list[Page]) -> list[Chunk]:
        chunks: list[Chunk] = []
        for page in pages:
            page_chunks = self._chunker.chunk(
                f"{page.title}\n\n{page.text}",
                source_url=page.url,
                tenant_id=tenant_id,
            )
            if not page_chunks:
                logger.debug("page_produced_no_chunks", url=page.url)
            chunks.extend(page_chunks)
        return chunks

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    async def _record(self, run: IngestionRun) -> None:
        # History is informational; losing a row must not fail the run.
        try:
            await self._state.record_run(run)
        except Exception as exc:
            logger.warning("ingestion_history_write_failed", error=str(exc))

    async def _report(self, run: IngestionRun, progress: float, message: str) -> None:
        if self._progress is not None:
            await self._progress.update(run.run_id, run.phase, progress, message)
