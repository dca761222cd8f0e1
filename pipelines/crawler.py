"""Crawl coordinator for CrawlSearch.

Runs one crawl job: pulls batches from the job's frontier, fetches them
concurrently, extracts documents, feeds discovered links back into the
frontier and streams documents to the index as they are produced.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Tuple

from config.settings import CrawlerSettings
from indexer.errors import IndexEngineError
from .errors import FetchError
from .extractor import ContentExtractor, ExtractionResult
from .fetcher import Fetcher
from .filters import UrlFilter
from .frontier import Frontier, FrontierEntry, OfferStatus
from .models import Document, FetchResult
from .urls import normalize_url

logger = logging.getLogger(__name__)


class DocumentSink(Protocol):
    async def upsert(self, document: Document) -> None: ...


class PageFetcher(Protocol):
    async def fetch(self, url: str) -> FetchResult: ...


class CrawlStatus(str, Enum):
    """Crawl job lifecycle."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class CrawlStats:
    """Statistics for a crawl job."""
    pages_fetched: int = 0
    pages_failed: int = 0
    pages_skipped: int = 0
    documents_produced: int = 0
    documents_indexed: int = 0
    links_discovered: int = 0
    failures_by_kind: Dict[str, int] = field(default_factory=dict)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    @property
    def duration(self) -> Optional[timedelta]:
        if self.end_time and self.start_time:
            return self.end_time - self.start_time
        return None

    def record_failure(self, kind: str):
        self.pages_failed += 1
        self.failures_by_kind[kind] = self.failures_by_kind.get(kind, 0) + 1


@dataclass
class CrawlJob:
    """Per-request crawl context; discarded once the response is sent."""
    urls: List[str]
    max_depth: int
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: CrawlStatus = CrawlStatus.PENDING
    stats: CrawlStats = field(default_factory=CrawlStats)
    error: Optional[str] = None
    cancel_reason: Optional[str] = None
    pages_visited: int = 0
    urls_offered: int = 0
    _cancel_event: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    @property
    def documents_indexed(self) -> int:
        return self.stats.documents_indexed

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def cancel(self, reason: str = "cancelled"):
        """Stop dispatching new batches; in-flight fetches still finish."""
        if not self._cancel_event.is_set():
            self.cancel_reason = reason
            self._cancel_event.set()

    def summary(self) -> Dict[str, Any]:
        duration = self.stats.duration
        return {
            "job_id": self.id,
            "status": self.status.value,
            "documents_indexed": self.documents_indexed,
            "urls": list(self.urls),
            "pages_visited": self.pages_visited,
            "failed_urls": self.stats.pages_failed,
            "skipped_pages": self.stats.pages_skipped,
            "cancelled": self.cancelled,
            "duration_seconds": duration.total_seconds() if duration is not None else None,
        }


class CrawlCoordinator:
    """Orchestrates fetcher, extractor and frontier for crawl jobs."""

    def __init__(self,
                 index: DocumentSink,
                 settings: Optional[CrawlerSettings] = None,
                 fetcher: Optional[PageFetcher] = None,
                 extractor: Optional[ContentExtractor] = None):
        """Initialize coordinator.

        Args:
            index: Destination for documents (anything with an async ``upsert``)
            settings: Crawler settings
            fetcher: Optional fetcher; a new aiohttp ``Fetcher`` is opened per job otherwise
            extractor: Optional content extractor
        """
        self.index = index
        self.settings = settings or CrawlerSettings()
        self.fetcher = fetcher
        self.extractor = extractor or ContentExtractor(self.settings)

    async def run(self, job: CrawlJob) -> CrawlJob:
        """Run a crawl job to completion, failure or cancellation."""
        job.status = CrawlStatus.RUNNING
        job.stats.start_time = datetime.now(timezone.utc)

        frontier = Frontier(job.max_depth, url_filter=UrlFilter.from_settings(self.settings))
        for url in job.urls:
            frontier.offer(url, 0)

        logger.info(f"Starting crawl job {job.id}: {len(job.urls)} seed URLs (max_depth={job.max_depth})")

        queue: asyncio.Queue = asyncio.Queue(maxsize=self.settings.index_queue_size)
        indexer_task = asyncio.create_task(self._index_documents(job, queue))

        try:
            if self.fetcher is not None:
                await self._crawl(job, frontier, self.fetcher, queue, indexer_task)
            else:
                async with Fetcher(self.settings) as fetcher:
                    await self._crawl(job, frontier, fetcher, queue, indexer_task)
        finally:
            await _stop_indexer(queue, indexer_task)
            frontier.close()

            snapshot = frontier.snapshot()
            job.pages_visited = snapshot["dispatched"]
            job.urls_offered = snapshot["offered"]
            job.stats.end_time = datetime.now(timezone.utc)

        if job.error is not None:
            job.status = CrawlStatus.FAILED
            logger.error(f"Crawl job {job.id} failed after indexing "
                         f"{job.documents_indexed} documents: {job.error}")
        else:
            job.status = CrawlStatus.COMPLETED
            logger.info(f"Crawl job {job.id} completed: {job.documents_indexed} indexed, "
                        f"{job.stats.pages_failed} failed, {job.stats.pages_skipped} skipped "
                        f"out of {job.pages_visited} pages"
                        + (f" (stopped: {job.cancel_reason})" if job.cancelled else ""))
        return job

    async def _crawl(self, job: CrawlJob, frontier: Frontier, fetcher: PageFetcher,
                     queue: asyncio.Queue, indexer_task: asyncio.Task):
        loop = asyncio.get_running_loop()
        deadline = None
        if self.settings.job_timeout:
            deadline = loop.time() + self.settings.job_timeout

        while frontier.has_pending():
            if job.cancelled or job.error is not None:
                break
            if deadline is not None and loop.time() >= deadline:
                job.cancel("job timeout")
                logger.warning(f"Crawl job {job.id} hit its {self.settings.job_timeout}s timeout")
                break

            batch = frontier.next_batch(self.settings.max_concurrent)
            if not batch:
                break

            logger.info(f"Crawling depth {batch[0].depth}: {len(batch)} URLs")
            await self._run_batch(job, frontier, fetcher, batch, queue, indexer_task)

    async def _run_batch(self, job: CrawlJob, frontier: Frontier, fetcher: PageFetcher,
                         batch: List[FrontierEntry], queue: asyncio.Queue, indexer_task: asyncio.Task):
        """Fetch one batch concurrently and handle results as they complete."""
        semaphore = asyncio.Semaphore(self.settings.max_concurrent)
        tasks = [asyncio.create_task(self._process_entry(job, fetcher, entry, semaphore)) for entry in batch]

        for next_done in asyncio.as_completed(tasks):
            entry, result = await next_done
            if result is None:
                continue

            # Another URL of this job already redirected to (or is) the same page
            if result.final_url and normalize_url(result.final_url) != entry.url:
                if not frontier.mark_visited(result.final_url):
                    job.stats.pages_skipped += 1
                    logger.debug(f"{entry.url} redirected to already visited {result.final_url}")
                    continue

            extraction = result.extraction
            if entry.depth < frontier.max_depth and extraction.links:
                accepted = sum(
                    1 for status in frontier.offer_many(extraction.links, entry.depth + 1)
                    if status == OfferStatus.ACCEPTED
                )
                job.stats.links_discovered += accepted
                logger.debug(f"Found {len(extraction.links)} links ({accepted} new) on {entry.url}")

            if extraction.document is None:
                job.stats.pages_skipped += 1
                continue

            job.stats.documents_produced += 1
            if not await _enqueue(queue, extraction.document, indexer_task):
                logger.error(f"Indexer stopped, dropping document for {entry.url}")

    async def _process_entry(self, job: CrawlJob, fetcher: PageFetcher,
                             entry: FrontierEntry, semaphore: asyncio.Semaphore) -> Tuple[FrontierEntry, Optional['_PageResult']]:
        try:
            async with semaphore:
                fetched = await fetcher.fetch(entry.url)
        except FetchError as e:
            job.stats.record_failure(e.kind)
            logger.warning(f"Failed to fetch {entry.url}: {e.message}")
            return entry, None

        job.stats.pages_fetched += 1
        base_url = fetched.final_url or entry.url
        try:
            extraction = self.extractor.parse(fetched.text, base_url)
        except Exception as e:
            job.stats.record_failure("extraction_error")
            logger.warning(f"Failed to process page {entry.url}: {e}")
            return entry, None

        return entry, _PageResult(final_url=fetched.final_url, extraction=extraction)

    async def _index_documents(self, job: CrawlJob, queue: asyncio.Queue):
        """Drain the document queue into the index until the end marker."""
        while True:
            document = await queue.get()
            if document is None:
                return
            # Keep draining after a failure so producers never block
            if job.error is not None:
                continue
            try:
                await self.index.upsert(document)
                job.stats.documents_indexed += 1
            except IndexEngineError as e:
                job.error = f"Index engine error: {e.message}"
                job.cancel("index engine error")
                logger.error(f"Failed to index {document.url}: {e.message}")
            except Exception as e:
                job.error = f"Indexing failed: {type(e).__name__}: {e}"
                job.cancel("indexing failed")
                logger.exception(f"Unexpected error indexing {document.url}: {e}")


@dataclass
class _PageResult:
    final_url: Optional[str]
    extraction: ExtractionResult


async def _enqueue(queue: asyncio.Queue, item: Optional[Document], indexer_task: asyncio.Task) -> bool:
    """Put ``item`` on the indexer queue unless the indexer task has ended.

    Returns:
        True if the item was queued
    """
    if indexer_task.done():
        return False

    put = asyncio.ensure_future(queue.put(item))
    try:
        await asyncio.wait({put, indexer_task}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        if not put.done():
            put.cancel()
    return put.done() and not put.cancelled()


async def _stop_indexer(queue: asyncio.Queue, indexer_task: asyncio.Task):
    """Send the end marker and wait for the indexer to drain the queue."""
    try:
        if await _enqueue(queue, None, indexer_task):
            await indexer_task
    finally:
        if not indexer_task.done():
            indexer_task.cancel()


async def crawl_urls(urls: List[str], index: DocumentSink, max_depth: Optional[int] = None,
                     settings: Optional[CrawlerSettings] = None) -> CrawlJob:
    """Convenience function to run one crawl job.

    Args:
        urls: Seed URLs
        index: Destination for documents
        max_depth: Maximum crawl depth (defaults to the configured depth)
        settings: Crawler settings

    Returns:
        The finished CrawlJob
    """
    settings = settings or CrawlerSettings()
    job = CrawlJob(urls=list(urls), max_depth=settings.max_depth if max_depth is None else max_depth)
    return await CrawlCoordinator(index, settings).run(job)
