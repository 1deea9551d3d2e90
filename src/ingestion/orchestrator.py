"""
Crawl Orchestrator.

Runs one source end to end: fetch (multi-page crawl or adaptive single-page
scrape), extract, normalize, deduplicate, upsert, and record the run in the
sync log. Several sources may run concurrently; they share only the rate
limiter and the datastore.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from src.ingestion.clients.base import FetchClient
from src.ingestion.crawl_config import CrawlConfigBuilder
from src.ingestion.deduplication import SemanticDeduplicator
from src.ingestion.errors import ConfigurationError, FetchError, RateLimitExceededError
from src.ingestion.extractors.chain import ExtractionChain
from src.ingestion.monitoring.logging import with_context
from src.ingestion.normalization.event_normalizer import EventNormalizer
from src.ingestion.pagination import PaginationDetector
from src.ingestion.persist import EventUpsertStore, UpsertResult
from src.ingestion.repositories import SourceRepository
from src.ingestion.runtime.resilience import RateLimiter, Stopwatch
from src.ingestion.sync_log import SyncLogRecorder
from src.schemas.crawl import CrawlConfig, FetchedPage, SourceDefinition, SourceStrategy
from src.schemas.event import NormalizedEvent
from src.schemas.sync_log import SyncLogEntry, SyncStatus

logger = logging.getLogger(__name__)

DEFAULT_SCRAPE_SETTINGS: Dict[str, Any] = {
    "formats": ["markdown", "html"],
    "only_main_content": True,
    "wait_for_ms": 4000,
    "wait_for_step_ms": 2000,
    "max_wait_for_ms": 8000,
}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RunResult:
    """Outcome of one source run."""

    source_id: str
    source_name: Optional[str] = None
    status: str = "skipped"
    strategy: Optional[SourceStrategy] = None
    events: List[NormalizedEvent] = field(default_factory=list)
    created: int = 0
    updated: int = 0
    skipped: int = 0
    processed: int = 0
    attempts: int = 0
    pages_crawled: int = 0
    pages_processed: int = 0
    errors: List[str] = field(default_factory=list)
    sync_log: Optional[SyncLogEntry] = None

    @property
    def success(self) -> bool:
        return self.status == SyncStatus.SUCCESS.value


@dataclass
class _PageYield:
    """Events and bookkeeping accumulated over processed pages."""

    events: List[NormalizedEvent] = field(default_factory=list)
    candidates: int = 0
    rejected: int = 0
    pages_processed: int = 0
    fetched: List[FetchedPage] = field(default_factory=list)
    _seen: set = field(default_factory=set)

    def add(self, events: List[NormalizedEvent]) -> None:
        for event in events:
            if event.source_id in self._seen:
                continue
            self._seen.add(event.source_id)
            self.events.append(event)


class CrawlOrchestrator:
    """
    Coordinates source runs.

    Responsibilities:
    - Resolve the source and open its sync log entry
    - Fetch pages per the source's strategy under the rate limiter
    - Run the extraction chain and normalizer on every page
    - Drop semantic duplicates and upsert the rest
    - Finalize the sync log with counts, errors and crawl metrics
    """

    def __init__(
        self,
        *,
        fetch_client: FetchClient,
        extraction_chain: ExtractionChain,
        normalizer: EventNormalizer,
        deduplicator_factory: Callable[[], SemanticDeduplicator],
        upsert_store: EventUpsertStore,
        sync_log: SyncLogRecorder,
        sources: SourceRepository,
        rate_limiter: RateLimiter,
        crawl_configs: Optional[CrawlConfigBuilder] = None,
        pagination: Optional[PaginationDetector] = None,
        scrape_settings: Optional[Dict[str, Any]] = None,
        fetch_timeout_s: Optional[float] = None,
        crawl_timeout_s: Optional[float] = None,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self.fetch_client = fetch_client
        self.extraction_chain = extraction_chain
        self.normalizer = normalizer
        self.deduplicator_factory = deduplicator_factory
        self.upsert_store = upsert_store
        self.sync_log = sync_log
        self.sources = sources
        self.rate_limiter = rate_limiter
        self.crawl_configs = crawl_configs or CrawlConfigBuilder()
        self.pagination = pagination or PaginationDetector()
        self.scrape_settings = {**DEFAULT_SCRAPE_SETTINGS, **(scrape_settings or {})}
        self.fetch_timeout_s = fetch_timeout_s
        self.crawl_timeout_s = crawl_timeout_s
        self._clock = clock

    # ========================================================================
    # ENTRY POINTS
    # ========================================================================

    async def run_source(self, source_id: str) -> RunResult:
        """
        Run a single source.

        Never raises for run-level failures: they are reported on the result
        and in the sync log. A missing or disabled source returns an empty
        result without any network activity or sync log entry.
        """
        try:
            source = await asyncio.to_thread(self.sources.get, source_id)
        except Exception as e:
            logger.error(f"Failed to load source {source_id}: {e}")
            return RunResult(source_id=str(source_id), status="error", errors=[str(e)])

        if source is None:
            logger.warning(f"Source {source_id} not found")
            return RunResult(source_id=str(source_id), status="not_found")
        if not source.enabled:
            logger.info(f"Source {source.name} is disabled, skipping")
            return RunResult(source_id=source.id, source_name=source.name, status="disabled")

        run_id = uuid.uuid4().hex[:12]
        log = with_context(logger, run_id=run_id, source_id=source.id)
        result = RunResult(source_id=source.id, source_name=source.name, strategy=source.strategy)
        entry = await self.sync_log.start(source.name)
        stopwatch = Stopwatch()
        log.info(f"Starting {source.strategy.value} run for {source.name} ({source.url})")

        status = SyncStatus.SUCCESS
        try:
            if source.strategy == SourceStrategy.CRAWL:
                pages = await self._crawl_source(source, run_id, entry, result, log)
            else:
                pages = await self._scrape_adaptive(source, run_id, entry, result, log)
            await self._store_events(source, pages, result, log)
        except (RateLimitExceededError, ConfigurationError) as e:
            log.error(f"Run aborted for {source.name}: {e}")
            result.errors.append(str(e))
            status = SyncStatus.ERROR
        except FetchError as e:
            log.error(f"Source {source.name} unreachable: {e}")
            result.errors.append(str(e))
            status = SyncStatus.ERROR
        except Exception as e:
            log.exception(f"Unexpected failure while running {source.name}: {e}")
            result.errors.append(f"Unexpected error: {e}")
            status = SyncStatus.ERROR
        finally:
            self.rate_limiter.release(run_id)

        result.status = status.value
        result.sync_log = await self.sync_log.complete(
            entry,
            status=status,
            processed=result.processed,
            created=result.created,
            updated=result.updated,
            skipped=result.skipped,
            errors=result.errors,
        )

        if status == SyncStatus.SUCCESS:
            try:
                await asyncio.to_thread(self.sources.mark_scraped, source.id, self._clock())
            except Exception as e:
                log.warning(f"Failed to record last scrape time for {source.name}: {e}")

        log.info(
            f"Finished {source.name} in {stopwatch.elapsed_ms()}ms: status={status.value} "
            f"processed={result.processed} created={result.created} "
            f"updated={result.updated} skipped={result.skipped} errors={len(result.errors)}"
        )
        return result

    async def run_all_sources(self, concurrency: int = 3) -> List[RunResult]:
        """Run every enabled source, at most `concurrency` at a time."""
        sources = await asyncio.to_thread(self.sources.list_enabled)
        logger.info(f"Running {len(sources)} enabled sources (concurrency={concurrency})")
        semaphore = asyncio.Semaphore(max(1, concurrency))

        async def run(source: SourceDefinition) -> RunResult:
            async with semaphore:
                return await self.run_source(source.id)

        return list(await asyncio.gather(*(run(s) for s in sources)))

    async def test_connection(self, url: str = "https://example.com") -> bool:
        """Check that the fetch service is configured and reachable."""
        if not self.fetch_client.is_available:
            logger.error("Fetch service is not configured")
            return False
        try:
            page = await self.fetch_client.scrape(url, formats=("markdown",), timeout_s=30)
        except FetchError as e:
            logger.error(f"Fetch service check failed: {e}")
            return False
        return page.has_content

    # ========================================================================
    # FETCHING
    # ========================================================================

    async def _crawl_source(
        self,
        source: SourceDefinition,
        run_id: str,
        entry: SyncLogEntry,
        result: RunResult,
        log: logging.LoggerAdapter,
    ) -> _PageYield:
        config = self.crawl_configs.build(source)
        stopwatch = Stopwatch()
        pages: List[FetchedPage] = []
        seen_urls = set()
        for start_url in config.start_urls:
            for page in await self._crawl(source, config, start_url, run_id, result, log):
                if page.url not in seen_urls:
                    seen_urls.add(page.url)
                    pages.append(page)
        if not pages:
            raise FetchError(source.url, "crawl returned no pages")

        # Detail pages first, so the page cap keeps the richest pages
        ordered = sorted(pages, key=lambda p: not config.is_detail_url(p.url))
        if config.max_pages:
            ordered = ordered[: config.max_pages]

        page_yield = await self._process_pages(source, ordered, run_id, result, log)
        result.attempts = 1
        self._record_crawl(entry, result, len(pages), page_yield.pages_processed, stopwatch)
        return page_yield

    async def _crawl(
        self,
        source: SourceDefinition,
        config: CrawlConfig,
        start_url: str,
        run_id: str,
        result: RunResult,
        log: logging.LoggerAdapter,
    ) -> List[FetchedPage]:
        """Crawl one start URL; a failure is recorded and yields no pages."""
        await self.rate_limiter.acquire(source.name, run_id=run_id, service="fetch")
        try:
            crawled = await self.fetch_client.crawl(
                start_url,
                max_depth=config.max_depth,
                limit=config.pages_per_start_url(),
                allow_list=config.allow_list,
                deny_list=config.deny_list,
                actions=config.action_payload() or None,
                wait_for_ms=config.wait_for_ms,
                timeout_s=self.crawl_timeout_s,
            )
        except FetchError as e:
            log.warning(f"Crawl of {start_url} failed: {e}")
            result.errors.append(str(e))
            return []
        log.info(f"Crawled {len(crawled)} pages from {start_url}")
        return [page for page in crawled if page.has_content]

    async def _scrape(
        self,
        source: SourceDefinition,
        run_id: str,
        *,
        only_main_content: bool,
        wait_for_ms: int,
    ) -> FetchedPage:
        await self.rate_limiter.acquire(source.name, run_id=run_id, service="fetch")
        return await self.fetch_client.scrape(
            source.url,
            formats=tuple(self.scrape_settings["formats"]),
            only_main_content=only_main_content,
            wait_for_ms=wait_for_ms,
            timeout_s=self.fetch_timeout_s,
        )

    async def _scrape_adaptive(
        self,
        source: SourceDefinition,
        run_id: str,
        entry: SyncLogEntry,
        result: RunResult,
        log: logging.LoggerAdapter,
    ) -> _PageYield:
        """
        Single-page scrape in up to three widening attempts:

        1. main content only, default wait
        2. full page, longer wait
        3. shallow crawl with generic navigation actions, seeded with any
           pagination links found on the fetched page

        Stops at the first attempt that yields at least one event.
        """
        settings = self.scrape_settings
        base_wait = int(settings["wait_for_ms"])
        longer_wait = min(
            base_wait + int(settings["wait_for_step_ms"]), int(settings["max_wait_for_ms"])
        )
        attempts = [(True, base_wait), (False, longer_wait)]
        page_yield = _PageYield()
        fetch_failures: List[str] = []

        for attempt, (only_main, wait_ms) in enumerate(attempts, start=1):
            result.attempts = attempt
            try:
                page = await self._scrape(
                    source, run_id, only_main_content=only_main, wait_for_ms=wait_ms
                )
            except FetchError as e:
                log.warning(f"Attempt {attempt} fetch failed: {e}")
                fetch_failures.append(str(e))
                continue

            page_yield.fetched.append(page)
            attempt_yield = await self._process_pages(source, [page], run_id, result, log)
            self._merge(page_yield, attempt_yield)
            if attempt_yield.events:
                log.info(f"Attempt {attempt} found {len(attempt_yield.events)} events")
                result.errors.extend(fetch_failures)
                return page_yield
            log.info(
                f"Attempt {attempt} (only_main_content={only_main}, wait={wait_ms}ms) "
                f"found no events"
            )

        result.attempts = 3
        extra_urls: List[str] = []
        for page in page_yield.fetched:
            for url in self.pagination.detect(page.url or source.url, page.html, page.markdown):
                if url not in extra_urls:
                    extra_urls.append(url)

        config = self.crawl_configs.shallow(source, extra_urls)
        log.info(
            f"Attempt 3: shallow crawl from {len(config.start_urls)} start URLs "
            f"(depth={config.max_depth}, limit={config.max_pages})"
        )
        stopwatch = Stopwatch()
        crawled = 0
        processed = 0
        seen_urls: set = set()
        for start_url in config.start_urls:
            pages = [
                page
                for page in await self._crawl(source, config, start_url, run_id, result, log)
                if page.url not in seen_urls
            ]
            seen_urls.update(page.url for page in pages)
            crawled += len(pages)
            crawl_yield = await self._process_pages(source, pages, run_id, result, log)
            processed += crawl_yield.pages_processed
            self._merge(page_yield, crawl_yield)
            if len(page_yield.events) >= self.crawl_configs.shallow_min_events:
                log.info(f"Shallow crawl reached {len(page_yield.events)} events, stopping")
                break

        if not crawled and not page_yield.fetched:
            raise FetchError(source.url, "; ".join(fetch_failures) or "no content fetched")

        result.errors.extend(fetch_failures)
        self._record_crawl(entry, result, crawled, processed, stopwatch)
        return page_yield

    # ========================================================================
    # PROCESSING
    # ========================================================================

    @staticmethod
    def _merge(target: _PageYield, other: _PageYield) -> None:
        target.add(other.events)
        target.candidates += other.candidates
        target.rejected += other.rejected
        target.pages_processed += other.pages_processed

    def _record_crawl(
        self,
        entry: SyncLogEntry,
        result: RunResult,
        pages_crawled: int,
        pages_processed: int,
        stopwatch: Stopwatch,
    ) -> None:
        result.pages_crawled += pages_crawled
        result.pages_processed += pages_processed
        self.sync_log.record_crawl_metrics(
            entry,
            pages_crawled=pages_crawled,
            pages_processed=pages_processed,
            crawl_duration_ms=stopwatch.elapsed_ms(),
        )

    async def _process_pages(
        self,
        source: SourceDefinition,
        pages: List[FetchedPage],
        run_id: str,
        result: RunResult,
        log: logging.LoggerAdapter,
    ) -> _PageYield:
        """Extract and normalize pages in order; failures are per page."""
        page_yield = _PageYield()
        for page in pages:
            if not page.has_content:
                continue
            extraction = await self.extraction_chain.extract_page(
                page,
                source.name,
                run_id=run_id,
                locale=source.locale,
                default_city=source.default_city,
            )
            page_yield.pages_processed += 1
            result.errors.extend(f"{page.url}: {e}" for e in extraction.errors)
            if not extraction.events:
                continue

            normalized = self.normalizer.normalize_many(
                extraction.events,
                source.name,
                page_url=page.url,
                default_city=source.default_city,
                locale=source.locale,
            )
            page_yield.candidates += len(extraction.events)
            page_yield.rejected += normalized.rejected_count
            page_yield.add(normalized.events)
            log.debug(
                f"{page.url}: {len(extraction.events)} candidates via {extraction.method}, "
                f"{len(normalized.events)} valid"
            )
        return page_yield

    async def _store_events(
        self,
        source: SourceDefinition,
        page_yield: _PageYield,
        result: RunResult,
        log: logging.LoggerAdapter,
    ) -> UpsertResult:
        deduplicator = self.deduplicator_factory()
        unique: List[NormalizedEvent] = []
        embeddings: List[Optional[List[float]]] = []
        duplicates = 0
        for event in page_yield.events:
            check = await deduplicator.check(event)
            if check.is_duplicate:
                duplicates += 1
                continue
            unique.append(event)
            embeddings.append(check.embedding)

        upsert = await self.upsert_store.upsert(unique, embeddings)
        result.events = unique
        result.processed = page_yield.candidates
        result.created = upsert.created
        result.updated = upsert.updated
        result.skipped = page_yield.rejected + duplicates + upsert.skipped
        result.errors.extend(upsert.errors)
        log.info(
            f"{source.name}: {page_yield.candidates} candidates, {page_yield.rejected} rejected, "
            f"{duplicates} duplicates, {len(unique)} sent to storage"
        )
        return upsert
