"""
Shared pytest fixtures for the event ingestion test suite.

Provides factory fixtures for NormalizedEvent objects and in-memory fakes
for every external collaborator (fetch, completion, embedding, datastore),
so the pipeline can be exercised without network or database access.
"""

from typing import List, Optional

import pytest

from src.ingestion.crawl_config import CrawlConfigBuilder
from src.ingestion.deduplication import SemanticDeduplicator
from src.ingestion.extractors.chain import ExtractionChain
from src.ingestion.extractors.llm_extractor import LLMEventExtractor
from src.ingestion.normalization.categories import CategoryMapper
from src.ingestion.normalization.event_normalizer import EventNormalizer
from src.ingestion.orchestrator import CrawlOrchestrator
from src.ingestion.pagination import PaginationDetector
from src.ingestion.persist import EventUpsertStore
from src.ingestion.runtime.resilience import RateLimiter, RateLimitPolicy
from src.ingestion.sync_log import SyncLogRecorder
from src.schemas.crawl import SourceDefinition
from src.schemas.event import NormalizedEvent
from tests.fakes import (
    CATEGORY_SECTION,
    CRAWL_SECTION,
    NAVIGATION_SECTION,
    PAGINATION_SECTION,
    FakeCompletionClient,
    FakeEmbedder,
    FakeFetchClient,
    InMemoryEventRepository,
    InMemorySourceRepository,
    InMemorySyncLogRepository,
    future_date,
)

# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def create_normalized_event():
    """
    Return a function that creates NormalizedEvent objects with sensible defaults.

    Example:
        event = create_normalized_event(title="My Event", venue="Lucerna")
    """

    def _create(title: str = "Test Event", **kwargs) -> NormalizedEvent:
        event_date = kwargs.pop("date", future_date())
        source = kwargs.pop("source", "Test Source")
        defaults = {
            "title": title,
            "description": "A test event",
            "date": event_date,
            "city": "Praha",
            "venue": "Test Venue",
            "category": "Entertainment",
            "url": "https://example.com/events/test",
            "source": source,
            "source_id": f"{source}_{title}_{event_date.isoformat()}".replace(" ", "_"),
        }
        defaults.update(kwargs)
        return NormalizedEvent(**defaults)

    return _create


@pytest.fixture
def category_mapper():
    return CategoryMapper.from_config(CATEGORY_SECTION)


@pytest.fixture
def crawl_builder():
    return CrawlConfigBuilder(
        {k: (dict(v) if isinstance(v, dict) else list(v)) for k, v in CRAWL_SECTION.items()},
        NAVIGATION_SECTION,
    )


@pytest.fixture
def fast_rate_limiter():
    """Limiter with no spacing, so tests never sleep."""
    return RateLimiter(RateLimitPolicy(min_interval_s=0.0, gentle_interval_s=0.0))


@pytest.fixture
def event_repository():
    return InMemoryEventRepository()


@pytest.fixture
def sync_log_repository():
    return InMemorySyncLogRepository()


@pytest.fixture
def make_source():
    def _make(source_id: str = "1", **kwargs) -> SourceDefinition:
        defaults = {
            "id": source_id,
            "name": "Test Source",
            "url": "https://events.example.com/calendar",
            "config": {"city": "Praha"},
        }
        defaults.update(kwargs)
        return SourceDefinition(**defaults)

    return _make


@pytest.fixture
def make_orchestrator(
    category_mapper, crawl_builder, fast_rate_limiter, event_repository, sync_log_repository
):
    """
    Return a function building a CrawlOrchestrator wired to in-memory fakes.

    Collaborators not passed in get fresh fakes; the shared repositories are
    the event_repository and sync_log_repository fixtures.
    """

    def _make(
        sources: List[SourceDefinition],
        fetch_client: Optional[FakeFetchClient] = None,
        completion_client: Optional[FakeCompletionClient] = None,
        embedder: Optional[FakeEmbedder] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ) -> CrawlOrchestrator:
        limiter = rate_limiter or fast_rate_limiter
        llm = LLMEventExtractor(
            completion_client or FakeCompletionClient(),
            categories=category_mapper.canonical,
            rate_limiter=limiter,
        )
        embedder = embedder or FakeEmbedder()
        return CrawlOrchestrator(
            fetch_client=fetch_client or FakeFetchClient(),
            extraction_chain=ExtractionChain(llm),
            normalizer=EventNormalizer(category_mapper),
            deduplicator_factory=lambda: SemanticDeduplicator(embedder, event_repository),
            upsert_store=EventUpsertStore(event_repository),
            sync_log=SyncLogRecorder(sync_log_repository),
            sources=InMemorySourceRepository(sources),
            rate_limiter=limiter,
            crawl_configs=crawl_builder,
            pagination=PaginationDetector(PAGINATION_SECTION),
        )

    return _make
