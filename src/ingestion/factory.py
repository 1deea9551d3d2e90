"""
Service wiring for config-driven orchestrator creation.

Clients, repositories and the rate limiter are built once per process from
Settings and ingestion.yaml, then passed into the pipeline by reference.

Usage:
    from src.ingestion.factory import build_orchestrator

    orchestrator = build_orchestrator()
    result = await orchestrator.run_source("42")
"""

import logging
from dataclasses import dataclass
from typing import Optional

from src.configs.config import Config
from src.configs.settings import Settings, get_settings
from src.ingestion.clients.base import CompletionClient, EmbeddingClient, FetchClient
from src.ingestion.clients.firecrawl_client import FirecrawlFetchClient
from src.ingestion.clients.openai_client import OpenAICompletionClient, OpenAIEmbeddingClient
from src.ingestion.crawl_config import CrawlConfigBuilder
from src.ingestion.deduplication import SemanticDeduplicator
from src.ingestion.extractors.chain import ExtractionChain
from src.ingestion.extractors.llm_extractor import LLMEventExtractor
from src.ingestion.normalization.categories import CategoryMapper
from src.ingestion.normalization.event_normalizer import EventNormalizer
from src.ingestion.orchestrator import CrawlOrchestrator
from src.ingestion.pagination import PaginationDetector
from src.ingestion.persist import EventUpsertStore
from src.ingestion.repositories import (
    ConfigSourceRepository,
    EventRepository,
    PostgresDatabase,
    PostgresEventRepository,
    PostgresSourceRepository,
    PostgresSyncLogRepository,
    SourceRepository,
    SyncLogRepository,
)
from src.ingestion.runtime.resilience import RateLimiter, RateLimitPolicy
from src.ingestion.sync_log import SyncLogRecorder
from src.ingestion.venue_capacity import PatternVenueCapacityLookup

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Long-lived collaborators shared by every source run."""

    settings: Settings
    fetch_client: FetchClient
    completion_client: CompletionClient
    embedding_client: EmbeddingClient
    events: EventRepository
    sync_logs: SyncLogRepository
    sources: SourceRepository
    rate_limiter: RateLimiter
    database: Optional[PostgresDatabase] = None

    async def aclose(self) -> None:
        await self.fetch_client.aclose()
        if self.database is not None:
            self.database.close()


def build_rate_limiter(settings: Settings) -> RateLimiter:
    return RateLimiter(
        RateLimitPolicy(
            min_interval_s=settings.RATE_LIMIT_MIN_INTERVAL_S,
            gentle_interval_s=settings.RATE_LIMIT_GENTLE_INTERVAL_S,
            max_requests_per_run=settings.RATE_LIMIT_MAX_REQUESTS,
            gentle_keywords=tuple(k.lower() for k in settings.GENTLE_SOURCE_KEYWORDS),
            source_intervals_s=dict(settings.RATE_LIMIT_SOURCE_OVERRIDES),
        )
    )


def build_services(settings: Optional[Settings] = None) -> Services:
    """
    Construct clients and repositories.

    The database is always required (events and sync logs live there).
    Sources declared in ingestion.yaml take precedence over the
    scraper_sources table.

    Raises:
        ValueError: if DATABASE_URL is not configured.
    """
    settings = settings or get_settings()
    if not settings.DATABASE_URL:
        raise ValueError("DATABASE_URL is not configured")
    database = PostgresDatabase(settings)

    sources: SourceRepository
    if Config.section("sources"):
        logger.info("Using sources declared in ingestion.yaml")
        sources = ConfigSourceRepository()
    else:
        sources = PostgresSourceRepository(database)

    return Services(
        settings=settings,
        fetch_client=FirecrawlFetchClient(
            settings.secret("FIRECRAWL_API_KEY"),
            base_url=settings.FIRECRAWL_BASE_URL,
            timeout_s=settings.FETCH_TIMEOUT_S,
            crawl_timeout_s=settings.CRAWL_TIMEOUT_S,
        ),
        completion_client=OpenAICompletionClient(
            settings.secret("OPENAI_API_KEY"), timeout_s=settings.COMPLETION_TIMEOUT_S
        ),
        embedding_client=OpenAIEmbeddingClient(
            settings.secret("OPENAI_API_KEY"), model=settings.EMBEDDING_MODEL
        ),
        events=PostgresEventRepository(database),
        sync_logs=PostgresSyncLogRepository(database),
        sources=sources,
        rate_limiter=build_rate_limiter(settings),
        database=database,
    )


def build_orchestrator(services: Optional[Services] = None) -> CrawlOrchestrator:
    """Assemble the orchestrator from services and ingestion.yaml."""
    services = services or build_services()
    settings = services.settings
    completion = Config.section("completion", {})
    models = {
        name: int((model_cfg or {}).get("max_tokens", 3000))
        for name, model_cfg in (completion.get("models") or {}).items()
    }
    category_mapper = CategoryMapper.from_config()

    llm_extractor = LLMEventExtractor(
        services.completion_client,
        model=settings.COMPLETION_MODEL,
        models=models or None,
        default_model=completion.get("default_model", "gpt-4o-mini"),
        temperature=float(completion.get("temperature", 0.1)),
        chunk_size=settings.CHUNK_SIZE,
        chunk_overlap=settings.CHUNK_OVERLAP,
        min_events=settings.MIN_EVENTS_EARLY_STOP,
        categories=category_mapper.canonical,
        rate_limiter=services.rate_limiter,
    )

    def deduplicator() -> SemanticDeduplicator:
        return SemanticDeduplicator(
            services.embedding_client if services.embedding_client.is_available else None,
            services.events,
            threshold=settings.DEDUP_SIMILARITY_THRESHOLD,
            top_k=settings.DEDUP_TOP_K,
            date_window_days=settings.DEDUP_DATE_WINDOW_DAYS,
        )

    return CrawlOrchestrator(
        fetch_client=services.fetch_client,
        extraction_chain=ExtractionChain(llm_extractor),
        normalizer=EventNormalizer(category_mapper),
        deduplicator_factory=deduplicator,
        upsert_store=EventUpsertStore(
            services.events,
            PatternVenueCapacityLookup.from_config(),
            batch_size=settings.UPSERT_BATCH_SIZE,
        ),
        sync_log=SyncLogRecorder(services.sync_logs),
        sources=services.sources,
        rate_limiter=services.rate_limiter,
        crawl_configs=CrawlConfigBuilder.from_config(),
        pagination=PaginationDetector.from_config(),
        scrape_settings=Config.section("scrape", {}),
        fetch_timeout_s=settings.FETCH_TIMEOUT_S,
        crawl_timeout_s=settings.CRAWL_TIMEOUT_S,
    )
