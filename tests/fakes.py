"""
In-memory fakes for the external collaborators of the pipeline, plus the
small config sections the tests build components from.
"""

import hashlib
import json
import re
import uuid
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence

from src.ingestion.clients.base import CompletionClient, EmbeddingClient, FetchClient
from src.ingestion.deduplication import cosine_similarity
from src.ingestion.errors import FetchError
from src.ingestion.repositories import (
    EmbeddingMatch,
    EventRepository,
    SourceRepository,
    SyncLogRepository,
)
from src.schemas.crawl import FetchedPage, SourceDefinition
from src.schemas.event import NormalizedEvent, StoredEvent
from src.schemas.sync_log import SyncLogEntry

CATEGORY_SECTION = {
    "default": "Other",
    "canonical": ["Entertainment", "Arts & Culture", "Sports", "Business", "Other"],
    "keywords": {
        "en": {"concert": "Entertainment", "festival": "Arts & Culture", "match": "Sports"},
        "cs": {"koncert": "Entertainment", "divadlo": "Arts & Culture", "zápas": "Sports"},
    },
    "city_aliases": {"prague": "Praha", "praha": "Praha", "brno": "Brno"},
}

NAVIGATION_SECTION = {
    "consent_texts": {"en": ["Accept all"], "cs": ["Souhlasím"]},
    "load_more_texts": {"en": ["Load more"], "cs": ["Načíst další"]},
    "next_month_texts": {"en": ["Next month"], "cs": ["Další měsíc"]},
    "load_more_repeats": 2,
}

CRAWL_SECTION = {
    "host_rules": [{"match": "kudyznudy", "preset": "kudyznudy"}],
    "presets": {
        "generic": {"max_depth": 1, "wait_for_ms": 3000, "generic_actions": True},
        "kudyznudy": {
            "max_depth": 2,
            "max_pages": 40,
            "allow_list": ["/akce/"],
            "deny_list": ["/kontakt"],
            "detail_url_patterns": ["/akce/"],
        },
    },
    "shallow": {"max_depth": 2, "limit": 12, "min_events": 5, "max_pagination_urls": 2},
}

PAGINATION_SECTION = {
    "next_texts": {"en": ["next", "next page"], "cs": ["další"]},
    "load_more_texts": {"en": ["load more"]},
    "href_patterns": [r"[?&]page=\d+", r"/strana/\d+"],
    "max_links": 10,
}


def future_date(days: int = 60) -> date:
    return date.today() + timedelta(days=days)


def json_ld_page(url: str, *events: Dict[str, Any]) -> FetchedPage:
    """A page whose HTML embeds the given schema.org Event objects."""
    nodes = [{"@context": "https://schema.org", "@type": "Event", **e} for e in events]
    html = (
        "<html><head><script type=\"application/ld+json\">"
        + json.dumps(nodes if len(nodes) != 1 else nodes[0])
        + "</script></head><body><h1>Events</h1></body></html>"
    )
    return FetchedPage(url=url, html=html, markdown="# Events")


# =============================================================================
# FAKE CLIENTS
# =============================================================================


class FakeFetchClient(FetchClient):
    """
    Scripted fetch client.

    scrape_results are consumed in order (the last one repeats); an
    Exception instance is raised instead of returned. crawl_results maps a
    start URL to its pages; unknown URLs return default_crawl.
    """

    provider = "fake"

    def __init__(
        self,
        scrape_results: Optional[List[Any]] = None,
        crawl_results: Optional[Dict[str, Any]] = None,
        default_crawl: Optional[List[FetchedPage]] = None,
    ):
        self.scrape_results = list(scrape_results or [])
        self.crawl_results = dict(crawl_results or {})
        self.default_crawl = list(default_crawl or [])
        self.scrape_calls: List[Dict[str, Any]] = []
        self.crawl_calls: List[Dict[str, Any]] = []

    @property
    def is_available(self) -> bool:
        return True

    async def scrape(self, url, **kwargs) -> FetchedPage:
        self.scrape_calls.append({"url": url, **kwargs})
        if not self.scrape_results:
            raise FetchError(url, "no scripted response")
        index = min(len(self.scrape_calls), len(self.scrape_results)) - 1
        result = self.scrape_results[index]
        if isinstance(result, Exception):
            raise result
        return result

    async def crawl(self, url, **kwargs) -> List[FetchedPage]:
        self.crawl_calls.append({"url": url, **kwargs})
        result = self.crawl_results.get(url, self.default_crawl)
        if isinstance(result, Exception):
            raise result
        return list(result)


class FakeCompletionClient(CompletionClient):
    """Returns scripted responses in order (the last one repeats)."""

    provider = "fake"

    def __init__(self, responses: Optional[List[Any]] = None):
        self.responses = list(responses or ['{"events": []}'])
        self.calls: List[Dict[str, Any]] = []

    @property
    def is_available(self) -> bool:
        return True

    async def complete(self, system_prompt, user_prompt, *, model, temperature=0.1, max_tokens=3000):
        self.calls.append(
            {
                "system": system_prompt,
                "user": user_prompt,
                "model": model,
                "max_tokens": max_tokens,
            }
        )
        response = self.responses[min(len(self.calls), len(self.responses)) - 1]
        if isinstance(response, Exception):
            raise response
        return response


class FakeEmbedder(EmbeddingClient):
    """
    Deterministic bag-of-words embedding.

    Each lowercased word increments one of `dims` buckets chosen by md5, so
    identical texts embed identically and texts sharing few words are far
    apart.
    """

    provider = "fake"

    def __init__(self, dims: int = 256, fail: bool = False):
        self.dims = dims
        self.fail = fail
        self.calls: List[str] = []

    @property
    def is_available(self) -> bool:
        return True

    async def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        if self.fail:
            raise RuntimeError("embedding service unavailable")
        vector = [0.0] * self.dims
        for word in re.findall(r"\w+", text.lower()):
            bucket = int(hashlib.md5(word.encode("utf-8")).hexdigest(), 16) % self.dims
            vector[bucket] += 1.0
        return vector


# =============================================================================
# IN-MEMORY REPOSITORIES
# =============================================================================


class InMemoryEventRepository(EventRepository):
    def __init__(self):
        self.rows: Dict[str, StoredEvent] = {}
        self.inserted: List[str] = []
        self.updates: List[Dict[str, Any]] = []
        self.fail_on_insert: set = set()

    def by_title(self, title: str) -> List[StoredEvent]:
        return [e for e in self.rows.values() if e.title == title]

    def get_by_source_ids(self, source: str, source_ids: Sequence[str]) -> Dict[str, StoredEvent]:
        wanted = set(source_ids)
        return {
            e.source_id: e for e in self.rows.values() if e.source == source and e.source_id in wanted
        }

    def insert(self, event: NormalizedEvent, embedding: Optional[List[float]] = None) -> StoredEvent:
        if event.source_id in self.fail_on_insert:
            raise RuntimeError(f"insert failed for {event.source_id}")
        if event.natural_key in {e.natural_key for e in self.rows.values()}:
            raise RuntimeError("unique constraint violated")
        stored = StoredEvent(**event.to_record(), id=str(uuid.uuid4()), embedding=embedding)
        self.rows[stored.id] = stored
        self.inserted.append(stored.id)
        return stored

    def update(self, event_id: str, fields: Dict[str, Any]) -> None:
        self.rows[event_id] = self.rows[event_id].model_copy(update=fields)
        self.updates.append({"id": event_id, **fields})

    def match_embeddings(self, vector, *, threshold, top_k, date_from=None, date_to=None):
        matches = []
        for stored in self.rows.values():
            if stored.embedding is None:
                continue
            if date_from is not None and stored.calendar_date < date_from:
                continue
            if date_to is not None and stored.calendar_date > date_to:
                continue
            similarity = cosine_similarity(vector, stored.embedding)
            if similarity >= threshold:
                matches.append(EmbeddingMatch(stored, similarity))
        matches.sort(key=lambda m: m.similarity, reverse=True)
        return matches[:top_k]


class InMemorySyncLogRepository(SyncLogRepository):
    def __init__(self):
        self.entries: Dict[str, SyncLogEntry] = {}
        self.update_calls = 0

    def create(self, entry: SyncLogEntry) -> SyncLogEntry:
        created = entry.model_copy(update={"id": str(len(self.entries) + 1)})
        self.entries[created.id] = created.model_copy()
        return created

    def update(self, entry: SyncLogEntry) -> None:
        self.update_calls += 1
        self.entries[entry.id] = entry.model_copy(deep=True)


class InMemorySourceRepository(SourceRepository):
    def __init__(self, sources: Optional[List[SourceDefinition]] = None):
        self.sources = {s.id: s for s in sources or []}
        self.scraped: Dict[str, datetime] = {}

    def get(self, source_id: str) -> Optional[SourceDefinition]:
        return self.sources.get(str(source_id))

    def list_enabled(self) -> List[SourceDefinition]:
        return [s for s in self.sources.values() if s.enabled]

    def mark_scraped(self, source_id: str, at: datetime) -> None:
        self.scraped[str(source_id)] = at


