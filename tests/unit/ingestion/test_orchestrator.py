"""
Tests for CrawlOrchestrator.

End-to-end source runs over in-memory fakes: fetch results are scripted,
extraction and normalization run for real, and storage goes to the
in-memory repositories.
"""

import asyncio

from src.ingestion.errors import FetchError
from src.ingestion.runtime.resilience import RateLimiter, RateLimitPolicy
from src.schemas.crawl import FetchedPage
from src.schemas.sync_log import SyncStatus
from tests.fakes import FakeCompletionClient, FakeFetchClient, future_date, json_ld_page

SOURCE_URL = "https://events.example.com/calendar"


def _event(name, days=60, **extra):
    return {
        "name": name,
        "startDate": future_date(days).isoformat(),
        "location": {"name": "Lucerna", "address": {"addressLocality": "Praha"}},
        **extra,
    }


def _empty_listing(url=SOURCE_URL):
    return FetchedPage(
        url=url,
        markdown="Nothing scheduled yet",
        html=(
            "<html><body><p>Nothing scheduled yet</p>"
            '<a href="/calendar?page=2">Next</a></body></html>'
        ),
    )


def _run(orchestrator, source_id="1"):
    return asyncio.run(orchestrator.run_source(source_id))


# =============================================================================
# SCRAPE MODE
# =============================================================================


class TestScrapeMode:
    """Adaptive single-page scrape."""

    def test_structured_data_first_attempt(
        self, make_orchestrator, make_source, event_repository, sync_log_repository
    ):
        """A JSON-LD page should store its event without any completion call."""
        fetch = FakeFetchClient(
            [json_ld_page(SOURCE_URL, _event("Rock Concert", url="/events/rock"))]
        )
        completion = FakeCompletionClient()
        orchestrator = make_orchestrator(
            [make_source()], fetch_client=fetch, completion_client=completion
        )

        result = _run(orchestrator)

        assert result.success
        assert result.attempts == 1
        assert (result.created, result.updated, result.skipped) == (1, 0, 0)
        assert completion.calls == []
        assert fetch.scrape_calls[0]["only_main_content"] is True
        assert fetch.scrape_calls[0]["wait_for_ms"] == 4000

        stored = event_repository.by_title("Rock Concert")
        assert len(stored) == 1
        assert stored[0].url == "https://events.example.com/events/rock"
        assert stored[0].city == "Praha"
        assert stored[0].embedding is not None

        log = sync_log_repository.entries[result.sync_log.id]
        assert log.status == SyncStatus.SUCCESS
        assert (log.events_processed, log.events_created) == (1, 1)
        assert "1" in orchestrator.sources.scraped

    def test_second_attempt_after_fetch_failure(self, make_orchestrator, make_source):
        """A failed first fetch should be retried with the full page and a longer wait."""
        fetch = FakeFetchClient(
            [
                FetchError(SOURCE_URL, "timeout"),
                json_ld_page(SOURCE_URL, _event("Rock Concert")),
            ]
        )
        orchestrator = make_orchestrator([make_source()], fetch_client=fetch)

        result = _run(orchestrator)

        assert result.success
        assert result.attempts == 2
        assert result.created == 1
        assert fetch.scrape_calls[1]["only_main_content"] is False
        assert fetch.scrape_calls[1]["wait_for_ms"] == 6000
        assert any("timeout" in e for e in result.errors)

    def test_shallow_crawl_third_attempt(self, make_orchestrator, make_source, event_repository):
        """Two empty scrapes should fall through to a shallow crawl seeded by pagination."""
        page_two = "https://events.example.com/calendar?page=2"
        fetch = FakeFetchClient(
            scrape_results=[_empty_listing()],
            crawl_results={
                SOURCE_URL: [json_ld_page(f"{SOURCE_URL}/rock", _event("Rock Concert"))],
                page_two: [json_ld_page(f"{page_two}&id=2", _event("Jazz Night", days=61))],
            },
        )
        orchestrator = make_orchestrator([make_source()], fetch_client=fetch)

        result = _run(orchestrator)

        assert result.success
        assert result.attempts == 3
        assert len(fetch.scrape_calls) == 2
        assert [c["url"] for c in fetch.crawl_calls] == [SOURCE_URL, page_two]
        assert fetch.crawl_calls[0]["max_depth"] == 2
        assert fetch.crawl_calls[0]["actions"]
        assert result.created == 2
        assert result.pages_crawled == 2
        assert {e.title for e in event_repository.rows.values()} == {
            "Rock Concert",
            "Jazz Night",
        }
        assert result.sync_log.pages_crawled == 2

    def test_shallow_crawl_stops_at_min_events(self, make_orchestrator, make_source):
        page_two = "https://events.example.com/calendar?page=2"
        events = [_event(f"Event Number {i}", days=60 + i) for i in range(5)]
        fetch = FakeFetchClient(
            scrape_results=[_empty_listing()],
            crawl_results={SOURCE_URL: [json_ld_page(f"{SOURCE_URL}/all", *events)]},
        )
        orchestrator = make_orchestrator([make_source()], fetch_client=fetch)

        result = _run(orchestrator)

        assert result.created == 5
        assert [c["url"] for c in fetch.crawl_calls] == [SOURCE_URL]
        assert page_two not in [c["url"] for c in fetch.crawl_calls]

    def test_nothing_fetched_is_an_error(self, make_orchestrator, make_source, sync_log_repository):
        orchestrator = make_orchestrator([make_source()], fetch_client=FakeFetchClient())

        result = _run(orchestrator)

        assert result.status == "error"
        assert result.attempts == 3
        assert result.errors
        assert sync_log_repository.entries[result.sync_log.id].status == SyncStatus.ERROR
        assert orchestrator.sources.scraped == {}

    def test_no_events_is_still_success(self, make_orchestrator, make_source):
        fetch = FakeFetchClient(scrape_results=[_empty_listing()])
        orchestrator = make_orchestrator([make_source()], fetch_client=fetch)

        result = _run(orchestrator)

        assert result.success
        assert result.created == 0
        assert result.attempts == 3


# =============================================================================
# CRAWL MODE
# =============================================================================


class TestCrawlMode:
    def test_crawl_with_preset(self, make_orchestrator, make_source, event_repository):
        """Crawl sources should use the host preset merged with the source's overrides."""
        url = "https://www.kudyznudy.cz/kalendar-akci"
        listing = FetchedPage(url=url, markdown="Program akcí")
        detail = json_ld_page("https://www.kudyznudy.cz/akce/rock", _event("Rock Concert"))
        fetch = FakeFetchClient(crawl_results={url: [listing, detail]})
        source = make_source(
            name="Kudy z nudy", url=url, use_crawl=True, crawl_config={"maxPages": 5}
        )
        orchestrator = make_orchestrator([source], fetch_client=fetch)

        result = _run(orchestrator)

        assert result.success
        assert result.attempts == 1
        assert fetch.scrape_calls == []
        call = fetch.crawl_calls[0]
        assert call["allow_list"] == ("/akce/",)
        assert call["deny_list"] == ("/kontakt",)
        assert call["limit"] == 5
        assert result.pages_crawled == 2
        assert result.created == 1
        assert event_repository.by_title("Rock Concert")[0].source == "Kudy z nudy"

    def test_crawl_returning_nothing_is_an_error(self, make_orchestrator, make_source):
        source = make_source(use_crawl=True, crawl_config={})
        orchestrator = make_orchestrator([source], fetch_client=FakeFetchClient())

        result = _run(orchestrator)

        assert result.status == "error"
        assert any("crawl returned no pages" in e for e in result.errors)

    def test_invalid_crawl_config_aborts(self, make_orchestrator, make_source):
        source = make_source(use_crawl=True, crawl_config={"maxDepth": -1})
        fetch = FakeFetchClient()
        orchestrator = make_orchestrator([source], fetch_client=fetch)

        result = _run(orchestrator)

        assert result.status == "error"
        assert fetch.crawl_calls == []


# =============================================================================
# RE-RUNS AND SOURCE STATES
# =============================================================================


class TestRuns:
    def test_second_run_updates_changed_field(
        self, make_orchestrator, make_source, event_repository
    ):
        """Re-running a source with a new image should update only that field."""
        source = make_source()
        first = make_orchestrator(
            [source],
            fetch_client=FakeFetchClient([json_ld_page(SOURCE_URL, _event("Rock Concert"))]),
        )
        second = make_orchestrator(
            [source],
            fetch_client=FakeFetchClient(
                [
                    json_ld_page(
                        SOURCE_URL, _event("Rock Concert", image="https://cdn.example.com/r.jpg")
                    )
                ]
            ),
        )

        run1 = _run(first)
        run2 = _run(second)

        assert (run1.created, run1.updated) == (1, 0)
        assert (run2.created, run2.updated, run2.skipped) == (0, 1, 0)
        assert set(event_repository.updates[0]) == {"id", "image_url", "updated_at"}
        assert len(event_repository.rows) == 1

    def test_unchanged_rerun_is_skipped(self, make_orchestrator, make_source):
        page = json_ld_page(SOURCE_URL, _event("Rock Concert"))
        _run(make_orchestrator([make_source()], fetch_client=FakeFetchClient([page])))

        result = _run(make_orchestrator([make_source()], fetch_client=FakeFetchClient([page])))

        assert (result.created, result.updated, result.skipped) == (0, 0, 1)

    def test_cross_source_duplicate_skipped(self, make_orchestrator, make_source, event_repository):
        """The same event from a second source should be dropped as a duplicate."""
        page = json_ld_page(SOURCE_URL, _event("Rock Concert"))
        _run(make_orchestrator([make_source()], fetch_client=FakeFetchClient([page])))

        other = make_source("2", name="Other Source")
        result = _run(
            make_orchestrator([other], fetch_client=FakeFetchClient([page])), source_id="2"
        )

        assert result.created == 0
        assert result.skipped == 1
        assert len(event_repository.rows) == 1

    def test_past_events_counted_as_skipped(self, make_orchestrator, make_source):
        page = json_ld_page(
            SOURCE_URL,
            _event("Future Show"),
            {"name": "Old Show", "startDate": "2020-01-01", "location": "Lucerna"},
        )
        orchestrator = make_orchestrator([make_source()], fetch_client=FakeFetchClient([page]))

        result = _run(orchestrator)

        assert result.processed == 2
        assert (result.created, result.skipped) == (1, 1)

    def test_source_not_found(self, make_orchestrator, sync_log_repository):
        fetch = FakeFetchClient()
        orchestrator = make_orchestrator([], fetch_client=fetch)

        result = _run(orchestrator, "missing")

        assert result.status == "not_found"
        assert not result.success
        assert sync_log_repository.entries == {}
        assert fetch.scrape_calls == []

    def test_disabled_source(self, make_orchestrator, make_source, sync_log_repository):
        fetch = FakeFetchClient()
        orchestrator = make_orchestrator([make_source(enabled=False)], fetch_client=fetch)

        result = _run(orchestrator)

        assert result.status == "disabled"
        assert sync_log_repository.entries == {}
        assert fetch.scrape_calls == []

    def test_rate_limit_aborts_run(self, make_orchestrator, make_source, sync_log_repository):
        """Reaching the request ceiling should end the run with an error status."""
        limiter = RateLimiter(
            RateLimitPolicy(min_interval_s=0.0, gentle_interval_s=0.0, max_requests_per_run=0)
        )
        fetch = FakeFetchClient([json_ld_page(SOURCE_URL, _event("Rock Concert"))])
        orchestrator = make_orchestrator([make_source()], fetch_client=fetch, rate_limiter=limiter)

        result = _run(orchestrator)

        assert result.status == "error"
        assert "Request limit of 0 per run exceeded" in result.errors
        assert fetch.scrape_calls == []
        assert sync_log_repository.entries[result.sync_log.id].status == SyncStatus.ERROR
        assert limiter.stats["active_runs"] == 0

    def test_unexpected_error_is_reported(self, make_orchestrator, make_source):
        fetch = FakeFetchClient([RuntimeError("boom")])
        orchestrator = make_orchestrator([make_source()], fetch_client=fetch)

        result = _run(orchestrator)

        assert result.status == "error"
        assert result.errors == ["Unexpected error: boom"]

    def test_run_all_sources(self, make_orchestrator, make_source):
        page = json_ld_page(SOURCE_URL, _event("Rock Concert"))
        sources = [
            make_source("1"),
            make_source("2", name="Second Source"),
            make_source("3", name="Disabled Source", enabled=False),
        ]
        orchestrator = make_orchestrator(sources, fetch_client=FakeFetchClient([page]))

        results = asyncio.run(orchestrator.run_all_sources(concurrency=2))

        assert sorted(r.source_id for r in results) == ["1", "2"]
        assert all(r.success for r in results)
        assert all(r.sync_log is not None for r in results)


class TestConnection:
    def test_connection_ok(self, make_orchestrator):
        fetch = FakeFetchClient([FetchedPage(url="https://example.com", markdown="ok")])
        assert asyncio.run(make_orchestrator([], fetch_client=fetch).test_connection())

    def test_connection_failure(self, make_orchestrator):
        assert not asyncio.run(
            make_orchestrator([], fetch_client=FakeFetchClient()).test_connection()
        )
