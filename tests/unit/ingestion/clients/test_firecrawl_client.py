"""
Tests for FirecrawlFetchClient over a mocked HTTP transport.
"""

import asyncio
import json

import httpx
import pytest

from src.ingestion.clients.firecrawl_client import FirecrawlFetchClient, path_pattern
from src.ingestion.errors import FetchError
from src.ingestion.runtime.resilience import RetryPolicy

BASE_URL = "https://api.firecrawl.dev"
PAGE_URL = "https://events.example.com/calendar"


async def _no_sleep(_seconds):
    return None


def _run(handler, operation, retry_policy=None):
    """Run `operation(client)` against a client whose transport calls `handler`."""

    async def main():
        http_client = httpx.AsyncClient(
            base_url=BASE_URL, transport=httpx.MockTransport(handler)
        )
        client = FirecrawlFetchClient(
            "fc-test",
            http_client=http_client,
            retry_policy=retry_policy or RetryPolicy(max_retries=0),
            sleep=_no_sleep,
        )
        try:
            return await operation(client)
        finally:
            await http_client.aclose()

    return asyncio.run(main())


def _scrape_body(markdown="# Events"):
    return {
        "success": True,
        "data": {
            "markdown": markdown,
            "html": "<h1>Events</h1>",
            "links": ["https://events.example.com/e/1"],
            "metadata": {"sourceURL": PAGE_URL, "statusCode": 200},
        },
    }


class TestPathPattern:
    @pytest.mark.parametrize(
        "entry, expected",
        [
            ("/akce/", ".*akce.*"),
            ("https://events.example.com/*", ".*"),
            ("https://events.example.com/events/*", ".*events.*"),
            ("", ".*"),
        ],
    )
    def test_patterns(self, entry, expected):
        assert path_pattern(entry) == expected


class TestScrape:
    def test_scrape_payload_and_page(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json=_scrape_body())

        page = _run(
            handler,
            lambda c: c.scrape(
                PAGE_URL, wait_for_ms=2000, actions=[{"type": "scroll"}], timeout_s=30
            ),
        )

        assert page.url == PAGE_URL
        assert page.markdown == "# Events"
        assert page.status_code == 200
        assert page.links == ["https://events.example.com/e/1"]

        sent = json.loads(requests[0].content)
        assert requests[0].url.path == "/v1/scrape"
        assert sent["url"] == PAGE_URL
        assert sent["formats"] == ["markdown", "html"]
        assert sent["onlyMainContent"] is True
        assert sent["timeout"] == 30000
        assert sent["waitFor"] == 2000
        assert sent["actions"] == [{"type": "scroll"}]

    def test_transient_status_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                return httpx.Response(503)
            return httpx.Response(200, json=_scrape_body())

        page = _run(
            handler,
            lambda c: c.scrape(PAGE_URL),
            retry_policy=RetryPolicy(max_retries=1, backoff_mode="none"),
        )

        assert len(calls) == 2
        assert page.has_content

    def test_client_error_raises_fetch_error(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(404)

        with pytest.raises(FetchError) as exc_info:
            _run(
                handler,
                lambda c: c.scrape(PAGE_URL),
                retry_policy=RetryPolicy(max_retries=2, backoff_mode="none"),
            )

        assert exc_info.value.status_code == 404
        assert exc_info.value.url == PAGE_URL
        assert len(calls) == 1

    def test_unsuccessful_body(self):
        def handler(request):
            return httpx.Response(200, json={"success": False, "error": "blocked"})

        with pytest.raises(FetchError, match="blocked"):
            _run(handler, lambda c: c.scrape(PAGE_URL))


class TestCrawl:
    def test_polls_and_follows_next(self):
        requests = []
        polls = {"count": 0}

        def handler(request):
            requests.append(request)
            if request.method == "POST":
                return httpx.Response(200, json={"success": True, "id": "job-1"})
            if request.url.params.get("skip") == "1":
                return httpx.Response(
                    200,
                    json={
                        "status": "completed",
                        "data": [{"markdown": "page two", "metadata": {"sourceURL": "b"}}],
                    },
                )
            polls["count"] += 1
            if polls["count"] == 1:
                return httpx.Response(200, json={"status": "scraping", "data": []})
            return httpx.Response(
                200,
                json={
                    "status": "completed",
                    "data": [{"markdown": "page one", "metadata": {"sourceURL": "a"}}],
                    "next": f"{BASE_URL}/v1/crawl/job-1?skip=1",
                },
            )

        pages = _run(
            handler,
            lambda c: c.crawl(PAGE_URL, max_depth=2, limit=10, allow_list=["/akce/"]),
        )

        assert [p.url for p in pages] == ["a", "b"]
        assert [p.markdown for p in pages] == ["page one", "page two"]

        started = json.loads(requests[0].content)
        assert requests[0].url.path == "/v1/crawl"
        assert started["maxDepth"] == 2
        assert started["limit"] == 10
        assert started["includePaths"] == [".*akce.*"]
        assert "excludePaths" not in started

    def test_failed_job(self):
        def handler(request):
            if request.method == "POST":
                return httpx.Response(200, json={"success": True, "id": "job-2"})
            return httpx.Response(200, json={"status": "failed", "error": "site unreachable"})

        with pytest.raises(FetchError, match="site unreachable"):
            _run(handler, lambda c: c.crawl(PAGE_URL))

    def test_missing_job_id(self):
        def handler(request):
            return httpx.Response(200, json={"success": False, "error": "quota exceeded"})

        with pytest.raises(FetchError, match="quota exceeded"):
            _run(handler, lambda c: c.crawl(PAGE_URL))
