"""
Firecrawl-backed fetch client.

Wraps the v1 REST API over httpx:
- POST /v1/scrape           single page (markdown + html)
- POST /v1/crawl            start a bounded crawl job
- GET  /v1/crawl/{job_id}   poll the job, following `next` pages of results
"""

import asyncio
import logging
import re
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence
from urllib.parse import urlparse

import httpx

from src.ingestion.clients.base import FetchClient
from src.ingestion.errors import FetchError
from src.ingestion.runtime.resilience import RetryPolicy, with_retries
from src.schemas.crawl import FetchedPage

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.firecrawl.dev"


def path_pattern(entry: str) -> str:
    """
    Turn an allow/deny entry into a Firecrawl path regex.

    Absolute URLs keep only their path ("https://x.cz/*" -> ".*"), bare path
    fragments match anywhere in the path ("/akce/" -> ".*akce.*").
    """
    entry = (entry or "").strip()
    if entry.startswith(("http://", "https://")):
        entry = urlparse(entry).path
    fragment = entry.strip("/").rstrip("*").strip("/")
    if not fragment:
        return ".*"
    return f".*{re.escape(fragment)}.*"


def _page_from_payload(data: Dict[str, Any], fallback_url: str) -> FetchedPage:
    metadata = data.get("metadata") or {}
    return FetchedPage(
        url=metadata.get("sourceURL") or metadata.get("url") or fallback_url,
        markdown=data.get("markdown"),
        html=data.get("html") or data.get("rawHtml"),
        links=data.get("links") or [],
        status_code=metadata.get("statusCode"),
    )


class FirecrawlFetchClient(FetchClient):
    """Fetch client for the Firecrawl API."""

    provider = "firecrawl"

    def __init__(
        self,
        api_key: Optional[str],
        *,
        base_url: str = DEFAULT_BASE_URL,
        timeout_s: float = 60.0,
        crawl_timeout_s: float = 90.0,
        poll_interval_s: float = 2.0,
        retry_policy: Optional[RetryPolicy] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self.crawl_timeout_s = crawl_timeout_s
        self.poll_interval_s = poll_interval_s
        self.retry_policy = retry_policy or RetryPolicy(max_retries=2, base_delay_s=1.0)
        self._client = http_client
        self._owns_client = http_client is None
        self._sleep = sleep

    @property
    def is_available(self) -> bool:
        return bool(self._api_key)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={
                    "Authorization": f"Bearer {self._api_key}",
                    "Content-Type": "application/json",
                },
                timeout=self.timeout_s,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        timeout_s: Optional[float] = None,
    ) -> Dict[str, Any]:
        client = self._get_client()

        async def call() -> Dict[str, Any]:
            response = await client.request(
                method, path, json=json, timeout=timeout_s or self.timeout_s
            )
            response.raise_for_status()
            return response.json()

        return await with_retries(
            call, self.retry_policy, description=f"firecrawl {method} {path}", sleep=self._sleep
        )

    async def scrape(
        self,
        url: str,
        *,
        formats: Sequence[str] = ("markdown", "html"),
        only_main_content: bool = True,
        wait_for_ms: Optional[int] = None,
        actions: Optional[List[Dict[str, Any]]] = None,
        timeout_s: Optional[float] = None,
    ) -> FetchedPage:
        timeout_s = timeout_s or self.timeout_s
        payload: Dict[str, Any] = {
            "url": url,
            "formats": list(formats),
            "onlyMainContent": only_main_content,
            "timeout": int(timeout_s * 1000),
        }
        if wait_for_ms:
            payload["waitFor"] = wait_for_ms
        if actions:
            payload["actions"] = actions

        try:
            body = await self._request("POST", "/v1/scrape", json=payload, timeout_s=timeout_s + 10)
        except httpx.HTTPError as e:
            status = e.response.status_code if isinstance(e, httpx.HTTPStatusError) else None
            raise FetchError(url, f"scrape failed: {e}", status_code=status) from e

        if not body.get("success", True) or not body.get("data"):
            raise FetchError(url, body.get("error") or "scrape returned no data")

        page = _page_from_payload(body["data"], url)
        logger.debug(
            f"Scraped {url}: markdown={len(page.markdown)} html={len(page.html)} chars"
        )
        return page

    async def crawl(
        self,
        url: str,
        *,
        max_depth: Optional[int] = None,
        limit: Optional[int] = None,
        allow_list: Sequence[str] = (),
        deny_list: Sequence[str] = (),
        actions: Optional[List[Dict[str, Any]]] = None,
        wait_for_ms: Optional[int] = None,
        timeout_s: Optional[float] = None,
    ) -> List[FetchedPage]:
        timeout_s = timeout_s or self.crawl_timeout_s
        scrape_options: Dict[str, Any] = {"formats": ["markdown", "html"]}
        if wait_for_ms:
            scrape_options["waitFor"] = wait_for_ms
        if actions:
            scrape_options["actions"] = actions

        payload: Dict[str, Any] = {"url": url, "scrapeOptions": scrape_options}
        if max_depth is not None:
            payload["maxDepth"] = max_depth
        if limit is not None:
            payload["limit"] = limit
        if allow_list:
            payload["includePaths"] = sorted({path_pattern(p) for p in allow_list})
        if deny_list:
            payload["excludePaths"] = sorted({path_pattern(p) for p in deny_list})

        try:
            started = await self._request("POST", "/v1/crawl", json=payload)
        except httpx.HTTPError as e:
            status = e.response.status_code if isinstance(e, httpx.HTTPStatusError) else None
            raise FetchError(url, f"crawl failed to start: {e}", status_code=status) from e

        job_id = started.get("id")
        if not job_id:
            raise FetchError(url, started.get("error") or "crawl returned no job id")

        return await self._collect_crawl(url, job_id, timeout_s, limit)

    async def _collect_crawl(
        self, url: str, job_id: str, timeout_s: float, limit: Optional[int]
    ) -> List[FetchedPage]:
        deadline = time.monotonic() + timeout_s
        pages: List[FetchedPage] = []
        path = f"/v1/crawl/{job_id}"

        while True:
            try:
                body = await self._request("GET", path)
            except httpx.HTTPError as e:
                if pages:
                    logger.warning(f"Crawl {job_id} polling failed, keeping {len(pages)} pages: {e}")
                    return pages
                raise FetchError(url, f"crawl polling failed: {e}") from e

            status = body.get("status")
            if status == "failed":
                raise FetchError(url, body.get("error") or "crawl job failed")

            if status == "completed":
                pages.extend(_page_from_payload(d, url) for d in body.get("data") or [])
                next_url = body.get("next")
                if next_url and (limit is None or len(pages) < limit):
                    parsed = urlparse(next_url)
                    path = parsed.path + (f"?{parsed.query}" if parsed.query else "")
                    continue
                logger.debug(f"Crawl {job_id} completed with {len(pages)} pages")
                return pages[:limit] if limit else pages

            if time.monotonic() >= deadline:
                partial = [_page_from_payload(d, url) for d in body.get("data") or []]
                if partial:
                    logger.warning(f"Crawl {job_id} timed out, keeping {len(partial)} pages")
                    return partial
                raise FetchError(url, f"crawl timed out after {timeout_s:.0f}s")

            await self._sleep(self.poll_interval_s)
