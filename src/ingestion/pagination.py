"""
Pagination link discovery on listing pages.

Used by the adaptive scrape to seed the shallow crawl with "next page" style
URLs. Links are matched by visible text (any configured language) or by
href shape, and only same-origin links are kept.
"""

import logging
import re
from typing import Any, Dict, List, Optional

from bs4 import BeautifulSoup

from src.configs.config import Config
from src.ingestion.normalization.dates import fold
from src.ingestion.normalization.urls import normalize_url, same_origin

logger = logging.getLogger(__name__)

_MD_LINK = re.compile(r"\[([^\]]{1,80})\]\(([^)\s]+)\)")


class PaginationDetector:
    """Finds next-page and load-more links on a fetched listing page."""

    def __init__(self, settings: Optional[Dict[str, Any]] = None):
        settings = settings or {}
        texts: List[str] = []
        for key in ("next_texts", "load_more_texts"):
            for locale_texts in (settings.get(key) or {}).values():
                texts.extend(fold(t) for t in locale_texts or [])
        self.texts = tuple(dict.fromkeys(t.strip() for t in texts if t.strip()))
        self.href_patterns = [re.compile(p) for p in settings.get("href_patterns") or []]
        self.max_links = int(settings.get("max_links", 10))

    @classmethod
    def from_config(cls) -> "PaginationDetector":
        return cls(Config.section("pagination", {}))

    def _text_matches(self, text: str) -> bool:
        folded = re.sub(r"[^\w\s]", " ", fold(text or ""))
        folded = re.sub(r"\s+", " ", folded).strip()
        if not folded:
            return False
        return any(folded == t or folded.startswith(t + " ") for t in self.texts)

    def _href_matches(self, href: str) -> bool:
        return any(p.search(href) for p in self.href_patterns)

    def detect(self, page_url: str, html: str = "", markdown: str = "") -> List[str]:
        """
        Return absolute, canonical pagination URLs found on the page.

        The page's own URL is never returned. Order follows document order.
        """
        candidates: List[tuple] = []
        if html:
            soup = BeautifulSoup(html, "html.parser")
            for a in soup.find_all("a", href=True):
                label = " ".join(
                    filter(None, [a.get_text(" ", strip=True), a.get("aria-label"), a.get("title")])
                )
                rel = " ".join(a.get("rel") or [])
                candidates.append((a["href"], label, "next" in rel.lower()))
        if markdown:
            for m in _MD_LINK.finditer(markdown):
                candidates.append((m.group(2), m.group(1), False))

        own = normalize_url(page_url)
        found: List[str] = []
        for href, label, rel_next in candidates:
            href = (href or "").strip()
            if not href or href.startswith(("#", "javascript:", "mailto:", "tel:")):
                continue
            if not (rel_next or self._text_matches(label) or self._href_matches(href)):
                continue
            url = normalize_url(href, page_url)
            if not url or url == own or not url.startswith(("http://", "https://")):
                continue
            if not same_origin(url, page_url) or url in found:
                continue
            found.append(url)
            if len(found) >= self.max_links:
                break

        if found:
            logger.debug(f"Detected {len(found)} pagination links on {page_url}")
        return found
