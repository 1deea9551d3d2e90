# src/schemas/crawl.py
"""
Source, crawl-configuration and fetched-page schemas.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SourceStrategy(str, Enum):
    """How a source is fetched."""

    SCRAPE = "scrape"
    CRAWL = "crawl"


class SourceDefinition(BaseModel):
    """A configured event source (a row of the scraper_sources table)."""

    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    url: str
    type: str = "firecrawl"
    enabled: bool = True
    config: Dict[str, Any] = Field(default_factory=dict)
    crawl_config: Optional[Dict[str, Any]] = None
    max_pages_per_crawl: Optional[int] = None
    crawl_frequency: Optional[str] = None
    use_crawl: bool = False
    last_scraped_at: Optional[datetime] = None

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> str:
        return str(v)

    @field_validator("config", mode="before")
    @classmethod
    def default_config(cls, v: Any) -> Dict[str, Any]:
        return v or {}

    @property
    def strategy(self) -> SourceStrategy:
        if self.use_crawl and self.crawl_config is not None:
            return SourceStrategy.CRAWL
        return SourceStrategy.SCRAPE

    @property
    def default_city(self) -> Optional[str]:
        return self.config.get("city")

    @property
    def locale(self) -> Optional[str]:
        return self.config.get("locale")


class NavigationAction(BaseModel):
    """
    Declarative browser action passed to the fetch service.

    type is one of: click, scroll, wait, press, repeat. A click either
    targets a CSS selector or any of several visible text labels, so the same
    action works across languages. repeat runs its nested actions `times`
    times.
    """

    model_config = ConfigDict(frozen=True)

    type: str
    selector: Optional[str] = None
    texts: Tuple[str, ...] = ()
    direction: str = "down"
    milliseconds: Optional[int] = None
    key: Optional[str] = None
    times: int = 1
    actions: Tuple["NavigationAction", ...] = ()

    @field_validator("type")
    @classmethod
    def validate_type(cls, v: str) -> str:
        allowed = {"click", "scroll", "wait", "press", "repeat"}
        if v not in allowed:
            raise ValueError(f"Unsupported navigation action '{v}'")
        return v

    def expand(self) -> List[Dict[str, Any]]:
        """Flatten into the fetch service's action payload."""
        if self.type == "repeat":
            payload: List[Dict[str, Any]] = []
            for _ in range(max(1, self.times)):
                for action in self.actions:
                    payload.extend(action.expand())
            return payload

        if self.type == "click":
            selectors = [self.selector] if self.selector else []
            selectors.extend(f"button:has-text('{text}')" for text in self.texts)
            selectors.extend(f"a:has-text('{text}')" for text in self.texts)
            return [{"type": "click", "selector": s} for s in selectors]

        if self.type == "scroll":
            return [{"type": "scroll", "direction": self.direction}]
        if self.type == "press":
            return [{"type": "press", "key": self.key or "End"}]
        return [{"type": "wait", "milliseconds": self.milliseconds or 1000}]


NavigationAction.model_rebuild()


class CrawlConfig(BaseModel):
    """Effective crawl configuration for a single source run."""

    model_config = ConfigDict(frozen=True)

    start_urls: Tuple[str, ...]
    max_depth: Optional[int] = None
    max_pages: Optional[int] = None
    allow_list: Tuple[str, ...] = ()
    deny_list: Tuple[str, ...] = ()
    actions: Tuple[NavigationAction, ...] = ()
    wait_for_ms: Optional[int] = None
    listing_selectors: Tuple[str, ...] = ()
    detail_url_patterns: Tuple[str, ...] = ()

    def is_detail_url(self, url: str) -> bool:
        return any(pattern in url for pattern in self.detail_url_patterns)

    def pages_per_start_url(self) -> Optional[int]:
        if not self.max_pages:
            return None
        return max(1, self.max_pages // max(1, len(self.start_urls)))

    def action_payload(self) -> List[Dict[str, Any]]:
        payload: List[Dict[str, Any]] = []
        for action in self.actions:
            payload.extend(action.expand())
        return payload


class FetchedPage(BaseModel):
    """A page returned by the fetch service."""

    url: str
    markdown: str = ""
    html: str = ""
    links: List[str] = Field(default_factory=list)
    status_code: Optional[int] = None

    @field_validator("markdown", "html", mode="before")
    @classmethod
    def coerce_content(cls, v: Any) -> str:
        return v or ""

    @property
    def has_content(self) -> bool:
        return bool(self.markdown.strip() or self.html.strip())

    @property
    def text(self) -> str:
        """Preferred textual form for extraction."""
        return self.markdown if self.markdown.strip() else self.html
