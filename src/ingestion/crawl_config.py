"""
Crawl configuration: site-family presets merged with per-source overrides.

Presets and host rules live in ingestion.yaml (`crawl` section). A source's
own crawl_config blob (camelCase keys as stored by the admin surface, or
snake_case) is merged on top:

- scalar settings (depth, page cap, wait, selectors, detail patterns) from
  the source override win over the preset
- allow/deny lists and navigation actions are concatenated, preset first
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
from urllib.parse import urlparse

from src.configs.config import Config
from src.ingestion.errors import ConfigurationError
from src.ingestion.normalization.urls import origin_of
from src.schemas.crawl import CrawlConfig, NavigationAction, SourceDefinition

logger = logging.getLogger(__name__)

GENERIC_PRESET = "generic"


def _get(blob: Dict[str, Any], snake: str, camel: str, default=None):
    if snake in blob and blob[snake] is not None:
        return blob[snake]
    if camel in blob and blob[camel] is not None:
        return blob[camel]
    return default


def _texts(table: Dict[str, List[str]]) -> Tuple[str, ...]:
    """Flatten a {locale: [texts]} table, keeping order and dropping repeats."""
    seen: List[str] = []
    for texts in (table or {}).values():
        for text in texts or []:
            if text not in seen:
                seen.append(text)
    return tuple(seen)


def _parse_actions(raw: Optional[Iterable[Any]]) -> Tuple[NavigationAction, ...]:
    actions = []
    for item in raw or []:
        if isinstance(item, NavigationAction):
            actions.append(item)
        elif isinstance(item, dict):
            actions.append(NavigationAction.model_validate(item))
    return tuple(actions)


def validate_crawl_config(config: CrawlConfig) -> None:
    """
    Raises:
        ConfigurationError: on missing start URLs or out-of-range bounds.
    """
    if not config.start_urls:
        raise ConfigurationError("Crawl config requires at least one start URL")
    if config.max_depth is not None and config.max_depth < 0:
        raise ConfigurationError("maxDepth must be >= 0")
    if config.max_pages is not None and config.max_pages <= 0:
        raise ConfigurationError("maxPages must be > 0")
    for url in config.start_urls:
        if urlparse(url).scheme not in ("http", "https"):
            raise ConfigurationError(f"Start URL must be absolute http(s): {url}")


class CrawlConfigBuilder:
    """Builds the effective CrawlConfig for a source run."""

    def __init__(
        self,
        crawl_section: Optional[Dict[str, Any]] = None,
        navigation_section: Optional[Dict[str, Any]] = None,
    ):
        crawl_section = crawl_section or {}
        self.presets: Dict[str, Dict[str, Any]] = crawl_section.get("presets") or {}
        self.host_rules: List[Dict[str, str]] = crawl_section.get("host_rules") or []
        self.shallow_settings: Dict[str, Any] = crawl_section.get("shallow") or {}
        self.navigation = navigation_section or {}
        if GENERIC_PRESET not in self.presets:
            self.presets[GENERIC_PRESET] = {"max_depth": 1, "generic_actions": True}

    @classmethod
    def from_config(cls) -> "CrawlConfigBuilder":
        return cls(Config.section("crawl", {}), Config.section("navigation", {}))

    # ------------------------------------------------------------------
    # Presets
    # ------------------------------------------------------------------

    def preset_key_for(self, url: str) -> str:
        host = (urlparse(url).hostname or "").lower()
        for rule in self.host_rules:
            if rule.get("match", "").lower() in host and rule.get("preset") in self.presets:
                return rule["preset"]
        return GENERIC_PRESET

    def generic_actions(self) -> Tuple[NavigationAction, ...]:
        """
        Consent dismissal, "load more" expansion, scrolling and month/page
        navigation, matched by visible text in every configured language.
        """
        nav = self.navigation
        actions: List[NavigationAction] = []

        consent_texts = _texts(nav.get("consent_texts"))
        for selector in nav.get("consent_selectors") or []:
            actions.append(NavigationAction(type="click", selector=selector))
        if consent_texts:
            actions.append(NavigationAction(type="click", texts=consent_texts))
        actions.append(NavigationAction(type="wait", milliseconds=1000))

        load_more = _texts(nav.get("load_more_texts"))
        if load_more:
            actions.append(
                NavigationAction(
                    type="repeat",
                    times=int(nav.get("load_more_repeats", 3)),
                    actions=(
                        NavigationAction(type="click", texts=load_more),
                        NavigationAction(type="wait", milliseconds=1500),
                        NavigationAction(type="scroll", direction="down"),
                    ),
                )
            )
        else:
            actions.append(NavigationAction(type="scroll", direction="down"))

        next_texts = _texts(nav.get("next_month_texts")) + _texts(nav.get("next_page_texts"))
        if next_texts:
            actions.append(NavigationAction(type="click", texts=next_texts))
            actions.append(NavigationAction(type="wait", milliseconds=1500))
            actions.append(NavigationAction(type="scroll", direction="down"))
        return tuple(actions)

    # ------------------------------------------------------------------
    # Building
    # ------------------------------------------------------------------

    def build(self, source: SourceDefinition) -> CrawlConfig:
        """
        Merge the source's crawl_config onto its host preset.

        Raises:
            ConfigurationError: if the merged config is invalid.
        """
        preset_key = self.preset_key_for(source.url)
        preset = self.presets.get(preset_key, {})
        override = source.crawl_config or {}

        start_urls = tuple(_get(override, "start_urls", "startUrls") or [source.url])
        actions = _parse_actions(preset.get("actions")) + _parse_actions(override.get("actions"))
        if preset.get("generic_actions"):
            actions = self.generic_actions() + actions

        config = CrawlConfig(
            start_urls=start_urls,
            max_depth=_get(override, "max_depth", "maxDepth", preset.get("max_depth")),
            max_pages=_get(
                override,
                "max_pages",
                "maxPages",
                source.max_pages_per_crawl or preset.get("max_pages"),
            ),
            allow_list=tuple(preset.get("allow_list") or [])
            + tuple(_get(override, "allow_list", "allowList", [])),
            deny_list=tuple(preset.get("deny_list") or [])
            + tuple(_get(override, "deny_list", "denyList", [])),
            actions=actions,
            wait_for_ms=_get(override, "wait_for_ms", "waitFor", preset.get("wait_for_ms")),
            listing_selectors=tuple(
                _get(override, "listing_selectors", "listingSelectors", None)
                or preset.get("listing_selectors")
                or []
            ),
            detail_url_patterns=tuple(
                _get(override, "detail_url_patterns", "detailUrlPatterns", None)
                or preset.get("detail_url_patterns")
                or []
            ),
        )
        validate_crawl_config(config)
        logger.debug(
            f"Crawl config for {source.name}: preset={preset_key} depth={config.max_depth} "
            f"pages={config.max_pages} start_urls={len(config.start_urls)}"
        )
        return config

    def shallow(
        self, source: SourceDefinition, extra_start_urls: Sequence[str] = ()
    ) -> CrawlConfig:
        """Bounded crawl used as the last single-page retry."""
        origin = origin_of(source.url)
        start_urls = [source.url]
        max_extra = int(self.shallow_settings.get("max_pagination_urls", 2))
        for url in extra_start_urls:
            if len(start_urls) > max_extra:
                break
            if url not in start_urls:
                start_urls.append(url)

        config = CrawlConfig(
            start_urls=tuple(start_urls),
            max_depth=int(self.shallow_settings.get("max_depth", 2)),
            max_pages=int(self.shallow_settings.get("limit", 12)),
            allow_list=(origin, f"{origin}/*"),
            actions=self.generic_actions(),
            wait_for_ms=int(self.shallow_settings.get("wait_for_ms", 3000)),
        )
        validate_crawl_config(config)
        return config

    @property
    def shallow_min_events(self) -> int:
        return int(self.shallow_settings.get("min_events", 5))
