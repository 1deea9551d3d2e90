"""
Extraction chain: structured data, then LLM, then pattern fallback.

Each stage runs only when the previous ones produced nothing, so a page
with schema.org data never costs a completion call.
"""

import logging
from typing import Optional

from src.ingestion.extractors.llm_extractor import ExtractionResult, LLMEventExtractor
from src.ingestion.extractors.pattern_fallback import PatternFallbackExtractor
from src.ingestion.extractors.structured_data import StructuredDataExtractor
from src.schemas.crawl import FetchedPage

logger = logging.getLogger(__name__)


class ExtractionChain:
    """Runs the extractors in order of cost and stops at the first hit."""

    def __init__(
        self,
        llm_extractor: LLMEventExtractor,
        structured: Optional[StructuredDataExtractor] = None,
        fallback: Optional[PatternFallbackExtractor] = None,
        *,
        use_fallback: bool = True,
    ):
        self.llm_extractor = llm_extractor
        self.structured = structured or StructuredDataExtractor()
        self.fallback = fallback or PatternFallbackExtractor()
        self.use_fallback = use_fallback

    async def extract_page(
        self,
        page: FetchedPage,
        source_name: str,
        *,
        run_id: Optional[str] = None,
        locale: Optional[str] = None,
        default_city: Optional[str] = None,
    ) -> ExtractionResult:
        """
        Extract candidates from a fetched page.

        Raises:
            RateLimitExceededError: propagated from the LLM stage.
        """
        structured_events = self.structured.extract(page.html or page.markdown)
        if not structured_events and page.html and page.markdown:
            structured_events = self.structured.extract(page.markdown)
        if structured_events:
            return ExtractionResult(events=structured_events, method="structured_data")

        result = await self.llm_extractor.extract(
            page.text, source_name, run_id=run_id, locale=locale, page_url=page.url
        )
        if result.events or not self.use_fallback:
            return result

        fallback_events = self.fallback.extract(page.text, default_city=default_city)
        if fallback_events:
            logger.info(
                f"{source_name}: pattern fallback recovered {len(fallback_events)} "
                f"candidates from {page.url}"
            )
            result.events = fallback_events
            result.method = "pattern"
        return result
