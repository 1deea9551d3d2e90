"""
LLM-based event extraction.

Page text is split into overlapping chunks, each chunk is sent to the
completion service with a multilingual extraction prompt, and the responses
are parsed through the repair pipeline. Candidates are deduplicated across
chunks; processing stops early once enough events have been found.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Dict, List, Optional, Tuple

from pydantic import ValidationError

from src.ingestion.clients.base import CompletionClient
from src.ingestion.errors import RateLimitExceededError
from src.ingestion.extractors.response_repair import ParseStatus, parse_model_response
from src.ingestion.normalization.urls import normalize_url
from src.ingestion.runtime.resilience import RateLimiter
from src.schemas.event import CandidateEvent

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_MODELS: Dict[str, int] = {"gpt-4o-mini": 3000}

LANGUAGE_NAMES = {"cs": "Czech", "de": "German", "sk": "Slovak", "pl": "Polish"}

SYSTEM_PROMPT = (
    "You are an expert at extracting structured event data from web content in "
    "multiple languages. Always return valid JSON. Translate titles and "
    "descriptions to English but keep local city names as they are written "
    "(for example Praha, Brno, Ostrava)."
)

USER_PROMPT_TEMPLATE = """Extract event information from the following content.
Today is {today}. Only extract events happening on or after {today}; skip historical events and events without a clear date.
{locale_note}
Prefer data from event detail pages when present.

Return a JSON object of the form {{"events": [...]}} where each event has (unknown fields may be omitted):
{{
  "title": "Event title (in English)",
  "description": "Short description (in English)",
  "date": "YYYY-MM-DD",
  "endDate": "YYYY-MM-DD (optional)",
  "city": "City name as written locally",
  "venue": "Venue name (optional)",
  "category": "One of: {categories}",
  "subcategory": "Subcategory (optional)",
  "url": "Event detail page URL",
  "imageUrl": "Primary image URL (optional)",
  "expectedAttendees": "Number of expected attendees"
}}

Attendance guidelines:
- Look for explicit numbers: "Expected attendance: 500", "Capacity: 1000", "sold out (2,000 tickets)"
- Look for venue capacity mentions and venue types (stadium, arena, convention center, club, theater)
- Local-language cues count too (e.g. Czech "kapacita", "míst", "návštěvníků", "účastníků")
- If nothing explicit is available, estimate from venue type and event category

Content:
{content}

If no current or future events are found, return {{"events": []}}."""


@dataclass
class ExtractionResult:
    """Candidates from one extraction pass plus what it cost."""

    events: List[CandidateEvent] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    method: str = "none"
    chunks_processed: int = 0
    completion_calls: int = 0
    parse_statuses: List[ParseStatus] = field(default_factory=list)


class LLMEventExtractor:
    """Extracts candidate events from free text through a completion service."""

    def __init__(
        self,
        client: CompletionClient,
        *,
        model: Optional[str] = None,
        models: Optional[Dict[str, int]] = None,
        default_model: str = DEFAULT_MODEL,
        temperature: float = 0.1,
        chunk_size: int = 20000,
        chunk_overlap: int = 1000,
        min_events: int = 10,
        categories: Optional[List[str]] = None,
        rate_limiter: Optional[RateLimiter] = None,
        today: Optional[Callable[[], date]] = None,
    ):
        if chunk_overlap >= chunk_size:
            raise ValueError("chunk_overlap must be smaller than chunk_size")
        self.client = client
        self.models = dict(models or DEFAULT_MODELS)
        self.default_model = default_model if default_model in self.models else next(iter(self.models))
        self.model, self.max_tokens = self.resolve_model(model)
        self.temperature = temperature
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.min_events = min_events
        self.categories = categories or ["Other"]
        self.rate_limiter = rate_limiter
        self._today = today or date.today

    def resolve_model(self, requested: Optional[str]) -> Tuple[str, int]:
        """Return (model, max_tokens); unknown names fall back to the default model."""
        if requested and requested in self.models:
            return requested, self.models[requested]
        if requested:
            logger.warning(
                f"Unknown completion model '{requested}', falling back to {self.default_model}"
            )
        return self.default_model, self.models[self.default_model]

    def chunk_text(self, text: str) -> List[str]:
        """Split text into chunk_size pieces overlapping by chunk_overlap."""
        if len(text) <= self.chunk_size:
            return [text]
        step = self.chunk_size - self.chunk_overlap
        chunks = []
        for start in range(0, len(text), step):
            chunks.append(text[start : start + self.chunk_size])
            if start + self.chunk_size >= len(text):
                break
        return chunks

    def build_prompts(self, chunk: str, locale: Optional[str] = None) -> Tuple[str, str]:
        locale_note = ""
        if locale and locale != "en":
            language = LANGUAGE_NAMES.get(locale, locale)
            locale_note = (
                f"NOTE: This content is in {language}. Translate titles and descriptions "
                f"to English, but keep {language} city names as they are."
            )
        today = self._today().isoformat()
        user_prompt = USER_PROMPT_TEMPLATE.format(
            today=today,
            locale_note=locale_note,
            categories=", ".join(self.categories),
            content=chunk,
        )
        return SYSTEM_PROMPT, user_prompt

    @staticmethod
    def _coerce_candidates(items: list) -> Tuple[List[CandidateEvent], int]:
        candidates: List[CandidateEvent] = []
        dropped = 0
        for item in items:
            if not isinstance(item, dict):
                dropped += 1
                continue
            try:
                candidates.append(CandidateEvent.model_validate(item))
            except ValidationError:
                dropped += 1
        return candidates, dropped

    async def extract(
        self,
        text: str,
        source_name: str,
        *,
        run_id: Optional[str] = None,
        locale: Optional[str] = None,
        page_url: Optional[str] = None,
    ) -> ExtractionResult:
        """
        Extract candidates from text.

        Per-chunk failures are recorded on the result. Only the rate
        limiter's request ceiling propagates.
        """
        result = ExtractionResult(method="llm")
        if not text or not text.strip():
            return result

        seen = set()
        chunks = self.chunk_text(text)
        for index, chunk in enumerate(chunks, start=1):
            if len(result.events) >= self.min_events:
                logger.debug(
                    f"{source_name}: {len(result.events)} events found, "
                    f"skipping remaining {len(chunks) - index + 1} chunks"
                )
                break

            system_prompt, user_prompt = self.build_prompts(chunk, locale)
            try:
                if self.rate_limiter is not None:
                    await self.rate_limiter.acquire(
                        source_name, run_id=run_id, service="completion"
                    )
                result.completion_calls += 1
                response = await self.client.complete(
                    system_prompt,
                    user_prompt,
                    model=self.model,
                    temperature=self.temperature,
                    max_tokens=self.max_tokens,
                )
            except RateLimitExceededError:
                raise
            except Exception as e:
                logger.warning(f"{source_name}: completion failed for chunk {index}: {e}")
                result.errors.append(f"Completion failed for chunk {index}: {e}")
                continue
            finally:
                result.chunks_processed += 1

            outcome = parse_model_response(response)
            result.parse_statuses.append(outcome.status)
            if not outcome.recovered:
                result.errors.append(f"Unparseable response for chunk {index}: {outcome.error}")
                continue

            candidates, dropped = self._coerce_candidates(outcome.value.get("events") or [])
            if dropped:
                logger.debug(f"{source_name}: dropped {dropped} malformed items in chunk {index}")

            for candidate in candidates:
                key = candidate.dedup_key(normalize_url(candidate.url, page_url) or "")
                if key in seen:
                    continue
                seen.add(key)
                result.events.append(candidate)

        return result
