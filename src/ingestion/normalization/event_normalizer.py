"""
CandidateEvent -> NormalizedEvent.

Applies, per candidate:
1. day-range splitting on the raw date text
2. date parsing; unparseable dates and dates before today are rejected
3. URL canonicalization (event and image URLs resolved against the page;
   anything that is not http(s) is dropped)
4. category and city mapping
5. deterministic source-local id
6. validation (title, city, date order)
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, List, Optional

from pydantic import ValidationError

from src.ingestion.normalization.categories import CategoryMapper
from src.ingestion.normalization.dates import parse_date, split_date_range
from src.ingestion.normalization.urls import normalize_url
from src.schemas.event import CandidateEvent, NormalizedEvent

logger = logging.getLogger(__name__)

_SOURCE_ID_UNSAFE = re.compile(r"[^A-Za-z0-9_]")

# Plausibility limits; exceeding them is logged, not rejected.
MAX_DAYS_AHEAD = 365
MAX_ATTENDANCE = 1_000_000


def _http_url(url: Optional[str], page_url: Optional[str]) -> Optional[str]:
    """Canonical absolute http(s) URL, or None."""
    normalized = normalize_url(url, page_url)
    if normalized and not normalized.startswith(("http://", "https://")):
        logger.debug(f"Dropping non-http URL '{url}'")
        return None
    return normalized


def build_source_id(source_name: str, title: str, event_date: date) -> str:
    """
    Deterministic source-local id: "{source}_{title}_{date}" with every
    character outside [A-Za-z0-9_] replaced by "_".
    """
    raw = f"{source_name}_{title}_{event_date.isoformat()}"
    return _SOURCE_ID_UNSAFE.sub("_", raw)


@dataclass
class NormalizationResult:
    """Outcome of normalizing a batch of candidates."""

    events: List[NormalizedEvent] = field(default_factory=list)
    rejected: List[str] = field(default_factory=list)

    @property
    def rejected_count(self) -> int:
        return len(self.rejected)


class EventNormalizer:
    """Turns extractor output into validated events."""

    def __init__(
        self,
        category_mapper: Optional[CategoryMapper] = None,
        *,
        today: Optional[Callable[[], date]] = None,
    ):
        self.category_mapper = category_mapper or CategoryMapper.from_config()
        self._today = today or date.today

    def normalize(
        self,
        candidate: CandidateEvent,
        source_name: str,
        *,
        page_url: Optional[str] = None,
        default_city: Optional[str] = None,
        locale: Optional[str] = None,
    ) -> NormalizedEvent:
        """
        Normalize a single candidate.

        Raises:
            ValueError: when the candidate cannot become a valid event
                (pydantic's ValidationError is a ValueError).
        """
        title = re.sub(r"\s+", " ", candidate.title).strip()
        if not title:
            raise ValueError("missing title")

        start_text, range_end_text = split_date_range(candidate.date)
        event_date = parse_date(start_text)
        if event_date is None:
            raise ValueError(f"invalid date '{candidate.date}'")
        if event_date < self._today():
            raise ValueError(f"past date {event_date.isoformat()}")

        end_date = parse_date(candidate.end_date) or parse_date(range_end_text)
        if end_date is not None and end_date < event_date:
            logger.debug(f"Dropping end date before start for '{title}'")
            end_date = None

        city = self.category_mapper.normalize_city(candidate.city or default_city)
        if not city:
            raise ValueError("missing city")

        description = (candidate.description or "").strip()
        category = self.category_mapper.map_category(
            candidate.category, f"{title} {description}", locale=locale
        )

        if (event_date - self._today()).days > MAX_DAYS_AHEAD:
            logger.warning(f"'{title}' is more than a year ahead ({event_date.isoformat()})")
        attendance = candidate.expected_attendees
        if attendance is not None and attendance > MAX_ATTENDANCE:
            logger.warning(f"'{title}' has implausible attendance {attendance}")

        return NormalizedEvent(
            title=title,
            description=description,
            date=event_date,
            end_date=end_date,
            city=city,
            venue=candidate.venue,
            category=category,
            subcategory=candidate.subcategory,
            url=_http_url(candidate.url, page_url),
            image_url=_http_url(candidate.image_url, page_url),
            expected_attendees=attendance,
            source=source_name,
            source_id=build_source_id(source_name, title, event_date),
        )

    def normalize_many(
        self,
        candidates: List[CandidateEvent],
        source_name: str,
        *,
        page_url: Optional[str] = None,
        default_city: Optional[str] = None,
        locale: Optional[str] = None,
    ) -> NormalizationResult:
        result = NormalizationResult()
        seen = set()
        for candidate in candidates:
            try:
                event = self.normalize(
                    candidate,
                    source_name,
                    page_url=page_url,
                    default_city=default_city,
                    locale=locale,
                )
            except (ValueError, ValidationError) as e:
                result.rejected.append(f"{candidate.title or '<untitled>'}: {e}")
                continue
            if event.source_id in seen:
                continue
            seen.add(event.source_id)
            result.events.append(event)

        if result.rejected:
            logger.debug(
                f"{source_name}: rejected {result.rejected_count} of "
                f"{len(candidates)} candidates"
            )
        return result
