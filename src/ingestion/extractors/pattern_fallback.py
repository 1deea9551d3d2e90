"""
Heuristic extraction for listing pages the other extractors came back
empty on.

Scans text line by line for date-shaped tokens and pairs each with the
nearest plausible title line. Deliberately conservative: it only runs when
the page looks like a listing and caps how much it emits.
"""

import logging
import re
from typing import List, Optional

from src.ingestion.normalization.dates import MONTH_NAMES, fold
from src.schemas.event import CandidateEvent

logger = logging.getLogger(__name__)

_MONTH_WORDS = sorted(
    {fold(name) for names in MONTH_NAMES.values() for name in names}, key=len, reverse=True
)
_DATE_TOKEN = re.compile(
    r"\b\d{4}-\d{2}-\d{2}\b"
    r"|\b\d{1,2}\.\s*\d{1,2}\.\s*\d{4}\b"
    r"|\b\d{1,2}/\d{1,2}/\d{4}\b"
    r"|\b\d{1,2}(?:st|nd|rd|th)?\.?\s*(?:" + "|".join(_MONTH_WORDS) + r")\.?,?\s*\d{4}\b"
)
_MARKDOWN_NOISE = re.compile(r"[#*_>`|\[\]]+|\(https?://[^)]*\)")
_LINK = re.compile(r"\[([^\]]+)\]\((https?://[^)\s]+)\)")


def _clean(line: str) -> str:
    return re.sub(r"\s+", " ", _MARKDOWN_NOISE.sub(" ", line)).strip(" -–—:|")


def _is_title_like(line: str) -> bool:
    if len(line) < 3 or len(line) > 160:
        return False
    if _DATE_TOKEN.fullmatch(fold(line)):
        return False
    return any(c.isalpha() for c in line)


class PatternFallbackExtractor:
    """Date-token plus nearest-title heuristics over page text."""

    def __init__(self, max_events: int = 25, min_date_tokens: int = 1):
        self.max_events = max_events
        self.min_date_tokens = min_date_tokens

    def looks_like_listing(self, text: str) -> bool:
        """True when the text holds at least min_date_tokens date-shaped tokens."""
        if not text:
            return False
        return len(_DATE_TOKEN.findall(fold(text))) >= self.min_date_tokens

    def extract(self, text: str, default_city: Optional[str] = None) -> List[CandidateEvent]:
        if not self.looks_like_listing(text):
            return []

        raw_lines = [line for line in text.splitlines() if line.strip()]
        lines = [_clean(line) for line in raw_lines]
        events: List[CandidateEvent] = []
        seen = set()

        for i, line in enumerate(lines):
            folded = fold(line)
            match = _DATE_TOKEN.search(folded)
            if not match:
                continue

            # Folding can change length (ligatures); fall back to folded text
            source = line if len(folded) == len(line) else folded
            date_text = source[match.start() : match.end()]
            remainder = _clean(source[: match.start()] + " " + source[match.end() :])
            title = self._nearest_title(lines, i, remainder)
            if not title:
                continue

            key = (title.lower(), date_text)
            if key in seen:
                continue
            seen.add(key)

            link = _LINK.search(raw_lines[i]) or (
                _LINK.search(raw_lines[i - 1]) if i > 0 else None
            )
            events.append(
                CandidateEvent(
                    title=title,
                    date=date_text,
                    city=default_city,
                    url=link.group(2) if link else None,
                )
            )
            if len(events) >= self.max_events:
                break

        if events:
            logger.debug(f"Pattern fallback found {len(events)} events")
        return events

    @staticmethod
    def _nearest_title(lines: List[str], index: int, remainder: str) -> Optional[str]:
        if _is_title_like(remainder):
            return remainder
        for offset in (-1, 1, -2):
            j = index + offset
            if 0 <= j < len(lines) and _is_title_like(lines[j]) and not _DATE_TOKEN.search(
                fold(lines[j])
            ):
                return lines[j]
        return None
