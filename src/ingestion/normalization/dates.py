"""
Multilingual date parsing for extracted events.

Everything resolves to a calendar date (no time component). Supported inputs,
in the order they are tried:

- ISO dates ("2025-12-04"), returned unchanged when valid
- ISO timestamps ("2025-12-04T20:00:00+01:00"), truncated to the date part
- day + month name + year in English, Czech (nominative, genitive and
  abbreviated forms, with or without diacritics) and German
  ("4. prosince 2025", "7th November 2025", "3. März 2026")
- month name + day + year ("November 7, 2025")
- numeric forms: yyyy.mm.dd, yyyy/mm/dd, d.m.yyyy, d/m/yyyy
- generic parsing via dateutil as the last resort
"""

import logging
import re
import unicodedata
from datetime import date, datetime
from typing import Dict, Optional, Tuple

from dateutil import parser as dateutil_parser

logger = logging.getLogger(__name__)

MONTH_NAMES: Dict[str, Dict[str, int]] = {
    "en": {
        "january": 1, "jan": 1,
        "february": 2, "feb": 2,
        "march": 3, "mar": 3,
        "april": 4, "apr": 4,
        "may": 5,
        "june": 6, "jun": 6,
        "july": 7, "jul": 7,
        "august": 8, "aug": 8,
        "september": 9, "sep": 9, "sept": 9,
        "october": 10, "oct": 10,
        "november": 11, "nov": 11,
        "december": 12, "dec": 12,
    },
    "cs": {
        "leden": 1, "ledna": 1, "led": 1,
        "únor": 2, "února": 2, "úno": 2,
        "březen": 3, "března": 3, "bře": 3,
        "duben": 4, "dubna": 4, "dub": 4,
        "květen": 5, "května": 5, "kvě": 5,
        "červen": 6, "června": 6, "čer": 6,
        "červenec": 7, "července": 7, "čvc": 7,
        "srpen": 8, "srpna": 8, "srp": 8,
        "září": 9, "zář": 9,
        "říjen": 10, "října": 10, "říj": 10,
        "listopad": 11, "listopadu": 11, "lis": 11,
        "prosinec": 12, "prosince": 12, "pro": 12,
    },
    "de": {
        "januar": 1, "jänner": 1,
        "februar": 2,
        "märz": 3,
        "mai": 5,
        "juni": 6,
        "juli": 7,
        "oktober": 10, "okt": 10,
        "dezember": 12, "dez": 12,
    },
}


def fold(text: str) -> str:
    """Lowercase and strip diacritics ("Března" -> "brezna")."""
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(c for c in decomposed if not unicodedata.combining(c)).lower()


def _build_month_lookup(tables: Dict[str, Dict[str, int]]) -> Dict[str, int]:
    lookup: Dict[str, int] = {}
    for names in tables.values():
        for name, month in names.items():
            lookup[fold(name)] = month
    return lookup


_MONTH_LOOKUP = _build_month_lookup(MONTH_NAMES)

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_ISO_PREFIX = re.compile(r"^(\d{4})-(\d{2})-(\d{2})(?:[T\s]|$)")
_DAY_MONTH_NAME_YEAR = re.compile(
    r"(\d{1,2})(?:st|nd|rd|th)?\.?\s*(?:of\s+)?([a-z]+)\.?,?\s*(\d{4})"
)
_MONTH_NAME_DAY_YEAR = re.compile(r"([a-z]+)\.?\s+(\d{1,2})(?:st|nd|rd|th)?,?\s*(\d{4})")
_YMD = re.compile(r"(\d{4})[./](\d{1,2})[./](\d{1,2})")
_DMY_DOTTED = re.compile(r"(\d{1,2})\.\s*(\d{1,2})\.\s*(\d{4})")
_DMY_SLASHED = re.compile(r"(\d{1,2})/(\d{1,2})/(\d{4})")
_DATE_SHAPE = re.compile(r"\d{4}|\d{1,2}[./-]\d{1,2}")
_YEAR_FIRST = re.compile(r"^\d{4}[-./\s]")

_RANGE_DASH = r"\s*[–—-]\s*"
_DAY_RANGE = re.compile(r"^\s*(\d{1,2})\.?" + _RANGE_DASH + r"(\d{1,2})\.?\s*(.+?)\s*$")
_MONTH_FIRST_RANGE = re.compile(
    r"^\s*([^\W\d_]+)\.?\s+(\d{1,2})" + _RANGE_DASH + r"(\d{1,2}),?\s*(\d{4})\s*$"
)
_RANGE_TAIL = re.compile(r"^(?:[^\W\d_]{3,}\.?,?\s+\d{4}|\d{1,2}\.\s*\d{4})$")
_FULL_RANGE_SEPARATOR = re.compile(r"\s+[–—-]\s+|\s+(?:to|až|bis)\s+", re.IGNORECASE)


def _safe_date(year: int, month: int, day: int) -> Optional[date]:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def _match_named_month(folded: str) -> Optional[date]:
    for m in _DAY_MONTH_NAME_YEAR.finditer(folded):
        month = _MONTH_LOOKUP.get(m.group(2))
        if month:
            parsed = _safe_date(int(m.group(3)), month, int(m.group(1)))
            if parsed:
                return parsed
    for m in _MONTH_NAME_DAY_YEAR.finditer(folded):
        month = _MONTH_LOOKUP.get(m.group(1))
        if month:
            parsed = _safe_date(int(m.group(3)), month, int(m.group(2)))
            if parsed:
                return parsed
    return None


def _match_numeric(text: str) -> Optional[date]:
    m = _YMD.search(text)
    if m:
        return _safe_date(int(m.group(1)), int(m.group(2)), int(m.group(3)))

    m = _DMY_DOTTED.search(text)
    if m:
        return _safe_date(int(m.group(3)), int(m.group(2)), int(m.group(1)))

    m = _DMY_SLASHED.search(text)
    if m:
        first, second, year = int(m.group(1)), int(m.group(2)), int(m.group(3))
        # Day-first unless that is impossible (e.g. 12/31/2025)
        return _safe_date(year, second, first) or _safe_date(year, first, second)
    return None


def _generic_parse(text: str, dayfirst: bool) -> Optional[date]:
    if len(text) > 64 or not _DATE_SHAPE.search(text):
        return None
    # "2025-12-4" is year-month-day regardless of the dayfirst preference
    yearfirst = bool(_YEAR_FIRST.match(text))
    try:
        return dateutil_parser.parse(
            text, dayfirst=dayfirst and not yearfirst, yearfirst=yearfirst
        ).date()
    except (ValueError, OverflowError) as e:
        logger.debug(f"Unparseable date '{text}': {e}")
        return None


def _parse_text(text: str, dayfirst: bool = True) -> Optional[date]:
    m = _ISO_PREFIX.match(text)
    if m:
        return _safe_date(int(m.group(1)), int(m.group(2)), int(m.group(3)))

    parsed = _match_named_month(fold(text))
    if parsed:
        return parsed

    parsed = _match_numeric(text)
    if parsed:
        return parsed

    return _generic_parse(text, dayfirst)


def parse_date(value, *, dayfirst: bool = True) -> Optional[date]:
    """
    Parse a free-form date into a calendar date.

    A day range ("7-9 November 2025") resolves to its first day.

    Returns:
        The date, or None when the input cannot be interpreted.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    text = str(value).strip()
    if not text:
        return None

    start, _ = split_date_range(text)
    return _parse_text(start or text, dayfirst)


def normalize_date(value, *, dayfirst: bool = True) -> Optional[str]:
    """
    Normalize a free-form date to an ISO "YYYY-MM-DD" string.

    Valid ISO dates are returned unchanged; unparseable input yields None.
    """
    if isinstance(value, str) and _ISO_DATE.match(value.strip()):
        text = value.strip()
        return text if parse_date(text) else None
    parsed = parse_date(value, dayfirst=dayfirst)
    return parsed.isoformat() if parsed else None


def split_date_range(text: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """
    Split a date range into (start, end) strings.

    Handles "7.–9. 11. 2025", "7-9 November 2025", "November 7-9, 2025" and
    two full dates joined by a dash or "to"/"až"/"bis". Input that is not a
    range comes back as (text, None).
    """
    if not text:
        return text, None

    m = _DAY_RANGE.match(text)
    if m and _RANGE_TAIL.match(m.group(3)):
        tail = m.group(3)
        return f"{m.group(1)}. {tail}", f"{m.group(2)}. {tail}"

    m = _MONTH_FIRST_RANGE.match(text)
    if m and fold(m.group(1)) in _MONTH_LOOKUP:
        month, year = m.group(1), m.group(4)
        return f"{month} {m.group(2)}, {year}", f"{month} {m.group(3)}, {year}"

    parts = _FULL_RANGE_SEPARATOR.split(text.strip())
    if len(parts) == 2 and _parse_text(parts[0]) and _parse_text(parts[1]):
        return parts[0], parts[1]

    return text, None
