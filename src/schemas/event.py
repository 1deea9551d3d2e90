# src/schemas/event.py
"""
Event schemas for the ingestion pipeline.

Three shapes flow through the system:

- CandidateEvent: loosely-typed record produced by an extractor. Every field
  may be missing or malformed; nothing is trusted yet.
- NormalizedEvent: validated record with a calendar date, canonical URLs,
  a canonical category and a deterministic source-local id.
- StoredEvent: a NormalizedEvent as persisted, with its datastore id,
  timestamps and (optionally) its embedding vector.
"""

import re
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DEFAULT_CATEGORY = "Other"

# Fields compared by the upsert store when deciding whether to update.
DIFF_FIELDS = (
    "title",
    "description",
    "date",
    "end_date",
    "city",
    "venue",
    "category",
    "subcategory",
    "expected_attendees",
    "url",
    "image_url",
)

_NON_DIGIT = re.compile(r"[^\d]")
_NUMBER = re.compile(r"\d[\d\s.,]*")


def _utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def coerce_attendance(value: Any) -> Optional[int]:
    """
    Coerce an attendance estimate into a non-negative integer.

    Accepts ints, floats and strings such as "1,200", "approx. 500 people"
    or "2 000". Anything else yields None.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value) if value >= 0 else None
    if isinstance(value, str):
        match = _NUMBER.search(value)
        if not match:
            return None
        digits = _NON_DIGIT.sub("", match.group(0))
        return int(digits) if digits else None
    return None


# ============================================================================
# CANDIDATE
# ============================================================================


class CandidateEvent(BaseModel):
    """
    Loosely-typed event as produced by an extractor.

    Accepts both snake_case and camelCase keys, since completion models and
    structured-data blocks are not consistent about naming.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    title: str = ""
    description: Optional[str] = None
    date: Optional[str] = None
    end_date: Optional[str] = Field(default=None, alias="endDate")
    city: Optional[str] = None
    venue: Optional[str] = None
    category: Optional[str] = None
    subcategory: Optional[str] = None
    url: Optional[str] = None
    image_url: Optional[str] = Field(default=None, alias="imageUrl")
    expected_attendees: Optional[int] = Field(default=None, alias="expectedAttendees")

    @field_validator(
        "description",
        "date",
        "end_date",
        "city",
        "venue",
        "category",
        "subcategory",
        "url",
        "image_url",
        mode="before",
    )
    @classmethod
    def coerce_text(cls, v: Any) -> Optional[str]:
        """Coerce scalar values to stripped strings; empty becomes None."""
        if v is None or isinstance(v, (dict, list)):
            return None
        text = str(v).strip()
        return text or None

    @field_validator("title", mode="before")
    @classmethod
    def coerce_title(cls, v: Any) -> str:
        if v is None or isinstance(v, (dict, list)):
            return ""
        return str(v).strip()

    @field_validator("expected_attendees", mode="before")
    @classmethod
    def coerce_attendees(cls, v: Any) -> Optional[int]:
        return coerce_attendance(v)

    def dedup_key(self, normalized_url: Optional[str] = None) -> str:
        """Key used to drop repeats across overlapping chunks."""
        url = normalized_url if normalized_url is not None else (self.url or "")
        return f"{self.title.lower()}|{self.date or ''}|{url.lower()}"


# ============================================================================
# NORMALIZED
# ============================================================================


class NormalizedEvent(BaseModel):
    """Validated event ready for deduplication and persistence."""

    model_config = ConfigDict(validate_assignment=True)

    title: str = Field(..., min_length=1)
    description: str = ""
    date: date
    end_date: Optional[date] = None
    city: str = Field(..., min_length=1)
    venue: Optional[str] = None
    category: str = DEFAULT_CATEGORY
    subcategory: Optional[str] = None
    url: Optional[str] = None
    image_url: Optional[str] = None
    expected_attendees: Optional[int] = Field(default=None, ge=0)

    source: str = Field(..., min_length=1)
    source_id: str = Field(..., min_length=1)

    @model_validator(mode="after")
    def validate_date_order(self) -> "NormalizedEvent":
        if self.end_date is not None and self.end_date < self.date:
            raise ValueError("end_date cannot be before date")
        return self

    @property
    def natural_key(self) -> tuple:
        return (self.source, self.source_id)

    def embedding_text(self) -> str:
        """Text used for semantic duplicate detection: title, description, venue."""
        return f"{self.title} {self.description or ''} {self.venue or ''}".strip()

    def to_record(self) -> Dict[str, Any]:
        """Column mapping used for inserts."""
        return self.model_dump()


# ============================================================================
# STORED
# ============================================================================


class StoredEvent(NormalizedEvent):
    """
    Event as read back from the datastore.

    Date columns may come back as timestamps; comparisons normalize them to
    calendar dates.
    """

    id: str
    date: Union[datetime, date]  # type: ignore[assignment]
    end_date: Optional[Union[datetime, date]] = None  # type: ignore[assignment]
    embedding: Optional[List[float]] = None
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> str:
        return str(v)

    @model_validator(mode="after")
    def validate_date_order(self) -> "StoredEvent":
        # Stored rows are never rejected on read.
        return self

    @property
    def calendar_date(self) -> date:
        return self.date.date() if isinstance(self.date, datetime) else self.date
