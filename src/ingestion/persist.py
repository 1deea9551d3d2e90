# Persistence layer for ingested data
"""
Event Upsert Store.

Reconciles NormalizedEvents against stored events keyed by
(source, source_id):

- no stored event: insert (attendance back-filled from the venue-capacity
  lookup when missing)
- stored event with differing fields: update only those fields plus
  updated_at
- stored event with no differences: skip

Each record is written in its own transaction, so one failing record is
reported individually and its siblings are still written.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

from src.ingestion.repositories import EventRepository
from src.ingestion.venue_capacity import VenueCapacityLookup
from src.schemas.event import DIFF_FIELDS, NormalizedEvent, StoredEvent

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _calendar(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, str):
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            return value
    return value


def compute_field_diff(new: NormalizedEvent, stored: StoredEvent) -> Dict[str, Any]:
    """
    Fields of new whose values differ from stored.

    Dates are compared at calendar-date granularity on both sides, so a
    stored timestamp never reads as a change on its own.
    """
    diff: Dict[str, Any] = {}
    for name in DIFF_FIELDS:
        new_value = getattr(new, name)
        old_value = getattr(stored, name)
        if name in ("date", "end_date"):
            if _calendar(new_value) != _calendar(old_value):
                diff[name] = new_value
        elif new_value != old_value:
            diff[name] = new_value
    return diff


class UpsertAction(str, Enum):
    INSERTED = "inserted"
    UPDATED = "updated"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class UpsertOutcome:
    source_id: str
    action: UpsertAction
    event_id: Optional[str] = None
    changed_fields: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None


@dataclass
class UpsertResult:
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)
    outcomes: List[UpsertOutcome] = field(default_factory=list)

    def record(self, outcome: UpsertOutcome) -> None:
        self.outcomes.append(outcome)
        if outcome.action == UpsertAction.INSERTED:
            self.created += 1
        elif outcome.action == UpsertAction.UPDATED:
            self.updated += 1
        elif outcome.action == UpsertAction.SKIPPED:
            self.skipped += 1
        elif outcome.error:
            self.errors.append(outcome.error)


class EventUpsertStore:
    """Batched, per-record-transactional upsert of normalized events."""

    def __init__(
        self,
        repository: EventRepository,
        capacity_lookup: Optional[VenueCapacityLookup] = None,
        *,
        batch_size: int = 100,
        clock: Callable[[], datetime] = _utc_now,
    ):
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self.repository = repository
        self.capacity_lookup = capacity_lookup
        self.batch_size = batch_size
        self._clock = clock

    def _with_attendance(self, event: NormalizedEvent) -> NormalizedEvent:
        if event.expected_attendees is not None or self.capacity_lookup is None:
            return event
        try:
            estimate = self.capacity_lookup.estimate(event.venue, event.category)
        except Exception as e:
            logger.warning(f"Venue capacity lookup failed for '{event.venue}': {e}")
            return event
        if estimate is None:
            return event
        return event.model_copy(update={"expected_attendees": estimate})

    def _upsert_one(
        self,
        event: NormalizedEvent,
        stored: Optional[StoredEvent],
        embedding: Optional[List[float]],
    ) -> UpsertOutcome:
        if stored is None:
            event = self._with_attendance(event)
            created = self.repository.insert(event, embedding)
            logger.debug(f"Inserted event '{event.title}' ({event.source_id})")
            return UpsertOutcome(event.source_id, UpsertAction.INSERTED, created.id)

        if event.expected_attendees is None:
            # A stored figure is never replaced by an estimate
            if stored.expected_attendees is not None:
                event = event.model_copy(update={"expected_attendees": stored.expected_attendees})
            else:
                event = self._with_attendance(event)

        diff = compute_field_diff(event, stored)
        if not diff:
            return UpsertOutcome(event.source_id, UpsertAction.SKIPPED, stored.id)

        changes = {**diff, "updated_at": self._clock()}
        self.repository.update(stored.id, changes)
        logger.debug(f"Updated event {stored.id}: {sorted(diff)}")
        return UpsertOutcome(event.source_id, UpsertAction.UPDATED, stored.id, changes)

    def _upsert_batch(
        self,
        events: Sequence[NormalizedEvent],
        embeddings: Sequence[Optional[List[float]]],
        result: UpsertResult,
    ) -> None:
        by_source: Dict[str, List[str]] = {}
        for event in events:
            by_source.setdefault(event.source, []).append(event.source_id)

        existing: Dict[tuple, StoredEvent] = {}
        lookup_errors: Dict[str, str] = {}
        for source, source_ids in by_source.items():
            try:
                found = self.repository.get_by_source_ids(source, source_ids)
            except Exception as e:
                logger.error(f"Failed to load existing events for {source}: {e}")
                lookup_errors[source] = str(e)
                continue
            for source_id, stored in found.items():
                existing[(source, source_id)] = stored

        for event, embedding in zip(events, embeddings):
            if event.source in lookup_errors:
                result.record(
                    UpsertOutcome(
                        event.source_id,
                        UpsertAction.FAILED,
                        error=f"{event.title}: lookup failed: {lookup_errors[event.source]}",
                    )
                )
                continue
            try:
                outcome = self._upsert_one(event, existing.get(event.natural_key), embedding)
            except Exception as e:
                logger.error(f"Failed to persist event '{event.title}': {e}")
                outcome = UpsertOutcome(
                    event.source_id, UpsertAction.FAILED, error=f"{event.title}: {e}"
                )
            result.record(outcome)

    def upsert_sync(
        self,
        events: Sequence[NormalizedEvent],
        embeddings: Optional[Sequence[Optional[List[float]]]] = None,
    ) -> UpsertResult:
        """Blocking upsert; batches are processed sequentially."""
        if embeddings is None:
            embeddings = [None] * len(events)
        if len(embeddings) != len(events):
            raise ValueError("embeddings must align with events")

        result = UpsertResult()
        for start in range(0, len(events), self.batch_size):
            end = start + self.batch_size
            self._upsert_batch(events[start:end], embeddings[start:end], result)

        logger.info(
            f"Upsert complete: {result.created} created, {result.updated} updated, "
            f"{result.skipped} skipped, {len(result.errors)} failed"
        )
        return result

    async def upsert(
        self,
        events: Sequence[NormalizedEvent],
        embeddings: Optional[Sequence[Optional[List[float]]]] = None,
    ) -> UpsertResult:
        """Run the blocking upsert in a worker thread (psycopg2 is synchronous)."""
        return await asyncio.to_thread(self.upsert_sync, list(events), embeddings)
