# src/schemas/sync_log.py
"""Sync log entries: one row per source run."""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SyncStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    SUCCESS = "success"
    ERROR = "error"


class SyncLogEntry(BaseModel):
    """Record of a single source run."""

    id: Optional[str] = None
    source: str
    status: SyncStatus = SyncStatus.IN_PROGRESS

    events_processed: int = 0
    events_created: int = 0
    events_updated: int = 0
    events_skipped: int = 0
    errors: List[str] = Field(default_factory=list)

    started_at: datetime = Field(default_factory=_utc_now)
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None

    pages_crawled: Optional[int] = None
    pages_processed: Optional[int] = None
    crawl_duration_ms: Optional[int] = None

    @property
    def is_finalized(self) -> bool:
        return self.status != SyncStatus.IN_PROGRESS
