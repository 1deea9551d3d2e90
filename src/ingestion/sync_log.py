"""
Sync Log Recorder.

Opens one SyncLogEntry per source run and finalizes it exactly once. The
log is bookkeeping: datastore failures here are logged and never abort the
run they describe.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Sequence

from src.ingestion.repositories import SyncLogRepository
from src.schemas.sync_log import SyncLogEntry, SyncStatus

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SyncLogRecorder:
    def __init__(
        self,
        repository: SyncLogRepository,
        *,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self.repository = repository
        self._clock = clock

    async def start(self, source_name: str) -> SyncLogEntry:
        entry = SyncLogEntry(source=source_name, started_at=self._clock())
        try:
            return await asyncio.to_thread(self.repository.create, entry)
        except Exception as e:
            logger.error(f"Failed to create sync log for {source_name}: {e}")
            return entry

    def record_crawl_metrics(
        self,
        entry: SyncLogEntry,
        *,
        pages_crawled: int,
        pages_processed: int,
        crawl_duration_ms: int,
    ) -> SyncLogEntry:
        entry.pages_crawled = (entry.pages_crawled or 0) + pages_crawled
        entry.pages_processed = (entry.pages_processed or 0) + pages_processed
        entry.crawl_duration_ms = (entry.crawl_duration_ms or 0) + crawl_duration_ms
        return entry

    async def complete(
        self,
        entry: SyncLogEntry,
        *,
        status: SyncStatus,
        processed: int = 0,
        created: int = 0,
        updated: int = 0,
        skipped: int = 0,
        errors: Sequence[str] = (),
    ) -> SyncLogEntry:
        """
        Finalize the entry with counts, errors and duration.

        Raises:
            ValueError: if the entry was already finalized or status is
                IN_PROGRESS.
        """
        if entry.is_finalized:
            raise ValueError(f"Sync log for {entry.source} is already finalized")
        if status == SyncStatus.IN_PROGRESS:
            raise ValueError("A sync log must be completed with a final status")

        completed_at = self._clock()
        entry.status = status
        entry.events_processed = processed
        entry.events_created = created
        entry.events_updated = updated
        entry.events_skipped = skipped
        entry.errors = list(errors)
        entry.completed_at = completed_at
        entry.duration_ms = max(0, int((completed_at - entry.started_at).total_seconds() * 1000))

        if entry.id is None:
            logger.warning(f"Sync log for {entry.source} was never stored; not updating")
            return entry
        try:
            await asyncio.to_thread(self.repository.update, entry)
        except Exception as e:
            logger.error(f"Failed to finalize sync log {entry.id}: {e}")
        return entry
