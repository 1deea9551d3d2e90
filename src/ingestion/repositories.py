"""
Datastore access for events, sync logs and sources.

The interfaces are synchronous (psycopg2); async callers run them with
asyncio.to_thread. Postgres implementations share a ThreadedConnectionPool
and commit per statement, so one failing record never rolls back another.

Expected tables:

- events: id uuid, the NormalizedEvent columns, embedding vector (pgvector),
  created_at, updated_at, unique (source, source_id)
- sync_logs: the SyncLogEntry columns, errors as jsonb
- scraper_sources: id, name, url, type, enabled, config jsonb,
  crawl_config jsonb, max_pages_per_crawl, crawl_frequency, use_crawl,
  last_scraped_at
"""

import json
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, Iterator, List, Optional, Sequence

import psycopg2
import psycopg2.pool
from psycopg2.extras import Json, RealDictCursor

from src.configs.config import Config
from src.configs.settings import Settings
from src.schemas.crawl import SourceDefinition
from src.schemas.event import DIFF_FIELDS, NormalizedEvent, StoredEvent
from src.schemas.sync_log import SyncLogEntry

logger = logging.getLogger(__name__)

EVENT_COLUMNS = DIFF_FIELDS + ("source", "source_id")
UPDATABLE_COLUMNS = frozenset(DIFF_FIELDS + ("updated_at",))


@dataclass(frozen=True)
class EmbeddingMatch:
    """A stored event whose embedding is close to a query vector."""

    event: StoredEvent
    similarity: float


# ============================================================================
# INTERFACES
# ============================================================================


class EventRepository(ABC):
    @abstractmethod
    def get_by_source_ids(self, source: str, source_ids: Sequence[str]) -> Dict[str, StoredEvent]:
        """Existing events for a source, keyed by source_id."""
        ...

    @abstractmethod
    def insert(self, event: NormalizedEvent, embedding: Optional[List[float]] = None) -> StoredEvent:
        ...

    @abstractmethod
    def update(self, event_id: str, fields: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    def match_embeddings(
        self,
        vector: Sequence[float],
        *,
        threshold: float,
        top_k: int,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> List[EmbeddingMatch]:
        """
        Up to top_k stored events with cosine similarity >= threshold,
        most similar first, optionally restricted to a date window.
        """
        ...


class SyncLogRepository(ABC):
    @abstractmethod
    def create(self, entry: SyncLogEntry) -> SyncLogEntry:
        """Persist a new entry and return it with its id set."""
        ...

    @abstractmethod
    def update(self, entry: SyncLogEntry) -> None:
        ...


class SourceRepository(ABC):
    @abstractmethod
    def get(self, source_id: str) -> Optional[SourceDefinition]:
        ...

    @abstractmethod
    def list_enabled(self) -> List[SourceDefinition]:
        ...

    def mark_scraped(self, source_id: str, at: datetime) -> None:
        """Record the time of the last successful run."""
        return None


# ============================================================================
# POSTGRES
# ============================================================================


class PostgresDatabase:
    """Lazily created psycopg2 connection pool."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self._pool: Optional[psycopg2.pool.ThreadedConnectionPool] = None

    @property
    def pool(self) -> psycopg2.pool.ThreadedConnectionPool:
        if self._pool is None:
            self._pool = psycopg2.pool.ThreadedConnectionPool(
                minconn=self.settings.DB_POOL_MIN,
                maxconn=self.settings.DB_POOL_MAX,
                **self.settings.get_psycopg2_params(),
            )
        return self._pool

    @contextmanager
    def connection(self) -> Iterator[Any]:
        """Yield a pooled connection; commit on success, roll back on error."""
        conn = self.pool.getconn()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            self.pool.putconn(conn)

    def ping(self) -> bool:
        with self.connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1")
                return cur.fetchone() is not None

    def close(self) -> None:
        if self._pool is not None:
            self._pool.closeall()
            self._pool = None


def _vector_literal(vector: Sequence[float]) -> str:
    return "[" + ",".join(f"{float(v):.8f}" for v in vector) + "]"


def _row_to_stored(row: Dict[str, Any]) -> StoredEvent:
    data = dict(row)
    embedding = data.get("embedding")
    if isinstance(embedding, str):
        # pgvector text form "[0.1,0.2,...]" is valid JSON
        data["embedding"] = json.loads(embedding)
    data.pop("similarity", None)
    return StoredEvent.model_validate(data)


class PostgresEventRepository(EventRepository):
    def __init__(self, db: PostgresDatabase):
        self.db = db

    def get_by_source_ids(self, source: str, source_ids: Sequence[str]) -> Dict[str, StoredEvent]:
        if not source_ids:
            return {}
        with self.db.connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    """
                    SELECT id, title, description, date, end_date, city, venue,
                           category, subcategory, url, image_url, expected_attendees,
                           source, source_id, created_at, updated_at
                    FROM events
                    WHERE source = %s AND source_id = ANY(%s)
                    """,
                    (source, list(source_ids)),
                )
                rows = cur.fetchall()
        return {row["source_id"]: _row_to_stored(row) for row in rows}

    def insert(self, event: NormalizedEvent, embedding: Optional[List[float]] = None) -> StoredEvent:
        record = event.to_record()
        columns = list(EVENT_COLUMNS)
        values = [record[c] for c in columns]
        placeholders = ["%s"] * len(columns)
        if embedding is not None:
            columns.append("embedding")
            values.append(_vector_literal(embedding))
            placeholders.append("%s::vector")

        with self.db.connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    f"""
                    INSERT INTO events ({", ".join(columns)}, created_at, updated_at)
                    VALUES ({", ".join(placeholders)}, NOW(), NOW())
                    RETURNING id, created_at, updated_at
                    """,
                    values,
                )
                row = cur.fetchone()
        return StoredEvent(**record, **row, embedding=embedding)

    def update(self, event_id: str, fields: Dict[str, Any]) -> None:
        unknown = set(fields) - UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"Cannot update columns: {sorted(unknown)}")
        if not fields:
            return
        assignments = ", ".join(f"{column} = %s" for column in fields)
        with self.db.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"UPDATE events SET {assignments} WHERE id = %s",
                    [*fields.values(), event_id],
                )

    def match_embeddings(
        self,
        vector: Sequence[float],
        *,
        threshold: float,
        top_k: int,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> List[EmbeddingMatch]:
        conditions = ["embedding IS NOT NULL", "1 - (embedding <=> %(vec)s::vector) >= %(threshold)s"]
        params: Dict[str, Any] = {
            "vec": _vector_literal(vector),
            "threshold": threshold,
            "top_k": top_k,
        }
        if date_from is not None:
            conditions.append("date::date >= %(date_from)s")
            params["date_from"] = date_from
        if date_to is not None:
            conditions.append("date::date <= %(date_to)s")
            params["date_to"] = date_to

        with self.db.connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    f"""
                    SELECT id, title, description, date, end_date, city, venue,
                           category, subcategory, url, image_url, expected_attendees,
                           source, source_id, created_at, updated_at,
                           1 - (embedding <=> %(vec)s::vector) AS similarity
                    FROM events
                    WHERE {" AND ".join(conditions)}
                    ORDER BY embedding <=> %(vec)s::vector
                    LIMIT %(top_k)s
                    """,
                    params,
                )
                rows = cur.fetchall()
        return [EmbeddingMatch(_row_to_stored(row), float(row["similarity"])) for row in rows]


class PostgresSyncLogRepository(SyncLogRepository):
    def __init__(self, db: PostgresDatabase):
        self.db = db

    def create(self, entry: SyncLogEntry) -> SyncLogEntry:
        with self.db.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO sync_logs (source, status, started_at, errors)
                    VALUES (%s, %s, %s, %s)
                    RETURNING id
                    """,
                    (entry.source, entry.status.value, entry.started_at, Json(entry.errors)),
                )
                entry_id = cur.fetchone()[0]
        return entry.model_copy(update={"id": str(entry_id)})

    def update(self, entry: SyncLogEntry) -> None:
        if entry.id is None:
            raise ValueError("Sync log entry has no id")
        with self.db.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE sync_logs SET
                        status = %s,
                        events_processed = %s,
                        events_created = %s,
                        events_updated = %s,
                        events_skipped = %s,
                        errors = %s,
                        completed_at = %s,
                        duration_ms = %s,
                        pages_crawled = %s,
                        pages_processed = %s,
                        crawl_duration_ms = %s
                    WHERE id = %s
                    """,
                    (
                        entry.status.value,
                        entry.events_processed,
                        entry.events_created,
                        entry.events_updated,
                        entry.events_skipped,
                        Json(entry.errors),
                        entry.completed_at,
                        entry.duration_ms,
                        entry.pages_crawled,
                        entry.pages_processed,
                        entry.crawl_duration_ms,
                        entry.id,
                    ),
                )


class PostgresSourceRepository(SourceRepository):
    _COLUMNS = (
        "id, name, url, type, enabled, config, crawl_config, max_pages_per_crawl, "
        "crawl_frequency, use_crawl, last_scraped_at"
    )

    def __init__(self, db: PostgresDatabase):
        self.db = db

    def get(self, source_id: str) -> Optional[SourceDefinition]:
        with self.db.connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    f"SELECT {self._COLUMNS} FROM scraper_sources WHERE id::text = %s",
                    (str(source_id),),
                )
                row = cur.fetchone()
        return SourceDefinition.model_validate(dict(row)) if row else None

    def list_enabled(self) -> List[SourceDefinition]:
        with self.db.connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    f"SELECT {self._COLUMNS} FROM scraper_sources WHERE enabled ORDER BY name"
                )
                rows = cur.fetchall()
        return [SourceDefinition.model_validate(dict(row)) for row in rows]

    def mark_scraped(self, source_id: str, at: datetime) -> None:
        with self.db.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "UPDATE scraper_sources SET last_scraped_at = %s WHERE id::text = %s",
                    (at, str(source_id)),
                )


# ============================================================================
# CONFIG-DECLARED SOURCES
# ============================================================================


class ConfigSourceRepository(SourceRepository):
    """Sources declared in the `sources` section of ingestion.yaml."""

    def __init__(self, sources: Optional[List[Dict[str, Any]]] = None):
        raw = Config.section("sources", []) if sources is None else sources
        self._sources = {}
        for item in raw:
            source = SourceDefinition.model_validate(item)
            self._sources[source.id] = source

    def get(self, source_id: str) -> Optional[SourceDefinition]:
        return self._sources.get(str(source_id))

    def list_enabled(self) -> List[SourceDefinition]:
        return [s for s in self._sources.values() if s.enabled]

    def mark_scraped(self, source_id: str, at: datetime) -> None:
        source = self._sources.get(str(source_id))
        if source is not None:
            self._sources[source.id] = source.model_copy(update={"last_scraped_at": at})
