# Deduplication
"""
Semantic event deduplication.

SemanticDeduplicator flags an event as a duplicate of an already stored
(or already seen this run) event whose embedding is close enough.
"""

import asyncio
import logging
import math
from dataclasses import dataclass
from datetime import timedelta
from typing import List, Optional, Sequence, Tuple

from src.ingestion.clients.base import EmbeddingClient
from src.ingestion.repositories import EmbeddingMatch, EventRepository
from src.schemas.event import NormalizedEvent

logger = logging.getLogger(__name__)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors; 0.0 for empty or zero vectors."""
    if not a or not b or len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


@dataclass
class DuplicateCheck:
    """Outcome of a semantic duplicate check for one event."""

    is_duplicate: bool
    embedding: Optional[List[float]] = None
    match: Optional[EmbeddingMatch] = None
    matched_in_run: bool = False


class SemanticDeduplicator:
    """
    Embedding-based duplicate detection.

    An event is a duplicate when a stored event (or an event already accepted
    earlier in this run) from the same date window has cosine similarity at
    or above the threshold. Matches with the event's own (source, source_id)
    are not duplicates: those are updates, left to the upsert store.

    Embedding failures never drop an event; it is treated as unique and
    stored without an embedding.
    """

    def __init__(
        self,
        embedder: Optional[EmbeddingClient],
        repository: EventRepository,
        *,
        threshold: float = 0.85,
        top_k: int = 5,
        date_window_days: Optional[int] = 0,
    ):
        if not 0.0 <= threshold <= 1.0:
            raise ValueError("threshold must be between 0 and 1")
        self.embedder = embedder
        self.repository = repository
        self.threshold = threshold
        self.top_k = top_k
        self.date_window_days = date_window_days
        self._accepted: List[Tuple[NormalizedEvent, List[float]]] = []

    def reset(self) -> None:
        """Forget events accepted earlier in the run."""
        self._accepted.clear()

    def _window(self, event: NormalizedEvent):
        if self.date_window_days is None:
            return None, None
        delta = timedelta(days=self.date_window_days)
        return event.date - delta, event.date + delta

    def _in_window(self, event: NormalizedEvent, other: NormalizedEvent) -> bool:
        if self.date_window_days is None:
            return True
        return abs((event.date - other.date).days) <= self.date_window_days

    async def _embed(self, event: NormalizedEvent) -> Optional[List[float]]:
        if self.embedder is None:
            return None
        try:
            vector = await self.embedder.embed(event.embedding_text())
        except Exception as e:
            logger.warning(f"Embedding failed for '{event.title}': {e}")
            return None
        return list(vector) if vector else None

    async def check(self, event: NormalizedEvent) -> DuplicateCheck:
        embedding = await self._embed(event)
        if embedding is None:
            return DuplicateCheck(is_duplicate=False)

        for accepted, vector in self._accepted:
            if accepted.natural_key == event.natural_key or not self._in_window(event, accepted):
                continue
            similarity = cosine_similarity(embedding, vector)
            if similarity >= self.threshold:
                logger.info(
                    f"Duplicate within run: '{event.title}' ~ '{accepted.title}' "
                    f"({similarity:.3f})"
                )
                return DuplicateCheck(True, embedding, matched_in_run=True)

        date_from, date_to = self._window(event)
        try:
            matches = await asyncio.to_thread(
                self.repository.match_embeddings,
                embedding,
                threshold=self.threshold,
                top_k=self.top_k,
                date_from=date_from,
                date_to=date_to,
            )
        except Exception as e:
            logger.warning(f"Similarity search failed for '{event.title}': {e}")
            matches = []

        for match in matches:
            if match.event.natural_key == event.natural_key:
                continue
            if match.similarity >= self.threshold:
                logger.info(
                    f"Duplicate of stored event {match.event.id}: '{event.title}' "
                    f"({match.similarity:.3f})"
                )
                return DuplicateCheck(True, embedding, match=match)

        self._accepted.append((event, embedding))
        return DuplicateCheck(is_duplicate=False, embedding=embedding)
