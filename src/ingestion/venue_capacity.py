"""
Venue capacity estimates used to back-fill missing attendance.

The lookup is an injectable service: the default implementation matches
venue-type words ("stadium", "divadlo", ...) in the venue name and scales
the typical capacity by a per-category occupancy multiplier.
"""

import logging
import re
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Tuple

from src.configs.config import Config
from src.ingestion.normalization.dates import fold

logger = logging.getLogger(__name__)


class VenueCapacityLookup(ABC):
    @abstractmethod
    def estimate(self, venue: Optional[str], category: Optional[str] = None) -> Optional[int]:
        """Estimated attendance for an event at venue, or None if unknown."""
        ...


class PatternVenueCapacityLookup(VenueCapacityLookup):
    """Venue-type word match, longest pattern first, times category multiplier."""

    def __init__(
        self,
        patterns: Dict[str, int],
        multipliers: Optional[Dict[str, float]] = None,
        default_multiplier: float = 0.7,
    ):
        ordered = sorted(patterns.items(), key=lambda kv: len(kv[0]), reverse=True)
        self._patterns: List[Tuple[re.Pattern, int]] = [
            (re.compile(r"\b" + re.escape(fold(name)) + r"\b"), int(capacity))
            for name, capacity in ordered
        ]
        self.multipliers = multipliers or {}
        self.default_multiplier = default_multiplier

    @classmethod
    def from_config(cls, section: Optional[dict] = None) -> "PatternVenueCapacityLookup":
        section = section if section is not None else Config.section("venue_capacity", {})
        return cls(section.get("patterns") or {}, section.get("multipliers") or {})

    def estimate(self, venue: Optional[str], category: Optional[str] = None) -> Optional[int]:
        if not venue:
            return None
        folded = fold(venue)
        for pattern, capacity in self._patterns:
            if pattern.search(folded):
                multiplier = self.multipliers.get(category or "", self.default_multiplier)
                return int(round(capacity * multiplier))
        return None
