"""
Normalization of extracted event data.

This package provides:
- normalize_date / parse_date / split_date_range: multilingual date parsing
- normalize_url: URL canonicalization
- CategoryMapper: locale keyword table for categories and city names
- EventNormalizer: CandidateEvent -> NormalizedEvent
"""

from .dates import normalize_date, parse_date, split_date_range
from .urls import normalize_url
from .categories import CategoryMapper
from .event_normalizer import EventNormalizer, NormalizationResult, build_source_id

__all__ = [
    "normalize_date",
    "parse_date",
    "split_date_range",
    "normalize_url",
    "CategoryMapper",
    "EventNormalizer",
    "NormalizationResult",
    "build_source_id",
]
