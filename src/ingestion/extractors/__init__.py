"""
Event extractors.

- StructuredDataExtractor: schema.org JSON-LD blocks, no completion calls
- LLMEventExtractor: chunked completion-model extraction
- PatternFallbackExtractor: date-token heuristics for listing pages
- ExtractionChain: runs the three in order
"""

from src.ingestion.extractors.chain import ExtractionChain
from src.ingestion.extractors.llm_extractor import ExtractionResult, LLMEventExtractor
from src.ingestion.extractors.pattern_fallback import PatternFallbackExtractor
from src.ingestion.extractors.response_repair import (
    ParseOutcome,
    ParseStatus,
    parse_model_response,
)
from src.ingestion.extractors.structured_data import StructuredDataExtractor

__all__ = [
    "ExtractionChain",
    "ExtractionResult",
    "LLMEventExtractor",
    "ParseOutcome",
    "ParseStatus",
    "PatternFallbackExtractor",
    "StructuredDataExtractor",
    "parse_model_response",
]
