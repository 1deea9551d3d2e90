"""
Ingestion Layer for the event ingestion pipeline.

This package crawls configured sources, extracts event records from
semi-structured content, normalizes and deduplicates them, and upserts them
into the datastore.

Key Components:
- CrawlOrchestrator: runs a source end to end and records a sync log
- ExtractionChain: structured data, then LLM extraction, then pattern fallback
- EventNormalizer: dates, URLs, categories and source-local ids
- SemanticDeduplicator: embedding-based duplicate detection
- EventUpsertStore: insert/update/skip against (source, source_id)
- RateLimiter: per-source-class spacing and a per-run request ceiling
"""
