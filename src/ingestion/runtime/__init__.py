"""Runtime utilities shared by ingestion components: retries and rate limiting."""

from src.ingestion.runtime.resilience import (
    RateLimiter,
    RateLimitPolicy,
    RetryPolicy,
    with_retries,
)

__all__ = ["RateLimiter", "RateLimitPolicy", "RetryPolicy", "with_retries"]
