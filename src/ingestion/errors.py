"""
Exception hierarchy for the ingestion layer.

Only configuration and resource-exhaustion failures abort a source run.
Everything else is recorded on the run's error list and the run continues.
"""


class IngestionError(Exception):
    """Base class for ingestion errors."""


class ConfigurationError(IngestionError):
    """Invalid or missing configuration (crawl config, credentials, ...)."""


class RateLimitExceededError(IngestionError):
    """The per-run request ceiling was reached."""

    def __init__(self, limit: int):
        super().__init__(f"Request limit of {limit} per run exceeded")
        self.limit = limit


class FetchError(IngestionError):
    """The fetch service failed to return content for a URL."""

    def __init__(self, url: str, message: str, status_code: int | None = None):
        super().__init__(f"{url}: {message}")
        self.url = url
        self.status_code = status_code


class CompletionError(IngestionError):
    """The completion service call failed."""
