"""
Clients for external services: page fetching, completion and embeddings.
"""

from src.ingestion.clients.base import (
    CompletionClient,
    EmbeddingClient,
    FetchClient,
)

__all__ = ["CompletionClient", "EmbeddingClient", "FetchClient"]
