"""
Abstract clients for the external services the pipeline depends on.

- FetchClient: page fetching (single scrape and bounded crawl)
- CompletionClient: text completion for LLM extraction
- EmbeddingClient: text embeddings for semantic deduplication

The interfaces are async-first. Implementations raise on failure; callers
decide whether a failure is recorded or fatal.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

from src.schemas.crawl import FetchedPage


class FetchClient(ABC):
    """Fetches rendered pages through a browser-backed service."""

    provider: str = "base"

    @abstractmethod
    async def scrape(
        self,
        url: str,
        *,
        formats: Sequence[str] = ("markdown", "html"),
        only_main_content: bool = True,
        wait_for_ms: Optional[int] = None,
        actions: Optional[List[Dict[str, Any]]] = None,
        timeout_s: Optional[float] = None,
    ) -> FetchedPage:
        """Fetch a single page."""
        ...

    @abstractmethod
    async def crawl(
        self,
        url: str,
        *,
        max_depth: Optional[int] = None,
        limit: Optional[int] = None,
        allow_list: Sequence[str] = (),
        deny_list: Sequence[str] = (),
        actions: Optional[List[Dict[str, Any]]] = None,
        wait_for_ms: Optional[int] = None,
        timeout_s: Optional[float] = None,
    ) -> List[FetchedPage]:
        """Crawl from url within the given bounds."""
        ...

    @property
    def is_available(self) -> bool:
        return False

    async def aclose(self) -> None:
        """Release network resources."""
        return None


class CompletionClient(ABC):
    """Text completion service."""

    provider: str = "base"

    @abstractmethod
    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        model: str,
        temperature: float = 0.1,
        max_tokens: int = 3000,
    ) -> str:
        """Raw text completion."""
        ...

    def get_token_usage(self) -> Dict[str, int]:
        """Returns {'prompt_tokens': N, 'completion_tokens': N, 'total': N} accumulated."""
        return self._empty_usage()

    @property
    def is_available(self) -> bool:
        return False

    def _empty_usage(self) -> Dict[str, int]:
        return {"prompt_tokens": 0, "completion_tokens": 0, "total": 0}


class EmbeddingClient(ABC):
    """Text embedding service."""

    provider: str = "base"

    @abstractmethod
    async def embed(self, text: str) -> List[float]:
        """Embed a single text."""
        ...

    @property
    def is_available(self) -> bool:
        return False
