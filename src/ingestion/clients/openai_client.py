"""
OpenAI completion and embedding clients.

Lazy initialization: the SDK client is only created once a call is made
and an API key is available.
"""

import logging
from typing import Dict, List, Optional

import openai
from openai import AsyncOpenAI

from src.ingestion.clients.base import CompletionClient, EmbeddingClient
from src.ingestion.errors import CompletionError
from src.ingestion.runtime.resilience import RetryPolicy, with_retries

logger = logging.getLogger(__name__)

OPENAI_RETRYABLE = (
    openai.APITimeoutError,
    openai.APIConnectionError,
    openai.RateLimitError,
    openai.InternalServerError,
)


def _openai_retry_policy() -> RetryPolicy:
    return RetryPolicy(max_retries=2, base_delay_s=1.0, retry_on_exceptions=OPENAI_RETRYABLE)


class OpenAICompletionClient(CompletionClient):
    """Chat-completions client with accumulated token usage."""

    provider = "openai"

    def __init__(
        self,
        api_key: Optional[str],
        *,
        timeout_s: float = 45.0,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self._api_key = api_key
        self.timeout_s = timeout_s
        self.retry_policy = retry_policy or _openai_retry_policy()
        self._client: Optional[AsyncOpenAI] = None
        self._usage: Dict[str, int] = self._empty_usage()

    @property
    def is_available(self) -> bool:
        return bool(self._api_key)

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self._api_key:
                raise CompletionError("OPENAI_API_KEY is not configured")
            # Retries are handled by with_retries
            self._client = AsyncOpenAI(
                api_key=self._api_key, timeout=self.timeout_s, max_retries=0
            )
        return self._client

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        model: str,
        temperature: float = 0.1,
        max_tokens: int = 3000,
    ) -> str:
        client = self._get_client()

        async def call():
            return await client.chat.completions.create(
                model=model,
                temperature=temperature,
                max_tokens=max_tokens,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
            )

        resp = await with_retries(call, self.retry_policy, description=f"completion ({model})")
        if resp.usage:
            self._usage["prompt_tokens"] += resp.usage.prompt_tokens
            self._usage["completion_tokens"] += resp.usage.completion_tokens
            self._usage["total"] += resp.usage.total_tokens
        if resp.choices and resp.choices[0].finish_reason == "length":
            logger.info(f"Completion hit max_tokens={max_tokens}; response is truncated")
        return (resp.choices[0].message.content if resp.choices else "") or ""

    def get_token_usage(self) -> Dict[str, int]:
        return dict(self._usage)


class OpenAIEmbeddingClient(EmbeddingClient):
    """Embeddings via the OpenAI embeddings endpoint."""

    provider = "openai"

    def __init__(
        self,
        api_key: Optional[str],
        *,
        model: str = "text-embedding-3-small",
        timeout_s: float = 30.0,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self._api_key = api_key
        self.model = model
        self.timeout_s = timeout_s
        self.retry_policy = retry_policy or _openai_retry_policy()
        self._client: Optional[AsyncOpenAI] = None

    @property
    def is_available(self) -> bool:
        return bool(self._api_key)

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self._api_key:
                raise CompletionError("OPENAI_API_KEY is not configured")
            self._client = AsyncOpenAI(
                api_key=self._api_key, timeout=self.timeout_s, max_retries=0
            )
        return self._client

    async def embed(self, text: str) -> List[float]:
        client = self._get_client()

        async def call():
            return await client.embeddings.create(model=self.model, input=text)

        resp = await with_retries(call, self.retry_policy, description="embedding")
        return list(resp.data[0].embedding)
