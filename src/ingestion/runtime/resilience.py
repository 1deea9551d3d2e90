"""
src.ingestion.runtime.resilience

Shared resilience utilities: retries, rate limiting.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, TypeVar

import httpx

from src.ingestion.errors import RateLimitExceededError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    backoff_mode: str = "exp"  # exp | fixed | none
    base_delay_s: float = 0.5
    max_delay_s: float = 30.0
    jitter: float = 0.25
    retry_on_status: tuple[int, ...] = (408, 429, 500, 502, 503, 504)
    retry_on_exceptions: tuple[type[BaseException], ...] = (
        httpx.TransportError,
        asyncio.TimeoutError,
    )

    def compute_backoff_s(self, attempt: int) -> float:
        """
        attempt: 1..N
        """
        if self.backoff_mode == "none":
            return 0.0
        if self.backoff_mode == "fixed":
            delay = self.base_delay_s
        else:
            # exponential
            delay = self.base_delay_s * (2 ** max(0, attempt - 1))

        delay = min(delay, self.max_delay_s)
        if self.jitter > 0:
            delay = delay * (1.0 + (random.random() * 2 - 1) * self.jitter)  # +- jitter
        return max(0.0, delay)

    def should_retry(self, exc: BaseException) -> bool:
        if isinstance(exc, httpx.HTTPStatusError):
            return exc.response.status_code in self.retry_on_status
        return isinstance(exc, self.retry_on_exceptions)


async def with_retries(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    *,
    description: str = "request",
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """
    Run an async operation, retrying transient failures per the policy.

    Non-retryable exceptions and the final failure are re-raised unchanged.
    """
    policy = policy or RetryPolicy()
    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation()
        except Exception as exc:
            if attempt > policy.max_retries or not policy.should_retry(exc):
                raise
            delay = policy.compute_backoff_s(attempt)
            logger.warning(
                f"{description} failed (attempt {attempt}/{policy.max_retries + 1}): "
                f"{exc!r}; retrying in {delay:.2f}s"
            )
            await sleep(delay)


@dataclass(frozen=True)
class RateLimitPolicy:
    """Spacing and ceiling rules for outbound service requests."""

    min_interval_s: float = 8.0
    gentle_interval_s: float = 12.0
    max_requests_per_run: int = 50
    gentle_keywords: tuple[str, ...] = ("kudyznudy", "czech", "praha", "brno")
    source_intervals_s: dict[str, float] = field(default_factory=dict)
    jitter_s: float = 0.0

    def is_gentle(self, source_name: str) -> bool:
        name = (source_name or "").lower()
        return any(k in name for k in self.gentle_keywords)

    def source_class(self, source_name: str) -> str:
        """Sources sharing a class share spacing; an override gets its own class."""
        if source_name in self.source_intervals_s:
            return f"source:{source_name}"
        return "gentle" if self.is_gentle(source_name) else "standard"

    def interval_for(self, source_name: str) -> float:
        override = self.source_intervals_s.get(source_name)
        if override is not None:
            return override
        if self.is_gentle(source_name):
            return self.gentle_interval_s
        return self.min_interval_s


class RateLimiter:
    """
    Process-wide limiter shared by concurrent source workers.

    Spacing is tracked per (service, source class); the request ceiling is
    tracked per run. Slots are reserved under the lock and the wait happens
    outside it, so a worker waiting on one slot never blocks another slot.
    """

    def __init__(
        self,
        policy: RateLimitPolicy | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.policy = policy or RateLimitPolicy()
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._last_call_s: dict[tuple[str, str], float] = {}
        self._run_counts: dict[str, int] = {}
        self.total_requests = 0

    async def acquire(
        self,
        source_name: str,
        *,
        run_id: str | None = None,
        service: str = "fetch",
    ) -> None:
        """
        Wait until a request for this source may be issued.

        Raises:
            RateLimitExceededError: when the run's request ceiling is reached.
        """
        run_key = run_id or source_name
        async with self._lock:
            count = self._run_counts.get(run_key, 0)
            if count >= self.policy.max_requests_per_run:
                raise RateLimitExceededError(self.policy.max_requests_per_run)

            slot = (service, self.policy.source_class(source_name))
            target_delay = self.policy.interval_for(source_name) + (
                random.random() * self.policy.jitter_s if self.policy.jitter_s else 0.0
            )
            now = self._clock()
            last = self._last_call_s.get(slot)
            scheduled = now if last is None else max(now, last + target_delay)
            self._last_call_s[slot] = scheduled
            self._run_counts[run_key] = count + 1
            self.total_requests += 1

        wait_s = scheduled - now
        if wait_s > 0:
            logger.debug(
                f"Rate limiting {service} request for {source_name}: waiting {wait_s:.2f}s"
            )
            await self._sleep(wait_s)

    def requests_for(self, run_id: str) -> int:
        return self._run_counts.get(run_id, 0)

    def release(self, run_id: str) -> None:
        """Forget the request count of a finished run."""
        self._run_counts.pop(run_id, None)

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "total_requests": self.total_requests,
            "active_runs": len(self._run_counts),
        }


@dataclass
class Stopwatch:
    """Millisecond stopwatch used for run and crawl durations."""

    clock: Callable[[], float] = time.monotonic
    started_s: float = field(default=0.0)

    def __post_init__(self) -> None:
        self.started_s = self.clock()

    def elapsed_ms(self) -> int:
        return int((self.clock() - self.started_s) * 1000)
