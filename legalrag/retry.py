"""Bounded retry with backoff for calls against the knowledge-base API.

Rate limiting (HTTP 429) and connection-level failures are retried; the wait
honours ``Retry-After`` when the server sends one and otherwise grows
exponentially with random jitter. Anything else aborts at once. When the
budget is exhausted, or on abort, the caller's default value is returned so
"KB unavailable" reads as an ordinary low-confidence outcome.
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

import httpx
import structlog
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from legalrag.errors import KnowledgeBaseResponseError, KnowledgeBaseUnavailableError

logger = structlog.get_logger(__name__)

T = TypeVar("T")

MIN_BASE_DELAY_MS = 100


@dataclass(frozen=True)
class RetryPolicy:
    """Retry budget and backoff schedule."""

    max_attempts: int = 3
    base_delay_ms: int = 1000
    max_delay_ms: int = 10_000

    @property
    def effective_base_ms(self) -> int:
        return max(MIN_BASE_DELAY_MS, self.base_delay_ms)


def is_rate_limited(exc: BaseException) -> bool:
    return isinstance(exc, httpx.HTTPStatusError) and exc.response.status_code == 429


def is_connection_failure(exc: BaseException) -> bool:
    return isinstance(exc, (httpx.TransportError, KnowledgeBaseUnavailableError))


def is_retryable(exc: BaseException) -> bool:
    return is_rate_limited(exc) or is_connection_failure(exc)


def parse_retry_after(response: httpx.Response) -> Optional[float]:
    """Seconds from an integer ``Retry-After`` header (minimum 1), else None."""
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return float(max(1, int(value.strip())))
    except ValueError:
        return None


class RetryingExecutor:
    """
    Run an async request function under a retry policy.

    Usage:
        executor = RetryingExecutor(RetryPolicy(max_attempts=3, base_delay_ms=1000))
        entries = await executor.execute(lambda: client.search(q, 12), default=[])

    ``sleep`` and ``rng`` are injectable so tests can observe waits without
    actually sleeping.
    """

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ):
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self._rng = rng

    def jittered_delay(self, attempt: int) -> float:
        """Exponential backoff plus up to one base delay of jitter, in seconds."""
        base = self.policy.effective_base_ms
        exp = base * (2 ** (attempt - 1))
        jitter = self._rng() * base
        return min(self.policy.max_delay_ms, exp + jitter) / 1000.0

    def _wait(self, retry_state: RetryCallState) -> float:
        attempt = retry_state.attempt_number
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        if exc is not None and is_rate_limited(exc):
            retry_after = parse_retry_after(exc.response)
            delay = retry_after if retry_after is not None else self.jittered_delay(attempt)
            logger.warning(
                "KB 429 Too Many Requests, backing off",
                attempt=attempt,
                max_attempts=self.policy.max_attempts,
                delay_ms=int(delay * 1000),
            )
            return delay
        delay = self.jittered_delay(attempt)
        logger.warning(
            "KB connection issue, backing off",
            attempt=attempt,
            max_attempts=self.policy.max_attempts,
            delay_ms=int(delay * 1000),
            error=str(exc) if exc else None,
        )
        return delay

    async def execute(
        self,
        request_fn: Callable[[], Awaitable[T]],
        default: T,
        operation: str = "kb_request",
    ) -> T:
        """Call ``request_fn`` until it succeeds, the budget runs out, or a fatal error occurs.

        Args:
            request_fn: Zero-argument coroutine factory issuing one attempt
            default: Value returned when the call cannot be completed
            operation: Label used in log events

        Returns:
            The successful result, or ``default``

        Raises:
            No exceptions - failures degrade to ``default``
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(max(1, self.policy.max_attempts)),
            wait=self._wait,
            retry=retry_if_exception(is_retryable),
            sleep=self._sleep,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    result = await request_fn()
                    attempt_number = attempt.retry_state.attempt_number
                    if attempt_number > 1:
                        logger.info("KB request succeeded after retry", operation=operation, attempts=attempt_number)
                    return result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if is_rate_limited(e):
                logger.warning(
                    "KB still rate limited after retries, returning degraded result",
                    operation=operation,
                    attempts=self.policy.max_attempts,
                )
            elif is_connection_failure(e):
                logger.warning(
                    "Knowledge base service is not available, returning degraded result",
                    operation=operation,
                    attempts=self.policy.max_attempts,
                    error=str(e),
                )
            elif isinstance(e, KnowledgeBaseResponseError):
                logger.warning("KB returned an unusable response", operation=operation, error=str(e))
            else:
                logger.error(
                    "Unexpected KB error, not retrying",
                    operation=operation,
                    error=str(e),
                    error_type=type(e).__name__,
                )
        return default
