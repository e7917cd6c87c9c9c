"""
Retry Logic: transient transport failures for API-backed executors.

Only errors that can succeed on a second attempt are retried: timeouts,
dropped connections, rate limits (429) and server errors (5xx). Everything
else (bad request, auth, permission) propagates on the first failure.
Backoff is exponential with jitter; a server-provided Retry-After wins.
"""

from __future__ import annotations

import random
import time
from typing import Any, Callable, Optional, TypeVar

import anthropic
import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 0.5,
        max_delay: float = 8.0,
        exponential_base: float = 2.0,
        jitter_range: float = 0.5,
    ):
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter_range = jitter_range

    @classmethod
    def from_api_config(cls, api_config: Any) -> "RetryConfig":
        return cls(
            max_retries=api_config.retry_max_retries,
            base_delay=api_config.retry_base_delay,
            max_delay=api_config.retry_max_delay,
            exponential_base=api_config.retry_exponential_base,
            jitter_range=api_config.retry_jitter_range,
        )


def is_retryable_error(error: BaseException) -> bool:
    """
    Decide whether an error is transient.

    Retryable: API timeouts and connection errors, 429, any 5xx, and the
    builtin TimeoutError / ConnectionError. Not retryable: other 4xx and
    anything that is not a transport failure.
    """
    if isinstance(error, (anthropic.APITimeoutError, anthropic.APIConnectionError)):
        return True
    if isinstance(error, (anthropic.RateLimitError, anthropic.InternalServerError)):
        return True
    if isinstance(error, anthropic.APIStatusError):
        return error.status_code == 429 or error.status_code >= 500
    if isinstance(error, (ConnectionError, TimeoutError)):
        return True
    return False


def compute_delay(
    attempt: int,
    config: RetryConfig,
    retry_after: Optional[float] = None,
) -> float:
    """
    Delay before the next attempt.

        delay = min(max_delay, base_delay * exponential_base ** attempt)
        delay += jitter in [-jitter_range * delay, +jitter_range * delay]

    A Retry-After value from the server is used as-is, capped at max_delay.
    """
    if retry_after is not None and retry_after > 0:
        return min(retry_after, config.max_delay)

    delay = config.base_delay * (config.exponential_base ** attempt)
    delay = min(delay, config.max_delay)
    jitter = delay * config.jitter_range * (2 * random.random() - 1)
    return max(0.01, delay + jitter)


def _retry_after(error: BaseException) -> Optional[float]:
    response = getattr(error, "response", None)
    if response is None:
        return None
    try:
        value = response.headers.get("retry-after")
        return float(value) if value is not None else None
    except (ValueError, AttributeError):
        return None


def with_retries(
    func: Callable[[], T],
    config: Optional[RetryConfig] = None,
    on_retry: Optional[Callable[[int, BaseException, float], None]] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call ``func`` until it succeeds, a non-retryable error occurs, or the
    retry budget is spent. The last error is re-raised unchanged.
    """
    if config is None:
        config = RetryConfig()

    for attempt in range(config.max_retries + 1):
        try:
            return func()
        except Exception as e:
            if not is_retryable_error(e):
                logger.error(
                    "retry.non_retryable_error",
                    error_type=type(e).__name__,
                    error=str(e)[:200],
                    attempt=attempt,
                )
                raise
            if attempt >= config.max_retries:
                logger.error(
                    "retry.exhausted",
                    error_type=type(e).__name__,
                    error=str(e)[:200],
                    total_attempts=attempt + 1,
                )
                raise

            delay = compute_delay(attempt, config, _retry_after(e))
            logger.warning(
                "retry.attempt",
                error_type=type(e).__name__,
                error=str(e)[:200],
                attempt=attempt + 1,
                max_retries=config.max_retries,
                delay_seconds=round(delay, 2),
            )
            if on_retry:
                on_retry(attempt + 1, e, delay)
            sleep(delay)

    raise AssertionError("unreachable")
