"""
Tests for swarmrun.executors.retry: which errors retry, and how long to wait.
"""

from __future__ import annotations

import anthropic
import httpx
import pytest

from swarmrun.config import ApiConfig
from swarmrun.executors.retry import (
    RetryConfig,
    compute_delay,
    is_retryable_error,
    with_retries,
)

_REQUEST = httpx.Request("POST", "https://api.anthropic.com/v1/messages")


def _status_error(cls, status: int, headers: dict | None = None):
    response = httpx.Response(status, request=_REQUEST, headers=headers or {})
    return cls(f"status {status}", response=response, body=None)


class TestIsRetryable:
    @pytest.mark.parametrize(
        "error",
        [
            anthropic.APIConnectionError(request=_REQUEST),
            anthropic.APITimeoutError(request=_REQUEST),
            _status_error(anthropic.RateLimitError, 429),
            _status_error(anthropic.InternalServerError, 500),
            _status_error(anthropic.APIStatusError, 503),
            ConnectionError("reset"),
            TimeoutError(),
        ],
    )
    def test_transient(self, error):
        assert is_retryable_error(error)

    @pytest.mark.parametrize(
        "error",
        [
            _status_error(anthropic.BadRequestError, 400),
            _status_error(anthropic.AuthenticationError, 401),
            _status_error(anthropic.PermissionDeniedError, 403),
            ValueError("nope"),
        ],
    )
    def test_permanent(self, error):
        assert not is_retryable_error(error)


class TestComputeDelay:
    def test_exponential_without_jitter(self):
        config = RetryConfig(base_delay=0.5, max_delay=8.0, exponential_base=2.0, jitter_range=0.0)
        assert [compute_delay(n, config) for n in range(6)] == [0.5, 1.0, 2.0, 4.0, 8.0, 8.0]

    def test_jitter_stays_in_band(self):
        config = RetryConfig(base_delay=1.0, jitter_range=0.5)
        for _ in range(50):
            assert 0.5 <= compute_delay(0, config) <= 1.5

    def test_retry_after_wins_and_is_capped(self):
        config = RetryConfig(max_delay=8.0)
        assert compute_delay(0, config, retry_after=3.0) == 3.0
        assert compute_delay(0, config, retry_after=60.0) == 8.0

    def test_from_api_config(self):
        config = RetryConfig.from_api_config(ApiConfig(retry_max_retries=5, retry_base_delay=0.2))
        assert config.max_retries == 5
        assert config.base_delay == pytest.approx(0.2)


class TestWithRetries:
    def test_recovers_after_transient_errors(self):
        calls, sleeps, retries = [], [], []

        def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise ConnectionError("reset")
            return "ok"

        result = with_retries(
            flaky,
            RetryConfig(max_retries=3, jitter_range=0.0),
            on_retry=lambda attempt, err, delay: retries.append(attempt),
            sleep=sleeps.append,
        )
        assert result == "ok"
        assert len(calls) == 3
        assert sleeps == [0.5, 1.0]
        assert retries == [1, 2]

    def test_permanent_error_is_not_retried(self):
        sleeps = []

        def broken():
            raise _status_error(anthropic.BadRequestError, 400)

        with pytest.raises(anthropic.BadRequestError):
            with_retries(broken, RetryConfig(max_retries=3), sleep=sleeps.append)
        assert sleeps == []

    def test_budget_exhausted(self):
        calls, sleeps = [], []

        def down():
            calls.append(1)
            raise TimeoutError("slow")

        with pytest.raises(TimeoutError):
            with_retries(down, RetryConfig(max_retries=2), sleep=sleeps.append)
        assert len(calls) == 3
        assert len(sleeps) == 2

    def test_retry_after_header(self):
        sleeps = []
        attempts = []

        def limited():
            attempts.append(1)
            if len(attempts) == 1:
                raise _status_error(anthropic.RateLimitError, 429, {"retry-after": "2"})
            return "ok"

        assert with_retries(limited, RetryConfig(), sleep=sleeps.append) == "ok"
        assert sleeps == [2.0]
