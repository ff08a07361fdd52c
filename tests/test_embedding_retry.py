"""Tests for retry classification, backoff and the retry loop."""

from __future__ import annotations

from datetime import timedelta

import httpx
import openai
import pytest

from medifly.configs.system import EmbeddingConfig
from medifly.core.embedding.retry import (
    REASON_NETWORK,
    REASON_RATE_LIMIT,
    REASON_SERVER_ERROR,
    backoff_delay,
    classify,
    with_retries,
)

_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/embeddings")


def _status_error(cls, status: int):
    response = httpx.Response(status, request=_REQUEST)
    return cls(f"HTTP {status}", response=response, body=None)


# =========================================================================
# classify
# =========================================================================


class TestClassify:
    def test_rate_limit(self):
        assert classify(_status_error(openai.RateLimitError, 429)) == REASON_RATE_LIMIT

    def test_server_error(self):
        assert classify(_status_error(openai.InternalServerError, 503)) == REASON_SERVER_ERROR

    def test_connection_and_timeout(self):
        assert classify(openai.APIConnectionError(request=_REQUEST)) == REASON_NETWORK
        assert classify(openai.APITimeoutError(request=_REQUEST)) == REASON_NETWORK
        assert classify(TimeoutError()) == REASON_NETWORK
        assert classify(ConnectionResetError()) == REASON_NETWORK

    def test_client_errors_are_not_retryable(self):
        assert classify(_status_error(openai.AuthenticationError, 401)) is None
        assert classify(_status_error(openai.BadRequestError, 400)) is None
        assert classify(ValueError("bad dimensions")) is None


# =========================================================================
# backoff_delay
# =========================================================================


class TestBackoffDelay:
    def test_rate_limit_triples(self):
        assert backoff_delay(REASON_RATE_LIMIT, 1, 1.0, 60.0, rng=lambda: 0.0) == 3.0
        assert backoff_delay(REASON_RATE_LIMIT, 2, 1.0, 60.0, rng=lambda: 0.0) == 9.0

    def test_rate_limit_jitter_up_to_one_second(self):
        assert backoff_delay(REASON_RATE_LIMIT, 1, 1.0, 60.0, rng=lambda: 0.5) == 3.5

    def test_server_error_doubles(self):
        assert backoff_delay(REASON_SERVER_ERROR, 1, 1.0, 60.0, rng=lambda: 0.0) == 1.0
        assert backoff_delay(REASON_SERVER_ERROR, 3, 1.0, 60.0, rng=lambda: 0.0) == 4.0
        assert backoff_delay(REASON_SERVER_ERROR, 1, 1.0, 60.0, rng=lambda: 1.0) == 1.5

    def test_network_grows_by_half(self):
        assert backoff_delay(REASON_NETWORK, 1, 2.0, 60.0) == 2.0
        assert backoff_delay(REASON_NETWORK, 3, 2.0, 60.0) == pytest.approx(4.5)

    def test_capped(self):
        assert backoff_delay(REASON_RATE_LIMIT, 5, 1.0, 30.0, rng=lambda: 0.0) == 30.0


# =========================================================================
# with_retries
# =========================================================================


def _config(**overrides) -> EmbeddingConfig:
    values = dict(
        max_retries=3,
        initial_retry_delay=timedelta(seconds=1),
        max_retry_delay=timedelta(seconds=30),
    )
    values.update(overrides)
    return EmbeddingConfig(**values)


class _Flaky:
    def __init__(self, errors: list[Exception], result: str = "ok") -> None:
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


class TestWithRetries:
    @pytest.mark.asyncio
    async def test_success_after_transient_failures(self, sleeps, recording_sleep):
        call = _Flaky([TimeoutError(), _status_error(openai.InternalServerError, 500)])
        result = await with_retries(
            call, provider="openai", config=_config(), sleep=recording_sleep
        )
        assert result == "ok"
        assert call.calls == 3
        assert len(sleeps) == 2
        # network backoff on attempt 1 has no jitter
        assert sleeps[0] == 1.0

    @pytest.mark.asyncio
    async def test_non_retryable_fails_immediately(self, sleeps, recording_sleep):
        call = _Flaky([_status_error(openai.AuthenticationError, 401)])
        with pytest.raises(openai.AuthenticationError):
            await with_retries(call, provider="openai", config=_config(), sleep=recording_sleep)
        assert call.calls == 1
        assert sleeps == []

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self, sleeps, recording_sleep):
        call = _Flaky([TimeoutError()] * 5)
        with pytest.raises(TimeoutError):
            await with_retries(
                call, provider="openai", config=_config(max_retries=2), sleep=recording_sleep
            )
        assert call.calls == 2
        assert len(sleeps) == 1

    @pytest.mark.asyncio
    async def test_zero_retries_still_calls_once(self, recording_sleep):
        call = _Flaky([])
        assert (
            await with_retries(
                call, provider="gemini", config=_config(max_retries=0), sleep=recording_sleep
            )
            == "ok"
        )
        assert call.calls == 1
