"""
Tests for RetryExecutor and RetryPolicy.
"""

import asyncio
import random

import httpx
import pytest

from narrator.errors import ErrorCode, JobCancelledError
from narrator.services.cancellation import CancellationToken
from narrator.services.providers.base import (
    ContentRejectedError,
    RateLimitedError,
    ThrottledError,
)
from narrator.services.retry import (
    RetryExecutor,
    RetryPolicy,
    error_code_for,
    is_retryable_error,
)

FAST = RetryPolicy(max_attempts=3, base_delay=0.001, max_delay=0.01)


class Flaky:
    """Raises the given errors in order, then returns 'ok'."""

    def __init__(self, *errors: Exception):
        self.errors = list(errors)
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return "ok"


@pytest.mark.asyncio
async def test_success_returns_immediately():
    operation = Flaky()
    events = []
    result = await RetryExecutor().execute(operation, FAST, label="op", on_event=events.append)
    assert result == "ok"
    assert operation.calls == 1
    assert [(e.attempt, e.outcome) for e in events] == [(1, "succeeded")]


@pytest.mark.asyncio
async def test_retryable_errors_are_retried():
    operation = Flaky(ThrottledError("busy"), RateLimitedError("429"))
    events = []
    result = await RetryExecutor().execute(operation, FAST, on_event=events.append)
    assert result == "ok"
    assert operation.calls == 3
    assert [e.outcome for e in events] == ["retrying", "retrying", "succeeded"]
    assert events[0].error_code == ErrorCode.PROVIDER_THROTTLED
    assert all(e.delay <= FAST.max_delay for e in events[:2])


@pytest.mark.asyncio
async def test_non_retryable_error_propagates_without_retry():
    operation = Flaky(ContentRejectedError("nope"))
    events = []
    with pytest.raises(ContentRejectedError):
        await RetryExecutor().execute(operation, FAST, on_event=events.append)
    assert operation.calls == 1
    assert [e.outcome for e in events] == ["failed"]
    assert events[0].error_code == ErrorCode.CONTENT_REJECTED


@pytest.mark.asyncio
async def test_attempts_never_exceed_max():
    operation = Flaky(*[ThrottledError("busy") for _ in range(10)])
    events = []
    with pytest.raises(ThrottledError):
        await RetryExecutor().execute(operation, FAST, on_event=events.append)
    assert operation.calls == FAST.max_attempts
    assert [e.attempt for e in events] == [1, 2, 3]
    assert events[-1].outcome == "failed"


@pytest.mark.asyncio
async def test_cancellation_during_backoff_aborts_immediately():
    token = CancellationToken()
    slow = RetryPolicy(max_attempts=3, base_delay=30.0, max_delay=30.0)
    operation = Flaky(ThrottledError("busy"))
    events = []

    async def cancel_soon():
        await asyncio.sleep(0.01)
        token.cancel()

    canceller = asyncio.create_task(cancel_soon())
    with pytest.raises(JobCancelledError):
        await asyncio.wait_for(
            RetryExecutor().execute(operation, slow, cancel_token=token, on_event=events.append),
            timeout=2.0,
        )
    await canceller
    assert operation.calls == 1
    assert events[-1].outcome == "cancelled"


@pytest.mark.asyncio
async def test_cancelled_token_prevents_first_attempt():
    token = CancellationToken()
    token.cancel()
    operation = Flaky()
    with pytest.raises(JobCancelledError):
        await RetryExecutor().execute(operation, FAST, cancel_token=token)
    assert operation.calls == 0


def test_delay_never_exceeds_max_delay():
    policy = RetryPolicy(max_attempts=10, base_delay=1.0, max_delay=10.0, backoff_factor=2.0, jitter=0.2)
    rng = random.Random(42)
    delays = [policy.compute_delay(attempt, rng) for attempt in range(1, 11) for _ in range(50)]
    assert max(delays) <= 10.0
    assert min(delays) >= 0.8


def test_delay_grows_exponentially_within_jitter():
    policy = RetryPolicy(base_delay=1.0, max_delay=100.0, backoff_factor=2.0, jitter=0.2)
    rng = random.Random(7)
    for attempt, nominal in ((1, 1.0), (2, 2.0), (3, 4.0), (4, 8.0)):
        delay = policy.compute_delay(attempt, rng)
        assert nominal * 0.8 <= delay <= nominal * 1.2


def test_default_predicate():
    request = httpx.Request("POST", "http://speech/synthesize")
    assert is_retryable_error(ThrottledError("busy"))
    assert not is_retryable_error(ContentRejectedError("no"))
    assert is_retryable_error(httpx.ConnectError("refused", request=request))
    assert is_retryable_error(httpx.ReadTimeout("slow", request=request))
    statuses = ((429, True), (500, True), (502, True), (503, True), (501, False), (404, False))
    for status, expected in statuses:
        response = httpx.Response(status, request=request)
        error = httpx.HTTPStatusError("status", request=request, response=response)
        assert is_retryable_error(error) is expected
    assert not is_retryable_error(ValueError("bug"))


def test_error_codes():
    request = httpx.Request("GET", "http://media/extract")
    assert error_code_for(RateLimitedError("429")) == ErrorCode.PROVIDER_THROTTLED
    assert error_code_for(httpx.ReadTimeout("slow", request=request)) == ErrorCode.PROVIDER_TIMEOUT
    assert error_code_for(KeyError("x")) == ErrorCode.INTERNAL_ERROR
