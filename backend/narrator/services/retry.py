"""
Retry executor for external calls.

Wraps any awaitable operation with bounded retries, exponential backoff
and jitter, built on tenacity's AsyncRetrying. Backoff sleeps observe the
job's cancellation token, and every attempt emits one RetryEvent.
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

import httpx
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt
from tenacity.wait import wait_base

from narrator.errors import ErrorCode, JobCancelledError, NarratorError
from narrator.models.pipelines import RetryPolicyConfig
from narrator.services.cancellation import CancellationToken
from narrator.services.providers.base import ProviderError

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


def is_retryable_error(error: BaseException) -> bool:
    """
    Default retry predicate.

    Transient provider errors, httpx connect/timeout errors and HTTP
    429/5xx responses are retryable; everything else is not.

    Args:
        error: Exception raised by an attempt

    Returns:
        True if another attempt may succeed
    """
    if isinstance(error, ProviderError):
        return error.retryable
    if isinstance(error, (httpx.TimeoutException, httpx.NetworkError)):
        return True
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        return status in RETRYABLE_STATUS_CODES
    return False


def error_code_for(error: BaseException) -> ErrorCode:
    """Map an exception to the taxonomy code recorded on a unit."""
    if isinstance(error, (ProviderError, NarratorError)):
        return error.code
    if isinstance(error, httpx.TimeoutException):
        return ErrorCode.PROVIDER_TIMEOUT
    if isinstance(error, httpx.HTTPStatusError) and error.response.status_code == 429:
        return ErrorCode.PROVIDER_THROTTLED
    if isinstance(error, (httpx.NetworkError, httpx.HTTPStatusError)):
        return ErrorCode.PROVIDER_UNAVAILABLE
    return ErrorCode.INTERNAL_ERROR


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry policy threaded into every executor call.

    Attributes:
        max_attempts: Total attempts including the first one
        base_delay: Delay after the first failed attempt (seconds)
        max_delay: Upper bound for any single delay (seconds)
        backoff_factor: Multiplier per further attempt
        jitter: Relative jitter; 0.2 means U(0.8, 1.2)
        retryable: Predicate deciding whether an error is retried
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    backoff_factor: float = 2.0
    jitter: float = 0.2
    retryable: Callable[[BaseException], bool] = field(default=is_retryable_error)

    @classmethod
    def from_config(cls, config: RetryPolicyConfig) -> "RetryPolicy":
        """Create a policy from a stage's retry configuration."""
        return cls(
            max_attempts=config.max_attempts,
            base_delay=config.base_delay,
            max_delay=config.max_delay,
            backoff_factor=config.backoff_factor,
            jitter=config.jitter,
        )

    def compute_delay(self, attempt: int, rng: random.Random | None = None) -> float:
        """
        Delay before the retry that follows failed attempt `attempt`.

        delay = min(max_delay, base * factor^(attempt-1) * U(1-jitter, 1+jitter))

        Args:
            attempt: 1-based number of the attempt that just failed
            rng: Random source (module-level random if None)

        Returns:
            Delay in seconds, never above max_delay
        """
        uniform = (rng or random).uniform(1 - self.jitter, 1 + self.jitter)
        delay = self.base_delay * (self.backoff_factor ** (attempt - 1)) * uniform
        return min(self.max_delay, delay)


@dataclass(frozen=True)
class RetryEvent:
    """
    One observability event per attempt.

    Attributes:
        label: Caller-provided operation label (e.g. "job1/analyze#3")
        attempt: 1-based attempt number
        max_attempts: Configured maximum
        outcome: succeeded, retrying, failed or cancelled
        delay: Backoff before the next attempt (retrying only)
        error: Short error description (never shown to callers)
        error_code: Taxonomy code of the error
    """

    label: str
    attempt: int
    max_attempts: int
    outcome: str
    delay: float | None = None
    error: str | None = None
    error_code: ErrorCode | None = None


EventCallback = Callable[[RetryEvent], None]


class _PolicyWait(wait_base):
    """tenacity wait strategy delegating to RetryPolicy.compute_delay."""

    def __init__(self, policy: RetryPolicy, rng: random.Random | None):
        self.policy = policy
        self.rng = rng

    def __call__(self, retry_state: RetryCallState) -> float:
        return self.policy.compute_delay(retry_state.attempt_number, self.rng)


class RetryExecutor:
    """
    Runs operations under a RetryPolicy.

    Non-retryable failures propagate after the first attempt. Retryable
    failures are retried until max_attempts, then the last error
    propagates. Cancellation before an attempt or during a backoff sleep
    raises JobCancelledError immediately.

    Example:
        executor = RetryExecutor()
        text = await executor.execute(
            lambda: vision.analyze(unit, prompt),
            RetryPolicy(max_attempts=3, base_delay=2.0),
            cancel_token=token,
            label="job1/analyze#3",
        )
    """

    def __init__(self, rng: random.Random | None = None):
        """
        Initialize executor.

        Args:
            rng: Random source for jitter (for deterministic tests)
        """
        self.rng = rng

    async def execute(
        self,
        operation: Callable[[], Awaitable[Any]],
        policy: RetryPolicy,
        cancel_token: CancellationToken | None = None,
        label: str = "operation",
        on_event: EventCallback | None = None,
    ) -> Any:
        """
        Execute an operation with retries.

        Args:
            operation: Zero-argument coroutine factory, called once per attempt
            policy: Retry policy
            cancel_token: Job cancellation token
            label: Label used in events and logs
            on_event: Callback receiving one RetryEvent per attempt

        Returns:
            Result of the first successful attempt

        Raises:
            JobCancelledError: If cancellation was observed
            Exception: Last error once retries are exhausted or on a
                non-retryable error
        """

        def emit(event: RetryEvent) -> None:
            if event.outcome == "retrying":
                logger.warning(
                    f"{label}: attempt {event.attempt}/{event.max_attempts} failed "
                    f"({event.error}), retrying in {event.delay:.2f}s"
                )
            elif event.outcome == "failed":
                logger.warning(
                    f"{label}: attempt {event.attempt}/{event.max_attempts} failed "
                    f"permanently ({event.error})"
                )
            elif event.outcome == "cancelled":
                logger.info(f"{label}: cancelled at attempt {event.attempt}")
            elif event.attempt > 1:
                logger.info(f"{label}: succeeded on attempt {event.attempt}")
            else:
                logger.debug(f"{label}: succeeded")
            if on_event is not None:
                on_event(event)

        def before_sleep(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception()
            emit(RetryEvent(
                label=label,
                attempt=retry_state.attempt_number,
                max_attempts=policy.max_attempts,
                outcome="retrying",
                delay=retry_state.next_action.sleep if retry_state.next_action else None,
                error=_describe(error),
                error_code=error_code_for(error),
            ))

        async def sleep(delay: float) -> None:
            if cancel_token is None:
                await asyncio.sleep(delay)
                return
            cancel_token.raise_if_cancelled()
            try:
                await asyncio.wait_for(cancel_token.wait(), timeout=delay)
            except asyncio.TimeoutError:
                return
            raise JobCancelledError(f"{label}: cancelled during backoff")

        retrying = AsyncRetrying(
            stop=stop_after_attempt(policy.max_attempts),
            wait=_PolicyWait(policy, self.rng),
            retry=retry_if_exception(policy.retryable),
            sleep=sleep,
            before_sleep=before_sleep,
            reraise=True,
        )

        attempt_number = 0
        try:
            async for attempt in retrying:
                attempt_number = attempt.retry_state.attempt_number
                with attempt:
                    if cancel_token is not None:
                        cancel_token.raise_if_cancelled()
                    result = await operation()
                    emit(RetryEvent(
                        label=label,
                        attempt=attempt_number,
                        max_attempts=policy.max_attempts,
                        outcome="succeeded",
                    ))
        except JobCancelledError as e:
            emit(RetryEvent(
                label=label,
                attempt=max(attempt_number, 1),
                max_attempts=policy.max_attempts,
                outcome="cancelled",
                error=_describe(e),
                error_code=ErrorCode.JOB_CANCELLED,
            ))
            raise
        except Exception as e:
            emit(RetryEvent(
                label=label,
                attempt=max(attempt_number, 1),
                max_attempts=policy.max_attempts,
                outcome="failed",
                error=_describe(e),
                error_code=error_code_for(e),
            ))
            raise

        return result


def _describe(error: BaseException | None) -> str | None:
    if error is None:
        return None
    return f"{type(error).__name__}: {error}"


# Global executor instance
_executor: RetryExecutor | None = None


def get_retry_executor() -> RetryExecutor:
    """Get or create the shared retry executor."""
    global _executor
    if _executor is None:
        _executor = RetryExecutor()
    return _executor
