"""
Verified Retry
==============
Exponential-backoff retry with an optional verification phase.

with_retry:
    Up to ``max_retries + 1`` attempts. Delay before attempt N+1 is
    ``min(initial_delay * backoff_factor ** (N - 1), max_delay)``.
    ``retry_on`` (or ``is_retryable_error``) decides whether an error is
    worth another attempt. When a ``service`` and ``breaker`` are given,
    every attempt runs behind the circuit breaker.

with_retry_and_verify:
    A failed write may have landed downstream even though its
    acknowledgment was lost. After ``with_retry`` gives up, up to
    ``verify_attempts`` rounds run, each after ``verify_delay * round``:
        1. ``verify(last_result)`` (None when no attempt produced a value)
        2. if not verified, call ``fn`` once more and verify that result
    The first verified round wins; otherwise the original error is re-raised.
    A verified round counts as a success for the service's circuit breaker.
"""
import asyncio
import inspect
import logging
import random
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx

from autoheal.core.constants import CIRCUIT_CLOSED
from autoheal.core.errors import CircuitOpenError, RateLimitExceededError
from autoheal.resilience.circuit_breaker import CircuitBreaker

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 3
DEFAULT_INITIAL_DELAY = 1.0
DEFAULT_MAX_DELAY = 30.0
DEFAULT_BACKOFF_FACTOR = 2.0

RETRYABLE_PATTERNS = (
    "timeout",
    "timed out",
    "abort",
    "econnreset",
    "econnrefused",
    "connection reset",
    "connection refused",
    "socket hang up",
    "network",
    "rate limit",
    "429",
    "502",
    "503",
    "504",
    "temporarily unavailable",
    "try again",
    "service unavailable",
)

RETRYABLE_STATUS_CODES = {408, 429, 500, 502, 503, 504}


def is_retryable_error(error: BaseException) -> bool:
    """Default predicate: transient network / throttling / upstream errors."""
    if isinstance(error, CircuitOpenError):
        return False
    if isinstance(error, RateLimitExceededError):
        return True
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code in RETRYABLE_STATUS_CODES
    if isinstance(error, (httpx.TimeoutException, httpx.NetworkError, asyncio.TimeoutError,
                          ConnectionError, TimeoutError)):
        return True
    message = str(error).lower()
    return any(pattern in message for pattern in RETRYABLE_PATTERNS)


def calculate_delay(
    attempt: int,
    initial_delay: float = DEFAULT_INITIAL_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
    backoff_factor: float = DEFAULT_BACKOFF_FACTOR,
    jitter: bool = False,
) -> float:
    delay = min(initial_delay * (backoff_factor ** (attempt - 1)), max_delay)
    if jitter:
        delay = delay * random.uniform(0.5, 1.0)
    return delay


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    max_retries: int = DEFAULT_MAX_RETRIES,
    initial_delay: float = DEFAULT_INITIAL_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
    backoff_factor: float = DEFAULT_BACKOFF_FACTOR,
    retry_on: Optional[Callable[[BaseException], bool]] = None,
    on_retry: Optional[Callable[[int, BaseException, float], Any]] = None,
    service: Optional[str] = None,
    breaker: Optional[CircuitBreaker] = None,
    use_circuit_breaker: Optional[bool] = None,
    operation_name: str = "operation",
    jitter: bool = False,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """
    Call ``fn`` until it succeeds or retries are exhausted.

    Parameters
    ----------
    fn : async callable with no arguments
    retry_on : predicate deciding whether an error is retryable
    on_retry : ``on_retry(attempt, error, delay)`` called before each sleep
    service / breaker : wrap each attempt in ``breaker.call(service, fn)``

    Returns
    -------
    Whatever ``fn`` returns. The last error is re-raised on exhaustion or
    on the first non-retryable error.
    """
    if use_circuit_breaker is None:
        use_circuit_breaker = service is not None
    guarded = bool(use_circuit_breaker and service and breaker is not None)
    predicate = retry_on or is_retryable_error

    attempt = 1
    while True:
        try:
            if guarded:
                result = await breaker.call(service, fn)
            else:
                result = await fn()
            if attempt > 1:
                logger.info("%s succeeded on attempt %d (service=%s)", operation_name, attempt, service)
            return result
        except Exception as exc:
            if attempt > max_retries or not predicate(exc):
                logger.error(
                    "%s failed after %d attempt(s) (service=%s): %s",
                    operation_name, attempt, service, exc,
                )
                raise

            delay = calculate_delay(attempt, initial_delay, max_delay, backoff_factor, jitter)
            logger.warning(
                "%s failed (attempt %d/%d, service=%s), retrying in %.2fs: %s",
                operation_name, attempt, max_retries + 1, service, delay, exc,
            )
            if on_retry is not None:
                on_retry(attempt, exc, delay)
            await sleep(delay)
            attempt += 1


async def with_retry_and_verify(
    fn: Callable[[], Awaitable[T]],
    verify: Callable[[Optional[T]], Any],
    verify_delay: float = 0.5,
    verify_attempts: int = 2,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    **retry_options: Any,
) -> Optional[T]:
    """
    ``with_retry`` followed by a verification phase when it fails.

    ``verify`` may be sync or async. It receives the last value any attempt
    produced, or None if no attempt produced one, so it can also confirm a
    side effect by inspecting downstream state.
    """
    operation_name = retry_options.get("operation_name", "operation")
    service = retry_options.get("service")
    breaker: Optional[CircuitBreaker] = retry_options.get("breaker")
    use_circuit_breaker = retry_options.get("use_circuit_breaker")
    if use_circuit_breaker is None:
        use_circuit_breaker = service is not None
    guarded = bool(use_circuit_breaker and service and breaker is not None)

    def confirmed(value: Optional[T]) -> Optional[T]:
        if guarded:
            # A verified write means the service is up; close a circuit tripped by lost acks
            if breaker.get_status(service)["state"] != CIRCUIT_CLOSED:
                breaker.reset(service)
            breaker.record_success(service)
        return value

    try:
        return await with_retry(fn, sleep=sleep, **retry_options)
    except Exception as exc:
        original_error = exc
        logger.info("%s reported failure, verifying (service=%s): %s", operation_name, service, exc)

    last_result: Optional[T] = None

    for round_number in range(1, verify_attempts + 1):
        await sleep(verify_delay * round_number)

        try:
            if await _maybe_await(verify(last_result)):
                logger.info("%s verified successful after retry (round %d)", operation_name, round_number)
                return confirmed(last_result)
        except Exception as verify_error:
            logger.warning("Verification round %d for %s raised: %s", round_number, operation_name, verify_error)

        try:
            result = await fn()
        except Exception as attempt_error:
            logger.warning("Verification round %d attempt for %s failed: %s", round_number, operation_name, attempt_error)
            continue

        last_result = result
        try:
            if await _maybe_await(verify(result)):
                logger.info("%s succeeded on verification round %d", operation_name, round_number)
                return confirmed(result)
        except Exception as verify_error:
            logger.warning("Verification round %d for %s raised: %s", round_number, operation_name, verify_error)

    logger.error("%s failed after all retries and verification (service=%s)", operation_name, service)
    raise original_error


class ServiceRetry:
    """Retry helpers pre-bound to one service name and its defaults."""

    def __init__(self, service: str, breaker: Optional[CircuitBreaker] = None, **defaults: Any):
        self.service = service
        self.breaker = breaker
        self.defaults = defaults

    def _options(self, overrides: dict) -> dict:
        options = {"service": self.service, "breaker": self.breaker}
        options.update(self.defaults)
        options.update(overrides)
        return options

    async def retry(self, fn: Callable[[], Awaitable[T]], **overrides: Any) -> T:
        return await with_retry(fn, **self._options(overrides))

    async def retry_and_verify(
        self,
        fn: Callable[[], Awaitable[T]],
        verify: Callable[[Optional[T]], Any],
        **overrides: Any,
    ) -> Optional[T]:
        return await with_retry_and_verify(fn, verify, **self._options(overrides))


def service_retry(service: str, breaker: Optional[CircuitBreaker] = None, **defaults: Any) -> ServiceRetry:
    return ServiceRetry(service, breaker=breaker, **defaults)
