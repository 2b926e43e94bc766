"""
Retry Tests
===========
Backoff schedule, retry predicate, breaker wrapping and the verify phase.
"""
import asyncio

import httpx
import pytest

from autoheal.core.errors import CircuitOpenError, RateLimitExceededError
from autoheal.resilience.circuit_breaker import CircuitBreaker
from autoheal.resilience.retry import (
    calculate_delay,
    is_retryable_error,
    service_retry,
    with_retry,
    with_retry_and_verify,
)


class SleepRecorder:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


def test_retries_with_exponential_backoff():
    sleep = SleepRecorder()
    retried = []
    attempts = []

    async def flaky():
        attempts.append(1)
        if len(attempts) < 3:
            raise ConnectionError("connection reset")
        return "ok"

    async def run_test():
        result = await with_retry(
            flaky,
            max_retries=3,
            on_retry=lambda attempt, exc, delay: retried.append((attempt, delay)),
            sleep=sleep,
        )
        assert result == "ok"
        assert retried == [(1, 1.0), (2, 2.0)]
        assert sleep.calls == [1.0, 2.0]

    asyncio.run(run_test())


def test_gives_up_after_max_retries():
    sleep = SleepRecorder()
    attempts = []

    async def always_down():
        attempts.append(1)
        raise TimeoutError("upstream timed out")

    async def run_test():
        with pytest.raises(TimeoutError):
            await with_retry(always_down, max_retries=2, sleep=sleep)
        assert len(attempts) == 3

    asyncio.run(run_test())


def test_non_retryable_error_raises_immediately():
    sleep = SleepRecorder()
    attempts = []

    async def invalid():
        attempts.append(1)
        raise ValueError("invalid payload")

    async def run_test():
        with pytest.raises(ValueError):
            await with_retry(invalid, max_retries=5, sleep=sleep)
        assert len(attempts) == 1
        assert sleep.calls == []

    asyncio.run(run_test())


def test_custom_retry_on_predicate():
    sleep = SleepRecorder()
    attempts = []

    async def invalid():
        attempts.append(1)
        raise ValueError("invalid payload")

    async def run_test():
        with pytest.raises(ValueError):
            await with_retry(invalid, max_retries=2, retry_on=lambda exc: True, sleep=sleep)
        assert len(attempts) == 3

    asyncio.run(run_test())


def test_attempts_run_behind_the_circuit_breaker():
    sleep = SleepRecorder()
    breaker = CircuitBreaker()
    breaker.configure("svc", failure_threshold=2)
    attempts = []

    async def down():
        attempts.append(1)
        raise ConnectionError("econnrefused")

    async def run_test():
        with pytest.raises(CircuitOpenError):
            await with_retry(down, max_retries=5, service="svc", breaker=breaker, sleep=sleep)
        # Third attempt is rejected by the open circuit and not retried
        assert len(attempts) == 2
        assert breaker.get_status("svc")["state"] == "open"

    asyncio.run(run_test())


def test_verify_confirms_lost_acknowledgment():
    sleep = SleepRecorder()
    verify_calls = []

    async def write():
        raise ConnectionError("socket hang up")

    def verify(result):
        verify_calls.append(result)
        return len(verify_calls) == 2

    async def run_test():
        result = await with_retry_and_verify(
            write, verify, verify_delay=0.5, verify_attempts=2, max_retries=0, sleep=sleep,
        )
        assert result is None
        assert verify_calls == [None, None]
        assert sleep.calls == [0.5, 1.0]

    asyncio.run(run_test())


def test_verify_accepts_fresh_result_from_retry_round():
    sleep = SleepRecorder()
    calls = []

    async def write():
        calls.append(1)
        if len(calls) == 1:
            raise ConnectionError("network down")
        return {"id": 7}

    async def verify(result):
        return result is not None and result["id"] == 7

    async def run_test():
        result = await with_retry_and_verify(write, verify, max_retries=0, sleep=sleep)
        assert result == {"id": 7}
        assert len(calls) == 2

    asyncio.run(run_test())


def test_verify_never_confirms_reraises_original_error():
    sleep = SleepRecorder()

    async def write():
        raise ConnectionError("original failure")

    async def run_test():
        with pytest.raises(ConnectionError) as exc_info:
            await with_retry_and_verify(write, lambda result: False, verify_attempts=3,
                                        max_retries=1, sleep=sleep)
        assert str(exc_info.value) == "original failure"
        # one backoff sleep plus three verification waits
        assert sleep.calls == [1.0, 0.5, 1.0, 1.5]

    asyncio.run(run_test())


def test_is_retryable_error_classification():
    request = httpx.Request("GET", "https://example.test")

    assert is_retryable_error(CircuitOpenError("svc", 1.0)) is False
    assert is_retryable_error(RateLimitExceededError("svc")) is True
    assert is_retryable_error(httpx.ConnectTimeout("slow", request=request)) is True
    assert is_retryable_error(httpx.HTTPStatusError(
        "bad gateway", request=request, response=httpx.Response(502, request=request))) is True
    assert is_retryable_error(httpx.HTTPStatusError(
        "not found", request=request, response=httpx.Response(404, request=request))) is False
    assert is_retryable_error(RuntimeError("Service Unavailable, try again")) is True
    assert is_retryable_error(KeyError("missing")) is False


def test_calculate_delay_is_capped():
    assert calculate_delay(1) == 1.0
    assert calculate_delay(3) == 4.0
    assert calculate_delay(10, max_delay=30.0) == 30.0
    jittered = calculate_delay(2, jitter=True)
    assert 1.0 <= jittered <= 2.0


def test_service_retry_binds_defaults():
    sleep = SleepRecorder()
    breaker = CircuitBreaker()
    attempts = []

    async def flaky():
        attempts.append(1)
        if len(attempts) == 1:
            raise ConnectionError("network")
        return "sent"

    async def run_test():
        helper = service_retry("mailer", breaker=breaker, initial_delay=0.25, sleep=sleep)
        assert await helper.retry(flaky) == "sent"
        assert sleep.calls == [0.25]
        assert breaker.snapshot("mailer")["successes"] == 1

    asyncio.run(run_test())


def test_verified_success_closes_the_circuit():
    sleep = SleepRecorder()
    breaker = CircuitBreaker()
    breaker.configure("svc", failure_threshold=2)

    async def write():
        raise TimeoutError("ack lost")

    async def run_test():
        result = await with_retry_and_verify(
            write, lambda result: True, max_retries=2, service="svc", breaker=breaker, sleep=sleep,
        )
        assert result is None

    asyncio.run(run_test())
    status = breaker.get_status("svc")
    assert status["state"] == "closed"
    assert status["failures"] == 0
    assert breaker.snapshot("svc")["successes"] == 1


def test_verified_success_without_breaker_leaves_it_alone():
    breaker = CircuitBreaker()
    breaker.configure("svc", failure_threshold=1)
    breaker.record_failure("svc")

    async def write():
        raise TimeoutError("ack lost")

    async def run_test():
        await with_retry_and_verify(write, lambda result: True, max_retries=0, sleep=SleepRecorder())

    asyncio.run(run_test())
    assert breaker.get_status("svc")["state"] == "open"
