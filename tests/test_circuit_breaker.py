"""
Circuit Breaker Tests
=====================
State machine transitions driven by an injected clock.
"""
import asyncio

import pytest

from autoheal.core.errors import CircuitOpenError
from autoheal.resilience.circuit_breaker import CircuitBreaker, CircuitBreakerConfig


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def breaker(clock):
    return CircuitBreaker(clock=clock)


def test_opens_after_threshold_then_half_opens(breaker, clock):
    breaker.configure("svc", failure_threshold=3, reset_timeout=30.0, half_open_requests=2)

    for _ in range(2):
        breaker.record_failure("svc")
    assert breaker.is_open("svc") is False

    breaker.record_failure("svc")
    assert breaker.is_open("svc") is True
    assert breaker.get_status("svc")["state"] == "open"

    clock.advance(30.0)
    assert breaker.is_open("svc") is False
    assert breaker.get_status("svc")["state"] == "half-open"
    assert breaker.is_open("svc") is False
    assert breaker.is_open("svc") is True


def test_default_half_open_allows_exactly_one_trial(breaker, clock):
    for _ in range(3):
        breaker.record_failure("svc")
    clock.advance(30.0)
    assert breaker.is_open("svc") is False
    assert breaker.is_open("svc") is True


def test_half_open_success_closes_and_resets_counters(breaker, clock):
    for _ in range(3):
        breaker.record_failure("svc")
    clock.advance(31.0)
    breaker.is_open("svc")

    breaker.record_success("svc")
    status = breaker.get_status("svc")
    assert status == {"state": "closed", "failures": 0}
    assert breaker.snapshot("svc")["successes"] == 1


def test_half_open_failure_reopens_with_fresh_window(breaker, clock):
    for _ in range(3):
        breaker.record_failure("svc")
    clock.advance(30.0)
    breaker.is_open("svc")

    breaker.record_failure("svc")
    assert breaker.get_status("svc")["state"] == "open"
    assert breaker.get_status("svc")["next_retry_in"] == pytest.approx(30.0)

    clock.advance(29.0)
    assert breaker.is_open("svc") is True


def test_per_service_defaults():
    breaker = CircuitBreaker()
    assert breaker.config_for("linkedin") == CircuitBreakerConfig(failure_threshold=2, reset_timeout=120.0)
    assert breaker.config_for("perplexity").failure_threshold == 5
    assert breaker.config_for("unknown-service") == CircuitBreakerConfig()


def test_call_rejects_when_open_without_invoking(breaker, clock):
    calls = []

    async def fn():
        calls.append(1)
        return "ok"

    async def run_test():
        for _ in range(3):
            breaker.record_failure("svc")
        clock.advance(10.0)
        with pytest.raises(CircuitOpenError) as exc_info:
            await breaker.call("svc", fn)
        assert str(exc_info.value) == "Circuit open for svc. Retry in 20000ms"
        assert exc_info.value.retry_in == pytest.approx(20.0)
        assert calls == []

    asyncio.run(run_test())


def test_call_records_outcomes(breaker):
    async def ok():
        return 42

    async def fail():
        raise RuntimeError("down")

    async def run_test():
        assert await breaker.call("svc", ok) == 42
        with pytest.raises(RuntimeError):
            await breaker.call("svc", fail)
        snapshot = breaker.snapshot("svc")
        assert snapshot["successes"] == 1
        assert snapshot["failures"] == 1

    asyncio.run(run_test())


def test_reset_and_reset_all(breaker):
    for _ in range(3):
        breaker.record_failure("a")
    breaker.record_failure("b")

    breaker.reset("a")
    assert breaker.get_status("a") == {"state": "closed", "failures": 0}

    breaker.reset_all()
    assert breaker.get_all_status() == {}
