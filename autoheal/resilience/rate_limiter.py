"""
Rate Limiter
============
Per-service call budget over two rolling windows (per minute, optional per day).

Strategies (applied when the minute window is exhausted):
    fail   — raise RateLimitExceededError immediately
    delay  — sleep until the minute window resets, then re-check
    queue  — wait in a FIFO; waiters are released in arrival order, up to
             the remaining capacity, whenever the minute window rolls over

An exhausted day window raises for ``fail`` and otherwise sleeps for at
most 60s before re-checking.

Window Rollover:
    There is no background timer. Every public method rolls expired windows
    over lazily and drains the queue. A queued waiter wakes itself at the
    window boundary and performs that access, so a lone waiter is still
    released.
"""
import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, TypeVar

from autoheal.core.constants import (
    DAY_WINDOW_SECONDS, MAX_DAY_WAIT_SECONDS, MINUTE_WINDOW_SECONDS,
    STRATEGY_DELAY, STRATEGY_FAIL, STRATEGY_QUEUE,
)
from autoheal.core.errors import RateLimitExceededError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RateLimitConfig:
    requests_per_minute: int
    requests_per_day: Optional[int] = None
    strategy: str = STRATEGY_DELAY

    def __post_init__(self):
        if self.strategy not in (STRATEGY_QUEUE, STRATEGY_FAIL, STRATEGY_DELAY):
            raise ValueError(f"Unknown rate limit strategy: {self.strategy}")


DEFAULT_RATE_LIMIT = RateLimitConfig(requests_per_minute=100, strategy=STRATEGY_DELAY)

SERVICE_RATE_LIMITS: Dict[str, RateLimitConfig] = {
    "perplexity": RateLimitConfig(20, 1000, STRATEGY_QUEUE),
    "notion": RateLimitConfig(3, 2000, STRATEGY_QUEUE),
    "gmail": RateLimitConfig(60, 10000, STRATEGY_DELAY),
    "calendar": RateLimitConfig(60, 10000, STRATEGY_DELAY),
    "telegram": RateLimitConfig(30, None, STRATEGY_DELAY),
    "linkedin": RateLimitConfig(10, 100, STRATEGY_FAIL),
    "slack": RateLimitConfig(50, None, STRATEGY_DELAY),
    "openai": RateLimitConfig(60, None, STRATEGY_QUEUE),
    "anthropic": RateLimitConfig(60, None, STRATEGY_QUEUE),
    "groq": RateLimitConfig(30, None, STRATEGY_QUEUE),
}


@dataclass
class RateLimiterState:
    minute_requests: int = 0
    day_requests: int = 0
    minute_reset_at: float = 0.0
    day_reset_at: float = 0.0
    queue: Deque[asyncio.Future] = field(default_factory=deque)


class RateLimiter:
    """Owns one RateLimiterState per service name."""

    def __init__(
        self,
        limits: Optional[Dict[str, RateLimitConfig]] = None,
        default_limit: RateLimitConfig = DEFAULT_RATE_LIMIT,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._limits: Dict[str, RateLimitConfig] = dict(SERVICE_RATE_LIMITS)
        if limits:
            self._limits.update(limits)
        self._default = default_limit
        self._clock = clock
        self._sleep = sleep
        self._states: Dict[str, RateLimiterState] = {}

    def config_for(self, service: str) -> RateLimitConfig:
        return self._limits.get(service, self._default)

    def configure(self, service: str, **fields: Any) -> RateLimitConfig:
        config = replace(self.config_for(service), **fields)
        self._limits[service] = config
        logger.info("Rate limit for %s: %s", service, config)
        return config

    # -----------------------------------------------------------------------
    # Lazy window maintenance
    # -----------------------------------------------------------------------
    def _state(self, service: str) -> RateLimiterState:
        now = self._clock()
        state = self._states.get(service)
        if state is None:
            state = RateLimiterState(
                minute_reset_at=now + MINUTE_WINDOW_SECONDS,
                day_reset_at=now + DAY_WINDOW_SECONDS,
            )
            self._states[service] = state

        if now >= state.minute_reset_at:
            state.minute_requests = 0
            state.minute_reset_at = now + MINUTE_WINDOW_SECONDS
        if now >= state.day_reset_at:
            state.day_requests = 0
            state.day_reset_at = now + DAY_WINDOW_SECONDS

        self._drain_queue(service, state)
        return state

    def _drain_queue(self, service: str, state: RateLimiterState) -> None:
        config = self.config_for(service)
        released = 0
        while state.queue and state.minute_requests < config.requests_per_minute:
            waiter = state.queue.popleft()
            if waiter.done():
                continue
            state.minute_requests += 1
            state.day_requests += 1
            waiter.set_result(None)
            released += 1
        if released:
            logger.debug("Released %d queued request(s) for %s", released, service)

    async def _wait_in_queue(self, service: str, state: RateLimiterState) -> None:
        waiter = asyncio.get_running_loop().create_future()
        state.queue.append(waiter)
        logger.info("Rate limit reached for %s, queued (position %d)", service, len(state.queue))
        try:
            while not waiter.done():
                timeout = max(state.minute_reset_at - self._clock(), 0.0)
                await asyncio.wait([waiter], timeout=timeout)
                if not waiter.done():
                    state = self._state(service)
        except asyncio.CancelledError:
            if waiter in state.queue:
                state.queue.remove(waiter)
            if waiter.done() and not waiter.cancelled():
                # Released by _drain_queue but never used: hand the slot to the next waiter
                state.minute_requests = max(state.minute_requests - 1, 0)
                state.day_requests = max(state.day_requests - 1, 0)
                self._drain_queue(service, state)
            waiter.cancel()
            raise

    # -----------------------------------------------------------------------
    # Public surface
    # -----------------------------------------------------------------------
    async def acquire(self, service: str) -> None:
        """Wait for (or refuse) one request slot for ``service``."""
        config = self.config_for(service)

        while True:
            state = self._state(service)
            now = self._clock()

            if config.requests_per_day is not None and state.day_requests >= config.requests_per_day:
                if config.strategy == STRATEGY_FAIL:
                    raise RateLimitExceededError(service, "day")
                wait = min(max(state.day_reset_at - now, 0.0), MAX_DAY_WAIT_SECONDS)
                logger.warning("Daily limit reached for %s, waiting %.1fs", service, wait)
                await self._sleep(wait)
                continue

            if state.minute_requests >= config.requests_per_minute:
                if config.strategy == STRATEGY_FAIL:
                    raise RateLimitExceededError(service, "minute")
                if config.strategy == STRATEGY_DELAY:
                    wait = max(state.minute_reset_at - now, 0.0)
                    logger.info("Rate limit reached for %s, delaying %.1fs", service, wait)
                    await self._sleep(wait)
                    continue
                # Slot is counted by _drain_queue when the waiter is released
                await self._wait_in_queue(service, state)
                return

            state.minute_requests += 1
            state.day_requests += 1
            return

    async def limited(self, service: str, fn: Callable[[], Awaitable[T]]) -> T:
        await self.acquire(service)
        return await fn()

    def get_status(self, service: str) -> Dict[str, Any]:
        config = self.config_for(service)
        state = self._state(service)
        return {
            "minute_requests": state.minute_requests,
            "minute_limit": config.requests_per_minute,
            "day_requests": state.day_requests,
            "day_limit": config.requests_per_day,
            "queue_length": len(state.queue),
            "minute_reset_in": max(0.0, state.minute_reset_at - self._clock()),
            "strategy": config.strategy,
        }

    def get_all_status(self) -> Dict[str, Dict[str, Any]]:
        return {service: self.get_status(service) for service in list(self._states)}

    def reset_limits(self, service: Optional[str] = None) -> None:
        """Forget counters for one service (or all); queued waiters are released."""
        services = [service] if service is not None else list(self._states)
        for name in services:
            state = self._states.pop(name, None)
            if state is None:
                continue
            while state.queue:
                waiter = state.queue.popleft()
                if not waiter.done():
                    waiter.set_result(None)
        logger.info("Rate limits reset for %s", service or "all services")
