"""
Resilience Registry
===================
Single owner of the process's circuit breaker and rate limiter.

Built once at startup (see ``main.py``) and passed explicitly to anything
that calls an external service. Per-service overrides can be loaded from a
YAML file:

    circuits:
      telegram: {failure_threshold: 5, reset_timeout: 60}
    rate_limits:
      telegram: {requests_per_minute: 20, strategy: delay}
"""
import logging
import os
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

import yaml

from autoheal.resilience.circuit_breaker import CircuitBreaker
from autoheal.resilience.rate_limiter import RateLimiter
from autoheal.resilience.retry import with_retry

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ResilienceRegistry:
    def __init__(
        self,
        breaker: Optional[CircuitBreaker] = None,
        limiter: Optional[RateLimiter] = None,
    ):
        self.breaker = breaker or CircuitBreaker()
        self.limiter = limiter or RateLimiter()

    @classmethod
    def from_yaml(cls, path: str) -> "ResilienceRegistry":
        """Build a registry with overrides from ``path``; a missing file means defaults."""
        registry = cls()
        if not path or not os.path.exists(path):
            logger.info("No resilience config at %s, using defaults", path)
            return registry

        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}

        for service, fields in (raw.get("circuits") or {}).items():
            registry.breaker.configure(service, **fields)
        for service, fields in (raw.get("rate_limits") or {}).items():
            registry.limiter.configure(service, **fields)

        logger.info(
            "Loaded resilience config from %s (%d circuit, %d rate-limit override(s))",
            path, len(raw.get("circuits") or {}), len(raw.get("rate_limits") or {}),
        )
        return registry

    async def guarded_call(
        self,
        service: str,
        fn: Callable[[], Awaitable[T]],
        **retry_options: Any,
    ) -> T:
        """Rate limit, circuit-break and retry one call to ``service``."""

        async def attempt() -> T:
            await self.limiter.acquire(service)
            return await fn()

        retry_options.setdefault("operation_name", f"{service} call")
        return await with_retry(attempt, service=service, breaker=self.breaker, **retry_options)

    def status(self) -> Dict[str, Any]:
        return {
            "circuits": self.breaker.get_all_status(),
            "rate_limits": self.limiter.get_all_status(),
        }
