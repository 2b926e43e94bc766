"""
Circuit Breaker
===============
Per-service failure tracking that stops calling a service once it keeps failing.

State Machine:
    closed     — calls pass; consecutive failures are counted
    open       — calls are rejected until ``next_retry``
    half-open  — a limited number of trial calls are let through

    closed    → open       failures >= failure_threshold
    open      → half-open  first ``is_open`` check at/after next_retry
                           (that check consumes one trial slot)
    half-open → closed     any recorded success (counters reset)
    half-open → open       any recorded failure (fresh reset window)

Circuits are created lazily per service name. All state lives in the
CircuitBreaker instance; the app owns exactly one (see ResilienceRegistry).
"""
import logging
import time
from dataclasses import dataclass, asdict, replace
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from autoheal.core.constants import CIRCUIT_CLOSED, CIRCUIT_HALF_OPEN, CIRCUIT_OPEN
from autoheal.core.errors import CircuitOpenError

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Thresholds for one service."""
    failure_threshold: int = 3
    reset_timeout: float = 30.0
    half_open_requests: int = 1


DEFAULT_CIRCUIT_CONFIG = CircuitBreakerConfig()

SERVICE_CIRCUIT_CONFIGS: Dict[str, CircuitBreakerConfig] = {
    "perplexity": CircuitBreakerConfig(failure_threshold=5, reset_timeout=60.0),
    "notion": CircuitBreakerConfig(failure_threshold=3, reset_timeout=30.0),
    "gmail": CircuitBreakerConfig(failure_threshold=5, reset_timeout=30.0),
    "linkedin": CircuitBreakerConfig(failure_threshold=2, reset_timeout=120.0),
    "openai": CircuitBreakerConfig(failure_threshold=5, reset_timeout=60.0),
    "anthropic": CircuitBreakerConfig(failure_threshold=5, reset_timeout=60.0),
    "groq": CircuitBreakerConfig(failure_threshold=5, reset_timeout=60.0),
}


@dataclass
class ServiceCircuit:
    state: str = CIRCUIT_CLOSED
    failures: int = 0
    successes: int = 0
    last_failure: Optional[float] = None
    next_retry: Optional[float] = None
    half_open_allowed: int = 0


# ---------------------------------------------------------------------------
# Breaker
# ---------------------------------------------------------------------------
class CircuitBreaker:
    """Tracks one ServiceCircuit per service name."""

    def __init__(
        self,
        configs: Optional[Dict[str, CircuitBreakerConfig]] = None,
        default_config: CircuitBreakerConfig = DEFAULT_CIRCUIT_CONFIG,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._configs: Dict[str, CircuitBreakerConfig] = dict(SERVICE_CIRCUIT_CONFIGS)
        if configs:
            self._configs.update(configs)
        self._default = default_config
        self._clock = clock
        self._circuits: Dict[str, ServiceCircuit] = {}

    def config_for(self, service: str) -> CircuitBreakerConfig:
        return self._configs.get(service, self._default)

    def configure(self, service: str, **fields: Any) -> CircuitBreakerConfig:
        """Override thresholds for one service (unspecified fields keep their value)."""
        config = replace(self.config_for(service), **fields)
        self._configs[service] = config
        logger.info("Circuit config for %s: %s", service, config)
        return config

    def _circuit(self, service: str) -> ServiceCircuit:
        circuit = self._circuits.get(service)
        if circuit is None:
            circuit = ServiceCircuit()
            self._circuits[service] = circuit
        return circuit

    def _trip(self, service: str, circuit: ServiceCircuit) -> None:
        config = self.config_for(service)
        circuit.state = CIRCUIT_OPEN
        circuit.next_retry = self._clock() + config.reset_timeout
        logger.warning(
            "Circuit OPEN for %s after %d failures (retry in %.1fs)",
            service, circuit.failures, config.reset_timeout,
        )

    # -----------------------------------------------------------------------
    # State transitions
    # -----------------------------------------------------------------------
    def is_open(self, service: str) -> bool:
        """
        Return True when a call to ``service`` must be rejected.

        Calling this may move an expired open circuit to half-open and
        consumes one half-open trial slot when it lets a call through.
        """
        circuit = self._circuit(service)

        if circuit.state == CIRCUIT_CLOSED:
            return False

        if circuit.state == CIRCUIT_OPEN:
            if circuit.next_retry is not None and self._clock() >= circuit.next_retry:
                circuit.state = CIRCUIT_HALF_OPEN
                # The transitioning call is itself a trial call
                circuit.half_open_allowed = self.config_for(service).half_open_requests - 1
                logger.info("Circuit HALF-OPEN for %s", service)
                return False
            return True

        if circuit.half_open_allowed > 0:
            circuit.half_open_allowed -= 1
            return False
        return True

    def record_success(self, service: str) -> None:
        circuit = self._circuit(service)
        if circuit.state == CIRCUIT_HALF_OPEN:
            circuit.state = CIRCUIT_CLOSED
            circuit.failures = 0
            circuit.half_open_allowed = 0
            circuit.next_retry = None
            logger.info("Circuit CLOSED for %s", service)
        circuit.successes += 1

    def record_failure(self, service: str) -> None:
        circuit = self._circuit(service)
        circuit.failures += 1
        circuit.last_failure = self._clock()

        if circuit.state == CIRCUIT_HALF_OPEN:
            self._trip(service, circuit)
        elif circuit.state == CIRCUIT_CLOSED and circuit.failures >= self.config_for(service).failure_threshold:
            self._trip(service, circuit)

    async def call(self, service: str, fn: Callable[[], Awaitable[T]]) -> T:
        """
        Run ``fn`` behind the breaker.

        Raises CircuitOpenError without invoking ``fn`` when the circuit is
        open; otherwise records the outcome and returns / re-raises.
        """
        if self.is_open(service):
            circuit = self._circuit(service)
            retry_in = max(0.0, (circuit.next_retry or 0.0) - self._clock())
            raise CircuitOpenError(service, retry_in)

        try:
            result = await fn()
        except Exception:
            self.record_failure(service)
            raise
        self.record_success(service)
        return result

    # -----------------------------------------------------------------------
    # Introspection / admin
    # -----------------------------------------------------------------------
    def get_status(self, service: str) -> Dict[str, Any]:
        circuit = self._circuit(service)
        status: Dict[str, Any] = {"state": circuit.state, "failures": circuit.failures}
        if circuit.state == CIRCUIT_OPEN and circuit.next_retry is not None:
            status["next_retry_in"] = max(0.0, circuit.next_retry - self._clock())
        return status

    def get_all_status(self) -> Dict[str, Dict[str, Any]]:
        return {service: self.get_status(service) for service in self._circuits}

    def snapshot(self, service: str) -> Dict[str, Any]:
        return asdict(self._circuit(service))

    def reset(self, service: str) -> None:
        self._circuits[service] = ServiceCircuit()
        logger.info("Circuit reset for %s", service)

    def reset_all(self) -> None:
        self._circuits.clear()
        logger.info("All circuits reset")
