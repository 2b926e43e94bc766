"""
Error Taxonomy
==============
Exceptions raised across the pipeline core.

    AutohealError
    ├── PipelineError
    │   ├── StageTimeoutError      — stage body did not finish within its timeout
    │   ├── StageExecutionError    — stage failed after retries and no gate recovered it
    │   └── GateError              — gate rejected a result and no recovery handled it
    ├── ResilienceError
    │   ├── CircuitOpenError       — call rejected because the service circuit is open
    │   └── RateLimitExceededError — call rejected by a ``fail`` rate-limit strategy
    └── CheckpointError            — version-control / snapshot operation failed

Stage-local failures are NOT raised by the orchestrator; they are recorded
on the StageResult so a gate can inspect (and possibly recover) them.
"""


class AutohealError(Exception):
    """Base class for every error raised by this package."""


class PipelineError(AutohealError):
    pass


class StageTimeoutError(PipelineError):
    def __init__(self, stage_name: str, timeout_seconds: float) -> None:
        self.stage_name = stage_name
        self.timeout_seconds = timeout_seconds
        super().__init__(f"{stage_name} timed out after {round(timeout_seconds * 1000)}ms")


class StageExecutionError(PipelineError):
    def __init__(self, stage_name: str, error: str) -> None:
        self.stage_name = stage_name
        self.error = error
        super().__init__(f"Stage {stage_name} failed: {error}")


class GateError(PipelineError):
    def __init__(self, stage_name: str, reason: str) -> None:
        self.stage_name = stage_name
        self.reason = reason
        super().__init__(f"Gate failed [{stage_name}]: {reason}")


class ResilienceError(AutohealError):
    pass


class CircuitOpenError(ResilienceError):
    """Raised when a service circuit rejects a call."""

    def __init__(self, service: str, retry_in: float) -> None:
        self.service = service
        self.retry_in = retry_in
        super().__init__(f"Circuit open for {service}. Retry in {round(retry_in * 1000)}ms")


class RateLimitExceededError(ResilienceError):
    def __init__(self, service: str, window: str = "minute") -> None:
        self.service = service
        self.window = window
        if window == "day":
            message = f"Daily rate limit exceeded for {service}"
        else:
            message = f"Rate limit exceeded for {service}"
        super().__init__(message)


class CheckpointError(AutohealError):
    pass
