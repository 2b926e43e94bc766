"""
Stage Orchestrator
==================
Runs an ordered list of StageDefinitions against one shared context.

Per stage:
    1. Run ``stage.execute(context)`` under the stage timeout
       (``asyncio.wait_for`` cancels the stage coroutine on timeout)
    2. Retry failures up to ``retries`` times, sleeping ``retry_delay * attempt``
    3. Store the StageResult, completed or failed; stage failures are not raised here
    4. Evaluate the gate, if any. A rejected gate on a ``recoverable`` stage
       is handed to ``on_gate_failure(stage_id, reason)``; a True answer
       continues the run, anything else raises GateError
    5. A failed result that got past its gate (or has none) raises
       StageExecutionError

Sync ``execute`` bodies run through ``asyncio.to_thread`` so the timeout
covers them as well; a timed-out thread is abandoned, not interrupted.

Every run updates the Prometheus collectors in autoheal.core.metrics.

Stages run strictly one after another: stage N is stored and gate-checked
before stage N+1 starts, and hooks fire in that order. Hooks are
best-effort; an exception in a hook is logged and swallowed.
"""
import asyncio
import inspect
import logging
import time
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional

from autoheal.core.config import STAGE_DEFAULT_RETRIES, STAGE_DEFAULT_TIMEOUT
from autoheal.core.errors import GateError, StageExecutionError, StageTimeoutError
from autoheal.core.metrics import RUN_DURATION, RUNS_ACTIVE, RUNS_TOTAL, STAGE_DURATION, STAGE_ERRORS
from autoheal.models.pipeline import GateResult, PipelineRun, StageDefinition, StageResult, utcnow

logger = logging.getLogger(__name__)

GateFailureHandler = Callable[[str, str], Awaitable[bool]]


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class Orchestrator:
    """Executes stages sequentially and owns the PipelineRun record."""

    def __init__(
        self,
        context: Any,
        run_id: Optional[str] = None,
        hooks=None,
        default_timeout: float = STAGE_DEFAULT_TIMEOUT,
        default_retries: int = STAGE_DEFAULT_RETRIES,
        workflow_name: str = "unknown",
        on_gate_failure: Optional[GateFailureHandler] = None,
    ) -> None:
        self.context = context
        self.hooks = hooks
        self.default_timeout = default_timeout
        self.default_retries = default_retries
        self.on_gate_failure = on_gate_failure
        self.run = PipelineRun(
            run_id=run_id or f"run-{uuid.uuid4().hex[:12]}",
            workflow_name=workflow_name,
        )

    @property
    def run_id(self) -> str:
        return self.run.run_id

    # -----------------------------------------------------------------------
    # Hooks
    # -----------------------------------------------------------------------
    async def _fire(self, event: str, *args: Any) -> None:
        if self.hooks is None:
            return
        handler = getattr(self.hooks, event, None)
        if handler is None:
            return
        try:
            await _resolve(handler(*args))
        except Exception as exc:
            logger.warning("[%s] hook %s failed: %s", self.run_id, event, exc)

    # -----------------------------------------------------------------------
    # Stage execution
    # -----------------------------------------------------------------------
    async def _invoke(self, stage: StageDefinition) -> Any:
        if inspect.iscoroutinefunction(stage.execute):
            return await stage.execute(self.context)
        # Sync bodies run on a worker thread so the timeout still applies
        return await _resolve(await asyncio.to_thread(stage.execute, self.context))

    async def _attempt(self, stage: StageDefinition, timeout: float) -> Any:
        try:
            return await asyncio.wait_for(self._invoke(stage), timeout=timeout)
        except asyncio.TimeoutError:
            raise StageTimeoutError(stage.name, timeout) from None

    async def _run_stage(self, stage: StageDefinition) -> StageResult:
        timeout = stage.timeout_seconds if stage.timeout_seconds is not None else self.default_timeout
        retries = stage.retries if stage.retries is not None else self.default_retries
        started_at = utcnow()
        start = time.monotonic()
        last_error = "unknown error"

        for attempt in range(retries + 1):
            if attempt > 0:
                delay = stage.retry_delay * attempt
                logger.info(
                    "[%s] Retrying stage %s (attempt %d/%d) in %.2fs",
                    self.run_id, stage.name, attempt + 1, retries + 1, delay,
                )
                await asyncio.sleep(delay)
            try:
                data = await self._attempt(stage, timeout)
            except Exception as exc:
                last_error = str(exc) or type(exc).__name__
                logger.warning("[%s] Stage %s attempt %d failed: %s", self.run_id, stage.name, attempt + 1, last_error)
                continue

            STAGE_DURATION.labels(self.run.workflow_name, stage.id, "completed").observe(time.monotonic() - start)
            return StageResult(
                stage_id=stage.id,
                status="completed",
                data=data,
                started_at=started_at,
                completed_at=utcnow(),
                duration_ms=int((time.monotonic() - start) * 1000),
            )

        STAGE_DURATION.labels(self.run.workflow_name, stage.id, "failed").observe(time.monotonic() - start)
        STAGE_ERRORS.labels(self.run.workflow_name, stage.id).inc()
        return StageResult(
            stage_id=stage.id,
            status="failed",
            error=last_error,
            started_at=started_at,
            completed_at=utcnow(),
            duration_ms=int((time.monotonic() - start) * 1000),
        )

    async def _check_gate(self, stage: StageDefinition, result: StageResult) -> bool:
        """Return True if the gate passed (or there is none), False if it was recovered."""
        if stage.gate is None:
            return True

        gate = await _resolve(stage.gate(result, self.context))
        if isinstance(gate, dict):
            gate = GateResult(**gate)
        if gate.can_proceed:
            return True

        reason = gate.reason or "gate rejected result"
        logger.warning("[%s] Gate rejected stage %s: %s", self.run_id, stage.name, reason)

        if stage.recoverable and self.on_gate_failure is not None:
            recovered = await self.on_gate_failure(stage.id, reason)
            if recovered:
                logger.info("[%s] Stage %s recovered after gate failure", self.run_id, stage.name)
                return False

        raise GateError(stage.name, reason)

    # -----------------------------------------------------------------------
    # Run
    # -----------------------------------------------------------------------
    async def execute(self, stages: List[StageDefinition]) -> Dict[str, StageResult]:
        """
        Run ``stages`` in order.

        Returns
        -------
        dict[str, StageResult]
            Results keyed by stage id, once every stage has been accepted.

        Raises
        ------
        GateError / StageExecutionError
            The run is aborted, marked failed and ``on_run_fail`` fires.
        """
        workflow = self.run.workflow_name
        self.run.status = "running"
        self.run.started_at = utcnow()
        run_start = time.monotonic()
        RUNS_TOTAL.labels(workflow).inc()
        RUNS_ACTIVE.labels(workflow).inc()
        logger.info("[%s] Starting %s with %d stage(s)", self.run_id, workflow, len(stages))

        try:
            await self._run_stages(stages)
        except Exception:
            RUN_DURATION.labels(workflow, "failed").observe(time.monotonic() - run_start)
            raise
        else:
            RUN_DURATION.labels(workflow, "completed").observe(time.monotonic() - run_start)
        finally:
            RUNS_ACTIVE.labels(workflow).dec()
        return dict(self.run.results)

    async def _run_stages(self, stages: List[StageDefinition]) -> None:
        await self._fire("on_run_start", self.run_id, [stage.name for stage in stages])

        try:
            for stage in stages:
                self.run.current_stage = stage.id
                await self._fire("on_stage_start", self.run_id, stage.name)

                result = await self._run_stage(stage)
                self.run.results[stage.id] = result
                await self._fire("on_stage_complete", self.run_id, stage.name, result)

                gate_passed = await self._check_gate(stage, result)
                if gate_passed and result.status == "failed":
                    raise StageExecutionError(stage.name, result.error or "unknown error")

        except Exception as exc:
            self.run.status = "failed"
            self.run.completed_at = utcnow()
            logger.error("[%s] Run failed: %s", self.run_id, exc)
            await self._fire("on_run_fail", self.run_id, str(exc), dict(self.run.results))
            raise

        self.run.status = "completed"
        self.run.current_stage = None
        self.run.completed_at = utcnow()
        logger.info("[%s] Run completed%s", self.run_id, " (rolled back)" if self.run.rolled_back else "")
        await self._fire("on_run_complete", self.run_id, dict(self.run.results))

    # -----------------------------------------------------------------------
    # State access
    # -----------------------------------------------------------------------
    def get_state(self) -> PipelineRun:
        return self.run.model_copy(deep=True)

    def get_result(self, stage_id: str) -> Optional[StageResult]:
        return self.run.results.get(stage_id)

    def record_recovery(self, stage_id: str, data: Any, rolled_back: bool) -> StageResult:
        """Overwrite a stage result with the outcome of a gate-failure recovery."""
        previous = self.run.results.get(stage_id)
        now = utcnow()
        result = StageResult(
            stage_id=stage_id,
            status="completed",
            data=data,
            started_at=previous.started_at if previous else now,
            completed_at=now,
            duration_ms=int((now - previous.started_at).total_seconds() * 1000) if previous else 0,
        )
        self.run.results[stage_id] = result
        if rolled_back:
            self.run.rolled_back = True
        return result
