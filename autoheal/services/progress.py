"""
Progress State
==============
Per-run progress record kept under job-queue style keys.

Keys:
    workflow:{run_id}:state   — serialised ProgressState

Progress is ``(completed + 0.5 * running) / total * 100``, rounded.
The store is in-memory, scoped to the process and bounded (see
ProgressStore); long-term persistence of job records is out of scope.
"""
import logging
import time
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from autoheal.core.config import PROGRESS_MAX_RUNS, PROGRESS_TTL
from autoheal.services.hooks import ExecutionHooks

logger = logging.getLogger(__name__)

ProgressStatus = Literal["pending", "running", "completed", "failed", "skipped"]


def state_key(run_id: str) -> str:
    return f"workflow:{run_id}:state"


class ProgressStage(BaseModel):
    name: str
    status: ProgressStatus = "pending"
    started_at: Optional[float] = None
    completed_at: Optional[float] = None
    error: Optional[str] = None


class ProgressState(BaseModel):
    workflow_id: str
    status: str = "pending"
    progress: int = 0
    current_stage: Optional[str] = None
    stages: List[ProgressStage] = Field(default_factory=list)
    started_at: float = Field(default_factory=time.time)
    last_activity: float = Field(default_factory=time.time)
    completed_at: Optional[float] = None
    error: Optional[str] = None

    def find_stage(self, name: str) -> Optional[ProgressStage]:
        return next((stage for stage in self.stages if stage.name == name), None)

    def update_progress(self) -> None:
        total = len(self.stages)
        if total == 0:
            return
        completed = sum(1 for s in self.stages if s.status in ("completed", "skipped"))
        running = sum(1 for s in self.stages if s.status == "running")
        self.progress = round((completed + running * 0.5) / total * 100)


class ProgressStore:
    """
    In-memory key/value store for ProgressState records.

    Finished runs (``completed_at`` set) are pruned on every save: records
    older than ``ttl_seconds`` go first, then the oldest finished ones while
    the store holds more than ``max_runs``. Running records are never pruned.
    """

    def __init__(self, max_runs: int = PROGRESS_MAX_RUNS, ttl_seconds: float = PROGRESS_TTL) -> None:
        self.max_runs = max_runs
        self.ttl_seconds = ttl_seconds
        self._data: Dict[str, ProgressState] = {}

    def _prune(self) -> None:
        now = time.time()
        finished = sorted(
            (state.completed_at, key) for key, state in self._data.items() if state.completed_at is not None
        )
        excess = len(self._data) - self.max_runs
        for completed_at, key in finished:
            if now - completed_at > self.ttl_seconds or excess > 0:
                del self._data[key]
                excess -= 1
        if excess > 0:
            logger.warning("Progress store holds %d running record(s) over its cap", excess)

    def save(self, state: ProgressState) -> None:
        state.last_activity = time.time()
        self._data[state_key(state.workflow_id)] = state.model_copy(deep=True)
        self._prune()

    def get(self, run_id: str) -> Optional[ProgressState]:
        state = self._data.get(state_key(run_id))
        return state.model_copy(deep=True) if state else None

    def keys(self) -> List[str]:
        return list(self._data)

    def clear(self) -> None:
        self._data.clear()


class ProgressHooks(ExecutionHooks):
    """Keeps a ProgressState in ``store`` up to date with orchestrator events."""

    def __init__(self, store: ProgressStore):
        self.store = store
        self._states: Dict[str, ProgressState] = {}

    def _state(self, run_id: str) -> ProgressState:
        state = self._states.get(run_id)
        if state is None:
            state = ProgressState(workflow_id=run_id)
            self._states[run_id] = state
        return state

    def _stage(self, state: ProgressState, name: str) -> ProgressStage:
        stage = state.find_stage(name)
        if stage is None:
            stage = ProgressStage(name=name)
            state.stages.append(stage)
        return stage

    async def on_run_start(self, run_id, stage_names):
        state = ProgressState(workflow_id=run_id, status="running",
                              stages=[ProgressStage(name=name) for name in stage_names])
        self._states[run_id] = state
        self.store.save(state)

    async def on_stage_start(self, run_id, stage_name):
        state = self._state(run_id)
        stage = self._stage(state, stage_name)
        stage.status = "running"
        stage.started_at = time.time()
        state.current_stage = stage_name
        state.update_progress()
        self.store.save(state)

    async def on_stage_complete(self, run_id, stage_name, result):
        state = self._state(run_id)
        stage = self._stage(state, stage_name)
        stage.status = "completed" if result.status == "completed" else "failed"
        stage.completed_at = time.time()
        stage.error = result.error
        state.update_progress()
        self.store.save(state)

    async def on_run_complete(self, run_id, results):
        state = self._states.pop(run_id, None) or ProgressState(workflow_id=run_id)
        state.status = "completed"
        state.current_stage = None
        state.completed_at = time.time()
        state.progress = 100
        self.store.save(state)

    async def on_run_fail(self, run_id, error, results):
        state = self._states.pop(run_id, None) or ProgressState(workflow_id=run_id)
        state.status = "failed"
        state.error = error
        state.completed_at = time.time()
        state.update_progress()
        self.store.save(state)
        logger.info("Progress for %s marked failed at %d%%", run_id, state.progress)
