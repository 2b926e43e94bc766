"""
Pipeline Models
===============
Records describing one pipeline run and its stages.

StageDefinition (frozen dataclass):
    id              — stable key for the stage result
    name            — human readable name (used in hooks and error messages)
    execute         — ``execute(context)``; sync or async, returns the stage data
    gate            — optional ``gate(result, context) -> GateResult``; sync or async
    timeout_seconds — per-stage timeout (None → orchestrator default)
    retries         — extra attempts after the first one (None → orchestrator default)
    retry_delay     — base for the linear retry delay, seconds
    recoverable     — whether a rejected gate may be handed to ``on_gate_failure``

StageResult:
    Written once per stage per run. The only later overwrite is the
    self-heal recovery path for a verify stage (``Orchestrator.record_recovery``).

PipelineRun:
    Mutated only by the orchestrator that owns it; terminal once
    ``completed`` or ``failed``.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Literal, Optional

from pydantic import BaseModel, Field

from autoheal.core.config import STAGE_RETRY_DELAY

RunStatus = Literal["idle", "running", "completed", "failed"]
StageStatus = Literal["completed", "failed"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StageResult(BaseModel):
    stage_id: str
    status: StageStatus
    data: Any = None
    error: Optional[str] = None
    started_at: datetime
    completed_at: datetime
    duration_ms: int = 0


class GateResult(BaseModel):
    can_proceed: bool
    reason: Optional[str] = None


class PipelineRun(BaseModel):
    run_id: str
    workflow_name: str = "unknown"
    status: RunStatus = "idle"
    current_stage: Optional[str] = None
    results: Dict[str, StageResult] = Field(default_factory=dict)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    rolled_back: bool = False


@dataclass(frozen=True)
class StageDefinition:
    id: str
    name: str
    execute: Callable[[Any], Any]
    gate: Optional[Callable[[StageResult, Any], Any]] = None
    timeout_seconds: Optional[float] = None
    retries: Optional[int] = None
    retry_delay: float = STAGE_RETRY_DELAY
    recoverable: bool = False
