"""
Workflow Outcome
================
Tagged result returned by workflow handlers.

    Completed(data)             — the workflow finished
    Failed(error)               — the workflow failed; ``error`` is a message
    PausedForInput(questions)   — the workflow needs answers before resuming

Handlers return one of these instead of raising to signal a pause.
"""
from typing import Any, List, Literal, Union

from pydantic import BaseModel, Field


class Completed(BaseModel):
    status: Literal["completed"] = "completed"
    data: Any = None


class Failed(BaseModel):
    status: Literal["failed"] = "failed"
    error: str


class PausedForInput(BaseModel):
    status: Literal["paused_for_input"] = "paused_for_input"
    questions: List[str] = Field(default_factory=list)


Outcome = Union[Completed, Failed, PausedForInput]
