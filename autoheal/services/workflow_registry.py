"""
Workflow Registry
=================
Explicit name → handler mapping, populated by ``register`` calls at startup.

A handler is ``async handler(payload, run_id) -> Outcome``. Handlers signal a
pause by returning PausedForInput; an exception escaping a handler is turned
into Failed so callers always receive an Outcome.
"""
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from autoheal.models.outcome import Failed, Outcome

logger = logging.getLogger(__name__)

WorkflowHandler = Callable[[Dict[str, Any], str], Awaitable[Outcome]]


@dataclass
class RegisteredWorkflow:
    name: str
    handler: WorkflowHandler
    stages: List[str] = field(default_factory=list)
    description: str = ""


class WorkflowRegistry:
    def __init__(self) -> None:
        self._workflows: Dict[str, RegisteredWorkflow] = {}

    def register(self, name: str, handler: WorkflowHandler,
                 stages: Optional[List[str]] = None, description: str = "") -> None:
        if name in self._workflows:
            raise ValueError(f"Workflow already registered: {name}")
        self._workflows[name] = RegisteredWorkflow(name, handler, list(stages or []), description)
        logger.info("Registered workflow %s (%d stages)", name, len(stages or []))

    def get(self, name: str) -> Optional[RegisteredWorkflow]:
        return self._workflows.get(name)

    def names(self) -> List[str]:
        return sorted(self._workflows)

    def stages(self, name: str) -> List[str]:
        workflow = self._workflows.get(name)
        return list(workflow.stages) if workflow else []

    async def run(self, name: str, payload: Optional[Dict[str, Any]] = None,
                  run_id: Optional[str] = None) -> Outcome:
        workflow = self._workflows.get(name)
        if workflow is None:
            return Failed(error=f"Unknown workflow: {name}")

        run_id = run_id or f"run-{uuid.uuid4().hex[:12]}"
        logger.info("Running workflow %s as %s", name, run_id)
        try:
            return await workflow.handler(payload or {}, run_id)
        except Exception as exc:
            logger.exception("Workflow %s (%s) failed: %s", name, run_id, exc)
            return Failed(error=str(exc))
