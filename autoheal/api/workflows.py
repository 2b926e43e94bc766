"""
GET  /workflows
POST /workflows/{name}/runs

Lists registered workflows and runs one. The run is awaited and its Outcome
(completed / failed / paused_for_input) is returned as JSON; progress can be
polled meanwhile through GET /runs/{run_id}.
"""
import logging
import uuid
from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

router = APIRouter()


class RunRequest(BaseModel):
    payload: Dict[str, Any] = Field(default_factory=dict)
    run_id: Optional[str] = None


@router.get("/workflows")
async def list_workflows(request: Request):
    registry = request.app.state.workflows
    return {"workflows": [{"name": name, "stages": registry.stages(name)} for name in registry.names()]}


@router.post("/workflows/{name}/runs")
async def run_workflow(name: str, body: RunRequest, request: Request):
    registry = request.app.state.workflows
    if registry.get(name) is None:
        raise HTTPException(status_code=404, detail=f"Unknown workflow: {name}")

    run_id = body.run_id or f"run-{uuid.uuid4().hex[:12]}"
    logger.info("API run request for %s (%s)", name, run_id)
    outcome = await registry.run(name, body.payload, run_id=run_id)
    return {"run_id": run_id, "outcome": outcome.model_dump(mode="json")}
