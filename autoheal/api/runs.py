"""
GET /runs/{run_id}
Progress polling for one workflow run (stage statuses and percent complete).
"""
from fastapi import APIRouter, HTTPException, Request

router = APIRouter()


@router.get("/runs/{run_id}")
async def get_run(run_id: str, request: Request):
    state = request.app.state.progress.get(run_id)
    if state is None:
        raise HTTPException(status_code=404, detail=f"Unknown run: {run_id}")
    return state.model_dump()
