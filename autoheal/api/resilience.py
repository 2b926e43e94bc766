"""
GET  /resilience/circuits
POST /resilience/circuits/{service}/reset
GET  /resilience/rate-limits

Read-only view (plus manual reset) of the process's circuit breaker and
rate limiter state.
"""
from fastapi import APIRouter, Request

router = APIRouter(prefix="/resilience")


@router.get("/circuits")
async def list_circuits(request: Request):
    return {"circuits": request.app.state.resilience.breaker.get_all_status()}


@router.post("/circuits/{service}/reset")
async def reset_circuit(service: str, request: Request):
    breaker = request.app.state.resilience.breaker
    breaker.reset(service)
    return {"service": service, "status": breaker.get_status(service)}


@router.get("/rate-limits")
async def list_rate_limits(request: Request):
    return {"rate_limits": request.app.state.resilience.limiter.get_all_status()}
