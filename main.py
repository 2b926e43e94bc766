import uvicorn
import time
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from autoheal.api.resilience import router as resilience_router
from autoheal.api.workflows import router as workflows_router
from autoheal.api.runs import router as runs_router
from autoheal.agents.fix_agent import LLMFileFixer
from autoheal.core.config import RESILIENCE_CONFIG
from autoheal.llm.client import LLMClient
from autoheal.pipelines.maintenance import WORKFLOW_NAME, register_maintenance_workflow
from autoheal.resilience.registry import ResilienceRegistry
from autoheal.services.hooks import CompositeHooks, NotifyHooks
from autoheal.services.notifier import TelegramNotifier
from autoheal.services.progress import ProgressHooks, ProgressStore
from autoheal.services.workflow_registry import WorkflowRegistry
from autoheal.utils.logging_config import setup_logging

setup_logging(level=logging.INFO)
logger = logging.getLogger("main")

# ---------------------------------------------------------------------------
# Process-wide services (built once, passed explicitly)
# ---------------------------------------------------------------------------
resilience = ResilienceRegistry.from_yaml(RESILIENCE_CONFIG)
notifier = TelegramNotifier(resilience)
llm_client = LLMClient(resilience=resilience)
progress_store = ProgressStore()
workflows = WorkflowRegistry()

register_maintenance_workflow(
    workflows,
    file_fixer=LLMFileFixer(llm_client),
    notifier=notifier,
    hooks_factory=lambda: CompositeHooks(ProgressHooks(progress_store), NotifyHooks(notifier, WORKFLOW_NAME)),
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await notifier.close()
    await llm_client.close()
    logger.info("HTTP clients closed")


app = FastAPI(title="Autoheal Pipeline API", lifespan=lifespan)
app.state.resilience = resilience
app.state.workflows = workflows
app.state.progress = progress_store


# ---------------------------------------------------------------------------
# Logging Middleware
# ---------------------------------------------------------------------------
class LoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        client_host = request.client.host if request.client else "unknown"
        logger.info("Incoming: %s %s from %s", request.method, request.url.path, client_host)

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error("Request failed: %s %s - Error: %s", request.method, request.url.path, e)
            raise
        process_time = (time.time() - start_time) * 1000
        logger.info(
            "Outgoing: %s %s - Status: %d - Time: %.2fms",
            request.method, request.url.path, response.status_code, process_time,
        )
        return response


app.add_middleware(LoggingMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000", "http://localhost:8000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health_check():
    return {"status": "ok", "workflows": workflows.names()}


@app.get("/metrics")
async def metrics():
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


app.include_router(resilience_router, tags=["Resilience"])
app.include_router(workflows_router, tags=["Workflows"])
app.include_router(runs_router, tags=["Workflows"])

if __name__ == "__main__":
    uvicorn.run("main:app", host="127.0.0.1", port=8000, reload=True)
