"""
Workflow Metrics
================
Prometheus collectors updated by the orchestrator on every run.

    autoheal_workflow_runs_total{workflow}                  — runs started
    autoheal_workflow_runs_active{workflow}                 — runs in flight
    autoheal_workflow_run_duration_seconds{workflow,status} — run wall time
    autoheal_workflow_stage_duration_seconds{workflow,stage,status}
    autoheal_workflow_stage_errors_total{workflow,stage}    — stages that failed after retries

Collectors live on the default prometheus_client registry and are served by
GET /metrics.
"""
from prometheus_client import Counter, Gauge, Histogram

_DURATION_BUCKETS = (0.05, 0.1, 0.5, 1.0, 5.0, 15.0, 30.0, 60.0, 120.0, 300.0, 600.0)

RUNS_TOTAL = Counter(
    "autoheal_workflow_runs_total",
    "Workflow runs started",
    labelnames=("workflow",),
)
RUNS_ACTIVE = Gauge(
    "autoheal_workflow_runs_active",
    "Workflow runs currently executing",
    labelnames=("workflow",),
)
RUN_DURATION = Histogram(
    "autoheal_workflow_run_duration_seconds",
    "Wall time of a workflow run",
    labelnames=("workflow", "status"),
    buckets=_DURATION_BUCKETS,
)
STAGE_DURATION = Histogram(
    "autoheal_workflow_stage_duration_seconds",
    "Wall time of one stage including its retries",
    labelnames=("workflow", "stage", "status"),
    buckets=_DURATION_BUCKETS,
)
STAGE_ERRORS = Counter(
    "autoheal_workflow_stage_errors_total",
    "Stages that ended failed after exhausting retries",
    labelnames=("workflow", "stage"),
)
