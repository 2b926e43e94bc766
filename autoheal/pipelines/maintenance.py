"""
Code Maintenance Pipeline
=========================
fix → verify → report → deliver, over one workspace.

    fix      — record the safe head, then apply every granular fix action
    verify   — build + tests. Gate: fixes were applied and the build failed
               → can_proceed=False ("Build failed after applying fixes").
               The stage is recoverable; recovery is the self-heal engine,
               whose SelfHealResult replaces this stage's result.
    report   — summary of what was kept, reverted and healed
    deliver  — send the summary through the notifier (if any)

Registered as workflow ``code-maintenance``. Payload:

    {
      "workspace": "/abs/path",   # inside WORKSPACE_ROOT
      "fixes": [
        {"id": "...", "description": "...", "file": "rel/path", "content": "..."},
        {"id": "...", "file": "rel/path", "search": "old", "replace": "new"}
      ],
      "build_command": "...",   # optional, Docker sandbox only
      "test_command": "..."     # optional, Docker sandbox only
    }
"""
import asyncio
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from autoheal.agents.checkpoints import CheckpointStore, DirectoryCheckpointStore, GitCheckpointStore
from autoheal.agents.orchestrator import Orchestrator
from autoheal.agents.self_heal import SelfHealEngine, SelfHealRecovery
from autoheal.core.config import USE_DOCKER_SANDBOX, WORKSPACE_ROOT
from autoheal.executor.build_runner import BuildRunner
from autoheal.executor.command_executor import DockerSandboxExecutor, ShellExecutor
from autoheal.models.heal import FixResult, GranularFixAction, SelfHealResult
from autoheal.models.outcome import Completed, Failed, Outcome
from autoheal.models.pipeline import GateResult, StageDefinition, StageResult

logger = logging.getLogger(__name__)

WORKFLOW_NAME = "code-maintenance"
STAGE_NAMES = ["fix", "verify", "report", "deliver"]


@dataclass
class MaintenanceContext:
    base_path: str
    checkpoints: CheckpointStore
    runner: Any
    fix_actions: List[GranularFixAction]
    notifier: Any = None
    safe_head: Optional[str] = None
    fix_results: List[FixResult] = field(default_factory=list)
    orchestrator: Optional[Orchestrator] = None


# ---------------------------------------------------------------------------
# Fix actions built from payload entries
# ---------------------------------------------------------------------------
def file_edit_action(base_path: str, entry: Dict[str, Any]) -> GranularFixAction:
    """
    Build a GranularFixAction that rewrites one file.

    ``content`` replaces the whole file; ``search``/``replace`` substitutes the
    first occurrence (the action fails when ``search`` is not found).
    """
    action_id = entry["id"]
    rel_path = entry["file"]
    description = entry.get("description", f"edit {rel_path}")

    async def apply() -> FixResult:
        root = os.path.abspath(base_path)
        target = os.path.normpath(os.path.join(root, rel_path))
        if not target.startswith(root + os.sep):
            return FixResult(action_id=action_id, description=description, success=False,
                             output="File outside workspace")

        if "content" in entry:
            new_content = entry["content"]
        else:
            if not os.path.isfile(target):
                return FixResult(action_id=action_id, description=description, success=False,
                                 output="File not found")
            with open(target, "r", encoding="utf-8") as f:
                current = f.read()
            search = entry.get("search")
            if not search or search not in current:
                return FixResult(action_id=action_id, description=description, success=False,
                                 output="Search text not found")
            new_content = current.replace(search, entry.get("replace", ""), 1)

        os.makedirs(os.path.dirname(target), exist_ok=True)
        with open(target, "w", encoding="utf-8") as f:
            f.write(new_content)
        return FixResult(action_id=action_id, description=description, success=True,
                         output=f"Updated {rel_path}")

    return GranularFixAction(id=action_id, description=description, apply=apply)


# ---------------------------------------------------------------------------
# Stages
# ---------------------------------------------------------------------------
async def _fix_stage(ctx: MaintenanceContext) -> Dict[str, Any]:
    ctx.safe_head = await asyncio.to_thread(ctx.checkpoints.head)
    ctx.fix_results = []
    for action in ctx.fix_actions:
        try:
            result = await action.apply()
        except Exception as exc:
            result = FixResult(action_id=action.id, description=action.description, success=False, output=str(exc))
        ctx.fix_results.append(result)
    applied = sum(1 for r in ctx.fix_results if r.success)
    logger.info("Applied %d/%d fix(es) on top of %s", applied, len(ctx.fix_actions), ctx.safe_head)
    return {"safe_head": ctx.safe_head, "applied": applied, "results": ctx.fix_results}


async def _verify_stage(ctx: MaintenanceContext) -> Dict[str, Any]:
    build = await asyncio.to_thread(ctx.runner.build)
    test = await asyncio.to_thread(ctx.runner.test)
    return {
        "build_passed": build.succeeded,
        "tests_passed": test.succeeded,
        "build_output": build.full_log[-2000:],
        "test_output": test.full_log[-2000:],
    }


def _verify_gate(result: StageResult, ctx: MaintenanceContext) -> GateResult:
    fixes_applied = any(r.success for r in ctx.fix_results)
    if result.status == "completed" and fixes_applied and not result.data["build_passed"]:
        return GateResult(can_proceed=False, reason="Build failed after applying fixes")
    return GateResult(can_proceed=True)


def _summarize(verify: Any, rolled_back: bool, fix_results: List[FixResult]) -> str:
    if isinstance(verify, SelfHealResult):
        lines = [
            "Self-heal ran after verification failed.",
            f"Kept: {len(verify.applied_fixes)} | Reverted: {len(verify.rolled_back_fixes)} "
            f"| Heal iterations: {len(verify.heal_iterations)}",
            f"Build: {'passed' if verify.build_passed else 'FAILED'} | "
            f"Tests: {'passed' if verify.tests_passed else 'FAILED'}",
        ]
        if rolled_back:
            lines.append("Some changes were rolled back.")
        return "\n".join(lines)

    applied = sum(1 for r in fix_results if r.success)
    return (
        f"Applied {applied}/{len(fix_results)} fix(es).\n"
        f"Build: {'passed' if verify['build_passed'] else 'FAILED'} | "
        f"Tests: {'passed' if verify['tests_passed'] else 'FAILED'}"
    )


async def _report_stage(ctx: MaintenanceContext) -> Dict[str, Any]:
    state = ctx.orchestrator.get_state()
    verify = state.results["verify"].data
    return {
        "rolled_back": state.rolled_back,
        "self_heal": verify if isinstance(verify, SelfHealResult) else None,
        "summary": _summarize(verify, state.rolled_back, ctx.fix_results),
    }


async def _deliver_stage(ctx: MaintenanceContext) -> Dict[str, Any]:
    report = ctx.orchestrator.get_result("report").data
    if ctx.notifier is None:
        return {"delivered": False}
    delivered = await ctx.notifier.send(f"<b>Code maintenance report</b>\n{report['summary']}")
    return {"delivered": bool(delivered)}


def build_stages() -> List[StageDefinition]:
    return [
        StageDefinition(id="fix", name="fix", execute=_fix_stage, timeout_seconds=300.0),
        StageDefinition(id="verify", name="verify", execute=_verify_stage, gate=_verify_gate,
                        timeout_seconds=600.0, recoverable=True),
        StageDefinition(id="report", name="report", execute=_report_stage, timeout_seconds=30.0),
        StageDefinition(id="deliver", name="deliver", execute=_deliver_stage, timeout_seconds=60.0),
    ]


async def run_maintenance(
    ctx: MaintenanceContext,
    engine: SelfHealEngine,
    run_id: Optional[str] = None,
    hooks=None,
) -> Dict[str, StageResult]:
    """Run the pipeline with self-heal wired in as the verify-gate recovery."""
    orchestrator = Orchestrator(ctx, run_id=run_id, hooks=hooks, workflow_name=WORKFLOW_NAME)
    ctx.orchestrator = orchestrator
    orchestrator.on_gate_failure = SelfHealRecovery(
        engine,
        orchestrator,
        safe_head=lambda: ctx.safe_head,
        fix_actions=lambda: ctx.fix_actions,
    )
    return await orchestrator.execute(build_stages())


# ---------------------------------------------------------------------------
# Workflow registration
# ---------------------------------------------------------------------------
class MaintenanceWorkflow:
    """
    Workflow handler: builds the context from a payload and runs the pipeline.

    ``workspace`` must resolve inside ``workspace_root``. Payload
    ``build_command`` / ``test_command`` run arbitrary shell, so they are only
    accepted when ``allow_command_overrides`` is set (by default: only when
    commands run in the Docker sandbox).
    """

    def __init__(
        self,
        file_fixer,
        notifier=None,
        hooks_factory: Optional[Callable[[], Any]] = None,
        workspace_root: Optional[str] = None,
        allow_command_overrides: Optional[bool] = None,
    ):
        self.file_fixer = file_fixer
        self.notifier = notifier
        self.hooks_factory = hooks_factory
        self.workspace_root = os.path.realpath(workspace_root or WORKSPACE_ROOT)
        self.allow_command_overrides = (
            USE_DOCKER_SANDBOX if allow_command_overrides is None else allow_command_overrides
        )

    def _workspace(self, requested: str) -> str:
        base_path = os.path.realpath(requested)
        if os.path.commonpath([self.workspace_root, base_path]) != self.workspace_root:
            raise ValueError(f"Workspace {base_path} is outside {self.workspace_root}")
        if not os.path.isdir(base_path):
            raise FileNotFoundError(f"Workspace not found: {base_path}")
        return base_path

    def _context(self, payload: Dict[str, Any]) -> MaintenanceContext:
        base_path = self._workspace(payload["workspace"])

        overrides = [key for key in ("build_command", "test_command") if payload.get(key)]
        if overrides and not self.allow_command_overrides:
            raise ValueError(f"{', '.join(overrides)} not accepted without the Docker sandbox")

        if os.path.isdir(os.path.join(base_path, ".git")):
            checkpoints: CheckpointStore = GitCheckpointStore(base_path)
        else:
            checkpoints = DirectoryCheckpointStore(base_path)

        executor = DockerSandboxExecutor(base_path) if USE_DOCKER_SANDBOX else ShellExecutor(base_path)
        runner = BuildRunner.for_workspace(
            base_path, executor,
            build_command=payload.get("build_command"),
            test_command=payload.get("test_command"),
        )
        actions = [file_edit_action(base_path, entry) for entry in payload.get("fixes", [])]
        return MaintenanceContext(base_path, checkpoints, runner, actions, notifier=self.notifier)

    async def __call__(self, payload: Dict[str, Any], run_id: str) -> Outcome:
        try:
            ctx = self._context(payload)
        except (KeyError, ValueError, FileNotFoundError) as exc:
            logger.warning("Rejected %s payload for %s: %s", WORKFLOW_NAME, run_id, exc)
            return Failed(error=f"Invalid payload: {exc}")

        engine = SelfHealEngine(ctx.base_path, ctx.checkpoints, ctx.runner, self.file_fixer)
        hooks = self.hooks_factory() if self.hooks_factory else None
        try:
            results = await run_maintenance(ctx, engine, run_id=run_id, hooks=hooks)
        except Exception as exc:
            return Failed(error=str(exc))
        finally:
            await asyncio.to_thread(ctx.checkpoints.close)
        return Completed(data={
            "run_id": run_id,
            "rolled_back": ctx.orchestrator.run.rolled_back,
            "report": results["report"].data,
        })


def register_maintenance_workflow(registry, file_fixer, notifier=None, hooks_factory=None,
                                  workspace_root=None, allow_command_overrides=None) -> None:
    registry.register(
        WORKFLOW_NAME,
        MaintenanceWorkflow(
            file_fixer,
            notifier=notifier,
            hooks_factory=hooks_factory,
            workspace_root=workspace_root,
            allow_command_overrides=allow_command_overrides,
        ),
        stages=STAGE_NAMES,
        description="Apply fixes, verify build/tests, self-heal on failure, report",
    )
