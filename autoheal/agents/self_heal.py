"""
Self-Heal Engine
================
Recovers a workspace whose verification failed after automated fixes were
applied, using the checkpoint store as a transaction log.

Algorithm:
    1. Reset      — working tree back to ``safe_head``
    2. Re-apply   — per fix action: snapshot → apply → build.
                    Build fails (or the action fails) → restore snapshot, rolled back.
                    Build passes → commit "self-heal: <action id>", applied.
                    No snapshot possible → the action is not applied, rolled back.
    3. Verify     — build + tests
    4. Heal loop  — only while the build fails, at most ``max_iterations`` rounds:
                    parse diagnostics (none → stop), snapshot, hand the files
                    with the most errors to the file fixer one by one, rebuild.
                    Passing → commit, stop. Nothing fixed and no fewer errors →
                    restore the snapshot, stop. Otherwise commit partial progress.
    5. Floor      — final build + tests; still failing → reset to ``safe_head``,
                    commit the rollback and re-measure there. Every fix is then
                    reported as rolled back.

``heal`` never raises. Any unexpected error skips straight to step 5, so
the workspace always ends in a state that was just measured.

The engine assumes exclusive access to the workspace; callers must not run
two heals against the same tree at once.
"""
import asyncio
import functools
import logging
from typing import Any, Awaitable, Callable, List, Optional, Protocol, Sequence, Tuple, Union

from autoheal.agents.checkpoints import CheckpointStore
from autoheal.agents.fix_agent import FileFixOutcome
from autoheal.core.config import MAX_FILES_PER_HEAL_ITERATION, MAX_HEAL_ITERATIONS
from autoheal.core.constants import COMMIT_PREFIX, OUTPUT_TAIL_CHARS
from autoheal.executor.command_executor import ExecutionResult
from autoheal.models.diagnostics import DiagnoseResult
from autoheal.models.heal import FixResult, GranularFixAction, HealIteration, SelfHealResult
from autoheal.parser.diagnostics_parser import parse_build_errors

logger = logging.getLogger(__name__)

FileFixer = Callable[[str, List[str], str], Awaitable[FileFixOutcome]]


class Runner(Protocol):
    def build(self) -> ExecutionResult:
        ...

    def test(self) -> ExecutionResult:
        ...


def _tail(result: Optional[ExecutionResult]) -> str:
    if result is None:
        return ""
    return (result.full_log or result.stdout)[-OUTPUT_TAIL_CHARS:]


def _combined(*results: ExecutionResult) -> str:
    return "\n".join(result.full_log or f"{result.stdout}\n{result.stderr}" for result in results)


class SelfHealEngine:
    def __init__(
        self,
        base_path: str,
        checkpoints: CheckpointStore,
        runner: Runner,
        file_fixer: FileFixer,
        parse_errors: Optional[Callable[[str], DiagnoseResult]] = None,
        max_iterations: int = MAX_HEAL_ITERATIONS,
        max_files_per_iteration: int = MAX_FILES_PER_HEAL_ITERATION,
    ) -> None:
        self.base_path = base_path
        self.checkpoints = checkpoints
        self.runner = runner
        self.file_fixer = file_fixer
        self.parse_errors = parse_errors or functools.partial(parse_build_errors, workspace_path=base_path)
        self.max_iterations = max_iterations
        self.max_files_per_iteration = max_files_per_iteration

    # -----------------------------------------------------------------------
    # Blocking operations run off the event loop
    # -----------------------------------------------------------------------
    async def _build(self) -> ExecutionResult:
        return await asyncio.to_thread(self.runner.build)

    async def _measure(self) -> Tuple[ExecutionResult, ExecutionResult]:
        build = await self._build()
        test = await asyncio.to_thread(self.runner.test)
        return build, test

    async def _checkpoint(self, method: str, *args: Any) -> Any:
        return await asyncio.to_thread(getattr(self.checkpoints, method), *args)

    # -----------------------------------------------------------------------
    # Step 2: granular re-apply
    # -----------------------------------------------------------------------
    async def _apply_one(self, action: GranularFixAction) -> Tuple[bool, FixResult]:
        try:
            snapshot_id = await self._checkpoint("snapshot")
        except Exception as exc:
            logger.warning("Self-heal: no snapshot for %s, not applying it: %s", action.id, exc)
            return False, FixResult(
                action_id=action.id,
                description=action.description,
                success=False,
                output=f"Skipped: snapshot unavailable ({exc})",
            )

        logger.info("Self-heal: applying fix %s", action.id)
        try:
            result = await action.apply()
        except Exception as exc:
            logger.warning("Self-heal: fix %s raised: %s", action.id, exc)
            result = FixResult(action_id=action.id, description=action.description, success=False, output=str(exc))

        if not result.success:
            await self._checkpoint("restore", snapshot_id)
            return False, result

        build = await self._build()
        if not build.succeeded:
            logger.warning("Self-heal: fix %s broke the build, reverting", action.id)
            await self._checkpoint("restore", snapshot_id)
            return False, result.model_copy(update={
                "success": False,
                "output": f"Reverted: broke build. {_tail(build)[-500:]}",
            })

        await self._checkpoint("commit", f"{COMMIT_PREFIX} {action.id}")
        await self._checkpoint("release", snapshot_id)
        logger.info("Self-heal: fix %s applied and verified", action.id)
        return True, result

    # -----------------------------------------------------------------------
    # Step 4: diagnostics-driven heal loop
    # -----------------------------------------------------------------------
    async def _fix_file(self, file_path: str, errors: List[str]) -> FileFixOutcome:
        try:
            return await self.file_fixer(file_path, errors, self.base_path)
        except Exception as exc:
            logger.warning("Self-heal: file fixer raised for %s: %s", file_path, exc)
            return FileFixOutcome(False, f"Fixer error: {exc}")

    async def _heal_loop(self, output: str, iterations: List[HealIteration]) -> None:
        for i in range(1, self.max_iterations + 1):
            diagnosis = self.parse_errors(output)
            if diagnosis.count == 0:
                logger.info("Self-heal: no parseable errors, stopping heal loop")
                return

            logger.info("Self-heal: iteration %d, %s", i, diagnosis.summary)
            snapshot_id = await self._checkpoint("snapshot")

            worst_first = sorted(diagnosis.by_file.items(), key=lambda item: len(item[1]), reverse=True)
            files_fixed = 0
            summaries: List[str] = []
            for file_path, diagnostics in worst_first[: self.max_files_per_iteration]:
                outcome = await self._fix_file(file_path, [d.describe() for d in diagnostics])
                if outcome.success:
                    files_fixed += 1
                summaries.append(f"{file_path}: {'fixed' if outcome.success else outcome.output}")

            build = await self._build()
            iterations.append(HealIteration(
                iteration=i,
                errors_found=diagnosis.count,
                files_fixed=files_fixed,
                build_passed=build.succeeded,
                errors=summaries,
            ))

            if build.succeeded:
                logger.info("Self-heal: build passed after iteration %d", i)
                await self._checkpoint("commit", f"{COMMIT_PREFIX} iteration-{i} success")
                await self._checkpoint("release", snapshot_id)
                return

            output = _combined(build)
            remaining = self.parse_errors(output).count
            if files_fixed == 0 and remaining >= diagnosis.count:
                logger.warning("Self-heal: iteration %d made no progress, rolling back", i)
                await self._checkpoint("restore", snapshot_id)
                return

            await self._checkpoint("commit", f"{COMMIT_PREFIX} iteration-{i} partial")
            await self._checkpoint("release", snapshot_id)

    # -----------------------------------------------------------------------
    # Entry point
    # -----------------------------------------------------------------------
    async def heal(self, safe_head: str, fix_actions: Sequence[GranularFixAction]) -> SelfHealResult:
        applied: List[FixResult] = []
        rolled_back: List[FixResult] = []
        iterations: List[HealIteration] = []
        build: Optional[ExecutionResult] = None
        test: Optional[ExecutionResult] = None

        try:
            logger.info("Self-heal: rolling back to safe state %s", safe_head)
            await self._checkpoint("reset", safe_head)

            for action in fix_actions:
                kept, result = await self._apply_one(action)
                (applied if kept else rolled_back).append(result)

            build, test = await self._measure()
            if not build.succeeded:
                logger.info("Self-heal: build still failing, starting heal loop")
                await self._heal_loop(_combined(build, test), iterations)
                build, test = await self._measure()

        except Exception as exc:
            logger.exception("Self-heal aborted, falling back to safe state: %s", exc)
            build = test = None

        if build is not None and build.succeeded:
            logger.info(
                "Self-heal: done | applied=%d | rolled back=%d | tests=%s",
                len(applied), len(rolled_back), "passed" if test.succeeded else "FAILED",
            )
            return SelfHealResult(
                applied_fixes=applied,
                rolled_back_fixes=rolled_back,
                heal_iterations=iterations,
                build_passed=True,
                tests_passed=test.succeeded,
                build_output=_tail(build),
                test_output=_tail(test),
            )

        build, test = await self._full_rollback(safe_head)
        return SelfHealResult(
            applied_fixes=[],
            rolled_back_fixes=applied + rolled_back,
            heal_iterations=iterations,
            build_passed=build.succeeded,
            tests_passed=test.succeeded,
            build_output=_tail(build),
            test_output=_tail(test),
        )

    async def _full_rollback(self, safe_head: str) -> Tuple[ExecutionResult, ExecutionResult]:
        logger.warning("Self-heal: all attempts failed, rolling back to safe state %s", safe_head)
        try:
            await self._checkpoint("reset", safe_head)
            await self._checkpoint("commit", f"{COMMIT_PREFIX} full rollback to safe state")
        except Exception as exc:
            logger.error("Self-heal: rollback to %s failed: %s", safe_head, exc)

        try:
            return await self._measure()
        except Exception as exc:
            logger.error("Self-heal: could not measure safe state: %s", exc)
            failed = ExecutionResult(exit_code=-1, error=str(exc), full_log=str(exc))
            return failed, failed


# ---------------------------------------------------------------------------
# Orchestrator adapter
# ---------------------------------------------------------------------------
class SelfHealRecovery:
    """
    ``on_gate_failure`` handler that heals the workspace.

    The SelfHealResult replaces the verify stage's result, the run is flagged
    ``rolled_back`` when any fix was reverted, and True is returned so the
    remaining stages (report, deliver) still run.
    """

    def __init__(
        self,
        engine: SelfHealEngine,
        orchestrator,
        safe_head: Union[str, Callable[[], str]],
        fix_actions: Union[Sequence[GranularFixAction], Callable[[], Sequence[GranularFixAction]]],
    ) -> None:
        self.engine = engine
        self.orchestrator = orchestrator
        self._safe_head = safe_head
        self._fix_actions = fix_actions

    async def __call__(self, stage_id: str, reason: str) -> bool:
        safe_head = self._safe_head() if callable(self._safe_head) else self._safe_head
        fix_actions = self._fix_actions() if callable(self._fix_actions) else self._fix_actions

        logger.warning("Gate failed on %s (%s), starting self-heal from %s", stage_id, reason, safe_head)
        result = await self.engine.heal(safe_head, list(fix_actions))
        self.orchestrator.record_recovery(stage_id, result, rolled_back=bool(result.rolled_back_fixes))
        return True
