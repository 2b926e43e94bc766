"""
Execution Hooks
===============
Bridge from orchestrator lifecycle events to the outside world.

Events (all async, all best-effort):
    on_run_start(run_id, stage_names)
    on_stage_start(run_id, stage_name)
    on_stage_complete(run_id, stage_name, result)     — fires for failed stages too
    on_run_complete(run_id, results)
    on_run_fail(run_id, error, results)

Subclass ExecutionHooks and override what you need; the rest are no-ops.
"""
import logging
from typing import Dict, List

from autoheal.core.constants import ARROW
from autoheal.models.pipeline import StageResult

logger = logging.getLogger(__name__)


class ExecutionHooks:
    async def on_run_start(self, run_id: str, stage_names: List[str]) -> None:
        pass

    async def on_stage_start(self, run_id: str, stage_name: str) -> None:
        pass

    async def on_stage_complete(self, run_id: str, stage_name: str, result: StageResult) -> None:
        pass

    async def on_run_complete(self, run_id: str, results: Dict[str, StageResult]) -> None:
        pass

    async def on_run_fail(self, run_id: str, error: str, results: Dict[str, StageResult]) -> None:
        pass


class NotifyHooks(ExecutionHooks):
    """Chat message per lifecycle event. ``notifier`` must expose ``async send(text)``."""

    def __init__(self, notifier, prefix: str = ""):
        self.notifier = notifier
        self.prefix = f"[{prefix}] " if prefix else ""

    async def on_run_start(self, run_id, stage_names):
        stages = f" {ARROW} ".join(stage_names)
        await self.notifier.send(f"🚀 <b>{self.prefix}Started</b>\nStages: {stages}")

    async def on_stage_start(self, run_id, stage_name):
        await self.notifier.send(f"⚙️ {self.prefix}{stage_name}...")

    async def on_stage_complete(self, run_id, stage_name, result):
        if result.status == "failed":
            await self.notifier.send(f"❌ {self.prefix}{stage_name} failed: {result.error}")

    async def on_run_complete(self, run_id, results):
        await self.notifier.send(f"✅ <b>{self.prefix}Complete</b>")

    async def on_run_fail(self, run_id, error, results):
        await self.notifier.send(f"❌ <b>{self.prefix}Failed</b>\n{error}")


class CompositeHooks(ExecutionHooks):
    """Fans every event out to several hook sets; one failing member does not stop the others."""

    def __init__(self, *members: ExecutionHooks):
        self.members = list(members)

    async def _each(self, event: str, *args) -> None:
        for member in self.members:
            try:
                await getattr(member, event)(*args)
            except Exception as exc:
                logger.warning("Hook %s.%s failed: %s", type(member).__name__, event, exc)

    async def on_run_start(self, run_id, stage_names):
        await self._each("on_run_start", run_id, stage_names)

    async def on_stage_start(self, run_id, stage_name):
        await self._each("on_stage_start", run_id, stage_name)

    async def on_stage_complete(self, run_id, stage_name, result):
        await self._each("on_stage_complete", run_id, stage_name, result)

    async def on_run_complete(self, run_id, results):
        await self._each("on_run_complete", run_id, results)

    async def on_run_fail(self, run_id, error, results):
        await self._each("on_run_fail", run_id, error, results)
