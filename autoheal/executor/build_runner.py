"""
Build Runner
============
Resolves the build and test commands for a workspace and runs them through
a CommandExecutor.

Resolution order:
    1. explicit ``build_command`` / ``test_command`` arguments
    2. BUILD_COMMAND / TEST_COMMAND environment overrides
    3. the project-type mapping below (type from ``detect_project_type``)

A project type without a build step gets a command that always succeeds,
so "build passed" then means "nothing to compile".
"""
import logging
from dataclasses import dataclass
from typing import Dict, Optional

from autoheal.core.config import BUILD_COMMAND, BUILD_TIMEOUT, TEST_COMMAND
from autoheal.executor.command_executor import CommandExecutor, ExecutionResult
from autoheal.executor.project_detector import detect_project_type

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BuildCommands:
    """Immutable pair of build/test commands for one project type."""
    build_command: str
    test_command: str
    project_type: str


_NO_BUILD = "true"

_COMMAND_MAP: Dict[str, BuildCommands] = {
    "typescript": BuildCommands("npx tsc --noEmit --pretty false", "npm test", "typescript"),
    "node": BuildCommands("npm run build --if-present", "npm test", "node"),
    "python": BuildCommands("python -m compileall -q .", "python -m pytest -q", "python"),
    "go": BuildCommands("go build ./...", "go test ./...", "go"),
    "rust": BuildCommands("cargo build", "cargo test", "rust"),
    "java": BuildCommands("mvn -q compile", "mvn -q test", "java"),
}

_FALLBACK = BuildCommands(_NO_BUILD, _NO_BUILD, "unknown")


def resolve_commands(
    project_type: Optional[str],
    build_command: Optional[str] = None,
    test_command: Optional[str] = None,
) -> BuildCommands:
    base = _COMMAND_MAP.get(project_type or "", _FALLBACK)
    return BuildCommands(
        build_command=build_command or BUILD_COMMAND or base.build_command,
        test_command=test_command or TEST_COMMAND or base.test_command,
        project_type=base.project_type,
    )


class BuildRunner:
    """Runs the resolved build / test commands for one workspace."""

    def __init__(
        self,
        executor: CommandExecutor,
        commands: BuildCommands,
        timeout_seconds: float = BUILD_TIMEOUT,
    ):
        self.executor = executor
        self.commands = commands
        self.timeout_seconds = timeout_seconds

    @classmethod
    def for_workspace(
        cls,
        workspace_path: str,
        executor: CommandExecutor,
        build_command: Optional[str] = None,
        test_command: Optional[str] = None,
        timeout_seconds: float = BUILD_TIMEOUT,
    ) -> "BuildRunner":
        project_type = detect_project_type(workspace_path)
        commands = resolve_commands(project_type, build_command, test_command)
        logger.info(
            "Build runner for %s | type=%s | build=%r | test=%r",
            workspace_path, commands.project_type, commands.build_command, commands.test_command,
        )
        return cls(executor, commands, timeout_seconds)

    def build(self) -> ExecutionResult:
        result = self.executor.run(self.commands.build_command, self.timeout_seconds)
        logger.info("Build %s (exit=%d)", "passed" if result.succeeded else "FAILED", result.exit_code)
        return result

    def test(self) -> ExecutionResult:
        result = self.executor.run(self.commands.test_command, self.timeout_seconds)
        logger.info("Tests %s (exit=%d)", "passed" if result.succeeded else "FAILED", result.exit_code)
        return result
