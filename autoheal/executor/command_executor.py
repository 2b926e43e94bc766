"""
Command Executor
================
Runs one shell command in a workspace and returns its captured output.

Two implementations share the ``CommandExecutor`` protocol:

    ShellExecutor          — local subprocess; used for version control and,
                             by default, for build/test commands
    DockerSandboxExecutor  — ephemeral Docker container with the workspace
                             mounted at /workspace (USE_DOCKER_SANDBOX=true)

BOUNDARY RULES:
    - Executors ONLY observe execution. They never fix code or parse errors.
    - Executors never raise for a failing command; a non-zero exit code (or
      -1 plus ``error`` for infrastructure failures) is returned instead.
"""
import logging
import subprocess
import time
from dataclasses import dataclass, field
from typing import Optional, Protocol

import docker
from docker.errors import APIError, ContainerError, ImageNotFound

from autoheal.core.config import BUILD_TIMEOUT, DOCKER_IMAGE

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Execution Result
# ---------------------------------------------------------------------------
@dataclass
class ExecutionResult:
    """
    Structured output from a single command.

    Fields
    ------
    exit_code : int
        Process exit code (0 = success, -1 = infrastructure failure).
    stdout / stderr : str
        Captured streams (the Docker sandbox merges both into stdout).
    full_log : str
        stdout followed by stderr.
    log_excerpt : str
        First + last lines of full_log for previews.
    execution_time_seconds : float
        Wall clock duration.
    environment_metadata : dict
        Where the command ran (cwd or image/container id).
    error : str | None
        Set only when the command could not be run at all.
    """
    exit_code: int = -1
    stdout: str = ""
    stderr: str = ""
    full_log: str = ""
    log_excerpt: str = ""
    execution_time_seconds: float = 0.0
    environment_metadata: dict = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0


_EXCERPT_HEAD_LINES = 30
_EXCERPT_TAIL_LINES = 30


def create_log_excerpt(full_log: str,
                       head: int = _EXCERPT_HEAD_LINES,
                       tail: int = _EXCERPT_TAIL_LINES) -> str:
    """Keep the first ``head`` and last ``tail`` lines of a long log."""
    lines = full_log.splitlines()
    total = len(lines)

    if total <= head + tail:
        return full_log

    omitted = total - head - tail
    return "\n".join(lines[:head] + [f"\n... ({omitted} lines omitted) ...\n"] + lines[-tail:])


def _finalize(result: ExecutionResult, start_time: float) -> ExecutionResult:
    result.full_log = "\n".join(part for part in (result.stdout, result.stderr) if part)
    result.log_excerpt = create_log_excerpt(result.full_log)
    result.execution_time_seconds = round(time.monotonic() - start_time, 3)
    return result


class CommandExecutor(Protocol):
    def run(self, command: str, timeout_seconds: Optional[float] = None) -> ExecutionResult:
        ...


# ---------------------------------------------------------------------------
# Local subprocess
# ---------------------------------------------------------------------------
class ShellExecutor:
    """Runs commands with ``subprocess.run`` inside ``cwd``."""

    def __init__(self, cwd: str, default_timeout: float = BUILD_TIMEOUT):
        self.cwd = cwd
        self.default_timeout = default_timeout

    def run(self, command: str, timeout_seconds: Optional[float] = None) -> ExecutionResult:
        timeout = timeout_seconds or self.default_timeout
        result = ExecutionResult(environment_metadata={"cwd": self.cwd, "timeout_applied": timeout})
        start_time = time.monotonic()

        try:
            completed = subprocess.run(
                command,
                shell=True,
                cwd=self.cwd,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
            result.exit_code = completed.returncode
            result.stdout = completed.stdout or ""
            result.stderr = completed.stderr or ""
        except subprocess.TimeoutExpired as e:
            result.exit_code = -1
            result.stdout = _decode(e.stdout)
            result.stderr = _decode(e.stderr)
            result.error = f"Command timed out after {timeout}s: {command}"
            logger.error(result.error)
        except OSError as e:
            result.exit_code = -1
            result.error = f"Could not run command: {e}"
            logger.error(result.error)

        _finalize(result, start_time)
        logger.debug("exec [%s] exit=%d (%.2fs)", command, result.exit_code, result.execution_time_seconds)
        return result


def _decode(raw) -> str:
    if raw is None:
        return ""
    if isinstance(raw, bytes):
        return raw.decode("utf-8", errors="replace")
    return raw


# ---------------------------------------------------------------------------
# Docker sandbox
# ---------------------------------------------------------------------------
_MEMORY_LIMIT = "2g"
_CPU_COUNT = 2


class DockerSandboxExecutor:
    """
    Runs each command in a fresh container with the workspace mounted rw.

    The container is always removed, whatever the outcome.
    """

    def __init__(self, workspace_path: str, image: str = DOCKER_IMAGE,
                 default_timeout: float = BUILD_TIMEOUT, client=None):
        self.workspace_path = workspace_path
        self.image = image
        self.default_timeout = default_timeout
        self._client = client

    def _docker(self):
        if self._client is None:
            self._client = docker.from_env()
        return self._client

    def run(self, command: str, timeout_seconds: Optional[float] = None) -> ExecutionResult:
        timeout = timeout_seconds or self.default_timeout
        result = ExecutionResult()
        start_time = time.monotonic()
        container = None

        try:
            logger.info("Starting sandbox | image=%s | timeout=%ss | cmd=%s", self.image, timeout, command)
            container = self._docker().containers.run(
                image=self.image,
                command=["bash", "-c", command],
                volumes={self.workspace_path: {"bind": "/workspace", "mode": "rw"}},
                environment={"CI": "true"},
                working_dir="/workspace",
                mem_limit=_MEMORY_LIMIT,
                nano_cpus=_CPU_COUNT * 1_000_000_000,
                name=f"autoheal-sandbox-{int(time.time() * 1000)}",
                labels={"project": "autoheal", "role": "sandbox"},
                detach=True,
                stdout=True,
                stderr=True,
            )

            wait_result = container.wait(timeout=timeout)
            result.exit_code = wait_result.get("StatusCode", -1)
            result.stdout = container.logs(stdout=True, stderr=True).decode("utf-8", errors="replace")
            result.environment_metadata = {
                "image": self.image,
                "container_id": container.short_id,
                "timeout_applied": timeout,
            }

        except ImageNotFound:
            result.error = f"Docker image '{self.image}' not found."
            result.exit_code = -1
            logger.error(result.error)

        except ContainerError as e:
            result.error = f"Container execution error: {e}"
            result.exit_code = getattr(e, "exit_status", -1)
            result.stderr = str(e)
            logger.error(result.error)

        except APIError as e:
            result.error = f"Docker API error: {e}"
            result.exit_code = -1
            logger.error(result.error)

        except Exception as e:
            # The caller must always receive a result
            result.error = f"Unexpected executor error: {type(e).__name__}: {e}"
            result.exit_code = -1
            logger.exception(result.error)

        finally:
            if container is not None:
                try:
                    container.remove(force=True)
                except Exception:
                    logger.warning("Failed to remove container", exc_info=True)

        _finalize(result, start_time)
        logger.info("Sandbox complete | exit=%d | time=%.2fs", result.exit_code, result.execution_time_seconds)
        return result
