"""
Unit Tests — Command Executor / Build Runner
============================================
Project detection, command resolution, log excerpting, the local shell
executor and the Docker sandbox (mocked).

No real Docker daemon is required to run these tests.
"""
import pytest
from unittest.mock import patch, MagicMock

from docker.errors import ImageNotFound

from autoheal.executor.project_detector import detect_project_type
from autoheal.executor.build_runner import BuildCommands, BuildRunner, resolve_commands
from autoheal.executor.command_executor import (
    DockerSandboxExecutor,
    ExecutionResult,
    ShellExecutor,
    create_log_excerpt,
)


# ---------------------------------------------------------------------------
# 1. Project Detection
# ---------------------------------------------------------------------------
class TestProjectDetector:

    def test_detect_typescript_before_node(self, tmp_path):
        (tmp_path / "package.json").write_text("{}\n")
        (tmp_path / "tsconfig.json").write_text("{}\n")
        assert detect_project_type(str(tmp_path)) == "typescript"

    def test_detect_node_from_package_json(self, tmp_path):
        (tmp_path / "package.json").write_text("{}\n")
        assert detect_project_type(str(tmp_path)) == "node"

    def test_detect_python_from_pyproject(self, tmp_path):
        (tmp_path / "pyproject.toml").write_text("[project]\n")
        assert detect_project_type(str(tmp_path)) == "python"

    def test_detect_go_from_go_mod(self, tmp_path):
        (tmp_path / "go.mod").write_text("module example\n")
        assert detect_project_type(str(tmp_path)) == "go"

    def test_returns_none_for_empty_dir(self, tmp_path):
        assert detect_project_type(str(tmp_path)) is None

    def test_returns_none_for_nonexistent_dir(self):
        assert detect_project_type("/nonexistent/path/xyz") is None


# ---------------------------------------------------------------------------
# 2. Command Resolution
# ---------------------------------------------------------------------------
class TestCommandResolution:

    def test_typescript_commands(self):
        cmds = resolve_commands("typescript")
        assert "tsc" in cmds.build_command
        assert cmds.test_command == "npm test"

    def test_unknown_type_always_succeeds(self):
        cmds = resolve_commands(None)
        assert cmds.project_type == "unknown"
        assert cmds.build_command == "true"

    def test_explicit_commands_win(self):
        cmds = resolve_commands("python", build_command="make", test_command="make check")
        assert cmds.build_command == "make"
        assert cmds.test_command == "make check"
        assert cmds.project_type == "python"

    def test_env_override(self):
        with patch("autoheal.executor.build_runner.BUILD_COMMAND", "custom-build"):
            assert resolve_commands("go").build_command == "custom-build"

    def test_commands_are_frozen(self):
        cmds = resolve_commands("rust")
        with pytest.raises(AttributeError):
            cmds.build_command = "something else"


# ---------------------------------------------------------------------------
# 3. Log Excerpt
# ---------------------------------------------------------------------------
class TestLogExcerpt:

    def test_short_log_returned_as_is(self):
        log = "line1\nline2\nline3"
        assert create_log_excerpt(log) == log

    def test_long_log_truncated(self):
        full = "\n".join(f"line {i}" for i in range(200))
        excerpt = create_log_excerpt(full, head=5, tail=5)
        assert "line 0" in excerpt
        assert "line 199" in excerpt
        assert "omitted" in excerpt

    def test_empty_log(self):
        assert create_log_excerpt("") == ""


# ---------------------------------------------------------------------------
# 4. Shell Executor (real subprocess)
# ---------------------------------------------------------------------------
class TestShellExecutor:

    def test_captures_stdout_and_exit_code(self, tmp_path):
        (tmp_path / "hello.txt").write_text("hi\n")
        result = ShellExecutor(str(tmp_path)).run("cat hello.txt")
        assert result.succeeded
        assert result.stdout == "hi\n"
        assert result.environment_metadata["cwd"] == str(tmp_path)

    def test_failing_command_is_returned_not_raised(self, tmp_path):
        result = ShellExecutor(str(tmp_path)).run("echo oops >&2; exit 3")
        assert result.exit_code == 3
        assert "oops" in result.full_log
        assert result.error is None

    def test_timeout_returns_error(self, tmp_path):
        result = ShellExecutor(str(tmp_path)).run("sleep 5", timeout_seconds=0.2)
        assert result.exit_code == -1
        assert "timed out" in result.error


# ---------------------------------------------------------------------------
# 5. Build Runner
# ---------------------------------------------------------------------------
class TestBuildRunner:

    def test_for_workspace_detects_type(self, tmp_path):
        (tmp_path / "go.mod").write_text("module example\n")
        runner = BuildRunner.for_workspace(str(tmp_path), MagicMock())
        assert runner.commands.project_type == "go"

    def test_build_and_test_use_executor(self):
        executor = MagicMock()
        executor.run.return_value = ExecutionResult(exit_code=0)
        runner = BuildRunner(executor, BuildCommands("make", "make test", "unknown"), timeout_seconds=12)

        assert runner.build().succeeded
        executor.run.assert_called_with("make", 12)
        runner.test()
        executor.run.assert_called_with("make test", 12)


# ---------------------------------------------------------------------------
# 6. Docker Sandbox (Mocked Docker)
# ---------------------------------------------------------------------------
class TestDockerSandboxMocked:

    def _client(self, exit_code=0, logs=b"OK\n"):
        container = MagicMock()
        container.wait.return_value = {"StatusCode": exit_code}
        container.logs.return_value = logs
        container.short_id = "abc123"
        client = MagicMock()
        client.containers.run.return_value = container
        return client, container

    def test_successful_execution(self, tmp_path):
        client, container = self._client(logs=b"build ok\n")
        result = DockerSandboxExecutor(str(tmp_path), client=client).run("make")

        assert result.exit_code == 0
        assert "build ok" in result.full_log
        assert result.environment_metadata["container_id"] == "abc123"
        kwargs = client.containers.run.call_args.kwargs
        assert kwargs["command"] == ["bash", "-c", "make"]
        assert kwargs["working_dir"] == "/workspace"
        container.remove.assert_called_once_with(force=True)

    def test_failed_execution_is_not_an_infra_error(self, tmp_path):
        client, _ = self._client(exit_code=2, logs=b"src/a.ts(1,1): error TS1005\n")
        result = DockerSandboxExecutor(str(tmp_path), client=client).run("tsc")
        assert result.exit_code == 2
        assert result.error is None

    def test_image_not_found_returns_error(self, tmp_path):
        client = MagicMock()
        client.containers.run.side_effect = ImageNotFound("missing")
        result = DockerSandboxExecutor(str(tmp_path), image="nope:latest", client=client).run("make")
        assert result.exit_code == -1
        assert "nope:latest" in result.error

    def test_container_always_cleaned_up(self, tmp_path):
        client, container = self._client()
        container.logs.side_effect = Exception("log error")
        result = DockerSandboxExecutor(str(tmp_path), client=client).run("make")

        container.remove.assert_called_once_with(force=True)
        assert result.error is not None

    @patch("autoheal.executor.command_executor.docker")
    def test_client_created_lazily_from_env(self, mock_docker, tmp_path):
        client, _ = self._client()
        mock_docker.from_env.return_value = client
        DockerSandboxExecutor(str(tmp_path)).run("make")
        mock_docker.from_env.assert_called_once()
