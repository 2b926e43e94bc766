"""
Checkpoint Store Tests
======================
DirectoryCheckpointStore against a real temp workspace; GitCheckpointStore
with subprocess mocked.
"""
import os
import subprocess
from unittest.mock import MagicMock, patch

import pytest

from autoheal.agents.checkpoints import DirectoryCheckpointStore, GitCheckpointStore
from autoheal.core.errors import CheckpointError


@pytest.fixture
def workspace(tmp_path):
    ws = tmp_path / "ws"
    ws.mkdir()
    (ws / "a.txt").write_text("one\n")
    (ws / "src").mkdir()
    (ws / "src" / "b.txt").write_text("two\n")
    return ws


@pytest.fixture
def store(tmp_path, workspace):
    return DirectoryCheckpointStore(str(workspace), storage_dir=str(tmp_path / "store"))


# ---------------------------------------------------------------------------
# Directory store
# ---------------------------------------------------------------------------
class TestDirectoryCheckpointStore:

    def test_head_is_stable_until_commit(self, store):
        head = store.head()
        assert store.head() == head
        assert store.history() == ["initial"]

    def test_snapshot_restore_round_trip(self, store, workspace):
        snap = store.snapshot()
        (workspace / "a.txt").write_text("changed\n")
        (workspace / "new.txt").write_text("added\n")

        store.restore(snap)

        assert (workspace / "a.txt").read_text() == "one\n"
        assert not (workspace / "new.txt").exists()
        assert (workspace / "src" / "b.txt").read_text() == "two\n"

    def test_commit_moves_head_and_reset_keeps_history(self, store, workspace):
        safe = store.head()
        (workspace / "a.txt").write_text("changed\n")
        committed = store.commit("self-heal: fix-1")
        assert store.head() == committed

        store.reset(safe)
        assert (workspace / "a.txt").read_text() == "one\n"
        assert store.history() == ["initial", "self-heal: fix-1"]

    def test_diff_shows_changes_against_checkpoint(self, store, workspace):
        safe = store.head()
        assert store.diff(safe) == ""

        (workspace / "a.txt").write_text("uno\n")
        diff = store.diff(safe)
        assert "--- a/a.txt" in diff
        assert "-one" in diff
        assert "+uno" in diff
        assert "src/b.txt" not in diff

    def test_unknown_checkpoint_raises(self, store):
        with pytest.raises(CheckpointError):
            store.restore("does-not-exist")

    def test_storage_inside_workspace_is_rejected(self, workspace):
        with pytest.raises(CheckpointError):
            DirectoryCheckpointStore(str(workspace), storage_dir=str(workspace / ".checkpoints"))

    def test_restored_and_released_snapshots_are_deleted(self, store, tmp_path):
        store.head()
        restored = store.snapshot()
        released = store.snapshot()
        assert len(list((tmp_path / "store").iterdir())) == 3

        store.restore(restored)
        store.release(released)

        assert sorted(p.name for p in (tmp_path / "store").iterdir()) == [store.head()]
        with pytest.raises(CheckpointError):
            store.restore(restored)

    def test_commit_prunes_superseded_head_but_keeps_handed_out_ones(self, store, workspace, tmp_path):
        safe = store.head()
        (workspace / "a.txt").write_text("v1\n")
        first = store.commit("self-heal: fix-1")
        (workspace / "a.txt").write_text("v2\n")
        second = store.commit("self-heal: fix-2")

        assert sorted(p.name for p in (tmp_path / "store").iterdir()) == sorted([safe, second])
        with pytest.raises(CheckpointError):
            store.diff(first)
        store.reset(safe)
        assert (workspace / "a.txt").read_text() == "one\n"
        assert store.history() == ["initial", "self-heal: fix-1", "self-heal: fix-2"]

    def test_close_removes_copies_and_owned_storage(self, workspace):
        store = DirectoryCheckpointStore(str(workspace))
        store.head()
        store.snapshot()
        storage = store.storage_dir
        assert os.path.isdir(storage)

        store.close()

        assert not os.path.exists(storage)
        assert (workspace / "a.txt").read_text() == "one\n"

    def test_close_keeps_caller_storage_dir(self, store, tmp_path):
        store.head()
        store.close()
        assert (tmp_path / "store").is_dir()
        assert list((tmp_path / "store").iterdir()) == []


# ---------------------------------------------------------------------------
# Git store (mocked git)
# ---------------------------------------------------------------------------
def _completed(stdout=""):
    return subprocess.CompletedProcess(args=[], returncode=0, stdout=stdout, stderr="")


class TestGitCheckpointStore:

    @patch("autoheal.agents.checkpoints.subprocess.run")
    def test_snapshot_uses_stash_create(self, mock_run):
        mock_run.side_effect = [_completed(), _completed("stash-sha\n")]
        assert GitCheckpointStore("/repo").snapshot() == "stash-sha"

        commands = [call.args[0] for call in mock_run.call_args_list]
        assert commands == [["git", "add", "-A"], ["git", "stash", "create"]]
        assert mock_run.call_args.kwargs["cwd"] == "/repo"

    @patch("autoheal.agents.checkpoints.subprocess.run")
    def test_snapshot_of_clean_tree_is_head(self, mock_run):
        mock_run.side_effect = [_completed(), _completed(""), _completed("head-sha\n")]
        assert GitCheckpointStore("/repo").snapshot() == "head-sha"

    @patch("autoheal.agents.checkpoints.subprocess.run")
    def test_reset_uses_read_tree_and_clean(self, mock_run):
        mock_run.return_value = _completed()
        GitCheckpointStore("/repo").reset("abc123")

        commands = [call.args[0] for call in mock_run.call_args_list]
        assert commands == [
            ["git", "read-tree", "-u", "--reset", "abc123"],
            ["git", "clean", "-fd"],
        ]

    @patch("autoheal.agents.checkpoints.subprocess.run")
    def test_commit_skips_hooks_and_returns_head(self, mock_run):
        mock_run.side_effect = [_completed(), _completed(), _completed("new-sha\n")]
        assert GitCheckpointStore("/repo").commit("self-heal: fix-1") == "new-sha"
        assert mock_run.call_args_list[1].args[0] == [
            "git", "commit", "--no-verify", "--allow-empty", "-m", "self-heal: fix-1",
        ]

    @patch("autoheal.agents.checkpoints.subprocess.run")
    def test_git_failure_becomes_checkpoint_error(self, mock_run):
        mock_run.side_effect = subprocess.CalledProcessError(128, ["git"], stderr="fatal: not a git repository")
        with pytest.raises(CheckpointError) as exc_info:
            GitCheckpointStore("/repo").head()
        assert "not a git repository" in str(exc_info.value)

    @patch("autoheal.agents.checkpoints.subprocess.run")
    def test_missing_git_binary(self, mock_run):
        mock_run.side_effect = FileNotFoundError("git")
        with pytest.raises(CheckpointError):
            GitCheckpointStore("/repo").diff("abc")
