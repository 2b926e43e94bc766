"""
Checkpoint Stores
=================
Transaction log for the self-heal engine: named, restorable states of one
workspace.

Operations:
    head()          — id of the current committed state
    snapshot()      — non-destructive capture of the working tree (incl. uncommitted changes)
    restore(id)     — make the working tree match a snapshot
    commit(label)   — record the working tree as a new checkpoint; returns its id
    reset(to)       — make the working tree match checkpoint ``to`` (history is kept)
    diff(against)   — textual diff of the working tree against a checkpoint
    release(id)     — snapshot no longer needed (optional)
    close()         — drop everything the store keeps outside the workspace (optional)

GitCheckpointStore:
    Backed by the workspace's git repository. Snapshots are ``git stash create``
    commits (HEAD when the tree is clean); reset/restore use
    ``git read-tree -u --reset`` plus ``git clean -fd`` so files added since the
    checkpoint are removed too. Commits use ``--no-verify --allow-empty``.

DirectoryCheckpointStore:
    Plain directory copies kept outside the workspace. For workspaces that are
    not git repositories.

Every failure is raised as CheckpointError.
"""
import difflib
import logging
import os
import shutil
import subprocess
import tempfile
import uuid
from abc import ABC, abstractmethod
from typing import List, Optional, Set

from autoheal.core.errors import CheckpointError

logger = logging.getLogger(__name__)


class CheckpointStore(ABC):
    @abstractmethod
    def head(self) -> str:
        ...

    @abstractmethod
    def snapshot(self) -> str:
        ...

    @abstractmethod
    def restore(self, snapshot_id: str) -> None:
        ...

    @abstractmethod
    def commit(self, label: str) -> str:
        ...

    @abstractmethod
    def reset(self, to: str) -> None:
        ...

    @abstractmethod
    def diff(self, against: str) -> str:
        ...

    def release(self, checkpoint_id: str) -> None:
        """Drop a snapshot that will not be restored. No-op unless the store holds copies."""

    def close(self) -> None:
        """Free whatever the store holds outside the workspace."""


# ---------------------------------------------------------------------------
# Git
# ---------------------------------------------------------------------------
class GitCheckpointStore(CheckpointStore):
    def __init__(self, workspace_path: str):
        self.workspace_path = workspace_path

    def _git(self, *args: str) -> str:
        try:
            completed = subprocess.run(
                ["git", *args],
                cwd=self.workspace_path,
                check=True,
                capture_output=True,
                text=True,
            )
        except subprocess.CalledProcessError as e:
            raise CheckpointError(f"git {' '.join(args)} failed: {(e.stderr or '').strip()}") from e
        except OSError as e:
            raise CheckpointError(f"git unavailable: {e}") from e
        return completed.stdout.strip()

    def head(self) -> str:
        return self._git("rev-parse", "HEAD")

    def snapshot(self) -> str:
        self._git("add", "-A")
        stash = self._git("stash", "create")
        snapshot_id = stash or self.head()
        logger.debug("Snapshot %s", snapshot_id[:12])
        return snapshot_id

    def _checkout_tree(self, ref: str) -> None:
        self._git("read-tree", "-u", "--reset", ref)
        self._git("clean", "-fd")

    def restore(self, snapshot_id: str) -> None:
        self._checkout_tree(snapshot_id)
        logger.info("Restored snapshot %s", snapshot_id[:12])

    def commit(self, label: str) -> str:
        self._git("add", "-A")
        self._git("commit", "--no-verify", "--allow-empty", "-m", label)
        sha = self.head()
        logger.info("Checkpoint %s: %s", sha[:12], label)
        return sha

    def reset(self, to: str) -> None:
        self._checkout_tree(to)
        logger.info("Working tree reset to %s", to[:12])

    def diff(self, against: str) -> str:
        self._git("add", "-A")
        return self._git("diff", "--cached", against)


# ---------------------------------------------------------------------------
# Directory copies
# ---------------------------------------------------------------------------
_SKIP_DIRS = {".git", "node_modules", "__pycache__", ".venv", "venv"}


def _ignore(_directory: str, names: List[str]) -> List[str]:
    return [name for name in names if name in _SKIP_DIRS]


class DirectoryCheckpointStore(CheckpointStore):
    """
    Checkpoints as full copies of the workspace under ``storage_dir``.

    Copies are pruned as they go stale: a snapshot is deleted once restored
    or released, and a commit deletes the head it supersedes unless that head
    was handed out by ``head()``. ``close()`` deletes every remaining copy
    (and the storage dir itself when the store created it).
    """

    def __init__(self, workspace_path: str, storage_dir: Optional[str] = None):
        self.workspace_path = os.path.abspath(workspace_path)
        if storage_dir and os.path.abspath(storage_dir).startswith(self.workspace_path + os.sep):
            raise CheckpointError("Checkpoint storage must live outside the workspace")
        self._owns_storage = storage_dir is None
        self.storage_dir = storage_dir or tempfile.mkdtemp(prefix="autoheal-checkpoints-")
        os.makedirs(self.storage_dir, exist_ok=True)
        self.labels = {}
        self._head: Optional[str] = None
        self._pinned: Set[str] = set()
        self._copies: Set[str] = set()

    def _path(self, checkpoint_id: str) -> str:
        path = os.path.join(self.storage_dir, checkpoint_id)
        if checkpoint_id not in self._copies or not os.path.isdir(path):
            raise CheckpointError(f"Unknown checkpoint: {checkpoint_id}")
        return path

    def _capture(self) -> str:
        checkpoint_id = uuid.uuid4().hex
        try:
            shutil.copytree(self.workspace_path, os.path.join(self.storage_dir, checkpoint_id), ignore=_ignore)
        except OSError as e:
            raise CheckpointError(f"Snapshot failed: {e}") from e
        self._copies.add(checkpoint_id)
        return checkpoint_id

    def _discard(self, checkpoint_id: Optional[str]) -> None:
        if checkpoint_id is None or checkpoint_id in self._pinned or checkpoint_id == self._head:
            return
        if checkpoint_id in self._copies:
            self._copies.discard(checkpoint_id)
            shutil.rmtree(os.path.join(self.storage_dir, checkpoint_id), ignore_errors=True)

    def _replace_tree(self, checkpoint_id: str) -> None:
        source = self._path(checkpoint_id)
        try:
            for name in os.listdir(self.workspace_path):
                if name in _SKIP_DIRS:
                    continue
                target = os.path.join(self.workspace_path, name)
                if os.path.isdir(target) and not os.path.islink(target):
                    shutil.rmtree(target)
                else:
                    os.remove(target)
            shutil.copytree(source, self.workspace_path, dirs_exist_ok=True)
        except OSError as e:
            raise CheckpointError(f"Restore of {checkpoint_id} failed: {e}") from e

    def head(self) -> str:
        if self._head is None:
            self.commit("initial")
        self._pinned.add(self._head)
        return self._head

    def snapshot(self) -> str:
        return self._capture()

    def restore(self, snapshot_id: str) -> None:
        self._replace_tree(snapshot_id)
        self._discard(snapshot_id)
        logger.info("Restored snapshot %s", snapshot_id[:12])

    def release(self, checkpoint_id: str) -> None:
        self._discard(checkpoint_id)

    def commit(self, label: str) -> str:
        checkpoint_id = self._capture()
        previous, self._head = self._head, checkpoint_id
        self.labels[checkpoint_id] = label
        self._discard(previous)
        logger.info("Checkpoint %s: %s", checkpoint_id[:12], label)
        return checkpoint_id

    def reset(self, to: str) -> None:
        self._replace_tree(to)
        logger.info("Working tree reset to %s", to[:12])

    def diff(self, against: str) -> str:
        base = self._path(against)
        chunks: List[str] = []
        for rel in sorted(_list_files(base) | _list_files(self.workspace_path)):
            before = _read_lines(os.path.join(base, rel))
            after = _read_lines(os.path.join(self.workspace_path, rel))
            if before != after:
                chunks.extend(difflib.unified_diff(before, after, f"a/{rel}", f"b/{rel}"))
        return "".join(chunks)

    def history(self) -> List[str]:
        return list(self.labels.values())

    def close(self) -> None:
        for checkpoint_id in list(self._copies):
            shutil.rmtree(os.path.join(self.storage_dir, checkpoint_id), ignore_errors=True)
        self._copies.clear()
        self._pinned.clear()
        self._head = None
        if self._owns_storage:
            shutil.rmtree(self.storage_dir, ignore_errors=True)
        logger.debug("Checkpoint storage %s cleaned up", self.storage_dir)


def _list_files(root: str) -> set:
    found = set()
    for directory, dirs, files in os.walk(root):
        dirs[:] = [d for d in dirs if d not in _SKIP_DIRS]
        for name in files:
            found.add(os.path.relpath(os.path.join(directory, name), root).replace(os.sep, "/"))
    return found


def _read_lines(path: str) -> List[str]:
    if not os.path.isfile(path):
        return []
    with open(path, "r", encoding="utf-8", errors="replace") as f:
        return f.readlines()
