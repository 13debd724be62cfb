"""Git worktree sandboxes, one per task.

Each task in flight gets its own worktree on a branch derived from the task id,
so sessions can edit files and run commands without touching the user's
checkout or each other. Operations for one task id are serialized; different
task ids never wait on each other except for the short registry guard.
"""

import logging
import shutil
import subprocess
import threading
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from ..core.task import MergeMetadata
from ..errors import ConflictError, ExecutionError, MergeConflictError, NotFoundError
from ..utils.subprocess_utils import SubprocessError, run_git_command
from ..utils.validators import validate_branch_name, validate_identifier

logger = logging.getLogger(__name__)

GIT_TIMEOUT = 60


@dataclass
class SandboxHandle:
    """A live sandbox. Exists only while its task is in_progress or wait_approval."""
    task_id: str
    root: Path
    branch: str
    created_at: str
    base_branch: str
    base_commit: str  # base branch snapshot the sandbox was cut from

    def to_dict(self) -> Dict:
        data = asdict(self)
        data["root"] = str(self.root)
        return data


class SandboxManager:
    """Creates, merges and removes per-task git worktrees."""

    def __init__(
        self,
        repo_root: Path,
        sandbox_root: Path,
        base_branch: str = "main",
        branch_prefix: str = "feat/",
        keep_branch_on_remove: bool = False,
    ):
        """
        Args:
            repo_root: Repository the worktrees are attached to
            sandbox_root: Directory that holds one subdirectory per task
            base_branch: Branch sandboxes are cut from and merged back into
            branch_prefix: Prefix for task branch names
            keep_branch_on_remove: Keep task branches when a sandbox is removed
        """
        self.repo_root = Path(repo_root).resolve()
        self.sandbox_root = Path(sandbox_root).resolve()
        self.base_branch = validate_branch_name(base_branch)
        self.branch_prefix = branch_prefix
        self.keep_branch_on_remove = keep_branch_on_remove

        self._handles: Dict[str, SandboxHandle] = {}
        self._registry_guard = threading.Lock()
        self._task_locks: Dict[str, threading.Lock] = {}
        # The user's checkout is shared by every merge
        self._merge_lock = threading.Lock()

        self.sandbox_root.mkdir(parents=True, exist_ok=True)
        self._exclude_sandbox_root()

    def _lock_for(self, task_id: str) -> threading.Lock:
        with self._registry_guard:
            lock = self._task_locks.get(task_id)
            if lock is None:
                lock = self._task_locks[task_id] = threading.Lock()
            return lock

    def sandbox_path(self, task_id: str) -> Path:
        """Deterministic sandbox directory for a task."""
        return self.sandbox_root / validate_identifier(task_id, "task_id")

    def branch_name(self, task_id: str) -> str:
        """Deterministic branch name for a task."""
        return validate_branch_name(f"{self.branch_prefix}{validate_identifier(task_id, 'task_id')}")

    def get(self, task_id: str) -> Optional[SandboxHandle]:
        with self._registry_guard:
            return self._handles.get(task_id)

    def list_sandboxes(self) -> List[SandboxHandle]:
        with self._registry_guard:
            return list(self._handles.values())

    def create(self, task_id: str) -> SandboxHandle:
        """
        Create the sandbox for a task from the current tip of the base branch.

        Raises:
            ConflictError: If a sandbox directory or branch for the task already exists
            ExecutionError: If git fails
        """
        path = self.sandbox_path(task_id)
        branch = self.branch_name(task_id)

        with self._lock_for(task_id):
            if self.get(task_id) is not None or path.exists():
                raise ConflictError(f"Sandbox already exists for {task_id}: {path}", task_id=task_id)
            if self._branch_exists(branch):
                raise ConflictError(f"Branch already exists for {task_id}: {branch}", task_id=task_id)

            base_commit = self._git(["rev-parse", self.base_branch], cwd=self.repo_root).stdout.strip()
            self._git(
                ["worktree", "add", "-b", branch, str(path), base_commit],
                cwd=self.repo_root,
            )

            handle = SandboxHandle(
                task_id=task_id,
                root=path,
                branch=branch,
                created_at=datetime.now(timezone.utc).isoformat(),
                base_branch=self.base_branch,
                base_commit=base_commit,
            )
            with self._registry_guard:
                self._handles[task_id] = handle

        logger.info(f"Created sandbox: {path} (branch: {branch}, base: {base_commit[:8]})")
        return handle

    def remove(self, task_id: str, force: bool = False, keep_branch: Optional[bool] = None) -> bool:
        """
        Remove a task's sandbox directory and, unless kept, its branch.

        Idempotent: removing an absent sandbox is a no-op so teardown can be
        retried after a partial failure.

        Args:
            task_id: Task identifier
            force: Remove even if the worktree has uncommitted changes
            keep_branch: Override ``keep_branch_on_remove`` for this call

        Returns:
            True if anything was removed

        Raises:
            ConflictError: If the worktree is dirty and ``force`` is False
            ExecutionError: If git or the filesystem fails
        """
        path = self.sandbox_path(task_id)
        branch = self.branch_name(task_id)
        keep = self.keep_branch_on_remove if keep_branch is None else keep_branch
        removed = False

        with self._lock_for(task_id):
            if path.exists():
                if not force and self._has_uncommitted_changes(path):
                    raise ConflictError(
                        f"Sandbox has uncommitted changes, refusing to remove: {path}",
                        task_id=task_id,
                    )
                try:
                    shutil.rmtree(path)
                except OSError as e:
                    raise ExecutionError(f"Failed to remove sandbox {path}: {e}", task_id=task_id) from e
                removed = True

            # Drop git's tracking entry for the deleted worktree
            self._git(["worktree", "prune"], cwd=self.repo_root, check=False)

            if not keep and self._branch_exists(branch):
                self._git(["branch", "-D", branch], cwd=self.repo_root)
                removed = True

            with self._registry_guard:
                self._handles.pop(task_id, None)

        if removed:
            logger.info(f"Removed sandbox for {task_id} (branch {'kept' if keep else 'deleted'})")
        else:
            logger.debug(f"Sandbox for {task_id} already absent")
        return removed

    def commit_all(self, task_id: str, message: str) -> bool:
        """Commit everything in the sandbox on its branch. Returns False when clean."""
        path = self.sandbox_path(task_id)
        with self._lock_for(task_id):
            if not path.exists():
                raise NotFoundError(f"No sandbox for {task_id}", task_id=task_id)
            if not self._has_uncommitted_changes(path):
                return False
            self._git(["add", "-A"], cwd=path)
            self._git(["commit", "-m", message], cwd=path)
        logger.info(f"Committed sandbox changes for {task_id}")
        return True

    def describe(self, task_id: str) -> MergeMetadata:
        """Summarize the task branch relative to the base branch.

        Raises:
            NotFoundError: If the task branch does not exist
        """
        branch = self.branch_name(task_id)
        if not self._branch_exists(branch):
            raise NotFoundError(f"Branch not found for {task_id}: {branch}", task_id=task_id)

        merge_base = self._git(["merge-base", self.base_branch, branch], cwd=self.repo_root).stdout.strip()
        commits = self._git(["rev-list", "--count", f"{merge_base}..{branch}"], cwd=self.repo_root).stdout.strip()
        files = self._git(["diff", "--name-only", merge_base, branch], cwd=self.repo_root).stdout
        diff = self._git(["diff", merge_base, branch], cwd=self.repo_root).stdout

        return MergeMetadata(
            branch=branch,
            commits=int(commits or 0),
            files_changed=[line for line in files.splitlines() if line.strip()],
            diff=diff,
        )

    def merge(self, task_id: str) -> MergeMetadata:
        """
        Merge the task branch into the base branch in the main checkout.

        Uncommitted sandbox work is committed first. A conflicting merge is
        aborted and reported; it is never auto-resolved.

        Raises:
            NotFoundError: If the task branch does not exist
            ConflictError: If the main checkout is not on the base branch
            MergeConflictError: If the merge conflicts
            ExecutionError: If git fails for another reason
        """
        branch = self.branch_name(task_id)
        if self.sandbox_path(task_id).exists():
            self.commit_all(task_id, f"Work on {task_id}")

        with self._lock_for(task_id), self._merge_lock:
            metadata = self.describe(task_id)

            # Never switch the branch of the user's checkout
            current = self._git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=self.repo_root).stdout.strip()
            if current != self.base_branch:
                raise ConflictError(
                    f"Main checkout is on '{current}', not '{self.base_branch}'; "
                    f"switch it to {self.base_branch} before merging {branch}",
                    task_id=task_id,
                )

            try:
                run_git_command(
                    ["merge", "--no-ff", "--no-edit", "-m", f"Merge {branch}", branch],
                    cwd=self.repo_root,
                    timeout=GIT_TIMEOUT,
                )
            except subprocess.TimeoutExpired as e:
                self._git(["merge", "--abort"], cwd=self.repo_root, check=False)
                raise ExecutionError(f"Merging {branch} timed out", task_id=task_id) from e
            except SubprocessError as e:
                conflicted = self._git(
                    ["diff", "--name-only", "--diff-filter=U"], cwd=self.repo_root, check=False,
                ).stdout.splitlines()
                self._git(["merge", "--abort"], cwd=self.repo_root, check=False)
                if conflicted:
                    raise MergeConflictError(
                        f"Merging {branch} into {self.base_branch} conflicts in {len(conflicted)} file(s)",
                        conflicted_files=conflicted,
                    ) from e
                raise ExecutionError(f"Failed to merge {branch}: {e.stderr.strip()}", task_id=task_id) from e

        logger.info(f"Merged {branch} into {self.base_branch} ({metadata.commits} commit(s))")
        return metadata

    def _branch_exists(self, branch: str) -> bool:
        result = self._git(
            ["rev-parse", "--verify", "--quiet", f"refs/heads/{branch}"],
            cwd=self.repo_root,
            check=False,
        )
        return result.returncode == 0

    def _has_uncommitted_changes(self, path: Path) -> bool:
        result = self._git(["status", "--porcelain"], cwd=path, check=False)
        return bool(result.stdout.strip())

    def _exclude_sandbox_root(self) -> None:
        """Keep the sandbox directory out of the main checkout's status."""
        try:
            relative = self.sandbox_root.relative_to(self.repo_root)
        except ValueError:
            return
        result = self._git(["rev-parse", "--git-path", "info/exclude"], cwd=self.repo_root, check=False)
        if result.returncode != 0:
            return
        exclude = Path(result.stdout.strip())
        if not exclude.is_absolute():
            exclude = self.repo_root / exclude
        pattern = f"/{relative.as_posix()}/"
        existing = exclude.read_text().splitlines() if exclude.exists() else []
        if pattern not in existing:
            exclude.parent.mkdir(parents=True, exist_ok=True)
            with open(exclude, "a") as f:
                f.write(f"{pattern}\n")

    def _git(self, args: List[str], cwd: Path, check: bool = True):
        try:
            return run_git_command(args, cwd=cwd, check=check, timeout=GIT_TIMEOUT)
        except SubprocessError as e:
            raise ExecutionError(f"git {' '.join(args)} failed: {e.stderr.strip()}") from e
        except subprocess.TimeoutExpired as e:
            raise ExecutionError(f"git {' '.join(args)} timed out after {GIT_TIMEOUT}s") from e
