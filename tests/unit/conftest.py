"""Shared fixtures for unit tests."""

from datetime import UTC, datetime
from pathlib import Path

import pytest

from makyno.core.config import CommandConfig
from makyno.store.feature_store import FeatureStore
from makyno.tools.base import ToolContext
from makyno.workspace.sandbox_manager import SandboxHandle, SandboxManager

from tests.unit.helpers import git


@pytest.fixture
def git_repo(tmp_path):
    """A repository on ``main`` with one commit."""
    repo = tmp_path / "repo"
    repo.mkdir()
    git(repo, "init", "-q")
    git(repo, "symbolic-ref", "HEAD", "refs/heads/main")
    git(repo, "config", "user.email", "dev@example.com")
    git(repo, "config", "user.name", "Dev")
    git(repo, "config", "commit.gpgsign", "false")
    (repo / "README.md").write_text("# Demo\n")
    (repo / "app.py").write_text("def greet():\n    return 'hello'\n")
    git(repo, "add", "-A")
    git(repo, "commit", "-q", "-m", "Initial commit")
    return repo


@pytest.fixture
def sandboxes(git_repo):
    return SandboxManager(repo_root=git_repo, sandbox_root=git_repo / ".worktrees")


@pytest.fixture
def store(tmp_path):
    return FeatureStore(tmp_path / "data" / "features")


@pytest.fixture
def sandbox_root(tmp_path):
    root = tmp_path / "sandbox"
    root.mkdir()
    return root


@pytest.fixture
def tool_context(sandbox_root):
    """Context for a session whose sandbox is a plain directory."""
    handle = SandboxHandle(
        task_id="feat-1-abc123",
        root=sandbox_root,
        branch="feat/feat-1-abc123",
        created_at=datetime.now(UTC).isoformat(),
        base_branch="main",
        base_commit="0" * 40,
    )
    return ToolContext(
        task_id="feat-1-abc123",
        sandbox=handle,
        commands=CommandConfig(timeout_seconds=10, max_output_bytes=64 * 1024),
    )
