"""Approval-gated agent orchestration over git worktree sandboxes."""

__version__ = "0.1.0"
