"""Per-task sandbox management."""

from .sandbox_manager import SandboxHandle, SandboxManager

__all__ = ["SandboxHandle", "SandboxManager"]
