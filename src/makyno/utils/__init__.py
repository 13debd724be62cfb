"""Shared utility functions."""

from .atomic_io import atomic_write_model, atomic_write_text
from .process_utils import kill_process_tree
from .subprocess_utils import (
    ShellResult,
    SubprocessError,
    run_command,
    run_git_command,
    run_shell_command,
)
from .validators import resolve_inside, validate_branch_name, validate_identifier

__all__ = [
    # Atomic I/O
    "atomic_write_model",
    "atomic_write_text",
    # Process management
    "kill_process_tree",
    # Subprocess utilities
    "ShellResult",
    "SubprocessError",
    "run_command",
    "run_git_command",
    "run_shell_command",
    # Validators
    "resolve_inside",
    "validate_branch_name",
    "validate_identifier",
]
