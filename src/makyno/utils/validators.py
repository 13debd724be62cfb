"""Validation utilities for branch names, identifiers and sandbox paths."""

import re
from pathlib import Path
from typing import Union


def validate_branch_name(branch_name: str) -> str:
    """
    Validate git branch name.

    Raises:
        ValueError: If branch name is invalid
    """
    if not branch_name:
        raise ValueError("Branch name cannot be empty")

    # Strict whitelist
    if not re.match(r'^[a-zA-Z0-9/_-]+$', branch_name):
        raise ValueError(f"Invalid branch name: {branch_name}")

    if branch_name.startswith('/') or branch_name.endswith('/'):
        raise ValueError("Branch name cannot start or end with /")

    if '..' in branch_name or '@{' in branch_name:
        raise ValueError("Branch name contains invalid sequence")

    if len(branch_name) > 255:
        raise ValueError("Branch name too long")

    return branch_name


def validate_identifier(value: str, name: str = "identifier") -> str:
    """
    Validate a task id to prevent path traversal.

    Raises:
        ValueError: If identifier is invalid
    """
    if not value:
        raise ValueError(f"{name} cannot be empty")

    # Only allow alphanumeric, dash, underscore
    if not re.match(r'^[a-zA-Z0-9_-]+$', value):
        raise ValueError(f"Invalid {name}: {value}")

    if len(value) > 128:
        raise ValueError(f"{name} too long")

    return value


def resolve_inside(root: Path, relative: Union[str, Path]) -> Path:
    """
    Resolve ``relative`` against ``root`` and require the result to stay inside it.

    Absolute paths, ``..`` segments and symlinks that lead outside the root are
    all rejected after resolution.

    Raises:
        ValueError: If the resolved path escapes ``root``
    """
    root = Path(root).resolve()
    candidate = (root / relative).resolve()
    if candidate != root and root not in candidate.parents:
        raise ValueError(f"Path escapes sandbox root: {relative}")
    return candidate
