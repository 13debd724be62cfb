"""Error taxonomy for the orchestration core."""

from .exceptions import (
    AlreadyResolvedError,
    ConflictError,
    ContentNotFoundError,
    ExecutionError,
    IncompleteError,
    InvalidTransitionError,
    MakynoError,
    MergeConflictError,
    NotFoundError,
    StorageError,
    ValidationError,
)

__all__ = [
    "AlreadyResolvedError",
    "ConflictError",
    "ContentNotFoundError",
    "ExecutionError",
    "IncompleteError",
    "InvalidTransitionError",
    "MakynoError",
    "MergeConflictError",
    "NotFoundError",
    "StorageError",
    "ValidationError",
]
