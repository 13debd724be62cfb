"""Error taxonomy for the orchestration core.

Validation, not-found and invalid-transition errors are recoverable: they are
returned to the caller (or folded into a tool result) and never end a session.
"""

from typing import Any, Dict, Optional


class MakynoError(Exception):
    """Base class for all orchestration errors."""

    code = "MakynoError"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        """Structured form used in failed tool results."""
        data: Dict[str, Any] = {"error_type": self.code, "message": self.message}
        if self.details:
            data["details"] = self.details
        return data


class ValidationError(MakynoError):
    """Tool input did not match the declared schema or violated a constraint."""

    code = "ValidationError"


class NotFoundError(MakynoError):
    """Unknown task, approval, file or content."""

    code = "NotFoundError"


class ContentNotFoundError(NotFoundError):
    """Edit target substring not present in the file."""

    code = "ContentNotFound"


class InvalidTransitionError(MakynoError):
    """Requested status is not reachable from the current status."""

    code = "InvalidTransitionError"

    def __init__(self, task_id: str, current: str, target: str):
        super().__init__(
            f"Cannot move {task_id} from {current} to {target}",
            task_id=task_id,
            current=current,
            target=target,
        )


class ConflictError(MakynoError):
    """A sandbox or branch for the task already exists, or the repository is not in the expected state."""

    code = "ConflictError"


class ExecutionError(MakynoError):
    """A tool failed while executing (infrastructure failure, not a command exit code)."""

    code = "ExecutionError"


class StorageError(MakynoError, OSError):
    """Persisting a task record failed after retry."""

    code = "IOError"


class AlreadyResolvedError(MakynoError):
    """An approval request was resolved twice."""

    code = "AlreadyResolvedError"


class MergeConflictError(MakynoError):
    """Merging the task branch into the base branch conflicted."""

    code = "MergeConflict"

    def __init__(self, message: str, conflicted_files: Optional[list] = None):
        super().__init__(message, conflicted_files=conflicted_files or [])
        self.conflicted_files = conflicted_files or []


class IncompleteError(MakynoError):
    """A session hit its round ceiling without producing a final answer."""

    code = "IncompleteError"

    def __init__(self, task_id: str, rounds: int):
        super().__init__(
            f"Session for {task_id} stopped after {rounds} rounds without finishing",
            task_id=task_id,
            rounds=rounds,
        )
        self.rounds = rounds
