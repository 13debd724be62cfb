"""Task record model, stored as one JSON document per task."""

from datetime import UTC, datetime
from enum import Enum
from typing import Optional, List

from pydantic import BaseModel, ConfigDict, Field, field_serializer
from pydantic.alias_generators import to_camel


class TaskStatus(str, Enum):
    """Task status values."""
    BACKLOG = "backlog"
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    WAIT_APPROVAL = "wait_approval"  # Implementation finished, waiting for human review
    DONE = "done"
    REJECTED = "rejected"


class LogSeverity(str, Enum):
    """Severity of an activity log entry."""
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


# Status -> timestamp field set the first time that status is entered
STATUS_TIMESTAMP_FIELDS = {
    TaskStatus.IN_PROGRESS: "started_at",
    TaskStatus.WAIT_APPROVAL: "implemented_at",
    TaskStatus.DONE: "completed_at",
    TaskStatus.REJECTED: "rejected_at",
}


class _Record(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
    )


class ActivityLog(_Record):
    """One entry in a task's append-only activity log."""
    timestamp: datetime
    message: str
    severity: LogSeverity = Field(default=LogSeverity.INFO, alias="type")

    @field_serializer("timestamp")
    def serialize_datetime(self, v: datetime) -> str:
        return v.isoformat()


class MergeMetadata(_Record):
    """What the task branch contains relative to the base branch."""
    branch: Optional[str] = None
    commits: int = 0
    files_changed: List[str] = Field(default_factory=list)
    diff: str = ""


class Task(_Record):
    """Durable unit of work and its status history."""

    id: str
    title: str
    description: str
    status: TaskStatus = TaskStatus.BACKLOG
    created_at: datetime

    started_at: Optional[datetime] = None
    implemented_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None

    rejection_reason: Optional[str] = None
    logs: List[ActivityLog] = Field(default_factory=list)
    metadata: Optional[MergeMetadata] = None

    @field_serializer("created_at", "started_at", "implemented_at", "completed_at", "rejected_at")
    def serialize_datetime(self, v: Optional[datetime]) -> Optional[str]:
        return v.isoformat() if v else None

    def add_log(self, message: str, severity: LogSeverity = LogSeverity.INFO) -> ActivityLog:
        """Append an activity entry. Entries are never removed or reordered."""
        entry = ActivityLog(timestamp=datetime.now(UTC), message=message, severity=severity)
        self.logs.append(entry)
        return entry

    def stamp(self, status: TaskStatus, when: Optional[datetime] = None) -> bool:
        """Set the timestamp owned by ``status`` unless it is already set.

        Returns True if the timestamp was written by this call.
        """
        field_name = STATUS_TIMESTAMP_FIELDS.get(TaskStatus(status))
        if field_name is None or getattr(self, field_name) is not None:
            return False
        setattr(self, field_name, when or datetime.now(UTC))
        return True

    def summary(self) -> dict:
        """Compact view handed to the reasoning step by the task tools."""
        return self.model_dump(
            mode="json",
            by_alias=True,
            include={
                "id", "title", "description", "status", "created_at",
                "started_at", "implemented_at", "completed_at",
            },
        )
