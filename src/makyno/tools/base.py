"""Tool contract shared by every tool the gateway can dispatch."""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, ClassVar, Dict, List, Optional, Protocol, Type

from pydantic import BaseModel, ConfigDict, Field

from ..core.config import CommandConfig

if TYPE_CHECKING:
    from ..core.events import SessionEventStream
    from ..core.task import Task
    from ..workspace.sandbox_manager import SandboxHandle


class ToolKind(str, Enum):
    """Static capability class, fixed when the tool is defined."""
    INSPECT = "inspect"  # read-only, auto-approved
    MUTATE = "mutate"  # side effects, approval-gated


class ToolCallState(str, Enum):
    """Lifecycle of one tool call."""
    PENDING = "pending"
    AWAITING_APPROVAL = "awaiting-approval"
    APPROVED = "approved"
    DENIED = "denied"
    EXECUTING = "executing"
    COMPLETED = "completed"
    ERRORED = "errored"


class ToolCall(BaseModel):
    """A single tool invocation requested by the reasoning step."""
    id: str
    tool_name: str
    input: Dict[str, Any] = Field(default_factory=dict)
    needs_approval: bool = False
    state: ToolCallState = ToolCallState.PENDING
    approval_id: Optional[str] = None


class ToolResult(BaseModel):
    """Structured outcome of a tool call. Failures are data, never exceptions."""
    call_id: str
    tool_name: str
    success: bool
    output: Optional[Dict[str, Any]] = None
    error: Optional[Dict[str, Any]] = None
    denied: bool = False

    def to_content(self) -> str:
        """Serialized form folded into the session's message history."""
        if self.success:
            return json.dumps(self.output, default=str)
        payload: Dict[str, Any] = {"success": False, "error": self.error}
        if self.denied:
            payload["denied"] = True
        return json.dumps(payload, default=str)


class ToolInput(BaseModel):
    """Base for tool input schemas; unknown keys are rejected."""
    model_config = ConfigDict(extra="forbid")


class TaskDirectory(Protocol):
    """The slice of the lifecycle boundary that task tools may call."""

    def list(self) -> List["Task"]: ...

    async def create(self, title: str, description: str) -> "Task": ...

    async def transition(self, task_id: str, target: str, reason: Optional[str] = None) -> "Task": ...


@dataclass
class ToolContext:
    """Everything a tool needs to act on behalf of one session."""
    task_id: str
    sandbox: "SandboxHandle"
    commands: CommandConfig
    tasks: Optional[TaskDirectory] = None
    events: Optional["SessionEventStream"] = None


class Tool(ABC):
    """Base class for tools.

    Subclasses declare ``name``, ``description``, ``kind`` and the pydantic
    ``input_model`` / ``output_model``; the gateway validates input against
    ``input_model`` before ``run`` is ever called.
    """

    name: ClassVar[str]
    description: ClassVar[str]
    kind: ClassVar[ToolKind]
    input_model: ClassVar[Type[ToolInput]]
    output_model: ClassVar[Type[BaseModel]]

    @property
    def needs_approval(self) -> bool:
        return self.kind is ToolKind.MUTATE

    @abstractmethod
    async def run(self, params: ToolInput, ctx: ToolContext) -> BaseModel:
        """Execute the tool. Raise a MakynoError subclass for recoverable failures."""

    def spec(self) -> Dict[str, Any]:
        """Function-calling schema handed to the reasoning backend."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.input_model.model_json_schema(),
            },
        }
