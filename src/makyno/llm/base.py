"""Base reasoning backend interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class ToolCallRequest:
    """One tool call requested by the model."""
    id: str
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ReasoningStep:
    """Response from a reasoning backend: final text, or tool calls to run first."""
    content: str = ""
    tool_calls: List[ToolCallRequest] = field(default_factory=list)
    model_used: Optional[str] = None
    input_tokens: int = 0
    output_tokens: int = 0
    finish_reason: str = "stop"
    latency_ms: float = 0.0

    @property
    def is_final(self) -> bool:
        return not self.tool_calls


class ReasoningBackend(ABC):
    """Abstract base class for reasoning backends.

    Messages use the OpenAI chat format: ``system``/``user``/``assistant``
    turns, assistant turns may carry ``tool_calls``, and each tool result is a
    ``tool`` turn with the matching ``tool_call_id``.
    """

    @abstractmethod
    async def complete(
        self,
        messages: List[Dict[str, Any]],
        tools: List[Dict[str, Any]],
        task_id: Optional[str] = None,
    ) -> ReasoningStep:
        """
        Run one reasoning step over the accumulated history.

        Args:
            messages: Full message history, oldest first.
            tools: Function-calling specs of the tools the model may request.
            task_id: Optional task identifier for logging.
        """
        pass

    def cancel(self) -> None:
        """Cancel any in-flight request. Default no-op for backends that
        don't support cancellation."""
        pass
