"""Tool gateway, approval broker and built-in tools."""

from .approval import ApprovalBroker, ApprovalOutcome, ApprovalRequest
from .base import Tool, ToolCall, ToolCallState, ToolContext, ToolKind, ToolResult
from .gateway import ToolGateway
from .registry import ToolRegistry, default_registry

__all__ = [
    "ApprovalBroker",
    "ApprovalOutcome",
    "ApprovalRequest",
    "Tool",
    "ToolCall",
    "ToolCallState",
    "ToolContext",
    "ToolGateway",
    "ToolKind",
    "ToolRegistry",
    "ToolResult",
    "default_registry",
]
