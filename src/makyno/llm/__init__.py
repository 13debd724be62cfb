"""Reasoning backends."""

from .base import ReasoningBackend, ReasoningStep, ToolCallRequest

__all__ = ["ReasoningBackend", "ReasoningStep", "ToolCallRequest"]
