"""Test helpers: git runner and scripted reasoning backends."""

import asyncio
import copy
import subprocess
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from makyno.llm.base import ReasoningBackend, ReasoningStep, ToolCallRequest


def git(repo: Path, *args: str) -> str:
    """Run git in ``repo`` and return stdout."""
    result = subprocess.run(
        ["git", *args], cwd=repo, capture_output=True, text=True, check=True,
    )
    return result.stdout


Step = Union[ReasoningStep, Callable[[List[Dict[str, Any]]], ReasoningStep]]


def tool_step(name: str, call_id: str = "call-1", **arguments) -> ReasoningStep:
    """A reasoning step that requests one tool call."""
    return ReasoningStep(tool_calls=[ToolCallRequest(id=call_id, name=name, arguments=arguments)])


def final_step(text: str = "Done") -> ReasoningStep:
    return ReasoningStep(content=text)


class ScriptedBackend(ReasoningBackend):
    """Replays a fixed list of steps and records the history it was shown.

    With ``repeat_last`` the final step is returned forever.
    """

    def __init__(self, steps: List[Step], repeat_last: bool = False):
        self.steps = list(steps)
        self.repeat_last = repeat_last
        self.seen: List[List[Dict[str, Any]]] = []
        self.tool_names: List[str] = []
        self.cancelled = False

    async def complete(self, messages, tools, task_id: Optional[str] = None) -> ReasoningStep:
        self.seen.append(copy.deepcopy(messages))
        self.tool_names = [t["function"]["name"] for t in tools]
        index = len(self.seen) - 1
        if index >= len(self.steps):
            if not self.repeat_last:
                raise AssertionError(f"Backend called {index + 1} times, only {len(self.steps)} steps scripted")
            index = len(self.steps) - 1
        step = self.steps[index]
        return step(messages) if callable(step) else step

    def cancel(self) -> None:
        self.cancelled = True


class HangingBackend(ReasoningBackend):
    """Never answers; used to cancel a session mid-reasoning."""

    def __init__(self):
        self.started = asyncio.Event()
        self.cancelled = False

    async def complete(self, messages, tools, task_id: Optional[str] = None) -> ReasoningStep:
        self.started.set()
        await asyncio.Event().wait()
        raise AssertionError("unreachable")

    def cancel(self) -> None:
        self.cancelled = True
