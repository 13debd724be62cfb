"""Agent session: the bounded reason/act loop for one task and its sandbox."""

import asyncio
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..errors import IncompleteError
from ..llm.base import ReasoningBackend, ReasoningStep
from ..tools.approval import ApprovalBroker
from ..tools.base import ToolCall, ToolCallState, ToolContext, ToolResult
from ..tools.gateway import ToolGateway
from ..utils.rich_logging import task_logger
from .events import SessionEventStream, SessionEventType
from .task import LogSeverity, Task

logger = logging.getLogger(__name__)

DEFAULT_MAX_ROUNDS = 50

ActivityHook = Callable[[str, LogSeverity], Awaitable[None]]


class SessionState(str, Enum):
    """Session lifecycle."""
    CREATED = "created"
    RUNNING = "running"
    FINISHED = "finished"
    INCOMPLETE = "incomplete"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class SessionResult:
    """Final answer of a finished session."""
    task_id: str
    text: str
    rounds: int
    tool_calls: int


class AgentSession:
    """Drives one task through reasoning rounds and tool calls.

    Tool calls are dispatched strictly one at a time: a call is only issued
    once the result of the previous one has been folded into ``messages``.
    """

    def __init__(
        self,
        task: Task,
        backend: ReasoningBackend,
        gateway: ToolGateway,
        tool_context: ToolContext,
        *,
        system_prompt: str,
        max_rounds: int = DEFAULT_MAX_ROUNDS,
        on_activity: Optional[ActivityHook] = None,
    ):
        self.task_id = task.id
        self.task = task
        self.backend = backend
        self.gateway = gateway
        self.sandbox = tool_context.sandbox
        self.max_rounds = max_rounds
        self.on_activity = on_activity

        self.events = SessionEventStream(task.id)
        self.tool_context = tool_context
        self.tool_context.events = self.events

        self.messages: List[Dict[str, Any]] = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": self._task_prompt(task)},
        ]
        self.rounds = 0
        self.tool_calls: List[ToolCall] = []
        self.state = SessionState.CREATED
        self.log = task_logger(__name__, task.id)

    @staticmethod
    def _task_prompt(task: Task) -> str:
        return (
            f"Implement this feature.\n\n"
            f"Feature ID: {task.id}\n"
            f"Title: {task.title}\n\n"
            f"Description:\n{task.description}"
        )

    async def run(self) -> SessionResult:
        """
        Loop until the model answers without tool calls.

        Raises:
            IncompleteError: If ``max_rounds`` is reached first
            asyncio.CancelledError: If the session is cancelled
        """
        self.state = SessionState.RUNNING
        try:
            while self.rounds < self.max_rounds:
                self.rounds += 1
                self.log.phase_change("reasoning")
                step = await self.backend.complete(
                    self.messages, self.gateway.registry.specs(), task_id=self.task_id,
                )

                if step.is_final:
                    return self._finish(step)

                self._append_assistant(step)
                for request in step.tool_calls:
                    call = ToolCall(
                        id=request.id,
                        tool_name=request.name,
                        input=request.arguments,
                        needs_approval=self.gateway.registry.needs_approval(request.name),
                    )
                    self.tool_calls.append(call)
                    self.log.phase_change("tool_call")
                    await self._report_request(call)
                    result = await self.gateway.invoke(call, self.tool_context)
                    self._append_tool_result(result)
                    await self._report_result(call, result)

            raise IncompleteError(self.task_id, self.rounds)

        except asyncio.CancelledError:
            self.state = SessionState.CANCELLED
            self.backend.cancel()
            self._close(SessionEventType.CANCELLED, rounds=self.rounds)
            self.log.info("Session cancelled")
            raise
        except IncompleteError as e:
            self.state = SessionState.INCOMPLETE
            self._close(SessionEventType.FAILED, error=e.to_dict(), rounds=self.rounds)
            self.log.session_failed(e.message)
            raise
        except Exception as e:
            self.state = SessionState.FAILED
            self._close(SessionEventType.FAILED, error={"message": str(e)}, rounds=self.rounds)
            self.log.session_failed(str(e))
            raise

    def _close(self, event_type: SessionEventType, **data: Any) -> None:
        if not self.events.closed:
            self.events.publish(event_type, **data)

    def _finish(self, step: ReasoningStep) -> SessionResult:
        self.messages.append({"role": "assistant", "content": step.content})
        self.state = SessionState.FINISHED
        self.events.publish(SessionEventType.FINISHED, text=step.content, rounds=self.rounds)
        self.log.session_finished(self.rounds)
        return SessionResult(
            task_id=self.task_id,
            text=step.content,
            rounds=self.rounds,
            tool_calls=len(self.tool_calls),
        )

    def _append_assistant(self, step: ReasoningStep) -> None:
        message = {
            "role": "assistant",
            "content": step.content or None,
            "tool_calls": [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {"name": call.name, "arguments": json.dumps(call.arguments)},
                }
                for call in step.tool_calls
            ],
        }
        self.messages.append(message)
        self.events.publish(SessionEventType.MESSAGE, role="assistant", content=step.content,
                            tool_calls=[c.name for c in step.tool_calls])

    def _append_tool_result(self, result: ToolResult) -> None:
        self.messages.append({
            "role": "tool",
            "tool_call_id": result.call_id,
            "content": result.to_content(),
        })
        self.events.publish(SessionEventType.MESSAGE, role="tool", tool_name=result.tool_name,
                            success=result.success, denied=result.denied)

    async def _activity(self, message: str, severity: LogSeverity = LogSeverity.INFO) -> None:
        if self.on_activity is not None:
            await self.on_activity(message, severity)

    async def _report_request(self, call: ToolCall) -> None:
        if call.needs_approval:
            await self._activity(f"Requested {call.tool_name} - waiting for approval")

    async def _report_result(self, call: ToolCall, result: ToolResult) -> None:
        if call.state is ToolCallState.DENIED:
            await self._activity(f"{call.tool_name} was denied", LogSeverity.WARNING)
        elif call.state is ToolCallState.ERRORED:
            message = (result.error or {}).get("message", "unknown error")
            await self._activity(f"{call.tool_name} failed: {message}", LogSeverity.ERROR)
        elif call.needs_approval:
            await self._activity(f"{call.tool_name} completed", LogSeverity.SUCCESS)


class SessionRegistry:
    """Live sessions keyed by task id, at most one per task.

    Entries are added when a task enters in_progress and removed when the
    session ends or the task leaves in_progress.
    """

    def __init__(self, broker: ApprovalBroker):
        self.broker = broker
        self._sessions: Dict[str, AgentSession] = {}
        self._runners: Dict[str, asyncio.Task] = {}

    def register(self, session: AgentSession, runner: asyncio.Task) -> None:
        if session.task_id in self._sessions:
            raise RuntimeError(f"Session already registered for {session.task_id}")
        self._sessions[session.task_id] = session
        self._runners[session.task_id] = runner

    def get(self, task_id: str) -> Optional[AgentSession]:
        return self._sessions.get(task_id)

    def runner(self, task_id: str) -> Optional[asyncio.Task]:
        return self._runners.get(task_id)

    def __contains__(self, task_id: str) -> bool:
        return task_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def task_ids(self) -> List[str]:
        return list(self._sessions)

    def remove(self, task_id: str, session: Optional[AgentSession] = None) -> None:
        """Drop the entry, optionally only if it still belongs to ``session``."""
        if session is not None and self._sessions.get(task_id) is not session:
            return
        self._sessions.pop(task_id, None)
        self._runners.pop(task_id, None)

    async def cancel(self, task_id: str) -> bool:
        """Cancel a live session and its pending approvals, then wait for it to unwind."""
        session = self._sessions.pop(task_id, None)
        runner = self._runners.pop(task_id, None)
        if session is None or runner is None:
            return False

        runner.cancel()
        cancelled = self.broker.cancel_for_task(task_id)
        try:
            await runner
        except asyncio.CancelledError:
            # Expected from the runner; a cancellation aimed at the caller must propagate
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
        except Exception as e:
            logger.warning(f"Session for {task_id} raised while cancelling: {e}")
        logger.info(f"Cancelled session for {task_id} ({cancelled} pending approval(s) cancelled)")
        return True
