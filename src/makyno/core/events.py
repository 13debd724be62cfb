"""Session event stream.

Events are kept for the lifetime of the session; every call to
``subscribe()`` replays from the first event and then follows live ones, so
observers can attach (or re-attach) at any time.
"""

import asyncio
from datetime import UTC, datetime
from enum import Enum
from typing import Any, AsyncIterator, Dict, List

from pydantic import BaseModel, Field


class SessionEventType(str, Enum):
    """Kinds of session events."""
    MESSAGE = "message"  # assistant text or tool-call turn folded into history
    TOOL_STATE = "tool_state"
    APPROVAL_REQUESTED = "approval_requested"
    FINISHED = "finished"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_EVENTS = {SessionEventType.FINISHED, SessionEventType.FAILED, SessionEventType.CANCELLED}


class SessionEvent(BaseModel):
    """One observable step of a session."""
    type: SessionEventType
    task_id: str
    sequence: int
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    data: Dict[str, Any] = Field(default_factory=dict)


class SessionEventStream:
    """Append-only event log with any number of independent async readers."""

    def __init__(self, task_id: str):
        self.task_id = task_id
        self._events: List[SessionEvent] = []
        self._closed = False
        self._wakeup = asyncio.Event()

    @property
    def closed(self) -> bool:
        return self._closed

    def events(self) -> List[SessionEvent]:
        return list(self._events)

    def publish(self, event_type: SessionEventType, **data: Any) -> SessionEvent:
        if self._closed:
            raise RuntimeError(f"Event stream for {self.task_id} is closed")
        event = SessionEvent(
            type=event_type,
            task_id=self.task_id,
            sequence=len(self._events),
            data=data,
        )
        self._events.append(event)
        if event_type in TERMINAL_EVENTS:
            self._closed = True
        self._notify()
        return event

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._notify()

    def _notify(self) -> None:
        wakeup, self._wakeup = self._wakeup, asyncio.Event()
        wakeup.set()

    async def subscribe(self) -> AsyncIterator[SessionEvent]:
        """Yield every event from the start, then live events until the stream closes."""
        index = 0
        while True:
            while index < len(self._events):
                yield self._events[index]
                index += 1
            if self._closed:
                return
            await self._wakeup.wait()
