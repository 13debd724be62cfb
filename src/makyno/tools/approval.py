"""Pending approval requests for gated tool calls.

Each request owns an ``asyncio.Future``; the session awaiting the gated call
is parked on that future and resumes the moment ``resolve()`` (or a
cancellation) completes it. There is no timeout and no polling. Only the most
recent resolved requests are kept for lookup; older ones are forgotten.

The broker is bound to the event loop that runs the sessions; external
reviewers must call ``resolve`` from that loop.
"""

import asyncio
import logging
import uuid
from collections import OrderedDict
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..errors import AlreadyResolvedError, NotFoundError
from .base import ToolCall

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 256


class ApprovalOutcome(str, Enum):
    """How an approval request ended."""
    APPROVED = "approved"
    DENIED = "denied"
    CANCELLED = "cancelled"


class ApprovalRequest(BaseModel):
    """Pending human decision for one gated tool call."""
    id: str
    task_id: str
    tool_call_id: str
    tool_name: str
    tool_input: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    resolved: bool = False
    approved: Optional[bool] = None
    outcome: Optional[ApprovalOutcome] = None
    resolved_at: Optional[datetime] = None


class ApprovalBroker:
    """Single mutation point for approval decisions."""

    def __init__(self, history_limit: int = DEFAULT_HISTORY_LIMIT):
        self.history_limit = history_limit
        # Open requests; moved to _history once resolved or cancelled
        self._requests: Dict[str, ApprovalRequest] = {}
        self._history: "OrderedDict[str, ApprovalRequest]" = OrderedDict()
        self._waiters: Dict[str, asyncio.Future] = {}

    def open(self, task_id: str, call: ToolCall) -> ApprovalRequest:
        """Create the approval request for a gated call. Must run inside the event loop."""
        request = ApprovalRequest(
            id=f"apr-{uuid.uuid4().hex[:12]}",
            task_id=task_id,
            tool_call_id=call.id,
            tool_name=call.tool_name,
            tool_input=dict(call.input),
        )
        self._requests[request.id] = request
        self._waiters[request.id] = asyncio.get_running_loop().create_future()
        logger.info(f"Approval requested for {call.tool_name} on {task_id} ({request.id})")
        return request

    async def wait(self, approval_id: str) -> ApprovalOutcome:
        """Block until the request is resolved or cancelled.

        If the waiting coroutine itself is cancelled, the request is closed
        with a CANCELLED outcome before the cancellation propagates.
        """
        waiter = self._waiters.get(approval_id)
        if waiter is None:
            request = self.get(approval_id)
            return request.outcome
        try:
            return await waiter
        except asyncio.CancelledError:
            self._finish(approval_id, ApprovalOutcome.CANCELLED)
            raise

    def resolve(self, approval_id: str, approved: bool) -> ApprovalRequest:
        """
        Record a human decision and wake the waiting session.

        Raises:
            NotFoundError: If the approval id is unknown
            AlreadyResolvedError: If the request was already resolved or cancelled
        """
        request = self.get(approval_id)
        if request.resolved:
            raise AlreadyResolvedError(
                f"Approval {approval_id} already resolved ({request.outcome})",
                approval_id=approval_id,
            )
        outcome = ApprovalOutcome.APPROVED if approved else ApprovalOutcome.DENIED
        self._finish(approval_id, outcome)
        logger.info(f"Approval {approval_id} for {request.tool_name} {outcome.value}")
        return request

    def cancel(self, approval_id: str) -> bool:
        """Close a pending request with CANCELLED. Returns False if it was already resolved."""
        request = self.get(approval_id)
        if request.resolved:
            return False
        self._finish(approval_id, ApprovalOutcome.CANCELLED)
        logger.info(f"Approval {approval_id} cancelled")
        return True

    def cancel_for_task(self, task_id: str) -> int:
        """Cancel every pending request belonging to a task."""
        cancelled = 0
        for request in self.pending(task_id):
            if self.cancel(request.id):
                cancelled += 1
        return cancelled

    def get(self, approval_id: str) -> ApprovalRequest:
        request = self._requests.get(approval_id) or self._history.get(approval_id)
        if request is None:
            raise NotFoundError(f"Approval not found: {approval_id}", approval_id=approval_id)
        return request

    def pending(self, task_id: Optional[str] = None) -> List[ApprovalRequest]:
        """Unresolved requests, oldest first, optionally scoped to one task."""
        return sorted(
            (
                r for r in self._requests.values()
                if task_id is None or r.task_id == task_id
            ),
            key=lambda r: r.created_at,
        )

    def _finish(self, approval_id: str, outcome: ApprovalOutcome) -> None:
        request = self._requests.pop(approval_id, None)
        if request is None:
            return
        request.resolved = True
        request.outcome = outcome
        request.approved = outcome is ApprovalOutcome.APPROVED
        request.resolved_at = datetime.now(UTC)

        waiter = self._waiters.pop(approval_id, None)
        if waiter is not None and not waiter.done():
            waiter.set_result(outcome)

        self._history[approval_id] = request
        while len(self._history) > self.history_limit:
            self._history.popitem(last=False)
