"""Tool dispatch: validation, approval gating and failure containment.

``invoke`` never raises for a tool problem. Unknown tools, schema mismatches,
denials and exceptions from the tool body all come back as a ``ToolResult``
with ``success=False``. Only ``asyncio.CancelledError`` escapes, so that
cancelling a session still works while it is parked on an approval.
"""

import asyncio
import logging

from pydantic import ValidationError as PydanticValidationError

from ..core.events import SessionEventType
from ..errors import ExecutionError, MakynoError, ValidationError
from .approval import ApprovalBroker, ApprovalOutcome
from .base import Tool, ToolCall, ToolCallState, ToolContext, ToolResult
from .registry import ToolRegistry

logger = logging.getLogger(__name__)


class ToolGateway:
    """Classifies and dispatches tool calls for every session."""

    def __init__(self, registry: ToolRegistry, broker: ApprovalBroker):
        self.registry = registry
        self.broker = broker

    async def invoke(self, call: ToolCall, ctx: ToolContext) -> ToolResult:
        """Run one tool call to completion (including any approval wait)."""
        try:
            tool = self.registry.get(call.tool_name)
        except MakynoError as e:
            return self._fail(call, ctx, e)

        call.needs_approval = tool.needs_approval

        try:
            params = tool.input_model.model_validate(call.input)
        except PydanticValidationError as e:
            return self._fail(call, ctx, ValidationError(
                f"Invalid input for {tool.name}: {e.error_count()} error(s)",
                errors=e.errors(include_url=False, include_context=False),
            ))

        if tool.needs_approval:
            outcome = await self._await_approval(call, ctx)
            if outcome is not ApprovalOutcome.APPROVED:
                return self._deny(call, ctx, outcome)
            self._set_state(call, ctx, ToolCallState.APPROVED)

        return await self._execute(tool, params, call, ctx)

    async def _await_approval(self, call: ToolCall, ctx: ToolContext) -> ApprovalOutcome:
        request = self.broker.open(ctx.task_id, call)
        call.approval_id = request.id
        self._set_state(call, ctx, ToolCallState.AWAITING_APPROVAL)
        if ctx.events is not None and not ctx.events.closed:
            ctx.events.publish(
                SessionEventType.APPROVAL_REQUESTED,
                approval_id=request.id,
                call_id=call.id,
                tool_name=call.tool_name,
                tool_input=request.tool_input,
            )
        return await self.broker.wait(request.id)

    async def _execute(self, tool: Tool, params, call: ToolCall, ctx: ToolContext) -> ToolResult:
        self._set_state(call, ctx, ToolCallState.EXECUTING)
        try:
            output = await tool.run(params, ctx)
        except asyncio.CancelledError:
            raise
        except MakynoError as e:
            return self._fail(call, ctx, e)
        except Exception as e:
            logger.exception(f"Tool {tool.name} crashed on {ctx.task_id}")
            return self._fail(call, ctx, ExecutionError(f"{tool.name} failed: {e}"))

        self._set_state(call, ctx, ToolCallState.COMPLETED)
        return ToolResult(
            call_id=call.id,
            tool_name=call.tool_name,
            success=True,
            output=output.model_dump(mode="json"),
        )

    def _deny(self, call: ToolCall, ctx: ToolContext, outcome: ApprovalOutcome) -> ToolResult:
        self._set_state(call, ctx, ToolCallState.DENIED)
        reason = "cancelled" if outcome is ApprovalOutcome.CANCELLED else "denied by reviewer"
        return ToolResult(
            call_id=call.id,
            tool_name=call.tool_name,
            success=False,
            denied=True,
            error={
                "error_type": "Cancelled" if outcome is ApprovalOutcome.CANCELLED else "Denied",
                "message": f"{call.tool_name} was not executed: {reason}",
            },
        )

    def _fail(self, call: ToolCall, ctx: ToolContext, error: MakynoError) -> ToolResult:
        self._set_state(call, ctx, ToolCallState.ERRORED)
        logger.info(f"Tool {call.tool_name} failed on {ctx.task_id}: {error.code}: {error.message}")
        return ToolResult(
            call_id=call.id,
            tool_name=call.tool_name,
            success=False,
            error=error.to_dict(),
        )

    def _set_state(self, call: ToolCall, ctx: ToolContext, state: ToolCallState) -> None:
        call.state = state
        if ctx.events is not None and not ctx.events.closed:
            ctx.events.publish(
                SessionEventType.TOOL_STATE,
                call_id=call.id,
                tool_name=call.tool_name,
                state=state.value,
            )
