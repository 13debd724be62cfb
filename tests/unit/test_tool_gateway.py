"""Tests for ToolGateway dispatch, gating and failure containment."""

import asyncio
import json

import pytest
from pydantic import BaseModel

from makyno.core.events import SessionEventStream, SessionEventType
from makyno.errors import ExecutionError
from makyno.tools.approval import ApprovalBroker
from makyno.tools.base import Tool, ToolCall, ToolCallState, ToolInput, ToolKind
from makyno.tools.gateway import ToolGateway
from makyno.tools.registry import ToolRegistry, default_registry


class EchoInput(ToolInput):
    text: str


class EchoOutput(BaseModel):
    text: str


class CrashingTool(Tool):
    name = "crash"
    description = "Always raises"
    kind = ToolKind.INSPECT
    input_model = EchoInput
    output_model = EchoOutput

    async def run(self, params, ctx):
        raise RuntimeError("kaboom")


class FailingTool(CrashingTool):
    name = "fail"

    async def run(self, params, ctx):
        raise ExecutionError("expected failure")


@pytest.fixture
def broker():
    return ApprovalBroker()


@pytest.fixture
def gateway(broker):
    registry = default_registry()
    registry.register(CrashingTool())
    registry.register(FailingTool())
    return ToolGateway(registry, broker)


def _call(tool_name, **payload):
    return ToolCall(id="call-1", tool_name=tool_name, input=payload)


class TestClassification:
    def test_static_flags(self):
        registry = default_registry()
        inspect = {"read_file", "list_files", "search_code", "list_tasks"}
        mutate = {"write_file", "edit_file", "run_command", "create_task", "update_task_status"}

        assert set(registry.names()) == inspect | mutate
        assert all(not registry.needs_approval(n) for n in inspect)
        assert all(registry.needs_approval(n) for n in mutate)

    def test_duplicate_registration_rejected(self):
        registry = ToolRegistry([CrashingTool()])
        with pytest.raises(ValueError):
            registry.register(CrashingTool())

    def test_specs_are_function_schemas(self):
        spec = next(s for s in default_registry().specs() if s["function"]["name"] == "edit_file")
        params = spec["function"]["parameters"]
        assert spec["type"] == "function"
        assert set(params["required"]) == {"file_path", "old_content", "new_content"}


class TestInspectTools:
    @pytest.mark.asyncio
    async def test_runs_without_approval(self, gateway, broker, tool_context, sandbox_root):
        (sandbox_root / "a.txt").write_text("hello")

        result = await gateway.invoke(_call("read_file", file_path="a.txt"), tool_context)

        assert result.success is True
        assert result.output["content"] == "hello"
        assert broker.pending() == []

    @pytest.mark.asyncio
    async def test_validation_error_is_a_result(self, gateway, tool_context):
        call = _call("read_file", path="a.txt")

        result = await gateway.invoke(call, tool_context)

        assert result.success is False
        assert result.error["error_type"] == "ValidationError"
        assert call.state is ToolCallState.ERRORED

    @pytest.mark.asyncio
    async def test_unknown_tool_is_a_result(self, gateway, tool_context):
        result = await gateway.invoke(_call("rm_rf"), tool_context)
        assert result.success is False
        assert result.error["error_type"] == "NotFoundError"

    @pytest.mark.asyncio
    async def test_crash_is_contained(self, gateway, tool_context):
        result = await gateway.invoke(_call("crash", text="x"), tool_context)

        assert result.success is False
        assert result.error["error_type"] == "ExecutionError"
        assert "kaboom" in result.error["message"]

    @pytest.mark.asyncio
    async def test_tool_error_keeps_code(self, gateway, tool_context):
        result = await gateway.invoke(_call("fail", text="x"), tool_context)
        assert result.error == {"error_type": "ExecutionError", "message": "expected failure"}


class TestGatedTools:
    @pytest.mark.asyncio
    async def test_no_side_effect_before_approval(self, gateway, broker, tool_context, sandbox_root):
        call = _call("write_file", file_path="out.txt", content="data")
        invocation = asyncio.create_task(gateway.invoke(call, tool_context))
        await asyncio.sleep(0.05)

        assert not invocation.done()
        assert call.state is ToolCallState.AWAITING_APPROVAL
        assert not (sandbox_root / "out.txt").exists()
        [request] = broker.pending(tool_context.task_id)
        assert request.tool_call_id == "call-1"
        assert call.approval_id == request.id

        broker.resolve(request.id, True)
        result = await asyncio.wait_for(invocation, timeout=1)

        assert result.success is True
        assert call.state is ToolCallState.COMPLETED
        assert (sandbox_root / "out.txt").read_text() == "data"

    @pytest.mark.asyncio
    async def test_denial_returns_result_without_side_effect(self, gateway, broker, tool_context, sandbox_root):
        call = _call("write_file", file_path="out.txt", content="data")
        invocation = asyncio.create_task(gateway.invoke(call, tool_context))
        await asyncio.sleep(0.05)

        broker.resolve(broker.pending()[0].id, False)
        result = await asyncio.wait_for(invocation, timeout=1)

        assert result.success is False
        assert result.denied is True
        assert result.error["error_type"] == "Denied"
        assert call.state is ToolCallState.DENIED
        assert not (sandbox_root / "out.txt").exists()
        assert json.loads(result.to_content())["denied"] is True

    @pytest.mark.asyncio
    async def test_cancelled_approval_is_reported(self, gateway, broker, tool_context):
        call = _call("write_file", file_path="out.txt", content="data")
        invocation = asyncio.create_task(gateway.invoke(call, tool_context))
        await asyncio.sleep(0.05)

        broker.cancel_for_task(tool_context.task_id)
        result = await asyncio.wait_for(invocation, timeout=1)

        assert result.denied is True
        assert result.error["error_type"] == "Cancelled"

    @pytest.mark.asyncio
    async def test_invalid_input_never_asks_for_approval(self, gateway, broker, tool_context):
        result = await gateway.invoke(_call("write_file", file_path="x"), tool_context)

        assert result.error["error_type"] == "ValidationError"
        assert broker.pending() == []

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, gateway, broker, tool_context):
        invocation = asyncio.create_task(
            gateway.invoke(_call("write_file", file_path="a", content="b"), tool_context)
        )
        await asyncio.sleep(0.05)

        invocation.cancel()
        with pytest.raises(asyncio.CancelledError):
            await invocation
        assert broker.pending() == []

    @pytest.mark.asyncio
    async def test_publishes_events(self, gateway, broker, tool_context):
        tool_context.events = SessionEventStream(tool_context.task_id)
        invocation = asyncio.create_task(
            gateway.invoke(_call("write_file", file_path="a.txt", content="b"), tool_context)
        )
        await asyncio.sleep(0.05)
        broker.resolve(broker.pending()[0].id, True)
        await asyncio.wait_for(invocation, timeout=1)

        events = tool_context.events.events()
        states = [e.data["state"] for e in events if e.type == SessionEventType.TOOL_STATE]
        assert states == ["awaiting-approval", "approved", "executing", "completed"]
        requested = [e for e in events if e.type == SessionEventType.APPROVAL_REQUESTED]
        assert requested[0].data["tool_input"] == {"file_path": "a.txt", "content": "b"}
