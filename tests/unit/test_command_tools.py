"""Tests for run_command."""

from unittest.mock import patch

import pytest
from pydantic import ValidationError as PydanticValidationError

from makyno.core.config import CommandConfig
from makyno.errors import ExecutionError, ValidationError
from makyno.tools.command_tools import RunCommandInput, RunCommandTool


async def _run(ctx, **kwargs):
    return await RunCommandTool().run(RunCommandInput(**kwargs), ctx)


@pytest.mark.asyncio
async def test_success(tool_context):
    output = await _run(tool_context, command="echo hello")

    assert output.success is True
    assert output.stdout == "hello"
    assert output.exit_code == 0
    assert output.command == "echo hello"


@pytest.mark.asyncio
async def test_runs_in_sandbox_root(tool_context, sandbox_root):
    output = await _run(tool_context, command="pwd")
    assert output.stdout == str(sandbox_root.resolve())


@pytest.mark.asyncio
async def test_working_dir_inside_sandbox(tool_context, sandbox_root):
    (sandbox_root / "pkg").mkdir()
    output = await _run(tool_context, command="pwd", working_dir="pkg")
    assert output.stdout == str((sandbox_root / "pkg").resolve())


@pytest.mark.asyncio
@pytest.mark.parametrize("working_dir", ["/", "..", "../..", "pkg/../../"])
async def test_working_dir_escape_rejected(tool_context, sandbox_root, working_dir):
    (sandbox_root / "pkg").mkdir()
    with pytest.raises(ValidationError):
        await _run(tool_context, command="pwd", working_dir=working_dir)


@pytest.mark.asyncio
async def test_missing_working_dir(tool_context):
    with pytest.raises(ValidationError):
        await _run(tool_context, command="pwd", working_dir="missing")


@pytest.mark.asyncio
async def test_non_zero_exit_is_data(tool_context):
    output = await _run(tool_context, command="echo oops >&2; exit 2")

    assert output.success is False
    assert output.exit_code == 2
    assert output.stderr == "oops"
    assert output.timed_out is False


@pytest.mark.asyncio
async def test_timeout_reports_timed_out(tool_context):
    output = await _run(tool_context, command="sleep 30", timeout=0.3)

    assert output.success is False
    assert output.timed_out is True


@pytest.mark.asyncio
async def test_default_timeout_from_config(tool_context):
    tool_context.commands = CommandConfig(timeout_seconds=0.3)
    output = await _run(tool_context, command="sleep 30")
    assert output.timed_out is True


@pytest.mark.asyncio
async def test_truncated_output_still_succeeds(tool_context):
    tool_context.commands = CommandConfig(max_output_bytes=2048)
    output = await _run(tool_context, command="head -c 10000 /dev/zero | tr '\\0' 'x'")

    assert output.success is True
    assert output.truncated is True
    assert len(output.stdout) == 2048


@pytest.mark.asyncio
async def test_api_keys_are_not_inherited(tool_context, monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-secret")
    output = await _run(tool_context, command="echo ${OPENAI_API_KEY:-unset}")
    assert output.stdout == "unset"


@pytest.mark.asyncio
async def test_spawn_failure_is_execution_error(tool_context):
    with patch(
        "makyno.tools.command_tools.run_shell_command",
        side_effect=OSError("fork failed"),
    ):
        with pytest.raises(ExecutionError):
            await _run(tool_context, command="echo hi")


def test_timeout_must_be_positive():
    with pytest.raises(PydanticValidationError):
        RunCommandInput(command="ls", timeout=0)
