"""Shell command execution inside the sandbox."""

import logging
import os
from typing import Optional

from pydantic import BaseModel, Field

from ..errors import ExecutionError, ValidationError
from ..utils.subprocess_utils import run_shell_command
from .base import Tool, ToolContext, ToolInput, ToolKind
from .file_tools import sandbox_path

logger = logging.getLogger(__name__)

# Credentials the agent's shell has no business seeing
_SENSITIVE_ENV_VARS = (
    "ANTHROPIC_API_KEY",
    "OPENAI_API_KEY",
    "MAKYNO_LLM__API_KEY",
)


class RunCommandInput(ToolInput):
    command: str = Field(min_length=1, description="The shell command to execute")
    working_dir: Optional[str] = Field(
        default=None, description="Working directory relative to the worktree root (default: root)",
    )
    timeout: Optional[float] = Field(default=None, gt=0, description="Timeout in seconds (default: 60)")


class RunCommandOutput(BaseModel):
    success: bool
    stdout: str
    stderr: str
    exit_code: int
    command: str
    duration_ms: float
    timed_out: bool = False
    truncated: bool = False


class RunCommandTool(Tool):
    name = "run_command"
    description = (
        "Executes a shell command in the worktree and returns its output. Use this to "
        "run tests, linters, builds or git. A non-zero exit is reported in the result, "
        "not as an error. Only run commands the feature actually calls for."
    )
    kind = ToolKind.MUTATE
    input_model = RunCommandInput
    output_model = RunCommandOutput

    async def run(self, params: RunCommandInput, ctx: ToolContext) -> RunCommandOutput:
        cwd = sandbox_path(ctx, params.working_dir or ".")
        if not cwd.is_dir():
            raise ValidationError(f"Working directory not found: {params.working_dir}", path=params.working_dir)

        timeout = params.timeout or ctx.commands.timeout_seconds
        env = os.environ.copy()
        for key in _SENSITIVE_ENV_VARS:
            env.pop(key, None)

        try:
            result = await run_shell_command(
                params.command,
                cwd=cwd,
                timeout=timeout,
                max_output_bytes=ctx.commands.max_output_bytes,
                env=env,
            )
        except OSError as e:
            raise ExecutionError(f"Failed to start command: {e}", command=params.command) from e

        if result.timed_out:
            logger.warning(f"[{ctx.task_id}] Command timed out after {timeout}s: {params.command}")

        return RunCommandOutput(
            success=result.exit_code == 0 and not result.timed_out,
            stdout=result.stdout.strip(),
            stderr=result.stderr.strip(),
            exit_code=result.exit_code,
            command=params.command,
            duration_ms=round(result.duration_ms, 1),
            timed_out=result.timed_out,
            truncated=result.truncated,
        )
