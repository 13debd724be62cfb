"""Standardized subprocess utilities for command execution."""

import asyncio
import logging
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union

from .process_utils import kill_process_tree

logger = logging.getLogger(__name__)

_READ_CHUNK = 64 * 1024


class SubprocessError(Exception):
    """Exception raised when a subprocess command fails."""

    def __init__(self, cmd: str, returncode: int, stderr: str, stdout: str = ""):
        self.cmd = cmd
        self.returncode = returncode
        self.stderr = stderr
        self.stdout = stdout
        super().__init__(
            f"Command failed with exit code {returncode}: {cmd}\nstderr: {stderr}"
        )


def run_command(
    cmd: Union[str, List[str]],
    *,
    cwd: Optional[Path] = None,
    check: bool = True,
    timeout: Optional[int] = None,
    env: Optional[dict] = None,
) -> subprocess.CompletedProcess:
    """
    Run a command with standardized error handling.

    Args:
        cmd: Command to run (string or list)
        cwd: Working directory
        check: Raise exception on non-zero exit
        timeout: Timeout in seconds
        env: Environment variables

    Returns:
        CompletedProcess with stdout, stderr, returncode

    Raises:
        SubprocessError: If check=True and command fails
        subprocess.TimeoutExpired: If timeout exceeded
    """
    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=timeout,
            env=env,
            check=False,  # We handle check ourselves for better error messages
        )
    except subprocess.TimeoutExpired:
        logger.error(f"Command timed out after {timeout}s: {cmd}")
        raise

    if check and result.returncode != 0:
        cmd_str = cmd if isinstance(cmd, str) else " ".join(cmd)
        raise SubprocessError(
            cmd=cmd_str,
            returncode=result.returncode,
            stderr=result.stderr,
            stdout=result.stdout,
        )

    return result


def run_git_command(
    args: List[str],
    *,
    cwd: Optional[Path] = None,
    check: bool = True,
    timeout: int = 30,
) -> subprocess.CompletedProcess:
    """
    Run a git command with standardized error handling.

    Args:
        args: Git command arguments (without 'git' prefix)
        cwd: Working directory (git repo)
        check: Raise exception on non-zero exit
        timeout: Timeout in seconds (default: 30)

    Raises:
        SubprocessError: If check=True and command fails
    """
    try:
        return run_command(["git"] + args, cwd=cwd, check=check, timeout=timeout)
    except SubprocessError:
        logger.error(f"Git command failed in {cwd}: {' '.join(args)}")
        raise


@dataclass
class ShellResult:
    """Outcome of a shell command. Non-zero exits and timeouts are data, not errors."""
    exit_code: int
    stdout: str
    stderr: str
    duration_ms: float
    timed_out: bool = False
    truncated: bool = False


async def _drain(stream: asyncio.StreamReader, sink: bytearray, limit: int, flags: dict) -> None:
    """Read a stream to EOF, keeping at most ``limit`` bytes.

    The rest is read and discarded so the child never blocks on a full pipe.
    """
    while True:
        chunk = await stream.read(_READ_CHUNK)
        if not chunk:
            return
        room = limit - len(sink)
        if room > 0:
            sink.extend(chunk[:room])
        if len(chunk) > max(room, 0):
            flags["truncated"] = True


async def run_shell_command(
    command: str,
    *,
    cwd: Path,
    timeout: float,
    max_output_bytes: int,
    env: Optional[dict] = None,
) -> ShellResult:
    """
    Run a shell command with a hard timeout and an output ceiling.

    The ceiling applies to stdout and stderr separately. On timeout the whole
    process group is killed and the partial output is returned.

    Raises:
        OSError: If the process cannot be spawned at all
    """
    start_time = time.monotonic()
    process = await asyncio.create_subprocess_shell(
        command,
        cwd=str(cwd),
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        env=env,
        start_new_session=True,
    )

    stdout_buf = bytearray()
    stderr_buf = bytearray()
    flags = {"truncated": False}
    timed_out = False

    async def _collect():
        await asyncio.gather(
            _drain(process.stdout, stdout_buf, max_output_bytes, flags),
            _drain(process.stderr, stderr_buf, max_output_bytes, flags),
        )
        await process.wait()

    try:
        await asyncio.wait_for(_collect(), timeout=timeout)
    except asyncio.TimeoutError:
        timed_out = True
        logger.warning(f"Command timed out after {timeout}s, killing process group: {command}")
        kill_process_tree(process.pid)
        await process.wait()
    except asyncio.CancelledError:
        kill_process_tree(process.pid)
        raise

    return ShellResult(
        exit_code=process.returncode if process.returncode is not None else -1,
        stdout=stdout_buf.decode(errors="replace"),
        stderr=stderr_buf.decode(errors="replace"),
        duration_ms=(time.monotonic() - start_time) * 1000,
        timed_out=timed_out,
        truncated=flags["truncated"],
    )
