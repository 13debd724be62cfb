"""Rich logging with task context and better formatting."""

import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional


class TaskLogFormatter(logging.Formatter):
    """Custom formatter with task context."""

    def __init__(self, component: str, use_colors: bool = True):
        super().__init__()
        self.component = component
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        """Format log record with context."""
        timestamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")

        task_context = ""
        if hasattr(record, "task_id"):
            task_context = f"[{record.task_id}] "

        phase_context = ""
        if hasattr(record, "phase"):
            phase_context = f"[{record.phase}] "

        if self.use_colors:
            level_colors = {
                "DEBUG": "\033[36m",      # Cyan
                "INFO": "\033[32m",       # Green
                "WARNING": "\033[33m",    # Yellow
                "ERROR": "\033[31m",      # Red
                "CRITICAL": "\033[35m",   # Magenta
            }
            reset = "\033[0m"
            level_color = level_colors.get(record.levelname, "")
        else:
            level_color = ""
            reset = ""

        return (
            f"{timestamp} {level_color}{record.levelname:8s}{reset} "
            f"[{self.component}] {phase_context}{task_context}{record.getMessage()}"
        )


class ContextLogger(logging.LoggerAdapter):
    """Logger adapter that adds task context to all log messages."""

    def __init__(self, logger: logging.Logger, task_id: Optional[str] = None):
        super().__init__(logger, {})
        self.current_task_id: Optional[str] = task_id
        self.current_phase: Optional[str] = None

    def set_task_context(self, task_id: Optional[str] = None, phase: Optional[str] = None):
        """Set current task context for logging."""
        if task_id:
            self.current_task_id = task_id
        if phase is not None:
            self.current_phase = phase

    def process(self, msg, kwargs):
        """Add context to log record."""
        extra = kwargs.get("extra", {})

        if self.current_task_id:
            extra["task_id"] = self.current_task_id
        if self.current_phase:
            extra["phase"] = self.current_phase

        kwargs["extra"] = extra
        return msg, kwargs

    def phase_change(self, phase: str):
        """Log phase change."""
        self.set_task_context(phase=phase)
        phase_emoji = {
            "reasoning": "🤖",
            "tool_call": "🔧",
            "awaiting_approval": "⏸️",
            "finished": "✅",
        }
        emoji = phase_emoji.get(phase.lower(), "▶️")
        self.debug(f"{emoji} Phase: {phase}")

    def session_finished(self, rounds: int):
        """Log session completion."""
        self.info(f"✅ Session finished after {rounds} round(s)")

    def session_failed(self, error: str):
        """Log session failure."""
        self.error(f"❌ Session failed: {error}")


def task_logger(name: str, task_id: str) -> ContextLogger:
    """Module logger wrapped with a fixed task context."""
    return ContextLogger(logging.getLogger(name), task_id=task_id)


def setup_rich_logging(
    component: str,
    workspace: Path,
    log_level: str = "INFO",
    use_file: bool = True,
) -> None:
    """
    Configure the ``makyno`` logger hierarchy for operator use.

    Args:
        component: Name shown in every log line (e.g. "cli")
        workspace: Data directory; log files go to ``<workspace>/logs``
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        use_file: Write to log file
    """
    logger = logging.getLogger("makyno")
    logger.setLevel(getattr(logging, log_level.upper()))

    # Close existing handlers before clearing (prevents file descriptor leak)
    for handler in logger.handlers[:]:
        handler.close()
        logger.removeHandler(handler)

    # Skip console handler when stderr is redirected to avoid duplicate logs
    stderr_is_redirected = not sys.stderr.isatty() if hasattr(sys.stderr, "isatty") else False
    if not stderr_is_redirected:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(TaskLogFormatter(component, use_colors=True))
        logger.addHandler(console_handler)

    if use_file:
        log_dir = workspace / "logs"
        log_dir.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_dir / f"{component}-{os.getpid()}.log")
        file_handler.setFormatter(TaskLogFormatter(component, use_colors=False))
        logger.addHandler(file_handler)
