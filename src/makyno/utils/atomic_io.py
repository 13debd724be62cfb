"""Atomic file I/O operations."""

import os
import logging
from pathlib import Path

from pydantic import BaseModel

logger = logging.getLogger(__name__)


def atomic_write_text(file_path: Path, content: str, max_attempts: int = 2) -> None:
    """
    Atomically write content to a file using temp file + rename.

    The target is either fully replaced or left untouched, so readers never
    observe a half-written record.

    Args:
        file_path: Target file path
        content: Content to write
        max_attempts: Total attempts before giving up (first try + retries)

    Raises:
        OSError: If write fails on every attempt
    """
    # Use PID to avoid temp file collisions between processes
    tmp_file = file_path.with_suffix(f"{file_path.suffix}.tmp.{os.getpid()}")

    last_error = None
    for attempt in range(max_attempts):
        try:
            tmp_file.write_text(content, encoding="utf-8")
            tmp_file.replace(file_path)
            return
        except OSError as e:
            last_error = e
            if attempt < max_attempts - 1:
                logger.warning(
                    f"Failed to write {file_path} (attempt {attempt + 1}/{max_attempts}): {e}"
                )
            continue
        finally:
            if tmp_file.exists():
                try:
                    tmp_file.unlink()
                except OSError:
                    pass

    logger.error(f"Failed to write {file_path} after {max_attempts} attempts: {last_error}")
    raise last_error


def atomic_write_model(file_path: Path, model: BaseModel, indent: int = 2) -> None:
    """
    Atomically write a Pydantic model to a JSON file.

    Args:
        file_path: Target file path
        model: Pydantic model to serialize
        indent: JSON indentation (default: 2)
    """
    atomic_write_text(file_path, model.model_dump_json(indent=indent, by_alias=True))
