"""File-backed storage for task records.

Layout: ``<features_dir>/<task_id>/feature.json`` with the activity log
embedded in the record. Writes go through temp file + rename and are guarded
by a per-task ``fcntl`` lock so that separate processes never interleave a
write to the same record. A caller that must read, decide and write as one
step holds the same lock across all of it with ``acquire``/``release``.
"""

import fcntl
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import IO, Dict, List

from pydantic import ValidationError as PydanticValidationError

from ..core.task import Task
from ..errors import ConflictError, NotFoundError, StorageError
from ..utils.atomic_io import atomic_write_model
from ..utils.validators import validate_identifier

logger = logging.getLogger(__name__)

RECORD_FILENAME = "feature.json"
LOCK_FILENAME = ".lock"


class FeatureStore:
    """Durable keyed storage for task records."""

    def __init__(self, features_dir: Path):
        self.features_dir = Path(features_dir)
        # task_id -> open lock file, for records locked via acquire()
        self._held: Dict[str, IO] = {}

    def _task_dir(self, task_id: str) -> Path:
        try:
            validate_identifier(task_id, "task_id")
        except ValueError as e:
            raise NotFoundError(str(e), task_id=task_id) from e
        return self.features_dir / task_id

    def record_path(self, task_id: str) -> Path:
        return self._task_dir(task_id) / RECORD_FILENAME

    def _open_locked(self, task_id: str) -> IO:
        task_dir = self._task_dir(task_id)
        task_dir.mkdir(parents=True, exist_ok=True)
        lock_file = open(task_dir / LOCK_FILENAME, "w")
        try:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
        except OSError as e:
            lock_file.close()
            raise StorageError(f"Failed to lock task {task_id}: {e}", task_id=task_id) from e
        return lock_file

    @staticmethod
    def _close_locked(lock_file: IO) -> None:
        try:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)
        finally:
            lock_file.close()

    @contextmanager
    def _record_lock(self, task_id: str):
        """Exclusive cross-process lock for one task record."""
        if task_id in self._held:
            # Already held by this store through acquire()
            yield
            return
        lock_file = self._open_locked(task_id)
        try:
            yield
        finally:
            self._close_locked(lock_file)

    def acquire(self, task_id: str) -> None:
        """
        Lock an existing record until ``release``. Blocks while another holder has it.

        Writes through this store skip their own locking while it is held,
        so load, check, side effects and save form one step against every
        other store on the same directory.

        Raises:
            NotFoundError: If no record exists for ``task_id``
            StorageError: If the lock cannot be taken
        """
        if not self.record_path(task_id).exists():
            raise NotFoundError(f"Task not found: {task_id}", task_id=task_id)
        self._held[task_id] = self._open_locked(task_id)

    def release(self, task_id: str) -> None:
        """Drop a lock taken with ``acquire``. No-op if it is not held."""
        lock_file = self._held.pop(task_id, None)
        if lock_file is not None:
            self._close_locked(lock_file)

    def held(self, task_id: str) -> bool:
        return task_id in self._held

    def exists(self, task_id: str) -> bool:
        return self.record_path(task_id).exists()

    def load(self, task_id: str) -> Task:
        """Load a task record.

        Raises:
            NotFoundError: If no record exists for ``task_id``
            StorageError: If the record cannot be read or parsed
        """
        path = self.record_path(task_id)
        if not path.exists():
            raise NotFoundError(f"Task not found: {task_id}", task_id=task_id)
        try:
            return Task.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, PydanticValidationError) as e:
            raise StorageError(f"Failed to read task {task_id}: {e}", task_id=task_id) from e

    def insert(self, task: Task) -> None:
        """Persist a brand-new record.

        Raises:
            ConflictError: If a record with the same id already exists
        """
        with self._record_lock(task.id):
            if self.record_path(task.id).exists():
                raise ConflictError(f"Task already exists: {task.id}", task_id=task.id)
            self._write(task)

    def save(self, task: Task) -> None:
        """Replace a record atomically; retried once before surfacing StorageError."""
        with self._record_lock(task.id):
            self._write(task)

    def _write(self, task: Task) -> None:
        try:
            atomic_write_model(self.record_path(task.id), task)
        except OSError as e:
            raise StorageError(f"Failed to persist task {task.id}: {e}", task_id=task.id) from e

    def list_all(self) -> List[Task]:
        """All readable records, newest first. Unreadable records are skipped."""
        if not self.features_dir.exists():
            return []

        tasks: List[Task] = []
        for entry in sorted(self.features_dir.iterdir()):
            record = entry / RECORD_FILENAME
            if not entry.is_dir() or not record.exists():
                continue
            try:
                tasks.append(Task.model_validate_json(record.read_text(encoding="utf-8")))
            except (OSError, PydanticValidationError) as e:
                logger.error(f"Failed to read task {entry.name}: {e}")

        tasks.sort(key=lambda t: t.created_at, reverse=True)
        return tasks
