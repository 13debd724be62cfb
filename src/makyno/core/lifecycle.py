"""Task lifecycle state machine.

The controller is the only writer of task records. Each transition is applied
under a per-task lock, which also holds the store's record lock so that other
processes sharing the features directory are excluded, to a copy of the loaded
record, and persisted before any
post-commit side effect (session start, sandbox teardown) runs. If the write
fails the stored record is unchanged.
"""

import asyncio
import logging
import time
import uuid
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Callable, Dict, FrozenSet, List, Optional, Union

from ..errors import (
    ConflictError,
    IncompleteError,
    InvalidTransitionError,
    MakynoError,
    MergeConflictError,
    StorageError,
    ValidationError,
)
from ..llm.base import ReasoningBackend
from ..store.feature_store import FeatureStore
from ..tools.approval import ApprovalBroker
from ..tools.base import ToolContext
from ..tools.gateway import ToolGateway
from ..workspace.sandbox_manager import SandboxHandle, SandboxManager
from .config import CommandConfig, SessionConfig
from .session import AgentSession, SessionRegistry, SessionResult
from .task import LogSeverity, Task, TaskStatus

logger = logging.getLogger(__name__)


TRANSITIONS: Dict[TaskStatus, FrozenSet[TaskStatus]] = {
    TaskStatus.BACKLOG: frozenset({TaskStatus.TODO}),
    TaskStatus.TODO: frozenset({TaskStatus.BACKLOG, TaskStatus.IN_PROGRESS}),
    TaskStatus.IN_PROGRESS: frozenset({TaskStatus.TODO, TaskStatus.WAIT_APPROVAL}),
    TaskStatus.WAIT_APPROVAL: frozenset({TaskStatus.DONE, TaskStatus.REJECTED}),
    TaskStatus.REJECTED: frozenset({TaskStatus.TODO}),
    TaskStatus.DONE: frozenset(),
}

# (from, to) -> (message, severity); "{base}" is the base branch name
TRANSITION_MESSAGES = {
    (TaskStatus.BACKLOG, TaskStatus.TODO): ("Moved from backlog to todo - ready to start", LogSeverity.INFO),
    (TaskStatus.TODO, TaskStatus.BACKLOG): ("Moved from todo back to backlog", LogSeverity.INFO),
    (TaskStatus.TODO, TaskStatus.IN_PROGRESS): ("AI agent started working on this feature", LogSeverity.INFO),
    (TaskStatus.IN_PROGRESS, TaskStatus.TODO): ("Work cancelled - moved back to todo", LogSeverity.WARNING),
    (TaskStatus.IN_PROGRESS, TaskStatus.WAIT_APPROVAL): (
        "Implementation complete - waiting for approval", LogSeverity.SUCCESS,
    ),
    (TaskStatus.WAIT_APPROVAL, TaskStatus.DONE): (
        "Feature approved and merged to {base} branch", LogSeverity.SUCCESS,
    ),
    (TaskStatus.WAIT_APPROVAL, TaskStatus.REJECTED): ("Feature rejected - needs revision", LogSeverity.ERROR),
    (TaskStatus.REJECTED, TaskStatus.TODO): ("Moved from rejected to todo - ready for another attempt", LogSeverity.INFO),
}

# Edges that leave the sandbox behind
TEARDOWN_EDGES = {
    (TaskStatus.IN_PROGRESS, TaskStatus.TODO),
    (TaskStatus.WAIT_APPROVAL, TaskStatus.DONE),
    (TaskStatus.WAIT_APPROVAL, TaskStatus.REJECTED),
}

BackendFactory = Callable[[], ReasoningBackend]


def generate_task_id() -> str:
    """``feat-<epoch ms>-<random suffix>``, sortable by creation time."""
    return f"feat-{int(time.time() * 1000)}-{uuid.uuid4().hex[:6]}"


def _parse_status(value: Union[str, TaskStatus]) -> TaskStatus:
    try:
        return TaskStatus(value)
    except ValueError:
        allowed = ", ".join(s.value for s in TaskStatus)
        raise ValidationError(f"Unknown status '{value}' (expected one of: {allowed})", status=str(value))


class LifecycleController:
    """Validates and applies task status transitions and their side effects."""

    def __init__(
        self,
        store: FeatureStore,
        sandboxes: SandboxManager,
        gateway: ToolGateway,
        backend_factory: BackendFactory,
        session_config: Optional[SessionConfig] = None,
        command_config: Optional[CommandConfig] = None,
    ):
        self.store = store
        self.sandboxes = sandboxes
        self.gateway = gateway
        self.backend_factory = backend_factory
        self.session_config = session_config or SessionConfig()
        self.command_config = command_config or CommandConfig()

        self.sessions = SessionRegistry(gateway.broker)
        self._locks: Dict[str, asyncio.Lock] = {}

    @property
    def approvals(self) -> ApprovalBroker:
        """Approval boundary for reviewer surfaces."""
        return self.gateway.broker

    def _lock_for(self, task_id: str) -> asyncio.Lock:
        lock = self._locks.get(task_id)
        if lock is None:
            lock = self._locks[task_id] = asyncio.Lock()
        return lock

    @asynccontextmanager
    async def _exclusive(self, task_id: str):
        """Hold the in-process task lock and the store record lock together."""
        async with self._lock_for(task_id):
            acquiring = asyncio.ensure_future(asyncio.to_thread(self.store.acquire, task_id))
            try:
                await asyncio.shield(acquiring)
            except asyncio.CancelledError:
                # The thread may still get the lock after we stop waiting
                acquiring.add_done_callback(lambda f: self._release_if_acquired(task_id, f))
                raise
            try:
                yield
            finally:
                self.store.release(task_id)

    def _release_if_acquired(self, task_id: str, acquiring: asyncio.Future) -> None:
        if not acquiring.cancelled() and acquiring.exception() is None:
            self.store.release(task_id)

    # Lifecycle boundary

    async def create(self, title: str, description: str) -> Task:
        """Create a task in backlog.

        Raises:
            ValidationError: If the title is blank
        """
        if not title or not title.strip():
            raise ValidationError("Task title must not be empty")

        task = Task(
            id=generate_task_id(),
            title=title.strip(),
            description=description or "",
            status=TaskStatus.BACKLOG,
            created_at=datetime.now(UTC),
        )
        task.add_log("Feature created and added to backlog")
        await asyncio.to_thread(self.store.insert, task)
        logger.info(f"Created task {task.id}: {task.title}")
        return task

    def list(self) -> List[Task]:
        """All tasks, newest first."""
        return self.store.list_all()

    def get(self, task_id: str) -> Task:
        return self.store.load(task_id)

    async def transition(
        self,
        task_id: str,
        target: Union[str, TaskStatus],
        reason: Optional[str] = None,
    ) -> Task:
        """
        Move a task to ``target`` and run the side effects of that edge.

        Args:
            task_id: Task identifier
            target: Target status
            reason: Stored as the rejection reason on the rejected edge

        Returns:
            The persisted record

        Raises:
            NotFoundError: If the task does not exist
            InvalidTransitionError: If ``target`` is not reachable from the current status
            ConflictError: If a sandbox for the task already exists on entering in_progress,
                or the main checkout is not on the base branch when approving
            MergeConflictError: If approving the task conflicts with the base branch
            StorageError: If the record cannot be persisted
        """
        target = _parse_status(target)

        async with self._exclusive(task_id):
            current = await asyncio.to_thread(self.store.load, task_id)
            source = TaskStatus(current.status)
            if target not in TRANSITIONS[source]:
                raise InvalidTransitionError(task_id, source.value, target.value)

            task = current.model_copy(deep=True)
            edge = (source, target)
            created: Optional[SandboxHandle] = None

            if edge == (TaskStatus.TODO, TaskStatus.IN_PROGRESS):
                created = await asyncio.to_thread(self.sandboxes.create, task_id)

            if source is TaskStatus.IN_PROGRESS:
                await self.sessions.cancel(task_id)
                if target is TaskStatus.WAIT_APPROVAL:
                    await self._capture_work(task)

            if edge == (TaskStatus.WAIT_APPROVAL, TaskStatus.DONE):
                await self._merge(task)

            task.status = target
            task.stamp(target)
            message, severity = TRANSITION_MESSAGES[edge]
            task.add_log(message.format(base=self.sandboxes.base_branch), severity)
            if target is TaskStatus.REJECTED:
                task.rejection_reason = reason

            try:
                await asyncio.to_thread(self.store.save, task)
            except StorageError:
                if created is not None:
                    await self._teardown(task_id)
                raise

            logger.info(f"Task {task_id}: {source.value} -> {target.value}")

            if created is not None:
                self._start_session(task, created)
            elif edge in TEARDOWN_EDGES:
                task = await self._teardown_and_note(task)

            return task

    async def append_log(
        self,
        task_id: str,
        message: str,
        severity: Union[str, LogSeverity] = LogSeverity.INFO,
    ) -> None:
        """Append one activity entry. Storage failures are logged, not raised."""
        try:
            async with self._exclusive(task_id):
                task = await asyncio.to_thread(self.store.load, task_id)
                task.add_log(message, LogSeverity(severity))
                await asyncio.to_thread(self.store.save, task)
        except MakynoError as e:
            logger.error(f"Failed to append activity for {task_id}: {e.message}")

    # Sessions

    def session_for(self, task_id: str) -> Optional[AgentSession]:
        return self.sessions.get(task_id)

    async def wait_for_session(self, task_id: str) -> Optional[SessionResult]:
        """Wait until the task's live session ends. None if there is none or it did not finish."""
        runner = self.sessions.runner(task_id)
        if runner is None:
            return None
        try:
            return await asyncio.shield(runner)
        except asyncio.CancelledError:
            if runner.cancelled():
                return None
            raise

    async def shutdown(self) -> None:
        """Cancel every live session and its pending approvals."""
        for task_id in self.sessions.task_ids():
            await self.sessions.cancel(task_id)

    def _start_session(self, task: Task, handle: SandboxHandle) -> None:
        async def on_activity(message: str, severity: LogSeverity) -> None:
            await self.append_log(task.id, message, severity)

        session = AgentSession(
            task,
            self.backend_factory(),
            self.gateway,
            ToolContext(
                task_id=task.id,
                sandbox=handle,
                commands=self.command_config,
                tasks=self,
            ),
            system_prompt=self.session_config.system_prompt,
            max_rounds=self.session_config.max_rounds,
            on_activity=on_activity,
        )
        runner = asyncio.create_task(self._run_session(session), name=f"session-{task.id}")
        self.sessions.register(session, runner)
        logger.info(f"Started session for {task.id} in {handle.root}")

    async def _run_session(self, session: AgentSession) -> Optional[SessionResult]:
        task_id = session.task_id
        try:
            result = await session.run()
        except IncompleteError as e:
            self.sessions.remove(task_id, session)
            await self.append_log(task_id, e.message, LogSeverity.ERROR)
            return None
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.sessions.remove(task_id, session)
            logger.exception(f"Session for {task_id} crashed")
            await self.append_log(task_id, f"Agent session failed: {e}", LogSeverity.ERROR)
            return None

        # Deregister first so the transition does not cancel the caller
        self.sessions.remove(task_id, session)
        if result.text:
            await self.append_log(task_id, f"Agent summary: {result.text}")
        try:
            await self.transition(task_id, TaskStatus.WAIT_APPROVAL)
        except InvalidTransitionError as e:
            # Moved elsewhere while the session was finishing
            logger.warning(f"Session for {task_id} finished but {e.message}")
        except MakynoError as e:
            logger.error(f"Failed to move {task_id} to wait_approval: {e.message}")
        return result

    # Side effects

    async def _capture_work(self, task: Task) -> None:
        """Commit the sandbox and record what the task branch contains. Best effort."""
        try:
            await asyncio.to_thread(self.sandboxes.commit_all, task.id, f"{task.title} ({task.id})")
            task.metadata = await asyncio.to_thread(self.sandboxes.describe, task.id)
        except MakynoError as e:
            logger.warning(f"Could not capture work for {task.id}: {e.message}")
            task.add_log(f"Could not capture branch changes: {e.message}", LogSeverity.WARNING)

    async def _merge(self, task: Task) -> None:
        try:
            task.metadata = await asyncio.to_thread(self.sandboxes.merge, task.id)
        except MergeConflictError as e:
            files = ", ".join(e.conflicted_files) or "unknown files"
            task.add_log(f"Merge conflict - manual resolution required ({files})", LogSeverity.ERROR)
            await asyncio.to_thread(self.store.save, task)
            raise
        except ConflictError as e:
            task.add_log(f"Merge refused - {e.message}", LogSeverity.ERROR)
            await asyncio.to_thread(self.store.save, task)
            raise

    async def _teardown(self, task_id: str) -> Optional[str]:
        """Remove the sandbox. Returns the failure message instead of raising."""
        try:
            await asyncio.to_thread(self.sandboxes.remove, task_id, True)
        except MakynoError as e:
            logger.warning(f"Sandbox teardown failed for {task_id}: {e.message}")
            return e.message
        return None

    async def _teardown_and_note(self, task: Task) -> Task:
        error = await self._teardown(task.id)
        if error is None:
            return task
        task.add_log(f"Sandbox cleanup incomplete: {error}", LogSeverity.WARNING)
        try:
            await asyncio.to_thread(self.store.save, task)
        except StorageError as e:
            logger.error(f"Failed to record teardown warning for {task.id}: {e.message}")
        return task
