"""Task management tools backed by the lifecycle boundary."""

import asyncio
from typing import List, Optional

from pydantic import BaseModel, Field

from ..core.task import TaskStatus
from ..errors import ExecutionError, ValidationError
from .base import TaskDirectory, Tool, ToolContext, ToolInput, ToolKind


def _directory(ctx: ToolContext) -> TaskDirectory:
    if ctx.tasks is None:
        raise ExecutionError("Task tools are not available in this session")
    return ctx.tasks


class ListTasksInput(ToolInput):
    status: Optional[TaskStatus] = Field(default=None, description="Only return tasks in this status")


class TaskSummary(BaseModel):
    id: str
    title: str
    description: str
    status: str
    createdAt: str
    startedAt: Optional[str] = None
    implementedAt: Optional[str] = None
    completedAt: Optional[str] = None


class ListTasksOutput(BaseModel):
    tasks: List[TaskSummary]
    count: int


class ListTasksTool(Tool):
    name = "list_tasks"
    description = (
        "Lists all tasks in the workspace with their status, title and description. "
        "Optionally filter by status."
    )
    kind = ToolKind.INSPECT
    input_model = ListTasksInput
    output_model = ListTasksOutput

    async def run(self, params: ListTasksInput, ctx: ToolContext) -> ListTasksOutput:
        # Listing reads every record from disk
        tasks = await asyncio.to_thread(_directory(ctx).list)
        if params.status is not None:
            tasks = [t for t in tasks if t.status == params.status.value]
        summaries = [TaskSummary(**t.summary()) for t in tasks]
        return ListTasksOutput(tasks=summaries, count=len(summaries))


class CreateTaskInput(ToolInput):
    title: str = Field(min_length=1, description="Short, descriptive title (e.g. 'User Authentication')")
    description: str = Field(description="What the task should do and any requirements")


class CreateTaskOutput(BaseModel):
    id: str
    title: str
    status: str
    message: str


class CreateTaskTool(Tool):
    name = "create_task"
    description = "Creates a new task in the backlog."
    kind = ToolKind.MUTATE
    input_model = CreateTaskInput
    output_model = CreateTaskOutput

    async def run(self, params: CreateTaskInput, ctx: ToolContext) -> CreateTaskOutput:
        task = await _directory(ctx).create(params.title, params.description)
        return CreateTaskOutput(
            id=task.id,
            title=task.title,
            status=task.status,
            message=f"Task created: {task.id}",
        )


class UpdateTaskStatusInput(ToolInput):
    task_id: str = Field(description="The id of the task to move (e.g. 'feat-1700000000000-ab12cd')")
    status: TaskStatus = Field(description="The new status")


class UpdateTaskStatusOutput(BaseModel):
    id: str
    title: str
    old_status: str
    new_status: str
    message: str


class UpdateTaskStatusTool(Tool):
    name = "update_task_status"
    description = (
        "Moves another task through the workflow "
        "(backlog -> todo -> in_progress -> wait_approval -> done | rejected). "
        "The task you are working on finishes when you reply without tool calls."
    )
    kind = ToolKind.MUTATE
    input_model = UpdateTaskStatusInput
    output_model = UpdateTaskStatusOutput

    async def run(self, params: UpdateTaskStatusInput, ctx: ToolContext) -> UpdateTaskStatusOutput:
        if params.task_id == ctx.task_id:
            raise ValidationError(
                "A session cannot change the status of its own task; finish with a final answer instead",
                task_id=params.task_id,
            )

        directory = _directory(ctx)
        tasks = await asyncio.to_thread(directory.list)
        before = next((t for t in tasks if t.id == params.task_id), None)
        task = await directory.transition(params.task_id, params.status.value)
        old_status = before.status if before else "unknown"
        return UpdateTaskStatusOutput(
            id=task.id,
            title=task.title,
            old_status=old_status,
            new_status=task.status,
            message=f"Task \"{task.title}\" moved from {old_status} to {task.status}",
        )
