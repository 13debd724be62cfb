"""Main CLI for makyno."""

import asyncio
import json
from pathlib import Path

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from ..core.config import MakynoConfig, load_config
from ..core.events import SessionEventType
from ..core.lifecycle import LifecycleController
from ..core.task import LogSeverity, Task, TaskStatus
from ..errors import MakynoError
from ..llm.litellm_backend import LiteLLMBackend
from ..store.feature_store import FeatureStore
from ..tools.approval import ApprovalBroker
from ..tools.gateway import ToolGateway
from ..tools.registry import default_registry
from ..utils.rich_logging import setup_rich_logging
from ..workspace.sandbox_manager import SandboxManager


console = Console()

STATUS_STYLES = {
    TaskStatus.BACKLOG: "dim",
    TaskStatus.TODO: "white",
    TaskStatus.IN_PROGRESS: "cyan",
    TaskStatus.WAIT_APPROVAL: "yellow",
    TaskStatus.DONE: "green",
    TaskStatus.REJECTED: "red",
}

SEVERITY_STYLES = {
    LogSeverity.INFO: "white",
    LogSeverity.SUCCESS: "green",
    LogSeverity.WARNING: "yellow",
    LogSeverity.ERROR: "red",
}


def build_controller(config: MakynoConfig) -> LifecycleController:
    """Wire store, sandboxes, gateway and reasoning backend from config."""
    workspace = config.workspace
    sandboxes = SandboxManager(
        repo_root=workspace.repo_root,
        sandbox_root=workspace.sandbox_root,
        base_branch=workspace.base_branch,
        branch_prefix=workspace.branch_prefix,
        keep_branch_on_remove=workspace.keep_branch_on_remove,
    )
    gateway = ToolGateway(default_registry(), ApprovalBroker())
    return LifecycleController(
        store=FeatureStore(workspace.features_dir),
        sandboxes=sandboxes,
        gateway=gateway,
        backend_factory=lambda: LiteLLMBackend.from_config(config.llm),
        session_config=config.session,
        command_config=config.commands,
    )


def _status_text(status) -> str:
    status = TaskStatus(status)
    return f"[{STATUS_STYLES[status]}]{status.value}[/]"


def _fail(ctx, error: MakynoError):
    console.print(f"[red]Error ({error.code}): {error.message}[/]")
    ctx.exit(1)


@click.group()
@click.option("--config", "-c", "config_path", default="makyno.yaml", help="Config file")
@click.option("--log-level", default=None, help="Override log level")
@click.pass_context
def cli(ctx, config_path, log_level):
    """Makyno - approval-gated AI feature implementation on git worktrees."""
    load_dotenv()
    config = load_config(Path(config_path))
    if log_level:
        config.log_level = log_level
    setup_rich_logging(
        "cli",
        workspace=config.workspace.repo_root / config.workspace.data_dir,
        log_level=config.log_level,
    )
    ctx.ensure_object(dict)
    ctx.obj["config"] = config


@cli.command()
@click.argument("title")
@click.option("--description", "-d", default="", help="What the feature should do")
@click.pass_context
def create(ctx, title, description):
    """Create a feature in the backlog."""
    controller = build_controller(ctx.obj["config"])
    try:
        task = asyncio.run(controller.create(title, description))
    except MakynoError as e:
        _fail(ctx, e)
        return
    console.print(f"[green]✓ Created {task.id}[/]: {task.title}")


@cli.command(name="list")
@click.option("--status", "-s", type=click.Choice([s.value for s in TaskStatus]), help="Filter by status")
@click.pass_context
def list_cmd(ctx, status):
    """List features, newest first."""
    controller = build_controller(ctx.obj["config"])
    tasks = controller.list()
    if status:
        tasks = [t for t in tasks if TaskStatus(t.status).value == status]

    if not tasks:
        console.print("[dim]No features[/]")
        return

    table = Table()
    table.add_column("ID")
    table.add_column("Title")
    table.add_column("Status")
    table.add_column("Created")
    for task in tasks:
        table.add_row(
            task.id,
            task.title,
            _status_text(task.status),
            task.created_at.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)


@cli.command()
@click.argument("task_id")
@click.option("--diff", is_flag=True, help="Show the captured branch diff")
@click.pass_context
def show(ctx, task_id, diff):
    """Show a feature and its activity log."""
    controller = build_controller(ctx.obj["config"])
    try:
        task = controller.get(task_id)
    except MakynoError as e:
        _fail(ctx, e)
        return
    _print_task(task, diff)


def _print_task(task: Task, show_diff: bool = False) -> None:
    lines = [f"[bold]{task.title}[/]", f"Status: {_status_text(task.status)}", ""]
    if task.description:
        lines.extend([task.description, ""])
    for label, value in (
        ("Created", task.created_at),
        ("Started", task.started_at),
        ("Implemented", task.implemented_at),
        ("Completed", task.completed_at),
        ("Rejected", task.rejected_at),
    ):
        if value:
            lines.append(f"{label}: {value.isoformat()}")
    if task.rejection_reason:
        lines.append(f"Rejection reason: {task.rejection_reason}")
    if task.metadata:
        lines.append(
            f"Branch: {task.metadata.branch} "
            f"({task.metadata.commits} commit(s), {len(task.metadata.files_changed)} file(s))"
        )
    console.print(Panel("\n".join(lines), title=task.id))

    if task.logs:
        console.print("[bold]Activity[/]")
        for entry in task.logs:
            style = SEVERITY_STYLES[LogSeverity(entry.severity)]
            console.print(f"  [dim]{entry.timestamp.strftime('%H:%M:%S')}[/] [{style}]{entry.message}[/]")

    if show_diff and task.metadata and task.metadata.diff:
        console.print(Syntax(task.metadata.diff, "diff"))


@cli.command()
@click.argument("task_id")
@click.argument("status", type=click.Choice([s.value for s in TaskStatus]))
@click.option("--reason", "-r", default=None, help="Rejection reason")
@click.pass_context
def move(ctx, task_id, status, reason):
    """Move a feature to another status."""
    if status == TaskStatus.IN_PROGRESS.value:
        console.print("[yellow]Use 'makyno run' to start work so approvals can be answered[/]")
        ctx.exit(1)
        return

    controller = build_controller(ctx.obj["config"])
    try:
        task = asyncio.run(controller.transition(task_id, status, reason=reason))
    except MakynoError as e:
        _fail(ctx, e)
        return
    console.print(f"[green]✓[/] {task.id} is now {_status_text(task.status)}")


@cli.command()
@click.argument("task_id")
@click.pass_context
def run(ctx, task_id):
    """Start the agent on a todo feature and review its actions interactively."""
    controller = build_controller(ctx.obj["config"])
    try:
        asyncio.run(_run_interactive(controller, task_id))
    except MakynoError as e:
        _fail(ctx, e)
        return
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted. The feature stays in_progress; "
                      "move it back to todo to discard the sandbox.[/]")
        return

    _print_task(controller.get(task_id))


async def _run_interactive(controller: LifecycleController, task_id: str) -> None:
    task = await controller.transition(task_id, TaskStatus.IN_PROGRESS)
    session = controller.session_for(task.id)
    runner = controller.sessions.runner(task.id)
    if session is None or runner is None:
        return

    console.print(f"[bold cyan]🤖 Working on {task.id}[/] in {session.sandbox.root}")
    try:
        async for event in session.events.subscribe():
            data = event.data
            if event.type == SessionEventType.MESSAGE and data.get("role") == "assistant":
                if data.get("content"):
                    console.print(f"[cyan]assistant[/] {data['content']}")
            elif event.type == SessionEventType.TOOL_STATE:
                console.print(f"  [dim]{data['tool_name']}: {data['state']}[/]")
            elif event.type == SessionEventType.APPROVAL_REQUESTED:
                console.print(Panel(
                    json.dumps(data.get("tool_input", {}), indent=2),
                    title=f"{data['tool_name']} wants to run",
                    border_style="yellow",
                ))
                approved = await asyncio.to_thread(click.confirm, "Approve?", default=False)
                controller.approvals.resolve(data["approval_id"], approved)
            elif event.type == SessionEventType.FINISHED:
                console.print(f"[green]✓ Finished after {data['rounds']} round(s)[/]")
            elif event.type == SessionEventType.FAILED:
                console.print(f"[red]Session failed: {data.get('error', {}).get('message')}[/]")
            elif event.type == SessionEventType.CANCELLED:
                console.print("[yellow]Session cancelled[/]")

        await runner
    finally:
        await controller.shutdown()


if __name__ == "__main__":
    cli()
