"""Command-line interface for todo_sync.

Manage local tasks and drive synchronization with the remote server.
"""

import asyncio
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .config import Config, SyncSettings, load_settings, save_settings
from .database import Database
from .models import SyncResult, Task, TaskSyncStatus
from .services.task_service import TaskService
from .sync.engine import SyncEngine
from .sync.queue import SyncQueue
from .utils.logging import setup_logging


console = Console()

SYNC_STATUS_STYLES = {
    TaskSyncStatus.PENDING: "yellow",
    TaskSyncStatus.SYNCED: "green",
    TaskSyncStatus.ERROR: "red",
}


class AppContext:
    """Lazily built services shared by commands."""

    def __init__(self, settings: SyncSettings):
        self.settings = settings
        self._db: Optional[Database] = None

    @property
    def db(self) -> Database:
        if self._db is None:
            self._db = Database(self.settings.get_db_path())
        return self._db

    def task_service(self) -> TaskService:
        return TaskService(self.db)

    def sync_engine(self) -> SyncEngine:
        return SyncEngine.from_settings(self.settings, db=self.db)


pass_app = click.make_pass_decorator(AppContext)


def _run_with_engine(app: AppContext, operation):
    async def runner():
        engine = app.sync_engine()
        try:
            return await operation(engine)
        finally:
            await engine.aclose()

    return asyncio.run(runner())


def _status_text(task: Task) -> str:
    style = SYNC_STATUS_STYLES.get(task.sync_status, "white")
    return f"[{style}]{task.sync_status.value}[/{style}]"


def _format_time(value) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S") if value else "never"


@click.group()
@click.version_option(__version__, prog_name="todo-sync")
@click.option("--config", "config_path", type=click.Path(dir_okay=False, path_type=Path),
              help="Path to config.yaml")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(ctx: click.Context, config_path: Optional[Path], verbose: bool):
    """Offline-first task manager with background sync."""
    settings = load_settings(config_path)
    setup_logging("DEBUG" if verbose else settings.log_level, console=Console(stderr=True))
    ctx.obj = AppContext(settings)


# ============================================================================
# Tasks
# ============================================================================

@main.group()
def task():
    """Manage local tasks."""
    pass


@task.command("add")
@click.argument("title")
@click.option("--description", "-d", default="", help="Task description")
@pass_app
def task_add(app: AppContext, title: str, description: str):
    """Create a task."""
    try:
        created = app.task_service().create_task(title, description)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="TITLE")
    console.print(f"[green]✓[/green] Created task [cyan]{created.id}[/cyan]: {created.title}")


@task.command("list")
@pass_app
def task_list(app: AppContext):
    """List live tasks."""
    tasks = app.task_service().get_all_tasks()
    if not tasks:
        console.print("[dim]No tasks yet.[/dim]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Title")
    table.add_column("Done", justify="center")
    table.add_column("Sync", justify="center")
    table.add_column("Server ID", style="dim")
    for item in tasks:
        table.add_row(item.id, item.title, "✓" if item.completed else "",
                      _status_text(item), item.server_id or "-")
    console.print(table)


@task.command("show")
@click.argument("task_id")
@pass_app
def task_show(app: AppContext, task_id: str):
    """Show one task."""
    found = app.task_service().get_task(task_id)
    if found is None:
        raise click.ClickException(f"Task not found: {task_id}")

    body = (
        f"[bold]{found.title}[/bold]\n{found.description or '[dim]no description[/dim]'}\n\n"
        f"Completed: {'yes' if found.completed else 'no'}\n"
        f"Sync status: {_status_text(found)}\n"
        f"Server ID: {found.server_id or '-'}\n"
        f"Last synced: {_format_time(found.last_synced_at)}\n"
        f"Updated: {_format_time(found.updated_at)}"
    )
    console.print(Panel(body, title=found.id, border_style="cyan"))


@task.command("update")
@click.argument("task_id")
@click.option("--title", help="New title")
@click.option("--description", "-d", help="New description")
@click.option("--done/--not-done", default=None, help="Mark completed or reopen")
@pass_app
def task_update(app: AppContext, task_id: str, title: Optional[str],
                description: Optional[str], done: Optional[bool]):
    """Update a task."""
    updates = {}
    if title is not None:
        updates["title"] = title
    if description is not None:
        updates["description"] = description
    if done is not None:
        updates["completed"] = done
    if not updates:
        raise click.UsageError("Nothing to update")

    try:
        updated = app.task_service().update_task(task_id, **updates)
    except ValueError as e:
        raise click.ClickException(str(e))
    if updated is None:
        raise click.ClickException(f"Task not found: {task_id}")
    console.print(f"[green]✓[/green] Updated task [cyan]{updated.id}[/cyan]")


@task.command("delete")
@click.argument("task_id")
@pass_app
def task_delete(app: AppContext, task_id: str):
    """Soft-delete a task."""
    if not app.task_service().delete_task(task_id):
        raise click.ClickException(f"Task not found: {task_id}")
    console.print(f"[green]✓[/green] Deleted task [cyan]{task_id}[/cyan]")


# ============================================================================
# Sync
# ============================================================================

@main.group()
def sync():
    """Synchronize with the remote server."""
    pass


def _print_result(result: SyncResult) -> None:
    if result.offline:
        console.print("[yellow]⚠ Remote server is unreachable; nothing was sent.[/yellow]")
        return

    style = "green" if result.success else "red"
    summary = (
        f"Synced: [green]{result.synced_items}[/green]  "
        f"Failed: [red]{result.failed_items}[/red]  "
        f"Deferred: [yellow]{result.deferred_items}[/yellow]"
    )
    if result.cancelled:
        summary += "\n[yellow]Cycle was cancelled at a batch boundary.[/yellow]"
    if result.message and not result.cancelled:
        summary += f"\n{result.message}"
    console.print(Panel(summary, title="Sync result", border_style=style))

    if result.errors:
        table = Table(show_header=True, header_style="bold red")
        table.add_column("Task", style="cyan", no_wrap=True)
        table.add_column("Operation")
        table.add_column("Error")
        for error in result.errors:
            table.add_row(error.task_id, error.operation.value, error.error)
        console.print(table)


@sync.command("run")
@pass_app
def sync_run(app: AppContext):
    """Run one sync cycle."""
    result = _run_with_engine(app, lambda engine: engine.sync())
    _print_result(result)
    if not result.success:
        raise SystemExit(1)


async def _local_status(engine: SyncEngine):
    return engine.status()


@sync.command("status")
@click.option("--offline", is_flag=True, help="Skip the connectivity probe")
@pass_app
def sync_status(app: AppContext, offline: bool):
    """Show pending work and connectivity."""
    if offline:
        summary = _run_with_engine(app, _local_status)
        online = "[dim]not checked[/dim]"
    else:
        summary = _run_with_engine(app, lambda engine: engine.status_with_connectivity())
        online = "[green]online[/green]" if summary.is_online else "[red]offline[/red]"

    table = Table(show_header=False, box=None)
    table.add_column("Key", style="bold")
    table.add_column("Value")
    table.add_row("Pending items", str(summary.pending_count))
    table.add_row("Failed items", str(summary.failed_count))
    table.add_row("Last synced", _format_time(summary.last_synced_at))
    table.add_row("Remote", online)
    table.add_row("Server", app.settings.api_base_url)
    console.print(table)


@sync.command("queue")
@click.option("--failed", is_flag=True, help="Show only terminally failed items")
@pass_app
def sync_queue(app: AppContext, failed: bool):
    """List queued operations."""
    queue = SyncQueue(app.db)
    items = queue.failed_items() if failed else queue.all_items()
    if not items:
        console.print("[dim]Queue is empty.[/dim]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Item", style="cyan", no_wrap=True)
    table.add_column("Task", no_wrap=True)
    table.add_column("Operation")
    table.add_column("Retries", justify="right")
    table.add_column("Status")
    table.add_column("Last error", style="dim")
    for item in items:
        status_style = "red" if item.status.value == "failed" else "yellow"
        table.add_row(item.id, item.task_id, item.operation.value, str(item.retry_count),
                      f"[{status_style}]{item.status.value}[/{status_style}]",
                      item.error_message or "")
    console.print(table)


@sync.command("retry")
@click.argument("item_id", required=False)
@click.option("--all", "retry_all", is_flag=True, help="Re-enqueue every failed item")
@pass_app
def sync_retry(app: AppContext, item_id: Optional[str], retry_all: bool):
    """Re-enqueue terminally failed queue items."""
    if not item_id and not retry_all:
        raise click.UsageError("Give an ITEM_ID or --all")

    queue = SyncQueue(app.db)
    if retry_all:
        requeued = queue.requeue_all_failed()
        console.print(f"[green]✓[/green] Re-enqueued {len(requeued)} failed items")
        return

    requeued = queue.requeue_failed(item_id)
    if requeued is None:
        raise click.ClickException(f"No failed queue item with id {item_id}")
    console.print(f"[green]✓[/green] Re-enqueued [cyan]{item_id}[/cyan] for task {requeued.task_id}")


# ============================================================================
# Config and server
# ============================================================================

@main.group()
def config():
    """Inspect and write configuration."""
    pass


@config.command("show")
@pass_app
def config_show(app: AppContext):
    """Print the effective configuration."""
    console.print(app.settings.to_yaml())


@config.command("init")
@click.option("--api-url", help="Remote API base URL")
@click.option("--batch-size", type=int, help="Items per batch")
@click.option("--max-retries", type=int, help="Attempts before an item is frozen")
@pass_app
def config_init(app: AppContext, api_url: Optional[str], batch_size: Optional[int],
                max_retries: Optional[int]):
    """Write a config.yaml with the given values."""
    data = app.settings.to_dict()
    if api_url:
        data["api_base_url"] = api_url
    if batch_size is not None:
        data["batch_size"] = batch_size
    if max_retries is not None:
        data["max_retries"] = max_retries
    try:
        settings = SyncSettings(**data)
    except ValueError as e:
        raise click.ClickException(str(e))

    path = save_settings(settings)
    Config.set(settings)
    console.print(f"[green]✓[/green] Configuration saved to {path}")


@main.command()
@click.option("--host", default="127.0.0.1", show_default=True, help="Host to bind the server to")
@click.option("--port", default=8000, type=int, show_default=True, help="Port to bind the server to")
@click.option("--reload", is_flag=True, help="Enable auto-reload")
def serve(host: str, port: int, reload: bool):
    """Start the local task API."""
    from .web.server import start_server

    console.print(Panel(f"Serving on [bold green]http://{host}:{port}[/bold green]",
                        title="todo_sync API", border_style="cyan"))
    start_server(host=host, port=port, reload=reload)


if __name__ == "__main__":
    main()
