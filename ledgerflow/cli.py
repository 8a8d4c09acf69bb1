"""Command line interface for ledgerflow operators."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import signal
from typing import Any, Awaitable, List, Optional

import typer

from ledgerflow import WorkflowDispatcher, WorkflowWorker, get_repository
from ledgerflow.cli_utils.loader import load_modules
from ledgerflow.config import LedgerflowConfig, load_config
from ledgerflow.db import schema_ddl
from ledgerflow.errors import LedgerflowError
from ledgerflow.persistence import WorkflowRepository, WorkflowStatus

app = typer.Typer(help="CLI for ledgerflow durable workflows")

# Command groups
schema_app = typer.Typer(help="Commands for managing the workflow tables")
worker_app = typer.Typer(help="Commands for running workers")
workflow_app = typer.Typer(help="Commands for managing workflows")

app.add_typer(schema_app, name="schema")
app.add_typer(worker_app, name="worker")
app.add_typer(workflow_app, name="workflow")

_state: dict[str, Any] = {}


def _config() -> LedgerflowConfig:
    if "config" not in _state:
        _state["config"] = load_config()
    return _state["config"]


def _repository() -> WorkflowRepository:
    database_url = _state.get("database_url")
    if database_url:
        return get_repository(database_url)
    return get_repository()


def _run(coro: Awaitable[Any], repository: WorkflowRepository) -> Any:
    async def _main() -> Any:
        try:
            return await coro
        finally:
            await repository.close()

    return asyncio.run(_main())


def _load_apps(apps: Optional[List[str]]) -> None:
    try:
        load_modules(apps or [])
    except (ImportError, OSError) as exc:
        typer.secho(f"Cannot load application module: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)


@app.callback()
def main(
    config: Optional[str] = typer.Option(None, help="Path to YAML config file"),
    database_url: Optional[str] = typer.Option(
        None, help="Database URL (overrides config and environment)"
    ),
    log_level: str = typer.Option("INFO", help="Logging level"),
) -> None:
    """ledgerflow CLI entry point."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    _state.clear()
    _state["config"] = load_config(config)
    _state["database_url"] = database_url or _state["config"].database_url


@schema_app.command("install")
def schema_install() -> None:
    """
    Create the ``workflows`` and ``workflow_steps`` tables.

    Safe to run repeatedly; existing tables are left untouched.

    Example:
        ledgerflow --database-url postgresql://localhost/app schema install
    """
    repo = _repository()
    _run(repo.install_schema(), repo)
    typer.echo("Workflow schema installed")


@schema_app.command("show")
def schema_show(
    dialect: str = typer.Option("postgresql", help="SQL dialect: postgresql or sqlite"),
) -> None:
    """Print the CREATE statements for the workflow tables."""
    try:
        typer.echo(schema_ddl(dialect))
    except ValueError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)


@worker_app.command("run")
def worker_run(
    app_modules: Optional[List[str]] = typer.Option(
        None, "--app", help="Module or .py file registering workflows (repeatable)"
    ),
    concurrency: Optional[int] = typer.Option(None, help="Parallel worker loops"),
    lifespan: Optional[float] = typer.Option(
        None, help="Stop after this many seconds (default: run until interrupted)"
    ),
) -> None:
    """
    Run a worker pool that claims and executes workflows.

    Imports the given application modules so their registrations are in
    place, then polls the store until interrupted (Ctrl+C / SIGTERM) or
    ``--lifespan`` expires.

    Example:
        ledgerflow worker run --app myapp.workflows
        ledgerflow worker run --app ./guides/welcome_flow.py --concurrency 8
    """
    _load_apps(app_modules)
    worker_config = _config().worker
    if concurrency is not None:
        worker_config = worker_config.model_copy(update={"concurrency": concurrency})

    repo = _repository()
    worker = WorkflowWorker(repository=repo, config=worker_config)

    async def _serve() -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError):
                loop.add_signal_handler(sig, worker.stop)
        await worker.run(lifespan=lifespan)

    typer.echo(f"Starting worker {worker.worker_id}")
    _run(_serve(), repo)
    typer.echo("Worker stopped")


@workflow_app.command("start")
def workflow_start(
    name: str,
    input: Optional[str] = typer.Option(None, help="JSON input for the workflow"),
    max_attempts: Optional[int] = typer.Option(None, help="Attempt ceiling"),
    wait: bool = typer.Option(False, help="Wait for the workflow to finish"),
    timeout: Optional[float] = typer.Option(None, help="Seconds to wait with --wait"),
    app_modules: Optional[List[str]] = typer.Option(
        None, "--app", help="Module or .py file registering workflows (repeatable)"
    ),
) -> None:
    """
    Enqueue a workflow and print its id.

    Example:
        ledgerflow workflow start welcome_flow --input '{"user_id": 123}' --app myapp.workflows
    """
    _load_apps(app_modules)
    try:
        value = json.loads(input) if input else None
    except json.JSONDecodeError as exc:
        typer.secho(f"Invalid JSON input: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    repo = _repository()
    dispatcher = WorkflowDispatcher(repository=repo, config=_config().worker)

    async def _start() -> Any:
        handle = await dispatcher.start_workflow(name, value, max_attempts=max_attempts)
        typer.echo(f"Workflow id: {handle.id}")
        if wait:
            return await handle.wait(timeout=timeout)
        return None

    try:
        output = _run(_start(), repo)
    except (LedgerflowError, TimeoutError, ValueError) as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)
    if wait:
        typer.echo(f"Output: {json.dumps(output)}")


@workflow_app.command("list")
def workflow_list(
    status: Optional[WorkflowStatus] = typer.Option(None, help="Filter by status"),
    limit: Optional[int] = typer.Option(None, help="Maximum rows to show"),
) -> None:
    """
    List workflows with their current status.

    Example:
        ledgerflow workflow list --status failed
        # Output: 42    welcome_flow    failed    2/2
    """
    repo = _repository()
    workflows = _run(repo.list_workflows(status=status, limit=limit), repo)
    if not workflows:
        typer.echo("No workflows found")
        return
    for wf in workflows:
        typer.echo(
            f"{wf.id}\t{wf.name}\t{wf.status.value}\t{wf.attempts}/{wf.max_attempts}"
        )


@workflow_app.command("show")
def workflow_show(workflow_id: int) -> None:
    """
    Show a workflow and its step history.

    Example:
        ledgerflow workflow show 42
        # Output: Workflow 42 (welcome_flow): completed
        #         [0] fetch_user: completed (attempts 1)
        #         [1] send_welcome_email: completed (attempts 1)
    """
    repo = _repository()

    async def _load():
        wf = await repo.get_workflow(workflow_id)
        steps = await repo.list_steps(workflow_id) if wf else []
        return wf, steps

    wf, steps = _run(_load(), repo)
    if wf is None:
        typer.echo("Workflow not found")
        raise typer.Exit(code=1)

    typer.echo(f"Workflow {wf.id} ({wf.name}): {wf.status.value}")
    typer.echo(f"Attempts: {wf.attempts}/{wf.max_attempts}")
    typer.echo(f"Input: {wf.input}")
    if wf.output is not None:
        typer.echo(f"Output: {wf.output}")
    if wf.error:
        typer.echo(f"Error: {wf.error}")
    if wf.worker_id:
        typer.echo(f"Leased by {wf.worker_id} until {wf.locked_until}")
    for step in steps:
        line = f"[{step.step_index}] {step.step_name}: {step.status.value} (attempts {step.attempts})"
        if step.error:
            line += f" - {step.error}"
        typer.echo(line)


@workflow_app.command("cancel")
def workflow_cancel(
    workflow_id: int,
    reason: str = typer.Option("Cancelled by operator", help="Recorded as the error"),
) -> None:
    """Force a workflow to ``failed`` so it is never scheduled again."""
    repo = _repository()
    dispatcher = WorkflowDispatcher(repository=repo, config=_config().worker)
    if not _run(dispatcher.cancel_workflow(workflow_id, reason), repo):
        typer.echo("Workflow not found or already finished")
        raise typer.Exit(code=1)
    typer.echo(f"Workflow {workflow_id} cancelled")


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
