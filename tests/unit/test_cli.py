import asyncio
import textwrap

import pytest
from typer.testing import CliRunner

import ledgerflow.persistence as persistence
from ledgerflow.cli import app
from ledgerflow.persistence import InMemoryWorkflowRepository
from ledgerflow.registry import REGISTRY

runner = CliRunner()


def _setup_repo() -> InMemoryWorkflowRepository:
    repo = InMemoryWorkflowRepository()
    persistence._repository_instance = repo
    return repo


@pytest.fixture
def isolated_registry(monkeypatch):
    """Let a test register into the global registry without leaking names."""
    for attr in ("_steps", "_workflows", "_by_fn"):
        monkeypatch.setattr(REGISTRY, attr, dict(getattr(REGISTRY, attr)))
    monkeypatch.setattr(REGISTRY, "_frozen", False)
    return REGISTRY


async def _completed_welcome_flow(repo):
    wf = await repo.insert_workflow("welcome_flow", '{"user_id":123}', 3)
    await repo.claim_next_workflow("w1", 30)
    await repo.start_step(wf.id, "w1", 1, 0, "fetch_user", "123", 30)
    await repo.complete_step(wf.id, "w1", 1, 0, '"user:123"', 30)
    await repo.start_step(wf.id, "w1", 1, 1, "send_welcome_email", '"user:123"', 30)
    await repo.complete_step(wf.id, "w1", 1, 1, "null", 30)
    await repo.complete_workflow(wf.id, "w1", 1, "null")
    return wf


def test_workflow_list_shows_rows():
    repo = _setup_repo()
    done = asyncio.run(_completed_welcome_flow(repo))
    queued = asyncio.run(repo.insert_workflow("flaky_flow", "null", 5))

    result = runner.invoke(app, ["workflow", "list"])
    assert result.exit_code == 0, result.output
    lines = result.output.strip().splitlines()
    assert lines == [
        f"{queued.id}\tflaky_flow\tpending\t0/5",
        f"{done.id}\twelcome_flow\tcompleted\t1/3",
    ]

    filtered = runner.invoke(app, ["workflow", "list", "--status", "completed"])
    assert filtered.exit_code == 0, filtered.output
    assert "flaky_flow" not in filtered.output
    assert "welcome_flow" in filtered.output


def test_workflow_list_empty():
    _setup_repo()
    result = runner.invoke(app, ["workflow", "list"])
    assert result.exit_code == 0
    assert "No workflows found" in result.output


def test_workflow_show_details_and_missing():
    repo = _setup_repo()
    wf = asyncio.run(_completed_welcome_flow(repo))

    result = runner.invoke(app, ["workflow", "show", str(wf.id)])
    assert result.exit_code == 0, result.output
    assert f"Workflow {wf.id} (welcome_flow): completed" in result.output
    assert "Attempts: 1/3" in result.output
    assert '[0] fetch_user: completed (attempts 1)' in result.output
    assert '[1] send_welcome_email: completed (attempts 1)' in result.output

    missing = runner.invoke(app, ["workflow", "show", "999"])
    assert missing.exit_code == 1
    assert "Workflow not found" in missing.output


def test_workflow_cancel():
    repo = _setup_repo()
    wf = asyncio.run(repo.insert_workflow("welcome_flow", "null", 3))

    result = runner.invoke(app, ["workflow", "cancel", str(wf.id), "--reason", "duplicate"])
    assert result.exit_code == 0, result.output
    assert f"Workflow {wf.id} cancelled" in result.output
    record = asyncio.run(repo.get_workflow(wf.id))
    assert record.status == "failed"
    assert record.error == "duplicate"

    again = runner.invoke(app, ["workflow", "cancel", str(wf.id)])
    assert again.exit_code == 1
    assert "Workflow not found or already finished" in again.output


def test_schema_show_renders_ddl():
    result = runner.invoke(app, ["schema", "show"])
    assert result.exit_code == 0, result.output
    assert "CREATE TABLE workflows" in result.output
    assert "CREATE TABLE workflow_steps" in result.output
    assert "ix_workflows_status_next_run_at" in result.output

    sqlite = runner.invoke(app, ["schema", "show", "--dialect", "sqlite"])
    assert sqlite.exit_code == 0, sqlite.output

    bad = runner.invoke(app, ["schema", "show", "--dialect", "oracle"])
    assert bad.exit_code == 1


def test_schema_install_against_sqlite_file(tmp_path):
    url = f"sqlite:///{tmp_path / 'cli.db'}"

    result = runner.invoke(app, ["--database-url", url, "schema", "install"])
    assert result.exit_code == 0, result.output
    assert "Workflow schema installed" in result.output
    assert (tmp_path / "cli.db").exists()

    listed = runner.invoke(app, ["--database-url", url, "workflow", "list"])
    assert listed.exit_code == 0, listed.output
    assert "No workflows found" in listed.output


def test_start_and_run_workflow_from_app_file(tmp_path, isolated_registry):
    app_file = tmp_path / "cli_greeting_app.py"
    app_file.write_text(
        textwrap.dedent(
            """
            from ledgerflow import register_step, register_workflow


            async def greet(name: str) -> str:
                return f"Hello, {name}"


            async def greeting_flow(ctx, name):
                return await ctx.run(greet, name)


            register_step("cli_greet", greet, input_type=str, output_type=str)
            register_workflow("cli_greeting", greeting_flow, input_type=str, output_type=str)
            """
        )
    )
    repo = _setup_repo()

    started = runner.invoke(
        app,
        ["workflow", "start", "cli_greeting", "--input", '"Ada"', "--app", str(app_file)],
    )
    assert started.exit_code == 0, started.output
    assert "Workflow id: 1" in started.output

    ran = runner.invoke(
        app, ["worker", "run", "--app", str(app_file), "--lifespan", "0.2", "--concurrency", "1"]
    )
    assert ran.exit_code == 0, ran.output
    assert "Starting worker" in ran.output
    assert "Worker stopped" in ran.output

    record = asyncio.run(repo.get_workflow(1))
    assert record.status == "completed"
    assert record.output == '"Hello, Ada"'


def test_start_rejects_bad_input():
    _setup_repo()
    bad_json = runner.invoke(app, ["workflow", "start", "welcome_flow", "--input", "{oops"])
    assert bad_json.exit_code == 1
    assert "Invalid JSON input" in bad_json.output

    unknown = runner.invoke(app, ["workflow", "start", "no_such_flow"])
    assert unknown.exit_code == 1
    assert "not registered" in unknown.output

    zero = runner.invoke(app, ["workflow", "start", "no_such_flow", "--max-attempts", "0"])
    assert zero.exit_code == 1
    assert "max_attempts must be at least 1" in zero.output
