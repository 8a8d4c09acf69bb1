import pytest

from ledgerflow import WorkflowHandle
from ledgerflow.errors import WorkflowNotFoundError
from ledgerflow.persistence import InMemoryWorkflowRepository, WorkflowStatus


@pytest.mark.asyncio
async def test_wait_times_out_while_pending():
    repo = InMemoryWorkflowRepository()
    wf = await repo.insert_workflow("welcome_flow", "null", 3)
    handle = WorkflowHandle(wf.id, repo, poll_interval=0.01)

    with pytest.raises(TimeoutError):
        await handle.wait(timeout=0.05)
    assert await handle.status() == WorkflowStatus.PENDING
    assert await handle.output() is None


@pytest.mark.asyncio
async def test_output_decodes_plain_json_without_definition():
    repo = InMemoryWorkflowRepository()
    wf = await repo.insert_workflow("report", "null", 3)
    await repo.claim_next_workflow("w1", 30)
    await repo.complete_workflow(wf.id, "w1", 1, '{"rows":3}')

    handle = WorkflowHandle(wf.id, repo)
    assert await handle.output() == {"rows": 3}
    assert await handle.wait(timeout=1) == {"rows": 3}


@pytest.mark.asyncio
async def test_missing_workflow_raises():
    handle = WorkflowHandle(404, InMemoryWorkflowRepository())
    with pytest.raises(WorkflowNotFoundError):
        await handle.status()


@pytest.mark.asyncio
async def test_output_is_none_both_before_completion_and_for_null_results():
    repo = InMemoryWorkflowRepository()
    returned_null = await repo.insert_workflow("welcome_flow", "null", 3)
    not_started = await repo.insert_workflow("welcome_flow", "null", 3)
    claimed = await repo.claim_next_workflow("w1", 30)
    assert claimed.id == returned_null.id
    await repo.complete_workflow(returned_null.id, "w1", 1, "null")

    done = WorkflowHandle(returned_null.id, repo)
    waiting = WorkflowHandle(not_started.id, repo)
    assert await done.output() is None
    assert await waiting.output() is None
    assert await done.status() == WorkflowStatus.COMPLETED
    assert await waiting.status() == WorkflowStatus.PENDING
    assert await done.wait(timeout=1) is None
