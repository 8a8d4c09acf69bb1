"""Claim protocol: mutual exclusion, scheduling and lease expiry."""

import asyncio
from datetime import datetime, timedelta

import pytest

from ledgerflow.errors import LeaseLostError
from ledgerflow.persistence import WorkflowStatus

NOW = datetime(2024, 1, 1, 12, 0, 0)
LEASE = 30


@pytest.mark.asyncio
async def test_concurrent_claims_never_share_a_workflow(backend, open_repository):
    async with open_repository(backend) as repo:
        ids = {
            (await repo.insert_workflow(f"wf{n}", "null", 3, now=NOW)).id for n in range(3)
        }

        results = await asyncio.gather(
            *(repo.claim_next_workflow(f"w{n}", LEASE, now=NOW) for n in range(6))
        )
        claimed = [c for c in results if c is not None]

        assert len(claimed) == 3
        assert {c.id for c in claimed} == ids
        for c in claimed:
            row = await repo.get_workflow(c.id)
            assert row.worker_id == c.worker_id
            assert row.attempts == 1


@pytest.mark.asyncio
async def test_future_next_run_at_is_not_claimable(backend, open_repository):
    async with open_repository(backend) as repo:
        wf = await repo.insert_workflow("flaky_flow", "null", 3, now=NOW)
        await repo.claim_next_workflow("w1", LEASE, now=NOW)
        retry_at = NOW + timedelta(seconds=10)
        await repo.requeue_workflow(wf.id, "w1", 1, "boom", retry_at, now=NOW)

        assert await repo.claim_next_workflow("w1", LEASE, now=NOW + timedelta(seconds=9)) is None
        claimed = await repo.claim_next_workflow("w2", LEASE, now=retry_at)
        assert claimed is not None
        assert claimed.attempts == 2


@pytest.mark.asyncio
async def test_expired_lease_is_reclaimed(backend, open_repository):
    async with open_repository(backend) as repo:
        wf = await repo.insert_workflow("welcome_flow", "null", 3, now=NOW)
        await repo.claim_next_workflow("w1", LEASE, now=NOW)

        expiry = NOW + timedelta(seconds=LEASE)
        assert await repo.claim_next_workflow("w2", LEASE, now=expiry) is None

        later = expiry + timedelta(seconds=1)
        reclaimed = await repo.claim_next_workflow("w2", LEASE, now=later)
        assert reclaimed is not None
        assert reclaimed.id == wf.id
        assert reclaimed.worker_id == "w2"
        assert reclaimed.attempts == 2

        # The previous owner can no longer write anything.
        with pytest.raises(LeaseLostError):
            await repo.start_step(wf.id, "w1", 1, 0, "fetch_user", "1", LEASE, now=later)
        with pytest.raises(LeaseLostError):
            await repo.complete_workflow(wf.id, "w1", 1, "null", now=later)

        row = await repo.get_workflow(wf.id)
        assert row.status == WorkflowStatus.RUNNING
        assert row.worker_id == "w2"


@pytest.mark.asyncio
async def test_terminal_workflows_are_never_claimed(backend, open_repository):
    async with open_repository(backend) as repo:
        done = await repo.insert_workflow("a", "null", 3, now=NOW)
        await repo.claim_next_workflow("w1", LEASE, now=NOW)
        await repo.complete_workflow(done.id, "w1", 1, "null", now=NOW)

        cancelled = await repo.insert_workflow("b", "null", 3, now=NOW)
        await repo.cancel_workflow(cancelled.id, "stop", now=NOW)

        far_future = NOW + timedelta(days=365)
        assert await repo.claim_next_workflow("w2", LEASE, now=far_future) is None


@pytest.mark.asyncio
async def test_sqlite_claims_across_separate_engines(open_repository):
    """Two workers with their own connection pools share one database file."""
    async with open_repository("sqlite", "shared.db") as first:
        async with open_repository("sqlite", "shared.db") as second:
            for n in range(4):
                await first.insert_workflow(f"wf{n}", "null", 3, now=NOW)

            results = await asyncio.gather(
                *(first.claim_next_workflow("a", LEASE, now=NOW) for _ in range(3)),
                *(second.claim_next_workflow("b", LEASE, now=NOW) for _ in range(3)),
            )
            claimed = [c.id for c in results if c is not None]
            assert len(claimed) == 4
            assert len(set(claimed)) == 4


@pytest.mark.asyncio
async def test_reclaim_by_same_worker_fences_the_earlier_attempt(backend, open_repository):
    async with open_repository(backend) as repo:
        wf = await repo.insert_workflow("welcome_flow", "null", 3, now=NOW)
        first = await repo.claim_next_workflow("w1", LEASE, now=NOW)
        later = NOW + timedelta(seconds=LEASE + 1)
        second = await repo.claim_next_workflow("w1", LEASE, now=later)
        assert (first.attempts, second.attempts) == (1, 2)
        assert second.worker_id == first.worker_id

        # Same worker id, but the execution from the first claim is stale.
        with pytest.raises(LeaseLostError) as exc_info:
            await repo.complete_workflow(wf.id, "w1", 1, '"stale"', now=later)
        assert exc_info.value.attempt == 1
        with pytest.raises(LeaseLostError):
            await repo.start_step(wf.id, "w1", 1, 0, "fetch_user", "1", LEASE, now=later)
        with pytest.raises(LeaseLostError):
            await repo.refresh_lease(wf.id, "w1", 1, LEASE, now=later)
        with pytest.raises(LeaseLostError):
            await repo.requeue_workflow(wf.id, "w1", 1, "boom", later, now=later)

        assert await repo.load_step(wf.id, 0) is None
        await repo.start_step(wf.id, "w1", 2, 0, "fetch_user", "1", LEASE, now=later)
        await repo.complete_step(wf.id, "w1", 2, 0, '"user:1"', LEASE, now=later)
        await repo.complete_workflow(wf.id, "w1", 2, '"fresh"', now=later)

        row = await repo.get_workflow(wf.id)
        assert row.status == WorkflowStatus.COMPLETED
        assert row.output == '"fresh"'
        assert row.attempts == 2
