"""Tests for the worker runtime: unit folding and the job run lifecycle."""

import pytest

from refdesk.core.job_store import JobStore, to_record
from refdesk.core.runtime import FoldResult, JobRun, execute_job, fold_units
from refdesk.models.jobs import JobStatus


class TestFoldUnits:
    @pytest.mark.asyncio
    async def test_collects_successes_and_failures(self):
        async def handler(n):
            if n % 2:
                raise RuntimeError(f"odd {n}")
            return n * 10

        result = await fold_units([0, 1, 2, 3], handler)

        assert result.succeeded == (0, 20)
        assert [f.unit for f in result.failed] == [1, 3]
        assert result.failed[0].error == "odd 1"
        assert result.processed == 4
        assert not result.all_failed

    @pytest.mark.asyncio
    async def test_reports_running_count_after_every_unit(self):
        seen = []

        async def handler(n):
            return n

        async def on_unit(acc: FoldResult):
            seen.append(acc.processed)

        await fold_units(["a", "b", "c"], handler, on_unit=on_unit)
        assert seen == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_all_failed(self):
        async def handler(n):
            raise ValueError("nope")

        result = await fold_units([1, 2], handler)
        assert result.all_failed

    def test_fold_result_is_immutable(self):
        empty = FoldResult()
        grown = empty.with_success("x")
        assert empty.succeeded == ()
        assert grown.succeeded == ("x",)


@pytest.mark.asyncio
async def test_execute_job_completes(db_session, job_factory, job_runtime):
    job = await job_factory(total=2)

    async def body(run: JobRun):
        await run.advance(1)
        await run.complete({"done": True}, progress=2)

    outcome = await execute_job(to_record(job), body)

    assert outcome["status"] == "completed"
    reloaded = await JobStore(db_session).get(job.id)
    assert reloaded.status == "completed"
    assert reloaded.progress == 2
    assert reloaded.result == {"done": True}


@pytest.mark.asyncio
async def test_execute_job_records_crash(db_session, job_factory, job_runtime):
    job = await job_factory()

    async def body(run: JobRun):
        raise RuntimeError("renderer exploded")

    outcome = await execute_job(to_record(job), body)

    assert outcome["status"] == "failed"
    reloaded = await JobStore(db_session).get(job.id)
    assert reloaded.status == "failed"
    assert reloaded.error_code == "WorkerError"
    assert reloaded.error_message == "renderer exploded"


@pytest.mark.asyncio
async def test_execute_job_without_outcome_fails(db_session, job_factory, job_runtime):
    job = await job_factory()

    async def body(run: JobRun):
        return None

    await execute_job(to_record(job), body)

    reloaded = await JobStore(db_session).get(job.id)
    assert reloaded.status == "failed"
    assert reloaded.error_message == "Worker finished without a result"


@pytest.mark.asyncio
async def test_execute_job_skips_terminal_job(db_session, job_factory, job_runtime):
    job = await job_factory(status="completed", progress=1, result={"sent": 1})
    calls = []

    async def body(run: JobRun):
        calls.append(run.job_id)

    outcome = await execute_job(to_record(job), body)

    assert outcome["status"] == "skipped"
    assert calls == []
    assert (await JobStore(db_session).get(job.id)).result == {"sent": 1}


@pytest.mark.asyncio
async def test_completion_after_reap_is_not_reported(db_session, job_factory, job_runtime):
    job = await job_factory(total=1)
    written = []

    async def body(run: JobRun):
        # The reaper fails the job while the worker is still busy
        await JobStore(db_session).update_status(
            job.id,
            JobStatus.FAILED,
            error_message="Worker stopped responding",
            error_code="LeaseExpired",
        )
        await db_session.commit()
        written.append(await run.complete({"done": True}, progress=1))

    outcome = await execute_job(to_record(job), body)

    assert written == [False]
    assert outcome["status"] == "skipped"
    reloaded = await JobStore(db_session).get(job.id)
    assert reloaded.status == "failed"
    assert reloaded.error_code == "LeaseExpired"
    assert reloaded.result is None


@pytest.mark.asyncio
async def test_late_failure_of_completed_job_is_ignored(
    db_session, job_factory, session_factory
):
    job = await job_factory(status="processing")
    run = JobRun(to_record(job), session_factory)
    await JobStore(db_session).update_status(
        job.id, JobStatus.COMPLETED, result={"sent": 1}, progress=1
    )
    await db_session.commit()

    assert not await run.fail("late failure")
    assert run.outcome == "skipped"
    assert (await JobStore(db_session).get(job.id)).status == "completed"
