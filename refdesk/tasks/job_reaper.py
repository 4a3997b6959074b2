"""
Job reaper - fails processing jobs whose worker stopped renewing its lease.

Workers extend ``lease_expires_at`` every time they record progress. A job
whose lease ran out belongs to a worker that crashed or was killed before
writing a terminal status.

Mission order batches and export jobs are rendered within a single periodic
tick and carry no lease; a row left in processing longer than
``artifact_stall_seconds`` was claimed by a tick that died. Stalled batches
go back to pending so the next tick renders them again. Stalled exports are
failed, since an export only moves forward and the caller can request it anew.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone

from celery import shared_task
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from refdesk.config import settings
from refdesk.core.exceptions import LeaseExpired
from refdesk.core.job_store import JobStore
from refdesk.db.session import dispose_engine, get_session_local
from refdesk.models.jobs import ExportJob, JobStatus, MissionOrderBatch
from refdesk.tasks.task_lock import with_task_lock

logger = logging.getLogger(__name__)

LEASE_EXPIRED_MESSAGE = "Worker stopped responding before the job finished"
EXPORT_STALLED_MESSAGE = "Export worker stopped responding before the file was ready"


async def _stalled(session: AsyncSession, model, key, cutoff: datetime) -> list:
    result = await session.execute(
        select(key).where(
            model.status == JobStatus.PROCESSING.value,
            model.updated_at < cutoff,
        )
    )
    return list(result.scalars().all())


async def requeue_stalled_batches(session: AsyncSession, cutoff: datetime) -> list[str]:
    requeued = []
    for batch_hash in await _stalled(
        session, MissionOrderBatch, MissionOrderBatch.hash, cutoff
    ):
        result = await session.execute(
            update(MissionOrderBatch)
            .where(
                MissionOrderBatch.hash == batch_hash,
                MissionOrderBatch.status == JobStatus.PROCESSING.value,
                MissionOrderBatch.updated_at < cutoff,
            )
            .values(status=JobStatus.PENDING.value, updated_at=func.now())
        )
        if result.rowcount == 1:
            requeued.append(batch_hash)
    return requeued


async def fail_stalled_exports(session: AsyncSession, cutoff: datetime) -> list:
    failed = []
    for export_id in await _stalled(session, ExportJob, ExportJob.id, cutoff):
        result = await session.execute(
            update(ExportJob)
            .where(
                ExportJob.id == export_id,
                ExportJob.status == JobStatus.PROCESSING.value,
                ExportJob.updated_at < cutoff,
            )
            .values(
                status=JobStatus.FAILED.value,
                error_message=EXPORT_STALLED_MESSAGE,
                updated_at=func.now(),
            )
        )
        if result.rowcount == 1:
            failed.append(export_id)
    return failed


async def _reap_expired_leases(stall_seconds: int | None = None) -> dict:
    stall_seconds = stall_seconds or settings.artifact_stall_seconds
    cutoff = datetime.now(timezone.utc) - timedelta(seconds=stall_seconds)
    try:
        AsyncSessionLocal = get_session_local()
        async with AsyncSessionLocal() as session:
            expired = await JobStore(session).expire_leases(
                LEASE_EXPIRED_MESSAGE, LeaseExpired.code
            )
            requeued = await requeue_stalled_batches(session, cutoff)
            stalled_exports = await fail_stalled_exports(session, cutoff)
            await session.commit()

        for job_id in expired:
            logger.warning(f"Job {job_id} failed: lease expired")
        for batch_hash in requeued:
            logger.warning(f"Mission order batch {batch_hash} stalled, requeued")
        for export_id in stalled_exports:
            logger.warning(f"Export {export_id} failed: stalled in processing")
        return {
            "status": "success",
            "expired": [str(j) for j in expired],
            "batches_requeued": requeued,
            "exports_failed": [str(e) for e in stalled_exports],
        }
    except Exception as exc:
        logger.error(f"Job reaper failed: {exc}", exc_info=True)
        raise
    finally:
        await dispose_engine()


@shared_task(name="job_reaper.reap_expired_leases")
@with_task_lock(lock_name="job_reaper")
def reap_expired_leases() -> dict:
    return asyncio.run(_reap_expired_leases())
