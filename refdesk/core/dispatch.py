"""
Dispatch trigger - hands a pending job to the Celery worker for its kind.

The trigger's job ends once Celery accepted the task: it claims the row
(pending -> processing), sends the task and records the task id. A job whose
kind has no worker, or whose hand-off raises, is failed on the spot so that
nothing stays pending.

The claim carries the long dispatch lease so a job queued behind a backlog is
not reaped before a worker picks it up; the worker then renews it with the
short job lease.
"""

import logging
import uuid

from celery import Celery
from sqlalchemy.ext.asyncio import AsyncSession

from refdesk.config import settings
from refdesk.core.exceptions import DispatchFailed, UnknownJobKind
from refdesk.core.job_kinds import JobKindRegistry
from refdesk.core.job_store import JobStore, lease_deadline, to_record
from refdesk.models.jobs import JobStatus

logger = logging.getLogger(__name__)


class DispatchTrigger:
    def __init__(
        self,
        registry: JobKindRegistry,
        celery_app: Celery,
        lease_seconds: int | None = None,
    ):
        self.registry = registry
        self.celery_app = celery_app
        self.lease_seconds = lease_seconds or settings.dispatch_lease_seconds

    async def fire(self, session: AsyncSession, job_id: uuid.UUID) -> str | None:
        """
        Dispatch one job.

        Returns:
            The job status after the attempt, or None if the job does not exist.
        """
        store = JobStore(session)
        job = await store.get(job_id)
        if job is None:
            logger.warning(f"Dispatch requested for unknown job {job_id}")
            return None
        if job.status != JobStatus.PENDING.value:
            logger.info(f"Skipping dispatch of job {job_id}: status is {job.status}")
            return job.status

        try:
            worker = self.registry.worker_for(job.type)
        except UnknownJobKind as exc:
            logger.error(f"Job {job_id}: {exc.message}")
            await store.update_status(
                job.id,
                JobStatus.FAILED,
                error_message=exc.message,
                error_code=exc.code,
            )
            await session.commit()
            return JobStatus.FAILED.value

        record = to_record(job)
        record["status"] = JobStatus.PROCESSING.value

        # Claim the row first so concurrent triggers cannot both dispatch it
        claimed = await store.update_status(
            job.id,
            JobStatus.PROCESSING,
            lease_expires_at=lease_deadline(self.lease_seconds),
        )
        await session.commit()
        if not claimed:
            current = await store.get(job.id)
            return current.status if current else None

        try:
            task = self.celery_app.send_task(worker, kwargs={"job": record})
        except Exception as exc:
            logger.error(f"Failed to invoke worker for job {job_id}: {exc}", exc_info=True)
            await store.update_status(
                job.id,
                JobStatus.FAILED,
                error_message=f"Failed to invoke worker: {exc}",
                error_code=DispatchFailed.code,
            )
            await session.commit()
            return JobStatus.FAILED.value

        await store.update_status(job.id, JobStatus.PROCESSING, celery_task_id=task.id)
        await session.commit()
        logger.info(f"Dispatched job {job_id} ({job.type}) to {worker} as task {task.id}")
        return JobStatus.PROCESSING.value
