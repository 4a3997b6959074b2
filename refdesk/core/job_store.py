"""
Job Store - persistence of Job rows and the guarded writes on them.

Every status/progress write is a conditional UPDATE: terminal rows never
match, and progress only moves forward. The database CHECK constraints and
the partial unique index on (type, dedupe_key) back these rules at the
storage layer.
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import and_, delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from refdesk.models.jobs import ACTIVE_STATUSES, TERMINAL_STATUSES, Job, JobStatus

logger = logging.getLogger(__name__)

# Fields a status write may carry, per target status
_ALLOWED_FIELDS = {
    JobStatus.PROCESSING: {"celery_task_id", "lease_expires_at", "progress"},
    JobStatus.COMPLETED: {"result", "artifact_path", "progress"},
    JobStatus.FAILED: {"error_message", "error_code"},
}


def to_record(job: Job) -> dict[str, Any]:
    """JSON-safe snapshot of a job row, as handed to a worker."""
    return {
        "id": str(job.id),
        "type": job.type,
        "label": job.label,
        "payload": job.payload,
        "status": job.status,
        "total": job.total,
        "progress": job.progress,
        "created_by": str(job.created_by),
        "created_at": job.created_at.isoformat() if job.created_at else None,
    }


def lease_deadline(lease_seconds: int) -> datetime:
    return datetime.now(timezone.utc) + timedelta(seconds=lease_seconds)


class JobStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def insert(self, job: Job) -> uuid.UUID:
        if job.id is None:
            job.id = uuid.uuid4()
        self.session.add(job)
        await self.session.flush()
        return job.id

    async def get(self, job_id: uuid.UUID) -> Job | None:
        result = await self.session.execute(
            select(Job)
            .where(Job.id == job_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def update_status(
        self, job_id: uuid.UUID, status: JobStatus, **fields: Any
    ) -> bool:
        """
        Move a non-terminal job to ``status``.

        Returns:
            True if the row was updated, False if the job is missing or
            already terminal.

        Raises:
            ValueError: if ``status`` is pending or a field does not belong
                to the target status (e.g. ``result`` on a failed job)
        """
        status = JobStatus(status)
        allowed = _ALLOWED_FIELDS.get(status)
        if allowed is None:
            raise ValueError(f"Jobs cannot be moved back to {status.value}")
        unexpected = set(fields) - allowed
        if unexpected:
            raise ValueError(
                f"Fields {sorted(unexpected)} cannot be written with status {status.value}"
            )

        conditions = [Job.id == job_id, Job.status.in_(ACTIVE_STATUSES)]
        if "progress" in fields:
            conditions.append(Job.progress <= fields["progress"])

        stmt = (
            update(Job)
            .where(and_(*conditions))
            .values(status=status.value, updated_at=func.now(), **fields)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        updated = (result.rowcount or 0) == 1
        if not updated:
            logger.info(f"Ignored {status.value} write on job {job_id}: not active")
        return updated

    async def advance_progress(
        self,
        job_id: uuid.UUID,
        progress: int,
        lease_seconds: int | None = None,
    ) -> bool:
        """Raise progress of a processing job; never lowers it."""
        values: dict[str, Any] = {"progress": progress, "updated_at": func.now()}
        if lease_seconds is not None:
            values["lease_expires_at"] = lease_deadline(lease_seconds)

        stmt = (
            update(Job)
            .where(
                and_(
                    Job.id == job_id,
                    Job.status == JobStatus.PROCESSING.value,
                    Job.progress <= progress,
                )
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return (result.rowcount or 0) == 1

    async def list_by_actor(
        self,
        actor_id: uuid.UUID,
        status: str | None = None,
        job_type: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Job], int]:
        conditions = [Job.created_by == actor_id]
        if status:
            conditions.append(Job.status == status)
        if job_type:
            conditions.append(Job.type == job_type)

        result = await self.session.execute(
            select(Job)
            .where(and_(*conditions))
            .order_by(Job.created_at.desc(), Job.id)
            .offset(offset)
            .limit(limit)
        )
        jobs = list(result.scalars().all())

        count_q = await self.session.execute(
            select(func.count(Job.id)).where(and_(*conditions))
        )
        return jobs, count_q.scalar() or 0

    async def find_active_by_dedupe(self, job_type: str, dedupe_key: str) -> Job | None:
        result = await self.session.execute(
            select(Job)
            .where(
                and_(
                    Job.type == job_type,
                    Job.dedupe_key == dedupe_key,
                    Job.status != JobStatus.FAILED.value,
                )
            )
            .order_by(Job.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_stale_pending(self, older_than_seconds: int) -> list[Job]:
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=older_than_seconds)
        result = await self.session.execute(
            select(Job)
            .where(
                and_(Job.status == JobStatus.PENDING.value, Job.created_at <= cutoff)
            )
            .order_by(Job.created_at)
        )
        return list(result.scalars().all())

    async def expire_leases(self, message: str, code: str) -> list[uuid.UUID]:
        """Fail every processing job whose lease has run out."""
        now = datetime.now(timezone.utc)
        lapsed = and_(
            Job.status == JobStatus.PROCESSING.value,
            Job.lease_expires_at.isnot(None),
            Job.lease_expires_at < now,
        )
        result = await self.session.execute(select(Job.id).where(lapsed))
        candidates = list(result.scalars().all())

        expired = []
        for job_id in candidates:
            stmt = (
                update(Job)
                .where(and_(Job.id == job_id, lapsed))
                .values(
                    status=JobStatus.FAILED.value,
                    error_message=message,
                    error_code=code,
                    updated_at=func.now(),
                )
                .execution_options(synchronize_session=False)
            )
            if ((await self.session.execute(stmt)).rowcount or 0) == 1:
                expired.append(job_id)
        return expired

    async def delete_terminal_before(self, cutoff: datetime) -> int:
        result = await self.session.execute(
            delete(Job).where(
                and_(Job.status.in_(TERMINAL_STATUSES), Job.updated_at < cutoff)
            )
        )
        return result.rowcount or 0
