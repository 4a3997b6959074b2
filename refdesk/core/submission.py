"""
Job submission - validates a request and inserts a pending Job row.

No job work happens here: the call costs one lookup and one insert whatever
the size of the job. Dispatch is triggered separately once the row is
committed.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from refdesk.config import settings
from refdesk.core.dedupe import job_dedupe_key, time_bucket
from refdesk.core.exceptions import InvalidJobPayload
from refdesk.core.job_kinds import JobKindRegistry
from refdesk.core.job_store import JobStore
from refdesk.models.jobs import Job, JobStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Submission:
    job: Job
    # True when an identical active job already existed and was returned
    reused: bool = False


class JobSubmissionService:
    def __init__(
        self,
        registry: JobKindRegistry,
        session: AsyncSession,
        dedupe_window_minutes: int | None = None,
    ):
        self.registry = registry
        self.session = session
        self.store = JobStore(session)
        self.dedupe_window_minutes = (
            dedupe_window_minutes or settings.dedupe_window_minutes
        )

    async def submit(
        self,
        actor_id: uuid.UUID,
        job_type: str,
        label: str | None,
        payload: Any,
        total: int | None = None,
        retry_of: uuid.UUID | None = None,
        request_key: str | None = None,
    ) -> Submission:
        """
        Validate and enqueue a job.

        Kinds with canonical dedupe content reuse an identical non-failed job
        from the same window. Any kind reuses the job created under the same
        client ``request_key``, which lets a caller retry a submission safely
        while a repeated e-mail without one is always a new send.

        Raises:
            UnknownJobKind: if ``job_type`` is not registered
            InvalidJobPayload: if the payload or ``total`` is malformed
        """
        spec = self.registry.resolve(job_type)
        parsed = self.registry.validate_payload(job_type, payload)

        units = spec.unit_count(parsed)
        if total is None:
            total = units
        elif total != units:
            raise InvalidJobPayload(
                f"total ({total}) does not match the {units} units in the payload"
            )

        dedupe_key = None
        if request_key:
            dedupe_key = job_dedupe_key(
                spec.kind.value, [str(actor_id), {"request": request_key}], 0
            )
        elif spec.dedupe_items is not None:
            items = [str(actor_id), spec.dedupe_items(parsed)]
            dedupe_key = job_dedupe_key(
                spec.kind.value, items, time_bucket(self.dedupe_window_minutes)
            )
        if dedupe_key is not None:
            existing = await self.store.find_active_by_dedupe(spec.kind.value, dedupe_key)
            if existing is not None:
                logger.info(
                    f"Reusing job {existing.id} ({existing.status}) for duplicate {spec.kind.value} request"
                )
                return Submission(job=existing, reused=True)

        job = Job(
            id=uuid.uuid4(),
            type=spec.kind.value,
            label=label or spec.kind.value,
            payload=parsed.model_dump(mode="json", by_alias=True, exclude_none=True),
            status=JobStatus.PENDING.value,
            total=total,
            progress=0,
            dedupe_key=dedupe_key,
            created_by=actor_id,
            retry_of=retry_of,
        )

        try:
            await self.store.insert(job)
            await self.session.commit()
        except IntegrityError:
            # A concurrent identical submission won the unique index
            await self.session.rollback()
            if dedupe_key is None:
                raise
            existing = await self.store.find_active_by_dedupe(spec.kind.value, dedupe_key)
            if existing is None:
                raise
            logger.info(f"Duplicate {spec.kind.value} insert resolved to job {existing.id}")
            return Submission(job=existing, reused=True)

        await self.session.refresh(job)
        logger.info(f"Created job {job.id} ({job.type}, total={job.total})")
        return Submission(job=job)

    async def retry(self, actor_id: uuid.UUID, source: Job) -> Submission:
        """Enqueue a fresh job carrying the request of a failed one."""
        if source.status != JobStatus.FAILED.value:
            raise InvalidJobPayload(
                f"Only failed jobs can be retried (job is {source.status})"
            )
        return await self.submit(
            actor_id,
            source.type,
            source.label,
            source.payload,
            total=source.total,
            retry_of=source.id,
        )
