"""
Utility functions for the jobs endpoint.
"""

import logging
import uuid as _uuid
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from refdesk.config import settings
from refdesk.core.dispatch import DispatchTrigger
from refdesk.core.exceptions import StorageError
from refdesk.core.job_store import JobStore
from refdesk.models.jobs import Job, JobStatus
from refdesk.services.storage import BlobStorage

logger = logging.getLogger(__name__)

NOT_FOUND = {"status": "not_found"}


class JobOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    type: str
    label: str | None = None
    status: str
    progress: int
    total: int | None = None
    result: dict[str, Any] | None = None
    error: str | None = None
    error_code: str | None = Field(default=None, alias="errorCode")
    retry_of: str | None = Field(default=None, alias="retryOf")
    created_at: str | None = Field(default=None, alias="createdAt")
    updated_at: str | None = Field(default=None, alias="updatedAt")
    artifact_url: str | None = Field(default=None, alias="artifactUrl")

    @classmethod
    def from_model(cls, job: Job, artifact_url: str | None = None) -> "JobOut":
        return cls(
            id=str(job.id),
            type=job.type,
            label=job.label,
            status=job.status,
            progress=job.progress or 0,
            total=job.total,
            result=job.result,
            error=job.error_message,
            error_code=job.error_code,
            retry_of=str(job.retry_of) if job.retry_of else None,
            created_at=job.created_at.isoformat() if job.created_at else None,
            updated_at=job.updated_at.isoformat() if job.updated_at else None,
            artifact_url=artifact_url,
        )

    def to_response(self) -> dict[str, Any]:
        body = self.model_dump(by_alias=True)
        if body["artifactUrl"] is None:
            del body["artifactUrl"]
        return body


def parse_uuid(value: str) -> _uuid.UUID | None:
    try:
        return _uuid.UUID(value)
    except (ValueError, TypeError):
        return None


async def get_job_for_actor(
    db: AsyncSession, job_id: str, actor_id: _uuid.UUID
) -> Job | None:
    """
    Fetch a job visible to ``actor_id``.

    Malformed ids, missing rows and jobs of other actors all return None so
    callers cannot learn whether a foreign job exists.
    """
    jid = parse_uuid(job_id)
    if jid is None:
        return None
    job = await JobStore(db).get(jid)
    if job is None or job.created_by != actor_id:
        return None
    return job


async def sign_artifact(
    storage: BlobStorage, bucket: str, path: str | None
) -> str | None:
    """Mint a fresh download link; a storage outage degrades to no link."""
    if not path:
        return None
    try:
        return await storage.sign(bucket, path, settings.status_url_ttl_seconds)
    except StorageError as exc:
        logger.error(f"Could not sign {bucket}/{path}: {exc.message}")
        return None


async def job_status_body(job: Job, storage: BlobStorage) -> dict[str, Any]:
    artifact_url = None
    if job.status == JobStatus.COMPLETED.value:
        artifact_url = await sign_artifact(
            storage, settings.artifacts_bucket, job.artifact_path
        )
    return JobOut.from_model(job, artifact_url=artifact_url).to_response()


async def dispatch_in_background(
    session_factory, trigger: DispatchTrigger, job_id: _uuid.UUID
) -> None:
    """
    Fire the dispatch trigger after the submitting request returned.

    Failures are only logged: a job that could not be handed off stays
    pending and is picked up by the reconciler.
    """
    async with session_factory() as session:
        try:
            status = await trigger.fire(session, job_id)
            logger.info(f"Background dispatch of job {job_id}: {status}")
        except Exception as exc:
            await session.rollback()
            logger.error(
                f"Background dispatch of job {job_id} failed: {exc}", exc_info=True
            )
