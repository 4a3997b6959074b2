"""
Jobs API - submission, status and retry of background jobs.
"""

import logging
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Response, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from refdesk.api.deps import (
    get_blob_storage,
    get_dispatch_trigger,
    get_registry,
    get_session_factory,
)
from refdesk.api.v1.endpoints.utils.jobs import (
    NOT_FOUND,
    JobOut,
    dispatch_in_background,
    get_job_for_actor,
    job_status_body,
    parse_uuid,
)
from refdesk.api.v1.helpers.authentication import (
    AuthenticatedActor,
    get_current_actor,
    verify_trigger_secret,
)
from refdesk.api.v1.helpers.responses import (
    conflict_response,
    error_response,
    not_found_response,
)
from refdesk.core.dispatch import DispatchTrigger
from refdesk.core.job_kinds import JobKindRegistry
from refdesk.core.job_store import JobStore
from refdesk.core.submission import JobSubmissionService
from refdesk.db.session import get_db
from refdesk.models.jobs import JobStatus
from refdesk.services.storage import BlobStorage

logger = logging.getLogger(__name__)
router = APIRouter()


# ---------------------------------------------------------------------------
# Pydantic models
# ---------------------------------------------------------------------------


class JobCreateRequest(BaseModel):
    type: str
    label: str | None = Field(default=None, max_length=200)
    payload: Any = None
    total: int | None = Field(default=None, ge=0)
    # Client idempotency key; a repeat with the same key returns the first job
    dedupe_key: str | None = Field(
        default=None, alias="dedupeKey", min_length=1, max_length=200
    )

    model_config = ConfigDict(populate_by_name=True)


class JobListResponse(BaseModel):
    jobs: list[dict[str, Any]]
    total: int


class TriggerRequest(BaseModel):
    record: dict[str, Any]


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post("/", status_code=status.HTTP_201_CREATED)
async def submit_job(
    data: JobCreateRequest,
    response: Response,
    background_tasks: BackgroundTasks,
    actor: AuthenticatedActor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    registry: JobKindRegistry = Depends(get_registry),
    trigger: DispatchTrigger = Depends(get_dispatch_trigger),
    session_factory=Depends(get_session_factory),
):
    """
    Enqueue a job and return its record at once.

    An identical non-failed document job submitted within the dedupe window,
    or any job sent again under the same ``dedupeKey``, is returned instead
    of a new one (HTTP 200). E-mail jobs without a key always send again. New jobs are handed to their worker
    after the response is sent.
    """
    submission = await JobSubmissionService(registry, db).submit(
        actor.actor_id,
        data.type,
        data.label,
        data.payload,
        total=data.total,
        request_key=data.dedupe_key,
    )
    job = submission.job

    if submission.reused:
        response.status_code = status.HTTP_200_OK
    if job.status == JobStatus.PENDING.value:
        background_tasks.add_task(
            dispatch_in_background, session_factory, trigger, job.id
        )

    return JobOut.from_model(job).to_response()


@router.get("/", response_model=JobListResponse)
async def list_jobs(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    job_type: str | None = Query(None, alias="type", description="Filter by job type"),
    job_status: JobStatus | None = Query(None, alias="status", description="Filter by status"),
    actor: AuthenticatedActor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """List the caller's jobs, newest first."""
    jobs, total = await JobStore(db).list_by_actor(
        actor.actor_id,
        status=job_status.value if job_status else None,
        job_type=job_type,
        limit=limit,
        offset=offset,
    )
    return JobListResponse(
        jobs=[JobOut.from_model(job).to_response() for job in jobs], total=total
    )


@router.post("/trigger", dependencies=[Depends(verify_trigger_secret)])
async def trigger_dispatch(
    data: TriggerRequest,
    db: AsyncSession = Depends(get_db),
    trigger: DispatchTrigger = Depends(get_dispatch_trigger),
):
    """Internal webhook: dispatch the job described by ``record``."""
    job_id = parse_uuid(str(data.record.get("id", "")))
    if job_id is None:
        raise error_response("record.id must be a job id")

    job_status = await trigger.fire(db, job_id)
    if job_status is None:
        return NOT_FOUND
    return {"id": str(job_id), "status": job_status}


@router.get("/{job_id}")
async def get_job_status(
    job_id: str,
    actor: AuthenticatedActor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    storage: BlobStorage = Depends(get_blob_storage),
):
    """
    Current state of one job.

    Completed jobs carry a download link signed for this response only.
    """
    job = await get_job_for_actor(db, job_id, actor.actor_id)
    if job is None:
        return NOT_FOUND
    return await job_status_body(job, storage)


@router.post("/{job_id}/retry", status_code=status.HTTP_201_CREATED)
async def retry_job(
    job_id: str,
    background_tasks: BackgroundTasks,
    actor: AuthenticatedActor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    registry: JobKindRegistry = Depends(get_registry),
    trigger: DispatchTrigger = Depends(get_dispatch_trigger),
    session_factory=Depends(get_session_factory),
):
    """Re-enqueue a failed job as a new job; the failed row is left as is."""
    source = await get_job_for_actor(db, job_id, actor.actor_id)
    if source is None:
        raise not_found_response("Job not found")
    if source.status != JobStatus.FAILED.value:
        raise conflict_response(f"Only failed jobs can be retried (status is {source.status})")

    submission = await JobSubmissionService(registry, db).retry(actor.actor_id, source)
    job = submission.job
    if job.status == JobStatus.PENDING.value:
        background_tasks.add_task(
            dispatch_in_background, session_factory, trigger, job.id
        )
    return JobOut.from_model(job).to_response()
