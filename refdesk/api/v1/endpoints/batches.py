"""
Mission order batches API.

A batch is addressed by the content hash of its order set, so the same set
of orders always maps to the same record and document.
"""

import logging
from typing import Any

from celery import Celery
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from refdesk.api.deps import get_blob_storage, get_celery
from refdesk.api.v1.endpoints.utils.jobs import NOT_FOUND, sign_artifact
from refdesk.api.v1.helpers.authentication import AuthenticatedActor, get_current_actor
from refdesk.config import settings
from refdesk.core.dedupe import mission_orders_hash, normalize_orders
from refdesk.core.job_kinds import OrderRef
from refdesk.db.session import get_db
from refdesk.models.jobs import JobStatus, MissionOrderBatch
from refdesk.services.storage import BlobStorage
from refdesk.tasks.batch_worker import PROCESS_PENDING_TASK

logger = logging.getLogger(__name__)
router = APIRouter()


class BatchCreateRequest(BaseModel):
    orders: list[OrderRef] = Field(min_length=1)


async def _batch_body(batch: MissionOrderBatch, storage: BlobStorage) -> dict[str, Any]:
    body: dict[str, Any] = {"hash": batch.hash, "status": batch.status}
    if batch.status == JobStatus.COMPLETED.value:
        body["artifactUrl"] = await sign_artifact(
            storage, settings.artifacts_bucket, batch.artifact_path
        )
    elif batch.status == JobStatus.FAILED.value:
        body["error"] = batch.error
    return body


async def _get_batch(db: AsyncSession, batch_hash: str) -> MissionOrderBatch | None:
    result = await db.execute(
        select(MissionOrderBatch)
        .where(MissionOrderBatch.hash == batch_hash)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


def _kick_processor(celery_app: Celery) -> None:
    # Beat polls pending batches anyway; this only shortens the wait
    try:
        celery_app.send_task(PROCESS_PENDING_TASK)
    except Exception as exc:
        logger.warning(f"Could not enqueue {PROCESS_PENDING_TASK}: {exc}")


@router.post("/")
async def create_batch(
    data: BatchCreateRequest,
    actor: AuthenticatedActor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    storage: BlobStorage = Depends(get_blob_storage),
    celery_app: Celery = Depends(get_celery),
):
    """Return the batch for this order set, creating a pending one if needed."""
    orders = normalize_orders(o.model_dump(mode="json", by_alias=True) for o in data.orders)
    batch_hash = mission_orders_hash(orders)

    batch = await _get_batch(db, batch_hash)
    if batch is None:
        db.add(
            MissionOrderBatch(
                hash=batch_hash,
                status=JobStatus.PENDING.value,
                orders=orders,
                created_by=actor.actor_id,
            )
        )
        try:
            await db.commit()
        except IntegrityError:
            # A concurrent request inserted the same hash first
            await db.rollback()
            logger.info(f"Batch {batch_hash} already created by a concurrent request")
        else:
            logger.info(f"Created mission order batch {batch_hash} ({len(orders)} orders)")
            _kick_processor(celery_app)
        batch = await _get_batch(db, batch_hash)

    return await _batch_body(batch, storage)


@router.get("/{batch_hash}")
async def get_batch(
    batch_hash: str,
    actor: AuthenticatedActor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    storage: BlobStorage = Depends(get_blob_storage),
):
    batch = await _get_batch(db, batch_hash)
    if batch is None:
        return NOT_FOUND
    return await _batch_body(batch, storage)
