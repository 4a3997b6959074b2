"""
Mission order batch processor.

Batches are keyed by the content hash of their order set and have no job
row of their own; this periodic task picks up pending batches, renders and
merges their orders, and stores the document at ``batches/{hash}.pdf``.
"""

import asyncio
import logging
from typing import Any, Dict

from celery import shared_task
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from refdesk.config import settings
from refdesk.db.session import dispose_engine, get_session_local
from refdesk.models.jobs import JobStatus, MissionOrderBatch
from refdesk.services.mission_orders import render_orders
from refdesk.services.storage import get_storage
from refdesk.tasks.task_lock import with_task_lock

logger = logging.getLogger(__name__)

PROCESS_PENDING_TASK = "mission_order_batches.process_pending"


def batch_artifact_path(batch_hash: str) -> str:
    return f"batches/{batch_hash}.pdf"


async def _set_batch_status(
    session: AsyncSession,
    batch_hash: str,
    from_status: JobStatus,
    to_status: JobStatus,
    **fields: Any,
) -> bool:
    result = await session.execute(
        update(MissionOrderBatch)
        .where(
            MissionOrderBatch.hash == batch_hash,
            MissionOrderBatch.status == from_status.value,
        )
        .values(status=to_status.value, **fields)
    )
    await session.commit()
    return result.rowcount == 1


async def _process_batch(session: AsyncSession, batch_hash: str, orders: list) -> str:
    """Render one claimed batch; returns the terminal status written."""
    try:
        rendered = await render_orders(session, orders)
        if rendered.pdf is None:
            await _set_batch_status(
                session, batch_hash, JobStatus.PROCESSING, JobStatus.FAILED, error="no_pages"
            )
            return JobStatus.FAILED.value

        path = batch_artifact_path(batch_hash)
        await get_storage().upload(settings.artifacts_bucket, path, rendered.pdf)
        await _set_batch_status(
            session,
            batch_hash,
            JobStatus.PROCESSING,
            JobStatus.COMPLETED,
            artifact_path=path,
            error=None,
        )
        return JobStatus.COMPLETED.value

    except Exception as exc:
        logger.error(f"Mission order batch {batch_hash} failed: {exc}", exc_info=True)
        await session.rollback()
        await _set_batch_status(
            session,
            batch_hash,
            JobStatus.PROCESSING,
            JobStatus.FAILED,
            error=str(exc) or exc.__class__.__name__,
        )
        return JobStatus.FAILED.value


async def _process_pending_batches(limit: int) -> Dict[str, Any]:
    """
    Claim and render up to ``limit`` pending batches, oldest first.

    Returns:
        Dict with per-status counts
    """
    try:
        AsyncSessionLocal = get_session_local()
        async with AsyncSessionLocal() as session:
            result = await session.execute(
                select(MissionOrderBatch.hash, MissionOrderBatch.orders)
                .where(MissionOrderBatch.status == JobStatus.PENDING.value)
                .order_by(MissionOrderBatch.created_at)
                .limit(limit)
            )
            pending = result.all()

            counts = {"claimed": 0, "completed": 0, "failed": 0}
            for batch_hash, orders in pending:
                claimed = await _set_batch_status(
                    session, batch_hash, JobStatus.PENDING, JobStatus.PROCESSING
                )
                if not claimed:
                    continue
                counts["claimed"] += 1
                status = await _process_batch(session, batch_hash, orders)
                counts[status] += 1

            if counts["claimed"]:
                logger.info(f"Processed mission order batches: {counts}")
            return {"status": "success", **counts}
    finally:
        await dispose_engine()


@shared_task(name=PROCESS_PENDING_TASK)
@with_task_lock(lock_name="mission_order_batches")
def process_pending_batches() -> Dict[str, Any]:
    """Celery task: render pending mission order batches."""
    return asyncio.run(_process_pending_batches(settings.batch_claim_limit))
