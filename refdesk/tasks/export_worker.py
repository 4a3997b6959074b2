"""
Export processor - builds one CSV artifact per pending export job.

Each tick claims the oldest pending export (``FOR UPDATE SKIP LOCKED`` so
parallel workers never pick the same row), builds the document for its type
and stores it at ``exports/{id}/{type}.csv`` in the exports bucket.
"""

import asyncio
import logging
from typing import Any, Dict

from celery import shared_task
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from refdesk.config import settings
from refdesk.db.session import dispose_engine, get_session_local
from refdesk.models.jobs import ExportJob, JobStatus
from refdesk.services.exports import build_export
from refdesk.services.storage import get_storage
from refdesk.tasks.task_lock import with_task_lock

logger = logging.getLogger(__name__)

PROCESS_PENDING_TASK = "exports.process_pending"


def export_artifact_path(export_id, export_type: str) -> str:
    return f"exports/{export_id}/{export_type}.csv"


async def claim_next_export(session: AsyncSession) -> ExportJob | None:
    """Move the oldest pending export to processing and return it."""
    result = await session.execute(
        select(ExportJob)
        .where(ExportJob.status == JobStatus.PENDING.value)
        .order_by(ExportJob.created_at)
        .limit(1)
        .with_for_update(skip_locked=True)
    )
    export = result.scalar_one_or_none()
    if export is None:
        return None

    export.status = JobStatus.PROCESSING.value
    await session.commit()
    await session.refresh(export)
    return export


async def _finish_export(session: AsyncSession, export_id, status: JobStatus, **fields) -> None:
    await session.execute(
        update(ExportJob)
        .where(
            ExportJob.id == export_id,
            ExportJob.status == JobStatus.PROCESSING.value,
        )
        .values(status=status.value, **fields)
    )
    await session.commit()


async def _process_next_export() -> Dict[str, Any]:
    try:
        AsyncSessionLocal = get_session_local()
        async with AsyncSessionLocal() as session:
            export = await claim_next_export(session)
            if export is None:
                return {"status": "success", "message": "No pending export"}

            export_id, export_type = export.id, export.type
            try:
                content = await build_export(session, export_type, export.params)
                path = export_artifact_path(export_id, export_type)
                await get_storage().upload(
                    settings.exports_bucket, path, content, content_type="text/csv"
                )
            except Exception as exc:
                logger.error(f"Export {export_id} failed: {exc}", exc_info=True)
                await session.rollback()
                message = getattr(exc, "message", None) or str(exc) or exc.__class__.__name__
                await _finish_export(
                    session, export_id, JobStatus.FAILED, error_message=message
                )
                return {"status": "failed", "export_id": str(export_id), "error": message}

            await _finish_export(
                session,
                export_id,
                JobStatus.COMPLETED,
                file_path=path,
                file_size=len(content),
            )
            logger.info(f"Export {export_id} ({export_type}) stored at {path}")
            return {"status": "completed", "export_id": str(export_id), "path": path}
    finally:
        await dispose_engine()


@shared_task(name=PROCESS_PENDING_TASK)
@with_task_lock(lock_name="export_jobs")
def process_pending_exports() -> Dict[str, Any]:
    """Celery task: build the oldest pending export."""
    return asyncio.run(_process_next_export())
