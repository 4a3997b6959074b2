"""
Job cleanup - deletes terminal jobs past the retention window.

Runs daily via Celery Beat. Pending and processing jobs are never touched.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone

from celery import shared_task

from refdesk.config import settings
from refdesk.core.job_store import JobStore
from refdesk.db.session import dispose_engine, get_session_local

logger = logging.getLogger(__name__)


async def _cleanup_old_jobs(older_than_hours: int) -> dict:
    cutoff = datetime.now(timezone.utc) - timedelta(hours=older_than_hours)

    try:
        AsyncSessionLocal = get_session_local()
        async with AsyncSessionLocal() as session:
            count = await JobStore(session).delete_terminal_before(cutoff)
            await session.commit()

        if count == 0:
            logger.info("Job cleanup: no jobs to delete")
        else:
            logger.info(
                f"Job cleanup: deleted {count} jobs older than {older_than_hours}h"
            )
        return {"deleted": count, "cutoff": cutoff.isoformat()}

    except Exception as exc:
        logger.error(f"Job cleanup failed: {exc}", exc_info=True)
        raise
    finally:
        await dispose_engine()


@shared_task(name="job_cleanup.cleanup_old_jobs")
def cleanup_old_jobs(older_than_hours: int | None = None) -> dict:
    """
    Celery task to delete completed and failed jobs.

    Args:
        older_than_hours: Age threshold in hours; defaults to
            ``settings.job_retention_hours``.
    """
    return asyncio.run(
        _cleanup_old_jobs(older_than_hours or settings.job_retention_hours)
    )
