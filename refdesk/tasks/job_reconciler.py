"""
Job reconciler - dispatches jobs that are still pending after the grace period.

Jobs are normally dispatched right after submission. If that hand-off never
happened (API process restarted, broker briefly unreachable) the job would
sit in "pending" forever; this periodic task fires the dispatch trigger for
every such job.
"""

import asyncio
import logging
from typing import Any, Dict

from celery import shared_task

from refdesk.celery_app import celery_app
from refdesk.config import settings
from refdesk.core.dispatch import DispatchTrigger
from refdesk.core.job_kinds import default_registry
from refdesk.core.job_store import JobStore
from refdesk.db.session import dispose_engine, get_session_local
from refdesk.models.jobs import JobStatus
from refdesk.tasks.task_lock import with_task_lock

logger = logging.getLogger(__name__)


async def _dispatch_stale_pending_jobs(grace_seconds: int) -> Dict[str, Any]:
    """
    Fire the dispatch trigger for pending jobs older than ``grace_seconds``.

    Returns:
        Dict with reconciliation statistics
    """
    try:
        AsyncSessionLocal = get_session_local()
        async with AsyncSessionLocal() as session:
            pending_jobs = await JobStore(session).list_stale_pending(grace_seconds)

            if not pending_jobs:
                logger.info("No stale pending jobs found")
                return {
                    "status": "success",
                    "jobs_found": 0,
                    "jobs_dispatched": 0,
                    "jobs_failed": 0,
                    "errors": [],
                }

            logger.info(f"Found {len(pending_jobs)} stale pending jobs")
            trigger = DispatchTrigger(default_registry(), celery_app)

            dispatched = 0
            failed = 0
            errors = []
            for job in pending_jobs:
                job_id = job.id
                try:
                    status = await trigger.fire(session, job_id)
                except Exception as exc:
                    await session.rollback()
                    logger.error(f"Failed to dispatch job {job_id}: {exc}", exc_info=True)
                    errors.append(f"Job {job_id}: {exc}")
                    continue

                if status == JobStatus.PROCESSING.value:
                    dispatched += 1
                elif status == JobStatus.FAILED.value:
                    failed += 1

            logger.info(
                f"Job reconciler complete: {dispatched} dispatched, {failed} failed"
            )
            return {
                "status": "success",
                "jobs_found": len(pending_jobs),
                "jobs_dispatched": dispatched,
                "jobs_failed": failed,
                "errors": errors,
            }

    except Exception as exc:
        logger.error(f"Job reconciler failed: {exc}", exc_info=True)
        return {
            "status": "error",
            "error": str(exc),
            "jobs_found": 0,
            "jobs_dispatched": 0,
            "jobs_failed": 0,
            "errors": [str(exc)],
        }
    finally:
        await dispose_engine()


@shared_task(name="job_reconciler.reconcile_pending_jobs")
@with_task_lock(lock_name="job_reconciler")
def reconcile_pending_jobs() -> Dict[str, Any]:
    """Celery periodic task: dispatch jobs left pending past the grace period."""
    return asyncio.run(_dispatch_stale_pending_jobs(settings.dispatch_grace_seconds))
