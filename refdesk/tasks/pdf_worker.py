"""
Mission order PDF worker.

Renders one mission order per {matchId, officialId} order, merges them into
a single document, uploads it under ``{actor}/{job_id}/{file}`` and completes
the job with a signed download link.
"""

import asyncio
import logging
from typing import Any

from celery import shared_task

from refdesk.config import settings
from refdesk.core.exceptions import EmptyArtifact, StorageError
from refdesk.core.job_kinds import PDF_WORKER, JobKind
from refdesk.core.runtime import JobRun, execute_job
from refdesk.services.mission_orders import render_orders, sanitize_file_name
from refdesk.services.storage import get_storage

logger = logging.getLogger(__name__)

EMPTY_DOCUMENT_MESSAGE = (
    "All individual PDF generations failed. The final document is empty."
)


def _orders_from_payload(payload: dict[str, Any]) -> list[dict]:
    if payload.get("orders"):
        return list(payload["orders"])
    return [{"matchId": payload["matchId"], "officialId": payload["officialId"]}]


def _artifact_name(payload: dict[str, Any], job_id) -> str:
    file_name = sanitize_file_name(payload.get("fileName") or f"mission-orders-{job_id}.pdf")
    if not file_name.lower().endswith(".pdf"):
        file_name = f"{file_name}.pdf"
    return file_name


async def _generate_mission_orders(run: JobRun) -> None:
    orders = _orders_from_payload(run.payload)

    async with run.session_factory() as session:
        rendered = await render_orders(session, orders, on_unit=run.track)

    if rendered.pdf is None:
        first_error = rendered.fold.failed[0].error if rendered.fold.failed else None
        if first_error:
            logger.warning(f"Job {run.job_id}: first unit error: {first_error}")
        await run.fail(EMPTY_DOCUMENT_MESSAGE, EmptyArtifact.code)
        return

    file_name = _artifact_name(run.payload, run.job_id)
    path = f"{run.actor_id}/{run.job_id}/{file_name}"
    ttl = (
        settings.bulk_url_ttl_seconds
        if run.record.get("type") == JobKind.MISSION_ORDERS_BULK_PDF.value
        else settings.status_url_ttl_seconds
    )

    storage = get_storage()
    try:
        await storage.upload(settings.artifacts_bucket, path, rendered.pdf)
        url = await storage.sign(settings.artifacts_bucket, path, ttl)
    except StorageError as exc:
        await run.fail(exc.message, exc.code)
        return

    await run.complete(
        {
            "artifactUrl": url,
            "fileName": file_name,
            "pages": rendered.pages,
            "succeeded": len(rendered.fold.succeeded),
            "failed": len(rendered.fold.failed),
        },
        artifact_path=path,
        progress=rendered.fold.processed,
    )


@shared_task(name=PDF_WORKER)
def generate_mission_orders(job: dict[str, Any]) -> dict[str, Any]:
    """Celery entry point for mission_orders.bulk_pdf and mission_orders.single_pdf jobs."""
    return asyncio.run(execute_job(job, _generate_mission_orders))
