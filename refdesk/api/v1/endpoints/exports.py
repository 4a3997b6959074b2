"""
Exports API - request tabular exports and fetch their files.
"""

import logging
import uuid as _uuid
from typing import Any

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel
from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from refdesk.api.deps import get_blob_storage
from refdesk.api.v1.endpoints.utils.jobs import NOT_FOUND, parse_uuid, sign_artifact
from refdesk.api.v1.helpers.authentication import AuthenticatedActor, get_current_actor
from refdesk.config import settings
from refdesk.db.session import get_db
from refdesk.models.jobs import ExportJob, JobStatus
from refdesk.services.exports import parse_export_type, validate_export_params
from refdesk.services.storage import BlobStorage

logger = logging.getLogger(__name__)
router = APIRouter()


class ExportCreateRequest(BaseModel):
    type: Any = None
    params: Any = None


class ExportListResponse(BaseModel):
    exports: list[dict[str, Any]]
    total: int


def _export_body(export: ExportJob, file_url: str | None = None) -> dict[str, Any]:
    body = {
        "id": str(export.id),
        "type": export.type,
        "params": export.params,
        "status": export.status,
        "filePath": export.file_path,
        "fileSize": export.file_size,
        "error": export.error_message,
        "createdAt": export.created_at.isoformat() if export.created_at else None,
        "updatedAt": export.updated_at.isoformat() if export.updated_at else None,
    }
    if file_url is not None:
        body["fileUrl"] = file_url
    return body


async def _get_export_for_actor(
    db: AsyncSession, export_id: str, actor_id: _uuid.UUID
) -> ExportJob | None:
    eid = parse_uuid(export_id)
    if eid is None:
        return None
    result = await db.execute(
        select(ExportJob)
        .where(ExportJob.id == eid, ExportJob.requested_by == actor_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


@router.post("/", status_code=status.HTTP_201_CREATED)
async def create_export(
    data: ExportCreateRequest,
    actor: AuthenticatedActor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Insert a pending export; the export processor builds it on its next tick."""
    export_type = parse_export_type(data.type)
    validate_export_params(export_type, data.params)

    export = ExportJob(
        type=export_type.value,
        params=data.params,
        status=JobStatus.PENDING.value,
        requested_by=actor.actor_id,
    )
    db.add(export)
    await db.commit()
    await db.refresh(export)
    logger.info(f"Export {export.id} ({export.type}) requested by {actor.actor_id}")
    return {"success": True, "jobId": str(export.id)}


@router.get("/", response_model=ExportListResponse)
async def list_exports(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    actor: AuthenticatedActor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    condition = ExportJob.requested_by == actor.actor_id
    result = await db.execute(
        select(ExportJob)
        .where(and_(condition))
        .order_by(ExportJob.created_at.desc(), ExportJob.id)
        .offset(offset)
        .limit(limit)
    )
    exports = result.scalars().all()
    count_q = await db.execute(select(func.count(ExportJob.id)).where(condition))
    return ExportListResponse(
        exports=[_export_body(e) for e in exports], total=count_q.scalar() or 0
    )


@router.get("/{export_id}")
async def get_export(
    export_id: str,
    actor: AuthenticatedActor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    storage: BlobStorage = Depends(get_blob_storage),
):
    export = await _get_export_for_actor(db, export_id, actor.actor_id)
    if export is None:
        return NOT_FOUND

    file_url = None
    if export.status == JobStatus.COMPLETED.value:
        file_url = await sign_artifact(storage, settings.exports_bucket, export.file_path)
    return _export_body(export, file_url)
