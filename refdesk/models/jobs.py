"""
Job models - the durable queue of asynchronous work.

A Job row is the single source of truth for the status and progress of one
piece of background work. Workers hold no state between invocations: every
run reads its row, does the work and writes the row back.
"""

import uuid
from enum import Enum

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.sql import func

from refdesk.db.base import Base
from refdesk.models.types import JSONType, UUIDType


class JobStatus(str, Enum):
    """Forward-only job lifecycle."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = (JobStatus.COMPLETED.value, JobStatus.FAILED.value)
ACTIVE_STATUSES = (JobStatus.PENDING.value, JobStatus.PROCESSING.value)

_STATUS_VALUES = ", ".join(f"'{s.value}'" for s in JobStatus)
_ACTIVE_DEDUPE = "dedupe_key IS NOT NULL AND status <> 'failed'"


class Job(Base):
    __tablename__ = "jobs"

    id = Column(UUIDType, primary_key=True, default=uuid.uuid4)

    # mission_orders.bulk_pdf | mission_orders.single_pdf | ... (see JobKind)
    type = Column(String, nullable=False, index=True)
    label = Column(String, nullable=False, default="")
    payload = Column(JSONType, nullable=False, default=dict)

    status = Column(String, nullable=False, default=JobStatus.PENDING.value)
    total = Column(Integer, nullable=True)
    progress = Column(Integer, nullable=False, default=0)

    # Only set on completed
    result = Column(JSONType, nullable=True)
    # Only set on failed
    error_message = Column(Text, nullable=True)
    error_code = Column(String, nullable=True)

    dedupe_key = Column(String, nullable=True)
    created_by = Column(UUIDType, nullable=False, index=True)

    celery_task_id = Column(String, nullable=True)
    artifact_path = Column(String, nullable=True)
    lease_expires_at = Column(DateTime(timezone=True), nullable=True)

    # Set when this job re-runs a failed one; the failed row is never reopened
    retry_of = Column(UUIDType, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), onupdate=func.now(), server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint(f"status IN ({_STATUS_VALUES})", name="ck_jobs_status"),
        CheckConstraint(
            "progress >= 0 AND (total IS NULL OR progress <= total)",
            name="ck_jobs_progress_bounds",
        ),
        CheckConstraint("total IS NULL OR total >= 0", name="ck_jobs_total"),
        Index(
            "uq_jobs_type_dedupe_active",
            "type",
            "dedupe_key",
            unique=True,
            postgresql_where=text(_ACTIVE_DEDUPE),
            sqlite_where=text(_ACTIVE_DEDUPE),
        ),
        Index("ix_jobs_status_created_at", "status", "created_at"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class MissionOrderBatch(Base):
    """Merged mission-order PDF keyed by the content hash of its order set."""

    __tablename__ = "mission_order_batches"

    hash = Column(String(64), primary_key=True)
    status = Column(String, nullable=False, default=JobStatus.PENDING.value)
    orders = Column(JSONType, nullable=False)
    artifact_path = Column(String, nullable=True)
    error = Column(Text, nullable=True)
    created_by = Column(UUIDType, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), onupdate=func.now(), server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint(
            f"status IN ({_STATUS_VALUES})", name="ck_mission_order_batches_status"
        ),
    )


class ExportType(str, Enum):
    PAYMENTS_MONTHLY = "payments_monthly"
    GAME_DAY_SUMMARY = "game_day_summary"
    MONTHLY_ACCOUNTING_SUMMARY = "monthly_accounting_summary"
    INDIVIDUAL_STATEMENT = "individual_statement"


class ExportJob(Base):
    """Tabular export request; same state machine as Job, single artifact."""

    __tablename__ = "export_jobs"

    id = Column(UUIDType, primary_key=True, default=uuid.uuid4)
    type = Column(String, nullable=False)
    params = Column(JSONType, nullable=False, default=dict)
    status = Column(String, nullable=False, default=JobStatus.PENDING.value)

    requested_by = Column(UUIDType, nullable=False, index=True)

    file_path = Column(String, nullable=True)
    file_size = Column(BigInteger, nullable=True)
    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), onupdate=func.now(), server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint(f"status IN ({_STATUS_VALUES})", name="ck_export_jobs_status"),
        CheckConstraint(
            "type IN ({})".format(", ".join(f"'{t.value}'" for t in ExportType)),
            name="ck_export_jobs_type",
        ),
        Index("ix_export_jobs_status_created_at", "status", "created_at"),
    )
