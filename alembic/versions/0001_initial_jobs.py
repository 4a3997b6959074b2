"""initial job pipeline schema

Revision ID: 0001_initial_jobs
Revises:
Create Date: 2026-10-19

League tables read by the workers, the jobs queue, mission order batches
and export jobs.
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID, JSONB


revision = "0001_initial_jobs"
down_revision = None
branch_labels = None
depends_on = None

STATUS_CHECK = "status IN ('pending', 'processing', 'completed', 'failed')"
ACTIVE_DEDUPE = "dedupe_key IS NOT NULL AND status <> 'failed'"


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
    ]


def upgrade() -> None:
    # --- league ---
    op.create_table(
        "locations",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("name", sa.String, nullable=False),
        sa.Column("wilaya", sa.String, nullable=True),
    )

    op.create_table(
        "teams",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("code", sa.String, nullable=False),
        sa.Column("name", sa.String, nullable=False),
    )

    op.create_table(
        "stadiums",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("name", sa.String, nullable=False),
        sa.Column(
            "location_id",
            UUID(as_uuid=True),
            sa.ForeignKey("locations.id"),
            nullable=True,
        ),
    )

    op.create_table(
        "officials",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("first_name", sa.String, nullable=False),
        sa.Column("last_name", sa.String, nullable=False),
        sa.Column("first_name_ar", sa.String, nullable=True),
        sa.Column("last_name_ar", sa.String, nullable=True),
        sa.Column("email", sa.String, nullable=True),
        sa.Column("category", sa.String, nullable=True),
        sa.Column(
            "location_id",
            UUID(as_uuid=True),
            sa.ForeignKey("locations.id"),
            nullable=True,
        ),
    )

    op.create_table(
        "matches",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column(
            "home_team_id", UUID(as_uuid=True), sa.ForeignKey("teams.id"), nullable=False
        ),
        sa.Column(
            "away_team_id", UUID(as_uuid=True), sa.ForeignKey("teams.id"), nullable=False
        ),
        sa.Column(
            "stadium_id", UUID(as_uuid=True), sa.ForeignKey("stadiums.id"), nullable=True
        ),
        sa.Column("match_date", sa.Date, nullable=True),
        sa.Column("match_time", sa.String, nullable=True),
        sa.Column("game_day", sa.String, nullable=True),
        sa.Column("status", sa.String, nullable=False, server_default="SCHEDULED"),
        sa.Column(
            "accounting_status", sa.String, nullable=False, server_default="NOT_ENTERED"
        ),
        sa.Column("is_archived", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("is_sheet_sent", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column(
            "has_unsent_changes", sa.Boolean, nullable=False, server_default=sa.false()
        ),
    )

    op.create_table(
        "match_assignments",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column(
            "match_id", UUID(as_uuid=True), sa.ForeignKey("matches.id"), nullable=False
        ),
        sa.Column(
            "official_id", UUID(as_uuid=True), sa.ForeignKey("officials.id"), nullable=True
        ),
        sa.Column("role", sa.String, nullable=False),
        sa.Column("travel_distance_km", sa.Float, nullable=True),
        sa.Column("indemnity_amount", sa.Float, nullable=True),
        sa.Column("irg_amount", sa.Float, nullable=True),
        sa.Column("is_confirmed", sa.Boolean, nullable=False, server_default=sa.false()),
    )
    op.create_index(
        "ix_match_assignments_match_id", "match_assignments", ["match_id"]
    )

    # --- jobs ---
    op.create_table(
        "jobs",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("type", sa.String, nullable=False),
        sa.Column("label", sa.String, nullable=False, server_default=""),
        sa.Column("payload", JSONB, nullable=False, server_default="{}"),
        sa.Column("status", sa.String, nullable=False, server_default="pending"),
        sa.Column("total", sa.Integer, nullable=True),
        sa.Column("progress", sa.Integer, nullable=False, server_default="0"),
        sa.Column("result", JSONB, nullable=True),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("error_code", sa.String, nullable=True),
        sa.Column("dedupe_key", sa.String, nullable=True),
        sa.Column("created_by", UUID(as_uuid=True), nullable=False),
        sa.Column("celery_task_id", sa.String, nullable=True),
        sa.Column("artifact_path", sa.String, nullable=True),
        sa.Column("lease_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("retry_of", UUID(as_uuid=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(STATUS_CHECK, name="ck_jobs_status"),
        sa.CheckConstraint(
            "progress >= 0 AND (total IS NULL OR progress <= total)",
            name="ck_jobs_progress_bounds",
        ),
        sa.CheckConstraint("total IS NULL OR total >= 0", name="ck_jobs_total"),
    )
    op.create_index("ix_jobs_type", "jobs", ["type"])
    op.create_index("ix_jobs_created_by", "jobs", ["created_by"])
    op.create_index("ix_jobs_status_created_at", "jobs", ["status", "created_at"])
    op.create_index(
        "uq_jobs_type_dedupe_active",
        "jobs",
        ["type", "dedupe_key"],
        unique=True,
        postgresql_where=sa.text(ACTIVE_DEDUPE),
    )

    # --- mission_order_batches ---
    op.create_table(
        "mission_order_batches",
        sa.Column("hash", sa.String(64), primary_key=True, nullable=False),
        sa.Column("status", sa.String, nullable=False, server_default="pending"),
        sa.Column("orders", JSONB, nullable=False),
        sa.Column("artifact_path", sa.String, nullable=True),
        sa.Column("error", sa.Text, nullable=True),
        sa.Column("created_by", UUID(as_uuid=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(STATUS_CHECK, name="ck_mission_order_batches_status"),
    )

    # --- export_jobs ---
    op.create_table(
        "export_jobs",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("type", sa.String, nullable=False),
        sa.Column("params", JSONB, nullable=False, server_default="{}"),
        sa.Column("status", sa.String, nullable=False, server_default="pending"),
        sa.Column("requested_by", UUID(as_uuid=True), nullable=False),
        sa.Column("file_path", sa.String, nullable=True),
        sa.Column("file_size", sa.BigInteger, nullable=True),
        sa.Column("error_message", sa.Text, nullable=True),
        *_timestamps(),
        sa.CheckConstraint(STATUS_CHECK, name="ck_export_jobs_status"),
        sa.CheckConstraint(
            "type IN ('payments_monthly', 'game_day_summary', "
            "'monthly_accounting_summary', 'individual_statement')",
            name="ck_export_jobs_type",
        ),
    )
    op.create_index("ix_export_jobs_requested_by", "export_jobs", ["requested_by"])
    op.create_index(
        "ix_export_jobs_status_created_at", "export_jobs", ["status", "created_at"]
    )


def downgrade() -> None:
    op.drop_index("ix_export_jobs_status_created_at", table_name="export_jobs")
    op.drop_index("ix_export_jobs_requested_by", table_name="export_jobs")
    op.drop_table("export_jobs")
    op.drop_table("mission_order_batches")
    op.drop_index("uq_jobs_type_dedupe_active", table_name="jobs")
    op.drop_index("ix_jobs_status_created_at", table_name="jobs")
    op.drop_index("ix_jobs_created_by", table_name="jobs")
    op.drop_index("ix_jobs_type", table_name="jobs")
    op.drop_table("jobs")
    op.drop_index("ix_match_assignments_match_id", table_name="match_assignments")
    op.drop_table("match_assignments")
    op.drop_table("matches")
    op.drop_table("officials")
    op.drop_table("stadiums")
    op.drop_table("teams")
    op.drop_table("locations")
