from refdesk.celery_app import celery_app
from refdesk.tasks import (
    pdf_worker,
    email_worker,
    batch_worker,
    export_worker,
    job_reconciler,
    job_reaper,
    job_cleanup,
)

__all__ = [
    "celery_app",
    "pdf_worker",
    "email_worker",
    "batch_worker",
    "export_worker",
    "job_reconciler",
    "job_reaper",
    "job_cleanup",
]
