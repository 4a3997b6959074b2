from refdesk.tasks import pdf_worker  # noqa: F401
from refdesk.tasks import email_worker  # noqa: F401
from refdesk.tasks import batch_worker  # noqa: F401
from refdesk.tasks import export_worker  # noqa: F401
from refdesk.tasks import job_reconciler  # noqa: F401
from refdesk.tasks import job_reaper  # noqa: F401
from refdesk.tasks import job_cleanup  # noqa: F401

__all__ = [
    "pdf_worker",
    "email_worker",
    "batch_worker",
    "export_worker",
    "job_reconciler",
    "job_reaper",
    "job_cleanup",
]
